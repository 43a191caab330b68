"""CLI entry point for the marketplace core."""

from __future__ import annotations

import click


@click.group()
def main() -> None:
    """POD marketplace core."""


@main.command("init-db")
@click.option("--config", default=None, help="Config file path")
def init_db(config: str | None) -> None:
    """Create all tables in the configured database."""
    import asyncio

    from .core.config import load_settings
    from .observability.logger import get_logger, setup_logging
    from .storage.connection import create_all, create_engine

    settings = load_settings(config_path=config)
    obs = settings.observability
    setup_logging(obs.log_level, obs.log_format)
    log = get_logger(__name__)

    async def _run() -> None:
        engine = create_engine(settings.database.url, use_null_pool=True)
        try:
            await create_all(engine)
        finally:
            await engine.dispose()

    asyncio.run(_run())
    log.info("schema_ready", url=settings.database.url.split("@")[-1])


@main.command()
@click.option("--config", default=None, help="Config file path")
@click.option("--consumer", default=None, help="Consumer name override (Redis backend)")
@click.option("--metrics/--no-metrics", default=True, help="Expose Prometheus metrics")
def worker(config: str | None, consumer: str | None, metrics: bool) -> None:
    """Run the deferred handler worker until interrupted."""
    import asyncio

    from .bootstrap import build_container
    from .core.config import load_settings
    from .observability.logger import get_logger, setup_logging
    from .observability.metrics import start_metrics_server

    settings = load_settings(config_path=config)
    if consumer:
        settings.event_bus.consumer = consumer

    obs = settings.observability
    setup_logging(obs.log_level, obs.log_format)
    log = get_logger(__name__)

    if metrics:
        start_metrics_server(obs.metrics_port, role="worker")

    async def _run() -> None:
        container = build_container(settings)
        await container.start()
        log.info(
            "worker_started",
            backend=settings.event_bus.backend.value,
            consumer=settings.event_bus.consumer,
        )
        try:
            await container.worker.run_forever(idle_sleep=0.5)
        finally:
            await container.stop()
            log.info(
                "worker_stopped",
                processed=container.worker.messages_processed,
                dead_lettered=container.worker.dead_lettered,
            )

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        log.info("worker_interrupted")


if __name__ == "__main__":
    main()
