"""Redis Streams task queue for deferred handlers.

Tasks are appended to one stream and read through one consumer group, so
every task is delivered to exactly one worker at a time and stays pending
until it is acknowledged.

Delivery guarantees:
- A task is only ack'd *after* its handler succeeded, was rescheduled or
  was dead-lettered.
- Tasks left pending by a crashed worker are reclaimed with ``XAUTOCLAIM``
  once idle for ``claim_idle_ms`` and delivered again (at-least-once).
- Retries are parked in a sorted set scored by due time (epoch ms) and
  moved back onto the stream when due, atomically, in a Lua script.
- Dead letters are appended to ``<stream>:dead`` for operators.
"""

from __future__ import annotations

import logging
from typing import Any

import redis.asyncio as aioredis

from pod_marketplace.core.clock import IClock, WallClock

from .envelope import DeferredTask
from .queue import DeadLetter, Reservation

logger = logging.getLogger(__name__)

# KEYS[1] retry zset, KEYS[2] stream; ARGV[1] now (ms), ARGV[2] max length.
_PROMOTE_DUE_SCRIPT = """
local due = redis.call('ZRANGEBYSCORE', KEYS[1], '-inf', ARGV[1])
for _, raw in ipairs(due) do
    redis.call('XADD', KEYS[2], 'MAXLEN', '~', ARGV[2], '*', 'task', raw)
    redis.call('ZREM', KEYS[1], raw)
end
return #due
"""


class RedisTaskQueue:
    """Production task queue backed by Redis Streams."""

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        *,
        stream: str = "pod:deferred-tasks",
        group: str = "pod-workers",
        consumer: str = "worker-1",
        block_ms: int = 1000,
        claim_idle_ms: int = 60_000,
        max_stream_length: int = 100_000,
        clock: IClock | None = None,
        client: Any | None = None,
    ) -> None:
        self._redis_url = redis_url
        self._redis: Any | None = client
        self._owns_client = client is None
        self._stream = stream
        self._group = group
        self._consumer = consumer
        self._block_ms = block_ms
        self._claim_idle_ms = claim_idle_ms
        self._max_len = max_stream_length
        self._clock = clock or WallClock()
        self._group_ready = False

    @property
    def retry_key(self) -> str:
        return f"{self._stream}:retry"

    @property
    def dead_letter_stream(self) -> str:
        return f"{self._stream}:dead"

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Connect to Redis and make sure the consumer group exists."""
        if self._redis is None:
            self._redis = aioredis.from_url(self._redis_url, decode_responses=True)
        await self._ensure_group()

    async def stop(self) -> None:
        """Close the Redis connection if this queue opened it."""
        if self._redis is not None and self._owns_client:
            await self._redis.aclose()
            self._redis = None
        self._group_ready = False

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    async def enqueue(self, task: DeferredTask) -> None:
        """Append a task to the stream."""
        client = self._client()
        await client.xadd(
            self._stream,
            {"task": task.to_json()},
            maxlen=self._max_len,
            approximate=True,
        )

    # ------------------------------------------------------------------
    # Consumer side
    # ------------------------------------------------------------------

    async def reserve(self, max_tasks: int = 10) -> list[Reservation]:
        """Deliver due retries, reclaimed tasks, or new tasks, in that order."""
        client = self._client()
        if not self._group_ready:
            await self._ensure_group()

        await self._promote_due_retries()

        claimed = await client.xautoclaim(
            self._stream,
            self._group,
            self._consumer,
            min_idle_time=self._claim_idle_ms,
            start_id="0-0",
            count=max_tasks,
        )
        # [next_start_id, [(msg_id, fields), ...], deleted_ids]
        reclaimed = [(mid, f) for mid, f in claimed[1] if f]
        if reclaimed:
            logger.warning(
                "Reclaimed %d stale task(s) from %s", len(reclaimed), self._stream,
            )
            return [Reservation(receipt=mid, raw=f["task"]) for mid, f in reclaimed]

        entries = await client.xreadgroup(
            groupname=self._group,
            consumername=self._consumer,
            streams={self._stream: ">"},
            count=max_tasks,
            block=self._block_ms,
        )
        out: list[Reservation] = []
        for _stream, messages in entries or []:
            for msg_id, fields in messages:
                raw = fields.get("task")
                if raw is None:
                    # Not ours; ack so it does not block the group.
                    logger.warning("Malformed stream entry %s: %s", msg_id, fields)
                    await client.xack(self._stream, self._group, msg_id)
                    continue
                out.append(Reservation(receipt=msg_id, raw=raw))
        return out

    async def ack(self, receipt: Any) -> None:
        await self._client().xack(self._stream, self._group, receipt)

    async def schedule_retry(
        self, receipt: Any, task: DeferredTask, delay_seconds: float,
    ) -> None:
        """Park the next attempt, then ack the current delivery.

        A crash between the two leaves both the retry and the pending
        delivery, i.e. one extra delivery, never a lost task.
        """
        client = self._client()
        due_ms = self._clock.now_ms() + int(delay_seconds * 1000)
        await client.zadd(self.retry_key, {task.to_json(): due_ms})
        await client.xack(self._stream, self._group, receipt)

    async def dead_letter(self, receipt: Any, letter: DeadLetter) -> None:
        client = self._client()
        await client.xadd(
            self.dead_letter_stream,
            {
                "task": letter.raw,
                "error": letter.error,
                "handler_id": letter.handler_id,
                "event_name": letter.event_name,
                "attempts": str(letter.attempts),
            },
            maxlen=self._max_len,
            approximate=True,
        )
        await client.xack(self._stream, self._group, receipt)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _client(self) -> Any:
        if self._redis is None:
            raise RuntimeError("RedisTaskQueue not started")
        return self._redis

    async def _ensure_group(self) -> None:
        """Create consumer group, ignoring BUSYGROUP if it already exists."""
        client = self._client()
        try:
            await client.xgroup_create(self._stream, self._group, id="0", mkstream=True)
        except aioredis.ResponseError as e:
            if "BUSYGROUP" not in str(e):
                raise
        self._group_ready = True

    async def _promote_due_retries(self) -> int:
        """Move due retries from the sorted set back onto the stream.

        The move runs as one Lua script, so no other worker can observe a
        task that is in neither place.  ``XADD`` precedes ``ZREM`` inside
        the script; if the ``XADD`` errors the member stays parked.
        """
        client = self._client()
        moved = await client.eval(
            _PROMOTE_DUE_SCRIPT,
            2,
            self.retry_key,
            self._stream,
            self._clock.now_ms(),
            self._max_len,
        )
        moved = int(moved or 0)
        if moved:
            logger.debug("Promoted %d retry task(s) onto %s", moved, self._stream)
        return moved
