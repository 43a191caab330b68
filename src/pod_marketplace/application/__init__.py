"""Application layer — use cases that sequence repositories and events."""
