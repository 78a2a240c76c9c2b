"""
Job queue core.

This package provides a database-backed, at-least-once job queue with:
- Atomic claiming (SKIP LOCKED on Postgres, compare-and-swap elsewhere)
- Exponential backoff retries and a dead-letter store
- Idempotent enqueue via idempotency keys
- A polling worker dispatching to a per-worker handler registry
"""
