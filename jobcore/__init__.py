"""
jobcore

Durable, database-backed job orchestration: leases, per-queue concurrency
policies, bounded retry with backoff, and stale-lease recovery across
independent worker processes.
"""

__version__ = "1.0.0"
