"""
Task read-through cache.

Reads of a single task go through ``TaskCache.get_task_dict``; services call
``TaskCache.invalidate`` only after their commit succeeded, so the cache
never holds state the database rejected.

Uses Redis when REDIS_URL is set, falls back to a process-local dict
for development/testing.
"""

import json
import logging
import os
import time

import redis

from keon.models import db
from keon.models.task import Task

logger = logging.getLogger(__name__)

# ── In-memory fallback ───────────────────────────────────────────────────

_memory_store: dict = {}  # key → (value_json, expire_ts)


class _MemoryBackend:
    """Simple dict cache for dev/testing."""

    def get(self, key):
        entry = _memory_store.get(key)
        if entry is None:
            return None
        val, expires = entry
        if expires and time.time() > expires:
            _memory_store.pop(key, None)
            return None
        return val

    def setex(self, key, ttl_seconds, value):
        _memory_store[key] = (value, time.time() + ttl_seconds)

    def delete(self, *keys):
        for k in keys:
            _memory_store.pop(k, None)

    def flushdb(self):
        _memory_store.clear()

    def ping(self):
        return True


# ── Singleton cache backend ──────────────────────────────────────────────

_backend = None


def _get_backend():
    """Lazy-initialise Redis or fall back to in-memory."""
    global _backend
    if _backend is not None:
        return _backend

    redis_url = os.getenv("REDIS_URL")
    if redis_url and not redis_url.startswith("memory://"):
        try:
            _backend = redis.from_url(redis_url, decode_responses=True)
            _backend.ping()
            logger.info("Cache: using Redis at %s", redis_url.split("@")[-1])
        except redis.RedisError as exc:
            logger.warning("Redis unavailable (%s), falling back to memory cache", exc)
            _backend = _MemoryBackend()
    else:
        _backend = _MemoryBackend()
    return _backend


TASK_TTL = 300  # 5 minutes


class TaskCache:
    """Read-through cache of serialised tasks keyed by task id."""

    @staticmethod
    def _key(task_id):
        return f"task:{task_id}"

    @staticmethod
    def get_task_dict(task_id):
        """Return the task as a dict, loading it from the database on miss.

        Returns None when the task does not exist (misses are not cached).
        """
        be = _get_backend()
        raw = be.get(TaskCache._key(task_id))
        if raw is not None:
            try:
                return json.loads(raw)
            except (json.JSONDecodeError, TypeError):
                logger.warning("Discarding unreadable cache entry for task %s", task_id)
        task = db.session.get(Task, task_id)
        if task is None:
            return None
        data = task.to_dict()
        be.setex(TaskCache._key(task_id), TASK_TTL, json.dumps(data))
        return data

    @staticmethod
    def invalidate(*task_ids):
        keys = [TaskCache._key(t) for t in task_ids if t is not None]
        if keys:
            _get_backend().delete(*keys)

    @staticmethod
    def clear():
        """Flush the whole cache (tests)."""
        _get_backend().flushdb()


def health_check():
    """Return cache backend status."""
    try:
        be = _get_backend()
        be.ping()
        backend_type = "redis" if not isinstance(be, _MemoryBackend) else "memory"
        return {"status": "ok", "backend": backend_type}
    except redis.RedisError as exc:
        return {"status": "error", "detail": str(exc)}
