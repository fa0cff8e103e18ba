"""Shared published-state store for live task locations.

One document per task: ``{current, history, route, state, sequence, ...}``.
Redis is used when REDIS_URL is configured (shared across workers, pub/sub
for near-real-time delivery); otherwise an in-process store is used.
"""

import json
import logging
import threading
from abc import ABC, abstractmethod

import redis

logger = logging.getLogger(__name__)

# Key prefixes
STATE_PREFIX = "task:location:"
CHANNEL_PREFIX = "task:location:updates:"
DEFAULT_TTL = 6 * 3600  # cleared explicitly on stop; TTL only covers crashed writers


def is_stale_write(stored, doc) -> bool:
    """A write is stale when the same session already published a newer sequence."""
    if not stored:
        return False
    if stored.get('session_id') != doc.get('session_id'):
        return False
    return doc.get('sequence', 0) <= stored.get('sequence', 0)


class LocationStore(ABC):

    @abstractmethod
    def write(self, task_id, doc) -> bool:
        """Replace the task's document. Returns False if the write was rejected."""

    @abstractmethod
    def read(self, task_id):
        """Current document or None."""

    @abstractmethod
    def clear(self, task_id):
        """Delete the document and notify subscribers with None."""

    @abstractmethod
    def subscribe(self, task_id, handler):
        """Call ``handler(doc_or_None)`` on every change. Returns an unsubscribe function."""


class MemoryLocationStore(LocationStore):
    """In-process fallback (single worker only)."""

    def __init__(self):
        self._lock = threading.RLock()
        self._docs = {}
        self._handlers = {}
        self._next_token = 0

    def _notify(self, task_id, doc):
        with self._lock:
            handlers = list(self._handlers.get(str(task_id), {}).values())
        for handler in handlers:
            try:
                handler(doc)
            except Exception as e:
                logger.error(f'Location subscriber error for task {task_id}: {e}', exc_info=True)

    def write(self, task_id, doc):
        key = str(task_id)
        with self._lock:
            if is_stale_write(self._docs.get(key), doc):
                return False
            self._docs[key] = doc
        self._notify(task_id, doc)
        return True

    def read(self, task_id):
        with self._lock:
            return self._docs.get(str(task_id))

    def clear(self, task_id):
        with self._lock:
            existed = self._docs.pop(str(task_id), None) is not None
        self._notify(task_id, None)
        return existed

    def subscribe(self, task_id, handler):
        key = str(task_id)
        with self._lock:
            token = self._next_token
            self._next_token += 1
            self._handlers.setdefault(key, {})[token] = handler

        def unsubscribe():
            with self._lock:
                handlers = self._handlers.get(key)
                if handlers is None:
                    return
                handlers.pop(token, None)
                if not handlers:
                    self._handlers.pop(key, None)

        return unsubscribe

    def subscriber_count(self, task_id):
        with self._lock:
            return len(self._handlers.get(str(task_id), {}))


class RedisLocationStore(LocationStore):
    """Redis-backed store: a JSON document per task plus a pub/sub channel."""

    def __init__(self, client, ttl=DEFAULT_TTL):
        self.client = client
        self.ttl = ttl

    def write(self, task_id, doc):
        key = f"{STATE_PREFIX}{task_id}"
        payload = json.dumps(doc)
        try:
            with self.client.pipeline() as pipe:
                # Optimistic check so a second writer can never roll the sequence back
                pipe.watch(key)
                raw = pipe.get(key)
                if is_stale_write(json.loads(raw) if raw else None, doc):
                    pipe.unwatch()
                    return False
                pipe.multi()
                pipe.setex(key, self.ttl, payload)
                pipe.publish(f"{CHANNEL_PREFIX}{task_id}", payload)
                pipe.execute()
                return True
        except redis.WatchError:
            logger.warning(f"Concurrent location write for task {task_id} - skipped")
            return False
        except redis.RedisError as e:
            logger.error(f"Redis location write error: {e}")
            return False

    def read(self, task_id):
        try:
            raw = self.client.get(f"{STATE_PREFIX}{task_id}")
            return json.loads(raw) if raw else None
        except redis.RedisError as e:
            logger.error(f"Redis location read error: {e}")
            return None

    def clear(self, task_id):
        try:
            pipe = self.client.pipeline()
            pipe.delete(f"{STATE_PREFIX}{task_id}")
            pipe.publish(f"{CHANNEL_PREFIX}{task_id}", "null")
            deleted, _ = pipe.execute()
            return deleted > 0
        except redis.RedisError as e:
            logger.error(f"Redis location clear error: {e}")
            return False

    def subscribe(self, task_id, handler):
        channel = f"{CHANNEL_PREFIX}{task_id}"

        def on_message(message):
            try:
                handler(json.loads(message['data']))
            except Exception as e:
                logger.error(f"Location subscriber error for task {task_id}: {e}", exc_info=True)

        pubsub = self.client.pubsub(ignore_subscribe_messages=True)
        pubsub.subscribe(**{channel: on_message})
        worker = pubsub.run_in_thread(sleep_time=0.05, daemon=True)

        def unsubscribe():
            worker.stop()
            pubsub.close()

        return unsubscribe


def build_location_store(config) -> LocationStore:
    """Redis store when REDIS_URL works, in-memory store otherwise."""
    redis_url = config.get('REDIS_URL')
    ttl = config.get('TRACKING_STATE_TTL', DEFAULT_TTL)

    if not redis_url:
        logger.warning("REDIS_URL not set - live location state is per-process")
        return MemoryLocationStore()

    try:
        client = redis.from_url(redis_url, decode_responses=True)
        # Test connection
        client.ping()
        logger.info("Redis connected successfully")
        return RedisLocationStore(client, ttl=ttl)
    except Exception as e:
        logger.error(f"Redis connection failed: {e}")
        return MemoryLocationStore()
