"""
Tests for the Redis-backed location store.

Uses a small in-process stand-in for the redis client that follows the
WATCH/MULTI/EXEC and pub/sub call shapes the store relies on.
"""

import json

import pytest
import redis

from errand_geo.services.location_store import (
    CHANNEL_PREFIX,
    STATE_PREFIX,
    MemoryLocationStore,
    RedisLocationStore,
    build_location_store,
)


# ============ Redis stand-in ============

class FakePipeline:

    def __init__(self, client, transaction=True):
        self.client = client
        self.commands = []
        self.watched = []
        self.unwatched = False

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.commands = []
        return False

    def watch(self, *keys):
        self.watched.extend(keys)

    def unwatch(self):
        self.unwatched = True
        self.client.unwatch_calls += 1

    def get(self, key):
        # Immediate mode between WATCH and MULTI
        return self.client.get(key)

    def multi(self):
        pass

    def setex(self, key, ttl, value):
        self.commands.append(('setex', key, ttl, value))

    def delete(self, key):
        self.commands.append(('delete', key))

    def publish(self, channel, message):
        self.commands.append(('publish', channel, message))

    def execute(self):
        if self.client.fail_with is not None:
            raise self.client.fail_with
        if any(key in self.client.touched for key in self.watched):
            raise redis.WatchError('Watched variable changed.')
        results = []
        for command, *args in self.commands:
            results.append(getattr(self.client, command)(*args))
        self.commands = []
        return results


class FakeWorker:

    def __init__(self):
        self.stopped = False

    def stop(self):
        self.stopped = True


class FakePubSub:

    def __init__(self, client, ignore_subscribe_messages=False):
        self.client = client
        self.handlers = {}
        self.worker = None
        self.closed = False

    def subscribe(self, **handlers):
        self.handlers.update(handlers)

    def run_in_thread(self, sleep_time=0, daemon=False):
        self.worker = FakeWorker()
        return self.worker

    def close(self):
        self.closed = True
        self.client.pubsubs.remove(self)


class FakeRedis:

    def __init__(self):
        self.data = {}
        self.ttls = {}
        self.published = []
        self.pubsubs = []
        self.touched = set()
        self.unwatch_calls = 0
        self.fail_with = None

    def pipeline(self, transaction=True):
        return FakePipeline(self, transaction)

    def get(self, key):
        if self.fail_with is not None:
            raise self.fail_with
        return self.data.get(key)

    def setex(self, key, ttl, value):
        self.data[key] = value
        self.ttls[key] = ttl
        return True

    def delete(self, key):
        return 1 if self.data.pop(key, None) is not None else 0

    def publish(self, channel, message):
        self.published.append((channel, message))
        delivered = 0
        for pubsub in list(self.pubsubs):
            handler = pubsub.handlers.get(channel)
            if handler and not pubsub.closed and not pubsub.worker.stopped:
                handler({'type': 'message', 'channel': channel, 'data': message})
                delivered += 1
        return delivered

    def pubsub(self, ignore_subscribe_messages=False):
        pubsub = FakePubSub(self, ignore_subscribe_messages)
        self.pubsubs.append(pubsub)
        return pubsub


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def store(fake_redis):
    return RedisLocationStore(fake_redis, ttl=600)


def doc(sequence, session_id='s1', **extra):
    return {'session_id': session_id, 'sequence': sequence, 'state': 'active', **extra}


class TestRedisWrite:
    """Tests for RedisLocationStore.write"""

    def test_write_stores_and_publishes(self, store, fake_redis):
        assert store.write(7, doc(1))

        key = f'{STATE_PREFIX}7'
        assert json.loads(fake_redis.data[key])['sequence'] == 1
        assert fake_redis.ttls[key] == 600
        assert fake_redis.published == [(f'{CHANNEL_PREFIX}7', fake_redis.data[key])]

    def test_newer_sequence_replaces(self, store):
        store.write(7, doc(1))
        assert store.write(7, doc(2))
        assert store.read(7)['sequence'] == 2

    def test_older_sequence_from_same_session_is_rejected(self, store, fake_redis):
        store.write(7, doc(5))
        published = len(fake_redis.published)

        assert not store.write(7, doc(4))
        assert not store.write(7, doc(5))

        assert store.read(7)['sequence'] == 5
        assert len(fake_redis.published) == published
        assert fake_redis.unwatch_calls == 2

    def test_new_session_may_restart_sequence(self, store):
        store.write(7, doc(9, session_id='old'))
        assert store.write(7, doc(1, session_id='new'))
        assert store.read(7)['session_id'] == 'new'

    def test_concurrent_write_is_skipped(self, store, fake_redis):
        store.write(7, doc(1))
        fake_redis.touched.add(f'{STATE_PREFIX}7')

        assert not store.write(7, doc(2))
        assert json.loads(fake_redis.data[f'{STATE_PREFIX}7'])['sequence'] == 1

    def test_redis_error_is_not_raised(self, store, fake_redis):
        fake_redis.fail_with = redis.ConnectionError('connection refused')

        assert not store.write(7, doc(1))


class TestRedisReadAndClear:
    """Tests for RedisLocationStore.read / clear"""

    def test_read_missing(self, store):
        assert store.read(7) is None

    def test_read_error_returns_none(self, store, fake_redis):
        store.write(7, doc(1))
        fake_redis.fail_with = redis.ConnectionError('gone')

        assert store.read(7) is None

    def test_clear_deletes_and_publishes_null(self, store, fake_redis):
        store.write(7, doc(1))

        assert store.clear(7)
        assert store.read(7) is None
        assert fake_redis.published[-1] == (f'{CHANNEL_PREFIX}7', 'null')

    def test_clear_when_nothing_stored(self, store, fake_redis):
        assert not store.clear(7)
        assert fake_redis.published == [(f'{CHANNEL_PREFIX}7', 'null')]


class TestRedisSubscribe:
    """Tests for RedisLocationStore.subscribe"""

    def test_subscriber_gets_documents_and_cleared_state(self, store):
        received = []
        store.subscribe(7, received.append)

        store.write(7, doc(1, current={'lat': 29.65, 'lng': -82.35}))
        store.clear(7)

        assert received[0]['current'] == {'lat': 29.65, 'lng': -82.35}
        assert received[1] is None

    def test_other_tasks_are_not_delivered(self, store):
        received = []
        store.subscribe(7, received.append)

        store.write(8, doc(1))

        assert received == []

    def test_unsubscribe_stops_worker_and_closes(self, store, fake_redis):
        received = []
        unsubscribe = store.subscribe(7, received.append)
        pubsub = fake_redis.pubsubs[0]

        unsubscribe()
        store.write(7, doc(1))

        assert pubsub.worker.stopped
        assert pubsub.closed
        assert received == []

    def test_handler_error_does_not_escape(self, store):
        def broken(doc):
            raise RuntimeError('subscriber went away')

        store.subscribe(7, broken)

        assert store.write(7, doc(1))


class TestBuildLocationStore:
    """Tests for build_location_store"""

    def test_without_redis_url(self):
        assert isinstance(build_location_store({'REDIS_URL': None}), MemoryLocationStore)

    def test_unreachable_redis_falls_back(self):
        store = build_location_store({'REDIS_URL': 'redis://127.0.0.1:1/0'})

        assert isinstance(store, MemoryLocationStore)
