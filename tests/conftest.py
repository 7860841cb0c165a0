"""
Shared fixtures: a controllable clock and an in-memory stand-in for the async
Redis client covering the commands the stores use (SET EX, GET, EXPIRE, TTL,
SCAN with paging, non-transactional pipelines).
"""

import fnmatch
from datetime import datetime, timezone, timedelta

import pytest


class FakeClock:
    """Wall clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class FakePipeline:
    def __init__(self, redis: 'FakeRedis'):
        self.redis = redis
        self.commands = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        self.commands = []
        return False

    def get(self, key):
        self.commands.append(('get', (key,), {}))
        return self

    def set(self, key, value, ex=None):
        self.commands.append(('set', (key, value), {'ex': ex}))
        return self

    async def execute(self):
        results = []
        for name, args, kwargs in self.commands:
            results.append(await getattr(self.redis, name)(*args, **kwargs))
        self.commands = []
        return results


class FakeRedis:
    """In-memory Redis double. TTLs are evaluated against the injected clock."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.data = {}
        self.expires_at = {}
        self.scan_calls = 0

    def _purge(self, key):
        deadline = self.expires_at.get(key)
        if deadline is not None and self.clock() >= deadline:
            self.data.pop(key, None)
            self.expires_at.pop(key, None)

    def _live_keys(self):
        for key in list(self.data):
            self._purge(key)
        return sorted(self.data)

    async def set(self, key, value, ex=None):
        self.data[key] = value
        if ex is not None:
            self.expires_at[key] = self.clock() + timedelta(seconds=ex)
        else:
            self.expires_at.pop(key, None)
        return True

    async def get(self, key):
        self._purge(key)
        return self.data.get(key)

    async def expire(self, key, seconds):
        self._purge(key)
        if key not in self.data:
            return False
        self.expires_at[key] = self.clock() + timedelta(seconds=seconds)
        return True

    async def ttl(self, key):
        self._purge(key)
        if key not in self.data:
            return -2
        deadline = self.expires_at.get(key)
        if deadline is None:
            return -1
        return int((deadline - self.clock()).total_seconds())

    async def scan(self, cursor=0, match=None, count=None):
        self.scan_calls += 1
        keys = [k for k in self._live_keys() if match is None or fnmatch.fnmatchcase(k, match)]
        page_size = count or 10
        page = keys[cursor:cursor + page_size]
        next_cursor = cursor + page_size
        if next_cursor >= len(keys):
            next_cursor = 0
        return next_cursor, page

    def pipeline(self, transaction=True):
        return FakePipeline(self)

    def keys_matching(self, pattern):
        return [k for k in self._live_keys() if fnmatch.fnmatchcase(k, pattern)]


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 10, 17, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def redis_client(clock):
    return FakeRedis(clock)
