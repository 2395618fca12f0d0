"""Shared test doubles."""
from collections import defaultdict
from typing import Dict, List, Optional, Tuple

import pytest

import medichain.database as database


class FakePipeline:
    """Minimal Redis pipeline that applies queued operations on execute."""

    def __init__(self, redis: "FakeRedis"):
        self.redis = redis
        self.operations: List[Tuple] = []

    def __getattr__(self, name):
        def _queue(*args):
            self.operations.append((name, args))
            return self
        return _queue

    async def execute(self) -> List:
        if self.redis.fail_with is not None:
            raise self.redis.fail_with
        results = [getattr(self.redis, f"_{name}")(*args) for name, args in self.operations]
        self.operations.clear()
        return results


class FakeRedis:
    """In-process stand-in for the sorted-set and counter commands the limiter uses."""

    def __init__(self):
        self.kv: Dict[str, int] = defaultdict(int)
        self.expirations: Dict[str, float] = {}
        self.sorted_sets: Dict[str, List[Tuple[str, float]]] = defaultdict(list)
        self.fail_with: Optional[Exception] = None
        self.closed = False

    def pipeline(self) -> FakePipeline:
        return FakePipeline(self)

    def _incr(self, key: str) -> int:
        self.kv[key] += 1
        return self.kv[key]

    def _expireat(self, key: str, timestamp: int) -> bool:
        self.expirations[key] = timestamp
        return True

    def _expire(self, key: str, ttl: int) -> bool:
        self.expirations[key] = ttl
        return True

    def _zremrangebyscore(self, key: str, min_score: float, max_score: float) -> int:
        before = len(self.sorted_sets[key])
        self.sorted_sets[key] = [
            entry for entry in self.sorted_sets[key]
            if not (min_score <= entry[1] <= max_score)
        ]
        return before - len(self.sorted_sets[key])

    def _zcard(self, key: str) -> int:
        return len(self.sorted_sets[key])

    def _zadd(self, key: str, mapping: Dict[str, float]) -> int:
        for member, score in mapping.items():
            self.sorted_sets[key].append((member, float(score)))
        return len(mapping)

    async def zrem(self, key: str, member: str) -> int:
        before = len(self.sorted_sets[key])
        self.sorted_sets[key] = [entry for entry in self.sorted_sets[key] if entry[0] != member]
        return before - len(self.sorted_sets[key])

    async def zrange(self, key: str, start: int, end: int, withscores: bool = False):
        entries = sorted(self.sorted_sets.get(key, []), key=lambda item: item[1])
        sliced = entries[start:end + 1 if end != -1 else None]
        if withscores:
            return list(sliced)
        return [member for member, _ in sliced]

    async def close(self) -> None:
        self.closed = True


@pytest.fixture(autouse=True)
def fake_redis(monkeypatch: pytest.MonkeyPatch) -> FakeRedis:
    """Every test gets an empty limiter store instead of a live Redis."""
    client = FakeRedis()
    monkeypatch.setattr(database, "_redis_client", client)
    return client
