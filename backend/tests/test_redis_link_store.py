from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from kisanmitra.domain_errors import LinkCodeAlreadyClaimed, LinkCodeExpired, LinkCodeNotFound
from kisanmitra.services.linking import CodeCollision, LinkingCode, LinkingRegistry, LinkState, RedisLinkStore


class _PipelineStub:
    """Mimics redis-py pipeline semantics: reads run immediately until multi(), then writes are queued."""

    def __init__(self, redis_stub: "_RedisStub"):
        self._redis = redis_stub
        self._queued: list[tuple[str, tuple, dict]] = []
        self._in_multi = False
        self.watched: list[str] = []

    def watch(self, *keys: str) -> None:
        assert not self._in_multi, "WATCH after MULTI"
        self.watched.extend(keys)

    def multi(self) -> None:
        self._in_multi = True

    def __getattr__(self, name: str):
        command = getattr(self._redis, name)
        if name in {"get", "exists", "smembers"}:
            assert not self._in_multi, f"read {name} inside MULTI"
            return command

        def _queue(*args, **kwargs):
            assert self._in_multi, f"write {name} before MULTI"
            self._queued.append((name, args, kwargs))

        return _queue

    def execute(self) -> list:
        return [getattr(self._redis, name)(*args, **kwargs) for name, args, kwargs in self._queued]


class _RedisStub:
    def __init__(self):
        self.values: dict[str, object] = {}
        self.ttls: dict[str, int] = {}
        self.transactions = 0

    def get(self, key: str):
        value = self.values.get(key)
        assert value is None or isinstance(value, str)
        return value

    def exists(self, key: str) -> int:
        return int(key in self.values)

    def smembers(self, key: str) -> set[str]:
        return set(self.values.get(key, set()))

    def set(self, key: str, value: str, ex: int | None = None, keepttl: bool = False) -> bool:
        self.values[key] = value
        if ex is not None:
            self.ttls[key] = ex
        elif not keepttl:
            self.ttls.pop(key, None)
        return True

    def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self.values.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    def sadd(self, key: str, *members: str) -> int:
        bucket = self.values.setdefault(key, set())
        before = len(bucket)
        bucket.update(members)
        return len(bucket) - before

    def srem(self, key: str, *members: str) -> int:
        bucket = self.values.get(key, set())
        before = len(bucket)
        bucket.difference_update(members)
        return before - len(bucket)

    def expire(self, key: str, seconds: int) -> bool:
        self.ttls[key] = seconds
        return True

    def transaction(self, func, *watches, value_from_callable: bool = False):
        self.transactions += 1
        pipe = _PipelineStub(self)
        pipe.watch(*watches)
        value = func(pipe)
        results = pipe.execute()
        return value if value_from_callable else results


class _Clock:
    def __init__(self):
        self.at = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.at


def _store(redis_stub: _RedisStub) -> RedisLinkStore:
    return RedisLinkStore(redis_stub, ttl=timedelta(minutes=10), retention=timedelta(days=1))


def _record(code: str, user: int, at: datetime) -> LinkingCode:
    return LinkingCode(code=code, issued_to=user, issued_at=at, expires_at=at + timedelta(minutes=10))


def test_add_pending_writes_code_and_user_index_with_retention_ttl() -> None:
    redis_stub = _RedisStub()
    store = _store(redis_stub)
    at = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)

    assert store.add_pending(_record("ABC123", 1001, at)) is None

    assert store.get("ABC123") == _record("ABC123", 1001, at)
    assert redis_stub.values["link:user:1001:pending"] == "ABC123"
    assert redis_stub.values["link:user:1001:codes"] == {"ABC123"}
    assert redis_stub.ttls["link:code:ABC123"] == 600 + 86400


def test_add_pending_supersedes_previous_pending_code() -> None:
    redis_stub = _RedisStub()
    store = _store(redis_stub)
    at = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
    store.add_pending(_record("AAAAA1", 1001, at))

    superseded = store.add_pending(_record("BBBBB2", 1001, at))

    assert superseded.code == "AAAAA1"
    assert store.get("AAAAA1") is None
    assert redis_stub.values["link:user:1001:pending"] == "BBBBB2"
    assert redis_stub.values["link:user:1001:codes"] == {"BBBBB2"}


def test_add_pending_rejects_known_code() -> None:
    redis_stub = _RedisStub()
    store = _store(redis_stub)
    at = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
    store.add_pending(_record("ABC123", 1001, at))

    with pytest.raises(CodeCollision):
        store.add_pending(_record("ABC123", 2002, at))


def test_claim_is_compare_and_swap_on_pending_state() -> None:
    redis_stub = _RedisStub()
    store = _store(redis_stub)
    at = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
    store.add_pending(_record("ABC123", 1001, at))

    claimed = store.claim("ABC123", "9", at)

    assert claimed.state == LinkState.CLAIMED
    assert claimed.app_user_id == "9"
    assert store.claim("ABC123", "10", at) is None
    assert store.get("ABC123").app_user_id == "9"
    # keepttl: the claim must not strip the retention expiry
    assert redis_stub.ttls["link:code:ABC123"] == 600 + 86400


def test_claim_after_expiry_is_refused() -> None:
    redis_stub = _RedisStub()
    store = _store(redis_stub)
    at = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
    store.add_pending(_record("ABC123", 1001, at))

    assert store.claim("ABC123", "9", at + timedelta(minutes=11)) is None


def test_remove_user_drops_all_codes_and_indexes() -> None:
    redis_stub = _RedisStub()
    store = _store(redis_stub)
    at = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
    store.add_pending(_record("AAAAA1", 1001, at))
    store.claim("AAAAA1", "9", at)
    store.add_pending(_record("BBBBB2", 1001, at))

    assert store.remove_user(1001) == 2

    assert store.get("AAAAA1") is None
    assert store.get("BBBBB2") is None
    assert "link:user:1001:pending" not in redis_stub.values
    assert "link:user:1001:codes" not in redis_stub.values


def test_registry_over_redis_store_full_lifecycle() -> None:
    redis_stub = _RedisStub()
    clock = _Clock()
    codes = iter(["AAAAA1", "BBBBB2"])
    registry = LinkingRegistry(_store(redis_stub), clock=clock, code_factory=lambda: next(codes))

    expired = registry.issue(1001)
    clock.at += timedelta(minutes=11)
    with pytest.raises(LinkCodeExpired):
        registry.verify(expired.code, 9)

    fresh = registry.issue(1001)
    assert registry.verify(fresh.code, 9).telegram_user_id == 1001
    with pytest.raises(LinkCodeAlreadyClaimed):
        registry.verify(fresh.code, 10)

    registry.revoke(1001)
    with pytest.raises(LinkCodeNotFound):
        registry.verify(fresh.code, 9)
