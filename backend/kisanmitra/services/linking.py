"""
Linking-code registry: binds a Telegram user to an application account.

Flow:
1. User sends /link to the bot, the registry issues a 6-character code
2. User types the code into the web app
3. Web app calls GET /api/v1/telegram/link?code=...&user_id=...
4. Registry verifies the code once and returns the (app user, Telegram user) pair

Codes live 10 minutes. Issuing a new code for a user supersedes the previous
pending one. A code can be claimed at most once, even under concurrent verify
calls; the store implementations enforce this with per-key locks (memory) or
WATCH/MULTI compare-and-swap (Redis).
"""
from __future__ import annotations

import json
import logging
import re
import secrets
import string
import threading
import zlib
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Protocol

import redis

from ..domain_errors import (
    LinkCodeAlreadyClaimed,
    LinkCodeExpired,
    LinkCodeNotFound,
    LinkCodeUnavailable,
)

logger = logging.getLogger(__name__)

CODE_LENGTH = 6
CODE_ALPHABET = string.ascii_uppercase + string.digits
DEFAULT_TTL = timedelta(minutes=10)
DEFAULT_RETENTION = timedelta(days=1)

_CODE_RE = re.compile(rf"^[A-Z0-9]{{{CODE_LENGTH}}}$")
_ISSUE_ATTEMPTS = 5
_LOCK_STRIPES = 64


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def generate_link_code() -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))


def normalize_link_code(code: str | None) -> str | None:
    """Uppercase and trim user input; None when it cannot be a valid code."""
    if not code:
        return None
    normalized = code.strip().upper()
    if not _CODE_RE.match(normalized):
        return None
    return normalized


def mask_code(code: str) -> str:
    return f"{code[:2]}****"


class LinkState(str, Enum):
    PENDING = "pending"
    CLAIMED = "claimed"
    EXPIRED = "expired"


@dataclass(frozen=True)
class LinkingCode:
    code: str
    issued_to: int
    issued_at: datetime
    expires_at: datetime
    state: LinkState = LinkState.PENDING
    app_user_id: str | None = None
    claimed_at: datetime | None = None

    def is_expired(self, at: datetime) -> bool:
        if self.state == LinkState.EXPIRED:
            return True
        return self.state == LinkState.PENDING and at > self.expires_at

    def to_dict(self) -> dict[str, object]:
        return {
            "code": self.code,
            "issued_to": self.issued_to,
            "issued_at": self.issued_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "state": self.state.value,
            "app_user_id": self.app_user_id,
            "claimed_at": self.claimed_at.isoformat() if self.claimed_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LinkingCode":
        claimed_at = data.get("claimed_at")
        return cls(
            code=data["code"],
            issued_to=int(data["issued_to"]),
            issued_at=datetime.fromisoformat(data["issued_at"]),
            expires_at=datetime.fromisoformat(data["expires_at"]),
            state=LinkState(data["state"]),
            app_user_id=data.get("app_user_id"),
            claimed_at=datetime.fromisoformat(claimed_at) if claimed_at else None,
        )


@dataclass(frozen=True)
class LinkVerification:
    app_user_id: str
    telegram_user_id: int


@dataclass(frozen=True)
class TelegramProfile:
    display_name: str
    username: str | None = None


@dataclass(frozen=True)
class LinkedAccount:
    app_user_id: str
    telegram_user_id: int
    telegram_profile: TelegramProfile
    linked_at: datetime


def build_linked_account(
    verification: LinkVerification,
    profile: TelegramProfile | None = None,
    *,
    linked_at: datetime | None = None,
) -> LinkedAccount:
    """Build the client-side link record from a successful verification."""
    return LinkedAccount(
        app_user_id=verification.app_user_id,
        telegram_user_id=verification.telegram_user_id,
        telegram_profile=profile or TelegramProfile(display_name="Telegram User"),
        linked_at=linked_at or now_utc(),
    )


class CodeCollision(Exception):
    """The generated code is already present in the store."""


class LinkStore(Protocol):
    def get(self, code: str) -> LinkingCode | None:
        ...

    def add_pending(self, record: LinkingCode) -> LinkingCode | None:
        """Store a pending code, dropping the owner's previous pending code.

        Returns the superseded record, if any. Raises CodeCollision when the
        code is already known to the store.
        """
        ...

    def claim(self, code: str, app_user_id: str, at: datetime) -> LinkingCode | None:
        """Pending -> Claimed. Returns None unless this call made the transition."""
        ...

    def mark_expired(self, code: str) -> None:
        ...

    def remove_user(self, telegram_user_id: int) -> int:
        ...


class InMemoryLinkStore:
    """Process-local store with striped per-key locks.

    Lock order is always user stripe, then code stripe; at most one code
    stripe is held at a time.
    """

    def __init__(self, *, retention: timedelta = DEFAULT_RETENTION):
        self._retention = retention
        self._records: dict[str, LinkingCode] = {}
        self._pending_by_user: dict[int, str] = {}
        self._codes_by_user: dict[int, set[str]] = {}
        self._user_locks = [threading.RLock() for _ in range(_LOCK_STRIPES)]
        self._code_locks = [threading.RLock() for _ in range(_LOCK_STRIPES)]

    @staticmethod
    def _stripe(key: object) -> int:
        return zlib.crc32(str(key).encode("utf-8")) % _LOCK_STRIPES

    @contextmanager
    def _user_lock(self, telegram_user_id: int) -> Iterator[None]:
        with self._user_locks[self._stripe(telegram_user_id)]:
            yield

    @contextmanager
    def _code_lock(self, code: str) -> Iterator[None]:
        with self._code_locks[self._stripe(code)]:
            yield

    def get(self, code: str) -> LinkingCode | None:
        with self._code_lock(code):
            return self._records.get(code)

    def add_pending(self, record: LinkingCode) -> LinkingCode | None:
        self._purge(record.issued_at)
        superseded = None
        with self._user_lock(record.issued_to):
            with self._code_lock(record.code):
                if record.code in self._records:
                    raise CodeCollision(record.code)

            previous_code = self._pending_by_user.get(record.issued_to)
            if previous_code:
                with self._code_lock(previous_code):
                    previous = self._records.get(previous_code)
                    if previous is not None and previous.state == LinkState.PENDING:
                        del self._records[previous_code]
                        self._forget_code(record.issued_to, previous_code)
                        superseded = previous

            with self._code_lock(record.code):
                if record.code in self._records:
                    raise CodeCollision(record.code)
                self._records[record.code] = record
            self._pending_by_user[record.issued_to] = record.code
            self._codes_by_user.setdefault(record.issued_to, set()).add(record.code)
        return superseded

    def claim(self, code: str, app_user_id: str, at: datetime) -> LinkingCode | None:
        with self._code_lock(code):
            current = self._records.get(code)
            if current is None or current.state != LinkState.PENDING or at > current.expires_at:
                return None
            claimed = replace(current, state=LinkState.CLAIMED, app_user_id=app_user_id, claimed_at=at)
            self._records[code] = claimed
            return claimed

    def mark_expired(self, code: str) -> None:
        with self._code_lock(code):
            current = self._records.get(code)
            if current is not None and current.state == LinkState.PENDING:
                self._records[code] = replace(current, state=LinkState.EXPIRED)

    def remove_user(self, telegram_user_id: int) -> int:
        removed = 0
        with self._user_lock(telegram_user_id):
            for code in self._codes_by_user.pop(telegram_user_id, set()):
                with self._code_lock(code):
                    if self._records.pop(code, None) is not None:
                        removed += 1
            self._pending_by_user.pop(telegram_user_id, None)
        return removed

    def _forget_code(self, telegram_user_id: int, code: str) -> None:
        """Caller holds the user stripe."""
        codes = self._codes_by_user.get(telegram_user_id)
        if codes is None:
            return
        codes.discard(code)
        if not codes:
            del self._codes_by_user[telegram_user_id]

    def _purge(self, at: datetime) -> None:
        cutoff = at - self._retention
        stale = [code for code, rec in list(self._records.items()) if rec.expires_at < cutoff]
        for code in stale:
            with self._code_lock(code):
                record = self._records.get(code)
                if record is None or record.expires_at >= cutoff:
                    continue
                del self._records[code]
            with self._user_lock(record.issued_to):
                self._forget_code(record.issued_to, code)
                if self._pending_by_user.get(record.issued_to) == code:
                    del self._pending_by_user[record.issued_to]


class RedisLinkStore:
    """Redis-backed store; state transitions use WATCH/MULTI transactions."""

    def __init__(
        self,
        client: redis.Redis,
        *,
        ttl: timedelta = DEFAULT_TTL,
        retention: timedelta = DEFAULT_RETENTION,
        prefix: str = "link",
    ):
        self._client = client
        self._prefix = prefix
        # Keys outlive the TTL so claimed/expired codes stay distinguishable from unknown ones.
        self._key_ttl_seconds = int((ttl + retention).total_seconds())

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "RedisLinkStore":
        return cls(redis.from_url(url, decode_responses=True), **kwargs)

    def _code_key(self, code: str) -> str:
        return f"{self._prefix}:code:{code}"

    def _pending_key(self, telegram_user_id: int) -> str:
        return f"{self._prefix}:user:{telegram_user_id}:pending"

    def _codes_key(self, telegram_user_id: int) -> str:
        return f"{self._prefix}:user:{telegram_user_id}:codes"

    @staticmethod
    def _decode(raw: str | None) -> LinkingCode | None:
        if raw is None:
            return None
        return LinkingCode.from_dict(json.loads(raw))

    @staticmethod
    def _encode(record: LinkingCode) -> str:
        return json.dumps(record.to_dict())

    def get(self, code: str) -> LinkingCode | None:
        return self._decode(self._client.get(self._code_key(code)))

    def add_pending(self, record: LinkingCode) -> LinkingCode | None:
        code_key = self._code_key(record.code)
        pending_key = self._pending_key(record.issued_to)
        codes_key = self._codes_key(record.issued_to)

        def _add(pipe) -> LinkingCode | None:
            if pipe.exists(code_key):
                raise CodeCollision(record.code)
            previous = None
            previous_code = pipe.get(pending_key)
            if previous_code:
                pipe.watch(self._code_key(previous_code))
                previous = self._decode(pipe.get(self._code_key(previous_code)))

            pipe.multi()
            superseded = None
            if previous is not None and previous.state == LinkState.PENDING:
                pipe.delete(self._code_key(previous.code))
                pipe.srem(codes_key, previous.code)
                superseded = previous
            pipe.set(code_key, self._encode(record), ex=self._key_ttl_seconds)
            pipe.set(pending_key, record.code, ex=self._key_ttl_seconds)
            pipe.sadd(codes_key, record.code)
            pipe.expire(codes_key, self._key_ttl_seconds)
            return superseded

        return self._client.transaction(_add, code_key, pending_key, value_from_callable=True)

    def claim(self, code: str, app_user_id: str, at: datetime) -> LinkingCode | None:
        code_key = self._code_key(code)

        def _claim(pipe) -> LinkingCode | None:
            current = self._decode(pipe.get(code_key))
            if current is None or current.state != LinkState.PENDING or at > current.expires_at:
                return None
            claimed = replace(current, state=LinkState.CLAIMED, app_user_id=app_user_id, claimed_at=at)
            pipe.multi()
            pipe.set(code_key, self._encode(claimed), keepttl=True)
            return claimed

        return self._client.transaction(_claim, code_key, value_from_callable=True)

    def mark_expired(self, code: str) -> None:
        code_key = self._code_key(code)

        def _expire(pipe) -> None:
            current = self._decode(pipe.get(code_key))
            if current is None or current.state != LinkState.PENDING:
                return
            pipe.multi()
            pipe.set(code_key, self._encode(replace(current, state=LinkState.EXPIRED)), keepttl=True)

        self._client.transaction(_expire, code_key)

    def remove_user(self, telegram_user_id: int) -> int:
        codes_key = self._codes_key(telegram_user_id)
        pending_key = self._pending_key(telegram_user_id)

        def _remove(pipe) -> list[str]:
            codes = sorted(pipe.smembers(codes_key))
            pipe.multi()
            for code in codes:
                pipe.delete(self._code_key(code))
            pipe.delete(codes_key, pending_key)
            return codes

        removed = self._client.transaction(_remove, codes_key, pending_key, value_from_callable=True)
        return len(removed)


class LinkingRegistry:
    """Issues, verifies and revokes linking codes on top of a LinkStore."""

    def __init__(
        self,
        store: LinkStore,
        *,
        ttl: timedelta = DEFAULT_TTL,
        clock: Callable[[], datetime] = now_utc,
        code_factory: Callable[[], str] = generate_link_code,
    ):
        self._store = store
        self._ttl = ttl
        self._clock = clock
        self._code_factory = code_factory

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def issue(self, telegram_user_id: int) -> LinkingCode:
        """Issue a fresh code for the user, superseding any pending one."""
        issued_at = self._clock()
        for attempt in range(1, _ISSUE_ATTEMPTS + 1):
            record = LinkingCode(
                code=self._code_factory(),
                issued_to=int(telegram_user_id),
                issued_at=issued_at,
                expires_at=issued_at + self._ttl,
            )
            try:
                superseded = self._store.add_pending(record)
            except CodeCollision:
                logger.warning(f"⚠️ Linking code collision (attempt {attempt}/{_ISSUE_ATTEMPTS})")
                continue

            if superseded is not None:
                logger.info(
                    f"🔁 Superseded linking code {mask_code(superseded.code)} for Telegram user {telegram_user_id}"
                )
            logger.info(
                f"✅ Issued linking code {mask_code(record.code)} for Telegram user {telegram_user_id}, "
                f"expires at {record.expires_at.isoformat()}"
            )
            return record

        logger.error(f"❌ Could not issue a unique linking code for Telegram user {telegram_user_id}")
        raise LinkCodeUnavailable()

    def verify(self, code: str, app_user_id: str | int) -> LinkVerification:
        """Claim a code for an application user. Succeeds at most once per code."""
        normalized = normalize_link_code(code)
        if normalized is None:
            raise LinkCodeNotFound()

        now = self._clock()
        record = self._store.get(normalized)
        if record is None:
            logger.warning(f"❌ Unknown linking code: {mask_code(normalized)}")
            raise LinkCodeNotFound()
        if record.state == LinkState.CLAIMED:
            logger.warning(f"❌ Linking code already claimed: {mask_code(normalized)}")
            raise LinkCodeAlreadyClaimed()
        if record.is_expired(now):
            self._store.mark_expired(normalized)
            logger.warning(f"❌ Expired linking code: {mask_code(normalized)}")
            raise LinkCodeExpired()

        claimed = self._store.claim(normalized, str(app_user_id), now)
        if claimed is None:
            # Lost a race: another verify claimed it, or it was revoked/expired meanwhile.
            current = self._store.get(normalized)
            if current is None:
                raise LinkCodeNotFound()
            if current.state == LinkState.CLAIMED:
                raise LinkCodeAlreadyClaimed()
            raise LinkCodeExpired()

        logger.info(f"✅ Linked Telegram user {claimed.issued_to} to app user {claimed.app_user_id}")
        return LinkVerification(app_user_id=str(app_user_id), telegram_user_id=claimed.issued_to)

    def revoke(self, telegram_user_id: int) -> int:
        """Drop every code (pending or claimed) held by the user."""
        removed = self._store.remove_user(int(telegram_user_id))
        logger.info(f"✅ Revoked {removed} linking code(s) for Telegram user {telegram_user_id}")
        return removed
