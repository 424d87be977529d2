"""Checkout session store.

A checkout session groups repeated payment requests that represent the same
registration attempt. The store gives each session key:

- a critical section (``guard``) so lock-check-then-set and intent creation
  for one key never interleave
- a ``locked`` flag covering the window between "intent issued" and
  "payment confirmed or abandoned"
- an attempt counter and the current payment intent reference

Sessions expire ``ttl_seconds`` after creation whether or not they are locked.
"""

from __future__ import annotations

import asyncio
import copy
import hashlib
import json
import logging
import time
import weakref
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import AsyncIterator, Callable, Dict, Optional

import redis.asyncio as aioredis
from redis.exceptions import LockError

from rh_checkout.errors import SessionLockedError
from rh_checkout.models.checkout_state import CheckoutState, can_transition

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 15 * 60
DEFAULT_BUCKET_SECONDS = 5 * 60
DEFAULT_LOCK_WAIT_SECONDS = 10.0


class IntentStatus(str, Enum):
    CREATED = "created"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class PaymentIntentRecord:
    """Local view of the gateway intent issued for a session"""

    external_intent_id: str
    client_secret: str
    amount: int
    status: IntentStatus = IntentStatus.CREATED
    created_at: float = field(default_factory=time.time)

    @property
    def is_live(self) -> bool:
        return self.status == IntentStatus.CREATED

    @property
    def is_terminal(self) -> bool:
        return self.status in (IntentStatus.SUCCEEDED, IntentStatus.CANCELLED)


@dataclass
class RegistrationSession:
    session_key: str
    created_at: float
    locked: bool = False
    attempts: int = 0
    # Bumped whenever an intent is abandoned so the next one gets a fresh
    # idempotency key
    generation: int = 0
    state: CheckoutState = CheckoutState.COLLECTING
    intent: Optional[PaymentIntentRecord] = None
    event_id: Optional[int] = None
    option: Optional[str] = None
    email: Optional[str] = None

    def advance(self, target: CheckoutState) -> None:
        if self.state == target:
            return
        if not can_transition(self.state, target):
            raise ValueError(
                f"Illegal checkout transition {self.state.value} -> {target.value} "
                f"for session {self.session_key}"
            )
        logger.debug(
            f"Session {self.session_key}: {self.state.value} -> {target.value}"
        )
        self.state = target

    def is_expired(self, now: float, ttl_seconds: int) -> bool:
        return now - self.created_at > ttl_seconds

    def to_dict(self) -> dict:
        data = asdict(self)
        data["state"] = self.state.value
        if self.intent is not None:
            data["intent"]["status"] = self.intent.status.value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "RegistrationSession":
        data = dict(data)
        intent = data.pop("intent", None)
        session = cls(**data)
        session.state = CheckoutState(session.state)
        if intent is not None:
            session.intent = PaymentIntentRecord(
                external_intent_id=intent["external_intent_id"],
                client_secret=intent["client_secret"],
                amount=intent["amount"],
                status=IntentStatus(intent["status"]),
                created_at=intent["created_at"],
            )
        return session


def derive_session_key(
    email: str,
    event_id: int,
    option: str,
    now: Optional[float] = None,
    bucket_seconds: int = DEFAULT_BUCKET_SECONDS,
    checkout_token: Optional[str] = None,
) -> str:
    """Derive the key that makes repeated submissions collide.

    Without a client checkout token the key includes a time bucket, so a
    double-click lands on the same key while a retry after the bucket rolls
    over starts a fresh session.
    """
    if checkout_token:
        discriminator = f"token:{checkout_token.strip()}"
    else:
        now = time.time() if now is None else now
        discriminator = f"bucket:{int(now // bucket_seconds)}"
    data = f"{email.strip().lower()}|{event_id}|{option}|{discriminator}"
    return hashlib.sha256(data.encode()).hexdigest()[:32]


class SessionStore(ABC):
    """Keyed store with per-key mutual exclusion"""

    def __init__(
        self,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        lock_wait_seconds: float = DEFAULT_LOCK_WAIT_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.ttl_seconds = ttl_seconds
        self.lock_wait_seconds = lock_wait_seconds
        self.clock = clock

    def new_session(self, session_key: str) -> RegistrationSession:
        return RegistrationSession(session_key=session_key, created_at=self.clock())

    @abstractmethod
    def guard(self, session_key: str):
        """Async context manager serializing work on one session key.

        Raises:
            SessionLockedError: the key stayed busy for ``lock_wait_seconds``
        """

    @abstractmethod
    async def get(self, session_key: str) -> Optional[RegistrationSession]:
        """Return the session, or None if absent or expired"""

    @abstractmethod
    async def save(self, session: RegistrationSession) -> None:
        pass

    @abstractmethod
    async def delete(self, session_key: str) -> None:
        pass

    @abstractmethod
    async def stats(self) -> Dict[str, object]:
        pass

    async def try_lock(self, session_key: str) -> bool:
        """Atomically lock the session unless it is already locked"""
        async with self.guard(session_key):
            session = await self.get(session_key) or self.new_session(session_key)
            if session.locked:
                return False
            session.locked = True
            await self.save(session)
            return True

    def _timestamp(self) -> str:
        return datetime.now(timezone.utc).isoformat()


class InMemorySessionStore(SessionStore):
    """Process-local store. Correct only for a single-instance deployment."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._sessions: Dict[str, RegistrationSession] = {}
        # Locks live as long as someone holds or waits on them
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    @asynccontextmanager
    async def guard(self, session_key: str) -> AsyncIterator[None]:
        lock = self._locks.get(session_key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_key] = lock
        try:
            await asyncio.wait_for(lock.acquire(), timeout=self.lock_wait_seconds)
        except asyncio.TimeoutError:
            logger.warning(f"Timed out waiting for session {session_key}")
            raise SessionLockedError(session_key=session_key)
        try:
            yield
        finally:
            lock.release()

    async def get(self, session_key: str) -> Optional[RegistrationSession]:
        session = self._sessions.get(session_key)
        if session is None:
            return None
        if session.is_expired(self.clock(), self.ttl_seconds):
            del self._sessions[session_key]
            logger.info(f"Evicted expired session {session_key}")
            return None
        return copy.deepcopy(session)

    async def save(self, session: RegistrationSession) -> None:
        self.evict_expired()
        self._sessions[session.session_key] = copy.deepcopy(session)

    async def delete(self, session_key: str) -> None:
        self._sessions.pop(session_key, None)

    def evict_expired(self) -> int:
        now = self.clock()
        expired = [
            key
            for key, session in self._sessions.items()
            if session.is_expired(now, self.ttl_seconds)
        ]
        for key in expired:
            del self._sessions[key]
        if expired:
            logger.info(f"Cleaned up {len(expired)} expired checkout sessions")
        return len(expired)

    async def stats(self) -> Dict[str, object]:
        self.evict_expired()
        sessions = list(self._sessions.values())
        return {
            "backend": "memory",
            "activeSessions": len(sessions),
            "lockedSessions": sum(1 for s in sessions if s.locked),
            "paymentIntents": sum(1 for s in sessions if s.intent is not None),
            "timestamp": self._timestamp(),
        }


class RedisSessionStore(SessionStore):
    """Shared store for multi-instance deployments.

    Session documents expire through Redis TTLs; the per-key critical section
    is a redis-py ``Lock`` so instances serialize on the same key.
    """

    KEY_PREFIX = "checkout_session:"
    LOCK_PREFIX = "checkout_session_lock:"

    def __init__(self, redis_client: aioredis.Redis, lock_timeout: float = 30.0, **kwargs):
        super().__init__(**kwargs)
        self.redis_client = redis_client
        # Upper bound on how long a crashed holder can block a key
        self.lock_timeout = lock_timeout

    def _state_key(self, session_key: str) -> str:
        return f"{self.KEY_PREFIX}{session_key}"

    @asynccontextmanager
    async def guard(self, session_key: str) -> AsyncIterator[None]:
        lock = self.redis_client.lock(
            f"{self.LOCK_PREFIX}{session_key}",
            timeout=self.lock_timeout,
            blocking_timeout=self.lock_wait_seconds,
        )
        acquired = await lock.acquire()
        if not acquired:
            logger.warning(f"Timed out waiting for session {session_key}")
            raise SessionLockedError(session_key=session_key)
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError:
                logger.warning(
                    f"Session lock for {session_key} expired before release"
                )

    async def get(self, session_key: str) -> Optional[RegistrationSession]:
        raw = await self.redis_client.get(self._state_key(session_key))
        if not raw:
            return None
        try:
            session = RegistrationSession.from_dict(json.loads(raw))
        except (json.JSONDecodeError, KeyError, TypeError, ValueError):
            logger.error(f"Corrupted checkout session {session_key}, discarding")
            await self.delete(session_key)
            return None
        if session.is_expired(self.clock(), self.ttl_seconds):
            await self.delete(session_key)
            return None
        return session

    async def save(self, session: RegistrationSession) -> None:
        remaining = self.ttl_seconds - (self.clock() - session.created_at)
        ttl = max(int(remaining), 1)
        await self.redis_client.setex(
            self._state_key(session.session_key), ttl, json.dumps(session.to_dict())
        )

    async def delete(self, session_key: str) -> None:
        await self.redis_client.delete(self._state_key(session_key))

    async def stats(self) -> Dict[str, object]:
        active = locked = intents = 0
        async for key in self.redis_client.scan_iter(match=f"{self.KEY_PREFIX}*"):
            raw = await self.redis_client.get(key)
            if not raw:
                continue
            active += 1
            data = json.loads(raw)
            locked += 1 if data.get("locked") else 0
            intents += 1 if data.get("intent") else 0
        return {
            "backend": "redis",
            "activeSessions": active,
            "lockedSessions": locked,
            "paymentIntents": intents,
            "timestamp": self._timestamp(),
        }
