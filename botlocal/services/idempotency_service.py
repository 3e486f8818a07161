"""Two-tier de-duplication of inbound chat updates.

Tier 1 is an in-process TTL cache of recently seen event keys. Tier 2 is the
processed_updates table, authoritative across restarts and instances. A cache hit
can only say "seen"; processing is authorised by tier 2 alone.
"""

import hashlib
import threading
import time
from collections import OrderedDict
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from botlocal.logging_config import get_logger
from botlocal.models import ProcessedUpdate

logger = get_logger("idempotency_service")


class GuardUnavailableError(Exception):
    """Durable dedup store could not be consulted; the event must not be processed."""


def telegram_event_key(bot_token: str, update_id: int) -> str:
    token_hash = hashlib.sha256(bot_token.encode("utf-8")).hexdigest()[:16]
    return f"telegram:{token_hash}:{update_id}"


def whatsapp_event_key(message_sid: str) -> str:
    return f"whatsapp:{message_sid}"


class RecentEventCache:
    """Bounded TTL set of event keys, oldest evicted first."""

    def __init__(self, max_size: int = 10000, ttl_seconds: float = 3600, clock=time.monotonic):
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: "OrderedDict[str, float]" = OrderedDict()
        self._lock = threading.Lock()

    def __contains__(self, key: str) -> bool:
        now = self._clock()
        with self._lock:
            expires_at = self._entries.get(key)
            if expires_at is None:
                return False
            if expires_at <= now:
                del self._entries[key]
                return False
            return True

    def add(self, key: str) -> None:
        now = self._clock()
        with self._lock:
            self._entries.pop(key, None)
            self._entries[key] = now + self.ttl_seconds
            self._evict(now)

    def _evict(self, now: float) -> None:
        expired = [key for key, expires_at in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]
        while len(self._entries) > self.max_size:
            self._entries.popitem(last=False)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class IdempotencyGuard:
    def __init__(self, cache: Optional[RecentEventCache] = None):
        self.cache = cache or RecentEventCache()

    def should_process(self, db: Session, event_key: str) -> bool:
        """Return False when the event was already processed. Raises GuardUnavailableError."""
        if event_key in self.cache:
            logger.info("Duplicate event (cache)", extra={"context": {"event_key": event_key}})
            return False

        try:
            existing = db.get(ProcessedUpdate, event_key)
        except SQLAlchemyError as e:
            logger.error(
                "Dedup store unavailable",
                extra={"context": {"event_key": event_key, "error": str(e)}},
            )
            raise GuardUnavailableError(str(e)) from e

        if existing is not None:
            self.cache.add(event_key)
            logger.info("Duplicate event (db)", extra={"context": {"event_key": event_key}})
            return False
        return True

    def record(self, db: Session, event_key: str, business_id=None) -> bool:
        """Insert the durable record inside the caller's transaction.

        Returns False when a concurrent delivery recorded the key first.
        """
        try:
            with db.begin_nested():
                db.add(ProcessedUpdate(event_key=event_key, business_id=business_id))
        except IntegrityError:
            logger.info("Duplicate event (lost insert race)", extra={"context": {"event_key": event_key}})
            self.cache.add(event_key)
            return False
        return True

    def remember(self, event_key: str) -> None:
        """Mark the key in tier 1 once the caller's transaction committed."""
        self.cache.add(event_key)
