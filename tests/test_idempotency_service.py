import hashlib
from unittest.mock import Mock

import pytest
from sqlalchemy.exc import OperationalError

from botlocal.models import ProcessedUpdate
from botlocal.services.idempotency_service import (
    GuardUnavailableError,
    IdempotencyGuard,
    RecentEventCache,
    telegram_event_key,
    whatsapp_event_key,
)


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestEventKeys:
    def test_telegram_key_hides_token(self):
        token = "123456:secret-bot-token"
        key = telegram_event_key(token, 42)
        expected_hash = hashlib.sha256(token.encode()).hexdigest()[:16]
        assert key == f"telegram:{expected_hash}:42"
        assert "secret" not in key

    def test_same_update_id_on_two_bots_differs(self):
        assert telegram_event_key("1:a", 7) != telegram_event_key("2:b", 7)

    def test_whatsapp_key(self):
        assert whatsapp_event_key("SM0123") == "whatsapp:SM0123"


class TestRecentEventCache:
    def test_remembers_until_ttl(self):
        clock = FakeClock()
        cache = RecentEventCache(max_size=10, ttl_seconds=60, clock=clock)
        cache.add("a")
        assert "a" in cache

        clock.now += 61
        assert "a" not in cache

    def test_evicts_oldest_when_full(self):
        cache = RecentEventCache(max_size=2, ttl_seconds=60, clock=FakeClock())
        cache.add("a")
        cache.add("b")
        cache.add("c")
        assert "a" not in cache
        assert "b" in cache
        assert "c" in cache
        assert len(cache) == 2


class TestIdempotencyGuard:
    def test_new_event_is_processed(self, db):
        guard = IdempotencyGuard()
        assert guard.should_process(db, "telegram:abc:1") is True

    def test_recorded_event_is_duplicate(self, db):
        guard = IdempotencyGuard()
        assert guard.record(db, "telegram:abc:1") is True
        db.commit()

        fresh_guard = IdempotencyGuard()
        assert fresh_guard.should_process(db, "telegram:abc:1") is False
        # durable hit warms the cache
        assert "telegram:abc:1" in fresh_guard.cache

    def test_cache_hit_short_circuits_db(self, db_session):
        guard = IdempotencyGuard()
        guard.remember("whatsapp:SM1")

        assert guard.should_process(db_session, "whatsapp:SM1") is False
        db_session.get.assert_not_called()

    def test_concurrent_deliveries_only_one_records(self, session_factory):
        guard_a = IdempotencyGuard()
        guard_b = IdempotencyGuard()
        session_a = session_factory()
        session_b = session_factory()
        try:
            assert guard_a.should_process(session_a, "whatsapp:SM9") is True
            assert guard_b.should_process(session_b, "whatsapp:SM9") is True
            session_a.rollback()
            session_b.rollback()

            assert guard_a.record(session_a, "whatsapp:SM9") is True
            session_a.commit()
            assert guard_b.record(session_b, "whatsapp:SM9") is False
            session_b.commit()

            assert session_b.query(ProcessedUpdate).count() == 1
        finally:
            session_a.close()
            session_b.close()

    def test_store_failure_fails_closed(self):
        db = Mock()
        db.get.side_effect = OperationalError("SELECT", {}, Exception("connection refused"))
        guard = IdempotencyGuard()

        with pytest.raises(GuardUnavailableError):
            guard.should_process(db, "telegram:abc:2")
        assert "telegram:abc:2" not in guard.cache
