import os

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from unittest.mock import Mock  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import event  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from botlocal import models  # noqa: E402,F401
from botlocal.database import Base, build_engine  # noqa: E402
from botlocal.models import Business, PlanTier  # noqa: E402


@pytest.fixture
def db_session():
    """Mock database session."""
    return Mock()


@pytest.fixture
def engine(tmp_path):
    """File-backed SQLite so every session gets its own connection."""
    engine = build_engine(f"sqlite:///{tmp_path / 'botlocal-test.db'}")

    @event.listens_for(engine, "connect")
    def _wal(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    # expire_on_commit=False: committed objects stay readable without reopening a read transaction
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def make_business(db):
    counter = {"n": 0}

    def _make(**overrides) -> Business:
        counter["n"] += 1
        n = counter["n"]
        values = {
            "name": f"Test Business {n}",
            "industry": "General",
            "bot_personality": "Friendly and professional",
            "telegram_bot_token": f"{100000 + n}:test-token-{n}",
            "whatsapp_phone": f"+1555000{n:04d}",
            "plan": PlanTier.STARTER,
            "message_count": 0,
        }
        values.update(overrides)
        business = Business(**values)
        db.add(business)
        db.commit()
        return business

    return _make
