import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, Hashable, Iterator, List, Sequence, Tuple
from uuid import UUID

from pydantic import BaseModel, ConfigDict, ValidationError
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from botlocal.logging_config import get_logger
from botlocal.models import MESSAGE_SCHEMA_VERSION, Conversation, ConversationMessage, MessageRole

logger = get_logger("conversation_service")


class ConversationSchemaError(Exception):
    """A stored message row does not match the current message schema."""


class StoredMessage(BaseModel):
    model_config = ConfigDict(from_attributes=True, extra="ignore")

    seq: int
    role: MessageRole
    content: str
    schema_version: int


class _RefLock:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.Lock()
        self.users = 0


_locks: Dict[Hashable, _RefLock] = {}
_locks_guard = threading.Lock()


@contextmanager
def conversation_lock(key: Hashable) -> Iterator[None]:
    """Serialise writers to one conversation within this process.

    Held for the whole turn, across commit. Cross-process ordering comes from the
    row lock taken by the last_seq reservation. An entry lives only while some
    thread holds or waits for it.
    """
    with _locks_guard:
        entry = _locks.get(key)
        if entry is None:
            entry = _locks[key] = _RefLock()
        entry.users += 1
    try:
        with entry.lock:
            yield
    finally:
        with _locks_guard:
            entry.users -= 1
            if entry.users == 0:
                del _locks[key]


def active_lock_count() -> int:
    with _locks_guard:
        return len(_locks)


def get_conversation(db: Session, business_id: UUID, customer_id: str) -> Conversation | None:
    return (
        db.query(Conversation)
        .filter(Conversation.business_id == business_id, Conversation.customer_id == customer_id)
        .first()
    )


def get_or_create(db: Session, business_id: UUID, customer_id: str, platform: str) -> Conversation:
    """Find the customer's conversation or create it. Concurrent creators converge on one row."""
    conversation = get_conversation(db, business_id, customer_id)
    if conversation:
        return conversation

    try:
        with db.begin_nested():
            conversation = Conversation(
                business_id=business_id,
                customer_id=customer_id,
                platform=platform,
                ai_enabled=True,
                last_seq=0,
            )
            db.add(conversation)
    except IntegrityError:
        logger.info(
            "Conversation created concurrently, re-reading",
            extra={"context": {"business_id": str(business_id), "customer_id": customer_id}},
        )
        conversation = get_conversation(db, business_id, customer_id)
        if conversation is None:
            raise
    return conversation


def _reserve_seq(db: Session, conversation_id: UUID, count: int) -> int:
    """Bump last_seq by count and return the first reserved number."""
    result = db.execute(
        update(Conversation)
        .where(Conversation.id == conversation_id)
        .values(last_seq=Conversation.last_seq + count, updated_at=datetime.now(timezone.utc))
        .returning(Conversation.last_seq)
        .execution_options(synchronize_session=False)
    )
    last_seq = result.scalar_one()
    return last_seq - count + 1


def append_turn(
    db: Session, conversation_id: UUID, messages: Sequence[Tuple[MessageRole, str]]
) -> List[ConversationMessage]:
    """Append messages with consecutive sequence numbers in the caller's transaction."""
    if not messages:
        return []
    first_seq = _reserve_seq(db, conversation_id, len(messages))
    rows = []
    for offset, (role, content) in enumerate(messages):
        row = ConversationMessage(
            conversation_id=conversation_id,
            seq=first_seq + offset,
            role=MessageRole(role).value,
            content=content,
            schema_version=MESSAGE_SCHEMA_VERSION,
        )
        db.add(row)
        rows.append(row)
    db.flush()
    return rows


def append(db: Session, conversation_id: UUID, role: MessageRole, content: str) -> ConversationMessage:
    return append_turn(db, conversation_id, [(role, content)])[0]


def set_ai_enabled(db: Session, conversation_id: UUID, enabled: bool) -> None:
    db.execute(
        update(Conversation)
        .where(Conversation.id == conversation_id)
        .values(ai_enabled=enabled, updated_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session="fetch")
    )
    db.flush()


def _validate(row: ConversationMessage) -> StoredMessage:
    if row.schema_version != MESSAGE_SCHEMA_VERSION:
        raise ConversationSchemaError(
            f"Message {row.id} has schema_version={row.schema_version}, expected {MESSAGE_SCHEMA_VERSION}"
        )
    try:
        return StoredMessage.model_validate(row)
    except ValidationError as e:
        raise ConversationSchemaError(f"Message {row.id} is malformed: {e}") from e


def recent_messages(db: Session, conversation_id: UUID, limit: int = 5) -> List[StoredMessage]:
    """Last `limit` messages, oldest first."""
    rows = (
        db.query(ConversationMessage)
        .filter(ConversationMessage.conversation_id == conversation_id)
        .order_by(ConversationMessage.seq.desc())
        .limit(limit)
        .all()
    )
    return [_validate(row) for row in reversed(rows)]
