import logging
from datetime import datetime, timezone
from typing import Callable, Generator, List

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import sessionmaker, Session, declarative_base
from sqlalchemy.exc import SQLAlchemyError

from app.config import settings

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when the message store cannot complete an operation."""


def _engine_kwargs(database_url: str) -> dict:
    # check_same_thread=False lets the scheduler thread and FastAPI's
    # threadpool share SQLite connections
    if database_url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


engine = create_engine(
    settings.DATABASE_URL,
    echo=False,
    **_engine_kwargs(settings.DATABASE_URL),
)

# Loaded objects outlive their session (the executor works on them after
# the fetch session has closed)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)

# Base class for SQLAlchemy models
Base = declarative_base()


def utc_now_iso() -> str:
    """Server time as ISO-8601 UTC with microseconds (sorts lexicographically)."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def init_db() -> None:
    """
    Initialize the database by creating all tables.
    Called during application startup.
    """
    logger.debug(f"Initializing database with URL: {settings.DATABASE_URL}")
    try:
        # Import models to register them with Base.metadata
        from app.models import Message  # noqa: F401

        Base.metadata.create_all(bind=engine)
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


def get_db() -> Generator[Session, None, None]:
    """
    Dependency to get database session.
    Yields a session and ensures it's closed after use.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def check_db_health() -> bool:
    """
    Check if the database is reachable and schema is applied.

    Returns:
        True if DB is healthy and the messages table exists, False otherwise.
    """
    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
        if not inspect(engine).has_table("messages"):
            logger.error("Database schema not applied: 'messages' table not found")
            return False
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False


# =============================================================================
# Message Repository Functions
# =============================================================================

def create_message(db: Session, to_msisdn: str, content: str):
    """
    Persist a new unsent message.

    Args:
        db: Database session
        to_msisdn: Destination phone number
        content: Already validated and truncated message content

    Returns:
        The stored Message with its assigned id

    Raises:
        StorageError: if the insert fails
    """
    from app.models import Message

    logger.info(f"Creating message: to={to_msisdn}, length={len(content)}")

    now = utc_now_iso()
    message = Message(
        to_msisdn=to_msisdn,
        content=content,
        sent=False,
        delivery_id="",
        created_at=now,
        updated_at=now,
    )
    try:
        db.add(message)
        db.commit()
        db.refresh(message)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to create message to {to_msisdn}: {e}")
        raise StorageError("failed to create message") from e

    logger.info(f"Message created successfully: id={message.id}")
    return message


def get_unsent_messages(db: Session, limit: int) -> list:
    """
    Retrieve up to `limit` unsent messages, oldest first.

    Ordering is created_at ASC, id ASC so older messages are never starved
    by a bounded batch size.
    """
    from app.models import Message

    try:
        messages = (
            db.query(Message)
            .filter(Message.sent.is_(False))
            .order_by(Message.created_at.asc(), Message.id.asc())
            .limit(limit)
            .all()
        )
    except SQLAlchemyError as e:
        logger.error(f"Failed to fetch unsent messages: {e}")
        raise StorageError("failed to fetch unsent messages") from e

    logger.debug(f"Fetched {len(messages)} unsent messages (limit={limit})")
    return messages


def mark_message_sent(db: Session, message_id: int, delivery_id: str) -> None:
    """
    Flag a message as sent and record its delivery identifier.

    Raises:
        ValueError: if delivery_id is empty
        StorageError: if the update fails or the message does not exist
    """
    from app.models import Message

    if not delivery_id:
        raise ValueError("delivery_id must not be empty")

    now = utc_now_iso()
    try:
        updated = (
            db.query(Message)
            .filter(Message.id == message_id)
            .update(
                {
                    Message.sent: True,
                    Message.delivery_id: delivery_id,
                    Message.sent_at: now,
                    Message.updated_at: now,
                },
                synchronize_session=False,
            )
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to mark message {message_id} as sent: {e}")
        raise StorageError(f"failed to mark message {message_id} as sent") from e

    if updated == 0:
        raise StorageError(f"message {message_id} not found")
    logger.info(f"Message marked sent: id={message_id}, delivery_id={delivery_id}")


def get_sent_messages(db: Session) -> list:
    """Retrieve all sent messages, most recently sent first."""
    from app.models import Message

    try:
        return (
            db.query(Message)
            .filter(Message.sent.is_(True))
            .order_by(Message.sent_at.desc(), Message.id.desc())
            .all()
        )
    except SQLAlchemyError as e:
        logger.error(f"Failed to list sent messages: {e}")
        raise StorageError("failed to list sent messages") from e


class MessageStore:
    """
    Session-per-call facade over the repository functions.

    Each call opens and closes its own session, so one store can be shared
    by the scheduler thread and request handlers.
    """

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self._session_factory = session_factory

    def create(self, to_msisdn: str, content: str):
        with self._session_factory() as db:
            return create_message(db, to_msisdn=to_msisdn, content=content)

    def fetch_unsent(self, limit: int) -> List:
        with self._session_factory() as db:
            return get_unsent_messages(db, limit)

    def mark_sent(self, message_id: int, delivery_id: str) -> None:
        with self._session_factory() as db:
            mark_message_sent(db, message_id, delivery_id)

    def list_sent(self) -> List:
        with self._session_factory() as db:
            return get_sent_messages(db)
