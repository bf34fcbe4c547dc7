import logging
from datetime import datetime, timezone
from typing import Generator, Optional

from sqlalchemy import create_engine, event, inspect, text
from sqlalchemy.orm import sessionmaker, Session, declarative_base, aliased
from sqlalchemy.exc import IntegrityError

from messagely.config import settings
from messagely.errors import ValidationError, ConflictError, NotFoundError
from messagely.security import hash_password, verify_password

logger = logging.getLogger(__name__)

IS_SQLITE = settings.DATABASE_URL.startswith("sqlite")

# check_same_thread=False is required for SQLite to work with FastAPI's threadpool
engine = create_engine(
    settings.DATABASE_URL,
    connect_args={"check_same_thread": False} if IS_SQLITE else {},
    echo=False,
)

if IS_SQLITE:
    @event.listens_for(engine, "connect")
    def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
        # SQLite ships with foreign key enforcement off
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

# Create SessionLocal class for creating database sessions
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for SQLAlchemy models
Base = declarative_base()

REQUIRED_TABLES = ("users", "messages")


def utcnow() -> datetime:
    """Current time as a naive UTC datetime (the form stored in DateTime columns)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def init_db() -> None:
    """
    Initialize the database by creating all tables.
    Called during application startup.
    """
    logger.debug(f"Initializing database with URL: {settings.DATABASE_URL}")
    try:
        # Import models to register them with Base.metadata
        from messagely.models import User, Message  # noqa: F401

        logger.debug("Creating database tables...")
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
        True if DB is healthy and both tables exist, False otherwise.
    """
    logger.debug("Checking database health...")
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
            logger.debug("Database connectivity OK")

            inspector = inspect(conn)
            for table in REQUIRED_TABLES:
                if not inspector.has_table(table):
                    logger.error(f"Database schema not applied: '{table}' table not found")
                    return False
        logger.debug("Database health check passed")
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False


def _is_unique_violation(error: IntegrityError) -> bool:
    """Tell a duplicate-key failure apart from other integrity failures."""
    orig = error.orig
    # PostgreSQL reports SQLSTATE 23505, SQLite reports it in the message
    if getattr(orig, "pgcode", None) == "23505" or getattr(orig, "sqlstate", None) == "23505":
        return True
    return "UNIQUE constraint failed" in str(orig)


def _user_summary(user) -> dict:
    return {
        "username": user.username,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "phone": user.phone,
    }


# =============================================================================
# User Repository Functions
# =============================================================================

def register_user(
    db: Session,
    username: Optional[str],
    password: Optional[str],
    first_name: Optional[str],
    last_name: Optional[str],
    phone: Optional[str],
) -> dict:
    """
    Register a new user.

    The password is stored only as a salted hash. join_at and
    last_login_at are both set to the current time.

    Returns:
        {username, password (hash), first_name, last_name, phone, join_at, last_login_at}

    Raises:
        ValidationError: any field is missing or empty
        ConflictError: the username is already taken
    """
    from messagely.models import User

    if not all((username, password, first_name, last_name, phone)):
        logger.info("Registration rejected: missing required data")
        raise ValidationError("Missing required data")

    logger.info(f"Registering user: {username}")

    now = utcnow()
    user = User(
        username=username,
        password=hash_password(password),
        first_name=first_name,
        last_name=last_name,
        phone=phone,
        join_at=now,
        last_login_at=now,
    )

    try:
        db.add(user)
        db.commit()
    except IntegrityError as e:
        db.rollback()
        if _is_unique_violation(e):
            logger.info(f"Duplicate username: {username}")
            raise ConflictError("Username already taken. Please try another one")
        raise

    logger.info(f"User registered: {username}")
    return {
        **_user_summary(user),
        "password": user.password,
        "join_at": user.join_at,
        "last_login_at": user.last_login_at,
    }


def authenticate_user(db: Session, username: Optional[str], password: Optional[str]) -> bool:
    """
    Check a username/password pair.

    Returns False (never raises) for empty input or an unknown username.
    """
    from messagely.models import User

    if not username or not password:
        return False

    hashed = db.query(User.password).filter(User.username == username).scalar()
    if hashed is None:
        logger.info(f"Authentication failed: unknown user {username}")
        return False

    is_valid = verify_password(password, hashed)
    logger.info(f"Authentication for {username}: {'valid' if is_valid else 'invalid'}")
    return is_valid


def update_login_timestamp(db: Session, username: str) -> None:
    """Set last_login_at to now. Unknown usernames are silently ignored."""
    from messagely.models import User

    db.query(User).filter(User.username == username).update(
        {User.last_login_at: utcnow()}, synchronize_session=False
    )
    db.commit()
    logger.debug(f"Updated last_login_at for {username}")


def get_all_users(db: Session) -> list:
    """
    Basic info on every user, ordered by username.

    Returns:
        [{username, first_name, last_name, phone}, ...]
    """
    from messagely.models import User

    users = db.query(User).order_by(User.username.asc()).all()
    logger.info(f"Retrieved {len(users)} users")
    return [_user_summary(u) for u in users]


def get_user(db: Session, username: str) -> dict:
    """
    Get a user by username.

    Returns:
        {username, first_name, last_name, phone, join_at, last_login_at}

    Raises:
        NotFoundError: no such user
    """
    from messagely.models import User

    user = db.query(User).filter(User.username == username).first()
    if user is None:
        logger.info(f"User not found: {username}")
        raise NotFoundError("Could not find user")

    return {
        **_user_summary(user),
        "join_at": user.join_at,
        "last_login_at": user.last_login_at,
    }


def _messages_for(db: Session, username: str, direction: str) -> list:
    """
    Messages sent by (direction="from") or to (direction="to") a user,
    with the other party's profile embedded.

    An empty result raises NotFoundError whether or not the user exists.
    """
    from messagely.models import Message, User

    if direction == "from":
        own_column, other_column, other_key = Message.from_username, Message.to_username, "to_user"
    else:
        own_column, other_column, other_key = Message.to_username, Message.from_username, "from_user"

    rows = (
        db.query(Message, User)
        .join(User, User.username == other_column)
        .filter(own_column == username)
        .order_by(Message.id.asc())
        .all()
    )
    logger.info(f"Retrieved {len(rows)} messages {direction} {username}")

    if not rows:
        raise NotFoundError(f"Could not find messages {direction} this user")

    return [
        {
            "id": message.id,
            other_key: _user_summary(other),
            "body": message.body,
            "sent_at": message.sent_at,
            "read_at": message.read_at,
        }
        for message, other in rows
    ]


def get_messages_from(db: Session, username: str) -> list:
    """
    Messages sent by a user.

    Returns:
        [{id, to_user, body, sent_at, read_at}, ...]
    """
    return _messages_for(db, username, "from")


def get_messages_to(db: Session, username: str) -> list:
    """
    Messages received by a user.

    Returns:
        [{id, from_user, body, sent_at, read_at}, ...]
    """
    return _messages_for(db, username, "to")


# =============================================================================
# Message Repository Functions
# =============================================================================

def create_message(db: Session, from_username: str, to_username: str, body: str) -> dict:
    """
    Store a new message with sent_at = now and read_at = NULL.

    Unknown usernames are not pre-checked; the foreign key violation
    (sqlalchemy IntegrityError) propagates to the caller.

    Returns:
        {id, from_username, to_username, body, sent_at}
    """
    from messagely.models import Message

    logger.info(f"Creating message: from={from_username}, to={to_username}")

    message = Message(
        from_username=from_username,
        to_username=to_username,
        body=body,
        sent_at=utcnow(),
    )

    try:
        db.add(message)
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to create message from {from_username} to {to_username}: {e}")
        raise

    logger.info(f"Message created successfully: {message.id}")
    return {
        "id": message.id,
        "from_username": message.from_username,
        "to_username": message.to_username,
        "body": message.body,
        "sent_at": message.sent_at,
    }


def get_message(db: Session, message_id: int) -> dict:
    """
    Retrieve a message with both parties' profiles embedded.

    Returns:
        {id, body, sent_at, read_at,
         from_user: {username, first_name, last_name, phone},
         to_user: {username, first_name, last_name, phone}}

    Raises:
        NotFoundError: no message with this id
    """
    from messagely.models import Message, User

    logger.info(f"Looking up message by ID: {message_id}")

    from_user = aliased(User)
    to_user = aliased(User)
    row = (
        db.query(Message, from_user, to_user)
        .join(from_user, from_user.username == Message.from_username)
        .join(to_user, to_user.username == Message.to_username)
        .filter(Message.id == message_id)
        .first()
    )
    if row is None:
        logger.info(f"Message not found: {message_id}")
        raise NotFoundError(f"No such message: {message_id}")

    message, sender, recipient = row
    return {
        "id": message.id,
        "body": message.body,
        "sent_at": message.sent_at,
        "read_at": message.read_at,
        "from_user": _user_summary(sender),
        "to_user": _user_summary(recipient),
    }


def mark_message_read(db: Session, message_id: int) -> dict:
    """
    Set read_at to now.

    A message that was already read gets its read_at overwritten with
    the new time.

    Returns:
        {id, read_at}

    Raises:
        NotFoundError: no message with this id
    """
    from messagely.models import Message

    read_at = utcnow()
    updated = db.query(Message).filter(Message.id == message_id).update(
        {Message.read_at: read_at}, synchronize_session=False
    )
    db.commit()

    if updated == 0:
        logger.info(f"Mark read: message not found: {message_id}")
        raise NotFoundError(f"No such message: {message_id}")

    logger.info(f"Message {message_id} marked read")
    return {"id": message_id, "read_at": read_at}
