import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Generator, Iterator, List

from sqlalchemy import create_engine, func, inspect, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.orm.exc import FlushError

from calltracker.config import settings
from calltracker.errors import DuplicateCallId, TransientStoreError

logger = logging.getLogger(__name__)

# check_same_thread=False is required for SQLite to work with FastAPI's threadpool
connect_args = {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(
    settings.DATABASE_URL,
    connect_args=connect_args,
    echo=False,
)

# Create SessionLocal class for creating database sessions
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for SQLAlchemy models
Base = declarative_base()


def init_db() -> None:
    """
    Initialize the database by creating all tables.
    Called during application startup.
    """
    logger.debug(f"Initializing database with URL: {settings.DATABASE_URL}")
    try:
        # Import models to register them with Base.metadata
        from calltracker.models import Call  # noqa: F401

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
        True if DB is healthy and the calls table exists, False otherwise.
    """
    logger.debug("Checking database health...")
    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
            logger.debug("Database connectivity OK")

        if not inspect(engine).has_table("calls"):
            logger.error("Database schema not applied: 'calls' table not found")
            return False
        logger.debug("Database health check passed")
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False


# =============================================================================
# Call Repository
# =============================================================================

class CallStore:
    """
    Storage collaborator for the calls ledger.

    Wraps one SQLAlchemy session. Database failures are rolled back and
    re-raised as TransientStoreError so callers can decide whether to retry.
    """

    def __init__(self, db: Session):
        self.db = db

    @contextmanager
    def _guard(self, action: str) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Store operation failed ({action}): {e}")
            raise TransientStoreError(
                f"Store operation failed: {action}",
                details="The call store is temporarily unavailable.",
            ) from e

    def insert_call(
        self,
        call_id: str,
        from_number: str,
        to_number: str,
        started: datetime,
    ):
        """
        Insert a new call in the 'started' status.

        Raises:
            DuplicateCallId: a call with this id already exists
            TransientStoreError: any other database failure
        """
        from calltracker.models import Call, CallStatus

        logger.info(f"Inserting call: id={call_id}, from={from_number}, to={to_number}")
        call = Call(
            id=call_id,
            from_number=from_number,
            to_number=to_number,
            started=started,
            status=CallStatus.STARTED,
        )
        with self._guard("insert_call"):
            try:
                self.db.add(call)
                self.db.commit()
            except (IntegrityError, FlushError):
                # id already exists; the caller must pick a new one
                self.db.rollback()
                logger.info(f"Duplicate call id detected: {call_id}")
                raise DuplicateCallId(call_id)
        logger.info(f"Call inserted: {call_id}")
        return call

    def get_call(self, call_id: str):
        """Return the call with this id, or None."""
        from calltracker.models import Call

        logger.debug(f"Looking up call by ID: {call_id}")
        with self._guard("get_call"):
            result = self.db.query(Call).filter(Call.id == call_id).first()
        logger.debug(f"Call lookup result: {'found' if result else 'not found'}")
        return result

    def end_call(self, call_id: str, ended: datetime, duration: int) -> bool:
        """
        Close a call, but only if it is still 'started'.

        Returns:
            True if this update closed the call, False if no open call matched
        """
        from calltracker.models import Call, CallStatus

        logger.debug(f"Ending call {call_id}: ended={ended.isoformat()}, duration={duration}")
        with self._guard("end_call"):
            matched = (
                self.db.query(Call)
                .filter(Call.id == call_id, Call.status == CallStatus.STARTED)
                .update(
                    {
                        Call.ended: ended,
                        Call.duration: duration,
                        Call.status: CallStatus.ENDED,
                    },
                    synchronize_session=False,
                )
            )
            self.db.commit()
        logger.info(f"End call {call_id}: {matched} row(s) updated")
        return matched == 1

    def find_open_calls_started_between(self, lower: datetime, upper: datetime) -> List:
        """Open calls with lower <= started <= upper, oldest first."""
        from calltracker.models import Call, CallStatus

        logger.debug(f"Querying open calls started between {lower.isoformat()} and {upper.isoformat()}")
        with self._guard("find_open_calls_started_between"):
            return (
                self.db.query(Call)
                .filter(
                    Call.status == CallStatus.STARTED,
                    Call.started >= lower,
                    Call.started <= upper,
                )
                .order_by(Call.started.asc(), Call.id.asc())
                .all()
            )

    def count_open_calls_started_before(self, cutoff: datetime) -> int:
        from calltracker.models import Call, CallStatus

        with self._guard("count_open_calls_started_before"):
            return (
                self.db.query(func.count(Call.id))
                .filter(Call.status == CallStatus.STARTED, Call.started < cutoff)
                .scalar()
            ) or 0

    def count_calls(self, status=None) -> int:
        """Count all calls, or only those in the given status."""
        from calltracker.models import Call

        with self._guard("count_calls"):
            query = self.db.query(func.count(Call.id))
            if status is not None:
                query = query.filter(Call.status == status)
            return query.scalar() or 0

    def list_durations(self) -> List[int]:
        """All recorded durations (non-null only)."""
        from calltracker.models import Call

        with self._guard("list_durations"):
            rows = self.db.query(Call.duration).filter(Call.duration.isnot(None)).all()
        return [row.duration for row in rows]
