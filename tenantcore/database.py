"""
Database Configuration and Session Management

This module handles SQLAlchemy setup with connection pooling and the
conflict-safe insert helper used by membership and tag writes.

NOTE: Tenant isolation is not enforced here. Services filter by tenant_id
and the authorization guard decides which tenant a request may touch.
"""
from typing import Any, Dict, Iterable, List, Sequence

from sqlalchemy import create_engine, event
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.pool import QueuePool, StaticPool
from tenantcore.config import get_settings
import logging

logger = logging.getLogger(__name__)

settings = get_settings()


def _engine_options(database_url: str) -> Dict[str, Any]:
    if database_url.startswith("sqlite"):
        # Single shared connection so in-memory databases survive across sessions
        return {
            "connect_args": {"check_same_thread": False},
            "poolclass": StaticPool,
        }
    return {
        "poolclass": QueuePool,
        "pool_size": settings.DATABASE_POOL_SIZE,
        "max_overflow": settings.DATABASE_MAX_OVERFLOW,
        "pool_pre_ping": True,  # handles stale connections
    }


engine = create_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
    **_engine_options(settings.DATABASE_URL),
)

# expire_on_commit=False so response models can read attributes after commit
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    expire_on_commit=False,
)

Base = declarative_base()


@event.listens_for(engine, "connect")
def configure_connection(dbapi_connection, connection_record):
    """Set connection-level configuration on new connections."""
    cursor = dbapi_connection.cursor()
    if settings.DATABASE_URL.startswith("postgresql"):
        cursor.execute("SET TIME ZONE 'UTC'")
    elif settings.DATABASE_URL.startswith("sqlite"):
        cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()
    logger.debug("New database connection established")


def get_db() -> Session:
    """
    Dependency function that provides a database session.

    The session is closed after the request completes. Endpoints commit
    explicitly once the mutation and its audit entry are both flushed.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """
    Initialize database tables.

    In production, you'd use Alembic migrations instead.
    """
    import tenantcore.models  # noqa: F401  registers every table on Base

    logger.warning("init_db() called - use Alembic migrations in production!")
    Base.metadata.create_all(bind=engine)


def insert_or_skip(
    db: Session,
    model,
    rows: Sequence[Dict[str, Any]],
    conflict_columns: Iterable[str],
) -> int:
    """
    Insert rows, silently skipping any that violate the unique constraint
    on ``conflict_columns``. Returns the number of rows actually inserted.

    Relies on the database constraint rather than a prior read, so two
    concurrent callers never produce duplicates or surface an error.
    """
    rows = list(rows)
    if not rows:
        return 0

    conflict_columns: List[str] = list(conflict_columns)
    dialect = db.get_bind().dialect.name

    if dialect in ("postgresql", "sqlite"):
        insert = postgresql.insert if dialect == "postgresql" else sqlite.insert
        stmt = insert(model).values(rows).on_conflict_do_nothing(
            index_elements=conflict_columns
        )
        result = db.execute(stmt)
        return max(result.rowcount or 0, 0)

    # Other backends: one savepoint per row, a unique violation means "already there"
    inserted = 0
    for row in rows:
        try:
            with db.begin_nested():
                db.execute(model.__table__.insert().values(**row))
            inserted += 1
        except IntegrityError:
            logger.debug(f"Skipped existing {model.__tablename__} row: {row}")
    return inserted
