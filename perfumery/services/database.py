"""
SQLite engine, sessions and transactions for the perfumery ledger.

Every ledger write goes through run_in_transaction(): one transaction per
operation, retried once when SQLite reports a transient failure (e.g. the
busy timeout expired on "database is locked"), LedgerUnavailableError
after that. Reads use session_scope() directly.
"""

import logging
from contextlib import contextmanager
from typing import Callable, Optional, TypeVar

from sqlalchemy import create_engine, event, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..models.base import Base
from ..utils.config import get_config
from .exceptions import LedgerUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")

REQUIRED_TABLES = ("products", "stock_records", "stock_movements", "inventory_adjustment_logs")

_engine: Optional[Engine] = None
_SessionFactory: Optional[sessionmaker] = None


@event.listens_for(Engine, "connect")
def _set_sqlite_pragma(dbapi_connection, connection_record):
    # Ledger integrity depends on FK enforcement, which SQLite leaves off
    if "sqlite" not in type(dbapi_connection).__module__:
        return
    cursor = dbapi_connection.cursor()
    for pragma in ("foreign_keys=ON", "journal_mode=WAL", "synchronous=NORMAL"):
        cursor.execute(f"PRAGMA {pragma}")
    cursor.close()


def create_database_engine(database_url: Optional[str] = None, echo: bool = False) -> Engine:
    """
    Build an engine for the ledger database.

    In-memory URLs share one connection (StaticPool) so every session
    sees the same tables. File databases wait up to
    Config.transaction_timeout_seconds on a locked database before
    raising OperationalError.

    Args:
        database_url: Database URL; defaults to the configured ledger file
        echo: Log every SQL statement
    """
    config = get_config()
    if database_url is None:
        config.ensure_directories()
        database_url = config.database_url

    logger.info(f"Opening ledger database: {database_url}")

    connect_args = {"check_same_thread": False}
    if ":memory:" in database_url or "mode=memory" in database_url:
        return create_engine(
            database_url, echo=echo, connect_args=connect_args, poolclass=StaticPool
        )

    connect_args["timeout"] = config.transaction_timeout_seconds
    return create_engine(database_url, echo=echo, connect_args=connect_args)


def get_engine(force_recreate: bool = False) -> Engine:
    """Return the process-wide engine, creating it on first use."""
    global _engine

    if _engine is None or force_recreate:
        _engine = create_database_engine()
    return _engine


def get_session_factory() -> sessionmaker:
    global _SessionFactory

    if _SessionFactory is None:
        _SessionFactory = sessionmaker(bind=get_engine(), expire_on_commit=False)
    return _SessionFactory


def init_database(engine: Optional[Engine] = None) -> None:
    """Create any missing ledger tables. Existing tables are left alone."""
    # Importing the package registers every model on Base.metadata
    from .. import models  # noqa: F401

    Base.metadata.create_all(engine if engine is not None else get_engine())
    logger.info("Ledger tables ready")


@contextmanager
def session_scope():
    """
    Yield a session that commits when the block exits cleanly.

    Any exception rolls the whole block back and propagates; the session
    is closed either way.

    Example:
        with session_scope() as session:
            session.add(Product(sku="ETH-96", name="Ethanol 96%", base_unit="ml"))
    """
    session = get_session_factory()()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def run_in_transaction(
    operation: str,
    work: Callable[[Session], T],
    session: Optional[Session] = None,
) -> T:
    """
    Run `work` inside one transaction.

    With a caller-supplied session the work simply joins the caller's
    transaction; retry and commit are the caller's concern. Otherwise the
    work runs in its own session_scope(). A transient OperationalError
    is retried exactly once; the failed attempt was rolled back in full,
    so the retry cannot double-apply anything. A second failure raises
    LedgerUnavailableError.

    Domain errors raised by `work` are never retried.

    Args:
        operation: Operation name for logging and error messages
        work: Callable receiving the session and returning the result
        session: Optional session to join

    Returns:
        Whatever `work` returns
    """
    if session is not None:
        return work(session)

    last_error = None
    for attempt in (1, 2):
        try:
            with session_scope() as own_session:
                return work(own_session)
        except OperationalError as e:
            last_error = e
            logger.warning(f"{operation}: transient database error on attempt {attempt}: {e}")

    raise LedgerUnavailableError(operation, last_error)


def verify_database() -> bool:
    """True if the ledger tables exist and the database can be read."""
    try:
        tables = set(inspect(get_engine()).get_table_names())
    except OperationalError as e:
        logger.error(f"Cannot read ledger database: {e}")
        return False
    missing = [name for name in REQUIRED_TABLES if name not in tables]
    if missing:
        logger.warning(f"Ledger tables missing: {', '.join(missing)}")
    return not missing


def initialize_app_database() -> None:
    """Create the ledger database file and tables if needed, then check them."""
    config = get_config()
    state = "existing" if config.database_exists() else "new"
    logger.info(f"Using {state} ledger database at {config.database_path}")

    init_database()
    if not verify_database():
        logger.warning("Ledger database is incomplete after initialization")
