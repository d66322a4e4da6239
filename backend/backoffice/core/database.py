"""
Database Configuration

Every tenant owns its own database. The TenantStoreResolver maps a tenant id to
a TenantHandle; workflows receive the handle explicitly and run each mutating
operation inside one all-or-nothing transaction on it.
"""
import functools
import logging
import re
import threading
from pathlib import Path
from typing import Callable, Dict, Generator, Optional, TypeVar
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from backoffice.core.config import settings
from backoffice.core.exceptions import ConflictError, ValidationError

logger = logging.getLogger(__name__)

# Base model
Base = declarative_base()

T = TypeVar("T")

TENANT_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")

# Errors that mean "someone else wrote first": roll back and run the unit again
RETRYABLE_ERRORS = (StaleDataError, OperationalError, IntegrityError)


def is_write_conflict(exc: BaseException) -> bool:
    """Integrity errors only count as conflicts when a unique key was raced"""
    if isinstance(exc, IntegrityError):
        message = str(exc.orig).lower()
        return "unique" in message or "duplicate key" in message
    return True


def _install_sqlite_locking(engine: Engine) -> None:
    """Let write transactions take the database write lock up front.

    pysqlite's own transaction handling is switched off so SQLAlchemy emits
    BEGIN itself; write units ask for BEGIN IMMEDIATE, which serializes
    read-modify-write cycles within a tenant store.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys = ON")
        cursor.execute("PRAGMA busy_timeout = 5000")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        if conn.get_execution_options().get("tenant_write"):
            conn.exec_driver_sql("BEGIN IMMEDIATE")
        else:
            conn.exec_driver_sql("BEGIN")


def create_tenant_engine(url: str, echo: bool = False) -> Engine:
    """Create the engine for one tenant store"""
    parsed = make_url(url)
    if parsed.get_backend_name() == "sqlite":
        if parsed.database and parsed.database != ":memory:":
            Path(parsed.database).parent.mkdir(parents=True, exist_ok=True)
        engine = create_engine(url, connect_args={"check_same_thread": False}, echo=echo)
        _install_sqlite_locking(engine)
        return engine

    return create_engine(
        url,
        echo=echo,
        pool_pre_ping=True,
        isolation_level="READ COMMITTED",
    )


class TenantHandle:
    """Storage handle scoped to exactly one tenant.

    ``run(work)`` executes ``work(session)`` in a single transaction and
    commits it, or rolls everything back if ``work`` raises. Optimistic-lock
    and lock-timeout failures are retried up to ``max_retries`` times before a
    ConflictError surfaces. A ``run`` issued while another ``run`` is active on
    the same thread joins the outer transaction, so composite workflows commit
    or roll back as a single unit.
    """

    def __init__(self, tenant_id: str, engine: Engine, max_retries: int = settings.MAX_CONFLICT_RETRIES):
        self.tenant_id = tenant_id
        self.engine = engine
        self.max_retries = max_retries
        self._session_factory = sessionmaker(
            bind=engine, autocommit=False, autoflush=False, expire_on_commit=False,
            info={"tenant_id": tenant_id}
        )
        self._local = threading.local()

    def __repr__(self) -> str:
        return f"<TenantHandle tenant={self.tenant_id}>"

    @property
    def current_session(self) -> Optional[Session]:
        return getattr(self._local, "session", None)

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """Read session; joins the active unit of work if there is one"""
        active = self.current_session
        if active is not None:
            yield active
            return

        db = self._session_factory()
        try:
            yield db
        finally:
            db.close()

    def run(self, work: Callable[[Session], T]) -> T:
        active = self.current_session
        if active is not None:
            return work(active)

        last_error: Optional[BaseException] = None
        for attempt in range(1, self.max_retries + 1):
            db = self._session_factory()
            self._local.session = db
            try:
                db.connection(execution_options={"tenant_write": True})
                result = work(db)
                db.commit()
                return result
            except RETRYABLE_ERRORS as exc:
                db.rollback()
                if not is_write_conflict(exc):
                    raise
                last_error = exc
                logger.warning(
                    "transaction_conflict tenant=%s attempt=%s/%s error=%s",
                    self.tenant_id, attempt, self.max_retries, type(exc).__name__
                )
            except Exception:
                db.rollback()
                logger.debug("transaction_rolled_back tenant=%s", self.tenant_id)
                raise
            finally:
                self._local.session = None
                db.close()

        raise ConflictError(self.max_retries, last_error)

    def dispose(self) -> None:
        self.engine.dispose()


def transactional(method):
    """Run a service method as one unit of work on ``self.handle``.

    The decorated method receives the tenant session as its first argument
    after ``self``; callers do not pass it.
    """

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        return self.handle.run(lambda db: method(self, db, *args, **kwargs))

    return wrapper


class TenantStoreResolver:
    """Maps tenant identifiers to their (lazily opened) storage handles"""

    def __init__(
        self,
        url_for: Optional[Callable[[str], str]] = None,
        max_retries: Optional[int] = None,
        echo: bool = settings.DEBUG,
    ):
        self._url_for = url_for or settings.tenant_database_url
        self._max_retries = max_retries or settings.MAX_CONFLICT_RETRIES
        self._echo = echo
        self._handles: Dict[str, TenantHandle] = {}
        self._lock = threading.Lock()

    def get(self, tenant_id: str) -> TenantHandle:
        if not tenant_id or not TENANT_ID_PATTERN.match(tenant_id):
            raise ValidationError("Invalid tenant identifier", tenant_id=tenant_id)

        with self._lock:
            handle = self._handles.get(tenant_id)
            if handle is None:
                engine = create_tenant_engine(self._url_for(tenant_id), echo=self._echo)
                init_tenant_store(engine)
                handle = TenantHandle(tenant_id, engine, max_retries=self._max_retries)
                self._handles[tenant_id] = handle
                logger.info("tenant_store_opened tenant=%s", tenant_id)
            return handle

    def close(self, tenant_id: str) -> None:
        with self._lock:
            handle = self._handles.pop(tenant_id, None)
        if handle is not None:
            handle.dispose()
            logger.info("tenant_store_closed tenant=%s", tenant_id)

    def close_all(self) -> None:
        with self._lock:
            handles = list(self._handles.values())
            self._handles.clear()
        for handle in handles:
            handle.dispose()


def init_tenant_store(engine: Engine):
    """Create tenant tables if they do not exist yet"""
    # Import all models to register them with Base
    from backoffice import models  # noqa: F401
    Base.metadata.create_all(bind=engine)
