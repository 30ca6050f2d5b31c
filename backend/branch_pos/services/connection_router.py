# Overview: Resolves, caches and invalidates per-branch database handles across engines.

"""
Branch Connection Router

Each branch owns an isolated database which may run on SQLite, SQL Server,
PostgreSQL or MySQL. The router turns a branch id into a ready-to-use
BranchHandle, building the SQLAlchemy engine with the right driver on first
use and caching it afterwards.

CACHING INVARIANTS:
- A cache entry is the pair (config fingerprint, handle), replaced atomically.
- A handle is only returned when its fingerprint matches the branch's
  current configuration, so a stale handle is never reused after a config
  edit, even if the invalidate event has not arrived yet.
- A cache miss locks only that branch's slot; other branches (and cache
  hits on the same branch) never wait on it.
- invalidate() drops the entry; the next resolve() rebuilds it.

FAILURES:
- Connection problems surface as BranchConnectionError with a kind
  (UNREACHABLE, AUTH_FAILED, UNSUPPORTED_ENGINE, TIMEOUT).
- The router never retries. Retry policy belongs to the caller.

SQLITE:
- SQLite allows a single writer. Write transactions start with
  BEGIN IMMEDIATE so writers queue on the database lock (busy timeout)
  instead of failing at commit time. This is also what serializes invoice
  number allocation on SQLite branches.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import URL, Engine
from sqlalchemy.exc import ArgumentError, DBAPIError, NoSuchModuleError
from sqlalchemy.orm import Session, sessionmaker

from ..constants import DatabaseEngine, SslMode
from ..errors import BranchConnectionError, ConnectionErrorKind
from .branch_config import BranchConfig, BranchConfigProvider, parse_additional_params


logger = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT = 10
DEFAULT_POOL_RECYCLE = 1800

MSSQL_ODBC_DRIVER = "ODBC Driver 18 for SQL Server"

_POSTGRES_SSL_MODES = {
    SslMode.DISABLE: "disable",
    SslMode.REQUIRE: "require",
    SslMode.VERIFY_CA: "verify-ca",
    SslMode.VERIFY_FULL: "verify-full",
}

# Substrings of driver messages, lowercased
_AUTH_FAILURE_MARKERS = (
    "password authentication failed",
    "access denied",
    "login failed",
    "authentication failed",
    "invalid password",
    "no password supplied",
)
_TIMEOUT_MARKERS = (
    "timeout",
    "timed out",
    "database is locked",
)


class BranchHandle:
    """
    Ready-to-use access to one branch database.

    - session(): plain session for reads (default isolation of the engine).
    - begin(): one write transaction; commits on success, rolls back on any
      exception. On SQLite the transaction takes the write lock up front.
    """

    def __init__(self, branch_id: int, engine_kind: DatabaseEngine, engine: Engine, fingerprint: str):
        self.branch_id = branch_id
        self.engine_kind = engine_kind
        self.engine = engine
        self.fingerprint = fingerprint
        self._session_factory = sessionmaker(bind=engine, expire_on_commit=False)
        if engine_kind == DatabaseEngine.SQLITE:
            self._write_bind = engine.execution_options(sqlite_begin="IMMEDIATE")
        else:
            self._write_bind = engine

    def __repr__(self) -> str:
        return f"<BranchHandle branch_id={self.branch_id} engine={self.engine_kind.value}>"

    @property
    def single_writer(self) -> bool:
        return self.engine_kind == DatabaseEngine.SQLITE

    @contextmanager
    def session(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
        finally:
            session.close()

    @contextmanager
    def begin(self) -> Iterator[Session]:
        session = self._session_factory(bind=self._write_bind)
        try:
            yield session
            session.commit()
        except BaseException as exc:
            session.rollback()
            logger.warning("Branch %s: transaction rolled back (%s)", self.branch_id, type(exc).__name__)
            raise
        finally:
            session.close()

    def execute(self, sql: str, params: dict | None = None) -> list:
        """Run a raw statement in its own transaction and return any rows."""
        with self.engine.begin() as conn:
            result = conn.execute(text(sql), params or {})
            return list(result) if result.returns_rows else []

    def ping(self) -> None:
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))

    def dispose(self) -> None:
        self.engine.dispose()


@dataclass
class _Slot:
    lock: threading.Lock = field(default_factory=threading.Lock)
    # (fingerprint, handle); swapped as one reference
    entry: tuple[str, BranchHandle] | None = None


def sqlite_database_path(config: BranchConfig, data_dir: str | Path) -> Path:
    """SQLite branch files live at <data_dir>/<CODE>/Database/<CODE>.db."""
    return Path(data_dir) / config.code / "Database" / f"{config.code}.db"


def build_engine_url(config: BranchConfig, data_dir: str | Path | None = None) -> URL:
    """Build the SQLAlchemy URL for a branch. Raises BranchConnectionError for unknown engines."""
    try:
        extra = parse_additional_params(config.additional_params)
    except ValueError as exc:
        raise BranchConnectionError(
            ConnectionErrorKind.UNSUPPORTED_ENGINE,
            str(exc),
            details={"branch_id": config.branch_id},
        ) from exc

    if config.engine == DatabaseEngine.SQLITE:
        if data_dir is None:
            raise BranchConnectionError(
                ConnectionErrorKind.UNSUPPORTED_ENGINE,
                "SQLite branches require BRANCH_DATA_DIR",
                details={"branch_id": config.branch_id},
            )
        return URL.create("sqlite", database=str(sqlite_database_path(config, data_dir)))

    if config.engine == DatabaseEngine.POSTGRESQL:
        query = {"sslmode": _POSTGRES_SSL_MODES[config.ssl_mode]}
        query.update(extra)
        return URL.create(
            "postgresql+psycopg2",
            username=config.username,
            password=config.password,
            host=config.server,
            port=config.port,
            database=config.database,
            query=query,
        )

    if config.engine == DatabaseEngine.MYSQL:
        query = {"charset": "utf8mb4"}
        query.update(extra)
        return URL.create(
            "mysql+pymysql",
            username=config.username,
            password=config.password,
            host=config.server,
            port=config.port,
            database=config.database,
            query=query,
        )

    if config.engine == DatabaseEngine.MSSQL:
        query = {"driver": MSSQL_ODBC_DRIVER}
        if config.trust_server_certificate:
            query["TrustServerCertificate"] = "yes"
        if not config.username:
            query["Trusted_Connection"] = "yes"
        query.update(extra)
        return URL.create(
            "mssql+pyodbc",
            username=config.username or None,
            password=config.password if config.username else None,
            host=config.server,
            port=config.port,
            database=config.database,
            query=query,
        )

    raise BranchConnectionError(
        ConnectionErrorKind.UNSUPPORTED_ENGINE,
        f"Database engine {config.engine!r} is not supported",
        details={"branch_id": config.branch_id},
    )


def build_connect_args(config: BranchConfig, connect_timeout: int) -> dict:
    """Driver keyword arguments: timeouts plus TLS options the URL cannot carry."""
    if config.engine == DatabaseEngine.SQLITE:
        return {"timeout": connect_timeout, "check_same_thread": False}
    if config.engine == DatabaseEngine.POSTGRESQL:
        return {"connect_timeout": connect_timeout}
    if config.engine == DatabaseEngine.MYSQL:
        args: dict = {"connect_timeout": connect_timeout}
        if config.ssl_mode == SslMode.DISABLE:
            args["ssl_disabled"] = True
        elif config.ssl_mode == SslMode.REQUIRE:
            # Encrypted, certificate not verified
            args["ssl"] = {"check_hostname": False}
        else:
            args["ssl_verify_cert"] = True
            args["ssl_verify_identity"] = config.ssl_mode == SslMode.VERIFY_FULL
        return args
    if config.engine == DatabaseEngine.MSSQL:
        return {"timeout": connect_timeout}
    return {}


def classify_connection_error(exc: BaseException) -> ConnectionErrorKind:
    if isinstance(exc, (ImportError, NoSuchModuleError, ArgumentError)):
        return ConnectionErrorKind.UNSUPPORTED_ENGINE
    if isinstance(exc, TimeoutError):
        return ConnectionErrorKind.TIMEOUT
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return ConnectionErrorKind.UNREACHABLE
    message = str(getattr(exc, "orig", None) or exc).lower()
    if any(marker in message for marker in _AUTH_FAILURE_MARKERS):
        return ConnectionErrorKind.AUTH_FAILED
    if any(marker in message for marker in _TIMEOUT_MARKERS):
        return ConnectionErrorKind.TIMEOUT
    return ConnectionErrorKind.UNREACHABLE


def _install_sqlite_hooks(engine: Engine, busy_timeout_ms: int) -> None:
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # Hand BEGIN over to the "begin" hook below
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms)}")
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        mode = conn.get_execution_options().get("sqlite_begin", "DEFERRED")
        conn.exec_driver_sql(f"BEGIN {mode}")


class BranchRouter:
    """
    Process-wide cache of branch handles.

    Starts empty; entries are added lazily by resolve() and dropped by
    invalidate(). Usable standalone (pass a provider) or as a Flask
    extension via init_app().
    """

    def __init__(
        self,
        provider: BranchConfigProvider | None = None,
        *,
        data_dir: str | Path | None = None,
        connect_timeout: int = DEFAULT_CONNECT_TIMEOUT,
        pool_recycle: int = DEFAULT_POOL_RECYCLE,
    ):
        self._provider = None
        self.data_dir = data_dir
        self.connect_timeout = connect_timeout
        self.pool_recycle = pool_recycle
        self._slots: dict[int, _Slot] = {}
        self._slots_lock = threading.Lock()
        if provider is not None:
            self.set_provider(provider)

    def init_app(self, app, provider: BranchConfigProvider | None = None) -> None:
        # A (re)configured app starts from an empty cache
        self.clear()
        self.data_dir = app.config.get("BRANCH_DATA_DIR", self.data_dir)
        self.connect_timeout = int(app.config.get("BRANCH_CONNECT_TIMEOUT", self.connect_timeout))
        self.pool_recycle = int(app.config.get("BRANCH_POOL_RECYCLE", self.pool_recycle))
        if provider is None and self._provider is None:
            from .branch_service import config_provider
            provider = config_provider
        if provider is not None:
            self.set_provider(provider)
        app.extensions["branch_router"] = self

    def set_provider(self, provider: BranchConfigProvider) -> None:
        self._provider = provider
        provider.subscribe(self.invalidate)

    @property
    def provider(self) -> BranchConfigProvider:
        if self._provider is None:
            raise RuntimeError("BranchRouter has no config provider; call init_app() or set_provider()")
        return self._provider

    def get_config(self, branch_id: int) -> BranchConfig:
        return self.provider.get_config(branch_id)

    def _slot(self, branch_id: int) -> _Slot:
        slot = self._slots.get(branch_id)
        if slot is None:
            with self._slots_lock:
                slot = self._slots.setdefault(branch_id, _Slot())
        return slot

    def resolve(self, branch_id: int, config: BranchConfig | None = None) -> BranchHandle:
        """
        Return the handle for a branch, building it on a cache miss.

        Raises NotFoundError(BRANCH) from the provider, or BranchConnectionError.
        """
        if config is None:
            config = self.get_config(branch_id)
        fingerprint = config.fingerprint()
        slot = self._slot(branch_id)

        entry = slot.entry
        if entry is not None and entry[0] == fingerprint:
            logger.debug("Reusing branch %s handle", branch_id)
            return entry[1]

        stale = None
        with slot.lock:
            entry = slot.entry
            if entry is not None and entry[0] == fingerprint:
                return entry[1]
            handle = self._open(config, fingerprint)
            if entry is not None:
                stale = entry[1]
            slot.entry = (fingerprint, handle)

        if stale is not None:
            logger.info("Replaced branch %s handle after config change", branch_id)
            stale.dispose()
        return handle

    def invalidate(self, branch_id: int) -> bool:
        """Drop the cached handle for a branch. Returns True if one was cached."""
        slot = self._slots.get(branch_id)
        if slot is None:
            return False
        with slot.lock:
            entry = slot.entry
            slot.entry = None
        if entry is None:
            return False
        logger.info("Invalidated branch %s handle (config %s)", branch_id, entry[0][:12])
        entry[1].dispose()
        return True

    def clear(self) -> None:
        """Dispose every cached handle."""
        for branch_id in list(self._slots):
            self.invalidate(branch_id)

    def cached_branch_ids(self) -> list[int]:
        return sorted(branch_id for branch_id, slot in self._slots.items() if slot.entry is not None)

    def ensure_schema(self, branch_id: int) -> BranchHandle:
        """Create branch tables that do not exist yet. Provisioning proper stays external."""
        from ..models.branch import BranchModel

        handle = self.resolve(branch_id)
        BranchModel.metadata.create_all(handle.engine)
        return handle

    def _open(self, config: BranchConfig, fingerprint: str) -> BranchHandle:
        url = build_engine_url(config, self.data_dir)
        connect_args = build_connect_args(config, self.connect_timeout)

        engine_kwargs: dict = {"connect_args": connect_args}
        if config.engine == DatabaseEngine.SQLITE:
            db_dir = sqlite_database_path(config, self.data_dir).parent
            try:
                db_dir.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise BranchConnectionError(
                    ConnectionErrorKind.UNREACHABLE,
                    f"Cannot create database directory for branch {config.code}",
                    details={"branch_id": config.branch_id, "path": str(db_dir)},
                ) from exc
        else:
            engine_kwargs.update(pool_pre_ping=True, pool_recycle=self.pool_recycle)

        try:
            engine = create_engine(url, **engine_kwargs)
        except (ImportError, NoSuchModuleError, ArgumentError) as exc:
            logger.warning("Branch %s: engine %s unavailable: %s", config.branch_id, config.engine.value, exc)
            raise BranchConnectionError(
                ConnectionErrorKind.UNSUPPORTED_ENGINE,
                f"Database engine {config.engine.value} is not available",
                details={"branch_id": config.branch_id, "engine": config.engine.value},
            ) from exc

        if config.engine == DatabaseEngine.SQLITE:
            _install_sqlite_hooks(engine, self.connect_timeout * 1000)

        handle = BranchHandle(config.branch_id, config.engine, engine, fingerprint)
        try:
            handle.ping()
        except (DBAPIError, ImportError, TimeoutError, OSError) as exc:
            engine.dispose()
            kind = classify_connection_error(exc)
            logger.warning(
                "Branch %s: %s connection check failed (%s)",
                config.branch_id, config.engine.value, kind.value,
            )
            raise BranchConnectionError(
                kind,
                f"Cannot connect to branch {config.code} database",
                details={"branch_id": config.branch_id, "engine": config.engine.value, "kind": kind.value},
            ) from exc

        logger.info(
            "Opened branch %s handle (%s, config %s)",
            config.branch_id, config.engine.value, fingerprint[:12],
        )
        return handle
