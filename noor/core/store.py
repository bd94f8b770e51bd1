"""
Local store: SQLite (via SQLAlchemy) organised into named key/value collections.

The store is usable from construction on. Until open() succeeds it is backed by
an empty backend that answers "not found" / "empty" and drops writes, so the
scheduler and the API can query it before initialisation completes and the
app degrades to network-only mode when storage is unavailable.
"""
import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Generator, Iterable, List, Optional, Tuple

from sqlalchemy import create_engine, delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from noor.core.errors import StorageUnavailable
from noor.core.models import Base, StoreCollection, StoreEntry, StoreMeta

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2

# Collections introduced by each schema version. Upgrades only ever add.
SCHEMA_COLLECTIONS: Dict[int, Tuple[str, ...]] = {
    1: ("prayer_times", "surahs", "ayahs"),
    2: ("audio", "voices", "settings"),
}

DEFAULT_DB_DIR = Path.home() / ".noor"


class _NotFound:
    """Sentinel returned by get() for absent keys."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NOT_FOUND"


NOT_FOUND = _NotFound()


def known_collections(version: int = SCHEMA_VERSION) -> List[str]:
    names: List[str] = []
    for v in sorted(SCHEMA_COLLECTIONS):
        if v <= version:
            names.extend(SCHEMA_COLLECTIONS[v])
    return names


def _utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def resolve_db_url(config_data: Optional[dict] = None, db_url: Optional[str] = None) -> str:
    """
    Pick the SQLAlchemy URL: explicit db_url, then database.url, then
    database.path from config, then ~/.noor/noor.db.
    """
    if db_url:
        return db_url
    db_config = (config_data or {}).get("database") or {}
    if db_config.get("url"):
        return str(db_config["url"])
    path = db_config.get("path")
    if path:
        return f"sqlite:///{Path(path).expanduser().resolve()}"
    return f"sqlite:///{DEFAULT_DB_DIR / 'noor.db'}"


def _check_collection(collection: str, allowed: Iterable[str]) -> None:
    if collection not in allowed:
        raise ValueError(f"Unknown collection: {collection}")


class _EmptyTransaction:
    """Unit of work against the empty backend: reads are empty, writes are dropped."""

    def __init__(self, allowed: Iterable[str]):
        self._allowed = list(allowed)

    def get(self, collection: str, key: str, default: Any = NOT_FOUND) -> Any:
        _check_collection(collection, self._allowed)
        return default

    def get_all(self, collection: str) -> List[Any]:
        _check_collection(collection, self._allowed)
        return []

    def items(self, collection: str) -> List[Tuple[str, Any]]:
        _check_collection(collection, self._allowed)
        return []

    def put(self, collection: str, key: str, value: Any) -> None:
        _check_collection(collection, self._allowed)
        logger.debug(f"Store not open; dropping write {collection}/{key}")

    def delete(self, collection: str, key: str) -> None:
        _check_collection(collection, self._allowed)


class StoreTransaction:
    """Unit of work over one SQLAlchemy session. Commits on success, rolls back on error."""

    def __init__(self, session: Session, allowed: Iterable[str]):
        self.session = session
        self._allowed = list(allowed)

    def get(self, collection: str, key: str, default: Any = NOT_FOUND) -> Any:
        _check_collection(collection, self._allowed)
        row = self.session.get(StoreEntry, (collection, str(key)))
        if row is None:
            return default
        return row.blob if row.blob is not None else row.value

    def get_all(self, collection: str) -> List[Any]:
        return [value for _, value in self.items(collection)]

    def items(self, collection: str) -> List[Tuple[str, Any]]:
        _check_collection(collection, self._allowed)
        rows = self.session.execute(
            select(StoreEntry)
            .where(StoreEntry.collection == collection)
            .order_by(StoreEntry.key)
        ).scalars().all()
        return [(r.key, r.blob if r.blob is not None else r.value) for r in rows]

    def put(self, collection: str, key: str, value: Any) -> None:
        _check_collection(collection, self._allowed)
        is_blob = isinstance(value, (bytes, bytearray, memoryview))
        row = self.session.get(StoreEntry, (collection, str(key)))
        if row is None:
            row = StoreEntry(collection=collection, key=str(key))
            self.session.add(row)
        row.value = None if is_blob else value
        row.blob = bytes(value) if is_blob else None
        row.updated_at = _utc_now()
        # Later reads in the same unit of work must see this write
        self.session.flush()

    def delete(self, collection: str, key: str) -> None:
        _check_collection(collection, self._allowed)
        self.session.execute(
            delete(StoreEntry).where(
                StoreEntry.collection == collection,
                StoreEntry.key == str(key),
            )
        )


class LocalStore:
    """Durable key/value store with named collections and atomic multi-collection writes."""

    def __init__(self, db_url: Optional[str] = None, config_data: Optional[dict] = None):
        self.db_url = resolve_db_url(config_data, db_url)
        self.logger = logging.getLogger(self.__class__.__name__)
        self._engine = None
        self._session_factory = None
        self._collections: List[str] = known_collections()
        self._open_lock = threading.Lock()
        # SQLite allows one writer; serialise units of work across the timer and API threads
        self._write_lock = threading.RLock()

    @property
    def is_open(self) -> bool:
        return self._session_factory is not None

    def open(self) -> None:
        """Open (and create or upgrade) the database. Safe to call repeatedly."""
        with self._open_lock:
            if self.is_open:
                self.logger.debug("Local store already open")
                return
            engine = None
            try:
                engine = self._create_engine()
                Base.metadata.create_all(engine)
                session_factory = sessionmaker(
                    bind=engine, autocommit=False, autoflush=False, expire_on_commit=False
                )
                self._upgrade(session_factory)
            except (SQLAlchemyError, OSError) as e:
                self.logger.warning(f"Local store unavailable, running network-only: {e}")
                if engine is not None:
                    engine.dispose()
                raise StorageUnavailable(str(e)) from e
            self._engine = engine
            self._session_factory = session_factory
            self.logger.info(f"Local store opened: {self.db_url.split('?')[0]} (schema v{SCHEMA_VERSION})")

    def close(self) -> None:
        """Dispose the engine and fall back to the empty backend."""
        with self._open_lock:
            if self._engine is not None:
                self._engine.dispose()
            self._engine = None
            self._session_factory = None

    def _create_engine(self):
        if self.db_url.startswith("sqlite"):
            database = self.db_url.split("///", 1)[1] if "///" in self.db_url else ""
            if database in ("", ":memory:"):
                return create_engine(
                    self.db_url,
                    echo=False,
                    future=True,
                    connect_args={"check_same_thread": False},
                    poolclass=StaticPool,
                )
            Path(database).parent.mkdir(parents=True, exist_ok=True)
            return create_engine(
                self.db_url, echo=False, future=True, connect_args={"check_same_thread": False}
            )
        return create_engine(self.db_url, echo=False, future=True)

    def _upgrade(self, session_factory) -> None:
        """Register collections missing for SCHEMA_VERSION; existing data is left untouched."""
        session = session_factory()
        try:
            meta = session.get(StoreMeta, "schema_version")
            current = int(meta.value) if meta else 0
            if current > SCHEMA_VERSION:
                self.logger.warning(
                    f"Store schema v{current} is newer than supported v{SCHEMA_VERSION}; opening anyway"
                )
            for version in sorted(SCHEMA_COLLECTIONS):
                if version > SCHEMA_VERSION:
                    continue
                for name in SCHEMA_COLLECTIONS[version]:
                    if session.get(StoreCollection, name) is None:
                        self.logger.info(f"Creating collection {name} (schema v{version})")
                        session.add(StoreCollection(name=name, since_version=version, created_at=_utc_now()))
            if meta is None:
                session.add(StoreMeta(key="schema_version", value=str(SCHEMA_VERSION)))
            elif current < SCHEMA_VERSION:
                self.logger.info(f"Upgraded store schema v{current} -> v{SCHEMA_VERSION}")
                meta.value = str(SCHEMA_VERSION)
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    @contextmanager
    def transaction(self) -> Generator[Any, None, None]:
        """
        Unit of work across collections. Every write inside the block commits
        together or not at all. Yields an empty transaction while the store is
        not open.
        """
        session_factory = self._session_factory
        if session_factory is None:
            yield _EmptyTransaction(self._collections)
            return
        with self._write_lock:
            session = session_factory()
            try:
                yield StoreTransaction(session, self._collections)
                session.commit()
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()

    def put(self, collection: str, key: str, value: Any) -> None:
        with self.transaction() as tx:
            tx.put(collection, key, value)

    def get(self, collection: str, key: str, default: Any = NOT_FOUND) -> Any:
        with self.transaction() as tx:
            return tx.get(collection, key, default)

    def get_all(self, collection: str) -> List[Any]:
        with self.transaction() as tx:
            return tx.get_all(collection)

    def items(self, collection: str) -> List[Tuple[str, Any]]:
        with self.transaction() as tx:
            return tx.items(collection)

    def delete(self, collection: str, key: str) -> None:
        with self.transaction() as tx:
            tx.delete(collection, key)

    def collections(self) -> List[str]:
        """Names of registered collections (empty until open)."""
        session_factory = self._session_factory
        if session_factory is None:
            return []
        session = session_factory()
        try:
            return list(
                session.execute(select(StoreCollection.name).order_by(StoreCollection.name)).scalars().all()
            )
        finally:
            session.close()

    def schema_version(self) -> int:
        session_factory = self._session_factory
        if session_factory is None:
            return 0
        session = session_factory()
        try:
            meta = session.get(StoreMeta, "schema_version")
            return int(meta.value) if meta else 0
        finally:
            session.close()
