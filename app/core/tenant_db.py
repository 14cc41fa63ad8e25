"""
Tenant Database Connections

Maps tenant database URLs to engines and session factories.

Engines are expensive (each owns a connection pool), so one engine is
created per tenant database the first time it is needed and reused for
every later request. Tenants in shared mode have no URL and use the
master engine.
"""
from contextlib import contextmanager
from threading import Lock
from typing import Dict, Iterator, Optional, Tuple

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from app.config import get_settings
from app.database import build_engine, engine as master_engine, SessionLocal
import logging

logger = logging.getLogger(__name__)
settings = get_settings()


class TenantEngineRegistry:
    """
    Lazily built engine and sessionmaker per tenant database URL.

    Lookups run on every tenant-scoped request, creation is rare.
    The lock only guards creation so two requests for a new tenant
    don't both build a pool. An engine and its sessionmaker are stored
    as one entry, so a lock-free reader sees both or neither.
    """

    def __init__(self, default_engine: Engine, default_sessionmaker: sessionmaker):
        self._default = (default_engine, default_sessionmaker)
        self._entries: Dict[str, Tuple[Engine, sessionmaker]] = {}
        self._lock = Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, database_url: str) -> bool:
        return database_url in self._entries

    def _entry(self, database_url: Optional[str]) -> Tuple[Engine, sessionmaker]:
        if not database_url:
            return self._default

        entry = self._entries.get(database_url)
        if entry is not None:
            return entry

        with self._lock:
            entry = self._entries.get(database_url)
            if entry is None:
                engine = build_engine(
                    database_url,
                    pool_size=settings.TENANT_DATABASE_POOL_SIZE,
                    max_overflow=settings.TENANT_DATABASE_MAX_OVERFLOW,
                )
                factory = sessionmaker(
                    autocommit=False,
                    autoflush=False,
                    bind=engine,
                    expire_on_commit=False,
                )
                entry = (engine, factory)
                self._entries[database_url] = entry
                logger.info(f"Tenant engine created ({len(self._entries)} cached)")
        return entry

    def get_engine(self, database_url: Optional[str]) -> Engine:
        return self._entry(database_url)[0]

    def get_sessionmaker(self, database_url: Optional[str]) -> sessionmaker:
        return self._entry(database_url)[1]

    def create_session(self, database_url: Optional[str]) -> Session:
        return self.get_sessionmaker(database_url)()

    @contextmanager
    def session_scope(self, database_url: Optional[str]) -> Iterator[Session]:
        """Yield a session on the given tenant database and always close it."""
        session = self.create_session(database_url)
        try:
            yield session
        finally:
            session.close()

    def dispose(self, database_url: str) -> None:
        with self._lock:
            entry = self._entries.pop(database_url, None)
        if entry is not None:
            entry[0].dispose()

    def dispose_all(self) -> None:
        """Close every tenant pool. Called at application shutdown."""
        with self._lock:
            engines = [engine for engine, _ in self._entries.values()]
            self._entries.clear()
        for engine in engines:
            engine.dispose()
        if engines:
            logger.info(f"Disposed {len(engines)} tenant engines")


tenant_engines = TenantEngineRegistry(master_engine, SessionLocal)
