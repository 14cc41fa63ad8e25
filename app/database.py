"""
Database Configuration and Session Management

This module handles SQLAlchemy setup for the master database and
provides the engine factory used for tenant databases.

Two declarative bases exist:
- MasterBase: system tables (tenants, users) that always live in the master DB
- TenantBase: tenant-scoped tables that live in each tenant's database
  (or in the master DB for tenants provisioned in shared mode)
"""
from typing import Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from app.config import get_settings
import logging

logger = logging.getLogger(__name__)

settings = get_settings()


def _configure_connection(dbapi_connection, backend: str):
    """Set connection-level configuration on new connections."""
    cursor = dbapi_connection.cursor()
    # Keep timestamps consistent across all tenant databases
    if backend == "postgresql":
        cursor.execute("SET TIME ZONE 'UTC'")
    elif backend == "sqlite":
        cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()
    logger.debug("New database connection established")


def build_engine(
    database_url: str,
    pool_size: Optional[int] = None,
    max_overflow: Optional[int] = None,
) -> Engine:
    """
    Create an engine with the pooling settings used across the application.

    Used for the master database at import time and for every tenant
    database the first time a request touches it.
    """
    url = make_url(database_url)
    backend = url.get_backend_name()

    kwargs = {
        "pool_pre_ping": True,  # Verify connections before using (handles stale connections)
        "echo": settings.DEBUG,
    }
    if backend == "sqlite":
        # SQLite connections are handed across threads by the threadpool
        kwargs["connect_args"] = {"check_same_thread": False}
    else:
        kwargs["pool_size"] = pool_size or settings.DATABASE_POOL_SIZE
        kwargs["max_overflow"] = max_overflow or settings.DATABASE_MAX_OVERFLOW

    engine = create_engine(url, **kwargs)

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        _configure_connection(dbapi_connection, backend)

    return engine


# Master engine
engine = build_engine(
    settings.MASTER_DATABASE_URL,
    pool_size=settings.DATABASE_POOL_SIZE,
    max_overflow=settings.DATABASE_MAX_OVERFLOW,
)

# Session factory
# expire_on_commit=False lets handlers read attributes after commit
# without hitting the database again.
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    expire_on_commit=False,
)

# Base classes for all models
MasterBase = declarative_base()
TenantBase = declarative_base()


def get_db() -> Session:
    """
    Dependency function that provides a master database session.

    The session is automatically closed after the request completes.
    Tenant-scoped data is reached through get_tenant_db instead.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """
    Initialize master database tables.

    Tenant tables are created on the master database too so that tenants
    provisioned in shared mode have somewhere to live.
    """
    # Import models so they register with the metadata
    import app.models  # noqa: F401

    logger.warning("init_db() called - use migrations in production!")
    MasterBase.metadata.create_all(bind=engine)
    TenantBase.metadata.create_all(bind=engine)
