"""
Tenant Service

Owns everything that touches a tenant's database as a whole:
- looking tenants up in the master database
- provisioning a database for a new tenant
- opening sessions scoped to a tenant's database
"""
from collections import OrderedDict
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import get_settings
from app.core.exceptions import TenantNotFoundError, TenantProvisioningError
from app.core.security import generate_api_key
from app.core.tenant_db import TenantEngineRegistry, tenant_engines
from app.database import TenantBase, engine as master_engine
from app.models.tenant import Tenant
from app.utils.logging import get_logger

logger = get_logger(__name__)
settings = get_settings()


class TenantService:
    def __init__(self, db: Session, engines: TenantEngineRegistry = None):
        self.db = db
        self.engines = engines or tenant_engines

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_active_tenant(self, tenant_id: str) -> Tenant:
        """Load an active tenant or raise TenantNotFoundError."""
        tenant = self.db.query(Tenant).filter(
            Tenant.id == tenant_id,
            Tenant.is_active == True  # noqa: E712
        ).first()
        if not tenant:
            raise TenantNotFoundError(tenant_id)
        return tenant

    def get_by_api_key(self, api_key: str) -> Optional[Tenant]:
        return self.db.query(Tenant).filter(Tenant.api_key == api_key).first()

    def get_by_id(self, tenant_id: str) -> Optional[Tenant]:
        return self.db.query(Tenant).filter(Tenant.id == tenant_id).first()

    def active_tenants(self) -> List[Tenant]:
        return self.db.query(Tenant).filter(Tenant.is_active == True).all()  # noqa: E712

    # ------------------------------------------------------------------
    # Provisioning
    # ------------------------------------------------------------------

    def create_tenant_database(self, tenant_id: str, tenant_name: str) -> Optional[str]:
        """
        Provision storage for a new tenant.

        Returns the tenant database URL, or None when the tenant lives in
        the shared master database.
        """
        if not settings.uses_dedicated_tenant_databases:
            # Shared mode: make sure the tenant tables exist on the master DB
            TenantBase.metadata.create_all(bind=master_engine)
            logger.info(f"Tenant {tenant_name} uses the shared database")
            return None

        database_name = f"{settings.TENANT_DATABASE_PREFIX}{tenant_id.replace('-', '')}"
        logger.info(f"Creating database '{database_name}' for tenant: {tenant_name}")

        try:
            database_url = self._create_database(database_name)
            tenant_engine = self.engines.get_engine(database_url)
            TenantBase.metadata.create_all(bind=tenant_engine)
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Error creating database for tenant {tenant_name}: {e}", exc_info=True)
            raise TenantProvisioningError()

        logger.info(f"Successfully created and migrated database for tenant: {tenant_name}")
        return database_url

    def _create_database(self, database_name: str) -> str:
        master_url = make_url(settings.MASTER_DATABASE_URL)
        backend = master_url.get_backend_name()

        if backend == "sqlite":
            directory = Path(settings.TENANT_SQLITE_DIR)
            directory.mkdir(parents=True, exist_ok=True)
            return f"sqlite:///{(directory / f'{database_name}.db').resolve()}"

        if backend == "postgresql":
            # CREATE DATABASE cannot run inside a transaction block.
            # database_name is built from a UUID, so quoting it is enough.
            with master_engine.connect().execution_options(isolation_level="AUTOCOMMIT") as conn:
                conn.execute(text(f'CREATE DATABASE "{database_name}"'))
            return master_url.set(database=database_name).render_as_string(hide_password=False)

        raise TenantProvisioningError(f"Dedicated tenant databases are not supported on {backend}")

    def rotate_api_key(self, tenant: Tenant) -> str:
        tenant.api_key = generate_api_key()
        tenant.updated_at = datetime.utcnow()
        self.db.commit()
        logger.info(f"API key rotated for tenant {tenant.id}")
        return tenant.api_key

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    @contextmanager
    def tenant_session(self, tenant: Tenant) -> Iterator[Session]:
        """Session on the tenant's own database (or the master for shared tenants)."""
        with self.engines.session_scope(tenant.database_url) as session:
            yield session

    def iter_active_tenant_databases(self) -> Iterator[Tuple[Optional[str], List[Tenant]]]:
        """
        Group active tenants by database.

        Every shared tenant maps to the same (None) database, so callers
        that search all tenants visit the master database once.
        """
        groups: "OrderedDict[Optional[str], List[Tenant]]" = OrderedDict()
        for tenant in self.active_tenants():
            groups.setdefault(tenant.database_url or None, []).append(tenant)
        yield from groups.items()
