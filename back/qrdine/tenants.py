import logging

from sqlmodel import Session

from . import models, repository
from .errors import NotFound, ValidationError

logger = logging.getLogger(__name__)


def get_tenant(session: Session, tenant_id: int, include_inactive: bool = False) -> models.Tenant:
    tenant = repository.tenants.get(session, tenant_id)
    if tenant is None or (not tenant.is_active and not include_inactive):
        raise NotFound("Restaurant not found")
    return tenant


def get_tenant_by_slug(session: Session, slug: str, include_inactive: bool = False) -> models.Tenant:
    where = [models.Tenant.slug == slug]
    if not include_inactive:
        where.append(models.Tenant.is_active == True)  # noqa: E712
    tenant = repository.tenants.first(session, *where)
    if tenant is None:
        raise NotFound("Restaurant not found")
    return tenant


def list_tenants(session: Session, include_inactive: bool = False) -> list[models.Tenant]:
    """Active tenants by name; admins pass include_inactive to see everything."""
    where = [] if include_inactive else [models.Tenant.is_active == True]  # noqa: E712
    return repository.tenants.query(session, *where, order_by=models.Tenant.name)


def deactivate_tenant(session: Session, tenant_id: int) -> models.Tenant:
    """Soft delete. Tables, menus and orders stay in place."""
    tenant = get_tenant(session, tenant_id, include_inactive=True)
    repository.tenants.update(session, tenant, models.TenantActiveUpdate(is_active=False))
    session.commit()
    session.refresh(tenant)
    logger.info(f"Tenant {tenant_id} deactivated")
    return tenant


def restore_tenant(session: Session, tenant_id: int) -> models.Tenant:
    """Undo a soft delete."""
    tenant = get_tenant(session, tenant_id, include_inactive=True)
    if tenant.is_active:
        raise ValidationError("Restaurant is already active")
    repository.tenants.update(session, tenant, models.TenantActiveUpdate(is_active=True))
    session.commit()
    session.refresh(tenant)
    logger.info(f"Tenant {tenant_id} restored")
    return tenant


def delete_tenant(session: Session, tenant_id: int) -> None:
    """Hard delete; the store cascades to everything the tenant owns."""
    tenant = get_tenant(session, tenant_id, include_inactive=True)
    repository.tenants.delete(session, tenant)
    session.commit()
    logger.info(f"Tenant {tenant_id} deleted")
