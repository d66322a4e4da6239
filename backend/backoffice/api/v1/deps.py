"""
Request dependencies: tenant store, acting user, clock
"""
from fastapi import Depends, Header, Request

from backoffice.core.clock import Clock
from backoffice.core.database import TenantHandle, TenantStoreResolver


def get_tenant_stores(request: Request) -> TenantStoreResolver:
    return request.app.state.tenant_stores


def get_clock(request: Request) -> Clock:
    return request.app.state.clock


def get_tenant_handle(
    x_tenant_id: str = Header(..., alias="X-Tenant-ID"),
    stores: TenantStoreResolver = Depends(get_tenant_stores)
) -> TenantHandle:
    """Storage handle of the tenant named in the request header"""
    return stores.get(x_tenant_id)


def get_actor(x_actor_id: str = Header(..., alias="X-Actor-ID", min_length=1, max_length=64)) -> str:
    """Identifier of the already-authenticated user making the request"""
    return x_actor_id
