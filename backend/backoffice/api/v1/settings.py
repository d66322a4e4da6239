"""
Settings API Routes - Branches, shop settings, inheritance, currencies
"""
from fastapi import APIRouter, Depends
from typing import List

from backoffice.api.v1.deps import get_tenant_handle
from backoffice.core.database import TenantHandle
from backoffice.schemas import (
    BranchCreate, BranchResponse, BranchSettingsUpdate, CurrencyCreate,
    CurrencyResponse, CurrencyUpdate, EffectiveSettings, InheritanceToggle,
    ShopSettingsResponse, ShopSettingsUpdate
)
from backoffice.services.branch_service import BranchService, get_shop_settings
from backoffice.services.currency_service import CurrencyService

router = APIRouter(prefix="/settings", tags=["Settings"])


# ==================== SHOP ====================

@router.get("/shop", response_model=ShopSettingsResponse)
async def get_shop(handle: TenantHandle = Depends(get_tenant_handle)):
    with handle.session() as db:
        return get_shop_settings(db)


@router.put("/shop", response_model=ShopSettingsResponse)
async def update_shop(data: ShopSettingsUpdate, handle: TenantHandle = Depends(get_tenant_handle)):
    """Update the shop-wide values branches can inherit"""
    return BranchService(handle).update_shop_settings(data)


# ==================== BRANCHES ====================

@router.get("/branches", response_model=List[BranchResponse])
async def list_branches(include_inactive: bool = False, handle: TenantHandle = Depends(get_tenant_handle)):
    return BranchService(handle).list(include_inactive)


@router.post("/branches", response_model=BranchResponse, status_code=201)
async def create_branch(data: BranchCreate, handle: TenantHandle = Depends(get_tenant_handle)):
    return BranchService(handle).create(data)


@router.get("/branches/{branch_id}", response_model=BranchResponse)
async def get_branch(branch_id: int, handle: TenantHandle = Depends(get_tenant_handle)):
    return BranchService(handle).get_by_id(branch_id)


@router.get("/branches/{branch_id}/effective", response_model=EffectiveSettings)
async def effective_settings(branch_id: int, handle: TenantHandle = Depends(get_tenant_handle)):
    """Branch values with inherited fields resolved from the shop"""
    return BranchService(handle).effective_settings(branch_id)


@router.put("/branches/{branch_id}/settings", response_model=EffectiveSettings)
async def update_branch_settings(
    branch_id: int,
    data: BranchSettingsUpdate,
    handle: TenantHandle = Depends(get_tenant_handle)
):
    branch_service = BranchService(handle)
    branch_service.update_settings(branch_id, data)
    return branch_service.effective_settings(branch_id)


@router.post("/branches/{branch_id}/inheritance", response_model=BranchResponse)
async def toggle_inheritance(
    branch_id: int,
    data: InheritanceToggle,
    handle: TenantHandle = Depends(get_tenant_handle)
):
    """Switch a field between the shop value and the branch's own value"""
    return BranchService(handle).toggle_inheritance(branch_id, data.field, data.inherit)


# ==================== CURRENCIES ====================

@router.get("/currencies", response_model=List[CurrencyResponse])
async def list_currencies(active_only: bool = False, handle: TenantHandle = Depends(get_tenant_handle)):
    return CurrencyService(handle).list(active_only)


@router.post("/currencies", response_model=CurrencyResponse, status_code=201)
async def create_currency(data: CurrencyCreate, handle: TenantHandle = Depends(get_tenant_handle)):
    return CurrencyService(handle).create(data)


@router.put("/currencies/{currency_id}", response_model=CurrencyResponse)
async def update_currency(
    currency_id: int,
    data: CurrencyUpdate,
    handle: TenantHandle = Depends(get_tenant_handle)
):
    return CurrencyService(handle).update(currency_id, data)


@router.post("/currencies/{currency_id}/default", response_model=CurrencyResponse)
async def set_default_currency(currency_id: int, handle: TenantHandle = Depends(get_tenant_handle)):
    """Make a currency the base currency"""
    return CurrencyService(handle).set_default(currency_id)
