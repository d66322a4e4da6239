"""
Inventory API Routes - Products, branch stock, transfers, losses
"""
from fastapi import APIRouter, Depends
from typing import List

from backoffice.api.v1.deps import get_actor, get_clock, get_tenant_handle
from backoffice.core.clock import Clock
from backoffice.core.database import TenantHandle
from backoffice.schemas import (
    BranchInventoryResponse, InventoryAdjust, InventoryLossCreate, InventoryLossResponse,
    InventorySet, MessageResponse, ProductCostHistoryResponse, ProductCreate,
    ProductResponse, TransferCreate, TransferDecision, TransferResponse
)
from backoffice.services.inventory_loss_service import InventoryLossService
from backoffice.services.inventory_service import InventoryService, ProductService
from backoffice.services.transfer_service import TransferService

router = APIRouter(prefix="/inventory", tags=["Inventory"])


def get_inventory_service(
    handle: TenantHandle = Depends(get_tenant_handle),
    clock: Clock = Depends(get_clock)
) -> InventoryService:
    return InventoryService(handle, clock)


def get_transfer_service(
    handle: TenantHandle = Depends(get_tenant_handle),
    clock: Clock = Depends(get_clock)
) -> TransferService:
    return TransferService(handle, clock)


def get_loss_service(
    handle: TenantHandle = Depends(get_tenant_handle),
    clock: Clock = Depends(get_clock)
) -> InventoryLossService:
    return InventoryLossService(handle, clock)


# ==================== PRODUCTS ====================

@router.get("/products", response_model=List[ProductResponse])
async def list_products(
    include_inactive: bool = False,
    handle: TenantHandle = Depends(get_tenant_handle)
):
    return ProductService(handle).list(include_inactive)


@router.post("/products", response_model=ProductResponse, status_code=201)
async def create_product(
    product_data: ProductCreate,
    handle: TenantHandle = Depends(get_tenant_handle)
):
    return ProductService(handle).create(product_data)


@router.get("/products/{product_id}", response_model=ProductResponse)
async def get_product(product_id: int, handle: TenantHandle = Depends(get_tenant_handle)):
    return ProductService(handle).get_by_id(product_id)


@router.get("/products/{product_id}/cost-history", response_model=List[ProductCostHistoryResponse])
async def product_cost_history(product_id: int, handle: TenantHandle = Depends(get_tenant_handle)):
    """Standing-cost changes of a product"""
    return ProductService(handle).cost_history(product_id)


# ==================== BRANCH STOCK ====================

@router.get("/branches/{branch_id}", response_model=List[BranchInventoryResponse])
async def branch_inventory(
    branch_id: int,
    inventory_service: InventoryService = Depends(get_inventory_service)
):
    return inventory_service.branch_inventory(branch_id)


@router.get("/branches/{branch_id}/low-stock", response_model=List[BranchInventoryResponse])
async def low_stock(
    branch_id: int,
    inventory_service: InventoryService = Depends(get_inventory_service)
):
    """Stock rows below their minimum level, largest shortfall first"""
    return list(inventory_service.low_stock(branch_id))


@router.get("/branches/{branch_id}/products/{product_id}", response_model=BranchInventoryResponse)
async def get_stock(
    branch_id: int,
    product_id: int,
    inventory_service: InventoryService = Depends(get_inventory_service)
):
    return inventory_service.get_or_zero(branch_id, product_id)


@router.post("/adjust", response_model=BranchInventoryResponse)
async def adjust_stock(
    data: InventoryAdjust,
    inventory_service: InventoryService = Depends(get_inventory_service)
):
    """Add or remove stock"""
    return inventory_service.adjust(data.branch_id, data.product_id, data.delta)


@router.put("/set", response_model=BranchInventoryResponse)
async def set_stock(
    data: InventorySet,
    inventory_service: InventoryService = Depends(get_inventory_service)
):
    """Administrative stock correction"""
    return inventory_service.set_exact(
        data.branch_id, data.product_id, data.quantity, data.minimum_stock, data.maximum_stock
    )


# ==================== TRANSFERS ====================

@router.get("/transfers", response_model=List[TransferResponse])
async def list_transfers(
    branch_id: int = None,
    status: str = None,
    transfer_service: TransferService = Depends(get_transfer_service)
):
    return transfer_service.list(branch_id, status)


@router.post("/transfers", response_model=TransferResponse, status_code=201)
async def create_transfer(
    data: TransferCreate,
    transfer_service: TransferService = Depends(get_transfer_service),
    actor: str = Depends(get_actor)
):
    """Request a transfer between branches"""
    return transfer_service.create(data, actor)


@router.get("/transfers/{transfer_id}", response_model=TransferResponse)
async def get_transfer(
    transfer_id: int,
    transfer_service: TransferService = Depends(get_transfer_service)
):
    return transfer_service.get_by_id(transfer_id)


@router.post("/transfers/{transfer_id}/decision", response_model=TransferResponse)
async def decide_transfer(
    transfer_id: int,
    decision: TransferDecision,
    transfer_service: TransferService = Depends(get_transfer_service),
    actor: str = Depends(get_actor)
):
    """Approve or reject a pending transfer"""
    return transfer_service.approve_or_reject(transfer_id, decision.approved, actor, decision.notes)


@router.post("/transfers/{transfer_id}/complete", response_model=TransferResponse)
async def complete_transfer(
    transfer_id: int,
    transfer_service: TransferService = Depends(get_transfer_service),
    actor: str = Depends(get_actor)
):
    """Move the stock of an approved transfer"""
    return transfer_service.complete(transfer_id, actor)


# ==================== LOSSES ====================

@router.get("/losses", response_model=List[InventoryLossResponse])
async def list_losses(
    branch_id: int = None,
    status: str = None,
    loss_service: InventoryLossService = Depends(get_loss_service)
):
    return loss_service.list(branch_id, status)


@router.post("/losses", response_model=InventoryLossResponse, status_code=201)
async def create_loss(
    data: InventoryLossCreate,
    loss_service: InventoryLossService = Depends(get_loss_service),
    actor: str = Depends(get_actor)
):
    """Record a draft stock write-off"""
    return loss_service.create_loss(data, actor)


@router.get("/losses/{loss_id}", response_model=InventoryLossResponse)
async def get_loss(loss_id: int, loss_service: InventoryLossService = Depends(get_loss_service)):
    return loss_service.get_by_id(loss_id)


@router.post("/losses/{loss_id}/approve", response_model=InventoryLossResponse)
async def approve_loss(
    loss_id: int,
    loss_service: InventoryLossService = Depends(get_loss_service),
    actor: str = Depends(get_actor)
):
    """Approve a loss and deduct its stock"""
    return loss_service.approve(loss_id, actor)


@router.delete("/losses/{loss_id}", response_model=MessageResponse)
async def delete_loss(loss_id: int, loss_service: InventoryLossService = Depends(get_loss_service)):
    loss_service.delete(loss_id)
    return {"message": "Inventory loss deleted"}
