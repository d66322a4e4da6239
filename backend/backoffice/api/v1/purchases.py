"""
Purchases API Routes - Purchase orders, supplier payments, goods receipt
"""
from fastapi import APIRouter, Depends
from typing import List

from backoffice.api.v1.deps import get_actor, get_clock, get_tenant_handle
from backoffice.core.clock import Clock
from backoffice.core.database import TenantHandle
from backoffice.schemas import (
    MessageResponse, PurchaseCreate, PurchaseItemResponse, PurchasePaymentCreate,
    PurchasePaymentResponse, PurchaseResponse, PurchaseUpdate, PurchaseWithDetails,
    ReceiveGoods
)
from backoffice.services.purchase_service import PurchaseService

router = APIRouter(prefix="/purchases", tags=["Purchases"])


def get_purchase_service(
    handle: TenantHandle = Depends(get_tenant_handle),
    clock: Clock = Depends(get_clock)
) -> PurchaseService:
    return PurchaseService(handle, clock)


@router.get("", response_model=List[PurchaseResponse])
async def list_purchases(
    branch_id: int = None,
    supplier_id: int = None,
    status: str = None,
    purchase_service: PurchaseService = Depends(get_purchase_service)
):
    """List purchase orders"""
    return purchase_service.list(branch_id, supplier_id, status)


@router.get("/unpaid", response_model=List[PurchaseResponse])
async def list_unpaid_purchases(purchase_service: PurchaseService = Depends(get_purchase_service)):
    """List submitted purchases with an outstanding balance"""
    return purchase_service.unpaid()


@router.get("/products/{product_id}/history", response_model=List[PurchaseItemResponse])
async def product_purchase_history(
    product_id: int,
    purchase_service: PurchaseService = Depends(get_purchase_service)
):
    return purchase_service.product_purchase_history(product_id)


@router.post("", response_model=PurchaseWithDetails, status_code=201)
async def create_purchase(
    purchase_data: PurchaseCreate,
    purchase_service: PurchaseService = Depends(get_purchase_service),
    actor: str = Depends(get_actor)
):
    """Create a draft purchase order"""
    purchase = purchase_service.create(purchase_data, actor)
    return purchase_service.get_by_id(purchase.id)


@router.get("/{purchase_id}", response_model=PurchaseWithDetails)
async def get_purchase(
    purchase_id: int,
    purchase_service: PurchaseService = Depends(get_purchase_service)
):
    return purchase_service.get_by_id(purchase_id)


@router.put("/{purchase_id}", response_model=PurchaseWithDetails)
async def update_purchase(
    purchase_id: int,
    purchase_data: PurchaseUpdate,
    purchase_service: PurchaseService = Depends(get_purchase_service)
):
    """Edit a draft purchase order"""
    purchase_service.update(purchase_id, purchase_data)
    return purchase_service.get_by_id(purchase_id)


@router.post("/{purchase_id}/submit", response_model=PurchaseResponse)
async def submit_purchase(
    purchase_id: int,
    purchase_service: PurchaseService = Depends(get_purchase_service),
    actor: str = Depends(get_actor)
):
    return purchase_service.submit(purchase_id, actor)


@router.delete("/{purchase_id}", response_model=MessageResponse)
async def cancel_purchase(
    purchase_id: int,
    purchase_service: PurchaseService = Depends(get_purchase_service)
):
    """Cancel (delete) a draft purchase order"""
    purchase_service.cancel(purchase_id)
    return {"message": "Purchase cancelled"}


@router.post("/{purchase_id}/payments", response_model=PurchasePaymentResponse, status_code=201)
async def add_purchase_payment(
    purchase_id: int,
    payment_data: PurchasePaymentCreate,
    purchase_service: PurchaseService = Depends(get_purchase_service),
    actor: str = Depends(get_actor)
):
    """Record a supplier payment"""
    return purchase_service.add_payment(purchase_id, payment_data, actor)


@router.delete("/payments/{payment_id}", response_model=PurchaseResponse)
async def delete_purchase_payment(
    payment_id: int,
    purchase_service: PurchaseService = Depends(get_purchase_service)
):
    return purchase_service.delete_payment(payment_id)


@router.post("/{purchase_id}/receive", response_model=PurchaseWithDetails)
async def receive_goods(
    purchase_id: int,
    receipt: ReceiveGoods,
    purchase_service: PurchaseService = Depends(get_purchase_service),
    actor: str = Depends(get_actor)
):
    """Receive delivered goods into branch stock"""
    purchase_service.receive_goods(purchase_id, receipt, actor)
    return purchase_service.get_by_id(purchase_id)
