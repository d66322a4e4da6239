"""
Expenses API Routes - Expenses, categories, recurring generation, reports
"""
from fastapi import APIRouter, Depends
from typing import List, Optional
from datetime import date
from decimal import Decimal

from backoffice.api.v1.deps import get_actor, get_clock, get_tenant_handle
from backoffice.core.clock import Clock
from backoffice.core.database import TenantHandle
from backoffice.schemas import (
    ExpenseCategoryCreate, ExpenseCategoryResponse, ExpenseCategoryTree, ExpenseCategoryUpdate,
    ExpenseCreate, ExpensePaymentCreate, ExpensePaymentResponse, ExpenseReject,
    ExpenseReport, ExpenseResponse, ExpenseUpdate, MessageResponse
)
from backoffice.services.expense_category_service import ExpenseCategoryService
from backoffice.services.expense_service import ExpenseService

router = APIRouter(prefix="/expenses", tags=["Expenses"])


def get_expense_service(
    handle: TenantHandle = Depends(get_tenant_handle),
    clock: Clock = Depends(get_clock)
) -> ExpenseService:
    return ExpenseService(handle, clock)


# ==================== CATEGORIES ====================

@router.get("/categories", response_model=List[ExpenseCategoryResponse])
async def list_categories(
    branch_id: int,
    active_only: bool = False,
    handle: TenantHandle = Depends(get_tenant_handle)
):
    return ExpenseCategoryService(handle).list(branch_id, active_only)


@router.get("/categories/tree", response_model=List[ExpenseCategoryTree])
async def category_tree(branch_id: int, handle: TenantHandle = Depends(get_tenant_handle)):
    """Active categories of a branch as a tree"""
    return ExpenseCategoryService(handle).tree(branch_id)


@router.post("/categories/initialize", response_model=List[ExpenseCategoryResponse], status_code=201)
async def initialize_categories(branch_id: int, handle: TenantHandle = Depends(get_tenant_handle)):
    """Seed the default categories of a branch"""
    return ExpenseCategoryService(handle).initialize_defaults(branch_id)


@router.post("/categories", response_model=ExpenseCategoryResponse, status_code=201)
async def create_category(
    data: ExpenseCategoryCreate,
    handle: TenantHandle = Depends(get_tenant_handle)
):
    return ExpenseCategoryService(handle).create(data)


@router.put("/categories/{category_id}", response_model=ExpenseCategoryResponse)
async def update_category(
    category_id: int,
    data: ExpenseCategoryUpdate,
    handle: TenantHandle = Depends(get_tenant_handle)
):
    return ExpenseCategoryService(handle).update(category_id, data)


@router.delete("/categories/{category_id}", response_model=ExpenseCategoryResponse)
async def delete_category(category_id: int, handle: TenantHandle = Depends(get_tenant_handle)):
    """Deactivate a category"""
    return ExpenseCategoryService(handle).delete(category_id)


# ==================== EXPENSES ====================

@router.get("", response_model=List[ExpenseResponse])
async def list_expenses(
    branch_id: int = None,
    category_id: int = None,
    status: str = None,
    start_date: date = None,
    end_date: date = None,
    min_amount: Optional[Decimal] = None,
    max_amount: Optional[Decimal] = None,
    is_tax_deductible: Optional[bool] = None,
    limit: int = 50,
    offset: int = 0,
    expense_service: ExpenseService = Depends(get_expense_service)
):
    """List expenses"""
    return expense_service.list(
        branch_id, category_id, status, start_date, end_date,
        min_amount, max_amount, is_tax_deductible, limit, offset
    )


@router.get("/report", response_model=ExpenseReport)
async def expense_report(
    branch_id: int,
    start_date: date,
    end_date: date,
    expense_service: ExpenseService = Depends(get_expense_service)
):
    return expense_service.report(branch_id, start_date, end_date)


@router.post("/recurring/generate", response_model=List[ExpenseResponse])
async def generate_recurring(
    expense_service: ExpenseService = Depends(get_expense_service),
    actor: str = Depends(get_actor)
):
    """Create the next occurrence of every due recurring expense"""
    return expense_service.generate_recurring(actor)


@router.post("", response_model=ExpenseResponse, status_code=201)
async def create_expense(
    expense_data: ExpenseCreate,
    expense_service: ExpenseService = Depends(get_expense_service),
    actor: str = Depends(get_actor)
):
    """Create a draft expense"""
    return expense_service.create(expense_data, actor)


@router.get("/{expense_id}", response_model=ExpenseResponse)
async def get_expense(expense_id: int, expense_service: ExpenseService = Depends(get_expense_service)):
    return expense_service.get_by_id(expense_id)


@router.put("/{expense_id}", response_model=ExpenseResponse)
async def update_expense(
    expense_id: int,
    expense_data: ExpenseUpdate,
    expense_service: ExpenseService = Depends(get_expense_service)
):
    return expense_service.update(expense_id, expense_data)


@router.delete("/{expense_id}", response_model=MessageResponse)
async def delete_expense(expense_id: int, expense_service: ExpenseService = Depends(get_expense_service)):
    expense_service.delete(expense_id)
    return {"message": "Expense deleted"}


@router.post("/{expense_id}/submit", response_model=ExpenseResponse)
async def submit_expense(
    expense_id: int,
    expense_service: ExpenseService = Depends(get_expense_service),
    actor: str = Depends(get_actor)
):
    return expense_service.submit(expense_id, actor)


@router.post("/{expense_id}/approve", response_model=ExpenseResponse)
async def approve_expense(
    expense_id: int,
    expense_service: ExpenseService = Depends(get_expense_service),
    actor: str = Depends(get_actor)
):
    return expense_service.approve(expense_id, actor)


@router.post("/{expense_id}/reject", response_model=ExpenseResponse)
async def reject_expense(
    expense_id: int,
    data: ExpenseReject,
    expense_service: ExpenseService = Depends(get_expense_service),
    actor: str = Depends(get_actor)
):
    """Reject a submitted expense; a reason is required"""
    return expense_service.reject(expense_id, actor, data.reason)


@router.get("/{expense_id}/payments", response_model=List[ExpensePaymentResponse])
async def list_expense_payments(expense_id: int, expense_service: ExpenseService = Depends(get_expense_service)):
    return expense_service.payments(expense_id)


@router.post("/{expense_id}/payments", response_model=ExpensePaymentResponse, status_code=201)
async def add_expense_payment(
    expense_id: int,
    payment_data: ExpensePaymentCreate,
    expense_service: ExpenseService = Depends(get_expense_service),
    actor: str = Depends(get_actor)
):
    """Record a payment against an approved expense"""
    return expense_service.add_payment(expense_id, payment_data, actor)
