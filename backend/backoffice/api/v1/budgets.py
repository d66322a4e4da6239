"""
Expense Budgets API Routes
"""
from fastapi import APIRouter, Depends
from typing import List

from backoffice.api.v1.deps import get_actor, get_clock, get_tenant_handle
from backoffice.core.clock import Clock
from backoffice.core.database import TenantHandle
from backoffice.schemas import (
    BudgetPeriodEnum, BudgetUtilizationResponse, ExpenseBudgetCreate,
    ExpenseBudgetResponse, ExpenseBudgetUpdate, MessageResponse
)
from backoffice.services.expense_budget_service import ExpenseBudgetService

router = APIRouter(prefix="/budgets", tags=["Budgets"])


def get_budget_service(
    handle: TenantHandle = Depends(get_tenant_handle),
    clock: Clock = Depends(get_clock)
) -> ExpenseBudgetService:
    return ExpenseBudgetService(handle, clock)


def _utilization_response(utilization: dict) -> BudgetUtilizationResponse:
    return BudgetUtilizationResponse(
        **{key: value for key, value in utilization.items() if key != "budget"},
        budget=ExpenseBudgetResponse.model_validate(utilization["budget"]),
    )


@router.get("", response_model=List[ExpenseBudgetResponse])
async def list_budgets(
    branch_id: int,
    year: int = None,
    budget_service: ExpenseBudgetService = Depends(get_budget_service)
):
    return budget_service.list(branch_id, year)


@router.post("", response_model=ExpenseBudgetResponse, status_code=201)
async def create_budget(
    data: ExpenseBudgetCreate,
    budget_service: ExpenseBudgetService = Depends(get_budget_service),
    actor: str = Depends(get_actor)
):
    return budget_service.create(data, actor)


@router.get("/utilization", response_model=List[BudgetUtilizationResponse])
async def budget_utilization(
    branch_id: int,
    period: BudgetPeriodEnum = None,
    year: int = None,
    month: int = None,
    quarter: int = None,
    budget_service: ExpenseBudgetService = Depends(get_budget_service)
):
    """Actual spend against budget"""
    return [
        _utilization_response(u)
        for u in budget_service.utilization(branch_id, period, year, month, quarter)
    ]


@router.get("/over-budget", response_model=List[BudgetUtilizationResponse])
async def over_budget(branch_id: int, budget_service: ExpenseBudgetService = Depends(get_budget_service)):
    """Overspent budgets of the current month, quarter and year"""
    return [_utilization_response(u) for u in budget_service.over_budget(branch_id)]


@router.get("/{budget_id}", response_model=ExpenseBudgetResponse)
async def get_budget(budget_id: int, budget_service: ExpenseBudgetService = Depends(get_budget_service)):
    return budget_service.get_by_id(budget_id)


@router.put("/{budget_id}", response_model=ExpenseBudgetResponse)
async def update_budget(
    budget_id: int,
    data: ExpenseBudgetUpdate,
    budget_service: ExpenseBudgetService = Depends(get_budget_service)
):
    return budget_service.update(budget_id, data)


@router.delete("/{budget_id}", response_model=MessageResponse)
async def delete_budget(budget_id: int, budget_service: ExpenseBudgetService = Depends(get_budget_service)):
    budget_service.delete(budget_id)
    return {"message": "Budget deleted"}
