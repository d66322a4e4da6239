"""
Returns API Routes - Customer returns and refunds
"""
from fastapi import APIRouter, Depends
from typing import List
from datetime import datetime

from backoffice.api.v1.deps import get_actor, get_clock, get_tenant_handle
from backoffice.core.clock import Clock
from backoffice.core.database import TenantHandle
from backoffice.schemas import (
    MessageResponse, ReturnCreate, ReturnRefundCreate, ReturnRefundResponse,
    ReturnReport, ReturnResponse, ReturnUpdate, ReturnWithDetails
)
from backoffice.services.return_service import ReturnService

router = APIRouter(prefix="/returns", tags=["Returns"])


def get_return_service(
    handle: TenantHandle = Depends(get_tenant_handle),
    clock: Clock = Depends(get_clock)
) -> ReturnService:
    return ReturnService(handle, clock)


@router.get("", response_model=List[ReturnResponse])
async def list_returns(
    branch_id: int = None,
    status: str = None,
    start_date: datetime = None,
    end_date: datetime = None,
    limit: int = 50,
    offset: int = 0,
    return_service: ReturnService = Depends(get_return_service)
):
    return return_service.list(branch_id, status, start_date, end_date, limit, offset)


@router.get("/report", response_model=ReturnReport)
async def return_report(
    branch_id: int,
    start_date: datetime,
    end_date: datetime,
    return_service: ReturnService = Depends(get_return_service)
):
    """Processed returns of a branch over a date range"""
    return return_service.report(branch_id, start_date, end_date)


@router.post("", response_model=ReturnWithDetails, status_code=201)
async def create_return(
    return_data: ReturnCreate,
    return_service: ReturnService = Depends(get_return_service),
    actor: str = Depends(get_actor)
):
    """Create a draft return against a sale, layby or quotation"""
    return_record = return_service.create(return_data, actor)
    return return_service.get_by_id(return_record.id)


@router.get("/{return_id}", response_model=ReturnWithDetails)
async def get_return(return_id: int, return_service: ReturnService = Depends(get_return_service)):
    return return_service.get_by_id(return_id)


@router.put("/{return_id}", response_model=ReturnWithDetails)
async def update_return(
    return_id: int,
    return_data: ReturnUpdate,
    return_service: ReturnService = Depends(get_return_service)
):
    return_service.update(return_id, return_data)
    return return_service.get_by_id(return_id)


@router.delete("/{return_id}", response_model=MessageResponse)
async def delete_return(return_id: int, return_service: ReturnService = Depends(get_return_service)):
    return_service.delete(return_id)
    return {"message": "Return deleted"}


@router.post("/{return_id}/approve", response_model=ReturnResponse)
async def approve_return(
    return_id: int,
    return_service: ReturnService = Depends(get_return_service),
    actor: str = Depends(get_actor)
):
    return return_service.approve(return_id, actor)


@router.post("/{return_id}/process", response_model=ReturnWithDetails)
async def process_return(
    return_id: int,
    return_service: ReturnService = Depends(get_return_service),
    actor: str = Depends(get_actor)
):
    """Restock good items and write off damaged ones"""
    return_service.process(return_id, actor)
    return return_service.get_by_id(return_id)


@router.post("/{return_id}/refunds", response_model=ReturnRefundResponse, status_code=201)
async def add_refund(
    return_id: int,
    refund_data: ReturnRefundCreate,
    return_service: ReturnService = Depends(get_return_service),
    actor: str = Depends(get_actor)
):
    """Pay out a refund against a processed return"""
    return return_service.add_refund(return_id, refund_data, actor)
