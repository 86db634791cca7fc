"""
运营API路由 - 捐赠核实、状态变更、超时清理与账本核对
"""
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from api.dependencies import get_donation_service, require_operator
from application.dtos.donations import (
    DonationDTO,
    DonationQuery,
    LedgerAudit,
    ManualDonation,
    SweepResult,
    UpdateDonationStatus,
)
from application.services.donation_service import DonationApplicationService
from core.config import settings
from core.response import PaginatedData, Response as ApiResponse, paginated_response, success_response
from domain.donation.entity import DonationStatus, PaymentSource


router = APIRouter(
    prefix="/admin",
    tags=["Admin donations"],
    dependencies=[Depends(require_operator)],
)


@router.get("/donations", summary="捐赠列表", response_model=ApiResponse[PaginatedData[DonationDTO]])
async def list_donations(
    status_: Optional[DonationStatus] = Query(default=None, alias="status"),
    program_id: Optional[int] = Query(default=None, ge=1),
    payment_source: Optional[PaymentSource] = Query(default=None),
    date_from: Optional[date] = Query(default=None),
    date_to: Optional[date] = Query(default=None),
    q: Optional[str] = Query(default=None, max_length=100),
    page: int = Query(default=1, ge=1),
    size: int = Query(default=settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    service: DonationApplicationService = Depends(get_donation_service),
):
    """
    按状态、项目、来源、日期区间（含两端）与关键字（编号/捐赠者）筛选
    """
    query = DonationQuery(
        status=status_,
        program_id=program_id,
        payment_source=payment_source,
        date_from=date_from,
        date_to=date_to,
        q=q,
        page=page,
        size=size,
    )
    items, total = await service.list_donations(query)
    return paginated_response(items=items, total=total, page=page, size=size)


@router.get("/donations/{donation_id}", summary="捐赠详情", response_model=ApiResponse[DonationDTO])
async def get_donation(
    donation_id: int,
    service: DonationApplicationService = Depends(get_donation_service),
):
    return success_response(data=await service.get_donation(donation_id))


@router.post(
    "/donations/manual",
    summary="录入已到账的线下捐赠",
    status_code=status.HTTP_201_CREATED,
    response_model=ApiResponse[DonationDTO],
)
async def record_manual_donation(
    payload: ManualDonation,
    service: DonationApplicationService = Depends(get_donation_service),
):
    donation = await service.record_manual_paid(payload)
    return success_response(data=donation, message="Donation recorded")


@router.patch("/donations/{donation_id}/status", summary="变更捐赠状态", response_model=ApiResponse[DonationDTO])
async def update_donation_status(
    donation_id: int,
    payload: UpdateDonationStatus,
    service: DonationApplicationService = Depends(get_donation_service),
):
    """
    沿状态机变更状态（核实转账 pending→paid、撤销 paid→failed 等）

    非法边返回 409，项目累计金额在同一事务内同步
    """
    donation = await service.update_status(donation_id, payload)
    return success_response(data=donation, message="Status updated")


@router.post("/donations/expire-stale", summary="清理超时未支付捐赠", response_model=ApiResponse[SweepResult])
async def expire_stale_donations(
    ttl_minutes: Optional[int] = Query(default=None, ge=0),
    service: DonationApplicationService = Depends(get_donation_service),
):
    result = await service.expire_stale_pending(ttl_minutes=ttl_minutes)
    return success_response(data=result)


@router.get("/programs/{program_id}/ledger", summary="项目账本核对", response_model=ApiResponse[LedgerAudit])
async def audit_program_ledger(
    program_id: int,
    service: DonationApplicationService = Depends(get_donation_service),
):
    return success_response(data=await service.audit_program_ledger(program_id))
