"""
捐赠API路由（面向捐赠者）
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from api.dependencies import get_checkout_service, get_donation_service
from application.dtos.donations import (
    CheckoutResponse,
    CreateOnlineDonation,
    DonationDTO,
    DonationSummary,
    ManualConfirmation,
)
from application.services.donation_service import DonationApplicationService
from core.response import Response as ApiResponse, success_response


router = APIRouter(prefix="/donations", tags=["Donations"])


@router.post(
    "",
    summary="在线捐赠（创建收银台会话）",
    status_code=status.HTTP_201_CREATED,
    response_model=ApiResponse[CheckoutResponse],
)
async def create_donation(
    payload: CreateOnlineDonation,
    service: DonationApplicationService = Depends(get_checkout_service),
):
    """
    创建 pending 捐赠并向网关申请收银台会话

    - 网关失败时记录会被删除，返回 502 "Transaction could not be created"
    """
    checkout = await service.create_online_donation(payload)
    return success_response(data=checkout, message="Donation created")


@router.post(
    "/confirm",
    summary="线下转账确认",
    status_code=status.HTTP_201_CREATED,
    response_model=ApiResponse[DonationDTO],
)
async def confirm_transfer(
    payload: ManualConfirmation,
    service: DonationApplicationService = Depends(get_donation_service),
):
    donation = await service.create_manual_confirmation(payload)
    return success_response(data=donation, message="Confirmation received")


@router.get("/summary", summary="已入账捐赠统计", response_model=ApiResponse[DonationSummary])
async def donation_summary(
    program_id: Optional[int] = Query(default=None, ge=1),
    service: DonationApplicationService = Depends(get_donation_service),
):
    summary = await service.summary(program_id)
    return success_response(data=summary)
