"""API endpoints for business special offers."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from rewards_api.api.dependencies.security import require_validator_api_key
from rewards_api.api.dependencies.services import get_notifier
from rewards_api.api.dependencies.session import require_member_session
from rewards_api.api.errors import raise_for_failure
from rewards_api.core.clock import ensure_aware
from rewards_api.db.session import get_session
from rewards_api.models.account import Account
from rewards_api.models.offers import OfferType, SpecialOffer
from rewards_api.models.rewards import RedemptionStatus
from rewards_api.services.notifications import Notifier
from rewards_api.services.offers import (
    DuplicateOfferCodeError,
    OfferRedeemFailure,
    OfferService,
)


router = APIRouter(prefix="/offers", tags=["offers"])


class OfferCreateRequest(BaseModel):
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    offerType: OfferType
    discountValue: Optional[Decimal] = Field(None, ge=0)
    offerCode: str = Field(..., min_length=1, max_length=64)
    minPurchaseAmount: Optional[Decimal] = Field(None, ge=0)
    maxRedemptionsTotal: Optional[int] = Field(None, gt=0)
    maxRedemptionsPerUser: Optional[int] = Field(None, gt=0)
    startsAt: datetime
    expiresAt: datetime
    rewardPoints: int = Field(0, ge=0)


class OfferResponse(BaseModel):
    id: UUID
    businessId: UUID
    title: str
    description: Optional[str]
    offerType: OfferType
    discountValue: Optional[float]
    offerCode: str
    minPurchaseAmount: Optional[float]
    maxRedemptionsTotal: Optional[int]
    maxRedemptionsPerUser: Optional[int]
    startsAt: datetime
    expiresAt: datetime
    isActive: bool
    totalRedemptions: int
    rewardPoints: int


class OfferRedeemRequest(BaseModel):
    businessId: UUID
    offerCode: str = Field(..., min_length=1, max_length=64)
    purchaseAmount: Optional[Decimal] = Field(None, ge=0)
    orderNumber: Optional[str] = None


class OfferRedeemResponse(BaseModel):
    redemptionId: UUID
    offerId: UUID
    pointsEarned: int
    balanceAfter: Optional[int]


class OfferRedemptionResponse(BaseModel):
    id: UUID
    offerId: UUID
    offerTitle: Optional[str]
    offerCode: str
    businessId: UUID
    status: RedemptionStatus
    redeemedAt: datetime
    purchaseAmount: Optional[float]
    orderNumber: Optional[str]
    pointsEarned: int


class OfferStatsResponse(BaseModel):
    totalRedemptions: int
    uniqueUsers: int
    totalRevenue: float
    averageOrderValue: float


def _optional_float(value: Decimal | None) -> float | None:
    return float(value) if value is not None else None


def _serialize_offer(offer: SpecialOffer) -> OfferResponse:
    return OfferResponse(
        id=offer.id,
        businessId=offer.business_id,
        title=offer.title,
        description=offer.description,
        offerType=offer.offer_type,
        discountValue=_optional_float(offer.discount_value),
        offerCode=offer.offer_code,
        minPurchaseAmount=_optional_float(offer.min_purchase_amount),
        maxRedemptionsTotal=offer.max_redemptions_total,
        maxRedemptionsPerUser=offer.max_redemptions_per_user,
        startsAt=ensure_aware(offer.starts_at),
        expiresAt=ensure_aware(offer.expires_at),
        isActive=bool(offer.is_active),
        totalRedemptions=offer.total_redemptions or 0,
        rewardPoints=offer.reward_points or 0,
    )


@router.post(
    "/businesses/{business_id}",
    response_model=OfferResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_validator_api_key)],
)
async def create_offer(
    business_id: UUID,
    payload: OfferCreateRequest,
    db: AsyncSession = Depends(get_session),
) -> OfferResponse:
    service = OfferService(db)
    try:
        offer = await service.create_offer(
            business_id,
            title=payload.title,
            description=payload.description,
            offer_type=payload.offerType,
            discount_value=payload.discountValue,
            offer_code=payload.offerCode,
            min_purchase_amount=payload.minPurchaseAmount,
            max_redemptions_total=payload.maxRedemptionsTotal,
            max_redemptions_per_user=payload.maxRedemptionsPerUser,
            starts_at=payload.startsAt,
            expires_at=payload.expiresAt,
            reward_points=payload.rewardPoints,
        )
    except DuplicateOfferCodeError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    await db.commit()
    return _serialize_offer(offer)


@router.get("/businesses/{business_id}", response_model=List[OfferResponse])
async def list_business_offers(
    business_id: UUID,
    active_only: bool = Query(False, alias="activeOnly"),
    db: AsyncSession = Depends(get_session),
) -> List[OfferResponse]:
    service = OfferService(db)
    offers = await service.list_business_offers(business_id, active_only=active_only)
    return [_serialize_offer(offer) for offer in offers]


@router.post("/redeem", response_model=OfferRedeemResponse)
async def redeem_offer(
    payload: OfferRedeemRequest,
    current_account: Account = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
    notifications: Notifier = Depends(get_notifier),
) -> OfferRedeemResponse:
    """Apply a promo code and credit its points immediately."""

    service = OfferService(db, notification_service=notifications)
    result = await service.redeem_offer(
        current_account.id,
        payload.businessId,
        payload.offerCode,
        purchase_amount=payload.purchaseAmount,
        order_number=payload.orderNumber,
    )
    if isinstance(result, OfferRedeemFailure):
        raise_for_failure(result)
    return OfferRedeemResponse(
        redemptionId=result.redemption_id,
        offerId=result.offer_id,
        pointsEarned=result.points_earned,
        balanceAfter=result.balance_after,
    )


@router.get("/redemptions", response_model=List[OfferRedemptionResponse])
async def list_member_offer_redemptions(
    limit: int = Query(50, ge=1, le=200),
    current_account: Account = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> List[OfferRedemptionResponse]:
    service = OfferService(db)
    redemptions = await service.list_account_offer_redemptions(current_account.id, limit=limit)
    return [
        OfferRedemptionResponse(
            id=redemption.id,
            offerId=redemption.offer_id,
            offerTitle=redemption.offer.title if redemption.offer else None,
            offerCode=redemption.offer_code,
            businessId=redemption.business_id,
            status=redemption.status,
            redeemedAt=ensure_aware(redemption.redeemed_at),
            purchaseAmount=_optional_float(redemption.purchase_amount),
            orderNumber=redemption.order_number,
            pointsEarned=redemption.points_earned or 0,
        )
        for redemption in redemptions
    ]


@router.post(
    "/{offer_id}/deactivate",
    response_model=OfferResponse,
    dependencies=[Depends(require_validator_api_key)],
)
async def deactivate_offer(
    offer_id: UUID,
    db: AsyncSession = Depends(get_session),
) -> OfferResponse:
    service = OfferService(db)
    offer = await service.get_offer(offer_id)
    if offer is None:
        raise HTTPException(status_code=404, detail="Offer not found")
    offer = await service.deactivate_offer(offer)
    await db.commit()
    await db.refresh(offer)
    return _serialize_offer(offer)


@router.get(
    "/{offer_id}/stats",
    response_model=OfferStatsResponse,
    dependencies=[Depends(require_validator_api_key)],
)
async def get_offer_stats(
    offer_id: UUID,
    db: AsyncSession = Depends(get_session),
) -> OfferStatsResponse:
    service = OfferService(db)
    if await service.get_offer(offer_id) is None:
        raise HTTPException(status_code=404, detail="Offer not found")
    stats = await service.offer_stats(offer_id)
    return OfferStatsResponse(
        totalRedemptions=stats.total_redemptions,
        uniqueUsers=stats.unique_users,
        totalRevenue=float(stats.total_revenue),
        averageOrderValue=float(stats.average_order_value),
    )
