"""API endpoints for rewards, redemptions and code validation."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rewards_api.api.dependencies.security import require_validator_api_key
from rewards_api.api.dependencies.services import get_notifier, get_reachability_probe
from rewards_api.api.dependencies.session import require_member_session
from rewards_api.api.errors import raise_for_failure
from rewards_api.core.clock import ensure_aware
from rewards_api.db.session import get_session, get_session_factory
from rewards_api.models.account import Account
from rewards_api.models.ledger import PointsLedgerEntry
from rewards_api.models.rewards import (
    Redemption,
    RedemptionFrequency,
    RedemptionStatus,
    Reward,
    RewardValidationType,
    ValidationAuditEntry,
)
from rewards_api.services.ledger import PointsLedger
from rewards_api.services.notifications import Notifier
from rewards_api.services.rewards import (
    CancelFailure,
    ReachabilityProbe,
    RedeemFailure,
    RedemptionService,
    RewardCatalogReader,
    ValidationEngine,
    ValidationFailure,
    ValidationMetadata,
)
from rewards_api.services.rewards.codes import qr_image_url


router = APIRouter(prefix="/rewards", tags=["rewards"])


class RewardResponse(BaseModel):
    id: UUID
    businessId: UUID
    title: str
    description: Optional[str]
    category: Optional[str]
    pointsCost: int
    totalAvailable: int
    claimed: int
    unlimited: bool
    active: bool
    redemptionFrequency: RedemptionFrequency
    validationType: RewardValidationType
    validFrom: Optional[datetime]
    expiresAt: Optional[datetime]
    validUntil: Optional[datetime]
    validDays: List[int]
    validTimeStart: Optional[str]
    validTimeEnd: Optional[str]
    minPointsRequired: Optional[int]
    minPurchaseAmount: Optional[float]
    levelRequired: Optional[int]


_TIME_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


class RewardUpdateRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    pointsCost: Optional[int] = Field(None, gt=0)
    totalAvailable: Optional[int] = Field(None, ge=0)
    unlimited: Optional[bool] = None
    active: Optional[bool] = None
    redemptionFrequency: Optional[RedemptionFrequency] = None
    validationType: Optional[RewardValidationType] = None
    validFrom: Optional[datetime] = None
    expiresAt: Optional[datetime] = None
    validUntil: Optional[datetime] = None
    validDays: Optional[List[int]] = Field(None, description="ISO weekdays, 1 = Monday")
    validTimeStart: Optional[str] = Field(None, pattern=_TIME_PATTERN)
    validTimeEnd: Optional[str] = Field(None, pattern=_TIME_PATTERN)
    minPointsRequired: Optional[int] = Field(None, ge=0)
    minPurchaseAmount: Optional[Decimal] = Field(None, ge=0)
    levelRequired: Optional[int] = Field(None, ge=0)

    def to_fields(self) -> dict[str, Any]:
        return {_FIELD_NAMES[key]: value for key, value in self.model_dump(exclude_unset=True).items()}


class RewardCreateRequest(RewardUpdateRequest):
    title: str
    pointsCost: int = Field(..., gt=0)
    totalAvailable: int = Field(0, ge=0)


_FIELD_NAMES = {
    "title": "title",
    "description": "description",
    "category": "category",
    "pointsCost": "points_cost",
    "totalAvailable": "total_available",
    "unlimited": "unlimited",
    "active": "active",
    "redemptionFrequency": "redemption_frequency",
    "validationType": "validation_type",
    "validFrom": "valid_from",
    "expiresAt": "expires_at",
    "validUntil": "valid_until",
    "validDays": "valid_days",
    "validTimeStart": "valid_time_start",
    "validTimeEnd": "valid_time_end",
    "minPointsRequired": "min_points_required",
    "minPurchaseAmount": "min_purchase_amount",
    "levelRequired": "level_required",
}


class RedeemResponse(BaseModel):
    redemptionId: UUID
    code: str
    validationType: RewardValidationType
    pointsSpent: int
    balanceAfter: int
    expiresAt: Optional[datetime]
    qrImageUrl: Optional[str]


class RedemptionResponse(BaseModel):
    id: UUID
    rewardId: UUID
    businessId: UUID
    rewardTitle: Optional[str]
    businessName: Optional[str]
    pointsSpent: int
    status: RedemptionStatus
    code: Optional[str]
    validated: bool
    redeemedAt: datetime
    validatedAt: Optional[datetime]
    validatedBy: Optional[str]
    expiresAt: Optional[datetime]
    cancelledAt: Optional[datetime]


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class CancelResponse(BaseModel):
    redemptionId: UUID
    refundedPoints: int
    cancelledAt: datetime


class QrCodeResponse(BaseModel):
    redemptionId: UUID
    code: str
    imageUrl: str


class ValidateRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=128)
    businessId: UUID
    validatedBy: Optional[str] = None
    ipAddress: Optional[str] = None
    deviceId: Optional[str] = None


class ValidateResponse(BaseModel):
    redemptionId: UUID
    rewardId: UUID
    accountId: UUID
    rewardTitle: Optional[str]
    validatedAt: datetime
    validatedBy: Optional[str]
    method: str


class RedemptionStatusResponse(BaseModel):
    redemptionId: UUID
    status: RedemptionStatus
    validated: bool
    validatedAt: Optional[datetime]
    validatedBy: Optional[str]
    expiresAt: Optional[datetime]


class AuditEntryResponse(BaseModel):
    id: UUID
    redemptionId: Optional[UUID]
    rewardId: Optional[UUID]
    accountId: Optional[UUID]
    validatedBy: Optional[str]
    method: Optional[str]
    code: Optional[str]
    success: bool
    outcome: str
    reason: Optional[str]
    ipAddress: Optional[str]
    deviceId: Optional[str]
    createdAt: datetime


class LedgerEntryResponse(BaseModel):
    id: UUID
    direction: str
    amount: int
    reason: str
    referenceId: str
    balanceBefore: int
    balanceAfter: int
    occurredAt: datetime
    metadata: dict[str, Any] = Field(default_factory=dict)


class ExpireResponse(BaseModel):
    expired: int


def _aware(value: datetime | None) -> datetime | None:
    return ensure_aware(value) if value else None


def _serialize_reward(reward: Reward) -> RewardResponse:
    return RewardResponse(
        id=reward.id,
        businessId=reward.business_id,
        title=reward.title,
        description=reward.description,
        category=reward.category,
        pointsCost=reward.points_cost,
        totalAvailable=reward.total_available or 0,
        claimed=reward.claimed or 0,
        unlimited=bool(reward.unlimited),
        active=bool(reward.active),
        redemptionFrequency=reward.redemption_frequency,
        validationType=reward.validation_type,
        validFrom=_aware(reward.valid_from),
        expiresAt=_aware(reward.expires_at),
        validUntil=_aware(reward.valid_until),
        validDays=list(reward.valid_days or []),
        validTimeStart=reward.valid_time_start,
        validTimeEnd=reward.valid_time_end,
        minPointsRequired=reward.min_points_required,
        minPurchaseAmount=float(reward.min_purchase_amount) if reward.min_purchase_amount is not None else None,
        levelRequired=reward.level_required,
    )


def _serialize_redemption(redemption: Redemption) -> RedemptionResponse:
    snapshot = redemption.reward_snapshot or {}
    return RedemptionResponse(
        id=redemption.id,
        rewardId=redemption.reward_id,
        businessId=redemption.business_id,
        rewardTitle=snapshot.get("title"),
        businessName=snapshot.get("business_name"),
        pointsSpent=redemption.points_spent,
        status=redemption.status,
        code=redemption.code,
        validated=bool(redemption.validated),
        redeemedAt=ensure_aware(redemption.redeemed_at),
        validatedAt=_aware(redemption.validated_at),
        validatedBy=redemption.validated_by,
        expiresAt=_aware(redemption.expires_at),
        cancelledAt=_aware(redemption.cancelled_at),
    )


def _serialize_audit(entry: ValidationAuditEntry) -> AuditEntryResponse:
    return AuditEntryResponse(
        id=entry.id,
        redemptionId=entry.redemption_id,
        rewardId=entry.reward_id,
        accountId=entry.account_id,
        validatedBy=entry.validated_by,
        method=entry.validation_method.value if entry.validation_method else None,
        code=entry.code,
        success=bool(entry.success),
        outcome=entry.outcome,
        reason=entry.reason,
        ipAddress=entry.ip_address,
        deviceId=entry.device_id,
        createdAt=ensure_aware(entry.created_at),
    )


def _serialize_ledger_entry(entry: PointsLedgerEntry) -> LedgerEntryResponse:
    return LedgerEntryResponse(
        id=entry.id,
        direction=entry.direction.value,
        amount=entry.amount,
        reason=entry.reason,
        referenceId=entry.reference_id,
        balanceBefore=entry.balance_before,
        balanceAfter=entry.balance_after,
        occurredAt=ensure_aware(entry.created_at),
        metadata=dict(entry.metadata_json or {}),
    )


async def _load_reward(catalog: RewardCatalogReader, reward_id: UUID) -> Reward:
    reward = await catalog.get_reward(reward_id)
    if reward is None:
        raise HTTPException(status_code=404, detail="Reward not found")
    return reward


@router.get("", response_model=List[RewardResponse])
async def list_rewards(
    business_id: UUID | None = Query(None, alias="businessId"),
    db: AsyncSession = Depends(get_session),
) -> List[RewardResponse]:
    """List rewards that can currently be redeemed, cheapest first."""

    catalog = RewardCatalogReader(db)
    rewards = await catalog.list_active_rewards(business_id=business_id)
    return [_serialize_reward(reward) for reward in rewards]


@router.post(
    "/businesses/{business_id}",
    response_model=RewardResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_validator_api_key)],
)
async def create_reward(
    business_id: UUID,
    payload: RewardCreateRequest,
    db: AsyncSession = Depends(get_session),
) -> RewardResponse:
    fields = payload.to_fields()
    title = fields.pop("title")
    points_cost = fields.pop("points_cost")
    catalog = RewardCatalogReader(db)
    try:
        reward = await catalog.create_reward(business_id, title=title, points_cost=points_cost, **fields)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    await db.commit()
    return _serialize_reward(reward)


@router.patch(
    "/{reward_id}",
    response_model=RewardResponse,
    dependencies=[Depends(require_validator_api_key)],
)
async def update_reward(
    reward_id: UUID,
    payload: RewardUpdateRequest,
    db: AsyncSession = Depends(get_session),
) -> RewardResponse:
    catalog = RewardCatalogReader(db)
    reward = await _load_reward(catalog, reward_id)
    try:
        reward = await catalog.update_reward(reward, **payload.to_fields())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    await db.commit()
    await db.refresh(reward)
    return _serialize_reward(reward)


@router.post(
    "/{reward_id}/deactivate",
    response_model=RewardResponse,
    dependencies=[Depends(require_validator_api_key)],
)
async def deactivate_reward(
    reward_id: UUID,
    db: AsyncSession = Depends(get_session),
) -> RewardResponse:
    catalog = RewardCatalogReader(db)
    reward = await catalog.deactivate_reward(await _load_reward(catalog, reward_id))
    await db.commit()
    await db.refresh(reward)
    return _serialize_reward(reward)


@router.post(
    "/{reward_id}/redeem",
    response_model=RedeemResponse,
    status_code=status.HTTP_201_CREATED,
)
async def redeem_reward(
    reward_id: UUID,
    current_account: Account = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
    notifications: Notifier = Depends(get_notifier),
) -> RedeemResponse:
    """Spend points on a reward and receive a one-time code."""

    service = RedemptionService(db, notification_service=notifications)
    result = await service.redeem(current_account.id, reward_id)
    if isinstance(result, RedeemFailure):
        raise_for_failure(result, nextAvailableAt=result.next_available_at)
    return RedeemResponse(
        redemptionId=result.redemption_id,
        code=result.code,
        validationType=result.validation_type,
        pointsSpent=result.points_spent,
        balanceAfter=result.balance_after,
        expiresAt=result.expires_at,
        qrImageUrl=result.qr_image_url,
    )


@router.get("/redemptions", response_model=List[RedemptionResponse])
async def list_member_redemptions(
    limit: int = Query(50, ge=1, le=200),
    current_account: Account = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> List[RedemptionResponse]:
    service = RedemptionService(db)
    redemptions = await service.list_account_redemptions(current_account.id, limit=limit)
    return [_serialize_redemption(redemption) for redemption in redemptions]


@router.post(
    "/redemptions/validate",
    response_model=ValidateResponse,
    dependencies=[Depends(require_validator_api_key)],
)
async def validate_redemption(
    payload: ValidateRequest,
    request: Request,
    device_id: str | None = Header(None, alias="X-Device-Id"),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    probe: ReachabilityProbe = Depends(get_reachability_probe),
) -> ValidateResponse:
    """Consume a redemption code for a business, exactly once."""

    metadata = ValidationMetadata(
        ip_address=payload.ipAddress or (request.client.host if request.client else None),
        device_id=payload.deviceId or device_id,
    )
    engine = ValidationEngine(session_factory, probe=probe)
    result = await engine.validate(payload.code, payload.businessId, payload.validatedBy, metadata)
    if isinstance(result, ValidationFailure):
        raise_for_failure(
            result,
            redemptionId=str(result.redemption_id) if result.redemption_id else None,
            validatedAt=result.validated_at,
            validatedBy=result.validated_by,
        )
    return ValidateResponse(
        redemptionId=result.redemption_id,
        rewardId=result.reward_id,
        accountId=result.account_id,
        rewardTitle=result.reward_title,
        validatedAt=result.validated_at,
        validatedBy=result.validated_by,
        method=result.method.value,
    )


@router.get(
    "/redemptions/status",
    response_model=RedemptionStatusResponse,
    dependencies=[Depends(require_validator_api_key)],
)
async def get_redemption_status(
    code: str = Query(..., min_length=1),
    business_id: UUID = Query(..., alias="businessId"),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> RedemptionStatusResponse:
    """Re-check a code's state, e.g. after a timed-out validation."""

    engine = ValidationEngine(session_factory)
    view = await engine.check_status(code, business_id)
    if view is None:
        raise HTTPException(status_code=404, detail="Redemption code not found")
    return RedemptionStatusResponse(
        redemptionId=view.redemption_id,
        status=view.status,
        validated=view.validated,
        validatedAt=view.validated_at,
        validatedBy=view.validated_by,
        expiresAt=view.expires_at,
    )


@router.post(
    "/redemptions/expire",
    response_model=ExpireResponse,
    dependencies=[Depends(require_validator_api_key)],
)
async def expire_redemptions(db: AsyncSession = Depends(get_session)) -> ExpireResponse:
    service = RedemptionService(db)
    return ExpireResponse(expired=await service.expire_redemptions())


@router.post("/redemptions/{redemption_id}/cancel", response_model=CancelResponse)
async def cancel_redemption(
    redemption_id: UUID,
    payload: CancelRequest | None = None,
    current_account: Account = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
    notifications: Notifier = Depends(get_notifier),
) -> CancelResponse:
    service = RedemptionService(db, notification_service=notifications)
    result = await service.cancel_redemption(
        redemption_id,
        current_account.id,
        reason=payload.reason if payload else None,
    )
    if isinstance(result, CancelFailure):
        raise_for_failure(result)
    return CancelResponse(
        redemptionId=result.redemption_id,
        refundedPoints=result.refunded_points,
        cancelledAt=result.cancelled_at,
    )


@router.get("/redemptions/{redemption_id}/qr", response_model=QrCodeResponse)
async def get_redemption_qr(
    redemption_id: UUID,
    current_account: Account = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> QrCodeResponse:
    """Return the external QR image link for a redemption code."""

    service = RedemptionService(db)
    redemption = await service.get_redemption(redemption_id)
    if redemption is None or current_account.id not in (redemption.account_id, redemption.business_id):
        raise HTTPException(status_code=404, detail="Redemption not found")
    code = redemption.code
    if not code:
        raise HTTPException(status_code=404, detail="Redemption has no code")
    return QrCodeResponse(redemptionId=redemption.id, code=code, imageUrl=qr_image_url(code))


@router.get(
    "/businesses/{business_id}/redemptions",
    response_model=List[RedemptionResponse],
    dependencies=[Depends(require_validator_api_key)],
)
async def list_business_redemptions(
    business_id: UUID,
    status_filter: RedemptionStatus | None = Query(None, alias="status"),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_session),
) -> List[RedemptionResponse]:
    service = RedemptionService(db)
    redemptions = await service.list_business_redemptions(business_id, status=status_filter, limit=limit)
    return [_serialize_redemption(redemption) for redemption in redemptions]


@router.get(
    "/businesses/{business_id}/validation-audit",
    response_model=List[AuditEntryResponse],
    dependencies=[Depends(require_validator_api_key)],
)
async def list_validation_audit(
    business_id: UUID,
    limit: int | None = Query(None, ge=1, le=1000),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> List[AuditEntryResponse]:
    engine = ValidationEngine(session_factory)
    entries = await engine.list_audit_entries(business_id, limit=limit)
    return [_serialize_audit(entry) for entry in entries]


@router.get("/ledger", response_model=List[LedgerEntryResponse])
async def list_member_ledger(
    limit: int = Query(50, ge=1, le=200),
    current_account: Account = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> List[LedgerEntryResponse]:
    ledger = PointsLedger(db)
    entries = await ledger.list_entries(current_account.id, limit=limit)
    return [_serialize_ledger_entry(entry) for entry in entries]
