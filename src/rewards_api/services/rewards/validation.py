"""One-time redemption code validation.

Validation is a two-phase operation:

1. a cheap, non-authoritative read that answers the common "already used" and
   "expired" cases without opening a write transaction;
2. an authoritative compare-and-set in its own transaction that re-reads the row
   (``SELECT ... FOR UPDATE`` where the database supports it) and flips
   ``validated`` with a conditional ``UPDATE``. Only the transaction whose update
   matches a row wins; every other attempt reports ``ALREADY_VALIDATED``.

The guarantee comes from the database, never from in-process locks, so it holds
across processes and validator devices.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rewards_api.core.clock import ensure_aware, utcnow
from rewards_api.core.settings import Settings, get_settings
from rewards_api.models.rewards import (
    Redemption,
    RedemptionStatus,
    ValidationAuditEntry,
    ValidationMethod,
)
from rewards_api.observability.rewards import get_rewards_store

from .codes import CodeType, detect_code_type, normalize_code
from .fraud import ReachabilityProbe
from .results import (
    RedemptionStatusView,
    ValidationErrorCode,
    ValidationFailure,
    ValidationResult,
    ValidationSuccess,
)


ONLINE_VALIDATOR = "ONLINE_SYSTEM"
VALIDATABLE_STATUSES = (RedemptionStatus.PENDING, RedemptionStatus.REDEEMED)

MSG_INVALID_FORMAT = "Invalid code. Please check the code and try again."
MSG_NOT_FOUND = "Invalid QR code. This code does not exist or has expired."
MSG_EXPIRED = "This reward has expired and can no longer be redeemed."
MSG_CANCELLED = "This redemption was cancelled and can no longer be used."
MSG_OFFLINE = "No internet connection. Validation requires an online connection."
MSG_ERROR = "Validation failed. Please try again or contact support."


@dataclass(slots=True)
class ValidationMetadata:
    """Fraud signals captured from the validating device."""

    ip_address: str | None = None
    device_id: str | None = None


@dataclass(slots=True)
class _PreCheck:
    redemption_id: UUID
    reward_id: UUID
    account_id: UUID


def _already_used_message(validated_at: datetime | None) -> str:
    if validated_at is None:
        return "This code was already used. Each code can only be used once."
    stamp = ensure_aware(validated_at).strftime("%Y-%m-%d %H:%M UTC")
    return f"This code was already used on {stamp}. Each code can only be used once."


def _is_expired(redemption: Redemption, now: datetime) -> bool:
    if redemption.status == RedemptionStatus.EXPIRED:
        return True
    return redemption.expires_at is not None and ensure_aware(redemption.expires_at) < now


class ValidationEngine:
    """Consume redemption codes exactly once and keep an audit trail.

    The engine opens its own sessions from ``session_factory`` so the pre-check,
    the compare-and-set and any failure audit each run in separate transactions.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        probe: ReachabilityProbe | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._settings = settings or get_settings()
        self._probe = probe or ReachabilityProbe(settings=self._settings)
        self._metrics = get_rewards_store()

    async def validate(
        self,
        code: str,
        business_id: UUID,
        validated_by: str | None = None,
        metadata: ValidationMetadata | None = None,
        *,
        now: datetime | None = None,
    ) -> ValidationResult:
        metadata = metadata or ValidationMetadata()
        normalized = normalize_code(code)
        code_type = detect_code_type(normalized)
        if code_type is None:
            logger.info("Rejected malformed redemption code", business_id=str(business_id), length=len(normalized))
            return self._finish(ValidationFailure(ValidationErrorCode.CODE_NOT_FOUND, MSG_INVALID_FORMAT))

        if not await self._probe.verify_online_connection():
            return self._finish(ValidationFailure(ValidationErrorCode.NETWORK_UNAVAILABLE, MSG_OFFLINE))

        method = ValidationMethod.QR_SCAN if code_type is CodeType.QR else ValidationMethod.CODE_ENTRY
        if validated_by is None and method is ValidationMethod.CODE_ENTRY:
            validated_by = ONLINE_VALIDATOR
        now = ensure_aware(now or utcnow())

        audit = _AuditContext(
            business_id=business_id,
            code=normalized,
            method=method,
            validated_by=validated_by,
            metadata=metadata,
        )

        try:
            pre_check, failure = await self._pre_check(normalized, code_type, business_id, now)
            if failure is None:
                result = await self._compare_and_set(pre_check, audit, now)
            else:
                result = failure
        except Exception as exc:
            logger.exception(
                "Redemption validation failed",
                business_id=str(business_id),
                method=method.value,
            )
            await self._record_failure(audit, None, ValidationErrorCode.VALIDATION_ERROR, str(exc))
            return self._finish(ValidationFailure(ValidationErrorCode.VALIDATION_ERROR, MSG_ERROR))

        if isinstance(result, ValidationFailure):
            await self._record_failure(audit, pre_check, result.code, result.message)
        return self._finish(result)

    async def check_status(self, code: str, business_id: UUID) -> RedemptionStatusView | None:
        """Re-read a code's state, e.g. after a client-side timeout."""

        normalized = normalize_code(code)
        code_type = detect_code_type(normalized)
        if code_type is None:
            return None

        async with self._session_factory() as session:
            redemption = await self._find_redemption(session, normalized, code_type, business_id)
        if redemption is None:
            return None
        return RedemptionStatusView(
            redemption_id=redemption.id,
            status=redemption.status,
            validated=bool(redemption.validated),
            validated_at=ensure_aware(redemption.validated_at) if redemption.validated_at else None,
            validated_by=redemption.validated_by,
            expires_at=ensure_aware(redemption.expires_at) if redemption.expires_at else None,
        )

    async def list_audit_entries(
        self,
        business_id: UUID,
        *,
        limit: int | None = None,
    ) -> list[ValidationAuditEntry]:
        stmt = (
            select(ValidationAuditEntry)
            .where(ValidationAuditEntry.business_id == business_id)
            .order_by(ValidationAuditEntry.created_at.desc(), ValidationAuditEntry.id.desc())
            .limit(limit or self._settings.audit_log_default_limit)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    @staticmethod
    async def _find_redemption(
        session: AsyncSession,
        code: str,
        code_type: CodeType,
        business_id: UUID,
    ) -> Redemption | None:
        column = Redemption.qr_code if code_type is CodeType.QR else Redemption.alphanumeric_code
        stmt = select(Redemption).where(Redemption.business_id == business_id, column == code).limit(1)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    async def _pre_check(
        self,
        code: str,
        code_type: CodeType,
        business_id: UUID,
        now: datetime,
    ) -> tuple[_PreCheck | None, ValidationFailure | None]:
        async with self._session_factory() as session:
            redemption = await self._find_redemption(session, code, code_type, business_id)

        if redemption is None:
            return None, ValidationFailure(ValidationErrorCode.CODE_NOT_FOUND, MSG_NOT_FOUND)

        pre_check = _PreCheck(
            redemption_id=redemption.id,
            reward_id=redemption.reward_id,
            account_id=redemption.account_id,
        )
        failure = self._reject_state(redemption, now)
        return pre_check, failure

    @staticmethod
    def _reject_state(redemption: Redemption, now: datetime) -> ValidationFailure | None:
        if redemption.validated:
            return ValidationFailure(
                ValidationErrorCode.ALREADY_VALIDATED,
                _already_used_message(redemption.validated_at),
                redemption_id=redemption.id,
                validated_at=ensure_aware(redemption.validated_at) if redemption.validated_at else None,
                validated_by=redemption.validated_by,
            )
        if redemption.status == RedemptionStatus.CANCELLED:
            return ValidationFailure(ValidationErrorCode.CANCELLED, MSG_CANCELLED, redemption_id=redemption.id)
        if _is_expired(redemption, now):
            return ValidationFailure(ValidationErrorCode.EXPIRED, MSG_EXPIRED, redemption_id=redemption.id)
        if redemption.status not in VALIDATABLE_STATUSES:
            return ValidationFailure(
                ValidationErrorCode.ALREADY_VALIDATED,
                _already_used_message(redemption.used_at),
                redemption_id=redemption.id,
            )
        return None

    async def _compare_and_set(
        self,
        pre_check: _PreCheck,
        audit: "_AuditContext",
        now: datetime,
    ) -> ValidationResult:
        async with self._session_factory() as session, session.begin():
            stmt = select(Redemption).where(Redemption.id == pre_check.redemption_id).with_for_update()
            current = (await session.execute(stmt)).scalar_one()
            rejection = self._reject_state(current, now)
            if rejection is not None:
                return rejection

            flip = (
                update(Redemption)
                .where(
                    Redemption.id == pre_check.redemption_id,
                    Redemption.validated.is_(False),
                    Redemption.status.in_(VALIDATABLE_STATUSES),
                )
                .values(
                    validated=True,
                    validated_at=now,
                    validated_by=audit.validated_by,
                    validation_method=audit.method,
                    validation_ip=audit.metadata.ip_address,
                    validation_device_id=audit.metadata.device_id,
                    status=RedemptionStatus.USED,
                    used_at=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            outcome = await session.execute(flip)
            if outcome.rowcount != 1:
                logger.info("Lost validation race", redemption_id=str(pre_check.redemption_id))
                return ValidationFailure(
                    ValidationErrorCode.ALREADY_VALIDATED,
                    _already_used_message(None),
                    redemption_id=pre_check.redemption_id,
                )

            session.add(audit.entry(pre_check, success=True, outcome="validated", created_at=now))
            title = (current.reward_snapshot or {}).get("title")

        logger.info(
            "Validated redemption",
            redemption_id=str(pre_check.redemption_id),
            business_id=str(audit.business_id),
            method=audit.method.value,
            validated_by=audit.validated_by,
        )
        return ValidationSuccess(
            redemption_id=pre_check.redemption_id,
            reward_id=pre_check.reward_id,
            account_id=pre_check.account_id,
            reward_title=title,
            validated_at=now,
            validated_by=audit.validated_by,
            method=audit.method,
        )

    async def _record_failure(
        self,
        audit: "_AuditContext",
        pre_check: _PreCheck | None,
        code: ValidationErrorCode,
        reason: str,
    ) -> None:
        """Best-effort audit write outside the failed transaction."""

        try:
            async with self._session_factory() as session, session.begin():
                session.add(audit.entry(pre_check, success=False, outcome=code.value, reason=reason))
        except Exception:  # pragma: no cover
            logger.exception("Unable to record validation audit entry", business_id=str(audit.business_id))

    def _finish(self, result: ValidationResult) -> ValidationResult:
        outcome = "validated" if isinstance(result, ValidationSuccess) else result.code.value
        self._metrics.record_validation(outcome)
        return result


@dataclass(slots=True)
class _AuditContext:
    business_id: UUID
    code: str
    method: ValidationMethod
    validated_by: str | None
    metadata: ValidationMetadata

    def entry(
        self,
        pre_check: _PreCheck | None,
        *,
        success: bool,
        outcome: str,
        reason: str | None = None,
        created_at: datetime | None = None,
    ) -> ValidationAuditEntry:
        return ValidationAuditEntry(
            redemption_id=pre_check.redemption_id if pre_check else None,
            reward_id=pre_check.reward_id if pre_check else None,
            account_id=pre_check.account_id if pre_check else None,
            business_id=self.business_id,
            validated_by=self.validated_by,
            validation_method=self.method,
            code=self.code,
            success=success,
            outcome=outcome,
            reason=reason,
            ip_address=self.metadata.ip_address,
            device_id=self.metadata.device_id,
            created_at=created_at or utcnow(),
        )


__all__ = ["ONLINE_VALIDATOR", "ValidationEngine", "ValidationMetadata"]
