import asyncio
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import httpx
import pytest
from sqlalchemy.exc import OperationalError

from rewards_api.core.settings import Settings
from rewards_api.models.account import Account, AccountTypeEnum
from rewards_api.models.rewards import (
    Redemption,
    RedemptionStatus,
    Reward,
    RewardValidationType,
    ValidationMethod,
)
from rewards_api.observability.rewards import get_rewards_store
from rewards_api.services.rewards import (
    ReachabilityProbe,
    ValidationEngine,
    ValidationErrorCode,
    ValidationFailure,
    ValidationMetadata,
    ValidationSuccess,
)
from rewards_api.services.rewards.codes import (
    generate_alphanumeric_code,
    generate_qr_code,
    generate_validation_token,
)
from rewards_api.services.rewards.results import ErrorCategory


NOW = datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)


async def _seed_redemption(
    factory,
    *,
    validation_type: RewardValidationType = RewardValidationType.PHYSICAL,
    expires_at: datetime | None = None,
    status: RedemptionStatus = RedemptionStatus.PENDING,
) -> tuple[Redemption, Account]:
    async with factory() as session:
        business = Account(display_name="Corner Cafe", account_type=AccountTypeEnum.BUSINESS.value)
        customer = Account(display_name="Member", points_balance=0)
        session.add_all([business, customer])
        await session.flush()

        reward = Reward(
            business_id=business.id,
            title="Free coffee",
            points_cost=100,
            total_available=10,
            claimed=1,
            validation_type=validation_type,
        )
        session.add(reward)
        await session.flush()

        redemption_id = uuid4()
        qr_code = alphanumeric_code = None
        if validation_type is RewardValidationType.ONLINE:
            alphanumeric_code = generate_alphanumeric_code(redemption_id, now=NOW)
        else:
            qr_code = generate_qr_code(redemption_id, customer.id, business.id, now=NOW)
        redemption = Redemption(
            id=redemption_id,
            account_id=customer.id,
            reward_id=reward.id,
            business_id=business.id,
            reward_snapshot={"title": reward.title, "business_name": business.label},
            points_spent=100,
            redeemed_at=NOW - timedelta(hours=1),
            status=status,
            qr_code=qr_code,
            alphanumeric_code=alphanumeric_code,
            validation_token=generate_validation_token(redemption_id, qr_code or alphanumeric_code, now=NOW),
            validated=False,
            expires_at=expires_at,
        )
        session.add(redemption)
        await session.commit()
        return redemption, business


@pytest.mark.asyncio
async def test_validate_consumes_code_once(session_factory, probe) -> None:
    redemption, business = await _seed_redemption(session_factory)
    engine = ValidationEngine(session_factory, probe=probe)
    metadata = ValidationMetadata(ip_address="10.0.0.7", device_id="scanner-1")

    result = await engine.validate(redemption.qr_code, business.id, "staff-42", metadata, now=NOW)

    assert isinstance(result, ValidationSuccess)
    assert result.redemption_id == redemption.id
    assert result.method is ValidationMethod.QR_SCAN
    assert result.validated_by == "staff-42"
    assert result.reward_title == "Free coffee"

    async with session_factory() as session:
        stored = await session.get(Redemption, redemption.id)
        assert stored.validated is True
        assert stored.status == RedemptionStatus.USED
        assert stored.validation_ip == "10.0.0.7"
        assert stored.validation_device_id == "scanner-1"
        assert stored.validation_method == ValidationMethod.QR_SCAN

    again = await engine.validate(redemption.qr_code, business.id, "staff-43", now=NOW + timedelta(minutes=5))
    assert isinstance(again, ValidationFailure)
    assert again.code is ValidationErrorCode.ALREADY_VALIDATED
    assert again.category is ErrorCategory.ALREADY_USED
    assert again.validated_by == "staff-42"
    assert again.message == "This code was already used on 2026-03-02 09:30 UTC. Each code can only be used once."

    snapshot = get_rewards_store().snapshot()
    assert snapshot.validations == {"validated": 1, "ALREADY_VALIDATED": 1}


@pytest.mark.asyncio
async def test_online_code_entry_is_normalized(session_factory, probe) -> None:
    redemption, business = await _seed_redemption(session_factory, validation_type=RewardValidationType.ONLINE)
    engine = ValidationEngine(session_factory, probe=probe)

    typed = " " + redemption.alphanumeric_code.lower() + " "
    result = await engine.validate(typed, business.id, now=NOW)

    assert isinstance(result, ValidationSuccess)
    assert result.method is ValidationMethod.CODE_ENTRY
    assert result.validated_by == "ONLINE_SYSTEM"


@pytest.mark.asyncio
async def test_malformed_code_never_touches_the_store(probe) -> None:
    def exploding_factory():
        raise AssertionError("store must not be consulted for malformed codes")

    engine = ValidationEngine(exploding_factory, probe=probe)  # type: ignore[arg-type]
    result = await engine.validate("not-a-code", uuid4(), now=NOW)

    assert isinstance(result, ValidationFailure)
    assert result.code is ValidationErrorCode.CODE_NOT_FOUND
    assert result.message == "Invalid code. Please check the code and try again."


@pytest.mark.asyncio
async def test_codes_are_scoped_to_their_business(session_factory, probe) -> None:
    redemption, business = await _seed_redemption(session_factory)
    engine = ValidationEngine(session_factory, probe=probe)
    other_business = uuid4()

    result = await engine.validate(redemption.qr_code, other_business, "staff", now=NOW)

    assert result.code is ValidationErrorCode.CODE_NOT_FOUND
    assert result.category is ErrorCategory.NOT_FOUND
    entries = await engine.list_audit_entries(other_business)
    assert len(entries) == 1
    assert entries[0].success is False
    assert entries[0].redemption_id is None
    assert entries[0].outcome == "CODE_NOT_FOUND"


@pytest.mark.asyncio
async def test_expiry_boundary(session_factory, probe) -> None:
    engine = ValidationEngine(session_factory, probe=probe)

    late, business = await _seed_redemption(session_factory, expires_at=NOW)
    result = await engine.validate(late.qr_code, business.id, now=NOW + timedelta(seconds=1))
    assert result.code is ValidationErrorCode.EXPIRED
    assert result.category is ErrorCategory.EXPIRED
    assert result.message == "This reward has expired and can no longer be redeemed."

    early, business = await _seed_redemption(session_factory, expires_at=NOW)
    result = await engine.validate(early.qr_code, business.id, now=NOW - timedelta(seconds=1))
    assert isinstance(result, ValidationSuccess)


@pytest.mark.asyncio
async def test_cancelled_code_is_rejected(session_factory, probe) -> None:
    redemption, business = await _seed_redemption(session_factory, status=RedemptionStatus.CANCELLED)
    engine = ValidationEngine(session_factory, probe=probe)

    result = await engine.validate(redemption.qr_code, business.id, now=NOW)

    assert result.code is ValidationErrorCode.CANCELLED
    async with session_factory() as session:
        stored = await session.get(Redemption, redemption.id)
        assert stored.validated is False


@pytest.mark.asyncio
async def test_offline_validator_is_refused(session_factory) -> None:
    redemption, business = await _seed_redemption(session_factory)
    transport = httpx.MockTransport(lambda request: httpx.Response(503))
    async with httpx.AsyncClient(transport=transport) as client:
        offline = ReachabilityProbe(settings=Settings(reachability_probe_enabled=True), http_client=client)
        engine = ValidationEngine(session_factory, probe=offline)
        result = await engine.validate(redemption.qr_code, business.id, now=NOW)

    assert result.code is ValidationErrorCode.NETWORK_UNAVAILABLE
    assert result.category is ErrorCategory.TRANSIENT_STORE_ERROR
    async with session_factory() as session:
        stored = await session.get(Redemption, redemption.id)
        assert stored.validated is False
    assert await engine.list_audit_entries(business.id) == []


@pytest.mark.asyncio
async def test_store_failure_is_transient(probe) -> None:
    def broken_factory():
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    engine = ValidationEngine(broken_factory, probe=probe)  # type: ignore[arg-type]
    result = await engine.validate("REDEEM-0123456789ABCDEF-1", uuid4(), now=NOW)

    assert result.code is ValidationErrorCode.VALIDATION_ERROR
    assert result.category is ErrorCategory.TRANSIENT_STORE_ERROR
    assert result.message == "Validation failed. Please try again or contact support."


@pytest.mark.asyncio
async def test_audit_trail_records_every_attempt(session_factory, probe) -> None:
    redemption, business = await _seed_redemption(session_factory)
    engine = ValidationEngine(session_factory, probe=probe)
    metadata = ValidationMetadata(ip_address="10.0.0.7", device_id="scanner-1")

    await engine.validate(redemption.qr_code, business.id, "staff-1", metadata, now=NOW)
    await engine.validate(redemption.qr_code, business.id, "staff-2", metadata, now=NOW)

    entries = await engine.list_audit_entries(business.id)
    assert len(entries) == 2
    assert sorted(entry.outcome for entry in entries) == ["ALREADY_VALIDATED", "validated"]
    assert all(entry.redemption_id == redemption.id for entry in entries)
    assert all(entry.device_id == "scanner-1" for entry in entries)
    successes = [entry for entry in entries if entry.success]
    assert len(successes) == 1
    assert successes[0].validated_by == "staff-1"


@pytest.mark.asyncio
async def test_check_status_reports_validation(session_factory, probe) -> None:
    redemption, business = await _seed_redemption(session_factory)
    engine = ValidationEngine(session_factory, probe=probe)

    before = await engine.check_status(redemption.qr_code, business.id)
    assert before.validated is False
    assert before.status == RedemptionStatus.PENDING

    await engine.validate(redemption.qr_code, business.id, "staff", now=NOW)

    after = await engine.check_status(redemption.qr_code.lower(), business.id)
    assert after.validated is True
    assert after.validated_by == "staff"
    assert after.status == RedemptionStatus.USED
    assert await engine.check_status("bogus", business.id) is None


@pytest.mark.asyncio
async def test_concurrent_validators_only_one_wins(file_session_factory, probe) -> None:
    redemption, business = await _seed_redemption(file_session_factory)
    engine = ValidationEngine(file_session_factory, probe=probe)

    results = await asyncio.gather(
        *(
            engine.validate(
                redemption.qr_code,
                business.id,
                f"staff-{index}",
                ValidationMetadata(device_id=f"scanner-{index}"),
                now=NOW,
            )
            for index in range(8)
        )
    )

    winners = [result for result in results if isinstance(result, ValidationSuccess)]
    losers = [result for result in results if isinstance(result, ValidationFailure)]
    assert len(winners) == 1
    assert len(losers) == 7
    assert {result.code for result in losers} == {ValidationErrorCode.ALREADY_VALIDATED}

    async with file_session_factory() as session:
        stored = await session.get(Redemption, redemption.id)
        assert stored.validated is True
        assert stored.validated_by == winners[0].validated_by

    entries = await engine.list_audit_entries(business.id)
    assert len(entries) == 8
    assert sum(1 for entry in entries if entry.success) == 1
