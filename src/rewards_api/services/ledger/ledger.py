"""Account balances with an append-only, idempotent points ledger."""

from __future__ import annotations

from typing import Any
from uuid import UUID

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from rewards_api.models.account import Account
from rewards_api.models.ledger import LedgerDirection, PointsLedgerEntry


class InsufficientBalanceError(ValueError):
    """Raised when a debit would take a balance below zero."""

    def __init__(self, account_id: UUID, requested: int, available: int) -> None:
        super().__init__(f"Insufficient points balance: requested {requested}, available {available}")
        self.account_id = account_id
        self.requested = requested
        self.available = available


class PointsLedger:
    """Move points between accounts, keyed by a reference id for idempotency.

    Every movement is recorded as a ``PointsLedgerEntry`` unique on
    ``(account_id, reference_id, direction)``. Replaying a credit or debit with
    the same reference returns the original entry and leaves the balance alone.
    Callers own the transaction; the ledger only flushes.
    """

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    async def credit(
        self,
        account_id: UUID,
        amount: int,
        reason: str,
        ref_id: str,
        metadata: dict[str, Any] | None = None,
    ) -> PointsLedgerEntry:
        return await self._apply(account_id, LedgerDirection.CREDIT, amount, reason, ref_id, metadata)

    async def debit(
        self,
        account_id: UUID,
        amount: int,
        reason: str,
        ref_id: str,
        metadata: dict[str, Any] | None = None,
    ) -> PointsLedgerEntry:
        return await self._apply(account_id, LedgerDirection.DEBIT, amount, reason, ref_id, metadata)

    async def get_balance(self, account_id: UUID) -> int | None:
        stmt = select(Account.points_balance).where(Account.id == account_id)
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    async def list_entries(self, account_id: UUID, *, limit: int = 50) -> list[PointsLedgerEntry]:
        """Return ledger entries for an account, newest first."""

        stmt = (
            select(PointsLedgerEntry)
            .where(PointsLedgerEntry.account_id == account_id)
            .order_by(PointsLedgerEntry.created_at.desc(), PointsLedgerEntry.id.desc())
            .limit(limit)
        )
        result = await self._db.execute(stmt)
        return list(result.scalars().all())

    async def find_entry(
        self,
        account_id: UUID,
        ref_id: str,
        direction: LedgerDirection,
    ) -> PointsLedgerEntry | None:
        stmt = select(PointsLedgerEntry).where(
            PointsLedgerEntry.account_id == account_id,
            PointsLedgerEntry.reference_id == ref_id,
            PointsLedgerEntry.direction == direction,
        )
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    async def _apply(
        self,
        account_id: UUID,
        direction: LedgerDirection,
        amount: int,
        reason: str,
        ref_id: str,
        metadata: dict[str, Any] | None,
    ) -> PointsLedgerEntry:
        if amount <= 0:
            raise ValueError("Ledger amounts must be positive")
        if not ref_id:
            raise ValueError("Ledger entries require a reference id")

        existing = await self.find_entry(account_id, ref_id, direction)
        if existing is not None:
            logger.info(
                "Skipped duplicate ledger entry",
                account_id=str(account_id),
                reference_id=ref_id,
                direction=direction.value,
            )
            return existing

        stmt = update(Account).where(Account.id == account_id)
        if direction is LedgerDirection.DEBIT:
            stmt = stmt.where(Account.points_balance >= amount).values(
                points_balance=Account.points_balance - amount
            )
        else:
            stmt = stmt.values(points_balance=Account.points_balance + amount)
        result = await self._db.execute(stmt.execution_options(synchronize_session="fetch"))

        if result.rowcount == 0:
            available = await self.get_balance(account_id)
            if available is None:
                raise ValueError(f"Unknown account {account_id}")
            raise InsufficientBalanceError(account_id, amount, available)

        balance_after = await self.get_balance(account_id)
        delta = amount if direction is LedgerDirection.CREDIT else -amount
        entry = PointsLedgerEntry(
            account_id=account_id,
            direction=direction,
            amount=amount,
            reason=reason,
            reference_id=ref_id,
            balance_before=balance_after - delta,
            balance_after=balance_after,
            metadata_json=metadata or {},
        )
        self._db.add(entry)
        await self._db.flush()
        logger.info(
            "Recorded points ledger entry",
            account_id=str(account_id),
            direction=direction.value,
            amount=amount,
            reference_id=ref_id,
            balance_after=balance_after,
        )
        return entry
