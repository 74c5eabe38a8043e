"""
Transaction ledger: durable, idempotent status store for payment attempts.

Every status transition is a single conditional UPDATE guarded by
``status = 'pending'``, so concurrent finalizers racing on the same gateway
order reference cannot both win, whatever the channel or the process.
"""
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import aliased

from gateway_reconciliation.core.exceptions import (
    DuplicateGatewayRefError,
    PreconditionError,
    TransientReconciliationError,
    UnknownTransactionError,
)
from gateway_reconciliation.core.models import (
    FinalizeResult,
    FulfillmentStatus,
    PaymentStatus,
    Transaction,
    TransactionStatus,
)
from gateway_reconciliation.database.models import OrderRecord, TransactionRecord
from gateway_reconciliation.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

CREATE_ATTEMPTS = 3


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _duplicate(gateway_order_ref: str) -> DuplicateGatewayRefError:
    return DuplicateGatewayRefError(
        f"Gateway order ref {gateway_order_ref} already exists",
        details={"gateway_order_ref": gateway_order_ref},
    )


def _unknown(gateway_order_ref: str) -> UnknownTransactionError:
    return UnknownTransactionError(
        f"No transaction for gateway order ref {gateway_order_ref}",
        details={"gateway_order_ref": gateway_order_ref},
    )


def to_transaction(record: TransactionRecord) -> Transaction:
    """Convert a database row to the domain Transaction."""
    return Transaction(
        transaction_id=record.transaction_id,
        order_ref=record.order_ref,
        gateway_order_ref=record.gateway_order_ref,
        amount_minor=record.amount_minor,
        currency=record.currency,
        status=TransactionStatus(record.status),
        metadata=dict(record.gateway_metadata or {}),
        superseded=record.superseded,
        created_at=record.created_at,
        updated_at=record.updated_at,
        finalized_at=record.finalized_at,
    )


class TransactionLedger:
    """
    Persisted record of payment attempts keyed by gateway order reference.

    Each operation runs in its own short session and commits before returning.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        """
        Initialize ledger.

        Args:
            session_factory: Async session factory for the ledger database
        """
        self.session_factory = session_factory

    @staticmethod
    async def _load(
        db: AsyncSession, gateway_order_ref: str, refresh: bool = False
    ) -> Optional[TransactionRecord]:
        stmt = select(TransactionRecord).where(
            TransactionRecord.gateway_order_ref == gateway_order_ref
        )
        if refresh:
            stmt = stmt.execution_options(populate_existing=True)
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def _supersede_pending(self, db: AsyncSession, order_ref: str, now: datetime) -> int:
        # Older pending attempts stay for audit but are no longer current
        result = await db.execute(
            update(TransactionRecord)
            .where(
                TransactionRecord.order_ref == order_ref,
                TransactionRecord.status == TransactionStatus.PENDING.value,
                TransactionRecord.superseded.is_(False),
            )
            .values(superseded=True, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def _mark_terminal(
        self,
        db: AsyncSession,
        gateway_order_ref: str,
        outcome: TransactionStatus,
        now: datetime,
    ) -> bool:
        result = await db.execute(
            update(TransactionRecord)
            .where(
                TransactionRecord.gateway_order_ref == gateway_order_ref,
                TransactionRecord.status == TransactionStatus.PENDING.value,
            )
            .values(status=outcome.value, updated_at=now, finalized_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def create_pending(
        self,
        order_ref: str,
        gateway_order_ref: str,
        amount_minor: int,
        currency: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Transaction:
        """
        Record a new pending attempt and supersede older pending attempts.

        A partial unique index allows one current pending attempt per order.
        When a concurrent initiation commits first, the insert fails on that
        index and the supersede-then-insert is retried in a fresh session.

        Args:
            order_ref: Owning order reference
            gateway_order_ref: Reference sent to the gateway for this attempt
            amount_minor: Amount in minor units
            currency: Currency code
            metadata: Optional initial metadata

        Returns:
            Transaction: The created pending transaction

        Raises:
            DuplicateGatewayRefError: If the gateway reference already exists
            TransientReconciliationError: If concurrent initiations kept winning
        """
        for attempt in range(1, CREATE_ATTEMPTS + 1):
            now = _utcnow()
            async with self.session_factory() as db:
                if await self._load(db, gateway_order_ref) is not None:
                    raise _duplicate(gateway_order_ref)

                superseded_count = await self._supersede_pending(db, order_ref, now)
                record = TransactionRecord(
                    transaction_id=f"txn_{uuid.uuid4().hex[:16]}",
                    order_ref=order_ref,
                    gateway_order_ref=gateway_order_ref,
                    amount_minor=amount_minor,
                    currency=currency,
                    status=TransactionStatus.PENDING.value,
                    superseded=False,
                    gateway_metadata=dict(metadata or {}),
                    created_at=now,
                    updated_at=now,
                )
                db.add(record)
                try:
                    await db.commit()
                except IntegrityError as e:
                    await db.rollback()
                    logger.warning(
                        "transaction_pending_conflict",
                        order_ref=order_ref,
                        gateway_order_ref=gateway_order_ref,
                        attempt=attempt,
                        error=str(e.orig),
                    )
                    continue

                logger.info(
                    "transaction_pending_created",
                    transaction_id=record.transaction_id,
                    order_ref=order_ref,
                    gateway_order_ref=gateway_order_ref,
                    amount_minor=amount_minor,
                    superseded_count=superseded_count,
                )
                return to_transaction(record)

        if await self.get(gateway_order_ref) is not None:
            raise _duplicate(gateway_order_ref)
        raise TransientReconciliationError(
            f"Concurrent payment initiation for order {order_ref}",
            details={"order_ref": order_ref, "attempts": CREATE_ATTEMPTS},
        )

    async def finalize(
        self,
        gateway_order_ref: str,
        outcome: TransactionStatus,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> FinalizeResult:
        """
        Move a pending transaction to a terminal status exactly once.

        A transaction that is already terminal is returned unchanged with
        ``applied=False``; that is the idempotency guarantee, not an error.
        Metadata is merged only after the status write holds the row, so
        annotations committed concurrently are kept.

        Args:
            gateway_order_ref: Gateway order reference
            outcome: Terminal status to apply
            metadata: Provider fields to merge into the metadata bag

        Returns:
            FinalizeResult: Final transaction state and whether this call applied it

        Raises:
            UnknownTransactionError: If no transaction has this reference
            PreconditionError: If the outcome is not terminal
        """
        if not outcome.is_terminal:
            raise PreconditionError(
                "finalize requires a terminal status",
                details={"gateway_order_ref": gateway_order_ref, "outcome": outcome.value},
            )

        async with self.session_factory() as db:
            now = _utcnow()
            applied = await self._mark_terminal(db, gateway_order_ref, outcome, now)
            if applied and metadata:
                record = await self._load(db, gateway_order_ref, refresh=True)
                record.gateway_metadata = {**(record.gateway_metadata or {}), **metadata}
            await db.commit()

            record = await self._load(db, gateway_order_ref, refresh=True)
            if record is None:
                raise _unknown(gateway_order_ref)
            transaction = to_transaction(record)

        metrics.record_finalize(transaction.status.value, applied)
        if applied:
            logger.info(
                "transaction_finalized",
                transaction_id=transaction.transaction_id,
                gateway_order_ref=gateway_order_ref,
                status=transaction.status.value,
            )
        else:
            logger.info(
                "transaction_already_final",
                transaction_id=transaction.transaction_id,
                gateway_order_ref=gateway_order_ref,
                status=transaction.status.value,
                attempted=outcome.value,
            )
        return FinalizeResult(transaction=transaction, applied=applied)

    async def annotate(
        self, gateway_order_ref: str, metadata: Dict[str, Any]
    ) -> Transaction:
        """
        Merge metadata into a transaction without changing its status.

        Args:
            gateway_order_ref: Gateway order reference
            metadata: Fields to merge

        Returns:
            Transaction: Updated transaction

        Raises:
            UnknownTransactionError: If no transaction has this reference
        """
        async with self.session_factory() as db:
            # Touch the row first so the read below happens under its write lock
            result = await db.execute(
                update(TransactionRecord)
                .where(TransactionRecord.gateway_order_ref == gateway_order_ref)
                .values(updated_at=_utcnow())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise _unknown(gateway_order_ref)

            record = await self._load(db, gateway_order_ref, refresh=True)
            record.gateway_metadata = {**(record.gateway_metadata or {}), **metadata}
            await db.commit()

            record = await self._load(db, gateway_order_ref, refresh=True)
            return to_transaction(record)

    async def discard_pending(self, gateway_order_ref: str) -> bool:
        """
        Delete a pending attempt that never reached the gateway.

        Args:
            gateway_order_ref: Gateway order reference

        Returns:
            bool: True if a pending row was removed
        """
        async with self.session_factory() as db:
            result = await db.execute(
                delete(TransactionRecord)
                .where(
                    TransactionRecord.gateway_order_ref == gateway_order_ref,
                    TransactionRecord.status == TransactionStatus.PENDING.value,
                )
                .execution_options(synchronize_session=False)
            )
            await db.commit()

        removed = result.rowcount == 1
        logger.info(
            "transaction_pending_discarded",
            gateway_order_ref=gateway_order_ref,
            removed=removed,
        )
        return removed

    async def get(self, gateway_order_ref: str) -> Optional[Transaction]:
        """Get a transaction by gateway order reference."""
        async with self.session_factory() as db:
            record = await self._load(db, gateway_order_ref)
            return to_transaction(record) if record else None

    async def latest_for(self, order_ref: str) -> Optional[Transaction]:
        """
        Get the most recent attempt for an order.

        Args:
            order_ref: Order reference

        Returns:
            Optional[Transaction]: Latest transaction or None
        """
        async with self.session_factory() as db:
            result = await db.execute(
                select(TransactionRecord)
                .where(TransactionRecord.order_ref == order_ref)
                .order_by(TransactionRecord.id.desc())
                .limit(1)
            )
            record = result.scalar_one_or_none()
            return to_transaction(record) if record else None

    async def list_stale_pending(
        self, older_than: datetime, limit: int = 100
    ) -> List[Transaction]:
        """
        Current pending attempts created before ``older_than``.

        Args:
            older_than: Creation cut-off
            limit: Max rows

        Returns:
            List[Transaction]: Oldest first
        """
        async with self.session_factory() as db:
            result = await db.execute(
                select(TransactionRecord)
                .where(
                    TransactionRecord.status == TransactionStatus.PENDING.value,
                    TransactionRecord.superseded.is_(False),
                    TransactionRecord.created_at < older_than,
                )
                .order_by(TransactionRecord.id)
                .limit(limit)
            )
            return [to_transaction(record) for record in result.scalars().all()]

    async def list_unsynchronized(self, limit: int = 100) -> List[Transaction]:
        """
        Latest terminal attempt per order, where the order was never
        synchronized to it.

        Only orders still open for a payment outcome (unpaid or failed, not
        cancelled) are considered; a paid or refunded order is never
        re-projected.

        Args:
            limit: Max rows

        Returns:
            List[Transaction]: Oldest first
        """
        newer = aliased(TransactionRecord)
        latest_terminal_id = (
            select(func.max(newer.id))
            .where(
                newer.order_ref == TransactionRecord.order_ref,
                newer.status != TransactionStatus.PENDING.value,
            )
            .scalar_subquery()
        )
        async with self.session_factory() as db:
            result = await db.execute(
                select(TransactionRecord)
                .join(OrderRecord, OrderRecord.order_ref == TransactionRecord.order_ref)
                .where(
                    TransactionRecord.status != TransactionStatus.PENDING.value,
                    TransactionRecord.id == latest_terminal_id,
                    OrderRecord.payment_status.in_(
                        [PaymentStatus.UNPAID.value, PaymentStatus.FAILED.value]
                    ),
                    OrderRecord.fulfillment_status.not_in(
                        [FulfillmentStatus.CANCELLED.value, FulfillmentStatus.REFUNDED.value]
                    ),
                    or_(
                        OrderRecord.synchronized_transaction_id.is_(None),
                        OrderRecord.synchronized_transaction_id
                        != TransactionRecord.transaction_id,
                    ),
                )
                .order_by(TransactionRecord.id)
                .limit(limit)
            )
            return [to_transaction(record) for record in result.scalars().all()]
