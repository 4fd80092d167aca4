"""
Settlement engine: pays a retailer out of their oldest earnings first.

This module handles the critical payout path. A settlement:
1. Validates the request (nothing is read or written on failure)
2. Takes the retailer's distributed lock
3. Refuses retailers blocked after an integrity alert
4. Reads eligible entries with row locks, oldest first
5. Computes the FIFO allocation (settlements.allocation)
6. Writes the settlement, its mapping rows and the conditional ledger
   updates in one transaction

Any failure in steps 4-6 rolls the whole unit back. An allocation that
disagrees with the balance check is an integrity failure: it is logged
at CRITICAL and the retailer is blocked until an administrator resolves
the block.

Usage:
    from settlements.services import SettlementEngine

    summary = SettlementEngine().execute_settlement(
        retailer_id="ret-1",
        amount_cents=45000,
        payment_mode=PaymentMode.MANUAL_BANK_TRANSFER,
        actor_id="admin-7",
        reference_number="UTR123",
    )

Retrying:
    A caller that times out must check settlement history before trying
    again; blind retries would pay twice.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING

from django.conf import settings
from django.db import DatabaseError

from core.exceptions import NotFoundError, ValidationError
from core.services import BaseService

from ..allocation import plan_allocation
from ..exceptions import (
    InvariantViolationError,
    LockAcquisitionError,
    PersistenceError,
    SettlementBlockedError,
    StaleRecordError,
)
from ..locks import retailer_settlement_lock
from ..models import Settlement
from ..states import PaymentMode, SettlementStatus
from ..stores import LedgerStore, SettlementStore
from ..types import AllocationPlan, Money, SettlementSummary

if TYPE_CHECKING:
    from ..locks import DistributedLock
    from ..models import RetailerSettlementBlock


class SettlementEngine(BaseService):
    """
    Executes FIFO settlements.

    Args:
        ledger_store: Ledger persistence (defaults to LedgerStore())
        settlement_store: Settlement persistence (defaults to SettlementStore())
        lock_factory: Builds the per-retailer lock (defaults to
            retailer_settlement_lock)
    """

    def __init__(
        self,
        ledger_store: LedgerStore | None = None,
        settlement_store: SettlementStore | None = None,
        lock_factory: Callable[[str], DistributedLock] | None = None,
    ) -> None:
        self.ledger_store = ledger_store or LedgerStore()
        self.settlement_store = settlement_store or SettlementStore()
        self.lock_factory = lock_factory or retailer_settlement_lock

    def execute_settlement(
        self,
        retailer_id: str,
        amount_cents: int,
        payment_mode: str,
        actor_id: str,
        reference_number: str | None = None,
        notes: str | None = None,
        receipt_url: str | None = None,
    ) -> SettlementSummary:
        """
        Pay ``amount_cents`` to a retailer from their oldest earnings.

        Args:
            retailer_id: Retailer to pay
            amount_cents: Payout in minor units, positive
            payment_mode: A PaymentMode value
            actor_id: Administrator executing the payout
            reference_number: Bank/UPI transaction reference
            notes: Free-text remarks
            receipt_url: Link to the transfer receipt

        Returns:
            SettlementSummary of the committed settlement

        Raises:
            ValidationError: Malformed request; nothing happened
            LockAcquisitionError: Another settlement for the retailer is
                running; nothing happened
            SettlementBlockedError: Retailer blocked; nothing happened
            InsufficientBalanceError: Payout exceeds the balance; nothing
                happened
            InvariantViolationError: Integrity check failed; rolled back
                and the retailer is now blocked
            PersistenceError: The write failed; rolled back
        """
        self._validate_request(retailer_id, amount_cents, payment_mode, actor_id)

        log_context = {
            "retailer_id": retailer_id,
            "amount_cents": amount_cents,
            "payment_mode": payment_mode,
            "actor_id": str(actor_id),
        }
        self.get_logger().info("Executing settlement", extra=log_context)

        try:
            with self.lock_factory(retailer_id):
                settlement, plan = self._execute_with_lock(
                    retailer_id,
                    amount_cents,
                    payment_mode,
                    actor_id,
                    reference_number=reference_number,
                    notes=notes,
                    receipt_url=receipt_url,
                )
        except LockAcquisitionError as e:
            self.get_logger().warning(
                "Failed to acquire settlement lock",
                extra={**log_context, "error": str(e)},
            )
            raise

        self.get_logger().info(
            "Settlement executed",
            extra={
                **log_context,
                "settlement_id": str(settlement.id),
                "entries_settled": plan.entries_touched,
            },
        )
        return SettlementSummary(
            settlement_id=settlement.id,
            retailer_id=retailer_id,
            amount=Money(cents=settlement.amount_cents, currency=settlement.currency),
            payment_mode=settlement.payment_mode,
            reference_number=settlement.reference_number,
            status=settlement.status,
            entries_settled=plan.entries_touched,
        )

    def _execute_with_lock(
        self,
        retailer_id: str,
        amount_cents: int,
        payment_mode: str,
        actor_id: str,
        *,
        reference_number: str | None,
        notes: str | None,
        receipt_url: str | None,
    ) -> tuple[Settlement, AllocationPlan]:
        """
        Read, allocate and write under the retailer's lock.

        An integrity failure records the retailer block here, after the
        transaction has rolled back and before the lock is released, so the
        next holder of the lock sees it.
        """
        block = self.settlement_store.get_active_block(retailer_id)
        if block is not None:
            raise SettlementBlockedError(
                f"Settlements for retailer {retailer_id} are blocked pending "
                "investigation",
                details={
                    "retailer_id": retailer_id,
                    "block_id": str(block.id),
                    "reason": block.reason,
                },
            )

        try:
            with self.atomic():
                entries = self.ledger_store.get_eligible_for_settlement(
                    retailer_id, for_update=True
                )
                plan = plan_allocation(retailer_id, entries, amount_cents)

                settlement = self.settlement_store.create_settlement(
                    Settlement(
                        retailer_id=retailer_id,
                        amount_cents=amount_cents,
                        currency=settings.LEDGER_CURRENCY,
                        payment_mode=payment_mode,
                        reference_number=reference_number or None,
                        receipt_url=receipt_url or None,
                        notes=notes or "",
                        status=SettlementStatus.COMPLETED,
                        settled_by=str(actor_id),
                    ),
                    plan.allocations,
                )
                for update in plan.updates:
                    self.ledger_store.apply_update(update)
        except InvariantViolationError as e:
            self._raise_integrity_alert(retailer_id, e)
            raise
        except StaleRecordError as e:
            self.get_logger().error(
                "Ledger entry changed during settlement, rolled back",
                extra={"retailer_id": retailer_id, "details": e.details},
            )
            raise PersistenceError(
                f"Settlement for retailer {retailer_id} was rolled back: {e.message}",
                details={"retailer_id": retailer_id, "cause": e.error_code, **e.details},
            ) from e
        except DatabaseError as e:
            self.get_logger().error(
                "Settlement write failed, rolled back",
                extra={"retailer_id": retailer_id, "error": str(e)},
                exc_info=True,
            )
            raise PersistenceError(
                f"Settlement for retailer {retailer_id} could not be stored",
                details={"retailer_id": retailer_id, "cause": e.__class__.__name__},
            ) from e

        return settlement, plan

    def _raise_integrity_alert(
        self, retailer_id: str, error: InvariantViolationError
    ) -> RetailerSettlementBlock:
        self.get_logger().critical(
            "Ledger integrity alert: settlement allocation disagreed with balance",
            extra={
                "alert": "ledger_integrity",
                "retailer_id": retailer_id,
                "error_code": error.error_code,
                "details": error.details,
            },
        )
        return self.settlement_store.create_block(
            retailer_id, reason=error.error_code, details=error.details
        )

    def _validate_request(
        self,
        retailer_id: str,
        amount_cents: int,
        payment_mode: str,
        actor_id: str,
    ) -> None:
        missing = [
            name
            for name, value in (
                ("retailer_id", retailer_id),
                ("payment_mode", payment_mode),
                ("actor_id", actor_id),
            )
            if value in (None, "")
        ]
        if missing:
            raise ValidationError(
                f"Missing required fields: {', '.join(missing)}",
                error_code="MISSING_FIELDS",
                details={"missing": missing},
            )
        self._validate_amount(amount_cents)
        if payment_mode not in PaymentMode.values:
            raise ValidationError(
                f"Unsupported payment mode: {payment_mode}",
                error_code="INVALID_PAYMENT_MODE",
                details={"payment_mode": payment_mode, "allowed": PaymentMode.values},
            )

    @staticmethod
    def _validate_amount(amount_cents: int) -> None:
        if (
            isinstance(amount_cents, bool)
            or not isinstance(amount_cents, int)
            or amount_cents <= 0
        ):
            raise ValidationError(
                "Settlement amount must be a positive integer in minor units",
                error_code="INVALID_AMOUNT",
                details={"amount_cents": amount_cents},
            )

    # ==========================================================================
    # Supporting operations
    # ==========================================================================

    def preview_settlement(self, retailer_id: str, amount_cents: int) -> AllocationPlan:
        """
        Dry-run the FIFO allocation without locking or writing.

        The plan reflects a snapshot; executing later may allocate
        differently if the ledger changes in between.

        Raises:
            ValidationError: Missing retailer or non-positive amount
            InsufficientBalanceError: Payout exceeds the current balance
        """
        if not retailer_id:
            raise ValidationError(
                "Missing required fields: retailer_id",
                error_code="MISSING_FIELDS",
                details={"missing": ["retailer_id"]},
            )
        self._validate_amount(amount_cents)
        entries = self.ledger_store.get_eligible_for_settlement(retailer_id)
        return plan_allocation(retailer_id, entries, amount_cents)

    def resolve_block(
        self, retailer_id: str, actor_id: str, notes: str = ""
    ) -> RetailerSettlementBlock:
        """
        Lift a retailer's settlement block after investigation.

        Raises:
            ValidationError: Missing actor
            NotFoundError: The retailer has no active block
        """
        if not actor_id:
            raise ValidationError(
                "Missing required fields: actor_id",
                error_code="MISSING_FIELDS",
                details={"missing": ["actor_id"]},
            )
        block = self.settlement_store.get_active_block(retailer_id)
        if block is None:
            raise NotFoundError(
                f"Retailer {retailer_id} has no active settlement block",
                error_code="SETTLEMENT_BLOCK_NOT_FOUND",
                details={"retailer_id": retailer_id},
            )
        block = self.settlement_store.resolve_block(block, str(actor_id), notes)

        self.get_logger().warning(
            "Settlement block resolved",
            extra={
                "retailer_id": retailer_id,
                "block_id": str(block.id),
                "actor_id": str(actor_id),
            },
        )
        return block
