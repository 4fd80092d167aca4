"""
Settlement-specific exceptions.

Every exception inherits from the core hierarchy so views render them
uniformly via ``to_dict()``. ``retry_safe`` distinguishes "nothing
happened" from "state unknown, check settlement history before retrying".

Exception Hierarchy:
    LedgerError (base)
    ├── InsufficientBalanceError - Payout exceeds available balance
    ├── InvariantViolationError - FIFO walk disagreed with the balance check
    ├── PersistenceError - The atomic write failed and was rolled back
    └── ImmutableRecordError - Attempt to edit or delete an audit record
    NotFoundError
    └── SettlementNotFoundError
    ConflictError
    ├── StaleRecordError - Conditional ledger update matched no row
    ├── LockAcquisitionError - Retailer settlement lock is held elsewhere
    └── SettlementBlockedError - Retailer is blocked after an integrity alert

Usage:
    from settlements.exceptions import InsufficientBalanceError

    if amount_cents > available_cents:
        raise InsufficientBalanceError(
            retailer_id, required=amount_cents, available=available_cents
        )
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import BaseApplicationError, ConflictError, NotFoundError

from .types import from_minor_units

if TYPE_CHECKING:
    from typing import Any


class LedgerError(BaseApplicationError):
    """Base exception for ledger and settlement operations."""

    default_error_code: str = "LEDGER_ERROR"


class InsufficientBalanceError(LedgerError):
    """
    Raised when a payout exceeds the retailer's available balance.

    Raised before any write. Admin UIs show ``required`` and ``available``
    directly, so both are kept as attributes and in ``details``.

    Attributes:
        retailer_id: Retailer the payout was requested for
        required: Requested payout in minor units
        available: Available balance in minor units
    """

    default_error_code: str = "INSUFFICIENT_BALANCE"
    retry_safe: bool = True

    def __init__(
        self,
        retailer_id: str,
        required: int,
        available: int,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.retailer_id = retailer_id
        self.required = required
        self.available = available

        full_details = {
            "retailer_id": retailer_id,
            "required_cents": required,
            "available_cents": available,
        }
        if details:
            full_details.update(details)

        super().__init__(
            message=(
                f"Retailer {retailer_id} has insufficient balance: "
                f"required {required} cents, available {available} cents"
            ),
            error_code=error_code,
            details=full_details,
        )

    def to_dict(self) -> dict[str, Any]:
        """Add ``required`` and ``available`` in major units for display."""
        result = super().to_dict()
        result["required"] = str(from_minor_units(self.required))
        result["available"] = str(from_minor_units(self.available))
        return result


class InvariantViolationError(LedgerError):
    """
    Raised when the FIFO walk cannot cover an amount the balance check
    accepted.

    Points at a concurrency-control bug or corrupted ledger rows. The
    settlement transaction is rolled back, a critical integrity alert is
    logged and the retailer is blocked from further settlements until an
    administrator resolves the block. Never transient.
    """

    default_error_code: str = "LEDGER_INVARIANT_VIOLATION"


class PersistenceError(LedgerError):
    """
    Raised when the atomic settlement write fails at the store layer.

    The transaction is rolled back in full: no settlement, no mapping rows
    and no ledger mutation are visible. Callers should re-read settlement
    history before retrying.
    """

    default_error_code: str = "SETTLEMENT_PERSISTENCE_FAILED"


class ImmutableRecordError(LedgerError):
    """
    Raised on an attempt to change a write-once field or delete an
    audit record (ledger entries, settlements, allocation mappings).
    """

    default_error_code: str = "IMMUTABLE_RECORD"


class SettlementNotFoundError(NotFoundError):
    """Raised when a settlement id is unknown (or owned by another retailer)."""

    default_error_code: str = "SETTLEMENT_NOT_FOUND"


class StaleRecordError(ConflictError):
    """
    Raised when a conditional ledger update matches no row.

    The entry's settled amount or status changed between the read and the
    write. Inside a settlement this aborts and rolls back the whole unit.
    """

    default_error_code: str = "STALE_RECORD"


class LockAcquisitionError(ConflictError):
    """
    Raised when the per-retailer settlement lock cannot be acquired.

    Raised before any read, so retrying later is safe.
    """

    default_error_code: str = "LOCK_ACQUISITION_FAILED"
    retry_safe: bool = True


class SettlementBlockedError(ConflictError):
    """
    Raised when settlement is attempted for a retailer with an unresolved
    settlement block (recorded after an InvariantViolationError).
    """

    default_error_code: str = "SETTLEMENT_BLOCKED"
    retry_safe: bool = True
