"""
Enums for settlement models.

These are Django TextChoices for database storage and admin integration.
Values are the uppercase names used by the order-fulfilment workflow and
the admin UI, so they are accepted verbatim as query filters.

Ledger Entry States:
    PENDING → AVAILABLE → PARTIALLY_SETTLED → SETTLED

    - PENDING is the only "held" state. Revenue and platform fee entries
      start here and are released by the hold-release worker once their
      trigger date has passed.
    - Manual adjustments and refund clawbacks start at AVAILABLE.
    - SETTLED is terminal. Corrections are new entries, never reversals.
"""

from django.db import models


class LedgerStatus(models.TextChoices):
    """
    States for the LedgerEntry lifecycle.

    Terminal states: SETTLED

    Invariants (enforced by database check constraints):
        PENDING, AVAILABLE     → settled_amount_cents == 0
        PARTIALLY_SETTLED      → 0 < settled_amount_cents < amount_cents
        SETTLED                → settled_amount_cents == amount_cents
    """

    PENDING = "PENDING", "Pending"
    AVAILABLE = "AVAILABLE", "Available"
    PARTIALLY_SETTLED = "PARTIALLY_SETTLED", "Partially Settled"
    SETTLED = "SETTLED", "Settled"


# Entries a settlement may consume, and that count towards the balance
ELIGIBLE_STATUSES = (LedgerStatus.AVAILABLE, LedgerStatus.PARTIALLY_SETTLED)

# Entries that still represent money owed to the retailer
UNSETTLED_STATUSES = (
    LedgerStatus.PENDING,
    LedgerStatus.AVAILABLE,
    LedgerStatus.PARTIALLY_SETTLED,
)


class TransactionType(models.TextChoices):
    """Business event that produced a ledger entry."""

    ORDER_REVENUE = "ORDER_REVENUE", "Order Revenue"
    PLATFORM_FEE = "PLATFORM_FEE", "Platform Fee"
    MANUAL_ADJUSTMENT = "MANUAL_ADJUSTMENT", "Manual Adjustment"
    REFUND_CLAWBACK = "REFUND_CLAWBACK", "Refund Clawback"


class EntryType(models.TextChoices):
    """
    Direction of a ledger entry.

    CREDIT increases what the retailer is owed, DEBIT decreases it.
    """

    CREDIT = "CREDIT", "Credit"
    DEBIT = "DEBIT", "Debit"


class SettlementStatus(models.TextChoices):
    """
    States for a Settlement.

    Only COMPLETED is ever persisted: failed attempts roll back and
    leave no record.
    """

    COMPLETED = "COMPLETED", "Completed"


class PaymentMode(models.TextChoices):
    """How the payout was transferred to the retailer."""

    MANUAL_BANK_TRANSFER = "MANUAL_BANK_TRANSFER", "Manual Bank Transfer"
    UPI = "UPI", "UPI"
    CHEQUE = "CHEQUE", "Cheque"
    CASH = "CASH", "Cash"
