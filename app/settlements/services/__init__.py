"""
Settlement services for recording earnings and paying retailers.

This module provides:
- LedgerService: Records revenue, fees, adjustments and clawbacks
- SettlementEngine: Executes FIFO settlements under the retailer lock
- SettlementQueryService: Read-only history, balances and summaries

Usage:
    from settlements.services import LedgerService, SettlementEngine

    LedgerService().record_manual_adjustment(
        retailer_id="ret-1",
        amount_cents=5000,
        entry_type=EntryType.CREDIT,
        notes="Festival bonus",
        actor_id="admin-7",
    )

    summary = SettlementEngine().execute_settlement(
        retailer_id="ret-1",
        amount_cents=5000,
        payment_mode=PaymentMode.UPI,
        actor_id="admin-7",
    )
"""

from settlements.services.ledger_service import LedgerService
from settlements.services.query_service import SettlementQueryService
from settlements.services.settlement_engine import SettlementEngine

__all__ = [
    "LedgerService",
    "SettlementEngine",
    "SettlementQueryService",
]
