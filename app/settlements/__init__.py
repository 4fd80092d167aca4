"""
Settlements - Seller ledger and FIFO settlement engine.

Retailers earn money through the platform as order revenue, and owe it
back through platform fees and refund clawbacks. Each of these events is
recorded as an immutable ledger entry. Administrators pay retailers out
in arbitrary amounts; every payout consumes the retailer's oldest unpaid
credits first and records exactly which entries it consumed.

Public API:
    Services (settlements.services):
        LedgerService - Records revenue, fees, adjustments and clawbacks
        SettlementEngine - Executes and previews FIFO settlements
        SettlementQueryService - History, balances and summaries

    Models (settlements.models):
        LedgerEntry, Settlement, SettlementLedgerMapping,
        RetailerSettlementBlock

    Tasks (settlements.tasks):
        process_matured_holds, release_ledger_entry

Usage:
    from settlements.services import LedgerService, SettlementEngine
    from settlements.states import PaymentMode

    LedgerService().record_order_revenue(
        order_id="ord-1",
        retailer_id="ret-1",
        warehouse_id="wh-1",
        gross_amount_cents=50000,
    )

    SettlementEngine().execute_settlement(
        retailer_id="ret-1",
        amount_cents=45000,
        payment_mode=PaymentMode.MANUAL_BANK_TRANSFER,
        actor_id="admin-7",
    )
"""
