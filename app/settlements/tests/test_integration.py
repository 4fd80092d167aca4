"""
End-to-end settlement workflow.

Revenue recorded on delivery is held, released by the hold-release task,
netted against fees and refunds, and paid out through the admin API.
"""

from django.urls import reverse
from rest_framework import status

from settlements.models import LedgerEntry
from settlements.services import LedgerService, SettlementQueryService
from settlements.states import LedgerStatus, TransactionType
from settlements.tasks import process_matured_holds, release_ledger_entry


class TestSettlementWorkflow:
    def test_order_to_payout(self, admin_client, settings, mocker):
        settings.LEDGER_HOLD_PERIOD_DAYS = 0
        mocker.patch(
            "settlements.tasks.release_ledger_entry.delay",
            side_effect=lambda entry_id: release_ledger_entry(entry_id),
        )
        ledger = LedgerService()
        queries = SettlementQueryService()

        # Delivery: revenue and fee recorded on hold
        for order_id in ("order-1", "order-2"):
            ledger.record_order_revenue(
                order_id=order_id,
                retailer_id="retailer-7",
                warehouse_id="warehouse-1",
                gross_amount_cents=30000,
                platform_fee_cents=1000,
            )
        assert ledger.get_available_balance("retailer-7").available_balance.cents == 0
        assert queries.get_retailer_summary("retailer-7").pending_escrow.cents == 58000

        # Hold window passes
        assert process_matured_holds() == {"queued_count": 4}
        assert not LedgerEntry.objects.filter(status=LedgerStatus.PENDING).exists()

        # Customer refund on the second order
        ledger.record_refund_clawback(
            order_id="order-2", retailer_id="retailer-7", refund_amount_cents=5000
        )
        assert (
            ledger.get_available_balance("retailer-7").available_balance.cents == 53000
        )

        # Admin pays out the full balance
        response = admin_client.post(
            reverse("settlements:settlement-execute"),
            {
                "retailer_id": "retailer-7",
                "amount": "530.00",
                "payment_mode": "UPI",
                "reference_number": "UPI-778",
            },
            format="json",
        )
        assert response.status_code == status.HTTP_201_CREATED

        revenue = LedgerEntry.objects.filter(
            retailer_id="retailer-7", transaction_type=TransactionType.ORDER_REVENUE
        ).order_by("created_at", "sequence")
        assert [(e.status, e.settled_amount_cents) for e in revenue] == [
            (LedgerStatus.SETTLED, 30000),
            (LedgerStatus.PARTIALLY_SETTLED, 23000),
        ]
        assert ledger.get_available_balance("retailer-7").available_balance.cents == 0

        summary = queries.get_retailer_summary("retailer-7")
        assert summary.lifetime_paid.cents == 53000
        assert summary.total_owed.cents == 0

        # Nothing left to pay
        response = admin_client.post(
            reverse("settlements:settlement-execute"),
            {"retailer_id": "retailer-7", "amount": "0.01", "payment_mode": "UPI"},
            format="json",
        )
        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
        assert response.data["available"] == "0.00"

        details = queries.get_settlement_details(
            queries.get_settlement_history("retailer-7")[0].id
        )
        assert details.breakdown.gross_sales_cents == 53000
