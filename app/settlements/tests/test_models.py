"""
Tests for settlement models.

Covers write-once enforcement, the database constraints tying status to
settled amount, the hold-release transition and insertion ordering.
"""

from datetime import timedelta

import pytest
from django.db import IntegrityError, transaction
from django.utils import timezone
from django_fsm import TransitionNotAllowed

from settlements.exceptions import ImmutableRecordError
from settlements.models import LedgerEntry
from settlements.states import EntryType, LedgerStatus
from settlements.stores import LedgerStore
from settlements.tests.factories import (
    LedgerEntryFactory,
    RetailerSettlementBlockFactory,
    SettlementFactory,
    SettlementLedgerMappingFactory,
)
from settlements.types import LedgerHistoryFilters


class TestLedgerEntryImmutability:
    """LedgerEntry only lets status and settled amount change."""

    def test_full_save_of_existing_entry_rejected(self, db):
        entry = LedgerEntryFactory()
        entry.amount_cents = 1

        with pytest.raises(ImmutableRecordError) as exc_info:
            entry.save()

        assert exc_info.value.error_code == "IMMUTABLE_RECORD"

    def test_write_once_field_in_update_fields_rejected(self, db):
        entry = LedgerEntryFactory()
        entry.entry_type = EntryType.DEBIT

        with pytest.raises(ImmutableRecordError):
            entry.save(update_fields=["entry_type"])

    def test_mutable_fields_can_be_saved(self, db):
        entry = LedgerEntryFactory(amount_cents=10000)
        entry.status = LedgerStatus.PARTIALLY_SETTLED
        entry.settled_amount_cents = 4000

        entry.save(update_fields=["status", "settled_amount_cents", "updated_at"])

        entry.refresh_from_db()
        assert entry.settled_amount_cents == 4000
        assert entry.remaining_cents == 6000

    def test_delete_rejected(self, db):
        entry = LedgerEntryFactory()

        with pytest.raises(ImmutableRecordError):
            entry.delete()

        assert LedgerEntry.objects.filter(id=entry.id).exists()

    def test_settlement_is_write_once(self, db):
        settlement = SettlementFactory()
        settlement.amount_cents = 1

        with pytest.raises(ImmutableRecordError):
            settlement.save()


class TestLedgerEntryConstraints:
    """Database check constraints on LedgerEntry."""

    def test_zero_amount_rejected(self, db):
        with pytest.raises(IntegrityError), transaction.atomic():
            LedgerEntryFactory(amount_cents=0)

    def test_settled_above_amount_rejected(self, db):
        with pytest.raises(IntegrityError), transaction.atomic():
            LedgerEntryFactory(
                amount_cents=1000,
                settled_amount_cents=1001,
                status=LedgerStatus.PARTIALLY_SETTLED,
            )

    def test_settled_status_requires_full_settlement(self, db):
        with pytest.raises(IntegrityError), transaction.atomic():
            LedgerEntryFactory(
                amount_cents=1000,
                settled_amount_cents=999,
                status=LedgerStatus.SETTLED,
            )

    def test_full_settlement_requires_settled_status(self, db):
        with pytest.raises(IntegrityError), transaction.atomic():
            LedgerEntryFactory(
                amount_cents=1000,
                settled_amount_cents=1000,
                status=LedgerStatus.PARTIALLY_SETTLED,
            )

    def test_available_entry_cannot_carry_settled_amount(self, db):
        with pytest.raises(IntegrityError), transaction.atomic():
            LedgerEntryFactory(
                amount_cents=1000,
                settled_amount_cents=10,
                status=LedgerStatus.AVAILABLE,
            )

    def test_consistent_states_accepted(self, db):
        LedgerEntryFactory(amount_cents=1000, status=LedgerStatus.PENDING)
        LedgerEntryFactory(
            amount_cents=1000,
            settled_amount_cents=1,
            status=LedgerStatus.PARTIALLY_SETTLED,
        )
        LedgerEntryFactory(
            amount_cents=1000,
            settled_amount_cents=1000,
            status=LedgerStatus.SETTLED,
        )

        assert LedgerEntry.objects.count() == 3

    def test_idempotency_key_unique(self, db):
        LedgerEntryFactory(idempotency_key="order-1:revenue")

        with pytest.raises(IntegrityError), transaction.atomic():
            LedgerEntryFactory(idempotency_key="order-1:revenue")


class TestLedgerEntryRelease:
    """Tests for the PENDING → AVAILABLE transition."""

    def test_release_after_trigger_date(self, db):
        entry = LedgerEntryFactory(
            status=LedgerStatus.PENDING,
            trigger_date=timezone.now() - timedelta(minutes=1),
        )

        entry.release()

        assert entry.status == LedgerStatus.AVAILABLE

    def test_release_before_trigger_date_not_allowed(self, db):
        entry = LedgerEntryFactory(
            status=LedgerStatus.PENDING,
            trigger_date=timezone.now() + timedelta(days=1),
        )

        with pytest.raises(TransitionNotAllowed):
            entry.release()

        assert entry.status == LedgerStatus.PENDING

    def test_release_only_from_pending(self, db):
        entry = LedgerEntryFactory(status=LedgerStatus.AVAILABLE)

        with pytest.raises(TransitionNotAllowed):
            entry.release()


class TestLedgerEntryOrdering:
    """Entries sharing a timestamp keep their insertion order."""

    @pytest.fixture
    def same_time_entries(self, db, retailer_id):
        created_at = timezone.now() - timedelta(days=1)
        return [
            LedgerEntryFactory(retailer_id=retailer_id, created_at=created_at)
            for _ in range(5)
        ]

    def test_sequence_assigned_in_insertion_order(self, same_time_entries):
        sequences = [entry.sequence for entry in same_time_entries]

        assert None not in sequences
        assert sequences == sorted(sequences)
        assert len(set(sequences)) == len(sequences)

    def test_sequence_is_write_once(self, same_time_entries):
        entry = same_time_entries[0]
        entry.sequence += 100

        with pytest.raises(ImmutableRecordError):
            entry.save(update_fields=["sequence"])

    def test_fifo_reads_follow_insertion_order(self, retailer_id, same_time_entries):
        store = LedgerStore()
        expected = [entry.id for entry in same_time_entries]

        eligible = store.get_eligible_for_settlement(retailer_id)
        unsettled = store.get_unsettled(retailer_id)
        history = store.history(LedgerHistoryFilters(retailer_id=retailer_id))

        assert [entry.id for entry in eligible] == expected
        assert [entry.id for entry in unsettled] == expected
        assert [entry.id for entry in history] == expected[::-1]


class TestSettlementLedgerMapping:
    def test_amount_applied_must_be_positive(self, db):
        with pytest.raises(IntegrityError), transaction.atomic():
            SettlementLedgerMappingFactory(amount_applied_cents=0)

    def test_one_mapping_per_settlement_and_entry(self, db):
        mapping = SettlementLedgerMappingFactory()

        with pytest.raises(IntegrityError), transaction.atomic():
            SettlementLedgerMappingFactory(
                settlement=mapping.settlement,
                ledger_entry=mapping.ledger_entry,
            )

    def test_mapping_cannot_be_deleted(self, db):
        mapping = SettlementLedgerMappingFactory()

        with pytest.raises(ImmutableRecordError):
            mapping.delete()


class TestRetailerSettlementBlock:
    def test_one_active_block_per_retailer(self, db):
        RetailerSettlementBlockFactory(retailer_id="r-1")

        with pytest.raises(IntegrityError), transaction.atomic():
            RetailerSettlementBlockFactory(retailer_id="r-1")

    def test_resolved_blocks_do_not_count(self, db):
        resolved = RetailerSettlementBlockFactory(
            retailer_id="r-1", resolved_at=timezone.now()
        )
        active = RetailerSettlementBlockFactory(retailer_id="r-1")

        assert resolved.is_active is False
        assert active.is_active is True
