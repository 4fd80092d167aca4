"""
Tests for the hold-release Celery tasks.

Tasks are called synchronously; ``release_ledger_entry.delay`` is mocked
where only the queuing is under test.
"""

import uuid
from datetime import timedelta

import pytest
from django.utils import timezone

from settlements.states import LedgerStatus
from settlements.tasks import process_matured_holds, release_ledger_entry
from settlements.tests.factories import LedgerEntryFactory


@pytest.fixture
def matured_entry(db):
    return LedgerEntryFactory(
        status=LedgerStatus.PENDING,
        trigger_date=timezone.now() - timedelta(minutes=5),
    )


@pytest.fixture
def held_entry(db):
    return LedgerEntryFactory(
        status=LedgerStatus.PENDING,
        trigger_date=timezone.now() + timedelta(days=2),
    )


class TestProcessMaturedHolds:
    def test_queues_matured_entries_only(self, matured_entry, held_entry, mocker):
        mock_delay = mocker.patch("settlements.tasks.release_ledger_entry.delay")

        result = process_matured_holds()

        assert result == {"queued_count": 1}
        mock_delay.assert_called_once_with(str(matured_entry.id))

    def test_batch_size_caps_queue(self, db, mocker):
        mocker.patch("settlements.tasks.BATCH_SIZE", 2)
        mock_delay = mocker.patch("settlements.tasks.release_ledger_entry.delay")
        past = timezone.now() - timedelta(minutes=5)
        for _ in range(3):
            LedgerEntryFactory(status=LedgerStatus.PENDING, trigger_date=past)

        result = process_matured_holds()

        assert result == {"queued_count": 2}
        assert mock_delay.call_count == 2

    def test_nothing_to_release(self, db, mocker):
        mock_delay = mocker.patch("settlements.tasks.release_ledger_entry.delay")

        assert process_matured_holds() == {"queued_count": 0}
        mock_delay.assert_not_called()


class TestReleaseLedgerEntry:
    def test_releases_matured_entry(self, matured_entry):
        result = release_ledger_entry(str(matured_entry.id))

        assert result == {"status": "released", "entry_id": str(matured_entry.id)}
        matured_entry.refresh_from_db()
        assert matured_entry.status == LedgerStatus.AVAILABLE

    def test_second_release_is_noop(self, matured_entry):
        release_ledger_entry(str(matured_entry.id))

        result = release_ledger_entry(str(matured_entry.id))

        assert result["status"] == "already_released"

    def test_entry_still_held(self, held_entry):
        result = release_ledger_entry(str(held_entry.id))

        assert result["status"] == "still_held"
        held_entry.refresh_from_db()
        assert held_entry.status == LedgerStatus.PENDING

    def test_unknown_entry(self, db):
        result = release_ledger_entry(str(uuid.uuid4()))

        assert result["status"] == "not_found"

    def test_malformed_entry_id(self, db):
        result = release_ledger_entry("not-a-uuid")

        assert result == {"status": "not_found", "entry_id": "not-a-uuid"}
