"""
Pytest fixtures for settlement tests.

Sections:
    - Infrastructure Fixtures: Redis replaced by a mock
    - Ledger Fixtures: Pre-configured retailer ledgers
    - API Fixtures: Authenticated API clients
"""

from datetime import timedelta

import pytest
from django.utils import timezone
from rest_framework.test import APIClient

from settlements.states import EntryType, TransactionType
from settlements.tests.factories import LedgerEntryFactory, UserFactory

# ==========================================================================
# Infrastructure Fixtures
# ==========================================================================


@pytest.fixture(autouse=True)
def mock_redis(mocker):
    """
    Mock Redis client behind the settlement lock.

    Every acquisition succeeds and every release reports success unless a
    test reconfigures the mock.
    """
    mock_client = mocker.MagicMock()
    mock_client.set.return_value = True
    mock_client.eval.return_value = 1

    mocker.patch(
        "settlements.locks.get_redis_connection",
        return_value=mock_client,
    )

    return mock_client


# ==========================================================================
# Ledger Fixtures
# ==========================================================================


@pytest.fixture
def retailer_id():
    return "retailer-1"


@pytest.fixture
def base_time():
    """A fixed point a week in the past; entries are created after it."""
    return timezone.now() - timedelta(days=7)


@pytest.fixture
def fifo_entries(db, retailer_id, base_time):
    """
    Three AVAILABLE order revenue credits of ₹200, ₹300 and ₹150,
    created one minute apart in that order.
    """
    return [
        LedgerEntryFactory(
            retailer_id=retailer_id,
            amount_cents=amount_cents,
            created_at=base_time + timedelta(minutes=i),
        )
        for i, amount_cents in enumerate([20000, 30000, 15000])
    ]


@pytest.fixture
def credit_with_fee(db, retailer_id, base_time):
    """
    One AVAILABLE ₹500 revenue credit and one AVAILABLE ₹50 fee debit.

    Returns:
        (credit, debit)
    """
    credit = LedgerEntryFactory(
        retailer_id=retailer_id,
        amount_cents=50000,
        created_at=base_time,
    )
    debit = LedgerEntryFactory(
        retailer_id=retailer_id,
        order_id=credit.order_id,
        transaction_type=TransactionType.PLATFORM_FEE,
        entry_type=EntryType.DEBIT,
        amount_cents=5000,
        created_at=base_time,
    )
    return credit, debit


# ==========================================================================
# API Fixtures
# ==========================================================================


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def admin_user(db):
    return UserFactory(is_staff=True)


@pytest.fixture
def retailer_user(db):
    return UserFactory()


@pytest.fixture
def admin_client(api_client, admin_user):
    api_client.force_authenticate(user=admin_user)
    return api_client


@pytest.fixture
def retailer_client(retailer_user):
    client = APIClient()
    client.force_authenticate(user=retailer_user)
    return client
