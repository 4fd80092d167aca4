"""
Celery tasks for releasing ledger entries from their hold window.

Order revenue and platform fees are recorded PENDING with a trigger date
a few days out. Once the trigger date passes they become AVAILABLE and
count towards the retailer's settlable balance.

Tasks:
- process_matured_holds: Scans for matured entries and queues releases
- release_ledger_entry: Releases a single entry

Usage:
    # Schedule process_matured_holds with whatever scheduler the
    # deployment runs, or trigger it by hand
    from settlements.tasks import process_matured_holds

    process_matured_holds.delay()

    # Release a specific entry
    release_ledger_entry.delay(str(entry.id))
"""

from __future__ import annotations

import logging
from uuid import UUID

from celery import shared_task

from core.exceptions import NotFoundError, ValidationError
from settlements.services import LedgerService
from settlements.states import LedgerStatus
from settlements.stores import LedgerStore

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Maximum entries queued per scan
BATCH_SIZE = 100


# =============================================================================
# Periodic Task: Scan for Matured Holds
# =============================================================================


@shared_task(bind=True)
def process_matured_holds(self) -> dict:
    """
    Scan for held entries whose trigger date has passed and queue a
    release task for each, oldest trigger date first.

    Returns:
        Dict with:
        - queued_count: Number of entries queued for release

    Note:
        Idempotent. release_ledger_entry skips entries that are no longer
        PENDING, so overlapping scans never release twice.
    """
    logger.info("Starting matured hold scan")

    entry_ids = LedgerService().get_matured_entry_ids(limit=BATCH_SIZE)

    queued_count = 0
    for entry_id in entry_ids:
        release_ledger_entry.delay(str(entry_id))
        queued_count += 1

    logger.info(
        f"Matured hold scan complete: queued {queued_count} entries",
        extra={"queued_count": queued_count},
    )

    return {"queued_count": queued_count}


# =============================================================================
# Individual Release Task
# =============================================================================


@shared_task(
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": 3},
    acks_late=True,
)
def release_ledger_entry(self, entry_id: str) -> dict:
    """
    Move one held ledger entry to AVAILABLE.

    Args:
        entry_id: UUID of the LedgerEntry to release

    Returns:
        Dict with:
        - status: One of "released", "already_released", "not_found",
                  "still_held"
        - entry_id: The entry processed

    Raises:
        Exception: Re-raised to trigger Celery retry for transient failures
    """
    try:
        entry_uuid = UUID(str(entry_id))
    except ValueError:
        logger.error(f"Invalid entry_id format: {entry_id}")
        return {"status": "not_found", "entry_id": entry_id}

    entry = LedgerStore().get(entry_uuid)
    if entry is None:
        logger.warning("LedgerEntry not found", extra={"entry_id": entry_id})
        return {"status": "not_found", "entry_id": entry_id}

    # Checked again under the row lock inside release_entry
    if entry.status != LedgerStatus.PENDING:
        logger.info(
            "LedgerEntry already released, skipping",
            extra={"entry_id": entry_id, "status": entry.status},
        )
        return {"status": "already_released", "entry_id": entry_id}

    try:
        LedgerService().release_entry(entry_uuid)
    except NotFoundError:
        return {"status": "not_found", "entry_id": entry_id}
    except ValidationError as e:
        logger.info(
            "LedgerEntry still on hold, skipping",
            extra={"entry_id": entry_id, "error_code": e.error_code},
        )
        return {"status": "still_held", "entry_id": entry_id}

    return {"status": "released", "entry_id": entry_id}


__all__ = [
    "process_matured_holds",
    "release_ledger_entry",
]
