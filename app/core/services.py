"""
Base service layer patterns for business logic encapsulation.

Services encapsulate business logic separate from views and models.
Views handle HTTP concerns, models handle data, services handle logic.
Domain services raise ``core.exceptions`` subclasses for expected
failures; views translate them into responses.

Usage:
    from core.services import BaseService

    class LedgerService(BaseService):
        def __init__(self, ledger_store=None):
            self.ledger_store = ledger_store or LedgerStore()

        def record(self, ...):
            with self.atomic():
                ...
            self.get_logger().info("Recorded entry", extra={...})
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import TYPE_CHECKING

from django.db import transaction

if TYPE_CHECKING:
    from collections.abc import Generator


class BaseService:
    """
    Base class for service layer classes.

    Provides common utilities for services:
    - Logging setup per service
    - Database transaction management

    Design Notes:
        - Collaborators (stores, other services) are injected through
          ``__init__`` so tests can substitute them
        - Services hold no mutable state between calls
    """

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """
        Get logger for this service.

        Returns a logger named after the service class for
        easy filtering in logs.
        """
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    @contextmanager
    def atomic(cls) -> Generator[None, None, None]:
        """
        Execute operations in a database transaction.

        If any operation inside the block raises, every write made in
        the block is rolled back.

        Example:
            with self.atomic():
                settlement = Settlement.objects.create(...)
                SettlementLedgerMapping.objects.bulk_create(rows)
        """
        with transaction.atomic():
            yield
