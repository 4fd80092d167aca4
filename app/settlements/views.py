"""
API views for the ledger and settlement engine.

This module provides REST API endpoints for:
- Administrators: manual adjustments, settlement execution and preview,
  ledger and settlement history, per-retailer summaries, unblocking
- Retailers: their dashboard, balance, ledger and payout history

URL Structure:
    /api/v1/settlements/                                         GET
    /api/v1/settlements/{settlement_id}/                         GET
    /api/v1/settlements/adjustments/                             POST
    /api/v1/settlements/execute/                                 POST
    /api/v1/settlements/preview/                                 POST
    /api/v1/settlements/ledgers/                                 GET
    /api/v1/settlements/admin/retailers/{retailer_id}/summary/   GET
    /api/v1/settlements/admin/retailers/{retailer_id}/balance/   GET
    /api/v1/settlements/admin/retailers/{retailer_id}/ledgers/unsettled/  GET
    /api/v1/settlements/admin/retailers/{retailer_id}/history/   GET
    /api/v1/settlements/admin/retailers/{retailer_id}/unblock/   POST
    /api/v1/settlements/retailer/summary/                        GET
    /api/v1/settlements/retailer/balance/                        GET
    /api/v1/settlements/retailer/ledgers/                        GET
    /api/v1/settlements/retailer/history/                        GET
    /api/v1/settlements/retailer/history/{settlement_id}/        GET

Design Decisions:
    - Views only translate HTTP to service calls; all rules live in the
      services
    - Domain errors render as ``to_dict()`` with a status per error class
    - The authenticated user's primary key is the retailer id on the
      retailer endpoints, so retailers can only ever see their own data
"""

from __future__ import annotations

import logging

from drf_spectacular.utils import OpenApiResponse, extend_schema
from rest_framework import status
from rest_framework.permissions import IsAdminUser, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from core.exceptions import (
    BaseApplicationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from settlements.exceptions import InsufficientBalanceError
from settlements.serializers import (
    AllocationPlanSerializer,
    AvailableBalanceSerializer,
    DashboardQuerySerializer,
    DashboardSummarySerializer,
    ExecuteSettlementRequestSerializer,
    LedgerEntrySerializer,
    LedgerHistoryQuerySerializer,
    ManualAdjustmentRequestSerializer,
    PreviewSettlementRequestSerializer,
    ResolveBlockRequestSerializer,
    RetailerSettlementBlockSerializer,
    RetailerSummarySerializer,
    SettlementDetailsSerializer,
    SettlementQuerySerializer,
    SettlementSerializer,
    SettlementSummarySerializer,
)
from settlements.services import (
    LedgerService,
    SettlementEngine,
    SettlementQueryService,
)
from settlements.types import LedgerHistoryFilters, SettlementFilters

logger = logging.getLogger(__name__)

# Most specific first
ERROR_STATUS_MAP = (
    (InsufficientBalanceError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
)

ERROR_RESPONSES = {
    400: OpenApiResponse(description="Invalid request"),
    409: OpenApiResponse(description="Retailer locked by another settlement or blocked"),
    500: OpenApiResponse(description="Integrity or persistence failure, rolled back"),
}


def error_status_for(exc: BaseApplicationError) -> int:
    for error_class, http_status in ERROR_STATUS_MAP:
        if isinstance(exc, error_class):
            return http_status
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def page_response(page, serializer_class) -> dict:
    """Render a types.Page with the list pagination envelope."""
    return {
        "results": serializer_class(page.items, many=True).data,
        "pagination": {
            "page": page.page,
            "limit": page.limit,
            "total": page.total,
            "total_pages": page.total_pages,
        },
    }


class SettlementAPIView(APIView):
    """
    Base view rendering domain errors.

    Subclasses raise service exceptions freely; they are converted to a
    ``to_dict()`` body with the matching status here.
    """

    permission_classes = [IsAdminUser]

    def handle_exception(self, exc):
        if isinstance(exc, BaseApplicationError):
            http_status = error_status_for(exc)
            log = logger.error if http_status >= 500 else logger.info
            log(
                f"Settlement request failed: {exc}",
                extra={
                    "path": self.request.path,
                    "error_code": exc.error_code,
                    "status": http_status,
                },
            )
            return Response(exc.to_dict(), status=http_status)
        return super().handle_exception(exc)

    @staticmethod
    def actor_id(request) -> str:
        return str(request.user.pk)


class RetailerAPIView(SettlementAPIView):
    """Base view for retailer endpoints: the caller is the retailer."""

    permission_classes = [IsAuthenticated]

    @staticmethod
    def retailer_id(request) -> str:
        return str(request.user.pk)


# =============================================================================
# Admin: Writes
# =============================================================================


class ManualAdjustmentView(SettlementAPIView):
    """
    Record a bonus (CREDIT) or penalty (DEBIT) for a retailer.

    POST /api/v1/settlements/adjustments/
    """

    @extend_schema(
        operation_id="create_manual_adjustment",
        summary="Create manual adjustment",
        request=ManualAdjustmentRequestSerializer,
        responses={201: LedgerEntrySerializer, **ERROR_RESPONSES},
        tags=["Settlements - Admin"],
    )
    def post(self, request):
        serializer = ManualAdjustmentRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        entry = LedgerService().record_manual_adjustment(
            retailer_id=data["retailer_id"],
            amount_cents=data["amount_cents"],
            entry_type=data["entry_type"],
            notes=data["notes"],
            actor_id=self.actor_id(request),
            warehouse_id=data["warehouse_id"],
        )
        return Response(LedgerEntrySerializer(entry).data, status=status.HTTP_201_CREATED)


class ExecuteSettlementView(SettlementAPIView):
    """
    Pay a retailer, consuming their oldest earnings first.

    POST /api/v1/settlements/execute/

    A timeout or 5xx leaves the outcome unknown to the caller: check the
    settlement list before retrying.
    """

    @extend_schema(
        operation_id="execute_settlement",
        summary="Execute settlement",
        request=ExecuteSettlementRequestSerializer,
        responses={
            201: SettlementSummarySerializer,
            422: OpenApiResponse(description="Insufficient balance"),
            **ERROR_RESPONSES,
        },
        tags=["Settlements - Admin"],
    )
    def post(self, request):
        serializer = ExecuteSettlementRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        summary = SettlementEngine().execute_settlement(
            retailer_id=data["retailer_id"],
            amount_cents=data["amount_cents"],
            payment_mode=data["payment_mode"],
            actor_id=self.actor_id(request),
            reference_number=data["reference_number"],
            notes=data["notes"],
            receipt_url=data["receipt_url"],
        )
        return Response(
            SettlementSummarySerializer(summary).data, status=status.HTTP_201_CREATED
        )


class PreviewSettlementView(SettlementAPIView):
    """
    Show which entries a payout would consume, without writing anything.

    POST /api/v1/settlements/preview/
    """

    @extend_schema(
        operation_id="preview_settlement",
        summary="Preview settlement allocation",
        request=PreviewSettlementRequestSerializer,
        responses={
            200: AllocationPlanSerializer,
            422: OpenApiResponse(description="Insufficient balance"),
            400: OpenApiResponse(description="Invalid request"),
        },
        tags=["Settlements - Admin"],
    )
    def post(self, request):
        serializer = PreviewSettlementRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        plan = SettlementEngine().preview_settlement(
            data["retailer_id"], data["amount_cents"]
        )
        return Response(AllocationPlanSerializer(plan).data)


class ResolveBlockView(SettlementAPIView):
    """
    Lift a retailer's settlement block after investigation.

    POST /api/v1/settlements/admin/retailers/{retailer_id}/unblock/
    """

    @extend_schema(
        operation_id="resolve_settlement_block",
        summary="Resolve settlement block",
        request=ResolveBlockRequestSerializer,
        responses={
            200: RetailerSettlementBlockSerializer,
            404: OpenApiResponse(description="No active block"),
        },
        tags=["Settlements - Admin"],
    )
    def post(self, request, retailer_id):
        serializer = ResolveBlockRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        block = SettlementEngine().resolve_block(
            retailer_id,
            actor_id=self.actor_id(request),
            notes=serializer.validated_data["notes"],
        )
        return Response(RetailerSettlementBlockSerializer(block).data)


# =============================================================================
# Admin: Reads
# =============================================================================


class LedgerHistoryView(SettlementAPIView):
    """
    Ledger entries across retailers, newest first.

    GET /api/v1/settlements/ledgers/?retailer_id=&status=&page=&limit=
    """

    @extend_schema(
        operation_id="list_ledger_entries",
        summary="List ledger entries",
        parameters=[LedgerHistoryQuerySerializer],
        responses={200: LedgerEntrySerializer(many=True)},
        tags=["Settlements - Admin"],
    )
    def get(self, request):
        query = LedgerHistoryQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)

        page = SettlementQueryService().get_ledger_history(
            LedgerHistoryFilters(**query.validated_data)
        )
        return Response(page_response(page, LedgerEntrySerializer))


class SettlementListView(SettlementAPIView):
    """
    Settlements across retailers, newest first.

    GET /api/v1/settlements/?retailer_id=&payment_mode=&page=&limit=
    """

    @extend_schema(
        operation_id="list_settlements",
        summary="List settlements",
        parameters=[SettlementQuerySerializer],
        responses={200: SettlementSerializer(many=True)},
        tags=["Settlements - Admin"],
    )
    def get(self, request):
        query = SettlementQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)

        page = SettlementQueryService().get_settlements(
            SettlementFilters(**query.validated_data)
        )
        return Response(page_response(page, SettlementSerializer))


class SettlementDetailView(SettlementAPIView):
    """
    A settlement with the ledger entries it consumed.

    GET /api/v1/settlements/{settlement_id}/
    """

    @extend_schema(
        operation_id="get_settlement",
        summary="Get settlement details",
        responses={
            200: SettlementDetailsSerializer,
            404: OpenApiResponse(description="Settlement not found"),
        },
        tags=["Settlements - Admin"],
    )
    def get(self, request, settlement_id):
        details = SettlementQueryService().get_settlement_details(settlement_id)
        return Response(SettlementDetailsSerializer(details).data)


class AdminRetailerSummaryView(SettlementAPIView):
    """
    What a retailer is owed, has on hold and has been paid.

    GET /api/v1/settlements/admin/retailers/{retailer_id}/summary/
    """

    @extend_schema(
        operation_id="get_retailer_summary",
        summary="Get retailer summary",
        responses={200: RetailerSummarySerializer},
        tags=["Settlements - Admin"],
    )
    def get(self, request, retailer_id):
        summary = SettlementQueryService().get_retailer_summary(retailer_id)
        return Response(RetailerSummarySerializer(summary).data)


class AdminRetailerBalanceView(SettlementAPIView):
    """GET /api/v1/settlements/admin/retailers/{retailer_id}/balance/"""

    @extend_schema(
        operation_id="get_retailer_balance",
        summary="Get retailer available balance",
        responses={200: AvailableBalanceSerializer},
        tags=["Settlements - Admin"],
    )
    def get(self, request, retailer_id):
        balance = SettlementQueryService().get_available_balance(retailer_id)
        return Response(AvailableBalanceSerializer(balance).data)


class AdminUnsettledLedgersView(SettlementAPIView):
    """
    Unsettled entries in the order a settlement would consume them.

    GET /api/v1/settlements/admin/retailers/{retailer_id}/ledgers/unsettled/
    """

    @extend_schema(
        operation_id="list_unsettled_ledger_entries",
        summary="List unsettled ledger entries",
        responses={200: LedgerEntrySerializer(many=True)},
        tags=["Settlements - Admin"],
    )
    def get(self, request, retailer_id):
        entries = SettlementQueryService().get_unsettled_entries(retailer_id)
        return Response({"results": LedgerEntrySerializer(entries, many=True).data})


class AdminSettlementHistoryView(SettlementAPIView):
    """GET /api/v1/settlements/admin/retailers/{retailer_id}/history/"""

    @extend_schema(
        operation_id="list_retailer_settlements",
        summary="List a retailer's settlements",
        responses={200: SettlementSerializer(many=True)},
        tags=["Settlements - Admin"],
    )
    def get(self, request, retailer_id):
        settlements = SettlementQueryService().get_settlement_history(retailer_id)
        return Response({"results": SettlementSerializer(settlements, many=True).data})


# =============================================================================
# Retailer
# =============================================================================


class RetailerDashboardView(RetailerAPIView):
    """
    Dashboard figures for one of the retailer's warehouses.

    GET /api/v1/settlements/retailer/summary/?warehouse_id=
    """

    @extend_schema(
        operation_id="get_retailer_dashboard",
        summary="Get dashboard summary",
        parameters=[DashboardQuerySerializer],
        responses={200: DashboardSummarySerializer},
        tags=["Settlements - Retailer"],
    )
    def get(self, request):
        query = DashboardQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)

        summary = SettlementQueryService().get_dashboard_summary(
            self.retailer_id(request), query.validated_data["warehouse_id"]
        )
        return Response(DashboardSummarySerializer(summary).data)


class RetailerBalanceView(RetailerAPIView):
    """GET /api/v1/settlements/retailer/balance/"""

    @extend_schema(
        operation_id="get_own_balance",
        summary="Get available balance",
        responses={200: AvailableBalanceSerializer},
        tags=["Settlements - Retailer"],
    )
    def get(self, request):
        balance = SettlementQueryService().get_available_balance(
            self.retailer_id(request)
        )
        return Response(AvailableBalanceSerializer(balance).data)


class RetailerLedgerView(RetailerAPIView):
    """
    The retailer's own ledger, newest first.

    GET /api/v1/settlements/retailer/ledgers/?status=&page=&limit=
    """

    @extend_schema(
        operation_id="list_own_ledger_entries",
        summary="List ledger entries",
        parameters=[LedgerHistoryQuerySerializer],
        responses={200: LedgerEntrySerializer(many=True)},
        tags=["Settlements - Retailer"],
    )
    def get(self, request):
        query = LedgerHistoryQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)

        # A retailer_id in the query string never widens the scope
        filters = LedgerHistoryFilters(
            **{**query.validated_data, "retailer_id": self.retailer_id(request)}
        )
        page = SettlementQueryService().get_ledger_history(filters)
        return Response(page_response(page, LedgerEntrySerializer))


class RetailerSettlementHistoryView(RetailerAPIView):
    """
    The retailer's payouts, newest first.

    GET /api/v1/settlements/retailer/history/?page=&limit=
    """

    @extend_schema(
        operation_id="list_own_settlements",
        summary="List settlements",
        parameters=[SettlementQuerySerializer],
        responses={200: SettlementSerializer(many=True)},
        tags=["Settlements - Retailer"],
    )
    def get(self, request):
        query = SettlementQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)

        filters = SettlementFilters(
            **{**query.validated_data, "retailer_id": self.retailer_id(request)}
        )
        page = SettlementQueryService().get_settlements(filters)
        return Response(page_response(page, SettlementSerializer))


class RetailerSettlementDetailView(RetailerAPIView):
    """
    One of the retailer's payouts with its breakdown.

    GET /api/v1/settlements/retailer/history/{settlement_id}/

    Another retailer's settlement id returns 404.
    """

    @extend_schema(
        operation_id="get_own_settlement",
        summary="Get settlement details",
        responses={
            200: SettlementDetailsSerializer,
            404: OpenApiResponse(description="Settlement not found"),
        },
        tags=["Settlements - Retailer"],
    )
    def get(self, request, settlement_id):
        details = SettlementQueryService().get_settlement_details(
            settlement_id, retailer_id=self.retailer_id(request)
        )
        return Response(SettlementDetailsSerializer(details).data)
