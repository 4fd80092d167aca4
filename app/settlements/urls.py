"""
URL configuration for settlements app.

Mounted at /api/v1/settlements/ by config/urls.py.
"""

from django.urls import path

from settlements import views

app_name = "settlements"

urlpatterns = [
    # Admin
    path("", views.SettlementListView.as_view(), name="settlement-list"),
    path("adjustments/", views.ManualAdjustmentView.as_view(), name="adjustment-create"),
    path("execute/", views.ExecuteSettlementView.as_view(), name="settlement-execute"),
    path("preview/", views.PreviewSettlementView.as_view(), name="settlement-preview"),
    path("ledgers/", views.LedgerHistoryView.as_view(), name="ledger-list"),
    path(
        "admin/retailers/<str:retailer_id>/summary/",
        views.AdminRetailerSummaryView.as_view(),
        name="admin-retailer-summary",
    ),
    path(
        "admin/retailers/<str:retailer_id>/balance/",
        views.AdminRetailerBalanceView.as_view(),
        name="admin-retailer-balance",
    ),
    path(
        "admin/retailers/<str:retailer_id>/ledgers/unsettled/",
        views.AdminUnsettledLedgersView.as_view(),
        name="admin-retailer-unsettled",
    ),
    path(
        "admin/retailers/<str:retailer_id>/history/",
        views.AdminSettlementHistoryView.as_view(),
        name="admin-retailer-history",
    ),
    path(
        "admin/retailers/<str:retailer_id>/unblock/",
        views.ResolveBlockView.as_view(),
        name="admin-retailer-unblock",
    ),
    # Retailer
    path(
        "retailer/summary/",
        views.RetailerDashboardView.as_view(),
        name="retailer-summary",
    ),
    path(
        "retailer/balance/",
        views.RetailerBalanceView.as_view(),
        name="retailer-balance",
    ),
    path(
        "retailer/ledgers/",
        views.RetailerLedgerView.as_view(),
        name="retailer-ledgers",
    ),
    path(
        "retailer/history/",
        views.RetailerSettlementHistoryView.as_view(),
        name="retailer-history",
    ),
    path(
        "retailer/history/<uuid:settlement_id>/",
        views.RetailerSettlementDetailView.as_view(),
        name="retailer-history-detail",
    ),
    path(
        "<uuid:settlement_id>/",
        views.SettlementDetailView.as_view(),
        name="settlement-detail",
    ),
]
