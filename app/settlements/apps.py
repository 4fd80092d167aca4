from django.apps import AppConfig


class SettlementsConfig(AppConfig):
    """Seller ledger and FIFO settlement engine."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "settlements"
    verbose_name = "Settlements"
