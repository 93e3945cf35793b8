"""Django app configuration for Quartermaster."""

from django.apps import AppConfig
from django.utils.translation import gettext_lazy as _


class QuartermasterConfig(AppConfig):
    """Configuration for Quartermaster app."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "quartermaster"
    verbose_name = _("Branch Inventory")
