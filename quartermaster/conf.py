"""
Quartermaster configuration.

Usage in settings.py:
    QUARTERMASTER = {
        "AUDIT_WRITER": "quartermaster.adapters.database.DatabaseAuditWriter",
        "MEMBERSHIP_BACKEND": "quartermaster.adapters.database.DatabaseMembershipBackend",
        "TRANSFER_NUMBER_PREFIX": "TRF",
        "LEDGER_PAGE_SIZE": 20,
    }
"""

from dataclasses import dataclass, field
from typing import Any

from django.conf import settings


@dataclass
class QuartermasterSettings:
    """Quartermaster configuration settings."""

    # Audit collaborator (dotted path to an AuditWriter implementation)
    AUDIT_WRITER: str = "quartermaster.adapters.database.DatabaseAuditWriter"

    # Branch/role membership collaborator (dotted path)
    MEMBERSHIP_BACKEND: str = "quartermaster.adapters.database.DatabaseMembershipBackend"

    # Transfer numbers look like TRF-2026-0001
    TRANSFER_NUMBER_PREFIX: str = "TRF"

    # Retries on transfer number collision (unique per tenant)
    TRANSFER_NUMBER_ATTEMPTS: int = 3

    # Ledger pagination
    LEDGER_PAGE_SIZE: int = 20
    LEDGER_MAX_PAGE_SIZE: int = 100

    # Keys replaced by "[REDACTED]" in audit snapshots
    AUDIT_REDACT_KEYS: tuple[str, ...] = field(
        default=("password", "token", "secret", "api_key"),
    )


def get_quartermaster_settings() -> QuartermasterSettings:
    """Load settings from Django settings."""
    user_settings: dict[str, Any] = getattr(settings, "QUARTERMASTER", {})
    return QuartermasterSettings(**{
        k: v for k, v in user_settings.items()
        if k in QuartermasterSettings.__dataclass_fields__
    })


class _LazySettings:
    """Lazy proxy that re-reads settings on every attribute access."""

    def __getattr__(self, name):
        return getattr(get_quartermaster_settings(), name)


quartermaster_settings = _LazySettings()
