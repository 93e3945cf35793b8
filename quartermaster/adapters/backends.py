"""
Collaborator loading — resolves AUDIT_WRITER and MEMBERSHIP_BACKEND.

Usage:
    from quartermaster.adapters import get_audit_writer, get_membership_backend

    get_audit_writer().write_audit_event(...)
    get_membership_backend().is_branch_member(tenant_id, user, branch_id)

Settings:
    QUARTERMASTER = {
        "AUDIT_WRITER": "myproject.audit.KafkaAuditWriter",
        "MEMBERSHIP_BACKEND": "myproject.auth.MembershipBackend",
    }

Both default to the database adapters. Instances are cached; call
reset_backends() after changing settings (tests).
"""

from __future__ import annotations

import logging
import threading

from django.core.exceptions import ImproperlyConfigured
from django.utils.module_loading import import_string

from quartermaster.conf import quartermaster_settings
from quartermaster.protocols.audit import AuditWriter
from quartermaster.protocols.membership import MembershipBackend

logger = logging.getLogger(__name__)


_lock = threading.Lock()
_audit_writer: AuditWriter | None = None
_membership_backend: MembershipBackend | None = None


def _load(setting_name: str, path: str, protocol):
    if not path:
        raise ImproperlyConfigured(f"QUARTERMASTER['{setting_name}'] must be configured.")
    try:
        backend_class = import_string(path)
    except ImportError as e:
        raise ImproperlyConfigured(
            f"Failed to import {setting_name} '{path}': {e}"
        ) from e
    backend = backend_class()
    if not isinstance(backend, protocol):
        raise ImproperlyConfigured(
            f"{setting_name} '{path}' does not implement {protocol.__name__}"
        )
    logger.debug("Loaded %s: %s", setting_name, path)
    return backend


def get_audit_writer() -> AuditWriter:
    """
    Return the configured audit writer.

    Raises:
        ImproperlyConfigured: If the path is empty, fails to import or does
        not implement AuditWriter
    """
    global _audit_writer

    if _audit_writer is None:
        with _lock:
            if _audit_writer is None:  # double-checked
                _audit_writer = _load(
                    'AUDIT_WRITER', quartermaster_settings.AUDIT_WRITER, AuditWriter,
                )
    return _audit_writer


def get_membership_backend() -> MembershipBackend:
    """Return the configured membership backend."""
    global _membership_backend

    if _membership_backend is None:
        with _lock:
            if _membership_backend is None:
                _membership_backend = _load(
                    'MEMBERSHIP_BACKEND', quartermaster_settings.MEMBERSHIP_BACKEND, MembershipBackend,
                )
    return _membership_backend


def reset_backends() -> None:
    """Reset the cached collaborators. Useful for testing."""
    global _audit_writer, _membership_backend
    _audit_writer = None
    _membership_backend = None
