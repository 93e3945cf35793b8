"""
Quartermaster Adapters.

Implementations of protocols and the loader that picks them from settings.
"""

from quartermaster.adapters.backends import (
    get_audit_writer,
    get_membership_backend,
    reset_backends,
)

__all__ = [
    "get_audit_writer",
    "get_membership_backend",
    "reset_backends",
]
