"""
Quartermaster Protocols.

Defines interfaces for the collaborators the inventory core relies on.
"""

from quartermaster.protocols.audit import AuditContext, AuditWriter
from quartermaster.protocols.membership import MembershipBackend

__all__ = [
    "AuditContext",
    "AuditWriter",
    "MembershipBackend",
]
