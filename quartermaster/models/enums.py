"""
Enums for Quartermaster models.
"""

from django.db import models
from django.utils.translation import gettext_lazy as _


class LedgerKind(models.TextChoices):
    """
    Kind of ledger event.

    Sign convention:
        RECEIPT, REVERSAL  positive
        CONSUMPTION        negative
        ADJUSTMENT         either sign
    """
    RECEIPT = 'RECEIPT', _('Receipt')
    CONSUMPTION = 'CONSUMPTION', _('Consumption')
    ADJUSTMENT = 'ADJUSTMENT', _('Adjustment')
    REVERSAL = 'REVERSAL', _('Reversal')


class InitiationType(models.TextChoices):
    """
    Who started the transfer.

    PUSH: source branch sends stock out, destination reviews.
    PULL: destination branch asks for stock, source reviews.
    """
    PUSH = 'PUSH', _('Push')
    PULL = 'PULL', _('Pull')


class TransferStatus(models.TextChoices):
    """Transfer lifecycle status."""
    REQUESTED = 'REQUESTED', _('Requested')
    APPROVED = 'APPROVED', _('Approved')
    REJECTED = 'REJECTED', _('Rejected')
    IN_TRANSIT = 'IN_TRANSIT', _('In transit')
    COMPLETED = 'COMPLETED', _('Completed')
    CANCELLED = 'CANCELLED', _('Cancelled')


class TransferPriority(models.TextChoices):
    """Transfer urgency, lowest first."""
    LOW = 'LOW', _('Low')
    NORMAL = 'NORMAL', _('Normal')
    HIGH = 'HIGH', _('High')
    URGENT = 'URGENT', _('Urgent')

    @classmethod
    def rank(cls, value) -> int:
        return list(cls.values).index(value)


class ApprovalMode(models.TextChoices):
    """
    How the levels of a matched rule are walked.

    SEQUENTIAL: level N waits for every level below it.
    PARALLEL:   any order, all levels required.
    HYBRID:     gated levels wait for every level below, free levels don't.
    """
    SEQUENTIAL = 'SEQUENTIAL', _('Sequential')
    PARALLEL = 'PARALLEL', _('Parallel')
    HYBRID = 'HYBRID', _('Hybrid')


class ConditionType(models.TextChoices):
    """Approval rule condition types."""
    TOTAL_QTY_THRESHOLD = 'TOTAL_QTY_THRESHOLD', _('Total quantity at least')
    TOTAL_VALUE_THRESHOLD = 'TOTAL_VALUE_THRESHOLD', _('Total value at least')
    SOURCE_BRANCH = 'SOURCE_BRANCH', _('Source branch is')
    DESTINATION_BRANCH = 'DESTINATION_BRANCH', _('Destination branch is')
    PRIORITY_AT_LEAST = 'PRIORITY_AT_LEAST', _('Priority at least')


class ApprovalStatus(models.TextChoices):
    """Status of one approval level on a transfer."""
    PENDING = 'PENDING', _('Pending')
    APPROVED = 'APPROVED', _('Approved')
    REJECTED = 'REJECTED', _('Rejected')
    SKIPPED = 'SKIPPED', _('Skipped')
