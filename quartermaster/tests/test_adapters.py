"""
Tests for collaborator loading, the database adapters and transactions.
"""

import pytest
from django.core.exceptions import ImproperlyConfigured
from django.db import OperationalError

from quartermaster import AuditContext, Conflict, stock
from quartermaster.adapters import get_audit_writer, get_membership_backend
from quartermaster.adapters.database import DatabaseAuditWriter, redact, shallow_diff
from quartermaster.db import serializable
from quartermaster.models import AuditEvent, StockLedger, StockLot


pytestmark = pytest.mark.django_db


class ExplodingAuditWriter:
    """Audit writer whose storage is down."""

    def write_audit_event(self, **kwargs):
        raise RuntimeError('audit store unavailable')


class RecordingAuditWriter:
    events = []

    def write_audit_event(self, **kwargs):
        self.events.append(kwargs)


class NotAWriter:
    pass


class TestBackends:
    """Loading collaborators from QUARTERMASTER settings."""

    def test_defaults(self):
        assert isinstance(get_audit_writer(), DatabaseAuditWriter)
        assert get_membership_backend().branch_ids_for('acme', None) == []

    def test_custom_writer(self, settings, widget, north, alice):
        settings.QUARTERMASTER = {'AUDIT_WRITER': f'{__name__}.RecordingAuditWriter'}
        RecordingAuditWriter.events = []

        stock.receive(3, widget, north, context=AuditContext(actor=alice, correlation_id='abc'))

        [event] = RecordingAuditWriter.events
        assert event['action'] == 'STOCK_RECEIVE'
        assert event['actor_user_id'] == alice.pk
        assert event['correlation_id'] == 'abc'
        assert not AuditEvent.objects.exists()

    def test_audit_failure_aborts_operation(self, settings, widget, north):
        """A failing audit writer rolls the movement back."""
        settings.QUARTERMASTER = {'AUDIT_WRITER': f'{__name__}.ExplodingAuditWriter'}

        with pytest.raises(RuntimeError):
            stock.receive(3, widget, north)

        assert not StockLot.objects.exists()
        assert not StockLedger.objects.exists()

    def test_wrong_protocol(self, settings):
        settings.QUARTERMASTER = {'AUDIT_WRITER': f'{__name__}.NotAWriter'}

        with pytest.raises(ImproperlyConfigured):
            get_audit_writer()

    def test_unimportable(self, settings):
        settings.QUARTERMASTER = {'MEMBERSHIP_BACKEND': 'nowhere.Backend'}

        with pytest.raises(ImproperlyConfigured):
            get_membership_backend()


class TestDatabaseAdapters:
    """Tests for the default membership backend and audit helpers."""

    def test_membership(self, tenant_id, carol, north, south, manager_role):
        backend = get_membership_backend()

        assert backend.is_branch_member(tenant_id, carol, north.pk)
        assert not backend.is_branch_member('globex', carol, north.pk)
        assert sorted(backend.branch_ids_for(tenant_id, carol)) == sorted([north.pk, south.pk])
        assert backend.role_id_for(tenant_id, carol) == manager_role.pk

    def test_redact(self):
        value = {'name': 'x', 'api_key': 'k', 'nested': [{'Password': 'p'}]}

        assert redact(value, ('password', 'api_key')) == {
            'name': 'x', 'api_key': '[REDACTED]', 'nested': [{'Password': '[REDACTED]'}],
        }

    def test_shallow_diff(self):
        assert shallow_diff({'a': 1, 'b': 2}, {'a': 1, 'b': 3, 'c': 4}) == {'b': [2, 3], 'c': [None, 4]}
        assert shallow_diff(None, None) == {}

    def test_writer_redacts(self, tenant_id):
        DatabaseAuditWriter().write_audit_event(
            tenant_id=tenant_id, actor_user_id=None, entity_type='PRODUCT', entity_id='1',
            action='PRODUCT_UPDATE', before={'token': 'a'}, after={'token': 'b'},
        )

        event = AuditEvent.objects.get()
        assert event.after == {'token': '[REDACTED]'}
        assert event.diff == {}


class SerializationCause(Exception):
    sqlstate = '40001'


class TestSerializable:
    """Tests for the serializable() transaction helper."""

    def test_serialization_failure_is_conflict(self):
        error = OperationalError('could not serialize access')
        error.__cause__ = SerializationCause()

        with pytest.raises(Conflict) as exc:
            with serializable():
                raise error

        assert exc.value.code == 'SERIALIZATION_FAILURE'

    def test_other_errors_propagate(self):
        with pytest.raises(OperationalError):
            with serializable():
                raise OperationalError('disk I/O error')

    def test_rolls_back(self, widget, north):
        with pytest.raises(ValueError):
            with serializable():
                stock.receive(3, widget, north)
                raise ValueError('boom')

        assert not StockLot.objects.exists()
