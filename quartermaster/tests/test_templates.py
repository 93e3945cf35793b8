"""
Tests for transfer templates.
"""

import pytest

from quartermaster import Conflict, Forbidden, InvalidRequest, NotFound, templates
from quartermaster.models import AuditEvent, TransferStatus, TransferTemplate


pytestmark = pytest.mark.django_db


@pytest.fixture
def restock(tenant_id, alice, north, south, widget, gadget):
    """North -> South: 50 widgets, 5 gadgets."""
    return templates.create(
        tenant_id, alice, 'Weekly restock', north.pk, south.pk,
        items=[
            {'product_id': widget.pk, 'default_qty': 50},
            {'product_id': gadget.pk, 'default_qty': 5},
        ],
        description='Every Monday',
    )


def _lines(template):
    return sorted((item.product_id, item.default_qty) for item in template.items.all())


class TestCreate:
    """Tests for templates.create()."""

    def test_create_with_items(self, restock, alice, north, south, widget, gadget):
        assert restock.source_branch == north
        assert restock.destination_branch == south
        assert restock.created_by == alice
        assert not restock.is_archived
        assert _lines(restock) == sorted([(widget.pk, 50), (gadget.pk, 5)])
        event = AuditEvent.objects.get(action='TRANSFER_TEMPLATE_CREATE')
        assert event.actor == alice
        assert event.entity_id == str(restock.pk)
        assert len(event.after['items']) == 2

    def test_name_is_trimmed(self, tenant_id, alice, north, south, widget):
        template = templates.create(
            tenant_id, alice, '  Top-up  ', north.pk, south.pk,
            items=[{'product_id': widget.pk, 'default_qty': 1}],
        )

        assert template.name == 'Top-up'

    @pytest.mark.parametrize('name, route, items, code', [
        ('', 'ns', 'w', 'INVALID_FIELD'),
        ('   ', 'ns', 'w', 'INVALID_FIELD'),
        ('Loop', 'nn', 'w', 'SAME_BRANCH'),
        ('Empty', 'ns', '', 'EMPTY_ITEMS'),
        ('Twice', 'ns', 'ww', 'DUPLICATE_ITEM'),
        ('Zero', 'ns', 'z', 'INVALID_QUANTITY'),
    ])
    def test_invalid(self, tenant_id, alice, north, south, widget, name, route, items, code):
        branches = {'n': north.pk, 's': south.pk}
        lines = {
            'w': {'product_id': widget.pk, 'default_qty': 3},
            'z': {'product_id': widget.pk, 'default_qty': 0},
        }
        with pytest.raises(InvalidRequest) as exc:
            templates.create(
                tenant_id, alice, name, branches[route[0]], branches[route[1]],
                items=[lines[key] for key in items],
            )

        assert exc.value.code == code
        assert not TransferTemplate.objects.exists()

    def test_foreign_branch(self, tenant_id, alice, north, foreign_branch, widget):
        with pytest.raises(NotFound) as exc:
            templates.create(
                tenant_id, alice, 'Abroad', north.pk, foreign_branch.pk,
                items=[{'product_id': widget.pk, 'default_qty': 1}],
            )

        assert exc.value.code == 'BRANCH_NOT_FOUND'

    def test_foreign_product(self, tenant_id, alice, north, south, foreign_product):
        with pytest.raises(NotFound) as exc:
            templates.create(
                tenant_id, alice, 'Abroad', north.pk, south.pk,
                items=[{'product_id': foreign_product.pk, 'default_qty': 1}],
            )

        assert exc.value.code == 'PRODUCT_NOT_FOUND'
        assert not TransferTemplate.objects.exists()


class TestRead:
    """Tests for templates.get() and templates.list()."""

    def test_get(self, tenant_id, restock):
        assert templates.get(tenant_id, restock.pk) == restock

    def test_get_other_tenant(self, restock):
        with pytest.raises(NotFound) as exc:
            templates.get('globex', restock.pk)

        assert exc.value.code == 'TEMPLATE_NOT_FOUND'

    def test_list_by_name(self, tenant_id, alice, restock, south, north, widget):
        back = templates.create(
            tenant_id, alice, 'Returns', south.pk, north.pk,
            items=[{'product_id': widget.pk, 'default_qty': 2}],
        )
        early = templates.create(
            tenant_id, alice, 'Audit top-up', north.pk, south.pk,
            items=[{'product_id': widget.pk, 'default_qty': 2}],
        )

        assert templates.list(tenant_id).items == [early, back, restock]

    def test_list_search(self, tenant_id, alice, restock, north, south, widget):
        templates.create(
            tenant_id, alice, 'Emergency', north.pk, south.pk,
            items=[{'product_id': widget.pk, 'default_qty': 2}],
        )

        assert templates.list(tenant_id, q='WEEKLY').items == [restock]
        assert templates.list(tenant_id, q='monday').items == [restock]

    def test_list_by_route(self, tenant_id, alice, restock, north, south, widget):
        back = templates.create(
            tenant_id, alice, 'Returns', south.pk, north.pk,
            items=[{'product_id': widget.pk, 'default_qty': 2}],
        )

        assert templates.list(tenant_id, source_branch_id=south.pk).items == [back]
        assert templates.list(tenant_id, destination_branch_id=south.pk).items == [restock]

    def test_list_archived_filter(self, tenant_id, alice, restock, north, south, widget):
        live = templates.create(
            tenant_id, alice, 'Zebra', north.pk, south.pk,
            items=[{'product_id': widget.pk, 'default_qty': 2}],
        )
        templates.archive(tenant_id, restock.pk, alice)

        assert templates.list(tenant_id).items == [live]
        assert templates.list(tenant_id, archived='archived').items == [restock]
        assert templates.list(tenant_id, archived='all').items == [restock, live]

    def test_list_pages(self, tenant_id, alice, north, south, widget):
        made = [
            templates.create(
                tenant_id, alice, 'Same name', north.pk, south.pk,
                items=[{'product_id': widget.pk, 'default_qty': n}],
            )
            for n in (1, 2, 3)
        ]

        first = templates.list(tenant_id, limit=2)
        second = templates.list(tenant_id, limit=2, cursor=first.next_cursor)

        assert first.has_next
        assert first.items + second.items == made
        assert not second.has_next
        assert second.next_cursor is None

    @pytest.mark.parametrize('options', [{'archived': 'gone'}, {'cursor': 'not-a-cursor'}])
    def test_list_invalid_options(self, tenant_id, options):
        with pytest.raises(InvalidRequest):
            templates.list(tenant_id, **options)


class TestUpdate:
    """Tests for templates.update()."""

    def test_update_fields_and_items(self, tenant_id, bob, restock, widget):
        template = templates.update(
            tenant_id, restock.pk, bob, name='Daily restock',
            items=[{'product_id': widget.pk, 'default_qty': 10}],
        )

        assert template.name == 'Daily restock'
        assert _lines(template) == [(widget.pk, 10)]
        event = AuditEvent.objects.get(action='TRANSFER_TEMPLATE_UPDATE')
        assert event.actor == bob
        assert len(event.before['items']) == 2
        assert event.after['name'] == 'Daily restock'

    def test_items_kept_when_not_given(self, tenant_id, alice, restock):
        template = templates.update(tenant_id, restock.pk, alice, description='')

        assert template.items.count() == 2

    def test_change_route(self, tenant_id, alice, restock, east, north):
        template = templates.update(tenant_id, restock.pk, alice, destination_branch_id=east.pk)

        assert template.source_branch == north
        assert template.destination_branch == east

    def test_route_must_stay_between_two_branches(self, tenant_id, alice, restock, south):
        with pytest.raises(InvalidRequest) as exc:
            templates.update(tenant_id, restock.pk, alice, source_branch_id=south.pk)

        assert exc.value.code == 'SAME_BRANCH'
        restock.refresh_from_db()
        assert restock.source_branch_id != south.pk

    def test_unknown_field(self, tenant_id, alice, restock):
        with pytest.raises(InvalidRequest) as exc:
            templates.update(tenant_id, restock.pk, alice, is_archived=True)

        assert exc.value.code == 'INVALID_FIELD'

    def test_missing(self, tenant_id, alice):
        with pytest.raises(NotFound) as exc:
            templates.update(tenant_id, 999, alice, name='Nope')

        assert exc.value.code == 'TEMPLATE_NOT_FOUND'


class TestArchive:
    """Tests for templates.archive() and templates.restore()."""

    def test_archive_and_restore(self, tenant_id, alice, restock):
        archived = templates.archive(tenant_id, restock.pk, alice)

        assert archived.is_archived
        assert archived.archived_by == alice
        assert archived.archived_at is not None

        restored = templates.restore(tenant_id, restock.pk, alice)

        assert not restored.is_archived
        assert restored.archived_by is None
        assert restored.items.count() == 2
        actions = list(
            AuditEvent.objects.filter(entity_type='TRANSFER_TEMPLATE')
            .order_by('id').values_list('action', flat=True)
        )
        assert actions == ['TRANSFER_TEMPLATE_CREATE', 'TRANSFER_TEMPLATE_ARCHIVE', 'TRANSFER_TEMPLATE_RESTORE']

    def test_archive_twice(self, tenant_id, alice, restock):
        templates.archive(tenant_id, restock.pk, alice)

        with pytest.raises(Conflict) as exc:
            templates.archive(tenant_id, restock.pk, alice)

        assert exc.value.code == 'ALREADY_ARCHIVED'

    def test_restore_live_template(self, tenant_id, alice, restock):
        with pytest.raises(Conflict) as exc:
            templates.restore(tenant_id, restock.pk, alice)

        assert exc.value.code == 'NOT_ARCHIVED'


class TestDuplicate:
    """Tests for templates.duplicate()."""

    def test_default_name(self, tenant_id, bob, restock):
        copy = templates.duplicate(tenant_id, restock.pk, bob)

        assert copy.pk != restock.pk
        assert copy.name == 'Weekly restock (Copy)'
        assert copy.created_by == bob
        assert copy.description == restock.description
        assert _lines(copy) == _lines(restock)
        event = AuditEvent.objects.get(action='TRANSFER_TEMPLATE_DUPLICATE')
        assert event.after['duplicated_from_id'] == restock.pk

    def test_given_name(self, tenant_id, alice, restock):
        copy = templates.duplicate(tenant_id, restock.pk, alice, name='Holiday restock')

        assert copy.name == 'Holiday restock'

    def test_copy_of_archived_template_is_live(self, tenant_id, alice, restock):
        templates.archive(tenant_id, restock.pk, alice)

        copy = templates.duplicate(tenant_id, restock.pk, alice)

        assert not copy.is_archived

    def test_copy_is_independent(self, tenant_id, alice, restock, widget):
        copy = templates.duplicate(tenant_id, restock.pk, alice)
        templates.update(tenant_id, copy.pk, alice, items=[{'product_id': widget.pk, 'default_qty': 1}])

        assert restock.items.count() == 2


class TestCreateTransfer:
    """Tests for templates.create_transfer()."""

    def test_default_quantities(self, tenant_id, alice, restock, north, south, widget, gadget):
        transfer = templates.create_transfer(tenant_id, restock.pk, alice, request_notes='Monday run')

        assert transfer.status == TransferStatus.REQUESTED
        assert transfer.source_branch == north
        assert transfer.destination_branch == south
        assert transfer.request_notes == 'Monday run'
        lines = sorted(transfer.items.values_list('product_id', 'qty_requested'))
        assert lines == sorted([(widget.pk, 50), (gadget.pk, 5)])

    def test_overridden_quantities(self, tenant_id, alice, restock, widget, gadget):
        transfer = templates.create_transfer(
            tenant_id, restock.pk, alice, quantities={widget.pk: 80, gadget.pk: 0},
        )

        assert list(transfer.items.values_list('product_id', 'qty_requested')) == [(widget.pk, 80)]

    def test_override_outside_template(self, tenant_id, alice, restock):
        with pytest.raises(NotFound) as exc:
            templates.create_transfer(tenant_id, restock.pk, alice, quantities={999: 1})

        assert exc.value.code == 'ITEM_NOT_FOUND'

    def test_all_lines_left_out(self, tenant_id, alice, restock, widget, gadget):
        with pytest.raises(InvalidRequest) as exc:
            templates.create_transfer(tenant_id, restock.pk, alice, quantities={widget.pk: 0, gadget.pk: 0})

        assert exc.value.code == 'EMPTY_ITEMS'

    def test_archived_template(self, tenant_id, alice, restock):
        templates.archive(tenant_id, restock.pk, alice)

        with pytest.raises(Conflict) as exc:
            templates.create_transfer(tenant_id, restock.pk, alice)

        assert exc.value.code == 'TEMPLATE_ARCHIVED'

    def test_membership_still_applies(self, tenant_id, bob, restock):
        """PUSH from North needs a North member."""
        with pytest.raises(Forbidden):
            templates.create_transfer(tenant_id, restock.pk, bob)

    def test_pull_from_destination(self, tenant_id, bob, restock):
        transfer = templates.create_transfer(tenant_id, restock.pk, bob, initiation_type='PULL')

        assert transfer.initiation_type == 'PULL'
        assert transfer.requested_by == bob

    def test_approval_rules_apply(self, tenant_id, alice, restock, qty_rule, widget):
        transfer = templates.create_transfer(tenant_id, restock.pk, alice, quantities={widget.pk: 100})

        assert transfer.requires_multi_level_approval
