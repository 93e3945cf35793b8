"""
Tests for approval rule administration.
"""

import pytest

from quartermaster import AuditContext, Conflict, InvalidRequest, NotFound, approval_rules
from quartermaster.models import ApprovalRule, AuditEvent, Role


pytestmark = pytest.mark.django_db

QTY = [{'condition_type': 'TOTAL_QTY_THRESHOLD', 'threshold': 10}]


@pytest.fixture
def levels(manager_role):
    return [{'level': 1, 'name': 'Manager', 'required_role_id': manager_role.pk}]


class TestCreate:
    """Tests for approval_rules.create()."""

    def test_create_with_children(self, tenant_id, dave, levels, alice):
        rule = approval_rules.create(
            tenant_id, 'Large', QTY,
            levels + [{'level': 2, 'name': 'Director', 'required_user_id': dave.pk, 'is_gated': False}],
            approval_mode='HYBRID', priority=3, description='big ones',
            context=AuditContext(actor=alice),
        )

        assert rule.approval_mode == 'HYBRID'
        assert rule.conditions.get().threshold == 10
        assert [(lvl.level, lvl.is_gated) for lvl in rule.levels.all()] == [(1, True), (2, False)]
        event = AuditEvent.objects.get(action='APPROVAL_RULE_CREATE')
        assert event.actor == alice
        assert len(event.after['levels']) == 2

    def test_levels_may_arrive_unordered(self, tenant_id, dave, levels):
        rule = approval_rules.create(
            tenant_id, 'Large', QTY,
            [{'level': 2, 'name': 'Director', 'required_user_id': dave.pk}] + levels,
        )

        assert list(rule.levels.values_list('level', flat=True)) == [1, 2]

    @pytest.mark.parametrize('conditions, code', [
        ([], 'EMPTY_CONDITIONS'),
        ([{'condition_type': 'MOON_PHASE'}], 'INVALID_CONDITION'),
        ([{'condition_type': 'TOTAL_QTY_THRESHOLD'}], 'INVALID_CONDITION'),
        ([{'condition_type': 'TOTAL_VALUE_THRESHOLD', 'threshold': -1}], 'INVALID_CONDITION'),
        ([{'condition_type': 'SOURCE_BRANCH'}], 'INVALID_CONDITION'),
        ([{'condition_type': 'PRIORITY_AT_LEAST', 'priority': 'ASAP'}], 'INVALID_CONDITION'),
    ])
    def test_invalid_conditions(self, tenant_id, levels, conditions, code):
        with pytest.raises(InvalidRequest) as exc:
            approval_rules.create(tenant_id, 'Bad', conditions, levels)

        assert exc.value.code == code
        assert not ApprovalRule.objects.exists()

    def test_invalid_levels(self, tenant_id, manager_role, dave):
        cases = [
            [],
            [{'level': 2, 'name': 'Gap', 'required_role_id': manager_role.pk}],
            [{'level': 1, 'name': 'Both', 'required_role_id': manager_role.pk, 'required_user_id': dave.pk}],
            [{'level': 1, 'name': 'Neither'}],
            [{'level': 1, 'name': '', 'required_role_id': manager_role.pk}],
        ]
        for levels in cases:
            with pytest.raises(InvalidRequest):
                approval_rules.create(tenant_id, 'Bad', QTY, levels)

    @pytest.mark.parametrize('number', ['1', None, 1.0, True])
    def test_level_number_must_be_int(self, tenant_id, manager_role, dave, number):
        """Level numbers of the wrong type are rejected, even mixed with valid ones."""
        levels = [
            {'level': number, 'name': 'Manager', 'required_role_id': manager_role.pk},
            {'level': 2, 'name': 'Director', 'required_user_id': dave.pk},
        ]

        with pytest.raises(InvalidRequest) as exc:
            approval_rules.create(tenant_id, 'Bad', QTY, levels)

        assert exc.value.code == 'INVALID_LEVELS'
        assert not ApprovalRule.objects.exists()

    def test_branch_of_other_tenant(self, tenant_id, levels, foreign_branch):
        with pytest.raises(NotFound) as exc:
            approval_rules.create(
                tenant_id, 'Bad', [{'condition_type': 'SOURCE_BRANCH', 'branch_id': foreign_branch.pk}], levels,
            )

        assert exc.value.code == 'BRANCH_NOT_FOUND'

    def test_role_of_other_tenant(self, tenant_id):
        role = Role.objects.create(tenant_id='globex', name='Manager')

        with pytest.raises(NotFound) as exc:
            approval_rules.create(tenant_id, 'Bad', QTY, [{'level': 1, 'name': 'M', 'required_role_id': role.pk}])

        assert exc.value.code == 'ROLE_NOT_FOUND'

    def test_user_outside_tenant(self, tenant_id, mallory):
        with pytest.raises(NotFound) as exc:
            approval_rules.create(tenant_id, 'Bad', QTY, [{'level': 1, 'name': 'M', 'required_user_id': mallory.pk}])

        assert exc.value.code == 'USER_NOT_FOUND'

    def test_unknown_mode(self, tenant_id, levels):
        with pytest.raises(InvalidRequest):
            approval_rules.create(tenant_id, 'Bad', QTY, levels, approval_mode='RANDOM')


class TestUpdate:
    """Tests for approval_rules.update()."""

    def test_update_fields_and_replace_levels(self, tenant_id, levels, dave):
        rule = approval_rules.create(tenant_id, 'Large', QTY, levels)

        rule = approval_rules.update(
            tenant_id, rule.pk, name='Larger', priority=9,
            levels=[{'level': 1, 'name': 'Director', 'required_user_id': dave.pk}],
        )

        assert rule.name == 'Larger'
        assert rule.priority == 9
        assert [lvl.required_user_id for lvl in rule.levels.all()] == [dave.pk]
        assert rule.conditions.count() == 1
        event = AuditEvent.objects.get(action='APPROVAL_RULE_UPDATE')
        assert event.diff['name'] == ['Large', 'Larger']

    def test_unknown_field(self, tenant_id, levels):
        rule = approval_rules.create(tenant_id, 'Large', QTY, levels)

        with pytest.raises(InvalidRequest) as exc:
            approval_rules.update(tenant_id, rule.pk, is_archived=True)

        assert exc.value.code == 'INVALID_FIELD'

    def test_other_tenant(self, levels, tenant_id):
        rule = approval_rules.create(tenant_id, 'Large', QTY, levels)

        with pytest.raises(NotFound):
            approval_rules.update('globex', rule.pk, name='Mine')


class TestArchive:
    """Tests for approval_rules.archive() / restore()."""

    def test_archive_and_restore(self, tenant_id, levels, alice):
        rule = approval_rules.create(tenant_id, 'Large', QTY, levels)

        rule = approval_rules.archive(tenant_id, rule.pk, context=AuditContext(actor=alice))
        assert rule.is_archived
        assert rule.archived_by == alice
        assert rule.archived_at is not None
        assert rule.is_active

        rule = approval_rules.restore(tenant_id, rule.pk)
        assert not rule.is_archived
        assert rule.archived_by is None
        assert rule.levels.count() == 1

    def test_archive_twice(self, tenant_id, levels):
        rule = approval_rules.create(tenant_id, 'Large', QTY, levels)
        approval_rules.archive(tenant_id, rule.pk)

        with pytest.raises(Conflict) as exc:
            approval_rules.archive(tenant_id, rule.pk)

        assert exc.value.code == 'ALREADY_ARCHIVED'

    def test_restore_live_rule(self, tenant_id, levels):
        rule = approval_rules.create(tenant_id, 'Large', QTY, levels)

        with pytest.raises(Conflict) as exc:
            approval_rules.restore(tenant_id, rule.pk)

        assert exc.value.code == 'NOT_ARCHIVED'


class TestList:
    """Tests for approval_rules.list()."""

    def test_archived_filter(self, tenant_id, levels):
        live = approval_rules.create(tenant_id, 'Live', QTY, levels, priority=1)
        gone = approval_rules.create(tenant_id, 'Gone', QTY, levels, priority=2)
        approval_rules.archive(tenant_id, gone.pk)

        assert approval_rules.list(tenant_id) == [live]
        assert approval_rules.list(tenant_id, archived='archived') == [gone]
        assert approval_rules.list(tenant_id, archived='all') == [gone, live]

    def test_active_filter(self, tenant_id, levels):
        approval_rules.create(tenant_id, 'On', QTY, levels)
        off = approval_rules.create(tenant_id, 'Off', QTY, levels, is_active=False)

        assert approval_rules.list(tenant_id, is_active=False) == [off]

    def test_bad_filter(self, tenant_id):
        with pytest.raises(InvalidRequest):
            approval_rules.list(tenant_id, archived='maybe')

    def test_get_other_tenant(self, tenant_id, levels):
        rule = approval_rules.create(tenant_id, 'Large', QTY, levels)

        with pytest.raises(NotFound) as exc:
            approval_rules.get('globex', rule.pk)

        assert exc.value.code == 'RULE_NOT_FOUND'
