"""
Tests for PolicyService.

Covers policy CRUD against a real session:
- validation of every policy invariant
- admin-role and scope restrictions on mutation
- versioned updates
- deletion refused while open requests reference the policy
- audit events for every mutation
"""

from uuid import uuid4

import pytest

from approval_kernel.domain.approval import RequestStatus
from approval_kernel.exceptions import (
    InvalidPolicyError,
    PolicyInUseError,
    PolicyNotFoundError,
    UnauthorizedError,
)
from approval_kernel.services.policy_service import (
    POLICY_ENTITY,
    validate_policy_fields,
)
from tests.factories import large_refund_draft, refund_action


class TestValidation:
    @pytest.mark.parametrize(
        "overrides, field",
        [
            ({"name": " "}, "name"),
            ({"applies_to": frozenset()}, "applies_to"),
            ({"approvers_needed": 0}, "approvers_needed"),
            ({"approvers_needed": True}, "approvers_needed"),
            ({"approver_roles": frozenset()}, "approver_roles"),
            ({"threshold_cents": -1}, "threshold_cents"),
            ({"currency": "US"}, "currency"),
            ({"scope_id": ""}, "scope_id"),
        ],
    )
    def test_invalid_draft_refused(self, policy_service, platform_admin, overrides, field):
        with pytest.raises(InvalidPolicyError) as exc_info:
            policy_service.create_policy(platform_admin, large_refund_draft(**overrides))
        assert exc_info.value.field == field

    def test_zero_threshold_allowed(self):
        fields = {
            "name": "all refunds",
            "applies_to": {"refund"},
            "approvers_needed": 1,
            "approver_roles": {"owner"},
            "threshold_cents": 0,
            "currency": "USD",
        }
        validate_policy_fields(fields)


class TestCreateAndRead:
    def test_create_round_trip(self, policy_service, platform_admin):
        created = policy_service.create_policy(platform_admin, large_refund_draft())

        loaded = policy_service.get_policy(created.policy_id)
        assert loaded.name == "Large refunds"
        assert loaded.applies_to == {"refund"}
        assert loaded.threshold_cents == 25000
        assert loaded.approvers_needed == 2
        assert loaded.approver_roles == {"owner", "manager"}
        assert loaded.version == 1
        assert loaded.is_active

    def test_unknown_policy(self, policy_service):
        with pytest.raises(PolicyNotFoundError):
            policy_service.get_policy(uuid4())

    def test_list_global_and_scope(self, policy_service, platform_admin):
        policy_service.create_policy(platform_admin, large_refund_draft(name="B global"))
        policy_service.create_policy(platform_admin, large_refund_draft(name="A park-1", scope_id="park-1"))
        policy_service.create_policy(platform_admin, large_refund_draft(name="C park-2", scope_id="park-2"))
        policy_service.create_policy(
            platform_admin, large_refund_draft(name="D inactive", is_active=False),
        )

        assert [p.name for p in policy_service.list_policies()] == ["B global", "D inactive"]
        assert [p.name for p in policy_service.list_policies("park-1")] == [
            "A park-1", "B global", "D inactive",
        ]
        assert [p.name for p in policy_service.list_policies("park-1", include_inactive=False)] == [
            "A park-1", "B global",
        ]


class TestAdminAuthorization:
    def test_non_admin_refused(self, policy_service, manager):
        with pytest.raises(UnauthorizedError) as exc_info:
            policy_service.create_policy(manager, large_refund_draft())
        assert exc_info.value.reason == "role_not_eligible"

    def test_scoped_owner_cannot_create_global(self, policy_service, make_actor):
        owner = make_actor("owner-1", "owner", scope_id="park-1")
        with pytest.raises(UnauthorizedError) as exc_info:
            policy_service.create_policy(owner, large_refund_draft())
        assert exc_info.value.reason == "out_of_scope"

    def test_scoped_owner_manages_own_scope(self, policy_service, make_actor):
        owner = make_actor("owner-1", "owner", scope_id="park-1")
        policy = policy_service.create_policy(owner, large_refund_draft(scope_id="park-1"))
        updated = policy_service.update_policy(owner, policy.policy_id, {"approvers_needed": 3})
        assert updated.approvers_needed == 3

    def test_scoped_owner_cannot_move_policy_out_of_scope(self, policy_service, make_actor):
        owner = make_actor("owner-1", "owner", scope_id="park-1")
        policy = policy_service.create_policy(owner, large_refund_draft(scope_id="park-1"))
        with pytest.raises(UnauthorizedError):
            policy_service.update_policy(owner, policy.policy_id, {"scope_id": "park-2"})

    def test_other_scope_owner_refused(self, policy_service, make_actor, platform_admin):
        policy = policy_service.create_policy(platform_admin, large_refund_draft(scope_id="park-1"))
        outsider = make_actor("owner-2", "owner", scope_id="park-2")
        with pytest.raises(UnauthorizedError):
            policy_service.update_policy(outsider, policy.policy_id, {"approvers_needed": 3})
        with pytest.raises(UnauthorizedError):
            policy_service.delete_policy(outsider, policy.policy_id)


class TestUpdate:
    def test_partial_update_bumps_version(self, policy_service, platform_admin, refund_policy):
        updated = policy_service.update_policy(
            platform_admin, refund_policy.policy_id, {"threshold_cents": 50000},
        )
        assert updated.threshold_cents == 50000
        assert updated.approvers_needed == 2
        assert updated.version == 2

    def test_clear_threshold(self, policy_service, platform_admin, refund_policy):
        updated = policy_service.update_policy(
            platform_admin, refund_policy.policy_id, {"threshold_cents": None},
        )
        assert updated.threshold_cents is None

    def test_unknown_field_refused(self, policy_service, platform_admin, refund_policy):
        with pytest.raises(InvalidPolicyError) as exc_info:
            policy_service.update_policy(platform_admin, refund_policy.policy_id, {"priority": 5})
        assert exc_info.value.field == "priority"

    def test_invalid_merge_refused(self, policy_service, platform_admin, refund_policy):
        with pytest.raises(InvalidPolicyError):
            policy_service.update_policy(
                platform_admin, refund_policy.policy_id, {"approver_roles": []},
            )

    def test_deactivate(self, policy_service, platform_admin, refund_policy):
        updated = policy_service.update_policy(
            platform_admin, refund_policy.policy_id, {"is_active": False},
        )
        assert not updated.is_active


class TestDelete:
    def test_delete_unreferenced(self, policy_service, platform_admin, refund_policy):
        policy_service.delete_policy(platform_admin, refund_policy.policy_id)
        with pytest.raises(PolicyNotFoundError):
            policy_service.get_policy(refund_policy.policy_id)

    def test_delete_with_open_request_refused(
        self, policy_service, approval_service, platform_admin, requester, refund_policy,
    ):
        approval_service.submit(refund_action("300"), requester)

        with pytest.raises(PolicyInUseError) as exc_info:
            policy_service.delete_policy(platform_admin, refund_policy.policy_id)
        assert exc_info.value.open_request_count == 1
        assert not exc_info.value.retryable
        assert policy_service.get_policy(refund_policy.policy_id).name == "Large refunds"

    def test_delete_after_requests_resolve(
        self, policy_service, approval_service, platform_admin, requester, manager, refund_policy,
    ):
        request = approval_service.submit(refund_action("300"), requester)
        approval_service.reject(request.request_id, manager, "duplicate request")
        assert policy_service.open_request_count(refund_policy.policy_id) == 0

        policy_service.delete_policy(platform_admin, refund_policy.policy_id)

        kept = approval_service.get_request(request.request_id)
        assert kept.status == RequestStatus.REJECTED
        assert kept.policy_name == "Large refunds"


class TestPolicyAudit:
    def test_mutations_audited(self, policy_service, auditor_service, platform_admin):
        policy = policy_service.create_policy(platform_admin, large_refund_draft())
        policy_service.update_policy(platform_admin, policy.policy_id, {"approvers_needed": 3})
        policy_service.delete_policy(platform_admin, policy.policy_id)

        trace = auditor_service.get_trace(POLICY_ENTITY, policy.policy_id)
        assert trace.actions == ("policy_created", "policy_updated", "policy_deleted")
        assert trace.entries[0].payload["approver_roles"] == ["manager", "owner"]
        assert trace.entries[1].payload["changed_fields"] == ["approvers_needed"]
        assert trace.entries[2].payload["approvers_needed"] == 3
        assert {e.actor_id for e in trace.entries} == {"platform-1"}

    def test_seed_policy_audited_as_system(self, policy_service, auditor_service):
        policy = policy_service.seed_policy(large_refund_draft())
        trace = auditor_service.get_trace(POLICY_ENTITY, policy.policy_id)
        assert trace.entries[0].actor_id == "system"
