"""
Transition Validator Tests

Test Categories:
1. No-op transitions
2. Target resolution (unknown / inactive / cross-tenant)
3. Activity and task status gating
4. Approval edge table
5. Allowed targets
"""

import pytest

from status_engine.status_models import ApprovalState, StatusDefinition, StatusDomain
from status_engine.status_service import StatusDraft
from status_engine.transition_validator import (
    APPROVAL_TRANSITIONS,
    ActorRole,
    ApprovalActor,
    DenyReason,
    evaluate_transition,
)

from tests.conftest import ORG_A, ORG_B, OWNER_ID, make_actor


def approval_target(name: str, is_active: bool = True) -> StatusDefinition:
    return StatusDefinition(
        id=f"id-{name}",
        organization_id=ORG_A,
        domain=StatusDomain.APPROVAL,
        name=name,
        display_name=name.title(),
        color="#123456",
        order_index=1,
        is_active=is_active,
    )


# -----------------------------------------------------------------------------
# Test 1: No-op Transitions
# -----------------------------------------------------------------------------
class TestNoOp:
    """Saving the current value is always allowed."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("role", list(ActorRole))
    async def test_same_value_is_allowed_for_every_role(self, validator, service, role):
        await service.initialize_defaults(ORG_A)
        actor = make_actor(role=role)

        decision = await validator.can_transition(
            actor, StatusDomain.ACTIVITY, ORG_A, "Stuck", "Stuck"
        )

        assert decision.allowed is True
        assert decision.reason is None

    @pytest.mark.asyncio
    async def test_same_value_is_allowed_on_locked_approval_state(self, validator, service):
        await service.initialize_defaults(ORG_A)

        decision = await validator.can_transition(
            make_actor(), StatusDomain.APPROVAL, ORG_A, "closed", "closed"
        )

        assert decision.allowed is True

    @pytest.mark.asyncio
    async def test_same_value_wins_over_deactivated_status(self, validator, service):
        await service.initialize_defaults(ORG_A)
        stuck = await service.get_by_name(ORG_A, StatusDomain.TASK, "Stuck")
        await service.deactivate(ORG_A, StatusDomain.TASK, stuck.id)

        decision = await validator.can_transition(
            make_actor(), StatusDomain.TASK, ORG_A, "Stuck", "Stuck"
        )

        assert decision.allowed is True


# -----------------------------------------------------------------------------
# Test 2: Target Resolution
# -----------------------------------------------------------------------------
class TestTargetResolution:
    """Proposed values must resolve to an active definition."""

    @pytest.mark.asyncio
    async def test_unknown_target_is_invalid(self, validator, service):
        await service.initialize_defaults(ORG_A)
        actor = make_actor(role=ActorRole.ADMIN)

        decision = await validator.can_transition(
            actor, StatusDomain.ACTIVITY, ORG_A, "Not Started", "in_progress"
        )

        assert decision.allowed is False
        assert decision.reason == DenyReason.INVALID_TARGET

    @pytest.mark.asyncio
    async def test_deactivated_target_is_invalid(self, validator, service):
        await service.initialize_defaults(ORG_A)
        stuck = await service.get_by_name(ORG_A, StatusDomain.ACTIVITY, "Stuck")
        await service.deactivate(ORG_A, StatusDomain.ACTIVITY, stuck.id)

        decision = await validator.can_transition(
            make_actor(role=ActorRole.ADMIN), StatusDomain.ACTIVITY, ORG_A, "Working on it", "Stuck"
        )

        assert decision.allowed is False
        assert decision.reason == DenyReason.INVALID_TARGET
        assert "inactive" in decision.message

    @pytest.mark.asyncio
    async def test_unconfigured_organization_denies_instead_of_raising(self, validator):
        decision = await validator.can_transition(
            make_actor(role=ActorRole.ADMIN), StatusDomain.TASK, ORG_A, None, "Done"
        )

        assert decision.reason == DenyReason.INVALID_TARGET

    @pytest.mark.asyncio
    async def test_actor_from_another_organization_is_unauthorized(self, validator, service):
        await service.initialize_defaults(ORG_A)
        actor = make_actor(role=ActorRole.ADMIN, organization_id=ORG_B)

        decision = await validator.can_transition(
            actor, StatusDomain.TASK, ORG_A, "Not Started", "Done"
        )

        assert decision.allowed is False
        assert decision.reason == DenyReason.UNAUTHORIZED

    @pytest.mark.asyncio
    async def test_customized_value_is_a_valid_target(self, validator, service):
        await service.initialize_defaults(ORG_A)
        await service.upsert(ORG_A, StatusDomain.TASK, StatusDraft(name="In Review"))

        decision = await validator.can_transition(
            make_actor(is_assignee=True), StatusDomain.TASK, ORG_A, "Working on it", "In Review"
        )

        assert decision.allowed is True


# -----------------------------------------------------------------------------
# Test 3: Progress Status Gating
# -----------------------------------------------------------------------------
class TestProgressGating:
    """Activity / task status is free-form for owner, assignees and managers."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("flags", [{"is_owner": True}, {"is_assignee": True}])
    async def test_owner_and_assignee_may_change_status(self, validator, service, flags):
        await service.initialize_defaults(ORG_A)

        decision = await validator.can_transition(
            make_actor(**flags), StatusDomain.ACTIVITY, ORG_A, "Done", "Not Started"
        )

        assert decision.allowed is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize("role", [ActorRole.ADMIN, ActorRole.PMO, ActorRole.PROJECT_MANAGER])
    async def test_managers_may_change_any_status(self, validator, service, role):
        await service.initialize_defaults(ORG_A)

        decision = await validator.can_transition(
            make_actor(role=role), StatusDomain.TASK, ORG_A, "Stuck", "Canceled"
        )

        assert decision.allowed is True

    @pytest.mark.asyncio
    async def test_unrelated_member_is_unauthorized(self, validator, service):
        await service.initialize_defaults(ORG_A)

        decision = await validator.can_transition(
            make_actor(), StatusDomain.TASK, ORG_A, "Stuck", "Done"
        )

        assert decision.allowed is False
        assert decision.reason == DenyReason.UNAUTHORIZED
        assert decision.role == "member"


# -----------------------------------------------------------------------------
# Test 4: Approval Edge Table
# -----------------------------------------------------------------------------
class TestApprovalEdges:
    """Approval transitions follow the locked edge table."""

    @pytest.mark.asyncio
    async def test_owner_submits_draft(self, validator, service):
        await service.initialize_defaults(ORG_A)
        owner = make_actor(actor_id=OWNER_ID, is_owner=True)

        decision = await validator.can_transition(
            owner, StatusDomain.APPROVAL, ORG_A, "draft", "submitted"
        )

        assert decision.allowed is True

    @pytest.mark.asyncio
    async def test_owner_cannot_approve_own_submission(self, validator, service):
        await service.initialize_defaults(ORG_A)
        owner = make_actor(actor_id=OWNER_ID, is_owner=True)

        decision = await validator.can_transition(
            owner, StatusDomain.APPROVAL, ORG_A, "submitted", "approved"
        )

        assert decision.allowed is False
        assert decision.reason == DenyReason.UNAUTHORIZED

    @pytest.mark.asyncio
    async def test_designated_approver_member_may_approve(self, validator, service):
        await service.initialize_defaults(ORG_A)

        decision = await validator.can_transition(
            make_actor(is_approver=True), StatusDomain.APPROVAL, ORG_A, "submitted", "approved"
        )

        assert decision.allowed is True

    @pytest.mark.asyncio
    async def test_draft_cannot_jump_to_approved(self, validator, service):
        await service.initialize_defaults(ORG_A)

        decision = await validator.can_transition(
            make_actor(role=ActorRole.ADMIN, is_owner=True),
            StatusDomain.APPROVAL, ORG_A, "draft", "approved",
        )

        assert decision.allowed is False
        assert decision.reason == DenyReason.ILLEGAL_EDGE

    @pytest.mark.asyncio
    async def test_closed_reopens_only_for_approvers(self, validator, service):
        await service.initialize_defaults(ORG_A)
        owner = make_actor(actor_id=OWNER_ID, is_owner=True)
        pmo = make_actor(role=ActorRole.PMO)

        owner_decision = await validator.can_transition(
            owner, StatusDomain.APPROVAL, ORG_A, "closed", "reopened"
        )
        pmo_decision = await validator.can_transition(
            pmo, StatusDomain.APPROVAL, ORG_A, "closed", "reopened"
        )

        assert owner_decision.reason == DenyReason.UNAUTHORIZED
        assert pmo_decision.allowed is True

    def test_every_unlisted_edge_is_illegal(self):
        """All (current, proposed) pairs outside the table are denied as illegal."""
        superuser = make_actor(role=ActorRole.ADMIN, is_owner=True, is_approver=True)
        for current in ApprovalState:
            for proposed in ApprovalState:
                if current == proposed:
                    continue
                decision = evaluate_transition(
                    superuser, StatusDomain.APPROVAL, ORG_A,
                    current.value, proposed.value, approval_target(proposed.value),
                )
                listed = proposed in APPROVAL_TRANSITIONS.get(current, {})
                assert decision.allowed is listed, f"{current.value} -> {proposed.value}"
                if not listed:
                    assert decision.reason == DenyReason.ILLEGAL_EDGE

    def test_relabelled_approval_state_keeps_edges(self):
        """Display names are free; edges key on the canonical name."""
        target = StatusDefinition(
            id="custom-approved",
            organization_id=ORG_A,
            domain=StatusDomain.APPROVAL,
            name="approved",
            display_name="Signed off",
            color="#00FF00",
            order_index=3,
        )

        decision = evaluate_transition(
            make_actor(role=ActorRole.PROJECT_MANAGER),
            StatusDomain.APPROVAL, ORG_A, "submitted", "approved", target,
        )

        assert decision.allowed is True

    def test_every_edge_names_at_least_one_actor(self):
        for current, edges in APPROVAL_TRANSITIONS.items():
            for proposed, actors in edges.items():
                assert actors, f"{current.value} -> {proposed.value}"
                assert actors <= {ApprovalActor.OWNER, ApprovalActor.APPROVER}


# -----------------------------------------------------------------------------
# Test 5: Allowed Targets
# -----------------------------------------------------------------------------
class TestAllowedTargets:
    """Options offered to the UI from the current value."""

    @pytest.mark.asyncio
    async def test_submitted_offers_approve_and_reject_to_approvers(self, validator, service):
        await service.initialize_defaults(ORG_A)

        targets = await validator.allowed_targets(
            make_actor(role=ActorRole.PMO), StatusDomain.APPROVAL, ORG_A, "submitted"
        )

        assert [t.name for t in targets] == ["approved", "rejected"]

    @pytest.mark.asyncio
    async def test_member_without_relation_gets_nothing(self, validator, service):
        await service.initialize_defaults(ORG_A)

        targets = await validator.allowed_targets(
            make_actor(), StatusDomain.ACTIVITY, ORG_A, "Not Started"
        )

        assert targets == []

    @pytest.mark.asyncio
    async def test_assignee_gets_every_other_active_value(self, validator, service):
        await service.initialize_defaults(ORG_A)

        targets = await validator.allowed_targets(
            make_actor(is_assignee=True), StatusDomain.TASK, ORG_A, "Done"
        )

        assert [t.name for t in targets] == ["Not Started", "Working on it", "Stuck", "Blocked", "Canceled"]
