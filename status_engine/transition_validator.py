"""
Transition Validator

Decides whether a proposed status / approval change is legal and whether the
acting user may make it. Decisions are VALUES (Allow / Deny(reason)), never
exceptions, and are never retried.

Algorithm:
1. proposed == current -> Allow (idempotent save, every role)
2. proposed must resolve to an ACTIVE definition -> else Deny(INVALID_TARGET)
3. Domain gating:
   - activity / task: free-form among active values for the entity's owner,
     its assignees and organization managers
   - approval: LOCKED edge table below; edge missing -> Deny(ILLEGAL_EDGE),
     wrong actor on a listed edge -> Deny(UNAUTHORIZED)

The validator never mutates state. Persisting an allowed change (with the
updated-by / updated-at pair) is the caller's job.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Dict, Any, List, FrozenSet

from .errors import UnknownStatus
from .status_models import ApprovalState, StatusDefinition, StatusDomain
from .status_service import StatusConfigurationService

logger = logging.getLogger("transition_validator")


# -----------------------------------------------------------------------------
# Roles
# -----------------------------------------------------------------------------
class ActorRole(str, Enum):
    """Organization roles supplied by the auth context."""
    ADMIN = "admin"
    PMO = "pmo"
    PROJECT_MANAGER = "project_manager"
    MEMBER = "member"


# Roles that may approve, reject, close and reopen
APPROVER_ROLES: FrozenSet[ActorRole] = frozenset({
    ActorRole.ADMIN,
    ActorRole.PMO,
    ActorRole.PROJECT_MANAGER,
})

# Roles that may change progress status of any entity in their organization
MANAGER_ROLES: FrozenSet[ActorRole] = APPROVER_ROLES


class ApprovalActor(str, Enum):
    """Capacity in which an actor drives an approval edge."""
    OWNER = "owner"
    APPROVER = "approver"


@dataclass(frozen=True)
class ActorContext:
    """
    Facts about the acting user, supplied by the surrounding application.

    ``is_owner`` / ``is_assignee`` / ``is_approver`` are relative to the
    entity being changed.
    """
    actor_id: str
    role: ActorRole
    organization_id: str
    is_owner: bool = False
    is_assignee: bool = False
    is_approver: bool = False

    @property
    def has_approver_capability(self) -> bool:
        return self.is_approver or self.role in APPROVER_ROLES

    def capacities(self) -> FrozenSet[ApprovalActor]:
        held = set()
        if self.is_owner:
            held.add(ApprovalActor.OWNER)
        if self.has_approver_capability:
            held.add(ApprovalActor.APPROVER)
        return frozenset(held)


# -----------------------------------------------------------------------------
# Approval Edge Table (LOCKED)
# -----------------------------------------------------------------------------
# current -> {proposed: actors allowed to take the edge}
# Organizations may relabel approval states; they cannot change these edges.
APPROVAL_TRANSITIONS: Dict[ApprovalState, Dict[ApprovalState, FrozenSet[ApprovalActor]]] = {
    ApprovalState.DRAFT: {
        ApprovalState.SUBMITTED: frozenset({ApprovalActor.OWNER}),
    },
    ApprovalState.SUBMITTED: {
        ApprovalState.APPROVED: frozenset({ApprovalActor.APPROVER}),
        ApprovalState.REJECTED: frozenset({ApprovalActor.APPROVER}),
    },
    ApprovalState.APPROVED: {
        ApprovalState.CLOSED: frozenset({ApprovalActor.APPROVER, ApprovalActor.OWNER}),
    },
    ApprovalState.REJECTED: {
        ApprovalState.DRAFT: frozenset({ApprovalActor.OWNER}),  # rework
    },
    ApprovalState.CLOSED: {
        ApprovalState.REOPENED: frozenset({ApprovalActor.APPROVER}),
    },
    ApprovalState.REOPENED: {
        ApprovalState.SUBMITTED: frozenset({ApprovalActor.OWNER}),
    },
}


# -----------------------------------------------------------------------------
# Decision
# -----------------------------------------------------------------------------
class DenyReason(str, Enum):
    """Why a transition was denied. This enum is LOCKED."""
    INVALID_TARGET = "invalid_target"
    ILLEGAL_EDGE = "illegal_edge"
    UNAUTHORIZED = "unauthorized"


@dataclass(frozen=True)
class TransitionDecision:
    """Outcome of a transition check, with everything needed to explain it."""
    allowed: bool
    domain: StatusDomain
    current: Optional[str]
    proposed: str
    role: str
    reason: Optional[DenyReason] = None
    message: str = ""

    @classmethod
    def allow(
        cls,
        actor: ActorContext,
        domain: StatusDomain,
        current: Optional[str],
        proposed: str,
        message: str = "",
    ) -> "TransitionDecision":
        return cls(
            allowed=True,
            domain=domain,
            current=current,
            proposed=proposed,
            role=actor.role.value,
            message=message or f"Transition allowed: {current} -> {proposed}",
        )

    @classmethod
    def deny(
        cls,
        actor: ActorContext,
        domain: StatusDomain,
        current: Optional[str],
        proposed: str,
        reason: DenyReason,
        message: str,
    ) -> "TransitionDecision":
        return cls(
            allowed=False,
            domain=domain,
            current=current,
            proposed=proposed,
            role=actor.role.value,
            reason=reason,
            message=message,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed": self.allowed,
            "domain": self.domain.value,
            "current": self.current,
            "proposed": self.proposed,
            "role": self.role,
            "reason": self.reason.value if self.reason else None,
            "message": self.message,
        }


# -----------------------------------------------------------------------------
# Pure Evaluation
# -----------------------------------------------------------------------------

def evaluate_transition(
    actor: ActorContext,
    domain: StatusDomain,
    organization_id: str,
    current: Optional[str],
    proposed: str,
    target: Optional[StatusDefinition],
) -> TransitionDecision:
    """
    Decide a transition given the already-resolved target definition.

    ``target`` is None when the proposed name does not exist in the scope.
    """
    if proposed == current:
        return TransitionDecision.allow(actor, domain, current, proposed, "No-op transition")

    if target is None or not target.is_active:
        state = "unknown" if target is None else "inactive"
        return TransitionDecision.deny(
            actor, domain, current, proposed,
            DenyReason.INVALID_TARGET,
            f"'{proposed}' is not an active {domain.value} status ({state})",
        )

    if actor.organization_id != organization_id:
        return TransitionDecision.deny(
            actor, domain, current, proposed,
            DenyReason.UNAUTHORIZED,
            f"Actor {actor.actor_id} does not belong to organization {organization_id}",
        )

    if domain == StatusDomain.APPROVAL:
        return _evaluate_approval(actor, current, proposed)

    if actor.is_owner or actor.is_assignee or actor.role in MANAGER_ROLES:
        return TransitionDecision.allow(actor, domain, current, proposed)

    return TransitionDecision.deny(
        actor, domain, current, proposed,
        DenyReason.UNAUTHORIZED,
        f"Only the owner, an assignee or a manager can change {domain.value} status",
    )


def _evaluate_approval(
    actor: ActorContext,
    current: Optional[str],
    proposed: str,
) -> TransitionDecision:
    domain = StatusDomain.APPROVAL
    edges = _approval_edges(current)
    try:
        target_state = ApprovalState(proposed)
    except ValueError:
        target_state = None

    if target_state is None or target_state not in edges:
        legal = [s.value for s in edges]
        return TransitionDecision.deny(
            actor, domain, current, proposed,
            DenyReason.ILLEGAL_EDGE,
            f"Illegal approval transition: {current} -> {proposed}. Legal targets: {legal}",
        )

    required = edges[target_state]
    if not (required & actor.capacities()):
        return TransitionDecision.deny(
            actor, domain, current, proposed,
            DenyReason.UNAUTHORIZED,
            f"Role '{actor.role.value}' cannot move approval {current} -> {proposed}. "
            f"Required: {sorted(a.value for a in required)}",
        )

    return TransitionDecision.allow(actor, domain, current, proposed)


def _approval_edges(current: Optional[str]) -> Dict[ApprovalState, FrozenSet[ApprovalActor]]:
    try:
        return APPROVAL_TRANSITIONS.get(ApprovalState(current), {})
    except ValueError:
        return {}


# -----------------------------------------------------------------------------
# Validator
# -----------------------------------------------------------------------------

class TransitionValidator:
    """Resolves targets through the configuration service, then decides."""

    def __init__(self, service: StatusConfigurationService):
        self._service = service

    async def can_transition(
        self,
        actor: ActorContext,
        domain: StatusDomain,
        organization_id: str,
        current: Optional[str],
        proposed: str,
    ) -> TransitionDecision:
        target: Optional[StatusDefinition] = None
        if proposed != current:
            try:
                target = await self._service.get_by_name(organization_id, domain, proposed)
            except UnknownStatus:
                target = None

        decision = evaluate_transition(actor, domain, organization_id, current, proposed, target)
        if not decision.allowed:
            logger.info(
                f"Denied {domain.value} transition {current} -> {proposed} "
                f"for {actor.actor_id} ({actor.role.value}): {decision.reason.value}"
            )
        return decision

    async def allowed_targets(
        self,
        actor: ActorContext,
        domain: StatusDomain,
        organization_id: str,
        current: Optional[str],
    ) -> List[StatusDefinition]:
        """
        Active values the actor may move to from ``current``, in display order.

        Raises:
            NotConfigured: if the scope has no active rows
        """
        options = await self._service.list_active(organization_id, domain)
        return [
            option for option in options
            if option.name != current
            and evaluate_transition(actor, domain, organization_id, current, option.name, option).allowed
        ]
