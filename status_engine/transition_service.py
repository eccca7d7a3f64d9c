"""
Transition Service

Request-path glue: validate a proposed change, persist it on Allow, and
record every attempt (accepted or rejected) in an append-only audit log.

The validator decides; this service only applies what was allowed.
"""

import json
import logging
import os
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Optional, Dict, Any, Tuple

from .entity_store import EntityRecord, EntityStore, EntityType, StatusField
from .errors import EntityNotFound
from .status_models import StatusDomain
from .transition_validator import ActorContext, TransitionDecision, TransitionValidator

logger = logging.getLogger("transition_service")

# -----------------------------------------------------------------------------
# Configuration
# -----------------------------------------------------------------------------
AUDIT_DIR = Path(os.getenv("TRANSITION_AUDIT_DIR", "data/audit"))
AUDIT_LOG = AUDIT_DIR / "transition_audit.jsonl"

# (entity type, field) -> status domain
FIELD_DOMAINS: Dict[Tuple[EntityType, StatusField], StatusDomain] = {
    (EntityType.ACTIVITY, StatusField.STATUS): StatusDomain.ACTIVITY,
    (EntityType.ACTIVITY, StatusField.APPROVAL_STATE): StatusDomain.APPROVAL,
    (EntityType.TASK, StatusField.STATUS): StatusDomain.TASK,
}


def domain_for(entity_type: EntityType, status_field: StatusField) -> StatusDomain:
    domain = FIELD_DOMAINS.get((entity_type, status_field))
    if domain is None:
        raise ValueError(f"{entity_type.value} has no '{status_field.value}' field")
    return domain


def actor_for_entity(actor: ActorContext, record: EntityRecord) -> ActorContext:
    """Add ownership/assignment/approver facts derivable from the entity row."""
    return replace(
        actor,
        is_owner=actor.is_owner or record.owner_id == actor.actor_id,
        is_assignee=actor.is_assignee or actor.actor_id in record.assignee_ids,
        is_approver=actor.is_approver or (
            record.approver_id is not None and record.approver_id == actor.actor_id
        ),
    )


class TransitionService:
    """Applies allowed transitions to activities and tasks."""

    def __init__(
        self,
        validator: TransitionValidator,
        entity_store: EntityStore,
        audit_log: Optional[Path] = None,
    ):
        self._validator = validator
        self._entities = entity_store
        self._audit_log = audit_log or AUDIT_LOG

    async def transition_entity(
        self,
        entity_type: EntityType,
        entity_id: str,
        proposed: str,
        actor: ActorContext,
        status_field: StatusField = StatusField.STATUS,
        reason: str = "",
    ) -> TransitionDecision:
        """
        Validate and, when allowed, persist a status change.

        Raises:
            EntityNotFound: if the entity does not exist
        """
        domain = domain_for(entity_type, status_field)

        record = await self._entities.get(entity_type, entity_id)
        if record is None:
            raise EntityNotFound(entity_type.value, entity_id)

        current = getattr(record, status_field.value)
        effective_actor = actor_for_entity(actor, record)
        decision = await self._validator.can_transition(
            effective_actor, domain, record.organization_id, current, proposed
        )

        if decision.allowed and proposed != current:
            updated = await self._entities.update_status(
                entity_type, entity_id, proposed, actor.actor_id, datetime.utcnow(),
                status_field=status_field,
            )
            if not updated:
                raise EntityNotFound(entity_type.value, entity_id)
            logger.info(
                f"{entity_type.value} {entity_id}: {status_field.value} {current} -> {proposed} "
                f"(by: {actor.actor_id})"
            )

        self._log_audit(
            event="transition_completed" if decision.allowed else "transition_rejected",
            entity_type=entity_type,
            entity_id=entity_id,
            organization_id=record.organization_id,
            actor=actor,
            decision=decision,
            reason=reason,
        )
        return decision

    # -------------------------------------------------------------------------
    # Audit Logging
    # -------------------------------------------------------------------------

    def _log_audit(
        self,
        event: str,
        entity_type: EntityType,
        entity_id: str,
        organization_id: str,
        actor: ActorContext,
        decision: TransitionDecision,
        reason: str,
    ) -> None:
        """Append an entry to the transition audit trail."""
        entry: Dict[str, Any] = {
            "timestamp": datetime.utcnow().isoformat(),
            "event": event,
            "entity_type": entity_type.value,
            "entity_id": entity_id,
            "organization_id": organization_id,
            "actor_id": actor.actor_id,
            "comment": reason,
            **decision.to_dict(),
        }
        try:
            self._audit_log.parent.mkdir(parents=True, exist_ok=True)
            with open(self._audit_log, "a") as f:
                f.write(json.dumps(entry) + "\n")
        except IOError as e:
            logger.warning(f"Failed to write transition audit log: {e}")
