"""
Status engine error taxonomy.

Every error carries a stable machine ``code`` so adapters (HTTP router,
migration CLI) can map it without string matching.

Transition denials are NOT errors: the validator returns them as
TransitionDecision values.
"""

from typing import Any, Dict, List, Optional


class StatusEngineError(Exception):
    """Base class for all status engine errors."""

    code = "STATUS_ENGINE_ERROR"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, **self.details}


class NotConfigured(StatusEngineError):
    """Organization has no active rows for a domain."""

    code = "NOT_CONFIGURED"

    def __init__(self, organization_id: str, domain: str):
        super().__init__(
            f"No active statuses configured for '{domain}' in organization '{organization_id}'",
            organization_id=organization_id,
            domain=domain,
        )


class UnknownStatus(StatusEngineError):
    """Referenced status does not exist, active or inactive."""

    code = "UNKNOWN_STATUS"

    def __init__(
        self,
        organization_id: str,
        domain: str,
        name: Optional[str] = None,
        status_id: Optional[str] = None,
    ):
        ref = f"name '{name}'" if name is not None else f"id '{status_id}'"
        super().__init__(
            f"Unknown {domain} status {ref} in organization '{organization_id}'",
            organization_id=organization_id,
            domain=domain,
            name=name,
            status_id=status_id,
        )


class ImmutableName(StatusEngineError):
    """Attempted rename of an existing definition's canonical name."""

    code = "IMMUTABLE_NAME"

    def __init__(self, status_id: str, current_name: str, proposed_name: str):
        super().__init__(
            f"Cannot rename status '{current_name}' to '{proposed_name}'. "
            f"Deactivate it and create a new status instead.",
            status_id=status_id,
            current_name=current_name,
            proposed_name=proposed_name,
        )


class IncompleteSet(StatusEngineError):
    """Reorder ids do not match the active id set exactly."""

    code = "INCOMPLETE_SET"

    def __init__(self, missing: List[str], unexpected: List[str], duplicated: List[str]):
        super().__init__(
            "Reorder must list every active status exactly once",
            missing=missing,
            unexpected=unexpected,
            duplicated=duplicated,
        )


class DuplicateName(StatusEngineError):
    """An active definition with the same name already exists."""

    code = "DUPLICATE_NAME"

    def __init__(self, organization_id: str, domain: str, name: str):
        super().__init__(
            f"Active {domain} status '{name}' already exists in organization '{organization_id}'",
            organization_id=organization_id,
            domain=domain,
            name=name,
        )


class StatusStoreUnavailable(StatusEngineError):
    """Transient storage, transport or timeout failure."""

    code = "STORE_UNAVAILABLE"


class EntityNotFound(StatusEngineError):
    """Activity or task does not exist in the entity store."""

    code = "ENTITY_NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: str):
        super().__init__(
            f"{entity_type} '{entity_id}' not found",
            entity_type=entity_type,
            entity_id=entity_id,
        )
