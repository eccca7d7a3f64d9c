"""
Status Configuration API Router

HTTP adapter over the engine contract:
- Active options, full listing, mapping, usage stats, lookup by name
- Admin writes: upsert, bulk update, deactivate, reorder, initialize defaults
- Transition validation, optionally against a stored activity or task

Authentication belongs to the host application. The actor context is read
from X-Organization-Id / X-Actor-Id / X-Actor-Role headers by
``get_actor_context``; hosts replace it through dependency_overrides.
"""

import logging
from typing import Optional, Dict, Any, List, FrozenSet

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from pydantic import BaseModel, Field

from .entity_store import EntityStore, EntityType, StatusField, get_entity_store
from .errors import EntityNotFound, StatusEngineError
from .status_models import StatusDomain
from .status_service import StatusConfigurationService, StatusDraft, get_status_service
from .transition_service import FIELD_DOMAINS, actor_for_entity
from .transition_validator import ActorContext, ActorRole, TransitionValidator

# -----------------------------------------------------------------------------
# Logging
# -----------------------------------------------------------------------------
logger = logging.getLogger("status_router")

# -----------------------------------------------------------------------------
# Router Setup
# -----------------------------------------------------------------------------
router = APIRouter(prefix="/status-configuration", tags=["Status Configuration"])

ADMIN_ONLY: FrozenSet[ActorRole] = frozenset({ActorRole.ADMIN})
CONFIG_READERS: FrozenSet[ActorRole] = frozenset({
    ActorRole.ADMIN,
    ActorRole.PMO,
    ActorRole.PROJECT_MANAGER,
})
STATS_READERS: FrozenSet[ActorRole] = frozenset({ActorRole.ADMIN, ActorRole.PMO})

# Engine error code -> HTTP status
ERROR_STATUS_CODES: Dict[str, int] = {
    "NOT_CONFIGURED": 404,
    "UNKNOWN_STATUS": 404,
    "ENTITY_NOT_FOUND": 404,
    "DUPLICATE_NAME": 409,
    "IMMUTABLE_NAME": 409,
    "INCOMPLETE_SET": 409,
    "STORE_UNAVAILABLE": 503,
}


# -----------------------------------------------------------------------------
# Request/Response Models
# -----------------------------------------------------------------------------
class StatusDefinitionResponse(BaseModel):
    """A status definition as returned by the API."""
    id: str
    organization_id: str
    domain: StatusDomain
    name: str
    display_name: str
    color: str
    order_index: int
    is_active: bool
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class StatusUpsertRequest(BaseModel):
    """Create (no id) or update (id) a status definition."""
    id: Optional[str] = None
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    display_name: Optional[str] = Field(None, min_length=1, max_length=100)
    color: Optional[str] = Field(None, min_length=1, max_length=32)
    order_index: Optional[int] = None


class ReorderRequest(BaseModel):
    """Complete ordered list of active status ids."""
    status_ids: List[str]


class BulkUpdateItem(BaseModel):
    """Display/order update of one existing status."""
    id: str = Field(..., min_length=1)
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    display_name: Optional[str] = Field(None, min_length=1, max_length=100)
    color: Optional[str] = Field(None, min_length=1, max_length=32)
    order_index: Optional[int] = None


class BulkUpdateRequest(BaseModel):
    updates: List[BulkUpdateItem] = Field(..., min_length=1)


class ValidateTransitionRequest(BaseModel):
    """
    Proposed change, optionally against a stored entity.

    Ownership, assignment and approver facts never come from the body: they
    come from the actor context and, when an entity is named, from its row.
    With an entity the current value is read from the row as well.
    """
    domain: StatusDomain
    current: Optional[str] = None
    proposed: str = Field(..., min_length=1)
    entity_type: Optional[EntityType] = None
    entity_id: Optional[str] = None


class TransitionDecisionResponse(BaseModel):
    allowed: bool
    domain: StatusDomain
    current: Optional[str]
    proposed: str
    role: str
    reason: Optional[str] = None
    message: str


# -----------------------------------------------------------------------------
# Dependencies
# -----------------------------------------------------------------------------

def get_service() -> StatusConfigurationService:
    return get_status_service()


def get_entities() -> EntityStore:
    return get_entity_store()


def get_actor_context(
    x_organization_id: str = Header(...),
    x_actor_id: str = Header(...),
    x_actor_role: str = Header("member"),
) -> ActorContext:
    try:
        role = ActorRole(x_actor_role)
    except ValueError:
        raise HTTPException(status_code=403, detail={"code": "UNKNOWN_ROLE", "message": f"Unknown role '{x_actor_role}'"})
    return ActorContext(actor_id=x_actor_id, role=role, organization_id=x_organization_id)


def _require_role(actor: ActorContext, allowed: FrozenSet[ActorRole]) -> None:
    if actor.role not in allowed:
        raise HTTPException(
            status_code=403,
            detail={
                "code": "FORBIDDEN",
                "message": f"Role '{actor.role.value}' not allowed. Required: {sorted(r.value for r in allowed)}",
            },
        )


def _http_error(error: StatusEngineError) -> HTTPException:
    status_code = ERROR_STATUS_CODES.get(error.code, 400)
    if status_code >= 500:
        logger.error(f"Status request failed: {error.code}: {error.message}")
    return HTTPException(status_code=status_code, detail=error.to_dict())


# -----------------------------------------------------------------------------
# Read Endpoints
# -----------------------------------------------------------------------------

@router.get("/active", response_model=List[StatusDefinitionResponse])
async def list_active(
    domain: Optional[StatusDomain] = Query(None),
    actor: ActorContext = Depends(get_actor_context),
    service: StatusConfigurationService = Depends(get_service),
) -> List[Dict[str, Any]]:
    """Active options; a single domain raises NOT_CONFIGURED when empty."""
    try:
        if domain is not None:
            definitions = await service.list_active(actor.organization_id, domain)
        else:
            definitions = [d for d in await service.list_all(actor.organization_id) if d.is_active]
    except StatusEngineError as e:
        raise _http_error(e)
    return [d.to_dict() for d in definitions]


@router.get("", response_model=List[StatusDefinitionResponse])
async def list_all(
    domain: Optional[StatusDomain] = Query(None),
    actor: ActorContext = Depends(get_actor_context),
    service: StatusConfigurationService = Depends(get_service),
) -> List[Dict[str, Any]]:
    _require_role(actor, CONFIG_READERS)
    try:
        definitions = await service.list_all(actor.organization_id, domain)
    except StatusEngineError as e:
        raise _http_error(e)
    return [d.to_dict() for d in definitions]


@router.get("/mapping")
async def get_mapping(
    actor: ActorContext = Depends(get_actor_context),
    service: StatusConfigurationService = Depends(get_service),
) -> Dict[str, Any]:
    try:
        return await service.get_status_mapping(actor.organization_id)
    except StatusEngineError as e:
        raise _http_error(e)


@router.get("/usage-stats")
async def get_usage_stats(
    domain: Optional[StatusDomain] = Query(None),
    actor: ActorContext = Depends(get_actor_context),
    service: StatusConfigurationService = Depends(get_service),
) -> Dict[str, Any]:
    _require_role(actor, STATS_READERS)
    try:
        return await service.get_usage_stats(actor.organization_id, domain)
    except StatusEngineError as e:
        raise _http_error(e)


@router.get("/{domain}/by-name/{name}", response_model=StatusDefinitionResponse)
async def get_by_name(
    domain: StatusDomain,
    name: str,
    actor: ActorContext = Depends(get_actor_context),
    service: StatusConfigurationService = Depends(get_service),
) -> Dict[str, Any]:
    try:
        definition = await service.get_by_name(actor.organization_id, domain, name)
    except StatusEngineError as e:
        raise _http_error(e)
    return definition.to_dict()


# -----------------------------------------------------------------------------
# Transition Endpoint
# -----------------------------------------------------------------------------

@router.post("/validate-transition", response_model=TransitionDecisionResponse)
async def validate_transition(
    request: ValidateTransitionRequest,
    actor: ActorContext = Depends(get_actor_context),
    service: StatusConfigurationService = Depends(get_service),
    entities: EntityStore = Depends(get_entities),
) -> Dict[str, Any]:
    """Decide a proposed change. Denials are 200 responses with allowed=false."""
    current = request.current
    if request.entity_id is not None:
        if request.entity_type is None:
            raise HTTPException(
                status_code=422,
                detail={"code": "INVALID_ENTITY", "message": "entity_type is required with entity_id"},
            )
        status_field = (
            StatusField.APPROVAL_STATE if request.domain == StatusDomain.APPROVAL else StatusField.STATUS
        )
        if FIELD_DOMAINS.get((request.entity_type, status_field)) != request.domain:
            raise HTTPException(
                status_code=422,
                detail={
                    "code": "INVALID_ENTITY",
                    "message": f"{request.entity_type.value} has no {request.domain.value} field",
                },
            )

        record = await entities.get(request.entity_type, request.entity_id)
        if record is None or record.organization_id != actor.organization_id:
            raise _http_error(EntityNotFound(request.entity_type.value, request.entity_id))
        actor = actor_for_entity(actor, record)
        current = getattr(record, status_field.value)

    validator = TransitionValidator(service)
    try:
        decision = await validator.can_transition(
            actor, request.domain, actor.organization_id, current, request.proposed
        )
    except StatusEngineError as e:
        raise _http_error(e)
    return decision.to_dict()


# -----------------------------------------------------------------------------
# Admin Endpoints
# -----------------------------------------------------------------------------

@router.post("/initialize-defaults")
async def initialize_defaults(
    actor: ActorContext = Depends(get_actor_context),
    service: StatusConfigurationService = Depends(get_service),
) -> Dict[str, Any]:
    _require_role(actor, ADMIN_ONLY)
    try:
        created = await service.initialize_defaults(actor.organization_id, actor_id=actor.actor_id)
    except StatusEngineError as e:
        raise _http_error(e)
    return {"message": "Default status configurations initialized", "created": created}


@router.post("/{domain}", response_model=StatusDefinitionResponse)
async def upsert_status(
    domain: StatusDomain,
    request: StatusUpsertRequest,
    actor: ActorContext = Depends(get_actor_context),
    service: StatusConfigurationService = Depends(get_service),
) -> Dict[str, Any]:
    _require_role(actor, ADMIN_ONLY)
    draft = StatusDraft(
        id=request.id,
        name=request.name,
        display_name=request.display_name,
        color=request.color,
        order_index=request.order_index,
    )
    try:
        definition = await service.upsert(actor.organization_id, domain, draft, actor_id=actor.actor_id)
    except StatusEngineError as e:
        raise _http_error(e)
    except ValueError as e:
        raise HTTPException(status_code=422, detail={"code": "INVALID_STATUS", "message": str(e)})
    return definition.to_dict()


@router.post("/{domain}/{status_id}/deactivate", response_model=StatusDefinitionResponse)
async def deactivate_status(
    domain: StatusDomain,
    status_id: str,
    actor: ActorContext = Depends(get_actor_context),
    service: StatusConfigurationService = Depends(get_service),
) -> Dict[str, Any]:
    _require_role(actor, ADMIN_ONLY)
    try:
        definition = await service.deactivate(actor.organization_id, domain, status_id, actor_id=actor.actor_id)
    except StatusEngineError as e:
        raise _http_error(e)
    return definition.to_dict()


@router.put("/{domain}/reorder", response_model=List[StatusDefinitionResponse])
async def reorder_statuses(
    domain: StatusDomain,
    request: ReorderRequest,
    actor: ActorContext = Depends(get_actor_context),
    service: StatusConfigurationService = Depends(get_service),
) -> List[Dict[str, Any]]:
    _require_role(actor, ADMIN_ONLY)
    try:
        definitions = await service.reorder(
            actor.organization_id, domain, request.status_ids, actor_id=actor.actor_id
        )
    except StatusEngineError as e:
        raise _http_error(e)
    return [d.to_dict() for d in definitions]


@router.post("/{domain}/bulk-update")
async def bulk_update_statuses(
    domain: StatusDomain,
    request: BulkUpdateRequest,
    actor: ActorContext = Depends(get_actor_context),
    service: StatusConfigurationService = Depends(get_service),
) -> Dict[str, Any]:
    """Apply several display/order updates; all or nothing."""
    _require_role(actor, ADMIN_ONLY)
    drafts = [
        StatusDraft(
            id=item.id,
            name=item.name,
            display_name=item.display_name,
            color=item.color,
            order_index=item.order_index,
        )
        for item in request.updates
    ]
    try:
        definitions = await service.bulk_update(
            actor.organization_id, domain, drafts, actor_id=actor.actor_id
        )
    except StatusEngineError as e:
        raise _http_error(e)
    return {
        "message": "Bulk update completed",
        "results": [d.to_dict() for d in definitions],
    }
