"""
Pytest configuration for status engine tests.

This module provides:
1. Stores backed by per-test temporary files
2. Service / validator / entity store fixtures wired together
3. Actor factories and shared test constants
"""

from pathlib import Path

import pytest

from status_engine.entity_store import EntityRecord, EntityStore, EntityType
from status_engine.status_service import StatusConfigurationService
from status_engine.status_store import StatusConfigStore
from status_engine.transition_validator import ActorContext, ActorRole, TransitionValidator


# -----------------------------------------------------------------------------
# Test Constants
# -----------------------------------------------------------------------------
ORG_A = "org-alpha"
ORG_B = "org-beta"
OWNER_ID = "user-owner"
ASSIGNEE_ID = "user-assignee"
OUTSIDER_ID = "user-outsider"


# -----------------------------------------------------------------------------
# Store Fixtures
# -----------------------------------------------------------------------------
@pytest.fixture
def status_dir(tmp_path) -> Path:
    return tmp_path / "status"


@pytest.fixture
def store(status_dir) -> StatusConfigStore:
    """Status configuration store writing into tmp_path."""
    return StatusConfigStore(
        state_file=status_dir / "status_configuration.json",
        changes_file=status_dir / "status_changes.jsonl",
    )


@pytest.fixture
def service(store) -> StatusConfigurationService:
    return StatusConfigurationService(store=store)


@pytest.fixture
def validator(service) -> TransitionValidator:
    return TransitionValidator(service)


@pytest.fixture
def entity_store(tmp_path) -> EntityStore:
    return EntityStore(state_file=tmp_path / "entities" / "entities.json")


# -----------------------------------------------------------------------------
# Factories
# -----------------------------------------------------------------------------
def make_actor(
    role: ActorRole = ActorRole.MEMBER,
    actor_id: str = OUTSIDER_ID,
    organization_id: str = ORG_A,
    **flags,
) -> ActorContext:
    """Build an actor context; flags are is_owner / is_assignee / is_approver."""
    return ActorContext(actor_id=actor_id, role=role, organization_id=organization_id, **flags)


def make_entity(
    entity_id: str,
    status: str,
    entity_type: EntityType = EntityType.ACTIVITY,
    organization_id: str = ORG_A,
    **fields,
) -> EntityRecord:
    return EntityRecord(
        entity_id=entity_id,
        entity_type=entity_type,
        organization_id=organization_id,
        status=status,
        **fields,
    )
