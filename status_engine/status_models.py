"""
Status Models

Domain types shared by every engine component:
- StatusDomain: the three FIXED status domains
- UnifiedStatus / ApprovalState: closed vocabularies of the system defaults
- StatusDefinition: one organization-scoped status value (immutable record)
- Default payload: versioned system defaults loaded from the packaged YAML

Entities store ``StatusDefinition.name`` literals. Raw strings coming from
callers only become trusted status values after resolving through the
Status Configuration Service.
"""

from dataclasses import dataclass, asdict
from datetime import datetime
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Optional, Dict, Any, List, Tuple

import yaml

# -----------------------------------------------------------------------------
# Constants
# -----------------------------------------------------------------------------
DEFAULTS_FILE = Path(__file__).parent / "defaults" / "status_defaults.yaml"

# Color used when a status has no configured color
DEFAULT_STATUS_COLOR = "#6B7280"


# -----------------------------------------------------------------------------
# Status Domain Enum (LOCKED)
# -----------------------------------------------------------------------------
class StatusDomain(str, Enum):
    """
    Status domains managed by the engine.

    This enum is LOCKED - organizations customize values, never domains.
    """
    ACTIVITY = "activity"
    TASK = "task"
    APPROVAL = "approval"

    @classmethod
    def progress_domains(cls) -> Tuple["StatusDomain", ...]:
        """Domains holding free-form progress status (unified vocabulary)."""
        return (cls.ACTIVITY, cls.TASK)


class UnifiedStatus(str, Enum):
    """Unified progress vocabulary shared by Activity.status and Task.status."""
    NOT_STARTED = "Not Started"
    WORKING_ON_IT = "Working on it"
    STUCK = "Stuck"
    DONE = "Done"
    BLOCKED = "Blocked"
    CANCELED = "Canceled"


class ApprovalState(str, Enum):
    """Approval lifecycle values for Activity.approval_state."""
    DRAFT = "draft"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REOPENED = "reopened"
    CLOSED = "closed"
    REJECTED = "rejected"


# -----------------------------------------------------------------------------
# Status Definition Record (Frozen - Immutable)
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class StatusDefinition:
    """
    One customizable status value for an (organization, domain) scope.

    Updates produce a new record (dataclasses.replace); rows are never
    deleted, only deactivated.
    """
    id: str
    organization_id: str
    domain: StatusDomain
    name: str
    display_name: str
    color: str
    order_index: int
    is_active: bool = True
    created_at: Optional[str] = None  # ISO format
    updated_at: Optional[str] = None  # ISO format

    def __post_init__(self):
        if not self.name or not self.name.strip():
            raise ValueError("Status name cannot be empty")
        if not self.color or not self.color.strip():
            raise ValueError(f"Status '{self.name}' requires a color")

    @property
    def sort_key(self) -> Tuple[int, str]:
        return (self.order_index, self.id)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["domain"] = self.domain.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StatusDefinition":
        return cls(
            id=data["id"],
            organization_id=data["organization_id"],
            domain=StatusDomain(data["domain"]),
            name=data["name"],
            display_name=data.get("display_name") or data["name"],
            color=data.get("color") or DEFAULT_STATUS_COLOR,
            order_index=int(data.get("order_index", 0)),
            is_active=bool(data.get("is_active", True)),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )


def sort_definitions(definitions: List[StatusDefinition]) -> List[StatusDefinition]:
    """Presentation order: order_index ascending, ties broken by id."""
    return sorted(definitions, key=lambda d: d.sort_key)


def utc_now_iso() -> str:
    return datetime.utcnow().isoformat()


# -----------------------------------------------------------------------------
# Default Payload
# -----------------------------------------------------------------------------
@lru_cache(maxsize=1)
def load_default_payload() -> Dict[str, Any]:
    """Load the versioned system default payload shipped with the package."""
    with open(DEFAULTS_FILE, "r") as f:
        payload = yaml.safe_load(f) or {}

    domains = payload.get("domains", {})
    missing = [d.value for d in StatusDomain if d.value not in domains]
    if missing:
        raise ValueError(f"Default payload is missing domains: {missing}")

    return payload


def default_payload_version() -> str:
    return str(load_default_payload().get("version", "unknown"))


def default_entries(domain: StatusDomain) -> List[Dict[str, Any]]:
    """
    Default entries for a domain, in presentation order.

    Each entry has name, display_name, color and a 1-based order_index.
    """
    entries = load_default_payload()["domains"][domain.value]
    return [
        {
            "name": entry["name"],
            "display_name": entry.get("display_name") or entry["name"],
            "color": entry.get("color") or DEFAULT_STATUS_COLOR,
            "order_index": index,
        }
        for index, entry in enumerate(entries, start=1)
    ]
