"""
Entity Store

Status-bearing view of activities and tasks, consumed by the engine through
two calls:
- update_status: persist one entity's new value with the audit pair
- find_by_status: ids of an organization's entities holding a literal

plus replace_status, the single bulk statement the legacy migration runs per
(old, new) pair. A bulk replace is applied to the in-memory rows in one step
and then written through, so readers observe either the old or the new value
and never a mix.

The real application owns these tables; this file-backed implementation
follows the same contract for tooling and tests.
"""

import asyncio
import json
import logging
import os
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional, Dict, Any, List

from .errors import StatusStoreUnavailable

logger = logging.getLogger("entity_store")

# -----------------------------------------------------------------------------
# Configuration
# -----------------------------------------------------------------------------
STORAGE_DIR = Path(os.getenv("ENTITY_STORAGE_DIR", "data/entities"))
STATE_FILE = STORAGE_DIR / "entities.json"


class EntityType(str, Enum):
    """Entities carrying engine-managed status fields."""
    ACTIVITY = "activity"
    TASK = "task"


class StatusField(str, Enum):
    """Status-bearing columns."""
    STATUS = "status"
    APPROVAL_STATE = "approval_state"


@dataclass
class EntityRecord:
    """Status-relevant slice of an Activity or Task row."""
    entity_id: str
    entity_type: EntityType
    organization_id: str
    status: str
    owner_id: Optional[str] = None
    assignee_ids: List[str] = field(default_factory=list)
    approval_state: Optional[str] = None  # activities only
    approver_id: Optional[str] = None
    updated_by: Optional[str] = None
    updated_at: Optional[str] = None  # ISO format

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["entity_type"] = self.entity_type.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EntityRecord":
        return cls(
            entity_id=data["entity_id"],
            entity_type=EntityType(data["entity_type"]),
            organization_id=data["organization_id"],
            status=data["status"],
            owner_id=data.get("owner_id"),
            assignee_ids=list(data.get("assignee_ids", [])),
            approval_state=data.get("approval_state"),
            approver_id=data.get("approver_id"),
            updated_by=data.get("updated_by"),
            updated_at=data.get("updated_at"),
        )


class EntityStore:
    """File-backed activity/task status store."""

    def __init__(self, state_file: Optional[Path] = None):
        self._state_file = state_file or STATE_FILE
        self._rows: Optional[Dict[str, Dict[str, Dict[str, Any]]]] = None
        self._lock = asyncio.Lock()

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    async def add(self, record: EntityRecord) -> EntityRecord:
        """Insert or replace an entity row."""
        async with self._lock:
            rows = self._copy_rows()
            rows[record.entity_type.value][record.entity_id] = record.to_dict()
            self._commit(rows)
        return record

    async def update_status(
        self,
        entity_type: EntityType,
        entity_id: str,
        new_value: str,
        actor_id: str,
        timestamp: datetime,
        status_field: StatusField = StatusField.STATUS,
    ) -> bool:
        """
        Persist a new status value with the updated-by / updated-at pair.

        Returns:
            True if the entity exists and was updated, False otherwise
        """
        async with self._lock:
            rows = self._copy_rows()
            row = rows[entity_type.value].get(entity_id)
            if row is None:
                return False

            row[status_field.value] = new_value
            row["updated_by"] = actor_id
            row["updated_at"] = timestamp.isoformat()
            self._commit(rows)
        return True

    async def replace_status(
        self,
        entity_type: EntityType,
        old_value: str,
        new_value: str,
        organization_id: Optional[str] = None,
        actor_id: str = "system",
        timestamp: Optional[datetime] = None,
    ) -> int:
        """
        Bulk-rewrite ``status`` from old_value to new_value in one atomic step.

        Args:
            organization_id: restrict to one organization (None = all)

        Returns:
            Number of rows rewritten
        """
        stamp = (timestamp or datetime.utcnow()).isoformat()
        async with self._lock:
            rows = self._copy_rows()
            affected = 0
            for row in rows[entity_type.value].values():
                if row["status"] != old_value:
                    continue
                if organization_id is not None and row["organization_id"] != organization_id:
                    continue
                row["status"] = new_value
                row["updated_by"] = actor_id
                row["updated_at"] = stamp
                affected += 1

            if affected:
                self._commit(rows)
        return affected

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    async def get(self, entity_type: EntityType, entity_id: str) -> Optional[EntityRecord]:
        row = self._get_rows()[entity_type.value].get(entity_id)
        return EntityRecord.from_dict(row) if row else None

    async def find_by_status(
        self,
        entity_type: EntityType,
        organization_id: Optional[str],
        old_value: str,
    ) -> List[str]:
        """Ids of entities holding ``old_value`` (all organizations when None)."""
        return sorted(
            entity_id
            for entity_id, row in self._get_rows()[entity_type.value].items()
            if row["status"] == old_value
            and (organization_id is None or row["organization_id"] == organization_id)
        )

    async def organization_ids(self) -> List[str]:
        rows = self._get_rows()
        return sorted({
            row["organization_id"]
            for table in rows.values()
            for row in table.values()
        })

    async def status_distribution(
        self,
        entity_type: EntityType,
        organization_id: Optional[str] = None,
    ) -> Dict[str, int]:
        """Count of entities per status literal."""
        counts: Dict[str, int] = {}
        for row in self._get_rows()[entity_type.value].values():
            if organization_id is not None and row["organization_id"] != organization_id:
                continue
            counts[row["status"]] = counts.get(row["status"], 0) + 1
        return counts

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def _get_rows(self) -> Dict[str, Dict[str, Dict[str, Any]]]:
        if self._rows is None:
            self._rows = self._load_state()
        return self._rows

    def _copy_rows(self) -> Dict[str, Dict[str, Dict[str, Any]]]:
        return {
            table: {entity_id: dict(row) for entity_id, row in entities.items()}
            for table, entities in self._get_rows().items()
        }

    def _commit(self, rows: Dict[str, Dict[str, Dict[str, Any]]]) -> None:
        self._save_state(rows)
        self._rows = rows

    def _load_state(self) -> Dict[str, Dict[str, Dict[str, Any]]]:
        """Load state from file."""
        empty = {t.value: {} for t in EntityType}
        if not self._state_file.exists():
            return empty

        try:
            state = json.loads(self._state_file.read_text())
        except (json.JSONDecodeError, IOError) as e:
            logger.error(f"Failed to load entity state file: {e}")
            raise StatusStoreUnavailable(f"Entity state is unreadable: {e}")

        for entity_type in EntityType:
            empty[entity_type.value].update(state.get("entities", {}).get(entity_type.value, {}))
        return empty

    def _save_state(self, rows: Dict[str, Dict[str, Dict[str, Any]]]) -> None:
        """Save state to file atomically."""
        state = {"last_updated": datetime.utcnow().isoformat(), "entities": rows}
        temp_file = self._state_file.with_suffix(".tmp")
        try:
            self._state_file.parent.mkdir(parents=True, exist_ok=True)
            temp_file.write_text(json.dumps(state, indent=2, default=str))
            temp_file.replace(self._state_file)
        except OSError as e:
            logger.error(f"Failed to save entity state file: {e}")
            if temp_file.exists():
                temp_file.unlink()
            raise StatusStoreUnavailable(f"Entity state could not be saved: {e}")


# -----------------------------------------------------------------------------
# Module-Level Functions
# -----------------------------------------------------------------------------

# Singleton instance
_store: Optional[EntityStore] = None


def get_entity_store(state_file: Optional[Path] = None) -> EntityStore:
    """Get the entity store singleton."""
    global _store
    if _store is None:
        _store = EntityStore(state_file=state_file)
    return _store
