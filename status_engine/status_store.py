"""
Status Configuration Store

Persistence for organization-scoped StatusDefinition rows.

CONSTRAINTS:
- ROWS ARE NEVER DELETED: deactivation is an update
- ATOMIC WRITES: state file is replaced via temp file + rename
- SERIALIZED PER SCOPE: writers hold the (organization, domain) lock across
  their read-compute-write cycle
- CHANGE LOG: every write appends an fsync'd JSONL record

A failed persist leaves the in-memory rows untouched and raises
StatusStoreUnavailable; write paths surface it, they never retry.
"""

import asyncio
import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Optional, Dict, Any, List, Tuple

from .errors import StatusStoreUnavailable
from .status_models import StatusDefinition, StatusDomain, utc_now_iso

logger = logging.getLogger("status_store")

# -----------------------------------------------------------------------------
# Configuration
# -----------------------------------------------------------------------------
STORE_VERSION = "1.2.0"

STORAGE_DIR = Path(os.getenv("STATUS_STORAGE_DIR", "data/status"))
STATE_FILE = STORAGE_DIR / "status_configuration.json"
CHANGES_FILE = STORAGE_DIR / "status_changes.jsonl"


class StatusConfigStore:
    """
    File-backed store for status definitions.

    Rows are loaded once and kept in memory; every mutation is written
    through to the state file.
    """

    def __init__(
        self,
        state_file: Optional[Path] = None,
        changes_file: Optional[Path] = None,
    ):
        """
        Initialize store.

        Args:
            state_file: Path to JSON state file (optional, for testing)
            changes_file: Path to JSONL change log (optional, for testing)
        """
        self._state_file = state_file or STATE_FILE
        self._changes_file = changes_file or CHANGES_FILE
        self._rows: Optional[Dict[str, Dict[str, Any]]] = None
        self._scope_locks: Dict[Tuple[str, str], asyncio.Lock] = {}

    # -------------------------------------------------------------------------
    # Locking
    # -------------------------------------------------------------------------

    def scope_lock(self, organization_id: str, domain: StatusDomain) -> asyncio.Lock:
        """Lock serializing writes for one (organization, domain) scope."""
        key = (organization_id, domain.value)
        lock = self._scope_locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._scope_locks[key] = lock
        return lock

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    async def load_scope(
        self,
        organization_id: str,
        domain: StatusDomain,
    ) -> List[StatusDefinition]:
        """All rows (active and inactive) of one scope, unordered."""
        rows = self._get_rows()
        return [
            StatusDefinition.from_dict(row)
            for row in rows.values()
            if row["organization_id"] == organization_id and row["domain"] == domain.value
        ]

    async def load_organization(self, organization_id: str) -> List[StatusDefinition]:
        """All rows of an organization across domains."""
        rows = self._get_rows()
        return [
            StatusDefinition.from_dict(row)
            for row in rows.values()
            if row["organization_id"] == organization_id
        ]

    async def organization_ids(self) -> List[str]:
        rows = self._get_rows()
        return sorted({row["organization_id"] for row in rows.values()})

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    async def save_definitions(
        self,
        definitions: List[StatusDefinition],
        action: str,
        actor_id: Optional[str] = None,
    ) -> None:
        """
        Insert or replace rows by id.

        Callers must hold the scope lock of every scope they touch.

        Raises:
            StatusStoreUnavailable: if the state file cannot be written
        """
        if not definitions:
            return

        rows = dict(self._get_rows())
        for definition in definitions:
            rows[definition.id] = definition.to_dict()

        self._write_state(rows)
        self._rows = rows

        for definition in definitions:
            self._append_change({
                "timestamp": utc_now_iso(),
                "action": action,
                "actor_id": actor_id,
                "status_id": definition.id,
                "organization_id": definition.organization_id,
                "domain": definition.domain.value,
                "name": definition.name,
                "is_active": definition.is_active,
                "order_index": definition.order_index,
            })

    # -------------------------------------------------------------------------
    # Internal Helpers
    # -------------------------------------------------------------------------

    def _get_rows(self) -> Dict[str, Dict[str, Any]]:
        if self._rows is None:
            self._rows = self._read_state()
        return self._rows

    def _read_state(self) -> Dict[str, Dict[str, Any]]:
        """Read rows from the state file."""
        if not self._state_file.exists():
            return {}

        try:
            state = json.loads(self._state_file.read_text())
        except (json.JSONDecodeError, IOError) as e:
            logger.error(f"Failed to load status state file {self._state_file}: {e}")
            raise StatusStoreUnavailable(f"Status configuration state is unreadable: {e}")

        return state.get("definitions", {})

    def _write_state(self, rows: Dict[str, Dict[str, Any]]) -> None:
        """Save rows to the state file atomically."""
        state = {
            "store_version": STORE_VERSION,
            "last_updated": datetime.utcnow().isoformat(),
            "definitions": rows,
        }
        temp_file = self._state_file.with_suffix(".tmp")
        try:
            self._state_file.parent.mkdir(parents=True, exist_ok=True)
            temp_file.write_text(json.dumps(state, indent=2, sort_keys=True))
            temp_file.replace(self._state_file)
        except OSError as e:
            logger.error(f"Failed to save status state file: {e}")
            if temp_file.exists():
                temp_file.unlink()
            raise StatusStoreUnavailable(f"Status configuration could not be saved: {e}")

    def _append_change(self, record: Dict[str, Any]) -> None:
        """Append a change record to the JSONL log with fsync."""
        try:
            self._changes_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self._changes_file, "a") as f:
                f.write(json.dumps(record) + "\n")
                f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            logger.warning(f"Failed to write status change log: {e}")
