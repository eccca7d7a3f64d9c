"""
Legacy Status Migration

One-shot batch that rewrites pre-unification status literals to the unified
vocabulary. Run out-of-band, never on the request path.

Mapping (LOCKED):
    in_progress -> Working on it
    on_hold     -> Blocked
    completed   -> Done
    stopped     -> Canceled
    not_started -> Not Started

Procedure:
1. Extend each in-scope organization's active activity/task vocabulary with
   any missing unified name, so no row ever references an absent status
2. For each pair, one atomic bulk rewrite per (organization, entity type)
3. Log and report the affected count per pair

IDEMPOTENT BY CONVERGENCE: after a full run no row holds an old literal, so
a second run rewrites nothing. There is no "already migrated" flag.

Failures are per pair and do not stop other pairs. Completed pair updates
are NOT rolled back; re-running only touches rows still holding old values.
Legacy literals are never removed from any enum or type, only unused.
"""

import json
import logging
import os
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional, Dict, Any, List, Tuple

from .entity_store import EntityStore, EntityType, get_entity_store
from .status_models import StatusDomain, UnifiedStatus
from .status_service import StatusConfigurationService, get_status_service

logger = logging.getLogger("legacy_migration")

# -----------------------------------------------------------------------------
# Configuration
# -----------------------------------------------------------------------------
MIGRATION_LOG_DIR = Path(os.getenv("MIGRATION_LOG_DIR", "data/migrations"))
RUN_LOG = MIGRATION_LOG_DIR / "legacy_status_runs.jsonl"

MIGRATION_ACTOR = "legacy-status-migration"

LEGACY_STATUS_MAPPING: Tuple[Tuple[str, str], ...] = (
    ("in_progress", UnifiedStatus.WORKING_ON_IT.value),
    ("on_hold", UnifiedStatus.BLOCKED.value),
    ("completed", UnifiedStatus.DONE.value),
    ("stopped", UnifiedStatus.CANCELED.value),
    ("not_started", UnifiedStatus.NOT_STARTED.value),
)

# Entity type -> status domain whose vocabulary its status field uses
ENTITY_DOMAINS: Dict[EntityType, StatusDomain] = {
    EntityType.ACTIVITY: StatusDomain.ACTIVITY,
    EntityType.TASK: StatusDomain.TASK,
}


@dataclass
class MigrationError:
    """A failure scoped to one pair, or to the run when pair is None."""
    pair: Optional[Tuple[str, str]]
    message: str
    organization_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pair": list(self.pair) if self.pair else None,
            "message": self.message,
            "organization_id": self.organization_id,
        }


@dataclass
class MigrationReport:
    """Outcome of one migration run."""
    run_id: str
    organization_id: Optional[str]
    started_at: str
    dry_run: bool = False
    pair_counts: Dict[str, int] = field(default_factory=dict)
    errors: List[MigrationError] = field(default_factory=list)
    vocabulary_added: Dict[str, List[str]] = field(default_factory=dict)
    completed_at: Optional[str] = None
    completed: bool = False

    @property
    def total_affected(self) -> int:
        return sum(self.pair_counts.values())

    @property
    def succeeded(self) -> bool:
        return self.completed and not self.errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "organization_id": self.organization_id,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "dry_run": self.dry_run,
            "completed": self.completed,
            "pair_counts": dict(self.pair_counts),
            "total_affected": self.total_affected,
            "vocabulary_added": self.vocabulary_added,
            "errors": [e.to_dict() for e in self.errors],
        }


class LegacyMigration:
    """Rewrites legacy status literals across the entity store."""

    def __init__(
        self,
        service: StatusConfigurationService,
        entity_store: EntityStore,
        entity_types: Tuple[EntityType, ...] = (EntityType.ACTIVITY, EntityType.TASK),
        mapping: Tuple[Tuple[str, str], ...] = LEGACY_STATUS_MAPPING,
        run_log: Optional[Path] = None,
    ):
        self._service = service
        self._entities = entity_store
        self._entity_types = entity_types
        self._mapping = mapping
        self._run_log = run_log or RUN_LOG

    async def run(
        self,
        organization_id: Optional[str] = None,
        dry_run: bool = False,
    ) -> MigrationReport:
        """
        Run the migration for one organization, or globally when None.

        With dry_run the vocabulary is left alone and pair counts report the
        rows each pair would rewrite.
        """
        report = MigrationReport(
            run_id=f"mig-{datetime.utcnow().strftime('%Y%m%d%H%M%S')}-{uuid.uuid4().hex[:8]}",
            organization_id=organization_id,
            started_at=datetime.utcnow().isoformat(),
            dry_run=dry_run,
        )
        scope = organization_id or "all organizations"
        logger.info(f"Starting legacy status migration {report.run_id} for {scope} (dry_run={dry_run})")

        try:
            organizations = await self._organizations(organization_id)
            if not dry_run:
                organizations = await self._extend_vocabulary(organizations, report)

            for old_value, new_value in self._mapping:
                report.pair_counts[old_value] = 0
                try:
                    for org_id in organizations:
                        for entity_type in self._entity_types:
                            report.pair_counts[old_value] += await self._apply_pair(
                                entity_type, org_id, old_value, new_value, dry_run
                            )
                except Exception as e:
                    logger.error(f"Pair '{old_value}' -> '{new_value}' failed: {e}")
                    report.errors.append(MigrationError(pair=(old_value, new_value), message=str(e)))
                    continue

                verb = "Would update" if dry_run else "Updated"
                logger.info(
                    f"{verb} {report.pair_counts[old_value]} records from '{old_value}' to '{new_value}'"
                )

            report.completed = True

        except Exception as e:
            logger.exception(f"Legacy status migration {report.run_id} aborted")
            report.errors.append(MigrationError(pair=None, message=f"Migration aborted: {e}"))

        finally:
            report.completed_at = datetime.utcnow().isoformat()
            self._append_run(report)

        logger.info(
            f"Legacy status migration {report.run_id} finished: "
            f"{report.total_affected} rows, {len(report.errors)} errors"
        )
        return report

    # -------------------------------------------------------------------------
    # Internal Helpers
    # -------------------------------------------------------------------------

    async def _organizations(self, organization_id: Optional[str]) -> List[str]:
        if organization_id is not None:
            return [organization_id]
        entity_orgs = await self._entities.organization_ids()
        config_orgs = await self._service.store.organization_ids()
        return sorted(set(entity_orgs) | set(config_orgs))

    async def _extend_vocabulary(self, organizations: List[str], report: MigrationReport) -> List[str]:
        """
        Ensure every unified target name is active before rows are rewritten.

        Organizations whose vocabulary cannot be extended are left out of the
        rewrite and reported.
        """
        targets = []
        for _, new_value in self._mapping:
            if new_value not in targets:
                targets.append(new_value)

        ready = []
        for org_id in organizations:
            try:
                for entity_type in self._entity_types:
                    domain = ENTITY_DOMAINS[entity_type]
                    created = await self._service.ensure_active(
                        org_id, domain, targets, actor_id=MIGRATION_ACTOR
                    )
                    if created:
                        report.vocabulary_added.setdefault(org_id, []).extend(
                            f"{domain.value}:{d.name}" for d in created
                        )
            except Exception as e:
                logger.error(f"Could not extend vocabulary for organization {org_id}: {e}")
                report.errors.append(MigrationError(
                    pair=None,
                    message=f"Vocabulary extension failed, organization skipped: {e}",
                    organization_id=org_id,
                ))
                continue
            ready.append(org_id)
        return ready

    async def _apply_pair(
        self,
        entity_type: EntityType,
        organization_id: str,
        old_value: str,
        new_value: str,
        dry_run: bool,
    ) -> int:
        if dry_run:
            return len(await self._entities.find_by_status(entity_type, organization_id, old_value))
        return await self._entities.replace_status(
            entity_type,
            old_value,
            new_value,
            organization_id=organization_id,
            actor_id=MIGRATION_ACTOR,
        )

    def _append_run(self, report: MigrationReport) -> None:
        """Append the run summary to the JSONL run log with fsync."""
        try:
            self._run_log.parent.mkdir(parents=True, exist_ok=True)
            with open(self._run_log, "a") as f:
                f.write(json.dumps(report.to_dict()) + "\n")
                f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            logger.warning(f"Failed to write migration run log: {e}")


# -----------------------------------------------------------------------------
# Module-Level Functions
# -----------------------------------------------------------------------------

async def run_legacy_migration(
    organization_id: Optional[str] = None,
    dry_run: bool = False,
) -> MigrationReport:
    """
    Run the legacy status migration.

    Convenience function using the singleton service and entity store.
    """
    migration = LegacyMigration(get_status_service(), get_entity_store())
    return await migration.run(organization_id=organization_id, dry_run=dry_run)
