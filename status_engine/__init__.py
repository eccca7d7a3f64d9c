"""
Status Engine Module

Status and approval lifecycle engine for the multi-tenant activity tracker.
Owns the organization-scoped status vocabularies and decides which status
changes are legal and who may make them.

Components:
- Status Configuration Store: per-organization, per-domain status rows
  (JSON state file, append-only change log)
- Status Configuration Service: typed reads (active options by domain) and
  admin writes (upsert, deactivate, reorder, seed defaults)
- Transition Validator: pure Allow/Deny decision for a proposed change
  * Activity/Task status: free-form among active values for owners,
    assignees and organization managers
  * Approval state: LOCKED edge table with owner/approver gating
- Transition Service: validator + entity store update + audit trail
- Legacy Migration: one-shot, convergent rewrite of pre-unification literals
  * in_progress -> Working on it
  * on_hold -> Blocked
  * completed -> Done
  * stopped -> Canceled
  * not_started -> Not Started
- Status Cache: read-through, request-deduplicated mirror of the active
  option lists with a compiled-in fallback payload

Domains are FIXED (activity, task, approval). Organizations customize the
values inside a domain, never the domains themselves.
"""

__version__ = "1.2.0"

from .errors import (
    StatusEngineError,
    NotConfigured,
    UnknownStatus,
    ImmutableName,
    IncompleteSet,
    DuplicateName,
    StatusStoreUnavailable,
)
from .status_models import (
    StatusDomain,
    UnifiedStatus,
    ApprovalState,
    StatusDefinition,
)
from .status_service import StatusConfigurationService, get_status_service
from .transition_validator import (
    ActorContext,
    DenyReason,
    TransitionDecision,
    TransitionValidator,
)
from .transition_service import TransitionService
from .legacy_migration import LegacyMigration, MigrationReport, run_legacy_migration
from .status_cache import StatusCache

__all__ = [
    "__version__",
    "StatusEngineError",
    "NotConfigured",
    "UnknownStatus",
    "ImmutableName",
    "IncompleteSet",
    "DuplicateName",
    "StatusStoreUnavailable",
    "StatusDomain",
    "UnifiedStatus",
    "ApprovalState",
    "StatusDefinition",
    "StatusConfigurationService",
    "get_status_service",
    "ActorContext",
    "DenyReason",
    "TransitionDecision",
    "TransitionValidator",
    "TransitionService",
    "LegacyMigration",
    "MigrationReport",
    "run_legacy_migration",
    "StatusCache",
]
