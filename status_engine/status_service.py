"""
Status Configuration Service

Single source of truth for organization-scoped status vocabularies.

Read API:
- list_active: active options of a domain in presentation order
- get_by_name: resolve a stored literal (active or inactive)
- get_status_mapping / get_usage_stats: summary views

Admin write API:
- upsert: create a status, or update display_name/color/order_index
- bulk_update: several display/order updates in one write
- deactivate: retire a status (idempotent, entities untouched)
- reorder: rewrite order_index from a complete ordered id list
- initialize_defaults / ensure_active: seed from the default payload

Canonical names are IMMUTABLE once created. Entities reference ``name``,
so renaming would silently rewrite history.
"""

import logging
import uuid
from dataclasses import dataclass, replace
from typing import Optional, Dict, Any, List, Iterable

from .errors import (
    NotConfigured,
    UnknownStatus,
    ImmutableName,
    IncompleteSet,
    DuplicateName,
)
from .status_models import (
    DEFAULT_STATUS_COLOR,
    StatusDefinition,
    StatusDomain,
    default_entries,
    sort_definitions,
    utc_now_iso,
)
from .status_store import StatusConfigStore

logger = logging.getLogger("status_configuration")


@dataclass
class StatusDraft:
    """
    Input for upsert.

    Without ``id`` a new definition is created. With ``id`` the existing
    definition is updated; fields left as None keep their current value.
    """
    name: Optional[str] = None
    display_name: Optional[str] = None
    color: Optional[str] = None
    order_index: Optional[int] = None
    id: Optional[str] = None


class StatusConfigurationService:
    """
    Loads, validates and mutates status definitions.

    All operations are scoped to one organization; no call can read or
    write another tenant's rows.
    """

    def __init__(self, store: Optional[StatusConfigStore] = None):
        self._store = store or StatusConfigStore()

    @property
    def store(self) -> StatusConfigStore:
        return self._store

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    async def list_active(
        self,
        organization_id: str,
        domain: StatusDomain,
    ) -> List[StatusDefinition]:
        """
        Active definitions ordered by (order_index, id).

        Raises:
            NotConfigured: if the scope has no active rows
        """
        rows = await self._store.load_scope(organization_id, domain)
        active = sort_definitions([d for d in rows if d.is_active])
        if not active:
            raise NotConfigured(organization_id, domain.value)
        return active

    async def list_all(
        self,
        organization_id: str,
        domain: Optional[StatusDomain] = None,
    ) -> List[StatusDefinition]:
        """Every definition including inactive ones, grouped by domain."""
        if domain is not None:
            return sort_definitions(await self._store.load_scope(organization_id, domain))

        rows = await self._store.load_organization(organization_id)
        domain_order = {d: i for i, d in enumerate(StatusDomain)}
        return sorted(rows, key=lambda d: (domain_order[d.domain], d.order_index, d.id))

    async def get_by_name(
        self,
        organization_id: str,
        domain: StatusDomain,
        name: str,
    ) -> StatusDefinition:
        """
        Resolve a status literal.

        When history holds several rows with the same name, the active one
        wins, otherwise the most recently updated inactive one.

        Raises:
            UnknownStatus: if no row carries this name
        """
        rows = await self._store.load_scope(organization_id, domain)
        matches = [d for d in rows if d.name == name]
        if not matches:
            raise UnknownStatus(organization_id, domain.value, name=name)

        for definition in matches:
            if definition.is_active:
                return definition
        return max(matches, key=lambda d: (d.updated_at or "", d.id))

    async def get_by_id(
        self,
        organization_id: str,
        domain: StatusDomain,
        status_id: str,
    ) -> StatusDefinition:
        rows = await self._store.load_scope(organization_id, domain)
        for definition in rows:
            if definition.id == status_id:
                return definition
        raise UnknownStatus(organization_id, domain.value, status_id=status_id)

    async def get_status_mapping(self, organization_id: str) -> Dict[str, Dict[str, Dict[str, str]]]:
        """Active statuses as {domain: {name: {display_name, color}}}."""
        mapping: Dict[str, Dict[str, Dict[str, str]]] = {d.value: {} for d in StatusDomain}
        for definition in await self.list_all(organization_id):
            if not definition.is_active:
                continue
            mapping[definition.domain.value][definition.name] = {
                "display_name": definition.display_name,
                "color": definition.color,
            }
        return mapping

    async def get_usage_stats(
        self,
        organization_id: str,
        domain: Optional[StatusDomain] = None,
    ) -> Dict[str, Any]:
        definitions = await self.list_all(organization_id, domain)

        by_domain: Dict[str, Dict[str, int]] = {}
        for definition in definitions:
            counts = by_domain.setdefault(definition.domain.value, {"active": 0, "inactive": 0})
            counts["active" if definition.is_active else "inactive"] += 1

        active = sum(1 for d in definitions if d.is_active)
        return {
            "organization_id": organization_id,
            "total_statuses": len(definitions),
            "active_statuses": active,
            "inactive_statuses": len(definitions) - active,
            "by_domain": by_domain,
        }

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    async def upsert(
        self,
        organization_id: str,
        domain: StatusDomain,
        draft: StatusDraft,
        actor_id: Optional[str] = None,
    ) -> StatusDefinition:
        """
        Create a definition, or update display fields of an existing one.

        Raises:
            ImmutableName: if an update changes the canonical name
            DuplicateName: if a create reuses an active name
            UnknownStatus: if an update targets an id outside the scope
            StatusStoreUnavailable: if the store cannot be written
        """
        async with self._store.scope_lock(organization_id, domain):
            rows = await self._store.load_scope(organization_id, domain)

            if draft.id is None:
                definition = self._build_new(organization_id, domain, draft, rows)
                await self._store.save_definitions([definition], action="create", actor_id=actor_id)
                logger.info(
                    f"Created {domain.value} status '{definition.name}' "
                    f"({definition.id}) for organization {organization_id}"
                )
                return definition

            current = next((d for d in rows if d.id == draft.id), None)
            updated = self._apply_update(organization_id, domain, current, draft, utc_now_iso())
            await self._store.save_definitions([updated], action="update", actor_id=actor_id)
            logger.info(f"Updated {domain.value} status '{updated.name}' ({updated.id})")
            return updated

    async def bulk_update(
        self,
        organization_id: str,
        domain: StatusDomain,
        drafts: List[StatusDraft],
        actor_id: Optional[str] = None,
    ) -> List[StatusDefinition]:
        """
        Apply several updates to existing definitions in one write.

        Every draft must carry an ``id``. All drafts are checked before
        anything is saved, so one bad draft leaves the scope untouched.
        A later draft for the same id builds on the earlier one.

        Raises:
            ValueError: if a draft has no id
            UnknownStatus / ImmutableName: as for upsert
        """
        async with self._store.scope_lock(organization_id, domain):
            rows = {d.id: d for d in await self._store.load_scope(organization_id, domain)}

            timestamp = utc_now_iso()
            changed: Dict[str, StatusDefinition] = {}
            for draft in drafts:
                if draft.id is None:
                    raise ValueError("Bulk update entries require an id")
                current = changed.get(draft.id) or rows.get(draft.id)
                changed[draft.id] = self._apply_update(organization_id, domain, current, draft, timestamp)

            updated = list(changed.values())
            await self._store.save_definitions(updated, action="bulk_update", actor_id=actor_id)
            logger.info(
                f"Bulk updated {len(updated)} {domain.value} statuses for organization {organization_id}"
            )
            return updated

    async def deactivate(
        self,
        organization_id: str,
        domain: StatusDomain,
        status_id: str,
        actor_id: Optional[str] = None,
    ) -> StatusDefinition:
        """
        Retire a definition. Deactivating twice is not an error.

        Entities already carrying the status keep it.
        """
        async with self._store.scope_lock(organization_id, domain):
            current = await self.get_by_id(organization_id, domain, status_id)
            if not current.is_active:
                return current

            updated = replace(current, is_active=False, updated_at=utc_now_iso())
            await self._store.save_definitions([updated], action="deactivate", actor_id=actor_id)
            logger.info(f"Deactivated {domain.value} status '{updated.name}' ({updated.id})")
            return updated

    async def reorder(
        self,
        organization_id: str,
        domain: StatusDomain,
        ordered_ids: List[str],
        actor_id: Optional[str] = None,
    ) -> List[StatusDefinition]:
        """
        Assign order_index 1..n following ``ordered_ids``.

        Raises:
            IncompleteSet: unless ordered_ids lists every active id exactly once
        """
        async with self._store.scope_lock(organization_id, domain):
            rows = await self._store.load_scope(organization_id, domain)
            active = {d.id: d for d in rows if d.is_active}

            seen = set()
            duplicated = []
            for status_id in ordered_ids:
                if status_id in seen and status_id not in duplicated:
                    duplicated.append(status_id)
                seen.add(status_id)

            missing = sorted(set(active) - seen)
            unexpected = sorted(seen - set(active))
            if missing or unexpected or duplicated:
                raise IncompleteSet(missing=missing, unexpected=unexpected, duplicated=duplicated)

            timestamp = utc_now_iso()
            reordered = [
                replace(active[status_id], order_index=index, updated_at=timestamp)
                for index, status_id in enumerate(ordered_ids, start=1)
            ]
            await self._store.save_definitions(reordered, action="reorder", actor_id=actor_id)
            logger.info(f"Reordered {len(reordered)} {domain.value} statuses for organization {organization_id}")
            return reordered

    async def initialize_defaults(
        self,
        organization_id: str,
        actor_id: Optional[str] = None,
    ) -> Dict[str, int]:
        """
        Seed the default payload into every domain that has no rows yet.

        Returns:
            Number of definitions created per domain
        """
        created: Dict[str, int] = {}
        for domain in StatusDomain:
            async with self._store.scope_lock(organization_id, domain):
                if await self._store.load_scope(organization_id, domain):
                    created[domain.value] = 0
                    continue

                timestamp = utc_now_iso()
                definitions = [
                    StatusDefinition(
                        id=uuid.uuid4().hex,
                        organization_id=organization_id,
                        domain=domain,
                        name=entry["name"],
                        display_name=entry["display_name"],
                        color=entry["color"],
                        order_index=entry["order_index"],
                        created_at=timestamp,
                        updated_at=timestamp,
                    )
                    for entry in default_entries(domain)
                ]
                await self._store.save_definitions(definitions, action="seed", actor_id=actor_id)
                created[domain.value] = len(definitions)

        logger.info(f"Initialized default statuses for organization {organization_id}: {created}")
        return created

    async def ensure_active(
        self,
        organization_id: str,
        domain: StatusDomain,
        names: Iterable[str],
        actor_id: Optional[str] = None,
    ) -> List[StatusDefinition]:
        """
        Make sure each name has an active definition, creating the missing ones.

        New rows take label and color from the default payload when it knows
        the name, and are appended after the current last position.

        Returns:
            Definitions created by this call
        """
        defaults = {entry["name"]: entry for entry in default_entries(domain)}

        async with self._store.scope_lock(organization_id, domain):
            rows = await self._store.load_scope(organization_id, domain)
            active_names = {d.name for d in rows if d.is_active}
            next_index = max((d.order_index for d in rows), default=0) + 1

            timestamp = utc_now_iso()
            created = []
            for name in names:
                if name in active_names:
                    continue
                entry = defaults.get(name, {})
                created.append(StatusDefinition(
                    id=uuid.uuid4().hex,
                    organization_id=organization_id,
                    domain=domain,
                    name=name,
                    display_name=entry.get("display_name", name),
                    color=entry.get("color", DEFAULT_STATUS_COLOR),
                    order_index=next_index,
                    created_at=timestamp,
                    updated_at=timestamp,
                ))
                active_names.add(name)
                next_index += 1

            if created:
                await self._store.save_definitions(created, action="extend", actor_id=actor_id)
                logger.info(
                    f"Extended {domain.value} vocabulary for organization {organization_id}: "
                    f"{[d.name for d in created]}"
                )
            return created

    # -------------------------------------------------------------------------
    # Internal Helpers
    # -------------------------------------------------------------------------

    def _apply_update(
        self,
        organization_id: str,
        domain: StatusDomain,
        current: Optional[StatusDefinition],
        draft: StatusDraft,
        timestamp: str,
    ) -> StatusDefinition:
        if current is None:
            raise UnknownStatus(organization_id, domain.value, status_id=draft.id)

        if draft.name is not None and draft.name != current.name:
            raise ImmutableName(current.id, current.name, draft.name)

        return replace(
            current,
            display_name=draft.display_name if draft.display_name is not None else current.display_name,
            color=draft.color if draft.color is not None else current.color,
            order_index=draft.order_index if draft.order_index is not None else current.order_index,
            updated_at=timestamp,
        )

    def _build_new(
        self,
        organization_id: str,
        domain: StatusDomain,
        draft: StatusDraft,
        rows: List[StatusDefinition],
    ) -> StatusDefinition:
        name = (draft.name or "").strip()
        if not name:
            raise ValueError("Status name is required to create a status")

        if any(d.is_active and d.name == name for d in rows):
            raise DuplicateName(organization_id, domain.value, name)

        if draft.order_index is not None:
            order_index = draft.order_index
        else:
            order_index = max((d.order_index for d in rows), default=0) + 1

        timestamp = utc_now_iso()
        return StatusDefinition(
            id=uuid.uuid4().hex,
            organization_id=organization_id,
            domain=domain,
            name=name,
            display_name=draft.display_name or name,
            color=draft.color or DEFAULT_STATUS_COLOR,
            order_index=order_index,
            created_at=timestamp,
            updated_at=timestamp,
        )


# -----------------------------------------------------------------------------
# Module-Level Functions
# -----------------------------------------------------------------------------

# Singleton instance
_service: Optional[StatusConfigurationService] = None


def get_status_service(store: Optional[StatusConfigStore] = None) -> StatusConfigurationService:
    """Get the status configuration service singleton."""
    global _service
    if _service is None:
        _service = StatusConfigurationService(store=store)
    return _service
