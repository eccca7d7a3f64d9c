"""
Status Cache

Read-through mirror of the active option lists, used by UI-facing
consumers. Keyed by (organization, domain).

Consistency contract:
- EVENTUALLY CONSISTENT: entries are never invalidated by server writes;
  a stale option set is tolerated for the rest of the session
- refresh() forces a re-fetch
- Concurrent misses for the same key share one in-flight fetch
- Reads are bounded by a timeout
- FALLBACK: on NotConfigured, timeout or transport failure the compiled-in
  default options are returned, flagged as fallback, and NOT cached. The
  next read asks the source again.
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, List, Tuple, Callable, Awaitable

import httpx

from .errors import NotConfigured, StatusStoreUnavailable
from .status_models import (
    DEFAULT_STATUS_COLOR,
    StatusDefinition,
    StatusDomain,
    default_entries,
    default_payload_version,
)
from .status_service import StatusConfigurationService

logger = logging.getLogger("status_cache")

# -----------------------------------------------------------------------------
# Configuration
# -----------------------------------------------------------------------------
STATUS_CACHE_TIMEOUT_SECONDS = float(os.getenv("STATUS_CACHE_TIMEOUT_SECONDS", "5.0"))
STATUS_API_BASE_URL = os.getenv("STATUS_API_BASE_URL", "http://localhost:8000")


@dataclass(frozen=True)
class StatusOption:
    """One selectable status as presented to the UI."""
    value: str
    label: str
    color: str

    @classmethod
    def from_definition(cls, definition: StatusDefinition) -> "StatusOption":
        return cls(value=definition.name, label=definition.display_name, color=definition.color)


class OptionSource(str, Enum):
    SERVER = "server"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class StatusOptions:
    """Option list for one (organization, domain) with its provenance."""
    organization_id: str
    domain: StatusDomain
    options: Tuple[StatusOption, ...]
    source: OptionSource
    fetched_at: str  # ISO format
    defaults_version: Optional[str] = None

    @property
    def is_fallback(self) -> bool:
        return self.source == OptionSource.FALLBACK

    def get(self, name: str) -> Optional[StatusOption]:
        for option in self.options:
            if option.value == name:
                return option
        return None


Loader = Callable[[str, StatusDomain], Awaitable[List[StatusOption]]]


# -----------------------------------------------------------------------------
# Loaders
# -----------------------------------------------------------------------------

def service_loader(service: StatusConfigurationService) -> Loader:
    """Loader reading straight from an in-process configuration service."""

    async def load(organization_id: str, domain: StatusDomain) -> List[StatusOption]:
        definitions = await service.list_active(organization_id, domain)
        return [StatusOption.from_definition(d) for d in definitions]

    return load


class HttpStatusLoader:
    """
    Loader calling the engine's HTTP adapter.

    404 with code NOT_CONFIGURED maps to NotConfigured; any other transport
    or HTTP failure maps to StatusStoreUnavailable.
    """

    def __init__(
        self,
        base_url: str = STATUS_API_BASE_URL,
        actor_id: str = "status-cache",
        actor_role: str = "member",
        timeout: float = STATUS_CACHE_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.actor_id = actor_id
        self.actor_role = actor_role
        self.timeout = timeout
        self._transport = transport

    async def __call__(self, organization_id: str, domain: StatusDomain) -> List[StatusOption]:
        headers = {
            "X-Organization-Id": organization_id,
            "X-Actor-Id": self.actor_id,
            "X-Actor-Role": self.actor_role,
        }
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.get(
                    "/status-configuration/active",
                    params={"domain": domain.value},
                    headers=headers,
                )
                if response.status_code == 404 and _error_code(response) == NotConfigured.code:
                    raise NotConfigured(organization_id, domain.value)
                response.raise_for_status()
                items = response.json()

            return [
                StatusOption(
                    value=item["name"],
                    label=item.get("display_name") or item["name"],
                    color=item.get("color") or DEFAULT_STATUS_COLOR,
                )
                for item in items
            ]

        except httpx.TimeoutException as e:
            raise StatusStoreUnavailable(f"Timed out loading {domain.value} statuses: {e}")
        except httpx.HTTPStatusError as e:
            raise StatusStoreUnavailable(f"Status API error: {e.response.status_code}")
        except httpx.TransportError as e:
            raise StatusStoreUnavailable(f"Status API unreachable: {e}")
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            # Non-JSON body (proxy error page) or unexpected payload shape
            raise StatusStoreUnavailable(f"Status API returned an unreadable payload: {e!r}")


def _error_code(response: httpx.Response) -> Optional[str]:
    try:
        detail = response.json().get("detail")
    except ValueError:
        return None
    if isinstance(detail, dict):
        return detail.get("code")
    return None


# -----------------------------------------------------------------------------
# Cache
# -----------------------------------------------------------------------------

class StatusCache:
    """Read-through, request-deduplicated status option cache."""

    def __init__(self, loader: Loader, timeout: float = STATUS_CACHE_TIMEOUT_SECONDS):
        self._loader = loader
        self._timeout = timeout
        self._entries: Dict[Tuple[str, str], StatusOptions] = {}
        self._inflight: Dict[Tuple[str, str], "asyncio.Task[StatusOptions]"] = {}

    async def get_options(self, organization_id: str, domain: StatusDomain) -> StatusOptions:
        """Cached options, fetching on a miss."""
        key = (organization_id, domain.value)
        entry = self._entries.get(key)
        if entry is not None:
            return entry

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._fetch(organization_id, domain))
            self._inflight[key] = task
        return await task

    async def refresh(
        self,
        organization_id: str,
        domain: Optional[StatusDomain] = None,
    ) -> Dict[StatusDomain, StatusOptions]:
        """
        Drop cached entries and fetch again (all domains when None).

        A fetch already in flight is superseded, not joined: its result is
        still returned to its own awaiters but never stored.
        """
        domains = [domain] if domain is not None else list(StatusDomain)
        refreshed = {}
        for d in domains:
            key = (organization_id, d.value)
            self._entries.pop(key, None)
            self._inflight.pop(key, None)
            refreshed[d] = await self.get_options(organization_id, d)
        return refreshed

    def clear(self) -> None:
        self._entries.clear()

    def cached(self, organization_id: str, domain: StatusDomain) -> Optional[StatusOptions]:
        """Cached entry without fetching."""
        return self._entries.get((organization_id, domain.value))

    # -------------------------------------------------------------------------
    # Lookup Helpers
    # -------------------------------------------------------------------------

    async def get_option(
        self,
        organization_id: str,
        domain: StatusDomain,
        name: str,
    ) -> Optional[StatusOption]:
        return (await self.get_options(organization_id, domain)).get(name)

    async def get_display_name(self, organization_id: str, domain: StatusDomain, name: str) -> str:
        option = await self.get_option(organization_id, domain, name)
        return option.label if option else name

    async def get_color(self, organization_id: str, domain: StatusDomain, name: str) -> str:
        option = await self.get_option(organization_id, domain, name)
        return option.color if option else DEFAULT_STATUS_COLOR

    # -------------------------------------------------------------------------
    # Internal Helpers
    # -------------------------------------------------------------------------

    async def _fetch(self, organization_id: str, domain: StatusDomain) -> StatusOptions:
        key = (organization_id, domain.value)
        task = asyncio.current_task()
        try:
            options = await asyncio.wait_for(self._loader(organization_id, domain), timeout=self._timeout)
            if not options:
                raise NotConfigured(organization_id, domain.value)

        except NotConfigured:
            logger.info(f"No {domain.value} statuses configured for {organization_id}, using defaults")
            return self._fallback(organization_id, domain)

        except asyncio.TimeoutError:
            logger.warning(
                f"Timed out after {self._timeout}s loading {domain.value} statuses "
                f"for {organization_id}, using defaults"
            )
            return self._fallback(organization_id, domain)

        except StatusStoreUnavailable as e:
            logger.warning(f"Status source unavailable for {organization_id}/{domain.value}: {e}")
            return self._fallback(organization_id, domain)

        finally:
            # refresh() may have replaced this task with a newer fetch
            superseded = self._inflight.get(key) is not task
            if not superseded:
                del self._inflight[key]

        entry = StatusOptions(
            organization_id=organization_id,
            domain=domain,
            options=tuple(options),
            source=OptionSource.SERVER,
            fetched_at=datetime.utcnow().isoformat(),
        )
        if not superseded:
            self._entries[key] = entry
        return entry

    def _fallback(self, organization_id: str, domain: StatusDomain) -> StatusOptions:
        """Compiled-in defaults. Never stored as a cache entry."""
        return StatusOptions(
            organization_id=organization_id,
            domain=domain,
            options=tuple(
                StatusOption(value=e["name"], label=e["display_name"], color=e["color"])
                for e in default_entries(domain)
            ),
            source=OptionSource.FALLBACK,
            fetched_at=datetime.utcnow().isoformat(),
            defaults_version=default_payload_version(),
        )
