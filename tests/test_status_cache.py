"""
Status Cache Tests

Test Categories:
1. Read-through caching and refresh
2. Request deduplication
3. Fallback (not configured / timeout / unavailable)
4. HTTP loader
"""

import asyncio

import httpx
import pytest
from fastapi import FastAPI

from status_engine.errors import NotConfigured, StatusStoreUnavailable
from status_engine.router import get_service, router
from status_engine.status_cache import (
    HttpStatusLoader,
    OptionSource,
    StatusCache,
    StatusOption,
    service_loader,
)
from status_engine.status_models import DEFAULT_STATUS_COLOR, StatusDomain, default_payload_version
from status_engine.status_service import StatusDraft

from tests.conftest import ORG_A, ORG_B


class CountingLoader:
    """Loader stub returning fixed options, recording every call."""

    def __init__(self, options=None, error=None, delay=0.0):
        self.options = options if options is not None else [
            StatusOption(value="Open", label="Open", color="#111111"),
            StatusOption(value="Shipped", label="Shipped!", color="#222222"),
        ]
        self.error = error
        self.delay = delay
        self.calls = []

    async def __call__(self, organization_id, domain):
        self.calls.append((organization_id, domain))
        snapshot = list(self.options)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return snapshot


# -----------------------------------------------------------------------------
# Test 1: Read-through Caching
# -----------------------------------------------------------------------------
class TestCaching:

    @pytest.mark.asyncio
    async def test_hit_does_not_call_loader_again(self):
        loader = CountingLoader()
        cache = StatusCache(loader, timeout=1.0)

        first = await cache.get_options(ORG_A, StatusDomain.TASK)
        second = await cache.get_options(ORG_A, StatusDomain.TASK)

        assert first is second
        assert first.source == OptionSource.SERVER
        assert len(loader.calls) == 1

    @pytest.mark.asyncio
    async def test_keys_are_per_organization_and_domain(self):
        loader = CountingLoader()
        cache = StatusCache(loader, timeout=1.0)

        await cache.get_options(ORG_A, StatusDomain.TASK)
        await cache.get_options(ORG_B, StatusDomain.TASK)
        await cache.get_options(ORG_A, StatusDomain.ACTIVITY)

        assert len(loader.calls) == 3

    @pytest.mark.asyncio
    async def test_refresh_forces_a_new_fetch(self):
        loader = CountingLoader()
        cache = StatusCache(loader, timeout=1.0)
        await cache.get_options(ORG_A, StatusDomain.TASK)

        loader.options = [StatusOption(value="Renamed", label="Renamed", color="#333333")]
        refreshed = await cache.refresh(ORG_A, StatusDomain.TASK)

        assert [o.value for o in refreshed[StatusDomain.TASK].options] == ["Renamed"]
        assert len(loader.calls) == 2

    @pytest.mark.asyncio
    async def test_refresh_does_not_join_a_stale_inflight_fetch(self):
        loader = CountingLoader(delay=0.05)
        cache = StatusCache(loader, timeout=1.0)
        stale_read = asyncio.ensure_future(cache.get_options(ORG_A, StatusDomain.TASK))
        await asyncio.sleep(0.01)

        loader.options = [StatusOption(value="Fresh", label="Fresh", color="#444444")]
        refreshed = await cache.refresh(ORG_A, StatusDomain.TASK)
        stale = await stale_read

        assert len(loader.calls) == 2
        assert [o.value for o in refreshed[StatusDomain.TASK].options] == ["Fresh"]
        assert [o.value for o in stale.options] == ["Open", "Shipped"]
        assert cache.cached(ORG_A, StatusDomain.TASK) is refreshed[StatusDomain.TASK]

    @pytest.mark.asyncio
    async def test_refresh_without_domain_covers_all_domains(self):
        loader = CountingLoader()
        cache = StatusCache(loader, timeout=1.0)

        refreshed = await cache.refresh(ORG_A)

        assert set(refreshed) == set(StatusDomain)
        assert len(loader.calls) == 3

    @pytest.mark.asyncio
    async def test_clear_drops_every_entry(self):
        loader = CountingLoader()
        cache = StatusCache(loader, timeout=1.0)
        await cache.get_options(ORG_A, StatusDomain.TASK)

        cache.clear()

        assert cache.cached(ORG_A, StatusDomain.TASK) is None
        await cache.get_options(ORG_A, StatusDomain.TASK)
        assert len(loader.calls) == 2

    @pytest.mark.asyncio
    async def test_lookup_helpers(self):
        cache = StatusCache(CountingLoader(), timeout=1.0)

        assert await cache.get_display_name(ORG_A, StatusDomain.TASK, "Shipped") == "Shipped!"
        assert await cache.get_display_name(ORG_A, StatusDomain.TASK, "in_progress") == "in_progress"
        assert await cache.get_color(ORG_A, StatusDomain.TASK, "Open") == "#111111"
        assert await cache.get_color(ORG_A, StatusDomain.TASK, "unknown") == DEFAULT_STATUS_COLOR

    @pytest.mark.asyncio
    async def test_service_loader_reads_active_options(self, service):
        await service.initialize_defaults(ORG_A)
        cache = StatusCache(service_loader(service), timeout=1.0)

        options = await cache.get_options(ORG_A, StatusDomain.APPROVAL)

        assert options.get("draft").label == "Draft"
        assert options.is_fallback is False


# -----------------------------------------------------------------------------
# Test 2: Deduplication
# -----------------------------------------------------------------------------
class TestDeduplication:

    @pytest.mark.asyncio
    async def test_concurrent_misses_share_one_fetch(self):
        loader = CountingLoader(delay=0.05)
        cache = StatusCache(loader, timeout=1.0)

        results = await asyncio.gather(*[
            cache.get_options(ORG_A, StatusDomain.ACTIVITY) for _ in range(5)
        ])

        assert len(loader.calls) == 1
        assert all(r is results[0] for r in results)

    @pytest.mark.asyncio
    async def test_concurrent_fallbacks_share_one_fetch(self):
        loader = CountingLoader(error=StatusStoreUnavailable("down"), delay=0.05)
        cache = StatusCache(loader, timeout=1.0)

        results = await asyncio.gather(
            cache.get_options(ORG_A, StatusDomain.TASK),
            cache.get_options(ORG_A, StatusDomain.TASK),
        )

        assert len(loader.calls) == 1
        assert all(r.is_fallback for r in results)


# -----------------------------------------------------------------------------
# Test 3: Fallback
# -----------------------------------------------------------------------------
class TestFallback:

    @pytest.mark.asyncio
    async def test_not_configured_serves_defaults_uncached(self):
        loader = CountingLoader(error=NotConfigured(ORG_A, "activity"))
        cache = StatusCache(loader, timeout=1.0)

        options = await cache.get_options(ORG_A, StatusDomain.ACTIVITY)

        assert options.is_fallback is True
        assert options.defaults_version == default_payload_version()
        assert [o.value for o in options.options][:2] == ["Not Started", "Working on it"]
        assert cache.cached(ORG_A, StatusDomain.ACTIVITY) is None

    @pytest.mark.asyncio
    async def test_next_read_after_fallback_asks_again(self):
        loader = CountingLoader(error=StatusStoreUnavailable("down"))
        cache = StatusCache(loader, timeout=1.0)

        await cache.get_options(ORG_A, StatusDomain.TASK)
        loader.error = None
        recovered = await cache.get_options(ORG_A, StatusDomain.TASK)

        assert recovered.source == OptionSource.SERVER
        assert len(loader.calls) == 2

    @pytest.mark.asyncio
    async def test_slow_loader_times_out_to_defaults(self):
        loader = CountingLoader(delay=1.0)
        cache = StatusCache(loader, timeout=0.05)

        options = await cache.get_options(ORG_A, StatusDomain.APPROVAL)

        assert options.is_fallback is True
        assert options.get("submitted").label == "Submitted"

    @pytest.mark.asyncio
    async def test_empty_option_list_is_not_configured(self):
        cache = StatusCache(CountingLoader(options=[]), timeout=1.0)

        options = await cache.get_options(ORG_A, StatusDomain.TASK)

        assert options.is_fallback is True

    @pytest.mark.asyncio
    async def test_unexpected_loader_error_propagates(self):
        cache = StatusCache(CountingLoader(error=KeyError("name")), timeout=1.0)

        with pytest.raises(KeyError):
            await cache.get_options(ORG_A, StatusDomain.TASK)


# -----------------------------------------------------------------------------
# Test 4: HTTP Loader
# -----------------------------------------------------------------------------
class TestHttpStatusLoader:

    @pytest.mark.asyncio
    async def test_parses_active_list_and_sends_actor_headers(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["domain"] = request.url.params["domain"]
            seen["org"] = request.headers["X-Organization-Id"]
            return httpx.Response(200, json=[
                {"name": "Open", "display_name": "Open now", "color": "#abcdef"},
                {"name": "Closed", "display_name": None, "color": None},
            ])

        loader = HttpStatusLoader(base_url="http://status.test", transport=httpx.MockTransport(handler))
        options = await loader(ORG_A, StatusDomain.TASK)

        assert seen == {"path": "/status-configuration/active", "domain": "task", "org": ORG_A}
        assert options == [
            StatusOption(value="Open", label="Open now", color="#abcdef"),
            StatusOption(value="Closed", label="Closed", color=DEFAULT_STATUS_COLOR),
        ]

    @pytest.mark.asyncio
    async def test_not_configured_response_maps_to_not_configured(self):
        def handler(request):
            return httpx.Response(404, json={"detail": {"code": "NOT_CONFIGURED", "message": "none"}})

        loader = HttpStatusLoader(base_url="http://status.test", transport=httpx.MockTransport(handler))

        with pytest.raises(NotConfigured):
            await loader(ORG_A, StatusDomain.TASK)

    @pytest.mark.asyncio
    async def test_server_error_maps_to_unavailable(self):
        loader = HttpStatusLoader(
            base_url="http://status.test",
            transport=httpx.MockTransport(lambda request: httpx.Response(500, text="oops")),
        )

        with pytest.raises(StatusStoreUnavailable):
            await loader(ORG_A, StatusDomain.TASK)

    @pytest.mark.asyncio
    async def test_connection_failure_maps_to_unavailable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        loader = HttpStatusLoader(base_url="http://status.test", transport=httpx.MockTransport(handler))

        with pytest.raises(StatusStoreUnavailable):
            await loader(ORG_A, StatusDomain.TASK)

    @pytest.mark.asyncio
    async def test_reset_connection_falls_back_to_defaults(self):
        def handler(request):
            raise httpx.ReadError("connection reset by peer", request=request)

        loader = HttpStatusLoader(base_url="http://status.test", transport=httpx.MockTransport(handler))
        cache = StatusCache(loader, timeout=1.0)

        options = await cache.get_options(ORG_A, StatusDomain.ACTIVITY)

        assert options.is_fallback is True
        assert cache.cached(ORG_A, StatusDomain.ACTIVITY) is None

    @pytest.mark.asyncio
    async def test_non_json_body_falls_back_to_defaults(self):
        loader = HttpStatusLoader(
            base_url="http://status.test",
            transport=httpx.MockTransport(
                lambda request: httpx.Response(200, text="<html>proxy error</html>")
            ),
        )
        cache = StatusCache(loader, timeout=1.0)

        with pytest.raises(StatusStoreUnavailable):
            await loader(ORG_A, StatusDomain.TASK)
        options = await cache.get_options(ORG_A, StatusDomain.TASK)

        assert options.is_fallback is True

    @pytest.mark.asyncio
    async def test_malformed_items_map_to_unavailable(self):
        loader = HttpStatusLoader(
            base_url="http://status.test",
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json=[{"label": "x"}])),
        )

        with pytest.raises(StatusStoreUnavailable):
            await loader(ORG_A, StatusDomain.TASK)

    @pytest.mark.asyncio
    async def test_cache_over_http_against_the_router(self, service):
        await service.upsert(ORG_A, StatusDomain.TASK, StatusDraft(name="Triage", color="#101010"))
        app = FastAPI()
        app.include_router(router)
        app.dependency_overrides[get_service] = lambda: service

        loader = HttpStatusLoader(base_url="http://status.test", transport=httpx.ASGITransport(app=app))
        cache = StatusCache(loader, timeout=5.0)

        configured = await cache.get_options(ORG_A, StatusDomain.TASK)
        unconfigured = await cache.get_options(ORG_A, StatusDomain.ACTIVITY)

        assert [o.value for o in configured.options] == ["Triage"]
        assert configured.is_fallback is False
        assert unconfigured.is_fallback is True
