"""
Tests para la capa de cache de reportes.
"""

from datetime import datetime, timezone

import pytest

from config.constants import Industry
from src.analytics.cache import (
    InMemoryCacheBackend,
    ReportCache,
    build_cache_key,
    canonical_request,
)
from src.analytics.models import AnalyticsRequest, AnalyticsResult, ResultMetadata
from src.utils.metrics import cache_errors
from tests.factories import AnalyticsRequestFactory
from tests.fakes import BrokenCacheBackend

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Reloj monotónico controlable."""

    def __init__(self, value: float = 1000.0):
        self.value = value

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


def make_result(**summary) -> AnalyticsResult:
    return AnalyticsResult(
        data=(),
        summary=dict(summary),
        trends={},
        metadata=ResultMetadata(
            total_rows=0,
            aggregation_level="day",
            generated_at=NOW,
            window_start=NOW,
            window_end=NOW,
        ),
    )


# ============================================================================
# TESTS: llaves
# ============================================================================

class TestCacheKey:
    """Tests para build_cache_key."""

    def test_format(self):
        key = build_cache_key("org-1", AnalyticsRequestFactory(), Industry.HOME_SERVICES)

        prefix, tenant, digest = key.split(":")
        assert prefix == "analytics"
        assert tenant == "org-1"
        assert len(digest) == 64

    def test_stable_under_field_reordering(self):
        """El orden de los campos y de los filtros no cambia la llave."""
        first = AnalyticsRequest.model_validate({
            "industry": "hs",
            "metrics": ["totalRevenue"],
            "timeRange": "week",
            "filters": {"status": "completed", "service_type": "hvac"},
        })
        second = AnalyticsRequest.model_validate({
            "filters": {"service_type": "hvac", "status": "completed"},
            "time_range": "week",
            "metrics": ["totalRevenue"],
            "industry": "hs",
        })

        assert build_cache_key("org-1", first, Industry.HOME_SERVICES) == \
            build_cache_key("org-1", second, Industry.HOME_SERVICES)

    def test_tenant_is_part_of_key(self):
        request = AnalyticsRequestFactory()

        assert build_cache_key("org-1", request, Industry.HOME_SERVICES) != \
            build_cache_key("org-2", request, Industry.HOME_SERVICES)

    def test_request_tenant_is_not_part_of_key(self):
        with_tenant = AnalyticsRequest.model_validate({"tenant": "org-1", "metrics": ["totalRevenue"]})
        without_tenant = AnalyticsRequest.model_validate({"metrics": ["totalRevenue"]})

        assert with_tenant.tenant_id == "org-1"
        assert build_cache_key("org-1", with_tenant, Industry.HOME_SERVICES) == \
            build_cache_key("org-1", without_tenant, Industry.HOME_SERVICES)

    def test_content_changes_key(self):
        base = AnalyticsRequestFactory()
        other = AnalyticsRequestFactory(time_range="week")

        assert build_cache_key("org-1", base, Industry.HOME_SERVICES) != \
            build_cache_key("org-1", other, Industry.HOME_SERVICES)

    def test_default_industry_resolves_to_same_key(self):
        """Omitir la industria equivale a pedir la industria por defecto."""
        explicit = AnalyticsRequestFactory(industry=Industry.HOME_SERVICES)
        implicit = AnalyticsRequestFactory(industry=None)

        assert canonical_request(explicit, Industry.HOME_SERVICES) == \
            canonical_request(implicit, Industry.HOME_SERVICES)


# ============================================================================
# TESTS: InMemoryCacheBackend
# ============================================================================

class TestInMemoryCacheBackend:
    """Tests para el backend en memoria."""

    @pytest.mark.asyncio
    async def test_set_and_get(self):
        backend = InMemoryCacheBackend()
        await backend.set("k", "v", 60, "org-1")

        assert await backend.get("k", "org-1") == "v"

    @pytest.mark.asyncio
    async def test_tenant_isolation(self):
        backend = InMemoryCacheBackend()
        await backend.set("k", "v", 60, "org-1")

        assert await backend.get("k", "org-2") is None

    @pytest.mark.asyncio
    async def test_expiration(self):
        clock = FakeClock()
        backend = InMemoryCacheBackend(time_func=clock)
        await backend.set("k", "v", 60, "org-1")

        clock.advance(59)
        assert await backend.get("k", "org-1") == "v"

        clock.advance(1)
        assert await backend.get("k", "org-1") is None
        assert len(backend) == 0

    @pytest.mark.asyncio
    async def test_eviction_prefers_expired(self):
        clock = FakeClock()
        backend = InMemoryCacheBackend(max_entries=2, time_func=clock)
        await backend.set("old", 1, 10, "org-1")
        await backend.set("short", 2, 1, "org-1")
        clock.advance(2)

        await backend.set("new", 3, 10, "org-1")

        assert await backend.get("old", "org-1") == 1
        assert await backend.get("new", "org-1") == 3
        assert len(backend) == 2

    @pytest.mark.asyncio
    async def test_eviction_drops_oldest(self):
        backend = InMemoryCacheBackend(max_entries=2)
        for key in ("a", "b", "c"):
            await backend.set(key, key, 60, "org-1")

        assert await backend.get("a", "org-1") is None
        assert await backend.get("c", "org-1") == "c"

    @pytest.mark.asyncio
    async def test_invalidate_tags(self):
        backend = InMemoryCacheBackend()
        await backend.set("a", 1, 60, "org-1", tags=["analytics", "industry:hs"])
        await backend.set("b", 2, 60, "org-1", tags=["analytics", "industry:rest"])
        await backend.set("c", 3, 60, "org-2", tags=["analytics", "industry:hs"])

        removed = await backend.invalidate_tags("org-1", ["industry:hs"])

        assert removed == 1
        assert await backend.get("a", "org-1") is None
        assert await backend.get("b", "org-1") == 2
        assert await backend.get("c", "org-2") == 3

    @pytest.mark.asyncio
    async def test_clear(self):
        backend = InMemoryCacheBackend()
        await backend.set("a", 1, 60, "org-1")
        await backend.clear()

        assert len(backend) == 0


# ============================================================================
# TESTS: ReportCache
# ============================================================================

class TestReportCache:
    """Tests para ReportCache."""

    @pytest.mark.asyncio
    async def test_hit_is_marked_cached(self):
        cache = ReportCache(InMemoryCacheBackend())
        await cache.set("org-1", "k", make_result(totalRevenue=10.0), Industry.HOME_SERVICES)

        hit = await cache.get("org-1", "k")

        assert hit.summary == {"totalRevenue": 10.0}
        assert hit.metadata.cached is True
        assert hit.metadata.took_ms >= 0

    @pytest.mark.asyncio
    async def test_stored_copy_is_isolated(self):
        """Mutar el resultado devuelto no altera lo cacheado."""
        cache = ReportCache(InMemoryCacheBackend())
        original = make_result(totalRevenue=10.0)
        await cache.set("org-1", "k", original, Industry.HOME_SERVICES)

        first = await cache.get("org-1", "k")
        first.summary["totalRevenue"] = -1
        original.summary["totalRevenue"] = -2

        second = await cache.get("org-1", "k")
        assert second.summary == {"totalRevenue": 10.0}

    @pytest.mark.asyncio
    async def test_miss(self):
        cache = ReportCache(InMemoryCacheBackend())
        assert await cache.get("org-1", "missing") is None

    @pytest.mark.asyncio
    async def test_disabled(self):
        backend = InMemoryCacheBackend()
        cache = ReportCache(backend, enabled=False)
        await cache.set("org-1", "k", make_result(), Industry.HOME_SERVICES)

        assert len(backend) == 0
        assert await cache.get("org-1", "k") is None

    @pytest.mark.asyncio
    async def test_backend_failures_are_misses(self):
        """Un backend caído nunca rompe el reporte."""
        backend = BrokenCacheBackend()
        cache = ReportCache(backend)

        assert await cache.get("org-1", "k") is None
        await cache.set("org-1", "k", make_result(), Industry.HOME_SERVICES)
        assert await cache.invalidate("org-1") == 0

        assert backend.calls == 3
        assert cache_errors.get({"operation": "get"}) == 1
        assert cache_errors.get({"operation": "set"}) == 1

    @pytest.mark.asyncio
    async def test_invalidate_defaults_to_all_reports(self):
        backend = InMemoryCacheBackend()
        cache = ReportCache(backend)
        await cache.set("org-1", "a", make_result(), Industry.HOME_SERVICES)
        await cache.set("org-1", "b", make_result(), Industry.RESTAURANT)

        assert await cache.invalidate("org-1") == 2
        assert len(backend) == 0

    @pytest.mark.asyncio
    async def test_ttl_is_passed_to_backend(self):
        clock = FakeClock()
        cache = ReportCache(InMemoryCacheBackend(time_func=clock), ttl_seconds=30)
        await cache.set("org-1", "k", make_result(), Industry.HOME_SERVICES)

        clock.advance(31)

        assert await cache.get("org-1", "k") is None
