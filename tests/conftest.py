"""
Pytest Configuration and Fixtures

Configuración global de pytest y fixtures compartidos.
"""

import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

import pytest

# Agregar el directorio raíz al path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from config.constants import Industry, QueryPurpose
from config.settings import Settings
from src.analytics.cache import InMemoryCacheBackend
from src.analytics.catalog import MetricCatalog
from src.analytics.engine import AnalyticsEngine
from src.utils.metrics import registry
from tests.fakes import FakeDataSource


# ============================================================================
# PYTEST CONFIGURATION
# ============================================================================

def pytest_configure(config):
    """Configuración de pytest."""
    # Establecer entorno de test
    os.environ["ENVIRONMENT"] = "development"
    os.environ["DATABASE_URL"] = "sqlite:///test_analytics.db"
    os.environ["LOG_LEVEL"] = "WARNING"


FIXED_NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


# ============================================================================
# CONFIG FIXTURES
# ============================================================================

@pytest.fixture
def fixed_now() -> datetime:
    """Instante fijo usado como reloj del motor."""
    return FIXED_NOW


@pytest.fixture
def clock(fixed_now) -> Callable[[], datetime]:
    return lambda: fixed_now


@pytest.fixture
def test_settings() -> Settings:
    """Settings aislados del entorno con timeouts cortos."""
    return Settings(
        _env_file=None,
        ANALYTICS_DEFAULT_INDUSTRY=Industry.HOME_SERVICES,
        ANALYTICS_QUERY_TIMEOUT_SECONDS=0.5,
        ANALYTICS_MAX_CONCURRENT_QUERIES=4,
        ANALYTICS_CACHE_TTL_SECONDS=300,
        LOG_LEVEL="WARNING",
    )


@pytest.fixture
def catalog() -> MetricCatalog:
    """Catálogo incluido."""
    return MetricCatalog.builtin()


# ============================================================================
# ENGINE FIXTURES
# ============================================================================

@pytest.fixture
def fake_data_source() -> FakeDataSource:
    return FakeDataSource()


@pytest.fixture
def memory_cache() -> InMemoryCacheBackend:
    return InMemoryCacheBackend(max_entries=100)


@pytest.fixture
def make_engine(test_settings, memory_cache, catalog, clock):
    """
    Construye un AnalyticsEngine con fakes.

    Uso:
        engine = make_engine(FakeDataSource({"totalRevenue": 100}))
    """
    def _make(data_source=None, cache_backend=None, **kwargs) -> AnalyticsEngine:
        kwargs.setdefault("catalog", catalog)
        kwargs.setdefault("config", test_settings)
        kwargs.setdefault("clock", clock)
        return AnalyticsEngine(
            data_source if data_source is not None else FakeDataSource(),
            cache_backend if cache_backend is not None else memory_cache,
            **kwargs
        )

    return _make


@pytest.fixture
def hs_data_source() -> FakeDataSource:
    """Datos del escenario org-1 / home services."""
    return FakeDataSource({
        ("totalRevenue", QueryPurpose.CURRENT): 50000,
        ("totalRevenue", QueryPurpose.PREVIOUS): 40000,
        ("activeCustomers", QueryPurpose.CURRENT): 120,
        ("activeCustomers", QueryPurpose.PREVIOUS): 120,
    })


# ============================================================================
# CLEANUP FIXTURES
# ============================================================================

@pytest.fixture(autouse=True)
def reset_metrics():
    """Resetea los contadores de instrumentación entre tests."""
    registry.reset()
    yield
    registry.reset()
