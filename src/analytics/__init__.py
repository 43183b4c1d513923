"""
Analytics Module

Motor de agregación de analytics multi-tenant.

Componentes:
- Catalog: Registro cerrado de métricas por industria
- Planner: Consultas agregadas parametrizadas por ventana de tiempo
- Aggregators: Ejecución concurrente, resumen, tendencias y comparaciones
- Cache: Memoización de reportes por tenant + request canónico
- Insights: Scans heurísticos sobre el historial de métricas
- Templates: Dashboards de inicio por industria

Uso:
    from src.analytics import AnalyticsEngine, InMemoryCacheBackend

    engine = AnalyticsEngine(data_source, InMemoryCacheBackend())
    result = await engine.generate_report("org-1", {"metrics": ["totalRevenue"]})
"""

from src.analytics.models import (
    MetricDefinition,
    AnalyticsRequest,
    ComparisonPeriod,
    AnalyticsResult,
    MetricRow,
    TrendStat,
    ComparisonStat,
    ResultMetadata,
    Insight,
    Dashboard,
    DashboardWidget,
    WidgetPosition,
)

from src.analytics.protocols import (
    DataSource,
    CacheBackend,
    Clock,
)

from src.analytics.catalog import (
    MetricCatalog,
    MetricDefinitionSchema,
    BUILTIN_METRICS,
    load_catalog,
)

from src.analytics.windows import (
    TimeWindow,
    resolve_window,
    resolve_comparison_window,
    aggregation_level_for,
)

from src.analytics.planner import (
    QueryPlanner,
    PlannedQuery,
    MetricPlan,
    ReportPlan,
)

from src.analytics.aggregators import (
    ResultAggregator,
    compute_change,
)

from src.analytics.cache import (
    InMemoryCacheBackend,
    ReportCache,
    build_cache_key,
)

from src.analytics.insights import (
    InsightGenerator,
    InsightThresholds,
)

from src.analytics.templates import (
    DASHBOARD_TEMPLATES,
    get_dashboard_templates,
)

from src.analytics.engine import AnalyticsEngine

__all__ = [
    # Models
    "MetricDefinition",
    "AnalyticsRequest",
    "ComparisonPeriod",
    "AnalyticsResult",
    "MetricRow",
    "TrendStat",
    "ComparisonStat",
    "ResultMetadata",
    "Insight",
    "Dashboard",
    "DashboardWidget",
    "WidgetPosition",
    # Protocols
    "DataSource",
    "CacheBackend",
    "Clock",
    # Catalog
    "MetricCatalog",
    "MetricDefinitionSchema",
    "BUILTIN_METRICS",
    "load_catalog",
    # Windows
    "TimeWindow",
    "resolve_window",
    "resolve_comparison_window",
    "aggregation_level_for",
    # Planner
    "QueryPlanner",
    "PlannedQuery",
    "MetricPlan",
    "ReportPlan",
    # Aggregators
    "ResultAggregator",
    "compute_change",
    # Cache
    "InMemoryCacheBackend",
    "ReportCache",
    "build_cache_key",
    # Insights
    "InsightGenerator",
    "InsightThresholds",
    # Templates
    "DASHBOARD_TEMPLATES",
    "get_dashboard_templates",
    # Engine
    "AnalyticsEngine",
]
