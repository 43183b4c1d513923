"""
Tests para el planificador de consultas.
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.dialects.postgresql import asyncpg as pg_asyncpg

from config.constants import Industry, MetricType, QueryPurpose, TimeRange
from src.analytics.models import AnalyticsRequest
from src.analytics.planner import QueryPlanner
from src.analytics.windows import TimeWindow
from src.utils.errors import InvalidRequestError, UnsupportedFilterError
from src.utils.metrics import metric_failures
from tests.factories import (
    AnalyticsRequestFactory,
    ComparisonPeriodFactory,
    MetricDefinitionFactory,
)

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)
WINDOW = TimeWindow(NOW - timedelta(days=30), NOW)


@pytest.fixture
def planner(catalog):
    return QueryPlanner(catalog)


def compile_query(query, dialect=None):
    compiled = query.statement.compile(dialect=dialect or sqlite.dialect())
    return str(compiled), compiled.params


class TestPlanMetric:
    """Tests para plan_metric."""

    def test_revenue_query(self, planner):
        """Verifica SUM con tenant, ventana y filtro por defecto parametrizados."""
        definition = MetricDefinitionFactory(key="totalRevenue", table="hs.work_orders")
        query = planner.plan_metric("org-1", definition, WINDOW, QueryPurpose.CURRENT)

        sql, params = compile_query(query)

        assert "coalesce(sum(hs.work_orders.total)" in sql
        assert "FROM hs.work_orders" in sql
        assert "hs.work_orders.business_id = ?" in sql
        assert "hs.work_orders.created_at >= ?" in sql
        assert "hs.work_orders.created_at < ?" in sql
        assert "org-1" not in sql
        assert "completed" not in sql
        assert "org-1" in params.values()
        assert "completed" in params.values()

    def test_tenant_value_is_never_interpolated(self, planner):
        """Un tenant malicioso viaja como parámetro."""
        definition = MetricDefinitionFactory()
        tenant = "org-1' OR '1'='1"
        query = planner.plan_metric(tenant, definition, WINDOW, QueryPurpose.CURRENT)

        sql, params = compile_query(query)

        assert "OR '1'='1" not in sql
        assert tenant in params.values()

    @pytest.mark.parametrize("metric_type,fragment", [
        (MetricType.COUNT, "count(work_orders.total)"),
        (MetricType.AVERAGE, "coalesce(avg(work_orders.total)"),
        (MetricType.DURATION, "coalesce(avg(work_orders.total)"),
        (MetricType.SUM, "coalesce(sum(work_orders.total)"),
    ])
    def test_aggregate_by_type(self, planner, metric_type, fragment):
        definition = MetricDefinitionFactory(type=metric_type)
        sql, _ = compile_query(planner.plan_metric("org-1", definition, WINDOW, QueryPurpose.CURRENT))

        assert fragment in sql

    def test_rate_uses_calculations(self, planner):
        """Verifica numerador / NULLIF(denominador, 0)."""
        definition = MetricDefinitionFactory(
            type=MetricType.RATE,
            table="products",
            field="stock_quantity",
            filters={},
            dimensions=(),
            calculations={
                "cost_of_goods_sold": "SUM(cost_price * quantity_sold)",
                "avg_inventory": "AVG(stock_quantity * cost_price)",
            },
        )
        sql, _ = compile_query(planner.plan_metric("org-1", definition, WINDOW, QueryPurpose.CURRENT))

        assert "sum(products.cost_price * products.quantity_sold)" in sql
        assert "nullif(avg(products.stock_quantity * products.cost_price)" in sql

    def test_percentage_multiplies_by_100(self, planner):
        definition = MetricDefinitionFactory(
            type=MetricType.PERCENTAGE,
            calculations={"done": "SUM(completed_flag)", "all": "COUNT(id)"},
        )
        sql, params = compile_query(planner.plan_metric("org-1", definition, WINDOW, QueryPurpose.CURRENT))

        assert "count(work_orders.id)" in sql
        assert 100 in params.values()

    def test_caller_filter_overrides_default(self, planner):
        definition = MetricDefinitionFactory()
        query = planner.plan_metric(
            "org-1", definition, WINDOW, QueryPurpose.CURRENT, filters={"status": "pending"}
        )
        _, params = compile_query(query)

        assert "pending" in params.values()
        assert "completed" not in params.values()

    def test_list_and_null_filters(self, planner):
        definition = MetricDefinitionFactory()
        query = planner.plan_metric(
            "org-1", definition, WINDOW, QueryPurpose.CURRENT,
            filters={"service_type": ["plumbing", "hvac"], "technician_id": None},
        )
        sql, _ = compile_query(query)

        assert "work_orders.service_type IN" in sql
        assert "work_orders.technician_id IS NULL" in sql

    def test_unsupported_filter(self, planner):
        """Un filtro sobre columna desconocida falla solo esa métrica."""
        definition = MetricDefinitionFactory()

        with pytest.raises(UnsupportedFilterError) as exc_info:
            planner.plan_metric(
                "org-1", definition, WINDOW, QueryPurpose.CURRENT,
                filters={"password": "x", "zone": "north"},
            )

        assert exc_info.value.fields == ["password", "zone"]

    def test_group_by_columns(self, planner):
        definition = MetricDefinitionFactory(group_by=("service_type",))
        query = planner.plan_metric(
            "org-1", definition, WINDOW, QueryPurpose.CURRENT, group_by=("service_type",)
        )
        sql, _ = compile_query(query)

        assert "GROUP BY work_orders.service_type" in sql
        assert query.group_by == ("service_type",)

    def test_postgres_dialect(self, planner):
        definition = MetricDefinitionFactory()
        sql, _ = compile_query(
            planner.plan_metric("org-1", definition, WINDOW, QueryPurpose.CURRENT),
            postgresql.dialect(),
        )

        assert "%(business_id_1)s" in sql or "business_id = %(" in sql

    def test_custom_tenant_column(self, catalog):
        planner = QueryPlanner(catalog, tenant_column="organization_id")
        sql, _ = compile_query(
            planner.plan_metric("org-1", MetricDefinitionFactory(), WINDOW, QueryPurpose.CURRENT)
        )

        assert "work_orders.organization_id = ?" in sql

    def test_time_bounds_bind_as_naive_utc(self, planner):
        """Columnas timestamp sin zona: asyncpg recibe UTC sin tzinfo."""
        definition = MetricDefinitionFactory()
        _, params = compile_query(
            planner.plan_metric("org-1", definition, WINDOW, QueryPurpose.CURRENT),
            pg_asyncpg.dialect(),
        )

        bounds = [value for value in params.values() if isinstance(value, datetime)]
        assert bounds == [datetime(2024, 5, 16, 12, 0), datetime(2024, 6, 15, 12, 0)]

    def test_non_utc_bounds_are_converted(self, planner):
        bogota = timezone(timedelta(hours=-5))
        window = TimeWindow(
            datetime(2024, 6, 1, tzinfo=bogota),
            datetime(2024, 6, 2, tzinfo=bogota),
        )
        _, params = compile_query(
            planner.plan_metric("org-1", MetricDefinitionFactory(), window, QueryPurpose.CURRENT),
            pg_asyncpg.dialect(),
        )

        bounds = [value for value in params.values() if isinstance(value, datetime)]
        assert bounds == [datetime(2024, 6, 1, 5, 0), datetime(2024, 6, 2, 5, 0)]

    def test_timezone_aware_columns_keep_tzinfo(self, catalog):
        planner = QueryPlanner(catalog, timezone_aware=True)
        _, params = compile_query(
            planner.plan_metric("org-1", MetricDefinitionFactory(), WINDOW, QueryPurpose.CURRENT),
            pg_asyncpg.dialect(),
        )

        bounds = [value for value in params.values() if isinstance(value, datetime)]
        assert bounds == [WINDOW.start, WINDOW.end]
        assert all(value.tzinfo is not None for value in bounds)


class TestResolveGroupBy:
    """Tests para resolve_group_by."""

    def test_default_is_definition_group_by(self):
        definition = MetricDefinitionFactory(group_by=("service_type",))
        assert QueryPlanner.resolve_group_by(definition, None) == (("service_type",), None)

    def test_override_with_dimension(self):
        definition = MetricDefinitionFactory()
        columns, warning = QueryPlanner.resolve_group_by(definition, ["technician_id"])

        assert columns == ("technician_id",)
        assert warning is None

    def test_unknown_override_is_ignored(self):
        definition = MetricDefinitionFactory(key="totalRevenue")
        columns, warning = QueryPlanner.resolve_group_by(definition, ["customer_email"])

        assert columns == ()
        assert "customer_email" in warning
        assert "totalRevenue" in warning


class TestPlanReport:
    """Tests para plan_report."""

    def test_plans_current_and_previous(self, planner):
        request = AnalyticsRequestFactory()
        plan = planner.plan_report("org-1", request, Industry.HOME_SERVICES, NOW)

        assert [m.metric for m in plan.metrics] == ["totalRevenue", "activeCustomers"]
        for metric_plan in plan.metrics:
            assert metric_plan.current.purpose == QueryPurpose.CURRENT
            assert metric_plan.previous.window == plan.window.previous()
            assert metric_plan.comparison is None
        assert plan.window.end == NOW
        assert plan.aggregation_level == "day"
        assert not plan.has_comparison

    def test_unknown_metric_is_dropped_with_warning(self, planner):
        request = AnalyticsRequestFactory(metrics=["totalRevenue", "doesNotExist"])
        plan = planner.plan_report("org-1", request, Industry.HOME_SERVICES, NOW)

        assert [m.metric for m in plan.metrics] == ["totalRevenue"]
        assert plan.warnings == ("Unknown metric 'doesNotExist' for industry 'hs'",)
        assert metric_failures.get({"reason": "unknown_metric"}) == 1

    def test_duplicates_are_planned_once(self, planner):
        request = AnalyticsRequestFactory(metrics=["totalRevenue", "totalRevenue"])
        plan = planner.plan_report("org-1", request, Industry.HOME_SERVICES, NOW)

        assert len(plan.metrics) == 1

    def test_unsupported_filter_drops_metric(self, planner):
        """activeCustomers no conoce service_type; totalRevenue sí."""
        request = AnalyticsRequestFactory(filters={"service_type": "hvac"})
        plan = planner.plan_report("org-1", request, Industry.HOME_SERVICES, NOW)

        assert [m.metric for m in plan.metrics] == ["totalRevenue"]
        assert "activeCustomers" in plan.warnings[0]
        assert metric_failures.get({"reason": "unsupported_filter"}) == 1

    def test_comparison_plans(self, planner):
        request = AnalyticsRequestFactory(compared=True)
        plan = planner.plan_report("org-1", request, Industry.HOME_SERVICES, NOW)

        assert plan.has_comparison
        assert plan.comparison_window.end == plan.window.start
        for metric_plan in plan.metrics:
            assert metric_plan.comparison.purpose == QueryPurpose.COMPARISON
            assert len(metric_plan.queries()) == 3

    def test_comparison_with_explicit_dates(self, planner):
        period = ComparisonPeriodFactory(
            time_range=TimeRange.CUSTOM,
            start_date=datetime(2023, 5, 1, tzinfo=timezone.utc),
            end_date=datetime(2023, 6, 1, tzinfo=timezone.utc),
        )
        request = AnalyticsRequestFactory(compare_with=period)
        plan = planner.plan_report("org-1", request, Industry.HOME_SERVICES, NOW)

        assert plan.comparison_window.start == datetime(2023, 5, 1, tzinfo=timezone.utc)

    def test_group_by_warning(self, planner):
        request = AnalyticsRequestFactory(metrics=["totalRevenue"], group_by=["nope"])
        plan = planner.plan_report("org-1", request, Industry.HOME_SERVICES, NOW)

        assert plan.metrics[0].current.group_by == ()
        assert any("group_by nope ignored" in w for w in plan.warnings)

    def test_custom_range_without_bounds_is_rejected(self, planner):
        """Un request construido sin validar igual se rechaza al planificar."""
        request = AnalyticsRequest.model_construct(
            metrics=["totalRevenue"], time_range=TimeRange.CUSTOM
        )

        with pytest.raises(InvalidRequestError):
            planner.plan_report("org-1", request, Industry.HOME_SERVICES, NOW)

    def test_plan_series(self, planner, catalog):
        definition = catalog.resolve(Industry.HOME_SERVICES, "totalRevenue")
        windows = [WINDOW.previous(), WINDOW]

        queries = planner.plan_series("org-1", definition, windows)

        assert [q.window for q in queries] == windows
        assert all(q.purpose == QueryPurpose.HISTORY for q in queries)
