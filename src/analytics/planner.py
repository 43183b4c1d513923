"""
Planificador de Consultas

Convierte un AnalyticsRequest en consultas agregadas de SQLAlchemy Core.

Reglas:
- Los identificadores (tabla, columnas) salen solo del catálogo validado.
- Todos los valores (tenant, fechas, filtros) van como parámetros.
- WHERE = tenant AND ventana [start, end) AND filtros por defecto AND
  filtros del caller (el caller gana si repite una clave).
- Un filtro del caller sobre una columna que la métrica no conoce hace
  fallar solo esa métrica (UnsupportedFilterError).
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy import DateTime, Float, String, and_, cast, column, func, select, table
from sqlalchemy.sql import Select
from sqlalchemy.sql.expression import ColumnElement, TableClause

from config.constants import (
    Industry,
    MetricType,
    QueryPurpose,
)
from src.analytics.catalog import MetricCatalog
from src.analytics.expressions import parse_calculation
from src.analytics.models import AnalyticsRequest, MetricDefinition
from src.analytics.windows import (
    TimeWindow,
    aggregation_level_for,
    resolve_comparison_window,
    resolve_window,
)
from src.utils.errors import UnknownMetricError, UnsupportedFilterError
from src.utils.logger import get_logger
from src.utils.metrics import metric_failures

logger = get_logger(__name__)

VALUE_LABEL = "value"


@dataclass(frozen=True)
class PlannedQuery:
    """Consulta agregada lista para ejecutar por un DataSource."""
    metric: str
    definition: MetricDefinition
    tenant_id: str
    window: TimeWindow
    purpose: QueryPurpose
    group_by: Tuple[str, ...]
    statement: Select


@dataclass(frozen=True)
class MetricPlan:
    """Consultas de una métrica dentro de un reporte."""
    metric: str
    current: PlannedQuery
    previous: PlannedQuery
    comparison: Optional[PlannedQuery] = None

    def queries(self) -> List[PlannedQuery]:
        queries = [self.current, self.previous]
        if self.comparison is not None:
            queries.append(self.comparison)
        return queries


@dataclass(frozen=True)
class ReportPlan:
    tenant_id: str
    industry: Industry
    window: TimeWindow
    aggregation_level: str
    metrics: Tuple[MetricPlan, ...]
    comparison_window: Optional[TimeWindow] = None
    warnings: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def has_comparison(self) -> bool:
        return self.comparison_window is not None


class QueryPlanner:
    """
    Planificador de consultas por métrica.

    Uso:
        planner = QueryPlanner(catalog)
        plan = planner.plan_report("org-1", request, Industry.HOME_SERVICES, now)
    """

    def __init__(
        self,
        catalog: MetricCatalog,
        tenant_column: str = "business_id",
        timezone_aware: bool = False
    ):
        self.catalog = catalog
        self.tenant_column = tenant_column
        self.timezone_aware = timezone_aware

    # ------------------------------------------------------------------
    # Reporte completo
    # ------------------------------------------------------------------

    def plan_report(
        self,
        tenant_id: str,
        request: AnalyticsRequest,
        industry: Industry,
        now: datetime
    ) -> ReportPlan:
        """
        Planifica todas las métricas de un request.

        Las métricas desconocidas o con filtros no soportados se omiten
        y se reportan en `warnings`. Los errores de forma del request
        (rango custom sin límites, start >= end) se propagan.
        """
        window = resolve_window(request.time_range, request.start_date, request.end_date, now)
        previous_window = window.previous()
        comparison_window = None
        if request.compare_with is not None:
            comparison_window = resolve_comparison_window(
                request.compare_with.time_range,
                request.compare_with.start_date,
                request.compare_with.end_date,
                window,
            )

        plans: List[MetricPlan] = []
        warnings: List[str] = []
        seen = set()

        for key in request.metrics:
            if key in seen:
                continue
            seen.add(key)

            definition = self.catalog.resolve(industry, key)
            if definition is None:
                error = UnknownMetricError(key, industry.value)
                logger.warning(error.message)
                metric_failures.inc(labels={"reason": "unknown_metric"})
                warnings.append(f"Unknown metric '{key}' for industry '{industry.value}'")
                continue

            group_by, group_warning = self.resolve_group_by(definition, request.group_by)
            if group_warning:
                warnings.append(group_warning)

            try:
                current = self.plan_metric(
                    tenant_id, definition, window, QueryPurpose.CURRENT,
                    request.filters, group_by,
                )
            except UnsupportedFilterError as e:
                logger.warning(e.message)
                metric_failures.inc(labels={"reason": "unsupported_filter"})
                warnings.append(
                    f"Metric '{key}' dropped: unsupported filter on {', '.join(e.fields)}"
                )
                continue

            previous = self.plan_metric(
                tenant_id, definition, previous_window, QueryPurpose.PREVIOUS,
                request.filters, group_by,
            )
            comparison = None
            if comparison_window is not None:
                comparison = self.plan_metric(
                    tenant_id, definition, comparison_window, QueryPurpose.COMPARISON,
                    request.filters, group_by,
                )

            plans.append(MetricPlan(key, current, previous, comparison))

        return ReportPlan(
            tenant_id=tenant_id,
            industry=industry,
            window=window,
            aggregation_level=aggregation_level_for(request.time_range, window),
            metrics=tuple(plans),
            comparison_window=comparison_window,
            warnings=tuple(warnings),
        )

    def plan_series(
        self,
        tenant_id: str,
        definition: MetricDefinition,
        windows: Sequence[TimeWindow],
        group_by: Optional[Sequence[str]] = None
    ) -> List[PlannedQuery]:
        """Una consulta por ventana (historia para insights)."""
        resolved = definition.group_by if group_by is None else tuple(group_by)
        return [
            self.plan_metric(
                tenant_id, definition, w, QueryPurpose.HISTORY, {}, resolved
            )
            for w in windows
        ]

    # ------------------------------------------------------------------
    # Una métrica
    # ------------------------------------------------------------------

    @staticmethod
    def resolve_group_by(
        definition: MetricDefinition,
        override: Optional[Sequence[str]]
    ) -> Tuple[Tuple[str, ...], Optional[str]]:
        """
        Agrupación efectiva de una métrica.

        Returns:
            (columnas, advertencia). El override se ignora si alguna
            columna no es dimensión conocida de la métrica.
        """
        if override is None:
            return definition.group_by, None

        unknown = [g for g in override if g not in definition.groupable_columns]
        if unknown:
            return definition.group_by, (
                f"group_by {', '.join(unknown)} ignored for metric '{definition.key}'"
            )
        return tuple(dict.fromkeys(override)), None

    def plan_metric(
        self,
        tenant_id: str,
        definition: MetricDefinition,
        window: TimeWindow,
        purpose: QueryPurpose,
        filters: Optional[Mapping[str, Any]] = None,
        group_by: Tuple[str, ...] = ()
    ) -> PlannedQuery:
        """
        Construye la consulta de una métrica sobre una ventana.

        Raises:
            UnsupportedFilterError: Filtro del caller sobre columna desconocida
        """
        filters = dict(filters or {})
        unsupported = set(filters) - definition.filterable_columns
        if unsupported:
            raise UnsupportedFilterError(definition.key, unsupported)

        merged = {**definition.filters, **filters}
        source = self._table_for(definition, merged, group_by)
        time_col = source.c[definition.time_field]

        conditions = [
            source.c[self.tenant_column] == tenant_id,
            time_col >= self._bind_datetime(window.start),
            time_col < self._bind_datetime(window.end),
        ]
        for name, value in sorted(merged.items()):
            conditions.append(self._filter_condition(source.c[name], value))

        group_cols = [source.c[g] for g in group_by]
        value_expr = self._aggregate_expression(definition, source).label(VALUE_LABEL)

        statement = select(*group_cols, value_expr).select_from(source).where(and_(*conditions))
        if group_cols:
            statement = statement.group_by(*group_cols).order_by(*group_cols)

        return PlannedQuery(
            metric=definition.key,
            definition=definition,
            tenant_id=tenant_id,
            window=window,
            purpose=purpose,
            group_by=tuple(group_by),
            statement=statement,
        )

    def _table_for(
        self,
        definition: MetricDefinition,
        filters: Mapping[str, Any],
        group_by: Sequence[str]
    ) -> TableClause:
        names = {definition.field, *filters, *group_by, *definition.dimensions}
        for expression in definition.calculations.values():
            names |= parse_calculation(expression).columns()
        names -= {self.tenant_column, definition.time_field}

        columns = [
            column(self.tenant_column, String),
            column(definition.time_field, DateTime(timezone=self.timezone_aware)),
        ] + [column(name) for name in sorted(names)]

        schema, _, name = definition.table.rpartition(".")
        return table(name, *columns, schema=schema or None)

    def _bind_datetime(self, value: datetime) -> datetime:
        # Columnas "timestamp without time zone" guardan UTC sin zona
        if self.timezone_aware or value.tzinfo is None:
            return value
        return value.astimezone(timezone.utc).replace(tzinfo=None)

    @staticmethod
    def _filter_condition(col, value) -> ColumnElement:
        if value is None:
            return col.is_(None)
        if isinstance(value, (list, tuple)):
            return col.in_(list(value))
        return col == value

    @staticmethod
    def _aggregate_expression(definition: MetricDefinition, source: TableClause) -> ColumnElement:
        metric_type = definition.type
        target = source.c[definition.field]

        if metric_type in (MetricType.REVENUE, MetricType.SUM):
            return func.coalesce(func.sum(target), 0)
        if metric_type == MetricType.COUNT:
            return func.count(target)
        if metric_type in (MetricType.AVERAGE, MetricType.DURATION):
            return func.coalesce(func.avg(target), 0)

        # rate / percentage: numerador y denominador en orden de declaración
        numerator_text, denominator_text = list(definition.calculations.values())
        numerator = parse_calculation(numerator_text).to_sql(source)
        denominator = parse_calculation(denominator_text).to_sql(source)
        ratio = cast(numerator, Float) / func.nullif(denominator, 0)
        if metric_type == MetricType.PERCENTAGE:
            ratio = ratio * 100
        return func.coalesce(ratio, 0)
