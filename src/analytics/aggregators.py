"""
Agregador de Resultados

Ejecuta las consultas planificadas y arma el AnalyticsResult:
- Ejecución concurrente por métrica, acotada por un semáforo
- Timeout por métrica: una consulta lenta no bloquea el reporte
- Fallo aislado: la métrica que falla se omite y queda como advertencia
- Resumen (segunda reducción sobre las filas), tendencias y comparaciones
"""

import asyncio
import dataclasses
import math
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from config.constants import TrendDirection
from src.analytics.models import (
    AnalyticsResult,
    ComparisonStat,
    MetricRow,
    ResultMetadata,
    TrendStat,
)
from src.analytics.planner import MetricPlan, PlannedQuery, ReportPlan, VALUE_LABEL
from src.analytics.protocols import Clock, DataSource
from src.analytics.windows import utc_now
from src.utils.errors import AnalyticsError, QueryTimeoutError, wrap_query_error
from src.utils.logger import get_logger, log_exception
from src.utils.metrics import Timer, metric_failures

logger = get_logger(__name__)


# ============================================================================
# ESTADÍSTICAS
# ============================================================================

def to_number(value: Any) -> float:
    """Normaliza el valor de una fila (None, Decimal, int) a float finito."""
    if value is None:
        return 0.0
    if isinstance(value, Decimal):
        value = float(value)
    number = float(value)
    if not math.isfinite(number):
        return 0.0
    return number


def compute_change(
    current: float,
    previous: float,
    stable_band_pct: float = 2.0
) -> Tuple[float, TrendDirection, bool]:
    """
    Variación porcentual y dirección.

    change = (current - previous) / |previous| * 100, redondeado a 2 decimales.
    Con previous == 0 el cambio es 0.0 y la dirección "stable"; el tercer
    valor (baseline_zero) indica que current != 0 sobre base cero.

    Returns:
        (change_pct, direction, baseline_zero)
    """
    if previous == 0:
        return 0.0, TrendDirection.STABLE, current != 0

    change = round((current - previous) / abs(previous) * 100, 2)
    if change > stable_band_pct:
        direction = TrendDirection.UP
    elif change < -stable_band_pct:
        direction = TrendDirection.DOWN
    else:
        direction = TrendDirection.STABLE
    return change, direction, False


@dataclass(frozen=True)
class MetricOutcome:
    """Filas obtenidas para una métrica en cada ventana."""
    metric: str
    current: List[MetricRow]
    previous: List[MetricRow]
    comparison: Optional[List[MetricRow]] = None


# ============================================================================
# AGREGADOR
# ============================================================================

class ResultAggregator:
    """
    Ejecuta reportes planificados contra un DataSource.

    Uso:
        aggregator = ResultAggregator(data_source, max_concurrency=8, timeout_seconds=10)
        result = await aggregator.aggregate(plan)
    """

    def __init__(
        self,
        data_source: DataSource,
        max_concurrency: int = 8,
        timeout_seconds: float = 10.0,
        stable_band_pct: float = 2.0,
        clock: Optional[Clock] = None
    ):
        self.data_source = data_source
        self.max_concurrency = max_concurrency
        self.timeout_seconds = timeout_seconds
        self.stable_band_pct = stable_band_pct
        self._clock = clock or utc_now

    # ------------------------------------------------------------------
    # Ejecución
    # ------------------------------------------------------------------

    async def execute(self, query: PlannedQuery) -> List[MetricRow]:
        """
        Ejecuta una consulta y convierte sus filas.

        Raises:
            QueryExecutionError: Si el data source falla
        """
        try:
            raw_rows = await self.data_source.execute_query(query.tenant_id, query)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise wrap_query_error(
                e, query.metric, tenant_id=query.tenant_id, operation=query.purpose.value
            ) from e
        return [self._to_row(query, row) for row in raw_rows]

    async def execute_with_timeout(self, query: PlannedQuery) -> List[MetricRow]:
        try:
            return await asyncio.wait_for(self.execute(query), self.timeout_seconds)
        except asyncio.TimeoutError as e:
            raise QueryTimeoutError(query.metric, self.timeout_seconds) from e

    async def execute_series(self, queries: Sequence[PlannedQuery]) -> List[float]:
        """
        Evalúa una métrica sobre varias ventanas.

        Returns:
            Total de cada ventana, en el orden de `queries`

        Raises:
            QueryExecutionError: Si alguna ventana falla o excede el timeout
        """
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def run(query: PlannedQuery) -> float:
            async with semaphore:
                rows = await self.execute_with_timeout(query)
            return sum(row.value for row in rows)

        return list(await asyncio.gather(*(run(q) for q in queries)))

    async def aggregate(self, plan: ReportPlan) -> AnalyticsResult:
        """
        Ejecuta todas las métricas del plan y arma el resultado.

        Nunca lanza por fallos de una métrica: la métrica se omite y
        se agrega una advertencia.
        """
        semaphore = asyncio.Semaphore(self.max_concurrency)
        warnings = list(plan.warnings)

        with Timer() as timer:
            outcomes = await asyncio.gather(
                *(self._run_metric(metric_plan, semaphore) for metric_plan in plan.metrics),
                return_exceptions=True,
            )

            successful: List[MetricOutcome] = []
            for metric_plan, outcome in zip(plan.metrics, outcomes):
                if isinstance(outcome, MetricOutcome):
                    successful.append(outcome)
                    continue
                if not isinstance(outcome, Exception):
                    raise outcome
                warnings.append(self._record_failure(metric_plan.metric, outcome))

            result = self._build_result(plan, successful, warnings)

        return dataclasses.replace(
            result,
            metadata=dataclasses.replace(result.metadata, took_ms=timer.elapsed_ms),
        )

    async def _run_metric(
        self,
        metric_plan: MetricPlan,
        semaphore: asyncio.Semaphore
    ) -> MetricOutcome:
        async def run_query(query: PlannedQuery) -> List[MetricRow]:
            async with semaphore:
                return await self.execute(query)

        async def run_all() -> MetricOutcome:
            results = await asyncio.gather(*(run_query(q) for q in metric_plan.queries()))
            return MetricOutcome(
                metric=metric_plan.metric,
                current=results[0],
                previous=results[1],
                comparison=results[2] if metric_plan.comparison is not None else None,
            )

        try:
            return await asyncio.wait_for(run_all(), self.timeout_seconds)
        except asyncio.TimeoutError as e:
            raise QueryTimeoutError(metric_plan.metric, self.timeout_seconds) from e

    def _record_failure(self, metric: str, error: Exception) -> str:
        if isinstance(error, QueryTimeoutError):
            reason = "timeout"
            logger.warning(error.message)
        elif isinstance(error, AnalyticsError):
            reason = "query_error"
            logger.warning(f"Métrica {metric} omitida: {error.message}")
        else:
            reason = "internal_error"
            log_exception(logger, f"Error inesperado calculando {metric}", error)

        metric_failures.inc(labels={"reason": reason})
        return f"Metric '{metric}' failed ({reason}) and was omitted"

    # ------------------------------------------------------------------
    # Armado del resultado
    # ------------------------------------------------------------------

    @staticmethod
    def _to_row(query: PlannedQuery, raw: Mapping[str, Any]) -> MetricRow:
        group = {name: raw.get(name) for name in query.group_by} if query.group_by else None
        return MetricRow(metric=query.metric, value=to_number(raw.get(VALUE_LABEL)), group=group)

    def _build_result(
        self,
        plan: ReportPlan,
        outcomes: List[MetricOutcome],
        warnings: List[str]
    ) -> AnalyticsResult:
        data: List[MetricRow] = []
        summary: Dict[str, float] = {}
        trends: Dict[str, TrendStat] = {}
        comparisons: Optional[Dict[str, ComparisonStat]] = {} if plan.has_comparison else None

        for outcome in outcomes:
            data.extend(outcome.current)

            # Segunda reducción sobre las filas (agrupadas o no)
            current = sum(row.value for row in outcome.current)
            previous = sum(row.value for row in outcome.previous)
            summary[outcome.metric] = current

            change, direction, baseline_zero = compute_change(
                current, previous, self.stable_band_pct
            )
            trends[outcome.metric] = TrendStat(
                value=current,
                previous=previous,
                change_pct=change,
                direction=direction,
                baseline_zero=baseline_zero,
            )

            if comparisons is not None and outcome.comparison is not None:
                other = sum(row.value for row in outcome.comparison)
                change, direction, baseline_zero = compute_change(
                    current, other, self.stable_band_pct
                )
                comparisons[outcome.metric] = ComparisonStat(
                    current=current,
                    previous=other,
                    change=round(current - other, 4),
                    change_pct=change,
                    direction=direction,
                    baseline_zero=baseline_zero,
                )

        return AnalyticsResult(
            data=tuple(data),
            summary=summary,
            trends=trends,
            comparisons=comparisons,
            warnings=tuple(warnings),
            metadata=ResultMetadata(
                total_rows=len(data),
                aggregation_level=plan.aggregation_level,
                generated_at=self._clock(),
                window_start=plan.window.start,
                window_end=plan.window.end,
            ),
        )
