"""
Generador de Insights

Pasada heurística sobre el historial real de métricas de un tenant.
Cada scan es independiente: si uno falla o no encuentra nada, los demás
siguen. El resultado es la unión de los scans exitosos, en orden.

Scans:
1. Tendencia de ingresos (métricas con tag "revenue")
2. Comportamiento de clientes (tags "customers", "orders", "order_value")
3. Anomalías: z-score del último día contra la línea base previa
4. Oportunidades por segmento (métricas agrupadas con tag "segments")

Los umbrales viven en InsightThresholds (configurables vía settings).
"""

import asyncio
import statistics
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from config.constants import (
    TAG_CUSTOMERS,
    TAG_ORDER_VALUE,
    TAG_ORDERS,
    TAG_REVENUE,
    TAG_SEGMENTS,
    ImpactLevel,
    Industry,
    InsightType,
    QueryPurpose,
)
from src.analytics.aggregators import ResultAggregator, compute_change
from src.analytics.catalog import MetricCatalog
from src.analytics.models import Insight, MetricDefinition, MetricRow
from src.analytics.planner import QueryPlanner
from src.analytics.protocols import Clock
from src.analytics.windows import TimeWindow, daily_windows, utc_now
from src.utils.errors import recover_errors
from src.utils.logger import get_logger
from src.utils.metrics import insights_generated

logger = get_logger(__name__)

BEHAVIOUR_TAGS = (TAG_CUSTOMERS, TAG_ORDERS, TAG_ORDER_VALUE)
MONITORED_TAGS = (TAG_REVENUE, TAG_CUSTOMERS, TAG_ORDERS)


@dataclass(frozen=True)
class InsightThresholds:
    """Umbrales del generador."""
    growth_opportunity_pct: float = 10.0
    decline_warning_pct: float = -5.0
    customer_change_pct: float = 5.0
    anomaly_z_score: float = 2.5
    anomaly_min_points: int = 5
    low_share_pct: float = 10.0
    concentration_pct: float = 60.0
    period_days: int = 30
    anomaly_lookback_days: int = 14

    @classmethod
    def from_settings(cls, config) -> "InsightThresholds":
        return cls(
            growth_opportunity_pct=config.INSIGHT_GROWTH_OPPORTUNITY_PCT,
            decline_warning_pct=config.INSIGHT_DECLINE_WARNING_PCT,
            customer_change_pct=config.INSIGHT_CUSTOMER_CHANGE_PCT,
            anomaly_z_score=config.INSIGHT_ANOMALY_Z_SCORE,
            anomaly_min_points=config.INSIGHT_ANOMALY_MIN_POINTS,
            low_share_pct=config.INSIGHT_LOW_SHARE_PCT,
            concentration_pct=config.INSIGHT_CONCENTRATION_PCT,
            period_days=config.INSIGHT_PERIOD_DAYS,
            anomaly_lookback_days=config.INSIGHT_ANOMALY_LOOKBACK_DAYS,
        )


def z_score(latest: float, baseline: List[float]) -> Optional[float]:
    """
    z-score de `latest` contra la línea base (desviación poblacional).

    Retorna None si la línea base no tiene dispersión.
    """
    mean = statistics.fmean(baseline)
    stdev = statistics.pstdev(baseline, mean)
    if stdev == 0:
        return None
    return (latest - mean) / stdev


def _segment_label(group: Optional[Dict[str, Any]]) -> str:
    if not group:
        return "all"
    return ", ".join(str(value) for value in group.values())


def _group_key(row: MetricRow) -> Tuple:
    return tuple(sorted((row.group or {}).items(), key=lambda item: item[0]))


class InsightGenerator:
    """
    Genera insights para un tenant.

    Uso:
        generator = InsightGenerator(catalog, planner, aggregator, thresholds)
        insights = await generator.generate("org-1", Industry.HOME_SERVICES)
    """

    def __init__(
        self,
        catalog: MetricCatalog,
        planner: QueryPlanner,
        aggregator: ResultAggregator,
        thresholds: Optional[InsightThresholds] = None,
        clock: Optional[Clock] = None
    ):
        self.catalog = catalog
        self.planner = planner
        self.aggregator = aggregator
        self.thresholds = thresholds or InsightThresholds()
        self._clock = clock or utc_now

    async def generate(self, tenant_id: str, industry: Industry) -> List[Insight]:
        """
        Ejecuta todos los scans. Nunca lanza por problemas de datos.
        """
        now = self._clock()
        scans = (
            self.scan_revenue_trends,
            self.scan_customer_behaviour,
            self.scan_anomalies,
            self.scan_opportunities,
        )
        results = await asyncio.gather(*(scan(tenant_id, industry, now) for scan in scans))

        insights: List[Insight] = []
        for found in results:
            insights.extend(found)

        for insight in insights:
            insights_generated.inc(labels={"type": insight.type.value})
        logger.info(f"Insights generados para {tenant_id}: {len(insights)}")
        return insights

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _tagged(
        self,
        industry: Industry,
        tags,
        grouped: bool = False
    ) -> List[MetricDefinition]:
        return [
            definition
            for definition in self.catalog.metrics(industry).values()
            if set(tags).intersection(definition.tags) and definition.is_grouped == grouped
        ]

    def _period_windows(self, now: datetime) -> Tuple[TimeWindow, TimeWindow]:
        current = TimeWindow(now - timedelta(days=self.thresholds.period_days), now)
        return current, current.previous()

    async def _period_totals(
        self,
        tenant_id: str,
        definition: MetricDefinition,
        now: datetime
    ) -> Tuple[float, float]:
        current, previous = self._period_windows(now)
        queries = self.planner.plan_series(tenant_id, definition, [previous, current], group_by=())
        previous_total, current_total = await self.aggregator.execute_series(queries)
        return current_total, previous_total

    # ------------------------------------------------------------------
    # Scans
    # ------------------------------------------------------------------

    @recover_errors(default_return=list, operation="scan_revenue_trends")
    async def scan_revenue_trends(
        self,
        tenant_id: str,
        industry: Industry,
        now: datetime
    ) -> List[Insight]:
        insights = []
        days = self.thresholds.period_days

        for definition in self._tagged(industry, (TAG_REVENUE,)):
            current, previous = await self._period_totals(tenant_id, definition, now)
            if previous == 0:
                continue
            change, _, _ = compute_change(current, previous)

            data = {"current": current, "previous": previous, "change_pct": change}
            if change > self.thresholds.growth_opportunity_pct:
                insights.append(Insight(
                    type=InsightType.OPPORTUNITY,
                    title="Strong Revenue Growth Detected",
                    description=(
                        f"{definition.name} grew {change:.1f}% compared to the "
                        f"previous {days} days."
                    ),
                    impact=ImpactLevel.HIGH,
                    actionable=True,
                    actions=(
                        "Consider expanding capacity to meet demand",
                        "Analyze which services drive the growth",
                        "Review pricing on high-demand services",
                    ),
                    metric=definition.key,
                    data=data,
                ))
            elif change < self.thresholds.decline_warning_pct:
                insights.append(Insight(
                    type=InsightType.WARNING,
                    title="Revenue Decline Detected",
                    description=(
                        f"{definition.name} dropped {abs(change):.1f}% compared to the "
                        f"previous {days} days."
                    ),
                    impact=ImpactLevel.HIGH,
                    actionable=True,
                    actions=(
                        "Review recent customer feedback",
                        "Analyze competitor pricing",
                        "Launch a retention campaign",
                    ),
                    metric=definition.key,
                    data=data,
                ))
        return insights

    @recover_errors(default_return=list, operation="scan_customer_behaviour")
    async def scan_customer_behaviour(
        self,
        tenant_id: str,
        industry: Industry,
        now: datetime
    ) -> List[Insight]:
        insights = []
        threshold = self.thresholds.customer_change_pct

        for definition in self._tagged(industry, BEHAVIOUR_TAGS):
            current, previous = await self._period_totals(tenant_id, definition, now)
            if previous == 0:
                continue
            change, _, _ = compute_change(current, previous)
            if abs(change) < threshold:
                continue

            rising = change > 0
            insights.append(Insight(
                type=InsightType.TREND,
                title=f"{definition.name} {'up' if rising else 'down'} {abs(change):.1f}%",
                description=(
                    f"{definition.name} moved from {previous:,.2f} to {current:,.2f} "
                    f"over the last {self.thresholds.period_days} days."
                ),
                impact=ImpactLevel.MEDIUM,
                actionable=not rising,
                actions=(
                    ("Review recent changes in service quality",
                     "Reach out to inactive customers")
                    if not rising else ()
                ),
                metric=definition.key,
                data={"current": current, "previous": previous, "change_pct": change},
            ))
        return insights

    @recover_errors(default_return=list, operation="scan_anomalies")
    async def scan_anomalies(
        self,
        tenant_id: str,
        industry: Industry,
        now: datetime
    ) -> List[Insight]:
        insights = []
        threshold = self.thresholds.anomaly_z_score
        windows = daily_windows(now, self.thresholds.anomaly_lookback_days + 1)

        for definition in self._tagged(industry, MONITORED_TAGS):
            queries = self.planner.plan_series(tenant_id, definition, windows, group_by=())
            series = await self.aggregator.execute_series(queries)
            baseline, latest = series[:-1], series[-1]
            if len(baseline) < self.thresholds.anomaly_min_points:
                continue

            score = z_score(latest, baseline)
            if score is None or abs(score) < threshold:
                continue

            spike = score > 0
            insights.append(Insight(
                type=InsightType.ANOMALY,
                title=f"Unusual {'spike' if spike else 'drop'} in {definition.name}",
                description=(
                    f"{definition.name} for the last 24 hours ({latest:,.2f}) is "
                    f"{abs(score):.1f} standard deviations "
                    f"{'above' if spike else 'below'} the {len(baseline)}-day average."
                ),
                impact=ImpactLevel.HIGH if abs(score) >= 2 * threshold else ImpactLevel.MEDIUM,
                actionable=True,
                actions=("Verify recent transactions for data errors",
                         "Check for operational issues on the affected day"),
                metric=definition.key,
                data={
                    "latest": latest,
                    "baseline_mean": round(statistics.fmean(baseline), 4),
                    "z_score": round(score, 2),
                },
            ))
        return insights

    @recover_errors(default_return=list, operation="scan_opportunities")
    async def scan_opportunities(
        self,
        tenant_id: str,
        industry: Industry,
        now: datetime
    ) -> List[Insight]:
        insights = []
        current_window, previous_window = self._period_windows(now)

        for definition in self._tagged(industry, (TAG_SEGMENTS,), grouped=True):
            current_query = self.planner.plan_metric(
                tenant_id, definition, current_window, QueryPurpose.HISTORY,
                group_by=definition.group_by,
            )
            previous_query = self.planner.plan_metric(
                tenant_id, definition, previous_window, QueryPurpose.HISTORY,
                group_by=definition.group_by,
            )
            current_rows, previous_rows = await asyncio.gather(
                self.aggregator.execute_with_timeout(current_query),
                self.aggregator.execute_with_timeout(previous_query),
            )

            total = sum(row.value for row in current_rows)
            if total <= 0:
                continue
            previous_by_segment = {_group_key(row): row.value for row in previous_rows}

            for row in sorted(current_rows, key=lambda r: r.value, reverse=True):
                share = row.value / total * 100
                label = _segment_label(row.group)
                previous = previous_by_segment.get(_group_key(row), 0.0)

                if share >= self.thresholds.concentration_pct and len(current_rows) > 1:
                    insights.append(Insight(
                        type=InsightType.WARNING,
                        title=f"High concentration in {label}",
                        description=(
                            f"{label} accounts for {share:.1f}% of {definition.name}. "
                            f"Dependence on a single segment increases risk."
                        ),
                        impact=ImpactLevel.LOW,
                        actionable=True,
                        actions=("Diversify promotion across other segments",),
                        metric=definition.key,
                        data={"segment": row.group, "share_pct": round(share, 2)},
                    ))
                    continue

                if share < self.thresholds.low_share_pct and previous > 0:
                    growth, _, _ = compute_change(row.value, previous)
                    if growth > self.thresholds.growth_opportunity_pct:
                        insights.append(Insight(
                            type=InsightType.OPPORTUNITY,
                            title=f"Emerging segment: {label}",
                            description=(
                                f"{label} is only {share:.1f}% of {definition.name} "
                                f"but grew {growth:.1f}% over the previous period."
                            ),
                            impact=ImpactLevel.MEDIUM,
                            actionable=True,
                            actions=(
                                f"Promote {label} to accelerate its growth",
                                "Check capacity to serve additional demand",
                            ),
                            metric=definition.key,
                            data={
                                "segment": row.group,
                                "share_pct": round(share, 2),
                                "growth_pct": growth,
                            },
                        ))
        return insights
