"""
Motor de Analytics

Servicio que orquesta catálogo → planificador → agregador → cache → insights.

Se construye explícitamente con sus capacidades (acceso a datos y cache);
no existe una instancia global. El host decide si usa una por proceso o
una por grupo de tenants.

Uso:
    engine = AnalyticsEngine(data_source, InMemoryCacheBackend())
    result = await engine.generate_report("org-1", {
        "industry": "hs",
        "metrics": ["totalRevenue", "activeCustomers"],
        "timeRange": "month",
    })
"""

import asyncio
import uuid
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from pydantic import ValidationError

from config.constants import Industry
from config.settings import Settings, settings
from src.analytics.aggregators import ResultAggregator
from src.analytics.cache import InMemoryCacheBackend, ReportCache, build_cache_key
from src.analytics.catalog import MetricCatalog, load_catalog
from src.analytics.insights import InsightGenerator, InsightThresholds
from src.analytics.models import (
    AnalyticsRequest,
    AnalyticsResult,
    Dashboard,
    DashboardWidget,
    Insight,
)
from src.analytics.planner import QueryPlanner
from src.analytics.protocols import CacheBackend, Clock, DataSource
from src.analytics.templates import DASHBOARD_TEMPLATES, validate_templates
from src.analytics.windows import utc_now
from src.utils.errors import AnalyticsError, CatalogError, InvalidRequestError
from src.utils.logger import LogContext, get_logger, log_exception, log_performance
from src.utils.metrics import Timer, report_duration, reports_generated

logger = get_logger(__name__)

RequestLike = Union[AnalyticsRequest, Mapping[str, Any]]


def _format_validation_error(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ())) or "request"
        parts.append(f"{location}: {item.get('msg')}")
    return "; ".join(parts)


class AnalyticsEngine:
    """
    Motor de reportes multi-tenant.

    Args:
        data_source: Capacidad de acceso a datos (DataSource)
        cache_backend: Backend de cache (CacheBackend)
        catalog: Catálogo de métricas (default: settings.ANALYTICS_CATALOG_PATH
            o el catálogo incluido)
        config: Settings a usar (default: settings globales)
        clock: Reloj UTC inyectable
        templates: Plantillas de dashboard a exponer (se validan contra el catálogo)
        thresholds: Umbrales de insights (default: desde settings)
    """

    def __init__(
        self,
        data_source: DataSource,
        cache_backend: CacheBackend,
        catalog: Optional[MetricCatalog] = None,
        config: Optional[Settings] = None,
        clock: Optional[Clock] = None,
        templates: Optional[Sequence[Dashboard]] = None,
        thresholds: Optional[InsightThresholds] = None
    ):
        self.config = config or settings
        self._clock = clock or utc_now
        self.catalog = catalog or load_catalog(self.config.ANALYTICS_CATALOG_PATH)

        self.templates = tuple(DASHBOARD_TEMPLATES if templates is None else templates)
        validate_templates(self.catalog, self.templates)

        self.planner = QueryPlanner(
            self.catalog,
            self.config.ANALYTICS_TENANT_COLUMN,
            timezone_aware=self.config.ANALYTICS_TIMESTAMPS_WITH_TIMEZONE,
        )
        self.aggregator = ResultAggregator(
            data_source,
            max_concurrency=self.config.ANALYTICS_MAX_CONCURRENT_QUERIES,
            timeout_seconds=self.config.ANALYTICS_QUERY_TIMEOUT_SECONDS,
            stable_band_pct=self.config.ANALYTICS_TREND_STABLE_BAND_PCT,
            clock=self._clock,
        )
        self.cache = ReportCache(
            cache_backend,
            ttl_seconds=self.config.ANALYTICS_CACHE_TTL_SECONDS,
            enabled=self.config.ANALYTICS_CACHE_ENABLED,
        )
        self.insight_generator = InsightGenerator(
            self.catalog,
            self.planner,
            self.aggregator,
            thresholds or InsightThresholds.from_settings(self.config),
            clock=self._clock,
        )

    @classmethod
    def with_memory_cache(
        cls,
        data_source: DataSource,
        config: Optional[Settings] = None,
        **kwargs
    ) -> "AnalyticsEngine":
        """Motor con el backend de cache en proceso."""
        config = config or settings
        backend = InMemoryCacheBackend(max_entries=config.ANALYTICS_CACHE_MAX_ENTRIES)
        return cls(data_source, backend, config=config, **kwargs)

    # ------------------------------------------------------------------
    # Validación de entrada
    # ------------------------------------------------------------------

    @staticmethod
    def _check_tenant(tenant_id: str) -> str:
        if not isinstance(tenant_id, str) or not tenant_id.strip():
            raise InvalidRequestError("tenant_id es obligatorio", field="tenant_id")
        return tenant_id.strip()

    @staticmethod
    def coerce_request(request: RequestLike) -> AnalyticsRequest:
        """
        Valida un request (modelo o mapeo).

        Raises:
            InvalidRequestError: Si la forma del request es inválida
        """
        if isinstance(request, AnalyticsRequest):
            return request
        if not isinstance(request, Mapping):
            raise InvalidRequestError(
                f"Request no soportado: {type(request).__name__}", field="request"
            )
        try:
            return AnalyticsRequest.model_validate(dict(request))
        except ValidationError as e:
            raise InvalidRequestError(
                f"Request inválido: {_format_validation_error(e)}",
                original_error=e,
            ) from e

    def _resolve_industry(self, industry: Union[Industry, str, None]) -> Industry:
        if industry is None:
            return self.config.ANALYTICS_DEFAULT_INDUSTRY
        if isinstance(industry, Industry):
            return industry
        try:
            return Industry(industry)
        except ValueError as e:
            raise InvalidRequestError(
                f"Industria desconocida: {industry!r}", field="industry"
            ) from e

    # ------------------------------------------------------------------
    # Operaciones
    # ------------------------------------------------------------------

    async def generate_report(self, tenant_id: str, request: RequestLike) -> AnalyticsResult:
        """
        Genera un reporte para un tenant.

        Flujo: validación → cache → plan → agregación → cache.

        Raises:
            InvalidRequestError: Request inválido (antes de ejecutar consultas)
        """
        tenant_id = self._check_tenant(tenant_id)
        request = self.coerce_request(request)
        if request.tenant_id is not None and request.tenant_id != tenant_id:
            raise InvalidRequestError(
                f"El request es del tenant {request.tenant_id!r}, no de {tenant_id!r}",
                field="tenant_id",
            )
        industry = self._resolve_industry(request.industry)

        with LogContext(tenant_id=tenant_id, action="generate_report"):
            key = build_cache_key(tenant_id, request, industry)

            with Timer(report_duration) as timer:
                cached = await self.cache.get(tenant_id, key)
                if cached is None:
                    plan = self.planner.plan_report(tenant_id, request, industry, self._clock())
                    result = await self.aggregator.aggregate(plan)
                    await self.cache.set(tenant_id, key, result, industry)

            if cached is not None:
                reports_generated.inc(labels={"cached": "true"})
                logger.debug(f"Reporte servido desde cache ({cached.metadata.took_ms}ms)")
                return cached

            reports_generated.inc(labels={"cached": "false"})
            log_performance(
                logger,
                "generate_report",
                timer.elapsed_ms,
                industry=industry.value,
                metrics=len(result.summary),
                rows=result.metadata.total_rows,
                warnings=len(result.warnings),
            )
            return result

    def get_dashboard_templates(
        self,
        industry: Union[Industry, str, None] = None
    ) -> List[Dashboard]:
        """Plantillas de dashboard, opcionalmente filtradas por industria."""
        if industry is None:
            return list(self.templates)
        resolved = self._resolve_industry(industry)
        return [d for d in self.templates if d.industry == resolved]

    async def generate_insights(
        self,
        tenant_id: str,
        industry: Union[Industry, str, None] = None
    ) -> List[Insight]:
        """
        Insights heurísticos sobre el historial reciente.

        Nunca lanza por problemas de datos: los scans que fallan se omiten.
        """
        tenant_id = self._check_tenant(tenant_id)
        resolved = self._resolve_industry(industry)

        with LogContext(tenant_id=tenant_id, action="generate_insights"):
            return await self.insight_generator.generate(tenant_id, resolved)

    def create_dashboard(
        self,
        tenant_id: str,
        name: Optional[str] = None,
        widgets: Sequence[DashboardWidget] = (),
        industry: Union[Industry, str, None] = None,
        description: str = "",
        is_public: bool = False
    ) -> Dashboard:
        """
        Arma un dashboard propio de un tenant (no se persiste).

        Raises:
            InvalidRequestError: Ids de widget repetidos o métricas
                fuera del catálogo de la industria
        """
        tenant_id = self._check_tenant(tenant_id)
        resolved = self._resolve_industry(industry)
        widgets = tuple(widgets)

        ids = [widget.id for widget in widgets]
        if len(ids) != len(set(ids)):
            raise InvalidRequestError("Los ids de widget deben ser únicos", field="widgets")

        dashboard = Dashboard(
            id=str(uuid.uuid4()),
            name=name or "New Dashboard",
            industry=resolved,
            widgets=widgets,
            description=description,
            is_public=is_public,
            tenant_id=tenant_id,
            created_at=self._clock(),
        )
        try:
            validate_templates(self.catalog, [dashboard])
        except CatalogError as e:
            raise InvalidRequestError(e.message, field="widgets", original_error=e) from e

        logger.info(f"Dashboard {dashboard.id} creado para {tenant_id} ({len(widgets)} widgets)")
        return dashboard

    async def get_widget_report(
        self,
        tenant_id: str,
        widget: DashboardWidget,
        industry: Union[Industry, str, None] = None
    ) -> AnalyticsResult:
        """Reporte con las métricas y el rango de un widget."""
        resolved = self._resolve_industry(industry)
        return await self.generate_report(tenant_id, widget.to_request(resolved))

    async def get_dashboard_data(
        self,
        tenant_id: str,
        dashboard: Dashboard
    ) -> Dict[str, AnalyticsResult]:
        """
        Un reporte por widget, indexado por id de widget.

        Un widget que falla se registra en el log y se omite.
        """
        tenant_id = self._check_tenant(tenant_id)
        results = await asyncio.gather(
            *(
                self.get_widget_report(tenant_id, widget, dashboard.industry)
                for widget in dashboard.widgets
            ),
            return_exceptions=True,
        )

        data: Dict[str, AnalyticsResult] = {}
        for widget, outcome in zip(dashboard.widgets, results):
            if isinstance(outcome, AnalyticsResult):
                data[widget.id] = outcome
            elif isinstance(outcome, AnalyticsError):
                logger.warning(f"Widget {dashboard.id}/{widget.id} omitido: {outcome.message}")
            elif isinstance(outcome, Exception):
                log_exception(logger, f"Error en widget {dashboard.id}/{widget.id}", outcome)
            else:
                raise outcome
        return data

    async def invalidate_cache(self, tenant_id: str, tags: Optional[List[str]] = None) -> int:
        """Invalidación explícita de reportes cacheados de un tenant."""
        tenant_id = self._check_tenant(tenant_id)
        return await self.cache.invalidate(tenant_id, tags)
