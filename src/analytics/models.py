"""
Modelos del Motor de Analytics

- MetricDefinition: entrada del catálogo (estática)
- AnalyticsRequest / ComparisonPeriod: request del caller (pydantic, inmutable)
- AnalyticsResult y sus estadísticas: resultado inmutable y cacheable
- Insight, Dashboard, DashboardWidget: salidas de insights y plantillas
"""

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from config.constants import (
    DEFAULT_TIME_FIELD,
    ChartType,
    ImpactLevel,
    Industry,
    InsightType,
    MetricType,
    TimeRange,
    TrendDirection,
    WidgetType,
)


# ============================================================================
# CATÁLOGO
# ============================================================================

@dataclass(frozen=True)
class MetricDefinition:
    """Definición de una métrica del catálogo."""
    key: str
    name: str
    type: MetricType
    table: str
    field: str
    filters: Dict[str, Any] = dataclasses.field(default_factory=dict)
    group_by: Tuple[str, ...] = ()
    calculations: Dict[str, str] = dataclasses.field(default_factory=dict)
    dimensions: Tuple[str, ...] = ()
    time_field: str = DEFAULT_TIME_FIELD
    tags: Tuple[str, ...] = ()

    @property
    def is_grouped(self) -> bool:
        return bool(self.group_by)

    @property
    def groupable_columns(self) -> frozenset:
        """Columnas por las que se puede agrupar."""
        return frozenset(self.group_by) | frozenset(self.dimensions)

    @property
    def filterable_columns(self) -> frozenset:
        """Columnas que el caller puede usar como filtro."""
        return (
            frozenset([self.field])
            | frozenset(self.filters)
            | self.groupable_columns
        )


# ============================================================================
# REQUEST
# ============================================================================

def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # Fechas sin zona se interpretan como UTC
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    try:
        return value.astimezone(timezone.utc)
    except OverflowError as e:
        raise ValueError(f"Fecha fuera de rango en UTC: {value.isoformat()}") from e


_SCALAR_TYPES = (str, int, float, bool)


class _RequestModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
    )


class ComparisonPeriod(_RequestModel):
    """Período alterno contra el que se comparan las métricas."""
    time_range: TimeRange
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    @field_validator("start_date", "end_date")
    @classmethod
    def normalize_dates(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(v)

    @model_validator(mode="after")
    def validate_bounds(self) -> "ComparisonPeriod":
        _check_bounds(self.time_range, self.start_date, self.end_date)
        return self


class AnalyticsRequest(_RequestModel):
    """
    Request de un reporte.

    El tenant autoritativo es el argumento de AnalyticsEngine.generate_report;
    `tenant_id` (alias `tenantId` o `tenant`) es opcional y, si viene, debe
    coincidir con él. No forma parte de la llave de cache. Acepta nombres
    en snake_case o camelCase (timeRange, startDate, compareWith...).
    """
    tenant_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("tenant_id", "tenantId", "tenant"),
    )
    industry: Optional[Industry] = None
    metrics: List[str] = Field(min_length=1)
    time_range: TimeRange = TimeRange.MONTH
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    group_by: Optional[List[str]] = None
    filters: Dict[str, Any] = Field(default_factory=dict)
    compare_with: Optional[ComparisonPeriod] = None

    @field_validator("tenant_id")
    @classmethod
    def validate_tenant_id(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        if not v:
            raise ValueError("tenant_id no puede estar vacío")
        return v

    @field_validator("metrics")
    @classmethod
    def validate_metrics(cls, v: List[str]) -> List[str]:
        cleaned = [m.strip() for m in v]
        if any(not m for m in cleaned):
            raise ValueError("Los nombres de métrica no pueden estar vacíos")
        return cleaned

    @field_validator("start_date", "end_date")
    @classmethod
    def normalize_dates(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(v)

    @field_validator("filters")
    @classmethod
    def validate_filters(cls, v: Dict[str, Any]) -> Dict[str, Any]:
        """Valores escalares, None o listas no vacías de escalares."""
        normalized = {}
        for key, value in v.items():
            if isinstance(value, (list, tuple)):
                if not value:
                    raise ValueError(f"Filtro {key!r}: la lista no puede estar vacía")
                if not all(isinstance(item, _SCALAR_TYPES) for item in value):
                    raise ValueError(f"Filtro {key!r}: la lista solo admite escalares")
                normalized[key] = list(value)
            elif value is None or isinstance(value, _SCALAR_TYPES):
                normalized[key] = value
            else:
                raise ValueError(f"Filtro {key!r}: tipo no soportado {type(value).__name__}")
        return normalized

    @model_validator(mode="after")
    def validate_bounds(self) -> "AnalyticsRequest":
        _check_bounds(self.time_range, self.start_date, self.end_date)
        return self


def _check_bounds(
    time_range: TimeRange,
    start: Optional[datetime],
    end: Optional[datetime]
) -> None:
    if time_range == TimeRange.CUSTOM and (start is None or end is None):
        raise ValueError("El rango custom requiere start_date y end_date")
    if start is not None and end is not None and start >= end:
        raise ValueError("start_date debe ser anterior a end_date")


# ============================================================================
# RESULTADO
# ============================================================================

@dataclass(frozen=True)
class MetricRow:
    """Fila de resultado: métrica, valor y llave de grupo opcional."""
    metric: str
    value: float
    group: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"metric": self.metric, "value": self.value}
        if self.group is not None:
            data["group"] = dict(self.group)
        return data


@dataclass(frozen=True)
class TrendStat:
    """Variación contra la ventana inmediatamente anterior."""
    value: float
    previous: float
    change_pct: float
    direction: TrendDirection
    baseline_zero: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "value": self.value,
            "previous": self.previous,
            "change_pct": self.change_pct,
            "direction": self.direction.value,
            "baseline_zero": self.baseline_zero,
        }


@dataclass(frozen=True)
class ComparisonStat:
    """Variación contra el período indicado por el caller."""
    current: float
    previous: float
    change: float
    change_pct: float
    direction: TrendDirection
    baseline_zero: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current": self.current,
            "previous": self.previous,
            "change": self.change,
            "change_pct": self.change_pct,
            "direction": self.direction.value,
            "baseline_zero": self.baseline_zero,
        }


@dataclass(frozen=True)
class ResultMetadata:
    total_rows: int
    aggregation_level: str
    generated_at: datetime
    window_start: datetime
    window_end: datetime
    cached: bool = False
    took_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_rows": self.total_rows,
            "aggregation_level": self.aggregation_level,
            "generated_at": self.generated_at.isoformat(),
            "window_start": self.window_start.isoformat(),
            "window_end": self.window_end.isoformat(),
            "cached": self.cached,
            "took_ms": self.took_ms,
        }


@dataclass(frozen=True)
class AnalyticsResult:
    """Resultado de un reporte. Inmutable una vez construido."""
    data: Tuple[MetricRow, ...]
    summary: Dict[str, float]
    trends: Dict[str, TrendStat]
    metadata: ResultMetadata
    comparisons: Optional[Dict[str, ComparisonStat]] = None
    warnings: Tuple[str, ...] = ()

    def as_cached(self, took_ms: float) -> "AnalyticsResult":
        """Copia marcada como hit de cache con el tiempo de recuperación."""
        return dataclasses.replace(
            self,
            metadata=dataclasses.replace(self.metadata, cached=True, took_ms=took_ms),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "data": [row.to_dict() for row in self.data],
            "summary": dict(self.summary),
            "trends": {k: v.to_dict() for k, v in self.trends.items()},
            "comparisons": (
                {k: v.to_dict() for k, v in self.comparisons.items()}
                if self.comparisons is not None else None
            ),
            "metadata": self.metadata.to_dict(),
            "warnings": list(self.warnings),
        }


# ============================================================================
# INSIGHTS
# ============================================================================

@dataclass(frozen=True)
class Insight:
    type: InsightType
    title: str
    description: str
    impact: ImpactLevel
    actionable: bool = False
    actions: Tuple[str, ...] = ()
    metric: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "title": self.title,
            "description": self.description,
            "impact": self.impact.value,
            "actionable": self.actionable,
            "actions": list(self.actions),
            "metric": self.metric,
            "data": dict(self.data),
        }


# ============================================================================
# DASHBOARDS
# ============================================================================

@dataclass(frozen=True)
class WidgetPosition:
    x: int
    y: int
    w: int
    h: int


@dataclass(frozen=True)
class DashboardWidget:
    id: str
    type: WidgetType
    title: str
    position: WidgetPosition
    metrics: Tuple[str, ...]
    time_range: TimeRange = TimeRange.MONTH
    chart_type: Optional[ChartType] = None
    refresh_interval: Optional[int] = None
    filters: Dict[str, Any] = field(default_factory=dict)

    def to_request(self, industry: Optional[Industry] = None) -> AnalyticsRequest:
        """Request equivalente a lo que el widget muestra."""
        return AnalyticsRequest(
            industry=industry,
            metrics=list(self.metrics),
            time_range=self.time_range,
            filters=dict(self.filters),
        )


@dataclass(frozen=True)
class Dashboard:
    id: str
    name: str
    industry: Industry
    widgets: Tuple[DashboardWidget, ...]
    description: str = ""
    is_public: bool = True
    tenant_id: Optional[str] = None
    created_at: Optional[datetime] = None

    def metric_keys(self) -> List[str]:
        keys: List[str] = []
        for widget in self.widgets:
            for key in widget.metrics:
                if key not in keys:
                    keys.append(key)
        return keys
