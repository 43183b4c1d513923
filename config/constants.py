"""
Constantes del sistema

Define valores que no cambian durante la ejecución.
"""

from datetime import timedelta
from enum import Enum


class TimeRange(str, Enum):
    """Rangos de tiempo soportados por los reportes."""
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    QUARTER = "quarter"
    YEAR = "year"
    CUSTOM = "custom"


class MetricType(str, Enum):
    """Tipos de métrica del catálogo."""
    REVENUE = "revenue"
    COUNT = "count"
    AVERAGE = "average"
    SUM = "sum"
    PERCENTAGE = "percentage"
    RATE = "rate"
    DURATION = "duration"


class Industry(str, Enum):
    """Industrias (particiones del catálogo)."""
    HOME_SERVICES = "hs"
    RESTAURANT = "rest"
    AUTO_SERVICES = "auto"
    RETAIL = "retail"
    EDUCATION = "education"
    PAYROLL = "payroll"


class TrendDirection(str, Enum):
    """Dirección cualitativa de una tendencia."""
    UP = "up"
    DOWN = "down"
    STABLE = "stable"


class InsightType(str, Enum):
    """Categorías de insight."""
    OPPORTUNITY = "opportunity"
    WARNING = "warning"
    TREND = "trend"
    ANOMALY = "anomaly"


class ImpactLevel(str, Enum):
    """Nivel de impacto de un insight."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class WidgetType(str, Enum):
    """Tipos de widget de dashboard"""
    METRIC = "metric"
    CHART = "chart"
    TABLE = "table"
    KPI = "kpi"


class ChartType(str, Enum):
    """Tipos de gráfico sugeridos para un widget"""
    LINE = "line"
    BAR = "bar"
    PIE = "pie"
    AREA = "area"
    SCATTER = "scatter"


class QueryPurpose(str, Enum):
    """Rol de una consulta planificada dentro de un reporte"""
    CURRENT = "current"
    PREVIOUS = "previous"
    COMPARISON = "comparison"
    HISTORY = "history"


# ============================================================================
# VENTANAS DE TIEMPO
# ============================================================================

# Duraciones fijas (aproximación sin calendario: mes=30d, trimestre=90d)
TIME_RANGE_DURATIONS = {
    TimeRange.HOUR: timedelta(hours=1),
    TimeRange.DAY: timedelta(hours=24),
    TimeRange.WEEK: timedelta(days=7),
    TimeRange.MONTH: timedelta(days=30),
    TimeRange.QUARTER: timedelta(days=90),
    TimeRange.YEAR: timedelta(days=365),
}

# Rango usado cuando un rango custom no trae ambos límites
DEFAULT_TIME_RANGE = TimeRange.MONTH

# Granularidad de agregación sugerida por rango
AGGREGATION_LEVELS = {
    TimeRange.HOUR: "minute",
    TimeRange.DAY: "hour",
    TimeRange.WEEK: "day",
    TimeRange.MONTH: "day",
    TimeRange.QUARTER: "week",
    TimeRange.YEAR: "month",
}

DEFAULT_AGGREGATION_LEVEL = "day"


# ============================================================================
# CATÁLOGO
# ============================================================================

# Identificadores SQL permitidos (tabla, columna). Tabla admite "esquema.tabla".
IDENTIFIER_PATTERN = r"^[a-z_][a-z0-9_]{0,62}$"
TABLE_PATTERN = r"^[a-z_][a-z0-9_]{0,62}(\.[a-z_][a-z0-9_]{0,62})?$"
METRIC_KEY_PATTERN = r"^[A-Za-z][A-Za-z0-9_]{0,63}$"

# Funciones de agregación permitidas en cálculos derivados
CALCULATION_FUNCTIONS = ("SUM", "AVG", "COUNT", "MIN", "MAX")

# Claves de cálculo para métricas de tipo rate/percentage (numerador, denominador)
RATIO_CALCULATION_COUNT = 2

DEFAULT_TIME_FIELD = "created_at"

# Tags semánticos usados por el generador de insights
TAG_REVENUE = "revenue"
TAG_CUSTOMERS = "customers"
TAG_ORDERS = "orders"
TAG_ORDER_VALUE = "order_value"
TAG_SEGMENTS = "segments"

# ============================================================================
# CACHE
# ============================================================================

CACHE_KEY_PREFIX = "analytics"
CACHE_TAG_ANALYTICS = "analytics"
