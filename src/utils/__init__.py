"""
Utilidades del Sistema

Módulo que exporta todas las utilidades:
- Logger: Logging estructurado con contexto
- Errors: Manejo centralizado de errores
- Metrics: Contadores, histogramas, Prometheus
"""

# Logger
from src.utils.logger import (
    get_logger,
    setup_logging,
    bind_context,
    clear_context,
    new_correlation_id,
    get_correlation_id,
    LogContext,
    log_exception,
    log_performance,
)

# Metrics
from src.utils.metrics import (
    Counter,
    Histogram,
    MetricsRegistry,
    registry,
    Timer,
    get_metrics,
    get_prometheus_metrics,
    # Métricas pre-definidas
    reports_generated,
    metric_failures,
    cache_errors,
    insights_generated,
    report_duration,
)

# Errors
from src.utils.errors import (
    ErrorCategory,
    ErrorSeverity,
    ErrorContext,
    AnalyticsError,
    InvalidRequestError,
    CatalogError,
    UnknownMetricError,
    UnsupportedFilterError,
    QueryExecutionError,
    QueryTimeoutError,
    CacheBackendError,
    recover_errors,
    wrap_query_error,
)

__all__ = [
    # Logger
    "get_logger",
    "setup_logging",
    "bind_context",
    "clear_context",
    "new_correlation_id",
    "get_correlation_id",
    "LogContext",
    "log_exception",
    "log_performance",
    # Metrics
    "Counter",
    "Histogram",
    "MetricsRegistry",
    "registry",
    "Timer",
    "get_metrics",
    "get_prometheus_metrics",
    "reports_generated",
    "metric_failures",
    "cache_errors",
    "insights_generated",
    "report_duration",
    # Errors
    "ErrorCategory",
    "ErrorSeverity",
    "ErrorContext",
    "AnalyticsError",
    "InvalidRequestError",
    "CatalogError",
    "UnknownMetricError",
    "UnsupportedFilterError",
    "QueryExecutionError",
    "QueryTimeoutError",
    "CacheBackendError",
    "recover_errors",
    "wrap_query_error",
]
