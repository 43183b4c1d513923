"""
Sistema Centralizado de Manejo de Errores

Proporciona:
- Tipos de error categorizados (AnalyticsError, InvalidRequestError, etc.)
- Correlation IDs para soporte técnico
- Decorador para recuperar fallos aislados (scans de insights, widgets)
- Logging estructurado de excepciones

Política de propagación:
- Errores de forma del request: fatales, se propagan al caller.
- Errores por métrica (métrica desconocida, filtro no soportado, fallo
  o timeout de consulta): se recuperan localmente y el reporte sale parcial.
- Errores del backend de cache: se tratan como miss.
"""

import asyncio
import logging
from enum import Enum
from functools import wraps
from typing import Optional, Callable, Any, Dict
from dataclasses import dataclass

from src.utils.logger import (
    get_logger,
    new_correlation_id,
    get_correlation_id,
)

logger = get_logger(__name__)


# ============================================================================
# ERROR CATEGORIES
# ============================================================================

class ErrorCategory(str, Enum):
    """Categorías de error para clasificación."""
    VALIDATION = "VALIDATION"
    CATALOG = "CATALOG"
    QUERY = "QUERY"
    TIMEOUT = "TIMEOUT"
    CACHE = "CACHE"
    INTERNAL = "INTERNAL"


class ErrorSeverity(str, Enum):
    """Severidad del error para priorización."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


# ============================================================================
# ERROR CONTEXT
# ============================================================================

@dataclass
class ErrorContext:
    """Contexto adicional para un error."""
    tenant_id: Optional[str] = None
    industry: Optional[str] = None
    metric: Optional[str] = None
    operation: Optional[str] = None
    extra: Optional[Dict[str, Any]] = None


# ============================================================================
# CUSTOM EXCEPTIONS
# ============================================================================

class AnalyticsError(Exception):
    """
    Excepción base del motor de analytics.

    Incluye categoría, severidad, contexto y correlation ID.
    """

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.INTERNAL,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        context: Optional[ErrorContext] = None,
        original_error: Optional[BaseException] = None
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.severity = severity
        self.context = context or ErrorContext()
        self.original_error = original_error
        self.correlation_id = get_correlation_id() or new_correlation_id()

    def to_dict(self) -> Dict[str, Any]:
        """Convierte el error a diccionario para logging."""
        return {
            "message": self.message,
            "category": self.category.value,
            "severity": self.severity.value,
            "correlation_id": self.correlation_id,
            "context": {
                "tenant_id": self.context.tenant_id,
                "industry": self.context.industry,
                "metric": self.context.metric,
                "operation": self.context.operation,
                "extra": self.context.extra,
            },
            "original_error": str(self.original_error) if self.original_error else None,
        }


class InvalidRequestError(AnalyticsError):
    """Request con forma inválida. Se rechaza antes de ejecutar consultas."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        **kwargs
    ):
        self.field = field
        super().__init__(
            message=message,
            category=ErrorCategory.VALIDATION,
            severity=ErrorSeverity.LOW,
            **kwargs
        )


class CatalogError(AnalyticsError):
    """Definición de catálogo o plantilla inválida (tiempo de carga)."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message=message,
            category=ErrorCategory.CATALOG,
            severity=ErrorSeverity.HIGH,
            **kwargs
        )


class UnknownMetricError(AnalyticsError):
    """Métrica ausente en la partición de la industria."""

    def __init__(self, metric: str, industry: Optional[str] = None, **kwargs):
        self.metric = metric
        kwargs.setdefault("context", ErrorContext(metric=metric, industry=industry))
        super().__init__(
            message=f"Métrica desconocida para la industria {industry}: {metric}",
            category=ErrorCategory.CATALOG,
            severity=ErrorSeverity.LOW,
            **kwargs
        )


class UnsupportedFilterError(AnalyticsError):
    """Filtro del caller sobre una columna que el catálogo no conoce."""

    def __init__(self, metric: str, fields, **kwargs):
        self.metric = metric
        self.fields = sorted(fields)
        kwargs.setdefault("context", ErrorContext(metric=metric))
        super().__init__(
            message=f"Filtro no soportado para {metric}: {', '.join(self.fields)}",
            category=ErrorCategory.VALIDATION,
            severity=ErrorSeverity.LOW,
            **kwargs
        )


class QueryExecutionError(AnalyticsError):
    """Fallo al ejecutar la consulta de una métrica."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message=message,
            category=ErrorCategory.QUERY,
            severity=ErrorSeverity.MEDIUM,
            **kwargs
        )


class QueryTimeoutError(QueryExecutionError):
    """La consulta de una métrica excedió el timeout configurado."""

    def __init__(self, metric: str, timeout_seconds: float, **kwargs):
        self.metric = metric
        self.timeout_seconds = timeout_seconds
        kwargs.setdefault("context", ErrorContext(metric=metric))
        super().__init__(
            message=f"Timeout ({timeout_seconds}s) ejecutando {metric}",
            **kwargs
        )
        self.category = ErrorCategory.TIMEOUT


class CacheBackendError(AnalyticsError):
    """Fallo del backend de cache (se degrada a miss)."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message=message,
            category=ErrorCategory.CACHE,
            severity=ErrorSeverity.LOW,
            **kwargs
        )


# ============================================================================
# ERROR RECOVERY DECORATOR
# ============================================================================

def recover_errors(
    default_return: Any = None,
    log_level: int = logging.ERROR,
    operation: Optional[str] = None
) -> Callable:
    """
    Decorador que loggea cualquier excepción y retorna un valor por defecto.

    Pensado para pasos aislados (un scan de insights, un widget) cuyo fallo
    no debe bloquear a los demás. Las cancelaciones se propagan.

    Args:
        default_return: Valor a retornar en caso de error. Si es callable
            se invoca para obtener un valor nuevo en cada fallo.
        log_level: Nivel de logging (default: ERROR)
        operation: Nombre de la operación para el log (default: función)

    Usage:
        @recover_errors(default_return=list)
        async def scan_anomalies(...):
            ...
    """
    def _default() -> Any:
        return default_return() if callable(default_return) else default_return

    def decorator(func: Callable) -> Callable:
        name = operation or func.__name__

        @wraps(func)
        async def async_wrapper(*args, **kwargs) -> Any:
            try:
                return await func(*args, **kwargs)
            except AnalyticsError as e:
                _log_analytics_error(e, name, log_level)
                return _default()
            except Exception as e:
                error = AnalyticsError(
                    message=f"Error inesperado en {name}: {str(e)}",
                    category=ErrorCategory.INTERNAL,
                    severity=ErrorSeverity.HIGH,
                    original_error=e
                )
                _log_analytics_error(error, name, log_level, exc_info=True)
                return _default()

        @wraps(func)
        def sync_wrapper(*args, **kwargs) -> Any:
            try:
                return func(*args, **kwargs)
            except AnalyticsError as e:
                _log_analytics_error(e, name, log_level)
                return _default()
            except Exception as e:
                error = AnalyticsError(
                    message=f"Error inesperado en {name}: {str(e)}",
                    category=ErrorCategory.INTERNAL,
                    severity=ErrorSeverity.HIGH,
                    original_error=e
                )
                _log_analytics_error(error, name, log_level, exc_info=True)
                return _default()

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator


def _log_analytics_error(
    error: AnalyticsError,
    function_name: str,
    log_level: int,
    exc_info: bool = False
) -> None:
    """Loggea un AnalyticsError con contexto completo."""
    error_dict = error.to_dict()
    error_dict["function"] = function_name

    logger.log(
        log_level,
        f"[{error.correlation_id[:8]}] {error.category.value}: {error.message}",
        extra={"extra_data": error_dict},
        exc_info=exc_info
    )


# ============================================================================
# ERROR CONVERSION UTILITIES
# ============================================================================

def wrap_query_error(
    error: BaseException,
    metric: str,
    tenant_id: Optional[str] = None,
    operation: Optional[str] = None
) -> QueryExecutionError:
    """Envuelve un error del data source en QueryExecutionError."""
    if isinstance(error, QueryExecutionError):
        return error
    return QueryExecutionError(
        message=f"Error ejecutando {metric}: {type(error).__name__}: {str(error)}",
        original_error=error,
        context=ErrorContext(
            tenant_id=tenant_id,
            metric=metric,
            operation=operation
        )
    )


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    # Categories & Severity
    "ErrorCategory",
    "ErrorSeverity",
    # Exceptions
    "AnalyticsError",
    "InvalidRequestError",
    "CatalogError",
    "UnknownMetricError",
    "UnsupportedFilterError",
    "QueryExecutionError",
    "QueryTimeoutError",
    "CacheBackendError",
    "ErrorContext",
    # Decorator
    "recover_errors",
    # Utilities
    "wrap_query_error",
]
