"""
Metrics Collection

Instrumentación en proceso del motor de analytics.
Exporta en formato Prometheus para que el host la publique si quiere.
"""

import time
from typing import Dict, Any, Optional, cast
from collections import defaultdict
from threading import Lock

from src.utils.logger import get_logger

logger = get_logger(__name__)


# ============================================================================
# METRIC TYPES
# ============================================================================

def _labels_key(labels: Optional[Dict[str, str]] = None) -> str:
    """Genera una clave única para un conjunto de labels."""
    if not labels:
        return ""
    return ",".join(f'{k}="{v}"' for k, v in sorted(labels.items()))


class Counter:
    """
    Contador que solo puede incrementar.

    Uso:
        reports_generated = Counter("analytics_reports_total", "Reportes generados")
        reports_generated.inc(labels={"cached": "false"})
    """

    def __init__(self, name: str, description: str = ""):
        self.name = name
        self.description = description
        self._values: Dict[str, float] = defaultdict(float)
        self._lock = Lock()

    def inc(self, value: float = 1.0, labels: Optional[Dict[str, str]] = None) -> None:
        """Incrementa el contador."""
        if value < 0:
            raise ValueError("Counter solo puede incrementar")

        key = _labels_key(labels)
        with self._lock:
            self._values[key] += value

    def get(self, labels: Optional[Dict[str, str]] = None) -> float:
        """Obtiene el valor actual."""
        return self._values.get(_labels_key(labels), 0.0)

    def get_all(self) -> Dict[str, float]:
        """Obtiene todos los valores."""
        return dict(self._values)

    def reset(self) -> None:
        with self._lock:
            self._values.clear()


class Histogram:
    """
    Histograma para distribuciones de valores.

    Uso:
        report_duration = Histogram("analytics_report_duration_seconds")
        report_duration.observe(0.5)
    """

    DEFAULT_BUCKETS = (
        0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0
    )

    def __init__(
        self,
        name: str,
        description: str = "",
        buckets: Optional[tuple] = None
    ):
        self.name = name
        self.description = description
        self.buckets = buckets or self.DEFAULT_BUCKETS

        self._counts: Dict[str, Dict[float, int]] = defaultdict(lambda: defaultdict(int))
        self._sums: Dict[str, float] = defaultdict(float)
        self._total_counts: Dict[str, int] = defaultdict(int)
        self._lock = Lock()

    def observe(self, value: float, labels: Optional[Dict[str, str]] = None) -> None:
        """Registra una observación."""
        key = _labels_key(labels)
        with self._lock:
            self._sums[key] += value
            self._total_counts[key] += 1

            for bucket in self.buckets:
                if value <= bucket:
                    self._counts[key][bucket] += 1

    def get_percentile(
        self,
        percentile: float,
        labels: Optional[Dict[str, str]] = None
    ) -> Optional[float]:
        """
        Estima un percentil basado en los buckets.

        Nota: Esta es una aproximación ya que solo tenemos los buckets.
        """
        key = _labels_key(labels)
        total = self._total_counts.get(key, 0)

        if total == 0:
            return None

        target_count = total * percentile
        for bucket in sorted(self.buckets):
            # Los buckets ya son acumulativos
            if self._counts[key].get(bucket, 0) >= target_count:
                return float(bucket)

        return float(self.buckets[-1])

    def get_stats(self, labels: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """Obtiene estadísticas del histograma."""
        key = _labels_key(labels)
        total = self._total_counts.get(key, 0)
        total_sum = self._sums.get(key, 0.0)

        return {
            "count": total,
            "sum": total_sum,
            "avg": total_sum / total if total > 0 else 0.0,
            "p50": self.get_percentile(0.50, labels),
            "p90": self.get_percentile(0.90, labels),
            "p99": self.get_percentile(0.99, labels),
        }

    def reset(self) -> None:
        with self._lock:
            self._counts.clear()
            self._sums.clear()
            self._total_counts.clear()


# ============================================================================
# METRICS REGISTRY
# ============================================================================

class MetricsRegistry:
    """
    Registro central de métricas.

    Almacena y gestiona todas las métricas del motor.
    """

    def __init__(self):
        self._metrics: Dict[str, Any] = {}
        self._lock = Lock()

    def counter(self, name: str, description: str = "") -> Counter:
        """Crea o obtiene un Counter."""
        with self._lock:
            if name not in self._metrics:
                self._metrics[name] = Counter(name, description)
            return cast(Counter, self._metrics[name])

    def histogram(
        self,
        name: str,
        description: str = "",
        buckets: Optional[tuple] = None
    ) -> Histogram:
        """Crea o obtiene un Histogram."""
        with self._lock:
            if name not in self._metrics:
                self._metrics[name] = Histogram(name, description, buckets)
            return cast(Histogram, self._metrics[name])

    def get_all(self) -> Dict[str, Any]:
        """Obtiene todas las métricas."""
        result = {}
        for name, metric in self._metrics.items():
            if isinstance(metric, Counter):
                result[name] = metric.get_all()
            elif isinstance(metric, Histogram):
                result[name] = metric.get_stats()
        return result

    def reset(self) -> None:
        """Resetea los valores (las métricas siguen registradas)."""
        for metric in self._metrics.values():
            metric.reset()

    def to_prometheus(self) -> str:
        """
        Exporta métricas en formato Prometheus.

        Returns:
            String en formato Prometheus exposition
        """
        lines = []

        for name, metric in self._metrics.items():
            if isinstance(metric, Counter):
                lines.append(f"# HELP {name} {metric.description}")
                lines.append(f"# TYPE {name} counter")
                for labels_key, value in metric.get_all().items():
                    if labels_key:
                        lines.append(f"{name}{{{labels_key}}} {value}")
                    else:
                        lines.append(f"{name} {value}")

            elif isinstance(metric, Histogram):
                lines.append(f"# HELP {name} {metric.description}")
                lines.append(f"# TYPE {name} histogram")
                stats = metric.get_stats()
                lines.append(f"{name}_count {stats['count']}")
                lines.append(f"{name}_sum {stats['sum']}")

        return "\n".join(lines)


# ============================================================================
# GLOBAL REGISTRY AND METRICS
# ============================================================================

registry = MetricsRegistry()

reports_generated = registry.counter(
    "analytics_reports_total",
    "Total de reportes generados (label cached)"
)

metric_failures = registry.counter(
    "analytics_metric_failures_total",
    "Métricas descartadas de un reporte (label reason)"
)

cache_errors = registry.counter(
    "analytics_cache_errors_total",
    "Fallos del backend de cache tratados como miss"
)

insights_generated = registry.counter(
    "analytics_insights_total",
    "Insights emitidos (label type)"
)

report_duration = registry.histogram(
    "analytics_report_duration_seconds",
    "Duración de generate_report en segundos"
)


# ============================================================================
# CONTEXT MANAGER
# ============================================================================

class Timer:
    """
    Context manager para medir tiempo.

    Uso:
        with Timer(report_duration) as timer:
            ...
        took_ms = timer.elapsed_ms
    """

    def __init__(
        self,
        histogram: Optional[Histogram] = None,
        labels: Optional[Dict[str, str]] = None
    ):
        self.histogram = histogram
        self.labels = labels
        self._start: Optional[float] = None
        self._end: Optional[float] = None

    def __enter__(self):
        self._start = time.perf_counter()
        self._end = None
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self._end = time.perf_counter()
        if self.histogram is not None:
            self.histogram.observe(self._end - self._start, self.labels)
        return False

    @property
    def elapsed(self) -> float:
        """Tiempo transcurrido en segundos."""
        if self._start is None:
            return 0.0
        end = self._end if self._end is not None else time.perf_counter()
        return end - self._start

    @property
    def elapsed_ms(self) -> float:
        """Tiempo transcurrido en milisegundos."""
        return round(self.elapsed * 1000, 3)


# ============================================================================
# EXPORT FUNCTIONS
# ============================================================================

def get_metrics() -> Dict[str, Any]:
    """Obtiene todas las métricas en formato JSON."""
    return registry.get_all()


def get_prometheus_metrics() -> str:
    """Obtiene métricas en formato Prometheus."""
    return registry.to_prometheus()
