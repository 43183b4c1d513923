"""
Ventanas de Tiempo

Resolución de ventanas semiabiertas [start, end) a partir de un rango
nombrado o de límites explícitos.

Los rangos nombrados usan duraciones fijas (mes = 30 días, trimestre =
90 días, año = 365 días) sin alinear al calendario. Es una aproximación
conocida: "month" es "los últimos 30 días", no "el mes en curso".
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from config.constants import (
    AGGREGATION_LEVELS,
    DEFAULT_AGGREGATION_LEVEL,
    DEFAULT_TIME_RANGE,
    TIME_RANGE_DURATIONS,
    TimeRange,
)
from src.utils.errors import InvalidRequestError


def utc_now() -> datetime:
    """Reloj por defecto del motor."""
    return datetime.now(timezone.utc)


def shift(value: datetime, delta: timedelta) -> datetime:
    """
    value + delta.

    Raises:
        InvalidRequestError: Si el resultado sale del rango de datetime
    """
    try:
        return value + delta
    except OverflowError as e:
        raise InvalidRequestError(
            f"Fecha fuera de rango al desplazar {value.isoformat()} por {delta}",
            field="time_range",
        ) from e


@dataclass(frozen=True)
class TimeWindow:
    """Intervalo semiabierto [start, end)."""
    start: datetime
    end: datetime

    def __post_init__(self):
        if self.start >= self.end:
            raise InvalidRequestError(
                f"Ventana inválida: {self.start.isoformat()} >= {self.end.isoformat()}"
            )

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def previous(self) -> "TimeWindow":
        """Ventana inmediatamente anterior de igual duración."""
        return TimeWindow(shift(self.start, -self.duration), self.start)

    def to_dict(self) -> dict:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


def range_duration(time_range: TimeRange) -> timedelta:
    """Duración fija de un rango (custom usa el rango por defecto)."""
    return TIME_RANGE_DURATIONS.get(time_range, TIME_RANGE_DURATIONS[DEFAULT_TIME_RANGE])


def resolve_window(
    time_range: TimeRange,
    start: Optional[datetime],
    end: Optional[datetime],
    now: datetime
) -> TimeWindow:
    """
    Resuelve la ventana actual de un reporte.

    - Límites explícitos: tienen prioridad.
    - Un solo límite: el otro se deriva de la duración del rango.
    - Sin límites: termina en `now`.

    Raises:
        InvalidRequestError: Rango custom sin ambos límites, o start >= end
    """
    if time_range == TimeRange.CUSTOM and (start is None or end is None):
        raise InvalidRequestError(
            "El rango custom requiere start_date y end_date",
            field="time_range",
        )

    duration = range_duration(time_range)
    if start is not None and end is not None:
        return TimeWindow(start, end)
    if start is not None:
        return TimeWindow(start, shift(start, duration))
    if end is not None:
        return TimeWindow(shift(end, -duration), end)
    return TimeWindow(shift(now, -duration), now)


def resolve_comparison_window(
    time_range: TimeRange,
    start: Optional[datetime],
    end: Optional[datetime],
    current: TimeWindow
) -> TimeWindow:
    """
    Ventana del período de comparación.

    Sin límites explícitos, se toma la duración del rango terminando
    donde empieza la ventana actual.
    """
    if start is not None or end is not None:
        return resolve_window(time_range, start, end, current.start)
    if time_range == TimeRange.CUSTOM:
        raise InvalidRequestError(
            "La comparación custom requiere start_date y end_date",
            field="compare_with",
        )
    duration = range_duration(time_range)
    return TimeWindow(shift(current.start, -duration), current.start)


def aggregation_level_for(time_range: TimeRange, window: TimeWindow) -> str:
    """
    Granularidad sugerida para presentar el reporte.

    Para rangos custom se deriva del largo de la ventana: se usa el rango
    nombrado más corto que la contiene.
    """
    if time_range != TimeRange.CUSTOM:
        return AGGREGATION_LEVELS.get(time_range, DEFAULT_AGGREGATION_LEVEL)

    for named, duration in sorted(TIME_RANGE_DURATIONS.items(), key=lambda item: item[1]):
        if window.duration <= duration:
            return AGGREGATION_LEVELS[named]
    return AGGREGATION_LEVELS[TimeRange.YEAR]


def daily_windows(end: datetime, days: int) -> List[TimeWindow]:
    """
    `days` ventanas consecutivas de 24h que terminan en `end`,
    de la más antigua a la más reciente.
    """
    step = timedelta(days=1)
    first_start = end - step * days
    return [
        TimeWindow(first_start + step * i, first_start + step * (i + 1))
        for i in range(days)
    ]
