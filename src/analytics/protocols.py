"""
Protocolos (Interfaces) del Motor de Analytics

Capacidades que el host le entrega al motor:
- DataSource: ejecuta consultas planificadas contra los datos del tenant
- CacheBackend: almacén de reportes con TTL y tags

Python usa typing.Protocol para duck typing estructural.
"""

from datetime import datetime
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    List,
    Mapping,
    Optional,
    Protocol,
    Sequence,
    runtime_checkable,
)

if TYPE_CHECKING:
    from src.analytics.planner import PlannedQuery


# Reloj inyectable (debe retornar datetimes con zona UTC)
Clock = Callable[[], datetime]


@runtime_checkable
class DataSource(Protocol):
    """
    Capacidad de acceso a datos.

    Cualquier clase que implemente execute_query() con esta firma
    es compatible con este protocolo.
    """

    async def execute_query(
        self,
        tenant_id: str,
        query: "PlannedQuery"
    ) -> Sequence[Mapping[str, Any]]:
        """
        Ejecuta una consulta agregada.

        Args:
            tenant_id: Tenant dueño de los datos
            query: Consulta planificada (parametrizada)

        Returns:
            Filas con la columna "value" y las columnas de agrupación
        """
        ...


@runtime_checkable
class CacheBackend(Protocol):
    """
    Almacén de cache con espacio de nombres por tenant.

    invalidate_tags es el punto de invalidación explícita
    (por ejemplo al escribir en una tabla origen).
    """

    async def get(self, key: str, tenant_id: str) -> Optional[Any]:
        """Retorna el valor o None si no existe o expiró."""
        ...

    async def set(
        self,
        key: str,
        value: Any,
        ttl_seconds: int,
        tenant_id: str,
        tags: Optional[List[str]] = None
    ) -> None:
        """Guarda un valor con TTL."""
        ...

    async def invalidate_tags(self, tenant_id: str, tags: List[str]) -> int:
        """Elimina las entradas del tenant con alguno de los tags. Retorna cuántas."""
        ...
