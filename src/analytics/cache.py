"""
Cache de Reportes

- build_cache_key: llave determinística tenant + request canónico
- InMemoryCacheBackend: backend en proceso con TTL, tags y tamaño acotado
- ReportCache: capa que usa el motor; cualquier fallo del backend es un miss

Formato de llave:
    analytics:{tenant_id}:{sha256(JSON canónico del request)}

El JSON canónico ordena las claves (sort_keys) e incluye la industria
resuelta, así dos requests con el mismo contenido producen la misma llave
sin importar el orden de sus campos.
"""

import asyncio
import copy
import hashlib
import json
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Tuple

from config.constants import CACHE_KEY_PREFIX, CACHE_TAG_ANALYTICS, Industry
from src.analytics.models import AnalyticsRequest, AnalyticsResult
from src.analytics.protocols import CacheBackend
from src.utils.errors import CacheBackendError, ErrorContext
from src.utils.logger import get_logger
from src.utils.metrics import Timer, cache_errors

logger = get_logger(__name__)


# ============================================================================
# LLAVES
# ============================================================================

def canonical_request(request: AnalyticsRequest, industry: Industry) -> str:
    """JSON estable del request (claves ordenadas, industria resuelta, sin tenant)."""
    payload = request.model_dump(mode="json", exclude={"tenant_id"})
    payload["industry"] = industry.value
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)


def build_cache_key(tenant_id: str, request: AnalyticsRequest, industry: Industry) -> str:
    """
    Llave de cache de un reporte.

    Args:
        tenant_id: Tenant dueño del reporte
        request: Request validado
        industry: Industria efectiva (la del request o la por defecto)
    """
    digest = hashlib.sha256(canonical_request(request, industry).encode("utf-8")).hexdigest()
    return f"{CACHE_KEY_PREFIX}:{tenant_id}:{digest}"


def report_tags(industry: Industry) -> List[str]:
    return [CACHE_TAG_ANALYTICS, f"industry:{industry.value}"]


# ============================================================================
# BACKEND EN MEMORIA
# ============================================================================

@dataclass
class CacheEntry:
    value: Any
    expires_at: float
    tags: Tuple[str, ...] = field(default_factory=tuple)


class InMemoryCacheBackend:
    """
    Backend de cache en proceso.

    - Entradas separadas por tenant: una llave nunca se resuelve
      con datos de otro tenant.
    - Expiración por TTL al leer.
    - Tamaño máximo: primero se purgan expiradas, luego las más antiguas.
    - Escrituras serializadas con un asyncio.Lock. Dos misses simultáneos
      del mismo request escriben dos veces; gana la última escritura.
    """

    def __init__(
        self,
        max_entries: int = 5000,
        time_func: Callable[[], float] = time.monotonic
    ):
        self.max_entries = max_entries
        self._time = time_func
        self._entries: "OrderedDict[Tuple[str, str], CacheEntry]" = OrderedDict()
        self._lock = asyncio.Lock()

    async def get(self, key: str, tenant_id: str) -> Optional[Any]:
        entry = self._entries.get((tenant_id, key))
        if entry is None:
            return None
        if entry.expires_at <= self._time():
            self._entries.pop((tenant_id, key), None)
            return None
        return entry.value

    async def set(
        self,
        key: str,
        value: Any,
        ttl_seconds: int,
        tenant_id: str,
        tags: Optional[List[str]] = None
    ) -> None:
        async with self._lock:
            slot = (tenant_id, key)
            self._entries.pop(slot, None)
            if len(self._entries) >= self.max_entries:
                self._evict()
            self._entries[slot] = CacheEntry(
                value=value,
                expires_at=self._time() + ttl_seconds,
                tags=tuple(tags or ()),
            )

    async def invalidate_tags(self, tenant_id: str, tags: List[str]) -> int:
        wanted = set(tags)
        async with self._lock:
            doomed = [
                slot for slot, entry in self._entries.items()
                if slot[0] == tenant_id and wanted.intersection(entry.tags)
            ]
            for slot in doomed:
                del self._entries[slot]
        if doomed:
            logger.debug(f"Cache invalidado: {len(doomed)} entradas de {tenant_id} ({', '.join(tags)})")
        return len(doomed)

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def _evict(self) -> None:
        now = self._time()
        expired = [slot for slot, entry in self._entries.items() if entry.expires_at <= now]
        for slot in expired:
            del self._entries[slot]

        while len(self._entries) >= self.max_entries:
            self._entries.popitem(last=False)


# ============================================================================
# CACHE DE REPORTES
# ============================================================================

class ReportCache:
    """
    Cache de AnalyticsResult sobre un CacheBackend.

    Un backend que falla nunca afecta al reporte: la lectura se trata
    como miss y la escritura se omite.
    """

    def __init__(
        self,
        backend: CacheBackend,
        ttl_seconds: int = 300,
        enabled: bool = True
    ):
        self.backend = backend
        self.ttl_seconds = ttl_seconds
        self.enabled = enabled

    async def get(self, tenant_id: str, key: str) -> Optional[AnalyticsResult]:
        """
        Busca un reporte.

        Returns:
            Copia con cached=True y took_ms = tiempo de recuperación,
            o None en miss / fallo del backend
        """
        if not self.enabled:
            return None

        with Timer() as timer:
            try:
                value = await self.backend.get(key, tenant_id)
            except Exception as e:
                self._backend_failed("get", tenant_id, e)
                return None

            if not isinstance(value, AnalyticsResult):
                return None
            value = copy.deepcopy(value)

        return value.as_cached(timer.elapsed_ms)

    async def set(
        self,
        tenant_id: str,
        key: str,
        result: AnalyticsResult,
        industry: Industry
    ) -> None:
        if not self.enabled:
            return
        try:
            await self.backend.set(
                key,
                copy.deepcopy(result),
                self.ttl_seconds,
                tenant_id,
                report_tags(industry),
            )
        except Exception as e:
            self._backend_failed("set", tenant_id, e)

    async def invalidate(self, tenant_id: str, tags: Optional[List[str]] = None) -> int:
        """Invalidación explícita (por defecto, todos los reportes del tenant)."""
        try:
            return await self.backend.invalidate_tags(tenant_id, tags or [CACHE_TAG_ANALYTICS])
        except Exception as e:
            self._backend_failed("invalidate", tenant_id, e)
            return 0

    @staticmethod
    def _backend_failed(operation: str, tenant_id: str, error: Exception) -> None:
        wrapped = CacheBackendError(
            f"Fallo del backend de cache en {operation}: {type(error).__name__}: {error}",
            context=ErrorContext(tenant_id=tenant_id, operation=operation),
            original_error=error,
        )
        cache_errors.inc(labels={"operation": operation})
        logger.warning(wrapped.message, extra={"extra_data": wrapped.to_dict()})
