"""
Application Context

Contenedor de dependencias para los hosts que embeben el motor.
Arma settings, engine de base de datos, data source, cache y
AnalyticsEngine, sin instancias globales: cada host crea (y cierra)
su propio contexto.

Uso:
    ctx = create_app_context()
    result = await ctx.analytics.generate_report("org-1", request)
    await ctx.shutdown()
"""

from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncEngine

from config.settings import Settings, settings
from src.analytics.cache import InMemoryCacheBackend
from src.analytics.catalog import MetricCatalog
from src.analytics.engine import AnalyticsEngine
from src.analytics.models import Dashboard
from src.analytics.protocols import CacheBackend, Clock, DataSource
from src.database.connection import create_database_engine, dispose_engine
from src.database.datasource import SQLAlchemyDataSource
from src.utils.logger import get_logger


@dataclass
class AppContext:
    """
    Contenedor de contexto de aplicación.

    Centraliza las dependencias del motor para:
    - Facilitar testing con fakes
    - Desacoplar el motor del almacenamiento
    - Permitir configuración por entorno
    """

    config: Settings
    data_source: DataSource
    cache_backend: CacheBackend
    analytics: AnalyticsEngine
    db_engine: Optional[AsyncEngine] = None
    _logger: Any = field(default=None, repr=False)

    @property
    def logger(self):
        """Logger con lazy initialization."""
        if self._logger is None:
            self._logger = get_logger("app")
        return self._logger

    async def shutdown(self) -> None:
        """Cierra las conexiones de base de datos (si el contexto las creó)."""
        if self.db_engine is not None:
            await dispose_engine(self.db_engine)
            self.db_engine = None
        self.logger.info("AppContext cerrado")

    @classmethod
    def create_for_testing(
        cls,
        data_source: DataSource,
        cache_backend: Optional[CacheBackend] = None,
        config: Optional[Settings] = None,
        catalog: Optional[MetricCatalog] = None,
        clock: Optional[Clock] = None,
        templates: Optional[Sequence[Dashboard]] = None,
    ) -> "AppContext":
        """
        Contexto sin base de datos, con un data source provisto.

        Args:
            data_source: Fake o mock del acceso a datos
            cache_backend: Backend de cache (default: en memoria)
        """
        config = config or settings
        cache_backend = cache_backend or InMemoryCacheBackend(
            max_entries=config.ANALYTICS_CACHE_MAX_ENTRIES
        )
        engine = AnalyticsEngine(
            data_source, cache_backend,
            catalog=catalog, config=config, clock=clock, templates=templates,
        )
        return cls(
            config=config,
            data_source=data_source,
            cache_backend=cache_backend,
            analytics=engine,
        )


def create_app_context(
    config: Optional[Settings] = None,
    cache_backend: Optional[CacheBackend] = None,
    catalog: Optional[MetricCatalog] = None,
    clock: Optional[Clock] = None,
    templates: Optional[Sequence[Dashboard]] = None,
) -> AppContext:
    """
    Arma el contexto completo sobre la base de datos configurada.

    Args:
        config: Settings a usar (default: settings globales)
        cache_backend: Backend de cache externo (default: en memoria)
        catalog: Catálogo (default: ANALYTICS_CATALOG_PATH o el incluido)
        clock: Reloj UTC inyectable
        templates: Plantillas de dashboard (default: las incluidas)

    Returns:
        AppContext listo; llamar a shutdown() al terminar
    """
    config = config or settings
    db_engine = create_database_engine(config)
    data_source = SQLAlchemyDataSource(db_engine)
    cache_backend = cache_backend or InMemoryCacheBackend(
        max_entries=config.ANALYTICS_CACHE_MAX_ENTRIES
    )
    engine = AnalyticsEngine(
        data_source, cache_backend,
        catalog=catalog, config=config, clock=clock, templates=templates,
    )

    ctx = AppContext(
        config=config,
        data_source=data_source,
        cache_backend=cache_backend,
        analytics=engine,
        db_engine=db_engine,
    )
    ctx.logger.info(
        f"AppContext inicializado: environment={config.ENVIRONMENT.value}, "
        f"métricas={engine.catalog.count()}"
    )
    return ctx
