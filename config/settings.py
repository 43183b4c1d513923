"""
Configuración centralizada del sistema

Carga variables de entorno y proporciona acceso a configuración
en todo el proyecto.

Uso:
    from config.settings import settings

    ttl = settings.ANALYTICS_CACHE_TTL_SECONDS
    timeout = settings.ANALYTICS_QUERY_TIMEOUT_SECONDS
"""

import re

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator
from typing import Optional

from config.constants import IDENTIFIER_PATTERN, Industry
from config.environments import Environment, get_config


class Settings(BaseSettings):
    """
    Configuración del motor de analytics con soporte multi-entorno.

    Todas las configuraciones se cargan desde variables de entorno
    o archivo .env, con valores por defecto sensatos para desarrollo.
    """

    # =========================================================================
    # ENTORNO
    # =========================================================================
    ENVIRONMENT: Environment = Environment.DEVELOPMENT
    DEBUG: bool = False

    # =========================================================================
    # INFORMACIÓN DEL PROYECTO
    # =========================================================================
    PROJECT_NAME: str = "Analytics Engine"
    VERSION: str = "1.0.0"

    # =========================================================================
    # BASE DE DATOS (solo lectura, datos operativos de los tenants)
    # =========================================================================
    DATABASE_URL: str = "sqlite+aiosqlite:///analytics.db"
    DATABASE_ECHO: bool = False
    DATABASE_POOL_SIZE: int = 5
    DATABASE_MAX_OVERFLOW: int = 10
    DATABASE_POOL_RECYCLE: int = 1800  # Reciclar conexiones cada 30 min

    # =========================================================================
    # ANALYTICS
    # =========================================================================
    ANALYTICS_DEFAULT_INDUSTRY: Industry = Industry.HOME_SERVICES
    ANALYTICS_TENANT_COLUMN: str = "business_id"
    ANALYTICS_CATALOG_PATH: Optional[str] = None  # JSON que reemplaza el catálogo incluido
    ANALYTICS_TIMESTAMPS_WITH_TIMEZONE: bool = False  # True si las columnas de tiempo son timestamptz

    # Cache de reportes
    ANALYTICS_CACHE_ENABLED: bool = True
    ANALYTICS_CACHE_TTL_SECONDS: int = 300
    ANALYTICS_CACHE_MAX_ENTRIES: int = 5000

    # Ejecución de consultas
    ANALYTICS_QUERY_TIMEOUT_SECONDS: float = 10.0
    ANALYTICS_MAX_CONCURRENT_QUERIES: int = 8

    # Banda (en %) dentro de la cual una variación se considera estable
    ANALYTICS_TREND_STABLE_BAND_PCT: float = 2.0

    # =========================================================================
    # INSIGHTS (umbrales heurísticos)
    # =========================================================================
    INSIGHT_PERIOD_DAYS: int = 30
    INSIGHT_ANOMALY_LOOKBACK_DAYS: int = 14
    INSIGHT_GROWTH_OPPORTUNITY_PCT: float = 10.0
    INSIGHT_DECLINE_WARNING_PCT: float = -5.0
    INSIGHT_CUSTOMER_CHANGE_PCT: float = 5.0
    INSIGHT_ANOMALY_Z_SCORE: float = 2.5
    INSIGHT_ANOMALY_MIN_POINTS: int = 5
    INSIGHT_LOW_SHARE_PCT: float = 10.0
    INSIGHT_CONCENTRATION_PCT: float = 60.0

    # =========================================================================
    # LOGGING
    # =========================================================================
    LOG_LEVEL: str = "INFO"
    LOG_DIR: Optional[str] = None  # Sin directorio solo se loggea a consola
    LOG_MAX_SIZE_MB: int = 50
    LOG_BACKUP_COUNT: int = 10

    # =========================================================================
    # INSTRUMENTACIÓN
    # =========================================================================
    METRICS_ENABLED: bool = True

    @field_validator("DATABASE_URL")
    @classmethod
    def validate_database_url(cls, v: str, info) -> str:
        """Valida que no se use SQLite en producción"""
        values = info.data
        if values.get("ENVIRONMENT") == Environment.PRODUCTION:
            if "sqlite" in v.lower():
                raise ValueError("SQLite no está permitido en producción. Use PostgreSQL.")
        return v

    @field_validator(
        "ANALYTICS_CACHE_TTL_SECONDS",
        "ANALYTICS_CACHE_MAX_ENTRIES",
        "ANALYTICS_MAX_CONCURRENT_QUERIES",
        "INSIGHT_PERIOD_DAYS",
        "INSIGHT_ANOMALY_LOOKBACK_DAYS",
    )
    @classmethod
    def validate_positive_int(cls, v: int) -> int:
        """Valida que los límites enteros sean positivos"""
        if v <= 0:
            raise ValueError("El valor debe ser mayor que cero")
        return v

    @field_validator("ANALYTICS_QUERY_TIMEOUT_SECONDS")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        """Valida que el timeout por métrica sea positivo"""
        if v <= 0:
            raise ValueError("El timeout debe ser mayor que cero")
        return v

    @field_validator("ANALYTICS_TENANT_COLUMN")
    @classmethod
    def validate_tenant_column(cls, v: str) -> str:
        """La columna de tenant se usa como identificador SQL"""
        if not re.match(IDENTIFIER_PATTERN, v):
            raise ValueError(f"Columna de tenant inválida: {v!r}")
        return v

    def get_async_database_url(self) -> str:
        """Retorna la URL de base de datos para async"""
        url = self.DATABASE_URL

        # Convertir URL sync a async si es necesario
        if url.startswith("postgresql://"):
            return url.replace("postgresql://", "postgresql+asyncpg://")
        elif url.startswith("sqlite:///"):
            return url.replace("sqlite:///", "sqlite+aiosqlite:///")

        return url

    def is_production(self) -> bool:
        """Verifica si está en producción."""
        return self.ENVIRONMENT == Environment.PRODUCTION

    def is_development(self) -> bool:
        """Verifica si está en desarrollo."""
        return self.ENVIRONMENT == Environment.DEVELOPMENT

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )


# Valores que el perfil del entorno aporta si no vienen del entorno/.env
PROFILE_FIELDS = (
    "LOG_LEVEL",
    "ANALYTICS_CACHE_TTL_SECONDS",
    "ANALYTICS_QUERY_TIMEOUT_SECONDS",
    "ANALYTICS_MAX_CONCURRENT_QUERIES",
)


def apply_environment_profile(target: Settings) -> Settings:
    """
    Completa la configuración con el perfil del entorno.

    Solo se sobrescriben los campos que no fueron definidos
    explícitamente (variables de entorno, .env o argumentos).
    """
    env_config = get_config(target.ENVIRONMENT)
    if not target.DEBUG:
        target.DEBUG = env_config.DEBUG

    for name in PROFILE_FIELDS:
        if name not in target.model_fields_set and hasattr(env_config, name):
            setattr(target, name, getattr(env_config, name))
    return target


# Instancia única de configuración
settings = apply_environment_profile(Settings())
