"""
Conexión a Base de Datos

Crea engines async de SQLAlchemy para SQLite (desarrollo/tests) o
PostgreSQL (producción). El motor de analytics solo lee: no hay sesiones
ORM ni transacciones de escritura.

No hay engine global: cada contexto de aplicación crea el suyo y lo
cierra con dispose_engine().
"""

from pathlib import Path
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from config.settings import Settings, settings
from src.utils.logger import get_logger

logger = get_logger(__name__)


def create_database_engine(config: Optional[Settings] = None) -> AsyncEngine:
    """
    Crea el engine async según la configuración.

    Args:
        config: Settings a usar (default: settings globales)

    Returns:
        AsyncEngine listo para usar
    """
    config = config or settings
    database_url = config.get_async_database_url()

    if "aiosqlite" in database_url:
        db_path = database_url.replace("sqlite+aiosqlite:///", "")
        if db_path and not db_path.startswith(":memory:"):
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        engine = create_async_engine(
            database_url,
            echo=config.DATABASE_ECHO,
            connect_args={"check_same_thread": False}
        )
    else:
        # PostgreSQL async con connection pooling
        engine = create_async_engine(
            database_url,
            echo=config.DATABASE_ECHO,
            pool_size=config.DATABASE_POOL_SIZE,
            max_overflow=config.DATABASE_MAX_OVERFLOW,
            pool_recycle=config.DATABASE_POOL_RECYCLE,
            pool_pre_ping=True
        )

    logger.info(f"Engine de base de datos creado: {engine.url.render_as_string(hide_password=True)}")
    return engine


async def dispose_engine(engine: AsyncEngine) -> None:
    """Cierra las conexiones del pool."""
    await engine.dispose()
    logger.info("Engine de base de datos cerrado")
