"""
Data Source SQLAlchemy

Implementación de DataSource sobre un AsyncEngine. Ejecuta las consultas
planificadas tal cual (ya parametrizadas) y retorna las filas como dicts.
"""

from typing import Any, Dict, List

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from src.analytics.planner import PlannedQuery
from src.utils.errors import ErrorContext, QueryExecutionError
from src.utils.logger import get_logger

logger = get_logger(__name__)


class SQLAlchemyDataSource:
    """
    DataSource de solo lectura.

    Uso:
        data_source = SQLAlchemyDataSource(engine)
        rows = await data_source.execute_query("org-1", planned_query)
    """

    def __init__(self, engine: AsyncEngine):
        self.engine = engine

    async def execute_query(self, tenant_id: str, query: PlannedQuery) -> List[Dict[str, Any]]:
        """
        Ejecuta una consulta planificada.

        Raises:
            QueryExecutionError: Si la consulta es de otro tenant o falla en la BD
        """
        if query.tenant_id != tenant_id:
            raise QueryExecutionError(
                f"La consulta de {query.metric} fue planificada para otro tenant",
                context=ErrorContext(tenant_id=tenant_id, metric=query.metric),
            )

        logger.debug(f"Ejecutando {query.metric} ({query.purpose.value})")
        try:
            async with self.engine.connect() as conn:
                result = await conn.execute(query.statement)
                return [dict(row._mapping) for row in result]
        except SQLAlchemyError as e:
            raise QueryExecutionError(
                f"Error de base de datos en {query.metric}: {e}",
                context=ErrorContext(
                    tenant_id=tenant_id,
                    metric=query.metric,
                    operation=query.purpose.value,
                ),
                original_error=e,
            ) from e
