"""
Catálogo de Métricas

Registro cerrado industria → clave de métrica → MetricDefinition.

Todas las definiciones pasan por un esquema pydantic al construir el
catálogo: identificadores SQL, tipos de métrica, cálculos derivados y
claves se validan en tiempo de carga, de modo que un error tipográfico
falla al iniciar y no en medio de un reporte.

Uso:
    catalog = MetricCatalog.builtin()
    definition = catalog.resolve(Industry.HOME_SERVICES, "totalRevenue")
"""

import json
import re
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from config.constants import (
    DEFAULT_TIME_FIELD,
    IDENTIFIER_PATTERN,
    METRIC_KEY_PATTERN,
    RATIO_CALCULATION_COUNT,
    TABLE_PATTERN,
    TAG_CUSTOMERS,
    TAG_ORDER_VALUE,
    TAG_ORDERS,
    TAG_REVENUE,
    TAG_SEGMENTS,
    Industry,
    MetricType,
)
from src.analytics.expressions import ExpressionError, parse_calculation
from src.analytics.models import MetricDefinition
from src.utils.errors import CatalogError, ErrorContext
from src.utils.logger import get_logger

logger = get_logger(__name__)

_IDENTIFIER_RE = re.compile(IDENTIFIER_PATTERN)
_METRIC_KEY_RE = re.compile(METRIC_KEY_PATTERN)


# ============================================================================
# ESQUEMA DE VALIDACIÓN
# ============================================================================

def _check_identifiers(values, what: str) -> None:
    for value in values:
        if not isinstance(value, str) or not _IDENTIFIER_RE.match(value):
            raise ValueError(f"{what} inválido: {value!r}")


class MetricDefinitionSchema(BaseModel):
    """Esquema de una definición de métrica tal como llega del catálogo."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1, max_length=120)
    type: MetricType
    table: str = Field(pattern=TABLE_PATTERN)
    field: str = Field(pattern=IDENTIFIER_PATTERN)
    filters: Dict[str, Union[str, int, float, bool, None]] = Field(default_factory=dict)
    group_by: List[str] = Field(default_factory=list)
    calculations: Dict[str, str] = Field(default_factory=dict)
    dimensions: List[str] = Field(default_factory=list)
    time_field: str = Field(default=DEFAULT_TIME_FIELD, pattern=IDENTIFIER_PATTERN)
    tags: List[str] = Field(default_factory=list)

    @field_validator("filters")
    @classmethod
    def validate_filter_keys(cls, v: Dict[str, Any]) -> Dict[str, Any]:
        _check_identifiers(v.keys(), "Filtro")
        return v

    @field_validator("group_by", "dimensions")
    @classmethod
    def validate_columns(cls, v: List[str]) -> List[str]:
        _check_identifiers(v, "Columna")
        return v

    @field_validator("calculations")
    @classmethod
    def validate_calculations(cls, v: Dict[str, str]) -> Dict[str, str]:
        _check_identifiers(v.keys(), "Nombre de cálculo")
        for name, expression in v.items():
            try:
                parse_calculation(expression)
            except ExpressionError as e:
                raise ValueError(f"Cálculo {name!r}: {e}") from e
        return v

    @model_validator(mode="after")
    def validate_ratio(self) -> "MetricDefinitionSchema":
        if self.type in (MetricType.RATE, MetricType.PERCENTAGE):
            if len(self.calculations) != RATIO_CALCULATION_COUNT:
                raise ValueError(
                    f"Las métricas {self.type.value} requieren exactamente "
                    f"{RATIO_CALCULATION_COUNT} cálculos (numerador, denominador)"
                )
        return self

    def to_definition(self, key: str) -> MetricDefinition:
        return MetricDefinition(
            key=key,
            name=self.name,
            type=self.type,
            table=self.table,
            field=self.field,
            filters=dict(self.filters),
            group_by=tuple(self.group_by),
            calculations=dict(self.calculations),
            dimensions=tuple(self.dimensions),
            time_field=self.time_field,
            tags=tuple(self.tags),
        )


# ============================================================================
# CATÁLOGO INCLUIDO
# ============================================================================

BUILTIN_METRICS: Dict[str, Dict[str, Dict[str, Any]]] = {
    Industry.HOME_SERVICES.value: {
        "totalRevenue": {
            "name": "Total Revenue",
            "type": "revenue",
            "table": "hs.work_orders",
            "field": "total",
            "filters": {"status": "completed"},
            "dimensions": ["service_type", "technician_id"],
            "tags": [TAG_REVENUE],
        },
        "activeCustomers": {
            "name": "Active Customers",
            "type": "count",
            "table": "hs.customers",
            "field": "id",
            "filters": {"status": "active"},
            "tags": [TAG_CUSTOMERS],
        },
        "avgOrderValue": {
            "name": "Average Order Value",
            "type": "average",
            "table": "hs.work_orders",
            "field": "total",
            "filters": {"status": "completed"},
            "dimensions": ["service_type"],
            "tags": [TAG_ORDER_VALUE],
        },
        "completedOrders": {
            "name": "Completed Orders",
            "type": "count",
            "table": "hs.work_orders",
            "field": "id",
            "filters": {"status": "completed"},
            "dimensions": ["service_type", "technician_id"],
            "tags": [TAG_ORDERS],
        },
        "customerSatisfaction": {
            "name": "Customer Satisfaction",
            "type": "average",
            "table": "hs.work_orders",
            "field": "rating",
            "dimensions": ["service_type", "technician_id"],
        },
        "revenueByService": {
            "name": "Revenue by Service",
            "type": "sum",
            "table": "hs.work_orders",
            "field": "total",
            "filters": {"status": "completed"},
            "group_by": ["service_type"],
            "tags": [TAG_SEGMENTS],
        },
    },
    Industry.RESTAURANT.value: {
        "totalSales": {
            "name": "Total Sales",
            "type": "revenue",
            "table": "rest.orders",
            "field": "total",
            "filters": {"status": "completed"},
            "dimensions": ["order_type"],
            "tags": [TAG_REVENUE],
        },
        "orderCount": {
            "name": "Order Count",
            "type": "count",
            "table": "rest.orders",
            "field": "id",
            "dimensions": ["order_type", "status"],
            "tags": [TAG_ORDERS],
        },
        "avgOrderValue": {
            "name": "Average Order Value",
            "type": "average",
            "table": "rest.orders",
            "field": "total",
            "filters": {"status": "completed"},
            "dimensions": ["order_type"],
            "tags": [TAG_ORDER_VALUE],
        },
        "popularItems": {
            "name": "Popular Items",
            "type": "count",
            "table": "rest.order_items",
            "field": "quantity",
            "group_by": ["menu_item_id"],
            "tags": [TAG_SEGMENTS],
        },
    },
    Industry.RETAIL.value: {
        "totalSales": {
            "name": "Total Sales",
            "type": "revenue",
            "table": "retail.sales",
            "field": "total",
            "dimensions": ["channel"],
            "tags": [TAG_REVENUE],
        },
        "inventoryTurnover": {
            "name": "Inventory Turnover",
            "type": "rate",
            "table": "retail.products",
            "field": "stock_quantity",
            "calculations": {
                "cost_of_goods_sold": "SUM(cost_price * quantity_sold)",
                "avg_inventory": "AVG(stock_quantity * cost_price)",
            },
            "dimensions": ["category"],
        },
        "topProducts": {
            "name": "Top Products",
            "type": "count",
            "table": "retail.sale_items",
            "field": "quantity",
            "group_by": ["product_id"],
            "tags": [TAG_SEGMENTS],
        },
    },
    Industry.AUTO_SERVICES.value: {},
    Industry.EDUCATION.value: {},
    Industry.PAYROLL.value: {},
}


# ============================================================================
# CATÁLOGO
# ============================================================================

class MetricCatalog:
    """
    Registro de métricas por industria. Solo lectura tras la construcción.
    """

    def __init__(self, partitions: Mapping[Industry, Mapping[str, MetricDefinition]]):
        self._partitions: Dict[Industry, Dict[str, MetricDefinition]] = {
            industry: dict(partitions.get(industry, {})) for industry in Industry
        }

    @classmethod
    def from_mapping(cls, data: Mapping[str, Mapping[str, Any]]) -> "MetricCatalog":
        """
        Construye y valida un catálogo desde un mapeo industria → métricas.

        Raises:
            CatalogError: Si alguna industria, clave o definición es inválida
        """
        partitions: Dict[Industry, Dict[str, MetricDefinition]] = {}

        for raw_industry, metrics in data.items():
            try:
                industry = Industry(raw_industry)
            except ValueError:
                raise CatalogError(
                    f"Industria desconocida en el catálogo: {raw_industry!r}",
                    context=ErrorContext(industry=str(raw_industry)),
                )
            if not isinstance(metrics, Mapping):
                raise CatalogError(
                    f"La partición {industry.value} debe ser un mapeo de métricas",
                    context=ErrorContext(industry=industry.value),
                )

            partition: Dict[str, MetricDefinition] = {}
            for key, raw in metrics.items():
                if not isinstance(key, str) or not _METRIC_KEY_RE.match(key):
                    raise CatalogError(
                        f"Clave de métrica inválida: {key!r}",
                        context=ErrorContext(industry=industry.value),
                    )
                try:
                    schema = MetricDefinitionSchema.model_validate(raw)
                except ValidationError as e:
                    raise CatalogError(
                        f"Definición inválida {industry.value}.{key}: {e}",
                        context=ErrorContext(industry=industry.value, metric=key),
                        original_error=e,
                    ) from e
                partition[key] = schema.to_definition(key)

            partitions[industry] = partition

        catalog = cls(partitions)
        logger.debug(
            f"Catálogo cargado: {catalog.count()} métricas en "
            f"{len([i for i in Industry if catalog.metrics(i)])} industrias"
        )
        return catalog

    @classmethod
    def from_json_file(cls, path: Union[str, Path]) -> "MetricCatalog":
        """Carga un catálogo desde un archivo JSON con el mismo formato."""
        path = Path(path)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise CatalogError(
                f"No se pudo leer el catálogo {path}: {e}",
                original_error=e,
            ) from e
        if not isinstance(data, Mapping):
            raise CatalogError(f"El catálogo {path} debe ser un objeto JSON")

        logger.info(f"Cargando catálogo de métricas desde {path}")
        return cls.from_mapping(data)

    @classmethod
    def builtin(cls) -> "MetricCatalog":
        """Catálogo incluido con el motor."""
        return cls.from_mapping(BUILTIN_METRICS)

    @staticmethod
    def _coerce_industry(industry: Union[Industry, str, None]) -> Optional[Industry]:
        if industry is None or isinstance(industry, Industry):
            return industry
        try:
            return Industry(industry)
        except ValueError:
            return None

    def industries(self) -> List[Industry]:
        return list(self._partitions)

    def metrics(self, industry: Union[Industry, str]) -> Dict[str, MetricDefinition]:
        """Copia de la partición de una industria (vacía si no existe)."""
        resolved = self._coerce_industry(industry)
        if resolved is None:
            return {}
        return dict(self._partitions[resolved])

    def resolve(
        self,
        industry: Union[Industry, str, None],
        key: str
    ) -> Optional[MetricDefinition]:
        """
        Busca una métrica. Retorna None si no existe (nunca lanza).
        """
        resolved = self._coerce_industry(industry)
        if resolved is None:
            return None
        return self._partitions[resolved].get(key)

    def require(self, industry: Union[Industry, str], key: str) -> MetricDefinition:
        """
        Igual que resolve() pero lanza CatalogError si no existe.

        Usado para validar referencias estáticas (plantillas de dashboard).
        """
        definition = self.resolve(industry, key)
        if definition is None:
            industry_tag = industry.value if isinstance(industry, Industry) else str(industry)
            raise CatalogError(
                f"Métrica {key!r} no existe para la industria {industry_tag}",
                context=ErrorContext(industry=industry_tag, metric=key),
            )
        return definition

    def count(self) -> int:
        return sum(len(p) for p in self._partitions.values())


def load_catalog(path: Optional[str] = None) -> MetricCatalog:
    """
    Catálogo configurado: el del archivo indicado o el incluido.

    Args:
        path: Ruta a un JSON (típicamente settings.ANALYTICS_CATALOG_PATH)
    """
    if path:
        return MetricCatalog.from_json_file(path)
    return MetricCatalog.builtin()
