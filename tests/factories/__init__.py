"""
Factories para Tests

Proporciona factories para crear objetos de prueba de forma limpia y reutilizable.
Sigue el patrón Factory de factory-boy para testing.

Uso:
    from tests.factories import AnalyticsRequestFactory, WorkOrderRowFactory

    # Crear instancia con valores por defecto
    request = AnalyticsRequestFactory()

    # Crear con valores personalizados
    request = AnalyticsRequestFactory(metrics=["totalRevenue"], compared=True)

    # Crear múltiples filas
    rows = WorkOrderRowFactory.build_batch(5, business_id="org-1")
"""

from tests.factories.request import AnalyticsRequestFactory, ComparisonPeriodFactory
from tests.factories.catalog import MetricDefinitionFactory, MetricSpecFactory
from tests.factories.rows import CustomerRowFactory, WorkOrderRowFactory

__all__ = [
    # Request factories
    "AnalyticsRequestFactory",
    "ComparisonPeriodFactory",

    # Catalog factories
    "MetricSpecFactory",
    "MetricDefinitionFactory",

    # Row factories
    "WorkOrderRowFactory",
    "CustomerRowFactory",
]
