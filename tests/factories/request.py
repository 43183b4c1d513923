"""
Factory para AnalyticsRequest

Proporciona factories para requests de reporte y períodos de comparación.
"""

import factory

from config.constants import Industry, TimeRange
from src.analytics.models import AnalyticsRequest, ComparisonPeriod


class ComparisonPeriodFactory(factory.Factory):
    """
    Factory para períodos de comparación.

    Ejemplos:
        period = ComparisonPeriodFactory()
        period = ComparisonPeriodFactory(time_range=TimeRange.YEAR)
    """

    class Meta:
        model = ComparisonPeriod

    time_range = TimeRange.MONTH
    start_date = None
    end_date = None


class AnalyticsRequestFactory(factory.Factory):
    """
    Factory para requests de reporte.

    Ejemplos:
        # Request básico de home services
        request = AnalyticsRequestFactory()

        # Métricas específicas
        request = AnalyticsRequestFactory(metrics=["totalSales"], industry=Industry.RESTAURANT)

        # Con comparación contra el año anterior
        request = AnalyticsRequestFactory(compared=True)

        # Rango custom
        request = AnalyticsRequestFactory(
            time_range=TimeRange.CUSTOM,
            start_date=datetime(2024, 1, 1),
            end_date=datetime(2024, 2, 1),
        )
    """

    class Meta:
        model = AnalyticsRequest

    industry = Industry.HOME_SERVICES
    metrics = factory.LazyFunction(lambda: ["totalRevenue", "activeCustomers"])
    time_range = TimeRange.MONTH
    start_date = None
    end_date = None
    group_by = None
    filters = factory.LazyFunction(dict)
    compare_with = None

    class Params:
        compared = factory.Trait(
            compare_with=factory.SubFactory(ComparisonPeriodFactory, time_range=TimeRange.YEAR)
        )
