"""
Plantillas de Dashboard

Dashboards de inicio por industria. Son datos puros: el motor solo usa
las métricas y el rango de cada widget; la persistencia de dashboards
es responsabilidad del host.
"""

from typing import List, Optional, Union

from config.constants import ChartType, Industry, TimeRange, WidgetType
from src.analytics.catalog import MetricCatalog
from src.analytics.models import Dashboard, DashboardWidget, WidgetPosition


def _widget(
    widget_id: str,
    widget_type: WidgetType,
    title: str,
    position: tuple,
    metrics: tuple,
    time_range: TimeRange = TimeRange.MONTH,
    chart_type: Optional[ChartType] = None
) -> DashboardWidget:
    return DashboardWidget(
        id=widget_id,
        type=widget_type,
        title=title,
        position=WidgetPosition(*position),
        metrics=metrics,
        time_range=time_range,
        chart_type=chart_type,
    )


DASHBOARD_TEMPLATES = (
    Dashboard(
        id="hs-overview",
        name="Home Services Overview",
        description="Key metrics for home services business",
        industry=Industry.HOME_SERVICES,
        widgets=(
            _widget("revenue-kpi", WidgetType.KPI, "Total Revenue",
                    (0, 0, 3, 2), ("totalRevenue",)),
            _widget("customers-kpi", WidgetType.KPI, "Active Customers",
                    (3, 0, 3, 2), ("activeCustomers",)),
            _widget("revenue-chart", WidgetType.CHART, "Revenue Trend",
                    (0, 2, 6, 4), ("totalRevenue",), chart_type=ChartType.LINE),
            _widget("service-breakdown", WidgetType.CHART, "Revenue by Service Type",
                    (6, 0, 6, 6), ("revenueByService",), chart_type=ChartType.PIE),
        ),
    ),
    Dashboard(
        id="rest-overview",
        name="Restaurant Overview",
        description="Key metrics for restaurant business",
        industry=Industry.RESTAURANT,
        widgets=(
            _widget("sales-kpi", WidgetType.KPI, "Total Sales",
                    (0, 0, 3, 2), ("totalSales",), TimeRange.DAY),
            _widget("orders-kpi", WidgetType.KPI, "Orders Today",
                    (3, 0, 3, 2), ("orderCount",), TimeRange.DAY),
        ),
    ),
    Dashboard(
        id="retail-overview",
        name="Retail Overview",
        description="Sales and inventory metrics for retail business",
        industry=Industry.RETAIL,
        widgets=(
            _widget("sales-kpi", WidgetType.KPI, "Total Sales",
                    (0, 0, 3, 2), ("totalSales",)),
            _widget("turnover-kpi", WidgetType.KPI, "Inventory Turnover",
                    (3, 0, 3, 2), ("inventoryTurnover",), TimeRange.QUARTER),
            _widget("top-products", WidgetType.CHART, "Top Products",
                    (0, 2, 6, 4), ("topProducts",), chart_type=ChartType.BAR),
        ),
    ),
)


def get_dashboard_templates(industry: Union[Industry, str, None] = None) -> List[Dashboard]:
    """
    Plantillas incluidas, opcionalmente filtradas por industria.

    Una industria sin plantillas (o desconocida) retorna lista vacía.
    """
    if industry is None:
        return list(DASHBOARD_TEMPLATES)
    tag = industry.value if isinstance(industry, Industry) else str(industry)
    return [d for d in DASHBOARD_TEMPLATES if d.industry.value == tag]


def validate_templates(catalog: MetricCatalog, templates=DASHBOARD_TEMPLATES) -> None:
    """
    Verifica que cada widget referencie métricas existentes.

    Raises:
        CatalogError: Si alguna plantilla apunta a una métrica desconocida
    """
    for dashboard in templates:
        for key in dashboard.metric_keys():
            catalog.require(dashboard.industry, key)
