from .catalog_service import CatalogService
from .stock_service import StockService
from .price_service import PriceService
from .tab_service import TabService
from .sales_service import SalesService
from .reporting_service import ReportingService
from .event_service import EventService
from .excel_service import ExcelService
from .operations_service import OperationsService

__all__ = [
    "CatalogService",
    "StockService",
    "PriceService",
    "TabService",
    "SalesService",
    "ReportingService",
    "EventService",
    "ExcelService",
    "OperationsService",
]
