from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from bsm.config import EngineSettings, get_app_paths
from bsm.logging_config import setup_logging
from bsm.repositories.sqlite_repo import SqliteRepository
from bsm.services.catalog_service import CatalogService
from bsm.services.event_service import EventService
from bsm.services.excel_service import ExcelService
from bsm.services.operations_service import OperationsService
from bsm.services.price_service import PriceService
from bsm.services.reporting_service import ReportingService
from bsm.services.sales_service import SalesService
from bsm.services.stock_service import StockService
from bsm.services.tab_service import TabService

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class AppContainer:
    settings: EngineSettings
    repo: SqliteRepository
    catalog: CatalogService
    stock: StockService
    prices: PriceService
    tabs: TabService
    sales: SalesService
    reporting: ReportingService
    events: EventService
    excel: ExcelService
    operations: OperationsService


def build_container(db_path: Path | str, settings: EngineSettings | None = None) -> AppContainer:
    settings = settings or EngineSettings()
    repo = SqliteRepository(db_path, tab_count=settings.tab_count)
    repo.init_db()

    catalog = CatalogService(repo)
    stock = StockService(repo, settings)
    prices = PriceService(repo)
    tabs = TabService(repo, settings)
    sales = SalesService(repo, settings)
    reporting = ReportingService(repo, settings)
    events = EventService(repo, reporting)
    excel = ExcelService(repo, catalog, stock, prices)
    operations = OperationsService(repo, db_path=db_path)

    return AppContainer(
        settings=settings,
        repo=repo,
        catalog=catalog,
        stock=stock,
        prices=prices,
        tabs=tabs,
        sales=sales,
        reporting=reporting,
        events=events,
        excel=excel,
        operations=operations,
    )


def bootstrap(app_name: str = "BeverageStandManager") -> AppContainer:
    """Set up logging in the per-user data dir and build the container from env settings."""
    paths = get_app_paths(app_name)
    setup_logging(paths.logs_dir)
    container = build_container(paths.db_path, EngineSettings.from_env())
    log.info("app_started db=%s", paths.db_path)
    return container
