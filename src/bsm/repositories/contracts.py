from __future__ import annotations

from contextlib import AbstractContextManager
from typing import Optional, Protocol

from bsm.domain.models import BeverageType, Event, PriceRecord, Sale, StockRecord, Tab


class CatalogRepository(Protocol):
    def list_beverages(self) -> list[BeverageType]: ...
    def get_beverage(self, beverage_id: int) -> Optional[BeverageType]: ...
    def get_beverage_by_name(self, name: str) -> Optional[BeverageType]: ...
    def add_beverage(self, name: str, color: str, description: str) -> int: ...
    def update_beverage(self, beverage_id: int, name: str, color: str, description: str) -> bool: ...
    def delete_beverage(self, beverage_id: int) -> bool: ...


class StockRepository(Protocol):
    def get_stock(self, beverage_id: int, event_id: Optional[int]) -> Optional[StockRecord]: ...
    def set_stock(
        self,
        beverage_id: int,
        beverage_name: str,
        quantity_liters: float,
        low_stock_threshold_liters: float,
        event_id: Optional[int],
        now_iso: str,
    ) -> int: ...
    def decrement_stock(self, record_id: int, new_quantity: float, expected_version: int, now_iso: str) -> bool: ...
    @property
    def in_transaction(self) -> bool: ...
    def delete_stock(self, beverage_id: int, event_id: Optional[int]) -> bool: ...


class PriceRepository(Protocol):
    def get_price(self, beverage_id: int, event_id: Optional[int]) -> Optional[PriceRecord]: ...
    def list_prices(self, event_id: Optional[int] = None, *, any_scope: bool = True) -> list[PriceRecord]: ...


class SalesRepository(CatalogRepository, StockRepository, PriceRepository, Protocol):
    def transaction(self) -> AbstractContextManager: ...
    def get_event(self, event_id: int) -> Optional[Event]: ...
    def get_tab(self, tab_id: int) -> Optional[Tab]: ...
    def mark_tab_open(self, tab_id: int, now_iso: str) -> bool: ...
    def insert_sale(
        self,
        beverage_id: int,
        beverage_name: str,
        container_size_ml: int,
        quantity: int,
        timestamp_iso: str,
        unit_price: float,
        actor_id: int,
        event_id: Optional[int],
        tab_id: Optional[int],
    ) -> int: ...
    def get_sale(self, sale_id: int) -> Optional[Sale]: ...
    def list_sales(
        self,
        start_iso: Optional[str] = None,
        end_iso: Optional[str] = None,
        event_id: Optional[int] = None,
        general_only: bool = False,
        tab_id: Optional[int] = None,
    ) -> list[Sale]: ...
