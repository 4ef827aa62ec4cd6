from __future__ import annotations

import logging
from typing import Optional

from bsm.config import EngineSettings
from bsm.domain.errors import InvalidTabTransitionError, NotFoundError
from bsm.domain.models import ContainerSize, Tab, TabItem, TabStatus
from bsm.repositories.unit_of_work import now_iso

log = logging.getLogger(__name__)


class TabService:
    """Numbered customer tabs cycling available -> in_use -> awaiting_payment -> available."""

    def __init__(self, repo, settings: EngineSettings | None = None):
        self.repo = repo
        self.settings = settings or EngineSettings()

    @property
    def _current_prices(self) -> bool:
        return self.settings.report_price_basis == "current"

    def list(self, status: Optional[TabStatus | str] = None) -> list[Tab]:
        return self.repo.list_tabs(TabStatus(status).value if status is not None else None)

    def get(self, tab_id: int) -> Tab:
        tab = self.repo.get_tab(int(tab_id))
        if not tab:
            raise NotFoundError(f"Tab {tab_id} not found.")
        return tab

    def get_by_number(self, number: int) -> Tab:
        tab = self.repo.get_tab_by_number(int(number))
        if not tab:
            raise NotFoundError(f"Tab #{number} not found.")
        return tab

    def _require(self, tab: Tab, expected: TabStatus) -> None:
        if tab.status is not expected:
            raise InvalidTabTransitionError(tab.id, tab.status.value, expected.value)

    def open(self, number: int) -> Tab:
        tab = self.get_by_number(number)
        self._require(tab, TabStatus.AVAILABLE)
        if not self.repo.mark_tab_open(tab.id, now_iso()):
            self._require(self.get(tab.id), TabStatus.AVAILABLE)
        log.info("tab_opened tab=%s number=%s", tab.id, tab.number)
        return self.get(tab.id)

    def close(self, tab_id: int) -> Tab:
        tab = self.get(tab_id)
        self._require(tab, TabStatus.IN_USE)
        with self.repo.transaction():
            total = self.repo.tab_total(tab.id, current_prices=self._current_prices)
            if not self.repo.mark_tab_closed(tab.id, total, now_iso()):
                self._require(self.get(tab.id), TabStatus.IN_USE)
        log.info("tab_closed tab=%s number=%s total=%.2f", tab.id, tab.number, total)
        return self.get(tab.id)

    def confirm_payment(self, tab_id: int) -> Tab:
        tab = self.get(tab_id)
        self._require(tab, TabStatus.AWAITING_PAYMENT)
        with self.repo.transaction():
            if not self.repo.mark_tab_paid(tab.id, now_iso()):
                self._require(self.get(tab.id), TabStatus.AWAITING_PAYMENT)
            detached = self.repo.detach_tab_sales(tab.id)
        log.info("tab_paid tab=%s number=%s total=%.2f detached_sales=%s", tab.id, tab.number, tab.running_total, detached)
        return self.get(tab.id)

    def current_total(self, tab_id: int) -> float:
        tab = self.get(tab_id)
        return self.repo.tab_total(tab.id, current_prices=self._current_prices)

    def items(self, tab_id: int) -> list[TabItem]:
        tab = self.get(tab_id)
        items = []
        for s in self.repo.list_sales(tab_id=tab.id):
            unit_price = s.unit_price
            if self._current_prices:
                rec = self.repo.get_price(s.beverage_id, s.event_id)
                unit_price = rec.price_for(ContainerSize(s.container_size_ml)) if rec else 0.0
            items.append(
                TabItem(
                    sale_id=s.id,
                    beverage_id=s.beverage_id,
                    beverage_name=s.beverage_name,
                    container_size_ml=s.container_size_ml,
                    quantity=s.quantity,
                    timestamp=s.timestamp,
                    unit_price=unit_price,
                    line_total=round(s.quantity * unit_price, 2),
                )
            )
        return items

    def with_items(self, tab_id: int) -> tuple[Tab, list[TabItem]]:
        return self.get(tab_id), self.items(tab_id)
