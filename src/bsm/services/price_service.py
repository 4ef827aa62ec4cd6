from __future__ import annotations

import logging
from typing import Optional

from bsm.domain.errors import NotFoundError, UnknownBeverageError, ValidationError
from bsm.domain.models import ANY_SCOPE, ContainerSize, PriceRecord
from bsm.repositories.unit_of_work import now_iso

log = logging.getLogger(__name__)


class PriceService:
    def __init__(self, repo):
        self.repo = repo

    def get(self, beverage_id: int, event_id: Optional[int] = None) -> Optional[PriceRecord]:
        return self.repo.get_price(int(beverage_id), event_id)

    def set(
        self,
        beverage_id: int,
        name: Optional[str],
        price_small: float,
        price_medium: float,
        price_large: float,
        event_id: Optional[int] = None,
    ) -> PriceRecord:
        beverage = self.repo.get_beverage(int(beverage_id))
        if not beverage:
            raise UnknownBeverageError(int(beverage_id))
        if event_id is not None and not self.repo.get_event(int(event_id)):
            raise NotFoundError(f"Event {event_id} not found.")

        prices = (float(price_small), float(price_medium), float(price_large))
        if any(p < 0 for p in prices):
            raise ValidationError("Prices must be >= 0.")

        self.repo.set_price(beverage.id, (name or beverage.name).strip(), *prices, event_id, now_iso())
        log.info(
            "price_set beverage=%s event=%s small=%.2f medium=%.2f large=%.2f",
            beverage.id, event_id, *prices,
        )
        return self.get(beverage.id, event_id)

    def remove(self, beverage_id: int, event_id: Optional[int] = None) -> bool:
        return self.repo.delete_price(int(beverage_id), event_id)

    def list_all(self, event_id=ANY_SCOPE) -> list[PriceRecord]:
        if event_id is ANY_SCOPE:
            return self.repo.list_prices()
        return self.repo.list_prices(event_id, any_scope=False)

    def configured_price(self, beverage_id: int, size: ContainerSize, event_id: Optional[int] = None) -> Optional[float]:
        """Price of one cup, or None when the scope has no positive price for the size."""
        rec = self.get(beverage_id, event_id)
        if rec is None:
            return None
        price = rec.price_for(ContainerSize.parse(size))
        return price if price > 0 else None

    def unit_price(self, beverage_id: int, size: ContainerSize, event_id: Optional[int] = None) -> float:
        return self.configured_price(beverage_id, size, event_id) or 0.0
