from __future__ import annotations

import logging
from typing import Optional

from bsm.config import EngineSettings
from bsm.domain.errors import ConcurrentModificationError, NotFoundError, UnknownBeverageError, ValidationError
from bsm.domain.models import ANY_SCOPE, Managed, StockControl, StockRecord, Unmanaged
from bsm.repositories.unit_of_work import now_iso

log = logging.getLogger("bsm.stock")

_CAS_ATTEMPTS = 3


class StockService:
    """Per-scope liters on hand.

    A missing record means stock control is off for that (beverage, scope);
    a record at 0 liters means the beverage is depleted there.
    """

    def __init__(self, repo, settings: EngineSettings | None = None):
        self.repo = repo
        self.settings = settings or EngineSettings()

    def get(self, beverage_id: int, event_id: Optional[int] = None) -> Optional[StockRecord]:
        return self.repo.get_stock(int(beverage_id), event_id)

    def stock_control(self, beverage_id: int, event_id: Optional[int] = None) -> StockControl:
        rec = self.get(beverage_id, event_id)
        if rec is None:
            return Unmanaged(beverage_id=int(beverage_id), event_id=event_id)
        return Managed(rec)

    def list(self, event_id: Optional[int] = None) -> list[StockRecord]:
        return self.repo.list_stock(event_id)

    def set(
        self,
        beverage_id: int,
        name: Optional[str],
        quantity_liters: float,
        low_stock_threshold_liters: Optional[float] = None,
        event_id: Optional[int] = None,
    ) -> StockRecord:
        beverage = self.repo.get_beverage(int(beverage_id))
        if not beverage:
            raise UnknownBeverageError(int(beverage_id))
        if event_id is not None and not self.repo.get_event(int(event_id)):
            raise NotFoundError(f"Event {event_id} not found.")

        threshold = (
            self.settings.default_low_stock_threshold_liters
            if low_stock_threshold_liters is None
            else float(low_stock_threshold_liters)
        )
        if float(quantity_liters) < 0:
            raise ValidationError("Stock quantity must be >= 0.")
        if threshold < 0:
            raise ValidationError("Low stock threshold must be >= 0.")

        self.repo.set_stock(
            beverage.id,
            (name or beverage.name).strip(),
            float(quantity_liters),
            threshold,
            event_id,
            now_iso(),
        )
        log.info(
            "stock_set beverage=%s event=%s liters=%.3f threshold=%.3f",
            beverage.id, event_id, float(quantity_liters), threshold,
        )
        return self.get(beverage.id, event_id)

    def decrement(self, beverage_id: int, liters: float, event_id: Optional[int] = None) -> bool:
        """Take liters out of the scope, flooring at zero.

        Returns False when the scope has no stock record (control disabled), and
        never raises for stock reasons. A negative amount counts as zero. When the
        record keeps changing under it, the call raises ConcurrentModificationError
        inside a transaction, so the enclosing commit rolls back and retries.
        Outside a transaction it logs the miss and returns False.
        """
        ctx = {"beverage_id": int(beverage_id), "event_id": event_id}
        liters = float(liters)
        if liters < 0:
            log.warning("stock_decrement_negative beverage=%s event=%s liters=%.3f", beverage_id, event_id, liters, extra=ctx)
            liters = 0.0

        for _ in range(_CAS_ATTEMPTS):
            rec = self.get(beverage_id, event_id)
            if rec is None:
                log.warning(
                    "stock_decrement_unmanaged beverage=%s event=%s liters=%.3f", beverage_id, event_id, liters, extra=ctx
                )
                return False
            new_qty = max(0.0, round(rec.quantity_liters - liters, 6))
            if self.repo.decrement_stock(rec.id, new_qty, rec.version, now_iso()):
                log.info(
                    "stock_decremented beverage=%s event=%s liters=%.3f before=%.3f after=%.3f",
                    beverage_id, event_id, liters, rec.quantity_liters, new_qty,
                    extra=ctx,
                )
                return True

        if self.repo.in_transaction:
            raise ConcurrentModificationError(f"Stock record for beverage {beverage_id} keeps changing.")
        log.warning(
            "stock_decrement_contended beverage=%s event=%s attempts=%s", beverage_id, event_id, _CAS_ATTEMPTS, extra=ctx
        )
        return False

    def remove(self, beverage_id: int, event_id: Optional[int] = None) -> bool:
        removed = self.repo.delete_stock(int(beverage_id), event_id)
        if removed:
            log.info("stock_control_disabled beverage=%s event=%s", beverage_id, event_id)
        return removed

    def list_below_threshold(self, event_id=ANY_SCOPE) -> list[StockRecord]:
        if event_id is ANY_SCOPE:
            return self.repo.list_low_stock()
        return self.repo.list_low_stock(event_id, any_scope=False)
