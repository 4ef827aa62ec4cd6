from __future__ import annotations

from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Protocol

from bsm.domain.models import CartQuote


def now_iso() -> str:
    return datetime.now().replace(microsecond=0).isoformat(sep=" ")


class UnitOfWork(Protocol):
    def __enter__(self) -> "UnitOfWork": ...
    def __exit__(self, exc_type, exc, tb) -> None: ...
    def record_sales(self, quote: CartQuote, actor_id: int, tab_id: Optional[int]) -> list[int]: ...


@dataclass
class RepositoryUnitOfWork:
    """Transaction boundary for the sale commit.

    Entering opens a store transaction; every repository call made until exit
    shares it. Leaving normally commits, leaving with an exception rolls back.
    """

    repo: object
    timestamp: str = field(default_factory=now_iso)
    _tx: Optional[AbstractContextManager] = field(default=None, init=False, repr=False)

    def __enter__(self) -> "RepositoryUnitOfWork":
        self._tx = self.repo.transaction()
        self._tx.__enter__()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        tx, self._tx = self._tx, None
        if tx is not None:
            tx.__exit__(exc_type, exc, tb)

    def record_sales(self, quote: CartQuote, actor_id: int, tab_id: Optional[int]) -> list[int]:
        # one row per cart line, in cart order, all sharing the commit timestamp
        return [
            int(
                self.repo.insert_sale(
                    beverage_id=line.beverage_id,
                    beverage_name=line.beverage_name,
                    container_size_ml=int(line.container_size),
                    quantity=line.quantity,
                    timestamp_iso=self.timestamp,
                    unit_price=line.unit_price,
                    actor_id=actor_id,
                    event_id=quote.event_id,
                    tab_id=tab_id,
                )
            )
            for line in quote.lines
        ]
