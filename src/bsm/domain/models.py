from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Optional, Union


class ContainerSize(IntEnum):
    SMALL = 300
    MEDIUM = 500
    LARGE = 1000

    @classmethod
    def parse(cls, value: object) -> "ContainerSize":
        if isinstance(value, str) and value.strip().upper() in cls.__members__:
            return cls[value.strip().upper()]
        return cls(int(value))  # type: ignore[arg-type]

    @property
    def liters(self) -> float:
        return self.value / 1000


class TabStatus(str, Enum):
    AVAILABLE = "available"
    IN_USE = "in_use"
    AWAITING_PAYMENT = "awaiting_payment"


class EventStatus(str, Enum):
    PLANNING = "planning"
    ACTIVE = "active"
    FINALIZED = "finalized"


@dataclass(frozen=True)
class BeverageType:
    id: int
    name: str
    color: str
    description: str


@dataclass(frozen=True)
class StockRecord:
    id: int
    beverage_id: int
    beverage_name: str
    event_id: Optional[int]
    quantity_liters: float
    low_stock_threshold_liters: float
    version: int = 0

    @property
    def is_depleted(self) -> bool:
        return self.quantity_liters <= 0

    @property
    def is_low(self) -> bool:
        return 0 < self.quantity_liters < self.low_stock_threshold_liters


@dataclass(frozen=True)
class Unmanaged:
    """No stock record for the scope: stock control is disabled."""

    beverage_id: int
    event_id: Optional[int]


@dataclass(frozen=True)
class Managed:
    record: StockRecord

    @property
    def quantity_liters(self) -> float:
        return self.record.quantity_liters


StockControl = Union[Unmanaged, Managed]


@dataclass(frozen=True)
class PriceRecord:
    id: int
    beverage_id: int
    beverage_name: str
    event_id: Optional[int]
    price_small: float
    price_medium: float
    price_large: float

    def price_for(self, size: ContainerSize) -> float:
        if size == ContainerSize.SMALL:
            return self.price_small
        if size == ContainerSize.MEDIUM:
            return self.price_medium
        return self.price_large


@dataclass(frozen=True)
class Tab:
    id: int
    number: int
    status: TabStatus
    running_total: float
    opened_at: Optional[str]
    closed_at: Optional[str]
    paid_at: Optional[str]


@dataclass(frozen=True)
class TabItem:
    sale_id: int
    beverage_id: int
    beverage_name: str
    container_size_ml: int
    quantity: int
    timestamp: str
    unit_price: float
    line_total: float


@dataclass(frozen=True)
class Event:
    id: int
    name: str
    location: str
    date: str
    contact: Optional[str]
    contact_name: Optional[str]
    status: EventStatus
    created_at: str
    updated_at: str


@dataclass(frozen=True)
class Sale:
    id: int
    beverage_id: int
    beverage_name: str
    container_size_ml: int
    quantity: int
    timestamp: str
    total_volume_ml: float
    unit_price: float
    tab_id: Optional[int]
    actor_id: int
    event_id: Optional[int]

    @property
    def line_total(self) -> float:
        return round(self.quantity * self.unit_price, 2)


@dataclass(frozen=True)
class CartLine:
    beverage_id: int
    container_size: ContainerSize
    quantity: int


@dataclass(frozen=True)
class QuotedLine:
    beverage_id: int
    beverage_name: str
    container_size: ContainerSize
    quantity: int
    unit_price: float

    @property
    def volume_ml(self) -> float:
        return float(self.container_size.value * self.quantity)

    @property
    def liters(self) -> float:
        return self.volume_ml / 1000

    @property
    def line_total(self) -> float:
        return round(self.quantity * self.unit_price, 2)


@dataclass(frozen=True)
class CartQuote:
    event_id: Optional[int]
    lines: tuple[QuotedLine, ...]
    liters_by_beverage: tuple[tuple[int, float], ...]

    @property
    def total_volume_ml(self) -> float:
        return sum(line.volume_ml for line in self.lines)

    @property
    def total_price(self) -> float:
        return round(sum(line.line_total for line in self.lines), 2)


@dataclass(frozen=True)
class StockAlert:
    kind: str  # "low_stock" | "depleted"
    beverage_id: int
    beverage_name: str
    event_id: Optional[int]
    quantity_liters: float
    threshold_liters: float


@dataclass(frozen=True)
class SaleReceipt:
    sale_ids: tuple[int, ...]
    total_volume_ml: float
    total_price: float
    event_id: Optional[int]
    tab_id: Optional[int]
    alerts: tuple[StockAlert, ...] = field(default_factory=tuple)

    @property
    def total_liters(self) -> float:
        return self.total_volume_ml / 1000


@dataclass(frozen=True)
class User:
    id: int
    username: str
    role: str
    active: int = 1


class _AnyScope:
    def __repr__(self) -> str:
        return "ANY_SCOPE"


# filter value meaning "every scope", distinct from None (the general scope)
ANY_SCOPE = _AnyScope()


def name_key(name: str) -> str:
    """Comparison key for names: str.casefold() folds accented letters too, SQLite NOCASE does not."""
    return str(name or "").strip().casefold()
