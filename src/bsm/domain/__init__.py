from .models import (
    ANY_SCOPE,
    BeverageType,
    CartLine,
    CartQuote,
    ContainerSize,
    Event,
    EventStatus,
    Managed,
    PriceRecord,
    QuotedLine,
    Sale,
    SaleReceipt,
    StockAlert,
    StockRecord,
    StockControl,
    Tab,
    TabItem,
    TabStatus,
    Unmanaged,
    User,
    name_key,
)
from .errors import (
    AppError,
    ConcurrentModificationError,
    DuplicateNameError,
    InsufficientStockError,
    InvalidTabTransitionError,
    NotFoundError,
    PriceNotConfiguredError,
    StockDepletedError,
    StorageUnavailableError,
    TabHasActiveSalesError,
    UnknownBeverageError,
    ValidationError,
)

__all__ = [
    "ANY_SCOPE",
    "BeverageType",
    "CartLine",
    "CartQuote",
    "ContainerSize",
    "Event",
    "EventStatus",
    "Managed",
    "PriceRecord",
    "QuotedLine",
    "Sale",
    "SaleReceipt",
    "StockAlert",
    "StockRecord",
    "StockControl",
    "Tab",
    "TabItem",
    "TabStatus",
    "Unmanaged",
    "User",
    "name_key",
    "AppError",
    "ConcurrentModificationError",
    "DuplicateNameError",
    "InsufficientStockError",
    "InvalidTabTransitionError",
    "NotFoundError",
    "PriceNotConfiguredError",
    "StockDepletedError",
    "StorageUnavailableError",
    "TabHasActiveSalesError",
    "UnknownBeverageError",
    "ValidationError",
]
