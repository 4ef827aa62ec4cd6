from __future__ import annotations

from typing import Optional


class AppError(Exception):
    """Base app error."""


class ValidationError(AppError):
    pass


class NotFoundError(AppError):
    pass


class UnknownBeverageError(NotFoundError):
    def __init__(self, beverage_id: int):
        super().__init__(f"Beverage {beverage_id} not found.")
        self.beverage_id = beverage_id


class DuplicateNameError(ValidationError):
    def __init__(self, name: str, kind: str = "beverage"):
        super().__init__(f"A {kind} named '{name}' already exists.")
        self.name = name
        self.kind = kind


class InsufficientStockError(AppError):
    """Cart needs more liters than the scope holds.

    The payload is meant for building a user-facing message, callers should
    not parse ``str(exc)``.
    """

    def __init__(
        self,
        beverage_id: int,
        beverage_name: str,
        requested_liters: float,
        available_liters: float,
        event_id: Optional[int] = None,
        message: Optional[str] = None,
    ):
        self.beverage_id = beverage_id
        self.beverage_name = beverage_name
        self.requested_liters = float(requested_liters)
        self.available_liters = float(available_liters)
        self.event_id = event_id
        super().__init__(
            message
            or f"Not enough stock for {beverage_name}. "
            f"Requested: {self.requested_liters:.3f}L Available: {self.available_liters:.3f}L"
        )

    @property
    def shortfall_liters(self) -> float:
        return round(max(0.0, self.requested_liters - self.available_liters), 6)


class StockDepletedError(InsufficientStockError):
    def __init__(self, beverage_id: int, beverage_name: str, requested_liters: float, event_id: Optional[int] = None):
        super().__init__(
            beverage_id,
            beverage_name,
            requested_liters,
            0.0,
            event_id=event_id,
            message=f"Stock depleted for {beverage_name}.",
        )


class PriceNotConfiguredError(AppError):
    def __init__(self, beverage_id: int, container_size: int, event_id: Optional[int] = None):
        super().__init__(
            f"No price configured for beverage {beverage_id} ({container_size}ml) in scope {event_id or 'general'}."
        )
        self.beverage_id = beverage_id
        self.container_size = container_size
        self.event_id = event_id


class InvalidTabTransitionError(AppError):
    def __init__(self, tab_id: int, current: str, expected: str):
        super().__init__(f"Tab {tab_id} is '{current}', expected '{expected}'.")
        self.tab_id = tab_id
        self.current = current
        self.expected = expected


class TabHasActiveSalesError(AppError):
    pass


class StorageUnavailableError(AppError):
    pass


class ConcurrentModificationError(AppError):
    pass
