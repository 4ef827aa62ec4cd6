from __future__ import annotations

import logging
import sqlite3
import time
from typing import Callable, Iterable, Optional, Union

from bsm.config import EngineSettings
from bsm.domain.errors import (
    ConcurrentModificationError,
    InsufficientStockError,
    InvalidTabTransitionError,
    NotFoundError,
    PriceNotConfiguredError,
    StockDepletedError,
    UnknownBeverageError,
    ValidationError,
)
from bsm.domain.models import (
    BeverageType,
    CartLine,
    CartQuote,
    ContainerSize,
    EventStatus,
    Managed,
    QuotedLine,
    Sale,
    SaleReceipt,
    StockAlert,
    StockControl,
    Tab,
    TabStatus,
)
from bsm.repositories.contracts import SalesRepository
from bsm.repositories.unit_of_work import RepositoryUnitOfWork, UnitOfWork
from bsm.services.price_service import PriceService
from bsm.services.stock_service import StockService

log = logging.getLogger("bsm.sales")

AlertListener = Callable[[StockAlert], None]
CartInput = Union[CartLine, dict]

# liters are compared after rounding, so 3 x 300ml never trips on float noise
_EPS = 1e-9


class SalesService:
    def __init__(
        self,
        repo: SalesRepository,
        settings: EngineSettings | None = None,
        uow_factory: Callable[[], UnitOfWork] | None = None,
        backoff_base: float = 0.05,
    ):
        self.repo = repo
        self.settings = settings or EngineSettings()
        self.uow_factory = uow_factory or (lambda: RepositoryUnitOfWork(repo))
        self.backoff_base = backoff_base
        self.stock = StockService(repo, self.settings)
        self.prices = PriceService(repo)
        self._listeners: list[AlertListener] = []

    # ---------- Notifications ----------
    def subscribe(self, listener: AlertListener) -> Callable[[], None]:
        """Register a stock alert listener; returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self, alert: StockAlert) -> None:
        for listener in list(self._listeners):
            try:
                listener(alert)
            except Exception:
                # the sale is already committed, a broken listener must not hide it
                log.exception("alert_listener_failed listener=%r kind=%s beverage=%s", listener, alert.kind, alert.beverage_id)

    # ---------- Validation ----------
    @staticmethod
    def _cart_line(item: CartInput) -> CartLine:
        if isinstance(item, CartLine):
            beverage_id, size, qty = item.beverage_id, item.container_size, item.quantity
        else:
            try:
                beverage_id, size, qty = item["beverage_id"], item["container_size"], item["quantity"]
            except (KeyError, TypeError) as e:
                raise ValidationError(f"Malformed cart line: {item!r}") from e

        if isinstance(qty, bool) or not isinstance(qty, int) and not (isinstance(qty, float) and qty.is_integer()):
            raise ValidationError(f"Quantity must be a whole number, got {qty!r}.")
        if int(qty) < 1:
            raise ValidationError("Quantity must be >= 1.")
        try:
            size = ContainerSize.parse(size)
        except (ValueError, KeyError, TypeError) as e:
            raise ValidationError(f"Unknown container size: {size!r}") from e
        try:
            beverage_id = int(beverage_id)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Invalid beverage id: {beverage_id!r}") from e
        return CartLine(beverage_id=beverage_id, container_size=size, quantity=int(qty))

    def _check_event(self, event_id: Optional[int]) -> None:
        if event_id is None:
            return
        event = self.repo.get_event(int(event_id))
        if not event:
            raise NotFoundError(f"Event {event_id} not found.")
        if event.status is EventStatus.FINALIZED:
            raise ValidationError(f"Event '{event.name}' is finalized and no longer takes sales.")

    def _check_tab(self, tab_id: Optional[int]) -> Optional[Tab]:
        if tab_id is None:
            return None
        tab = self.repo.get_tab(int(tab_id))
        if not tab:
            raise NotFoundError(f"Tab {tab_id} not found.")
        if tab.status is TabStatus.AWAITING_PAYMENT:
            raise InvalidTabTransitionError(tab.id, tab.status.value, TabStatus.IN_USE.value)
        return tab

    def validate_cart(self, lines: Iterable[CartInput], event_id: Optional[int] = None) -> CartQuote:
        """Price the cart and check it against stock without writing anything.

        Liters are summed per beverage across all lines before comparing with
        the scope's stock, so two lines of the same beverage in different
        sizes cannot oversell it together.
        """
        cart = [self._cart_line(it) for it in lines]
        if not cart:
            raise ValidationError("Cart is empty.")
        self._check_event(event_id)

        beverages: dict[int, BeverageType] = {}
        controls: dict[int, StockControl] = {}
        needed: dict[int, float] = {}
        quoted: list[QuotedLine] = []

        for line in cart:
            beverage = beverages.get(line.beverage_id)
            if beverage is None:
                beverage = self.repo.get_beverage(line.beverage_id)
                if not beverage:
                    raise UnknownBeverageError(line.beverage_id)
                beverages[beverage.id] = beverage
                controls[beverage.id] = self.stock.stock_control(beverage.id, event_id)

            needed[beverage.id] = round(needed.get(beverage.id, 0.0) + line.container_size.liters * line.quantity, 6)

            control = controls[beverage.id]
            if isinstance(control, Managed):
                if control.record.is_depleted:
                    raise StockDepletedError(beverage.id, beverage.name, needed[beverage.id], event_id=event_id)
                if needed[beverage.id] > control.quantity_liters + _EPS:
                    raise InsufficientStockError(
                        beverage.id,
                        beverage.name,
                        needed[beverage.id],
                        control.quantity_liters,
                        event_id=event_id,
                    )

            price = self.prices.configured_price(beverage.id, line.container_size, event_id)
            if price is None:
                if self.settings.reject_missing_price:
                    raise PriceNotConfiguredError(beverage.id, int(line.container_size), event_id)
                price = 0.0

            quoted.append(
                QuotedLine(
                    beverage_id=beverage.id,
                    beverage_name=beverage.name,
                    container_size=line.container_size,
                    quantity=line.quantity,
                    unit_price=float(price),
                )
            )

        return CartQuote(event_id=event_id, lines=tuple(quoted), liters_by_beverage=tuple(needed.items()))

    # ---------- Commit ----------
    def _run_with_retry(self, func: Callable[[], SaleReceipt]) -> SaleReceipt:
        attempts = self.settings.commit_attempts
        for attempt in range(attempts):
            try:
                return func()
            except ConcurrentModificationError as exc:
                if attempt >= attempts - 1:
                    log.error("sale_commit_gave_up attempts=%s error=%s", attempts, exc)
                    raise
                log.warning("sale_commit_retry attempt=%s error=%s", attempt + 1, exc)
                time.sleep(self.backoff_base * (2 ** attempt))
        raise ConcurrentModificationError("Commit did not run.")

    def _stock_alerts(self, quote: CartQuote) -> tuple[StockAlert, ...]:
        alerts = []
        names = {line.beverage_id: line.beverage_name for line in quote.lines}
        for beverage_id, _ in quote.liters_by_beverage:
            rec = self.stock.get(beverage_id, quote.event_id)
            if rec is None:
                continue
            if rec.is_depleted:
                kind = "depleted"
            elif rec.is_low:
                kind = "low_stock"
            else:
                continue
            alerts.append(
                StockAlert(
                    kind=kind,
                    beverage_id=beverage_id,
                    beverage_name=names[beverage_id],
                    event_id=quote.event_id,
                    quantity_liters=rec.quantity_liters,
                    threshold_liters=rec.low_stock_threshold_liters,
                )
            )
        return tuple(alerts)

    def _commit_once(self, cart: list[CartLine], actor_id: int, event_id: Optional[int], tab_id: Optional[int]) -> SaleReceipt:
        with self.uow_factory() as uow:
            tab = self._check_tab(tab_id)
            # validated again under the write lock, state may have moved since the caller's quote
            quote = self.validate_cart(cart, event_id)
            sale_ids = uow.record_sales(quote, actor_id, tab.id if tab else None)

            for line in quote.lines:
                if not self.stock.decrement(line.beverage_id, line.liters, event_id):
                    log.warning(
                        "stock_not_tracked beverage=%s event=%s liters=%.3f",
                        line.beverage_id, event_id, line.liters,
                    )

            alerts = self._stock_alerts(quote)

            if tab is not None and tab.status is TabStatus.AVAILABLE:
                self.repo.mark_tab_open(tab.id, uow.timestamp)

        return SaleReceipt(
            sale_ids=tuple(sale_ids),
            total_volume_ml=quote.total_volume_ml,
            total_price=quote.total_price,
            event_id=event_id,
            tab_id=tab.id if tab else None,
            alerts=alerts,
        )

    def commit(
        self,
        lines: Iterable[CartInput],
        actor_id: int,
        event_id: Optional[int] = None,
        tab_id: Optional[int] = None,
    ) -> SaleReceipt:
        cart = [self._cart_line(it) for it in lines]
        if not cart:
            raise ValidationError("Cart is empty.")
        if actor_id is None:
            raise ValidationError("Actor is required to record a sale.")

        try:
            receipt = self._run_with_retry(lambda: self._commit_once(cart, int(actor_id), event_id, tab_id))
        except sqlite3.IntegrityError as e:
            raise ValidationError(f"Sale rejected by the store: {e}") from e

        log.info(
            "sale_committed sale_ids=%s lines=%s liters=%.3f total=%.2f actor=%s event=%s tab=%s",
            list(receipt.sale_ids), len(cart), receipt.total_liters, receipt.total_price, actor_id, event_id, receipt.tab_id,
            extra={"sale_ids": list(receipt.sale_ids), "actor_id": actor_id, "event_id": event_id, "tab_id": receipt.tab_id},
        )
        for alert in receipt.alerts:
            log.warning(
                "stock_alert kind=%s beverage=%s event=%s liters=%.3f threshold=%.3f",
                alert.kind, alert.beverage_id, alert.event_id, alert.quantity_liters, alert.threshold_liters,
                extra={"beverage_id": alert.beverage_id, "event_id": alert.event_id},
            )
            self._notify(alert)
        return receipt

    # ---------- Reads ----------
    def list_sales(
        self,
        start_iso: Optional[str] = None,
        end_iso: Optional[str] = None,
        event_id: Optional[int] = None,
        general_only: bool = False,
    ) -> list[Sale]:
        return self.repo.list_sales(start_iso, end_iso, event_id, general_only)

    def get_sale(self, sale_id: int) -> Sale:
        sale = self.repo.get_sale(int(sale_id))
        if not sale:
            raise NotFoundError(f"Sale {sale_id} not found.")
        return sale
