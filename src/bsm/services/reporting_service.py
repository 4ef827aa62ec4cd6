from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from bsm.config import EngineSettings
from bsm.domain.errors import ValidationError
from bsm.domain.models import ContainerSize

_PERIOD_PREFIX = {"day": 10, "month": 7}


@dataclass(frozen=True)
class SalesSummary:
    total_sale_count: int
    total_volume_liters: float
    total_revenue: float


@dataclass(frozen=True)
class Breakdown:
    """One row of a grouped report; ``key`` is the size, beverage, event, tab or period."""

    key: object
    label: str
    sale_count: int
    cups: int
    volume_liters: float
    revenue: float


@dataclass(frozen=True)
class FullReport:
    start_iso: Optional[str]
    end_iso: Optional[str]
    event_id: Optional[int]
    summary: SalesSummary
    by_container_size: list[Breakdown] = field(default_factory=list)
    by_beverage: list[Breakdown] = field(default_factory=list)

    @property
    def total_revenue(self) -> float:
        return self.summary.total_revenue


class ReportingService:
    """Read-only aggregates over committed sales.

    Every report takes a half-open ``[start_iso, end_iso)`` window and an event
    filter: ``event_id`` for one event, ``general_only`` for sales outside any
    event, neither for everything.
    """

    def __init__(self, repo, settings: EngineSettings | None = None):
        self.repo = repo
        self.settings = settings or EngineSettings()

    @property
    def _current_prices(self) -> bool:
        return self.settings.report_price_basis == "current"

    @staticmethod
    def _filters(start_iso, end_iso, event_id, general_only) -> tuple:
        if event_id is not None and general_only:
            raise ValidationError("Pick either an event or general-only sales, not both.")
        if start_iso and end_iso and start_iso >= end_iso:
            raise ValidationError("Report window start must be before its end.")
        return (start_iso, end_iso, event_id, bool(general_only))

    @staticmethod
    def _row(key, label, r) -> Breakdown:
        return Breakdown(
            key=key,
            label=label,
            sale_count=int(r["sale_count"]),
            cups=int(r["units"]),
            volume_liters=round(float(r["volume_ml"]) / 1000, 3),
            revenue=round(float(r["revenue"]), 2),
        )

    def summary(
        self,
        start_iso: Optional[str] = None,
        end_iso: Optional[str] = None,
        event_id: Optional[int] = None,
        general_only: bool = False,
    ) -> SalesSummary:
        count, volume_ml, revenue = self.repo.sales_summary(
            self._filters(start_iso, end_iso, event_id, general_only), self._current_prices
        )
        return SalesSummary(
            total_sale_count=count,
            total_volume_liters=round(volume_ml / 1000, 3),
            total_revenue=round(revenue, 2),
        )

    def by_container_size(self, start_iso=None, end_iso=None, event_id=None, general_only=False) -> list[Breakdown]:
        rows = {
            int(r["container_size_ml"]): r
            for r in self.repo.sales_by_container_size(
                self._filters(start_iso, end_iso, event_id, general_only), self._current_prices
            )
        }
        out = []
        for size in ContainerSize:
            r = rows.get(size.value)
            if r is None:
                out.append(Breakdown(key=size.value, label=f"{size.value}ml", sale_count=0, cups=0, volume_liters=0.0, revenue=0.0))
            else:
                out.append(self._row(size.value, f"{size.value}ml", r))
        return out

    def by_beverage(self, start_iso=None, end_iso=None, event_id=None, general_only=False) -> list[Breakdown]:
        rows = self.repo.sales_by_beverage(self._filters(start_iso, end_iso, event_id, general_only), self._current_prices)
        out = [self._row(int(r["beverage_id"]), str(r["beverage_name"]), r) for r in rows]
        out.sort(key=lambda b: (-b.revenue, -b.volume_liters, b.label))
        return out

    def by_event(self, start_iso=None, end_iso=None) -> list[Breakdown]:
        rows = self.repo.sales_by_event(self._filters(start_iso, end_iso, None, False), self._current_prices)
        return [
            self._row(
                r["event_id"],
                str(r["event_name"]) if r["event_id"] is not None else "General",
                r,
            )
            for r in rows
        ]

    def by_tab(self, start_iso=None, end_iso=None, event_id=None, general_only=False) -> list[Breakdown]:
        # settled tabs have their sales detached, so this is the open-tab view
        rows = self.repo.sales_by_tab(self._filters(start_iso, end_iso, event_id, general_only), self._current_prices)
        return [self._row(int(r["tab_id"]), f"#{r['tab_number']}", r) for r in rows]

    def totals_by_period(
        self,
        start_iso=None,
        end_iso=None,
        event_id=None,
        general_only=False,
        granularity: str = "day",
    ) -> list[Breakdown]:
        if granularity not in _PERIOD_PREFIX:
            raise ValidationError(f"Unknown granularity: {granularity}")
        rows = self.repo.sales_by_period(
            self._filters(start_iso, end_iso, event_id, general_only),
            _PERIOD_PREFIX[granularity],
            self._current_prices,
        )
        return [self._row(str(r["period"]), str(r["period"]), r) for r in rows]

    def full_report(self, start_iso=None, end_iso=None, event_id=None, general_only=False) -> FullReport:
        return FullReport(
            start_iso=start_iso,
            end_iso=end_iso,
            event_id=event_id,
            summary=self.summary(start_iso, end_iso, event_id, general_only),
            by_container_size=self.by_container_size(start_iso, end_iso, event_id, general_only),
            by_beverage=self.by_beverage(start_iso, end_iso, event_id, general_only),
        )

    def event_report(self, event_id: int) -> FullReport:
        return self.full_report(event_id=int(event_id))
