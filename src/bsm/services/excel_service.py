from __future__ import annotations

import logging
from typing import Optional

from openpyxl import Workbook, load_workbook
from openpyxl.styles import Font

from bsm.domain.errors import NotFoundError, ValidationError

log = logging.getLogger(__name__)

STOCK_SHEET_HEADERS = ["beverage", "quantity_liters", "low_stock_liters", "price_small", "price_medium", "price_large"]


def _blank(v) -> bool:
    return v is None or (isinstance(v, str) and not v.strip())


class ExcelService:
    def __init__(self, repo, catalog_service, stock_service, price_service):
        self.repo = repo
        self.catalog = catalog_service
        self.stock = stock_service
        self.prices = price_service

    def import_stock_sheet(self, path: str, event_id: Optional[int] = None) -> tuple[int, int]:
        """
        Loads absolute stock and prices for one scope.
        Headers:
          beverage | quantity_liters | low_stock_liters | price_small | price_medium | price_large
        Blank cells keep the current value; unknown beverages are added to the catalog.
        Each row is applied in its own transaction. Rows with bad values are skipped,
        store failures abort the import.
        """
        if event_id is not None and not self.repo.get_event(int(event_id)):
            raise NotFoundError(f"Event {event_id} not found.")

        wb = load_workbook(path, read_only=True, data_only=True)
        try:
            rows = wb.active.iter_rows(values_only=True)
            header_row = next(rows, None) or ()
            headers = {}
            for col, v in enumerate(header_row):
                if isinstance(v, str):
                    headers[v.strip().lower()] = col

            for h in STOCK_SHEET_HEADERS:
                if h not in headers:
                    raise ValidationError(f"Missing column header: {h}")

            ok = 0
            skipped = 0

            for row_no, values in enumerate(rows, start=2):
                cell = {h: (values[headers[h]] if headers[h] < len(values) else None) for h in STOCK_SHEET_HEADERS}
                if all(_blank(v) for v in cell.values()):
                    continue
                try:
                    with self.repo.transaction():
                        self._apply_row(cell, event_id)
                    ok += 1
                except (ValidationError, NotFoundError, TypeError, ValueError) as e:
                    log.warning("stock_sheet_row_skipped row=%s error=%s", row_no, e)
                    skipped += 1
        finally:
            wb.close()

        log.info("stock_sheet_imported path=%s event=%s imported=%s skipped=%s", path, event_id, ok, skipped)
        return ok, skipped

    def _apply_row(self, cell: dict, event_id: Optional[int]) -> None:
        name = str(cell["beverage"] or "").strip()
        if not name:
            raise ValidationError("beverage name is empty")

        # parse the whole row before touching the catalog
        num = {h: (None if _blank(v) else float(v)) for h, v in cell.items() if h != "beverage"}
        if any(v is not None and v < 0 for v in num.values()):
            raise ValidationError("negative values are not allowed")

        beverage = self.catalog.get_by_name(name)
        if beverage is None:
            beverage = self.catalog.get(self.catalog.create(name))

        if num["quantity_liters"] is not None:
            threshold = num["low_stock_liters"]
            if threshold is None:
                current = self.stock.get(beverage.id, event_id)
                threshold = current.low_stock_threshold_liters if current else None
            self.stock.set(beverage.id, beverage.name, num["quantity_liters"], threshold, event_id)

        new_prices = (num["price_small"], num["price_medium"], num["price_large"])
        if any(p is not None for p in new_prices):
            current_price = self.prices.get(beverage.id, event_id)
            previous = (
                (current_price.price_small, current_price.price_medium, current_price.price_large)
                if current_price
                else (0.0, 0.0, 0.0)
            )
            small, medium, large = (prev if p is None else p for p, prev in zip(new_prices, previous))
            self.prices.set(beverage.id, beverage.name, small, medium, large, event_id)

    def export_report_excel(self, path: str, report) -> None:
        """Write a FullReport to an .xlsx workbook: a summary sheet plus one sheet per breakdown."""
        wb = Workbook()

        def money(cell):
            cell.number_format = "#,##0.00"

        def bold_row(ws, r):
            for c in ws[r]:
                c.font = Font(bold=True)

        def set_widths(ws, widths: dict[str, int]):
            for col, w in widths.items():
                ws.column_dimensions[col].width = w

        ws = wb.active
        ws.title = "Summary"
        ws["A1"] = "Sales report"
        ws["A1"].font = Font(bold=True, size=14)
        ws["A3"] = "Window"
        ws["B3"] = f"{report.start_iso or '-'}  ->  {report.end_iso or '-'}"
        ws["A4"] = "Event"
        ws["B4"] = report.event_id if report.event_id is not None else "all"

        ws["A6"] = "Sales count"
        ws["B6"] = int(report.summary.total_sale_count)
        ws["A7"] = "Volume (L)"
        ws["B7"] = float(report.summary.total_volume_liters)
        ws["A8"] = "Revenue"
        ws["B8"] = float(report.total_revenue)
        money(ws["B8"])
        set_widths(ws, {"A": 20, "B": 34})

        for title, rows in (("By Size", report.by_container_size), ("By Beverage", report.by_beverage)):
            sheet = wb.create_sheet(title)
            sheet.append(["Item", "Sales", "Cups", "Liters", "Revenue"])
            bold_row(sheet, 1)
            for i, b in enumerate(rows, start=2):
                sheet.append([b.label, b.sale_count, b.cups, b.volume_liters, b.revenue])
                money(sheet[f"E{i}"])
            sheet.freeze_panes = "A2"
            set_widths(sheet, {"A": 28, "B": 10, "C": 10, "D": 12, "E": 14})

        wb.save(path)
        log.info("report_exported path=%s", path)
