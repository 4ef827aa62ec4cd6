from __future__ import annotations

import logging
import re
import sqlite3
from typing import Optional

from bsm.domain.errors import DuplicateNameError, TabHasActiveSalesError, UnknownBeverageError, ValidationError
from bsm.domain.models import BeverageType

log = logging.getLogger(__name__)

DEFAULT_COLOR = "#D4A574"
_HEX_COLOR = re.compile(r"^#[0-9A-Fa-f]{6}$")


class CatalogService:
    def __init__(self, repo):
        self.repo = repo

    def list(self) -> list[BeverageType]:
        return self.repo.list_beverages()

    def get(self, beverage_id: int) -> BeverageType:
        b = self.repo.get_beverage(int(beverage_id))
        if not b:
            raise UnknownBeverageError(int(beverage_id))
        return b

    def get_by_name(self, name: str) -> Optional[BeverageType]:
        return self.repo.get_beverage_by_name((name or "").strip())

    def _clean(self, name: str, color: Optional[str], description: Optional[str]) -> tuple[str, str, str]:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Beverage name is required.")
        if len(name) > 100:
            raise ValidationError("Beverage name must be at most 100 characters.")
        color = (color or DEFAULT_COLOR).strip()
        if not _HEX_COLOR.match(color):
            raise ValidationError(f"Invalid color: {color}")
        return name, color, (description or "").strip()

    def create(self, name: str, color: Optional[str] = None, description: Optional[str] = None) -> int:
        name, color, description = self._clean(name, color, description)
        if self.repo.get_beverage_by_name(name):
            raise DuplicateNameError(name)
        try:
            beverage_id = self.repo.add_beverage(name, color, description)
        except sqlite3.IntegrityError as e:
            # lost a race with another writer on the name_key unique index
            raise DuplicateNameError(name) from e
        log.info("beverage_created id=%s name=%s", beverage_id, name)
        return beverage_id

    def update(
        self,
        beverage_id: int,
        name: Optional[str] = None,
        color: Optional[str] = None,
        description: Optional[str] = None,
    ) -> BeverageType:
        current = self.get(beverage_id)
        new_name, new_color, new_description = self._clean(
            current.name if name is None else name,
            current.color if color is None else color,
            current.description if description is None else description,
        )
        clash = self.repo.get_beverage_by_name(new_name)
        if clash and clash.id != current.id:
            raise DuplicateNameError(new_name)
        try:
            self.repo.update_beverage(current.id, new_name, new_color, new_description)
        except sqlite3.IntegrityError as e:
            raise DuplicateNameError(new_name) from e
        if new_name != current.name:
            log.info("beverage_renamed id=%s old=%s new=%s", current.id, current.name, new_name)
        return self.get(current.id)

    def rename(self, beverage_id: int, name: str) -> BeverageType:
        return self.update(beverage_id, name=name)

    def delete(self, beverage_id: int) -> None:
        """Delete a beverage together with its stock, price and sale records."""
        b = self.get(beverage_id)
        open_sales = self.repo.count_open_tab_sales(beverage_id=b.id)
        if open_sales:
            raise TabHasActiveSalesError(
                f"{b.name} has {open_sales} sale(s) on tabs that are not settled yet."
            )
        sales = self.repo.count_sales_for_beverage(b.id)
        self.repo.delete_beverage(b.id)
        log.warning("beverage_deleted id=%s name=%s cascaded_sales=%s", b.id, b.name, sales)
