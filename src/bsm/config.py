from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import os
import sys

from bsm.domain.errors import ValidationError

MISSING_PRICE_POLICIES = ("reject", "zero")
REPORT_PRICE_BASES = ("sale", "current")


@dataclass(frozen=True)
class AppPaths:
    base_dir: Path
    db_path: Path
    logs_dir: Path


def _windows_appdata() -> Path:
    return Path(os.environ.get("APPDATA", str(Path.home() / "AppData" / "Roaming")))


def _mac_app_support() -> Path:
    return Path.home() / "Library" / "Application Support"


def get_app_paths(app_name: str = "BeverageStandManager") -> AppPaths:
    if sys.platform.startswith("win"):
        base = _windows_appdata() / app_name
    elif sys.platform == "darwin":
        base = _mac_app_support() / app_name
    else:
        base = Path.home() / f".{app_name.lower()}"

    logs = base / "logs"
    db = base / "beverage_stand.db"

    base.mkdir(parents=True, exist_ok=True)
    logs.mkdir(parents=True, exist_ok=True)

    return AppPaths(base_dir=base, db_path=db, logs_dir=logs)


@dataclass(frozen=True)
class EngineSettings:
    """Policy knobs of the sales engine.

    missing_price_policy: "reject" refuses a cart line without a configured
      price, "zero" sells it at 0.
    report_price_basis: "sale" reports revenue from the unit price captured
      on each sale, "current" re-applies today's price book.
    """

    missing_price_policy: str = "reject"
    default_low_stock_threshold_liters: float = 5.0
    tab_count: int = 10
    report_price_basis: str = "sale"
    commit_attempts: int = 3

    def __post_init__(self) -> None:
        if self.missing_price_policy not in MISSING_PRICE_POLICIES:
            raise ValidationError(f"Unknown missing price policy: {self.missing_price_policy}")
        if self.report_price_basis not in REPORT_PRICE_BASES:
            raise ValidationError(f"Unknown report price basis: {self.report_price_basis}")
        if self.default_low_stock_threshold_liters < 0:
            raise ValidationError("Low stock threshold must be >= 0.")
        if self.tab_count < 0:
            raise ValidationError("Tab count must be >= 0.")
        if self.commit_attempts < 1:
            raise ValidationError("Commit attempts must be >= 1.")

    @classmethod
    def from_env(cls) -> "EngineSettings":
        env = os.environ
        try:
            return cls(
                missing_price_policy=env.get("BSM_MISSING_PRICE_POLICY", "reject").strip().lower(),
                default_low_stock_threshold_liters=float(env.get("BSM_LOW_STOCK_THRESHOLD", "5.0")),
                tab_count=int(env.get("BSM_TAB_COUNT", "10")),
                report_price_basis=env.get("BSM_REPORT_PRICE_BASIS", "sale").strip().lower(),
                commit_attempts=int(env.get("BSM_COMMIT_ATTEMPTS", "3")),
            )
        except ValueError as exc:
            raise ValidationError(f"Invalid engine setting: {exc}") from exc

    @property
    def reject_missing_price(self) -> bool:
        return self.missing_price_policy == "reject"
