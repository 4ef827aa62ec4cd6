from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class HealthReport:
    sqlite_integrity: str
    db_size_bytes: int
    row_counts: dict[str, int] = field(default_factory=dict)
    generated_at: str = ""

    @property
    def ok(self) -> bool:
        return self.sqlite_integrity == "ok"


class OperationsService:
    def __init__(self, repo, db_path: Path | str):
        self.repo = repo
        self.db_path = Path(db_path)

    def run_health_check(self) -> HealthReport:
        integrity = self.repo.integrity_check()
        size = self.db_path.stat().st_size if self.db_path.exists() else 0
        report = HealthReport(
            sqlite_integrity=integrity,
            db_size_bytes=size,
            row_counts=self.repo.table_counts(),
            generated_at=datetime.now().isoformat(timespec="seconds"),
        )
        if not report.ok:
            log.error("health_check_failed integrity=%s", integrity)
        return report
