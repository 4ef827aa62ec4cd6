import json
import logging
import sys
from pathlib import Path

import pytest

from bsm.application.container import bootstrap
from bsm.config import EngineSettings
from bsm.domain.errors import ValidationError
from bsm.logging_config import JsonFormatter, setup_logging


def test_settings_defaults():
    s = EngineSettings()

    assert s.missing_price_policy == "reject"
    assert s.reject_missing_price
    assert s.default_low_stock_threshold_liters == 5.0
    assert s.tab_count == 10
    assert s.report_price_basis == "sale"
    assert s.commit_attempts == 3


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("BSM_MISSING_PRICE_POLICY", "Zero")
    monkeypatch.setenv("BSM_LOW_STOCK_THRESHOLD", "2.5")
    monkeypatch.setenv("BSM_TAB_COUNT", "25")
    monkeypatch.setenv("BSM_REPORT_PRICE_BASIS", "current")
    monkeypatch.setenv("BSM_COMMIT_ATTEMPTS", "5")

    s = EngineSettings.from_env()

    assert not s.reject_missing_price
    assert s.default_low_stock_threshold_liters == 2.5
    assert s.tab_count == 25
    assert s.report_price_basis == "current"
    assert s.commit_attempts == 5


@pytest.mark.parametrize(
    "name, value",
    [
        ("BSM_MISSING_PRICE_POLICY", "maybe"),
        ("BSM_LOW_STOCK_THRESHOLD", "-1"),
        ("BSM_TAB_COUNT", "ten"),
        ("BSM_REPORT_PRICE_BASIS", "yesterday"),
        ("BSM_COMMIT_ATTEMPTS", "0"),
    ],
)
def test_settings_from_env_rejects_bad_values(monkeypatch, name, value):
    monkeypatch.setenv(name, value)

    with pytest.raises(ValidationError):
        EngineSettings.from_env()


def test_json_formatter_emits_one_object_per_record():
    record = logging.LogRecord("bsm.sales", logging.INFO, __file__, 1, "sale_committed sale_ids=%s", ([1, 2],), None)

    payload = json.loads(JsonFormatter().format(record))

    assert payload["level"] == "INFO"
    assert payload["logger"] == "bsm.sales"
    assert payload["message"] == "sale_committed sale_ids=[1, 2]"
    assert "exception" not in payload


def test_json_formatter_copies_domain_context_from_extra():
    logger = logging.getLogger("bsm.stock")
    record = logger.makeRecord(
        "bsm.stock", logging.INFO, __file__, 1, "stock_decremented", (), None,
        extra={"beverage_id": 3, "event_id": None},
    )

    payload = json.loads(JsonFormatter().format(record))

    assert payload["beverage_id"] == 3
    assert payload["event_id"] is None
    assert "tab_id" not in payload


def test_setup_logging_writes_audit_files(tmp_path: Path, monkeypatch):
    root = logging.getLogger()
    monkeypatch.setattr(root, "handlers", [])
    monkeypatch.setattr(root, "level", root.level)
    audit = [logging.getLogger("bsm.sales"), logging.getLogger("bsm.stock")]
    before = {lg.name: list(lg.handlers) for lg in audit}
    levels = {lg.name: lg.level for lg in audit}

    try:
        setup_logging(tmp_path / "logs")
        logging.getLogger("bsm.sales").info("sale_committed sale_ids=[7]")
        logging.getLogger("bsm.store").error("store_failure op=query")
        for h in root.handlers + [h for lg in audit for h in lg.handlers]:
            h.flush()

        logs = tmp_path / "logs"
        assert "sale_committed" in (logs / "sales.log").read_text(encoding="utf-8")
        assert "sale_committed" in (logs / "app.log").read_text(encoding="utf-8")
        errors = [json.loads(line) for line in (logs / "errors.log").read_text(encoding="utf-8").splitlines()]
        assert [e["logger"] for e in errors] == ["bsm.store"]
        assert (logs / "stock.log").exists()
    finally:
        for lg in audit:
            for h in lg.handlers:
                if h not in before[lg.name]:
                    h.close()
            lg.handlers = before[lg.name]
            lg.setLevel(levels[lg.name])
        for h in root.handlers:
            h.close()


def test_bootstrap_builds_container_in_user_data_dir(tmp_path: Path, monkeypatch):
    monkeypatch.setattr(sys, "platform", "linux")
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setenv("BSM_TAB_COUNT", "4")

    c = bootstrap("StandTest")

    assert Path(c.repo.db_path) == tmp_path / ".standtest" / "beverage_stand.db"
    assert (tmp_path / ".standtest" / "logs").is_dir()
    assert c.settings.tab_count == 4
    assert [t.number for t in c.tabs.list()] == [1, 2, 3, 4]
