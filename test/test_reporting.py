from pathlib import Path

import pytest
from conftest import add_actor, add_beverage, make_container

from bsm.domain.errors import ValidationError


def _seed_sales(c):
    """Two beverages with hand-stamped sales across two months and one event."""
    actor = add_actor(c)
    event = c.events.create("Fest", "Plaza", "2024-05-02", status="active").id
    ipa = add_beverage(c, "IPA", liters=None, prices=(10.0, 15.0, 28.0))
    stout = add_beverage(c, "Stout", liters=None, prices=(12.0, 18.0, 32.0))
    c.prices.set(ipa, None, 11.0, 16.0, 30.0, event_id=event)

    repo = c.repo
    repo.insert_sale(ipa, "IPA", 500, 2, "2024-05-01 20:00:00", 15.0, actor, None, None)
    repo.insert_sale(stout, "Stout", 1000, 1, "2024-05-01 21:30:00", 32.0, actor, None, None)
    repo.insert_sale(ipa, "IPA", 300, 3, "2024-05-02 00:00:00", 11.0, actor, event, None)
    repo.insert_sale(ipa, "IPA", 1000, 1, "2024-06-10 18:00:00", 28.0, actor, None, None)
    return event, ipa, stout


def test_reports_tolerate_zero_sales(tmp_path: Path):
    c = make_container(tmp_path)

    summary = c.reporting.summary()
    assert (summary.total_sale_count, summary.total_volume_liters, summary.total_revenue) == (0, 0.0, 0.0)
    assert [(b.key, b.cups) for b in c.reporting.by_container_size()] == [(300, 0), (500, 0), (1000, 0)]
    assert c.reporting.by_beverage() == []
    assert c.reporting.by_event() == []
    assert c.reporting.by_tab() == []
    assert c.reporting.totals_by_period() == []
    assert c.reporting.full_report().total_revenue == 0.0


def test_summary_and_breakdowns(tmp_path: Path):
    c = make_container(tmp_path)
    _seed_sales(c)

    summary = c.reporting.summary()
    assert summary.total_sale_count == 4
    assert summary.total_volume_liters == pytest.approx(1.0 + 1.0 + 0.9 + 1.0)
    assert summary.total_revenue == pytest.approx(30.0 + 32.0 + 33.0 + 28.0)

    sizes = {b.key: b for b in c.reporting.by_container_size()}
    assert (sizes[300].cups, sizes[500].cups, sizes[1000].cups) == (3, 2, 2)
    assert sizes[1000].revenue == 60.0

    beverages = c.reporting.by_beverage()
    assert [b.label for b in beverages] == ["IPA", "Stout"]
    assert beverages[0].cups == 6
    assert beverages[0].revenue == 91.0
    assert beverages[0].volume_liters == pytest.approx(2.9)


def test_window_is_half_open(tmp_path: Path):
    c = make_container(tmp_path)
    _seed_sales(c)

    may_first = c.reporting.summary("2024-05-01 00:00:00", "2024-05-02 00:00:00")
    assert may_first.total_sale_count == 2

    from_second = c.reporting.summary("2024-05-02 00:00:00", "2024-05-03 00:00:00")
    assert from_second.total_sale_count == 1

    with pytest.raises(ValidationError):
        c.reporting.summary("2024-05-03 00:00:00", "2024-05-01 00:00:00")


def test_event_filters(tmp_path: Path):
    c = make_container(tmp_path)
    event, ipa, _ = _seed_sales(c)

    in_event = c.reporting.summary(event_id=event)
    general = c.reporting.summary(general_only=True)
    assert in_event.total_sale_count == 1
    assert in_event.total_revenue == 33.0
    assert general.total_sale_count == 3

    rows = c.reporting.by_event()
    assert [(r.key, r.label, r.sale_count) for r in rows] == [(event, "Fest", 1), (None, "General", 3)]

    with pytest.raises(ValidationError):
        c.reporting.summary(event_id=event, general_only=True)

    stats = c.events.statistics(event)
    assert stats.summary.total_sale_count == 1
    assert [(b.key, b.cups) for b in stats.by_beverage] == [(ipa, 3)]


def test_totals_by_period(tmp_path: Path):
    c = make_container(tmp_path)
    _seed_sales(c)

    days = c.reporting.totals_by_period(granularity="day")
    months = c.reporting.totals_by_period(granularity="month")

    assert [(d.key, d.sale_count) for d in days] == [("2024-05-01", 2), ("2024-05-02", 1), ("2024-06-10", 1)]
    assert [(m.key, m.revenue) for m in months] == [("2024-05", 95.0), ("2024-06", 28.0)]
    with pytest.raises(ValidationError):
        c.reporting.totals_by_period(granularity="week")


def test_revenue_basis_sale_vs_current(tmp_path: Path):
    c = make_container(tmp_path)
    _, ipa, _ = _seed_sales(c)
    c.prices.set(ipa, None, 10.0, 20.0, 28.0)

    assert c.reporting.summary(general_only=True).total_revenue == 90.0

    live = make_container(tmp_path, report_price_basis="current").reporting
    # IPA 500ml now costs 20.0: 2*20 + 32 + 28
    assert live.summary(general_only=True).total_revenue == 100.0


def test_current_basis_counts_unpriced_sales_as_zero(tmp_path: Path):
    c = make_container(tmp_path, report_price_basis="current")
    event, ipa, _ = _seed_sales(c)
    c.prices.remove(ipa, event)

    assert c.reporting.summary(event_id=event).total_revenue == 0.0


def test_by_tab_and_full_report(tmp_path: Path):
    c = make_container(tmp_path)
    actor = add_actor(c)
    ipa = add_beverage(c, "IPA", liters=None)
    tab = c.tabs.open(4)
    c.sales.commit([{"beverage_id": ipa, "container_size": 500, "quantity": 2}], actor, tab_id=tab.id)
    c.sales.commit([{"beverage_id": ipa, "container_size": 300, "quantity": 1}], actor)

    rows = c.reporting.by_tab()
    assert [(r.key, r.label, r.cups, r.revenue) for r in rows] == [(tab.id, "#4", 2, 30.0)]

    report = c.reporting.full_report()
    assert report.total_revenue == 40.0
    assert report.summary.total_sale_count == 2
    assert [b.label for b in report.by_beverage] == ["IPA"]
