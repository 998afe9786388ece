from datetime import datetime, timezone

import pytest

from app.models import KpiSummary
from services.charts import carrier_share, load_scans_over_time, scans_over_time
from services.kpi import breakdown_rows, carrier_breakdown, fetch_kpi_data, format_number, summarize_scans
from tests.fakes import make_package

NOW = datetime(2024, 5, 15, 18, 0, tzinfo=timezone.utc)


def _scan(date_ymd, carrier):
    return {"dateYmd": date_ymd, "carrier": carrier}


def test_carrier_breakdown_normalizes_and_skips_missing():
    scans = [
        _scan("20240515", "FedEx Express Saver"),
        _scan("20240515", {"name": "FedEx Express"}),
        _scan("20240515", '{"name": "UPS Ground"}'),
        _scan("20240515", None),
        {},
    ]
    assert carrier_breakdown(scans) == {"FedEx Express": 2, "UPS": 1}


def test_summarize_scans():
    scans = [
        _scan("20240515", "UPS"),
        _scan("20240515", "UPS"),
        _scan("20240515", "USPS"),
        _scan("20240502", "DHL"),
        _scan("20240502", "UPS"),
    ]
    kpi = summarize_scans(scans, "20240515", "2024-05-15T09:30:00.000Z", NOW)

    assert kpi.total_scans_today == 3
    assert kpi.total_scans_this_month == 5
    assert kpi.active_carriers == 3
    # 5 scans over 2 days with scans, rounded half up
    assert kpi.average_daily_scans == 3
    assert kpi.last_sync_time == "09:30:00"
    assert kpi.today_carrier_breakdown == {"UPS": 2, "USPS": 1}


def test_summarize_scans_without_data():
    kpi = summarize_scans([], "20240515", None, NOW)
    assert kpi.total_scans_today == 0
    assert kpi.average_daily_scans == 0
    assert kpi.last_sync_time == "18:00:00"


def test_fetch_kpi_data_reads_current_month(db):
    packages = db.data.setdefault("packages", {})
    for doc_id, data in [
        make_package("a", "1Z1", "UPS", "2024-05-15T09:30:00.000Z"),
        make_package("b", "1Z2", "USPS", "2024-05-14T08:00:00.000Z"),
        make_package("c", "1Z3", "UPS", "2024-04-30T23:00:00.000Z"),
    ]:
        packages[doc_id] = data

    kpi = fetch_kpi_data(db, now=NOW)

    assert kpi.total_scans_today == 1
    assert kpi.total_scans_this_month == 2
    assert kpi.last_sync_time == "09:30:00"


def test_fetch_kpi_data_reports_zeros_on_failure():
    class Broken:
        def collection(self, name):
            raise RuntimeError("unavailable")

    kpi = fetch_kpi_data(Broken(), now=NOW)
    assert kpi.total_scans_this_month == 0
    assert kpi.last_sync_time == "18:00:00"


def test_breakdown_rows_sorted_with_rounded_percentages():
    rows = breakdown_rows({"USPS": 1, "UPS": 2})
    assert [r.name for r in rows] == ["UPS", "USPS"]
    assert [r.percentage for r in rows] == [67, 33]
    assert rows[0].short_name == "UPS"
    assert breakdown_rows({}) == []


def test_format_number():
    assert format_number(1234567) == "1,234,567"


def test_scans_over_time_daily_orders_across_years():
    scans = [
        _scan("20240101", "UPS"),
        _scan("20231231", "UPS"),
        _scan("20231231", "DHL"),
        _scan("2024ab01", "UPS"),
        _scan("20240102", None),
    ]
    series = scans_over_time(scans, "daily")

    assert [p["date"] for p in series.points] == ["12/31", "01/01"]
    assert series.points[0] == {"date": "12/31", "UPS": 1, "DHL": 1}
    assert series.carriers == ["UPS", "DHL"]


def test_scans_over_time_monthly():
    scans = [_scan("20240105", "UPS"), _scan("20240120", "UPS"), _scan("20231105", "USPS")]
    series = scans_over_time(scans, "monthly")
    assert series.points == [{"date": "11/2023", "USPS": 1}, {"date": "01/2024", "UPS": 2}]


def test_scans_over_time_rejects_unknown_range():
    with pytest.raises(ValueError):
        scans_over_time([], "weekly")


def test_load_scans_over_time(db):
    doc_id, data = make_package("a", "1Z1", "FedEx Ground Home", "2024-05-15T09:30:00.000Z")
    db.data["packages"] = {doc_id: data}

    series = load_scans_over_time(db, "daily")
    assert series.points == [{"date": "05/15", "FedEx Ground": 1}]


def test_carrier_share_drops_empty_carriers():
    kpi = KpiSummary(today_carrier_breakdown={"UPS": 2, "DHL": 0}, month_carrier_breakdown={"USPS": 4})

    assert [s.name for s in carrier_share(kpi, "today")] == ["UPS"]
    assert carrier_share(kpi, "month")[0].value == 4
    with pytest.raises(ValueError):
        carrier_share(kpi, "year")
