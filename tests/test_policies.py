from datetime import date, datetime, timezone

import pytest

from policies.carriers import (
    CARRIER_COLORS,
    DEFAULT_COLORS,
    carrier_color,
    carrier_name,
    normalize_carrier,
    short_carrier_name,
)
from policies.date_range import (
    DateRangeError,
    day_bounds,
    iso_utc,
    parse_ts,
    validate_date_range,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("UPS", "UPS"),
        ('"FedEx Ground"', "FedEx Ground"),
        ('{"name": "DHL", "code": "DHL"}', "DHL"),
        ({"name": "USPS"}, "USPS"),
        ({"code": "X"}, "Unknown"),
        ("", "Unknown"),
        (None, "Unknown"),
        (42, "Unknown"),
    ],
)
def test_carrier_name_accepts_every_stored_shape(raw, expected):
    assert carrier_name(raw) == expected


def test_carrier_name_keeps_malformed_json_as_text():
    assert carrier_name("{not json}") == "{not json}"


def test_normalize_carrier_collapses_service_levels():
    assert normalize_carrier("FedEx Express Saver") == "FedEx Express"
    assert normalize_carrier("FedEx Ground Home") == "FedEx Ground"
    assert normalize_carrier("UPS Next Day Air") == "UPS"
    assert normalize_carrier("Canada Post") == "Canada Post"


@pytest.mark.parametrize("name", ["FedEx Express Saver", "UPS Ground", "DHL", "USPS Priority"])
def test_normalize_carrier_is_idempotent(name):
    once = normalize_carrier(name)
    assert normalize_carrier(once) == once


def test_short_carrier_name():
    assert short_carrier_name("UPS") == "UPS"
    assert short_carrier_name("FedEx Express") == "FedEx Exp"
    assert short_carrier_name("FedEx Ground") == "FedEx Gnd"
    assert short_carrier_name("USPS Priority Mail") == "USPS"
    assert short_carrier_name("Amazon Logistics") == "Amazon"
    assert short_carrier_name("Purolator Courier") == "Purolato..."


def test_carrier_color():
    assert carrier_color("UPS") == CARRIER_COLORS["UPS"]
    assert carrier_color("USPS Priority") == CARRIER_COLORS["USPS"]
    assert carrier_color("ups mail innovations") == CARRIER_COLORS["UPS"]
    # unknown carriers get a stable palette color
    assert carrier_color("Purolator") in DEFAULT_COLORS
    assert carrier_color("Purolator") == carrier_color("Purolator")


def test_date_range_requires_both_ends():
    with pytest.raises(DateRangeError) as exc:
        validate_date_range(date(2024, 5, 1), None)
    assert exc.value.code == "missing_date_range"
    assert exc.value.message == "Please select both start and end dates"


def test_date_range_rejects_inverted_range():
    with pytest.raises(DateRangeError) as exc:
        validate_date_range(date(2024, 5, 2), date(2024, 5, 1))
    assert exc.value.code == "inverted_date_range"


def test_date_range_limit_is_ninety_days():
    assert validate_date_range(date(2024, 1, 1), date(2024, 3, 31)) == (date(2024, 1, 1), date(2024, 3, 31))
    with pytest.raises(DateRangeError) as exc:
        validate_date_range(date(2024, 1, 1), date(2024, 4, 1))
    assert exc.value.code == "date_range_too_wide"
    assert exc.value.message == "Date range cannot exceed 90 days"


def test_single_day_range_is_allowed():
    assert validate_date_range(date(2024, 5, 1), date(2024, 5, 1))


def test_day_bounds_cover_whole_days():
    assert day_bounds(date(2024, 5, 1), date(2024, 5, 3)) == (
        "2024-05-01T00:00:00.000Z",
        "2024-05-03T23:59:59.999Z",
    )


def test_day_bounds_use_dashboard_timezone():
    lower, upper = day_bounds(date(2024, 5, 1), date(2024, 5, 1), "America/New_York")
    assert lower == "2024-05-01T04:00:00.000Z"
    assert upper == "2024-05-02T03:59:59.999Z"


def test_iso_utc_has_millisecond_precision():
    dt = datetime(2024, 5, 1, 13, 45, 10, 123456, tzinfo=timezone.utc)
    assert iso_utc(dt) == "2024-05-01T13:45:10.123Z"


def test_parse_ts():
    assert parse_ts("2024-05-01T13:45:10.123Z") == datetime(2024, 5, 1, 13, 45, 10, 123000, tzinfo=timezone.utc)
    assert parse_ts("yesterday") is None
    assert parse_ts(None) is None
