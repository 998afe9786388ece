from datetime import date
from typing import Any, Dict, Iterable, List, Tuple

from app.models import CarrierShare, KpiSummary, TimeSeries
from policies.carriers import carrier_color, carrier_name, normalize_carrier

PACKAGES = "packages"

TIME_RANGES = ("daily", "monthly")
SHARE_TIMEFRAMES = ("today", "month")


def _scan_date(date_ymd: str) -> date:
    return date(int(date_ymd[0:4]), int(date_ymd[4:6]), int(date_ymd[6:8]))


def scans_over_time(scans: Iterable[Dict[str, Any]], time_range: str = "daily") -> TimeSeries:
    """Per-period scan counts split by carrier, oldest period first."""
    if time_range not in TIME_RANGES:
        raise ValueError(f"time_range must be one of {TIME_RANGES}")

    buckets: Dict[Tuple[int, ...], Dict[str, Any]] = {}
    carriers: List[str] = []

    for scan in scans:
        date_ymd = scan.get("dateYmd")
        if not date_ymd or not scan.get("carrier"):
            continue
        try:
            day = _scan_date(str(date_ymd))
        except ValueError:
            continue

        if time_range == "daily":
            key = (day.year, day.month, day.day)
            label = day.strftime("%m/%d")
        else:
            key = (day.year, day.month)
            label = day.strftime("%m/%Y")

        name = normalize_carrier(carrier_name(scan["carrier"]))
        if name not in carriers:
            carriers.append(name)

        point = buckets.setdefault(key, {"date": label})
        point[name] = point.get(name, 0) + 1

    points = [buckets[k] for k in sorted(buckets)]
    return TimeSeries(
        time_range=time_range,
        carriers=carriers,
        colors={c: carrier_color(c) for c in carriers},
        points=points,
    )


def load_scans_over_time(db, time_range: str = "daily") -> TimeSeries:
    scans = (doc.to_dict() or {} for doc in db.collection(PACKAGES).select(["dateYmd", "carrier"]).stream())
    return scans_over_time(scans, time_range)


def carrier_share(kpi: KpiSummary, timeframe: str = "today") -> List[CarrierShare]:
    if timeframe not in SHARE_TIMEFRAMES:
        raise ValueError(f"timeframe must be one of {SHARE_TIMEFRAMES}")

    breakdown = kpi.today_carrier_breakdown if timeframe == "today" else kpi.month_carrier_breakdown
    return [
        CarrierShare(name=name, value=value, color=carrier_color(name))
        for name, value in breakdown.items()
        if value > 0
    ]
