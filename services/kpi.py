import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional
from zoneinfo import ZoneInfo

from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter

from app.models import CarrierBreakdownRow, KpiSummary
from policies.carriers import carrier_color, carrier_name, normalize_carrier, short_carrier_name
from policies.date_range import parse_ts
from services.pagination import next_string

logger = logging.getLogger(__name__)

PACKAGES = "packages"


def carrier_breakdown(scans: Iterable[Dict[str, Any]]) -> Dict[str, int]:
    """Scan counts per normalized carrier; scans without a carrier are skipped."""
    breakdown: Dict[str, int] = {}
    for scan in scans:
        if not scan or not scan.get("carrier"):
            continue
        name = normalize_carrier(carrier_name(scan["carrier"], default="Unknown Carrier"))
        breakdown[name] = breakdown.get(name, 0) + 1
    return breakdown


def summarize_scans(
    month_scans: List[Dict[str, Any]],
    today_ymd: str,
    latest_timestamp: Optional[str],
    now: datetime,
) -> KpiSummary:
    today_scans = [s for s in month_scans if s.get("dateYmd") == today_ymd]

    today_breakdown = carrier_breakdown(today_scans)
    month_breakdown = carrier_breakdown(month_scans)

    # average over days that actually had scans, not calendar days
    scan_days = {s["dateYmd"] for s in month_scans if s.get("dateYmd")}
    days_with_scans = len(scan_days) or 1
    average = int(len(month_scans) / days_with_scans + 0.5)

    last_sync = now
    latest = parse_ts(latest_timestamp)
    if latest:
        last_sync = latest.astimezone(now.tzinfo) if latest.tzinfo and now.tzinfo else latest

    return KpiSummary(
        total_scans_today=len(today_scans),
        total_scans_this_month=len(month_scans),
        active_carriers=len(month_breakdown),
        average_daily_scans=average,
        last_sync_time=last_sync.strftime("%H:%M:%S"),
        today_carrier_breakdown=today_breakdown,
        month_carrier_breakdown=month_breakdown,
    )


def fetch_kpi_data(db, now: Optional[datetime] = None, tz_name: str = "UTC") -> KpiSummary:
    """
    KPI counters for the dashboard. Errors are logged and reported as
    zeroed counters so the cards still render.
    """
    now = now or datetime.now(ZoneInfo(tz_name))
    today_ymd = now.strftime("%Y%m%d")
    month = now.strftime("%Y%m")

    try:
        packages = db.collection(PACKAGES)
        month_query = (
            packages
            .where(filter=FieldFilter("dateYmd", ">=", month))
            .where(filter=FieldFilter("dateYmd", "<", next_string(month)))
        )
        month_scans = [doc.to_dict() or {} for doc in month_query.stream()]

        latest_timestamp = None
        latest_query = packages.order_by("timestamp", direction=firestore.Query.DESCENDING).limit(1)
        for doc in latest_query.stream():
            latest_timestamp = (doc.to_dict() or {}).get("timestamp")

        logger.debug("kpi: %d scans this month (%s)", len(month_scans), month)
        return summarize_scans(month_scans, today_ymd, latest_timestamp, now)
    except Exception as e:
        logger.error("error fetching KPI data: %r", e)
        return KpiSummary(last_sync_time=now.strftime("%H:%M:%S"))


def breakdown_rows(breakdown: Dict[str, int]) -> List[CarrierBreakdownRow]:
    total = sum(breakdown.values())
    rows = [
        CarrierBreakdownRow(
            name=name,
            short_name=short_carrier_name(name),
            count=count,
            percentage=int(count * 100 / total + 0.5) if total else 0,
            color=carrier_color(name),
        )
        for name, count in breakdown.items()
    ]
    rows.sort(key=lambda r: r.count, reverse=True)
    return rows


def format_number(n: int) -> str:
    return f"{n:,}"
