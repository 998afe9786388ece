import csv
import io
import logging
from datetime import date
from typing import Any, Dict, Iterable, List, Optional

from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter

from policies.carriers import carrier_name
from policies.date_range import validate_date_range, ymd
from services.devices import DeviceLabels

logger = logging.getLogger(__name__)

PACKAGES = "packages"
ALL_CARRIERS = "all_carriers"

CSV_HEADER = ["Tracking Number", "Carrier", "Timestamp", "Device ID", "Latitude", "Longitude", "Username"]


class ExportEmptyError(ValueError):
    """Nothing matched the export filters."""

    code = "no_records"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


def export_filename(today: date) -> str:
    return f"tracking_export_{today.strftime('%Y-%m-%d')}.csv"


def _text(value: Any, default: str = "N/A") -> str:
    if value is None or value == "":
        return default
    return str(value)


def export_rows(
    docs: Iterable[Dict[str, Any]],
    start: date,
    end: date,
    carrier: str = ALL_CARRIERS,
    labels: Optional[DeviceLabels] = None,
) -> List[List[str]]:
    start_ymd, end_ymd = ymd(start), ymd(end)
    rows: List[List[str]] = []

    for data in docs:
        date_ymd = data.get("dateYmd") or ""
        if date_ymd < start_ymd or date_ymd > end_ymd:
            continue

        name = carrier_name(data.get("carrier"))
        # substring match tolerates variants like "FedEx Ground/Home"
        if carrier and carrier != ALL_CARRIERS and carrier not in name:
            continue

        device_id = data.get("deviceId")
        device = labels.label_for(device_id) if labels else _text(device_id)

        rows.append([
            _text(data.get("tracking"), "Unknown"),
            name,
            _text(data.get("timestamp")),
            device,
            _text(data.get("latitude")),
            _text(data.get("longitude")),
            _text(data.get("username")),
        ])

    return rows


def to_csv(rows: Iterable[List[str]]) -> str:
    """Every field quoted, embedded quotes doubled."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    # header row is unquoted
    buffer.write(",".join(CSV_HEADER) + "\n")
    writer.writerows(rows)
    return buffer.getvalue()


def empty_export_message(carrier: str) -> str:
    message = "No tracking records found"
    if carrier and carrier != ALL_CARRIERS:
        message += f' for carrier "{carrier}"'
    return message + " in the selected date range"


def export_packages_csv(
    db,
    start: Optional[date],
    end: Optional[date],
    carrier: str = ALL_CARRIERS,
    labels: Optional[DeviceLabels] = None,
) -> tuple[str, int]:
    """
    Build the CSV export. Validates the range before touching Firestore.
    Returns (csv_text, row_count).
    """
    start, end = validate_date_range(start, end)

    query = (
        db.collection(PACKAGES)
        .where(filter=FieldFilter("dateYmd", ">=", ymd(start)))
        .where(filter=FieldFilter("dateYmd", "<=", ymd(end)))
        # range field must lead the ordering
        .order_by("dateYmd", direction=firestore.Query.DESCENDING)
        .order_by("timestamp", direction=firestore.Query.DESCENDING)
    )
    docs = (doc.to_dict() or {} for doc in query.stream())
    rows = export_rows(docs, start, end, carrier, labels)

    if not rows:
        raise ExportEmptyError(empty_export_message(carrier))

    logger.info("exporting %d rows for %s..%s carrier=%s", len(rows), start, end, carrier)
    return to_csv(rows), len(rows)
