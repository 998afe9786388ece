import json
import logging
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

from app.models import PackagePage, PackageRow
from policies.carriers import carrier_name
from policies.date_range import parse_ts
from services.devices import DeviceLabels
from services.pagination import FirestorePaginator, PageState, SearchFilter, page_window

logger = logging.getLogger(__name__)

PACKAGES = "packages"

MIN_SEARCH_CHARS = 3
ALL_CARRIERS = {"", "all", "all_carriers"}
SORTABLE_FIELDS = {"timestamp", "tracking", "carrier", "dateYmd"}
# Firestore limit on `in` values
MAX_IN_VALUES = 30


def build_package_filters(
    tracking: Optional[str],
    carrier: Optional[str],
    stored_carriers: Optional[List[Any]] = None,
) -> List[SearchFilter]:
    """
    Tracking search is a prefix match, ignored until it has 3+ characters.
    Carrier matches any of the stored spellings of the selected name
    (`stored_carriers`), or the name itself when none are known.
    """
    filters: List[SearchFilter] = []

    text = (tracking or "").strip()
    if len(text) >= MIN_SEARCH_CHARS:
        filters.append(SearchFilter("tracking", "startsWith", text))

    if carrier and carrier not in ALL_CARRIERS:
        values = list(stored_carriers or [carrier])[:MAX_IN_VALUES]
        if len(values) == 1:
            filters.append(SearchFilter("carrier", "==", values[0]))
        else:
            filters.append(SearchFilter("carrier", "in", values))

    return filters


def to_row(data: Dict[str, Any], labels: Optional[DeviceLabels] = None, tz_name: str = "UTC") -> PackageRow:
    formatted_date = ""
    formatted_time = ""

    dt = parse_ts(data.get("timestamp"))
    if dt:
        if dt.tzinfo is not None:
            dt = dt.astimezone(ZoneInfo(tz_name))
        formatted_date = dt.strftime("%b %d, %Y")
        formatted_time = dt.strftime("%I:%M %p")

    device_id = data.get("deviceId")
    device = labels.label_for(device_id) if labels else (device_id or "N/A")

    return PackageRow(
        id=str(data.get("id", "")),
        tracking=data.get("tracking") or "Unknown",
        carrier=carrier_name(data.get("carrier")),
        timestamp=str(data.get("timestamp") or ""),
        dateYmd=str(data.get("dateYmd") or ""),
        formatted_date=formatted_date,
        formatted_time=formatted_time,
        device=device,
        username=data.get("username") or "N/A",
    )


def list_packages(
    db,
    tracking: Optional[str] = None,
    carrier: Optional[str] = None,
    page: int = 1,
    page_size: int = 50,
    sort: str = "timestamp",
    direction: str = "desc",
    state: Optional[PageState] = None,
    labels: Optional[DeviceLabels] = None,
    tz_name: str = "UTC",
) -> tuple[PackagePage, PageState]:
    """
    One page of the scan table. `state` carries the cursor stack from
    earlier requests with the same filters; the updated state is returned.
    """
    if sort not in SORTABLE_FIELDS:
        sort = "timestamp"
    if direction not in ("asc", "desc"):
        direction = "desc"

    stored_carriers = None
    if carrier and carrier not in ALL_CARRIERS:
        try:
            stored_carriers = carrier_variants(db).get(carrier)
        except Exception as e:
            logger.warning("carrier lookup for %r failed, filtering on the name only: %r", carrier, e)

    paginator = FirestorePaginator(
        db,
        PACKAGES,
        filters=build_package_filters(tracking, carrier, stored_carriers),
        page_size=page_size,
        order_by_field=sort,
        direction=direction,
        with_total_count=True,
        state=state,
    )

    if page <= 1:
        paginator.reset()
    else:
        paginator.go_to_page(page)
        if paginator.total_count is None:
            paginator.fetch_count()

    result = PackagePage(
        items=[to_row(d, labels, tz_name) for d in paginator.data],
        page=paginator.page,
        page_size=page_size,
        has_prev=paginator.has_prev,
        has_next=paginator.has_next,
        total_count=paginator.total_count,
        total_pages=paginator.total_pages,
        page_window=page_window(paginator.page, paginator.total_pages),
        error=paginator.error,
    )
    return result, paginator.state


def carrier_variants(db) -> Dict[str, List[Any]]:
    """
    Display name -> every distinct stored value that reads as that name,
    e.g. "DHL" -> ["DHL", '{"name": "DHL"}', {"name": "DHL", "code": "DHL"}].
    Documents without a carrier are left out.
    """
    variants: Dict[str, Dict[str, Any]] = {}
    for doc in db.collection(PACKAGES).select(["carrier"]).stream():
        raw = (doc.to_dict() or {}).get("carrier")
        if not raw:
            continue
        key = json.dumps(raw, sort_keys=True, default=str)
        variants.setdefault(carrier_name(raw), {})[key] = raw
    return {name: list(stored.values()) for name, stored in variants.items()}


def list_available_carriers(db) -> List[str]:
    """Carrier names for filter dropdowns; each one matches at least one package."""
    return sorted(carrier_variants(db))
