"""
Cursor-based pagination over a Firestore collection.

Firestore has no offsets, so "page N" means "the page after the last
document of page N-1". The paginator keeps a stack of those cursors and
replays queries with them for next / previous / go-to-page navigation.
The stack is serializable so a web session can carry it between requests.
"""
import json
import logging
import math
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter

logger = logging.getLogger(__name__)


EXACT_OPS = {"==", "!=", "in", "not-in", "array-contains", "array-contains-any"}
STARTS_WITH = "startsWith"

DIRECTIONS = {
    "asc": firestore.Query.ASCENDING,
    "desc": firestore.Query.DESCENDING,
}


@dataclass(frozen=True)
class SearchFilter:
    field: str
    op: str
    value: Any

    def __post_init__(self):
        if self.op not in EXACT_OPS and self.op != STARTS_WITH:
            raise ValueError(f"Unsupported filter op: {self.op}")


@dataclass
class PageState:
    page: int = 1
    has_next: bool = False
    total_count: Optional[int] = None
    # cursors[0] is "before page 1"; cursors[k] is the last doc of page k
    cursors: List[Optional[Dict[str, Any]]] = field(default_factory=lambda: [None])
    signature: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "PageState":
        if not data:
            return cls()
        cursors = list(data.get("cursors") or [None])
        return cls(
            page=int(data.get("page", 1)),
            has_next=bool(data.get("has_next", False)),
            total_count=data.get("total_count"),
            cursors=cursors or [None],
            signature=str(data.get("signature", "")),
        )


def next_string(value: str) -> str:
    """Exclusive upper bound for a prefix search on `value`."""
    if not value:
        return "\uf8ff"
    return value[:-1] + chr(ord(value[-1]) + 1)


def filter_signature(
    filters: List[SearchFilter],
    page_size: int,
    order_by_field: Optional[str],
    direction: str,
) -> str:
    return json.dumps(
        {
            "filters": [[f.field, f.op, f.value] for f in filters],
            "page_size": page_size,
            "order_by": order_by_field,
            "direction": direction,
        },
        sort_keys=True,
        default=str,
    )


def build_query(collection, filters: List[SearchFilter], order_by_field: Optional[str], direction: str):
    """
    Apply filters and ordering to a collection reference.

    A prefix search becomes `>= value` and `< next_string(value)`. Firestore
    requires the first range field to also be the first order_by, so a
    prefix search overrides the requested ordering.
    Returns (query, effective_order_field).
    """
    query = collection
    range_field: Optional[str] = None
    exact: List[SearchFilter] = []

    for f in filters:
        if f.op == STARTS_WITH:
            value = str(f.value)
            query = query.where(filter=FieldFilter(f.field, ">=", value))
            query = query.where(filter=FieldFilter(f.field, "<", next_string(value)))
            if range_field is None:
                range_field = f.field
        else:
            exact.append(f)

    for f in exact:
        query = query.where(filter=FieldFilter(f.field, f.op, f.value))

    order = DIRECTIONS.get(direction, firestore.Query.DESCENDING)
    if range_field:
        return query.order_by(range_field, direction=order), range_field
    if order_by_field:
        return query.order_by(order_by_field, direction=order), order_by_field
    return query.order_by(firestore.FieldPath.document_id(), direction=order), None


def page_window(page: int, total_pages: Optional[int], size: int = 5) -> List[int]:
    """Page numbers for the windowed pagination buttons."""
    start = max(1, page - size // 2)
    end = min(total_pages, start + size - 1) if total_pages else start
    return list(range(start, end + 1))


class FirestorePaginator:
    def __init__(
        self,
        db,
        collection_path: str,
        filters: Optional[List[SearchFilter]] = None,
        page_size: int = 10,
        order_by_field: Optional[str] = "timestamp",
        direction: str = "desc",
        with_total_count: bool = True,
        state: Optional[PageState] = None,
    ):
        self.db = db
        self.collection_path = collection_path
        self.filters = list(filters or [])
        self.page_size = page_size
        self.order_by_field = order_by_field
        self.direction = direction
        self.with_total_count = with_total_count

        self.signature = filter_signature(self.filters, page_size, order_by_field, direction)
        self.data: List[Dict[str, Any]] = []
        self.error: Optional[str] = None

        if state is None or state.signature != self.signature:
            state = PageState(signature=self.signature)
        self.state = state

    # ---- derived values ----

    @property
    def page(self) -> int:
        return self.state.page

    @property
    def has_prev(self) -> bool:
        return self.state.page > 1

    @property
    def has_next(self) -> bool:
        return self.state.has_next

    @property
    def total_count(self) -> Optional[int]:
        return self.state.total_count

    @property
    def total_pages(self) -> Optional[int]:
        if self.state.total_count is None:
            return None
        return max(1, math.ceil(self.state.total_count / self.page_size))

    # ---- queries ----

    def _query(self):
        coll = self.db.collection(self.collection_path)
        return build_query(coll, self.filters, self.order_by_field, self.direction)

    def _cursor_value(self, snapshot, effective_field: Optional[str]):
        if not effective_field:
            return None
        value = (snapshot.to_dict() or {}).get(effective_field)
        return value if isinstance(value, (str, int, float, bool)) else None

    def _start_after(self, query, cursor: Dict[str, Any], effective_field: Optional[str]):
        snapshot = self.db.collection(self.collection_path).document(cursor["id"]).get()
        if snapshot.exists:
            return query.start_after(snapshot)
        # cursor document was deleted since the page was loaded
        if effective_field and cursor.get("value") is not None:
            return query.start_after({effective_field: cursor["value"]})
        raise LookupError("Pagination cursor is no longer available; please reset the search.")

    def run_page(self, page_index: int) -> None:
        self.error = None
        cursors = self.state.cursors
        try:
            query, effective_field = self._query()

            after = cursors[page_index - 1] if page_index - 1 < len(cursors) else None
            if after:
                query = self._start_after(query, after, effective_field)
            elif page_index > 1:
                raise LookupError(f"No cursor for page {page_index - 1}; load it first.")

            # one extra document tells us whether a next page exists
            docs = list(query.limit(self.page_size + 1).stream())
            more = len(docs) > self.page_size
            page_docs = docs[: self.page_size]

            self.data = [{"id": d.id, **(d.to_dict() or {})} for d in page_docs]
            self.state.has_next = more

            cursor = None
            if page_docs:
                last = page_docs[-1]
                cursor = {"id": last.id, "value": self._cursor_value(last, effective_field)}
            while len(cursors) <= page_index:
                cursors.append(None)
            cursors[page_index] = cursor

            self.state.page = page_index
        except Exception as e:
            logger.warning("page %s query on %s failed: %r", page_index, self.collection_path, e)
            self.error = str(e) or "Failed to fetch data"

    def fetch_count(self) -> None:
        if not self.with_total_count:
            self.state.total_count = None
            return
        try:
            query, _ = self._query()
            result = query.count(alias="total").get()
            self.state.total_count = int(result[0][0].value)
        except Exception as e:
            logger.warning("count query on %s failed: %r", self.collection_path, e)
            self.state.total_count = None

    # ---- navigation ----

    def reset(self) -> None:
        self.state = PageState(signature=self.signature)
        self.data = []
        self.error = None
        self.run_page(1)
        self.fetch_count()

    def load(self) -> None:
        """Reload the current page (first page for a fresh state)."""
        self.run_page(self.state.page)
        if self.state.total_count is None:
            self.fetch_count()

    def next_page(self) -> None:
        if not self.state.has_next:
            return
        self.run_page(self.state.page + 1)

    def prev_page(self) -> None:
        if self.state.page <= 1:
            return
        self.run_page(self.state.page - 1)

    def _missing_cursor(self, target: int) -> Optional[int]:
        """First page before `target` whose end cursor is unknown."""
        cursors = self.state.cursors
        for k in range(1, target):
            if k >= len(cursors) or cursors[k] is None:
                return k
        return None

    def go_to_page(self, target: int) -> None:
        if target < 1:
            return

        # step forward to build missing cursors; an empty page leaves none
        while True:
            k = self._missing_cursor(target)
            if k is None:
                break
            self.run_page(k)
            if self.error:
                return
            if not self.state.has_next or self.state.cursors[k] is None:
                # page k is the last one, stay there
                return

        self.run_page(target)
