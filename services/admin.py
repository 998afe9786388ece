import logging
from datetime import date
from typing import Optional

from google.cloud.firestore_v1.base_query import FieldFilter

from policies.date_range import day_bounds, validate_date_range

logger = logging.getLogger(__name__)

PACKAGES = "packages"
BATCH_LIMIT = 500  # Firestore maximum writes per batch


def delete_packages_in_range(
    db,
    start: Optional[date],
    end: Optional[date],
    tz_name: str = "UTC",
) -> int:
    """
    Permanently delete every package scanned between the start of `start`
    and the end of `end` (dashboard timezone). Returns the number deleted.
    """
    start, end = validate_date_range(start, end)
    lower, upper = day_bounds(start, end, tz_name)

    query = (
        db.collection(PACKAGES)
        .where(filter=FieldFilter("timestamp", ">=", lower))
        .where(filter=FieldFilter("timestamp", "<=", upper))
    )

    deleted = 0
    batch = db.batch()
    pending = 0

    for doc in query.stream():
        batch.delete(doc.reference)
        pending += 1
        if pending == BATCH_LIMIT:
            batch.commit()
            deleted += pending
            batch = db.batch()
            pending = 0

    if pending:
        batch.commit()
        deleted += pending

    logger.info("deleted %d packages between %s and %s", deleted, lower, upper)
    return deleted
