from datetime import datetime, timezone
from typing import Any, Dict, Optional

from google.cloud import firestore

RATE_LIMITS = "rate_limits"


def _minute_bucket(now: Optional[datetime] = None) -> str:
    # stable per-minute bucket like: 202602080523
    return (now or datetime.now(timezone.utc)).strftime("%Y%m%d%H%M")


def check_login_rate_limit(
    db,
    ip: str,
    limit_per_min: int = 10,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Throttle sign-in/registration attempts per minute per client IP.
    Firestore doc: rate_limits/login:{ip}:{bucket}
    """
    bucket = _minute_bucket(now)
    doc_id = f"login:{ip}:{bucket}"
    ref = db.collection(RATE_LIMITS).document(doc_id)

    doc = ref.get()
    data = doc.to_dict() if doc.exists else {}
    current = int((data or {}).get("count", 0))

    allowed = current < limit_per_min

    # count every attempt, blocked ones included
    ref.set(
        {"count": firestore.Increment(1), "updated_at": datetime.now(timezone.utc).isoformat()},
        merge=True,
    )

    return {
        "allowed": allowed,
        "count": current + 1,
        "limit": limit_per_min,
        "bucket": bucket,
        "key": doc_id,
    }
