# services/sessions.py
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from services.pagination import PageState

logger = logging.getLogger(__name__)

SESSIONS = "sessions"
PAGE_STATE_FIELD = "packages_page"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def new_session_id() -> str:
    return uuid.uuid4().hex


def get_page_state(db, session_id: Optional[str]) -> PageState:
    """
    Scan-table cursor stack for a browser session.
    Firestore doc: sessions/{session_id}; the cookie only carries the id.
    """
    if not session_id:
        return PageState()
    try:
        doc = db.collection(SESSIONS).document(session_id).get()
    except Exception as e:
        logger.warning("failed to load page state for %s: %r", session_id, e)
        return PageState()

    if not doc.exists:
        return PageState()
    return PageState.from_dict((doc.to_dict() or {}).get(PAGE_STATE_FIELD))


def save_page_state(db, session_id: str, state: PageState) -> None:
    try:
        db.collection(SESSIONS).document(session_id).set(
            {PAGE_STATE_FIELD: state.to_dict(), "last_seen": _now_iso()},
            merge=True,
        )
    except Exception as e:
        logger.warning("failed to save page state for %s: %r", session_id, e)


def delete_session(db, session_id: Optional[str]) -> None:
    if not session_id:
        return
    try:
        db.collection(SESSIONS).document(session_id).delete()
    except Exception as e:
        logger.warning("failed to delete session %s: %r", session_id, e)
