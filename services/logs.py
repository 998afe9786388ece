import logging
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

ACTION_LOGS = "action_logs"


def log_action(db, session_id: str, event_type: str, payload: dict) -> None:
    """
    Writes structured audit logs for sign-in/out, exports and deletions.
    Stored in Firestore collection: action_logs

    Audit writes never fail the calling operation.
    """
    try:
        db.collection(ACTION_LOGS).add({
            "session_id": session_id or "anonymous",
            "event_type": event_type,  # login | logout | export | delete_range | ...
            "payload": payload,
            "ts": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        })
    except Exception as e:
        logger.warning("failed to write %s audit log: %r", event_type, e)
