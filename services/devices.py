import logging
import threading
from datetime import datetime, timezone
from typing import Dict, List, Optional

from google.cloud import firestore

from app.models import Device

logger = logging.getLogger(__name__)

DEVICES = "devices"
LABEL_PREFIX = "Scanner Device"

# Devices that were labelled by hand before the registry existed
LEGACY_DEVICE_LABELS: Dict[str, str] = {
    "b7f808ed475dda7e": "Scanner Device 1",
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def next_device_label(db) -> str:
    """Sequential label: one more than the number of registered devices."""
    result = db.collection(DEVICES).count(alias="devices").get()
    count = int(result[0][0].value)
    return f"{LABEL_PREFIX} {count + 1}"


def _register_device(transaction, db, device_id: str) -> str:
    ref = db.collection(DEVICES).document(device_id)
    snapshot = ref.get(transaction=transaction)

    if snapshot.exists:
        data = snapshot.to_dict() or {}
        transaction.update(ref, {
            "lastSeenAt": _now(),
            "scanCount": int(data.get("scanCount") or 0) + 1,
        })
        return data.get("label") or device_id

    label = next_device_label(db)
    now = _now()
    transaction.set(ref, {
        "deviceId": device_id,
        "label": label,
        "registeredAt": now,
        "lastSeenAt": now,
        "isActive": True,
        "scanCount": 1,
    })
    return label


# Firestore retries the whole read-modify-write on contention
_register_in_transaction = firestore.transactional(_register_device)


def register_device_if_new(db, device_id: str) -> str:
    """Register a device the first time it is seen; count every later sighting."""
    if not device_id:
        raise ValueError("Device ID is required")
    return _register_in_transaction(db.transaction(), db, device_id)


class DeviceLabels:
    """
    Device id -> friendly label lookups backed by the `devices` collection.
    Labels are cached in memory; the cache is filled on first use.
    """

    def __init__(self, db):
        self.db = db
        self._cache: Dict[str, str] = {}
        self._loaded = False
        self._lock = threading.Lock()

    def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        with self._lock:
            if self._loaded:
                return
            for device in self.all_devices():
                self._cache[device.deviceId] = device.label
            self._loaded = True

    def all_devices(self) -> List[Device]:
        try:
            q = self.db.collection(DEVICES).order_by("registeredAt", direction=firestore.Query.ASCENDING)
            return [Device(**(doc.to_dict() or {})) for doc in q.stream()]
        except Exception as e:
            logger.error("failed to load devices: %r", e)
            return []

    def register(self, device_id: str) -> str:
        label = register_device_if_new(self.db, device_id)
        self._cache[device_id] = label
        return label

    def label_for(self, device_id: Optional[str]) -> str:
        if not device_id:
            return "N/A"

        self._ensure_loaded()
        if device_id in self._cache:
            return self._cache[device_id]

        try:
            snapshot = self.db.collection(DEVICES).document(device_id).get()
            if snapshot.exists:
                label = (snapshot.to_dict() or {}).get("label") or device_id
                self._cache[device_id] = label
                return label
        except Exception as e:
            logger.error("failed to fetch label for device %s: %r", device_id, e)

        return device_id

    def device_id_for_label(self, label: str) -> Optional[str]:
        self._ensure_loaded()
        for device_id, device_label in self._cache.items():
            if device_label == label:
                return device_id
        return None

    def touch(self, device_id: str) -> None:
        if not device_id:
            return
        try:
            self.db.collection(DEVICES).document(device_id).update({"lastSeenAt": _now()})
        except Exception as e:
            logger.error("failed to update last seen for device %s: %r", device_id, e)

    def rename(self, device_id: str, new_label: str) -> None:
        if not device_id or not new_label:
            raise ValueError("Device ID and new label are required")

        self.db.collection(DEVICES).document(device_id).update({"label": new_label})
        self._cache[device_id] = new_label

    def migrate(self, device_id: str, label: str) -> bool:
        """Create a registry entry for a hand-labelled device. Returns True if created."""
        ref = self.db.collection(DEVICES).document(device_id)
        if ref.get().exists:
            return False

        now = _now()
        ref.set({
            "deviceId": device_id,
            "label": label,
            "registeredAt": now,
            "lastSeenAt": now,
            "isActive": True,
            "scanCount": 0,
        })
        self._cache[device_id] = label
        logger.info("migrated device %s with label %s", device_id, label)
        return True
