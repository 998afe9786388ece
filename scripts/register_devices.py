"""
Backfill the device registry.

Hand-labelled devices are migrated first so they keep their labels, then every
device id found on a package gets a sequential label if it has none.
"""
import logging

from app.config import configure_logging, get_firestore_client
from services.devices import LEGACY_DEVICE_LABELS, DeviceLabels

logger = logging.getLogger("register_devices")


def backfill(db) -> int:
    labels = DeviceLabels(db)

    for device_id, label in LEGACY_DEVICE_LABELS.items():
        if labels.migrate(device_id, label):
            print(f"Migrated {device_id} -> {label}")

    known = {d.deviceId for d in labels.all_devices()}
    seen = set()
    for doc in db.collection("packages").select(["deviceId"]).stream():
        device_id = (doc.to_dict() or {}).get("deviceId")
        if device_id and device_id not in known and device_id not in seen:
            seen.add(device_id)

    created = 0
    for device_id in sorted(seen):
        try:
            label = labels.register(device_id)
        except Exception as e:
            logger.error("could not register %s: %r", device_id, e)
            continue
        print(f"Registered {device_id} -> {label}")
        created += 1

    return created


if __name__ == "__main__":
    configure_logging()
    n = backfill(get_firestore_client())
    print(f"✅ Registered {n} new devices.")
