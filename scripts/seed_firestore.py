import random
from datetime import datetime, timedelta, timezone
from google.cloud import firestore  # uses GOOGLE_APPLICATION_CREDENTIALS env var

CARRIERS = [
    "UPS",
    "FedEx Express",
    "FedEx Ground",
    "USPS",
    "DHL",
    "Amazon",
]

DEVICES = [
    ("b7f808ed475dda7e", "Scanner Device 1"),
    ("3f2a9c1d88e04b51", "Scanner Device 2"),
    ("c41e07aa5d9f6203", "Scanner Device 3"),
]

USERNAMES = ["anju", "dock-a", "dock-b", "night-shift"]


def iso(dt: datetime) -> str:
    # same shape the scanner app writes: 2024-05-01T13:45:10.123Z
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def make_carrier(name: str):
    """
    The scanner app has written the carrier three different ways over time:
      - plain string
      - JSON-looking string
      - map with a name field
    """
    shape = random.random()
    if shape < 0.7:
        return name
    if shape < 0.85:
        return '{"name": "%s"}' % name
    return {"name": name, "code": name.upper().replace(" ", "_")}


def make_tracking(carrier: str, i: int) -> str:
    if carrier == "UPS":
        return f"1Z999AA1{i:010d}"
    if carrier.startswith("FedEx"):
        return f"7{i:011d}"
    if carrier == "USPS":
        return f"9400{i:018d}"
    if carrier == "DHL":
        return f"JD{i:016d}"
    return f"TBA{i:012d}"


def seed(n=300, days=45):
    db = firestore.Client()
    now = datetime.now(timezone.utc)

    devices_ref = db.collection("devices")
    packages_ref = db.collection("packages")

    for i, (device_id, label) in enumerate(DEVICES):
        registered = now - timedelta(days=days + 10 - i)
        devices_ref.document(device_id).set({
            "deviceId": device_id,
            "label": label,
            "registeredAt": registered,
            "lastSeenAt": now,
            "isActive": True,
            "scanCount": 0,
        })

    batch = db.batch()
    pending = 0
    for i in range(1, n + 1):
        carrier = random.choice(CARRIERS)
        # bias towards recent days so "today" has data
        offset = min(int(random.expovariate(1 / 6)), days)
        scanned = now - timedelta(days=offset, hours=random.randint(0, 10), minutes=random.randint(0, 59))
        device_id, _ = random.choice(DEVICES)

        batch.set(packages_ref.document(), {
            "tracking": make_tracking(carrier, 1000 + i),
            "carrier": make_carrier(carrier),
            "timestamp": iso(scanned),
            "dateYmd": scanned.strftime("%Y%m%d"),
            "deviceId": device_id,
            "latitude": round(43.65 + random.uniform(-0.05, 0.05), 6),
            "longitude": round(-79.38 + random.uniform(-0.05, 0.05), 6),
            "username": random.choice(USERNAMES),
        })
        pending += 1

        if pending == 400:
            batch.commit()
            batch = db.batch()
            pending = 0
            print(f"Seeded {i}/{n}")

    if pending:
        batch.commit()

    print("✅ Firestore seeding complete.")
    print(f"{n} packages across {len(DEVICES)} devices, last {days} days.")


if __name__ == "__main__":
    seed(300)
