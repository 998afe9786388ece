from app.config import get_firestore_client, get_settings
from services.devices import DeviceLabels
from services.kpi import breakdown_rows, fetch_kpi_data, format_number

settings = get_settings()
db = get_firestore_client()

kpi = fetch_kpi_data(db, tz_name=settings.timezone)
print("Scans today:", format_number(kpi.total_scans_today))
print("Scans this month:", format_number(kpi.total_scans_this_month))
print("Active carriers:", kpi.active_carriers)
print("Average daily scans:", format_number(kpi.average_daily_scans))
print("Last sync:", kpi.last_sync_time)

for row in breakdown_rows(kpi.month_carrier_breakdown):
    print(f"  {row.short_name:<12} {row.count:>6}  {row.percentage}%")

devices = DeviceLabels(db).all_devices()
print("Registered devices:", len(devices))
for d in devices:
    print(f"  {d.label}: {d.deviceId} ({d.scanCount} scans)")
