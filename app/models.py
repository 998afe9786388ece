# app/models.py

from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class SessionUser(BaseModel):
    id: str
    name: Optional[str] = None
    email: Optional[str] = None
    photo_url: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.name or self.email or "User"


class Device(BaseModel):
    deviceId: str
    label: str
    registeredAt: Optional[datetime] = None
    lastSeenAt: Optional[datetime] = None
    isActive: bool = True
    scanCount: int = 0


class RegisterDeviceRequest(BaseModel):
    device_id: str = Field(alias="deviceId")


class RenameDeviceRequest(BaseModel):
    label: str


class PackageRow(BaseModel):
    id: str
    tracking: str
    carrier: str
    timestamp: str = ""
    dateYmd: str = ""
    formatted_date: str = ""
    formatted_time: str = ""
    device: str = "N/A"
    username: str = "N/A"


class PackagePage(BaseModel):
    items: List[PackageRow] = Field(default_factory=list)
    page: int = 1
    page_size: int
    has_prev: bool = False
    has_next: bool = False
    total_count: Optional[int] = None
    total_pages: Optional[int] = None
    page_window: List[int] = Field(default_factory=list)
    error: Optional[str] = None


class CarrierBreakdownRow(BaseModel):
    name: str
    short_name: str
    count: int
    percentage: int
    color: str


class KpiSummary(BaseModel):
    total_scans_today: int = 0
    total_scans_this_month: int = 0
    active_carriers: int = 0
    average_daily_scans: int = 0
    last_sync_time: str = ""
    today_carrier_breakdown: Dict[str, int] = Field(default_factory=dict)
    month_carrier_breakdown: Dict[str, int] = Field(default_factory=dict)


class CarrierShare(BaseModel):
    name: str
    value: int
    color: str


class TimeSeries(BaseModel):
    time_range: str
    carriers: List[str] = Field(default_factory=list)
    colors: Dict[str, str] = Field(default_factory=dict)
    points: List[Dict[str, Any]] = Field(default_factory=list)


class DateRangeRequest(BaseModel):
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class ExportRequest(DateRangeRequest):
    carrier: str = "all_carriers"


class DeleteRangeResult(BaseModel):
    deleted: int
    message: str
