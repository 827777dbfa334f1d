from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class VehicleType(str, Enum):
    CAR = "CAR"
    BIKE = "BIKE"
    MICROBUS = "MICROBUS"
    TRUCK = "TRUCK"
    OTHER = "OTHER"

    @classmethod
    def parse(cls, value: object) -> "VehicleType":
        """Map a loosely-typed value onto a member; anything unrecognized is OTHER."""
        if isinstance(value, VehicleType):
            return value
        if not isinstance(value, str):
            return cls.OTHER
        try:
            return cls(value.strip().upper())
        except ValueError:
            return cls.OTHER

    @property
    def is_large(self) -> bool:
        return self in (VehicleType.TRUCK, VehicleType.MICROBUS)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class Slot(CamelModel):
    slot_number: int
    occupied: bool = False
    vehicle_type: Optional[str] = None
    license_plate: Optional[str] = None


class SlotView(Slot):
    floor_number: Optional[int] = None
    slot_type: Optional[str] = Field(None, description="Vehicle type the slot is designated for")
    entry_time: Optional[datetime] = None
    duration_minutes: Optional[int] = None
    allowed_minutes: Optional[int] = None
    overstayed: bool = False


class Suggestion(CamelModel):
    slot_number: int
    score: int
    reasons: List[str]
    reason_text: str


class ParkResult(CamelModel):
    message: str
    record_id: int
    slot_number: int
    floor_number: Optional[int] = None


class ExitSlip(CamelModel):
    record_id: int
    vehicle_type: str
    license_plate: str
    slot_number: int
    floor_number: Optional[int] = None
    entry_time: datetime
    exit_time: datetime
    duration_minutes: int
    billable_hours: int
    total_charge: float


class RecordOut(CamelModel):
    id: int
    vehicle_type: str
    license_plate: str
    slot_number: int
    floor_number: Optional[int] = None
    entry_time: datetime
    exit_time: Optional[datetime] = None
    duration_minutes: Optional[int] = None
    billable_hours: Optional[int] = None
    charge: Optional[float] = None


class ChargeOut(CamelModel):
    id: int
    vehicle_type: str
    hourly_rate: float
    active: bool


class FloorIn(CamelModel):
    floor_number: int = Field(..., ge=1)
    description: Optional[str] = Field(None, max_length=500)


class FloorOut(CamelModel):
    id: int
    floor_number: int
    description: Optional[str] = None
    created_at: datetime


class ParkingSlotOut(CamelModel):
    id: int
    slot_number: int
    floor_number: Optional[int] = None
    vehicle_type: str
    occupied: bool


class SlotDetail(CamelModel):
    slot_number: int
    floor_number: Optional[int] = None
    occupied: bool
    license_plate: Optional[str] = None
    vehicle_type: Optional[str] = None
    entry_time: Optional[datetime] = None
    duration_minutes: int = 0
    current_charge: float = 0.0
    overdue: bool = False


class DashboardStats(CamelModel):
    total_slots: int
    available_slots: int
    occupied_slots: int
    vehicles_parked_today: int
    today_revenue: float
    currently_parked_vehicles: int


class AuditLogOut(CamelModel):
    id: int
    admin_username: str
    action: str
    description: Optional[str] = None
    details: Optional[str] = None
    timestamp: datetime


class AdminOut(CamelModel):
    username: str
    role: str
    full_name: Optional[str] = None
    email: Optional[str] = None


class TokenResponse(CamelModel):
    token: str
    admin: AdminOut
