import json
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .billing import compute_charge, default_rate
from .config import settings
from .db import Admin, AuditLog, Floor, ParkingCharge, ParkingRecord, ParkingSlot
from .errors import (
    AccountInactive,
    DuplicateResource,
    FloorNotFound,
    InvalidRequest,
    NoActiveRecord,
    NoSlotAvailable,
    SlotNotFound,
    SlotOccupied,
    VehicleTypeMismatch,
)
from .logger import get_logger
from .schemas import DashboardStats, ExitSlip, SlotDetail, SlotView, Suggestion, VehicleType
from .security import verify_password
from .suggest import designated_for, suggest

logger = get_logger(__name__)


def _floor_suffix(floor_number: Optional[int]) -> str:
    return f" on floor {floor_number}" if floor_number is not None else ""


def _minutes_between(start: datetime, end: datetime) -> int:
    return max(0, int((end - start).total_seconds() // 60))


def _same_floor(column, floor_number: Optional[int]):
    return column.is_(None) if floor_number is None else column == floor_number


def _require_plate(license_plate: Optional[str]) -> str:
    plate = (license_plate or "").strip()
    if not plate:
        raise InvalidRequest("License plate is required")
    return plate


def _require_vehicle_type(vehicle_type: Optional[str]) -> VehicleType:
    vtype = VehicleType.parse(vehicle_type)
    if vtype is VehicleType.OTHER:
        raise InvalidRequest(f"Unknown vehicle type: {vehicle_type}")
    return vtype


def _log_action(db: Session, admin_username: str, action: str, description: str, details: Dict[str, Any]) -> None:
    db.add(
        AuditLog(
            admin_username=admin_username,
            action=action,
            description=description,
            details=json.dumps(details),
            timestamp=datetime.now(),
        )
    )
    logger.info("[audit] %s %s: %s", admin_username, action, description)


# --- Lookups ---


def find_slot(db: Session, slot_number: int, floor_number: Optional[int] = None) -> ParkingSlot:
    stmt = select(ParkingSlot).join(Floor).where(ParkingSlot.slot_number == slot_number)
    if floor_number is not None:
        stmt = stmt.where(Floor.floor_number == floor_number)
    slot = db.scalars(stmt.order_by(Floor.floor_number)).first()
    if slot is None:
        raise SlotNotFound(f"Slot {slot_number}{_floor_suffix(floor_number)} not found")
    return slot


def active_record_for_slot(
    db: Session, slot_number: int, floor_number: Optional[int] = None
) -> Optional[ParkingRecord]:
    stmt = select(ParkingRecord).where(
        ParkingRecord.slot_number == slot_number,
        ParkingRecord.exit_time.is_(None),
    )
    if floor_number is not None:
        stmt = stmt.where(ParkingRecord.floor_number == floor_number)
    return db.scalars(stmt.order_by(ParkingRecord.entry_time)).first()


def _active_record_at(db: Session, slot: ParkingSlot) -> Optional[ParkingRecord]:
    return db.scalar(
        select(ParkingRecord).where(
            ParkingRecord.slot_number == slot.slot_number,
            _same_floor(ParkingRecord.floor_number, slot.floor_number),
            ParkingRecord.exit_time.is_(None),
        )
    )


def _active_records_by_position(db: Session) -> Dict[Tuple[Optional[int], int], ParkingRecord]:
    active: Dict[Tuple[Optional[int], int], ParkingRecord] = {}
    records = db.scalars(
        select(ParkingRecord).where(ParkingRecord.exit_time.is_(None)).order_by(ParkingRecord.entry_time)
    )
    for record in records:
        key = (record.floor_number, record.slot_number)
        if key in active:
            logger.warning("Duplicate active record for floor %s, slot %s", *key)
            continue
        active[key] = record
    return active


def record_by_id(db: Session, record_id: int) -> Optional[ParkingRecord]:
    return db.get(ParkingRecord, record_id)


def hourly_rate(db: Session, vehicle_type: Optional[str]) -> float:
    if vehicle_type:
        charge = db.scalar(
            select(ParkingCharge).where(
                ParkingCharge.vehicle_type == vehicle_type.upper(),
                ParkingCharge.active.is_(True),
            )
        )
        if charge is not None:
            return charge.hourly_rate
    return default_rate(vehicle_type)


# --- Park / exit ---


def _occupy(db: Session, slot: ParkingSlot, plate: str, vtype: VehicleType) -> ParkingRecord:
    record = ParkingRecord(
        license_plate=plate,
        vehicle_type=vtype.value,
        slot_number=slot.slot_number,
        floor_number=slot.floor_number,
        entry_time=datetime.now(),
    )
    slot.occupied = True
    db.add(record)
    db.commit()
    db.refresh(record)
    logger.info("Parked %s (%s) in slot %s%s", plate, vtype.value, slot.slot_number, _floor_suffix(slot.floor_number))
    return record


def _ensure_not_parked(db: Session, plate: str) -> None:
    current = db.scalar(
        select(ParkingRecord).where(ParkingRecord.license_plate == plate, ParkingRecord.exit_time.is_(None))
    )
    if current is not None:
        raise DuplicateResource(f"Vehicle {plate} is already parked in slot {current.slot_number}")


def park_vehicle(
    db: Session, license_plate: str, vehicle_type: str, floor_number: Optional[int] = None
) -> ParkingRecord:
    plate = _require_plate(license_plate)
    vtype = _require_vehicle_type(vehicle_type)
    _ensure_not_parked(db, plate)

    stmt = select(ParkingSlot).join(Floor).where(ParkingSlot.vehicle_type == vtype.value)
    if floor_number is not None:
        stmt = stmt.where(Floor.floor_number == floor_number)
    candidates = db.scalars(stmt.order_by(Floor.floor_number, ParkingSlot.slot_number)).all()

    active = _active_records_by_position(db)
    for slot in candidates:
        if (slot.floor_number, slot.slot_number) not in active:
            return _occupy(db, slot, plate, vtype)
    raise NoSlotAvailable(f"No slot available for vehicle type: {vtype.value}")


def park_vehicle_in_slot(
    db: Session,
    license_plate: str,
    vehicle_type: str,
    preferred_slot: int,
    floor_number: Optional[int] = None,
) -> ParkingRecord:
    plate = _require_plate(license_plate)
    vtype = _require_vehicle_type(vehicle_type)
    _ensure_not_parked(db, plate)

    slot = find_slot(db, preferred_slot, floor_number)
    if _active_record_at(db, slot) is not None:
        logger.info("Preferred slot %s is taken, falling back to first free slot", preferred_slot)
        return park_vehicle(db, plate, vtype.value, floor_number)

    if slot.vehicle_type.upper() != vtype.value:
        raise VehicleTypeMismatch(f"Slot {preferred_slot} is for {slot.vehicle_type}, not {vtype.value}")
    return _occupy(db, slot, plate, vtype)


def _close_record(
    db: Session, record: ParkingRecord, slot: Optional[ParkingSlot], now: Optional[datetime] = None
) -> ParkingRecord:
    exit_time = now or datetime.now()
    duration = _minutes_between(record.entry_time, exit_time)
    hours, charge = compute_charge(duration, hourly_rate(db, record.vehicle_type))

    record.exit_time = exit_time
    record.duration_minutes = duration
    record.billable_hours = hours
    record.charge = charge
    if slot is not None:
        slot.occupied = False
    db.commit()
    db.refresh(record)
    logger.info(
        "Exited %s from slot %s%s after %d min, charge %.2f",
        record.license_plate,
        record.slot_number,
        _floor_suffix(record.floor_number),
        duration,
        charge,
    )
    return record


def exit_vehicle_by_slot(
    db: Session, slot_number: int, floor_number: Optional[int] = None, now: Optional[datetime] = None
) -> ParkingRecord:
    slot = find_slot(db, slot_number, floor_number)
    record = _active_record_at(db, slot)
    if record is None:
        raise NoActiveRecord("No vehicle found in this slot")
    return _close_record(db, record, slot, now)


def exit_vehicle(db: Session, license_plate: str, now: Optional[datetime] = None) -> ParkingRecord:
    plate = _require_plate(license_plate)
    record = db.scalar(
        select(ParkingRecord).where(ParkingRecord.license_plate == plate, ParkingRecord.exit_time.is_(None))
    )
    if record is None:
        raise NoActiveRecord(f"Vehicle {plate} is not parked")
    slot = db.scalar(
        select(ParkingSlot)
        .join(Floor)
        .where(
            ParkingSlot.slot_number == record.slot_number,
            _same_floor(Floor.floor_number, record.floor_number),
        )
    )
    return _close_record(db, record, slot, now)


def to_exit_slip(record: ParkingRecord) -> ExitSlip:
    return ExitSlip(
        record_id=record.id,
        vehicle_type=record.vehicle_type,
        license_plate=record.license_plate,
        slot_number=record.slot_number,
        floor_number=record.floor_number,
        entry_time=record.entry_time,
        exit_time=record.exit_time,
        duration_minutes=record.duration_minutes,
        billable_hours=record.billable_hours,
        total_charge=record.charge,
    )


# --- Snapshot / suggestion ---


def slot_snapshot(db: Session, floor_number: Optional[int] = None, now: Optional[datetime] = None) -> List[SlotView]:
    stmt = select(ParkingSlot).join(Floor)
    if floor_number is not None:
        if db.scalar(select(Floor).where(Floor.floor_number == floor_number)) is None:
            return []
        stmt = stmt.where(Floor.floor_number == floor_number)
    slots = db.scalars(stmt.order_by(Floor.floor_number, ParkingSlot.slot_number)).all()

    now = now or datetime.now()
    active = _active_records_by_position(db)
    views: List[SlotView] = []
    dirty = False
    for slot in slots:
        record = active.get((slot.floor_number, slot.slot_number))
        if slot.occupied != (record is not None):
            slot.occupied = record is not None
            dirty = True
        if record is None:
            views.append(
                SlotView(
                    slot_number=slot.slot_number,
                    floor_number=slot.floor_number,
                    slot_type=slot.vehicle_type,
                    occupied=False,
                )
            )
            continue
        duration = _minutes_between(record.entry_time, now)
        views.append(
            SlotView(
                slot_number=slot.slot_number,
                floor_number=slot.floor_number,
                slot_type=slot.vehicle_type,
                occupied=True,
                vehicle_type=record.vehicle_type,
                license_plate=record.license_plate,
                entry_time=record.entry_time,
                duration_minutes=duration,
                allowed_minutes=settings.ALLOWED_MINUTES,
                overstayed=duration > settings.ALLOWED_MINUTES,
            )
        )
    if dirty:
        db.commit()
    return views


def suggest_slot(db: Session, vehicle_type: str, floor_number: Optional[int] = None) -> Optional[Suggestion]:
    floor = settings.DEFAULT_FLOOR if floor_number is None else floor_number
    return suggest(vehicle_type, slot_snapshot(db, floor), eligible=designated_for(vehicle_type))


# --- Dashboard / details / history ---


def dashboard_stats(db: Session, now: Optional[datetime] = None) -> DashboardStats:
    now = now or datetime.now()
    start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
    end_of_day = start_of_day + timedelta(days=1)

    total = db.scalar(select(func.count()).select_from(ParkingSlot)) or 0
    positions = {(s.floor_number, s.slot_number) for s in db.scalars(select(ParkingSlot))}
    occupied = len(positions & set(_active_records_by_position(db)))

    parked_today = db.scalar(
        select(func.count())
        .select_from(ParkingRecord)
        .where(ParkingRecord.entry_time >= start_of_day, ParkingRecord.entry_time < end_of_day)
    )
    revenue = db.scalar(
        select(func.coalesce(func.sum(ParkingRecord.charge), 0.0)).where(
            ParkingRecord.exit_time >= start_of_day, ParkingRecord.exit_time < end_of_day
        )
    )
    return DashboardStats(
        total_slots=total,
        available_slots=total - occupied,
        occupied_slots=occupied,
        vehicles_parked_today=parked_today or 0,
        today_revenue=float(revenue or 0.0),
        currently_parked_vehicles=occupied,
    )


def slot_detail(
    db: Session, slot_number: int, floor_number: Optional[int] = None, now: Optional[datetime] = None
) -> SlotDetail:
    slot = find_slot(db, slot_number, floor_number)
    record = _active_record_at(db, slot)
    if record is None:
        return SlotDetail(slot_number=slot_number, floor_number=slot.floor_number, occupied=False)

    duration = _minutes_between(record.entry_time, now or datetime.now())
    _, current_charge = compute_charge(duration, hourly_rate(db, record.vehicle_type))
    return SlotDetail(
        slot_number=slot_number,
        floor_number=slot.floor_number,
        occupied=True,
        license_plate=record.license_plate,
        vehicle_type=record.vehicle_type,
        entry_time=record.entry_time,
        duration_minutes=duration,
        current_charge=current_charge,
        overdue=duration > settings.OVERDUE_MINUTES,
    )


def slot_history(db: Session, slot_number: int, limit: int = 10) -> List[ParkingRecord]:
    stmt = (
        select(ParkingRecord)
        .where(ParkingRecord.slot_number == slot_number, ParkingRecord.exit_time.is_not(None))
        .order_by(ParkingRecord.exit_time.desc())
        .limit(max(0, limit))
    )
    return list(db.scalars(stmt))


def vehicle_history(
    db: Session,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    vehicle_type: Optional[str] = None,
    slot_number: Optional[int] = None,
) -> List[ParkingRecord]:
    if start is not None and end is not None:
        stmt = (
            select(ParkingRecord)
            .where(ParkingRecord.entry_time >= start, ParkingRecord.entry_time < end)
            .order_by(ParkingRecord.entry_time.desc())
        )
    else:
        stmt = (
            select(ParkingRecord)
            .where(ParkingRecord.exit_time.is_not(None))
            .order_by(ParkingRecord.exit_time.desc())
        )
    if vehicle_type:
        stmt = stmt.where(func.upper(ParkingRecord.vehicle_type) == vehicle_type.upper())
    if slot_number is not None:
        stmt = stmt.where(ParkingRecord.slot_number == slot_number)
    return list(db.scalars(stmt))


# --- Charges ---


def list_charges(db: Session) -> List[ParkingCharge]:
    return list(db.scalars(select(ParkingCharge).order_by(ParkingCharge.hourly_rate)))


def get_charge(db: Session, vehicle_type: str) -> Optional[ParkingCharge]:
    return db.scalar(select(ParkingCharge).where(ParkingCharge.vehicle_type == vehicle_type.upper()))


def update_charge(db: Session, vehicle_type: str, rate: float, admin_username: str) -> ParkingCharge:
    if rate < 0:
        raise InvalidRequest("Hourly rate cannot be negative")
    vtype = _require_vehicle_type(vehicle_type)
    charge = get_charge(db, vtype.value)
    old_rate = charge.hourly_rate if charge is not None else None
    if charge is None:
        charge = ParkingCharge(vehicle_type=vtype.value, hourly_rate=rate, active=True)
        db.add(charge)
    else:
        charge.hourly_rate = rate
    _log_action(
        db,
        admin_username,
        "UPDATE_CHARGE",
        f"Updated {vtype.value} hourly rate to {rate}",
        {"vehicleType": vtype.value, "oldRate": old_rate, "newRate": rate},
    )
    db.commit()
    db.refresh(charge)
    return charge


# --- Manual overrides ---


def force_exit(
    db: Session, slot_number: int, floor_number: Optional[int], admin_username: str
) -> ParkingRecord:
    record = exit_vehicle_by_slot(db, slot_number, floor_number)
    _log_action(
        db,
        admin_username,
        "FORCE_EXIT",
        f"Force exited vehicle from slot {slot_number}{_floor_suffix(floor_number)}",
        {"slotNumber": slot_number, "floorNumber": floor_number},
    )
    db.commit()
    db.refresh(record)
    return record


def update_license_plate(
    db: Session,
    slot_number: int,
    new_license_plate: str,
    admin_username: str,
    floor_number: Optional[int] = None,
) -> ParkingRecord:
    plate = _require_plate(new_license_plate)
    record = active_record_for_slot(db, slot_number, floor_number)
    if record is None:
        raise NoActiveRecord(f"No active vehicle in slot {slot_number}{_floor_suffix(floor_number)}")

    old_plate = record.license_plate
    if plate != old_plate:
        _ensure_not_parked(db, plate)
    record.license_plate = plate
    _log_action(
        db,
        admin_username,
        "UPDATE_LICENSE_PLATE",
        f"Updated license plate from {old_plate} to {plate}",
        {"slotNumber": slot_number, "oldLicensePlate": old_plate, "newLicensePlate": plate},
    )
    db.commit()
    db.refresh(record)
    return record


def change_slot(
    db: Session,
    slot_number: int,
    new_slot_number: int,
    floor_number: Optional[int],
    admin_username: str,
) -> ParkingRecord:
    if slot_number == new_slot_number:
        raise InvalidRequest("New slot must differ from the current slot")
    record = active_record_for_slot(db, slot_number, floor_number)
    if record is None:
        raise NoActiveRecord(f"No active vehicle in slot {slot_number}{_floor_suffix(floor_number)}")

    target = find_slot(db, new_slot_number, record.floor_number)
    if _active_record_at(db, target) is not None:
        raise SlotOccupied(f"Slot {new_slot_number}{_floor_suffix(record.floor_number)} is already occupied")

    old_slot = db.scalar(
        select(ParkingSlot)
        .join(Floor)
        .where(ParkingSlot.slot_number == slot_number, _same_floor(Floor.floor_number, record.floor_number))
    )
    if old_slot is not None:
        old_slot.occupied = False
    target.occupied = True
    record.slot_number = new_slot_number

    _log_action(
        db,
        admin_username,
        "CHANGE_SLOT",
        f"Changed slot from {slot_number} to {new_slot_number}",
        {"oldSlot": slot_number, "newSlot": new_slot_number, "floorNumber": record.floor_number},
    )
    db.commit()
    db.refresh(record)
    return record


def mark_slot_available(
    db: Session, slot_number: int, floor_number: Optional[int], admin_username: str
) -> ParkingSlot:
    slot = find_slot(db, slot_number, floor_number)
    if _active_record_at(db, slot) is not None:
        raise SlotOccupied("Cannot mark slot as available. Vehicle is still parked. Use Force Exit instead.")

    slot.occupied = False
    _log_action(
        db,
        admin_username,
        "MARK_SLOT_AVAILABLE",
        f"Manually marked slot {slot_number} as available",
        {"slotNumber": slot_number, "floorNumber": slot.floor_number},
    )
    db.commit()
    return slot


# --- Floors and slot provisioning ---


def list_floors(db: Session) -> List[Floor]:
    return list(db.scalars(select(Floor).order_by(Floor.floor_number)))


def get_floor(db: Session, floor_number: int) -> Floor:
    floor = db.scalar(select(Floor).where(Floor.floor_number == floor_number))
    if floor is None:
        raise FloorNotFound(f"Floor {floor_number} not found")
    return floor


def create_floor(db: Session, floor_number: int, description: Optional[str], admin_username: str) -> Floor:
    if floor_number is None or floor_number < 1:
        raise InvalidRequest("Floor number must be a positive integer")
    if db.scalar(select(Floor).where(Floor.floor_number == floor_number)) is not None:
        raise DuplicateResource(f"Floor {floor_number} already exists")

    floor = Floor(floor_number=floor_number, description=description, created_at=datetime.now())
    db.add(floor)
    _log_action(db, admin_username, "CREATE_FLOOR", f"Created floor {floor_number}", {"floorNumber": floor_number})
    db.commit()
    db.refresh(floor)
    return floor


def add_slots(
    db: Session,
    floor_number: int,
    vehicle_type: str,
    start_slot_number: int,
    number_of_slots: int,
    admin_username: str,
) -> List[ParkingSlot]:
    vtype = _require_vehicle_type(vehicle_type)
    if start_slot_number < 1:
        raise InvalidRequest("Start slot number must be at least 1")
    if number_of_slots < 1:
        raise InvalidRequest("Number of slots must be at least 1")
    floor = get_floor(db, floor_number)

    numbers = range(start_slot_number, start_slot_number + number_of_slots)
    existing = set(
        db.scalars(
            select(ParkingSlot.slot_number).where(
                ParkingSlot.floor_id == floor.id, ParkingSlot.slot_number.in_(list(numbers))
            )
        )
    )
    if existing:
        raise DuplicateResource(f"Slot {min(existing)} already exists on floor {floor_number}")

    created = [ParkingSlot(slot_number=n, floor_id=floor.id, vehicle_type=vtype.value, occupied=False) for n in numbers]
    db.add_all(created)
    _log_action(
        db,
        admin_username,
        "ADD_SLOTS",
        f"Added {len(created)} {vtype.value} slots to floor {floor_number}",
        {"floorNumber": floor_number, "start": start_slot_number, "count": number_of_slots},
    )
    db.commit()
    for slot in created:
        db.refresh(slot)
    return created


def slots_by_floor(db: Session, floor_number: int) -> List[ParkingSlot]:
    floor = get_floor(db, floor_number)
    return list(floor.slots)


def delete_slot(db: Session, slot_id: int, admin_username: str) -> None:
    slot = db.get(ParkingSlot, slot_id)
    if slot is None:
        raise SlotNotFound("Slot not found")
    if _active_record_at(db, slot) is not None:
        raise SlotOccupied("Cannot delete occupied slot. Please exit the vehicle first.")

    _log_action(
        db,
        admin_username,
        "DELETE_SLOT",
        f"Deleted slot {slot.slot_number}{_floor_suffix(slot.floor_number)}",
        {"slotId": slot_id, "slotNumber": slot.slot_number, "floorNumber": slot.floor_number},
    )
    db.delete(slot)
    db.commit()


# --- Audit / auth ---


def audit_logs(
    db: Session,
    admin_username: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> List[AuditLog]:
    stmt = select(AuditLog)
    if admin_username:
        stmt = stmt.where(AuditLog.admin_username == admin_username)
    elif start is not None and end is not None:
        stmt = stmt.where(AuditLog.timestamp >= start, AuditLog.timestamp <= end)
    return list(db.scalars(stmt.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())))


def authenticate(db: Session, username: str, password: str) -> Optional[Admin]:
    admin = db.scalar(select(Admin).where(Admin.username == username))
    if admin is None or not verify_password(password, admin.password_hash):
        return None
    if not admin.active:
        raise AccountInactive("Account not activated")
    _log_action(db, admin.username, "LOGIN", "Admin logged in", {})
    db.commit()
    return admin
