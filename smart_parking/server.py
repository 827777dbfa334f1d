import asyncio
from datetime import datetime
from typing import AsyncGenerator, List, Optional

from fastapi import Depends, FastAPI, Form, HTTPException, Query, Request, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from sqlalchemy import select
from sqlalchemy.orm import Session

from . import services
from .config import settings
from .db import Admin, engine, get_db, init_db, seed_defaults
from .errors import ParkingError
from .events import event_bus
from .logger import get_logger
from .schemas import (
    AdminOut,
    AuditLogOut,
    ChargeOut,
    DashboardStats,
    ExitSlip,
    FloorIn,
    FloorOut,
    ParkingSlotOut,
    ParkResult,
    RecordOut,
    SlotDetail,
    SlotView,
    Suggestion,
    TokenResponse,
)
from .security import generate_jwt, verify_jwt

logger = get_logger(__name__)

app = FastAPI(title="Smart Parking")

# CORS (the kiosk and dashboard pages may be served from another origin or port)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def security_headers_middleware(request: Request, call_next):
    response: Response = await call_next(request)
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("Referrer-Policy", "no-referrer")
    return response


@app.exception_handler(ParkingError)
async def parking_error_handler(request: Request, exc: ParkingError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.on_event("startup")
def load_data():
    init_db()
    if settings.SEED_DEFAULTS:
        with Session(engine) as db:
            seed_defaults(db)
    logger.info("Database ready at %s", settings.DATABASE_URL)


async def _publish_occupancy(action: str, record) -> None:
    await event_bus.publish_event(
        "occupancy",
        action=action,
        slotNumber=record.slot_number,
        floorNumber=record.floor_number,
    )


# --- Auth ---


def get_current_payload(request: Request):
    auth_header = request.headers.get("authorization") or request.headers.get("Authorization")
    token: str | None = None
    if auth_header and auth_header.lower().startswith("bearer "):
        token = auth_header.split(" ", 1)[1].strip()
    if not token:
        raise HTTPException(status_code=401, detail="Missing bearer token")
    try:
        return verify_jwt(token)
    except Exception as exc:  # noqa: BLE001
        raise HTTPException(status_code=401, detail="Invalid or expired token") from exc


def get_current_admin(payload: dict = Depends(get_current_payload), db: Session = Depends(get_db)) -> Admin:
    admin = db.scalar(select(Admin).where(Admin.username == payload.get("sub")))
    if admin is None or not admin.active:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return admin


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/events")
async def sse_events(request: Request):
    async def event_stream() -> AsyncGenerator[bytes, None]:
        queue = event_bus.subscribe()
        try:
            # initial comment to open stream
            yield b":ok\n\n"
            while True:
                if await request.is_disconnected():
                    break
                try:
                    data = await asyncio.wait_for(queue.get(), timeout=15.0)
                    yield f"data: {data}\n\n".encode("utf-8")
                except asyncio.TimeoutError:
                    # keep-alive
                    yield b":keepalive\n\n"
        finally:
            event_bus.unsubscribe(queue)

    headers = {"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}
    return StreamingResponse(event_stream(), media_type="text/event-stream", headers=headers)


# --- Kiosk ---


@app.post("/parking/park", response_model=ParkResult)
async def park(
    license_plate: str = Query(..., alias="licensePlate"),
    vehicle_type: str = Query(..., alias="vehicleType"),
    preferred_slot: Optional[int] = Query(None, alias="preferredSlot"),
    floor_number: Optional[int] = Query(None, alias="floorNumber"),
    db: Session = Depends(get_db),
):
    if preferred_slot is not None and preferred_slot > 0:
        record = await run_in_threadpool(
            services.park_vehicle_in_slot, db, license_plate, vehicle_type, preferred_slot, floor_number
        )
    else:
        record = await run_in_threadpool(services.park_vehicle, db, license_plate, vehicle_type, floor_number)
    await _publish_occupancy("park", record)
    return ParkResult(
        message=f"{record.vehicle_type} parked at slot {record.slot_number}",
        record_id=record.id,
        slot_number=record.slot_number,
        floor_number=record.floor_number,
    )


@app.post("/parking/exit-by-slot", response_model=ExitSlip)
async def exit_by_slot(
    slot_number: int = Query(..., alias="slotNumber"),
    floor_number: Optional[int] = Query(None, alias="floorNumber"),
    db: Session = Depends(get_db),
):
    record = await run_in_threadpool(services.exit_vehicle_by_slot, db, slot_number, floor_number)
    await _publish_occupancy("exit", record)
    return services.to_exit_slip(record)


@app.post("/parking/exit", response_model=ExitSlip)
async def exit_by_plate(license_plate: str = Query(..., alias="licensePlate"), db: Session = Depends(get_db)):
    record = await run_in_threadpool(services.exit_vehicle, db, license_plate)
    await _publish_occupancy("exit", record)
    return services.to_exit_slip(record)


@app.get("/parking/slots", response_model=List[SlotView])
def get_slots(floor_number: Optional[int] = Query(None, alias="floorNumber"), db: Session = Depends(get_db)):
    return services.slot_snapshot(db, floor_number)


@app.get("/parking/suggest", response_model=Optional[Suggestion])
def get_suggestion(
    vehicle_type: str = Query(..., alias="vehicleType"),
    floor_number: Optional[int] = Query(None, alias="floorNumber"),
    db: Session = Depends(get_db),
):
    return services.suggest_slot(db, vehicle_type, floor_number)


# --- Admin: session ---


@app.post("/admin/login", response_model=TokenResponse)
def login(username: str = Form(...), password: str = Form(...), db: Session = Depends(get_db)):
    admin = services.authenticate(db, username, password)
    if admin is None:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    token = generate_jwt({"sub": admin.username, "role": admin.role})
    return TokenResponse(token=token, admin=AdminOut.model_validate(admin))


@app.get("/admin/verify")
def verify_session(admin: Admin = Depends(get_current_admin)):
    return {"valid": True, "admin": AdminOut.model_validate(admin).model_dump(by_alias=True)}


@app.get("/admin/dashboard/stats", response_model=DashboardStats)
def dashboard_stats(admin: Admin = Depends(get_current_admin), db: Session = Depends(get_db)):
    return services.dashboard_stats(db)


# --- Admin: floors and slots ---


@app.post("/admin/floors", response_model=FloorOut)
def create_floor(body: FloorIn, admin: Admin = Depends(get_current_admin), db: Session = Depends(get_db)):
    return services.create_floor(db, body.floor_number, body.description, admin.username)


@app.get("/admin/floors", response_model=List[FloorOut])
def list_floors(admin: Admin = Depends(get_current_admin), db: Session = Depends(get_db)):
    return services.list_floors(db)


@app.get("/admin/floors/{floor_number}", response_model=FloorOut)
def get_floor(floor_number: int, admin: Admin = Depends(get_current_admin), db: Session = Depends(get_db)):
    return services.get_floor(db, floor_number)


@app.get("/admin/floors/{floor_number}/slots", response_model=List[ParkingSlotOut])
def get_slots_by_floor(floor_number: int, admin: Admin = Depends(get_current_admin), db: Session = Depends(get_db)):
    return services.slots_by_floor(db, floor_number)


@app.post("/admin/slots/add")
def add_slots(
    floor_number: int = Query(..., alias="floorNumber"),
    vehicle_type: str = Query(..., alias="vehicleType"),
    start_slot_number: int = Query(..., alias="startSlotNumber"),
    number_of_slots: int = Query(..., alias="numberOfSlots"),
    admin: Admin = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    slots = services.add_slots(db, floor_number, vehicle_type, start_slot_number, number_of_slots, admin.username)
    return {
        "success": True,
        "message": f"Added {len(slots)} slots to floor {floor_number}",
        "slots": [ParkingSlotOut.model_validate(s).model_dump(by_alias=True) for s in slots],
    }


@app.delete("/admin/slots/{slot_id}")
def delete_slot(slot_id: int, admin: Admin = Depends(get_current_admin), db: Session = Depends(get_db)):
    services.delete_slot(db, slot_id, admin.username)
    return {"success": True, "message": "Slot deleted successfully"}


@app.get("/admin/slots/{slot_number}", response_model=SlotDetail)
def get_slot_detail(
    slot_number: int,
    floor_number: Optional[int] = Query(None, alias="floorNumber"),
    admin: Admin = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    return services.slot_detail(db, slot_number, floor_number)


@app.get("/admin/slots/{slot_number}/history", response_model=List[RecordOut])
def get_slot_history(
    slot_number: int,
    limit: int = Query(10, ge=0, le=500),
    admin: Admin = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    return services.slot_history(db, slot_number, limit)


@app.post("/admin/slots/{slot_number}/mark-available")
async def mark_slot_available(
    slot_number: int,
    floor_number: Optional[int] = Query(None, alias="floorNumber"),
    admin: Admin = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    await run_in_threadpool(services.mark_slot_available, db, slot_number, floor_number, admin.username)
    await event_bus.publish_event("occupancy", action="mark-available", slotNumber=slot_number, floorNumber=floor_number)
    return {"success": True, "message": "Slot marked as available"}


@app.get("/admin/slots/{slot_number}/entry-slip", response_model=RecordOut)
def get_entry_slip(
    slot_number: int,
    floor_number: Optional[int] = Query(None, alias="floorNumber"),
    admin: Admin = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    record = services.active_record_for_slot(db, slot_number, floor_number)
    if record is None:
        raise HTTPException(status_code=400, detail="No active vehicle in this slot")
    return record


@app.get("/admin/records/{record_id}/exit-slip", response_model=ExitSlip)
def get_exit_slip(record_id: int, admin: Admin = Depends(get_current_admin), db: Session = Depends(get_db)):
    record = services.record_by_id(db, record_id)
    if record is None or record.exit_time is None:
        raise HTTPException(status_code=400, detail="Exit slip not available for this record")
    return services.to_exit_slip(record)


# --- Admin: history ---


@app.get("/admin/history", response_model=List[RecordOut])
def get_vehicle_history(
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    vehicle_type: Optional[str] = Query(None, alias="vehicleType"),
    slot_number: Optional[int] = Query(None, alias="slotNumber"),
    admin: Admin = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    return services.vehicle_history(db, start_date, end_date, vehicle_type, slot_number)


# --- Admin: charges ---


@app.get("/admin/charges", response_model=List[ChargeOut])
def get_all_charges(admin: Admin = Depends(get_current_admin), db: Session = Depends(get_db)):
    return services.list_charges(db)


@app.get("/admin/charges/{vehicle_type}", response_model=ChargeOut)
def get_charge(vehicle_type: str, admin: Admin = Depends(get_current_admin), db: Session = Depends(get_db)):
    charge = services.get_charge(db, vehicle_type)
    if charge is None:
        raise HTTPException(status_code=404, detail=f"No charge configured for {vehicle_type}")
    return charge


@app.put("/admin/charges/{vehicle_type}", response_model=ChargeOut)
def update_charge(
    vehicle_type: str,
    hourly_rate: float = Query(..., alias="hourlyRate"),
    admin: Admin = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    return services.update_charge(db, vehicle_type, hourly_rate, admin.username)


# --- Admin: manual overrides ---


@app.post("/admin/override/force-exit", response_model=ExitSlip)
async def force_exit(
    slot_number: int = Query(..., alias="slotNumber"),
    floor_number: Optional[int] = Query(None, alias="floorNumber"),
    admin: Admin = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    record = await run_in_threadpool(services.force_exit, db, slot_number, floor_number, admin.username)
    await _publish_occupancy("force-exit", record)
    return services.to_exit_slip(record)


@app.post("/admin/override/update-license", response_model=RecordOut)
def update_license_plate(
    slot_number: int = Query(..., alias="slotNumber"),
    new_license_plate: str = Query(..., alias="newLicensePlate"),
    floor_number: Optional[int] = Query(None, alias="floorNumber"),
    admin: Admin = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    return services.update_license_plate(db, slot_number, new_license_plate, admin.username, floor_number)


@app.post("/admin/override/change-slot", response_model=RecordOut)
async def change_slot(
    slot_number: int = Query(..., alias="slotNumber"),
    new_slot_number: int = Query(..., alias="newSlotNumber"),
    floor_number: Optional[int] = Query(None, alias="floorNumber"),
    admin: Admin = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    record = await run_in_threadpool(
        services.change_slot, db, slot_number, new_slot_number, floor_number, admin.username
    )
    await _publish_occupancy("change-slot", record)
    return record


# --- Admin: audit ---


@app.get("/admin/audit-logs", response_model=List[AuditLogOut])
def get_audit_logs(
    admin_username: Optional[str] = Query(None, alias="adminUsername"),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    admin: Admin = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    return services.audit_logs(db, admin_username, start_date, end_date)
