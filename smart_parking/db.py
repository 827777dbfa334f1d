from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint, create_engine
from sqlalchemy.orm import DeclarativeBase, Session, relationship
from sqlalchemy.pool import StaticPool

from .billing import DEFAULT_RATES
from .config import settings
from .logger import get_logger
from .security import hash_password

logger = get_logger(__name__)


class Base(DeclarativeBase):
    pass


class Floor(Base):
    __tablename__ = "floors"
    id = Column(Integer, primary_key=True)
    floor_number = Column(Integer, unique=True, nullable=False)
    description = Column(String(500), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.now)

    slots = relationship("ParkingSlot", back_populates="floor", order_by="ParkingSlot.slot_number")


class ParkingSlot(Base):
    __tablename__ = "parking_slots"
    __table_args__ = (UniqueConstraint("floor_id", "slot_number", name="uq_slot_floor"),)
    id = Column(Integer, primary_key=True)
    slot_number = Column(Integer, nullable=False)
    floor_id = Column(Integer, ForeignKey("floors.id"), nullable=False)
    vehicle_type = Column(String(32), nullable=False)
    # cache only; the active ParkingRecord decides occupancy
    occupied = Column(Boolean, nullable=False, default=False)

    floor = relationship("Floor", back_populates="slots")

    @property
    def floor_number(self) -> int | None:
        return self.floor.floor_number if self.floor is not None else None


class ParkingRecord(Base):
    __tablename__ = "parking_records"
    id = Column(Integer, primary_key=True)
    vehicle_type = Column(String(32), nullable=False)
    license_plate = Column(String(64), nullable=False, index=True)
    slot_number = Column(Integer, nullable=False)
    floor_number = Column(Integer, nullable=True)
    entry_time = Column(DateTime, nullable=False, default=datetime.now)
    exit_time = Column(DateTime, nullable=True)
    duration_minutes = Column(Integer, nullable=True)
    billable_hours = Column(Integer, nullable=True)
    charge = Column(Float, nullable=True)


class ParkingCharge(Base):
    __tablename__ = "parking_charges"
    id = Column(Integer, primary_key=True)
    vehicle_type = Column(String(32), unique=True, nullable=False)
    hourly_rate = Column(Float, nullable=False)
    active = Column(Boolean, nullable=False, default=True)


class Admin(Base):
    __tablename__ = "admins"
    id = Column(Integer, primary_key=True)
    username = Column(String(128), unique=True, nullable=False)
    password_hash = Column(String(256), nullable=False)
    role = Column(String(32), nullable=False, default="ADMIN")
    full_name = Column(String(256), nullable=True)
    email = Column(String(256), nullable=True)
    active = Column(Boolean, nullable=False, default=True)


class AuditLog(Base):
    __tablename__ = "audit_logs"
    id = Column(Integer, primary_key=True)
    admin_username = Column(String(128), nullable=False)
    action = Column(String(64), nullable=False)
    description = Column(Text, nullable=True)
    details = Column(Text, nullable=True)
    timestamp = Column(DateTime, nullable=False, default=datetime.now)


def make_engine(url: str):
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, echo=False, **kwargs)
    return create_engine(url, echo=False)


engine = make_engine(settings.DATABASE_URL)


def get_db():
    with Session(engine) as session:
        yield session


def init_db(bind=None) -> None:
    Base.metadata.create_all(bind or engine)


# 5 bikes, 10 cars, 3 microbuses, 2 trucks on the ground floor
DEFAULT_LAYOUT = ["BIKE"] * 5 + ["CAR"] * 10 + ["MICROBUS"] * 3 + ["TRUCK"] * 2

DEFAULT_ADMINS = [
    ("admin", "admin123", "ADMIN", "System Administrator", "admin@smartparking.com"),
    ("operator", "operator123", "OPERATOR", "Parking Operator", "operator@smartparking.com"),
]


def seed_defaults(db: Session) -> None:
    """Populate an empty database with the default floor, slots, admins and rates."""
    floor = db.query(Floor).filter(Floor.floor_number == settings.DEFAULT_FLOOR).one_or_none()
    if floor is None:
        floor = Floor(floor_number=settings.DEFAULT_FLOOR, description="Ground Floor")
        db.add(floor)
        db.flush()
        logger.info("Initialized default floor (Floor %s)", floor.floor_number)

    if db.query(ParkingSlot).count() == 0:
        for number, vtype in enumerate(DEFAULT_LAYOUT, start=1):
            db.add(ParkingSlot(slot_number=number, floor_id=floor.id, vehicle_type=vtype, occupied=False))
        logger.info("Initialized %d parking slots on Floor %s", len(DEFAULT_LAYOUT), floor.floor_number)

    if db.query(Admin).count() == 0:
        for username, password, role, full_name, email in DEFAULT_ADMINS:
            db.add(
                Admin(
                    username=username,
                    password_hash=hash_password(password),
                    role=role,
                    full_name=full_name,
                    email=email,
                    active=True,
                )
            )
        logger.info("Initialized default admin users")

    if db.query(ParkingCharge).count() == 0:
        for vtype, rate in DEFAULT_RATES.items():
            db.add(ParkingCharge(vehicle_type=vtype, hourly_rate=rate, active=True))
        logger.info("Initialized default parking charges")

    db.commit()
