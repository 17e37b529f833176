from __future__ import annotations

import datetime
import json
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    create_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship, sessionmaker
from sqlalchemy.types import Time

from config import DATABASE_URL, STAFF_DATABASE_URL


EVENT_STATUSES = ("Pending", "Upcoming", "Live", "Completed", "Cancelled")
ASSIGNMENT_STATUSES = ("Pending", "Approved")
BOOKING_STATUSES = ("Pending", "Under Review", "Approved", "Rejected", "Converted")
STAFF_STATUSES = ("Available", "On Shift", "Leave", "Suspended")

Money = Numeric(12, 2)


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime.date, datetime.time)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def dumps_json(payload: Optional[Dict[str, Any]]) -> str:
    return json.dumps(payload or {}, default=_json_default, sort_keys=True)


def loads_json(raw: Optional[str]) -> Dict[str, Any]:
    try:
        value = json.loads(raw or "{}")
    except json.JSONDecodeError:
        return {}
    return value if isinstance(value, dict) else {}


class StaffBase(DeclarativeBase):
    """Standalone metadata for the read-only staff directory living in staff.db."""

    pass


class Base(DeclarativeBase):
    """Metadata for events, bookings and their staffing records living in staffing.db."""

    pass


class StaffMember(StaffBase):
    __tablename__ = "staff"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    role: Mapped[str] = mapped_column(String(80), nullable=False, default="General Staff")
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="Available")
    base_rate: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    email: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    phone: Mapped[str] = mapped_column(String(40), nullable=False, default="")
    rating: Mapped[float] = mapped_column(Float, nullable=False, default=5.0)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class Event(Base):
    __tablename__ = "events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    location: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    start_at: Mapped[datetime.datetime] = mapped_column(DateTime, nullable=False)
    end_at: Mapped[datetime.datetime | None] = mapped_column(DateTime, nullable=True)
    description: Mapped[str] = mapped_column(String(2000), nullable=False, default="")
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="Pending")
    staff_required: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    seed_default_role: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    revenue: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    budget_total: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    budget_total_override: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    staffing_allocated: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    logistics_allocated: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    marketing_allocated: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    catering_allocated: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    technology_allocated: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    miscellaneous_allocated: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    budget_spent: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    booking_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    roles: Mapped[List["EventRole"]] = relationship(
        back_populates="event",
        cascade="all, delete-orphan",
        order_by="EventRole.position",
    )
    assignments: Mapped[List["Assignment"]] = relationship(
        back_populates="event",
        cascade="all, delete-orphan",
        order_by="Assignment.id",
    )
    shifts: Mapped[List["Shift"]] = relationship(viewonly=True, order_by="Shift.id")

    def role(self, role_name: str) -> Optional["EventRole"]:
        for role in self.roles:
            if role.role_name == role_name:
                return role
        return None


class EventRole(Base):
    __tablename__ = "event_roles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[int] = mapped_column(ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    role_name: Mapped[str] = mapped_column(String(80), nullable=False)
    count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    filled: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    event: Mapped[Event] = relationship(back_populates="roles")

    __table_args__ = (
        UniqueConstraint("event_id", "role_name", name="uq_event_roles_event_role"),
        CheckConstraint("count >= 0", name="ck_event_roles_count_non_negative"),
        CheckConstraint("filled >= 0 AND filled <= count", name="ck_event_roles_filled_within_count"),
    )

    @property
    def open_slots(self) -> int:
        return max(0, (self.count or 0) - (self.filled or 0))


class Assignment(Base):
    __tablename__ = "assignments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[int] = mapped_column(ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    staff_id: Mapped[str] = mapped_column(String(64), nullable=False)
    role: Mapped[str] = mapped_column(String(80), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="Approved")
    payment_type: Mapped[str | None] = mapped_column(String(16), nullable=True)
    paymentJSON: Mapped[str] = mapped_column(String(2000), nullable=False, default="{}")
    total_payment: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    notes: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    assigned_by: Mapped[str] = mapped_column(String(60), nullable=False, default="system")
    assigned_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    event: Mapped[Event] = relationship(back_populates="assignments")
    shifts: Mapped[List["Shift"]] = relationship(
        back_populates="assignment",
        cascade="all, delete-orphan",
        order_by="Shift.id",
    )

    __table_args__ = (UniqueConstraint("event_id", "staff_id", name="uq_assignments_event_staff"),)

    def payment_dict(self) -> Dict[str, Any]:
        return loads_json(self.paymentJSON)

    @property
    def has_payment(self) -> bool:
        return self.payment_type is not None


class Booking(Base):
    __tablename__ = "bookings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_type: Mapped[str] = mapped_column(String(120), nullable=False)
    location: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    time: Mapped[str] = mapped_column(String(5), nullable=False, default="09:00")
    duration: Mapped[str] = mapped_column(String(40), nullable=False, default="")
    budget: Mapped[str] = mapped_column(String(80), nullable=False, default="")
    servers: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    hosts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    other: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    contact_name: Mapped[str] = mapped_column(String(120), nullable=False, default="")
    contact_company: Mapped[str] = mapped_column(String(120), nullable=False, default="")
    contact_phone: Mapped[str] = mapped_column(String(40), nullable=False, default="")
    contact_email: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    venue: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    guests: Mapped[str] = mapped_column(String(40), nullable=False, default="")
    dress_code: Mapped[str] = mapped_column(String(80), nullable=False, default="")
    special_requirements: Mapped[str] = mapped_column(String(2000), nullable=False, default="")
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="Pending")
    decision_note: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    decided_by: Mapped[str | None] = mapped_column(String(60), nullable=True)
    decided_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    converted_to_event_id: Mapped[int | None] = mapped_column(
        ForeignKey("events.id", ondelete="SET NULL"), nullable=True
    )
    submitted_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )


class Shift(Base):
    __tablename__ = "shifts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    assignment_id: Mapped[int] = mapped_column(ForeignKey("assignments.id", ondelete="CASCADE"), nullable=False)
    event_id: Mapped[int] = mapped_column(ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    staff_id: Mapped[str] = mapped_column(String(64), nullable=False)
    role: Mapped[str] = mapped_column(String(80), nullable=False)
    date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    start_time: Mapped[datetime.time] = mapped_column(Time, nullable=False)
    end_time: Mapped[datetime.time] = mapped_column(Time, nullable=False)
    wage: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    instructions: Mapped[str] = mapped_column(String(1000), nullable=False, default="")
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="Scheduled")
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    assignment: Mapped[Assignment] = relationship(back_populates="shifts")

    @property
    def hours(self) -> float:
        start = datetime.datetime.combine(self.date, self.start_time)
        end = datetime.datetime.combine(self.date, self.end_time)
        return round((end - start).total_seconds() / 3600, 2)


class OutboxMessage(Base):
    __tablename__ = "notification_outbox"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    kind: Mapped[str] = mapped_column(String(40), nullable=False)
    recipient: Mapped[str] = mapped_column(String(255), nullable=False)
    payloadJSON: Mapped[str] = mapped_column(String(4000), nullable=False, default="{}")
    status: Mapped[str] = mapped_column(String(12), nullable=False, default="pending")
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    sent_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def payload_dict(self) -> Dict[str, Any]:
        return loads_json(self.payloadJSON)


class AuditLog(Base):
    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(60), nullable=False)
    action: Mapped[str] = mapped_column(String(60), nullable=False)
    target_type: Mapped[str] = mapped_column(String(32), nullable=False, default="Event")
    target_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    payloadJSON: Mapped[str] = mapped_column(String(2000), nullable=False, default="{}")
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


engine = create_engine(
    DATABASE_URL,
    echo=False,
    future=True,
)
staff_engine = create_engine(
    STAFF_DATABASE_URL,
    echo=False,
    future=True,
)
SessionLocal = sessionmaker(bind=engine, expire_on_commit=False, future=True)
StaffSessionLocal = sessionmaker(bind=staff_engine, expire_on_commit=False, future=True)


def init_database() -> None:
    StaffBase.metadata.create_all(staff_engine)
    Base.metadata.create_all(engine)


def record_audit_log(
    session,
    user_id: str,
    action: str,
    target_type: str = "Event",
    target_id: Optional[int] = None,
    payload: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    """Stage an audit row in the caller's transaction; the caller commits."""
    log = AuditLog(
        user_id=user_id or "system",
        action=action,
        target_type=target_type,
        target_id=target_id,
        payloadJSON=dumps_json(payload),
    )
    session.add(log)
    return log
