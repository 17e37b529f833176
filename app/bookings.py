"""Booking intake and the decision state machine.

Approval and conversion are one transaction: the booking goes straight from Pending or
Under Review to Converted together with the event it produced. The status flip is a
conditional UPDATE, so of two competing decisions only one can ever match the row.
"""

from __future__ import annotations

import datetime
import logging
import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import select, update

from database import BOOKING_STATUSES, Booking, record_audit_log, utcnow
from errors import InvalidTransitionError, NotFoundError, ValidationError
from events import BUDGET_BUCKETS, create_event, event_snapshot
from notifications import STAFF_MATCHING_RECIPIENT, emit
from roles import BOOKING_ROLE_MAP, seed_roles_from_staff_counts


logger = logging.getLogger(__name__)

DECIDABLE_STATUSES = ("Pending", "Under Review")
DEFAULT_DURATION_HOURS = 8
FULL_DAY_HOURS = 12
DEFAULT_START_TIME = "09:00"
BUDGET_SPLIT = (
    ("staffing", Decimal("0.40")),
    ("logistics", Decimal("0.20")),
    ("marketing", Decimal("0.15")),
    ("catering", Decimal("0.15")),
    ("technology", Decimal("0.05")),
)
CENTS = Decimal("0.01")

_NUMBER_RE = re.compile(r"(\d[\d,]*(?:\.\d+)?)\s*([kK])?")
_HOURS_RE = re.compile(r"\d+")

_APPROVE = {"approve", "approved", "accept"}
_REJECT = {"reject", "rejected", "decline"}


def parse_duration_hours(text: str) -> int:
    """'4 hours' -> 4, 'Full day' -> 12, anything unreadable -> 8."""
    value = (text or "").strip().lower()
    if "full" in value:
        return FULL_DAY_HOURS
    match = _HOURS_RE.search(value)
    if match:
        hours = int(match.group(0))
        if 0 < hours <= 24:
            return hours
    return DEFAULT_DURATION_HOURS


def parse_budget_amount(text: Any) -> Decimal:
    """Pull the first amount out of free text such as 'QAR 15,000' or '10k'."""
    if isinstance(text, (int, float, Decimal)) and not isinstance(text, bool):
        amount = Decimal(str(text))
        return amount if amount.is_finite() and amount > 0 else Decimal("0")
    match = _NUMBER_RE.search(str(text or ""))
    if not match:
        return Decimal("0")
    try:
        amount = Decimal(match.group(1).replace(",", ""))
    except InvalidOperation:
        return Decimal("0")
    if match.group(2):
        amount *= 1000
    return amount


def split_budget(total: Decimal) -> Dict[str, Decimal]:
    buckets: Dict[str, Decimal] = {}
    for bucket, share in BUDGET_SPLIT:
        buckets[bucket] = (total * share).quantize(CENTS, rounding=ROUND_HALF_UP)
    buckets["miscellaneous"] = total.quantize(CENTS, rounding=ROUND_HALF_UP) - sum(buckets.values(), Decimal("0"))
    return {bucket: buckets[bucket] for bucket in BUDGET_BUCKETS}


def _parse_time(value: Any) -> str:
    text = str(value or "").strip() or DEFAULT_START_TIME
    for fmt in ("%H:%M", "%H:%M:%S", "%I:%M %p", "%I %p"):
        try:
            return datetime.datetime.strptime(text.upper(), fmt).strftime("%H:%M")
        except ValueError:
            continue
    raise ValidationError("Booking time must look like HH:MM.", details={"field": "time", "value": text})


def _parse_date(value: Any) -> datetime.date:
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    text = str(value or "").strip()
    if not text:
        raise ValidationError("Booking date is required.", details={"field": "date"})
    try:
        return datetime.date.fromisoformat(text[:10])
    except ValueError:
        raise ValidationError("Booking date must be YYYY-MM-DD.", details={"field": "date", "value": text}) from None


def _staff_count(raw: Any, category: str) -> int:
    if raw in (None, ""):
        return 0
    if isinstance(raw, bool):
        raise ValidationError(f"Requested {category} must be a whole number.", details={"field": category})
    try:
        count = int(raw)
    except (TypeError, ValueError):
        raise ValidationError(f"Requested {category} must be a whole number.", details={"field": category}) from None
    if count < 0 or count != float(raw):
        raise ValidationError(f"Requested {category} must be a whole number >= 0.", details={"field": category})
    return count


def _section(payload: Mapping[str, Any], *keys: str) -> Mapping[str, Any]:
    for key in keys:
        value = payload.get(key)
        if isinstance(value, Mapping):
            return value
    return {}


def create_booking(session, payload: Mapping[str, Any]) -> Dict[str, Any]:
    event_type = str(payload.get("event_type") or payload.get("eventType") or "").strip()
    if not event_type:
        raise ValidationError("Event type is required.", details={"field": "event_type"})
    contact = _section(payload, "contact")
    details = _section(payload, "event_details", "eventDetails")
    staff = _section(payload, "staff")
    counts = {
        category: _staff_count(staff.get(category, payload.get(category)), category)
        for category, _role in BOOKING_ROLE_MAP
    }
    booking = Booking(
        event_type=event_type,
        location=str(payload.get("location") or "").strip(),
        date=_parse_date(payload.get("date")),
        time=_parse_time(payload.get("time")),
        duration=str(payload.get("duration") or ""),
        budget=str(payload.get("budget") or ""),
        contact_name=str(contact.get("name") or payload.get("contact_name") or "").strip(),
        contact_company=str(contact.get("company") or payload.get("contact_company") or "").strip(),
        contact_phone=str(contact.get("phone") or payload.get("contact_phone") or "").strip(),
        contact_email=str(contact.get("email") or payload.get("contact_email") or "").strip(),
        venue=str(details.get("venue") or payload.get("venue") or "").strip(),
        guests=str(details.get("guests") or payload.get("guests") or ""),
        dress_code=str(details.get("dress_code") or details.get("dressCode") or payload.get("dress_code") or ""),
        special_requirements=str(
            details.get("special_requirements")
            or details.get("special")
            or payload.get("special_requirements")
            or ""
        ),
        status="Pending",
        **counts,
    )
    session.add(booking)
    session.commit()
    logger.info("Booking %s submitted for %s on %s", booking.id, booking.event_type, booking.date)
    return booking_to_dict(booking)


def get_booking(session, booking_id: int) -> Booking:
    booking = session.get(Booking, booking_id, populate_existing=True) if booking_id is not None else None
    if booking is None:
        raise NotFoundError("booking", booking_id)
    return booking


def list_bookings(session, status: Optional[str] = None) -> List[Dict[str, Any]]:
    stmt = select(Booking).order_by(Booking.submitted_at.desc(), Booking.id.desc())
    if status:
        if status not in BOOKING_STATUSES:
            raise ValidationError(f"Unknown booking status '{status}'.", details={"field": "status"})
        stmt = stmt.where(Booking.status == status)
    return [booking_to_dict(booking) for booking in session.scalars(stmt)]


def booking_to_dict(booking: Booking) -> Dict[str, Any]:
    return {
        "id": booking.id,
        "event_type": booking.event_type,
        "location": booking.location,
        "date": booking.date,
        "time": booking.time,
        "duration": booking.duration,
        "budget": booking.budget,
        "staff": {"servers": booking.servers, "hosts": booking.hosts, "other": booking.other},
        "contact": {
            "name": booking.contact_name,
            "company": booking.contact_company,
            "phone": booking.contact_phone,
            "email": booking.contact_email,
        },
        "event_details": {
            "venue": booking.venue,
            "guests": booking.guests,
            "dress_code": booking.dress_code,
            "special_requirements": booking.special_requirements,
        },
        "status": booking.status,
        "decision_note": booking.decision_note,
        "decided_by": booking.decided_by,
        "decided_at": booking.decided_at,
        "converted_to_event_id": booking.converted_to_event_id,
        "submitted_at": booking.submitted_at,
    }


def _claim(session, booking: Booking, target: str, *, allowed, values: Dict[str, Any]) -> None:
    """Flip the booking's status only if it still sits in one of ``allowed``."""
    result = session.execute(
        update(Booking)
        .where(Booking.id == booking.id, Booking.status.in_(allowed))
        .values(status=target, **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        session.rollback()
        current = get_booking(session, booking.id)
        raise InvalidTransitionError("booking", current.status, target)


def review_booking(session, booking_id: int, *, actor: str = "system") -> Dict[str, Any]:
    booking = get_booking(session, booking_id)
    if booking.status != "Pending":
        raise InvalidTransitionError("booking", booking.status, "Under Review")
    _claim(session, booking, "Under Review", allowed=("Pending",), values={"updated_at": utcnow()})
    record_audit_log(session, user_id=actor, action="BOOKING_REVIEW", target_type="Booking", target_id=booking.id)
    session.commit()
    session.refresh(booking)
    return booking_to_dict(booking)


def event_payload_from_booking(booking: Booking) -> Dict[str, Any]:
    start_at = datetime.datetime.combine(booking.date, datetime.time.fromisoformat(booking.time))
    end_at = start_at + datetime.timedelta(hours=parse_duration_hours(booking.duration))
    amount = parse_budget_amount(booking.budget).quantize(CENTS, rounding=ROUND_HALF_UP)
    place = booking.venue or booking.location
    title = f"{booking.event_type} - {booking.contact_name}" if booking.contact_name else booking.event_type
    budget: Dict[str, Any] = dict(split_budget(amount))
    budget["total"] = amount
    return {
        "title": title,
        "description": booking.special_requirements or f"{booking.event_type} event at {place}",
        "location": place,
        "start_at": start_at,
        "end_at": end_at,
        "status": "Upcoming",
        "roles": seed_roles_from_staff_counts(
            {"servers": booking.servers, "hosts": booking.hosts, "other": booking.other}
        ),
        "revenue": amount if amount > 0 else None,
        "budget": budget,
        "booking_id": booking.id,
    }


def decide_booking(
    session,
    booking_id: int,
    decision: str,
    *,
    actor: str = "system",
    note: str = "",
) -> Dict[str, Any]:
    """Approve (and convert) or reject a booking.

    Returns ``{"booking": ..., "event": ...}``; ``event`` is None for rejections. Deciding a
    booking that is already Rejected or Converted raises InvalidTransitionError and never
    creates a second event. Notifications are only queued here; delivery cannot undo the
    decision.
    """
    normalized = str(decision or "").strip().lower()
    if normalized in _APPROVE:
        target = "Converted"
    elif normalized in _REJECT:
        target = "Rejected"
    else:
        raise ValidationError("Decision must be 'approve' or 'reject'.", details={"field": "decision"})

    booking = get_booking(session, booking_id)
    if booking.status not in DECIDABLE_STATUSES:
        raise InvalidTransitionError("booking", booking.status, "Approved" if target == "Converted" else target)

    decided = {"decided_by": actor or "system", "decided_at": utcnow(), "decision_note": note or ""}
    event_id: Optional[int] = None
    try:
        if target == "Rejected":
            _claim(session, booking, "Rejected", allowed=DECIDABLE_STATUSES, values=decided)
            emit(
                session,
                "booking_rejected",
                booking.contact_email or booking.contact_name,
                {"booking_id": booking.id, "event_type": booking.event_type, "note": note or ""},
            )
        else:
            _claim(session, booking, "Converted", allowed=DECIDABLE_STATUSES, values=decided)
            event = create_event(session, event_payload_from_booking(booking), actor=actor, commit=False)
            event_id = event.id
            session.execute(
                update(Booking)
                .where(Booking.id == booking.id)
                .values(converted_to_event_id=event.id)
                .execution_options(synchronize_session=False)
            )
            emit(
                session,
                "booking_approved",
                booking.contact_email or booking.contact_name,
                {
                    "booking_id": booking.id,
                    "event_id": event.id,
                    "event_title": event.title,
                    "start_at": event.start_at,
                },
            )
            open_roles = [
                {"role_name": role.role_name, "count": role.count} for role in event.roles if role.count > 0
            ]
            if open_roles:
                emit(
                    session,
                    "open_roles_available",
                    STAFF_MATCHING_RECIPIENT,
                    {"event_id": event.id, "event_title": event.title, "roles": open_roles},
                )
        record_audit_log(
            session,
            user_id=actor,
            action="BOOKING_DECIDE",
            target_type="Booking",
            target_id=booking.id,
            payload={"decision": target, "event_id": event_id, "note": note or ""},
        )
        session.commit()
    except Exception:
        session.rollback()
        raise

    session.refresh(booking)
    logger.info("Booking %s decided: %s (event %s)", booking.id, target, event_id)
    return {
        "booking": booking_to_dict(booking),
        "event": event_snapshot(session, event_id) if event_id is not None else None,
    }
