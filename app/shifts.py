from __future__ import annotations

import datetime
import logging
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import select

from assignments import get_assignment
from config import DEFAULT_SHIFT_HOURS
from database import Assignment, Shift, record_audit_log
from errors import NotFoundError, ValidationError
from events import get_event, parse_amount
from roles import clean_role_name


logger = logging.getLogger(__name__)

SHIFT_STATUSES = ("Scheduled", "Completed", "Cancelled")


def _parse_date(value: Any, field: str = "date") -> datetime.date:
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    try:
        return datetime.date.fromisoformat(str(value or "").strip())
    except ValueError:
        raise ValidationError(f"{field} must be a calendar date (YYYY-MM-DD).", details={"field": field}) from None


def _parse_time(value: Any, field: str) -> datetime.time:
    if isinstance(value, datetime.datetime):
        return value.time().replace(tzinfo=None)
    if isinstance(value, datetime.time):
        return value.replace(tzinfo=None)
    text = str(value or "").strip()
    for fmt in ("%H:%M", "%H:%M:%S"):
        try:
            return datetime.datetime.strptime(text, fmt).time()
        except ValueError:
            continue
    raise ValidationError(f"{field} must be a time of day (HH:MM).", details={"field": field, "value": text})


def _check_window(start: datetime.time, end: datetime.time) -> None:
    if start >= end:
        raise ValidationError(
            "Shift must end after it starts on the same day; overnight shifts are not supported.",
            details={"start_time": start.isoformat(), "end_time": end.isoformat()},
        )


def shift_to_dict(shift: Shift) -> Dict[str, Any]:
    return {
        "id": shift.id,
        "assignment_id": shift.assignment_id,
        "event_id": shift.event_id,
        "staff_id": shift.staff_id,
        "role": shift.role,
        "date": shift.date,
        "start_time": shift.start_time.strftime("%H:%M"),
        "end_time": shift.end_time.strftime("%H:%M"),
        "hours": shift.hours,
        "wage": Decimal(shift.wage) if shift.wage is not None else None,
        "instructions": shift.instructions,
        "status": shift.status,
    }


def get_shift(session, shift_id: int) -> Shift:
    shift = session.get(Shift, shift_id, populate_existing=True) if shift_id is not None else None
    if shift is None:
        raise NotFoundError("shift", shift_id)
    return shift


def list_shifts(session, event_id: int) -> List[Dict[str, Any]]:
    stmt = select(Shift).where(Shift.event_id == event_id).order_by(Shift.date, Shift.start_time, Shift.id)
    return [shift_to_dict(shift) for shift in session.scalars(stmt)]


def _default_wage(assignment: Assignment) -> Optional[Decimal]:
    total = Decimal(assignment.total_payment or 0)
    return total if total > 0 else None


def create_shift(session, assignment_id: int, payload: Mapping[str, Any], *, actor: str = "system") -> Dict[str, Any]:
    """Schedule a work block for an approved assignment. Role capacity is not touched."""
    assignment = get_assignment(session, assignment_id)
    if assignment.status != "Approved":
        raise ValidationError(
            "Shifts can only be created for approved assignments.",
            details={"assignment_id": assignment.id, "status": assignment.status},
        )
    event = get_event(session, assignment.event_id)
    day = _parse_date(payload.get("date") or event.start_at.date())
    start = _parse_time(payload.get("start_time"), "start_time")
    end = _parse_time(payload.get("end_time"), "end_time")
    _check_window(start, end)
    wage = payload.get("wage")
    shift = Shift(
        assignment_id=assignment.id,
        event_id=assignment.event_id,
        staff_id=assignment.staff_id,
        role=clean_role_name(str(payload.get("role") or "")) or assignment.role,
        date=day,
        start_time=start,
        end_time=end,
        wage=parse_amount(wage, "wage") if wage not in (None, "") else _default_wage(assignment),
        instructions=str(payload.get("instructions") or event.description or ""),
        status="Scheduled",
    )
    session.add(shift)
    session.flush()
    record_audit_log(
        session,
        user_id=actor,
        action="SHIFT_CREATE",
        target_type="Shift",
        target_id=shift.id,
        payload={"assignment_id": assignment.id, "date": day, "start": start, "end": end},
    )
    session.commit()
    return shift_to_dict(shift)


def update_shift(session, shift_id: int, payload: Mapping[str, Any], *, actor: str = "system") -> Dict[str, Any]:
    shift = get_shift(session, shift_id)
    try:
        day = _parse_date(payload["date"]) if "date" in payload else shift.date
        start = _parse_time(payload["start_time"], "start_time") if "start_time" in payload else shift.start_time
        end = _parse_time(payload["end_time"], "end_time") if "end_time" in payload else shift.end_time
        _check_window(start, end)
        if "status" in payload:
            status = str(payload.get("status") or "")
            if status not in SHIFT_STATUSES:
                raise ValidationError(f"Unsupported shift status '{status}'.", details={"field": "status"})
            shift.status = status
        if "role" in payload:
            role = clean_role_name(str(payload.get("role") or ""))
            if not role:
                raise ValidationError("Role name is required.", details={"field": "role"})
            shift.role = role
        if "wage" in payload:
            shift.wage = parse_amount(payload["wage"], "wage") if payload["wage"] not in (None, "") else None
        if "instructions" in payload:
            shift.instructions = str(payload.get("instructions") or "")
        shift.date, shift.start_time, shift.end_time = day, start, end
        record_audit_log(
            session,
            user_id=actor,
            action="SHIFT_UPDATE",
            target_type="Shift",
            target_id=shift.id,
            payload={key: payload[key] for key in payload},
        )
        session.commit()
    except Exception:
        session.rollback()
        raise
    return shift_to_dict(shift)


def auto_create_shifts(session, event_id: int, *, actor: str = "system") -> Dict[str, Any]:
    """Create one shift covering the whole event for every approved assignment still without one."""
    event = get_event(session, event_id)
    start_at = event.start_at
    end_at = event.end_at or start_at + datetime.timedelta(hours=DEFAULT_SHIFT_HOURS)
    assignments = list(
        session.scalars(
            select(Assignment)
            .where(Assignment.event_id == event.id, Assignment.status == "Approved")
            .order_by(Assignment.id)
        )
    )
    created: List[Dict[str, Any]] = []
    skipped: List[Dict[str, Any]] = []
    spans_midnight = end_at.date() != start_at.date()
    scheduled = set(session.scalars(select(Shift.assignment_id).where(Shift.event_id == event.id)))
    for assignment in assignments:
        if assignment.id in scheduled:
            skipped.append({"assignment_id": assignment.id, "reason": "already scheduled"})
            continue
        if spans_midnight:
            skipped.append({"assignment_id": assignment.id, "reason": "event spans midnight"})
            continue
        shift = Shift(
            assignment_id=assignment.id,
            event_id=event.id,
            staff_id=assignment.staff_id,
            role=assignment.role,
            date=start_at.date(),
            start_time=start_at.time(),
            end_time=end_at.time(),
            wage=_default_wage(assignment),
            instructions=event.description or "",
            status="Scheduled",
        )
        session.add(shift)
        session.flush()
        created.append(shift_to_dict(shift))
    if created:
        record_audit_log(
            session,
            user_id=actor,
            action="SHIFT_AUTO_CREATE",
            target_id=event.id,
            payload={"created": len(created)},
        )
    session.commit()
    logger.info("Auto-created %d shift(s) for event %s, skipped %d", len(created), event.id, len(skipped))
    return {"event_id": event.id, "created": created, "skipped": skipped}
