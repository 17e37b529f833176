from __future__ import annotations

import datetime
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Mapping, Optional

from sqlalchemy import select

from database import EVENT_STATUSES, Assignment, Event, EventRole, record_audit_log
from errors import ErrorCode, InvalidTransitionError, NotFoundError, ValidationError
from roles import DEFAULT_ROLE, clean_role_name, duplicate_role_names


logger = logging.getLogger(__name__)

BUDGET_BUCKETS = ("staffing", "logistics", "marketing", "catering", "technology", "miscellaneous")
EVENT_TRANSITIONS: Dict[str, set[str]] = {
    "Pending": {"Upcoming", "Live", "Cancelled"},
    "Upcoming": {"Live", "Cancelled"},
    "Live": {"Completed", "Cancelled"},
    "Completed": set(),
    "Cancelled": set(),
}
CLOSED_STATUSES = {"Completed", "Cancelled"}
ZERO = Decimal("0")


def parse_amount(value: Any, field: str) -> Decimal:
    if value is None or value == "":
        return ZERO
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number.", details={"field": field})
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number.", details={"field": field, "value": value}) from None
    if not amount.is_finite() or amount < 0:
        raise ValidationError(f"{field} must be a finite, non-negative amount.", details={"field": field})
    return amount


def parse_datetime(value: Any, field: str, *, required: bool = True) -> Optional[datetime.datetime]:
    if value is None or value == "":
        if required:
            raise ValidationError(f"{field} is required.", details={"field": field})
        return None
    if isinstance(value, datetime.datetime):
        return value.replace(tzinfo=None) if value.tzinfo else value
    if isinstance(value, datetime.date):
        return datetime.datetime.combine(value, datetime.time())
    try:
        parsed = datetime.datetime.fromisoformat(str(value).strip())
    except ValueError:
        raise ValidationError(f"{field} must be an ISO date or datetime.", details={"field": field}) from None
    return parsed.replace(tzinfo=None) if parsed.tzinfo else parsed


def _parse_count(value: Any, field: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a whole number.", details={"field": field})
    try:
        count = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a whole number.", details={"field": field}) from None
    if count != value and not (isinstance(value, str) and value.strip().isdigit()):
        raise ValidationError(f"{field} must be a whole number.", details={"field": field})
    if count < 0:
        raise ValidationError(f"{field} cannot be negative.", details={"field": field})
    return count


def _normalize_roles(raw_roles: Optional[Iterable[Any]]) -> List[Dict[str, Any]]:
    roles: List[Dict[str, Any]] = []
    if raw_roles is None:
        return roles
    if isinstance(raw_roles, Mapping):
        raw_roles = [{"role_name": name, "count": count} for name, count in raw_roles.items()]
    for entry in raw_roles:
        if not isinstance(entry, Mapping):
            raise ValidationError("Each role must be an object with role_name and count.")
        name = clean_role_name(str(entry.get("role_name") or entry.get("roleName") or ""))
        if not name:
            raise ValidationError("Role name is required.", details={"field": "role_name"})
        roles.append({"role_name": name, "count": _parse_count(entry.get("count", 0), f"count for {name}")})
    duplicates = duplicate_role_names(role["role_name"] for role in roles)
    if duplicates:
        raise ValidationError(
            "Role names must be unique within an event.", details={"duplicates": duplicates}
        )
    return roles


def _apply_budget(event: Event, payload: Mapping[str, Any]) -> None:
    buckets: Dict[str, Decimal] = {}
    for bucket in BUDGET_BUCKETS:
        raw = payload.get(bucket, payload.get(f"{bucket}_allocated"))
        if raw is None:
            raw = getattr(event, f"{bucket}_allocated", ZERO)
        buckets[bucket] = parse_amount(raw, f"budget.{bucket}")
    allocated = sum(buckets.values(), ZERO)
    override = bool(payload.get("override_total", event.budget_total_override or False))
    raw_total = payload.get("total")
    total = allocated if raw_total is None else parse_amount(raw_total, "budget.total")
    if total != allocated and not override:
        raise ValidationError(
            "Budget total must equal the sum of its allocations.",
            details={"total": str(total), "allocated": str(allocated)},
        )
    for bucket, amount in buckets.items():
        setattr(event, f"{bucket}_allocated", amount)
    event.budget_total = total
    event.budget_total_override = override
    if "spent" in payload:
        event.budget_spent = parse_amount(payload.get("spent"), "budget.spent")


def create_event(
    session,
    payload: Mapping[str, Any],
    *,
    actor: str = "system",
    commit: bool = True,
) -> Event:
    """Create an event with its ordered role requirements.

    With ``seed_default_role`` set and no explicit roles, a single "General Staff" role sized to
    ``staff_required`` is seeded so fills always have an explicit bucket to land in.
    """
    title = str(payload.get("title") or "").strip()
    if not title:
        raise ValidationError("Event title is required.", details={"field": "title"})
    start_at = parse_datetime(payload.get("start_at"), "start_at")
    end_at = parse_datetime(payload.get("end_at"), "end_at", required=False)
    if end_at is not None and end_at <= start_at:
        raise ValidationError("Event end must be after its start.", details={"field": "end_at"})
    status = str(payload.get("status") or "Pending")
    if status not in EVENT_STATUSES or status in CLOSED_STATUSES:
        raise ValidationError(f"Events cannot be created with status '{status}'.", details={"field": "status"})

    roles = _normalize_roles(payload.get("roles"))
    seed_default = bool(payload.get("seed_default_role", False))
    if not roles and seed_default:
        staff_required = _parse_count(payload.get("staff_required", 0), "staff_required")
        if staff_required > 0:
            roles = [{"role_name": DEFAULT_ROLE, "count": staff_required}]

    event = Event(
        title=title,
        location=str(payload.get("location") or "").strip(),
        start_at=start_at,
        end_at=end_at,
        description=str(payload.get("description") or ""),
        status=status,
        seed_default_role=seed_default,
        booking_id=payload.get("booking_id"),
    )
    if payload.get("revenue") not in (None, ""):
        event.revenue = parse_amount(payload.get("revenue"), "revenue")
    _apply_budget(event, payload.get("budget") or {})
    for position, role in enumerate(roles):
        event.roles.append(EventRole(position=position, role_name=role["role_name"], count=role["count"], filled=0))
    event.staff_required = sum(role["count"] for role in roles)
    session.add(event)
    session.flush()
    record_audit_log(
        session,
        user_id=actor,
        action="EVENT_CREATE",
        target_type="Event",
        target_id=event.id,
        payload={"roles": roles, "booking_id": event.booking_id},
    )
    if commit:
        session.commit()
    logger.info("Created event %s (%s) with %d role(s)", event.id, event.title, len(roles))
    return event


def get_event(session, event_id: int) -> Event:
    event = session.get(Event, event_id, populate_existing=True) if event_id is not None else None
    if event is None:
        raise NotFoundError("event", event_id)
    return event


def update_roles(session, event_id: int, roles: Iterable[Any], *, actor: str = "system") -> Dict[str, Any]:
    """Upsert role counts. Counts may not drop below what is already filled."""
    event = get_event(session, event_id)
    if event.status in CLOSED_STATUSES:
        raise ValidationError("Closed events cannot change their roles.", code=ErrorCode.EVENT_CLOSED)
    requested = _normalize_roles(roles)
    try:
        for role in event.roles:
            session.refresh(role)
        next_position = max((role.position for role in event.roles), default=-1) + 1
        for entry in requested:
            existing = event.role(entry["role_name"])
            if existing is None:
                event.roles.append(
                    EventRole(position=next_position, role_name=entry["role_name"], count=entry["count"], filled=0)
                )
                next_position += 1
                continue
            if entry["count"] < existing.filled:
                raise ValidationError(
                    f"Role '{existing.role_name}' already has {existing.filled} filled slot(s).",
                    details={"role": existing.role_name, "filled": existing.filled, "count": entry["count"]},
                )
            existing.count = entry["count"]
        event.staff_required = sum(role.count for role in event.roles)
        record_audit_log(session, user_id=actor, action="EVENT_ROLES_UPDATE", target_id=event.id, payload={"roles": requested})
        session.commit()
    except Exception:
        session.rollback()
        raise
    return event_snapshot(session, event.id)


def set_event_status(session, event_id: int, status: str, *, actor: str = "system") -> Dict[str, Any]:
    event = get_event(session, event_id)
    target = str(status or "").strip().capitalize()
    if target not in EVENT_STATUSES:
        raise ValidationError(f"Unsupported event status '{status}'.", details={"field": "status"})
    if target not in EVENT_TRANSITIONS[event.status]:
        raise InvalidTransitionError("event", event.status, target)
    previous = event.status
    event.status = target
    record_audit_log(
        session, user_id=actor, action="EVENT_STATUS", target_id=event.id, payload={"from": previous, "to": target}
    )
    session.commit()
    logger.info("Event %s moved %s -> %s", event.id, previous, target)
    return event_snapshot(session, event.id)


def update_budget(session, event_id: int, payload: Mapping[str, Any], *, actor: str = "system") -> Dict[str, Any]:
    event = get_event(session, event_id)
    try:
        _apply_budget(event, payload or {})
        record_audit_log(session, user_id=actor, action="EVENT_BUDGET", target_id=event.id, payload=dict(payload or {}))
        session.commit()
    except Exception:
        session.rollback()
        raise
    return event_snapshot(session, event.id)


def delete_event(session, event_id: int, *, actor: str = "system") -> None:
    event = get_event(session, event_id)
    record_audit_log(session, user_id=actor, action="EVENT_DELETE", target_id=event.id, payload={"title": event.title})
    session.delete(event)
    session.commit()
    logger.info("Deleted event %s", event_id)


def staffing_cost(assignments: Iterable[Assignment]) -> Decimal:
    return sum((Decimal(assignment.total_payment or 0) for assignment in assignments), ZERO)


def has_explicit_revenue(event: Event) -> bool:
    return event.revenue is not None and Decimal(event.revenue) > 0


def event_revenue(event: Event, assignments: Optional[Iterable[Assignment]] = None) -> Decimal:
    """Explicit positive revenue wins; otherwise revenue is the sum of assignment payments."""
    if has_explicit_revenue(event):
        return Decimal(event.revenue)
    return staffing_cost(event.assignments if assignments is None else assignments)


def assignment_to_dict(assignment: Assignment) -> Dict[str, Any]:
    return {
        "id": assignment.id,
        "event_id": assignment.event_id,
        "staff_id": assignment.staff_id,
        "role": assignment.role,
        "status": assignment.status,
        "payment_type": assignment.payment_type,
        "payment": assignment.payment_dict() if assignment.has_payment else None,
        "total_payment": Decimal(assignment.total_payment or 0),
        "notes": assignment.notes,
        "assigned_by": assignment.assigned_by,
        "assigned_at": assignment.assigned_at,
    }


def _budget_to_dict(event: Event) -> Dict[str, Any]:
    buckets = {bucket: Decimal(getattr(event, f"{bucket}_allocated") or 0) for bucket in BUDGET_BUCKETS}
    allocated = sum(buckets.values(), ZERO)
    total = Decimal(event.budget_total or 0)
    return {
        **buckets,
        "total": total,
        "allocated": allocated,
        "spent": Decimal(event.budget_spent or 0),
        "remaining": total - allocated,
        "override_total": bool(event.budget_total_override),
    }


def event_snapshot(session, event_id: int) -> Dict[str, Any]:
    """Authoritative view of an event after an operation; callers never derive counts themselves."""
    event = get_event(session, event_id)
    session.refresh(event)
    for role in event.roles:
        session.refresh(role)
    assignments = list(session.scalars(select(Assignment).where(Assignment.event_id == event.id).order_by(Assignment.id)))
    return {
        "id": event.id,
        "title": event.title,
        "location": event.location,
        "start_at": event.start_at,
        "end_at": event.end_at,
        "description": event.description,
        "status": event.status,
        "booking_id": event.booking_id,
        "seed_default_role": event.seed_default_role,
        "staff_required": event.staff_required,
        "staff_filled": sum(role.filled for role in event.roles),
        "staff_assigned": sum(1 for assignment in assignments if assignment.status == "Approved"),
        "roles": [
            {
                "role_name": role.role_name,
                "count": role.count,
                "filled": role.filled,
                "open": role.open_slots,
            }
            for role in event.roles
        ],
        "assignments": [assignment_to_dict(assignment) for assignment in assignments],
        "budget": _budget_to_dict(event),
        "staffing_cost": staffing_cost(assignments),
        "revenue": event_revenue(event, assignments),
        "revenue_source": "explicit" if has_explicit_revenue(event) else "assignments",
    }
