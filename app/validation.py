from __future__ import annotations

from collections import defaultdict
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import select

from database import Assignment, Event, Shift
from events import BUDGET_BUCKETS, get_event, staffing_cost
from roles import staff_tag_matches
from staff import StaffDirectory


def validate_event_staffing(session, event_id: int, *, directory: Optional[StaffDirectory] = None) -> Dict[str, Any]:
    """Return staffing findings for one event."""
    event = get_event(session, event_id)
    roles = list(event.roles)
    for role in roles:
        session.refresh(role)
    assignments = list(
        session.scalars(select(Assignment).where(Assignment.event_id == event.id).order_by(Assignment.id))
    )
    shifts = list(session.scalars(select(Shift).where(Shift.event_id == event.id).order_by(Shift.id)))

    issues: List[Dict[str, Any]] = []
    warnings: List[Dict[str, Any]] = []
    issues.extend(_unfilled_role_issues(event))
    issues.extend(_orphan_role_issues(event, assignments))
    issues.extend(_budget_issues(event))
    issues.extend(_double_booking_issues(session, shifts))
    warnings.extend(_pending_assignment_warnings(assignments))
    warnings.extend(_missing_payment_warnings(assignments))
    warnings.extend(_spend_warnings(event, assignments))
    if directory is not None:
        warnings.extend(_role_fit_warnings(assignments, directory))
    checks = _build_validation_checklist(issues=issues, warnings=warnings)
    return {
        "event_id": event.id,
        "status": event.status,
        "checks": checks,
        "issues": issues,
        "warnings": warnings,
    }


def _unfilled_role_issues(event: Event) -> List[Dict[str, Any]]:
    issues: List[Dict[str, Any]] = []
    for role in event.roles:
        if role.filled >= role.count:
            continue
        issues.append(
            {
                "type": "coverage",
                "severity": "error",
                "role": role.role_name,
                "required": role.count,
                "filled": role.filled,
                "message": f"{role.role_name}: {role.filled} of {role.count} filled.",
            }
        )
    return issues


def _orphan_role_issues(event: Event, assignments: List[Assignment]) -> List[Dict[str, Any]]:
    names = {role.role_name for role in event.roles}
    return [
        {
            "type": "role_missing",
            "severity": "error",
            "assignment_id": assignment.id,
            "staff_id": assignment.staff_id,
            "role": assignment.role,
            "message": f"Assignment {assignment.id} references role '{assignment.role}' which the event no longer has.",
        }
        for assignment in assignments
        if assignment.role not in names
    ]


def _budget_issues(event: Event) -> List[Dict[str, Any]]:
    total = Decimal(event.budget_total or 0)
    allocated = sum((Decimal(getattr(event, f"{bucket}_allocated") or 0) for bucket in BUDGET_BUCKETS), Decimal("0"))
    if allocated <= total:
        return []
    return [
        {
            "type": "budget",
            "severity": "error",
            "allocated": allocated,
            "total": total,
            "message": f"Budget allocations ({allocated}) exceed the total budget ({total}).",
        }
    ]


def _spend_warnings(event: Event, assignments: List[Assignment]) -> List[Dict[str, Any]]:
    warnings: List[Dict[str, Any]] = []
    total = Decimal(event.budget_total or 0)
    spent = Decimal(event.budget_spent or 0)
    if total > 0 and spent > total:
        warnings.append(
            {
                "type": "budget_spent",
                "severity": "warning",
                "spent": spent,
                "total": total,
                "message": f"Spent {spent} of a {total} budget.",
            }
        )
    staffing = Decimal(event.staffing_allocated or 0)
    cost = staffing_cost(assignments)
    if staffing > 0 and cost > staffing:
        warnings.append(
            {
                "type": "staffing_cost",
                "severity": "warning",
                "cost": cost,
                "allocated": staffing,
                "message": f"Staff payments ({cost}) exceed the staffing allocation ({staffing}).",
            }
        )
    return warnings


def _pending_assignment_warnings(assignments: List[Assignment]) -> List[Dict[str, Any]]:
    return [
        {
            "type": "pending",
            "severity": "warning",
            "assignment_id": assignment.id,
            "staff_id": assignment.staff_id,
            "role": assignment.role,
            "message": f"{assignment.staff_id} ({assignment.role}) is awaiting approval.",
        }
        for assignment in assignments
        if assignment.status == "Pending"
    ]


def _missing_payment_warnings(assignments: List[Assignment]) -> List[Dict[str, Any]]:
    return [
        {
            "type": "payment_missing",
            "severity": "warning",
            "assignment_id": assignment.id,
            "staff_id": assignment.staff_id,
            "message": f"{assignment.staff_id} ({assignment.role}) has no payment details yet.",
        }
        for assignment in assignments
        if not assignment.has_payment
    ]


def _role_fit_warnings(assignments: List[Assignment], directory: StaffDirectory) -> List[Dict[str, Any]]:
    warnings: List[Dict[str, Any]] = []
    records = directory.get_many(assignment.staff_id for assignment in assignments)
    for assignment in assignments:
        record = records.get(assignment.staff_id)
        if record is None or staff_tag_matches(record.role, assignment.role):
            continue
        warnings.append(
            {
                "type": "role_match",
                "severity": "warning",
                "assignment_id": assignment.id,
                "staff_id": record.id,
                "role": assignment.role,
                "message": f"{record.name} is tagged {record.role} but fills {assignment.role}.",
            }
        )
    return warnings


def _double_booking_issues(session, shifts: List[Shift]) -> List[Dict[str, Any]]:
    """Flag staff whose shifts on this event overlap any of their other shifts."""
    issues: List[Dict[str, Any]] = []
    if not shifts:
        return issues
    staff_ids = {shift.staff_id for shift in shifts}
    dates = {shift.date for shift in shifts}
    candidates = session.scalars(
        select(Shift).where(Shift.staff_id.in_(staff_ids), Shift.date.in_(dates), Shift.status != "Cancelled")
    )
    by_staff_day: Dict[tuple, List[Shift]] = defaultdict(list)
    for shift in candidates:
        by_staff_day[(shift.staff_id, shift.date)].append(shift)
    own_ids = {shift.id for shift in shifts}
    seen: set[tuple] = set()
    for shift in shifts:
        if shift.status == "Cancelled":
            continue
        for other in by_staff_day.get((shift.staff_id, shift.date), []):
            if other.id == shift.id:
                continue
            pair = tuple(sorted((shift.id, other.id)))
            if pair in seen:
                continue
            if shift.start_time < other.end_time and other.start_time < shift.end_time:
                seen.add(pair)
                where = "this event" if other.id in own_ids else f"event {other.event_id}"
                issues.append(
                    {
                        "type": "double_booking",
                        "severity": "error",
                        "staff_id": shift.staff_id,
                        "shift_id": shift.id,
                        "conflicting_shift_id": other.id,
                        "date": shift.date.isoformat(),
                        "message": f"{shift.staff_id} has overlapping shifts on {shift.date:%a %Y-%m-%d} "
                        f"({_window(shift)} and {_window(other)} on {where}).",
                    }
                )
    return issues


def _window(shift: Shift) -> str:
    return f"{shift.start_time:%H:%M}-{shift.end_time:%H:%M}"


def _build_validation_checklist(
    *,
    issues: List[Dict[str, Any]],
    warnings: List[Dict[str, Any]],
) -> List[Dict[str, Any]]:
    """
    Produce a concise, UI-friendly checklist:
    - `status`: ok|fail
    - `label`: human readable prompt
    - `details`: optional context for failures
    """
    checks: List[Dict[str, Any]] = []

    def summarize(items: List[Dict[str, Any]], *, limit: int = 5) -> str:
        parts = [str(entry.get("message") or "").strip() for entry in items[:limit]]
        parts = [part for part in parts if part]
        if len(items) > limit:
            parts.append(f"+{len(items) - limit} more")
        return "; ".join(parts)

    def add_check(label: str, items: List[Dict[str, Any]]) -> None:
        checks.append(
            {
                "label": label,
                "status": "fail" if items else "ok",
                "details": summarize(items) if items else "",
            }
        )

    def of_type(source: List[Dict[str, Any]], type_name: str) -> List[Dict[str, Any]]:
        return [item for item in source if item.get("type") == type_name]

    add_check("All roles filled?", of_type(issues, "coverage"))
    add_check("Assignments match event roles?", of_type(issues, "role_missing"))
    add_check("Budget allocations within total?", of_type(issues, "budget"))
    add_check("No double-booked staff?", of_type(issues, "double_booking"))
    add_check("All assignments approved?", of_type(warnings, "pending"))
    add_check("All assignments priced?", of_type(warnings, "payment_missing"))
    add_check("Staff payments within staffing budget?", of_type(warnings, "staffing_cost"))
    return checks
