"""Assignment Manager: the single entry point that binds staff to event roles.

Every fill runs under the event's lock and inside one transaction covering the capacity
increment, the assignment row, its outbox message and its audit entry. A rejected fill leaves
none of them behind.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from capacity import apply_fill, event_lock, release_fill, role_counts
from database import ASSIGNMENT_STATUSES, Assignment, dumps_json, record_audit_log
from errors import (
    CapacityExceededError,
    ErrorCode,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from events import CLOSED_STATUSES, event_snapshot, get_event
from notifications import emit
from payments import PaymentBreakdown, compute_payment
from roles import clean_role_name
from staff import StaffDirectory, StaffRecord


logger = logging.getLogger(__name__)


def get_assignment(session, assignment_id: int) -> Assignment:
    assignment = session.get(Assignment, assignment_id, populate_existing=True) if assignment_id is not None else None
    if assignment is None:
        raise NotFoundError("assignment", assignment_id)
    return assignment


def _resolve_staff(directory: StaffDirectory, staff_id: str) -> StaffRecord:
    staff_id = str(staff_id or "").strip()
    if not staff_id:
        raise ValidationError("Staff identifier is required.", details={"field": "staff_id"})
    record = directory.get(staff_id)
    if record is None:
        raise NotFoundError("staff", staff_id)
    if not record.assignable:
        raise ValidationError(
            f"{record.name} is not available for assignments ({record.status}).",
            code=ErrorCode.STAFF_UNAVAILABLE,
            details={"staff_id": record.id, "status": record.status},
        )
    return record


def _check_not_assigned(session, event_id: int, staff_id: str) -> None:
    existing = session.scalars(
        select(Assignment.id).where(Assignment.event_id == event_id, Assignment.staff_id == staff_id)
    ).first()
    if existing is not None:
        raise ValidationError(
            "Staff member is already assigned to this event.",
            code=ErrorCode.STAFF_ALREADY_ASSIGNED,
            details={"event_id": event_id, "staff_id": staff_id, "assignment_id": existing},
        )


def _check_capacity(session, event_id: int, role_name: str) -> None:
    counts = role_counts(session, event_id, role_name)
    if counts is None:
        raise NotFoundError("role", role_name)
    count, filled = counts
    if filled >= count:
        raise CapacityExceededError(event_id, role_name, count=count)


def assign_staff(
    session,
    event_id: int,
    staff_id: str,
    role_name: str,
    payment: Optional[Mapping[str, Any] | PaymentBreakdown],
    *,
    directory: StaffDirectory,
    actor: str = "system",
    status: str = "Approved",
    notes: str = "",
    require_payment: bool = True,
) -> Assignment:
    """Validate and persist one fill, returning the committed assignment.

    Checks run in a fixed order so callers get the first applicable reason: role name,
    event (exists and open), staff (known and available), duplicate assignment, role capacity,
    payment. Nothing is written unless all of them pass.
    """
    role_name = clean_role_name(role_name)
    if not role_name:
        raise ValidationError("Role name is required.", details={"field": "role_name"})
    if status not in ASSIGNMENT_STATUSES:
        raise ValidationError(f"Unsupported assignment status '{status}'.", details={"field": "status"})

    with event_lock(event_id):
        try:
            event = get_event(session, event_id)
            if event.status in CLOSED_STATUSES:
                raise ValidationError(
                    f"Event is {event.status.lower()} and no longer accepts staff.",
                    code=ErrorCode.EVENT_CLOSED,
                    details={"event_id": event.id, "status": event.status},
                )
            record = _resolve_staff(directory, staff_id)
            _check_not_assigned(session, event.id, record.id)
            _check_capacity(session, event.id, role_name)

            breakdown: Optional[PaymentBreakdown] = None
            total = Decimal("0")
            if payment is not None or require_payment:
                breakdown, total = compute_payment(payment)

            apply_fill(session, event.id, role_name)
            assignment = Assignment(
                event_id=event.id,
                staff_id=record.id,
                role=role_name,
                status=status,
                payment_type=breakdown.payment_type if breakdown else None,
                paymentJSON=dumps_json(breakdown.to_dict() if breakdown else None),
                total_payment=total,
                notes=notes or "",
                assigned_by=actor or "system",
            )
            session.add(assignment)
            try:
                session.flush()
            except IntegrityError:
                # Another process assigned the same staff member first.
                raise ValidationError(
                    "Staff member is already assigned to this event.",
                    code=ErrorCode.STAFF_ALREADY_ASSIGNED,
                    details={"event_id": event.id, "staff_id": record.id},
                ) from None
            emit(
                session,
                "assignment_created",
                record.email or record.id,
                {
                    "event_id": event.id,
                    "event_title": event.title,
                    "assignment_id": assignment.id,
                    "staff_id": record.id,
                    "role": role_name,
                    "status": status,
                    "total_payment": total,
                },
            )
            record_audit_log(
                session,
                user_id=actor,
                action="ASSIGNMENT_CREATE",
                target_type="Assignment",
                target_id=assignment.id,
                payload={"event_id": event.id, "staff_id": record.id, "role": role_name, "total": total},
            )
            session.commit()
        except Exception:
            session.rollback()
            raise

    logger.info(
        "Assigned %s to %s on event %s (%s, total %s)", record.id, role_name, event_id, status, total
    )
    return assignment


def create_assignment(
    session,
    event_id: int,
    staff_id: str,
    role_name: str,
    payment: Mapping[str, Any] | PaymentBreakdown,
    *,
    directory: StaffDirectory,
    actor: str = "system",
    notes: str = "",
) -> Dict[str, Any]:
    """Directly assign staff with a full payment breakdown and return the event snapshot."""
    assign_staff(
        session,
        event_id,
        staff_id,
        role_name,
        payment,
        directory=directory,
        actor=actor,
        status="Approved",
        notes=notes,
    )
    return event_snapshot(session, event_id)


def quick_assign(
    session,
    event_id: int,
    staff_id: str,
    role_name: str,
    *,
    directory: StaffDirectory,
    actor: str = "system",
) -> Dict[str, Any]:
    """Provisional fill without payment details; capacity is still enforced."""
    assign_staff(
        session,
        event_id,
        staff_id,
        role_name,
        None,
        directory=directory,
        actor=actor,
        status="Pending",
        require_payment=False,
    )
    return event_snapshot(session, event_id)


def approve_assignment(session, assignment_id: int, *, actor: str = "system") -> Dict[str, Any]:
    event_id = get_assignment(session, assignment_id).event_id
    with event_lock(event_id):
        try:
            assignment = get_assignment(session, assignment_id)
            result = session.execute(
                update(Assignment)
                .where(Assignment.id == assignment.id, Assignment.status == "Pending")
                .values(status="Approved")
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise InvalidTransitionError("assignment", assignment.status, "Approved")
            session.refresh(assignment)
            record_audit_log(
                session,
                user_id=actor,
                action="ASSIGNMENT_APPROVE",
                target_type="Assignment",
                target_id=assignment.id,
                payload={"event_id": event_id},
            )
            session.commit()
        except Exception:
            session.rollback()
            raise
    return event_snapshot(session, event_id)


def complete_assignment_payment(
    session,
    assignment_id: int,
    payment: Mapping[str, Any] | PaymentBreakdown,
    *,
    actor: str = "system",
) -> Dict[str, Any]:
    """Attach the payment breakdown a quick-assigned row was created without.

    The breakdown is written only while the row still has none, so of two racing completions
    exactly one succeeds.
    """
    event_id = get_assignment(session, assignment_id).event_id
    with event_lock(event_id):
        try:
            assignment = get_assignment(session, assignment_id)
            if assignment.has_payment:
                raise _payment_already_set(assignment.id)
            breakdown, total = compute_payment(payment)
            result = session.execute(
                update(Assignment)
                .where(Assignment.id == assignment.id, Assignment.payment_type.is_(None))
                .values(
                    payment_type=breakdown.payment_type,
                    paymentJSON=dumps_json(breakdown.to_dict()),
                    total_payment=total,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise _payment_already_set(assignment.id)
            session.refresh(assignment)
            record_audit_log(
                session,
                user_id=actor,
                action="ASSIGNMENT_PAYMENT",
                target_type="Assignment",
                target_id=assignment.id,
                payload={"total": total},
            )
            session.commit()
        except Exception:
            session.rollback()
            raise
    return event_snapshot(session, event_id)


def _payment_already_set(assignment_id: int) -> ValidationError:
    return ValidationError(
        "Assignment already carries a payment breakdown.",
        code=ErrorCode.INVALID_TRANSITION,
        details={"assignment_id": assignment_id},
    )


def unassign(session, assignment_id: int, *, actor: str = "system") -> Dict[str, Any]:
    """Remove an assignment with its shifts and give its slot back to the role."""
    assignment = get_assignment(session, assignment_id)
    event_id = assignment.event_id
    with event_lock(event_id):
        try:
            release_fill(session, event_id, assignment.role)
            record_audit_log(
                session,
                user_id=actor,
                action="ASSIGNMENT_DELETE",
                target_type="Assignment",
                target_id=assignment.id,
                payload={"event_id": event_id, "staff_id": assignment.staff_id, "role": assignment.role},
            )
            session.delete(assignment)
            session.commit()
        except Exception:
            session.rollback()
            raise
    logger.info("Removed assignment %s from event %s", assignment_id, event_id)
    return event_snapshot(session, event_id)
