from __future__ import annotations

import logging
import threading
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import select

from assignments import assign_staff
from collaborators import MatchingService, MatchSuggestion, call_with_timeout
from config import DEFAULT_SHIFT_HOURS
from database import EventRole
from errors import CapacityExceededError, CollaboratorUnavailableError, ErrorCode, StaffingError, ValidationError
from events import CLOSED_STATUSES, event_snapshot, get_event
from rates import default_breakdown, load_rates
from staff import StaffDirectory


logger = logging.getLogger(__name__)


def event_hours(event) -> Decimal:
    if event.end_at is None:
        return Decimal(DEFAULT_SHIFT_HOURS)
    hours = Decimal(str((event.end_at - event.start_at).total_seconds())) / Decimal("3600")
    if hours <= 0:
        return Decimal(DEFAULT_SHIFT_HOURS)
    return hours.quantize(Decimal("0.01"))


def _rank(suggestions: List[MatchSuggestion]) -> List[MatchSuggestion]:
    ranked = sorted(suggestions, key=lambda suggestion: -float(suggestion.match_score or 0))
    seen: set[str] = set()
    unique: List[MatchSuggestion] = []
    for suggestion in ranked:
        if suggestion.staff_id in seen:
            continue
        seen.add(suggestion.staff_id)
        unique.append(suggestion)
    return unique


def auto_assign_event(
    session,
    event_id: int,
    *,
    matcher: MatchingService,
    directory: StaffDirectory,
    actor: str = "system",
    cancel: Optional[threading.Event] = None,
    timeout: Optional[float] = None,
    rates: Optional[Dict[str, Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    """Fill every open role on the event from ranked suggestions, one committed fill at a time.

    Roles are handled in event order. Individual candidate failures are recorded as skips and
    never abort the run. A matching failure for a role degrades to zero suggestions for that
    role; only when every open role lost its suggestions this way is the run reported as a
    collaborator failure. Fills committed before a cancellation stay in place.
    """
    event = get_event(session, event_id)
    if event.status in CLOSED_STATUSES:
        raise ValidationError(
            f"Event is {event.status.lower()} and no longer accepts staff.",
            code=ErrorCode.EVENT_CLOSED,
            details={"event_id": event.id},
        )
    open_roles = [
        (role_name, count - filled)
        for role_name, count, filled in session.execute(
            select(EventRole.role_name, EventRole.count, EventRole.filled)
            .where(EventRole.event_id == event.id)
            .order_by(EventRole.position)
        )
        if filled < count
    ]
    rate_table = rates if rates is not None else load_rates()
    hours = event_hours(event)
    context = {
        "event_id": event.id,
        "title": event.title,
        "location": event.location,
        "start_at": event.start_at.isoformat(),
        "end_at": event.end_at.isoformat() if event.end_at else None,
    }
    pool = directory.list(only_assignable=True)

    assigned: List[Dict[str, Any]] = []
    skipped: List[Dict[str, Any]] = []
    unavailable_roles: List[str] = []
    cancelled = False
    attempted_roles = 0

    for role_name, needed in open_roles:
        if cancel is not None and cancel.is_set():
            cancelled = True
            break
        attempted_roles += 1
        try:
            suggestions = call_with_timeout(
                matcher.name, matcher.suggest, context, role_name, needed, pool, timeout=timeout
            )
        except CollaboratorUnavailableError as exc:
            logger.warning("No suggestions for %s on event %s: %s", role_name, event.id, exc.message)
            unavailable_roles.append(role_name)
            continue

        filled_here = 0
        for suggestion in _rank(list(suggestions or [])):
            if filled_here >= needed:
                break
            if cancel is not None and cancel.is_set():
                cancelled = True
                break
            try:
                assignment = assign_staff(
                    session,
                    event.id,
                    suggestion.staff_id,
                    role_name,
                    default_breakdown(role_name, hours, rates=rate_table),
                    directory=directory,
                    actor=actor,
                    status="Pending",
                    notes=f"auto-assigned (score {suggestion.match_score:g})",
                )
            except CapacityExceededError as exc:
                skipped.append(_skip(suggestion, role_name, exc))
                break
            except StaffingError as exc:
                logger.warning("Skipped %s for %s on event %s: %s", suggestion.staff_id, role_name, event.id, exc)
                skipped.append(_skip(suggestion, role_name, exc))
                continue
            filled_here += 1
            assigned.append(
                {
                    "assignment_id": assignment.id,
                    "staff_id": assignment.staff_id,
                    "role": role_name,
                    "match_score": suggestion.match_score,
                    "total_payment": assignment.total_payment,
                }
            )
        if cancelled:
            break

    if attempted_roles and len(unavailable_roles) == attempted_roles and not assigned:
        raise CollaboratorUnavailableError(matcher.name, "no suggestions for any open role")

    logger.info(
        "Auto-assign on event %s: %d assigned, %d skipped%s",
        event.id,
        len(assigned),
        len(skipped),
        " (cancelled)" if cancelled else "",
    )
    return {
        "event_id": event.id,
        "assigned": len(assigned),
        "skipped": len(skipped),
        "assignments": assigned,
        "skip_reasons": skipped,
        "unavailable_roles": unavailable_roles,
        "cancelled": cancelled,
        "event": event_snapshot(session, event.id),
    }


def _skip(suggestion: MatchSuggestion, role_name: str, exc: StaffingError) -> Dict[str, Any]:
    return {
        "staff_id": suggestion.staff_id,
        "role": role_name,
        "code": exc.code.value,
        "reason": exc.message,
    }
