"""Notification outbox.

Business operations only stage ``OutboxMessage`` rows inside their own transaction. Delivery
happens later through :func:`dispatch_pending`, so a failing dispatcher can never undo a
committed booking decision or assignment.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import select

from collaborators import NotificationDispatcher, call_with_timeout
from database import Assignment, OutboxMessage, dumps_json, utcnow
from errors import CollaboratorUnavailableError, ValidationError
from events import get_event
from staff import StaffDirectory


logger = logging.getLogger(__name__)

MESSAGE_KINDS = (
    "booking_approved",
    "booking_rejected",
    "open_roles_available",
    "assignment_created",
    "payment_summary",
)
MAX_ATTEMPTS = 5
STAFF_MATCHING_RECIPIENT = "staff-matching"


def emit(session, kind: str, recipient: str, payload: Optional[Dict[str, Any]] = None) -> OutboxMessage:
    if kind not in MESSAGE_KINDS:
        raise ValidationError(f"Unknown notification kind '{kind}'.", details={"kind": kind})
    message = OutboxMessage(
        kind=kind,
        recipient=recipient or "unknown",
        payloadJSON=dumps_json(payload),
        status="pending",
    )
    session.add(message)
    return message


def dispatch_pending(
    session,
    dispatcher: NotificationDispatcher,
    *,
    limit: int = 50,
    timeout: Optional[float] = None,
) -> Dict[str, int]:
    """Deliver up to ``limit`` pending messages, oldest first."""
    messages = list(
        session.scalars(
            select(OutboxMessage)
            .where(OutboxMessage.status == "pending")
            .order_by(OutboxMessage.id.asc())
            .limit(limit)
        )
    )
    summary = {"sent": 0, "retrying": 0, "failed": 0}
    for message in messages:
        try:
            call_with_timeout(
                dispatcher.name,
                dispatcher.send,
                message.recipient,
                message.kind,
                message.payload_dict(),
                timeout=timeout,
            )
        except CollaboratorUnavailableError as exc:
            _record_failure(message, exc.message)
            logger.warning("Outbox message %s (%s) not delivered: %s", message.id, message.kind, exc.message)
        except Exception as exc:
            _record_failure(message, str(exc) or type(exc).__name__)
            logger.exception("Dispatcher raised while sending outbox message %s", message.id)
        else:
            message.status = "sent"
            message.sent_at = utcnow()
            message.attempts += 1
            message.last_error = ""
        outcome = message.status if message.status in ("sent", "failed") else "retrying"
        summary[outcome] += 1
        session.commit()
    if messages:
        logger.info(
            "Outbox dispatch: %d sent, %d retrying, %d failed",
            summary["sent"],
            summary["retrying"],
            summary["failed"],
        )
    return summary


def _record_failure(message: OutboxMessage, error: str) -> None:
    message.attempts += 1
    message.last_error = error[:500]
    if message.attempts >= MAX_ATTEMPTS:
        message.status = "failed"


def notify_event_payments(session, event_id: int, *, directory: Optional[StaffDirectory] = None) -> int:
    """Queue one payment summary per paid assignment on the event. Returns the number queued."""
    event = get_event(session, event_id)
    assignments = list(
        session.scalars(
            select(Assignment)
            .where(Assignment.event_id == event.id, Assignment.payment_type.is_not(None))
            .order_by(Assignment.id)
        )
    )
    queued = 0
    for assignment in assignments:
        total = Decimal(assignment.total_payment or 0)
        if total <= 0:
            continue
        record = directory.get(assignment.staff_id) if directory is not None else None
        emit(
            session,
            "payment_summary",
            (record.email if record and record.email else assignment.staff_id),
            {
                "event_id": event.id,
                "event_title": event.title,
                "staff_id": assignment.staff_id,
                "role": assignment.role,
                "total_payment": total,
                "payment": assignment.payment_dict(),
            },
        )
        queued += 1
    session.commit()
    logger.info("Queued %d payment summaries for event %s", queued, event.id)
    return queued
