"""FastAPI surface over the staffing core.

Handlers stay thin: they parse the JSON body, call one service function and return its
snapshot. Every ``StaffingError`` becomes a structured ``{"error": {...}}`` response.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

# Ensure flat absolute imports (e.g., "import database") still resolve.
APP_DIR = Path(__file__).resolve().parent
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

import database  # noqa: E402
from assignments import (  # noqa: E402
    approve_assignment,
    complete_assignment_payment,
    create_assignment,
    quick_assign,
    unassign,
)
from auto_assign import auto_assign_event  # noqa: E402
from bookings import (  # noqa: E402
    booking_to_dict,
    create_booking,
    decide_booking,
    get_booking,
    list_bookings,
    review_booking,
)
from collaborators import default_dispatcher, default_matcher  # noqa: E402
from config import configure_logging  # noqa: E402
from errors import (  # noqa: E402
    CapacityExceededError,
    CollaboratorUnavailableError,
    ErrorCode,
    InvalidTransitionError,
    NotFoundError,
    StaffingError,
    ValidationError,
)
from events import (  # noqa: E402
    create_event,
    delete_event,
    event_snapshot,
    set_event_status,
    update_budget,
    update_roles,
)
from notifications import dispatch_pending, notify_event_payments  # noqa: E402
from rates import load_rates, merge_rates, reset_rates_to_defaults, validate_rates  # noqa: E402
from shifts import auto_create_shifts, create_shift, list_shifts, update_shift  # noqa: E402
from staff import SqlStaffDirectory  # noqa: E402
from validation import validate_event_staffing  # noqa: E402


@asynccontextmanager
async def lifespan(_: FastAPI):
    configure_logging()
    database.init_database()
    yield


app = FastAPI(title="Staffing Engine API", version="0.1", lifespan=lifespan)

_CONFLICT_CODES = {
    ErrorCode.STAFF_ALREADY_ASSIGNED,
    ErrorCode.STAFF_UNAVAILABLE,
    ErrorCode.EVENT_CLOSED,
    ErrorCode.INVALID_TRANSITION,
}


def status_for(exc: StaffingError) -> int:
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, CollaboratorUnavailableError):
        return 503
    if isinstance(exc, (CapacityExceededError, InvalidTransitionError)) or exc.code in _CONFLICT_CODES:
        return 409
    return 400


@app.exception_handler(StaffingError)
async def staffing_error_handler(_: Request, exc: StaffingError) -> JSONResponse:
    return JSONResponse(status_code=status_for(exc), content=jsonable_encoder({"error": exc.to_dict()}))


def get_db():
    db = database.SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_staff_db():
    db = database.StaffSessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_staff_directory(staff_db=Depends(get_staff_db)):
    return SqlStaffDirectory(staff_db)


def get_matcher():
    return default_matcher()


def get_dispatcher():
    return default_dispatcher()


def _actor(payload: Optional[Dict[str, Any]]) -> str:
    return str((payload or {}).get("actor") or "api").strip() or "api"


def _json(content: Any, status_code: int = 200) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=jsonable_encoder(content))


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.post("/api/v1/events")
def create_event_endpoint(payload: Dict[str, Any], db=Depends(get_db)) -> JSONResponse:
    event = create_event(db, payload, actor=_actor(payload))
    return _json(event_snapshot(db, event.id), status_code=201)


@app.get("/api/v1/events/{event_id}")
def event_endpoint(event_id: int, db=Depends(get_db)) -> JSONResponse:
    return _json(event_snapshot(db, event_id))


@app.put("/api/v1/events/{event_id}/roles")
def event_roles(event_id: int, payload: Dict[str, Any], db=Depends(get_db)) -> JSONResponse:
    return _json(update_roles(db, event_id, payload.get("roles") or [], actor=_actor(payload)))


@app.post("/api/v1/events/{event_id}/status")
def event_status(event_id: int, payload: Dict[str, Any], db=Depends(get_db)) -> JSONResponse:
    return _json(set_event_status(db, event_id, payload.get("status"), actor=_actor(payload)))


@app.put("/api/v1/events/{event_id}/budget")
def event_budget(event_id: int, payload: Dict[str, Any], db=Depends(get_db)) -> JSONResponse:
    return _json(update_budget(db, event_id, payload, actor=_actor(payload)))


@app.delete("/api/v1/events/{event_id}")
def remove_event(event_id: int, actor: str = Query("api"), db=Depends(get_db)) -> JSONResponse:
    delete_event(db, event_id, actor=actor)
    return _json({"deleted": event_id})


@app.post("/api/v1/events/{event_id}/assignments")
def assign(
    event_id: int,
    payload: Dict[str, Any],
    db=Depends(get_db),
    directory=Depends(get_staff_directory),
) -> JSONResponse:
    snapshot = create_assignment(
        db,
        event_id,
        payload.get("staff_id"),
        payload.get("role_name") or payload.get("role") or "",
        payload.get("payment"),
        directory=directory,
        actor=_actor(payload),
        notes=str(payload.get("notes") or ""),
    )
    return _json(snapshot, status_code=201)


@app.post("/api/v1/events/{event_id}/assignments/quick")
def quick_assign_endpoint(
    event_id: int,
    payload: Dict[str, Any],
    db=Depends(get_db),
    directory=Depends(get_staff_directory),
) -> JSONResponse:
    snapshot = quick_assign(
        db,
        event_id,
        payload.get("staff_id"),
        payload.get("role_name") or payload.get("role") or "",
        directory=directory,
        actor=_actor(payload),
    )
    return _json(snapshot, status_code=201)


@app.post("/api/v1/events/{event_id}/auto-assign")
def auto_assign_endpoint(
    event_id: int,
    payload: Dict[str, Any] | None = None,
    db=Depends(get_db),
    directory=Depends(get_staff_directory),
    matcher=Depends(get_matcher),
) -> JSONResponse:
    result = auto_assign_event(db, event_id, matcher=matcher, directory=directory, actor=_actor(payload))
    return _json(result)


@app.post("/api/v1/assignments/{assignment_id}/approve")
def approve(assignment_id: int, payload: Dict[str, Any] | None = None, db=Depends(get_db)) -> JSONResponse:
    return _json(approve_assignment(db, assignment_id, actor=_actor(payload)))


@app.post("/api/v1/assignments/{assignment_id}/payment")
def complete_payment(assignment_id: int, payload: Dict[str, Any], db=Depends(get_db)) -> JSONResponse:
    return _json(complete_assignment_payment(db, assignment_id, payload.get("payment"), actor=_actor(payload)))


@app.delete("/api/v1/assignments/{assignment_id}")
def remove_assignment(assignment_id: int, actor: str = Query("api"), db=Depends(get_db)) -> JSONResponse:
    return _json(unassign(db, assignment_id, actor=actor))


@app.post("/api/v1/assignments/{assignment_id}/shifts")
def add_shift(assignment_id: int, payload: Dict[str, Any], db=Depends(get_db)) -> JSONResponse:
    return _json(create_shift(db, assignment_id, payload, actor=_actor(payload)), status_code=201)


@app.put("/api/v1/shifts/{shift_id}")
def edit_shift(shift_id: int, payload: Dict[str, Any], db=Depends(get_db)) -> JSONResponse:
    changes = {key: value for key, value in payload.items() if key != "actor"}
    return _json(update_shift(db, shift_id, changes, actor=_actor(payload)))


@app.get("/api/v1/events/{event_id}/shifts")
def event_shifts(event_id: int, db=Depends(get_db)) -> JSONResponse:
    event_snapshot(db, event_id)
    return _json({"event_id": event_id, "shifts": list_shifts(db, event_id)})


@app.post("/api/v1/events/{event_id}/shifts/auto")
def auto_shifts(event_id: int, payload: Dict[str, Any] | None = None, db=Depends(get_db)) -> JSONResponse:
    return _json(auto_create_shifts(db, event_id, actor=_actor(payload)))


@app.get("/api/v1/events/{event_id}/validate")
def validate_event_endpoint(
    event_id: int,
    db=Depends(get_db),
    directory=Depends(get_staff_directory),
) -> JSONResponse:
    return _json(validate_event_staffing(db, event_id, directory=directory))


@app.post("/api/v1/events/{event_id}/payment-notifications")
def payment_notifications(
    event_id: int,
    db=Depends(get_db),
    directory=Depends(get_staff_directory),
) -> JSONResponse:
    queued = notify_event_payments(db, event_id, directory=directory)
    return _json({"event_id": event_id, "queued": queued})


@app.post("/api/v1/bookings")
def submit_booking(payload: Dict[str, Any], db=Depends(get_db)) -> JSONResponse:
    return _json(create_booking(db, payload), status_code=201)


@app.get("/api/v1/bookings")
def bookings(status: Optional[str] = Query(None), db=Depends(get_db)) -> JSONResponse:
    return _json({"bookings": list_bookings(db, status)})


@app.get("/api/v1/bookings/{booking_id}")
def booking_endpoint(booking_id: int, db=Depends(get_db)) -> JSONResponse:
    return _json(booking_to_dict(get_booking(db, booking_id)))


@app.post("/api/v1/bookings/{booking_id}/review")
def review(booking_id: int, payload: Dict[str, Any] | None = None, db=Depends(get_db)) -> JSONResponse:
    return _json(review_booking(db, booking_id, actor=_actor(payload)))


@app.post("/api/v1/bookings/{booking_id}/decision")
def decide(booking_id: int, payload: Dict[str, Any], db=Depends(get_db)) -> JSONResponse:
    result = decide_booking(
        db,
        booking_id,
        payload.get("decision"),
        actor=_actor(payload),
        note=str(payload.get("note") or ""),
    )
    return _json(result)


@app.post("/api/v1/outbox/dispatch")
def dispatch_outbox(
    payload: Dict[str, Any] | None = None,
    db=Depends(get_db),
    dispatcher=Depends(get_dispatcher),
) -> JSONResponse:
    limit = int((payload or {}).get("limit") or 50)
    return _json(dispatch_pending(db, dispatcher, limit=limit))


@app.get("/api/v1/rates")
def rates_endpoint(roles: Optional[str] = Query(None)) -> JSONResponse:
    wanted = [role.strip() for role in (roles or "").split(",") if role.strip()]
    return _json({"rates": load_rates(), "problems": validate_rates(wanted)})


@app.put("/api/v1/rates")
def update_rates(payload: Dict[str, Any]) -> JSONResponse:
    entries = payload.get("rates")
    if not isinstance(entries, dict):
        raise ValidationError("Body must carry a 'rates' object keyed by role.", details={"field": "rates"})
    updated = merge_rates(entries)
    return _json({"updated": updated, "rates": load_rates()})


@app.post("/api/v1/rates/reset")
def reset_rates() -> JSONResponse:
    reset_rates_to_defaults()
    return _json({"rates": load_rates()})
