from __future__ import annotations

import argparse
import datetime
import sys
from pathlib import Path
from typing import Any, Dict, List

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from assignments import approve_assignment  # noqa: E402
from auto_assign import auto_assign_event  # noqa: E402
from bookings import create_booking, decide_booking  # noqa: E402
from collaborators import default_dispatcher, default_matcher  # noqa: E402
from config import configure_logging  # noqa: E402
from database import SessionLocal, init_database  # noqa: E402
from notifications import dispatch_pending, notify_event_payments  # noqa: E402
from scripts.seed_staff import seed_staff  # noqa: E402
from shifts import auto_create_shifts  # noqa: E402
from staff import SqlStaffDirectory  # noqa: E402
from validation import validate_event_staffing  # noqa: E402


def _default_event_date(today: datetime.date | None = None) -> datetime.date:
    base = today or datetime.date.today()
    delta = (4 - base.weekday()) % 7 or 7
    return base + datetime.timedelta(days=delta)


def _booking_payload(event_date: datetime.date) -> Dict[str, Any]:
    return {
        "event_type": "Corporate Dinner",
        "location": "West Bay",
        "date": event_date.isoformat(),
        "time": "18:00",
        "duration": "5 hours",
        "budget": "QAR 12,000",
        "staff": {"servers": 2, "hosts": 1, "other": 1},
        "contact": {"name": "Smoke Client", "company": "Workflow Ltd", "email": "client@example.com"},
        "event_details": {"venue": "Harbour Hall", "guests": "80", "dress_code": "Black tie"},
    }


def _print_report(report: Dict[str, Any]) -> List[str]:
    failures: List[str] = []
    for check in report["checks"]:
        marker = "ok " if check["status"] == "ok" else "!! "
        print(f"[workflow] {marker}{check['label']} {check['details']}".rstrip())
        if check["status"] != "ok":
            failures.append(check["label"])
    return failures


def run_workflow(event_date: datetime.date, actor: str) -> int:
    directory = SqlStaffDirectory()
    matcher = default_matcher()
    dispatcher = default_dispatcher()

    with SessionLocal() as session:
        booking = create_booking(session, _booking_payload(event_date))
        print(f"[workflow] Booking {booking['id']} submitted for {booking['date']}.")
        decided = decide_booking(session, booking["id"], "approve", actor=actor, note="workflow smoke")
        event = decided["event"]
        print(f"[workflow] Converted to event {event['id']}: {event['title']} ({event['staff_required']} staff).")

        result = auto_assign_event(session, event["id"], matcher=matcher, directory=directory, actor=actor)
        print(
            f"[workflow] Auto-assign via {matcher.name}: {result['assigned']} assigned, "
            f"{result['skipped']} skipped."
        )
        for role in result["unavailable_roles"]:
            print(f"[workflow][warning] No suggestions for {role}.")

        for row in result["assignments"]:
            approve_assignment(session, row["assignment_id"], actor=actor)
        shifts = auto_create_shifts(session, event["id"], actor=actor)
        print(f"[workflow] Scheduled {len(shifts['created'])} shifts.")

        queued = notify_event_payments(session, event["id"], directory=directory)
        summary = dispatch_pending(session, dispatcher)
        print(f"[workflow] Queued {queued} payment summaries; outbox {summary}.")

        failures = _print_report(validate_event_staffing(session, event["id"], directory=directory))
    if failures:
        print(f"[workflow] {len(failures)} check(s) need attention.")
        return 1
    print("[workflow] Event fully staffed.")
    return 0


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description=(
            "Run an end-to-end smoke test that submits a booking, converts it to an event, "
            "auto-assigns staff, schedules shifts, validates coverage and drains the outbox."
        )
    )
    parser.add_argument("--date", help="ISO date (YYYY-MM-DD) for the event. Defaults to next Friday.")
    parser.add_argument("--actor", default="workflow_smoke", help="Audit trail actor name.")
    parser.add_argument("--seed", action="store_true", help="Seed the sample staff directory first.")
    return parser.parse_args()


def main() -> None:
    configure_logging()
    init_database()
    args = parse_args()
    if args.seed:
        seed_staff()
    if args.date:
        try:
            event_date = datetime.date.fromisoformat(args.date)
        except ValueError as exc:
            raise SystemExit(f"Invalid --date value: {exc}") from exc
    else:
        event_date = _default_event_date()
    print(f"[workflow] Target event date: {event_date:%a %Y-%m-%d}")
    raise SystemExit(run_workflow(event_date, actor=args.actor))


if __name__ == "__main__":
    main()
