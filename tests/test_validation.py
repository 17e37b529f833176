from __future__ import annotations

import datetime
import sys
import unittest
from decimal import Decimal
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from assignments import create_assignment, quick_assign  # noqa: E402
from database import Assignment, Base, StaffBase, StaffMember  # noqa: E402
from events import create_event, update_budget  # noqa: E402
from shifts import create_shift  # noqa: E402
from staff import SqlStaffDirectory  # noqa: E402
from validation import validate_event_staffing  # noqa: E402

HOURLY = {"payment_type": "hourly", "hourly_rate": "50", "total_hours": "5"}


class EventStaffingValidationTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = create_engine("sqlite:///:memory:", future=True)
        Base.metadata.create_all(self.engine)
        self.staff_engine = create_engine("sqlite:///:memory:", future=True)
        StaffBase.metadata.create_all(self.staff_engine)
        self.session = sessionmaker(bind=self.engine, expire_on_commit=False, future=True)()
        self.staff_session = sessionmaker(bind=self.staff_engine, expire_on_commit=False, future=True)()
        for staff_id, role in (("S-1", "Server"), ("S-2", "Server"), ("S-3", "Security")):
            self.staff_session.add(
                StaffMember(id=staff_id, name=f"Staff {staff_id}", role=role, status="Available", base_rate=Decimal("150"))
            )
        self.staff_session.commit()
        self.directory = SqlStaffDirectory(self.staff_session)

    def tearDown(self) -> None:
        self.session.close()
        self.staff_session.close()
        self.engine.dispose()
        self.staff_engine.dispose()

    def _event(self, title: str = "Launch Party", **extra):
        payload = {
            "title": title,
            "start_at": datetime.datetime(2025, 3, 14, 17, 0),
            "end_at": datetime.datetime(2025, 3, 14, 22, 0),
            "roles": [{"role_name": "Server", "count": 2}, {"role_name": "Hostess", "count": 1}],
        }
        payload.update(extra)
        return create_event(self.session, payload)

    def _check(self, report, label: str) -> str:
        return next(check["status"] for check in report["checks"] if check["label"] == label)

    def test_unfilled_roles_are_reported(self) -> None:
        event = self._event()
        create_assignment(self.session, event.id, "S-1", "Server", HOURLY, directory=self.directory)

        report = validate_event_staffing(self.session, event.id)

        coverage = [issue for issue in report["issues"] if issue["type"] == "coverage"]
        self.assertEqual(
            [(issue["role"], issue["filled"], issue["required"]) for issue in coverage],
            [("Server", 1, 2), ("Hostess", 0, 1)],
        )
        self.assertEqual(self._check(report, "All roles filled?"), "fail")
        self.assertEqual(self._check(report, "All assignments approved?"), "ok")

    def test_fully_staffed_event_passes(self) -> None:
        event = self._event(roles=[{"role_name": "Server", "count": 2}])
        create_assignment(self.session, event.id, "S-1", "Server", HOURLY, directory=self.directory)
        create_assignment(self.session, event.id, "S-2", "Server", HOURLY, directory=self.directory)

        report = validate_event_staffing(self.session, event.id, directory=self.directory)

        self.assertEqual(report["issues"], [])
        self.assertEqual(report["warnings"], [])
        self.assertTrue(all(check["status"] == "ok" for check in report["checks"]))

    def test_pending_and_unpriced_assignments_warn(self) -> None:
        event = self._event()
        quick_assign(self.session, event.id, "S-1", "Server", directory=self.directory)

        report = validate_event_staffing(self.session, event.id)

        kinds = sorted(warning["type"] for warning in report["warnings"])
        self.assertEqual(kinds, ["payment_missing", "pending"])
        self.assertEqual(self._check(report, "All assignments priced?"), "fail")

    def test_role_fit_warning_needs_directory(self) -> None:
        event = self._event()
        create_assignment(self.session, event.id, "S-3", "Hostess", HOURLY, directory=self.directory)

        without = validate_event_staffing(self.session, event.id)
        with_directory = validate_event_staffing(self.session, event.id, directory=self.directory)

        self.assertFalse(any(w["type"] == "role_match" for w in without["warnings"]))
        [warning] = [w for w in with_directory["warnings"] if w["type"] == "role_match"]
        self.assertEqual(warning["staff_id"], "S-3")

    def test_orphaned_assignment_role(self) -> None:
        event = self._event()
        self.session.add(Assignment(event_id=event.id, staff_id="S-9", role="Bartender", status="Approved"))
        self.session.commit()

        report = validate_event_staffing(self.session, event.id)

        self.assertIn("role_missing", [issue["type"] for issue in report["issues"]])

    def test_budget_over_allocation_and_spend(self) -> None:
        event = self._event(
            budget={"staffing": "100", "logistics": "400", "total": "300", "override_total": True, "spent": "350"}
        )
        create_assignment(self.session, event.id, "S-1", "Server", HOURLY, directory=self.directory)

        report = validate_event_staffing(self.session, event.id)

        self.assertIn("budget", [issue["type"] for issue in report["issues"]])
        warning_types = [warning["type"] for warning in report["warnings"]]
        self.assertIn("budget_spent", warning_types)
        self.assertIn("staffing_cost", warning_types)

        update_budget(self.session, event.id, {"total": "500", "override_total": False, "spent": "0"})
        report = validate_event_staffing(self.session, event.id)
        self.assertNotIn("budget", [issue["type"] for issue in report["issues"]])

    def test_overlapping_shifts_across_events_are_double_booked(self) -> None:
        gala = self._event("Gala")
        brunch = self._event("Brunch")
        first = create_assignment(self.session, gala.id, "S-1", "Server", HOURLY, directory=self.directory)
        second = create_assignment(self.session, brunch.id, "S-1", "Server", HOURLY, directory=self.directory)
        create_shift(self.session, first["assignments"][0]["id"], {"start_time": "17:00", "end_time": "21:00"})
        create_shift(self.session, second["assignments"][0]["id"], {"start_time": "20:00", "end_time": "22:00"})

        report = validate_event_staffing(self.session, gala.id)

        [issue] = [issue for issue in report["issues"] if issue["type"] == "double_booking"]
        self.assertEqual(issue["staff_id"], "S-1")
        self.assertIn(f"event {brunch.id}", issue["message"])
        self.assertEqual(self._check(report, "No double-booked staff?"), "fail")

    def test_back_to_back_shifts_do_not_overlap(self) -> None:
        event = self._event()
        snapshot = create_assignment(self.session, event.id, "S-1", "Server", HOURLY, directory=self.directory)
        assignment_id = snapshot["assignments"][0]["id"]
        create_shift(self.session, assignment_id, {"start_time": "17:00", "end_time": "19:00"})
        create_shift(self.session, assignment_id, {"start_time": "19:00", "end_time": "22:00"})

        report = validate_event_staffing(self.session, event.id)

        self.assertNotIn("double_booking", [issue["type"] for issue in report["issues"]])


if __name__ == "__main__":
    unittest.main()
