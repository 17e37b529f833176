from __future__ import annotations

import threading
import time
from decimal import Decimal

import pytest

from conftest import HOURLY, FakeMatcher, add_staff, make_event
from assignments import create_assignment
from auto_assign import auto_assign_event
from collaborators import MatchSuggestion
from errors import CollaboratorUnavailableError, ErrorCode


def _suggest(role, *pairs):
    return [MatchSuggestion(staff_id, role, score, "fit") for staff_id, score in pairs]


def test_fills_top_candidates_up_to_capacity(session, staff_session, directory, rates):
    for staff_id in ("S-1", "S-2", "S-3"):
        add_staff(staff_session, staff_id)
    event = make_event(session, roles=[{"role_name": "Server", "count": 2}])
    matcher = FakeMatcher({"Server": _suggest("Server", ("S-3", 0.4), ("S-1", 0.9), ("S-2", 0.7))})

    result = auto_assign_event(session, event.id, matcher=matcher, directory=directory, rates=rates)

    assert result["assigned"] == 2
    assert result["skipped"] == 0
    assert [row["staff_id"] for row in result["assignments"]] == ["S-1", "S-2"]
    assert matcher.calls == [("Server", 2)]
    snapshot = result["event"]
    assert snapshot["roles"][0]["filled"] == 2
    assert {row["staff_id"] for row in snapshot["assignments"]} == {"S-1", "S-2"}
    assert all(row["status"] == "Pending" for row in snapshot["assignments"])


def test_default_payment_uses_role_rate_and_event_length(session, staff_session, directory, rates):
    add_staff(staff_session, "S-1")
    event = make_event(session, roles=[{"role_name": "Server", "count": 1}])
    matcher = FakeMatcher({"Server": _suggest("Server", ("S-1", 1.0))})

    result = auto_assign_event(session, event.id, matcher=matcher, directory=directory, rates=rates)

    # Server baseline 160.00/h over a 5 hour event.
    assert result["assignments"][0]["total_payment"] == Decimal("800.00")
    payment = result["event"]["assignments"][0]["payment"]
    assert payment["payment_type"] == "hourly"
    assert Decimal(payment["total_hours"]) == Decimal("5.00")


def test_skips_ineligible_candidates_and_keeps_going(session, staff_session, directory, rates):
    add_staff(staff_session, "S-1")
    add_staff(staff_session, "S-2")
    add_staff(staff_session, "S-4", status="Suspended")
    event = make_event(session, roles=[{"role_name": "Server", "count": 2}, {"role_name": "Hostess", "count": 1}])
    create_assignment(session, event.id, "S-1", "Hostess", HOURLY, directory=directory)
    matcher = FakeMatcher(
        {
            "Server": _suggest("Server", ("S-1", 0.99), ("GHOST", 0.9), ("S-4", 0.8), ("S-2", 0.5)),
            "Hostess": [],
        }
    )

    result = auto_assign_event(session, event.id, matcher=matcher, directory=directory, rates=rates)

    assert result["assigned"] == 1
    assert result["assignments"][0]["staff_id"] == "S-2"
    assert [skip["code"] for skip in result["skip_reasons"]] == [
        ErrorCode.STAFF_ALREADY_ASSIGNED.value,
        ErrorCode.STAFF_NOT_FOUND.value,
        ErrorCode.STAFF_UNAVAILABLE.value,
    ]
    assert result["skipped"] == 3
    # Hostess was already full, so the matcher is only asked about Server.
    assert matcher.calls == [("Server", 2)]


def test_roles_are_processed_in_event_order(session, staff_session, directory, rates):
    for staff_id in ("S-1", "S-2"):
        add_staff(staff_session, staff_id)
    event = make_event(
        session,
        roles=[{"role_name": "Hostess", "count": 1}, {"role_name": "Server", "count": 1}],
    )
    # The same candidate tops both lists; the earlier role gets them.
    matcher = FakeMatcher(
        {
            "Hostess": _suggest("Hostess", ("S-1", 0.6)),
            "Server": _suggest("Server", ("S-1", 0.95), ("S-2", 0.3)),
        }
    )

    result = auto_assign_event(session, event.id, matcher=matcher, directory=directory, rates=rates)

    assert [call[0] for call in matcher.calls] == ["Hostess", "Server"]
    assert [(row["role"], row["staff_id"]) for row in result["assignments"]] == [("Hostess", "S-1"), ("Server", "S-2")]


def test_matcher_failure_for_one_role_degrades(session, staff_session, directory, rates):
    add_staff(staff_session, "S-2")
    event = make_event(session, roles=[{"role_name": "Hostess", "count": 1}, {"role_name": "Server", "count": 1}])
    matcher = FakeMatcher({"Server": _suggest("Server", ("S-2", 0.5))}, failing_roles={"Hostess"})

    result = auto_assign_event(session, event.id, matcher=matcher, directory=directory, rates=rates)

    assert result["unavailable_roles"] == ["Hostess"]
    assert result["assigned"] == 1


class BrokenMatcher(FakeMatcher):
    def suggest(self, context, role_name, limit, pool=()):
        if role_name == "Server":
            raise KeyError("score")
        return super().suggest(context, role_name, limit, pool)


def test_unexpected_matcher_error_only_costs_that_role(session, staff_session, directory, rates):
    add_staff(staff_session, "S-1")
    event = make_event(session, roles=[{"role_name": "Server", "count": 1}, {"role_name": "Hostess", "count": 1}])
    matcher = BrokenMatcher({"Hostess": _suggest("Hostess", ("S-1", 0.9))})

    result = auto_assign_event(session, event.id, matcher=matcher, directory=directory, rates=rates)

    assert result["unavailable_roles"] == ["Server"]
    assert result["assigned"] == 1
    assert result["assignments"][0]["role"] == "Hostess"


def test_matcher_down_for_every_role_is_reported(session, directory, rates):
    event = make_event(session, roles=[{"role_name": "Hostess", "count": 1}, {"role_name": "Server", "count": 1}])
    matcher = FakeMatcher(failing_roles={"Hostess", "Server"})
    with pytest.raises(CollaboratorUnavailableError):
        auto_assign_event(session, event.id, matcher=matcher, directory=directory, rates=rates)


class SlowMatcher(FakeMatcher):
    def suggest(self, context, role_name, limit, pool=()):
        if role_name == "Hostess":
            time.sleep(1.0)
        return super().suggest(context, role_name, limit, pool)


def test_slow_matcher_times_out_to_zero_suggestions(session, staff_session, directory, rates):
    add_staff(staff_session, "S-1")
    add_staff(staff_session, "S-2")
    event = make_event(session, roles=[{"role_name": "Hostess", "count": 1}, {"role_name": "Server", "count": 1}])
    matcher = SlowMatcher(
        {"Hostess": _suggest("Hostess", ("S-1", 1.0)), "Server": _suggest("Server", ("S-2", 1.0))}
    )

    started = time.monotonic()
    result = auto_assign_event(session, event.id, matcher=matcher, directory=directory, rates=rates, timeout=0.1)

    assert time.monotonic() - started < 1.0
    assert result["unavailable_roles"] == ["Hostess"]
    assert [row["staff_id"] for row in result["assignments"]] == ["S-2"]


class CancellingMatcher(FakeMatcher):
    def __init__(self, cancel, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.cancel = cancel

    def suggest(self, context, role_name, limit, pool=()):
        if role_name == "Server":
            self.cancel.set()
        return super().suggest(context, role_name, limit, pool)


def test_cancel_keeps_committed_fills(session, staff_session, directory, rates):
    add_staff(staff_session, "S-1")
    add_staff(staff_session, "S-2")
    event = make_event(session, roles=[{"role_name": "Hostess", "count": 1}, {"role_name": "Server", "count": 1}])
    cancel = threading.Event()
    matcher = CancellingMatcher(
        cancel, {"Hostess": _suggest("Hostess", ("S-1", 1.0)), "Server": _suggest("Server", ("S-2", 1.0))}
    )

    result = auto_assign_event(
        session, event.id, matcher=matcher, directory=directory, rates=rates, cancel=cancel
    )

    assert result["cancelled"] is True
    assert result["assigned"] == 1
    roles = {role["role_name"]: role["filled"] for role in result["event"]["roles"]}
    assert roles == {"Hostess": 1, "Server": 0}


def test_cancel_before_start_does_nothing(session, directory, rates):
    event = make_event(session)
    cancel = threading.Event()
    cancel.set()
    matcher = FakeMatcher()
    result = auto_assign_event(session, event.id, matcher=matcher, directory=directory, rates=rates, cancel=cancel)
    assert result["cancelled"] is True
    assert matcher.calls == []
