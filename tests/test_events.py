from __future__ import annotations

from decimal import Decimal

import pytest
from sqlalchemy import func, select

from conftest import HOURLY, add_staff, make_event
from assignments import create_assignment
from database import Assignment, Event, EventRole, Shift
from errors import ErrorCode, InvalidTransitionError, NotFoundError, ValidationError
from events import (
    delete_event,
    event_revenue,
    event_snapshot,
    get_event,
    set_event_status,
    staffing_cost,
    update_budget,
    update_roles,
)


BUDGET = {
    "staffing": "4000",
    "logistics": "2000",
    "marketing": "1500",
    "catering": "1500",
    "technology": "500",
    "miscellaneous": "500",
}


def test_roles_keep_their_order_and_staff_required(session):
    event = make_event(
        session,
        roles=[{"role_name": "Server", "count": 3}, {"role_name": "Hostess", "count": 2}, {"role_name": "Security", "count": 0}],
    )
    snapshot = event_snapshot(session, event.id)
    assert [role["role_name"] for role in snapshot["roles"]] == ["Server", "Hostess", "Security"]
    assert snapshot["staff_required"] == 5
    assert snapshot["status"] == "Pending"


def test_duplicate_or_invalid_roles_are_rejected(session):
    with pytest.raises(ValidationError):
        make_event(session, roles=[{"role_name": "Server", "count": 1}, {"role_name": "Server", "count": 2}])
    with pytest.raises(ValidationError):
        make_event(session, roles=[{"role_name": "Server", "count": -1}])
    with pytest.raises(ValidationError):
        make_event(session, roles=[{"role_name": "Server", "count": 1.5}])
    with pytest.raises(ValidationError):
        make_event(session, title="")


def test_without_default_role_flag_nothing_is_seeded(session):
    event = make_event(session, roles=[], staff_required=4)
    assert event_snapshot(session, event.id)["roles"] == []


def test_budget_total_must_match_allocations(session):
    event = make_event(session, budget={**BUDGET, "total": "10000"})
    assert event_snapshot(session, event.id)["budget"]["allocated"] == Decimal("10000")
    with pytest.raises(ValidationError):
        make_event(session, budget={**BUDGET, "total": "12000"})
    overridden = make_event(session, budget={**BUDGET, "total": "12000", "override_total": True})
    budget = event_snapshot(session, overridden.id)["budget"]
    assert budget["total"] == Decimal("12000")
    assert budget["remaining"] == Decimal("2000")


def test_update_budget_revalidates(session):
    event = make_event(session, budget={**BUDGET})
    snapshot = update_budget(session, event.id, {"marketing": "2500", "total": "11000", "spent": "300"})
    assert snapshot["budget"]["marketing"] == Decimal("2500")
    assert snapshot["budget"]["spent"] == Decimal("300")
    with pytest.raises(ValidationError):
        update_budget(session, event.id, {"catering": "9999", "total": "11000"})
    assert event_snapshot(session, event.id)["budget"]["catering"] == Decimal("1500")


def test_status_transitions(session):
    event = make_event(session)
    assert set_event_status(session, event.id, "Upcoming")["status"] == "Upcoming"
    with pytest.raises(InvalidTransitionError):
        set_event_status(session, event.id, "Completed")
    set_event_status(session, event.id, "Live")
    set_event_status(session, event.id, "Completed")
    with pytest.raises(InvalidTransitionError):
        set_event_status(session, event.id, "Cancelled")
    with pytest.raises(ValidationError):
        set_event_status(session, event.id, "Archived")


def test_explicit_revenue_wins_over_assignment_sum(session, staff_session, directory):
    add_staff(staff_session, "S-1")
    explicit = make_event(session, revenue="5000")
    derived = make_event(session, revenue="0")
    create_assignment(session, explicit.id, "S-1", "Server", HOURLY, directory=directory)
    create_assignment(session, derived.id, "S-1", "Server", HOURLY, directory=directory)

    explicit_view = event_snapshot(session, explicit.id)
    derived_view = event_snapshot(session, derived.id)
    assert explicit_view["revenue"] == Decimal("5000")
    assert explicit_view["revenue_source"] == "explicit"
    assert derived_view["revenue"] == Decimal("250.00")
    assert derived_view["revenue_source"] == "assignments"

    assert event_revenue(get_event(session, explicit.id)) == Decimal("5000")
    derived_event = get_event(session, derived.id)
    assert event_revenue(derived_event) == Decimal("250.00")
    assert staffing_cost(derived_event.assignments) == Decimal("250.00")
    assert staffing_cost([]) == Decimal("0")


def test_update_roles_cannot_drop_below_filled(session, staff_session, directory):
    add_staff(staff_session, "S-1")
    add_staff(staff_session, "S-2")
    event = make_event(session)
    create_assignment(session, event.id, "S-1", "Server", HOURLY, directory=directory)
    create_assignment(session, event.id, "S-2", "Server", HOURLY, directory=directory)

    with pytest.raises(ValidationError):
        update_roles(session, event.id, [{"role_name": "Server", "count": 1}])
    snapshot = update_roles(session, event.id, [{"role_name": "Server", "count": 3}, {"role_name": "Hostess", "count": 1}])
    assert snapshot["roles"] == [
        {"role_name": "Server", "count": 3, "filled": 2, "open": 1},
        {"role_name": "Hostess", "count": 1, "filled": 0, "open": 1},
    ]
    assert snapshot["staff_required"] == 4


def test_delete_event_cascades(session, staff_session, directory):
    add_staff(staff_session, "S-1")
    event = make_event(session)
    create_assignment(session, event.id, "S-1", "Server", HOURLY, directory=directory)
    delete_event(session, event.id)
    for model in (Event, EventRole, Assignment, Shift):
        assert session.scalar(select(func.count()).select_from(model)) == 0
    with pytest.raises(NotFoundError) as excinfo:
        event_snapshot(session, event.id)
    assert excinfo.value.code == ErrorCode.EVENT_NOT_FOUND
