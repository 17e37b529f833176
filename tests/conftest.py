from __future__ import annotations

import datetime
import os
import sys
import tempfile
from decimal import Decimal
from pathlib import Path
from typing import Dict, List

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Keep rate files and default databases out of the source tree.
os.environ.setdefault("STAFFING_DATA_DIR", tempfile.mkdtemp(prefix="staffing-tests-"))

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

import database as db  # noqa: E402
from collaborators import MatchingService, MatchSuggestion, NotificationDispatcher  # noqa: E402
from database import Base, StaffBase, StaffMember  # noqa: E402
from errors import CollaboratorUnavailableError  # noqa: E402
from events import create_event  # noqa: E402
from rates import baseline_rates  # noqa: E402
from staff import SqlStaffDirectory  # noqa: E402


def _memory_engine():
    return create_engine(
        "sqlite://",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )


@pytest.fixture()
def memory_db(monkeypatch):
    """In-memory core and staff engines swapped into the database module."""
    engine = _memory_engine()
    staff_engine = _memory_engine()
    Base.metadata.create_all(engine)
    StaffBase.metadata.create_all(staff_engine)
    Session = sessionmaker(bind=engine, expire_on_commit=False, future=True)
    StaffSession = sessionmaker(bind=staff_engine, expire_on_commit=False, future=True)
    monkeypatch.setattr(db, "engine", engine)
    monkeypatch.setattr(db, "staff_engine", staff_engine)
    monkeypatch.setattr(db, "SessionLocal", Session)
    monkeypatch.setattr(db, "StaffSessionLocal", StaffSession)
    yield Session, StaffSession
    engine.dispose()
    staff_engine.dispose()


@pytest.fixture()
def session(memory_db):
    Session, _ = memory_db
    with Session() as session:
        yield session


@pytest.fixture()
def staff_session(memory_db):
    _, StaffSession = memory_db
    with StaffSession() as session:
        yield session


@pytest.fixture()
def directory(staff_session):
    return SqlStaffDirectory(staff_session)


@pytest.fixture()
def rates():
    return baseline_rates()


def add_staff(staff_session, staff_id: str, role: str = "Server", *, status: str = "Available", name: str = "") -> StaffMember:
    member = StaffMember(
        id=staff_id,
        name=name or f"Staff {staff_id}",
        role=role,
        status=status,
        base_rate=Decimal("150.00"),
        email=f"{staff_id.lower()}@example.com",
    )
    staff_session.add(member)
    staff_session.commit()
    return member


def make_event(session, roles=None, **overrides):
    payload = {
        "title": "Gala Dinner",
        "location": "Doha",
        "start_at": datetime.datetime(2025, 5, 10, 18, 0),
        "end_at": datetime.datetime(2025, 5, 10, 23, 0),
        "description": "Black tie dinner",
        "roles": roles if roles is not None else [{"role_name": "Server", "count": 2}],
    }
    payload.update(overrides)
    return create_event(session, payload, actor="tests")


HOURLY = {"payment_type": "hourly", "hourly_rate": "50", "total_hours": "5"}


class FakeMatcher(MatchingService):
    name = "fake matcher"

    def __init__(self, suggestions: Dict[str, List[MatchSuggestion]] | None = None, failing_roles=()) -> None:
        self.suggestions = suggestions or {}
        self.failing_roles = set(failing_roles)
        self.calls: List[tuple] = []

    def suggest(self, context, role_name, limit, pool=()):
        self.calls.append((role_name, limit))
        if role_name in self.failing_roles:
            raise CollaboratorUnavailableError(self.name, "connection refused")
        return list(self.suggestions.get(role_name, []))


class RecordingDispatcher(NotificationDispatcher):
    name = "recording dispatcher"

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent: List[tuple] = []

    def send(self, recipient, kind, payload):
        if self.fail:
            raise CollaboratorUnavailableError(self.name, "smtp down")
        self.sent.append((recipient, kind, payload))
