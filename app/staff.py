"""Read-only access to the staff directory.

The staffing core never writes staff records; it only resolves identifiers to the handful of
attributes it needs.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select

import database
from database import StaffMember


UNASSIGNABLE_STATUSES = {"Leave", "Suspended"}


@dataclass(frozen=True)
class StaffRecord:
    id: str
    name: str
    role: str
    status: str
    base_rate: Decimal
    email: str = ""

    @property
    def assignable(self) -> bool:
        return self.status not in UNASSIGNABLE_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "role": self.role,
            "status": self.status,
            "base_rate": str(self.base_rate),
            "email": self.email,
        }


class StaffDirectory(ABC):
    """Interface for staff lookups."""

    @abstractmethod
    def get(self, staff_id: str) -> Optional[StaffRecord]:
        """Return the staff record, or None if the identifier is unknown."""
        ...

    def list(self, *, role: Optional[str] = None, only_assignable: bool = True) -> List[StaffRecord]:
        """Candidate pool handed to the matching service. Directories may return nothing."""
        return []

    def get_many(self, staff_ids: Iterable[str]) -> Dict[str, StaffRecord]:
        found: Dict[str, StaffRecord] = {}
        for staff_id in staff_ids:
            record = self.get(staff_id)
            if record is not None:
                found[staff_id] = record
        return found


def _to_record(member: StaffMember) -> StaffRecord:
    return StaffRecord(
        id=member.id,
        name=member.name,
        role=member.role,
        status=member.status,
        base_rate=Decimal(member.base_rate or 0),
        email=member.email or "",
    )


class SqlStaffDirectory(StaffDirectory):
    """Staff directory backed by the ``staff`` table in staff.db."""

    def __init__(self, session=None) -> None:
        self._session = session

    def _run(self, fn):
        if self._session is not None:
            return fn(self._session)
        with database.StaffSessionLocal() as session:
            return fn(session)

    def get(self, staff_id: str) -> Optional[StaffRecord]:
        if not staff_id:
            return None

        def _lookup(session) -> Optional[StaffRecord]:
            member = session.get(StaffMember, str(staff_id))
            return _to_record(member) if member else None

        return self._run(_lookup)

    def list(self, *, role: Optional[str] = None, only_assignable: bool = True) -> List[StaffRecord]:
        def _list(session) -> List[StaffRecord]:
            stmt = select(StaffMember).order_by(StaffMember.name.asc())
            if role:
                stmt = stmt.where(StaffMember.role == role)
            records = [_to_record(member) for member in session.scalars(stmt)]
            if only_assignable:
                records = [record for record in records if record.assignable]
            return records

        return self._run(_list)
