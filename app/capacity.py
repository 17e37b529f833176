"""Role capacity tracking.

Fill counts only move through conditional UPDATEs so that two sessions racing for the last
slot of a role cannot both succeed, even across processes. Within a process, callers also
serialize their check-then-act sequence per event with :func:`event_lock`.
"""

from __future__ import annotations

import threading
import weakref
from contextlib import contextmanager
from typing import Iterator, Optional, Tuple

from sqlalchemy import select, update

from database import EventRole
from errors import CapacityExceededError, NotFoundError


# Entries disappear once no caller holds or waits on the lock.
_locks: "weakref.WeakValueDictionary[Tuple[str, int], threading.Lock]" = weakref.WeakValueDictionary()
_locks_guard = threading.Lock()


def _lock_for(kind: str, entity_id: int) -> threading.Lock:
    if entity_id is None:
        raise NotFoundError(kind, entity_id)
    key = (kind, int(entity_id))
    with _locks_guard:
        lock = _locks.get(key)
        if lock is None:
            lock = threading.Lock()
            _locks[key] = lock
        return lock


@contextmanager
def entity_lock(kind: str, entity_id: int) -> Iterator[None]:
    lock = _lock_for(kind, entity_id)
    with lock:
        yield


def event_lock(event_id: int):
    return entity_lock("event", event_id)


def role_counts(session, event_id: int, role_name: str) -> Optional[Tuple[int, int]]:
    row = session.execute(
        select(EventRole.count, EventRole.filled).where(
            EventRole.event_id == event_id,
            EventRole.role_name == role_name,
        )
    ).first()
    if row is None:
        return None
    return int(row[0]), int(row[1])


def can_fill(session, event_id: int, role_name: str) -> bool:
    """Return True iff the event has a role with exactly this name and an open slot."""
    counts = role_counts(session, event_id, role_name)
    if counts is None:
        return False
    count, filled = counts
    return filled < count


def _refresh_role(session, event_id: int, role_name: str) -> Optional[EventRole]:
    role = session.scalars(
        select(EventRole).where(EventRole.event_id == event_id, EventRole.role_name == role_name)
    ).first()
    if role is not None:
        session.refresh(role)
    return role


def apply_fill(session, event_id: int, role_name: str) -> int:
    """Increment ``filled`` for the role inside the caller's transaction.

    Returns the new filled count.

    Raises:
        NotFoundError: the event has no role with that exact name.
        CapacityExceededError: the role has no open slot at the time of the write.
    """
    result = session.execute(
        update(EventRole)
        .where(
            EventRole.event_id == event_id,
            EventRole.role_name == role_name,
            EventRole.filled < EventRole.count,
        )
        .values(filled=EventRole.filled + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        counts = role_counts(session, event_id, role_name)
        if counts is None:
            raise NotFoundError("role", role_name)
        raise CapacityExceededError(event_id, role_name, count=counts[0])
    role = _refresh_role(session, event_id, role_name)
    return role.filled if role is not None else 0


def release_fill(session, event_id: int, role_name: str) -> int:
    """Decrement ``filled`` for the role, never below zero. Returns the new filled count."""
    session.execute(
        update(EventRole)
        .where(
            EventRole.event_id == event_id,
            EventRole.role_name == role_name,
            EventRole.filled > 0,
        )
        .values(filled=EventRole.filled - 1)
        .execution_options(synchronize_session=False)
    )
    role = _refresh_role(session, event_id, role_name)
    return role.filled if role is not None else 0
