"""External collaborators consumed by the staffing core.

Matching and notification services are black boxes. Every call made to them is bounded by a
timeout; a slow, unreachable or failing service surfaces as ``CollaboratorUnavailableError``.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

import requests

from config import COLLABORATOR_TIMEOUT_SECONDS, MATCHING_SERVICE_URL, NOTIFICATION_SERVICE_URL
from errors import CollaboratorUnavailableError
from roles import normalize_role, staff_tag_matches
from staff import StaffRecord


logger = logging.getLogger(__name__)

_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="collaborator")


@dataclass(frozen=True)
class MatchSuggestion:
    staff_id: str
    role_name: str
    match_score: float
    reason: str = ""


def call_with_timeout(
    collaborator: str,
    fn: Callable[..., Any],
    *args: Any,
    timeout: Optional[float] = None,
    **kwargs: Any,
) -> Any:
    """Run ``fn`` on the collaborator pool and wait at most ``timeout`` seconds for it.

    A call that overruns is abandoned, not interrupted; its eventual result is discarded.
    Any error raised by the collaborator is reported as ``CollaboratorUnavailableError``.
    """
    limit = COLLABORATOR_TIMEOUT_SECONDS if timeout is None else timeout
    future = _executor.submit(fn, *args, **kwargs)
    try:
        return future.result(timeout=limit)
    except FutureTimeout:
        future.cancel()
        raise CollaboratorUnavailableError(collaborator, f"no response within {limit:g}s") from None
    except CollaboratorUnavailableError:
        raise
    except (requests.RequestException, ConnectionError) as exc:
        raise CollaboratorUnavailableError(collaborator, str(exc)) from exc
    except Exception as exc:
        logger.exception("%s failed unexpectedly", collaborator)
        raise CollaboratorUnavailableError(collaborator, f"{type(exc).__name__}: {exc}") from exc


class MatchingService(ABC):
    """Ranks staff for an open role. The ranking itself is not ours."""

    name = "matching service"

    @abstractmethod
    def suggest(
        self,
        context: Dict[str, Any],
        role_name: str,
        limit: int,
        pool: Sequence[StaffRecord] = (),
    ) -> List[MatchSuggestion]:
        ...


class NotificationDispatcher(ABC):
    name = "notification service"

    @abstractmethod
    def send(self, recipient: str, kind: str, payload: Dict[str, Any]) -> None:
        ...


def _parse_suggestions(raw: Any, role_name: str) -> List[MatchSuggestion]:
    if isinstance(raw, dict):
        raw = raw.get("suggestions", [])
    if not isinstance(raw, list):
        raise ValueError("suggestions must be a list")
    suggestions: List[MatchSuggestion] = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        staff_id = item.get("staff_id") or item.get("staffId")
        if not staff_id:
            continue
        score = item.get("match_score", item.get("matchScore", 0))
        suggestions.append(
            MatchSuggestion(
                staff_id=str(staff_id),
                role_name=str(item.get("role_name") or item.get("roleName") or role_name),
                match_score=float(score or 0),
                reason=str(item.get("reason") or ""),
            )
        )
    return suggestions


class HttpMatchingService(MatchingService):
    def __init__(self, base_url: str, *, timeout: Optional[float] = None, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = COLLABORATOR_TIMEOUT_SECONDS if timeout is None else timeout
        self._http = session or requests.Session()

    def suggest(self, context, role_name, limit, pool=()):
        body = {
            "event": context,
            "role_name": role_name,
            "limit": limit,
            "pool": [record.id for record in pool],
        }
        try:
            response = self._http.post(f"{self.base_url}/suggestions", json=body, timeout=self.timeout)
            response.raise_for_status()
            return _parse_suggestions(response.json(), role_name)
        except requests.RequestException as exc:
            logger.warning("Matching request for role %s failed: %s", role_name, exc)
            raise CollaboratorUnavailableError(self.name, str(exc)) from exc
        except (TypeError, ValueError) as exc:
            raise CollaboratorUnavailableError(self.name, f"unreadable response: {exc}") from exc


class RoleTagMatchingService(MatchingService):
    """Local stand-in ranking the pool by role tag fit, used when no matching URL is configured."""

    name = "role tag matcher"

    def suggest(self, context, role_name, limit, pool=()):
        ranked: List[MatchSuggestion] = []
        for record in pool:
            if normalize_role(record.role) == normalize_role(role_name):
                ranked.append(MatchSuggestion(record.id, role_name, 1.0, "role tag matches"))
            elif staff_tag_matches(record.role, role_name):
                ranked.append(MatchSuggestion(record.id, role_name, 0.5, "general staff"))
        ranked.sort(key=lambda suggestion: -suggestion.match_score)
        return ranked[:limit]


class HttpNotificationDispatcher(NotificationDispatcher):
    def __init__(self, base_url: str, *, timeout: Optional[float] = None, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = COLLABORATOR_TIMEOUT_SECONDS if timeout is None else timeout
        self._http = session or requests.Session()

    def send(self, recipient, kind, payload):
        try:
            response = self._http.post(
                f"{self.base_url}/notifications",
                json={"recipient": recipient, "kind": kind, "payload": payload},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            raise CollaboratorUnavailableError(self.name, str(exc)) from exc


class LoggingNotificationDispatcher(NotificationDispatcher):
    name = "log dispatcher"

    def send(self, recipient, kind, payload):
        logger.info("Notification %s -> %s: %s", kind, recipient, payload)


def default_matcher() -> MatchingService:
    if MATCHING_SERVICE_URL:
        return HttpMatchingService(MATCHING_SERVICE_URL)
    return RoleTagMatchingService()


def default_dispatcher() -> NotificationDispatcher:
    if NOTIFICATION_SERVICE_URL:
        return HttpNotificationDispatcher(NOTIFICATION_SERVICE_URL)
    return LoggingNotificationDispatcher()
