from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, Tuple


DEFAULT_ROLE = "General Staff"

# Booking staff categories in the order their roles are seeded onto the event.
BOOKING_ROLE_MAP: List[Tuple[str, str]] = [
    ("servers", "Server"),
    ("hosts", "Hostess"),
    ("other", DEFAULT_ROLE),
]

STAFF_ROLE_TAGS: List[str] = [
    "General Staff",
    "Server",
    "Hostess",
    "Security",
    "Protocol",
    "Logistics",
    "Event Coordinator",
]

_TAG_ALIASES: Dict[str, str] = {
    "host": "hostess",
    "hosts": "hostess",
    "servers": "server",
    "waiter": "server",
    "waitress": "server",
    "general": "general staff",
}


def normalize_role(role: str) -> str:
    return (role or "").strip().lower()


def clean_role_name(role: str) -> str:
    """Collapse inner whitespace while preserving the caller's casing."""
    return " ".join((role or "").split())


def seed_roles_from_staff_counts(staff: Mapping[str, int]) -> List[Dict[str, int | str]]:
    """Translate booking staff counts into ordered role requirements, omitting zero counts."""
    seeded: List[Dict[str, int | str]] = []
    for category, role_name in BOOKING_ROLE_MAP:
        count = int(staff.get(category, 0) or 0)
        if count > 0:
            seeded.append({"role_name": role_name, "count": count})
    return seeded


def staff_tag_matches(tag: str, role: str) -> bool:
    """Return True if a staff member's role tag is a natural fit for the requested role.

    Used for advisory warnings only; capacity lookups always match role names exactly.
    """
    tag_norm = _TAG_ALIASES.get(normalize_role(tag), normalize_role(tag))
    role_norm = _TAG_ALIASES.get(normalize_role(role), normalize_role(role))
    if not tag_norm or not role_norm:
        return False
    if tag_norm == role_norm:
        return True
    return tag_norm == normalize_role(DEFAULT_ROLE)


def duplicate_role_names(names: Iterable[str]) -> List[str]:
    seen: set[str] = set()
    duplicates: List[str] = []
    for name in names:
        if name in seen and name not in duplicates:
            duplicates.append(name)
        seen.add(name)
    return duplicates
