from __future__ import annotations

import sys
from decimal import Decimal
from pathlib import Path
from typing import Dict, List

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from database import STAFF_STATUSES, StaffMember, StaffSessionLocal, init_database
from rates import BASELINE_HOURLY_RATES, GENERIC_HOURLY_RATE
from roles import STAFF_ROLE_TAGS


VALID_ROLES = set(STAFF_ROLE_TAGS)


def normalize_role(role: str, staff_name: str) -> str:
    if role in VALID_ROLES:
        return role
    print(f"[seed] Unknown role '{role}' for {staff_name}; using General Staff.")
    return "General Staff"


def resolve_rate(entry: Dict, role: str) -> Decimal:
    if entry.get("base_rate") is not None:
        return Decimal(str(entry["base_rate"]))
    return BASELINE_HOURLY_RATES.get(role, GENERIC_HOURLY_RATE)


def build_email(entry: Dict) -> str:
    if entry.get("email"):
        return entry["email"]
    local = entry["name"].lower().replace(" ", ".")
    return f"{local}@staff.example.com"


SAMPLE_STAFF: List[Dict] = [
    {"id": "S-001", "name": "Aisha Rahman", "role": "Server", "rating": 4.8},
    {"id": "S-002", "name": "Omar Haddad", "role": "Server", "rating": 4.5},
    {"id": "S-003", "name": "Lina Farouk", "role": "Server", "rating": 4.2},
    {"id": "S-004", "name": "Jana Saleh", "role": "Hostess", "rating": 4.9},
    {"id": "S-005", "name": "Mariam Nasser", "role": "Hostess", "rating": 4.6},
    {"id": "S-006", "name": "Karim Aziz", "role": "General Staff", "rating": 4.1},
    {"id": "S-007", "name": "Youssef Darwish", "role": "General Staff", "rating": 4.4},
    {"id": "S-008", "name": "Rania Khalil", "role": "Protocol", "rating": 4.7, "base_rate": "210.00"},
    {"id": "S-009", "name": "Tariq Mansour", "role": "Security", "rating": 4.3},
    {"id": "S-010", "name": "Noor Hamdan", "role": "Event Coordinator", "rating": 4.9},
    {"id": "S-011", "name": "Sami Qasim", "role": "Logistics", "rating": 4.0, "status": "Leave"},
    {"id": "S-012", "name": "Hana Yousef", "role": "Server", "rating": 3.9, "status": "Suspended"},
]


def seed_staff() -> None:
    init_database()
    created = 0
    refreshed = 0
    with StaffSessionLocal() as session:
        for entry in SAMPLE_STAFF:
            role = normalize_role(entry.get("role", "General Staff"), entry["name"])
            status = entry.get("status", "Available")
            if status not in STAFF_STATUSES:
                print(f"[seed] Skipping {entry['name']} because status '{status}' is unknown.")
                continue
            member = session.get(StaffMember, entry["id"])
            if not member:
                member = StaffMember(id=entry["id"])
                session.add(member)
                created += 1
            else:
                refreshed += 1
            member.name = entry["name"]
            member.role = role
            member.status = status
            member.base_rate = resolve_rate(entry, role)
            member.email = build_email(entry)
            member.phone = entry.get("phone", "")
            member.rating = float(entry.get("rating", 5.0))
        session.commit()
    print(f"Seed complete. Created {created} staff records, refreshed {refreshed}.")


if __name__ == "__main__":
    seed_staff()
