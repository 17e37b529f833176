from __future__ import annotations

import json
import logging
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from config import DATA_DIR, DEFAULT_SHIFT_HOURS
from payments import PaymentBreakdown
from roles import STAFF_ROLE_TAGS, normalize_role


logger = logging.getLogger(__name__)

RATES_FILE = DATA_DIR / "role_rates.json"
GENERIC_RATE_KEY = "*"
GENERIC_HOURLY_RATE = Decimal("150.00")

BASELINE_HOURLY_RATES: Dict[str, Decimal] = {
    "General Staff": Decimal("150.00"),
    "Server": Decimal("160.00"),
    "Hostess": Decimal("180.00"),
    "Security": Decimal("170.00"),
    "Protocol": Decimal("200.00"),
    "Logistics": Decimal("150.00"),
    "Event Coordinator": Decimal("250.00"),
}


def baseline_rates() -> Dict[str, Dict[str, Any]]:
    payload: Dict[str, Dict[str, Any]] = {}
    for role in STAFF_ROLE_TAGS:
        rate = BASELINE_HOURLY_RATES.get(role, GENERIC_HOURLY_RATE)
        payload[role] = {"hourly_rate": str(rate), "confirmed": False}
    payload[GENERIC_RATE_KEY] = {"hourly_rate": str(GENERIC_HOURLY_RATE), "confirmed": True}
    return payload


def load_rates(path: Optional[Path] = None) -> Dict[str, Dict[str, Any]]:
    source = path or RATES_FILE
    data: Dict[str, Any]
    if source.exists():
        try:
            data = json.loads(source.read_text(encoding="utf-8"))
            if not isinstance(data, dict):
                raise ValueError("rates file must hold a JSON object")
        except ValueError as exc:
            logger.warning("Ignoring unreadable rates file %s: %s", source, exc)
            data = baseline_rates()
    else:
        data = baseline_rates()

    for role, default in baseline_rates().items():
        entry = data.get(role)
        if not isinstance(entry, dict):
            data[role] = default
            continue
        entry.setdefault("hourly_rate", default["hourly_rate"])
        entry.setdefault("confirmed", False)
    return data


def save_rates(data: Dict[str, Dict[str, Any]], path: Optional[Path] = None) -> None:
    (path or RATES_FILE).write_text(json.dumps(data, indent=2, sort_keys=True), encoding="utf-8")


def _parse_rate(entry: Any) -> Optional[Decimal]:
    if not isinstance(entry, dict):
        return None
    try:
        rate = Decimal(str(entry.get("hourly_rate", "0") or "0"))
    except (InvalidOperation, ValueError):
        return None
    if not rate.is_finite() or rate <= 0:
        return None
    return rate


def rate_for_role(role: str, rates: Optional[Dict[str, Dict[str, Any]]] = None) -> Decimal:
    """Return the hourly rate configured for a role, falling back to the generic rate."""
    data = rates if rates is not None else load_rates()
    target = normalize_role(role)
    for name, entry in data.items():
        if normalize_role(name) == target:
            rate = _parse_rate(entry)
            if rate is not None:
                return rate
            break
    generic = _parse_rate(data.get(GENERIC_RATE_KEY))
    return generic if generic is not None else GENERIC_HOURLY_RATE


def default_breakdown(
    role: str,
    hours: Optional[Decimal | float | int] = None,
    *,
    rates: Optional[Dict[str, Dict[str, Any]]] = None,
) -> PaymentBreakdown:
    """Hourly breakdown used when filling a role without operator-supplied pay details."""
    worked = Decimal(str(hours)) if hours else Decimal(DEFAULT_SHIFT_HOURS)
    return PaymentBreakdown(
        payment_type="hourly",
        hourly_rate=rate_for_role(role, rates),
        total_hours=worked,
        notes="default role rate",
    )


def validate_rates(roles: Iterable[str]) -> Dict[str, str]:
    """Return dict of roles without a usable confirmed rate -> reason."""
    data = load_rates()
    problems: Dict[str, str] = {}
    for role in roles:
        entry = data.get(role)
        if not isinstance(entry, dict):
            problems[role] = "not configured"
            continue
        if _parse_rate(entry) is None:
            problems[role] = "rate is zero"
            continue
        if not entry.get("confirmed", False):
            problems[role] = "not confirmed"
    return problems


def import_rates(source: Path) -> int:
    data = json.loads(source.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError("Rates file must be a JSON object.")
    return merge_rates(data)


def merge_rates(data: Dict[str, Any]) -> int:
    """Overlay role entries onto the stored table. Returns how many roles were touched."""
    merged = load_rates()
    count = 0
    for role, entry in data.items():
        if not isinstance(entry, dict):
            continue
        record = merged.setdefault(role, {"hourly_rate": str(GENERIC_HOURLY_RATE), "confirmed": False})
        if "hourly_rate" in entry and _parse_rate(entry) is not None:
            record["hourly_rate"] = str(_parse_rate(entry))
        if "confirmed" in entry:
            record["confirmed"] = bool(entry["confirmed"])
        count += 1
    save_rates(merged)
    return count


def reset_rates_to_defaults() -> None:
    save_rates(baseline_rates())
