from __future__ import annotations

import json
from decimal import Decimal

import pytest

import rates
from rates import (
    GENERIC_RATE_KEY,
    baseline_rates,
    default_breakdown,
    import_rates,
    load_rates,
    merge_rates,
    rate_for_role,
    reset_rates_to_defaults,
    validate_rates,
)


@pytest.fixture()
def rates_file(tmp_path, monkeypatch):
    path = tmp_path / "role_rates.json"
    monkeypatch.setattr(rates, "RATES_FILE", path)
    return path


def test_missing_file_falls_back_to_baseline(rates_file):
    assert not rates_file.exists()
    assert load_rates() == baseline_rates()


def test_unreadable_file_is_ignored(rates_file):
    rates_file.write_text("[1, 2", encoding="utf-8")
    assert load_rates()["Server"]["hourly_rate"] == "160.00"


def test_rate_lookup_is_case_insensitive_with_generic_fallback():
    table = baseline_rates()
    table["Server"]["hourly_rate"] = "0"
    assert rate_for_role("hostess", table) == Decimal("180.00")
    assert rate_for_role("Server", table) == Decimal("150.00")
    assert rate_for_role("Sommelier", table) == Decimal("150.00")
    table[GENERIC_RATE_KEY]["hourly_rate"] = "95"
    assert rate_for_role("Sommelier", table) == Decimal("95")


def test_default_breakdown_uses_shift_hours_when_unknown():
    breakdown = default_breakdown("Protocol", None, rates=baseline_rates())
    assert breakdown.payment_type == "hourly"
    assert breakdown.hourly_rate == Decimal("200.00")
    assert breakdown.total_hours == Decimal("8")


def test_merge_and_validate(rates_file):
    assert validate_rates(["Server", "Sommelier"]) == {"Server": "not confirmed", "Sommelier": "not configured"}

    touched = merge_rates({"Server": {"hourly_rate": "175", "confirmed": True}, "Sommelier": {"confirmed": True}, "junk": 3})

    assert touched == 2
    stored = json.loads(rates_file.read_text(encoding="utf-8"))
    assert stored["Server"] == {"hourly_rate": "175", "confirmed": True}
    assert validate_rates(["Server", "Sommelier"]) == {}


def test_import_and_reset(rates_file, tmp_path):
    source = tmp_path / "incoming.json"
    source.write_text(json.dumps({"Hostess": {"hourly_rate": "0"}}), encoding="utf-8")
    assert import_rates(source) == 1
    assert validate_rates(["Hostess"]) == {"Hostess": "not confirmed"}

    bad = tmp_path / "bad.json"
    bad.write_text("[]", encoding="utf-8")
    with pytest.raises(ValueError):
        import_rates(bad)

    merge_rates({"Hostess": {"hourly_rate": "210"}})
    reset_rates_to_defaults()
    assert load_rates()["Hostess"]["hourly_rate"] == "180.00"
