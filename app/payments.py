"""Payment breakdown parsing and total calculation.

All arithmetic is done with ``Decimal`` and the final total is quantized to cents.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Dict, Mapping, Optional, Tuple

from errors import ErrorCode, ValidationError


PAYMENT_TYPES = ("hourly", "fixed", "daily")
DAILY_BASE_HOURS = Decimal("8")
CENTS = Decimal("0.01")
# Largest value a Numeric(12, 2) column holds.
MAX_AMOUNT = Decimal("9999999999.99")
ZERO = Decimal("0")

AMOUNT_FIELDS = (
    "hourly_rate",
    "total_hours",
    "fixed_amount",
    "overtime_rate",
    "overtime_hours",
    "bonus",
    "transportation_allowance",
    "meal_allowance",
    "deductions",
)

# Accept the camelCase keys used by the booking dashboards alongside snake_case.
_KEY_ALIASES = {
    "paymentType": "payment_type",
    "type": "payment_type",
    "hourlyRate": "hourly_rate",
    "totalHours": "total_hours",
    "fixedAmount": "fixed_amount",
    "overtimeRate": "overtime_rate",
    "overtimeHours": "overtime_hours",
    "transportationAllowance": "transportation_allowance",
    "mealAllowance": "meal_allowance",
}


@dataclass(frozen=True)
class PaymentBreakdown:
    payment_type: str
    hourly_rate: Decimal = ZERO
    total_hours: Decimal = ZERO
    fixed_amount: Decimal = ZERO
    overtime_rate: Decimal = ZERO
    overtime_hours: Decimal = ZERO
    bonus: Decimal = ZERO
    transportation_allowance: Decimal = ZERO
    meal_allowance: Decimal = ZERO
    deductions: Decimal = ZERO
    notes: str = field(default="", compare=False)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "PaymentBreakdown":
        if not isinstance(payload, Mapping):
            raise ValidationError("Payment details must be an object.", code=ErrorCode.INVALID_PAYMENT)
        data: Dict[str, Any] = {}
        for key, value in payload.items():
            data[_KEY_ALIASES.get(key, key)] = value
        payment_type = str(data.get("payment_type") or "").strip().lower()
        if payment_type not in PAYMENT_TYPES:
            raise ValidationError(
                f"payment_type must be one of {', '.join(PAYMENT_TYPES)}.",
                code=ErrorCode.INVALID_PAYMENT,
                details={"field": "payment_type", "value": data.get("payment_type")},
            )
        amounts = {name: _to_amount(name, data.get(name)) for name in AMOUNT_FIELDS}
        return cls(payment_type=payment_type, notes=str(data.get("notes") or ""), **amounts)

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        for name in AMOUNT_FIELDS:
            payload[name] = str(payload[name])
        return payload


def _to_amount(name: str, value: Any) -> Decimal:
    if value is None or value == "":
        return ZERO
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be a number.", code=ErrorCode.INVALID_PAYMENT, details={"field": name})
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(
            f"{name} must be a number.", code=ErrorCode.INVALID_PAYMENT, details={"field": name, "value": value}
        ) from None
    if not amount.is_finite():
        raise ValidationError(f"{name} must be finite.", code=ErrorCode.INVALID_PAYMENT, details={"field": name})
    if amount < 0:
        raise ValidationError(
            f"{name} cannot be negative.", code=ErrorCode.INVALID_PAYMENT, details={"field": name, "value": str(amount)}
        )
    if amount > MAX_AMOUNT:
        raise ValidationError(
            f"{name} cannot exceed {MAX_AMOUNT}.", code=ErrorCode.INVALID_PAYMENT, details={"field": name, "value": str(amount)}
        )
    return amount


def validate_breakdown(breakdown: PaymentBreakdown) -> None:
    """Reject degenerate structures before any arithmetic happens."""
    if breakdown.payment_type not in PAYMENT_TYPES:
        raise ValidationError("Unknown payment type.", code=ErrorCode.INVALID_PAYMENT)
    for name in AMOUNT_FIELDS:
        amount = getattr(breakdown, name)
        if not isinstance(amount, Decimal) or not amount.is_finite() or not ZERO <= amount <= MAX_AMOUNT:
            raise ValidationError(
                f"{name} must be a finite amount between 0 and {MAX_AMOUNT}.",
                code=ErrorCode.INVALID_PAYMENT,
                details={"field": name},
            )
    if breakdown.payment_type == "hourly":
        if breakdown.hourly_rate <= 0:
            raise ValidationError(
                "Hourly payments need an hourly rate above zero.",
                code=ErrorCode.INVALID_PAYMENT,
                details={"field": "hourly_rate"},
            )
        if breakdown.total_hours <= 0:
            raise ValidationError(
                "Hourly payments need total hours above zero.",
                code=ErrorCode.INVALID_PAYMENT,
                details={"field": "total_hours"},
            )
    elif breakdown.payment_type == "fixed" and breakdown.fixed_amount <= 0:
        raise ValidationError(
            "Fixed payments need a fixed amount above zero.",
            code=ErrorCode.INVALID_PAYMENT,
            details={"field": "fixed_amount"},
        )


def _base_amount(breakdown: PaymentBreakdown) -> Decimal:
    if breakdown.payment_type == "fixed":
        return breakdown.fixed_amount
    if breakdown.payment_type == "daily":
        base = breakdown.hourly_rate * DAILY_BASE_HOURS
    else:
        base = breakdown.hourly_rate * breakdown.total_hours
    return base + breakdown.overtime_rate * breakdown.overtime_hours


def calculate_total(breakdown: PaymentBreakdown) -> Decimal:
    """Return the payable total for a breakdown, quantized to cents.

    Raises:
        ValidationError: INVALID_PAYMENT for degenerate or out-of-range inputs, NON_POSITIVE_PAYMENT when the
            allowances and deductions net out to zero or less.
    """
    validate_breakdown(breakdown)
    try:
        total = (
            _base_amount(breakdown)
            + breakdown.bonus
            + breakdown.transportation_allowance
            + breakdown.meal_allowance
            - breakdown.deductions
        ).quantize(CENTS, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValidationError(
            "Payment total is out of range.", code=ErrorCode.INVALID_PAYMENT, details={"max": str(MAX_AMOUNT)}
        ) from None
    if total > MAX_AMOUNT:
        raise ValidationError(
            f"Payment total cannot exceed {MAX_AMOUNT}.",
            code=ErrorCode.INVALID_PAYMENT,
            details={"total": str(total), "max": str(MAX_AMOUNT)},
        )
    if total <= 0:
        raise ValidationError(
            "Payment total must be greater than zero.",
            code=ErrorCode.NON_POSITIVE_PAYMENT,
            details={"total": str(total)},
        )
    return total


def compute_payment(payload: Optional[Mapping[str, Any]] | PaymentBreakdown) -> Tuple[PaymentBreakdown, Decimal]:
    """Parse (if needed) and price a breakdown in one step."""
    if payload is None:
        raise ValidationError("Payment details are required.", code=ErrorCode.INVALID_PAYMENT)
    breakdown = payload if isinstance(payload, PaymentBreakdown) else PaymentBreakdown.from_dict(payload)
    return breakdown, calculate_total(breakdown)
