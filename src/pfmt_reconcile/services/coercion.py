from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation
from enum import Enum
from numbers import Number
from typing import Any

from ..models.mapping import ValueType

"""Value coercion: raw workbook cell -> typed field value.

Pure functions only. A blank cell is *absent*, which is not a failure; a
non-blank cell that cannot be read as the declared type is a failure and is
reported back to the caller instead of being raised.

Percentage heuristic: a magnitude <= 1 is a fraction (0.45 -> 45), anything
larger is already on the 0-100 scale (45 -> 45). A raw value of exactly 1 is
therefore read as 100%. Text carrying an explicit "%" sign is always taken as
already scaled ("1%" -> 1).
"""

__all__ = [
    "CoercionReason",
    "CoercionResult",
    "CoercionStatus",
    "coerce",
    "is_blank",
]

_CURRENCY_NOISE = re.compile(r"(CAD|USD|[$€£¥,\s])", re.IGNORECASE)
_HUNDRED = Decimal(100)


class CoercionStatus(str, Enum):
    OK = "ok"
    ABSENT = "absent"
    FAILED = "failed"


class CoercionReason(str, Enum):
    NOT_A_NUMBER = "NotANumber"
    UNSUPPORTED_TYPE = "UnsupportedType"


@dataclass(frozen=True)
class CoercionResult:
    status: CoercionStatus
    value: Any = None
    reason: CoercionReason | None = None
    raw: Any = None

    @property
    def ok(self) -> bool:
        return self.status is CoercionStatus.OK

    @property
    def absent(self) -> bool:
        return self.status is CoercionStatus.ABSENT

    @property
    def failed(self) -> bool:
        return self.status is CoercionStatus.FAILED


_ABSENT = CoercionResult(status=CoercionStatus.ABSENT)


def _failure(raw: Any, reason: CoercionReason) -> CoercionResult:
    return CoercionResult(status=CoercionStatus.FAILED, reason=reason, raw=raw)


def is_blank(raw: Any) -> bool:
    """True for None, NaN and whitespace-only strings."""
    if raw is None:
        return True
    if isinstance(raw, float) and math.isnan(raw):
        return True
    if isinstance(raw, str) and not raw.strip():
        return True
    return False


def _to_decimal(raw: Any, *, strip_currency: bool) -> Decimal | CoercionReason:
    if isinstance(raw, bool):
        return CoercionReason.UNSUPPORTED_TYPE
    if isinstance(raw, Decimal):
        return raw
    if isinstance(raw, Number):
        # numpy scalars register as numbers.Number too
        try:
            return Decimal(str(raw))
        except InvalidOperation:
            return CoercionReason.NOT_A_NUMBER
    if not isinstance(raw, str):
        return CoercionReason.UNSUPPORTED_TYPE

    text = raw.strip()
    negative = False
    if strip_currency:
        if text.startswith("(") and text.endswith(")"):
            # accounting notation for credits
            negative = True
            text = text[1:-1]
        text = _CURRENCY_NOISE.sub("", text)
    try:
        value = Decimal(text)
    except InvalidOperation:
        return CoercionReason.NOT_A_NUMBER
    if not value.is_finite():
        return CoercionReason.NOT_A_NUMBER
    return -value if negative else value


def _number(value: Decimal) -> int | float:
    if value == value.to_integral_value():
        return int(value)
    return float(value)


def _text(raw: Any) -> str:
    if isinstance(raw, (datetime, date, time)):
        return raw.isoformat()
    if isinstance(raw, float) and raw.is_integer():
        return str(int(raw))
    return str(raw).strip()


def coerce(raw: Any, value_type: ValueType) -> CoercionResult:
    """Coerce one raw cell value to ``value_type``."""
    if is_blank(raw):
        return _ABSENT

    if value_type is ValueType.TEXT:
        text = _text(raw)
        if not text:
            return _ABSENT
        return CoercionResult(status=CoercionStatus.OK, value=text, raw=raw)

    if value_type is ValueType.NUMBER:
        parsed = _to_decimal(raw, strip_currency=False)
        if isinstance(parsed, CoercionReason):
            return _failure(raw, parsed)
        return CoercionResult(status=CoercionStatus.OK, value=_number(parsed), raw=raw)

    if value_type is ValueType.CURRENCY:
        parsed = _to_decimal(raw, strip_currency=True)
        if isinstance(parsed, CoercionReason):
            return _failure(raw, parsed)
        return CoercionResult(status=CoercionStatus.OK, value=float(parsed), raw=raw)

    if value_type is ValueType.PERCENTAGE:
        explicit = isinstance(raw, str) and raw.strip().endswith("%")
        source = raw.strip().rstrip("%") if explicit else raw
        parsed = _to_decimal(source, strip_currency=False)
        if isinstance(parsed, CoercionReason):
            return _failure(raw, parsed)
        if not explicit and abs(parsed) <= 1:
            parsed = parsed * _HUNDRED
        return CoercionResult(status=CoercionStatus.OK, value=float(parsed), raw=raw)

    return _failure(raw, CoercionReason.UNSUPPORTED_TYPE)
