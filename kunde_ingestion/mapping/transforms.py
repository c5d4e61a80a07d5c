"""
Column transformations -- closed registry keyed by ``TransformationType``.

Contract:
    ``TRANSFORMS[type](value, params) -> value``.  Every transformation is a
    pure function; ``None`` in gives ``None`` out.  ``apply_transformation``
    returns the input unchanged when a transformation raises.

Invariants:
    The registry covers every member of ``TransformationType`` (checked at
    import time), so a config that deserializes always dispatches.

ZERO I/O.
"""

from __future__ import annotations

import math
import re
from typing import Any, Callable

from kunde_ingestion.domain.mapping_config import TransformationRule
from kunde_ingestion.domain.types import FieldType, TransformationType
from kunde_ingestion.mapping.dates import (
    parse_date,
    parse_excel_date,
    parse_month_text,
    parse_norwegian_date,
)

Transform = Callable[[Any, dict[str, Any]], Any]

TRUE_VALUES = frozenset({"ja", "yes", "true", "1", "x", "sant"})
FALSE_VALUES = frozenset({"nei", "no", "false", "0", "", "usant"})

_NON_PHONE = re.compile(r"[^\d+]")
_NON_DIGIT = re.compile(r"\D")
_WS = re.compile(r"\s")

_ADDRESS_FULL = re.compile(r"^(.+?),?\s+(\d{4})\s+(.+)$")
_ADDRESS_POSTNR = re.compile(r"^(.+?),?\s+(\d{4})$")


def as_text(value: Any) -> str:
    """String form of a cell value; integral floats lose their ``.0``."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


# -----------------------------------------------------------------------------
# Value transformations
# -----------------------------------------------------------------------------


def capitalize(text: str) -> str:
    """Upper-case the first letter of every space-separated word."""
    return " ".join(w[:1].upper() + w[1:] for w in text.lower().split(" "))


def parse_number(value: Any) -> float | None:
    """Number with comma or dot decimal separator; inner whitespace ignored."""
    if value is None:
        return None
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return None if isinstance(value, float) and math.isnan(value) else float(value)
    if not isinstance(value, str):
        return None
    text = _WS.sub("", value).replace(",", ".")
    if not text:
        return None
    try:
        number = float(text)
    except ValueError:
        return None
    return None if math.isnan(number) or math.isinf(number) else number


def parse_integer(value: Any) -> int | None:
    number = parse_number(value)
    if number is None:
        return None
    return int(math.floor(number + 0.5))


def parse_boolean(value: Any) -> bool | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    text = as_text(value).strip().lower()
    if text in TRUE_VALUES:
        return True
    if text in FALSE_VALUES:
        return False
    return None


def format_phone(value: Any) -> str | None:
    """
    Norwegian phone number as ``XX XX XX XX``.

    Strips ``+47``, ``0047`` or a bare ``47`` prefix on a 10 digit number.
    Fewer than 8 digits returns the original text; more than 8 returns the
    digits unformatted.
    """
    if value is None or isinstance(value, bool) or not isinstance(value, (str, int, float)):
        return None
    text = as_text(value).strip()
    if not text:
        return None

    digits = _NON_PHONE.sub("", text)
    if digits.startswith("+47"):
        digits = digits[3:]
    elif digits.startswith("0047"):
        digits = digits[4:]
    elif digits.startswith("47") and len(digits) == 10:
        digits = digits[2:]

    if len(digits) < 8:
        return text
    if len(digits) == 8:
        return f"{digits[0:2]} {digits[2:4]} {digits[4:6]} {digits[6:8]}"
    return digits


def format_postnummer(value: Any) -> str | None:
    """Four digit postal code; three digits get a leading zero."""
    if value is None or isinstance(value, bool) or not isinstance(value, (str, int, float)):
        return None
    text = as_text(value).strip()
    if not text:
        return None
    digits = _NON_DIGIT.sub("", text)
    if len(digits) == 4:
        return digits
    if len(digits) == 3:
        return "0" + digits
    return text


def split_first(value: Any, delimiter: str = ",") -> str | None:
    if not isinstance(value, str):
        return None
    return value.split(delimiter)[0].strip() or None


def split_last(value: Any, delimiter: str = ",") -> str | None:
    if not isinstance(value, str):
        return None
    return value.split(delimiter)[-1].strip() or None


def regex_extract(value: Any, pattern: str | None, group: int = 0) -> str | None:
    if not isinstance(value, str) or not pattern:
        return None
    try:
        match = re.search(pattern, value)
    except re.error:
        return None
    if match is None:
        return None
    try:
        extracted = match.group(group)
    except IndexError:
        extracted = None
    return extracted or match.group(0) or None


def lookup_value(value: Any, table: dict[str, Any] | None, default: Any = None) -> Any:
    """Exact key, then case-insensitive key, then ``default``, then the value itself."""
    if value is None or not table:
        return default
    key = as_text(value).strip()
    if key in table:
        return table[key]
    lowered = key.lower()
    for k, v in table.items():
        if str(k).lower() == lowered:
            return v
    return default if default is not None else value


def _strings_only(fn: Callable[[str], Any]) -> Transform:
    return lambda v, _p: fn(v) if isinstance(v, str) else v


# -----------------------------------------------------------------------------
# Registry
# -----------------------------------------------------------------------------


TRANSFORMS: dict[TransformationType, Transform] = {
    TransformationType.NONE: lambda v, _p: v,
    TransformationType.TRIM: _strings_only(str.strip),
    TransformationType.UPPERCASE: _strings_only(str.upper),
    TransformationType.LOWERCASE: _strings_only(str.lower),
    TransformationType.CAPITALIZE: _strings_only(capitalize),
    TransformationType.PARSE_NUMBER: lambda v, _p: parse_number(v),
    TransformationType.PARSE_INTEGER: lambda v, _p: parse_integer(v),
    TransformationType.PARSE_DATE: lambda v, p: parse_date(v, p.get("format")),
    TransformationType.PARSE_BOOLEAN: lambda v, _p: parse_boolean(v),
    TransformationType.FORMAT_PHONE: lambda v, _p: format_phone(v),
    TransformationType.FORMAT_POSTNUMMER: lambda v, _p: format_postnummer(v),
    TransformationType.PARSE_NORWEGIAN_DATE: lambda v, _p: parse_norwegian_date(v),
    TransformationType.PARSE_EXCEL_DATE: lambda v, _p: parse_excel_date(v),
    TransformationType.PARSE_MONTH_TEXT: lambda v, p: parse_month_text(v, p.get("year")),
    TransformationType.SPLIT_FIRST: lambda v, p: split_first(v, p.get("delimiter") or ","),
    TransformationType.SPLIT_LAST: lambda v, p: split_last(v, p.get("delimiter") or ","),
    TransformationType.REGEX: lambda v, p: regex_extract(
        v, p.get("pattern"), int(p.get("group") or 0)
    ),
    TransformationType.LOOKUP: lambda v, p: lookup_value(v, p.get("table"), p.get("default")),
}

assert set(TRANSFORMS) == set(TransformationType), "every TransformationType needs a transform"


def apply_transformation(value: Any, rule: TransformationRule) -> Any:
    """Dispatch ``rule`` through the registry; the input survives a failing transform."""
    if value is None:
        return None
    try:
        return TRANSFORMS[rule.type](value, rule.params)
    except (TypeError, ValueError, OverflowError):
        return value


def _default_string(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (int, float, bool)):
        return as_text(value)
    return ""


def _default_email(value: Any) -> Any:
    return value.strip().lower() if isinstance(value, str) else value


_DEFAULTS: dict[FieldType, Callable[[Any, str | None], Any]] = {
    FieldType.STRING: lambda v, _f: _default_string(v),
    FieldType.EMAIL: lambda v, _f: _default_email(v),
    FieldType.PHONE: lambda v, _f: format_phone(v),
    FieldType.POSTNUMMER: lambda v, _f: format_postnummer(v),
    FieldType.DATE: parse_date,
    FieldType.DATETIME: parse_date,
    FieldType.NUMBER: lambda v, _f: parse_number(v),
    FieldType.INTEGER: lambda v, _f: parse_integer(v),
    FieldType.BOOLEAN: lambda v, _f: parse_boolean(v),
}


def apply_default_transformation(
    value: Any, field_type: FieldType, date_format: str | None = None
) -> Any:
    """Transformation implied by the target field type when none is configured."""
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
    fn = _DEFAULTS.get(field_type)
    return fn(value, date_format) if fn else value


# -----------------------------------------------------------------------------
# Address splitting
# -----------------------------------------------------------------------------


def split_norwegian_address(combined: str) -> tuple[str, str | None, str | None]:
    """
    Split "Storgata 5, 0184 Oslo" into (adresse, postnummer, poststed).

    A trailing postal code without a city gives (adresse, postnummer, None);
    anything else comes back unchanged with no postal parts.
    """
    if not combined:
        return combined, None, None
    m = _ADDRESS_FULL.match(combined)
    if m:
        return m.group(1).strip(), m.group(2), m.group(3).strip()
    m = _ADDRESS_POSTNR.match(combined)
    if m:
        return m.group(1).strip(), m.group(2), None
    return combined, None, None
