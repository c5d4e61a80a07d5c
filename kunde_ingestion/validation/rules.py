"""
Validation rules -- closed registry keyed by ``ValidationType``.

Contract:
    ``VALIDATORS[type](field_name, value, rule, ctx) -> ValidationIssue | None``.
    One rule evaluation yields zero or one issue at the rule's configured
    severity.  Every rule except ``required`` passes on an empty value.

    ``unique`` and ``unique_in_batch`` read a ``RuleContext`` prepared by
    the validator before rows are evaluated, so a row's result never depends
    on which worker evaluated which other row.

ZERO I/O.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Mapping

from kunde_ingestion.domain.mapping_config import ValidationRule
from kunde_ingestion.domain.types import ErrorCode, ValidationIssue, ValidationType

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
POSTNUMMER_RE = re.compile(r"^\d{4}$")
ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_NON_DIGIT = re.compile(r"\D")


@dataclass(frozen=True)
class RuleContext:
    """Batch-wide facts a row-level rule may need."""

    row_number: int = 0
    source_column: str | None = None
    # field -> normalized value -> first row number carrying it
    first_seen: Mapping[str, Mapping[str, int]] = field(default_factory=dict)
    # field -> normalized values already present in the entity store
    existing_values: Mapping[str, frozenset[str]] = field(default_factory=dict)


Validator = Callable[[str, Any, ValidationRule, RuleContext], "ValidationIssue | None"]


def text_of(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def normalize_for_uniqueness(value: Any) -> str:
    return " ".join(text_of(value).lower().split())


def _issue(
    rule: ValidationRule,
    ctx: RuleContext,
    code: ErrorCode,
    field_name: str,
    message: str,
    actual: str | None = None,
    expected: str | None = None,
    suggestion: str | None = None,
) -> ValidationIssue:
    return ValidationIssue(
        severity=rule.severity,
        code=code,
        message=rule.message or message,
        field_name=field_name,
        source_column=ctx.source_column,
        expected_format=expected,
        actual_value=actual,
        suggestion=suggestion,
    )


def _parse_float(text: str) -> float | None:
    try:
        return float(text.replace(" ", "").replace(",", "."))
    except ValueError:
        return None


# -----------------------------------------------------------------------------
# Rule implementations
# -----------------------------------------------------------------------------


def check_required(name: str, value: Any, rule: ValidationRule, ctx: RuleContext):
    if not text_of(value):
        return _issue(rule, ctx, ErrorCode.REQUIRED_FIELD_MISSING, name, f"{name} er påkrevd")
    return None


def check_min_length(name: str, value: Any, rule: ValidationRule, ctx: RuleContext):
    text = text_of(value)
    minimum = int(rule.params.get("min") or 0)
    if text and len(text) < minimum:
        return _issue(
            rule, ctx, ErrorCode.INVALID_FORMAT, name,
            f"{name} må være minst {minimum} tegn", actual=text,
        )
    return None


def check_max_length(name: str, value: Any, rule: ValidationRule, ctx: RuleContext):
    text = text_of(value)
    maximum = rule.params.get("max")
    if text and maximum is not None and len(text) > int(maximum):
        return _issue(
            rule, ctx, ErrorCode.INVALID_FORMAT, name,
            f"{name} kan ikke være mer enn {maximum} tegn", actual=text,
        )
    return None


def check_pattern(name: str, value: Any, rule: ValidationRule, ctx: RuleContext):
    text = text_of(value)
    pattern = rule.params.get("pattern")
    if not text or not pattern:
        return None
    try:
        matched = re.search(pattern, text) is not None
    except re.error:
        matched = False
    if not matched:
        return _issue(
            rule, ctx, ErrorCode.INVALID_FORMAT, name,
            f"{name} har ugyldig format", actual=text, expected=str(pattern),
        )
    return None


def check_email(name: str, value: Any, rule: ValidationRule, ctx: RuleContext):
    text = text_of(value)
    if text and not EMAIL_RE.match(text):
        return _issue(
            rule, ctx, ErrorCode.INVALID_EMAIL, name,
            "Ugyldig e-postformat", actual=text, expected="bruker@domene.no",
        )
    return None


def phone_digits(value: Any) -> str:
    digits = _NON_DIGIT.sub("", text_of(value))
    if digits.startswith("0047"):
        digits = digits[4:]
    elif digits.startswith("47") and len(digits) == 10:
        digits = digits[2:]
    return digits


def check_phone(name: str, value: Any, rule: ValidationRule, ctx: RuleContext):
    text = text_of(value)
    if text and len(phone_digits(text)) != 8:
        return _issue(
            rule, ctx, ErrorCode.INVALID_PHONE, name,
            "Telefonnummer må ha 8 siffer", actual=text, expected="XX XX XX XX",
        )
    return None


def check_postnummer(name: str, value: Any, rule: ValidationRule, ctx: RuleContext):
    text = text_of(value)
    if text and not POSTNUMMER_RE.match(text):
        return _issue(
            rule, ctx, ErrorCode.INVALID_POSTNUMMER, name,
            "Postnummer må være 4 siffer", actual=text, expected="0000",
        )
    return None


def to_date(text: str) -> date | None:
    if not ISO_DATE_RE.match(text):
        return None
    try:
        return date.fromisoformat(text)
    except ValueError:
        return None


def check_date(name: str, value: Any, rule: ValidationRule, ctx: RuleContext):
    text = text_of(value)
    if text and to_date(text) is None:
        return _issue(
            rule, ctx, ErrorCode.INVALID_DATE, name,
            "Ugyldig datoformat (forventet YYYY-MM-DD)", actual=text, expected="YYYY-MM-DD",
        )
    return None


def check_date_range(name: str, value: Any, rule: ValidationRule, ctx: RuleContext):
    text = text_of(value)
    if not text:
        return None
    parsed = to_date(text)
    if parsed is None:
        return _issue(
            rule, ctx, ErrorCode.INVALID_DATE, name,
            "Ugyldig datoformat (forventet YYYY-MM-DD)", actual=text, expected="YYYY-MM-DD",
        )
    low = to_date(str(rule.params.get("min") or ""))
    high = to_date(str(rule.params.get("max") or ""))
    if (low and parsed < low) or (high and parsed > high):
        return _issue(
            rule, ctx, ErrorCode.VALUE_OUT_OF_RANGE, name,
            f"Datoen må være mellom {low or '-'} og {high or '-'}", actual=text,
        )
    return None


def check_number(name: str, value: Any, rule: ValidationRule, ctx: RuleContext):
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return None
    text = text_of(value)
    if text and _parse_float(text) is None:
        return _issue(rule, ctx, ErrorCode.INVALID_NUMBER, name, "Ugyldig tallformat", actual=text)
    return None


def check_integer(name: str, value: Any, rule: ValidationRule, ctx: RuleContext):
    if isinstance(value, int) and not isinstance(value, bool):
        return None
    text = text_of(value)
    if not text:
        return None
    number = _parse_float(text)
    if number is None:
        return _issue(rule, ctx, ErrorCode.INVALID_NUMBER, name, "Ugyldig tallformat", actual=text)
    if not number.is_integer():
        return _issue(rule, ctx, ErrorCode.INVALID_NUMBER, name, "Må være et heltall", actual=text)
    return None


def check_range(name: str, value: Any, rule: ValidationRule, ctx: RuleContext):
    text = text_of(value)
    number = _parse_float(text) if text else None
    if number is None:
        return None
    low, high = rule.params.get("min"), rule.params.get("max")
    if (low is not None and number < float(low)) or (high is not None and number > float(high)):
        return _issue(
            rule, ctx, ErrorCode.VALUE_OUT_OF_RANGE, name,
            f"Verdien må være mellom {'-∞' if low is None else low} og {'∞' if high is None else high}",
            actual=text,
        )
    return None


def check_enum(name: str, value: Any, rule: ValidationRule, ctx: RuleContext):
    text = text_of(value)
    allowed = rule.params.get("values") or ()
    if not text or not allowed:
        return None
    if text.lower() not in {str(v).lower() for v in allowed}:
        return _issue(
            rule, ctx, ErrorCode.INVALID_FORMAT, name,
            f"Ugyldig verdi. Gyldige verdier: {', '.join(str(v) for v in allowed)}",
            actual=text,
        )
    return None


def check_unique(name: str, value: Any, rule: ValidationRule, ctx: RuleContext):
    key = normalize_for_uniqueness(value)
    if key and key in ctx.existing_values.get(name, frozenset()):
        return _issue(
            rule, ctx, ErrorCode.DUPLICATE_ENTRY, name,
            f"{name} finnes allerede", actual=text_of(value),
        )
    return None


def check_unique_in_batch(name: str, value: Any, rule: ValidationRule, ctx: RuleContext):
    key = normalize_for_uniqueness(value)
    if not key:
        return None
    first = ctx.first_seen.get(name, {}).get(key)
    if first is not None and first < ctx.row_number:
        return _issue(
            rule, ctx, ErrorCode.DUPLICATE_IN_BATCH, name,
            f"{name} er allerede brukt i rad {first}", actual=text_of(value),
            suggestion=f"Duplikat av rad {first}",
        )
    return None


VALIDATORS: dict[ValidationType, Validator] = {
    ValidationType.REQUIRED: check_required,
    ValidationType.MIN_LENGTH: check_min_length,
    ValidationType.MAX_LENGTH: check_max_length,
    ValidationType.PATTERN: check_pattern,
    ValidationType.EMAIL: check_email,
    ValidationType.PHONE: check_phone,
    ValidationType.POSTNUMMER: check_postnummer,
    ValidationType.DATE: check_date,
    ValidationType.DATE_RANGE: check_date_range,
    ValidationType.NUMBER: check_number,
    ValidationType.INTEGER: check_integer,
    ValidationType.RANGE: check_range,
    ValidationType.ENUM: check_enum,
    ValidationType.UNIQUE: check_unique,
    ValidationType.UNIQUE_IN_BATCH: check_unique_in_batch,
}

assert set(VALIDATORS) == set(ValidationType), "every ValidationType needs a validator"


# -----------------------------------------------------------------------------
# Parameter checks (run when a mapping config is applied)
# -----------------------------------------------------------------------------


def _is_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return True
    return isinstance(value, str) and _parse_float(value) is not None


def _is_length(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def _length_params(rule: ValidationRule, key: str) -> list[str]:
    value = rule.params.get(key)
    if value is None:
        return [f"{rule.type.value}: missing parameter '{key}'"]
    if not _is_length(value):
        return [f"{rule.type.value}: '{key}' must be a non-negative integer, got {value!r}"]
    return []


def _bounds_params(rule: ValidationRule, accepts: Callable[[Any], bool], kind: str) -> list[str]:
    problems = []
    for key in ("min", "max"):
        value = rule.params.get(key)
        if value is not None and not accepts(value):
            problems.append(f"{rule.type.value}: '{key}' must be {kind}, got {value!r}")
    return problems


def _pattern_params(rule: ValidationRule) -> list[str]:
    pattern = rule.params.get("pattern")
    if not isinstance(pattern, str) or not pattern:
        return [f"pattern: 'pattern' must be a non-empty string, got {pattern!r}"]
    try:
        re.compile(pattern)
    except re.error as exc:
        return [f"pattern: invalid regular expression {pattern!r}: {exc}"]
    return []


def _enum_params(rule: ValidationRule) -> list[str]:
    values = rule.params.get("values")
    if not isinstance(values, (list, tuple)) or not values:
        return [f"enum: 'values' must be a non-empty list, got {values!r}"]
    return []


PARAM_CHECKS: dict[ValidationType, Callable[[ValidationRule], list[str]]] = {
    ValidationType.MIN_LENGTH: lambda r: _length_params(r, "min"),
    ValidationType.MAX_LENGTH: lambda r: _length_params(r, "max"),
    ValidationType.RANGE: lambda r: _bounds_params(r, _is_number, "a number"),
    ValidationType.DATE_RANGE: lambda r: _bounds_params(
        r, lambda v: isinstance(v, str) and to_date(v) is not None, "an ISO date"
    ),
    ValidationType.PATTERN: _pattern_params,
    ValidationType.ENUM: _enum_params,
}


def rule_param_problems(field_name: str, rule: ValidationRule) -> list[str]:
    """Problems with a rule's parameters; empty when the rule can be evaluated."""
    check = PARAM_CHECKS.get(rule.type)
    if check is None:
        return []
    return [f"{field_name}: {problem}" for problem in check(rule)]


def evaluate_rule(
    field_name: str, value: Any, rule: ValidationRule, ctx: RuleContext
) -> ValidationIssue | None:
    return VALIDATORS[rule.type](field_name, value, rule, ctx)
