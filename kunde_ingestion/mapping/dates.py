"""
Date parsing for spreadsheet exports.

Every parser returns an ISO ``YYYY-MM-DD`` string or None.  ``parse_date``
tries the parsers in a fixed priority order:

    1. quarter           "Q2 2023", "Q1/2024", "2. kvartal 2023"
    2. US with hint      "03/25/2024" only when the hint is MM/DD/YYYY
    3. Norwegian         "25.03.2024", "25/3/24" (two-digit year < 50 -> 20xx)
    4. month/year        "03.2024"
    5. month text        "15. mars 2024", "mars 2024", "2024 mars", "09.sep"
    6. ISO               "2024-03-25"
    7. unambiguous US    "03/25/2024" (second part > 12)
    8. Excel serial      45000 (serial 60 is the phantom 1900-02-29)

ZERO I/O.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timedelta
from typing import Any, Iterable

NORWEGIAN_MONTHS: dict[str, int] = {
    "januar": 1, "jan": 1,
    "februar": 2, "feb": 2,
    "mars": 3, "mar": 3,
    "april": 4, "apr": 4,
    "mai": 5,
    "juni": 6, "jun": 6,
    "juli": 7, "jul": 7,
    "august": 8, "aug": 8,
    "september": 9, "sep": 9, "sept": 9,
    "oktober": 10, "okt": 10,
    "november": 11, "nov": 11,
    "desember": 12, "des": 12,
    # English spellings
    "january": 1, "february": 2, "march": 3, "may": 5, "june": 6, "july": 7,
    "october": 10, "december": 12,
}

US_FORMAT = "MM/DD/YYYY"
EXCEL_EPOCH = date(1899, 12, 31)

_QUARTER = re.compile(r"^Q([1-4])\s*[/\s]\s*(\d{4})$", re.IGNORECASE)
_KVARTAL = re.compile(r"^(?:(\d)\.\s*)?kvartal\s*(\d)?\s+(\d{4})$", re.IGNORECASE)
_DMY = re.compile(r"^(\d{1,2})[./-](\d{1,2})[./-](\d{2,4})$")
_US = re.compile(r"^(\d{1,2})[/-](\d{1,2})[/-](\d{2,4})$")
_MONTH_YEAR = re.compile(r"^(\d{1,2})[./-](\d{4})$")
_ISO = re.compile(r"^(\d{4})-(\d{2})-(\d{2})")
_DAY_MONTHNAME_YEAR = re.compile(r"^(\d{1,2})\.?\s+([a-zæøå]+)\.?\s+(\d{4})$")
_MONTHNAME_YEAR = re.compile(r"^([a-zæøå]+)\.?\s+(\d{4})$")
_YEAR_MONTHNAME = re.compile(r"^(\d{4})\s+([a-zæøå]+)\.?$")
_DAY_MONTHNAME = re.compile(r"^(\d{1,2})\.?([a-zæøå]+)$")


def _iso(year: int, month: int, day: int) -> str | None:
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return None


def _expand_year(year: int) -> int:
    if year < 100:
        return year + (2000 if year < 50 else 1900)
    return year


def parse_quarter_date(text: str) -> str | None:
    """First day of the quarter."""
    m = _QUARTER.match(text)
    if m:
        quarter, year = int(m.group(1)), int(m.group(2))
        return _iso(year, (quarter - 1) * 3 + 1, 1)
    m = _KVARTAL.match(text)
    if m:
        quarter = int(m.group(1) or m.group(2) or 0)
        if 1 <= quarter <= 4:
            return _iso(int(m.group(3)), (quarter - 1) * 3 + 1, 1)
    return None


def parse_us_date(text: str) -> str | None:
    """MM/DD/YYYY, only when the day part is unambiguous (> 12)."""
    m = _US.match(text)
    if not m:
        return None
    first, second = int(m.group(1)), int(m.group(2))
    year = _expand_year(int(m.group(3)))
    if second > 12 and 1 <= first <= 12:
        return _iso(year, first, second)
    return None


def parse_norwegian_date(value: Any) -> str | None:
    """DD.MM.YYYY (also ``/`` and ``-``) or MM.YYYY."""
    if not isinstance(value, (str, int, float)) or isinstance(value, bool):
        return None
    text = str(value).strip()
    m = _DMY.match(text)
    if m:
        day, month = int(m.group(1)), int(m.group(2))
        year = _expand_year(int(m.group(3)))
        if 1 <= month <= 12 and 1 <= day <= 31:
            return _iso(year, month, day)
        return None
    m = _MONTH_YEAR.match(text)
    if m:
        month, year = int(m.group(1)), int(m.group(2))
        if 1 <= month <= 12:
            return _iso(year, month, 1)
    return None


def parse_month_text(value: Any, year: int | None = None) -> str | None:
    """
    Norwegian or English month names.

    ``year`` is used only for the day+month form without a year ("09.sep");
    it defaults to the current year.
    """
    if not isinstance(value, str):
        return None
    text = value.strip().lower()
    if not text:
        return None

    m = _DAY_MONTHNAME_YEAR.match(text)
    if m:
        month = NORWEGIAN_MONTHS.get(m.group(2))
        day = int(m.group(1))
        if month and 1 <= day <= 31:
            return _iso(int(m.group(3)), month, day)
        return None

    m = _MONTHNAME_YEAR.match(text)
    if m:
        month = NORWEGIAN_MONTHS.get(m.group(1))
        return _iso(int(m.group(2)), month, 1) if month else None

    m = _YEAR_MONTHNAME.match(text)
    if m:
        month = NORWEGIAN_MONTHS.get(m.group(2))
        return _iso(int(m.group(1)), month, 1) if month else None

    m = _DAY_MONTHNAME.match(text)
    if m:
        month = NORWEGIAN_MONTHS.get(m.group(2))
        day = int(m.group(1))
        if month and 1 <= day <= 31:
            return _iso(year if year is not None else date.today().year, month, day)
    return None


def parse_excel_date(value: Any) -> str | None:
    """Excel serial day number to ISO date (1900 date system)."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        serial = float(value)
    elif isinstance(value, str):
        try:
            serial = float(value.strip().replace(" ", "").replace(",", "."))
        except ValueError:
            return None
    else:
        return None

    if serial < 1 or serial > 100000 or serial == 60:
        return None
    adjusted = serial - 1 if serial > 60 else serial
    result = EXCEL_EPOCH + timedelta(days=int(adjusted))
    if 1900 <= result.year <= 2100:
        return result.isoformat()
    return None


def parse_iso_date(text: str) -> str | None:
    m = _ISO.match(text)
    if not m:
        return None
    return _iso(int(m.group(1)), int(m.group(2)), int(m.group(3)))


def parse_date(value: Any, format_hint: str | None = None) -> str | None:
    """Parse any supported date representation; None when nothing matches."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if not isinstance(value, (str, int, float)):
        return None
    text = str(value).strip()
    if not text:
        return None

    parsed = parse_quarter_date(text)
    if parsed is None and format_hint == US_FORMAT:
        parsed = parse_us_date(text)
    if parsed is None:
        parsed = parse_norwegian_date(text)
    if parsed is None:
        parsed = parse_month_text(text)
    if parsed is None:
        parsed = parse_iso_date(text)
    if parsed is None:
        parsed = parse_us_date(text)
    if parsed is None:
        parsed = parse_excel_date(value)
    return parsed


def is_iso_date(value: Any) -> bool:
    return isinstance(value, str) and parse_iso_date(value) is not None and len(value) == 10


# -----------------------------------------------------------------------------
# Column format detection
# -----------------------------------------------------------------------------


def _classify(text: str) -> tuple[float, float]:
    m = _DMY.match(text)
    if not m:
        return 0.0, 0.0
    first, second = int(m.group(1)), int(m.group(2))
    if first > 12 and second <= 12:
        return 1.0, 0.0
    if second > 12 and first <= 12:
        return 0.0, 1.0
    if "." in m.group(0):
        return 1.0, 0.0
    return 0.5, 0.5


def detect_column_date_format(values: Iterable[Any]) -> str:
    """Dominant date format of a column: DD.MM.YYYY, MM/DD/YYYY, ISO, mixed or unknown."""
    ddmm = mmdd = 0.0
    iso = 0
    for value in values:
        if isinstance(value, bool) or not isinstance(value, (str, int, float)):
            continue
        text = str(value).strip()
        if not text:
            continue
        if _ISO.match(text):
            iso += 1
            continue
        d, m = _classify(text)
        ddmm += d
        mmdd += m

    if iso > ddmm and iso > mmdd:
        return "ISO"
    if ddmm > 0 and mmdd == 0:
        return "DD.MM.YYYY"
    if mmdd > 0 and ddmm == 0:
        return US_FORMAT
    if ddmm > 0 or mmdd > 0:
        return "mixed"
    return "unknown"
