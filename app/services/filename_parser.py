"""Publication filename parsing.

Uploaded publications follow the ``NAME-YYYY-MM-DD[NNNN].ext`` convention,
where the optional ``NNNN`` suffix on the day segment is the page number,
e.g. ``report-2023-07-220005.pdf``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date

DEFAULT_NAME = "unknown"
MIN_YEAR = 1900
DAY_PAGE_RE = re.compile(r"^(\d{2})(\d*)$")


@dataclass(frozen=True)
class ParsedFilename:
    name: str
    year: int | None = None
    month: int | None = None
    day: int | None = None
    page: int | None = None


def strip_extension(filename: str) -> str:
    """Return the base name of ``filename`` without directory or extension."""
    base = re.split(r"[\\/]", filename)[-1]
    dot = base.rfind(".")
    if dot == -1:
        return base
    return base[:dot]


def _parse_int(value: str | None) -> int | None:
    if value is None:
        return None
    value = value.strip()
    if not value or not value.isascii() or not value.isdigit():
        return None
    return int(value)


def max_year(today: date | None = None) -> int:
    """Latest accepted publication year."""
    return (today or date.today()).year + 1


def _in_range(value: int | None, low: int, high: int | None = None) -> int | None:
    if value is None or value < low:
        return None
    if high is not None and value > high:
        return None
    return value


def parse_filename(filename: str) -> ParsedFilename:
    """Extract name, date and page metadata from a publication filename.

    Never raises. Segments that are not plain non-negative integers, zero
    values and out-of-range years, months or days are reported as absent
    rather than coerced to zero. Years must fall in the same window the
    upload form accepts.
    """
    parts = strip_extension(filename).split("-")
    name = parts[0] or DEFAULT_NAME
    if len(parts) < 4:
        return ParsedFilename(name=name)

    year = _in_range(_parse_int(parts[1]), MIN_YEAR, max_year())
    month = _in_range(_parse_int(parts[2]), 1, 12)

    day_part = parts[3]
    match = DAY_PAGE_RE.match(day_part)
    if match:
        day = int(match.group(1))
        page = int(match.group(2)) if match.group(2) else None
    else:
        day = _parse_int(day_part)
        page = None

    return ParsedFilename(
        name=name,
        year=year,
        month=month,
        day=_in_range(day, 1, 31),
        page=_in_range(page, 1),
    )
