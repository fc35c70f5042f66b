"""Shamsi (Jalali) calendar helpers.

Every date persisted by the application is a zero-padded ``jYYYY/jMM/jDD``
string. The helpers below parse the looser spellings users type or import
(``1402-1-5``, Persian digits) into that canonical form, and compare dates by
calendar fields rather than by raw string order.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timedelta, timezone
from typing import Union

import jdatetime


_DIGITS = str.maketrans("۰۱۲۳۴۵۶۷۸۹٠١٢٣٤٥٦٧٨٩", "01234567890123456789")
_DATE_PATTERN = re.compile(r"^(\d{4})[/\-.](\d{1,2})[/\-.](\d{1,2})$")

DateLike = Union[date, datetime, int, float]


def to_latin_digits(text: str) -> str:
    """Replace Persian and Arabic-Indic digits with their ASCII counterparts."""

    return text.translate(_DIGITS)


def parse(text: str) -> jdatetime.date:
    """Parse a Shamsi date string into a :class:`jdatetime.date`.

    Args:
        text (str): Date such as ``"1402/01/05"``, ``"1402-1-5"`` or the same
            value written with Persian digits.

    Returns:
        jdatetime.date: The calendar date.

    Raises:
        ValueError: If ``text`` is not a recognisable or valid Shamsi date.
    """

    candidate = to_latin_digits(str(text)).strip()
    match = _DATE_PATTERN.match(candidate)
    if match is None:
        raise ValueError(f"Invalid Shamsi date: {text!r}")
    year, month, day = (int(part) for part in match.groups())
    try:
        return jdatetime.date(year, month, day)
    except ValueError as exc:
        raise ValueError(f"Invalid Shamsi date: {text!r}") from exc


def to_string(value: jdatetime.date) -> str:
    """Render a :class:`jdatetime.date` as ``jYYYY/jMM/jDD``."""

    return f"{value.year:04d}/{value.month:02d}/{value.day:02d}"


def normalize(text: str) -> str:
    """Return the canonical zero-padded spelling of a Shamsi date."""

    return to_string(parse(text))


def is_valid(text: str) -> bool:
    try:
        parse(text)
    except ValueError:
        return False
    return True


def compare(first: str, second: str) -> int:
    """Order two Shamsi dates by year, then month, then day.

    Returns:
        int: ``-1`` when ``first`` precedes ``second``, ``1`` when it follows
            and ``0`` for the same calendar day.
    """

    left = parse(first)
    right = parse(second)
    left_key = (left.year, left.month, left.day)
    right_key = (right.year, right.month, right.day)
    if left_key < right_key:
        return -1
    if left_key > right_key:
        return 1
    return 0


def in_range(value: str, start: str, end: str) -> bool:
    """Return ``True`` when ``value`` lies within ``[start, end]`` inclusive."""

    return compare(start, value) <= 0 and compare(value, end) <= 0


def current_date() -> str:
    return to_string(jdatetime.date.today())


def format_date(value: DateLike) -> str:
    """Convert a Gregorian date, datetime or epoch-millisecond value to Shamsi.

    Epoch values are interpreted in UTC so the output does not depend on the
    host timezone.
    """

    if isinstance(value, (int, float)) and not isinstance(value, bool):
        value = datetime.fromtimestamp(value / 1000, tz=timezone.utc).date()
    if isinstance(value, datetime):
        value = value.date()
    return to_string(jdatetime.date.fromgregorian(date=value))


def to_gregorian(text: str) -> date:
    return parse(text).togregorian()


def from_gregorian(value: date) -> str:
    return format_date(value)


def add_days(text: str, days: int) -> str:
    return to_string(parse(text) + timedelta(days=days))


def days_between(start: str, end: str) -> int:
    """Signed number of days from ``start`` to ``end``."""

    return (to_gregorian(end) - to_gregorian(start)).days


def month_start(text: str) -> str:
    value = parse(text)
    return to_string(jdatetime.date(value.year, value.month, 1))


def month_end(text: str) -> str:
    value = parse(text)
    if value.month == 12:
        following = jdatetime.date(value.year + 1, 1, 1)
    else:
        following = jdatetime.date(value.year, value.month + 1, 1)
    return to_string(following - timedelta(days=1))
