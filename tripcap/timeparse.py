# tripcap/timeparse.py
from __future__ import annotations
import re
from datetime import date, timedelta
from typing import Iterator, Tuple
from dateutil import parser as du

_HHMM = re.compile(r"^(\d{1,2}):?(\d{2})(?::\d{2})?$")
WEEKDAY_KEYS = ["mon", "tue", "wed", "thu", "fri", "sat", "sun"]


def parse_date(d) -> date:
    if isinstance(d, date):
        return d
    s = str(d).strip()
    try:
        return date.fromisoformat(s)
    except ValueError:
        pass
    # UK style input ("02/09/2025")
    return du.parse(s, dayfirst=True).date()


def parse_time(t) -> Tuple[int, int]:
    if t is None:
        raise ValueError("time is required")
    s = str(t).strip()
    if s.isdigit():
        hh, mm = (int(s), 0) if len(s) <= 2 else (int(s[:-2]), int(s[-2:]))
    else:
        m = _HHMM.match(s)
        if m:
            hh, mm = int(m.group(1)), int(m.group(2))
        else:
            dt = du.parse(s)
            hh, mm = dt.hour, dt.minute
    if not (0 <= hh <= 23 and 0 <= mm <= 59):
        raise ValueError(f"time out of range: {t!r}")
    return hh, mm


def minutes_of_day(t) -> int:
    hh, mm = parse_time(t)
    return hh * 60 + mm


def format_hhmm(minutes: float) -> str:
    """Minutes since midnight -> "HH:MM". Values past midnight wrap."""
    total = int(round(minutes)) % (24 * 60)
    return f"{total // 60:02d}:{total % 60:02d}"


def weekday_key(d) -> str:
    return WEEKDAY_KEYS[parse_date(d).weekday()]


def iter_dates(start: date, end: date) -> Iterator[date]:
    cur = start
    while cur <= end:
        yield cur
        cur += timedelta(days=1)
