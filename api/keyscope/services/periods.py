"""
Upload period keys.

Period keys are opaque partition keys everywhere except here. Supported
shapes:
  - "20250714"    one week, identified by its start day
  - "2025-07-14"  same, dashed
  - "2025-07"     one month
  - "202507"      one month, compact
  - "RK-202507"   one month of rising keywords
Anything else (including impossible dates such as "2025-13") parses to an
UNKNOWN period and is displayed as the raw key.
"""
import calendar
import re
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Optional, Tuple

import structlog
from dateutil import parser as date_parser

from keyscope.schemas import FormattedPeriod, KeywordType, PeriodDisplayType

logger = structlog.get_logger()

MONTH_NAMES = [
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
]

_DAY_COMPACT = re.compile(r"^(\d{4})(\d{2})(\d{2})$")
_DAY_DASHED = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
_MONTH_DASHED = re.compile(r"^(\d{4})-(\d{2})$")
_MONTH_COMPACT = re.compile(r"^(\d{4})(\d{2})$")
_MONTH_RISING = re.compile(r"^RK-(\d{4})(\d{2})$")


class PeriodGranularity(str, Enum):
    day = "day"
    month = "month"
    unknown = "unknown"


@dataclass(frozen=True)
class UploadPeriod:
    raw: str
    granularity: PeriodGranularity
    year: Optional[int] = None
    month: Optional[int] = None
    day: Optional[int] = None

    @classmethod
    def parse(cls, raw: str) -> "UploadPeriod":
        """Parse a period key. Never raises; unrecognised keys are UNKNOWN."""
        key = (raw or "").strip()
        for pattern in (_DAY_COMPACT, _DAY_DASHED):
            m = pattern.match(key)
            if m:
                y, mo, d = (int(g) for g in m.groups())
                try:
                    date(y, mo, d)
                except ValueError:
                    break
                return cls(raw, PeriodGranularity.day, y, mo, d)
        else:
            for pattern in (_MONTH_RISING, _MONTH_DASHED, _MONTH_COMPACT):
                m = pattern.match(key)
                if m:
                    y, mo = (int(g) for g in m.groups())
                    if 1 <= mo <= 12:
                        return cls(raw, PeriodGranularity.month, y, mo)
                    break
        return cls(raw, PeriodGranularity.unknown)

    @property
    def is_known(self) -> bool:
        return self.granularity != PeriodGranularity.unknown

    @property
    def month_name(self) -> Optional[str]:
        return MONTH_NAMES[self.month - 1] if self.month else None

    def date_bounds(self) -> Tuple[Optional[date], Optional[date]]:
        """Observation window implied by the key: a week for days, the calendar month otherwise."""
        if self.granularity == PeriodGranularity.day:
            start = date(self.year, self.month, self.day)
            return start, date.fromordinal(start.toordinal() + 6)
        if self.granularity == PeriodGranularity.month:
            last_day = calendar.monthrange(self.year, self.month)[1]
            return date(self.year, self.month, 1), date(self.year, self.month, last_day)
        return None, None


def parse_date_range(value) -> Optional[Tuple[date, date]]:
    """Parse an export "Date" cell such as "May 01, 2025 - May 31, 2025".

    Returns None when the cell is empty or cannot be read.
    """
    if value is None:
        return None
    text = str(value).strip()
    if " - " not in text:
        return None
    start_str, end_str = text.split(" - ", 1)
    try:
        start = date_parser.parse(start_str.strip()).date()
        end = date_parser.parse(end_str.strip()).date()
    except (ValueError, OverflowError):
        return None
    if end < start:
        return None
    return start, end


def _week_label(period: UploadPeriod, prefix: str) -> str:
    return f"{prefix} {period.month_name} {period.day}, {period.year}"


def _month_label(period: UploadPeriod) -> str:
    return f"{period.month_name} {period.year}"


def format_period(raw: str, keyword_type: KeywordType, keyword_count: Optional[int] = None) -> FormattedPeriod:
    """Human label for a period key, per keyword type."""
    period = UploadPeriod.parse(raw)
    if not period.is_known:
        logger.debug("periods: unrecognised key, using raw value", period=raw)

    if keyword_type == KeywordType.hpk:
        if period.granularity == PeriodGranularity.day:
            label = _week_label(period, "Week starting")
        elif period.granularity == PeriodGranularity.month:
            label = f"{_month_label(period)} (Weekly Data)"
        else:
            label = raw
        return FormattedPeriod(value=raw, label=label, type=PeriodDisplayType.week)

    if keyword_type == KeywordType.rk:
        base = _month_label(period) if period.granularity == PeriodGranularity.month else raw
        label = f"{base} ({keyword_count:,} keywords)" if keyword_count is not None else base
        return FormattedPeriod(value=raw, label=label, type=PeriodDisplayType.month)

    # Regular exports are monthly; a day key that isn't the 1st is real weekly data
    if period.granularity == PeriodGranularity.month or (
        period.granularity == PeriodGranularity.day and period.day == 1
    ):
        return FormattedPeriod(value=raw, label=_month_label(period), type=PeriodDisplayType.month)
    if period.granularity == PeriodGranularity.day:
        return FormattedPeriod(
            value=raw, label=_week_label(period, "Week of"), type=PeriodDisplayType.week
        )
    return FormattedPeriod(value=raw, label=raw, type=PeriodDisplayType.month)
