"""Upload period key parsing and display labels."""
from datetime import date

import pytest

from keyscope.schemas import KeywordType, PeriodDisplayType
from keyscope.services.periods import (
    PeriodGranularity, UploadPeriod, format_period, parse_date_range,
)


class TestUploadPeriodParse:
    """UploadPeriod.parse over every supported key shape."""

    @pytest.mark.parametrize("raw,granularity,parts", [
        ("20250714", PeriodGranularity.day, (2025, 7, 14)),
        ("2025-07-14", PeriodGranularity.day, (2025, 7, 14)),
        ("2025-07", PeriodGranularity.month, (2025, 7, None)),
        ("202507", PeriodGranularity.month, (2025, 7, None)),
        ("RK-202507", PeriodGranularity.month, (2025, 7, None)),
    ])
    def test_known_shapes(self, raw, granularity, parts):
        period = UploadPeriod.parse(raw)
        assert period.granularity == granularity
        assert (period.year, period.month, period.day) == parts
        assert period.raw == raw

    @pytest.mark.parametrize("raw", ["2025-13", "20250230", "RK-202500", "spring-sale", "", None])
    def test_malformed_keys_never_raise(self, raw):
        period = UploadPeriod.parse(raw)
        assert period.granularity == PeriodGranularity.unknown
        assert not period.is_known

    def test_date_bounds(self):
        assert UploadPeriod.parse("20250714").date_bounds() == (date(2025, 7, 14), date(2025, 7, 20))
        assert UploadPeriod.parse("2025-02").date_bounds() == (date(2025, 2, 1), date(2025, 2, 28))
        assert UploadPeriod.parse("nope").date_bounds() == (None, None)


class TestParseDateRange:
    """The "Date" column of keyword exports."""

    def test_export_range(self):
        assert parse_date_range("May 01, 2025 - May 31, 2025") == (date(2025, 5, 1), date(2025, 5, 31))

    def test_unreadable_values(self):
        assert parse_date_range(None) is None
        assert parse_date_range("May 2025") is None
        assert parse_date_range("soon - later") is None
        assert parse_date_range("May 31, 2025 - May 01, 2025") is None


class TestFormatPeriod:
    """Labels per keyword type."""

    def test_hpk_week(self):
        formatted = format_period("20250714", KeywordType.hpk)
        assert formatted.label == "Week starting July 14, 2025"
        assert formatted.type == PeriodDisplayType.week
        assert formatted.value == "20250714"

    def test_hpk_dashed_day_and_month(self):
        assert format_period("2025-07-14", KeywordType.hpk).label == "Week starting July 14, 2025"
        assert format_period("2025-07", KeywordType.hpk).label == "July 2025 (Weekly Data)"

    def test_hpk_unknown_uses_raw(self):
        assert format_period("batch-7", KeywordType.hpk).label == "batch-7"

    def test_rk_month_with_count(self):
        formatted = format_period("RK-202507", KeywordType.rk, 1234)
        assert formatted.label == "July 2025 (1,234 keywords)"
        assert formatted.type == PeriodDisplayType.month

    def test_rk_unknown_key_keeps_count(self):
        assert format_period("RK-2025", KeywordType.rk, 12).label == "RK-2025 (12 keywords)"

    def test_regular_month(self):
        formatted = format_period("2025-05", KeywordType.regular)
        assert formatted.label == "May 2025"
        assert formatted.type == PeriodDisplayType.month

    def test_regular_first_of_month_is_monthly(self):
        formatted = format_period("2025-05-01", KeywordType.regular)
        assert formatted.label == "May 2025"
        assert formatted.type == PeriodDisplayType.month

    def test_regular_mid_month_day_is_weekly(self):
        formatted = format_period("20250514", KeywordType.regular)
        assert formatted.label == "Week of May 14, 2025"
        assert formatted.type == PeriodDisplayType.week

    def test_invalid_month_falls_back_to_raw(self):
        formatted = format_period("2025-13", KeywordType.regular)
        assert formatted.label == "2025-13"
        assert formatted.type == PeriodDisplayType.month
