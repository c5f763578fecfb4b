"""Upload period replace/delete/list over SQLite."""
from datetime import date, datetime
from unittest.mock import patch

import pytest
from sqlalchemy import select, func
from sqlalchemy.exc import OperationalError

from keyscope.models import Category, KeywordRecord
from keyscope.schemas import KeywordType, PeriodDisplayType
from keyscope.services import uploads
from keyscope.services.uploads import (
    CategoryResolver, category_slug, delete_period, list_formatted_periods, list_periods,
    list_upload_batches, replace_period, validate_row,
)


def active_rows(session, period, is_hpk=False, is_rk=False):
    return session.execute(
        select(KeywordRecord).where(
            KeywordRecord.upload_period == period,
            KeywordRecord.is_hpk == is_hpk,
            KeywordRecord.is_rk == is_rk,
            KeywordRecord.is_active == True,
        ).order_by(KeywordRecord.id)
    ).scalars().all()


ROW_A = {"keyword": "chef knife", "search_volume": "1,200", "category": "Home", "sub_category_1": "Kitchen"}
ROW_B = {"keyword": "spatula", "search_volume": 300, "category": "Home"}
ROW_C = {"keyword": "whisk", "search_volume": 90, "category": "Home", "average_price": "$4.50"}


class TestValidateRow:
    def test_partition_comes_from_the_call(self):
        values = validate_row(
            {"keyword": "x", "upload_period": "1999-01", "is_hpk": True}, "RK-202507", KeywordType.rk
        )
        assert values["upload_period"] == "RK-202507"
        assert (values["is_hpk"], values["is_rk"], values["is_active"]) == (False, True, True)

    def test_dates_from_export_range(self):
        values = validate_row({"keyword": "x", "date": "May 01, 2025 - May 31, 2025"}, "2025-05", KeywordType.regular)
        assert (values["start_date"], values["end_date"]) == (date(2025, 5, 1), date(2025, 5, 31))

    def test_dates_fall_back_to_period_key(self):
        values = validate_row({"keyword": "x"}, "20250714", KeywordType.hpk)
        assert (values["start_date"], values["end_date"]) == (date(2025, 7, 14), date(2025, 7, 20))

    def test_rank_kept_for_rising_only(self):
        assert validate_row({"keyword": "x", "rank": "4"}, "RK-202507", KeywordType.rk)["rank"] == 4
        assert validate_row({"keyword": "x", "rank": "4"}, "2025-07", KeywordType.regular)["rank"] is None

    @pytest.mark.parametrize("raw,reason", [
        ({"keyword": "  "}, "keyword is required"),
        ({"keyword": "x", "search_volume": "lots"}, "search_volume"),
        ({"keyword": "x", "available_products": -2}, "available_products"),
        ({"keyword": "x", "ctr_score": "high"}, "ctr_score"),
        ({"keyword": "x", "category": "A", "sub_category_2": "C"}, "sub_category_2"),
        ({"keyword": "x", "search_volume": "3000000000"}, "search_volume: too large"),
        ({"keyword": "x", "category": "A::B"}, "category"),
        ({"keyword": "x", "category": "A", "sub_category_1": "B::C"}, "sub_category_1"),
    ])
    def test_rejections(self, raw, reason):
        with pytest.raises(ValueError, match=reason):
            validate_row(raw, "2025-05", KeywordType.regular)


class TestReplacePeriod:
    def test_second_upload_replaces_first(self, db_session):
        replace_period(db_session, "2025-05", KeywordType.regular, [ROW_A, ROW_B])
        result = replace_period(db_session, "2025-05", KeywordType.regular, [ROW_C])

        assert result.deactivated_count == 2
        assert result.inserted_count == 1
        assert [r.keyword for r in active_rows(db_session, "2025-05")] == ["whisk"]
        inactive = db_session.execute(
            select(KeywordRecord.keyword).where(KeywordRecord.is_active == False)
        ).scalars().all()
        assert sorted(inactive) == ["chef knife", "spatula"]

    def test_idempotent(self, db_session):
        rows = [ROW_A, ROW_B, {"keyword": ""}]
        for _ in range(3):
            result = replace_period(db_session, "2025-05", KeywordType.regular, rows)
        assert result.inserted_count == 2
        assert len(result.errors) == 1
        assert len(active_rows(db_session, "2025-05")) == 2

    def test_other_partitions_untouched(self, db_session, make_keyword):
        make_keyword("hpk row", 1, keyword_type="hpk")
        make_keyword("june row", 1, upload_period="2025-06")
        result = replace_period(db_session, "2025-05", KeywordType.regular, [ROW_A])
        assert result.deactivated_count == 0
        assert len(active_rows(db_session, "2025-05", is_hpk=True)) == 1
        assert len(active_rows(db_session, "2025-06")) == 1

    def test_row_errors_reported_and_rest_inserted(self, db_session):
        rows = [ROW_A, {"keyword": "bad", "search_volume": "many"}, ROW_B]
        result = replace_period(db_session, "2025-05", KeywordType.regular, rows)
        assert result.total_rows == 3
        assert result.inserted_count == 2
        assert [(e.row_index, e.keyword) for e in result.errors] == [(1, "bad")]

    def test_oversized_count_is_a_row_error(self, db_session, make_keyword):
        make_keyword("previous", 1)
        rows = [{"keyword": f"kw{i}", "search_volume": i} for i in range(5)]
        rows.append({"keyword": "huge", "search_volume": "99999999999999999999999"})

        result = replace_period(db_session, "2025-05", KeywordType.regular, rows)

        assert result.inserted_count == 5
        assert result.failed_chunks == []
        (error,) = result.errors
        assert (error.row_index, error.keyword) == (5, "huge")
        assert "too large" in error.reason
        assert [r.keyword for r in active_rows(db_session, "2025-05")] == [f"kw{i}" for i in range(5)]

    def test_replaced_rows_get_new_updated_at(self, db_session, make_keyword):
        old = make_keyword("previous", 1, updated_at=datetime(2020, 1, 1))
        replace_period(db_session, "2025-05", KeywordType.regular, [ROW_A])
        db_session.expire_all()
        assert not old.is_active
        assert old.updated_at > datetime(2020, 1, 1)

    def test_values_are_cleaned(self, db_session):
        replace_period(db_session, "2025-05", KeywordType.regular, [ROW_A, ROW_C])
        knife, whisk = active_rows(db_session, "2025-05")
        assert knife.search_volume == 1200
        assert whisk.average_price == "4.50"

    def test_chunks(self, db_session):
        rows = [{"keyword": f"kw{i}", "search_volume": i} for i in range(7)]
        with patch.object(uploads, "_insert_chunk", wraps=uploads._insert_chunk) as insert:
            result = replace_period(db_session, "2025-05", KeywordType.regular, rows, chunk_size=3)
        assert insert.call_count == 3
        assert result.inserted_count == 7

    def test_failed_chunk_is_isolated(self, db_session):
        rows = [{"keyword": f"kw{i}", "search_volume": i} for i in range(7)]
        real_insert = uploads._insert_chunk
        calls = []

        def flaky(session, chunk):
            calls.append(len(chunk))
            if len(calls) == 2:
                raise OperationalError("INSERT", {}, Exception("connection reset"))
            return real_insert(session, chunk)

        with patch.object(uploads, "_insert_chunk", side_effect=flaky):
            result = replace_period(db_session, "2025-05", KeywordType.regular, rows, chunk_size=3)

        assert result.inserted_count == 4
        (failure,) = result.failed_chunks
        assert (failure.chunk_index, failure.first_row_index, failure.row_count) == (1, 3, 3)
        assert "connection reset" in failure.reason
        assert [r.keyword for r in active_rows(db_session, "2025-05")] == ["kw0", "kw1", "kw2", "kw6"]

    def test_rerun_after_failure_recovers(self, db_session):
        rows = [{"keyword": f"kw{i}"} for i in range(4)]
        with patch.object(uploads, "_insert_chunk", side_effect=OperationalError("INSERT", {}, Exception("x"))):
            replace_period(db_session, "2025-05", KeywordType.regular, rows, chunk_size=2)
        replace_period(db_session, "2025-05", KeywordType.regular, rows, chunk_size=2)
        assert len(active_rows(db_session, "2025-05")) == 4

    def test_never_both_type_flags(self, db_session):
        for kind in KeywordType:
            replace_period(db_session, "2025-05", kind, [ROW_A])
        both = db_session.execute(
            select(func.count()).select_from(KeywordRecord).where(
                KeywordRecord.is_hpk == True, KeywordRecord.is_rk == True
            )
        ).scalar()
        assert both == 0


class TestCategoryResolver:
    def test_creates_once_and_caches(self, db_session):
        resolver = CategoryResolver(db_session)
        first = resolver.resolve("Home & Garden")
        assert resolver.resolve("Home & Garden") == first
        assert resolver.resolve(None) is None
        (category,) = db_session.execute(select(Category)).scalars().all()
        assert category.slug == "home-and-garden"

    def test_reuses_existing_category(self, db_session):
        replace_period(db_session, "2025-05", KeywordType.regular, [ROW_A])
        replace_period(db_session, "2025-06", KeywordType.regular, [ROW_B])
        ids = {r.category_id for r in db_session.execute(select(KeywordRecord)).scalars()}
        assert len(ids) == 1
        assert db_session.execute(select(func.count()).select_from(Category)).scalar() == 1

    def test_slug(self):
        assert category_slug(" Arts & Crafts ") == "arts-and-crafts"


class TestDeletePeriod:
    def test_empty_partition_returns_zero(self, db_session):
        assert delete_period(db_session, "2025-05", KeywordType.rk) == 0

    def test_soft_deletes(self, db_session, make_keyword):
        make_keyword("a", 1, keyword_type="rk", upload_period="RK-202505")
        make_keyword("b", 1, keyword_type="rk", upload_period="RK-202505")
        assert delete_period(db_session, "RK-202505", KeywordType.rk) == 2
        assert active_rows(db_session, "RK-202505", is_rk=True) == []
        assert db_session.execute(select(func.count()).select_from(KeywordRecord)).scalar() == 2

    def test_bumps_updated_at(self, db_session, make_keyword):
        row = make_keyword("a", 1, updated_at=datetime(2020, 1, 1))
        delete_period(db_session, "2025-05", KeywordType.regular)
        db_session.expire_all()
        assert not row.is_active
        assert row.updated_at > datetime(2020, 1, 1)


class TestListings:
    def test_list_periods(self, db_session, make_keyword):
        make_keyword("a", 1, upload_period="2025-05")
        make_keyword("a", 2, upload_period="2025-05")
        make_keyword("b", 1, upload_period="2025-06")
        make_keyword("c", 1, upload_period="20250714", keyword_type="hpk")
        make_keyword("gone", 1, upload_period="2025-04", is_active=False)

        summaries = [(s.period, s.distinct_keyword_count, s.type) for s in list_periods(db_session)]
        assert summaries == [
            ("20250714", 1, KeywordType.hpk),
            ("2025-06", 1, KeywordType.regular),
            ("2025-05", 1, KeywordType.regular),
        ]

    def test_formatted_hpk_period(self, db_session, make_keyword):
        make_keyword("a", 1, upload_period="20250714", keyword_type="hpk")
        (formatted,) = list_formatted_periods(db_session, KeywordType.hpk)
        assert formatted.value == "20250714"
        assert formatted.label == "Week starting July 14, 2025"
        assert formatted.type == PeriodDisplayType.week

    def test_formatted_rk_periods_carry_counts(self, db_session, make_keyword):
        for kw in ("a", "b", "b"):
            make_keyword(kw, 1, upload_period="RK-202507", keyword_type="rk")
        make_keyword("c", 1, upload_period="RK-202506", keyword_type="rk")
        labels = [p.label for p in list_formatted_periods(db_session, "rk")]
        assert labels == ["July 2025 (2 keywords)", "June 2025 (1 keywords)"]

    def test_upload_batches(self, db_session, make_keyword):
        make_keyword("a", 1)
        make_keyword("a", 2)
        make_keyword("b", 1)
        (batch,) = list_upload_batches(db_session)
        assert batch.upload_period == "2025-05"
        assert batch.keyword_type == KeywordType.regular
        assert (batch.total_keywords, batch.unique_keywords) == (3, 2)
        assert batch.first_uploaded is not None
