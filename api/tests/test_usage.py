"""Session/activity recording and usage rollups."""
from datetime import datetime
from uuid import uuid4

from keyscope.models import UserActivity, UserSession
from keyscope.services import usage


def add_visit(session, when, user_id=None, email=None):
    session.add(UserSession(start_time=when, user_id=user_id, email=email))
    session.commit()


def add_activity(session, when, activity_type="search"):
    session.add(UserActivity(timestamp=when, activity_type=activity_type))
    session.commit()


NOW = datetime(2025, 7, 16, 12, 0)  # a Wednesday


class TestRecording:
    def test_session_lifecycle(self, db_session):
        visit = usage.start_session(db_session, user_id="u1", email="a@example.com", ip_address="10.0.0.1")
        assert visit.is_active
        ended = usage.end_session(db_session, visit.id)
        assert not ended.is_active
        assert ended.end_time is not None

    def test_end_unknown_session(self, db_session):
        assert usage.end_session(db_session, uuid4()) is None

    def test_track_activity(self, db_session):
        visit = usage.start_session(db_session)
        activity = usage.track_activity(db_session, "export", {"rows": 20}, "u1", visit.id)
        assert activity.session_id == visit.id
        assert activity.activity_data == {"rows": 20}

    def test_unknown_session_is_dropped_from_activity(self, db_session):
        activity = usage.track_activity(db_session, "search", session_id=uuid4())
        assert activity.session_id is None


class TestRollups:
    def test_daily(self, db_session):
        add_visit(db_session, datetime(2025, 7, 16, 9), "u1", "a@example.com")
        add_visit(db_session, datetime(2025, 7, 16, 10), "u1", "a@example.com")
        add_visit(db_session, datetime(2025, 7, 15, 10), "u2", "b@example.com")
        add_activity(db_session, datetime(2025, 7, 16, 9, 30))
        add_activity(db_session, datetime(2025, 7, 14, 9, 30))
        add_visit(db_session, datetime(2025, 5, 1, 10), "old")

        buckets = usage.get_daily_usage_stats(db_session, days=30, now=NOW)
        assert [b.period for b in buckets] == ["2025-07-16", "2025-07-15", "2025-07-14"]
        today = buckets[0]
        assert (today.sessions, today.unique_users, today.activities) == (2, 1, 1)
        assert today.emails == ["a@example.com"]
        assert buckets[2].sessions == 0
        assert buckets[2].activities == 1

    def test_weekly_buckets_start_on_monday(self, db_session):
        add_visit(db_session, datetime(2025, 7, 14, 8), "u1")   # Monday
        add_visit(db_session, datetime(2025, 7, 16, 8), "u2")   # Wednesday, same week
        add_visit(db_session, datetime(2025, 7, 13, 8), "u3")   # Sunday, previous week
        buckets = usage.get_weekly_usage_stats(db_session, weeks=4, now=NOW)
        assert [(b.period, b.sessions, b.unique_users) for b in buckets] == [
            ("2025-07-14", 2, 2),
            ("2025-07-07", 1, 1),
        ]

    def test_monthly(self, db_session):
        add_visit(db_session, datetime(2025, 7, 1), "u1")
        add_visit(db_session, datetime(2025, 6, 30), "u1")
        add_visit(db_session, datetime(2024, 1, 1), "u1")
        buckets = usage.get_monthly_usage_stats(db_session, months=12, now=NOW)
        assert [b.period for b in buckets] == ["2025-07", "2025-06"]

    def test_activity_breakdown(self, db_session):
        for kind in ("search", "search", "export", "login"):
            add_activity(db_session, datetime(2025, 7, 10), kind)
        add_activity(db_session, datetime(2025, 6, 1), "export")

        counts = usage.get_activity_breakdown(db_session, start=datetime(2025, 7, 1))
        assert [(c.activity_type, c.count) for c in counts] == [("search", 2), ("export", 1), ("login", 1)]
        assert sum(c.count for c in usage.get_activity_breakdown(db_session)) == 5
