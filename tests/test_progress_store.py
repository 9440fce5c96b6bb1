"""Tests for logic/progress_store — reads, conditional writes and retries."""

from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import OperationalError

import logic.progress_store as store_mod
from logic.progress_store import (
    ProgressConflictError,
    ProgressStoreError,
    apply_progress,
    get_progress,
    leaderboard,
)
from models.user_progress import UserProgress

DAY1 = datetime(2024, 1, 1, 9, tzinfo=timezone.utc)


class TestReadWrite:
    def test_missing_user_reads_as_initial(self, db):
        snap = get_progress(db, "nobody")
        assert (snap.xp, snap.level, snap.streak, snap.last_active_date) == (0, 1, 0, None)

    def test_first_action_creates_row(self, db):
        row = apply_progress(db, "anna", DAY1, 50)
        assert (row.xp, row.level, row.streak) == (50, 1, 1)
        assert row.last_active_date == date(2024, 1, 1)
        assert row.sessions_completed == 0
        assert row.badges == []

    def test_consecutive_days_and_gap(self, db):
        apply_progress(db, "anna", DAY1, 50)
        row = apply_progress(db, "anna", DAY1 + timedelta(days=1), 10)
        assert (row.xp, row.streak) == (60, 2)
        row = apply_progress(db, "anna", DAY1 + timedelta(days=4), 0)
        assert (row.xp, row.streak, row.last_active_date) == (60, 1, date(2024, 1, 5))

    def test_callable_award_sees_stored_state(self, db):
        seen = []

        def award(previous, now):
            seen.append(previous.xp)
            return 5

        apply_progress(db, "anna", DAY1, 40)
        row = apply_progress(db, "anna", DAY1, award)
        assert seen == [40]
        assert row.xp == 45

    def test_session_counter_and_badges(self, db):
        row = apply_progress(db, "anna", DAY1, 0, session_completed=True)
        assert row.sessions_completed == 1
        assert row.badges == ["First Session"]
        for day in range(1, 3):
            row = apply_progress(db, "anna", DAY1 + timedelta(days=day), 0)
        assert row.streak == 3
        assert row.badges == ["First Session", "3-Day Streak"]

    def test_badges_survive_streak_reset(self, db):
        for day in range(3):
            apply_progress(db, "anna", DAY1 + timedelta(days=day), 0)
        row = apply_progress(db, "anna", DAY1 + timedelta(days=10), 0)
        assert row.streak == 1
        assert "3-Day Streak" in row.badges

    def test_leaderboard_order(self, db):
        apply_progress(db, "b", DAY1, 300)
        apply_progress(db, "a", DAY1, 300)
        apply_progress(db, "c", DAY1, 900)
        apply_progress(db, "d", DAY1, 10)
        rows = leaderboard(db, limit=3)
        assert [r.user_id for r in rows] == ["c", "a", "b"]


class TestConflicts:
    def _bump(self, session_factory, user_id, xp):
        other = session_factory()
        try:
            row = other.query(UserProgress).filter_by(user_id=user_id).one()
            row.xp += xp
            row.updated_at = row.updated_at + timedelta(seconds=1)
            other.commit()
        finally:
            other.close()

    def test_concurrent_write_is_retried_not_lost(self, db, session_factory):
        apply_progress(db, "anna", DAY1, 100)
        calls = []

        def award(previous, now):
            calls.append(previous.xp)
            if len(calls) == 1:
                # another request lands between our read and write
                self._bump(session_factory, "anna", 7)
            return 20

        row = apply_progress(db, "anna", DAY1 + timedelta(hours=1), award)
        assert calls == [100, 107]
        assert row.xp == 127

    def test_concurrent_first_insert_is_retried(self, db, session_factory):
        calls = []

        def award(previous, now):
            calls.append(previous.xp)
            if len(calls) == 1:
                other = session_factory()
                other.add(UserProgress(user_id="new", xp=30, level=1, streak=1,
                                       last_active_date=date(2024, 1, 1), sessions_completed=0,
                                       badges=[], updated_at=DAY1))
                other.commit()
                other.close()
            return 10

        row = apply_progress(db, "new", DAY1 + timedelta(hours=2), award)
        assert calls == [0, 30]
        assert row.xp == 40

    def test_gives_up_after_max_retries(self, db, session_factory, monkeypatch):
        monkeypatch.setattr(store_mod, "PROGRESS_MAX_RETRIES", 2)
        apply_progress(db, "anna", DAY1, 0)

        def award(previous, now):
            self._bump(session_factory, "anna", 1)
            return 5

        with pytest.raises(ProgressConflictError):
            apply_progress(db, "anna", DAY1 + timedelta(hours=1), award)

    def test_database_error_is_fatal(self, db, monkeypatch):
        def broken(*args, **kwargs):
            raise OperationalError("SELECT", {}, Exception("db down"))

        monkeypatch.setattr(db, "query", broken)
        with pytest.raises(ProgressStoreError) as excinfo:
            apply_progress(db, "anna", DAY1, 5)
        assert not isinstance(excinfo.value, ProgressConflictError)
