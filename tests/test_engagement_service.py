"""
tests/test_engagement_service.py — Engagement Service Integration Tests
========================================================================

Exercises record_action end-to-end against SQLite: persistence,
idempotency, daily limits, optimistic concurrency and leaderboards.
"""

from __future__ import annotations

import threading
import time
from datetime import UTC, datetime, timedelta
from unittest.mock import patch

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from kudos.database.models import (
    ActivityLog,
    Base,
    GrantSource,
    Level,
    LeaderboardPeriod,
    UserBadge,
    UserProfile,
)
from kudos.engine.catalog import DEFAULT_CATALOG
from kudos.errors import (
    DailyLimitExceeded,
    InvalidActionRequest,
    ServiceUnavailable,
    TransientStorageError,
    UnknownActionType,
)
from kudos.services.engagement_service import EngagementService

T0 = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)


def _count(engine, model) -> int:
    with Session(engine) as session:
        return session.scalar(select(func.count()).select_from(model))


class TestRecordAction:
    def test_first_review_end_to_end(self, service, db_engine):
        outcome = service.record_action("user-1234", "review", T0)

        assert outcome.points_awarded == 30
        assert outcome.new_badges == ["first_review"]
        assert outcome.leveled_up is False
        assert outcome.level is Level.EXPLORER

        profile = service.get_profile("user-1234")
        assert profile.points == 30
        assert profile.stats.reviews == 1
        assert [b.badge_id for b in profile.badges] == ["first_review"]
        assert profile.display_name == "User 1234"
        assert profile.streak.current == profile.streak.longest == 1
        assert profile.joined_at == T0
        assert service.get_user_rank("user-1234") == 1

    def test_journal_rows(self, service, db_engine):
        service.record_action("u1", "review", T0)
        with Session(db_engine) as session:
            rows = session.scalars(select(ActivityLog).order_by(ActivityLog.id)).all()
            assert [(r.source, r.action, r.points_delta) for r in rows] == [
                (GrantSource.ACTION.value, "review", 10),
                (GrantSource.BADGE.value, "first_review", 20),
            ]

    def test_rank_among_existing_users(self, service):
        service.record_action("big", "review", T0, points=500)
        service.record_action("small", "favorite", T0)
        service.record_action("new", "review", T0)
        ranks = {e.user_id: e.rank for e in service.get_leaderboard()}
        assert ranks == {"big": 1, "new": 2, "small": 3}

    def test_display_name_is_kept_up_to_date(self, service):
        service.record_action("u1", "share", T0, display_name="Ada")
        service.record_action("u1", "share", T0, display_name="Ada L.")
        assert service.get_profile("u1").display_name == "Ada L."
        assert service.get_leaderboard()[0].display_name == "Ada L."

    def test_badge_stored_once(self, service, db_engine):
        for i in range(15):
            service.record_action("u1", "review", T0 + timedelta(minutes=i))
        with Session(db_engine) as session:
            ids = session.scalars(
                select(UserBadge.badge_id).where(UserBadge.user_id == "u1")
            ).all()
        assert sorted(ids) == ["first_review", "reviewer_10"]

    def test_streak_across_days_persists(self, service):
        service.record_action("u1", "comment", T0)
        service.record_action("u1", "comment", T0 + timedelta(days=1))
        service.record_action("u1", "comment", T0 + timedelta(days=2))
        profile = service.get_profile("u1")
        assert profile.streak.current == 3
        assert profile.streak.longest == 3

    def test_metadata_is_stored_on_action_row(self, service, db_engine):
        service.record_action("u1", "review", T0, metadata={"place_id": "p-9"})
        with Session(db_engine) as session:
            row = session.scalar(
                select(ActivityLog).where(ActivityLog.source == GrantSource.ACTION.value)
            )
            assert row.metadata_ == {"place_id": "p-9"}


class TestRejections:
    def test_unknown_action_does_not_mutate(self, service, db_engine):
        with pytest.raises(UnknownActionType) as exc_info:
            service.record_action("u1", "teleport", T0)
        assert exc_info.value.details == {"action_type": "teleport"}
        assert _count(db_engine, UserProfile) == 0
        assert _count(db_engine, ActivityLog) == 0

    @pytest.mark.parametrize("user_id", ["", "   "])
    def test_empty_user_id(self, service, user_id):
        with pytest.raises(InvalidActionRequest):
            service.record_action(user_id, "review", T0)

    def test_negative_override(self, service, db_engine):
        with pytest.raises(InvalidActionRequest):
            service.record_action("u1", "review", T0, points=-5)
        assert _count(db_engine, UserProfile) == 0

    def test_safely_swallows_engine_errors(self, service):
        assert service.record_action_safely("u1", "teleport", T0) is None

    def test_safely_returns_outcome(self, service):
        outcome = service.record_action_safely("u1", "review", T0)
        assert outcome is not None and outcome.points_awarded == 30


class TestEventTime:
    def test_far_future_rejected_without_mutation(self, service, db_engine):
        future = datetime.now(UTC) + timedelta(days=2)
        with pytest.raises(InvalidActionRequest) as exc_info:
            service.record_action("alice", "review", future)
        assert "server_time" in exc_info.value.details
        assert _count(db_engine, UserProfile) == 0
        assert service.get_leaderboard(LeaderboardPeriod.DAILY) == []

    def test_future_action_does_not_hide_current_day(self, service):
        with pytest.raises(InvalidActionRequest):
            service.record_action("alice", "review", datetime.now(UTC) + timedelta(days=2))
        service.record_action("bob", "review", datetime.now(UTC))

        daily = service.get_leaderboard(LeaderboardPeriod.DAILY)
        assert [e.user_id for e in daily] == ["bob"]
        assert service.get_user_rank("bob", LeaderboardPeriod.DAILY) == 1

    def test_small_skew_is_clamped_to_now(self, service):
        service.record_action("u1", "comment", datetime.now(UTC) + timedelta(seconds=60))
        after = datetime.now(UTC)

        profile = service.get_profile("u1")
        assert profile.last_active_at <= after
        assert profile.streak.last_activity_at <= after

        service.record_action("u1", "comment")
        assert service.get_profile("u1").stats.comments == 2
        assert service.get_user_rank("u1", LeaderboardPeriod.DAILY) == 1

    def test_skew_is_configurable(self, db_engine, config_factory):
        service = EngagementService(db_engine, config_factory(max_future_skew_seconds=0))
        with pytest.raises(InvalidActionRequest):
            service.record_action("u1", "share", datetime.now(UTC) + timedelta(seconds=30))

    def test_naive_timestamps_are_utc(self, service):
        naive = datetime(2026, 3, 2, 12, 0)
        service.record_action("u1", "share", naive)
        assert service.get_profile("u1").last_active_at == T0


class TestIdempotency:
    def test_duplicate_key_ignored(self, service, db_engine):
        first = service.record_action("u1", "review", T0, idempotency_key="rev-1")
        second = service.record_action("u1", "review", T0, idempotency_key="rev-1")

        assert first.duplicate is False
        assert second.duplicate is True
        assert second.points_awarded == 0
        assert second.total_points == 30
        assert service.get_profile("u1").stats.reviews == 1
        assert service.get_leaderboard()[0].points == 30

    def test_keys_are_per_user(self, service):
        service.record_action("u1", "review", T0, idempotency_key="k")
        outcome = service.record_action("u2", "review", T0, idempotency_key="k")
        assert outcome.duplicate is False

    def test_without_key_retries_double_count(self, service):
        service.record_action("u1", "share", T0)
        service.record_action("u1", "share", T0)
        assert service.get_profile("u1").stats.shares == 2


class TestDailyLimits:
    def test_not_enforced_by_default(self, service):
        for _ in range(5):
            service.record_action("u1", "review", T0)
        assert service.get_profile("u1").stats.reviews == 5

    def test_enforced_when_enabled(self, db_engine, config_factory):
        service = EngagementService(db_engine, config_factory(enforce_daily_limits=True))
        for i in range(3):
            service.record_action("u1", "review", T0 + timedelta(minutes=i))

        with pytest.raises(DailyLimitExceeded) as exc_info:
            service.record_action("u1", "review", T0 + timedelta(minutes=5))
        assert exc_info.value.limit == 3
        assert service.get_profile("u1").stats.reviews == 3

        # Next local day the budget is back
        service.record_action("u1", "review", T0 + timedelta(days=1))
        assert service.get_profile("u1").stats.reviews == 4

    def test_daily_visit_once_per_day(self, db_engine, config_factory):
        service = EngagementService(db_engine, config_factory(enforce_daily_limits=True))
        service.record_action("u1", "dailyVisit", T0)
        with pytest.raises(DailyLimitExceeded):
            service.record_action("u1", "dailyVisit", T0 + timedelta(hours=1))


class TestSpecialEvents:
    def test_launch_for_new_user(self, service):
        outcome = service.signal_special_event("u1", "launch", T0)
        assert outcome.new_badges == ["early_bird"]
        assert outcome.points_awarded == 100
        assert service.get_profile("u1").points == 100
        assert service.get_user_rank("u1") == 1

    def test_repeat_is_noop(self, service):
        service.signal_special_event("u1", "launch", T0)
        outcome = service.signal_special_event("u1", "launch", T0)
        assert outcome.new_badges == []
        assert service.get_profile("u1").points == 100

    def test_unbound_event_writes_nothing(self, service, db_engine):
        outcome = service.signal_special_event("u1", "lanch", T0)
        assert outcome.new_badges == []
        assert outcome.points_awarded == 0
        assert _count(db_engine, UserProfile) == 0
        assert _count(db_engine, ActivityLog) == 0

        service.rebuild_leaderboards()
        assert service.get_user_rank("u1") == 0

    def test_future_event_rejected(self, service, db_engine):
        with pytest.raises(InvalidActionRequest):
            service.signal_special_event("u1", "launch", datetime.now(UTC) + timedelta(days=1))
        assert _count(db_engine, UserProfile) == 0

    def test_empty_event_id(self, service):
        with pytest.raises(InvalidActionRequest):
            service.signal_special_event("u1", " ", T0)


class TestReads:
    def test_unknown_profile_is_zero_state(self, service, db_engine):
        profile = service.get_profile("ghost-9876")
        assert profile.points == 0
        assert profile.level is Level.EXPLORER
        assert profile.badges == []
        assert profile.display_name == "User 9876"
        assert _count(db_engine, UserProfile) == 0

    def test_unranked_user(self, service):
        assert service.get_user_rank("nobody") == 0

    def test_bad_period(self, service):
        with pytest.raises(InvalidActionRequest):
            service.get_leaderboard("yearly")

    def test_bad_limit(self, service):
        with pytest.raises(InvalidActionRequest):
            service.get_leaderboard(LeaderboardPeriod.ALL_TIME, limit=0)

    def test_rebuild_from_storage(self, db_engine, config, service):
        now = datetime.now(UTC)
        service.record_action("a", "review", now)
        service.record_action("b", "share", now)

        fresh = EngagementService(db_engine, config)
        assert fresh.get_leaderboard() == []
        fresh.rebuild_leaderboards()
        assert [e.user_id for e in fresh.get_leaderboard()] == ["a", "b"]
        assert [e.points for e in fresh.get_leaderboard(LeaderboardPeriod.DAILY)] == [30, 3]


class TestConcurrency:
    def test_same_user_threads_serialize(self, tmp_path, config):
        engine = create_engine(
            f"sqlite:///{tmp_path / 'kudos.db'}",
            connect_args={"check_same_thread": False, "timeout": 30},
        )
        Base.metadata.create_all(engine)
        service = EngagementService(engine, config)

        def worker() -> None:
            for _ in range(5):
                service.record_action("u1", "share", T0)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        profile = service.get_profile("u1")
        assert profile.stats.shares == 20
        assert profile.points == 20 * 3
        assert service.get_leaderboard()[0].points == 60

    def test_lock_registry_drops_idle_users(self, service):
        for i in range(50):
            service.record_action(f"user-{i}", "share", T0)
        with pytest.raises(UnknownActionType):
            service.record_action("user-x", "teleport", T0)
        service.signal_special_event("user-y", "launch", T0)
        assert service._locks == {}

    def test_lock_registry_released_on_error(self, service):
        def always_stale(session):
            raise StaleDataError("version mismatch")

        service.record_action("u1", "share", T0)
        with patch.object(Session, "commit", always_stale):
            with pytest.raises(ServiceUnavailable):
                service.record_action("u1", "share", T0)
        assert service._locks == {}

    def test_waiting_callers_share_one_lock(self, service):
        with service._user_lock("u1"):
            slot = service._locks["u1"]
            entered = threading.Event()

            def waiter() -> None:
                with service._user_lock("u1"):
                    entered.set()

            t = threading.Thread(target=waiter)
            t.start()
            # The waiter registers itself on the same slot, then blocks
            for _ in range(200):
                if slot.users == 2:
                    break
                time.sleep(0.005)
            assert slot.users == 2
            assert not entered.is_set()
        t.join(timeout=5)
        assert entered.is_set()
        assert service._locks == {}

    def test_stale_data_is_retried(self, service):
        service.record_action("u1", "share", T0)
        real_commit = Session.commit
        calls = {"n": 0}

        def flaky_commit(session):
            calls["n"] += 1
            if calls["n"] == 1:
                raise StaleDataError("version mismatch")
            return real_commit(session)

        with patch.object(Session, "commit", flaky_commit):
            outcome = service.record_action("u1", "share", T0)

        assert outcome.points_awarded == 3
        assert service.get_profile("u1").stats.shares == 2

    def test_conflicts_exhaust_into_service_unavailable(self, service):
        service.record_action("u1", "share", T0)

        def always_stale(session):
            raise StaleDataError("version mismatch")

        with patch.object(Session, "commit", always_stale):
            with pytest.raises(ServiceUnavailable):
                service.record_action("u1", "share", T0)
        assert service.get_profile("u1").stats.shares == 1

    def test_storage_errors_become_transient_error(self, service):
        def broken_commit(session):
            raise OperationalError("COMMIT", {}, Exception("connection lost"))

        with patch.object(Session, "commit", broken_commit):
            with pytest.raises(TransientStorageError):
                service.record_action("u1", "share", T0)
        assert service.get_profile("u1").points == 0


def test_catalog_path_is_loaded(db_engine, config_factory, tmp_path):
    path = tmp_path / "catalog.yaml"
    path.write_text(
        "version: custom\nactions:\n  - {id: review, base_points: 7}\n",
        encoding="utf-8",
    )
    service = EngagementService(db_engine, config_factory(catalog_path=str(path)))
    assert service.catalog.version == "custom"
    assert service.record_action("u1", "review", T0).points_awarded == 7
    assert DEFAULT_CATALOG.get_action("review").base_points == 10
