"""
tests/test_pipeline.py — Pure Action Pipeline
==============================================
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from zoneinfo import ZoneInfo

from kudos.database.models import GrantSource, Level
from kudos.engine.catalog import DEFAULT_CATALOG
from kudos.engine.pipeline import run_action_pipeline, run_special_event_pipeline
from kudos.engine.points import grant_points
from kudos.engine.profile import new_profile

PARIS = ZoneInfo("Europe/Paris")
T0 = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)


def _run(profile, action_id: str, when: datetime = T0, points: int | None = None):
    return run_action_pipeline(
        profile, DEFAULT_CATALOG.get_action(action_id), when, DEFAULT_CATALOG, PARIS, points
    )


class TestRunActionPipeline:
    def test_first_review(self):
        p = new_profile("user-0001", T0)
        outcome = _run(p, "review")
        assert outcome.points_awarded == 30
        assert outcome.new_badges == ["first_review"]
        assert outcome.leveled_up is False
        assert outcome.level is Level.EXPLORER
        assert outcome.total_points == 30
        assert p.stats.reviews == 1
        assert p.streak.current == 1

    def test_grants_journal_every_point(self):
        p = new_profile("user-0001", T0)
        outcome = _run(p, "review")
        assert [(g.source, g.action, g.points) for g in outcome.grants] == [
            (GrantSource.ACTION, "review", 10),
            (GrantSource.BADGE, "first_review", 20),
        ]

    def test_week_streak_bonus_included(self):
        p = new_profile("user-0001", T0)
        for day in range(1, 7):
            _run(p, "favorite", T0 + timedelta(days=day))
        assert p.streak.current == 7
        # six favorites plus the one-off week bonus
        assert p.points == 6 * 2 + 50

    def test_level_up_reported(self):
        p = new_profile("user-0001", T0)
        grant_points(p, 195)
        outcome = _run(p, "comment")
        assert outcome.leveled_up is True
        assert outcome.level is Level.EXPERT

    def test_points_never_decrease(self):
        p = new_profile("user-0001", T0)
        previous = 0
        for i, action in enumerate(["review", "share", "helpful", "photo", "review", "visit"]):
            _run(p, action, T0 + timedelta(hours=i * 7))
            assert p.points >= previous
            previous = p.points

    def test_override_points(self):
        p = new_profile("user-0001", T0)
        outcome = _run(p, "photo", points=0)
        assert outcome.points_awarded == 0


class TestSpecialEventPipeline:
    def test_launch(self):
        p = new_profile("user-0001", T0)
        outcome = run_special_event_pipeline(p, "launch", T0, DEFAULT_CATALOG)
        assert outcome.new_badges == ["early_bird"]
        assert outcome.points_awarded == 100
        assert outcome.grants[0].source is GrantSource.SPECIAL_EVENT

    def test_chained_badge_is_journaled_as_badge(self):
        p = new_profile("user-0001", T0)
        grant_points(p, 450)
        outcome = run_special_event_pipeline(p, "launch", T0, DEFAULT_CATALOG)
        assert [(g.source, g.action) for g in outcome.grants] == [
            (GrantSource.SPECIAL_EVENT, "early_bird"),
            (GrantSource.BADGE, "ambassador"),
        ]
        assert outcome.leveled_up is True
        assert outcome.level is Level.AMBASSADOR
