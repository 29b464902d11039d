"""
kudos.services.engagement_service — Action Recorder & public engine API
=======================================================================

The one object callers talk to.  ``record_action`` runs the full pipeline
for one user as a single read-modify-write:

1. Validate the request against the catalog (no mutation on rejection)
2. Serialize on the user's in-process lock
3. Load (or lazily create) the profile, run the pure pipeline
4. Persist profile, badges and journal rows in one transaction,
   guarded by the profile's ``version_id`` (optimistic concurrency)
5. Reposition the user on every leaderboard

Conflicts are retried up to ``max_update_attempts``; transient storage
errors are retried with backoff (:mod:`kudos.services.retry`).
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any, TypeVar

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from kudos.config import KudosConfig
from kudos.database.models import Level, LeaderboardPeriod
from kudos.engine.catalog import DEFAULT_CATALOG, Catalog, load_catalog
from kudos.engine.leaderboard import (
    WINDOWED_PERIODS,
    LeaderboardEntry,
    LeaderboardManager,
    window_start,
)
from kudos.engine.pipeline import ActionOutcome, run_action_pipeline, run_special_event_pipeline
from kudos.engine.profile import ProfileState, new_profile
from kudos.engine.streak import as_utc
from kudos.errors import (
    ConcurrentModificationConflict,
    DailyLimitExceeded,
    InvalidActionRequest,
    KudosError,
    ServiceUnavailable,
    UnknownActionType,
)
from kudos.services import profile_repository as repo
from kudos.services.retry import retry_transient

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_LEADERBOARD_LIMIT = 100


@dataclass(slots=True)
class _LockSlot:
    """A user's lock plus the number of callers holding or waiting on it."""

    lock: threading.Lock = field(default_factory=threading.Lock)
    users: int = 0


class EngagementService:
    """Points, streaks, badges and leaderboards for the directory's users."""

    def __init__(
        self,
        engine: Engine,
        config: KudosConfig,
        catalog: Catalog | None = None,
        leaderboards: LeaderboardManager | None = None,
    ) -> None:
        self._engine = engine
        self.config = config
        self.tz = config.tz
        if catalog is None:
            catalog = load_catalog(config.catalog_path) if config.catalog_path else DEFAULT_CATALOG
        self.catalog = catalog
        self.leaderboards = leaderboards or LeaderboardManager(self.tz, debug=config.debug)
        self._locks: dict[str, _LockSlot] = {}
        self._locks_guard = threading.Lock()

    # ------------------------------------------------------------------
    # Action Recorder
    # ------------------------------------------------------------------
    def record_action(
        self,
        user_id: str,
        action_type: str,
        occurred_at: datetime | None = None,
        *,
        display_name: str | None = None,
        points: int | None = None,
        idempotency_key: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ActionOutcome:
        """Record one countable action and run the full pipeline.

        Raises
        ------
        UnknownActionType
            *action_type* is not in the catalog.  Nothing is mutated.
        InvalidActionRequest
            Empty *user_id*, negative *points* override, or an *occurred_at*
            further ahead of the server clock than ``max_future_skew_seconds``.
        DailyLimitExceeded
            Only when ``enforce_daily_limits`` is on.
        ServiceUnavailable
            Conflicts or storage failures outlasted their retry budget.
        """
        user_id = self._validate_user_id(user_id)
        action = self.catalog.get_action(action_type)
        if action is None:
            logger.warning("Rejected unknown action %r for %s", action_type, user_id)
            raise UnknownActionType(action_type)
        if points is not None and points < 0:
            raise InvalidActionRequest(
                "Points override must be non-negative", {"points": points}
            )
        when = self._event_time(occurred_at)

        def attempt() -> tuple[ActionOutcome, ProfileState | None]:
            with Session(self._engine) as session:
                if idempotency_key:
                    duplicate = self._duplicate_outcome(session, user_id, idempotency_key)
                    if duplicate is not None:
                        return duplicate, None

                if self.config.enforce_daily_limits and action.daily_limit is not None:
                    used = repo.count_actions_on_day(session, user_id, action.id, when, self.tz)
                    if used >= action.daily_limit:
                        raise DailyLimitExceeded(action.id, action.daily_limit)

                row = repo.get_profile_row(session, user_id)
                state = repo.to_state(row) if row else new_profile(user_id, when, display_name)
                if display_name:
                    state.display_name = display_name

                outcome = run_action_pipeline(
                    state, action, when, self.catalog, self.tz, points
                )

                if row is None:
                    repo.create_profile_row(session, state)
                else:
                    repo.apply_state(row, state)
                repo.add_grants(
                    session, user_id, outcome.grants, when, idempotency_key, metadata
                )
                try:
                    session.commit()
                except IntegrityError as exc:
                    session.rollback()
                    if idempotency_key:
                        duplicate = self._duplicate_outcome(session, user_id, idempotency_key)
                        if duplicate is not None:
                            return duplicate, None
                    raise ConcurrentModificationConflict(
                        f"Profile {user_id} was created concurrently",
                        {"user_id": user_id},
                    ) from exc
                except StaleDataError as exc:
                    session.rollback()
                    raise ConcurrentModificationConflict(
                        f"Profile {user_id} changed during update",
                        {"user_id": user_id},
                    ) from exc
                return outcome, state

        with self._user_lock(user_id):
            outcome, state = self._with_conflict_retries(attempt, user_id)
            if outcome.duplicate:
                logger.info(
                    "Duplicate action %s for %s (key=%s) ignored",
                    action.id, user_id, idempotency_key,
                )
                return outcome
            self.leaderboards.update(state, outcome.points_awarded, when)

        logger.info(
            "Action %s by %s: +%d points (total=%d, level=%s, badges=%s)",
            action.id, user_id, outcome.points_awarded, outcome.total_points,
            outcome.level.value, outcome.new_badges,
        )
        return outcome

    def record_action_safely(self, *args: Any, **kwargs: Any) -> ActionOutcome | None:
        """Best-effort :meth:`record_action`: failures are logged, never raised.

        For features (review posting, favorites, ...) that must not fail
        because points could not be awarded.
        """
        try:
            return self.record_action(*args, **kwargs)
        except KudosError as exc:
            logger.warning("Engagement update skipped: %s", exc.message)
        except Exception:
            logger.exception("Engagement update failed unexpectedly")
        return None

    # ------------------------------------------------------------------
    # Special events
    # ------------------------------------------------------------------
    def signal_special_event(
        self,
        user_id: str,
        event_id: str,
        occurred_at: datetime | None = None,
    ) -> ActionOutcome:
        """Unlock the badges bound to *event_id* (e.g. ``"launch"``) for a user."""
        user_id = self._validate_user_id(user_id)
        if not event_id or not event_id.strip():
            raise InvalidActionRequest("event_id must be a non-empty string")
        if not self.catalog.special_event_badges(event_id):
            logger.info("No badge is bound to special event %r", event_id)
        when = self._event_time(occurred_at)

        def attempt() -> tuple[ActionOutcome, ProfileState | None]:
            with Session(self._engine) as session:
                row = repo.get_profile_row(session, user_id)
                state = repo.to_state(row) if row else new_profile(user_id, when)
                outcome = run_special_event_pipeline(state, event_id, when, self.catalog)
                if not outcome.new_badges:
                    return outcome, state

                if row is None:
                    repo.create_profile_row(session, state)
                else:
                    repo.apply_state(row, state)
                repo.add_grants(session, user_id, outcome.grants, when)
                try:
                    session.commit()
                except (IntegrityError, StaleDataError) as exc:
                    session.rollback()
                    raise ConcurrentModificationConflict(
                        f"Profile {user_id} changed during special event",
                        {"user_id": user_id},
                    ) from exc
                return outcome, state

        with self._user_lock(user_id):
            outcome, state = self._with_conflict_retries(attempt, user_id)
            if outcome.new_badges:
                self.leaderboards.update(state, outcome.points_awarded, when)

        if outcome.new_badges:
            logger.info(
                "Special event %s for %s unlocked %s (+%d points)",
                event_id, user_id, outcome.new_badges, outcome.points_awarded,
            )
        return outcome

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def get_profile(self, user_id: str) -> ProfileState:
        """Current profile; unknown users get an unsaved zero-state profile."""
        user_id = self._validate_user_id(user_id)

        def read() -> ProfileState | None:
            with Session(self._engine) as session:
                row = repo.get_profile_row(session, user_id)
                return repo.to_state(row) if row else None

        state = self._retry(read, f"get_profile({user_id})")
        if state is None:
            return new_profile(user_id, datetime.now(UTC))
        return state

    def get_leaderboard(
        self, period: LeaderboardPeriod | str = LeaderboardPeriod.ALL_TIME, limit: int = 10
    ) -> list[LeaderboardEntry]:
        if not 1 <= limit <= MAX_LEADERBOARD_LIMIT:
            raise InvalidActionRequest(
                f"limit must be between 1 and {MAX_LEADERBOARD_LIMIT}", {"limit": limit}
            )
        return self.leaderboards.top(self._period(period), limit)

    def get_user_rank(
        self, user_id: str, period: LeaderboardPeriod | str = LeaderboardPeriod.ALL_TIME
    ) -> int:
        """1-based rank of *user_id* on *period*'s board, ``0`` if unranked."""
        return self.leaderboards.rank_of(self._validate_user_id(user_id), self._period(period))

    def rebuild_leaderboards(self, now: datetime | None = None) -> None:
        """Reload every leaderboard from storage (run once at startup)."""
        now = as_utc(now) if now else datetime.now(UTC)

        def read() -> tuple[list[ProfileState], dict[LeaderboardPeriod, dict[str, int]]]:
            with Session(self._engine) as session:
                profiles = repo.load_all_profiles(session)
                windows = {
                    period: repo.points_since(session, window_start(period, now, self.tz))
                    for period in WINDOWED_PERIODS
                }
                return profiles, windows

        profiles, windows = self._retry(read, "rebuild_leaderboards")
        self.leaderboards.rebuild(profiles, windows, now)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    @staticmethod
    def _validate_user_id(user_id: str) -> str:
        if not isinstance(user_id, str) or not user_id.strip():
            raise InvalidActionRequest("user_id must be a non-empty string")
        return user_id.strip()

    @staticmethod
    def _period(period: LeaderboardPeriod | str) -> LeaderboardPeriod:
        try:
            return LeaderboardPeriod(period)
        except ValueError as exc:
            raise InvalidActionRequest(
                f"Unknown leaderboard period: {period!r}",
                {"allowed": [p.value for p in LeaderboardPeriod]},
            ) from exc

    def _event_time(self, occurred_at: datetime | None) -> datetime:
        """UTC instant for an action, never later than the server clock.

        Offsets up to ``max_future_skew_seconds`` are clamped to now;
        anything further ahead is rejected.
        """
        now = datetime.now(UTC)
        if occurred_at is None:
            return now
        when = as_utc(occurred_at)
        if when > now + timedelta(seconds=self.config.max_future_skew_seconds):
            raise InvalidActionRequest(
                "occurred_at is in the future",
                {"occurred_at": when.isoformat(), "server_time": now.isoformat()},
            )
        return min(when, now)

    @contextmanager
    def _user_lock(self, user_id: str) -> Iterator[None]:
        """Hold *user_id*'s lock; the registry drops it once nobody needs it."""
        with self._locks_guard:
            slot = self._locks.get(user_id)
            if slot is None:
                slot = self._locks[user_id] = _LockSlot()
            slot.users += 1
        try:
            with slot.lock:
                yield
        finally:
            with self._locks_guard:
                slot.users -= 1
                if slot.users == 0:
                    del self._locks[user_id]

    def _retry(self, func: Callable[[], T], description: str) -> T:
        return retry_transient(
            func,
            attempts=self.config.storage_retry_attempts,
            base=self.config.storage_backoff_base,
            maximum=self.config.storage_backoff_max,
            description=description,
        )

    def _with_conflict_retries(self, func: Callable[[], T], user_id: str) -> T:
        for attempt in range(1, self.config.max_update_attempts + 1):
            try:
                return self._retry(func, f"update of {user_id}")
            except ConcurrentModificationConflict as exc:
                logger.warning(
                    "%s (attempt %d/%d)", exc.message, attempt, self.config.max_update_attempts,
                )
        raise ServiceUnavailable(
            f"Could not update profile {user_id} after "
            f"{self.config.max_update_attempts} attempts",
            {"user_id": user_id},
        )

    @staticmethod
    def _duplicate_outcome(
        session: Session, user_id: str, idempotency_key: str
    ) -> ActionOutcome | None:
        if repo.find_by_idempotency_key(session, user_id, idempotency_key) is None:
            return None
        row = repo.get_profile_row(session, user_id)
        return ActionOutcome(
            duplicate=True,
            level=Level(row.level) if row else Level.EXPLORER,
            total_points=row.points if row else 0,
        )
