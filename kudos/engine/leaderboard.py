"""
kudos.engine.leaderboard — Ranked views over profiles
======================================================

One :class:`Leaderboard` per :class:`LeaderboardPeriod`, all owned by a
:class:`LeaderboardManager` created at service start.

* ``all_time`` ranks profiles by their total points.
* ``daily`` / ``weekly`` / ``monthly`` rank points earned inside the
  current window (calendar day, ISO week, calendar month in the community
  timezone).  The board resets itself when an update for a newer window
  arrives; reads against a stale window return nothing.

Ordering is points descending, ties broken by ``user_id`` ascending.  The
board keeps a sorted list of ``(-points, user_id)`` keys so locating a
reposition is a pair of binary searches.  The list delete/insert that
follows is an O(n) memmove of references, which for tens of thousands of
users stays below the cost of one storage round-trip.
"""

from __future__ import annotations

import bisect
import logging
import threading
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, replace
from datetime import UTC, datetime, time, timedelta, tzinfo

from kudos.database.models import Level, LeaderboardPeriod
from kudos.engine.profile import ProfileState
from kudos.engine.streak import as_utc
from kudos.errors import InvariantViolation

logger = logging.getLogger(__name__)

WINDOWED_PERIODS: tuple[LeaderboardPeriod, ...] = (
    LeaderboardPeriod.DAILY,
    LeaderboardPeriod.WEEKLY,
    LeaderboardPeriod.MONTHLY,
)


@dataclass(frozen=True, slots=True)
class LeaderboardEntry:
    user_id: str
    display_name: str
    points: int
    level: Level
    rank: int
    rank_delta: int
    badge_count: int


# ---------------------------------------------------------------------------
# Window helpers
# ---------------------------------------------------------------------------
def window_key(period: LeaderboardPeriod, when: datetime, tz: tzinfo) -> str | None:
    """Identifier of the window containing *when*; ``None`` for all-time.

    Keys sort chronologically as plain strings.
    """
    local = as_utc(when).astimezone(tz)
    if period is LeaderboardPeriod.DAILY:
        return local.date().isoformat()
    if period is LeaderboardPeriod.WEEKLY:
        return local.strftime("%G-W%V")
    if period is LeaderboardPeriod.MONTHLY:
        return local.strftime("%Y-%m")
    return None


def window_start(period: LeaderboardPeriod, when: datetime, tz: tzinfo) -> datetime | None:
    """UTC instant at which the window containing *when* opened."""
    local_day = as_utc(when).astimezone(tz).date()
    if period is LeaderboardPeriod.DAILY:
        start_day = local_day
    elif period is LeaderboardPeriod.WEEKLY:
        start_day = local_day - timedelta(days=local_day.weekday())
    elif period is LeaderboardPeriod.MONTHLY:
        start_day = local_day.replace(day=1)
    else:
        return None
    return datetime.combine(start_day, time.min, tzinfo=tz).astimezone(UTC)


# ---------------------------------------------------------------------------
# Single board
# ---------------------------------------------------------------------------
class Leaderboard:
    """Thread-safe sorted board for one period.

    ``rank_delta`` is recorded for the entry being repositioned only:
    users shifted by someone else's move keep their last delta.
    """

    def __init__(self, period: LeaderboardPeriod) -> None:
        self.period = period
        self.window: str | None = None
        self.updated_at: datetime | None = None
        self._lock = threading.Lock()
        self._keys: list[tuple[int, str]] = []
        self._entries: dict[str, LeaderboardEntry] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._keys)

    # -- writes -------------------------------------------------------------
    def upsert(
        self,
        user_id: str,
        display_name: str,
        points: int,
        level: Level,
        badge_count: int = 0,
        now: datetime | None = None,
    ) -> LeaderboardEntry:
        """Insert or reposition *user_id* with an absolute points value."""
        with self._lock:
            return self._upsert_locked(
                user_id, display_name, points, level, badge_count, now
            )

    def accumulate(
        self,
        window: str,
        user_id: str,
        display_name: str,
        points_delta: int,
        level: Level,
        badge_count: int = 0,
        now: datetime | None = None,
    ) -> LeaderboardEntry | None:
        """Add *points_delta* to the user's total for *window*.

        A newer window clears the board first.  Updates for an older
        window are ignored and return ``None``.
        """
        with self._lock:
            if self.window is None or window > self.window:
                if self.window is not None:
                    logger.info(
                        "%s leaderboard rolled over %s → %s",
                        self.period.value, self.window, window,
                    )
                self._clear_locked()
                self.window = window
            elif window < self.window:
                logger.debug(
                    "Ignoring late %s update for %s (window %s, current %s)",
                    self.period.value, user_id, window, self.window,
                )
                return None

            existing = self._entries.get(user_id)
            base = existing.points if existing else 0
            return self._upsert_locked(
                user_id, display_name, base + points_delta, level, badge_count, now
            )

    def reset(self, window: str | None = None) -> None:
        with self._lock:
            self._clear_locked()
            self.window = window

    # -- reads --------------------------------------------------------------
    def top(self, limit: int = 10, window: str | None = None) -> list[LeaderboardEntry]:
        """Immutable snapshot of the top *limit* entries with contiguous ranks."""
        with self._lock:
            if window is not None and window != self.window:
                return []
            keys = self._keys[:max(limit, 0)]
            return [
                replace(self._entries[user_id], rank=i)
                for i, (_, user_id) in enumerate(keys, start=1)
            ]

    def rank_of(self, user_id: str, window: str | None = None) -> int:
        """1-based rank of *user_id*, or ``0`` if absent."""
        with self._lock:
            if window is not None and window != self.window:
                return 0
            return self._rank_locked(user_id)

    # -- internals (caller holds the lock) ----------------------------------
    def _rank_locked(self, user_id: str) -> int:
        entry = self._entries.get(user_id)
        if entry is None:
            return 0
        return bisect.bisect_left(self._keys, (-entry.points, user_id)) + 1

    def _upsert_locked(
        self,
        user_id: str,
        display_name: str,
        points: int,
        level: Level,
        badge_count: int,
        now: datetime | None,
    ) -> LeaderboardEntry:
        old_rank = 0
        previous = self._entries.get(user_id)
        if previous is not None:
            old_key = (-previous.points, user_id)
            idx = bisect.bisect_left(self._keys, old_key)
            old_rank = idx + 1
            del self._keys[idx]

        new_key = (-points, user_id)
        idx = bisect.bisect_left(self._keys, new_key)
        self._keys.insert(idx, new_key)
        new_rank = idx + 1

        entry = LeaderboardEntry(
            user_id=user_id,
            display_name=display_name,
            points=points,
            level=level,
            rank=new_rank,
            rank_delta=old_rank - new_rank if previous is not None else 0,
            badge_count=badge_count,
        )
        self._entries[user_id] = entry
        self.updated_at = now or datetime.now(UTC)
        return entry

    def _clear_locked(self) -> None:
        self._keys.clear()
        self._entries.clear()


# ---------------------------------------------------------------------------
# Manager — one board per period
# ---------------------------------------------------------------------------
class LeaderboardManager:
    """Owns one board per period and routes profile changes to each."""

    def __init__(
        self,
        tz: tzinfo,
        debug: bool = False,
        now_fn: Callable[[], datetime] | None = None,
    ) -> None:
        self.tz = tz
        self.debug = debug
        self._now_fn = now_fn or (lambda: datetime.now(UTC))
        self.boards: dict[LeaderboardPeriod, Leaderboard] = {
            period: Leaderboard(period) for period in LeaderboardPeriod
        }

    def board(self, period: LeaderboardPeriod | str) -> Leaderboard:
        return self.boards[LeaderboardPeriod(period)]

    def update(
        self,
        profile: ProfileState | None,
        points_delta: int,
        when: datetime,
    ) -> LeaderboardEntry | None:
        """Reposition *profile* on every board.

        Returns the all-time entry.  *points_delta* is what this change
        added, credited to the windowed boards for the window of *when*.
        """
        if profile is None:
            msg = "Leaderboard update for a missing profile"
            if self.debug:
                raise InvariantViolation(msg)
            logger.error("%s — skipped", msg)
            return None

        badge_count = len(profile.badges)
        entry = self.board(LeaderboardPeriod.ALL_TIME).upsert(
            profile.user_id, profile.display_name, profile.points,
            profile.level, badge_count, when,
        )
        for period in WINDOWED_PERIODS:
            key = window_key(period, when, self.tz)
            self.board(period).accumulate(
                key, profile.user_id, profile.display_name, points_delta,
                profile.level, badge_count, when,
            )
        return entry

    def top(self, period: LeaderboardPeriod | str, limit: int = 10) -> list[LeaderboardEntry]:
        period = LeaderboardPeriod(period)
        return self.board(period).top(limit, self._current_window(period))

    def rank_of(self, user_id: str, period: LeaderboardPeriod | str) -> int:
        period = LeaderboardPeriod(period)
        return self.board(period).rank_of(user_id, self._current_window(period))

    def rebuild(
        self,
        profiles: Iterable[ProfileState],
        window_points: Mapping[LeaderboardPeriod, Mapping[str, int]],
        now: datetime | None = None,
    ) -> None:
        """Reload every board from persisted state.

        *window_points* maps each windowed period to the points each user
        earned inside the window containing *now*.
        """
        now = now or self._now_fn()
        by_id = {p.user_id: p for p in profiles}

        all_time = self.board(LeaderboardPeriod.ALL_TIME)
        all_time.reset()
        for profile in by_id.values():
            all_time.upsert(
                profile.user_id, profile.display_name, profile.points,
                profile.level, len(profile.badges), now,
            )

        for period in WINDOWED_PERIODS:
            board = self.board(period)
            board.reset(window_key(period, now, self.tz))
            for user_id, points in window_points.get(period, {}).items():
                profile = by_id.get(user_id)
                if profile is None:
                    logger.warning(
                        "Window points for unknown profile %s ignored", user_id,
                    )
                    continue
                board.upsert(
                    user_id, profile.display_name, points,
                    profile.level, len(profile.badges), now,
                )

        logger.info("Leaderboards rebuilt: %d profiles", len(by_id))

    def _current_window(self, period: LeaderboardPeriod) -> str | None:
        return window_key(period, self._now_fn(), self.tz)
