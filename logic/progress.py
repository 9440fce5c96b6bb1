"""Streak, XP and level transitions for user progress.

Everything here is pure: callers read a snapshot from the store, run
``compute_next_progress`` and write the result back.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
import logging
import math
from typing import Iterable, List, Optional, Union

logger = logging.getLogger(__name__)

XP_PER_LEVEL_UNIT = 100
# xp is stored in a 32-bit integer column
MAX_XP = 2**31 - 1
LOGIN_XP = 10
XP_PER_MINUTE = 10  # base XP per minute of study
STREAK_MULTIPLIER = 0.1  # 10% bonus per day in streak

STREAK_BADGES = [(3, "3-Day Streak"), (7, "7-Day Streak"), (30, "30-Day Streak")]
LEVEL_BADGES = [(5, "Level 5")]
FIRST_SESSION_BADGE = "First Session"


@dataclass(frozen=True)
class ProgressSnapshot:
    xp: int = 0
    level: int = 1
    streak: int = 0
    last_active_date: Optional[date] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def initial(cls) -> "ProgressSnapshot":
        return cls()


def threshold_for_level(level: int) -> int:
    """XP needed to complete ``level`` (and so reach ``level + 1``)."""
    return level * level * XP_PER_LEVEL_UNIT


def level_for_xp(xp: int) -> int:
    """Smallest level whose threshold is above ``xp``."""
    # L*L*100 <= xp  <=>  L*L <= xp // 100
    return math.isqrt(max(xp, 0) // XP_PER_LEVEL_UNIT) + 1


def xp_to_next_level(xp: int) -> int:
    return threshold_for_level(level_for_xp(xp)) - xp


def level_progress(xp: int, level: int) -> float:
    """Percentage through ``level`` for progress bars, clamped to 0..100."""
    floor = threshold_for_level(level - 1) if level > 1 else 0
    ceiling = threshold_for_level(level)
    pct = (xp - floor) / (ceiling - floor) * 100
    return round(min(max(pct, 0.0), 100.0), 2)


def activity_date(now: Union[datetime, date]) -> date:
    """Calendar day of ``now`` in UTC. Naive datetimes are taken as UTC."""
    if isinstance(now, datetime):
        if now.tzinfo is not None:
            now = now.astimezone(timezone.utc)
        return now.date()
    return now


def next_streak(streak: int, last_active_date: Optional[date], today: date) -> int:
    if last_active_date is None:
        return 1
    if today == last_active_date:
        return streak
    if today == last_active_date + timedelta(days=1):
        return streak + 1
    # gap of two or more days, or a backdated touch
    return 1


def compute_next_progress(previous: ProgressSnapshot, now: Union[datetime, date], xp_award: int) -> ProgressSnapshot:
    today = activity_date(now)
    streak = next_streak(previous.streak, previous.last_active_date, today)
    if previous.last_active_date is not None and streak == 1 and previous.streak > 1:
        logger.info("Streak of %d reset (last active %s, today %s)", previous.streak, previous.last_active_date, today)

    xp = min(previous.xp + max(xp_award, 0), MAX_XP)
    level = level_for_xp(xp)
    if level > previous.level:
        logger.info("Level up: %d -> %d at %d XP", previous.level, level, xp)

    return ProgressSnapshot(
        xp=xp,
        level=level,
        streak=streak,
        last_active_date=today,
        updated_at=now if isinstance(now, datetime) else datetime.combine(today, time.min, tzinfo=timezone.utc),
    )


# --------- Award policy ---------

def login_xp(previous: ProgressSnapshot, now: Union[datetime, date]) -> int:
    # Only the first login touch of a day pays out
    if previous.last_active_date == activity_date(now):
        return 0
    return LOGIN_XP


def study_session_xp(duration_minutes: float, streak: int) -> int:
    if not math.isfinite(duration_minutes) or duration_minutes <= 0:
        return 0
    streak_bonus = 1 + max(streak, 0) * STREAK_MULTIPLIER
    return round(duration_minutes * XP_PER_MINUTE * streak_bonus)


# --------- Badges ---------

def earned_badges(snapshot: ProgressSnapshot, sessions_completed: int) -> List[str]:
    badges = []
    if sessions_completed >= 1:
        badges.append(FIRST_SESSION_BADGE)
    badges.extend(name for days, name in STREAK_BADGES if snapshot.streak >= days)
    badges.extend(name for lvl, name in LEVEL_BADGES if snapshot.level >= lvl)
    return badges


def merge_badges(stored: Iterable[str], earned: Iterable[str]) -> List[str]:
    merged = list(stored or [])
    for badge in earned:
        if badge not in merged:
            merged.append(badge)
    return merged
