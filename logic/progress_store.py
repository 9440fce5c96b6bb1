"""Read-compute-write of user progress against the database.

Writes are conditional on the ``updated_at`` value that was read, so two
requests racing on the same user cannot silently drop each other's XP.
"""

import logging
from datetime import datetime
from typing import Callable, List, Optional, Union

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from config import PROGRESS_MAX_RETRIES
from logic.progress import (
    ProgressSnapshot,
    compute_next_progress,
    earned_badges,
    merge_badges,
)
from models.user_progress import UserProgress

logger = logging.getLogger(__name__)

XpAward = Union[int, Callable[[ProgressSnapshot, datetime], int]]


class ProgressStoreError(Exception):
    """The store could not read or write progress. Not retryable."""


class ProgressConflictError(ProgressStoreError):
    """Concurrent writers kept winning. Safe to retry later."""


class StaleProgressError(Exception):
    """The row changed between read and write."""


def to_snapshot(row: Optional[UserProgress]) -> ProgressSnapshot:
    if row is None:
        return ProgressSnapshot.initial()
    return ProgressSnapshot(
        xp=row.xp or 0,
        level=row.level or 1,
        streak=row.streak or 0,
        last_active_date=row.last_active_date,
        updated_at=row.updated_at,
    )


def get_row(db: Session, user_id: str) -> Optional[UserProgress]:
    try:
        return db.query(UserProgress).populate_existing().filter_by(user_id=user_id).first()
    except SQLAlchemyError as e:
        raise ProgressStoreError(f"Failed to read progress for {user_id}") from e


def get_progress(db: Session, user_id: str) -> ProgressSnapshot:
    return to_snapshot(get_row(db, user_id))


def _write_once(db: Session, user_id: str, now: datetime, xp_award: XpAward, session_completed: bool) -> UserProgress:
    row = get_row(db, user_id)
    previous = to_snapshot(row)
    award = xp_award(previous, now) if callable(xp_award) else xp_award
    nxt = compute_next_progress(previous, now, award)

    sessions = (row.sessions_completed or 0) if row else 0
    if session_completed:
        sessions += 1
    badges = merge_badges(row.badges if row else [], earned_badges(nxt, sessions))

    values = dict(
        xp=nxt.xp,
        level=nxt.level,
        streak=nxt.streak,
        last_active_date=nxt.last_active_date,
        sessions_completed=sessions,
        badges=badges,
        updated_at=nxt.updated_at,
    )

    if row is None:
        db.add(UserProgress(user_id=user_id, **values))
        try:
            db.commit()
        except IntegrityError as e:
            db.rollback()
            raise StaleProgressError(user_id) from e
    else:
        result = db.execute(
            update(UserProgress)
            .where(UserProgress.user_id == user_id)
            .where(UserProgress.updated_at == row.updated_at if row.updated_at is not None
                   else UserProgress.updated_at.is_(None))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.rollback()
            raise StaleProgressError(user_id)
        db.commit()

    db.expire_all()
    return get_row(db, user_id)


def apply_progress(
    db: Session,
    user_id: str,
    now: datetime,
    xp_award: XpAward = 0,
    session_completed: bool = False,
) -> UserProgress:
    """Apply one qualifying action for ``user_id`` and return the stored row.

    ``xp_award`` may be a callable taking the freshly read snapshot and
    ``now``, for awards that depend on current state (login, sessions).
    """
    for attempt in range(1, PROGRESS_MAX_RETRIES + 1):
        try:
            return _write_once(db, user_id, now, xp_award, session_completed)
        except StaleProgressError:
            logger.warning("Progress write conflict for %s (attempt %d/%d)", user_id, attempt, PROGRESS_MAX_RETRIES)
            db.expire_all()
        except SQLAlchemyError as e:
            db.rollback()
            raise ProgressStoreError(f"Failed to write progress for {user_id}") from e
    raise ProgressConflictError(f"Gave up updating progress for {user_id} after {PROGRESS_MAX_RETRIES} attempts")


def leaderboard(db: Session, limit: int = 10) -> List[UserProgress]:
    try:
        return (
            db.query(UserProgress)
            .order_by(UserProgress.xp.desc(), UserProgress.user_id)
            .limit(limit)
            .all()
        )
    except SQLAlchemyError as e:
        raise ProgressStoreError("Failed to read leaderboard") from e
