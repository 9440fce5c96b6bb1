#backend/main.py
import logging
from datetime import date, datetime, timezone
from typing import List, Optional

from fastapi import FastAPI, Depends, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from pydantic import BaseModel, Field

from config import CORS_ORIGINS, LOG_LEVEL
from db import SessionLocal
from logic import progress_store
from logic.progress import (
    MAX_XP,
    activity_date,
    level_progress,
    login_xp,
    next_streak,
    study_session_xp,
    threshold_for_level,
)
from logic.progress_store import ProgressConflictError, ProgressStoreError

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

MAX_SESSION_MINUTES = 24 * 60


# --------- App Setup ---------
app = FastAPI(title="NoteWise Progress API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --------- DB Dependency ---------
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def utcnow():
    return datetime.now(timezone.utc)


# --------- Pydantic Models ---------
class SessionInput(BaseModel):
    duration_minutes: float = Field(..., ge=0, le=MAX_SESSION_MINUTES, allow_inf_nan=False, examples=[25])

class XpGrantInput(BaseModel):
    amount: int = Field(..., ge=-MAX_XP, le=MAX_XP, examples=[50])

class ProgressOutput(BaseModel):
    user_id: str
    xp: int
    level: int
    streak: int
    last_active_date: Optional[date] = None
    next_level_xp: int
    level_progress: float
    sessions_completed: int = 0
    badges: List[str] = []

class LeaderboardEntry(BaseModel):
    rank: int
    user_id: str
    xp: int
    level: int
    streak: int
    badges: List[str] = []


def to_output(user_id, row):
    snapshot = progress_store.to_snapshot(row)
    sessions = (row.sessions_completed or 0) if row else 0
    badges = list(row.badges or []) if row else []
    return ProgressOutput(
        user_id=user_id,
        xp=snapshot.xp,
        level=snapshot.level,
        streak=snapshot.streak,
        last_active_date=snapshot.last_active_date,
        next_level_xp=threshold_for_level(snapshot.level),
        level_progress=level_progress(snapshot.xp, snapshot.level),
        sessions_completed=sessions,
        badges=badges,
    )


# --------- Error Handlers ---------
@app.exception_handler(ProgressConflictError)
def handle_conflict(request: Request, exc: ProgressConflictError):
    return JSONResponse(status_code=409, content={"error": str(exc), "retryable": True})

@app.exception_handler(ProgressStoreError)
def handle_store_error(request: Request, exc: ProgressStoreError):
    logger.error("Progress store failure: %s", exc, exc_info=exc.__cause__)
    return JSONResponse(status_code=500, content={"error": "Failed to update progress", "retryable": False})


# --------- Trigger Endpoints ---------
@app.post("/progress/{user_id}/login", response_model=ProgressOutput)
def daily_login(user_id: str, db: Session = Depends(get_db)):
    row = progress_store.apply_progress(db, user_id, utcnow(), login_xp)
    logger.info("Login touch for %s: streak %d, xp %d", user_id, row.streak, row.xp)
    return to_output(user_id, row)

@app.post("/progress/{user_id}/session", response_model=ProgressOutput)
def complete_session(user_id: str, data: SessionInput, db: Session = Depends(get_db)):
    def award(previous, now):
        # bonus uses the streak this session lands on
        streak = next_streak(previous.streak, previous.last_active_date, activity_date(now))
        return study_session_xp(data.duration_minutes, streak)

    row = progress_store.apply_progress(db, user_id, utcnow(), award, session_completed=True)
    return to_output(user_id, row)

@app.post("/progress/{user_id}/xp", response_model=ProgressOutput)
def grant_xp(user_id: str, data: XpGrantInput, db: Session = Depends(get_db)):
    row = progress_store.apply_progress(db, user_id, utcnow(), data.amount)
    return to_output(user_id, row)


# --------- Read Endpoints ---------
@app.get("/progress/{user_id}", response_model=ProgressOutput)
def get_progress(user_id: str, db: Session = Depends(get_db)):
    return to_output(user_id, progress_store.get_row(db, user_id))

@app.get("/leaderboard", response_model=List[LeaderboardEntry])
def get_leaderboard(limit: int = Query(10, ge=1, le=100), db: Session = Depends(get_db)):
    rows = progress_store.leaderboard(db, limit)
    return [
        LeaderboardEntry(
            rank=i + 1,
            user_id=row.user_id,
            xp=row.xp,
            level=row.level,
            streak=row.streak,
            badges=list(row.badges or []),
        )
        for i, row in enumerate(rows)
    ]
