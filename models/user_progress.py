# backend/models/user_progress.py

from sqlalchemy import Column, String, Integer, Date, DateTime, JSON
from db import Base

class UserProgress(Base):
    __tablename__ = "user_progress"

    user_id = Column(String, primary_key=True, index=True)
    xp = Column(Integer, nullable=False, default=0)
    level = Column(Integer, nullable=False, default=1)
    streak = Column(Integer, nullable=False, default=0)
    last_active_date = Column(Date, nullable=True)
    sessions_completed = Column(Integer, nullable=False, default=0)
    badges = Column(JSON, nullable=False, default=list)
    # Also the version for conditional updates
    updated_at = Column(DateTime(timezone=True), nullable=True)
