from sqlalchemy import Column, Integer, String, Text, Date, DateTime, ForeignKey, JSON, Index, UniqueConstraint
from sqlalchemy.orm import relationship
from models.base import Base
from core.clock import utcnow


class LearningStreak(Base):
    __tablename__ = "learning_streaks"

    user_id = Column(Integer, ForeignKey("users.id"), primary_key=True)
    current_streak = Column(Integer, default=0, nullable=False)
    longest_streak = Column(Integer, default=0, nullable=False)
    last_activity = Column(Date, nullable=True)


class Achievement(Base):
    __tablename__ = "achievements"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    icon = Column(String(16), nullable=True)
    category = Column(String(50), index=True, nullable=False)  # 'streak', 'lessons', 'completion', ...
    criteria = Column(JSON, nullable=False)  # e.g. {"days": 7}
    points = Column(Integer, default=0, nullable=False)


class UserAchievement(Base):
    __tablename__ = "user_achievements"
    __table_args__ = (UniqueConstraint("user_id", "achievement_id", name="uq_user_achievement"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    achievement_id = Column(Integer, ForeignKey("achievements.id", ondelete="CASCADE"), nullable=False)
    earned_at = Column(DateTime, default=utcnow, nullable=False)

    achievement = relationship("Achievement")

# Fast lookup of a user's grants per achievement
Index("idx_user_achievements_user_earned", UserAchievement.user_id, UserAchievement.earned_at)
