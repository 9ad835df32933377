from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core import clock
from core.logger import logger
from models.session import LearningSession
from models.stats import LearningStreak


@dataclass(frozen=True)
class StreakUpdate:
    current_streak: int
    longest_streak: int
    last_activity: date


def advance_streak(current: int, longest: int, last_activity: Optional[date], today: date) -> Optional[StreakUpdate]:
    """
    Next streak state after a qualifying activity on ``today``.

    Returns None when the activity was already counted today. Activity
    yesterday continues the streak; any longer gap restarts it at 1.
    """
    if last_activity is not None and last_activity >= today:
        return None

    yesterday = today - timedelta(days=1)
    if last_activity is not None and yesterday <= last_activity < today:
        new_current = current + 1
    else:
        new_current = 1

    return StreakUpdate(
        current_streak=new_current,
        longest_streak=max(longest, new_current),
        last_activity=today,
    )


class StreakService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def has_completed_session_on(self, user_id: int, day: date) -> bool:
        """A session counts for the day it was completed in the reference timezone."""
        day_start = clock.day_start_utc(day)
        next_day_start = clock.day_start_utc(day + timedelta(days=1))
        result = await self.db.execute(
            select(LearningSession.id).filter(
                LearningSession.user_id == user_id,
                LearningSession.completed == True,
                LearningSession.end_time >= day_start,
                LearningSession.end_time < next_day_start,
            ).limit(1)
        )
        return result.first() is not None

    async def update_learning_streak(self, user_id: int, today: Optional[date] = None) -> Optional[LearningStreak]:
        """Count today's activity towards the user's streak.

        Returns the streak row when it changed, None when there was nothing
        to count (no completed session today, or already counted).
        """
        today = today or clock.today()
        if not await self.has_completed_session_on(user_id, today):
            logger.debug("No completed session today, streak unchanged", user_id=user_id)
            return None

        streak = await self.db.get(LearningStreak, user_id)
        if not streak:
            streak = LearningStreak(user_id=user_id, current_streak=1, longest_streak=1, last_activity=today)
            self.db.add(streak)
            await self.db.commit()
            logger.info("Learning streak started", user_id=user_id)
            return streak

        update = advance_streak(streak.current_streak, streak.longest_streak, streak.last_activity, today)
        if update is None:
            return None

        was_reset = update.current_streak == 1
        streak.current_streak = update.current_streak
        streak.longest_streak = update.longest_streak
        streak.last_activity = update.last_activity
        await self.db.commit()

        logger.info(
            "Learning streak updated",
            user_id=user_id,
            current_streak=streak.current_streak,
            longest_streak=streak.longest_streak,
            reset=was_reset,
        )
        return streak

    async def get_streak_info(self, user_id: int, today: Optional[date] = None) -> dict:
        today = today or clock.today()
        streak = await self.db.get(LearningStreak, user_id)
        if not streak:
            return {
                "current_streak": 0,
                "longest_streak": 0,
                "last_activity": None,
                "is_active_today": False,
            }
        return {
            "current_streak": streak.current_streak,
            "longest_streak": streak.longest_streak,
            "last_activity": streak.last_activity,
            "is_active_today": streak.last_activity == today,
        }
