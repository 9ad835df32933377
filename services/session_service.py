from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.clock import utcnow
from core.exceptions import NotFoundError
from core.logger import logger
from models.course import Course
from models.session import LearningSession
from services.authorization import CurrentUser, require_user
from services.pipeline import FollowUpPipeline, FollowUpReport
from services.progress_service import round_half_up


@dataclass
class SessionEndResult:
    session: LearningSession
    follow_ups: FollowUpReport


def _close(session: LearningSession, completed: bool = False):
    end_time = utcnow()
    minutes = round_half_up((end_time - session.start_time).total_seconds() / 60)
    session.end_time = end_time
    session.duration = max(minutes, 1)  # At least 1 minute
    session.completed = completed


class LearningSessionService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def start_session(
        self, user: Optional[CurrentUser], course_id: int, lesson_id: Optional[int] = None
    ) -> LearningSession:
        user = require_user(user)
        if not await self.db.get(Course, course_id):
            raise NotFoundError("Course not found")

        # Close any session the user left open
        result = await self.db.execute(
            select(LearningSession).filter(LearningSession.user_id == user.id, LearningSession.end_time.is_(None))
        )
        for open_session in result.scalars().all():
            _close(open_session)

        session = LearningSession(user_id=user.id, course_id=course_id, lesson_id=lesson_id, start_time=utcnow())
        self.db.add(session)
        await self.db.commit()
        logger.info("Learning session started", user_id=user.id, session_id=session.id, course_id=course_id)
        return session

    async def _close_session(self, user_id: int, session_id: int, completed: bool) -> LearningSession:
        result = await self.db.execute(
            select(LearningSession).filter(LearningSession.id == session_id, LearningSession.user_id == user_id)
        )
        session = result.scalar_one_or_none()
        if not session:
            raise NotFoundError("Learning session not found")

        _close(session, completed)
        await self.db.commit()
        logger.info(
            "Learning session ended",
            user_id=user_id,
            session_id=session_id,
            duration=session.duration,
            completed=completed,
        )
        return session

    def add_streak_follow_ups(self, pipeline: FollowUpPipeline, user_id: int):
        """Streak update, then streak achievements for the resulting value."""
        from services.achievement_service import AchievementService
        from services.streak_service import StreakService

        state = {}

        async def update_streak():
            state["streak"] = await StreakService(self.db).update_learning_streak(user_id)
            return state["streak"]

        async def check_achievements():
            streak = state.get("streak")
            if streak is None:
                return []
            return await AchievementService(self.db).check_streak_achievements(user_id, streak.current_streak)

        pipeline.add("streak", update_streak)
        pipeline.add("streak_achievements", check_achievements)

    def add_session_follow_ups(self, pipeline: FollowUpPipeline, user: CurrentUser, session_id: int):
        """Close ``session_id`` as completed, then refresh the streak."""
        pipeline.add("learning_session", lambda: self._close_session(user.id, session_id, completed=True))
        self.add_streak_follow_ups(pipeline, user.id)

    async def end_session(
        self, user: Optional[CurrentUser], session_id: int, completed: bool = False
    ) -> SessionEndResult:
        user = require_user(user)
        session = await self._close_session(user.id, session_id, completed)
        self.db.expunge(session)

        pipeline = FollowUpPipeline(self.db, user_id=user.id, session_id=session_id)
        if completed:
            self.add_streak_follow_ups(pipeline, user.id)
        return SessionEndResult(session=session, follow_ups=await pipeline.run())
