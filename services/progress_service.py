import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from sqlalchemy import select, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.clock import utcnow
from core.exceptions import NotFoundError, PersistenceError, AuthorizationError
from core.logger import logger
from models.course import Course, Module, Lesson
from models.enrollment import Enrollment, LessonProgress
from services.authorization import CurrentUser, require_user, require_enrollment
from services.pipeline import FollowUpPipeline, FollowUpReport


@dataclass(frozen=True)
class ProgressSummary:
    container_id: int
    total_lessons: int
    completed_lessons: int
    progress_percentage: int


@dataclass
class LessonToggleResult:
    lesson_progress: LessonProgress
    course_id: int
    follow_ups: FollowUpReport


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def progress_percentage(completed: int, total: int) -> int:
    if total == 0:
        return 0
    return round_half_up(completed / total * 100)


class ProgressService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def _summarise(self, user_id: int, container_id: int, lesson_ids: Sequence[int]) -> ProgressSummary:
        completed = 0
        if lesson_ids:
            result = await self.db.execute(
                select(func.count()).select_from(LessonProgress).filter(
                    LessonProgress.user_id == user_id,
                    LessonProgress.completed == True,
                    LessonProgress.lesson_id.in_(lesson_ids),
                )
            )
            completed = result.scalar() or 0

        return ProgressSummary(
            container_id=container_id,
            total_lessons=len(lesson_ids),
            completed_lessons=completed,
            progress_percentage=progress_percentage(completed, len(lesson_ids)),
        )

    async def get_module_lesson_ids(self, module_id: int) -> List[int]:
        module = await self.db.get(Module, module_id)
        if not module:
            raise NotFoundError("Module not found")
        result = await self.db.execute(select(Lesson.id).filter(Lesson.module_id == module_id))
        return list(result.scalars().all())

    async def get_course_lesson_ids(self, course_id: int) -> List[int]:
        course = await self.db.get(Course, course_id)
        if not course:
            raise NotFoundError("Course not found")
        result = await self.db.execute(
            select(Lesson.id).join(Module, Lesson.module_id == Module.id).filter(Module.course_id == course_id)
        )
        return list(result.scalars().all())

    async def compute_module_progress(self, user_id: int, module_id: int) -> ProgressSummary:
        lesson_ids = await self.get_module_lesson_ids(module_id)
        return await self._summarise(user_id, module_id, lesson_ids)

    async def compute_course_progress(self, user_id: int, course_id: int) -> ProgressSummary:
        lesson_ids = await self.get_course_lesson_ids(course_id)
        return await self._summarise(user_id, course_id, lesson_ids)

    async def recalculate_enrollment(self, user_id: int, course_id: int) -> Enrollment:
        """Re-derive Enrollment.progress and completed_at from lesson progress.

        completed_at is reset on every pass, so re-completing a course moves
        the completion timestamp to the latest completion.
        """
        summary = await self.compute_course_progress(user_id, course_id)
        enrollment = await self.db.get(Enrollment, (user_id, course_id))
        if not enrollment:
            enrollment = Enrollment(user_id=user_id, course_id=course_id)
            self.db.add(enrollment)

        enrollment.progress = summary.progress_percentage
        enrollment.completed_at = utcnow() if summary.progress_percentage == 100 else None
        await self.db.commit()

        logger.info(
            "Course progress updated",
            user_id=user_id,
            course_id=course_id,
            progress=enrollment.progress,
            completed=enrollment.completed_at is not None,
        )
        return enrollment

    async def _get_lesson_course_id(self, lesson_id: int) -> int:
        result = await self.db.execute(
            select(Module.course_id).join(Lesson, Lesson.module_id == Module.id).filter(Lesson.id == lesson_id)
        )
        course_id = result.scalar_one_or_none()
        if course_id is None:
            raise NotFoundError("Lesson not found")
        return course_id

    async def set_lesson_completion(
        self,
        user: Optional[CurrentUser],
        lesson_id: int,
        completed: bool,
        session_id: Optional[int] = None,
        time_spent: Optional[int] = None,
    ) -> LessonToggleResult:
        """Mark a lesson complete or incomplete for the current user.

        The LessonProgress upsert is the primary write. Course progress,
        achievements and (when ``session_id`` closes a completed learning
        session) the streak are refreshed afterwards on a best-effort basis.
        """
        user = require_user(user)
        course_id = await self._get_lesson_course_id(lesson_id)
        await require_enrollment(self.db, user.id, course_id)

        lesson_progress = await self.db.get(LessonProgress, (user.id, lesson_id))
        if not lesson_progress:
            lesson_progress = LessonProgress(user_id=user.id, lesson_id=lesson_id, time_spent=0)
            self.db.add(lesson_progress)

        lesson_progress.completed = completed
        lesson_progress.completed_at = utcnow() if completed else None
        if time_spent:
            lesson_progress.time_spent = (lesson_progress.time_spent or 0) + time_spent

        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("Failed to save lesson progress", user_id=user.id, lesson_id=lesson_id, error=str(e))
            raise PersistenceError() from e

        # Detach so follow-up rollbacks cannot expire the primary result
        self.db.expunge(lesson_progress)
        logger.info("Lesson progress saved", user_id=user.id, lesson_id=lesson_id, completed=completed)

        follow_ups = await self._lesson_follow_ups(user, course_id, completed, session_id).run()
        return LessonToggleResult(lesson_progress=lesson_progress, course_id=course_id, follow_ups=follow_ups)

    def _lesson_follow_ups(
        self, user: CurrentUser, course_id: int, completed: bool, session_id: Optional[int]
    ) -> FollowUpPipeline:
        # Imported here to avoid circular imports between services
        from services.achievement_service import AchievementService
        from services.session_service import LearningSessionService

        achievements = AchievementService(self.db)
        pipeline = FollowUpPipeline(self.db, user_id=user.id, course_id=course_id)
        pipeline.add("course_progress", lambda: self.recalculate_enrollment(user.id, course_id))
        pipeline.add("lesson_achievements", lambda: achievements.check_lesson_achievements(user.id), when=completed)
        pipeline.add(
            "completion_achievements", lambda: achievements.check_completion_achievements(user.id), when=completed
        )
        if completed and session_id is not None:
            LearningSessionService(self.db).add_session_follow_ups(pipeline, user, session_id)
        return pipeline

    async def get_lesson_progress(self, user: Optional[CurrentUser], lesson_id: int) -> Optional[LessonProgress]:
        user = require_user(user)
        return await self.db.get(LessonProgress, (user.id, lesson_id))

    async def get_course_progress(self, user: Optional[CurrentUser], course_id: int) -> dict:
        """Enrollment, per-lesson progress and stats for the course view."""
        user = require_user(user)
        enrollment = await self.db.get(Enrollment, (user.id, course_id))
        if not enrollment:
            raise AuthorizationError("Not enrolled in this course")

        lesson_ids = await self.get_course_lesson_ids(course_id)
        lesson_progress: Dict[int, LessonProgress] = {}
        if lesson_ids:
            result = await self.db.execute(
                select(LessonProgress).filter(
                    LessonProgress.user_id == user.id, LessonProgress.lesson_id.in_(lesson_ids)
                )
            )
            lesson_progress = {p.lesson_id: p for p in result.scalars().all()}

        completed = sum(1 for p in lesson_progress.values() if p.completed)
        return {
            "enrollment": enrollment,
            "lesson_progress": lesson_progress,
            "stats": {
                "total_lessons": len(lesson_ids),
                "completed_lessons": completed,
                "progress_percentage": progress_percentage(completed, len(lesson_ids)),
            },
        }
