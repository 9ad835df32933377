from typing import Optional

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from core.clock import utcnow
from core.exceptions import NotFoundError, StateError
from core.logger import logger
from models.course import Course, CourseStatus, Lesson, Module
from models.enrollment import Enrollment, LessonProgress
from models.user import Role
from services.authorization import CurrentUser, require_user, require_role


class EnrollmentService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def enroll(self, user: Optional[CurrentUser], course_id: int) -> Enrollment:
        user = require_role(user, [Role.STUDENT])

        if await self.db.get(Enrollment, (user.id, course_id)):
            raise StateError("Already enrolled in this course")

        course = await self.db.get(Course, course_id)
        if not course:
            raise NotFoundError("Course not found")
        if course.status != CourseStatus.PUBLISHED.value:
            raise StateError("Course is not published")

        enrollment = Enrollment(user_id=user.id, course_id=course_id, enrolled_at=utcnow(), progress=0)
        self.db.add(enrollment)
        await self.db.commit()
        logger.info("User enrolled", user_id=user.id, course_id=course_id)
        return enrollment

    async def unenroll(self, user: Optional[CurrentUser], course_id: int) -> bool:
        """Remove the enrollment and every lesson progress row of the course."""
        user = require_user(user)
        enrollment = await self.db.get(Enrollment, (user.id, course_id))
        if not enrollment:
            raise StateError("Not enrolled in this course")

        lesson_ids = select(Lesson.id).join(Module, Lesson.module_id == Module.id).filter(Module.course_id == course_id)
        await self.db.execute(
            delete(LessonProgress)
            .where(LessonProgress.user_id == user.id, LessonProgress.lesson_id.in_(lesson_ids))
            .execution_options(synchronize_session=False)
        )
        await self.db.delete(enrollment)
        await self.db.commit()
        logger.info("User unenrolled", user_id=user.id, course_id=course_id)
        return True

    async def get_enrollment_status(self, user: Optional[CurrentUser], course_id: int) -> dict:
        if user is None:
            return {"enrolled": False, "can_enroll": True, "enrollment": None}

        enrollment = await self.db.get(Enrollment, (user.id, course_id))
        return {
            "enrolled": enrollment is not None,
            "can_enroll": Role(user.role) == Role.STUDENT,
            "enrollment": enrollment,
        }
