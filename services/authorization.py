from dataclasses import dataclass
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import AuthorizationError
from models.course import Course
from models.enrollment import Enrollment
from models.user import Role


@dataclass(frozen=True)
class CurrentUser:
    """The authenticated caller as resolved by the identity provider."""
    id: int
    role: Role = Role.STUDENT


def require_user(user: Optional[CurrentUser]) -> CurrentUser:
    if user is None:
        raise AuthorizationError("You must be signed in to do this", status_code=401)
    return user


def require_role(user: Optional[CurrentUser], allowed: Iterable[Role]) -> CurrentUser:
    user = require_user(user)
    if Role(user.role) not in set(allowed):
        raise AuthorizationError("Your role does not allow this action")
    return user


async def is_enrolled(db: AsyncSession, user_id: int, course_id: int) -> bool:
    result = await db.execute(
        select(Enrollment.user_id).filter(Enrollment.user_id == user_id, Enrollment.course_id == course_id)
    )
    return result.first() is not None


async def require_enrollment(db: AsyncSession, user_id: int, course_id: int):
    if not await is_enrolled(db, user_id, course_id):
        raise AuthorizationError("Access denied: not enrolled in this course")


async def require_course_owner(db: AsyncSession, user: Optional[CurrentUser], course_id: int):
    """Instructors may only manage their own courses; admins manage all."""
    user = require_user(user)
    if Role(user.role) == Role.ADMIN:
        return
    instructor_id = (
        await db.execute(select(Course.instructor_id).filter(Course.id == course_id))
    ).scalar_one_or_none()
    if instructor_id is None or instructor_id != user.id:
        raise AuthorizationError("You can only manage your own courses")
