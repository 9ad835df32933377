from unittest.mock import patch

import pytest
from sqlalchemy import select

from core.exceptions import AuthorizationError, NotFoundError, StateError
from models.course import Course, CourseStatus, Module
from models.enrollment import Enrollment, LessonProgress
from services.enrollment_service import EnrollmentService
from services.progress_service import ProgressService, progress_percentage, round_half_up


def test_progress_percentage_rounds_half_up():
    assert progress_percentage(0, 0) == 0
    assert progress_percentage(1, 2) == 50
    assert progress_percentage(1, 3) == 33
    assert progress_percentage(2, 3) == 67
    assert progress_percentage(1, 8) == 13  # 12.5 rounds up
    assert round_half_up(2.5) == 3


@pytest.mark.asyncio
async def test_course_progress_follows_lesson_toggles(db, course_data):
    service = ProgressService(db)
    first, second = course_data.lesson_ids

    await service.set_lesson_completion(course_data.student, first, True)
    enrollment = await db.get(Enrollment, (course_data.student.id, course_data.course_id))
    assert enrollment.progress == 50
    assert enrollment.completed_at is None

    await service.set_lesson_completion(course_data.student, second, True)
    await db.refresh(enrollment)
    assert enrollment.progress == 100
    assert enrollment.completed_at is not None

    await service.set_lesson_completion(course_data.student, second, False)
    await db.refresh(enrollment)
    assert enrollment.progress == 50
    assert enrollment.completed_at is None


@pytest.mark.asyncio
async def test_toggle_returns_saved_lesson_progress(db, course_data):
    result = await ProgressService(db).set_lesson_completion(
        course_data.student, course_data.lesson_ids[0], True, time_spent=120
    )

    assert result.course_id == course_data.course_id
    assert result.lesson_progress.completed is True
    assert result.lesson_progress.completed_at is not None
    assert result.lesson_progress.time_spent == 120
    assert result.follow_ups.ok
    assert [r.name for r in result.follow_ups.results] == [
        "course_progress", "lesson_achievements", "completion_achievements"
    ]


@pytest.mark.asyncio
async def test_marking_incomplete_skips_achievement_checks(db, course_data):
    result = await ProgressService(db).set_lesson_completion(course_data.student, course_data.lesson_ids[0], False)
    assert [r.name for r in result.follow_ups.results] == ["course_progress"]
    assert result.lesson_progress.completed_at is None


@pytest.mark.asyncio
async def test_toggle_requires_enrollment(db, course_data):
    with pytest.raises(AuthorizationError):
        await ProgressService(db).set_lesson_completion(course_data.outsider, course_data.lesson_ids[0], True)

    rows = (await db.execute(select(LessonProgress))).scalars().all()
    assert rows == []


@pytest.mark.asyncio
async def test_toggle_unknown_lesson(db, course_data):
    with pytest.raises(NotFoundError):
        await ProgressService(db).set_lesson_completion(course_data.student, 999, True)


@pytest.mark.asyncio
async def test_follow_up_failure_does_not_fail_the_toggle(db, course_data):
    service = ProgressService(db)
    with patch.object(ProgressService, "recalculate_enrollment", side_effect=RuntimeError("boom")):
        result = await service.set_lesson_completion(course_data.student, course_data.lesson_ids[0], True)

    assert result.follow_ups.failed == ["course_progress"]
    assert result.follow_ups.get("course_progress").error == "boom"
    assert result.follow_ups.get("lesson_achievements").ok

    stored = await db.get(LessonProgress, (course_data.student.id, course_data.lesson_ids[0]))
    assert stored.completed is True

    # The stale percentage is repaired by the next recalculation
    enrollment = await db.get(Enrollment, (course_data.student.id, course_data.course_id))
    assert enrollment.progress == 0
    await service.recalculate_enrollment(course_data.student.id, course_data.course_id)
    assert enrollment.progress == 50


@pytest.mark.asyncio
async def test_course_without_lessons_has_zero_progress(db, course_data):
    db.add(Course(id=11, title="Empty", status=CourseStatus.PUBLISHED.value, instructor_id=1))
    db.add(Module(id=21, course_id=11, title="Nothing yet", order=0))
    await db.commit()

    service = ProgressService(db)
    summary = await service.compute_course_progress(course_data.student.id, 11)
    assert (summary.total_lessons, summary.completed_lessons, summary.progress_percentage) == (0, 0, 0)

    module_summary = await service.compute_module_progress(course_data.student.id, 21)
    assert module_summary.progress_percentage == 0

    enrollment = await service.recalculate_enrollment(course_data.student.id, 11)
    assert enrollment.progress == 0
    assert enrollment.completed_at is None


@pytest.mark.asyncio
async def test_module_progress(db, course_data):
    service = ProgressService(db)
    await service.set_lesson_completion(course_data.student, course_data.lesson_ids[1], True)

    summary = await service.compute_module_progress(course_data.student.id, course_data.module_id)
    assert summary.container_id == course_data.module_id
    assert summary.total_lessons == 2
    assert summary.completed_lessons == 1
    assert summary.progress_percentage == 50

    with pytest.raises(NotFoundError):
        await service.compute_module_progress(course_data.student.id, 999)


@pytest.mark.asyncio
async def test_get_course_progress(db, course_data):
    service = ProgressService(db)
    await service.set_lesson_completion(course_data.student, course_data.lesson_ids[0], True)

    progress = await service.get_course_progress(course_data.student, course_data.course_id)
    assert progress["stats"] == {"total_lessons": 2, "completed_lessons": 1, "progress_percentage": 50}
    assert set(progress["lesson_progress"]) == {course_data.lesson_ids[0]}
    assert progress["enrollment"].progress == 50

    with pytest.raises(AuthorizationError):
        await service.get_course_progress(course_data.outsider, course_data.course_id)


@pytest.mark.asyncio
async def test_enroll_and_unenroll(db, course_data):
    service = EnrollmentService(db)
    enrollment = await service.enroll(course_data.outsider, course_data.course_id)
    assert enrollment.progress == 0

    with pytest.raises(StateError):
        await service.enroll(course_data.outsider, course_data.course_id)

    await ProgressService(db).set_lesson_completion(course_data.outsider, course_data.lesson_ids[0], True)
    assert await service.unenroll(course_data.outsider, course_data.course_id) is True

    remaining = (await db.execute(
        select(LessonProgress).filter(LessonProgress.user_id == course_data.outsider.id)
    )).scalars().all()
    assert remaining == []

    status = await service.get_enrollment_status(course_data.outsider, course_data.course_id)
    assert status["enrolled"] is False

    with pytest.raises(StateError):
        await service.unenroll(course_data.outsider, course_data.course_id)


@pytest.mark.asyncio
async def test_only_students_enroll_in_published_courses(db, course_data):
    service = EnrollmentService(db)
    with pytest.raises(AuthorizationError):
        await service.enroll(course_data.instructor, course_data.course_id)

    db.add(Course(id=12, title="Draft", status=CourseStatus.DRAFT.value, instructor_id=1))
    await db.commit()
    with pytest.raises(StateError):
        await service.enroll(course_data.outsider, 12)
    with pytest.raises(NotFoundError):
        await service.enroll(course_data.outsider, 999)
