import pytest
from sqlalchemy import select, func

from models.enrollment import Enrollment, LessonProgress
from models.stats import Achievement, UserAchievement
from services.achievement_service import (
    AchievementService,
    ACHIEVEMENT_CATALOG,
    STREAK_CATEGORY,
)


async def earned_names(service, user_id):
    return {a["name"] for a in await service.list_user_achievements(user_id)}


@pytest.mark.asyncio
async def test_seeding_is_idempotent(db):
    service = AchievementService(db)
    assert await service.seed_achievements() == len(ACHIEVEMENT_CATALOG)
    assert await service.seed_achievements() == 0

    total = (await db.execute(select(func.count()).select_from(Achievement))).scalar()
    assert total == len(ACHIEVEMENT_CATALOG)


@pytest.mark.asyncio
async def test_streak_milestones_are_granted_once(db, course_data):
    service = AchievementService(db)
    await service.seed_achievements()
    user_id = course_data.student.id

    granted = await service.check_streak_achievements(user_id, 7)
    assert len(granted) == 2
    assert await earned_names(service, user_id) == {"First Streak", "Week Warrior"}

    assert await service.check_streak_achievements(user_id, 7) == []
    assert await service.check_streak_achievements(user_id, 5) == []

    granted = await service.check_streak_achievements(user_id, 14)
    assert len(granted) == 1

    rows = (await db.execute(
        select(func.count()).select_from(UserAchievement).filter(UserAchievement.user_id == user_id)
    )).scalar()
    assert rows == 3


@pytest.mark.asyncio
async def test_short_streak_earns_nothing(db, course_data):
    service = AchievementService(db)
    await service.seed_achievements()
    assert await service.check_streak_achievements(course_data.student.id, 2) == []


@pytest.mark.asyncio
async def test_milestone_missing_from_catalog_is_skipped(db, course_data):
    service = AchievementService(db)
    await service.seed_achievements(
        [entry for entry in ACHIEVEMENT_CATALOG if entry["criteria"] != {"days": 7}]
    )

    granted = await service.check_streak_achievements(course_data.student.id, 10)
    assert len(granted) == 1
    assert await earned_names(service, course_data.student.id) == {"First Streak"}


@pytest.mark.asyncio
async def test_explicit_milestones_limit_the_grant(db, course_data):
    service = AchievementService(db)
    await service.seed_achievements()

    granted = await service.grant_milestones(course_data.student.id, STREAK_CATEGORY, "days", 30, milestones=[7])
    assert [g.achievement_id for g in granted] == [
        (await db.execute(select(Achievement.id).filter(Achievement.name == "Week Warrior"))).scalar()
    ]


@pytest.mark.asyncio
async def test_lesson_and_completion_achievements(db, course_data):
    service = AchievementService(db)
    await service.seed_achievements()
    user_id = course_data.student.id

    assert await service.check_lesson_achievements(user_id) == []

    for lesson_id in course_data.lesson_ids:
        db.add(LessonProgress(user_id=user_id, lesson_id=lesson_id, completed=True))
    enrollment = await db.get(Enrollment, (user_id, course_data.course_id))
    enrollment.progress = 100
    enrollment.completed_at = enrollment.enrolled_at
    await db.commit()

    assert len(await service.check_lesson_achievements(user_id)) == 1
    assert len(await service.check_completion_achievements(user_id)) == 1
    assert await earned_names(service, user_id) == {"First Lesson", "First Graduate"}

    # Other users keep their own records
    assert await service.list_user_achievements(course_data.outsider.id) == []
