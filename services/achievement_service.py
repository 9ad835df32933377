from typing import Dict, Iterable, List, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.logger import logger
from models.enrollment import Enrollment, LessonProgress
from models.stats import Achievement, UserAchievement

STREAK_CATEGORY = "streak"
LESSONS_CATEGORY = "lessons"
COMPLETION_CATEGORY = "completion"

# Seed data for the achievement catalog
ACHIEVEMENT_CATALOG = [
    {"name": "First Streak", "description": "Complete lessons for 3 consecutive days", "icon": "🔥",
     "category": STREAK_CATEGORY, "criteria": {"days": 3}, "points": 10},
    {"name": "Week Warrior", "description": "Complete lessons for 7 consecutive days", "icon": "🔥",
     "category": STREAK_CATEGORY, "criteria": {"days": 7}, "points": 25},
    {"name": "Fortnight Fighter", "description": "Complete lessons for 14 consecutive days", "icon": "🔥",
     "category": STREAK_CATEGORY, "criteria": {"days": 14}, "points": 50},
    {"name": "Monthly Master", "description": "Complete lessons for 30 consecutive days", "icon": "🔥",
     "category": STREAK_CATEGORY, "criteria": {"days": 30}, "points": 100},
    {"name": "Two-Month Titan", "description": "Complete lessons for 60 consecutive days", "icon": "🔥",
     "category": STREAK_CATEGORY, "criteria": {"days": 60}, "points": 250},
    {"name": "Hundred Club", "description": "Complete lessons for 100 consecutive days", "icon": "🔥",
     "category": STREAK_CATEGORY, "criteria": {"days": 100}, "points": 500},
    {"name": "First Graduate", "description": "Complete your first course", "icon": "🎓",
     "category": COMPLETION_CATEGORY, "criteria": {"courses": 1}, "points": 50},
    {"name": "Course Collector", "description": "Complete 3 courses", "icon": "🎓",
     "category": COMPLETION_CATEGORY, "criteria": {"courses": 3}, "points": 150},
    {"name": "Learning Master", "description": "Complete 5 courses", "icon": "🎓",
     "category": COMPLETION_CATEGORY, "criteria": {"courses": 5}, "points": 300},
    {"name": "Academic Achiever", "description": "Complete 10 courses", "icon": "🎓",
     "category": COMPLETION_CATEGORY, "criteria": {"courses": 10}, "points": 750},
    {"name": "First Lesson", "description": "Complete your first lesson", "icon": "📚",
     "category": LESSONS_CATEGORY, "criteria": {"lessons": 1}, "points": 5},
    {"name": "Lesson Learner", "description": "Complete 10 lessons", "icon": "📚",
     "category": LESSONS_CATEGORY, "criteria": {"lessons": 10}, "points": 25},
    {"name": "Knowledge Seeker", "description": "Complete 25 lessons", "icon": "📚",
     "category": LESSONS_CATEGORY, "criteria": {"lessons": 25}, "points": 75},
    {"name": "Study Machine", "description": "Complete 50 lessons", "icon": "📚",
     "category": LESSONS_CATEGORY, "criteria": {"lessons": 50}, "points": 150},
    {"name": "Century Scholar", "description": "Complete 100 lessons", "icon": "📚",
     "category": LESSONS_CATEGORY, "criteria": {"lessons": 100}, "points": 400},
]


class AchievementService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def _catalog(self, category: str, criteria_key: str) -> Dict[int, Achievement]:
        """Catalog achievements of a category keyed by their milestone value."""
        result = await self.db.execute(select(Achievement).filter(Achievement.category == category))
        catalog = {}
        for achievement in result.scalars().all():
            milestone = (achievement.criteria or {}).get(criteria_key)
            if isinstance(milestone, int) and milestone not in catalog:
                catalog[milestone] = achievement
        return catalog

    async def _held_milestones(self, user_id: int, category: str, criteria_key: str) -> set:
        result = await self.db.execute(
            select(Achievement.criteria)
            .join(UserAchievement, UserAchievement.achievement_id == Achievement.id)
            .filter(UserAchievement.user_id == user_id, Achievement.category == category)
        )
        return {(criteria or {}).get(criteria_key) for criteria in result.scalars().all()}

    async def grant_milestones(
        self,
        user_id: int,
        category: str,
        criteria_key: str,
        value: int,
        milestones: Optional[Iterable[int]] = None,
    ) -> List[UserAchievement]:
        """
        Grant every milestone of ``category`` that ``value`` has reached.

        A milestone the user already holds (same category and criteria) is
        never granted twice, and milestones missing from the catalog are
        skipped. ``milestones`` defaults to every milestone in the catalog.
        """
        catalog = await self._catalog(category, criteria_key)
        held = await self._held_milestones(user_id, category, criteria_key)
        candidates = sorted(milestones) if milestones is not None else sorted(catalog)

        granted = []
        for milestone in candidates:
            if value < milestone or milestone in held:
                continue
            achievement = catalog.get(milestone)
            if achievement is None:
                logger.warning("Achievement missing from catalog", category=category, milestone=milestone)
                continue
            grant = UserAchievement(user_id=user_id, achievement_id=achievement.id)
            self.db.add(grant)
            granted.append(grant)
            held.add(milestone)

        if granted:
            await self.db.commit()
            logger.info(
                "Achievements granted",
                user_id=user_id,
                category=category,
                achievement_ids=[g.achievement_id for g in granted],
            )
        return granted

    async def check_streak_achievements(self, user_id: int, current_streak: int) -> List[UserAchievement]:
        return await self.grant_milestones(
            user_id, STREAK_CATEGORY, "days", current_streak, milestones=settings.STREAK_MILESTONES
        )

    async def check_lesson_achievements(self, user_id: int) -> List[UserAchievement]:
        completed_lessons = (await self.db.execute(
            select(func.count()).select_from(LessonProgress).filter(
                LessonProgress.user_id == user_id, LessonProgress.completed == True
            )
        )).scalar() or 0
        return await self.grant_milestones(user_id, LESSONS_CATEGORY, "lessons", completed_lessons)

    async def check_completion_achievements(self, user_id: int) -> List[UserAchievement]:
        completed_courses = (await self.db.execute(
            select(func.count()).select_from(Enrollment).filter(
                Enrollment.user_id == user_id, Enrollment.completed_at.is_not(None)
            )
        )).scalar() or 0
        return await self.grant_milestones(user_id, COMPLETION_CATEGORY, "courses", completed_courses)

    async def list_user_achievements(self, user_id: int) -> List[dict]:
        result = await self.db.execute(
            select(UserAchievement, Achievement)
            .join(Achievement, UserAchievement.achievement_id == Achievement.id)
            .filter(UserAchievement.user_id == user_id)
            .order_by(UserAchievement.earned_at.desc())
        )
        return [{
            "id": achievement.id,
            "name": achievement.name,
            "description": achievement.description,
            "icon": achievement.icon,
            "category": achievement.category,
            "points": achievement.points,
            "earned_at": grant.earned_at,
        } for grant, achievement in result.all()]

    async def seed_achievements(self, catalog: Optional[List[dict]] = None) -> int:
        """Insert catalog entries that are not present yet (matched on category and criteria)."""
        catalog = catalog if catalog is not None else ACHIEVEMENT_CATALOG
        result = await self.db.execute(select(Achievement.category, Achievement.criteria))
        existing = {(category, tuple(sorted((criteria or {}).items()))) for category, criteria in result.all()}

        created = 0
        for data in catalog:
            key = (data["category"], tuple(sorted(data["criteria"].items())))
            if key in existing:
                continue
            self.db.add(Achievement(**data))
            existing.add(key)
            created += 1

        await self.db.commit()
        logger.info("Achievement catalog seeded", created=created, skipped=len(catalog) - created)
        return created
