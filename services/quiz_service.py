from typing import Optional, List

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.orm import selectinload

from models.course import Lesson, Module
from models.quiz import Quiz, Question, QuestionType
from services.authorization import CurrentUser, require_course_owner
from core.exceptions import NotFoundError, StateError, ValidationError
from core.logger import logger


class QuizService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_quiz_with_questions(self, quiz_id: int) -> Optional[Quiz]:
        result = await self.db.execute(
            select(Quiz).options(selectinload(Quiz.questions)).filter(Quiz.id == quiz_id)
        )
        return result.scalar_one_or_none()

    async def _lesson_course_id(self, lesson_id: int) -> int:
        result = await self.db.execute(
            select(Module.course_id).join(Lesson, Lesson.module_id == Module.id).filter(Lesson.id == lesson_id)
        )
        course_id = result.scalar_one_or_none()
        if course_id is None:
            raise NotFoundError("Lesson not found")
        return course_id

    async def _get_owned_quiz(self, user: Optional[CurrentUser], quiz_id: int) -> Quiz:
        quiz = await self.get_quiz_with_questions(quiz_id)
        if not quiz:
            raise NotFoundError("Quiz not found")
        await require_course_owner(self.db, user, await self._lesson_course_id(quiz.lesson_id))
        return quiz

    async def create_quiz(
        self,
        user: Optional[CurrentUser],
        lesson_id: int,
        title: str,
        questions: Optional[List[dict]] = None,
        attempts_allowed: int = 1,
        passing_score: Optional[int] = None,
        time_limit_minutes: Optional[int] = None,
        shuffle_questions: bool = False,
        show_results: bool = True,
        description: Optional[str] = None,
        instructions: Optional[str] = None,
    ) -> Quiz:
        """Create a quiz and its questions in one transaction.

        Question order follows the position in ``questions``.
        """
        await require_course_owner(self.db, user, await self._lesson_course_id(lesson_id))
        if attempts_allowed < 1:
            raise ValidationError("A quiz must allow at least one attempt")
        if passing_score is not None and not 0 <= passing_score <= 100:
            raise ValidationError("Passing score must be between 0 and 100")

        quiz = Quiz(
            lesson_id=lesson_id,
            title=title,
            description=description,
            instructions=instructions,
            attempts_allowed=attempts_allowed,
            passing_score=passing_score,
            time_limit_minutes=time_limit_minutes,
            shuffle_questions=shuffle_questions,
            show_results=show_results,
            questions=[self._build_question(data, index) for index, data in enumerate(questions or [])],
        )
        self.db.add(quiz)
        await self.db.commit()
        logger.info("Quiz created", quiz_id=quiz.id, lesson_id=lesson_id, questions=len(quiz.questions))
        return quiz

    @staticmethod
    def _build_question(data: dict, order: int) -> Question:
        try:
            question_type = QuestionType(data["type"])
        except (KeyError, ValueError) as e:
            raise ValidationError("Unknown question type") from e
        points = data.get("points")
        if points is None:
            points = 1
        if isinstance(points, bool) or not isinstance(points, int) or points < 1:
            raise ValidationError("Question points must be at least 1")
        options = data.get("options") if question_type == QuestionType.MULTIPLE_CHOICE else None
        return Question(
            type=question_type.value,
            question=data["question"],
            options=options,
            correct_answer=data.get("correct_answer"),
            explanation=data.get("explanation"),
            points=points,
            order=order,
        )

    async def publish_quiz(self, user: Optional[CurrentUser], quiz_id: int) -> Quiz:
        quiz = await self._get_owned_quiz(user, quiz_id)
        if not quiz.questions:
            raise StateError("Cannot publish quiz without questions")

        quiz.is_published = True
        await self.db.commit()
        logger.info("Quiz published", quiz_id=quiz_id)
        return quiz

    async def reorder_questions(self, user: Optional[CurrentUser], quiz_id: int, question_ids: List[int]) -> Quiz:
        quiz = await self._get_owned_quiz(user, quiz_id)
        by_id = {q.id: q for q in quiz.questions}
        if sorted(question_ids) != sorted(by_id):
            raise ValidationError("Question ids must match the quiz questions exactly")

        for index, question_id in enumerate(question_ids):
            by_id[question_id].order = index
        await self.db.commit()
        logger.info("Quiz questions reordered", quiz_id=quiz_id)
        return quiz
