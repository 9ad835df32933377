from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import select, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from core.clock import utcnow
from core.exceptions import NotFoundError, StateError, AuthorizationError, PersistenceError, ValidationError
from core.logger import logger
from models.course import Lesson, Module
from models.quiz import Quiz, QuizAttempt, QuestionAnswer
from services.authorization import CurrentUser, require_user, require_enrollment, require_course_owner
from services.grading import AnswerValue, grade_answer, calculate_score, is_passing


@dataclass
class Eligibility:
    quiz: Quiz
    course_id: int
    attempts_used: int

    @property
    def attempts_remaining(self) -> int:
        return max(0, self.quiz.attempts_allowed - self.attempts_used)


def _normalise_answers(answers: Mapping[Any, Any]) -> Dict[int, AnswerValue]:
    normalised = {}
    for question_id, raw in (answers or {}).items():
        try:
            normalised[int(question_id)] = AnswerValue.from_raw(raw)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Invalid answer for question {question_id}") from e
    return normalised


class AttemptService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def _get_quiz(self, quiz_id: int) -> Quiz:
        result = await self.db.execute(
            select(Quiz).options(selectinload(Quiz.questions)).filter(Quiz.id == quiz_id)
        )
        quiz = result.scalar_one_or_none()
        if not quiz:
            raise NotFoundError("Quiz not found")
        return quiz

    async def get_quiz_course_id(self, quiz: Quiz) -> int:
        result = await self.db.execute(
            select(Module.course_id).join(Lesson, Lesson.module_id == Module.id).filter(Lesson.id == quiz.lesson_id)
        )
        course_id = result.scalar_one_or_none()
        if course_id is None:
            raise NotFoundError("Lesson for this quiz not found")
        return course_id

    async def count_attempts(self, user_id: int, quiz_id: int) -> int:
        result = await self.db.execute(
            select(func.count(QuizAttempt.id)).filter(QuizAttempt.user_id == user_id, QuizAttempt.quiz_id == quiz_id)
        )
        return result.scalar() or 0

    async def check_eligibility(self, user: Optional[CurrentUser], quiz_id: int) -> Eligibility:
        """
        Run the submission preconditions without writing anything.

        Order matters: quiz exists and is published, the caller is enrolled
        in the quiz's course, and an attempt slot is still free.
        """
        user = require_user(user)
        quiz = await self._get_quiz(quiz_id)
        if not quiz.is_published:
            raise StateError("Quiz is not published")

        course_id = await self.get_quiz_course_id(quiz)
        try:
            await require_enrollment(self.db, user.id, course_id)
        except AuthorizationError:
            raise AuthorizationError("You must be enrolled in this course to take the quiz")

        attempts_used = await self.count_attempts(user.id, quiz.id)
        if attempts_used >= quiz.attempts_allowed:
            raise StateError(f"You have reached the maximum number of attempts ({quiz.attempts_allowed})")

        return Eligibility(quiz=quiz, course_id=course_id, attempts_used=attempts_used)

    async def submit_attempt(
        self,
        user: Optional[CurrentUser],
        quiz_id: int,
        answers: Mapping[Any, Any],
        time_spent: int = 0,
        started_at: Optional[datetime] = None,
    ) -> QuizAttempt:
        """Grade a submission and store the attempt with all of its answers."""
        eligibility = await self.check_eligibility(user, quiz_id)
        quiz = eligibility.quiz
        submitted = _normalise_answers(answers)

        total_points = 0
        earned_points = 0
        question_answers = []
        for question in quiz.questions:
            answer = submitted.get(question.id, AnswerValue.from_raw(None))
            grade = grade_answer(question, answer)
            total_points += question.points
            earned_points += grade.points_earned
            question_answers.append(QuestionAnswer(
                question_id=question.id,
                answer=answer.to_raw(),
                is_correct=grade.is_correct,
                points_earned=grade.points_earned,
            ))

        score = calculate_score(earned_points, total_points)
        completed_at = utcnow()
        time_spent = max(0, int(time_spent or 0))

        attempt = QuizAttempt(
            user_id=user.id,
            quiz_id=quiz_id,
            started_at=started_at or completed_at - timedelta(seconds=time_spent),
            completed_at=completed_at,
            score=score,
            total_points=total_points,
            passed=is_passing(score, quiz.passing_score),
            time_spent=time_spent,
            answers=question_answers,
        )

        # Attempt and answers are committed together or not at all
        self.db.add(attempt)
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("Failed to save quiz attempt", user_id=user.id, quiz_id=quiz_id, error=str(e))
            raise PersistenceError() from e

        logger.info(
            "Quiz attempt graded",
            user_id=user.id,
            quiz_id=quiz_id,
            attempt_id=attempt.id,
            score=round(score, 2),
            earned=earned_points,
            total=total_points,
            passed=attempt.passed,
        )
        return attempt

    async def list_attempts(self, user: Optional[CurrentUser], quiz_id: int) -> List[QuizAttempt]:
        user = require_user(user)
        result = await self.db.execute(
            select(QuizAttempt)
            .options(selectinload(QuizAttempt.answers))
            .filter(QuizAttempt.quiz_id == quiz_id, QuizAttempt.user_id == user.id)
            .order_by(QuizAttempt.started_at.desc(), QuizAttempt.id.desc())
        )
        return list(result.scalars().all())

    async def get_quiz_stats(self, user: Optional[CurrentUser], quiz_id: int) -> dict:
        """Aggregate attempt statistics for the quiz's instructor."""
        quiz = await self._get_quiz(quiz_id)
        course_id = await self.get_quiz_course_id(quiz)
        await require_course_owner(self.db, user, course_id)

        result = await self.db.execute(
            select(QuizAttempt).options(selectinload(QuizAttempt.answers)).filter(QuizAttempt.quiz_id == quiz_id)
        )
        attempts = result.scalars().all()
        if not attempts:
            return {
                "total_attempts": 0,
                "average_score": 0,
                "pass_rate": 0,
                "average_time_spent": 0,
                "question_stats": [],
            }

        total_attempts = len(attempts)
        question_stats = []
        for question in quiz.questions:
            answers = [a for attempt in attempts for a in attempt.answers if a.question_id == question.id]
            correct = sum(1 for a in answers if a.is_correct)
            question_stats.append({
                "question_id": question.id,
                "question": question.question,
                "correct_answers": correct,
                "total_answers": len(answers),
                "accuracy": correct / len(answers) * 100 if answers else 0,
            })

        return {
            "total_attempts": total_attempts,
            "average_score": sum(a.score for a in attempts) / total_attempts,
            "pass_rate": sum(1 for a in attempts if a.passed) / total_attempts * 100,
            "average_time_spent": sum(a.time_spent or 0 for a in attempts) / total_attempts,
            "question_stats": question_stats,
        }
