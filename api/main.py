from fastapi import FastAPI, Depends, Header, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
import hmac
import hashlib
import time
import structlog
from datetime import date, datetime
from typing import Dict, List, Optional, Union
from pydantic import BaseModel, Field, StrictBool, StrictFloat, StrictInt, StrictStr

from core.config import settings
from core.exceptions import LearningError, PersistenceError
from db.session import get_db, get_redis
from models.user import Role
from services.achievement_service import AchievementService
from services.attempt_service import AttemptService
from services.authorization import CurrentUser, require_user
from services.cache_service import InvalidationNotifier
from services.enrollment_service import EnrollmentService
from services.progress_service import ProgressService
from services.quiz_service import QuizService
from services.session_service import LearningSessionService
from services.streak_service import StreakService

logger = structlog.get_logger()

API_DESCRIPTION = """
## Learning Engine API

Quiz grading, learner progress and streak endpoints.

### Authentication

Send a signed token in the `X-Auth-Token` header:
`{user_id}:{role}:{timestamp}:{signature}` where the signature is
HMAC-SHA256 of `{user_id}:{role}:{timestamp}` with the server secret.
Tokens expire after 30 days.
"""

TAGS_METADATA = [
    {"name": "quizzes", "description": "Quiz eligibility, submission, attempts and statistics."},
    {"name": "progress", "description": "Lesson completion and course/module progress."},
    {"name": "enrollment", "description": "Course enrollment."},
    {"name": "activity", "description": "Learning sessions, streaks and achievements."},
]

app = FastAPI(
    title="Learning Engine API",
    description=API_DESCRIPTION,
    version="1.0.0",
    openapi_tags=TAGS_METADATA,
    docs_url="/docs",
    redoc_url="/redoc",
)


@app.exception_handler(LearningError)
async def learning_error_handler(request: Request, exc: LearningError):
    logger.info("Request rejected", path=request.url.path, error=type(exc).__name__, detail=exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error("Database error", path=request.url.path, error=str(exc))
    error = PersistenceError()
    return JSONResponse(status_code=error.status_code, content={"detail": error.message})


# === Pydantic Models ===

AnswerInput = Union[StrictBool, StrictInt, StrictFloat, StrictStr, None]


class AttemptSubmission(BaseModel):
    """Answers keyed by question id."""
    answers: Dict[int, AnswerInput] = Field(default_factory=dict, description="Answer per question id")
    time_spent: int = Field(0, description="Seconds spent on the attempt", ge=0)


class QuestionAnswerOut(BaseModel):
    question_id: int
    answer: AnswerInput = None
    is_correct: bool
    points_earned: int


class AttemptOut(BaseModel):
    id: int
    quiz_id: int
    score: float
    total_points: int
    passed: bool
    time_spent: int
    started_at: datetime
    completed_at: Optional[datetime] = None
    answers: List[QuestionAnswerOut] = []


class EligibilityOut(BaseModel):
    quiz_id: int
    title: str
    question_count: int
    time_limit_minutes: Optional[int] = None
    attempts_allowed: int
    attempts_remaining: int


class LessonToggle(BaseModel):
    completed: bool = Field(..., description="Mark the lesson complete or incomplete")
    session_id: Optional[int] = Field(None, description="Learning session closed by this completion")
    time_spent: Optional[int] = Field(None, description="Seconds spent on the lesson", ge=0)


class LessonToggleOut(BaseModel):
    lesson_id: int
    completed: bool
    completed_at: Optional[datetime] = None
    failed_follow_ups: List[str] = []


class ProgressOut(BaseModel):
    container_id: int
    total_lessons: int
    completed_lessons: int
    progress_percentage: int


class EnrollmentOut(BaseModel):
    course_id: int
    progress: int
    enrolled_at: datetime
    completed_at: Optional[datetime] = None


class SessionStart(BaseModel):
    course_id: int
    lesson_id: Optional[int] = None


class SessionEnd(BaseModel):
    completed: bool = False


class SessionOut(BaseModel):
    id: int
    course_id: int
    lesson_id: Optional[int] = None
    start_time: datetime
    end_time: Optional[datetime] = None
    duration: Optional[int] = None
    completed: bool


class StreakOut(BaseModel):
    current_streak: int
    longest_streak: int
    last_activity: Optional[date] = None
    is_active_today: bool


class SuccessResponse(BaseModel):
    status: str = Field(default="success", description="Operation status")


# === Identity ===

def sign_token(user_id: int, role: str, timestamp: int = None) -> str:
    timestamp = int(time.time()) if timestamp is None else timestamp
    data = f"{user_id}:{role}:{timestamp}"
    signature = hmac.new(settings.AUTH_SECRET.encode(), data.encode(), hashlib.sha256).hexdigest()
    return f"{data}:{signature}"


def verify_token(token: str) -> Optional[CurrentUser]:
    """
    Verify a signed token.
    Format: {user_id}:{role}:{timestamp}:{signature}
    """
    if not token:
        return None

    parts = token.split(':')
    if len(parts) != 4:
        return None
    user_id_str, role_str, timestamp_str, signature = parts

    try:
        user_id = int(user_id_str)
        role = Role(role_str)
        issued_at = int(timestamp_str)
    except ValueError:
        logger.warning("Malformed token", user_id=user_id_str)
        return None

    if int(time.time()) - issued_at > settings.TOKEN_TTL_SECONDS:
        logger.warning("Token expired", user_id=user_id)
        return None

    data = f"{user_id_str}:{role_str}:{timestamp_str}"
    expected_signature = hmac.new(settings.AUTH_SECRET.encode(), data.encode(), hashlib.sha256).hexdigest()
    if not hmac.compare_digest(expected_signature, signature):
        logger.warning("Token signature mismatch", user_id=user_id)
        return None

    return CurrentUser(id=user_id, role=role)


def get_current_user(x_auth_token: str = Header(None)) -> Optional[CurrentUser]:
    """None when unauthenticated; the services decide what that allows."""
    return verify_token(x_auth_token)


def _attempt_out(attempt) -> dict:
    return {
        "id": attempt.id,
        "quiz_id": attempt.quiz_id,
        "score": attempt.score,
        "total_points": attempt.total_points,
        "passed": attempt.passed,
        "time_spent": attempt.time_spent,
        "started_at": attempt.started_at,
        "completed_at": attempt.completed_at,
        "answers": [{
            "question_id": a.question_id,
            "answer": a.answer,
            "is_correct": a.is_correct,
            "points_earned": a.points_earned,
        } for a in attempt.answers],
    }


def _summary_out(summary) -> dict:
    return {
        "container_id": summary.container_id,
        "total_lessons": summary.total_lessons,
        "completed_lessons": summary.completed_lessons,
        "progress_percentage": summary.progress_percentage,
    }


# === Quizzes ===

@app.post("/api/quizzes/{quiz_id}/start", response_model=EligibilityOut, tags=["quizzes"],
          summary="Check quiz eligibility")
async def start_quiz(
    quiz_id: int,
    user: Optional[CurrentUser] = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Confirm the caller may take the quiz. Does not use up an attempt."""
    eligibility = await AttemptService(db).check_eligibility(user, quiz_id)
    return {
        "quiz_id": eligibility.quiz.id,
        "title": eligibility.quiz.title,
        "question_count": len(eligibility.quiz.questions),
        "time_limit_minutes": eligibility.quiz.time_limit_minutes,
        "attempts_allowed": eligibility.quiz.attempts_allowed,
        "attempts_remaining": eligibility.attempts_remaining,
    }


@app.post("/api/quizzes/{quiz_id}/attempts", response_model=AttemptOut, tags=["quizzes"],
          summary="Submit a quiz attempt")
async def submit_quiz(
    quiz_id: int,
    submission: AttemptSubmission,
    user: Optional[CurrentUser] = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    service = AttemptService(db)
    attempt = await service.submit_attempt(user, quiz_id, submission.answers, submission.time_spent)
    await InvalidationNotifier(redis).notify([f"/quizzes/{quiz_id}", f"/users/{user.id}/attempts"])
    return _attempt_out(attempt)


@app.get("/api/quizzes/{quiz_id}/attempts", response_model=List[AttemptOut], tags=["quizzes"],
         summary="List my attempts")
async def list_attempts(
    quiz_id: int,
    user: Optional[CurrentUser] = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    attempts = await AttemptService(db).list_attempts(user, quiz_id)
    return [_attempt_out(a) for a in attempts]


@app.get("/api/quizzes/{quiz_id}/stats", tags=["quizzes"], summary="Quiz statistics for the instructor")
async def quiz_stats(
    quiz_id: int,
    user: Optional[CurrentUser] = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await AttemptService(db).get_quiz_stats(user, quiz_id)


@app.post("/api/quizzes/{quiz_id}/publish", response_model=SuccessResponse, tags=["quizzes"],
          summary="Publish a quiz")
async def publish_quiz(
    quiz_id: int,
    user: Optional[CurrentUser] = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    await QuizService(db).publish_quiz(user, quiz_id)
    await InvalidationNotifier(redis).notify([f"/quizzes/{quiz_id}"])
    return {"status": "success"}


# === Progress ===

@app.post("/api/lessons/{lesson_id}/progress", response_model=LessonToggleOut, tags=["progress"],
          summary="Mark a lesson complete or incomplete")
async def toggle_lesson(
    lesson_id: int,
    toggle: LessonToggle,
    user: Optional[CurrentUser] = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    result = await ProgressService(db).set_lesson_completion(
        user, lesson_id, toggle.completed, session_id=toggle.session_id, time_spent=toggle.time_spent
    )
    await InvalidationNotifier(redis).notify([f"/courses/{result.course_id}", "/dashboard"])
    return {
        "lesson_id": lesson_id,
        "completed": result.lesson_progress.completed,
        "completed_at": result.lesson_progress.completed_at,
        "failed_follow_ups": result.follow_ups.failed,
    }


@app.get("/api/modules/{module_id}/progress", response_model=ProgressOut, tags=["progress"])
async def module_progress(
    module_id: int,
    user: Optional[CurrentUser] = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    user = require_user(user)
    return _summary_out(await ProgressService(db).compute_module_progress(user.id, module_id))


@app.get("/api/courses/{course_id}/progress", tags=["progress"])
async def course_progress(
    course_id: int,
    user: Optional[CurrentUser] = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    progress = await ProgressService(db).get_course_progress(user, course_id)
    enrollment = progress["enrollment"]
    return {
        "enrollment": {
            "course_id": enrollment.course_id,
            "progress": enrollment.progress,
            "enrolled_at": enrollment.enrolled_at,
            "completed_at": enrollment.completed_at,
        },
        "lesson_progress": {
            lesson_id: {"completed": p.completed, "completed_at": p.completed_at, "time_spent": p.time_spent}
            for lesson_id, p in progress["lesson_progress"].items()
        },
        "stats": progress["stats"],
    }


# === Enrollment ===

@app.post("/api/courses/{course_id}/enrollment", response_model=EnrollmentOut, tags=["enrollment"])
async def enroll(
    course_id: int,
    user: Optional[CurrentUser] = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    enrollment = await EnrollmentService(db).enroll(user, course_id)
    await InvalidationNotifier(redis).notify(["/dashboard", "/courses", f"/courses/{course_id}"])
    return {
        "course_id": enrollment.course_id,
        "progress": enrollment.progress,
        "enrolled_at": enrollment.enrolled_at,
        "completed_at": enrollment.completed_at,
    }


@app.delete("/api/courses/{course_id}/enrollment", response_model=SuccessResponse, tags=["enrollment"])
async def unenroll(
    course_id: int,
    user: Optional[CurrentUser] = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    await EnrollmentService(db).unenroll(user, course_id)
    await InvalidationNotifier(redis).notify(["/dashboard", "/courses", f"/courses/{course_id}"])
    return {"status": "success"}


# === Activity ===

@app.post("/api/sessions", response_model=SessionOut, tags=["activity"], summary="Start a learning session")
async def start_session(
    data: SessionStart,
    user: Optional[CurrentUser] = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    session = await LearningSessionService(db).start_session(user, data.course_id, data.lesson_id)
    return _session_out(session)


@app.post("/api/sessions/{session_id}/end", response_model=SessionOut, tags=["activity"],
          summary="End a learning session")
async def end_session(
    session_id: int,
    data: SessionEnd,
    user: Optional[CurrentUser] = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await LearningSessionService(db).end_session(user, session_id, data.completed)
    return _session_out(result.session)


def _session_out(session) -> dict:
    return {
        "id": session.id,
        "course_id": session.course_id,
        "lesson_id": session.lesson_id,
        "start_time": session.start_time,
        "end_time": session.end_time,
        "duration": session.duration,
        "completed": session.completed,
    }


@app.get("/api/me/streak", response_model=StreakOut, tags=["activity"])
async def my_streak(
    user: Optional[CurrentUser] = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    user = require_user(user)
    return await StreakService(db).get_streak_info(user.id)


@app.get("/api/me/achievements", tags=["activity"])
async def my_achievements(
    user: Optional[CurrentUser] = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    user = require_user(user)
    return await AchievementService(db).list_user_achievements(user.id)


@app.get("/api/health", tags=["info"], include_in_schema=False)
async def health():
    return {"status": "ok"}
