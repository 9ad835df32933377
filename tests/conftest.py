"""
Pytest configuration and fixtures for the learning engine tests.
"""
import sys
import os
from types import SimpleNamespace

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

# Add project root to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from models.base import Base
from models.user import User, Role
from models.course import Course, CourseStatus, Module, Lesson
from models.enrollment import Enrollment
from models.quiz import Quiz, Question, QuestionType
from models import session as _session_models, stats as _stats_models  # noqa: F401
from services.authorization import CurrentUser

# Configure pytest-asyncio
pytest_plugins = ('pytest_asyncio',)


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def course_data(db):
    """A published course with one module of two lessons and an enrolled student."""
    instructor = User(id=1, email="instructor@example.com", name="Instructor", role=Role.INSTRUCTOR.value)
    student = User(id=2, email="student@example.com", name="Student", role=Role.STUDENT.value)
    outsider = User(id=3, email="outsider@example.com", name="Outsider", role=Role.STUDENT.value)
    db.add_all([instructor, student, outsider])

    course = Course(id=10, title="Python Basics", status=CourseStatus.PUBLISHED.value, instructor_id=1)
    module = Module(id=20, course_id=10, title="Getting started", order=0)
    lesson_1 = Lesson(id=30, module_id=20, title="Variables", order=0)
    lesson_2 = Lesson(id=31, module_id=20, title="Loops", order=1)
    db.add_all([course, module, lesson_1, lesson_2])
    db.add(Enrollment(user_id=2, course_id=10, progress=0))
    await db.commit()

    return SimpleNamespace(
        course_id=10,
        module_id=20,
        lesson_ids=[30, 31],
        instructor=CurrentUser(id=1, role=Role.INSTRUCTOR),
        student=CurrentUser(id=2, role=Role.STUDENT),
        outsider=CurrentUser(id=3, role=Role.STUDENT),
    )


@pytest_asyncio.fixture
async def quiz_data(db, course_data):
    """Q1 multiple choice worth 10, Q2 true/false worth 5, passing score 70."""
    quiz = Quiz(
        id=40,
        lesson_id=30,
        title="Warm-up",
        attempts_allowed=2,
        passing_score=70,
        is_published=True,
        questions=[
            Question(id=50, type=QuestionType.MULTIPLE_CHOICE.value, question="What is 2+2?",
                     options=["3", "4", "5"], correct_answer="4", points=10, order=0),
            Question(id=51, type=QuestionType.TRUE_FALSE.value, question="Python is dynamically typed",
                     correct_answer=True, points=5, order=1),
        ],
    )
    db.add(quiz)
    await db.commit()
    return SimpleNamespace(quiz_id=40, q1=50, q2=51, **vars(course_data))
