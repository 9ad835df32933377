from sqlalchemy import Column, Integer, Boolean, DateTime, ForeignKey
from models.base import Base
from core.clock import utcnow


class Enrollment(Base):
    __tablename__ = "enrollments"

    user_id = Column(Integer, ForeignKey("users.id"), primary_key=True)
    course_id = Column(Integer, ForeignKey("courses.id", ondelete="CASCADE"), primary_key=True, index=True)
    enrolled_at = Column(DateTime, default=utcnow, nullable=False)
    progress = Column(Integer, default=0, nullable=False)  # 0-100
    completed_at = Column(DateTime, nullable=True)


class LessonProgress(Base):
    __tablename__ = "lesson_progress"

    user_id = Column(Integer, ForeignKey("users.id"), primary_key=True)
    lesson_id = Column(Integer, ForeignKey("lessons.id", ondelete="CASCADE"), primary_key=True, index=True)
    completed = Column(Boolean, default=False, nullable=False)
    completed_at = Column(DateTime, nullable=True)
    time_spent = Column(Integer, default=0, nullable=False)  # seconds
