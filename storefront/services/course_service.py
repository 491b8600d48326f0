from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from storefront.core.catalog import Lesson, course_lessons
from storefront.core.errors import PersistenceError
from storefront.core.id_utils import generate_row_id
from storefront.db.store import RecordStore
from storefront.models.course import CourseProgress


@dataclass(frozen=True)
class LessonProgress:
    lesson: Lesson
    completed: bool
    completed_at: datetime | None


def completed_lessons(db: Session, *, user_id: str, course_id: str) -> dict[str, CourseProgress]:
    try:
        rows = db.execute(
            select(CourseProgress).where(
                CourseProgress.user_id == user_id,
                CourseProgress.course_id == course_id,
                CourseProgress.completed.is_(True),
            )
        ).scalars().all()
    except SQLAlchemyError as exc:
        raise PersistenceError("Failed to read course progress") from exc
    return {row.lesson_id: row for row in rows}


def course_progress(db: Session, *, user_id: str, course_id: str) -> list[LessonProgress]:
    lessons = course_lessons(course_id) or ()
    done = completed_lessons(db, user_id=user_id, course_id=course_id)
    return [
        LessonProgress(
            lesson=lesson,
            completed=lesson.id in done,
            completed_at=done[lesson.id].completed_at if lesson.id in done else None,
        )
        for lesson in lessons
    ]


def progress_percent(progress: list[LessonProgress]) -> int:
    if not progress:
        return 0
    completed = sum(1 for item in progress if item.completed)
    return round(completed * 100 / len(progress))


def set_lesson_completed(
    db: Session,
    *,
    user_id: str,
    course_id: str,
    lesson_id: str,
    completed: bool,
) -> CourseProgress | None:
    """Upserts a completion row, or deletes it when ``completed`` is false."""
    store = RecordStore(db, CourseProgress)
    if not completed:
        store.delete_where(
            CourseProgress.user_id == user_id,
            CourseProgress.course_id == course_id,
            CourseProgress.lesson_id == lesson_id,
        )
        return None

    try:
        existing = db.execute(
            select(CourseProgress).where(
                CourseProgress.user_id == user_id,
                CourseProgress.course_id == course_id,
                CourseProgress.lesson_id == lesson_id,
            )
        ).scalar_one_or_none()
    except SQLAlchemyError as exc:
        raise PersistenceError("Failed to read course progress") from exc

    now = datetime.now(timezone.utc)
    if existing:
        return store.update(existing.id, completed=True, completed_at=existing.completed_at or now)
    return store.insert(
        CourseProgress(
            id=generate_row_id(),
            user_id=user_id,
            course_id=course_id,
            lesson_id=lesson_id,
            completed=True,
            completed_at=now,
        )
    )
