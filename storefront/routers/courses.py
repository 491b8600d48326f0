from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from storefront.core.api_docs import error_responses
from storefront.core.catalog import absolute_url, course_lessons, get_product
from storefront.core.deps import get_db
from storefront.core.errors import InvalidTokenError, PersistenceError
from storefront.core.security import get_current_user
from storefront.models.user import User
from storefront.schemas.course import CourseOut, LessonOut, LessonProgressIn, LessonProgressOut
from storefront.services.course_service import (
    course_progress,
    progress_percent,
    set_lesson_completed,
)
from storefront.services.entitlement_service import AccessIdentity, has_access

router = APIRouter(prefix="/courses", tags=["courses"])


def _require_course_access(db: Session, *, course_id: str, user: User) -> None:
    if course_lessons(course_id) is None:
        raise HTTPException(status_code=404, detail="Course not found")
    if not has_access(db, identity=AccessIdentity.for_user(user), product_id=course_id):
        raise HTTPException(status_code=403, detail="Purchase this course to access its lessons")


@router.get(
    "/{course_id}",
    response_model=CourseOut,
    summary="Get course lessons and progress",
    description="Requires a completed purchase of the course product.",
    responses=error_responses(401, 403, 404, 500, domain_errors=(InvalidTokenError, PersistenceError)),
)
def get_course(
    course_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    _require_course_access(db, course_id=course_id, user=user)
    progress = course_progress(db, user_id=user.id, course_id=course_id)
    product = get_product(course_id)
    return CourseOut(
        course_id=course_id,
        title=product.title if product else course_id,
        lessons=[
            LessonOut(
                id=item.lesson.id,
                title=item.lesson.title,
                description=item.lesson.description,
                duration_minutes=item.lesson.duration_minutes,
                video_url=absolute_url(item.lesson.video_path),
                resources=list(item.lesson.resources),
                completed=item.completed,
                completed_at=item.completed_at,
            )
            for item in progress
        ],
        completed_count=sum(1 for item in progress if item.completed),
        progress_percent=progress_percent(progress),
    )


@router.put(
    "/{course_id}/lessons/{lesson_id}/progress",
    response_model=LessonProgressOut,
    summary="Mark a lesson complete or incomplete",
    responses=error_responses(401, 403, 404, 422, 500, domain_errors=(InvalidTokenError, PersistenceError)),
)
def update_lesson_progress(
    course_id: str,
    lesson_id: str,
    payload: LessonProgressIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    _require_course_access(db, course_id=course_id, user=user)
    if lesson_id not in {lesson.id for lesson in course_lessons(course_id) or ()}:
        raise HTTPException(status_code=404, detail="Lesson not found")

    set_lesson_completed(
        db,
        user_id=user.id,
        course_id=course_id,
        lesson_id=lesson_id,
        completed=payload.completed,
    )
    return LessonProgressOut(
        course_id=course_id,
        lesson_id=lesson_id,
        completed=payload.completed,
        progress_percent=progress_percent(course_progress(db, user_id=user.id, course_id=course_id)),
    )
