from datetime import datetime

from pydantic import BaseModel


class LessonOut(BaseModel):
    id: str
    title: str
    description: str
    duration_minutes: int
    video_url: str
    resources: list[str]
    completed: bool
    completed_at: datetime | None = None


class CourseOut(BaseModel):
    course_id: str
    title: str
    lessons: list[LessonOut]
    completed_count: int
    progress_percent: int


class LessonProgressIn(BaseModel):
    completed: bool = True


class LessonProgressOut(BaseModel):
    course_id: str
    lesson_id: str
    completed: bool
    progress_percent: int
