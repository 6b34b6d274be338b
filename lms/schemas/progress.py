"""
lms/schemas/progress.py
Pydantic schemas for lesson progress updates and course progress results
"""
from decimal import Decimal
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, model_validator


class ProgressUpdate(BaseModel):
    """
    Progress reported by the content viewer.
    
    Any subset of the page, media and time fields may be sent.
    """
    current_page: Optional[int] = Field(None, ge=1)
    total_pages: Optional[int] = Field(None, ge=1)
    media_position_seconds: Optional[int] = Field(None, ge=0)
    media_duration_seconds: Optional[int] = Field(None, gt=0)
    time_spent_seconds: int = Field(0, ge=0, le=86400, description="Seconds spent since last report")
    pagination_metadata: Optional[Dict[str, Any]] = None

    @model_validator(mode='after')
    def page_within_total(self):
        if self.current_page is not None and self.total_pages is not None:
            if self.current_page > self.total_pages:
                raise ValueError("current_page cannot exceed total_pages")
        return self

    class Config:
        json_schema_extra = {
            "example": {
                "current_page": 4,
                "total_pages": 10,
                "time_spent_seconds": 95
            }
        }


class AssessmentStats(BaseModel):
    total: int = 0
    passed: int = 0
    pending: int = 0
    required_total: int = 0
    required_passed: int = 0

    @property
    def all_required_passed(self) -> bool:
        return self.required_passed >= self.required_total


class CourseProgress(BaseModel):
    enrollment_id: int
    strategy: str
    percentage: Decimal
    is_complete: bool
    newly_completed: bool = False
    lessons_total: int = 0
    lessons_completed: int = 0
    assessments: Optional[AssessmentStats] = None


class LessonProgressResult(BaseModel):
    enrollment_id: int
    lesson_id: int
    highest_page_reached: int = 0
    media_progress_percentage: Optional[Decimal] = None
    time_spent_seconds: int = 0
    is_completed: bool = False
    newly_completed: bool = False
    course_progress: Optional[CourseProgress] = None

    class Config:
        from_attributes = True
