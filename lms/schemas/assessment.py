"""
lms/schemas/assessment.py
Pydantic schemas for attempt submission, manual grading and results
"""
from decimal import Decimal
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, Field, field_validator


# ================= REQUEST SCHEMAS =================

class AnswerSubmission(BaseModel):
    """
    One answer inside a submission.
    
    answer shape by question type:
    - multiple_choice: option id or list of option ids
    - matching: {option_id: definition}
    - true_false / short_answer / essay: text
    - file_upload: file_path instead of answer
    """
    question_id: int = Field(..., gt=0, description="Question being answered")
    answer: Optional[Union[int, str, bool, List[Union[int, str]], Dict[str, str]]] = Field(
        None, description="Submitted value, shape depends on question type"
    )
    file_path: Optional[str] = Field(None, max_length=500, description="Stored upload reference")

    class Config:
        json_schema_extra = {
            "example": {
                "question_id": 12,
                "answer": [31, 33]
            }
        }


class ManualGrade(BaseModel):
    """Human grade for one answer."""
    answer_id: int = Field(..., gt=0)
    score: Decimal = Field(..., description="Points awarded, 0 up to the question's points")
    feedback: Optional[str] = Field(None, max_length=5000)

    @field_validator('feedback')
    @classmethod
    def strip_feedback(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return v.strip() or None


# ================= RESPONSE SCHEMAS =================

class EligibilityResult(BaseModel):
    eligible: bool
    rule: Optional[str] = Field(None, description="First rule that failed, if any")
    attempts_used: int = 0
    attempts_remaining: Optional[int] = Field(None, description="None when unlimited")
    next_attempt_number: int = 1
