"""
lms/exceptions.py
Domain exceptions for grading, attempts, progress and enrollment.

Every exception carries:
- message: human-readable description
- code: machine-readable error code
- context: identifiers of the entity involved and the rule that failed
"""
from typing import Any, Dict, Optional


class LMSException(Exception):
    """Base exception for the LMS core"""
    code: str = "LMS_ERROR"

    def __init__(self, message: str, code: str = None, context: Optional[Dict[str, Any]] = None):
        self.message = message
        if code:
            self.code = code
        self.context = context or {}
        super().__init__(self.message)


class IneligibleAttemptError(LMSException):
    """
    Raised when a user may not start a new attempt.

    Rules:
    - assessment_not_published
    - not_enrolled
    - enrollment_inactive
    - max_attempts_reached
    """
    code = "INELIGIBLE_ATTEMPT"

    def __init__(self, rule: str, assessment_id: int, user_id: int, message: str = None):
        self.rule = rule
        super().__init__(
            message or f"User {user_id} cannot attempt assessment {assessment_id}: {rule}",
            context={"rule": rule, "assessment_id": assessment_id, "user_id": user_id},
        )


class MaxAttemptsReachedError(IneligibleAttemptError):
    code = "MAX_ATTEMPTS_REACHED"

    def __init__(self, assessment_id: int, user_id: int, max_attempts: int, attempts_used: int):
        self.max_attempts = max_attempts
        self.attempts_used = attempts_used
        super().__init__(
            "max_attempts_reached",
            assessment_id,
            user_id,
            message=(
                f"User {user_id} has used {attempts_used} of {max_attempts} "
                f"attempts on assessment {assessment_id}"
            ),
        )
        self.context.update({"max_attempts": max_attempts, "attempts_used": attempts_used})


class InvalidTransitionError(LMSException):
    """Raised when a status change is not allowed from the current state."""
    code = "INVALID_TRANSITION"

    def __init__(
        self,
        from_state: str,
        to_state: str,
        model: str,
        model_id: Any = None,
        reason: str = None,
    ):
        self.from_state = from_state
        self.to_state = to_state
        self.model = model
        self.model_id = model_id
        self.reason = reason
        message = f"Cannot transition {model} {model_id} from '{from_state}' to '{to_state}'"
        if reason:
            message += f": {reason}"
        super().__init__(
            message,
            context={
                "from": from_state,
                "to": to_state,
                "model": model,
                "model_id": model_id,
                "reason": reason,
            },
        )


class ValidationFailureError(LMSException):
    """
    Raised for malformed input.

    Examples:
    - Question id not part of the assessment
    - Same question answered twice in one submission
    - Manual score outside [0, points]
    - Empty grade list
    """
    code = "VALIDATION_FAILURE"

    def __init__(self, message: str, field: str = None, **context):
        if field:
            context["field"] = field
        super().__init__(message, context=context)


class AlreadyEnrolledError(LMSException):
    code = "ALREADY_ENROLLED"

    def __init__(self, user_id: int, course_id: int, status: str):
        super().__init__(
            f"User {user_id} already has a {status} enrollment in course {course_id}",
            context={"user_id": user_id, "course_id": course_id, "status": status},
        )


class CourseNotPublishedError(LMSException):
    code = "COURSE_NOT_PUBLISHED"

    def __init__(self, course_id: int, status: str):
        super().__init__(
            f"Course {course_id} is {status} and does not accept enrollments",
            context={"course_id": course_id, "status": status},
        )


class InvitationNotPendingError(LMSException):
    code = "INVITATION_NOT_PENDING"

    def __init__(self, invitation_id: int, status: str):
        super().__init__(
            f"Invitation {invitation_id} is {status}, not pending",
            context={"invitation_id": invitation_id, "status": status},
        )


class InvitationExpiredError(LMSException):
    code = "INVITATION_EXPIRED"

    def __init__(self, invitation_id: int, expires_at=None):
        super().__init__(
            f"Invitation {invitation_id} has expired",
            context={
                "invitation_id": invitation_id,
                "expires_at": expires_at.isoformat() if expires_at else None,
            },
        )


class NotFoundError(LMSException):
    """
    Raised when requested resource doesn't exist.
    """
    code = "NOT_FOUND"

    def __init__(self, resource: str, identifier: Any = None):
        self.resource = resource
        self.identifier = identifier
        message = f"{resource} not found"
        if identifier is not None:
            message = f"{resource} with id '{identifier}' not found"
        super().__init__(message, context={"resource": resource, "id": identifier})
