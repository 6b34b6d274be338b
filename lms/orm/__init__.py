from .base import Base

from .user import User, UserRole
from .course import Course, CourseStatus, CourseVisibility, ContentType, Lesson
from .assessment import Assessment, AssessmentStatus, Question, QuestionType, QuestionOption
from .assessment_attempt import AssessmentAttempt, AttemptAnswer, AttemptStatus
from .enrollment import Enrollment, EnrollmentStatus
from .lesson_progress import LessonProgress
from .course_invitation import CourseInvitation, InvitationStatus
from .domain_event_log import DomainEventLog
