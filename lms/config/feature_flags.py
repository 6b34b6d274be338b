"""
Feature Flags Configuration

Policy switches for behaviors whose intended semantics are still open.
Flags are read from environment variables by LMSSettings.from_env and
reach services only through the settings object.
"""
import os

from dotenv import load_dotenv

load_dotenv()


def get_bool_env(key: str, default: bool = False) -> bool:
    """Get a boolean value from environment variable."""
    value = os.getenv(key, str(default)).lower()
    return value in ('true', '1', 'yes', 'on', 'enabled')


# Environment variable -> LMSSettings field, with its default.
#
# LMS_ATTEMPT_REQUIRES_ACTIVE_ENROLLMENT: dropped learners can currently
#   start new attempts; flip to require an enrollment with content access.
# LMS_ENFORCE_INVITATION_EXPIRY: expires_at is stored but not checked on
#   acceptance unless this is on.
# LMS_AUTO_COMPLETE_ENROLLMENT: completing all lessons (and required
#   assessments) completes the enrollment.
POLICY_FLAGS = {
    'LMS_ATTEMPT_REQUIRES_ACTIVE_ENROLLMENT': ('attempt_requires_active_enrollment', False),
    'LMS_ENFORCE_INVITATION_EXPIRY': ('enforce_invitation_expiry', False),
    'LMS_AUTO_COMPLETE_ENROLLMENT': ('auto_complete_enrollment', True),
}


def read_policy_flags() -> dict:
    """Settings field -> value for every policy flag."""
    return {
        field: get_bool_env(env_name, default)
        for env_name, (field, default) in POLICY_FLAGS.items()
    }
