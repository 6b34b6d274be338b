"""
lms/config/settings.py
Runtime settings for the LMS core, read once from the environment.

The composition root (lms.container) turns these into explicit
constructor arguments; services never read the environment themselves.
"""
import os
from dataclasses import dataclass, asdict
from decimal import Decimal
from functools import lru_cache
from typing import Any, Dict

from dotenv import load_dotenv

from lms.config.feature_flags import read_policy_flags

load_dotenv()

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./lms.db"


def _decimal_env(key: str, default: str) -> Decimal:
    return Decimal(os.getenv(key, default))


@dataclass(frozen=True)
class LMSSettings:
    """
    Progress, grading and enrollment settings.

    Weights are percentages of the course total and must add up to 100.
    Thresholds are fractions (0.9 = 90%).
    """
    database_url: str = DEFAULT_DATABASE_URL
    progress_calculator: str = "lesson_based"
    lesson_weight: Decimal = Decimal("70")
    assessment_weight: Decimal = Decimal("30")
    media_completion_threshold: Decimal = Decimal("0.9")
    page_completion_threshold: Decimal = Decimal("1.0")
    attempt_requires_active_enrollment: bool = False
    enforce_invitation_expiry: bool = False
    auto_complete_enrollment: bool = True
    log_level: str = "INFO"

    def __post_init__(self):
        if self.lesson_weight + self.assessment_weight != Decimal("100"):
            raise ValueError(
                f"Progress weights must sum to 100, got "
                f"{self.lesson_weight} + {self.assessment_weight}"
            )
        for name in ("media_completion_threshold", "page_completion_threshold"):
            value = getattr(self, name)
            if not Decimal("0") < value <= Decimal("1"):
                raise ValueError(f"{name} must be in (0, 1], got {value}")

    @classmethod
    def from_env(cls) -> "LMSSettings":
        """Build settings from environment variables (after .env is loaded)."""
        return cls(
            database_url=os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL),
            progress_calculator=os.getenv("LMS_PROGRESS_CALCULATOR", "lesson_based"),
            lesson_weight=_decimal_env("LMS_LESSON_WEIGHT", "70"),
            assessment_weight=_decimal_env("LMS_ASSESSMENT_WEIGHT", "30"),
            media_completion_threshold=_decimal_env("LMS_MEDIA_COMPLETION_THRESHOLD", "0.9"),
            page_completion_threshold=_decimal_env("LMS_PAGE_COMPLETION_THRESHOLD", "1.0"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            **read_policy_flags(),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Plain dict for display (Decimals as strings)."""
        return {
            key: (str(value) if isinstance(value, Decimal) else value)
            for key, value in asdict(self).items()
        }


@lru_cache(maxsize=1)
def get_settings() -> LMSSettings:
    return LMSSettings.from_env()
