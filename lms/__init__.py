"""
lms
Progress, grading and enrollment core for the learning-management system.
"""

__version__ = "1.0.0"
