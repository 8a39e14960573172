"""
Core domain models and business logic.

This package contains data types and the pure scoring logic that is
independent of any specific pipeline stage.
"""

from .scoring import categorize, is_breaking, score_story, urgency_score
from .text import clean_text, story_fingerprint, strip_breaking_prefix
from .types import Category, Route, Story

__all__ = [
    "Category",
    "Route",
    "Story",
    "clean_text",
    "story_fingerprint",
    "strip_breaking_prefix",
    "score_story",
    "urgency_score",
    "categorize",
    "is_breaking",
]
