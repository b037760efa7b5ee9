# utils/__init__.py
"""Text helpers, locking and logging setup."""

from .locks import KeyedLock
from .similarity import is_rewrite, text_similarity
from .text_processing import parse_labeled_sections, trim_to_sentence

__all__ = [
    "KeyedLock",
    "is_rewrite",
    "parse_labeled_sections",
    "text_similarity",
    "trim_to_sentence",
]
