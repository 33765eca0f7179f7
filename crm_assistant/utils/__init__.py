"""Utility functions and helpers."""

from .sanitizer import sanitize, strip_lone_surrogates

__all__ = [
    'sanitize',
    'strip_lone_surrogates'
]
