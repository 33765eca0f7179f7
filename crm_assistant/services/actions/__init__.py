"""Parsing and execution of action commands embedded in assistant replies."""

from .executor import ActionExecutor, VALID_STAGES
from .parser import parse_actions, parse_block

__all__ = [
    'ActionExecutor',
    'VALID_STAGES',
    'parse_actions',
    'parse_block',
]
