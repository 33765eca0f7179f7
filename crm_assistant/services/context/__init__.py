"""Business context assembly for the assistant's system prompt."""

from .assembler import AssembledContext, ContextAssembler
from .fetching import SectionResult, fetch_all
from .rules import DEFAULT_RULES, ContextRule

__all__ = [
    'AssembledContext',
    'ContextAssembler',
    'ContextRule',
    'DEFAULT_RULES',
    'SectionResult',
    'fetch_all',
]
