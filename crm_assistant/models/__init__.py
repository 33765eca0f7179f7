"""
Models module for data structures
"""

from .conversation import MessageRole, ConversationMessage, PageContext, ChatRequest
from .actions import (
    ActionType,
    LeadStage,
    TERMINAL_STAGES,
    Recognized,
    Unrecognized,
    Malformed,
    ParsedAction,
    ActionResult
)

__all__ = [
    'MessageRole',
    'ConversationMessage',
    'PageContext',
    'ChatRequest',
    'ActionType',
    'LeadStage',
    'TERMINAL_STAGES',
    'Recognized',
    'Unrecognized',
    'Malformed',
    'ParsedAction',
    'ActionResult'
]
