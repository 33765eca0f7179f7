"""
Action command parser.

Grammar::

    block  := "[ACTION:" type ( "|" param )* "]"
    type   := \\w+
    param  := key "=" value          (split on the first "=")

Blocks are scanned left to right. Parameters with an empty key or value
are ignored. A block that never closes, or whose type token is not a
single word, is reported as Malformed rather than skipped.
"""
import re
from typing import Dict, List

from crm_assistant.models.actions import (
    ActionType,
    Malformed,
    ParsedAction,
    Recognized,
    Unrecognized,
)

OPEN_TOKEN = "[ACTION:"
CLOSE_TOKEN = "]"
PARAM_SEPARATOR = "|"

_TYPE_TOKEN = re.compile(r"\w+")
_KNOWN_TYPES = {t.value: t for t in ActionType}


def _parse_params(parts: List[str]) -> Dict[str, str]:
    params: Dict[str, str] = {}
    for part in parts:
        key, sep, value = part.partition("=")
        key, value = key.strip(), value.strip()
        if not sep or not key or not value:
            continue
        params[key] = value
    return params


def parse_block(raw: str, body: str) -> ParsedAction:
    """Parse the text between ``[ACTION:`` and ``]``."""
    type_token, *param_parts = body.split(PARAM_SEPARATOR)
    type_token = type_token.strip()
    if not _TYPE_TOKEN.fullmatch(type_token):
        return Malformed(raw=raw, reason=f"tipo de acción inválido '{type_token}'")

    params = _parse_params(param_parts)
    if type_token in _KNOWN_TYPES:
        return Recognized(type=_KNOWN_TYPES[type_token], params=params, raw=raw)
    return Unrecognized(type=type_token, params=params, raw=raw)


def parse_actions(text: str) -> List[ParsedAction]:
    """Extract every action block from generated text, in order of appearance."""
    actions: List[ParsedAction] = []
    position = text.find(OPEN_TOKEN)
    while position != -1:
        body_start = position + len(OPEN_TOKEN)
        close = text.find(CLOSE_TOKEN, body_start)
        next_open = text.find(OPEN_TOKEN, body_start)

        if close == -1 or (next_open != -1 and next_open < close):
            end = next_open if next_open != -1 else len(text)
            actions.append(Malformed(raw=text[position:end].strip(), reason="bloque sin cerrar"))
            position = next_open
            continue

        raw = text[position:close + 1]
        actions.append(parse_block(raw, text[body_start:close]))
        position = text.find(OPEN_TOKEN, close + 1)
    return actions


__all__ = [
    "parse_actions",
    "parse_block",
]
