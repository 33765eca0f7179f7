"""
Action command data structures.

The model embeds commands in its text as ``[ACTION: TYPE | key=value | ...]``.
Parsing yields exactly one of three variants per block:

    Recognized   -- TYPE is a known ActionType
    Unrecognized -- well-formed block with an unknown TYPE
    Malformed    -- block could not be tokenized
"""

from enum import Enum
from dataclasses import dataclass, field
from typing import Dict, Union


class ActionType(str, Enum):
    """Side-effecting operations the assistant may request."""
    CREATE_NOTE = "CREATE_NOTE"
    CHANGE_STAGE = "CHANGE_STAGE"
    ASSIGN_OWNER = "ASSIGN_OWNER"
    COMPLETE_TASK = "COMPLETE_TASK"


class LeadStage(str, Enum):
    """Pipeline stages a lead can be moved to."""
    PROSPECTO = "PROSPECTO"
    CONTACTADO = "CONTACTADO"
    DESCUBRIMIENTO = "DESCUBRIMIENTO"
    DEMOSTRACION = "DEMOSTRACION"
    PROPUESTA = "PROPUESTA"
    CERRADO_GANADO = "CERRADO_GANADO"
    CERRADO_PERDIDO = "CERRADO_PERDIDO"


TERMINAL_STAGES = (LeadStage.CERRADO_GANADO.value, LeadStage.CERRADO_PERDIDO.value)


@dataclass(frozen=True)
class Recognized:
    type: ActionType
    params: Dict[str, str] = field(default_factory=dict)
    raw: str = ""


@dataclass(frozen=True)
class Unrecognized:
    type: str
    params: Dict[str, str] = field(default_factory=dict)
    raw: str = ""


@dataclass(frozen=True)
class Malformed:
    raw: str
    reason: str


ParsedAction = Union[Recognized, Unrecognized, Malformed]


@dataclass(frozen=True)
class ActionResult:
    """Outcome of one execution attempt, rendered inline in the stream."""
    succeeded: bool
    message: str

    @classmethod
    def ok(cls, message: str) -> "ActionResult":
        return cls(True, f"✅ {message}")

    @classmethod
    def fail(cls, message: str) -> "ActionResult":
        return cls(False, f"❌ {message}")


__all__ = [
    "ActionType",
    "LeadStage",
    "TERMINAL_STAGES",
    "Recognized",
    "Unrecognized",
    "Malformed",
    "ParsedAction",
    "ActionResult",
]
