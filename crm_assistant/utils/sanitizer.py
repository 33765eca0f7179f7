"""
Text sanitizing for the outbound wire payload.

Free-text fields pulled from the data store may contain unpaired UTF-16
surrogates or control characters that corrupt the JSON sent upstream.
"""
import re
from typing import Optional

_LONE_HIGH_SURROGATE = re.compile(r"[\ud800-\udbff](?![\udc00-\udfff])")
_LONE_LOW_SURROGATE = re.compile(r"(?<![\ud800-\udbff])[\udc00-\udfff]")
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


def strip_lone_surrogates(text: Optional[str]) -> str:
    """Remove surrogate code units that are not part of a high/low pair."""
    if not text:
        return ""
    text = _LONE_HIGH_SURROGATE.sub("", text)
    return _LONE_LOW_SURROGATE.sub("", text)


def sanitize(text: Optional[str]) -> str:
    """
    Make text safe for the upstream request body.

    Drops lone surrogates and NUL, then replaces every remaining C0 control
    character and DEL with a single space. Never raises; ``None`` gives "".
    """
    text = strip_lone_surrogates(text)
    text = text.replace("\x00", "")
    return _CONTROL_CHARS.sub(" ", text)
