"""
Fan-out helpers for context reads.

Every branch is tagged with its own outcome so one failing read never
aborts its siblings.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SectionResult:
    """Tagged outcome of one context section."""
    topic: str
    ok: bool
    text: str = ""
    error: Optional[str] = None


async def fetch_all(reads: Dict[str, Awaitable[Any]], label: str = "context") -> Dict[str, Optional[Any]]:
    """
    Run named reads concurrently.

    Returns:
        name -> result, or None for reads that raised (logged).
    """
    names = list(reads)
    results = await asyncio.gather(*reads.values(), return_exceptions=True)

    fetched: Dict[str, Optional[Any]] = {}
    for name, result in zip(names, results):
        if isinstance(result, Exception):
            logger.warning(f"⚠️  {label}: 读取 '{name}' 失败，已省略: {result}")
            fetched[name] = None
        elif isinstance(result, BaseException):
            raise result
        else:
            fetched[name] = result
    return fetched
