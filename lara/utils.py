"""
Shared utility functions for parsing and data manipulation

Provides common helpers for:
- String parsing: Environment variable conversion (parse_bool, parse_int, parse_float, split_csv)
- Text normalization: Whitespace collapsing and punctuation stripping for spoken input
- Async utilities: Timeout wrappers, byte chunking

These utilities are used throughout Lara for configuration parsing and data handling.
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import Awaitable, Iterable
from typing import Any

_WHITESPACE_RE = re.compile(r"\s+")


def parse_bool(value: str | None, default: bool = False) -> bool:
    """Interpret env-style booleans."""
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def parse_int(value: str | None, default: int) -> int:
    """Best-effort int parser with fallback."""
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def parse_float(value: str | None, default: float) -> float:
    """Best-effort float parser with fallback."""
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def split_csv(value: str | None) -> list[str]:
    """Split comma-separated strings into trimmed tokens."""
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def collapse_whitespace(text: str) -> str:
    """Trim and squeeze runs of whitespace into single spaces."""
    return _WHITESPACE_RE.sub(" ", text).strip()


def normalize_utterance(text: str | None) -> str:
    """Lower-case, trim and squeeze whitespace in a transcript."""
    if not text:
        return ""
    return collapse_whitespace(text.lower())


async def await_with_timeout(awaitable: Awaitable[Any], timeout: float | None) -> Any:
    """Await a coroutine with an optional timeout."""
    if timeout is None:
        return await awaitable
    return await asyncio.wait_for(awaitable, timeout=timeout)


def chunk_bytes(data: bytes, size: int) -> Iterable[bytes]:
    """Yield fixed-size chunks from a byte buffer."""
    if size <= 0:
        raise ValueError("Chunk size must be positive")
    for start in range(0, len(data), size):
        end = min(start + size, len(data))
        yield data[start:end]


def _discard_result(task: asyncio.Future[Any]) -> None:
    if not task.cancelled():
        task.exception()


async def race_with_timeout(awaitable: Awaitable[Any], timeout: float) -> Any:
    """Race an awaitable against a fixed delay.

    Unlike :func:`await_with_timeout` the losing call is not cancelled; it keeps
    running in the background and its eventual result is dropped.
    """
    task = asyncio.ensure_future(awaitable)
    done, _pending = await asyncio.wait({task}, timeout=timeout)
    if task in done:
        return task.result()
    task.add_done_callback(_discard_result)
    raise TimeoutError(f"Operation did not finish within {timeout:.2f}s")
