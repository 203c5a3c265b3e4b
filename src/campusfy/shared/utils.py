"""
Utilities Module - Common helper functions.
==========================================

Provides utility functions for:
- Timestamps (UTC, ISO-8601 round trips)
- Course code normalization
- File I/O (JSON, atomic replace)
- Directory management
"""

import json
import math
import os
import re
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from campusfy.shared.logging import get_logger

logger = get_logger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# Timestamps
# ─────────────────────────────────────────────────────────────────────────────


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_iso(moment: datetime) -> str:
    """
    Serialize a datetime as ISO-8601 in UTC.

    Naive datetimes are assumed to already be UTC.

    Example:
        >>> to_iso(datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc))
        '2024-01-02T03:04:05+00:00'
    """
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat()


def parse_iso(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp, returning None when it is not one."""
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, str) and value:
        try:
            # "Z" suffix is what browsers write
            moment = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


# ─────────────────────────────────────────────────────────────────────────────
# Course Codes and Numbers
# ─────────────────────────────────────────────────────────────────────────────


def compact_code(code: str) -> str:
    """
    Uppercase a course code and strip all whitespace.

    Example:
        >>> compact_code("comp sci 220")
        'COMPSCI220'
    """
    return re.sub(r"\s+", "", code).upper()


def course_number(code: str) -> int:
    """
    Extract the first run of digits in a course code.

    Returns 0 when the code has no digits.

    Example:
        >>> course_number("COMP SCI 220")
        220
    """
    match = re.search(r"\d+", code)
    return int(match.group()) if match else 0


def to_number(value: Any) -> float:
    """
    Coerce a loosely-typed value to float.

    Strings are parsed; anything unparseable (or None) becomes NaN so that
    callers can use math.isnan() for "missing".
    """
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return math.nan
    return math.nan


# ─────────────────────────────────────────────────────────────────────────────
# File I/O
# ─────────────────────────────────────────────────────────────────────────────


def ensure_directory(path: Path) -> Path:
    """
    Ensure a directory exists, creating it if necessary.

    Args:
        path: Directory path

    Returns:
        The same path (for chaining)
    """
    path.mkdir(parents=True, exist_ok=True)
    return path


def load_json(file_path: Path) -> Any:
    """
    Load data from a JSON file.

    Raises:
        FileNotFoundError: If file doesn't exist
        json.JSONDecodeError: If file isn't valid JSON
    """
    with open(file_path, encoding="utf-8") as f:
        return json.load(f)


def atomic_write_json(file_path: Path, data: Any) -> None:
    """
    Write JSON so readers see either the old file or the new one, never a mix.

    The payload goes to a temporary file in the same directory, is flushed to
    disk, and then replaces the target in a single rename.

    Args:
        file_path: Target JSON path
        data: JSON-serializable data
    """
    ensure_directory(file_path.parent)
    fd, tmp_name = tempfile.mkstemp(
        dir=file_path.parent, prefix=f".{file_path.name}.", suffix=".tmp"
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, separators=(",", ":"))
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, file_path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise

    logger.debug(f"Committed {file_path.name}")


def remove_file(file_path: Path) -> bool:
    """Delete a file if present. Returns True when something was removed."""
    try:
        file_path.unlink()
        return True
    except FileNotFoundError:
        return False
