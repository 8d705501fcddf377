"""
File-system helpers for persisting run collections as JSON.

Repeated-run outputs are written to disk so that variance analysis can be
run later, possibly on another machine.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from formextract.core.exceptions import InputFormatError
from formextract.models.dto import RunCollection


def ensure_parent(path: str | Path) -> None:
    """
    Ensure that the parent directory for the given path exists.

    Args:
      path: Target file path whose parent should be created.
    """
    Path(path).parent.mkdir(parents=True, exist_ok=True)


def write_json(path: str | Path, obj: Any) -> None:
    """
    Write a JSON value to disk using UTF-8 encoding.

    Args:
      path: Destination file path.
      obj: JSON-serializable value to persist.
    """
    ensure_parent(path)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(obj, f, ensure_ascii=False, indent=2)


def read_json(path: str | Path) -> Any:
    """
    Read and parse a JSON file using UTF-8 encoding.

    Args:
      path: Source file path.

    Returns:
      The decoded JSON value (usually a dict or list).
    """
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def save_run_collection(path: str | Path, collection: RunCollection) -> Path:
    """Persist runs with field descriptors in their upstream (camelCase) shape."""
    write_json(path, collection.model_dump(mode="json", by_alias=True, exclude_none=True))
    return Path(path)


def parse_run_collection(data: Any, source: str | None = None) -> RunCollection:
    """
    Validate decoded JSON as a RunCollection.

    Raises:
        InputFormatError: If the structure does not match.
    """
    if not isinstance(data, dict):
        raise InputFormatError(
            f"Run collection must be a JSON object, got {type(data).__name__}",
            source=source,
        )
    try:
        return RunCollection.model_validate(data)
    except ValidationError as exc:
        raise InputFormatError(
            f"Malformed run collection: {exc.error_count()} validation error(s)",
            source=source,
            details={"detail": str(exc)},
        ) from exc


def load_run_collection(path: str | Path) -> RunCollection:
    """
    Load runs previously written by `save_run_collection`.

    Raises:
        InputFormatError: If the file is missing, not JSON, or malformed.
    """
    source = str(path)
    try:
        data = read_json(path)
    except FileNotFoundError as exc:
        raise InputFormatError(f"Run collection not found: {source}", source=source) from exc
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise InputFormatError(f"Run collection is not valid JSON: {exc}", source=source) from exc
    return parse_run_collection(data, source=source)
