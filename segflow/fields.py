"""Resolve a dot-separated field path against a single record."""

from __future__ import annotations

import json
import logging
from typing import Any, List, Optional, Union

from segflow.errors import ExtractionWarning

Logger = Union[logging.Logger, logging.LoggerAdapter]

# Property names that commonly wrap record arrays upstream. When a path still
# starts with one of them but the record was already unwrapped, the segment
# is dropped.
WRAPPER_KEYS = ("items", "data", "results", "segments", "output")

DEFAULT_FIELD = "content"


def stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False, sort_keys=True, default=str)
    return str(value)


def _keys(obj: Any) -> str:
    return ", ".join(map(str, obj.keys())) if isinstance(obj, dict) else "none"


def _warn(
    message: str,
    path: str,
    record: Any,
    logger: Optional[Logger],
    sink: Optional[List[ExtractionWarning]],
) -> str:
    record_id = record.get("id") if isinstance(record, dict) else None
    if logger:
        logger.warning(message)
    if sink is not None:
        sink.append(ExtractionWarning(message, path=path, record_id=record_id))
    return ""


def extract_field(
    record: Any,
    path: Optional[str] = None,
    *,
    logger: Optional[Logger] = None,
    sink: Optional[List[ExtractionWarning]] = None,
) -> str:
    """Return the text at ``path`` in ``record``, or ``""`` when it cannot be read.

    Missing fields never raise: they are logged and, when ``sink`` is given,
    recorded there as :class:`ExtractionWarning` objects.
    """
    field_path = path or DEFAULT_FIELD

    if not isinstance(record, dict):
        return _warn(
            f"Cannot read '{field_path}' from non-object record of type {type(record).__name__}",
            field_path, record, logger, sink,
        )

    if "." not in field_path:
        value = record.get(field_path)
        if value is None:
            return _warn(
                f"Content field '{field_path}' not found in segment. Available fields: {_keys(record)}",
                field_path, record, logger, sink,
            )
        return stringify(value)

    parts = field_path.split(".")
    if parts[0] in WRAPPER_KEYS and parts[0] not in record:
        parts = parts[1:]

    last = parts[-1]
    value: Any = record
    for part in parts:
        if isinstance(value, dict) and part in value:
            value = value[part]
            continue
        # stuck: look for the final segment here, then at the top level
        if isinstance(value, dict) and last in value:
            value = value[last]
            break
        if last in record:
            value = record[last]
            break
        return _warn(
            f"Content field path '{field_path}' not valid. Stuck at '{part}' in path. "
            f"Available fields: {_keys(value)}",
            field_path, record, logger, sink,
        )

    if value is None:
        return _warn(
            f"Content field path '{field_path}' resulted in null value",
            field_path, record, logger, sink,
        )
    return stringify(value)
