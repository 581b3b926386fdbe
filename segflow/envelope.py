"""Input normalization: recover a flat list of records from a wrapped envelope.

Upstream steps hand over their output in whatever shape they produced: a
plain list of records, ``[{"items": [...]}]``, ``{"data": [...]}`` or the
doubly-nested ``[{"items": [{"data": [...]}]}]``. ``classify_envelope`` turns
that into one of four explicit variants in a single pass; ``normalize_input``
additionally tracks the content field path through the same unwrapping so
that ``items.text`` keeps pointing at the text once ``items`` is consumed.

Classification never mutates the input value.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional, Tuple, Union

Logger = Union[logging.Logger, logging.LoggerAdapter]

NESTED_KEY = "data"


@dataclass(frozen=True)
class Flat:
    records: List[Any]


@dataclass(frozen=True)
class Wrapped:
    key: str
    records: List[Any]


@dataclass(frozen=True)
class DoublyWrapped:
    key: str
    inner_key: str
    records: List[Any]


@dataclass(frozen=True)
class Ambiguous:
    """More than one property qualified; the first in iteration order was used."""

    key: str
    candidates: Tuple[str, ...]
    records: List[Any]
    inner_key: Optional[str] = None


Envelope = Union[Flat, Wrapped, DoublyWrapped, Ambiguous]


@dataclass(frozen=True)
class NormalizedInput:
    records: List[Any]
    envelope: Envelope
    field_path: Optional[str] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def extracted_key(self) -> Optional[str]:
        return getattr(self.envelope, "key", None)


def _is_object_array(value: Any) -> bool:
    return isinstance(value, list) and len(value) > 0 and isinstance(value[0], dict)


def _has_array_property(obj: dict) -> bool:
    return any(isinstance(v, list) for v in obj.values())


def _scan(wrapper: dict) -> Optional[Envelope]:
    candidates = [k for k, v in wrapper.items() if _is_object_array(v)]
    if not candidates:
        return None
    key = candidates[0]
    value = wrapper[key]
    inner_key: Optional[str] = None
    records = value
    nested = value[0].get(NESTED_KEY)
    if isinstance(nested, list) and len(nested) > 0:
        inner_key = NESTED_KEY
        records = nested
    if len(candidates) > 1:
        return Ambiguous(key=key, candidates=tuple(candidates), records=list(records), inner_key=inner_key)
    if inner_key:
        return DoublyWrapped(key=key, inner_key=inner_key, records=list(records))
    return Wrapped(key=key, records=list(records))


def classify_envelope(value: Any) -> Envelope:
    if isinstance(value, (list, tuple)):
        items = list(value)
        if len(items) == 1 and isinstance(items[0], dict) and _has_array_property(items[0]):
            found = _scan(items[0])
            if found is not None:
                return found
        return Flat(records=items)
    if isinstance(value, dict):
        found = _scan(value)
        if found is not None:
            return found
        return Flat(records=[value])
    return Flat(records=[])


def _strip_prefix(path: Optional[str], key: Optional[str]) -> Optional[str]:
    if path and key and path.startswith(f"{key}."):
        return path[len(key) + 1:]
    return path


def adjust_field_path(path: Optional[str], envelope: Envelope) -> Optional[str]:
    if isinstance(envelope, Flat):
        return path
    path = _strip_prefix(path, envelope.key)
    inner_key = getattr(envelope, "inner_key", None)
    return _strip_prefix(path, inner_key)


def normalize_input(value: Any, field_path: Optional[str] = None, logger: Optional[Logger] = None) -> NormalizedInput:
    envelope = classify_envelope(value)
    warnings: List[str] = []

    if value is None or not isinstance(value, (list, tuple, dict)):
        msg = f"Input is not an array or object: {type(value).__name__}"
        warnings.append(msg)
        if logger:
            logger.warning(msg)
    elif isinstance(envelope, Ambiguous):
        msg = (
            f"Input wrapper has several array properties {list(envelope.candidates)}; "
            f"using the first one '{envelope.key}'"
        )
        warnings.append(msg)
        if logger:
            logger.warning(msg)

    adjusted = adjust_field_path(field_path, envelope)
    if logger and adjusted != field_path:
        logger.info("Content field adjusted from %r to %r (unwrapped %s)", field_path, adjusted, type(envelope).__name__)

    return NormalizedInput(records=envelope.records, envelope=envelope, field_path=adjusted, warnings=warnings)
