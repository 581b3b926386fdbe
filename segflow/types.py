"""Data model shared by every step."""

from __future__ import annotations

import logging
import uuid
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Union

from segflow.utils import execution_logger, iso_now

Record = Dict[str, Any]

ROLLBACK_FIELDS = ("id", "content", "status", "position")


@dataclass
class ExecutionContext:
    execution_id: str
    pipeline_id: str = ""
    user_id: str = ""
    logger: Union[logging.Logger, logging.LoggerAdapter, None] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.logger is None:
            self.logger = execution_logger(self.execution_id)

    @classmethod
    def create(cls, pipeline_id: str = "", user_id: str = "", **metadata: Any) -> "ExecutionContext":
        return cls(
            execution_id=uuid.uuid4().hex[:8],
            pipeline_id=pipeline_id,
            user_id=user_id,
            metadata=metadata,
        )


@dataclass
class ValidationResult:
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @classmethod
    def from_errors(cls, errors: List[str], warnings: Optional[List[str]] = None) -> "ValidationResult":
        return cls(is_valid=not errors, errors=list(errors), warnings=list(warnings or []))


@dataclass(frozen=True)
class ExecutionMetrics:
    input_count: int
    output_count: int
    duration_ms: float
    throughput: float
    avg_processing_time: float
    step_type: str = ""
    step_name: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def filtered_count(self) -> int:
        return self.input_count - self.output_count

    @classmethod
    def compute(
        cls,
        input_count: int,
        output_count: int,
        elapsed_seconds: float,
        *,
        step_type: str = "",
        step_name: str = "",
        extra: Optional[Dict[str, Any]] = None,
    ) -> "ExecutionMetrics":
        duration_ms = elapsed_seconds * 1000.0
        return cls(
            input_count=input_count,
            output_count=output_count,
            duration_ms=duration_ms,
            throughput=input_count / elapsed_seconds if elapsed_seconds > 0 else 0.0,
            avg_processing_time=duration_ms / input_count if input_count > 0 else 0.0,
            step_type=step_type,
            step_name=step_name,
            extra=dict(extra or {}),
        )

    def to_dict(self) -> Dict[str, Any]:
        out = {k: v for k, v in asdict(self).items() if k != "extra"}
        out["filtered_count"] = self.filtered_count
        out.update(self.extra)
        return out


def _project(record: Any) -> Record:
    if isinstance(record, dict):
        return {k: record.get(k) for k in ROLLBACK_FIELDS}
    return {"id": None, "content": record if isinstance(record, str) else None, "status": None, "position": None}


@dataclass(frozen=True)
class RollbackSnapshot:
    """Minimal pre-execution state of a step, enough to undo it best-effort."""

    records: List[Record]
    config: Dict[str, Any]
    timestamp: str
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def capture(cls, records: List[Any], config: Optional[Dict[str, Any]], extra: Optional[Dict[str, Any]] = None) -> "RollbackSnapshot":
        return cls(
            records=[_project(r) for r in records],
            config=dict(config or {}),
            timestamp=iso_now(),
            extra=dict(extra or {}),
        )

    @property
    def ids(self) -> List[Any]:
        return [r["id"] for r in self.records if r.get("id") is not None]


@dataclass(frozen=True)
class RollbackResult:
    success: bool
    error: Optional[str] = None


@dataclass(frozen=True)
class StepMetadata:
    type: str
    name: str
    description: str
    version: str
    input_types: List[str]
    output_types: List[str]
    config_schema: Dict[str, Any]
    categories: List[str] = field(default_factory=list)


@dataclass
class StepOutput:
    """What an execute hook hands back to the lifecycle."""

    records: List[Any]
    duplicates: List[Any] = field(default_factory=list)
    metrics: Dict[str, Any] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    details: Dict[str, Any] = field(default_factory=dict)
    rollback_extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def coerce(cls, value: Union["StepOutput", List[Any]]) -> "StepOutput":
        if isinstance(value, StepOutput):
            return value
        return cls(records=list(value))


@dataclass(frozen=True)
class ExecutionResult:
    success: bool
    output_records: List[Any]
    metrics: ExecutionMetrics
    error: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
    rollback_data: Optional[RollbackSnapshot] = None
    duplicates: List[Any] = field(default_factory=list)
    details: Dict[str, Any] = field(default_factory=dict)
