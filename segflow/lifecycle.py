"""Step lifecycle.

Every step runs through the same fixed sequence::

    normalize → validate → should_execute → pre_process → execute
              → post_process → metrics → result

A step is a :class:`StepHooks` struct of callables plus some descriptive
fields; :func:`run_lifecycle` is the runner. Nothing raised by a hook leaves
the runner: invalid configs, skips and exceptions all come back as an
:class:`ExecutionResult`, and on every failure path the result carries the
normalized input unchanged so a pipeline can keep going.
"""

from __future__ import annotations

import inspect
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Type, Union

from pydantic import BaseModel

from segflow.config import config_schema
from segflow.envelope import normalize_input
from segflow.errors import ConfigValidationError
from segflow.types import (
    ExecutionContext,
    ExecutionMetrics,
    ExecutionResult,
    RollbackResult,
    RollbackSnapshot,
    StepMetadata,
    StepOutput,
    ValidationResult,
)

SKIP_WARNING = "Step execution skipped by condition"

Records = List[Any]
MaybeAwaitable = Union[Any, Awaitable[Any]]


def _always(records: Records, config: Dict[str, Any], context: ExecutionContext) -> bool:
    return True


def _identity(records: Records, config: Dict[str, Any], context: ExecutionContext) -> Records:
    return records


def _nothing_to_undo(snapshot: RollbackSnapshot, context: ExecutionContext) -> RollbackResult:
    context.logger.info("Nothing to roll back: step keeps no external state")
    return RollbackResult(success=True)


@dataclass(frozen=True)
class StepHooks:
    validate: Callable[[Dict[str, Any]], ValidationResult]
    execute: Callable[[Records, Dict[str, Any], ExecutionContext], MaybeAwaitable]
    should_execute: Callable[[Records, Dict[str, Any], ExecutionContext], bool] = _always
    pre_process: Callable[[Records, Dict[str, Any], ExecutionContext], Records] = _identity
    post_process: Callable[[Records, Dict[str, Any], ExecutionContext], Records] = _identity
    rollback: Callable[[RollbackSnapshot, ExecutionContext], MaybeAwaitable] = _nothing_to_undo


async def _resolve(value: MaybeAwaitable) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


async def run_lifecycle(
    hooks: StepHooks,
    input_value: Any,
    config: Optional[Dict[str, Any]],
    context: ExecutionContext,
    *,
    step_type: str = "",
    step_name: str = "",
    field_key: Optional[str] = None,
) -> ExecutionResult:
    start = time.monotonic()
    log = context.logger
    # work on a copy; the caller's config is never touched
    cfg: Dict[str, Any] = dict(config or {})

    field_path = cfg.get(field_key) if field_key else None
    normalized = normalize_input(input_value, field_path, log)
    records = normalized.records
    if field_key and normalized.field_path != field_path:
        cfg[field_key] = normalized.field_path
    warnings: List[str] = list(normalized.warnings)

    def metrics(output_count: int, extra: Optional[Dict[str, Any]] = None) -> ExecutionMetrics:
        return ExecutionMetrics.compute(
            len(records),
            output_count,
            time.monotonic() - start,
            step_type=step_type,
            step_name=step_name,
            extra=extra,
        )

    def failed(error: str, extra: Optional[Dict[str, Any]] = None) -> ExecutionResult:
        return ExecutionResult(
            success=False,
            output_records=records,
            metrics=metrics(len(records)),
            error=error,
            warnings=warnings,
            rollback_data=RollbackSnapshot.capture(records, cfg, extra),
        )

    try:
        validation = hooks.validate(cfg)
    except Exception as e:
        validation = ValidationResult.from_errors([f"Could not validate configuration: {e}"])

    if not validation.is_valid:
        err = ConfigValidationError(", ".join(validation.errors), validation.errors)
        log.error("Step %s rejected its configuration: %s", step_name or step_type, err)
        warnings.extend(validation.warnings)
        return failed(str(err))

    if validation.warnings:
        log.warning("Configuration warnings: %s", ", ".join(validation.warnings))
        warnings.extend(validation.warnings)

    try:
        if not hooks.should_execute(records, cfg, context):
            log.info("Step %s skipped by condition", step_name or step_type)
            return ExecutionResult(
                success=True,
                output_records=records,
                metrics=metrics(len(records)),
                warnings=warnings + [SKIP_WARNING],
                rollback_data=RollbackSnapshot.capture(records, cfg),
            )

        prepared = hooks.pre_process(records, cfg, context)
        output = StepOutput.coerce(await _resolve(hooks.execute(prepared, cfg, context)))
        final = hooks.post_process(output.records, cfg, context)
    except Exception as e:
        log.error("Step execution failed: %s", e, exc_info=True)
        return failed(str(e), getattr(e, "rollback_extra", None))

    return ExecutionResult(
        success=True,
        output_records=final,
        metrics=metrics(len(final), output.metrics),
        warnings=warnings + output.warnings,
        rollback_data=RollbackSnapshot.capture(records, cfg, output.rollback_extra),
        duplicates=output.duplicates,
        details=output.details,
    )


class Step:
    """A named step: lifecycle hooks plus the metadata a UI needs to configure it."""

    def __init__(
        self,
        step_type: str,
        name: str,
        hooks: StepHooks,
        *,
        description: str = "",
        version: str = "1.0.0",
        config_model: Optional[Type[BaseModel]] = None,
        field_key: Optional[str] = None,
        input_types: Sequence[str] = ("document_segment",),
        output_types: Sequence[str] = ("document_segment",),
        categories: Sequence[str] = (),
        formatter: Optional[Callable[[ExecutionResult], Any]] = None,
    ):
        self.type = step_type
        self.name = name
        self.hooks = hooks
        self.description = description
        self.version = version
        self.config_model = config_model
        self.field_key = field_key
        self.input_types = list(input_types)
        self.output_types = list(output_types)
        self.categories = list(categories)
        self.formatter = formatter

    def __repr__(self) -> str:
        return f"Step(type={self.type!r}, name={self.name!r})"

    def validate(self, config: Optional[Dict[str, Any]]) -> ValidationResult:
        return self.hooks.validate(dict(config or {}))

    async def execute(self, input_value: Any, config: Optional[Dict[str, Any]], context: ExecutionContext) -> ExecutionResult:
        return await run_lifecycle(
            self.hooks,
            input_value,
            config,
            context,
            step_type=self.type,
            step_name=self.name,
            field_key=self.field_key,
        )

    async def rollback(self, snapshot: RollbackSnapshot, context: ExecutionContext) -> RollbackResult:
        context.logger.info("Rolling back %s", self.name)
        try:
            return await _resolve(self.hooks.rollback(snapshot, context))
        except Exception as e:
            context.logger.error("Rollback failed for %s: %s", self.name, e)
            return RollbackResult(success=False, error=str(e))

    def metadata(self) -> StepMetadata:
        return StepMetadata(
            type=self.type,
            name=self.name,
            description=self.description,
            version=self.version,
            input_types=list(self.input_types),
            output_types=list(self.output_types),
            config_schema=config_schema(self.config_model),
            categories=list(self.categories),
        )

    def format_output(self, result: ExecutionResult) -> Any:
        if self.formatter is not None:
            return self.formatter(result)
        if result.duplicates:
            return {"data": result.output_records, "duplicates": result.duplicates}
        return result.output_records
