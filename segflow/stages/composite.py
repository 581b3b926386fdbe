"""Composite step: run several steps as one, output of one feeding the next.

Every sub-step config is validated before anything runs. With
``stopOnError`` (the default) the first failing sub-step aborts the chain;
otherwise the failure is logged and the chain carries on from the last
successful output. Rollback walks the sub-steps in reverse order and is best
effort: a sub-step that cannot roll back is logged and skipped over.
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional, Sequence, Union

from pydantic import Field

from segflow.config import StepConfig, parse_config
from segflow.errors import CompositeStepError, RollbackFailure
from segflow.lifecycle import Step, StepHooks
from segflow.types import (
    ExecutionContext,
    RollbackResult,
    RollbackSnapshot,
    StepOutput,
    ValidationResult,
)


class CompositeConfig(StepConfig):
    steps: Optional[List[str]] = Field(None, description="Types of steps to chain together")
    step_configs: Union[Dict[str, Dict[str, Any]], List[Dict[str, Any]]] = Field(
        default_factory=dict, description="Configuration for each sub-step",
    )
    stop_on_error: bool = Field(True, description="Stop execution on first error or continue")


def _slug(name: str) -> str:
    return re.sub(r"\s+", "_", name.strip().lower())


class CompositeExecutor:
    def __init__(self, name: str, steps: Sequence[Step]):
        self.name = name
        self.sub_steps: List[Step] = list(steps)

    def config_for(self, config: CompositeConfig, index: int) -> Dict[str, Any]:
        configs = config.step_configs
        if isinstance(configs, list):
            return dict(configs[index]) if index < len(configs) and configs[index] else {}
        return dict(configs.get(self.sub_steps[index].type) or {})

    # ---------- validate ----------

    def validate(self, config: Dict[str, Any]) -> ValidationResult:
        cfg, errors = parse_config(CompositeConfig, config)
        warnings: List[str] = []
        if cfg is None:
            return ValidationResult.from_errors(errors)

        if not self.sub_steps:
            errors.append("At least one step must be specified")

        known = {s.type for s in self.sub_steps}
        for step_type in cfg.steps or []:
            if step_type not in known:
                errors.append(f"Unknown step type: {step_type}")

        if isinstance(cfg.step_configs, list) and len(cfg.step_configs) > len(self.sub_steps):
            warnings.append(
                f"{len(cfg.step_configs)} step configs given for {len(self.sub_steps)} sub-steps; extras ignored"
            )

        for i, step in enumerate(self.sub_steps):
            try:
                result = step.validate(self.config_for(cfg, i))
            except Exception as e:
                errors.append(f"{step.name}: could not validate configuration: {e}")
                continue
            if not result.is_valid:
                errors.append(f"{step.name}: {', '.join(result.errors)}")
            warnings.extend(f"{step.name}: {w}" for w in result.warnings)

        return ValidationResult.from_errors(errors, warnings)

    # ---------- execute ----------

    async def execute(self, records: List[Any], config: Dict[str, Any], context: ExecutionContext) -> StepOutput:
        cfg = CompositeConfig.model_validate(config)
        log = context.logger
        total = len(self.sub_steps)
        current: Any = records
        snapshots: List[Optional[RollbackSnapshot]] = [None] * total
        warnings: List[str] = []
        trail: List[Dict[str, Any]] = []

        for i, step in enumerate(self.sub_steps):
            log.info("Executing sub-step %d/%d: %s (%s)", i + 1, total, step.name, step.type)
            result = await step.execute(current, self.config_for(cfg, i), context)
            snapshots[i] = result.rollback_data
            trail.append({
                "step": step.type,
                "success": result.success,
                "input_count": result.metrics.input_count,
                "output_count": result.metrics.output_count,
                "error": result.error,
            })

            if not result.success:
                if cfg.stop_on_error:
                    raise CompositeStepError(
                        step.name, i, total, result.error or "unknown error",
                        rollback_extra={"sub_snapshots": snapshots},
                    )
                msg = f"Composite step failed at {step.name} (step {i + 1}/{total}): {result.error}"
                log.warning("%s; continuing with previous output", msg)
                warnings.append(msg)
                continue

            current = result.output_records
            if result.warnings:
                log.warning("Sub-step %s had warnings: %s", step.name, ", ".join(result.warnings))
                warnings.extend(f"{step.name}: {w}" for w in result.warnings)

        log.info("Composite step completed: %d output segments", len(current))
        return StepOutput(
            records=list(current),
            warnings=warnings,
            metrics={"sub_steps_run": len(trail), "sub_steps_failed": sum(1 for t in trail if not t["success"])},
            details={"sub_steps": trail},
            rollback_extra={"sub_snapshots": snapshots},
        )

    # ---------- rollback ----------

    async def rollback(self, snapshot: RollbackSnapshot, context: ExecutionContext) -> RollbackResult:
        log = context.logger
        sub_snapshots = (snapshot.extra or {}).get("sub_snapshots") if snapshot else None
        if not sub_snapshots:
            log.warning("No rollback data available")
            return RollbackResult(success=False, error="No rollback data available")

        failures: List[RollbackFailure] = []
        for i in range(len(self.sub_steps) - 1, -1, -1):
            step = self.sub_steps[i]
            sub = sub_snapshots[i] if i < len(sub_snapshots) else None
            if sub is None:
                continue
            result = await step.rollback(sub, context)
            if not result.success:
                failure = RollbackFailure(step.name, result.error or "unknown error")
                log.error("%s", failure)
                failures.append(failure)

        if failures:
            return RollbackResult(success=False, error="; ".join(str(f) for f in failures))
        return RollbackResult(success=True)

    def as_step(self, version: str = "1.0.0") -> Step:
        return Step(
            f"composite_{_slug(self.name)}",
            self.name,
            StepHooks(validate=self.validate, execute=self.execute, rollback=self.rollback),
            description="Composite step executing: " + " → ".join(s.name for s in self.sub_steps),
            version=version,
            config_model=CompositeConfig,
            categories=["composite", "workflow"],
        )


def make_composite_step(name: str, steps: Sequence[Step], version: str = "1.0.0") -> Step:
    return CompositeExecutor(name, steps).as_step(version)
