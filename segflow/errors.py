"""Error taxonomy.

Hierarchy::

    SegflowError
      ├── ConfigValidationError   ── invalid step or pipeline configuration
      ├── StepExecutionError      ── failure inside a step body
      │     └── CompositeStepError  ── a sub-step of a chain failed
      ├── RollbackFailure         ── a rollback reported success=False
      └── MissingCollaboratorError

    ExtractionWarning (UserWarning) ── a record field could not be read
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class SegflowError(Exception):
    """Base exception for segflow."""


class ConfigValidationError(SegflowError, ValueError):
    def __init__(self, message: str, errors: Optional[List[str]] = None):
        self.errors = list(errors or [message])
        super().__init__(message)


class StepExecutionError(SegflowError):
    """Raised by a step body; converted into a failed result by the lifecycle."""

    def __init__(self, message: str, rollback_extra: Optional[Dict[str, Any]] = None):
        self.rollback_extra = dict(rollback_extra or {})
        super().__init__(message)


class CompositeStepError(StepExecutionError):
    def __init__(
        self,
        step_name: str,
        index: int,
        total: int,
        reason: str,
        rollback_extra: Optional[Dict[str, Any]] = None,
    ):
        self.step_name = step_name
        self.index = index
        self.total = total
        self.reason = reason
        super().__init__(
            f"Composite step failed at {step_name} (step {index + 1}/{total}): {reason}",
            rollback_extra,
        )


class RollbackFailure(SegflowError):
    def __init__(self, step_name: str, reason: str):
        self.step_name = step_name
        self.reason = reason
        super().__init__(f"Rollback failed for {step_name}: {reason}")


class MissingCollaboratorError(SegflowError):
    def __init__(self, step_type: str, collaborator: str):
        self.step_type = step_type
        self.collaborator = collaborator
        super().__init__(f"Step '{step_type}' requires a {collaborator}")


class ExtractionWarning(UserWarning):
    """A content field could not be resolved; the record gets empty content."""

    def __init__(self, message: str, path: str = "", record_id: Any = None):
        self.path = path
        self.record_id = record_id
        super().__init__(message)
