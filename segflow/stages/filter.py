from __future__ import annotations

import re
from typing import Any, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, Field

from segflow.batching import process_in_batches
from segflow.config import StepConfig, parse_config
from segflow.fields import extract_field
from segflow.lifecycle import Step, StepHooks
from segflow.types import ExecutionContext, StepOutput, ValidationResult

_FLAG_BITS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL, "x": re.VERBOSE}
# JavaScript flags with no Python equivalent; accepted and ignored
_IGNORED_FLAGS = set("gu")


class FilterRule(BaseModel):
    id: str = Field(description="Unique rule identifier")
    name: str = Field(description="Rule name")
    pattern: str = Field(description="Regex pattern")
    flags: str = Field("", description="Regex flags (i, m, s, x)")
    action: Literal["remove", "keep", "flag"] = Field(description="Action to take when pattern matches")
    description: Optional[str] = Field(None, description="Rule description")
    enabled: bool = Field(True, description="Whether rule is enabled")


class RuleBasedFilterConfig(StepConfig):
    rules: List[FilterRule] = Field(description="Array of filtering rules")
    default_action: Literal["keep", "remove"] = Field(description="Default action when no rules match")
    case_sensitive: bool = Field(False, description="Whether pattern matching is case sensitive")
    whole_word: bool = Field(False, description="Whether to match whole words only")
    min_content_length: Optional[int] = Field(None, ge=0, description="Minimum content length to keep")
    max_content_length: Optional[int] = Field(None, ge=0, description="Maximum content length to keep")
    preserve_empty_segments: bool = Field(False, description="Whether to preserve empty segments")
    content_field: str = Field("content", description="Path to the text the rules run against")


def compile_rule(rule: FilterRule, *, case_sensitive: bool = False, whole_word: bool = False) -> "re.Pattern[str]":
    bits = 0
    for f in rule.flags or "":
        if f in _FLAG_BITS:
            bits |= _FLAG_BITS[f]
        elif f not in _IGNORED_FLAGS:
            raise re.error(f"unknown flag {f!r}")
    if not case_sensitive:
        bits |= re.IGNORECASE
    pattern = rule.pattern
    if whole_word:
        pattern = rf"\b(?:{pattern})\b"
    return re.compile(pattern, bits)


def filtered_by_length(content: str, cfg: RuleBasedFilterConfig) -> bool:
    n = len(content)
    if cfg.min_content_length is not None and n < cfg.min_content_length:
        return True
    if cfg.max_content_length is not None and n > cfg.max_content_length:
        return True
    return not cfg.preserve_empty_segments and n == 0


def _validate(config: Dict[str, Any]) -> ValidationResult:
    cfg, errors = parse_config(RuleBasedFilterConfig, config)
    if cfg is None:
        return ValidationResult.from_errors(errors)
    for i, rule in enumerate(cfg.rules):
        try:
            compile_rule(rule, case_sensitive=cfg.case_sensitive, whole_word=cfg.whole_word)
        except re.error as e:
            errors.append(f"Rule {i}: Invalid regex pattern - {e}")
    if (
        cfg.min_content_length is not None
        and cfg.max_content_length is not None
        and cfg.min_content_length > cfg.max_content_length
    ):
        errors.append("Minimum content length cannot be greater than maximum content length")
    warnings = [] if any(r.enabled for r in cfg.rules) or not cfg.rules else ["All rules are disabled"]
    return ValidationResult.from_errors(errors, warnings)


async def _execute(records: List[Any], config: Dict[str, Any], context: ExecutionContext) -> StepOutput:
    cfg = RuleBasedFilterConfig.model_validate(config)
    log = context.logger
    log.info("Starting rule-based filtering for %d segments", len(records))

    compiled: List[Tuple[FilterRule, "re.Pattern[str]"]] = [
        (r, compile_rule(r, case_sensitive=cfg.case_sensitive, whole_word=cfg.whole_word))
        for r in cfg.rules
        if r.enabled
    ]
    rule_matches = {r.id: 0 for r in cfg.rules}
    kept: List[Any] = []
    filtered: List[Any] = []

    def handle(record: Any) -> None:
        content = extract_field(record, cfg.content_field, logger=log)
        if filtered_by_length(content, cfg):
            filtered.append(record)
            return
        action, rule_id = cfg.default_action, None
        for rule, rx in compiled:
            if rx.search(content):
                rule_matches[rule.id] += 1
                action, rule_id = rule.action, rule.id
                break
        if action == "remove":
            log.debug("Filtered segment %s by rule: %s", record.get("id") if isinstance(record, dict) else "?", rule_id or "default")
            filtered.append(record)
        elif action == "flag" and isinstance(record, dict):
            kept.append({**record, "flagged_by": rule_id})
        else:
            kept.append(record)

    processed = await process_in_batches(records, handle, logger=log, label="Rule-based filtering")

    log.info("Rule-based filtering completed: %d filtered, %d kept", len(filtered), len(kept))
    return StepOutput(
        records=kept,
        metrics={
            "segments_processed": processed,
            "segments_filtered": len(filtered),
            "segments_kept": len(kept),
            "filtering_rate": len(filtered) / len(records) if records else 0.0,
            "rule_matches": rule_matches,
        },
        details={"filtered": filtered},
    )


def make_filter_step() -> Step:
    return Step(
        "rule_based_filter",
        "Rule-Based Content Filtering",
        StepHooks(validate=_validate, execute=_execute),
        description="Filter segments using configurable regex rules and patterns",
        config_model=RuleBasedFilterConfig,
        field_key="contentField",
        categories=["cleaning"],
    )
