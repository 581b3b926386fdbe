from __future__ import annotations

import hashlib
import math
import re
import unicodedata
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Literal, Optional

from pydantic import Field, field_validator

from segflow.batching import BATCH_SIZE, process_in_batches
from segflow.config import StepConfig, parse_config
from segflow.errors import ExtractionWarning
from segflow.fields import extract_field
from segflow.lifecycle import Step, StepHooks
from segflow.types import ExecutionContext, ExecutionResult, StepOutput, ValidationResult

DEFAULT_THRESHOLD = 0.8
MAX_COMPARISONS = 100
SAMPLE_TARGET = 50
LENGTH_FILTER_ABOVE = 0.8
LENGTH_RATIO_FACTOR = 0.7


# ---------- Config ----------

def _parse_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        number = float(value.strip() if isinstance(value, str) else value)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(number) else number


def coerce_threshold(value: Any) -> float:
    """Number or numeric string → float clamped to [0, 1]; anything else → default."""
    number = _parse_number(value)
    if number is None:
        return DEFAULT_THRESHOLD
    return max(0.0, min(1.0, number))


class DuplicateConfig(StepConfig):
    method: Literal["hash", "similarity"] = Field(
        description="Method for detecting duplicates (hash or similarity)",
    )
    similarity_threshold: float = Field(
        DEFAULT_THRESHOLD, ge=0, le=1,
        description="Similarity threshold for similarity method (0-1)",
    )
    content_field: str = Field(
        "content",
        description='Path to content field (e.g., "data.post_message", "post_message")',
    )
    case_sensitive: bool = Field(False, description="Whether to consider case when comparing content")
    ignore_whitespace: bool = Field(True, description="Whether to ignore whitespace differences")
    normalize_text: bool = Field(True, description="Whether to normalize text before comparison")
    hash_algorithm: Literal["sha256", "sha1", "md5"] = Field(
        "sha256", description="Digest used by the hash method",
    )

    @field_validator("similarity_threshold", mode="before")
    @classmethod
    def _clamp_threshold(cls, v: Any) -> float:
        return coerce_threshold(v)

    @field_validator("content_field", mode="before")
    @classmethod
    def _default_field(cls, v: Any) -> str:
        return v or "content"


# ---------- Text helpers ----------

def normalize_content(
    text: str,
    *,
    normalize_text: bool = True,
    ignore_whitespace: bool = True,
    case_sensitive: bool = False,
) -> str:
    # fixed order: decomposition, whitespace, case
    if normalize_text:
        text = unicodedata.normalize("NFD", text)
    if ignore_whitespace:
        text = re.sub(r"\s+", " ", text).strip()
    if not case_sensitive:
        text = text.casefold()
    return text


def word_set(text: str) -> FrozenSet[str]:
    return frozenset(text.lower().split())


def jaccard(a: FrozenSet[str], b: FrozenSet[str]) -> float:
    # exactly one empty side scores 0.0: in similarity mode an empty record is
    # a duplicate only of another empty one, never of kept non-empty content
    if not a and not b:
        return 1.0
    if not a or not b:
        return 0.0
    small, large = (a, b) if len(a) <= len(b) else (b, a)
    intersection = sum(1 for w in small if w in large)
    union = len(a) + len(b) - intersection
    return intersection / union if union else 0.0


def _length_ratio(x: int, y: int) -> float:
    longest = max(x, y)
    return min(x, y) / longest if longest else 1.0


# ---------- Detector ----------

@dataclass(frozen=True)
class _Kept:
    normalized: str
    words: FrozenSet[str]
    length: int


@dataclass
class DedupReport:
    kept: List[Any]
    duplicates: List[Any]
    total_count: int
    extraction_warnings: List[ExtractionWarning] = field(default_factory=list)

    @property
    def duplicate_count(self) -> int:
        return len(self.duplicates)


class DuplicateDetector:
    """Classifies records left to right; the first occurrence always wins.

    State lives in an append-only arena of kept entries plus indexes into it,
    and belongs to one detection run only.

    The similarity method compares each record with at most
    ``MAX_COMPARISONS`` kept entries, then with a stride sample of roughly
    ``SAMPLE_TARGET`` of the remaining ones. Above a threshold of 0.8 pairs
    whose length ratio is below ``threshold * 0.7`` are skipped without
    computing Jaccard. Both are heuristics: on very large runs a near
    duplicate can be missed.
    """

    def __init__(self, config: DuplicateConfig, logger=None):
        self.config = config
        self.threshold = coerce_threshold(config.similarity_threshold)
        self.logger = logger
        self._arena: List[_Kept] = []
        self._index: Dict[str, int] = {}
        self.kept: List[Any] = []
        self.duplicates: List[Any] = []
        self.processed = 0
        self.extraction_warnings: List[ExtractionWarning] = []

    def normalize(self, text: str) -> str:
        return normalize_content(
            text,
            normalize_text=self.config.normalize_text,
            ignore_whitespace=self.config.ignore_whitespace,
            case_sensitive=self.config.case_sensitive,
        )

    def digest(self, normalized: str) -> str:
        return hashlib.new(self.config.hash_algorithm, normalized.encode("utf-8")).hexdigest()

    def _key(self, normalized: str) -> str:
        if self.config.method == "hash":
            return self.digest(normalized)
        return normalized

    def is_duplicate(self, normalized: str) -> bool:
        if self.config.method == "hash":
            return self.digest(normalized) in self._index
        return self._similar_to_kept(normalized)

    def _similar_to_kept(self, normalized: str) -> bool:
        if not self._arena:
            return False
        t = self.threshold
        if t == 0:
            return True
        if t >= 1:
            return normalized in self._index

        words = word_set(normalized)
        length = len(normalized)
        use_length_filter = t > LENGTH_FILTER_ABOVE

        for entry in self._arena[:MAX_COMPARISONS]:
            if use_length_filter and _length_ratio(length, entry.length) < t * LENGTH_RATIO_FACTOR:
                continue
            if jaccard(words, entry.words) >= t:
                return True

        rest = self._arena[MAX_COMPARISONS:]
        if rest:
            stride = math.ceil(len(rest) / SAMPLE_TARGET)
            for entry in rest[::stride]:
                if jaccard(words, entry.words) >= t:
                    return True
        return False

    def _register(self, normalized: str) -> None:
        words = word_set(normalized) if self.config.method == "similarity" else frozenset()
        self._arena.append(_Kept(normalized=normalized, words=words, length=len(normalized)))
        self._index.setdefault(self._key(normalized), len(self._arena) - 1)

    def add(self, record: Any) -> bool:
        """Classify one record; returns True when it is a duplicate."""
        self.processed += 1
        content = extract_field(record, self.config.content_field, logger=self.logger, sink=self.extraction_warnings)
        normalized = self.normalize(content)

        if self.is_duplicate(normalized):
            self.duplicates.append(record)
            return True
        self._register(normalized)
        self.kept.append(record)
        return False

    def report(self) -> DedupReport:
        return DedupReport(
            kept=list(self.kept),
            duplicates=list(self.duplicates),
            total_count=self.processed,
            extraction_warnings=list(self.extraction_warnings),
        )


async def detect_duplicates(
    records: List[Any],
    config: DuplicateConfig,
    *,
    logger=None,
    batch_size: int = BATCH_SIZE,
) -> DedupReport:
    detector = DuplicateDetector(config, logger=logger)
    await process_in_batches(
        records,
        detector.add,
        batch_size=batch_size,
        logger=logger,
        label="Duplicate detection",
    )
    return detector.report()


# ---------- Step ----------

def _validate(config: Dict[str, Any]) -> ValidationResult:
    cfg, errors = parse_config(DuplicateConfig, config)
    warnings: List[str] = []
    if cfg is not None and cfg.method == "similarity":
        raw = config.get("similarityThreshold", config.get("similarity_threshold"))
        number = _parse_number(raw)
        if raw is None:
            warnings.append(f"No similarity threshold given, using {DEFAULT_THRESHOLD}")
        elif number is None:
            warnings.append(f"Invalid similarity threshold {raw!r}, using {DEFAULT_THRESHOLD}")
        elif not 0 <= number <= 1:
            warnings.append(f"Similarity threshold {number} out of range, clamped to [0, 1]")
    return ValidationResult.from_errors(errors, warnings)


async def _execute(records: List[Any], config: Dict[str, Any], context: ExecutionContext) -> StepOutput:
    cfg = DuplicateConfig.model_validate(config)
    log = context.logger
    log.info("Starting duplicate detection for %d segments (method=%s)", len(records), cfg.method)
    if cfg.method == "similarity":
        log.info("Using similarity method with threshold: %s", cfg.similarity_threshold)
    if records and isinstance(records[0], dict):
        log.debug("First segment keys: %s", ", ".join(map(str, records[0].keys())))

    report = await detect_duplicates(records, cfg, logger=log)

    log.info(
        "Duplicate detection completed: %d duplicates found, %d segments remaining",
        report.duplicate_count,
        len(report.kept),
    )
    warnings = []
    if report.extraction_warnings:
        warnings.append(
            f"{len(report.extraction_warnings)} segment(s) had no readable content at '{cfg.content_field}'"
        )
    total = report.total_count
    return StepOutput(
        records=report.kept,
        duplicates=report.duplicates,
        metrics={
            "duplicates_found": report.duplicate_count,
            "segments_processed": total,
            "total_count": total,
            "deduplication_rate": report.duplicate_count / total if total else 0.0,
            "extraction_warnings": len(report.extraction_warnings),
        },
        warnings=warnings,
        details={"total_count": total, "duplicate_count": report.duplicate_count},
    )


def format_dedup_output(result: ExecutionResult) -> Dict[str, Any]:
    return {
        "items": result.output_records,
        "total": len(result.output_records),
        "duplicates": result.duplicates,
        "duplicate_count": len(result.duplicates),
    }


def make_duplicate_step() -> Step:
    return Step(
        "duplicate_segment",
        "Duplicate Segment Detection",
        StepHooks(validate=_validate, execute=_execute),
        description="Detect duplicate segments using hash or similarity",
        version="2.0.0",
        config_model=DuplicateConfig,
        field_key="contentField",
        categories=["cleaning"],
        formatter=format_dedup_output,
    )
