from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from pydantic import Field

from segflow.batching import chunked
from segflow.conditions import ConditionError, compile_condition, segment_view
from segflow.config import StepConfig, parse_config
from segflow.fields import extract_field
from segflow.lifecycle import Step, StepHooks
from segflow.llm.protocols import ChatClient
from segflow.types import ExecutionContext, StepOutput, ValidationResult

DEFAULT_PROMPT = (
    "Please summarize the following text in no more than {max_length} characters "
    "while preserving the key information and main points:\n\n{content}\n\nSummary:"
)


class SummarizationConfig(StepConfig):
    model: str = Field(description="Model name to use for summarization")
    max_length: int = Field(gt=0, description="Maximum length of the summary")
    min_length: Optional[int] = Field(None, ge=0, description="Minimum length of the summary")
    condition: Optional[str] = Field(
        None, description='Expression for when to summarize (e.g., "segment.wordCount > 1000")',
    )
    temperature: float = Field(0.7, ge=0, le=2, description="Temperature for text generation")
    prompt_template: Optional[str] = Field(None, description="Custom prompt template; {{content}} is replaced")
    preserve_original: bool = Field(False, description="Whether to keep original content alongside summary")
    batch_size: int = Field(5, gt=0, description="Number of segments to process together")
    timeout: Optional[float] = Field(None, gt=0, description="Timeout in seconds for each summarization request")
    content_field: str = Field("content", description="Path to the text to summarize")


@dataclass
class _Outcome:
    summary: Optional[Dict[str, Any]] = None
    tokens: int = 0
    error: Optional[str] = None


def build_prompt(content: str, cfg: SummarizationConfig) -> str:
    if cfg.prompt_template:
        return cfg.prompt_template.replace("{{content}}", content)
    return DEFAULT_PROMPT.format(max_length=cfg.max_length, content=content)


class Summarizer:
    def __init__(self, client: ChatClient):
        self.client = client

    def validate(self, config: Dict[str, Any]) -> ValidationResult:
        cfg, errors = parse_config(SummarizationConfig, config)
        if cfg is None:
            return ValidationResult.from_errors(errors)
        if cfg.min_length is not None and cfg.min_length > cfg.max_length:
            errors.append("Minimum length cannot be greater than maximum length")
        if cfg.condition:
            try:
                compile_condition(cfg.condition)
            except ConditionError as e:
                errors.append(f"Invalid condition: {e}")
        return ValidationResult.from_errors(errors)

    def wants(self, record: Any, content: str, cfg: SummarizationConfig, condition=None, log=None) -> bool:
        if not isinstance(record, dict):
            return False
        if cfg.min_length is not None and len(content) < cfg.min_length:
            return False
        if len(content) <= cfg.max_length:
            return False
        if condition is not None:
            try:
                return condition.evaluate(segment_view(record, content))
            except Exception as e:
                if log:
                    log.warning("Error evaluating condition for segment %s: %s", record.get("id"), e)
                return False
        return True

    async def summarize_one(self, record: Dict[str, Any], content: str, cfg: SummarizationConfig, log) -> _Outcome:
        try:
            response = await self.client.chat_completion(
                [{"role": "user", "content": build_prompt(content, cfg)}],
                model=cfg.model,
                temperature=cfg.temperature,
                timeout=cfg.timeout,
            )
            choices = (response or {}).get("choices") or []
            text = (((choices[0] if choices else {}).get("message") or {}).get("content") or "").strip()
            if not text:
                raise ValueError("No summary generated")
        except Exception as e:
            log.warning("Failed to summarize segment %s: %s", record.get("id"), e)
            return _Outcome(error=str(e))

        usage = (response.get("usage") or {}).get("total_tokens")
        summary = {
            **{k: record[k] for k in ("documentId", "datasetId") if k in record},
            "id": f"{record.get('id')}_summary",
            "content": text,
            "wordCount": len(text.split()),
            "tokens": usage or math.ceil(len(text) / 4),
            "position": record.get("position"),
            "status": "waiting",
            "summaryOf": record.get("id"),
        }
        return _Outcome(summary=summary, tokens=usage or 0)

    async def execute(self, records: List[Any], config: Dict[str, Any], context: ExecutionContext) -> StepOutput:
        cfg = SummarizationConfig.model_validate(config)
        log = context.logger
        condition = compile_condition(cfg.condition) if cfg.condition else None
        log.info("Starting AI summarization for %d segments", len(records))

        contents = [extract_field(r, cfg.content_field, logger=log) for r in records]
        eligible = [i for i, r in enumerate(records) if self.wants(r, contents[i], cfg, condition, log)]
        log.info("Found %d segments eligible for summarization", len(eligible))

        outcomes: Dict[int, _Outcome] = {}
        for batch in chunked(eligible, cfg.batch_size):
            results = await asyncio.gather(
                *(self.summarize_one(records[i], contents[i], cfg, log) for i in batch)
            )
            outcomes.update(zip(batch, results))

        output: List[Any] = []
        for i, record in enumerate(records):
            outcome = outcomes.get(i)
            if outcome is None or outcome.summary is None:
                output.append(record)
            elif cfg.preserve_original:
                output.extend([record, outcome.summary])
            else:
                output.append(outcome.summary)

        summarized = sum(1 for o in outcomes.values() if o.summary is not None)
        failed = len(outcomes) - summarized
        log.info("AI summarization completed: %d summarized, %d skipped", summarized, failed)
        return StepOutput(
            records=output,
            metrics={
                "segments_processed": len(outcomes),
                "segments_summarized": summarized,
                "segments_skipped": failed,
                "total_tokens_used": sum(o.tokens for o in outcomes.values()),
                "summarization_rate": summarized / len(records) if records else 0.0,
            },
            warnings=[f"{failed} segment(s) could not be summarized"] if failed else [],
        )


def make_summarization_step(client: ChatClient) -> Step:
    s = Summarizer(client)
    return Step(
        "ai_summarization",
        "AI-Powered Content Summarization",
        StepHooks(validate=s.validate, execute=s.execute),
        description="Summarize long content using AI/LLM providers",
        config_model=SummarizationConfig,
        field_key="contentField",
        categories=["ai"],
    )
