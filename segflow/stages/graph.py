from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import Field

from segflow.config import StepConfig, parse_config
from segflow.fields import extract_field
from segflow.lifecycle import Step, StepHooks
from segflow.llm.protocols import GraphExtractor
from segflow.types import ExecutionContext, RollbackResult, RollbackSnapshot, StepOutput, ValidationResult


class GraphExtractionConfig(StepConfig):
    prompt_id: str = Field(description="Prompt used to extract entities and relations")
    model: Optional[str] = Field(None, description="Model name")
    temperature: float = Field(0.7, ge=0, le=2)
    batch_size: int = Field(10, gt=0)
    confidence_threshold: float = Field(0.7, ge=0, le=1)
    enable_deduplication: bool = Field(True, description="Merge entities that resolve to the same name")
    entity_types: List[str] = Field(default_factory=list)
    relation_types: List[str] = Field(default_factory=list)
    content_field: str = Field("content", description="Path to the text to extract from")


class GraphStep:
    def __init__(self, extractor: GraphExtractor):
        self.extractor = extractor

    def validate(self, config: Dict[str, Any]) -> ValidationResult:
        _, errors = parse_config(GraphExtractionConfig, config)
        return ValidationResult.from_errors(errors)

    async def execute(self, records: List[Any], config: Dict[str, Any], context: ExecutionContext) -> StepOutput:
        cfg = GraphExtractionConfig.model_validate(config)
        log = context.logger
        todo = [
            r for r in records
            if isinstance(r, dict) and extract_field(r, cfg.content_field, logger=log).strip()
        ]
        log.info("Found %d segments eligible for graph extraction", len(todo))
        if not todo:
            return StepOutput(records=records, metrics={"segments_processed": 0})

        options = cfg.model_dump(by_alias=True, exclude={"content_field"})
        stats = await self.extractor.extract(todo, options, context)
        log.info(
            "Graph extraction completed: %d nodes, %d edges created",
            stats.nodes_created,
            stats.edges_created,
        )
        return StepOutput(
            records=records,
            metrics={
                "segments_processed": len(todo),
                "graph_nodes_created": stats.nodes_created,
                "graph_edges_created": stats.edges_created,
                "graph_extraction_rate": (stats.nodes_created + stats.edges_created) / len(todo),
            },
        )

    async def rollback(self, snapshot: RollbackSnapshot, context: ExecutionContext) -> RollbackResult:
        ids = snapshot.ids
        if not ids:
            return RollbackResult(success=True)
        try:
            await self.extractor.remove(ids, context)
        except Exception as e:
            return RollbackResult(success=False, error=str(e))
        context.logger.info("Removed graph data for %d segments", len(ids))
        return RollbackResult(success=True)


def make_graph_extraction_step(extractor: GraphExtractor) -> Step:
    g = GraphStep(extractor)
    return Step(
        "graph_extraction",
        "Knowledge Graph Extraction",
        StepHooks(validate=g.validate, execute=g.execute, rollback=g.rollback),
        description="Extract entities and relations from segments into the knowledge graph",
        config_model=GraphExtractionConfig,
        field_key="contentField",
        categories=["ai", "graph"],
    )
