from __future__ import annotations

from typing import Any, Dict, List

import numpy as np
from pydantic import Field

from segflow.batching import chunked
from segflow.config import StepConfig, parse_config
from segflow.fields import extract_field
from segflow.lifecycle import Step, StepHooks
from segflow.llm.protocols import EmbeddingClient
from segflow.types import ExecutionContext, StepOutput, ValidationResult


class EmbeddingConfig(StepConfig):
    model: str = Field(description="Embedding model name")
    batch_size: int = Field(16, gt=0, description="Texts per embedding request")
    skip_existing: bool = Field(True, description="Skip segments that already carry an embedding")
    normalize: bool = Field(False, description="L2-normalise vectors before attaching them")
    content_field: str = Field("content", description="Path to the text to embed")


def l2_normalize(vectors: List[List[float]]) -> List[List[float]]:
    arr = np.asarray(vectors, dtype=float)
    if arr.size == 0:
        return [list(v) for v in vectors]
    norms = np.linalg.norm(arr, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    return (arr / norms).tolist()


class Embedder:
    def __init__(self, client: EmbeddingClient):
        self.client = client

    def validate(self, config: Dict[str, Any]) -> ValidationResult:
        _, errors = parse_config(EmbeddingConfig, config)
        return ValidationResult.from_errors(errors)

    def needs_embedding(self, record: Any, content: str, cfg: EmbeddingConfig) -> bool:
        if not isinstance(record, dict) or not content.strip():
            return False
        return not (cfg.skip_existing and record.get("embedding"))

    async def execute(self, records: List[Any], config: Dict[str, Any], context: ExecutionContext) -> StepOutput:
        cfg = EmbeddingConfig.model_validate(config)
        log = context.logger
        contents = [extract_field(r, cfg.content_field, logger=log) for r in records]
        todo = [i for i, r in enumerate(records) if self.needs_embedding(r, contents[i], cfg)]
        log.info("Found %d segments eligible for embedding generation", len(todo))

        vectors: Dict[int, List[float]] = {}
        for batch in chunked(todo, cfg.batch_size):
            embs = await self.client.embed([contents[i] for i in batch], cfg.model)
            if len(embs) != len(batch):
                raise ValueError(f"embedding client returned {len(embs)} vectors for {len(batch)} texts")
            if cfg.normalize:
                embs = l2_normalize(embs)
            vectors.update(zip(batch, embs))

        output = [
            {**r, "embedding": list(vectors[i]), "embeddingModel": cfg.model} if i in vectors else r
            for i, r in enumerate(records)
        ]
        dims = len(next(iter(vectors.values()))) if vectors else 0
        log.info("Embedding generation completed: %d embeddings generated", len(vectors))
        return StepOutput(
            records=output,
            metrics={
                "segments_processed": len(todo),
                "embeddings_generated": len(vectors),
                "embedding_dimensions": dims,
                "embedding_rate": len(vectors) / len(todo) if todo else 0.0,
            },
        )


def make_embedding_step(client: EmbeddingClient) -> Step:
    e = Embedder(client)
    return Step(
        "embedding_generation",
        "Embedding Generation",
        StepHooks(validate=e.validate, execute=e.execute),
        description="Generate vector embeddings for segment content",
        config_model=EmbeddingConfig,
        field_key="contentField",
        categories=["ai", "embedding"],
    )
