"""Step registry: maps a step type to a factory that builds the step."""

from __future__ import annotations

from typing import Callable, Dict, List, Optional

from segflow.errors import MissingCollaboratorError
from segflow.lifecycle import Step
from segflow.llm.protocols import ChatClient, EmbeddingClient, GraphExtractor
from segflow.stages.dedup import make_duplicate_step
from segflow.stages.embed import make_embedding_step
from segflow.stages.filter import make_filter_step
from segflow.stages.graph import make_graph_extraction_step
from segflow.stages.summarize import make_summarization_step

StepFactory = Callable[[], Step]


class StepRegistry:
    def __init__(self):
        self._factories: Dict[str, StepFactory] = {}

    def register(self, step_type: str, factory: StepFactory) -> None:
        if step_type in self._factories:
            raise ValueError(f"Step type already registered: {step_type}")
        self._factories[step_type] = factory

    def types(self) -> List[str]:
        return sorted(self._factories)

    def __contains__(self, step_type: str) -> bool:
        return step_type in self._factories

    def create(self, step_type: str) -> Step:
        try:
            factory = self._factories[step_type]
        except KeyError:
            raise ValueError(f"Unknown step type: {step_type}") from None
        return factory()


def _requires(step_type: str, collaborator: str) -> StepFactory:
    def factory() -> Step:
        raise MissingCollaboratorError(step_type, collaborator)
    return factory


def build_default_registry(
    chat_client: Optional[ChatClient] = None,
    embedding_client: Optional[EmbeddingClient] = None,
    graph_extractor: Optional[GraphExtractor] = None,
) -> StepRegistry:
    """Register every built-in step.

    Steps that need an external service are still registered when the service
    is missing; asking for one then raises :class:`MissingCollaboratorError`.
    """
    reg = StepRegistry()
    reg.register("duplicate_segment", make_duplicate_step)
    reg.register("rule_based_filter", make_filter_step)

    if chat_client is not None:
        reg.register("ai_summarization", lambda: make_summarization_step(chat_client))
    else:
        reg.register("ai_summarization", _requires("ai_summarization", "chat client"))

    if embedding_client is not None:
        reg.register("embedding_generation", lambda: make_embedding_step(embedding_client))
    else:
        reg.register("embedding_generation", _requires("embedding_generation", "embedding client"))

    if graph_extractor is not None:
        reg.register("graph_extraction", lambda: make_graph_extraction_step(graph_extractor))
    else:
        reg.register("graph_extraction", _requires("graph_extraction", "graph extractor"))

    return reg
