import pytest

from segflow.errors import MissingCollaboratorError
from segflow.registry import StepRegistry, build_default_registry


def test_default_registry_types():
    reg = build_default_registry()
    assert reg.types() == [
        "ai_summarization",
        "duplicate_segment",
        "embedding_generation",
        "graph_extraction",
        "rule_based_filter",
    ]
    assert reg.create("duplicate_segment").type == "duplicate_segment"


def test_missing_collaborator():
    reg = build_default_registry()
    with pytest.raises(MissingCollaboratorError, match="requires a chat client"):
        reg.create("ai_summarization")


def test_unknown_and_duplicate_registration():
    reg = StepRegistry()
    with pytest.raises(ValueError):
        reg.create("nope")
    reg.register("x", lambda: None)
    with pytest.raises(ValueError):
        reg.register("x", lambda: None)
