"""Interfaces of the external services steps talk to."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Sequence

from segflow.types import ExecutionContext


class ChatClient(Protocol):
    async def chat_completion(
        self,
        messages: List[Dict[str, str]],
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Return an OpenAI-style payload with ``choices`` and ``usage``."""


class EmbeddingClient(Protocol):
    async def embed(self, texts: Sequence[str], model: Optional[str] = None) -> List[List[float]]:
        ...


@dataclass(frozen=True)
class GraphStats:
    nodes_created: int = 0
    edges_created: int = 0


class GraphExtractor(Protocol):
    async def extract(
        self,
        records: List[Dict[str, Any]],
        options: Dict[str, Any],
        context: ExecutionContext,
    ) -> GraphStats:
        ...

    async def remove(self, segment_ids: List[Any], context: ExecutionContext) -> None:
        ...
