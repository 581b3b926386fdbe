from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional, Sequence

import requests
from tenacity import RetryCallState, Retrying, retry_if_exception_type, stop_after_attempt, wait_incrementing

from segflow.utils import get_logger, redact_secrets

logger = get_logger(__name__)


class ApiClient:
    """JSON-over-HTTP client with bounded retry.

    A failed call is retried until ``max_retries`` attempts have been made,
    waiting ``attempt * retry_delay`` seconds in between; the last error is
    re-raised.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        *,
        timeout: float = 30.0,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.max_retries = max(1, int(max_retries))
        self.retry_delay = retry_delay
        self.session = session or requests.Session()

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _log_retry(self, state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        logger.warning(
            "api request failed (attempt %d/%d): %s",
            state.attempt_number,
            self.max_retries,
            redact_secrets(str(exc)),
        )

    def _post_once(self, url: str, body: Any, timeout: float) -> Any:
        r = self.session.post(url, json=body, headers=self._headers(), timeout=timeout)
        r.raise_for_status()
        return r.json()

    def post(self, endpoint: str, body: Any = None, *, timeout: Optional[float] = None) -> Any:
        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        retrying = Retrying(
            stop=stop_after_attempt(self.max_retries),
            wait=wait_incrementing(start=self.retry_delay, increment=self.retry_delay),
            retry=retry_if_exception_type(requests.RequestException),
            before_sleep=self._log_retry,
            reraise=True,
        )
        try:
            return retrying(self._post_once, url, body, timeout or self.timeout)
        except requests.RequestException as e:
            logger.error("api request to %s failed after %d attempts: %s", url, self.max_retries, redact_secrets(str(e)))
            raise


class OpenAICompatibleClient:
    """Chat and embedding client for any OpenAI-compatible endpoint."""

    def __init__(self, api: ApiClient, *, chat_model: Optional[str] = None, embedding_model: Optional[str] = None):
        self.api = api
        self.chat_model = chat_model
        self.embedding_model = embedding_model

    async def chat_completion(
        self,
        messages: List[Dict[str, str]],
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {"model": model or self.chat_model, "messages": messages}
        if temperature is not None:
            body["temperature"] = temperature
        return await asyncio.to_thread(self.api.post, "chat/completions", body, timeout=timeout)

    async def embed(self, texts: Sequence[str], model: Optional[str] = None) -> List[List[float]]:
        body = {"model": model or self.embedding_model, "input": list(texts)}
        payload = await asyncio.to_thread(self.api.post, "embeddings", body)
        data = sorted(payload.get("data") or [], key=lambda d: d.get("index", 0))
        return [d["embedding"] for d in data]
