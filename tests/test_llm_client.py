import pytest
import requests

from segflow.llm.client import ApiClient, OpenAICompatibleClient


class FakeResponse:
    def __init__(self, payload, status=200):
        self.payload = payload
        self.status = status

    def raise_for_status(self):
        if self.status >= 400:
            raise requests.HTTPError(f"{self.status} error")

    def json(self):
        return self.payload


class FakeSession:
    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    def post(self, url, json=None, headers=None, timeout=None):
        self.calls.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        r = self.responses.pop(0)
        if isinstance(r, Exception):
            raise r
        return r


def test_retries_then_succeeds():
    session = FakeSession([
        requests.ConnectionError("reset"),
        FakeResponse({}, status=503),
        FakeResponse({"ok": True}),
    ])
    api = ApiClient("http://llm/v1/", "sk-test", max_retries=3, retry_delay=0, session=session)
    assert api.post("/chat/completions", {"x": 1}) == {"ok": True}
    assert len(session.calls) == 3
    assert session.calls[0]["url"] == "http://llm/v1/chat/completions"
    assert session.calls[0]["headers"]["Authorization"] == "Bearer sk-test"


def test_gives_up_after_max_retries():
    session = FakeSession([requests.ConnectionError("down")] * 2)
    api = ApiClient("http://llm", max_retries=2, retry_delay=0, session=session)
    with pytest.raises(requests.ConnectionError):
        api.post("embeddings", {})
    assert len(session.calls) == 2


def test_non_request_errors_are_not_retried():
    class Bad(FakeResponse):
        def json(self):
            raise ValueError("not json")

    session = FakeSession([Bad(None)])
    api = ApiClient("http://llm", max_retries=3, retry_delay=0, session=session)
    with pytest.raises(ValueError):
        api.post("x")
    assert len(session.calls) == 1


@pytest.mark.asyncio
async def test_openai_compatible_client():
    session = FakeSession([
        FakeResponse({"choices": [{"message": {"content": "hi"}}]}),
        FakeResponse({"data": [{"index": 1, "embedding": [2.0]}, {"index": 0, "embedding": [1.0]}]}),
    ])
    api = ApiClient("http://llm", retry_delay=0, session=session)
    client = OpenAICompatibleClient(api, chat_model="chat-m", embedding_model="emb-m")

    reply = await client.chat_completion([{"role": "user", "content": "hello"}], temperature=0.2)
    assert reply["choices"][0]["message"]["content"] == "hi"
    assert session.calls[0]["json"]["model"] == "chat-m"
    assert session.calls[0]["json"]["temperature"] == 0.2

    vectors = await client.embed(["a", "b"])
    assert vectors == [[1.0], [2.0]]
    assert session.calls[1]["json"] == {"model": "emb-m", "input": ["a", "b"]}
