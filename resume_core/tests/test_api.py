"""测试 HTTP 接口：错误信封、SSE 帧、洞察保存与列表。"""

import tempfile
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from resume_core.api.server import create_app
from resume_core.domain.exceptions import ProviderError, ProviderErrorKind, ProviderUnconfiguredError
from resume_core.infrastructure.storage.json_store import JsonDocumentStore
from resume_core.providers.errors import PROVIDER_MESSAGES


class FakeProvider:
    name = "fake"

    def __init__(self, *script):
        self.script = script
        self.requests = []
        self.closed = False

    async def stream_reply(self, system_instruction, history, new_message):
        self.requests.append((system_instruction, list(history), new_message))
        for item in self.script:
            if isinstance(item, Exception):
                raise item
            yield item

    async def aclose(self):
        self.closed = True


@pytest.fixture
def store():
    with tempfile.TemporaryDirectory() as d:
        s = JsonDocumentStore(root=Path(d))
        s.set(
            "conversations",
            "c1",
            {
                "title": "Greetings",
                "source": "chatgpt",
                "messages": [
                    {"id": "m1", "role": "user", "content": "hi", "timestamp": "2025-01-01T00:00:00Z"},
                    {"id": "m2", "role": "assistant", "content": "hello", "timestamp": "2025-01-01T00:00:01Z"},
                ],
            },
        )
        yield s


def _client(store, *script):
    provider = FakeProvider(*script)
    return TestClient(create_app(store=store, provider=provider)), provider


def test_health(store):
    client, _ = _client(store)
    assert client.get("/health").json() == {"status": "ok", "provider": "fake"}


def test_chat_streams_text_frames_then_done(store):
    client, provider = _client(store, "Hel", "lo")
    resp = client.post(
        "/chat",
        json={"conversationId": "c1", "userMessage": "What next?", "chatHistory": [{"role": "user", "content": "earlier"}]},
    )

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/event-stream")
    assert resp.headers["cache-control"] == "no-cache"
    assert resp.text == 'data: {"text": "Hel"}\n\ndata: {"text": "lo"}\n\ndata: [DONE]\n\n'
    assert "X-Context-Skipped" not in resp.headers

    system_instruction, history, message = provider.requests[0]
    assert "User: hi\n\nAI: hello" in system_instruction
    assert [(t.role.value, t.content) for t in history] == [("user", "earlier")]
    assert message == "What next?"


def test_chat_unknown_conversation_is_404_without_provider_call(store):
    client, provider = _client(store, "x")
    resp = client.post("/chat", json={"conversationId": "nope", "userMessage": "hi"})

    assert resp.status_code == 404
    body = resp.json()
    assert body["success"] is False
    assert body["error"]["code"] == "NOT_FOUND"
    assert provider.requests == []


def test_chat_missing_message_is_validation_error(store):
    client, provider = _client(store, "x")
    resp = client.post("/chat", json={"conversationId": "c1"})

    assert resp.status_code == 400
    error = resp.json()["error"]
    assert error["code"] == "VALIDATION_ERROR"
    assert "userMessage" in error["details"]["fieldErrors"]
    assert provider.requests == []


@pytest.mark.parametrize(
    "payload",
    [
        {"userMessage": "hi"},
        {"conversationId": "c1", "spaceId": "s1", "userMessage": "hi"},
        {"conversationId": "c1", "userMessage": ""},
        {"conversationId": "c1", "userMessage": "x" * 10001},
        {"conversationId": "c1", "userMessage": "hi", "chatHistory": [{"role": "assistant", "content": "x"}]},
        {"conversationId": "c1", "userMessage": "hi", "chatHistory": [{"role": "user", "content": "x"}] * 51},
    ],
)
def test_chat_schema_violations(store, payload):
    client, _ = _client(store)
    resp = client.post("/chat", json=payload)
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "VALIDATION_ERROR"


def test_chat_body_that_is_not_json(store):
    client, _ = _client(store)
    resp = client.post("/chat", content=b"{oops", headers={"content-type": "application/json"})
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "INVALID_JSON"


def test_chat_invalid_id_format(store):
    client, _ = _client(store)
    resp = client.post("/chat", json={"conversationId": "a/b", "userMessage": "hi"})
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "INVALID_ID_FORMAT"


def test_chat_corrupt_conversation_is_integrity_error(store):
    store.set("conversations", "broken", {"title": "x", "messages": "nope"})
    client, _ = _client(store)
    resp = client.post("/chat", json={"conversationId": "broken", "userMessage": "hi"})
    assert resp.status_code == 500
    assert resp.json()["error"]["code"] == "DATA_INTEGRITY"


def test_chat_unconfigured_provider_is_503(store):
    client, _ = _client(store, ProviderUnconfiguredError("GEMINI_API_KEY is not set"))
    resp = client.post("/chat", json={"conversationId": "c1", "userMessage": "hi"})
    assert resp.status_code == 503
    assert resp.json()["error"]["code"] == "PROVIDER_UNCONFIGURED"


def test_chat_permission_denied_before_streaming_is_json_error(store):
    denied = ProviderError(ProviderErrorKind.PERMISSION_DENIED, PROVIDER_MESSAGES[ProviderErrorKind.PERMISSION_DENIED])
    client, _ = _client(store, denied)
    resp = client.post("/chat", json={"conversationId": "c1", "userMessage": "hi"})
    assert resp.status_code == 502
    assert resp.json()["error"] == {
        "code": "PROVIDER_PERMISSION_DENIED",
        "message": PROVIDER_MESSAGES[ProviderErrorKind.PERMISSION_DENIED],
    }


def test_chat_quota_error_mid_stream_ends_with_error_frame(store):
    quota = ProviderError(ProviderErrorKind.QUOTA_EXCEEDED, PROVIDER_MESSAGES[ProviderErrorKind.QUOTA_EXCEEDED])
    client, _ = _client(store, "Par", quota)
    resp = client.post("/chat", json={"conversationId": "c1", "userMessage": "hi"})

    assert resp.status_code == 200
    frames = [f for f in resp.text.split("\n\n") if f]
    assert frames[0] == 'data: {"text": "Par"}'
    assert frames[-1].startswith('data: {"error": ')
    assert "rate limit" in frames[-1]
    assert "[DONE]" not in resp.text


def test_chat_space_reports_skipped_members(store):
    store.set("spaces", "s1", {"title": "Research", "conversationIds": ["c1", "gone"]})
    client, provider = _client(store, "ok")
    resp = client.post("/chat", json={"spaceId": "s1", "userMessage": "summarise"})

    assert resp.status_code == 200
    assert resp.headers["X-Context-Skipped"] == "1"
    system_instruction = provider.requests[0][0]
    assert "### Conversation 1: Greetings" in system_instruction
    assert "## Theme: Research" in system_instruction


def test_save_and_list_insights(store):
    client, _ = _client(store)
    resp = client.post("/insights", json={"conversationId": "c1", "question": "What next?", "answer": "Ship it."})

    assert resp.status_code == 201
    data = resp.json()["data"]
    assert data["id"]
    assert data["createdAt"].endswith("Z")

    listed = client.get("/conversations/c1/insights").json()["data"]["insights"]
    assert len(listed) == 1
    assert listed[0]["question"] == "What next?"
    assert listed[0]["answer"] == "Ship it."
    assert listed[0]["conversationId"] == "c1"
    assert client.get("/spaces/c1/insights").json()["data"]["insights"] == []


def test_list_insights_newest_first(store):
    for n, ts in enumerate(["2025-01-01T00:00:00Z", "2025-03-01T00:00:00Z", "2025-02-01T00:00:00Z"]):
        store.add("insights", {"spaceId": "s1", "question": f"q{n}", "answer": "a", "createdAt": ts, "updatedAt": ts})
    client, _ = _client(store)

    listed = client.get("/spaces/s1/insights").json()["data"]["insights"]
    assert [i["question"] for i in listed] == ["q1", "q2", "q0"]


def test_save_insight_for_missing_subject_is_404(store):
    client, _ = _client(store)
    resp = client.post("/insights", json={"spaceId": "nope", "question": "q", "answer": "a"})
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "NOT_FOUND"


def test_save_insight_requires_question_and_answer(store):
    client, _ = _client(store)
    resp = client.post("/insights", json={"conversationId": "c1", "question": "q"})
    assert resp.status_code == 400
    assert "answer" in resp.json()["error"]["details"]["fieldErrors"]


def test_injected_provider_is_not_closed_by_app(store):
    provider = FakeProvider()
    with TestClient(create_app(store=store, provider=provider)) as client:
        client.get("/health")
    assert provider.closed is False


def test_chat_response_closes_provider_stream(store):
    closed = []

    class TrackingProvider(FakeProvider):
        async def stream_reply(self, system_instruction, history, new_message):
            try:
                yield "only"
            finally:
                closed.append(True)

    client = TestClient(create_app(store=store, provider=TrackingProvider()))
    resp = client.post("/chat", json={"conversationId": "c1", "userMessage": "hi"})

    assert resp.text.endswith("data: [DONE]\n\n")
    assert closed == [True]
