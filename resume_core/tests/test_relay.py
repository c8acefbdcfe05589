"""测试流式中继：终止事件唯一、错误分类、取消传播。"""

import asyncio
import tempfile
from pathlib import Path

import pytest

from resume_core.context.builder import ContextBuilder
from resume_core.domain.exceptions import (
    InvalidIdFormatError,
    NotFoundError,
    ProviderError,
    ProviderErrorKind,
    ProviderUnconfiguredError,
)
from resume_core.domain.models import ChatTurn, DoneEvent, ErrorEvent, ResumeContext, Role, SubjectRef, TextEvent
from resume_core.infrastructure.storage.json_store import JsonDocumentStore
from resume_core.providers.errors import PROVIDER_MESSAGES
from resume_core.relay.service import GENERIC_STREAM_ERROR, ChatCommand, ChatRelay


class StaticBuilder:
    def __init__(self, context=None):
        self.context = context or ResumeContext(summary="User: hi\n\nAI: hello", title="Greetings")
        self.calls = []

    async def build(self, subject, log_ctx=None):
        self.calls.append(subject)
        return self.context


class ScriptedProvider:
    """按脚本产出片段，脚本中的异常会在对应位置抛出。"""

    name = "scripted"

    def __init__(self, *script):
        self.script = script
        self.requests = []
        self.closed_streams = 0

    async def stream_reply(self, system_instruction, history, new_message):
        self.requests.append((system_instruction, list(history), new_message))
        try:
            for item in self.script:
                if isinstance(item, BaseException):
                    raise item
                yield item
        finally:
            self.closed_streams += 1

    async def aclose(self):
        pass


def _command(message="What next?", history=(), subject=None):
    return ChatCommand(subject=subject or SubjectRef(conversation_id="c1"), user_message=message, history=history)


def _collect(relay, command):
    return asyncio.run(relay.collect(command))


def test_stream_yields_text_then_single_done():
    provider = ScriptedProvider("Hel", "", "lo")
    events = _collect(ChatRelay(StaticBuilder(), provider), _command())

    assert events == [TextEvent("Hel"), TextEvent("lo"), DoneEvent()]
    assert provider.closed_streams == 1


def test_provider_receives_system_instruction_history_and_message():
    provider = ScriptedProvider("ok")
    history = [ChatTurn(role=Role.USER, content="first"), ChatTurn(role=Role.MODEL, content="reply")]
    _collect(ChatRelay(StaticBuilder(), provider), _command("second", history))

    system_instruction, sent_history, message = provider.requests[0]
    assert "User: hi\n\nAI: hello" in system_instruction
    assert "## Theme: Greetings" in system_instruction
    assert [t.content for t in sent_history] == ["first", "reply"]
    assert message == "second"


def test_empty_provider_stream_still_terminates_with_done():
    events = _collect(ChatRelay(StaticBuilder(), ScriptedProvider()), _command())
    assert events == [DoneEvent()]


def test_mid_stream_provider_error_becomes_single_error_event():
    quota = ProviderError(ProviderErrorKind.QUOTA_EXCEEDED, PROVIDER_MESSAGES[ProviderErrorKind.QUOTA_EXCEEDED])
    provider = ScriptedProvider("Par", "tial", quota, "never")
    events = _collect(ChatRelay(StaticBuilder(), provider), _command())

    assert events[:2] == [TextEvent("Par"), TextEvent("tial")]
    assert events[2:] == [ErrorEvent(PROVIDER_MESSAGES[ProviderErrorKind.QUOTA_EXCEEDED])]
    assert sum(isinstance(e, (DoneEvent, ErrorEvent)) for e in events) == 1


def test_unexpected_mid_stream_failure_reports_generic_message():
    provider = ScriptedProvider("a", RuntimeError("internal detail at /srv/app.py:12"))
    events = _collect(ChatRelay(StaticBuilder(), provider), _command())

    assert events == [TextEvent("a"), ErrorEvent(GENERIC_STREAM_ERROR)]
    assert "/srv" not in events[-1].message


def test_failure_before_first_fragment_raises_from_prepare():
    provider = ScriptedProvider(ProviderUnconfiguredError("GEMINI_API_KEY is not set"))
    relay = ChatRelay(StaticBuilder(), provider)
    with pytest.raises(ProviderUnconfiguredError):
        asyncio.run(relay.prepare(_command()))


def test_unclassified_failure_before_first_fragment_is_classified():
    provider = ScriptedProvider(RuntimeError("429 RESOURCE_EXHAUSTED"))
    relay = ChatRelay(StaticBuilder(), provider)
    with pytest.raises(ProviderError) as exc:
        asyncio.run(relay.prepare(_command()))
    assert exc.value.kind is ProviderErrorKind.QUOTA_EXCEEDED


def test_invalid_subject_id_is_rejected_before_any_lookup():
    builder = StaticBuilder()
    provider = ScriptedProvider("x")
    relay = ChatRelay(builder, provider)
    with pytest.raises(InvalidIdFormatError):
        asyncio.run(relay.prepare(_command(subject=SubjectRef(conversation_id="a/b"))))
    assert builder.calls == []
    assert provider.requests == []


def test_missing_subject_is_not_found_and_provider_never_called():
    provider = ScriptedProvider("x")
    with tempfile.TemporaryDirectory() as d:
        relay = ChatRelay(ContextBuilder(JsonDocumentStore(root=Path(d))), provider)
        with pytest.raises(NotFoundError):
            asyncio.run(relay.prepare(_command()))
    assert provider.requests == []


def test_closing_the_event_stream_closes_the_provider_stream():
    class EndlessProvider(ScriptedProvider):
        async def stream_reply(self, system_instruction, history, new_message):
            try:
                n = 0
                while True:
                    n += 1
                    yield f"chunk{n} "
            finally:
                self.closed_streams += 1

    provider = EndlessProvider()
    relay = ChatRelay(StaticBuilder(), provider)

    async def run():
        prepared = await relay.prepare(_command())
        events = relay.events(prepared)
        seen = [await events.__anext__(), await events.__anext__()]
        await events.aclose()
        return seen

    seen = asyncio.run(run())
    assert seen == [TextEvent("chunk1 "), TextEvent("chunk2 ")]
    assert provider.closed_streams == 1


def test_close_releases_prefetched_stream_that_was_never_consumed():
    provider = ScriptedProvider("first", "second")
    relay = ChatRelay(StaticBuilder(), provider)

    async def run():
        prepared = await relay.prepare(_command())
        assert provider.closed_streams == 0
        await relay.close(prepared)
        await relay.close(prepared)
        return prepared

    prepared = asyncio.run(run())
    assert prepared.first_fragment == "first"
    assert provider.closed_streams == 1
