"""流式中继。

一次 /chat 请求分两步处理：

1. prepare: 校验 ID 格式、构建上下文与系统提示词、启动 Provider 调用并
   预取第一个片段。这一步的任何失败都在流打开之前抛出，
   由 API 层转换为普通的错误响应。
2. events: 产出零个或多个 TextEvent，最后恰好一个 DoneEvent 或 ErrorEvent。
   流一旦打开，失败只能通过终止帧报告。
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence
from uuid import uuid4

from resume_core.context.builder import ContextBuilder
from resume_core.domain.exceptions import ProviderError
from resume_core.domain.models import (
    ChatTurn,
    DoneEvent,
    ErrorEvent,
    ResumeContext,
    StreamEvent,
    SubjectRef,
    TextEvent,
)
from resume_core.infrastructure.logging.logger import log_event, logger
from resume_core.prompts import build_system_instruction
from resume_core.providers.base import ProviderClient
from resume_core.providers.errors import classify_exception
from resume_core.relay.validation import ensure_valid_subject

GENERIC_STREAM_ERROR = "An error occurred while generating the reply."


@dataclass
class ChatCommand:
    """已通过 schema 校验的聊天请求。"""

    subject: SubjectRef
    user_message: str
    history: Sequence[ChatTurn] = ()


@dataclass
class PreparedChat:
    """已完成上下文构建、可以开始推流的请求。"""

    context: ResumeContext
    system_instruction: str
    fragments: AsyncIterator[str]
    first_fragment: Optional[str]
    exhausted: bool
    log_ctx: Dict[str, Any] = field(default_factory=dict)
    started_at: float = field(default_factory=time.time)


class ChatRelay:
    def __init__(self, builder: ContextBuilder, provider: ProviderClient):
        self._builder = builder
        self._provider = provider

    async def prepare(self, command: ChatCommand) -> PreparedChat:
        log_ctx: Dict[str, Any] = {
            "trace_id": f"tr-{uuid4().hex}",
            "subject_kind": command.subject.kind,
            "subject_id": command.subject.id,
        }
        ensure_valid_subject(command.subject)

        context = await self._builder.build(command.subject, log_ctx)
        system_instruction = build_system_instruction(context)

        log_event(
            logging.INFO,
            "Calling provider",
            log_ctx,
            provider=self._provider.name,
            history_turns=len(command.history),
            summary_chars=len(context.summary),
        )
        fragments = self._provider.stream_reply(system_instruction, list(command.history), command.user_message)
        first: Optional[str] = None
        exhausted = False
        try:
            first = await fragments.__anext__()
        except StopAsyncIteration:
            exhausted = True
        except ProviderError:
            raise
        except Exception as e:
            raise classify_exception(self._provider.name, e, log_ctx)
        return PreparedChat(
            context=context,
            system_instruction=system_instruction,
            fragments=fragments,
            first_fragment=first,
            exhausted=exhausted,
            log_ctx=log_ctx,
        )

    async def events(self, prepared: PreparedChat) -> AsyncIterator[StreamEvent]:
        """把 Provider 片段转换为流事件，保证最后恰好一个终止事件。"""

        log_ctx = prepared.log_ctx
        emitted = 0
        terminal: StreamEvent
        try:
            if prepared.first_fragment:
                emitted += 1
                yield TextEvent(prepared.first_fragment)
            if not prepared.exhausted:
                async for fragment in prepared.fragments:
                    if not fragment:
                        continue
                    emitted += 1
                    yield TextEvent(fragment)
            terminal = DoneEvent()
        except ProviderError as e:
            terminal = ErrorEvent(e.message)
            log_event(logging.WARNING, "Stream ended with provider error", log_ctx, kind=e.kind.value, fragments=emitted)
        except Exception as e:
            logger.exception(
                "Stream ended with unexpected error",
                extra={"extra": dict(log_ctx, error=type(e).__name__, fragments=emitted)},
            )
            terminal = ErrorEvent(GENERIC_STREAM_ERROR)
        finally:
            # 客户端断开时生成器被关闭，这里一并关闭上游调用
            await self.close(prepared)

        log_event(
            logging.INFO,
            "Completed stream",
            log_ctx,
            fragments=emitted,
            terminal=terminal.kind,
            elapsed_seconds=round(time.time() - prepared.started_at, 2),
        )
        yield terminal

    async def close(self, prepared: PreparedChat) -> None:
        """关闭上游片段流。可重复调用；响应体未被迭代（客户端提前断开）时由此释放连接。"""

        aclose = getattr(prepared.fragments, "aclose", None)
        if aclose is not None:
            await aclose()

    async def collect(self, command: ChatCommand) -> List[StreamEvent]:
        """一次性收集全部事件，供非流式调用与测试使用。"""

        prepared = await self.prepare(command)
        return [event async for event in self.events(prepared)]
