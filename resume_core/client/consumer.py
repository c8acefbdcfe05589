"""流式消费端（客户端状态机）。

状态流转：

    IDLE --submit--> SENDING --首个字节--> STREAMING --text--> STREAMING
    STREAMING --done--> SETTLED --> IDLE
    SENDING|STREAMING --error 帧/传输失败--> ERRORED（下一次 submit 时回到正常流程）

- 会话开始时在本地生成开场白（id 为 "greeting"），它不会作为历史发给模型。
- 出错时丢弃已累积的半截回答，不会当作完整回答写入历史。
- reset() 会取消进行中的请求；旧会话的结果一律忽略。
"""

import asyncio
import json
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import httpx

from resume_core.config.settings import Settings, settings
from resume_core.domain.exceptions import TransportFailure
from resume_core.domain.models import (
    ChatTurn,
    DoneEvent,
    ErrorEvent,
    ResumeContext,
    Role,
    StreamEvent,
    SubjectRef,
    TextEvent,
)
from resume_core.infrastructure.logging.logger import log_event
from resume_core.prompts import build_greeting
from resume_core.relay.sse import SSEDecoder

GREETING_ID = "greeting"

RenderCallback = Callable[[str], None]
StateCallback = Callable[["ConsumerState"], None]


class ConsumerState(str, Enum):
    IDLE = "idle"
    SENDING = "sending"
    STREAMING = "streaming"
    SETTLED = "settled"
    ERRORED = "errored"


def create_http_client(cfg: Optional[Settings] = None) -> httpx.AsyncClient:
    """创建指向服务端的 AsyncClient，流式读取不设读超时。"""

    cfg = cfg or settings
    timeout = httpx.Timeout(cfg.http_timeout, read=None)
    return httpx.AsyncClient(base_url=cfg.api_base_url, timeout=timeout, trust_env=False)


def _error_message_of(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        data = None
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            return error["message"]
    return f"Request failed with status {resp.status_code}"


class ChatSession:
    """一个面板实例对应的单线程会话。

    Args:
        subject: 对话或空间的引用。
        http_client: 指向服务端的 httpx.AsyncClient（base_url 已设置）。
        context: 用于生成开场白的上下文（标题等），可选。
        on_render: 每收到一个文本片段时以当前累积文本回调。
        on_state: 状态变化时回调。
    """

    def __init__(
        self,
        subject: SubjectRef,
        http_client: httpx.AsyncClient,
        context: Optional[ResumeContext] = None,
        on_render: Optional[RenderCallback] = None,
        on_state: Optional[StateCallback] = None,
    ):
        self.subject = subject
        self._http = http_client
        self._context = context or ResumeContext(summary="")
        self._on_render = on_render
        self._on_state = on_state
        self._epoch = 0
        self._task: Optional[asyncio.Task] = None
        self.state = ConsumerState.IDLE
        self.error: Optional[str] = None
        self.partial = ""
        self.history: List[ChatTurn] = [self._greeting()]

    def _greeting(self) -> ChatTurn:
        return ChatTurn(role=Role.MODEL, content=build_greeting(self._context), id=GREETING_ID)

    @property
    def busy(self) -> bool:
        return self.state in (ConsumerState.SENDING, ConsumerState.STREAMING)

    def chat_history(self) -> List[Dict[str, str]]:
        """发送给服务端的历史，不包含开场白。"""

        return [
            {"role": turn.role.value, "content": turn.content}
            for turn in self.history
            if turn.id != GREETING_ID
        ]

    async def submit(self, text: str) -> Optional[ChatTurn]:
        """发送一条消息并消费回答流。

        Returns:
            成功时返回新追加的 model 回合；出错、被 reset 或正在忙时返回 None。
        """

        message = text.strip()
        if not message or self.busy:
            return None

        epoch = self._epoch
        payload: Dict[str, Any] = self.subject.to_payload()
        payload["userMessage"] = message
        payload["chatHistory"] = self.chat_history()

        self.history.append(ChatTurn(role=Role.USER, content=message))
        self.error = None
        self.partial = ""
        self._transition(ConsumerState.SENDING)

        task = self._task = asyncio.ensure_future(self._exchange(epoch, payload))
        try:
            return await task
        except TransportFailure as e:
            return self._fail(epoch, e.message)
        except asyncio.CancelledError:
            if epoch != self._epoch:
                # 会话已被 reset，结果被放弃
                return None
            # 调用方取消：放弃半截回答，回到 IDLE 以便继续提问
            task.cancel()
            self.partial = ""
            self._transition(ConsumerState.IDLE)
            raise
        finally:
            if epoch == self._epoch:
                self._task = None

    def reset(self) -> None:
        """清空历史回到只有开场白的状态，并放弃进行中的请求。"""

        self._epoch += 1
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        self.history = [self._greeting()]
        self.error = None
        self.partial = ""
        self._transition(ConsumerState.IDLE)

    async def _exchange(self, epoch: int, payload: Dict[str, Any]) -> Optional[ChatTurn]:
        try:
            async with self._http.stream("POST", "/chat", json=payload) as resp:
                if resp.status_code >= 400:
                    await resp.aread()
                    return self._fail(epoch, _error_message_of(resp))

                decoder = SSEDecoder()
                async for chunk in resp.aiter_bytes():
                    if epoch != self._epoch:
                        return None
                    if not chunk:
                        continue
                    if self.state is ConsumerState.SENDING:
                        self._transition(ConsumerState.STREAMING)
                    for event in decoder.feed(chunk):
                        outcome = self._apply(epoch, event)
                        if outcome is not None:
                            return outcome[0]
                for event in decoder.flush():
                    outcome = self._apply(epoch, event)
                    if outcome is not None:
                        return outcome[0]
        except httpx.HTTPError as e:
            log_event(logging.WARNING, "Chat stream transport failure", {"subject_id": self.subject.id}, error=type(e).__name__)
            raise TransportFailure() from e
        return self._fail(epoch, "The stream ended before the reply was complete")

    def _apply(self, epoch: int, event: StreamEvent) -> Optional[tuple]:
        """处理一个事件；遇到终止事件时返回 (结果,)，否则返回 None。"""

        if epoch != self._epoch:
            return (None,)
        if isinstance(event, TextEvent):
            self.partial += event.value
            if self._on_render is not None:
                self._on_render(self.partial)
            return None
        if isinstance(event, DoneEvent):
            return (self._settle(),)
        if isinstance(event, ErrorEvent):
            return (self._fail(epoch, event.message),)
        return None

    def _settle(self) -> Optional[ChatTurn]:
        turn: Optional[ChatTurn] = None
        if self.partial:
            turn = ChatTurn(role=Role.MODEL, content=self.partial)
            self.history.append(turn)
        self.partial = ""
        self._transition(ConsumerState.SETTLED)
        self._transition(ConsumerState.IDLE)
        return turn

    def _fail(self, epoch: int, message: str) -> None:
        if epoch != self._epoch:
            return None
        self.partial = ""
        self.error = message
        self._transition(ConsumerState.ERRORED)
        return None

    def _transition(self, state: ConsumerState) -> None:
        self.state = state
        if self._on_state is not None:
            self._on_state(state)
