"""思考再开引擎共享的数据模型。

本模块定义了服务端与客户端都会用到的标准数据结构：

- ChatTurn: 会话内存中的一条对话（user/model），不直接持久化。
- SubjectRef: 对话或空间二选一的引用。
- ResumeContext: 由保存的对话构建出的上下文文本。
- StreamEvent: 流式中继发出的事件（TextEvent/DoneEvent/ErrorEvent）。
- PendingInsight / Insight: 待保存与已保存的问答对。
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Literal, Optional, Tuple, Union
from uuid import uuid4


class Role(str, Enum):
    """会话内的角色，同时也是 Provider 侧的角色。"""

    USER = "user"
    MODEL = "model"


class StoredRole(str, Enum):
    """保存的对话记录中的角色（来自抓取的 LLM 页面）。"""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


def stored_role_label(role: StoredRole) -> str:
    """把保存的角色映射为摘要里使用的标签。"""

    if role is StoredRole.USER:
        return "User"
    if role is StoredRole.ASSISTANT:
        return "AI"
    if role is StoredRole.SYSTEM:
        return "System"
    raise ValueError(f"Unhandled stored role: {role!r}")


@dataclass(frozen=True)
class ChatTurn:
    """一条会话消息。创建后不可变。"""

    role: Role
    content: str
    id: str = field(default_factory=lambda: f"t-{uuid4().hex}")


@dataclass(frozen=True)
class SubjectRef:
    """上下文的锚点：对话或空间，二者必须且只能有一个。"""

    conversation_id: Optional[str] = None
    space_id: Optional[str] = None

    def __post_init__(self) -> None:
        if (self.conversation_id is None) == (self.space_id is None):
            raise ValueError("SubjectRef needs exactly one of conversation_id / space_id")

    @property
    def kind(self) -> Literal["conversation", "space"]:
        return "conversation" if self.conversation_id is not None else "space"

    @property
    def id(self) -> str:
        return self.conversation_id if self.conversation_id is not None else self.space_id  # type: ignore[return-value]

    def to_payload(self) -> dict:
        """转换为请求体中的 conversationId/spaceId 字段。"""

        if self.conversation_id is not None:
            return {"conversationId": self.conversation_id}
        return {"spaceId": self.space_id}


@dataclass(frozen=True)
class ResumeContext:
    """思考再开的上下文。每次请求重新构建，不缓存也不持久化。

    - summary: 展平后的对话文本（空间模式下为多段拼接）。
    - title / note: 来自对话或空间本身。
    - skipped_ids: 空间模式下因缺失或损坏而被跳过的对话 ID。
    """

    summary: str
    title: Optional[str] = None
    note: Optional[str] = None
    skipped_ids: Tuple[str, ...] = ()


@dataclass(frozen=True)
class TextEvent:
    value: str
    kind: Literal["text"] = "text"


@dataclass(frozen=True)
class DoneEvent:
    kind: Literal["done"] = "done"


@dataclass(frozen=True)
class ErrorEvent:
    message: str
    kind: Literal["error"] = "error"


StreamEvent = Union[TextEvent, DoneEvent, ErrorEvent]


def is_terminal(event: StreamEvent) -> bool:
    return isinstance(event, (DoneEvent, ErrorEvent))


@dataclass(frozen=True)
class PendingInsight:
    """客户端在保存前临时构造的问答对。"""

    question: str
    answer: str
    subject: SubjectRef

    def to_payload(self) -> dict:
        payload = self.subject.to_payload()
        payload["question"] = self.question
        payload["answer"] = self.answer
        return payload


@dataclass
class Insight:
    """已持久化的洞察，由存储层拥有。"""

    id: str
    subject: SubjectRef
    question: str
    answer: str
    created_at: datetime
    updated_at: datetime
