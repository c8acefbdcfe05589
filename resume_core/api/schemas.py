"""HTTP 请求体的 schema 定义与校验。"""

from typing import Any, Dict, List, Literal, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from resume_core.domain.exceptions import ValidationError
from resume_core.domain.models import ChatTurn, PendingInsight, Role, SubjectRef
from resume_core.relay.service import ChatCommand

MAX_MESSAGE_CHARS = 10000
MAX_HISTORY_TURNS = 50


class _SubjectBody(BaseModel):
    """conversationId 与 spaceId 必须且只能提供一个。"""

    model_config = ConfigDict(extra="ignore")

    conversationId: Optional[str] = Field(default=None, min_length=1)
    spaceId: Optional[str] = Field(default=None, min_length=1)

    @model_validator(mode="after")
    def _exactly_one_subject(self):
        if (self.conversationId is None) == (self.spaceId is None):
            raise ValueError("Exactly one of conversationId or spaceId is required")
        return self

    def subject(self) -> SubjectRef:
        return SubjectRef(conversation_id=self.conversationId, space_id=self.spaceId)


class ChatHistoryItem(BaseModel):
    role: Literal["user", "model"]
    content: str = Field(max_length=MAX_MESSAGE_CHARS)


class ChatRequestBody(_SubjectBody):
    userMessage: str = Field(min_length=1, max_length=MAX_MESSAGE_CHARS)
    chatHistory: List[ChatHistoryItem] = Field(default_factory=list, max_length=MAX_HISTORY_TURNS)

    def to_command(self) -> ChatCommand:
        history = [ChatTurn(role=Role(item.role), content=item.content) for item in self.chatHistory]
        return ChatCommand(subject=self.subject(), user_message=self.userMessage, history=history)


class SaveInsightBody(_SubjectBody):
    question: str = Field(min_length=1, max_length=MAX_MESSAGE_CHARS)
    answer: str = Field(min_length=1, max_length=MAX_MESSAGE_CHARS)

    def to_pending(self) -> PendingInsight:
        return PendingInsight(question=self.question, answer=self.answer, subject=self.subject())


Body = TypeVar("Body", bound=BaseModel)


def field_errors(exc: PydanticValidationError) -> Dict[str, List[str]]:
    """把 pydantic 的错误列表整理为 {字段: [错误信息]}。"""

    errors: Dict[str, List[str]] = {}
    for err in exc.errors():
        key = ".".join(str(p) for p in err.get("loc", ())) or "_schema"
        errors.setdefault(key, []).append(err.get("msg", "invalid"))
    return errors


def parse_body(model: Type[Body], data: Any) -> Body:
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(field_errors=field_errors(e))
