"""上下文构建器。

把一个保存的对话、或一个空间下的多个对话，展平为一段 ResumeContext：

- 对话模式：每条消息展开为 ``"<Role>: <content>"``，以空行连接。
- 空间模式：按空间内的引用顺序批量读取对话，每个对话生成
  ``"### Conversation <n>: <title>"`` 开头的一段，各段之间用 ``---`` 分隔。
  缺失或结构损坏的成员对话会被跳过，不会中断整个聚合。
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from resume_core.domain.exceptions import DataIntegrityError, NotFoundError
from resume_core.domain.models import ResumeContext, StoredRole, SubjectRef, stored_role_label
from resume_core.domain.records import CONVERSATIONS, SPACES, DocumentStore
from resume_core.infrastructure.logging.logger import log_event

BLOCK_SEPARATOR = "\n\n---\n\n"


def flatten_messages(messages: List[Any]) -> str:
    """把保存的消息列表展平为摘要文本。

    单条消息结构不合法（缺少 role/content 或角色未知）时抛出 ValueError，
    由调用方决定是报错还是跳过。
    """

    lines: List[str] = []
    for msg in messages:
        if not isinstance(msg, dict):
            raise ValueError("message is not an object")
        content = msg.get("content")
        if not isinstance(content, str):
            raise ValueError("message content is not a string")
        role = StoredRole(msg.get("role"))
        lines.append(f"{stored_role_label(role)}: {content}")
    return "\n\n".join(lines)


def _optional_text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value:
        return value
    return None


class ContextBuilder:
    """根据 SubjectRef 构建 ResumeContext。每次请求重新构建，不做缓存。"""

    def __init__(self, store: DocumentStore):
        self._store = store

    async def build(self, subject: SubjectRef, log_ctx: Optional[Dict[str, Any]] = None) -> ResumeContext:
        log_ctx = log_ctx or {}
        if subject.conversation_id is not None:
            return await self._build_for_conversation(subject.conversation_id, log_ctx)
        return await self._build_for_space(subject.space_id, log_ctx)  # type: ignore[arg-type]

    async def _build_for_conversation(self, conversation_id: str, log_ctx: Dict[str, Any]) -> ResumeContext:
        doc = await asyncio.to_thread(self._store.get, CONVERSATIONS, conversation_id)
        if doc is None:
            raise NotFoundError("The requested conversation was not found", conversation_id=conversation_id)

        messages = doc.get("messages")
        if not isinstance(messages, list):
            raise DataIntegrityError(
                "Stored conversation has no message list",
                conversation_id=conversation_id,
            )
        try:
            summary = flatten_messages(messages)
        except ValueError as e:
            raise DataIntegrityError(
                f"Stored conversation has a malformed message: {e}",
                conversation_id=conversation_id,
            )
        return ResumeContext(
            summary=summary,
            title=_optional_text(doc.get("title")),
            note=_optional_text(doc.get("note")),
        )

    async def _build_for_space(self, space_id: str, log_ctx: Dict[str, Any]) -> ResumeContext:
        space = await asyncio.to_thread(self._store.get, SPACES, space_id)
        if space is None:
            raise NotFoundError("The requested space was not found", space_id=space_id)

        conversation_ids = space.get("conversationIds", [])
        if not isinstance(conversation_ids, list):
            raise DataIntegrityError("Stored space has no conversation list", space_id=space_id)

        docs = await asyncio.to_thread(self._store.get_all, CONVERSATIONS, conversation_ids) if conversation_ids else []

        blocks: List[str] = []
        skipped: List[str] = []
        for conv_id, doc in zip(conversation_ids, docs):
            messages = doc.get("messages") if doc is not None else None
            if not isinstance(messages, list):
                skipped.append(str(conv_id))
                continue
            try:
                flattened = flatten_messages(messages)
            except ValueError:
                skipped.append(str(conv_id))
                continue
            title = _optional_text(doc.get("title")) or "Untitled"
            blocks.append(f"### Conversation {len(blocks) + 1}: {title}\n{flattened}")

        if skipped:
            log_event(
                logging.WARNING,
                "Skipped unusable conversations in space",
                log_ctx,
                space_id=space_id,
                skipped_ids=skipped,
                used=len(blocks),
            )
        return ResumeContext(
            summary=BLOCK_SEPARATOR.join(blocks),
            title=_optional_text(space.get("title")),
            note=_optional_text(space.get("note")),
            skipped_ids=tuple(skipped),
        )
