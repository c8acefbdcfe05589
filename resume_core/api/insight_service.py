"""洞察持久化服务。

只负责写入新的问答对与按对象列出，已保存的洞察不会被修改。
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List

from resume_core.domain.exceptions import NotFoundError
from resume_core.domain.models import Insight, PendingInsight, SubjectRef
from resume_core.domain.records import CONVERSATIONS, INSIGHTS, SPACES, DocumentStore
from resume_core.infrastructure.logging.logger import log_event
from resume_core.relay.validation import ensure_valid_subject


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_ts(value: str) -> datetime:
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def _subject_collection(subject: SubjectRef) -> str:
    return CONVERSATIONS if subject.kind == "conversation" else SPACES


def insight_from_document(data: Dict[str, Any]) -> Insight:
    subject = SubjectRef(conversation_id=data.get("conversationId"), space_id=data.get("spaceId"))
    return Insight(
        id=data["id"],
        subject=subject,
        question=data.get("question") or "",
        answer=data.get("answer") or "",
        created_at=_parse_ts(data["createdAt"]),
        updated_at=_parse_ts(data.get("updatedAt") or data["createdAt"]),
    )


class InsightService:
    def __init__(self, store: DocumentStore):
        self._store = store

    async def save(self, pending: PendingInsight) -> Insight:
        ensure_valid_subject(pending.subject)
        subject_doc = await asyncio.to_thread(self._store.get, _subject_collection(pending.subject), pending.subject.id)
        if subject_doc is None:
            raise NotFoundError(f"The referenced {pending.subject.kind} was not found")

        now = _utcnow()
        data = pending.subject.to_payload()
        data.update(question=pending.question, answer=pending.answer, createdAt=now, updatedAt=now)
        doc_id = await asyncio.to_thread(self._store.add, INSIGHTS, data)
        log_event(
            logging.INFO,
            "Saved insight",
            {"subject_kind": pending.subject.kind, "subject_id": pending.subject.id},
            insight_id=doc_id,
        )
        data["id"] = doc_id
        return insight_from_document(data)

    async def list_for(self, subject: SubjectRef) -> List[Insight]:
        """按创建时间倒序列出某个对象下的洞察。"""

        ensure_valid_subject(subject)
        field = "conversationId" if subject.kind == "conversation" else "spaceId"
        docs = await asyncio.to_thread(self._store.query, INSIGHTS, field, subject.id)
        insights = []
        for doc in docs:
            try:
                insights.append(insight_from_document(doc))
            except (KeyError, ValueError):
                continue
        insights.sort(key=lambda i: i.created_at, reverse=True)
        return insights
