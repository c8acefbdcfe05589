"""洞察提取：把一条已完成的回答与它前面的提问配对并提交保存。

保存失败不打断聊天，对用户不可见，只写日志。
"""

import logging
from dataclasses import dataclass
from typing import Optional, Set

import httpx

from resume_core.client.consumer import GREETING_ID, ChatSession
from resume_core.domain.models import PendingInsight, Role
from resume_core.infrastructure.logging.logger import log_event


@dataclass(frozen=True)
class Ack:
    id: str
    created_at: str


class InsightExtractor:
    def __init__(self, session: ChatSession, http_client: httpx.AsyncClient):
        self._session = session
        self._http = http_client
        self.saved_ids: Set[str] = set()
        self._in_flight: Set[str] = set()

    def is_saved(self, reply_id: str) -> bool:
        return reply_id in self.saved_ids

    def extract(self, reply_id: str) -> Optional[PendingInsight]:
        """找到回答之前最近的一条用户消息，组成问答对。"""

        history = self._session.history
        index = next((i for i, turn in enumerate(history) if turn.id == reply_id), None)
        if index is None or reply_id == GREETING_ID:
            return None
        reply = history[index]
        if reply.role is not Role.MODEL:
            return None
        for turn in reversed(history[:index]):
            if turn.role is Role.USER:
                return PendingInsight(question=turn.content, answer=reply.content, subject=self._session.subject)
        return None

    async def extract_and_submit(self, reply_id: str) -> Optional[Ack]:
        if reply_id in self.saved_ids or reply_id in self._in_flight:
            return None
        pending = self.extract(reply_id)
        if pending is None:
            return None

        log_ctx = {"subject_id": pending.subject.id, "reply_id": reply_id}
        self._in_flight.add(reply_id)
        try:
            resp = await self._http.post("/insights", json=pending.to_payload())
            if resp.status_code >= 400:
                log_event(logging.WARNING, "Failed to save insight", log_ctx, status_code=resp.status_code, body=resp.text[:500])
                return None
            data = resp.json().get("data") or {}
            ack = Ack(id=str(data["id"]), created_at=str(data.get("createdAt", "")))
        except (httpx.HTTPError, ValueError, KeyError, AttributeError) as e:
            log_event(logging.WARNING, "Failed to save insight", log_ctx, error=f"{type(e).__name__}: {e}")
            return None
        finally:
            self._in_flight.discard(reply_id)

        self.saved_ids.add(reply_id)
        log_event(logging.INFO, "Saved insight", log_ctx, insight_id=ack.id)
        return ack
