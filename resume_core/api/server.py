"""FastAPI HTTP 接口。

Endpoints:
  GET  /health                       存活探针
  POST /chat                         以 text/event-stream 流式返回回答
  POST /insights                     保存一条问答洞察
  GET  /conversations/{id}/insights  列出对话下的洞察（新的在前）
  GET  /spaces/{id}/insights         列出空间下的洞察（新的在前）

流打开之前的失败统一返回 ``{"success": false, "error": {...}}``；
流打开之后的失败只能通过最后的 error 帧报告。
"""

import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

import uvicorn
from fastapi import BackgroundTasks, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from resume_core.api.insight_service import InsightService
from resume_core.api.schemas import ChatRequestBody, SaveInsightBody, parse_body
from resume_core.config.settings import Settings, settings
from resume_core.context.builder import ContextBuilder
from resume_core.domain.exceptions import BusinessError, InvalidRequestError
from resume_core.domain.models import Insight, StreamEvent, SubjectRef
from resume_core.domain.records import DocumentStore
from resume_core.infrastructure.logging.logger import logger
from resume_core.infrastructure.storage.json_store import JsonDocumentStore
from resume_core.providers import create_provider
from resume_core.providers.base import ProviderClient
from resume_core.relay.service import ChatRelay
from resume_core.relay.sse import MEDIA_TYPE, encode_event


def error_response(err: BusinessError) -> JSONResponse:
    error: dict[str, Any] = {"code": err.code, "message": err.message}
    field_errors = err.extra.get("field_errors")
    if field_errors:
        error["details"] = {"fieldErrors": field_errors}
    return JSONResponse({"success": False, "error": error}, status_code=err.http_status or 500)


def insight_to_json(insight: Insight) -> dict[str, Any]:
    data = insight.subject.to_payload()
    data.update(
        id=insight.id,
        question=insight.question,
        answer=insight.answer,
        createdAt=insight.created_at.isoformat().replace("+00:00", "Z"),
        updatedAt=insight.updated_at.isoformat().replace("+00:00", "Z"),
    )
    return data


async def _read_json(request: Request) -> Any:
    raw = await request.body()
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise InvalidRequestError()


async def _frames(events: AsyncIterator[StreamEvent]) -> AsyncIterator[bytes]:
    async for event in events:
        yield encode_event(event)


def create_app(
    store: Optional[DocumentStore] = None,
    provider: Optional[ProviderClient] = None,
    cfg: Optional[Settings] = None,
) -> FastAPI:
    """创建应用。store/provider 可注入，未注入时按配置创建并由应用负责关闭。"""

    cfg = cfg or settings
    store = store if store is not None else JsonDocumentStore(cfg.storage_root)
    owns_provider = provider is None
    provider = provider if provider is not None else create_provider(cfg=cfg)

    relay = ChatRelay(ContextBuilder(store), provider)
    insights = InsightService(store)

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        yield
        if owns_provider:
            await provider.aclose()

    app = FastAPI(
        title="resume-core",
        version="0.1.0",
        description="Resume saved LLM conversations with streamed replies and keep insights.",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Context-Skipped"],
    )
    app.state.relay = relay
    app.state.insights = insights

    @app.exception_handler(BusinessError)
    async def _business_error(_request: Request, exc: BusinessError) -> JSONResponse:
        return error_response(exc)

    @app.exception_handler(Exception)
    async def _unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            f"{request.method} {request.url.path} failed: {exc}",
            exc_info=exc,
            extra={"extra": {"path": request.url.path}},
        )
        return JSONResponse(
            {"success": False, "error": {"code": "INTERNAL_ERROR", "message": "Internal server error"}},
            status_code=500,
        )

    @app.get("/health", tags=["meta"])
    async def health() -> dict[str, str]:
        return {"status": "ok", "provider": provider.name}

    @app.post("/chat", tags=["chat"])
    async def chat(request: Request) -> StreamingResponse:
        body = parse_body(ChatRequestBody, await _read_json(request))
        prepared = await relay.prepare(body.to_command())

        headers = {"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}
        if prepared.context.skipped_ids:
            headers["X-Context-Skipped"] = str(len(prepared.context.skipped_ids))
        # 响应结束后再关闭一次上游流，覆盖响应体从未被迭代的情况
        cleanup = BackgroundTasks()
        cleanup.add_task(relay.close, prepared)
        return StreamingResponse(
            _frames(relay.events(prepared)),
            media_type=MEDIA_TYPE,
            headers=headers,
            background=cleanup,
        )

    @app.post("/insights", status_code=201, tags=["insights"])
    async def save_insight(request: Request) -> JSONResponse:
        body = parse_body(SaveInsightBody, await _read_json(request))
        insight = await insights.save(body.to_pending())
        created_at = insight.created_at.isoformat().replace("+00:00", "Z")
        return JSONResponse(
            {"success": True, "data": {"id": insight.id, "createdAt": created_at}},
            status_code=201,
        )

    @app.get("/conversations/{conversation_id}/insights", tags=["insights"])
    async def conversation_insights(conversation_id: str) -> dict[str, Any]:
        items = await insights.list_for(SubjectRef(conversation_id=conversation_id))
        return {"success": True, "data": {"insights": [insight_to_json(i) for i in items]}}

    @app.get("/spaces/{space_id}/insights", tags=["insights"])
    async def space_insights(space_id: str) -> dict[str, Any]:
        items = await insights.list_for(SubjectRef(space_id=space_id))
        return {"success": True, "data": {"insights": [insight_to_json(i) for i in items]}}

    return app


def run_api(cfg: Optional[Settings] = None) -> None:
    """通过 uvicorn 启动服务。"""

    cfg = cfg or settings
    logger.log(logging.INFO, "Starting resume-core API", extra={"extra": {"host": cfg.api_host, "port": cfg.api_port}})
    uvicorn.run(create_app(cfg=cfg), host=cfg.api_host, port=cfg.api_port, log_level="info")
