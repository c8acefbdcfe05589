"""Gemini Provider 适配器。

使用 Generative Language REST API 的流式端点：
- URL: {base_url}/models/{model}:streamGenerateContent?alt=sse
- 认证: x-goog-api-key: <api_key>

本模块负责：
1. 把历史 ChatTurn 与新消息转成 Gemini 的 contents（新消息作为最后一条 user）。
2. 系统提示词放到 systemInstruction，不进入 contents。
3. 逐行读取 SSE 响应，取出 candidates[0].content.parts 中的文本片段。
4. 失败时按状态码/错误 status 分类为 ProviderError。
"""

import json
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

import httpx

from resume_core.config.settings import Settings, settings
from resume_core.domain.exceptions import ProviderError, ProviderUnconfiguredError
from resume_core.domain.models import ChatTurn, Role
from resume_core.providers.errors import classify_exception, classify_provider_error
from resume_core.providers.registry import GEMINI_CONFIG, ModelConfig, get_model_config

SAFETY_SETTINGS = [
    {"category": category, "threshold": "BLOCK_MEDIUM_AND_ABOVE"}
    for category in (
        "HARM_CATEGORY_HATE_SPEECH",
        "HARM_CATEGORY_DANGEROUS_CONTENT",
        "HARM_CATEGORY_SEXUALLY_EXPLICIT",
        "HARM_CATEGORY_HARASSMENT",
    )
]


def gemini_role(role: Role) -> str:
    if role is Role.USER:
        return "user"
    if role is Role.MODEL:
        return "model"
    raise ValueError(f"Unhandled role: {role!r}")


class GeminiClient:
    """Gemini 客户端实现。HTTP 连接池由实例持有，通过 aclose 释放。"""

    name = "gemini"

    def __init__(self, cfg: Settings = settings, http_client: Optional[httpx.AsyncClient] = None):
        self._settings = cfg
        self._http = http_client

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self._settings.http_timeout, trust_env=False)
        return self._http

    async def aclose(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    async def stream_reply(
        self,
        system_instruction: str,
        history: Sequence[ChatTurn],
        new_message: str,
    ) -> AsyncIterator[str]:
        api_key = getattr(self._settings, "gemini_api_key", None)
        if not api_key:
            # 配置缺失在发起任何网络请求前检测
            raise ProviderUnconfiguredError("GEMINI_API_KEY is not set")
        model_cfg = get_model_config(self.name, getattr(self._settings, "default_model", "resume-chat"))
        payload = self._build_payload(system_instruction, history, new_message, model_cfg)
        base = getattr(self._settings, "gemini_base_url", None) or GEMINI_CONFIG.base_url
        url = f"{base}/models/{model_cfg.provider_model}:streamGenerateContent"

        try:
            async with self._client().stream(
                "POST",
                url,
                params={"alt": "sse"},
                json=payload,
                headers={"x-goog-api-key": api_key, "Content-Type": "application/json"},
            ) as resp:
                if resp.status_code >= 400:
                    body = (await resp.aread()).decode("utf-8", errors="replace")
                    raise classify_provider_error(self.name, resp.status_code, body)
                async for line in resp.aiter_lines():
                    data = self._data_of(line)
                    if data is None:
                        continue
                    try:
                        chunk = json.loads(data)
                    except json.JSONDecodeError:
                        continue
                    if isinstance(chunk, dict) and chunk.get("error"):
                        raise classify_provider_error(self.name, None, json.dumps(chunk["error"], ensure_ascii=False))
                    text = self._text_of(chunk)
                    if text:
                        yield text
        except ProviderError:
            raise
        except httpx.HTTPError as e:
            raise classify_exception(self.name, e)

    def _build_payload(
        self,
        system_instruction: str,
        history: Sequence[ChatTurn],
        new_message: str,
        model_cfg: ModelConfig,
    ) -> Dict[str, Any]:
        contents: List[Dict[str, Any]] = [
            {"role": gemini_role(turn.role), "parts": [{"text": turn.content}]} for turn in history
        ]
        contents.append({"role": "user", "parts": [{"text": new_message}]})
        return {
            "contents": contents,
            "systemInstruction": {"parts": [{"text": system_instruction}]},
            "safetySettings": SAFETY_SETTINGS,
            "generationConfig": {
                "maxOutputTokens": model_cfg.max_output_tokens,
                "temperature": model_cfg.temperature,
                "topP": model_cfg.top_p,
            },
        }

    @staticmethod
    def _data_of(line: str) -> Optional[str]:
        if not line or not line.startswith("data:"):
            return None
        data = line[5:].strip()
        return data or None

    @staticmethod
    def _text_of(chunk: Any) -> str:
        """取出首个候选中的全部文本 part。"""

        if not isinstance(chunk, dict):
            return ""
        candidates = chunk.get("candidates") or []
        if not candidates:
            return ""
        content = (candidates[0] or {}).get("content") or {}
        texts = [p.get("text") for p in content.get("parts") or [] if isinstance(p, dict)]
        return "".join(t for t in texts if isinstance(t, str))
