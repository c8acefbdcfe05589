"""GLM / BigModel Provider 适配器。

接口风格与 OpenAI 类似，使用 chat/completions 端点：
- URL: {base_url}/chat/completions
- 认证: Authorization: Bearer <api_key>

系统提示词作为第一条 system 消息发送，会话中的 model 角色映射为 assistant。
"""

import json
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

import httpx

from resume_core.config.settings import Settings, settings
from resume_core.domain.exceptions import ProviderError, ProviderUnconfiguredError
from resume_core.domain.models import ChatTurn, Role
from resume_core.providers.errors import classify_exception, classify_provider_error
from resume_core.providers.registry import GLM_CONFIG, ModelConfig, get_model_config


def openai_role(role: Role) -> str:
    if role is Role.USER:
        return "user"
    if role is Role.MODEL:
        return "assistant"
    raise ValueError(f"Unhandled role: {role!r}")


class GlmClient:
    """GLM / BigModel Provider 客户端实现。"""

    name = "glm"

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
        api_key = getattr(self._settings, "glm_api_key", None)
        if not api_key:
            raise ProviderUnconfiguredError("GLM_API_KEY is not set")
        model_cfg = get_model_config(self.name, getattr(self._settings, "default_model", "resume-chat"))
        payload = self._build_payload(system_instruction, history, new_message, model_cfg)
        base = getattr(self._settings, "glm_base_url", None) or GLM_CONFIG.base_url

        try:
            async with self._client().stream(
                "POST",
                f"{base}/chat/completions",
                json=payload,
                headers={
                    "Authorization": f"Bearer {api_key}",
                    "Content-Type": "application/json",
                },
            ) as resp:
                if resp.status_code >= 400:
                    body = (await resp.aread()).decode("utf-8", errors="replace")
                    raise classify_provider_error(self.name, resp.status_code, body)
                async for line in resp.aiter_lines():
                    if not line:
                        continue
                    data_str = line[5:].strip() if line.startswith("data:") else line.strip()
                    if not data_str:
                        continue
                    if data_str == "[DONE]":
                        break
                    try:
                        chunk = json.loads(data_str)
                    except json.JSONDecodeError:
                        continue
                    if isinstance(chunk, dict) and chunk.get("error"):
                        raise classify_provider_error(self.name, None, json.dumps(chunk["error"], ensure_ascii=False))
                    for text in self._delta_texts(chunk):
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
        msgs: List[Dict[str, str]] = [{"role": "system", "content": system_instruction}]
        msgs.extend({"role": openai_role(turn.role), "content": turn.content} for turn in history)
        msgs.append({"role": "user", "content": new_message})
        return {
            "model": model_cfg.provider_model,
            "messages": msgs,
            "temperature": model_cfg.temperature,
            "top_p": model_cfg.top_p,
            "max_tokens": model_cfg.max_output_tokens,
            "stream": True,
        }

    @staticmethod
    def _delta_texts(chunk: Any) -> List[str]:
        if not isinstance(chunk, dict):
            return []
        texts = []
        for ch in chunk.get("choices") or []:
            if ch.get("index", 0) != 0:
                continue
            content = (ch.get("delta") or {}).get("content")
            if isinstance(content, str) and content:
                texts.append(content)
        return texts
