"""LLM Provider 集成层。

该包下的模块负责：
- 定义 Provider 抽象接口 (base)。
- 维护 Provider 与模型配置 (registry)。
- 上游错误分类 (errors)。
- 提供各厂商的具体实现 (gemini_client、glm_client)。

Provider 由调用方显式创建并负责关闭，不使用进程级单例。
"""

from typing import Optional

from resume_core.config.settings import Settings, settings
from resume_core.providers.base import ProviderClient
from resume_core.providers.gemini_client import GeminiClient
from resume_core.providers.glm_client import GlmClient


def create_provider(name: Optional[str] = None, cfg: Optional[Settings] = None) -> ProviderClient:
    """根据名称创建 Provider 实例，默认取配置中的 provider。"""

    cfg = cfg or settings
    provider_name = (name or getattr(cfg, "default_provider", "gemini")).lower()
    if provider_name == "glm":
        return GlmClient(cfg)
    if provider_name == "gemini":
        return GeminiClient(cfg)
    raise KeyError(f"Unknown provider: {provider_name!r}")

