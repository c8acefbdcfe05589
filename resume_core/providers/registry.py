"""Provider 与模型配置。

代码里只使用逻辑模型名（如 "resume-chat"），由这里映射到各厂商的模型 ID
与采样参数。"""

from dataclasses import dataclass, field
from typing import Dict, Mapping

RESUME_CHAT = "resume-chat"


@dataclass(frozen=True)
class ModelConfig:
    logical_name: str
    provider_model: str
    max_output_tokens: int = 2048
    temperature: float = 0.7
    top_p: float = 0.9


@dataclass(frozen=True)
class ProviderConfig:
    name: str
    base_url: str
    models: Dict[str, ModelConfig] = field(default_factory=dict)


def _single_model(provider_model: str) -> Dict[str, ModelConfig]:
    return {RESUME_CHAT: ModelConfig(logical_name=RESUME_CHAT, provider_model=provider_model)}


GEMINI_CONFIG = ProviderConfig(
    name="gemini",
    base_url="https://generativelanguage.googleapis.com/v1beta",
    models=_single_model("gemini-1.5-flash"),
)

# OpenAI 兼容接口
GLM_CONFIG = ProviderConfig(
    name="glm",
    base_url="https://open.bigmodel.cn/api/paas/v4",
    models=_single_model("glm-4.6"),
)

PROVIDER_REGISTRY: Mapping[str, ProviderConfig] = {cfg.name: cfg for cfg in (GEMINI_CONFIG, GLM_CONFIG)}


def get_provider_config(name: str) -> ProviderConfig:
    cfg = PROVIDER_REGISTRY.get(name.lower())
    if cfg is None:
        raise KeyError(f"Unknown provider: {name!r}")
    return cfg


def get_model_config(provider: str, logical_name: str) -> ModelConfig:
    """取某个 Provider 下逻辑模型的配置，未登记时抛出 KeyError。"""

    models = get_provider_config(provider).models
    if logical_name not in models:
        raise KeyError(f"Unknown model {logical_name!r} for provider {provider!r}")
    return models[logical_name]
