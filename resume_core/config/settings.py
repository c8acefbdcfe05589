"""配置管理模块。

来源优先级（高到低）：初始化参数、环境变量、.env、YAML 配置文件、secrets 目录。
YAML 文件取 ``RESUME_CONFIG_FILE`` 指定的路径，否则取当前目录下的 config.yaml。
"""

import os
from pathlib import Path
from typing import List, Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict, YamlConfigSettingsSource


def _config_file() -> Optional[Path]:
    explicit = os.getenv("RESUME_CONFIG_FILE")
    if explicit:
        return Path(explicit).expanduser()
    local = Path.cwd() / "config.yaml"
    return local if local.exists() else None


class Settings(BaseSettings):
    """服务端与客户端共用的配置。"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ---- Provider ----
    default_provider: Literal["gemini", "glm"] = Field(default="gemini", description="默认 Provider")
    default_model: str = Field(default="resume-chat", description="逻辑模型名，见 providers.registry")
    gemini_api_key: Optional[str] = None
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    glm_api_key: Optional[str] = None
    glm_base_url: str = "https://open.bigmodel.cn/api/paas/v4"
    http_timeout: float = Field(default=60.0, ge=1.0, description="连接与非流式读取超时（秒）")

    # ---- 存储与日志 ----
    storage_root: str = ".storage"
    log_dir: str = "logs"
    log_redact_content: bool = Field(default=False, description="日志消息截断为 64 个字符")

    # ---- HTTP 服务 ----
    api_host: str = "127.0.0.1"
    api_port: int = Field(default=8300, ge=1, le=65535)
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])

    # ---- 客户端 ----
    api_base_url: str = Field(default="http://127.0.0.1:8300", description="客户端会话访问的服务端地址")

    @field_validator("gemini_api_key", "glm_api_key")
    @classmethod
    def validate_api_key(cls, v: Optional[str]) -> Optional[str]:
        if v and len(v) < 10:
            raise ValueError("API key seems too short")
        return v

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        yaml_settings = YamlConfigSettingsSource(settings_cls, yaml_file=_config_file())
        return (init_settings, env_settings, dotenv_settings, yaml_settings, file_secret_settings)


settings = Settings()
