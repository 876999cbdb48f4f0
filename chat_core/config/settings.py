"""配置管理模块。

支持从 .env、config.yaml 以及环境变量加载配置。
Provider 凭证同时可以由持久化存储提供（优先级更高），这里只是默认值。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("CHAT_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
        Path(__file__).resolve().parents[1] / "config.yaml",
    ])

    seen: set[Path] = set()
    for path in candidates:
        if not path or path in seen:
            continue
        seen.add(path)
        try:
            if path.exists():
                data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
                if isinstance(data, dict):
                    return data
                warnings.warn(f"Config file {path} is not a mapping, ignored")
        except (OSError, yaml.YAMLError) as exc:
            warnings.warn(f"Failed to read config file {path}: {exc}")
    return {}


class ChatSettings(BaseSettings):
    """配置设置（使用 Pydantic）。"""

    # ---- Provider 相关配置 ----
    default_provider: str = Field(
        default="gemini",
        description="默认使用的 Provider 名称，例如 gemini、openai",
    )

    # Gemini（会话式 SDK）
    gemini_api_key: Optional[str] = Field(default=None, description="Google AI API 密钥")
    gemini_model: str = Field(default="gemini-2.5-flash", description="Gemini 模型名")

    # OpenAI（SSE REST 接口）
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API 密钥")
    openai_model: str = Field(default="gpt-4o", description="OpenAI 模型名")
    openai_base_url: str = Field(
        default="https://api.openai.com/v1",
        description="OpenAI API 基础URL",
    )
    http_timeout: float = Field(default=60.0, ge=1.0, description="HTTP 超时时间（秒）")

    # ---- 存储与日志 ----
    storage_root: str = Field(default=".storage", description="存储根目录")
    state_file: str = Field(default="chat_state.json", description="键值存储文件名")
    log_dir: str = Field(default="logs", description="日志目录")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")

    # ---- 对话文案 ----
    title_max_chars: int = Field(default=40, ge=1, description="自动标题截取的最大字符数")
    default_title: str = Field(default="新对话", description="没有文本时使用的默认标题")
    error_prefix: str = Field(default="错误: ", description="错误消息前缀")
    unknown_error_message: str = Field(default="发生未知错误。", description="异常没有信息时的兜底文案")
    quota_pattern: str = Field(default="quota|billing", description="识别额度/账单错误的正则（忽略大小写）")
    quota_message: str = Field(
        default=(
            "错误: 您已超出 OpenAI API 的使用额度。\n\n"
            "请在 OpenAI 控制台检查您的套餐与账单信息。"
            "可能的原因是付款卡已过期，或需要充值额度（credits）后才能继续使用。"
        ),
        description="额度/账单错误的替换提示",
    )
    interrupted_message: str = Field(
        default="错误: 上一次回复在完成前被中断，请重试。",
        description="加载时修复中断占位消息所用的文案",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("gemini_api_key", "openai_api_key")
    @classmethod
    def validate_api_key(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
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
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls._config_source,
            file_secret_settings,
        )


settings = ChatSettings()

# 类型别名，让外部代码可以使用 Settings 类型
Settings = ChatSettings
