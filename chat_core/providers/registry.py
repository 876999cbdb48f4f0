"""Provider 配置。

本模块集中登记每个 Provider 的静态信息：

- credential_key：凭证在持久化存储中的键名（沿用浏览器端的旧键名，保证数据兼容）。
- api_key_setting / model_setting：Settings 上对应字段，作为凭证缺省值与模型名来源。
- requires_session：是否为会话式 Provider（需要维护可恢复的会话句柄）。

上层只使用 Provider 名称（"gemini" / "openai"），具体字段由这里统一查表。
"""

from dataclasses import dataclass
from typing import Literal, Mapping, Optional


ProviderName = Literal["gemini", "openai"]


@dataclass
class ProviderConfig:
    """某个 Provider 的整体配置。"""

    name: str
    credential_key: str
    api_key_setting: str
    model_setting: str
    requires_session: bool


GEMINI_CONFIG = ProviderConfig(
    name="gemini",
    credential_key="googleApiKey",
    api_key_setting="gemini_api_key",
    model_setting="gemini_model",
    requires_session=True,
)

OPENAI_CONFIG = ProviderConfig(
    name="openai",
    credential_key="chatGptApiKey",
    api_key_setting="openai_api_key",
    model_setting="openai_model",
    requires_session=False,
)


PROVIDER_REGISTRY: Mapping[str, ProviderConfig] = {
    "gemini": GEMINI_CONFIG,
    "openai": OPENAI_CONFIG,
}


def get_provider_config(name: str) -> ProviderConfig:
    """根据名称获取 ProviderConfig，名称不区分大小写。"""

    key = name.lower()
    for k, cfg in PROVIDER_REGISTRY.items():
        if k.lower() == key:
            return cfg
    raise KeyError(f"Unknown provider: {name!r}")


def default_api_key(name: str, cfg) -> Optional[str]:
    """从 Settings 读取某个 Provider 的缺省凭证。"""

    return getattr(cfg, get_provider_config(name).api_key_setting, None) or None


def model_name(name: str, cfg) -> str:
    return getattr(cfg, get_provider_config(name).model_setting)
