"""LLM Provider 集成层。

该包下的模块负责：
- 定义 Provider 抽象接口 (base)。
- 维护 Provider 与模型配置 (registry)。
- 提供厂商的具体实现 (kimi_client)。
"""

from typing import Optional

import httpx

from kimi_chat.config.settings import settings
from kimi_chat.domain.exceptions import ValidationError
from kimi_chat.providers.base import ProviderClient
from kimi_chat.providers.kimi_client import KimiClient


def create_provider(name: Optional[str] = None, http_client: Optional[httpx.AsyncClient] = None) -> ProviderClient:
    """根据名称创建 Provider 实例，默认取配置中的 provider。"""

    provider_name = (name or getattr(settings, "default_provider", "kimi")).lower()
    if provider_name == "kimi":
        return KimiClient(settings, http_client=http_client)
    raise ValidationError(code="UNKNOWN_PROVIDER", message=f"Unknown provider: {provider_name}")
