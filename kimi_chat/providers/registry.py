"""Provider 与模型配置。

本模块将“逻辑模型名”与“具体厂商模型名”解耦：

- 逻辑名（logical_name）：在代码里使用的统一名称，例如 "chat"。
- provider_model：厂商实际提供的模型 ID，例如 "moonshot-v1-128k"。

上层只关心逻辑名，具体用哪个底层模型由这里集中配置。"""

from dataclasses import dataclass
from typing import Dict, Optional


@dataclass
class ModelConfig:
    """单个逻辑模型的配置。"""

    logical_name: str
    provider_model: str
    max_tokens: Optional[int]
    default_temperature: float


@dataclass
class ProviderConfig:
    """某个 Provider 的整体配置。"""

    name: str
    base_url: str
    models: Dict[str, ModelConfig]

    def resolve_model(self, name: str) -> ModelConfig:
        """逻辑名优先；未登记的名字视为厂商模型 ID 直接透传。"""

        cfg = self.models.get(name)
        if cfg is not None:
            return cfg
        default = next(iter(self.models.values()))
        return ModelConfig(
            logical_name=name,
            provider_model=name,
            max_tokens=default.max_tokens,
            default_temperature=default.default_temperature,
        )


KIMI_CONFIG = ProviderConfig(
    name="kimi",
    base_url="https://api.moonshot.cn/v1",
    models={
        "chat": ModelConfig(
            logical_name="chat",
            provider_model="moonshot-v1-128k",
            max_tokens=None,
            default_temperature=0.6,
        )
    },
)
