"""配置管理模块。

支持从环境变量、.env 以及 config.yaml 加载配置，优先级从高到低为：
构造参数 > 环境变量 > .env > config.yaml > secrets 目录。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, Literal, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("KIMI_CHAT_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
    ])

    seen: set[Path] = set()
    for path in candidates:
        if path in seen:
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


class Settings(BaseSettings):
    """配置设置（使用 Pydantic）。"""

    # ---- Provider ----
    default_provider: str = Field(default="kimi", description="默认 Provider 名称")
    default_model: str = Field(
        default="chat",
        description="逻辑模型名，由 providers.registry 映射为具体厂商模型",
    )
    kimi_api_key: Optional[str] = Field(default=None, description="Kimi API 密钥")
    kimi_base_url: str = Field(
        default="https://api.moonshot.cn/v1",
        description="Kimi API 基础URL",
    )
    http_timeout: float = Field(default=30.0, ge=1.0, description="HTTP 超时时间（秒）")

    # ---- 编排器 ----
    temperature: float = Field(default=0.6, ge=0.0, le=2.0, description="生成温度")
    max_tool_rounds: int = Field(
        default=8,
        ge=1,
        le=20,
        description="单次 complete 内与模型往返的最大轮数（硬上限 20）",
    )
    parallel_tool_calls: bool = Field(
        default=False,
        description="同一轮内的工具调用是否并发执行（结果仍按调用顺序追加）",
    )
    report_tool_errors: bool = Field(
        default=True,
        description="参数解析失败/未知工具时是否向模型回传错误 tool 消息",
    )

    # ---- 存储 ----
    storage_backend: Literal["json", "supabase"] = Field(default="json", description="会话存储后端")
    storage_root: str = Field(default=".storage", description="JSON 存储根目录")
    supabase_url: Optional[str] = Field(default=None, description="Supabase 项目 URL")
    supabase_anon_key: Optional[str] = Field(default=None, description="Supabase anon key")

    # ---- 日志 ----
    log_dir: str = Field(default="logs", description="日志目录")
    log_level: str = Field(default="INFO", description="日志级别")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("kimi_api_key")
    @classmethod
    def validate_api_key(cls, v: Optional[str]) -> Optional[str]:
        if v and len(v) < 10:
            raise ValueError("API key seems too short")
        return v

    @field_validator("kimi_base_url", "supabase_url")
    @classmethod
    def strip_trailing_slash(cls, v: Optional[str]) -> Optional[str]:
        return v.rstrip("/") if v else v

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


settings = Settings()
