"""系统提示词加载工具。

按语言(locale) 从 prompts/<locale> 目录读取 system prompt 文本，
用于构造每次 complete 调用开头的 ChatMessage(role="system")。
"""

from pathlib import Path


PROMPTS_DIR = Path(__file__).resolve().parent


def load_system_prompt(locale: str = "en") -> str:
    """加载助手的人设与能力说明。"""

    fname = PROMPTS_DIR / locale / "assistant_system.md"
    return fname.read_text(encoding="utf-8").strip()
