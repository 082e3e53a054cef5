"""Minimal demonstration of the chat service with built-in tools."""

import asyncio

from kimi_chat.api.service import get_default_service


def _print_execution(execution):
    print(f"[tool] {execution.name} {execution.arguments} -> {execution.result}")


async def main() -> None:
    question = "What's the weather in Paris? Also make me 3 slides about it."
    outcome = await get_default_service().send_message(question, on_tool_execution=_print_execution)
    print("User:", question)
    print("Assistant:", outcome.assistant_message.content)


if __name__ == "__main__":
    asyncio.run(main())
