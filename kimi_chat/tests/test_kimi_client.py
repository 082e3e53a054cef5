import asyncio
import json

import httpx
import pytest

from kimi_chat.domain.exceptions import (
    ApiError,
    MalformedResponseError,
    NetworkError,
    RateLimitError,
    ValidationError,
)
from kimi_chat.domain.models import ChatMessage, ChatRequest
from kimi_chat.providers.kimi_client import KimiClient
from kimi_chat.tools.builtin import default_tool_defs
from kimi_chat.tools.definitions import ToolCall


class SettingsStub:
    kimi_api_key = "sk-test-0123456789"
    http_timeout = 1.0
    kimi_base_url = "https://api.moonshot.cn/v1"


def _chat(handler, req, settings=None):
    async def go():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            kc = KimiClient(settings or SettingsStub(), http_client=client)
            return await kc.chat(req)

    return asyncio.run(go())


def _request(**kwargs):
    return ChatRequest(
        provider="kimi",
        model="chat",
        messages=kwargs.pop("messages", [ChatMessage(role="user", content="hi")]),
        **kwargs,
    )


def test_kimi_client_parse_basic():
    def handler(request):
        return httpx.Response(
            200,
            json={
                "choices": [{"message": {"role": "assistant", "content": "ok"}, "finish_reason": "stop"}],
                "usage": {"prompt_tokens": 1, "completion_tokens": 1, "total_tokens": 2},
            },
        )

    res = _chat(handler, _request())
    assert res.choices[0].message.content == "ok"
    assert res.choices[0].finish_reason == "stop"
    assert res.usage.total_tokens == 2


def test_kimi_client_payload():
    captured = {}

    def handler(request):
        captured["url"] = str(request.url)
        captured["auth"] = request.headers["Authorization"]
        captured["payload"] = json.loads(request.content)
        return httpx.Response(200, json={"choices": [{"message": {"content": "ok"}, "finish_reason": "stop"}]})

    history = [
        ChatMessage(role="system", content="sys"),
        ChatMessage(role="user", content="weather?"),
        ChatMessage(
            role="assistant",
            content="",
            tool_calls=[ToolCall(id="call_1", name="get_weather", arguments='{"city":"Paris"}')],
        ),
        ChatMessage(role="tool", content='{"weather": "Sunny"}', tool_call_id="call_1", name="get_weather"),
    ]
    _chat(handler, _request(messages=history, tools=default_tool_defs(), temperature=0.6))

    assert captured["url"] == "https://api.moonshot.cn/v1/chat/completions"
    assert captured["auth"] == "Bearer sk-test-0123456789"
    payload = captured["payload"]
    assert payload["model"] == "moonshot-v1-128k"
    assert payload["temperature"] == 0.6
    assert payload["tool_choice"] == "auto"
    assert [t["function"]["name"] for t in payload["tools"]] == [
        "get_weather",
        "create_slides",
        "generate_image",
        "search_web",
    ]
    assert "max_tokens" not in payload
    assistant = payload["messages"][2]
    assert assistant["tool_calls"][0] == {
        "id": "call_1",
        "type": "function",
        "function": {"name": "get_weather", "arguments": '{"city":"Paris"}'},
    }
    tool = payload["messages"][3]
    assert tool == {
        "role": "tool",
        "content": '{"weather": "Sunny"}',
        "tool_call_id": "call_1",
        "name": "get_weather",
    }


def test_kimi_client_no_tools_omits_tool_choice():
    captured = {}

    def handler(request):
        captured["payload"] = json.loads(request.content)
        return httpx.Response(200, json={"choices": [{"message": {"content": "ok"}}]})

    _chat(handler, _request())
    assert "tools" not in captured["payload"]
    assert "tool_choice" not in captured["payload"]


def test_kimi_client_parse_tool_calls_keeps_raw_arguments():
    def handler(request):
        return httpx.Response(
            200,
            json={
                "choices": [
                    {
                        "finish_reason": "tool_calls",
                        "message": {
                            "role": "assistant",
                            "content": "",
                            "tool_calls": [
                                {
                                    "id": "tool123",
                                    "type": "function",
                                    "function": {"name": "search_web", "arguments": '{"query": "todo"}'},
                                },
                                {"id": "skip", "type": "retrieval", "retrieval": {}},
                                {
                                    "id": "bad",
                                    "type": "function",
                                    "function": {"name": "get_weather", "arguments": "{oops"},
                                },
                            ],
                        },
                    }
                ],
            },
        )

    res = _chat(handler, _request())
    calls = res.choices[0].message.tool_calls
    assert [c.id for c in calls] == ["tool123", "bad"]
    assert calls[0].name == "search_web"
    assert calls[0].arguments == '{"query": "todo"}'
    assert calls[1].arguments == "{oops"
    assert res.choices[0].finish_reason == "tool_calls"


def test_kimi_client_rate_limit():
    with pytest.raises(RateLimitError):
        _chat(lambda request: httpx.Response(429, json={"error": "slow down"}), _request())


def test_kimi_client_api_error():
    with pytest.raises(ApiError) as exc_info:
        _chat(lambda request: httpx.Response(401, text="invalid key"), _request())
    assert exc_info.value.http_status == 401
    assert "invalid key" in exc_info.value.message


def test_kimi_client_network_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(NetworkError):
        _chat(handler, _request())


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, text="<html>gateway</html>"),
        httpx.Response(200, json={"choices": []}),
        httpx.Response(200, json=["not", "an", "object"]),
        httpx.Response(200, json={"choices": [{"message": "hi", "finish_reason": "stop"}]}),
        httpx.Response(200, json={"choices": [{"message": {"tool_calls": ["x"]}, "finish_reason": "tool_calls"}]}),
        httpx.Response(200, json={"choices": [{"message": {"tool_calls": [{"id": "c1", "function": "get_weather"}]}}]}),
        httpx.Response(200, json={"choices": [{"message": {"tool_calls": 3}}]}),
    ],
)
def test_kimi_client_malformed_envelope(response):
    with pytest.raises(MalformedResponseError):
        _chat(lambda request: response, _request())


def test_kimi_client_missing_api_key():
    class NoKey(SettingsStub):
        kimi_api_key = None

    with pytest.raises(ValidationError):
        _chat(lambda request: httpx.Response(200, json={}), _request(), settings=NoKey())
