"""内置的四个演示工具。

全部是无外部 I/O 的纯函数，返回合成数据：天气、幻灯片、图片、网页搜索。
"""

import random
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from .definitions import ToolDef, ToolParam
from .registry import ToolHandler, ToolRegistry


WEATHER_CONDITIONS = ["Sunny", "Cloudy", "Rainy", "Snowy", "Windy"]
IMAGE_STYLES = ["realistic", "artistic", "cartoon", "abstract"]
MAX_SLIDES = 10
PLACEHOLDER_IMAGE_URL = "https://images.pexels.com/photos/933054/pexels-photo-933054.jpeg?auto=compress&cs=tinysrgb&w=800"
SEARCH_BASE_URL = "https://example.com"


def _encode(value: str) -> str:
    # 除字母数字与 -_.!~*'() 外全部百分号编码（包括 /）
    return quote(value, safe="-_.!~*'()")


def get_weather(city: str) -> Dict[str, Any]:
    return {
        "weather": random.choice(WEATHER_CONDITIONS),
        "temperature": random.randint(5, 34),
        "city": city,
    }


def create_slides(topic: str, slide_count: Any) -> Dict[str, List[Dict[str, str]]]:
    """生成 min(slide_count, 10) 张幻灯片，非法或负数数量视为 0。"""

    try:
        count = int(slide_count)
    except (TypeError, ValueError):
        count = 0
    except OverflowError:
        count = MAX_SLIDES if slide_count > 0 else 0
    count = max(0, min(count, MAX_SLIDES))
    slides = [
        {
            "title": f"{topic} - Slide {i}",
            "content": (
                f"This is the content for slide {i} about {topic}. "
                "It includes key points and information relevant to the topic."
            ),
        }
        for i in range(1, count + 1)
    ]
    return {"slides": slides}


def generate_image(prompt: str, style: Optional[str] = None) -> Dict[str, str]:
    return {
        "imageUrl": PLACEHOLDER_IMAGE_URL,
        "prompt": prompt,
        "style": style or random.choice(IMAGE_STYLES),
    }


def search_web(query: str) -> Dict[str, List[Dict[str, str]]]:
    encoded = _encode(query)
    return {
        "results": [
            {
                "title": f"{query} - Overview",
                "url": f"{SEARCH_BASE_URL}/search?q={encoded}",
                "snippet": (
                    f"Comprehensive information about {query}. "
                    "Learn more about the latest developments and insights."
                ),
            },
            {
                "title": f"Understanding {query}",
                "url": f"{SEARCH_BASE_URL}/guide/{encoded}",
                "snippet": f"A detailed guide covering everything you need to know about {query}.",
            },
            {
                "title": f"{query} Best Practices",
                "url": f"{SEARCH_BASE_URL}/best-practices/{encoded}",
                "snippet": f"Industry-standard best practices and recommendations for {query}.",
            },
        ]
    }


def default_tools() -> Dict[str, ToolHandler]:
    """工具名 -> 处理函数。处理函数只接收解析后的 arguments 字典。"""

    return {
        "get_weather": lambda args: get_weather(str(args.get("city") or "")),
        "create_slides": lambda args: create_slides(str(args.get("topic") or ""), args.get("slide_count")),
        "generate_image": lambda args: generate_image(str(args.get("prompt") or ""), args.get("style")),
        "search_web": lambda args: search_web(str(args.get("query") or "")),
    }


def default_tool_defs() -> List[ToolDef]:
    return [
        ToolDef(
            name="get_weather",
            description=(
                "Retrieve current weather information for a city. "
                "Use this when the user asks about weather conditions."
            ),
            params={
                "city": ToolParam(
                    name="city",
                    description="Name of the city to get weather for",
                    required=True,
                    schema={"type": "string"},
                )
            },
        ),
        ToolDef(
            name="create_slides",
            description=(
                "Generate presentation slides on a given topic. "
                "Use this when the user wants to create a presentation or slides."
            ),
            params={
                "topic": ToolParam(
                    name="topic",
                    description="The topic or subject for the slides",
                    required=True,
                    schema={"type": "string"},
                ),
                "slide_count": ToolParam(
                    name="slide_count",
                    description="Number of slides to generate (max 10)",
                    required=True,
                    schema={"type": "number"},
                ),
            },
        ),
        ToolDef(
            name="generate_image",
            description=(
                "Generate or find an image based on a text description. "
                "Use this when the user wants to create or see an image."
            ),
            params={
                "prompt": ToolParam(
                    name="prompt",
                    description="Description of the image to generate",
                    required=True,
                    schema={"type": "string"},
                ),
                "style": ToolParam(
                    name="style",
                    description="Style of the image (realistic, artistic, cartoon, abstract)",
                    required=False,
                    schema={"type": "string"},
                ),
            },
        ),
        ToolDef(
            name="search_web",
            description=(
                "Search the web for information on a topic. "
                "Use this when the user needs current information or research."
            ),
            params={
                "query": ToolParam(
                    name="query",
                    description="Search query or topic to research",
                    required=True,
                    schema={"type": "string"},
                )
            },
        ),
    ]


def default_registry() -> ToolRegistry:
    registry = ToolRegistry()
    handlers = default_tools()
    for tool_def in default_tool_defs():
        registry.register(tool_def, handlers[tool_def.name])
    return registry
