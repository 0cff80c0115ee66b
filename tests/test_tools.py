"""Tests for the summarize_image / compare_images tool handlers."""

import asyncio
import json
from unittest.mock import AsyncMock

import httpx
import pytest

from image_mcp.image_processor import ImageProcessor
from image_mcp.providers.openai import OpenAICompatibleClient
from image_mcp.tools import (
    COMPARE_PROMPT,
    DEFAULT_MODEL,
    SUMMARIZE_PROMPT,
    TOOL_DEFINITIONS,
    ImageTools,
    ToolResult,
)

from .conftest import PIXEL_PNG_B64


class Upstream:
    """Mock chat-completion endpoint that records request bodies."""

    def __init__(self, reply: str = "A tiny image.", stream_body: str = None, status: int = 200):
        self.reply = reply
        self.stream_body = stream_body
        self.status = status
        self.bodies: list[dict] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.bodies.append(body)
        if self.status != 200:
            return httpx.Response(self.status, json={"error": {"message": "model exploded"}})
        if body["stream"]:
            return httpx.Response(200, content=self.stream_body.encode())
        return httpx.Response(
            200,
            json={
                "id": "chatcmpl-1",
                "object": "chat.completion",
                "created": 1,
                "model": body["model"],
                "choices": [
                    {"index": 0, "message": {"role": "assistant", "content": self.reply},
                     "finish_reason": "stop"}
                ],
            },
        )

    @property
    def content(self) -> list[dict]:
        return self.bodies[-1]["messages"][0]["content"]


async def no_sleep(delay: float) -> None:
    return None


@pytest.fixture
def upstream():
    return Upstream()


@pytest.fixture
async def client(upstream):
    client = OpenAICompatibleClient(
        base_url="http://upstream.test/v1",
        api_key="key",
        max_retries=1,
        transport=httpx.MockTransport(upstream),
        sleep=no_sleep,
    )
    yield client
    await client.aclose()


@pytest.fixture
def tools(client):
    return ImageTools(ImageProcessor(), client, model="vision-model")


def test_tool_definitions():
    by_name = {tool.name: tool for tool in TOOL_DEFINITIONS}

    assert set(by_name) == {"summarize_image", "compare_images"}
    assert by_name["summarize_image"].inputSchema["required"] == ["image_url"]
    assert by_name["compare_images"].inputSchema["properties"]["image_urls"]["minItems"] == 2


def test_tool_result_dict():
    assert ToolResult("hi").to_dict() == {"content": [{"type": "text", "text": "hi"}]}
    assert ToolResult("Error: x", is_error=True).to_dict() == {
        "content": [{"type": "text", "text": "Error: x"}],
        "isError": True,
    }


class TestSummarizeImage:

    async def test_default_prompt(self, tools, upstream, png_file):
        result = await tools.call_tool("summarize_image", {"image_url": str(png_file)})

        assert result == ToolResult("A tiny image.")
        body = upstream.bodies[0]
        assert body["model"] == "vision-model"
        assert body["stream"] is False
        assert body["messages"][0]["role"] == "user"
        assert upstream.content[0] == {"type": "text", "text": SUMMARIZE_PROMPT}
        assert upstream.content[1]["image_url"]["url"].startswith("data:image/png;base64,")

    async def test_custom_prompt_and_raw_base64(self, tools, upstream):
        await tools.call_tool(
            "summarize_image", {"image_url": PIXEL_PNG_B64, "custom_prompt": "Read the text"}
        )

        assert upstream.content == [
            {"type": "text", "text": "Read the text"},
            {"type": "image_url", "image_url": {"url": f"data:image/jpeg;base64,{PIXEL_PNG_B64}"}},
        ]

    async def test_missing_image_url(self, tools, upstream):
        result = await tools.call_tool("summarize_image", {})

        assert result.is_error
        assert result.text == "Error: image_url must be provided"
        assert upstream.bodies == []

    async def test_non_string_image_url(self, tools):
        result = await tools.call_tool("summarize_image", {"image_url": 42})

        assert result.text == "Error: image_url must be a string"

    async def test_non_string_custom_prompt(self, tools, upstream, png_file):
        result = await tools.call_tool(
            "summarize_image", {"image_url": str(png_file), "custom_prompt": 123}
        )

        assert result == ToolResult("Error: custom_prompt must be a string", is_error=True)
        assert upstream.bodies == []

    async def test_missing_file_becomes_error_result(self, tools, upstream):
        result = await tools.call_tool("summarize_image", {"image_url": "/nope/missing.png"})

        assert result.is_error
        assert result.text.startswith("Error: Failed to process file input: File not found")
        assert upstream.bodies == []

    async def test_upstream_failure_becomes_error_result(self, client, upstream, png_file):
        upstream.status = 500
        tools = ImageTools(ImageProcessor(), client)

        result = await tools.call_tool("summarize_image", {"image_url": str(png_file)})

        assert result.is_error
        assert result.text == "Error: Chat completion failed: model exploded"
        assert len(upstream.bodies) == 2

    async def test_default_model(self, client, upstream, png_file):
        tools = ImageTools(ImageProcessor(), client, model=None)

        await tools.summarize_image(str(png_file))

        assert upstream.bodies[0]["model"] == DEFAULT_MODEL


class TestCompareImages:

    @pytest.mark.parametrize(
        "arguments, message",
        [
            ({"image_urls": ["only-one.png"]}, "At least 2 images are required for comparison"),
            ({"image_urls": []}, "image_urls must be provided as an array"),
            ({"image_urls": "a.png"}, "image_urls must be provided as an array"),
            ({"image_urls": ["a.png", 7]}, "image_urls[1] must be a string"),
            ({"image_urls": ["a.png", "b.png"], "custom_prompt": ["x"]}, "custom_prompt must be a string"),
        ],
    )
    async def test_rejects_bad_arguments_before_any_io(self, arguments, message):
        processor = AsyncMock(spec=ImageProcessor)
        client = AsyncMock(spec=OpenAICompatibleClient)
        tools = ImageTools(processor, client)

        result = await tools.call_tool("compare_images", arguments)

        assert result == ToolResult(f"Error: {message}", is_error=True)
        processor.process_images.assert_not_called()
        processor.process_image.assert_not_called()
        client.chat_completion.assert_not_called()

    async def test_images_keep_caller_order(self, client, upstream, png_bytes):
        # imgA finishes last, imgC first.
        delays = {"/x/imgA.png": 0.05, "/x/imgB.png": 0.02, "/x/imgC.png": 0.0}
        types = {"/x/imgA.png": "image/png", "/x/imgB.png": "image/gif", "/x/imgC.png": "image/webp"}

        async def images(request):
            await asyncio.sleep(delays[request.url.path])
            return httpx.Response(
                200, content=png_bytes, headers={"Content-Type": types[request.url.path]}
            )

        tools = ImageTools(ImageProcessor(transport=httpx.MockTransport(images)), client)
        urls = [f"https://img.test{path}" for path in delays]

        result = await tools.call_tool("compare_images", {"image_urls": urls})

        assert not result.is_error
        content = upstream.content
        assert content[0] == {"type": "text", "text": COMPARE_PROMPT}
        assert [block["image_url"]["url"].split(";")[0] for block in content[1:]] == [
            "data:image/png",
            "data:image/gif",
            "data:image/webp",
        ]

    async def test_one_bad_image_fails_the_call(self, tools, upstream, png_file):
        result = await tools.call_tool(
            "compare_images", {"image_urls": [str(png_file), "data:image/png;base64,abc"]}
        )

        assert result.is_error
        assert "Invalid base64 format" in result.text
        assert upstream.bodies == []


class TestStreaming:

    @staticmethod
    def sse(*parts) -> str:
        lines = []
        for content, finish_reason in parts:
            payload = {"choices": [{"index": 0, "delta": {"content": content},
                                    "finish_reason": finish_reason}]}
            lines.append(f"data: {json.dumps(payload)}\n\n")
        return "".join(lines) + "data: [DONE]\n\n"

    async def test_accumulates_streamed_text(self, client, upstream, png_file):
        upstream.stream_body = self.sse(("A", None), ("B", None), ("", "stop"))
        tools = ImageTools(ImageProcessor(), client, streaming=True)

        result = await tools.call_tool("summarize_image", {"image_url": str(png_file)})

        assert upstream.bodies[0]["stream"] is True
        assert result == ToolResult("AB")

    async def test_empty_stream(self, client, upstream, png_file):
        upstream.stream_body = "data: [DONE]\n\n"
        tools = ImageTools(ImageProcessor(), client, streaming=True)

        result = await tools.call_tool("summarize_image", {"image_url": str(png_file)})

        assert result == ToolResult("No response received")

    async def test_null_choice_chunk_still_returns_result(self, client, upstream, png_file):
        upstream.stream_body = 'data: {"choices": [null]}\n\n' + self.sse(("ok", "stop"))
        tools = ImageTools(ImageProcessor(), client, streaming=True)

        result = await tools.call_tool("summarize_image", {"image_url": str(png_file)})

        assert result == ToolResult("ok")


async def test_unknown_tool(tools):
    result = await tools.call_tool("crop_image", {})

    assert result == ToolResult("Error: Unknown tool: crop_image", is_error=True)


async def test_arguments_must_be_object(tools):
    result = await tools.call_tool("summarize_image", None)

    assert result.text == "Error: Invalid arguments: expected an object"
