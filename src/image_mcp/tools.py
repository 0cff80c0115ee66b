"""The summarize_image and compare_images tools."""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from mcp import types

from .errors import ImageMCPError, InvalidInputError
from .image_processor import ImageProcessor, NormalizedImage
from .providers.base import ChatMessage, ChatRequest, ImageBlock, TextBlock
from .providers.openai import OpenAICompatibleClient

logger = logging.getLogger(__name__)

SUMMARIZE_PROMPT = "Describe this image in detail, including all text."
COMPARE_PROMPT = (
    "Compare these images in detail, including all text, "
    "and describe the similarities and differences."
)
DEFAULT_MODEL = "gemma3:4b-it-qat-cpu"
NO_RESPONSE = "No response received"

_IMAGE_URL_DESCRIPTION = (
    "URL to the image file to analyze (supports absolute file paths, file:// URLs, "
    "http/https protocols, and data URL with base64 encoded image file)"
)

TOOL_DEFINITIONS = [
    types.Tool(
        name="summarize_image",
        description="Analyze and describe an image in detail",
        inputSchema={
            "type": "object",
            "properties": {
                "image_url": {
                    "type": "string",
                    "description": _IMAGE_URL_DESCRIPTION,
                },
                "custom_prompt": {
                    "type": "string",
                    "description": (
                        "Custom prompt to use instead of the default image description "
                        "prompt. Use this to request specific details about the image."
                    ),
                    "default": SUMMARIZE_PROMPT,
                },
            },
            "required": ["image_url"],
            "additionalProperties": False,
        },
    ),
    types.Tool(
        name="compare_images",
        description="Compares 2 or more images and describes the differences",
        inputSchema={
            "type": "object",
            "properties": {
                "image_urls": {
                    "type": "array",
                    "items": {"type": "string", "description": _IMAGE_URL_DESCRIPTION},
                    "minItems": 2,
                    "description": "Array of image URLs to compare (minimum 2 images required)",
                },
                "custom_prompt": {
                    "type": "string",
                    "description": (
                        "Custom prompt to use instead of the default image comparison prompt"
                    ),
                    "default": COMPARE_PROMPT,
                },
            },
            "required": ["image_urls"],
            "additionalProperties": False,
        },
    ),
]


@dataclass
class ToolResult:
    """What a tool call hands back to the transport."""

    text: str
    is_error: bool = False

    def to_dict(self) -> dict:
        result: dict[str, Any] = {"content": [{"type": "text", "text": self.text}]}
        if self.is_error:
            result["isError"] = True
        return result


class ImageTools:
    """Runs the image tools against one upstream client.

    Examples:
        tools = ImageTools(ImageProcessor(), client, model="gpt-4o")
        result = await tools.call_tool("summarize_image", {"image_url": "/tmp/a.png"})
        print(result.text)
    """

    def __init__(
        self,
        processor: ImageProcessor,
        client: OpenAICompatibleClient,
        model: Optional[str] = None,
        streaming: bool = False,
    ):
        """Initialize tools.

        Args:
            processor: Image reference normalizer
            client: Upstream chat-completion client
            model: Model name sent upstream (falls back to DEFAULT_MODEL)
            streaming: Request SSE streaming from the endpoint
        """
        self.processor = processor
        self.client = client
        self.model = model or DEFAULT_MODEL
        self.streaming = streaming

    async def call_tool(self, name: str, arguments: Optional[dict]) -> ToolResult:
        """Dispatch a tool call. Package errors become error results, never exceptions."""
        try:
            if not isinstance(arguments, dict):
                raise InvalidInputError("Invalid arguments: expected an object")

            if name == "summarize_image":
                text = await self.summarize_image(
                    arguments.get("image_url"), arguments.get("custom_prompt")
                )
            elif name == "compare_images":
                text = await self.compare_images(
                    arguments.get("image_urls"), arguments.get("custom_prompt")
                )
            else:
                raise InvalidInputError(f"Unknown tool: {name}")

        except ImageMCPError as e:
            logger.error(f"Tool {name} failed: {e}")
            return ToolResult(text=f"Error: {e}", is_error=True)

        return ToolResult(text=text)

    async def summarize_image(self, image_url: Any, custom_prompt: Optional[str] = None) -> str:
        """Describe a single image.

        Args:
            image_url: Any supported image reference
            custom_prompt: Replaces SUMMARIZE_PROMPT when given

        Returns:
            Text produced by the model
        """
        if not image_url:
            raise InvalidInputError("image_url must be provided")
        if not isinstance(image_url, str):
            raise InvalidInputError("image_url must be a string")
        _check_prompt(custom_prompt)

        image = await self.processor.process_image(image_url)
        return await self._complete(custom_prompt or SUMMARIZE_PROMPT, [image])

    async def compare_images(self, image_urls: Any, custom_prompt: Optional[str] = None) -> str:
        """Compare two or more images in one request.

        Args:
            image_urls: List of image references, at least two
            custom_prompt: Replaces COMPARE_PROMPT when given

        Returns:
            Text produced by the model
        """
        if not image_urls or not isinstance(image_urls, list):
            raise InvalidInputError("image_urls must be provided as an array")

        if len(image_urls) < 2:
            raise InvalidInputError("At least 2 images are required for comparison")

        for index, image_url in enumerate(image_urls):
            if not isinstance(image_url, str):
                raise InvalidInputError(f"image_urls[{index}] must be a string")
        _check_prompt(custom_prompt)

        images = await self.processor.process_images(image_urls)
        return await self._complete(custom_prompt or COMPARE_PROMPT, images)

    def build_request(self, prompt: str, images: list[NormalizedImage]) -> ChatRequest:
        """One user message: the prompt first, then the images in order."""
        content = [TextBlock(prompt)]
        content.extend(ImageBlock(image.data_url) for image in images)
        return ChatRequest(
            model=self.model,
            messages=[ChatMessage(role="user", content=content)],
            stream=self.streaming,
        )

    async def _complete(self, prompt: str, images: list[NormalizedImage]) -> str:
        request = self.build_request(prompt, images)
        logger.info(
            f"Sending {len(images)} image(s) to {self.model} "
            f"({'streaming' if request.stream else 'non-streaming'})"
        )

        if not request.stream:
            response = await self.client.chat_completion(request)
            return response.text or NO_RESPONSE

        parts: list[str] = []
        response = await self.client.chat_completion(
            request, lambda chunk: parts.append(chunk.delta_text)
        )
        return "".join(parts) or response.text or NO_RESPONSE


def _check_prompt(custom_prompt: Any) -> None:
    if custom_prompt is not None and not isinstance(custom_prompt, str):
        raise InvalidInputError("custom_prompt must be a string")
