"""Chat-completion client and types."""

from .base import ChatMessage, ChatRequest, ChatResponse, Choice, ImageBlock, TextBlock
from .openai import OpenAICompatibleClient

__all__ = [
    "ChatMessage",
    "ChatRequest",
    "ChatResponse",
    "Choice",
    "ImageBlock",
    "OpenAICompatibleClient",
    "TextBlock",
]
