"""MCP server that summarizes and compares images via an OpenAI-compatible endpoint."""

__version__ = "1.0.0"

from .image_processor import ImageProcessor, NormalizedImage
from .providers.openai import OpenAICompatibleClient
from .tools import ImageTools

__all__ = ["ImageProcessor", "ImageTools", "NormalizedImage", "OpenAICompatibleClient"]
