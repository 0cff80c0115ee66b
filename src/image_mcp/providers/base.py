"""Chat-completion request and response types."""

from dataclasses import dataclass, field
from typing import Any, Optional, Union

VALID_ROLES = ("system", "user", "assistant")


@dataclass(frozen=True)
class TextBlock:
    """A text span inside a message."""

    text: str

    def to_dict(self) -> dict:
        return {"type": "text", "text": self.text}


@dataclass(frozen=True)
class ImageBlock:
    """An image reference inside a message, already in data-URL form."""

    url: str

    def to_dict(self) -> dict:
        return {"type": "image_url", "image_url": {"url": self.url}}


ContentBlock = Union[TextBlock, ImageBlock]


@dataclass
class ChatMessage:
    """One conversation turn. Block order is the order the model reads."""

    role: str
    content: list[ContentBlock] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "role": self.role,
            "content": [block.to_dict() for block in self.content],
        }


@dataclass
class ChatRequest:
    """Body of a POST to /chat/completions."""

    model: str
    messages: list[ChatMessage]
    stream: bool = False
    max_tokens: Optional[int] = None

    def to_dict(self) -> dict:
        body: dict[str, Any] = {
            "model": self.model,
            "messages": [message.to_dict() for message in self.messages],
            "stream": self.stream,
        }
        if self.max_tokens is not None:
            body["max_tokens"] = self.max_tokens
        return body


@dataclass
class Choice:
    """A completion choice; ``message`` for full responses, ``delta`` for chunks."""

    index: int = 0
    message: Optional[dict] = None
    delta: Optional[dict] = None
    finish_reason: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "Choice":
        if not isinstance(data, dict):
            raise TypeError(f"choice must be an object, got {type(data).__name__}")
        return cls(
            index=data.get("index", 0),
            message=data.get("message"),
            delta=data.get("delta"),
            finish_reason=data.get("finish_reason"),
        )


@dataclass
class ChatResponse:
    """A full completion or one streamed chunk.

    ``raw`` holds the payload exactly as the endpoint sent it.
    """

    id: str = ""
    object: str = "chat.completion"
    created: int = 0
    model: str = ""
    choices: list[Choice] = field(default_factory=list)
    usage: Optional[dict] = None
    raw: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> "ChatResponse":
        choices = data.get("choices") or []
        if not isinstance(choices, list):
            raise TypeError(f"choices must be an array, got {type(choices).__name__}")
        return cls(
            id=data.get("id") or "",
            object=data.get("object") or "chat.completion",
            created=data.get("created") or 0,
            model=data.get("model") or "",
            choices=[Choice.from_dict(c) for c in choices],
            usage=data.get("usage"),
            raw=data,
        )

    @property
    def finish_reason(self) -> Optional[str]:
        return self.choices[0].finish_reason if self.choices else None

    @property
    def text(self) -> str:
        """Content of the first choice's message, or empty string."""
        return _content(self.choices[0].message) if self.choices else ""

    @property
    def delta_text(self) -> str:
        """Content of the first choice's delta, or empty string."""
        return _content(self.choices[0].delta) if self.choices else ""


def _content(part: Any) -> str:
    if not isinstance(part, dict):
        return ""
    content = part.get("content")
    return content if isinstance(content, str) else ""
