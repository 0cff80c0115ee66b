"""Exception types raised by the image normalizer and the upstream client."""

from typing import Optional


class ImageMCPError(Exception):
    """Base class for every error this package raises on purpose."""


class ConfigError(ImageMCPError, ValueError):
    """Configuration could not be resolved into a valid ServerConfig."""


class InvalidInputError(ImageMCPError, ValueError):
    """Tool arguments are missing or have the wrong shape."""


class ImageNotFoundError(ImageMCPError, FileNotFoundError):
    """A local image path does not exist."""


class UnsupportedImageTypeError(ImageMCPError, ValueError):
    """The detected MIME type is outside the supported set."""


class ImageTooLargeError(ImageMCPError, ValueError):
    """Image bytes exceed the size ceiling."""


class InvalidEncodingError(ImageMCPError, ValueError):
    """Payload is not valid base64 or the data URL is malformed."""


class InvalidImageURLError(ImageMCPError, ValueError):
    """An HTTP(S) reference does not have a scheme://host/path shape."""


class DownloadFailedError(ImageMCPError):
    """Remote image could not be fetched."""


class InvalidRequestError(ImageMCPError, ValueError):
    """Chat request failed validation and was never sent."""


class UpstreamError(ImageMCPError):
    """The chat-completion endpoint failed after all attempts."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        attempts: int = 1,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.attempts = attempts
