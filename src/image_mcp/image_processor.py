"""Image reference normalization for the chat-completion API.

Every tool argument that names an image goes through here. A reference can be
a local path, a ``file://`` URL, an HTTP(S) URL, a data URL or bare base64; all
of them come out as a ``data:<mime>;base64,<payload>`` URL.
"""

import asyncio
import base64
import enum
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence
from urllib.parse import urlparse

import httpx

from .errors import (
    DownloadFailedError,
    ImageMCPError,
    ImageNotFoundError,
    ImageTooLargeError,
    InvalidEncodingError,
    InvalidImageURLError,
    InvalidInputError,
    UnsupportedImageTypeError,
)

logger = logging.getLogger(__name__)

SUPPORTED_MIME_TYPES = frozenset({
    "image/jpeg",
    "image/png",
    "image/gif",
    "image/webp",
    "image/svg+xml",
    "image/bmp",
    "image/tiff",
})

MAX_IMAGE_BYTES = 10 * 1024 * 1024  # 10 MiB
MAX_INPUT_LENGTH = 200 * 1024  # literal reference string, not decoded bytes
DEFAULT_MIME_TYPE = "image/jpeg"
FILE_URL_PREFIX = "file://"

DOWNLOAD_TIMEOUT = 30.0
MAX_REDIRECTS = 5

IMAGE_MEDIA_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".bmp": "image/bmp",
    ".tif": "image/tiff",
    ".tiff": "image/tiff",
    ".svg": "image/svg+xml",
}

# Suffixes that make an otherwise ambiguous string look like a path.
PATH_SUFFIXES = {"jpg", "jpeg", "png", "gif", "webp", "bmp", "tiff"}

_HTTP_URL_RE = re.compile(r"^https?://.+", re.IGNORECASE)
_HTTP_URL_SHAPE_RE = re.compile(r"^https?://.+/.+$", re.IGNORECASE)
_BASE64_ALPHABET_RE = re.compile(r"^[A-Za-z0-9+/=]*$")
_BASE64_STRICT_RE = re.compile(
    r"^(?:[A-Za-z0-9+/]{4})*(?:[A-Za-z0-9+/]{3}=|[A-Za-z0-9+/]{2}==)?$"
)
_DATA_URL_HEADER_RE = re.compile(r"^data:([^;]+);base64,")
_WINDOWS_PATH_RE = re.compile(r"^(?:[A-Za-z]:\\|\\\\)")
_WHITESPACE_RE = re.compile(r"\s")


class ImageKind(enum.Enum):
    """Shape of an image reference, inferred from the string itself."""

    FILE_PATH = "file"
    FILE_URL = "file_url"
    HTTP_URL = "url"
    DATA_URL = "data_url"
    RAW_BASE64 = "base64"


_KIND_LABELS = {
    ImageKind.FILE_PATH: "file input",
    ImageKind.FILE_URL: "file input",
    ImageKind.HTTP_URL: "URL input",
    ImageKind.DATA_URL: "base64 input",
    ImageKind.RAW_BASE64: "base64 input",
}


@dataclass(frozen=True)
class NormalizedImage:
    """An image ready to be placed in a chat message."""

    data_url: str
    mime_type: str
    size: int
    kind: ImageKind


def _looks_like_path(value: str) -> bool:
    if value.startswith(("/", "./", "../", ".\\")):
        return True
    if _WINDOWS_PATH_RE.match(value):
        return True
    if "." in value:
        return value.rsplit(".", 1)[1].lower() in PATH_SUFFIXES
    return False


def classify_image_input(reference: str) -> ImageKind:
    """Decide which kind of reference a string is.

    Rules are tried in order and the first match wins. The order matters:
    a bare base64 string and a relative path without an extension look alike,
    and the base64 reading is preferred.

    Args:
        reference: Caller-supplied image reference

    Returns:
        The inferred ImageKind
    """
    if _HTTP_URL_RE.match(reference):
        return ImageKind.HTTP_URL
    if reference.startswith(FILE_URL_PREFIX):
        return ImageKind.FILE_URL
    if reference.startswith("data:image/") and "base64" in reference:
        return ImageKind.DATA_URL
    if _BASE64_ALPHABET_RE.match(reference):
        return ImageKind.RAW_BASE64
    if _looks_like_path(reference):
        return ImageKind.FILE_PATH
    # Anything unrecognized is assumed to be a base64 payload.
    return ImageKind.RAW_BASE64


def validate_image_input(value: object) -> list[str]:
    """Cheap screen run before any per-kind processing.

    Returns:
        List of problems; empty when the value may proceed
    """
    if not value or not isinstance(value, str):
        return ["Image input is required and must be a string"]

    errors = []
    if len(value) > MAX_INPUT_LENGTH:
        errors.append("Image input is too large (max 200KB)")
    return errors


def is_valid_base64(payload: str) -> bool:
    """Check base64 syntax without decoding."""
    return bool(_BASE64_STRICT_RE.match(_WHITESPACE_RE.sub("", payload)))


def mime_type_from_extension(suffix: str) -> Optional[str]:
    return IMAGE_MEDIA_TYPES.get(suffix.lower())


def format_data_url(mime_type: str, payload: str) -> str:
    return f"data:{mime_type};base64,{payload}"


def _check_mime_type(mime_type: str) -> None:
    if mime_type not in SUPPORTED_MIME_TYPES:
        raise UnsupportedImageTypeError(f"Unsupported image type: {mime_type}")


def _check_size(size: int, what: str = "Image size") -> None:
    if size > MAX_IMAGE_BYTES:
        raise ImageTooLargeError(
            f"{what} exceeds maximum limit of {MAX_IMAGE_BYTES} bytes"
        )


class ImageProcessor:
    """Turns image references into data URLs.

    Nothing is cached between calls; each call produces its own NormalizedImage.
    """

    def __init__(
        self,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        download_timeout: float = DOWNLOAD_TIMEOUT,
        max_redirects: int = MAX_REDIRECTS,
    ):
        """Initialize image processor.

        Args:
            transport: Optional httpx transport (tests use MockTransport)
            download_timeout: Per-download timeout in seconds
            max_redirects: Redirect hops followed before giving up
        """
        self._transport = transport
        self.download_timeout = download_timeout
        self.max_redirects = max_redirects

    async def process_image(self, reference: str) -> NormalizedImage:
        """Normalize one image reference.

        Args:
            reference: File path, file:// URL, HTTP(S) URL, data URL or base64

        Returns:
            NormalizedImage carrying a data URL

        Raises:
            ImageMCPError: A subclass naming what went wrong
        """
        candidate = reference
        if isinstance(reference, str) and reference.startswith(FILE_URL_PREFIX):
            candidate = reference[len(FILE_URL_PREFIX):]

        errors = validate_image_input(candidate)
        if errors:
            raise InvalidInputError(f"Invalid image input: {', '.join(errors)}")

        kind = classify_image_input(reference)
        logger.debug(f"Classified image reference as {kind.name}")

        try:
            if kind in (ImageKind.FILE_PATH, ImageKind.FILE_URL):
                image = await self._process_file(candidate, kind)
            elif kind is ImageKind.HTTP_URL:
                image = await self._process_url(candidate)
            else:
                image = self._process_base64(candidate, kind)
            self._validate(image)
        except ImageMCPError as e:
            raise type(e)(f"Failed to process {_KIND_LABELS[kind]}: {e}") from e

        logger.info(f"Processed {kind.value} image: {image.mime_type}, {image.size:,} bytes")
        return image

    async def process_images(self, references: Sequence[str]) -> list[NormalizedImage]:
        """Normalize several references concurrently.

        Results come back in the order of ``references`` no matter which
        finishes first. The first failure is raised.
        """
        results = await asyncio.gather(
            *(self.process_image(reference) for reference in references)
        )
        return list(results)

    async def _process_file(self, file_path: str, kind: ImageKind) -> NormalizedImage:
        path = Path(file_path).expanduser().resolve()

        if not path.exists():
            raise ImageNotFoundError(f"File not found: {file_path}")

        if not path.is_file():
            raise ImageNotFoundError(f"Not a file: {file_path}")

        try:
            _check_size(path.stat().st_size, "File size")
        except OSError as e:
            raise ImageNotFoundError(f"Failed to read file: {file_path} ({e})") from e

        mime_type = mime_type_from_extension(path.suffix) or "application/octet-stream"
        _check_mime_type(mime_type)

        try:
            file_bytes = await asyncio.to_thread(path.read_bytes)
        except OSError as e:
            raise ImageNotFoundError(f"Failed to read file: {file_path} ({e})") from e
        _check_size(len(file_bytes), "File size")

        payload = base64.standard_b64encode(file_bytes).decode("utf-8")
        return NormalizedImage(
            data_url=format_data_url(mime_type, payload),
            mime_type=mime_type,
            size=len(file_bytes),
            kind=kind,
        )

    async def _process_url(self, url: str) -> NormalizedImage:
        if not _HTTP_URL_SHAPE_RE.match(url):
            raise InvalidImageURLError(f"Invalid image URL format: {url}")

        response = await self._download(url)

        if response.status_code != 200:
            raise DownloadFailedError(
                f"Failed to download image. HTTP status: {response.status_code}"
            )

        image_bytes = response.content
        _check_size(len(image_bytes))

        mime_type = self._mime_type_for_download(url, response)
        _check_mime_type(mime_type)

        payload = base64.standard_b64encode(image_bytes).decode("utf-8")
        return NormalizedImage(
            data_url=format_data_url(mime_type, payload),
            mime_type=mime_type,
            size=len(image_bytes),
            kind=ImageKind.HTTP_URL,
        )

    async def _download(self, url: str) -> httpx.Response:
        try:
            async with httpx.AsyncClient(
                timeout=self.download_timeout,
                follow_redirects=True,
                max_redirects=self.max_redirects,
                transport=self._transport,
            ) as client:
                return await client.get(url)
        except httpx.HTTPError as e:
            raise DownloadFailedError(f"Failed to download image: {e}") from e

    @staticmethod
    def _mime_type_for_download(url: str, response: httpx.Response) -> str:
        # The header is trusted over the bytes; no content sniffing.
        content_type = response.headers.get("content-type", "")
        mime_type = content_type.split(";", 1)[0].strip().lower()
        if mime_type:
            return mime_type

        suffix = Path(urlparse(url).path).suffix
        return mime_type_from_extension(suffix) or DEFAULT_MIME_TYPE

    def _process_base64(self, value: str, kind: ImageKind) -> NormalizedImage:
        mime_type = DEFAULT_MIME_TYPE
        payload = value

        if kind is ImageKind.DATA_URL:
            match = _DATA_URL_HEADER_RE.match(value)
            if match:
                mime_type = match.group(1) or DEFAULT_MIME_TYPE
                payload = value[match.end():]

        _check_mime_type(mime_type)

        estimated_size = len(payload) * 3 // 4
        _check_size(estimated_size, "Base64 image")

        if not is_valid_base64(payload):
            raise InvalidEncodingError("Invalid base64 format")

        return NormalizedImage(
            data_url=format_data_url(mime_type, payload),
            mime_type=mime_type,
            size=estimated_size,
            kind=kind,
        )

    @staticmethod
    def _validate(image: NormalizedImage) -> None:
        _check_mime_type(image.mime_type)
        _check_size(image.size)

        payload = image.data_url.split(",", 1)[1]
        if not is_valid_base64(payload):
            raise InvalidEncodingError("Invalid base64 format")
