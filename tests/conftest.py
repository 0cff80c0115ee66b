"""Shared fixtures: sample images and a recorder for backoff sleeps."""

import io

import pytest
from PIL import Image

PIXEL_PNG_B64 = (
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)


def make_image_bytes(fmt: str = "PNG", color: str = "red", size=(4, 4)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture
def png_bytes() -> bytes:
    return make_image_bytes("PNG")


@pytest.fixture
def png_file(tmp_path, png_bytes):
    path = tmp_path / "sample.png"
    path.write_bytes(png_bytes)
    return path


@pytest.fixture
def jpeg_file(tmp_path):
    path = tmp_path / "photo.jpg"
    path.write_bytes(make_image_bytes("JPEG", color="blue"))
    return path


@pytest.fixture
def sleeps():
    """A sleep stand-in that records delays instead of waiting."""
    recorded: list[float] = []

    async def fake_sleep(delay: float) -> None:
        recorded.append(delay)

    fake_sleep.calls = recorded
    return fake_sleep
