import io

import pytest
from PIL import Image

from quicklist.core.config import Settings
from quicklist.schemas.photo import Photo


def make_settings(**overrides) -> Settings:
    values = {
        "GEMINI_API_KEY": "test-gemini-key",
        "SERPAPI_API_KEY": "test-serpapi-key",
        "RETRY_MAX_ATTEMPTS": 3,
        "RETRY_BASE_DELAY_SECONDS": 0.0,
        "RETRY_MAX_BACKOFF_SECONDS": 0.0,
        "MODEL_TIMEOUT_SECONDS": 5.0,
        "SEARCH_TIMEOUT_SECONDS": 5.0,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def png_bytes(pixels) -> bytes:
    """Grayscale PNG from a 2D list/array of 0-255 values."""
    height, width = len(pixels), len(pixels[0])
    img = Image.new("L", (width, height))
    img.putdata([int(v) for row in pixels for v in row])
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def uniform_png(size: int = 64, value: int = 128) -> bytes:
    return png_bytes([[value] * size for _ in range(size)])


def checkerboard_png(size: int = 64, square: int = 8) -> bytes:
    return png_bytes([[255 if ((x // square) + (y // square)) % 2 else 0 for x in range(size)] for y in range(size)])


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def photo() -> Photo:
    return Photo(data=checkerboard_png(), mime_type="image/png", name="front.png")


@pytest.fixture(autouse=True)
def no_backoff(monkeypatch):
    # keep retry tests instant
    from quicklist.core import retry

    monkeypatch.setattr(retry, "backoff_delay", lambda attempt, base, max_delay: 0.0)
