"""Shared test fixtures and helpers.

Provides common fixtures used across multiple test modules to eliminate
duplication. Each test module can still define its own specialised
fixtures when needed.
"""

import shutil
from pathlib import Path

import numpy as np
import pytest
from PIL import Image

from codec_sweep.report import TrialResult

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def tool_available(name: str) -> bool:
    """Check whether a CLI tool is available on PATH."""
    return shutil.which(name) is not None


def create_test_image(
    path: Path,
    size: tuple[int, int] = (64, 64),
    mode: str = "RGB",
    color: tuple[int, ...] = (128, 128, 128),
) -> Path:
    """Create a small test image and return its path."""
    img = Image.new(mode, size, color=color)
    path.parent.mkdir(parents=True, exist_ok=True)
    img.save(path)
    return path


def create_textured_image(path: Path, size: tuple[int, int] = (96, 64), seed: int = 7) -> Path:
    """Create a gradient-plus-noise RGB image that compresses like a photo."""
    width, height = size
    rng = np.random.default_rng(seed)
    x = np.linspace(0, 255, width)
    y = np.linspace(0, 255, height)
    xx, yy = np.meshgrid(x, y)
    base = np.stack([xx, yy, (xx + yy) / 2], axis=-1)
    noise = rng.normal(0, 12, size=(height, width, 3))
    pixels = np.clip(base + noise, 0, 255).astype(np.uint8)
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.fromarray(pixels).save(path)
    return path


# ---------------------------------------------------------------------------
# Image fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def red_image(tmp_path: Path) -> Path:
    """A flat red 64x64 PNG."""
    return create_test_image(tmp_path / "images" / "red.png", color=(255, 0, 0))


@pytest.fixture
def textured_image(tmp_path: Path) -> Path:
    """A 96x64 PNG with gradients and noise."""
    return create_textured_image(tmp_path / "images" / "textured.png")


@pytest.fixture
def sample_rows() -> list[TrialResult]:
    """Three report rows, the last one lossless."""
    return [
        TrialResult(quality=10, psnr=28.123456789, size_bytes=1200),
        TrialResult(quality=50, psnr=35.5, size_bytes=3400),
        TrialResult(quality=100, psnr=float("inf"), size_bytes=9100),
    ]
