"""Image loading and saving.

All codecs and the sweep read images through :func:`load_rgb`, so the
reference and every encoder input see the same flattened RGB pixels.

Flattening is a hard threshold, not alpha compositing: pixels whose alpha
is below :data:`ALPHA_THRESHOLD` become solid white, all others keep their
RGB values, and the alpha channel is dropped.
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path

import numpy as np
from PIL import Image, UnidentifiedImageError

ALPHA_THRESHOLD = 150
BACKGROUND = (255, 255, 255)


class LoadError(Enum):
    """Reason an image could not be loaded."""

    NOT_FOUND = "not_found"
    UNSUPPORTED_FORMAT = "unsupported_format"
    CORRUPT_DATA = "corrupt_data"


@dataclass(frozen=True)
class RGBImage:
    """Read-only 8-bit RGB pixel buffer of shape ``(height, width, 3)``."""

    pixels: np.ndarray
    width: int
    height: int
    path: Path | None = None


@dataclass
class LoadResult:
    """Result of loading an image from disk."""

    image: RGBImage | None
    error: LoadError | None = None
    error_message: str | None = None

    @property
    def success(self) -> bool:
        return self.image is not None


def flatten_alpha(rgba: np.ndarray, threshold: int = ALPHA_THRESHOLD) -> np.ndarray:
    """Replace pixels with alpha below *threshold* by white and drop alpha.

    Args:
        rgba: Array of shape ``(H, W, 4)`` with dtype ``uint8``
        threshold: Alpha value at or above which a pixel keeps its colour

    Returns:
        New ``(H, W, 3)`` uint8 array
    """
    rgb = rgba[..., :3].copy()
    rgb[rgba[..., 3] < threshold] = BACKGROUND
    return rgb


def load_rgb(path: Path) -> LoadResult:
    """Load an image as flattened 8-bit RGB.

    Images without an alpha channel pass through unchanged (their alpha is
    fully opaque after conversion to RGBA).

    Args:
        path: Path to any raster format Pillow can read

    Returns:
        LoadResult holding the image, or the kind of failure
    """
    path = Path(path)
    if not path.is_file():
        return LoadResult(
            image=None,
            error=LoadError.NOT_FOUND,
            error_message=f"Image not found: {path}",
        )

    try:
        with Image.open(path) as img:
            rgba = np.asarray(img.convert("RGBA"), dtype=np.uint8)
    except FileNotFoundError:
        return LoadResult(
            image=None,
            error=LoadError.NOT_FOUND,
            error_message=f"Image not found: {path}",
        )
    except UnidentifiedImageError:
        return LoadResult(
            image=None,
            error=LoadError.UNSUPPORTED_FORMAT,
            error_message=f"Unsupported image format: {path}",
        )
    except Image.DecompressionBombError as e:
        return LoadResult(
            image=None,
            error=LoadError.UNSUPPORTED_FORMAT,
            error_message=f"Image too large: {path}: {e}",
        )
    except (OSError, SyntaxError, ValueError) as e:
        return LoadResult(
            image=None,
            error=LoadError.CORRUPT_DATA,
            error_message=f"Corrupt image data in {path}: {e}",
        )

    pixels = flatten_alpha(rgba)
    pixels.setflags(write=False)
    height, width = pixels.shape[:2]
    return LoadResult(image=RGBImage(pixels=pixels, width=width, height=height, path=path))


def save_rgb(pixels: np.ndarray, path: Path) -> Path:
    """Save an RGB pixel array to *path*; the format follows the extension.

    Raises:
        OSError: If the file cannot be written
        ValueError: If the array is not ``(H, W, 3)`` uint8 or the
            extension is unknown
    """
    pixels = np.asarray(pixels)
    if pixels.ndim != 3 or pixels.shape[2] != 3 or pixels.dtype != np.uint8:
        msg = f"Expected (H, W, 3) uint8 pixels, got {pixels.shape} {pixels.dtype}"
        raise ValueError(msg)
    Image.fromarray(np.ascontiguousarray(pixels).copy()).save(path)
    return path
