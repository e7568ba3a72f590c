"""Codec adapters.

Every codec exposes the same two file-to-file operations, ``encode`` and
``decode``, and reports failure through a result object instead of
raising. The sweep only ever talks to the :class:`Codec` interface.

Two codecs are provided:

- ``JpegCodec``: baseline JPEG through Pillow's libjpeg binding, 4:4:4
  chroma sampling.
- ``HeicCodec``: HEVC in a HEIF container through the libheif command-line
  tools (``heif-enc`` / ``heif-dec``).

Both read their input through :func:`codec_sweep.image_io.load_rgb`, so
transparent pixels are flattened to white exactly as in the reference.
"""

import re
import subprocess
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

import numpy as np
import PIL
from PIL import Image, UnidentifiedImageError, features

from codec_sweep.image_io import load_rgb, save_rgb


@dataclass
class EncodeResult:
    """Result of an encoding operation."""

    success: bool
    output_path: Path | None
    file_size: int | None
    error_message: str | None = None


@dataclass
class DecodeResult:
    """Result of a decoding operation.

    ``width`` and ``height`` describe the decoded raster so callers can
    check geometry without opening the file again.
    """

    success: bool
    output_path: Path | None
    width: int | None = None
    height: int | None = None
    error_message: str | None = None


def _check_quality(quality: int) -> str | None:
    if not 0 <= quality <= 100:
        return f"Quality must be in [0, 100], got {quality}"
    return None


class Codec(ABC):
    """A lossy image codec driven through files."""

    name: str = ""
    extension: str = ""

    @abstractmethod
    def encode(self, source_path: Path, dest_path: Path, quality: int) -> EncodeResult:
        """Compress the image at *source_path* into *dest_path*.

        Args:
            source_path: Input raster in any format Pillow reads
            dest_path: Where the compressed file is written
            quality: Quality setting (0-100)

        Returns:
            EncodeResult with encoding details
        """

    @abstractmethod
    def decode(self, source_path: Path, dest_path: Path) -> DecodeResult:
        """Decompress *source_path* into a PNG raster at *dest_path*.

        Args:
            source_path: Compressed file produced by :meth:`encode`
            dest_path: Where the reconstructed raster is written

        Returns:
            DecodeResult with the decoded dimensions
        """

    def version(self) -> str | None:
        """Version string of the underlying library or tool, if known."""
        return None

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class JpegCodec(Codec):
    """JPEG codec backed by Pillow."""

    name = "jpeg"
    extension = "jpg"

    def __init__(self, subsampling: int = 0) -> None:
        """Initialize the JPEG codec.

        Args:
            subsampling: Pillow chroma subsampling (0 = 4:4:4, 1 = 4:2:2, 2 = 4:2:0)
        """
        self.subsampling = subsampling

    def encode(self, source_path: Path, dest_path: Path, quality: int) -> EncodeResult:
        problem = _check_quality(quality)
        if problem is not None:
            return EncodeResult(success=False, output_path=None, file_size=None, error_message=problem)

        loaded = load_rgb(source_path)
        if loaded.image is None:
            return EncodeResult(
                success=False, output_path=None, file_size=None, error_message=loaded.error_message
            )

        try:
            img = Image.fromarray(np.array(loaded.image.pixels))
            img.save(dest_path, format="JPEG", quality=quality, subsampling=self.subsampling)
            return EncodeResult(
                success=True, output_path=dest_path, file_size=dest_path.stat().st_size
            )
        except (OSError, ValueError) as e:
            return EncodeResult(
                success=False,
                output_path=None,
                file_size=None,
                error_message=f"JPEG compression failed: {e}",
            )

    def decode(self, source_path: Path, dest_path: Path) -> DecodeResult:
        try:
            with Image.open(source_path) as img:
                if img.format != "JPEG":
                    return DecodeResult(
                        success=False,
                        output_path=None,
                        error_message=f"Not a JPEG bitstream: {source_path} ({img.format})",
                    )
                rgb = img.convert("RGB")
            rgb.save(dest_path, format="PNG")
            return DecodeResult(
                success=True, output_path=dest_path, width=rgb.width, height=rgb.height
            )
        except FileNotFoundError:
            return DecodeResult(
                success=False, output_path=None, error_message=f"Input not found: {source_path}"
            )
        except UnidentifiedImageError:
            return DecodeResult(
                success=False,
                output_path=None,
                error_message=f"Unrecognised bitstream: {source_path}",
            )
        except Image.DecompressionBombError as e:
            return DecodeResult(
                success=False, output_path=None, error_message=f"Decoded image too large: {e}"
            )
        except (OSError, SyntaxError, ValueError) as e:
            return DecodeResult(
                success=False, output_path=None, error_message=f"JPEG decompression failed: {e}"
            )

    def version(self) -> str | None:
        libjpeg = features.version("jpg")
        if libjpeg:
            return f"Pillow {PIL.__version__}, libjpeg {libjpeg}"
        return f"Pillow {PIL.__version__}"

    def __repr__(self) -> str:
        return f"JpegCodec(subsampling={self.subsampling})"


class HeicCodec(Codec):
    """HEIC codec using the libheif command-line tools."""

    name = "heic"
    extension = "heic"

    def __init__(
        self,
        encoder: str = "heif-enc",
        decoder: str = "heif-dec",
        timeout: float | None = None,
    ) -> None:
        """Initialize the HEIC codec.

        Args:
            encoder: Name or path of the libheif encoder tool
            decoder: Name or path of the libheif decoder tool
            timeout: Seconds allowed per tool invocation, or None for no limit
        """
        self.encoder = encoder
        self.decoder = decoder
        self.timeout = timeout

    def _run(self, cmd: list[str]) -> str | None:
        """Run a libheif tool, returning an error message on failure."""
        try:
            subprocess.run(cmd, check=True, capture_output=True, timeout=self.timeout)
        except subprocess.CalledProcessError as e:
            return e.stderr.decode(errors="replace").strip() if e.stderr else str(e)
        except subprocess.TimeoutExpired:
            return f"{cmd[0]} timed out after {self.timeout}s"
        except FileNotFoundError:
            return f"{cmd[0]} not found on PATH"
        except OSError as e:
            return f"Could not run {cmd[0]}: {e}"
        return None

    def encode(self, source_path: Path, dest_path: Path, quality: int) -> EncodeResult:
        problem = _check_quality(quality)
        if problem is not None:
            return EncodeResult(success=False, output_path=None, file_size=None, error_message=problem)

        loaded = load_rgb(source_path)
        if loaded.image is None:
            return EncodeResult(
                success=False, output_path=None, file_size=None, error_message=loaded.error_message
            )

        # heif-enc only reads PNG/JPEG/Y4M, so hand it the flattened pixels as PNG
        with tempfile.TemporaryDirectory() as tmpdir:
            png_path = Path(tmpdir) / "source.png"
            try:
                save_rgb(loaded.image.pixels, png_path)
            except (OSError, ValueError) as e:
                return EncodeResult(
                    success=False,
                    output_path=None,
                    file_size=None,
                    error_message=f"Could not stage encoder input: {e}",
                )
            error = self._run(
                [self.encoder, "-q", str(quality), "-o", str(dest_path), str(png_path)]
            )

        if error is not None or not dest_path.is_file():
            return EncodeResult(
                success=False,
                output_path=None,
                file_size=None,
                error_message=error or f"{self.encoder} produced no output",
            )
        return EncodeResult(success=True, output_path=dest_path, file_size=dest_path.stat().st_size)

    def decode(self, source_path: Path, dest_path: Path) -> DecodeResult:
        if not Path(source_path).is_file():
            return DecodeResult(
                success=False, output_path=None, error_message=f"Input not found: {source_path}"
            )

        error = self._run([self.decoder, str(source_path), str(dest_path)])
        if error is not None:
            return DecodeResult(success=False, output_path=None, error_message=error)

        try:
            with Image.open(dest_path) as img:
                width, height = img.size
        except (OSError, SyntaxError, Image.DecompressionBombError) as e:
            return DecodeResult(
                success=False,
                output_path=None,
                error_message=f"{self.decoder} output unreadable: {e}",
            )
        return DecodeResult(success=True, output_path=dest_path, width=width, height=height)

    def version(self) -> str | None:
        try:
            result = subprocess.run(
                [self.encoder, "--version"],
                capture_output=True,
                text=True,
                timeout=5,
            )
        except (subprocess.TimeoutExpired, OSError):
            return None
        output = result.stdout + result.stderr
        match = re.search(r"(\d+\.\d+\.\d+)", output)
        if match:
            return f"libheif {match.group(1)}"
        return "unknown"

    def __repr__(self) -> str:
        return f"HeicCodec(encoder={self.encoder!r}, decoder={self.decoder!r}, timeout={self.timeout})"


_CODEC_ALIASES = {
    "jpeg": "jpeg",
    "jpg": "jpeg",
    "heic": "heic",
    "heif": "heic",
    "hevc": "heic",
}


def get_codec(name: str, timeout: float | None = None) -> Codec:
    """Create a codec from its name.

    Args:
        name: Codec name (``jpeg``/``jpg`` or ``heic``/``heif``/``hevc``)
        timeout: Per-call timeout in seconds for tool-based codecs

    Returns:
        A new codec instance

    Raises:
        ValueError: If the name is unknown
    """
    if not isinstance(name, str):
        msg = f"Codec name must be a string, got {name!r}"
        raise ValueError(msg)
    canonical = _CODEC_ALIASES.get(name.lower())
    if canonical == "jpeg":
        return JpegCodec()
    if canonical == "heic":
        return HeicCodec(timeout=timeout)
    msg = f"Unknown codec: {name!r} (expected one of {sorted(_CODEC_ALIASES)})"
    raise ValueError(msg)


def get_codec_version(name: str) -> str | None:
    """Get the version string for a named codec.

    Returns:
        Version string or None if unable to determine
    """
    return get_codec(name).version()
