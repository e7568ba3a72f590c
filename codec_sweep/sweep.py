"""Quality sweep configuration and execution.

A sweep encodes one reference image at every configured quality, decodes
each result, measures PSNR against the reference and writes one CSV row per
successful trial.

Failures are split in two classes. Configuration problems, an unreadable
reference image and an unwritable report destination end the sweep before
any trial runs, with nothing written. A failure inside a trial (quality out
of range, encode, decode, unreadable decoded raster, dimension mismatch)
only drops that quality's row; the remaining trials still run.
"""

import json
import logging
import multiprocessing
from concurrent.futures import ProcessPoolExecutor, as_completed
from concurrent.futures.process import BrokenProcessPool
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import numpy as np

from codec_sweep.artifacts import ArtifactManager
from codec_sweep.codec import Codec, get_codec
from codec_sweep.image_io import RGBImage, load_rgb
from codec_sweep.metric import measure_psnr
from codec_sweep.report import ReportWriter, TrialResult

DEFAULT_QUALITIES = [0, 5, 10, 20, 30, 40, 50, 60, 70, 80, 90, 100]
DECODED_EXTENSION = "png"


def _parse_quality(quality: int | list[int] | dict[str, int]) -> list[int]:
    """Parse quality parameter into a list of integers.

    Supports:
    - Single integer: ``75`` → ``[75]``
    - Explicit list: ``[60, 75, 90]`` → ``[60, 75, 90]``
    - Range object: ``{"start": 30, "stop": 90, "step": 10}`` → ``[30, 40, ..., 90]``

    Args:
        quality: Quality specification from the sweep config

    Returns:
        List of quality values
    """
    if isinstance(quality, bool):
        msg = f"Invalid quality specification: {quality}"
        raise ValueError(msg)
    if isinstance(quality, int):
        return [quality]
    if isinstance(quality, list):
        return list(quality)
    if isinstance(quality, dict):
        try:
            return list(range(quality["start"], quality["stop"] + 1, quality.get("step", 1)))
        except (KeyError, TypeError, ValueError) as e:
            msg = f"Invalid quality range {quality}: {e!r}"
            raise ValueError(msg) from e
    msg = f"Invalid quality specification: {quality}"
    raise ValueError(msg)


@dataclass
class SweepConfig:
    """Configuration for one quality sweep."""

    image_path: Path
    report_path: Path | None = None
    qualities: list[int] = field(default_factory=lambda: list(DEFAULT_QUALITIES))
    keep_artifacts: bool = False
    codec: str | Codec = "jpeg"
    workers: int = 1
    timeout: float | None = None

    @property
    def codec_name(self) -> str:
        if isinstance(self.codec, Codec):
            return self.codec.name
        return self.codec

    def resolved_report_path(self) -> Path:
        """Return the report path, defaulting to ``<stem>_<codec>_psnr.csv`` beside the image."""
        if self.report_path is not None:
            return Path(self.report_path)
        image_path = Path(self.image_path)
        return image_path.with_name(f"{image_path.stem}_{self.codec_name}_psnr.csv")

    @classmethod
    def from_file(cls, config_path: Path) -> "SweepConfig":
        """Load a sweep configuration from a JSON file.

        Relative image and report paths resolve against the config file's
        directory.

        Args:
            config_path: Path to the sweep JSON file

        Returns:
            SweepConfig instance

        Raises:
            FileNotFoundError: If config file does not exist
            ValueError: If config file has invalid content
        """
        if not config_path.exists():
            msg = f"Sweep config not found: {config_path}"
            raise FileNotFoundError(msg)

        with open(config_path) as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                msg = f"Invalid JSON in {config_path}: {e}"
                raise ValueError(msg) from e

        return cls.from_dict(data, base_dir=config_path.parent)

    @classmethod
    def from_dict(cls, data: dict[str, Any], base_dir: Path | None = None) -> "SweepConfig":
        """Create SweepConfig from a dictionary.

        Args:
            data: Dictionary with ``image`` and optional ``report``, ``codec``,
                ``quality``, ``keep_artifacts``, ``workers`` and ``timeout``
            base_dir: Directory that relative paths resolve against

        Returns:
            SweepConfig instance

        Raises:
            ValueError: If required fields are missing or malformed
        """
        if "image" not in data:
            msg = "Sweep config must have an 'image' field"
            raise ValueError(msg)

        def _resolve(value: str) -> Path:
            path = Path(value)
            if base_dir is not None and not path.is_absolute():
                return base_dir / path
            return path

        report = data.get("report")
        codec = data.get("codec", "jpeg")
        if not isinstance(codec, str):
            msg = f"Codec must be a name, got {codec!r}"
            raise ValueError(msg)
        try:
            workers = int(data.get("workers", 1))
            timeout = data.get("timeout")
            timeout = float(timeout) if timeout is not None else None
        except (TypeError, ValueError) as e:
            msg = f"Invalid workers or timeout in sweep config: {e}"
            raise ValueError(msg) from e
        qualities = (
            _parse_quality(data["quality"]) if "quality" in data else list(DEFAULT_QUALITIES)
        )

        return cls(
            image_path=_resolve(data["image"]),
            report_path=_resolve(report) if report is not None else None,
            qualities=qualities,
            keep_artifacts=bool(data.get("keep_artifacts", False)),
            codec=codec,
            workers=workers,
            timeout=timeout,
        )


class SweepError(Enum):
    """Reasons a whole sweep fails before producing a report."""

    CONFIGURATION = "configuration"
    REFERENCE_UNREADABLE = "reference_unreadable"
    REPORT_UNWRITABLE = "report_unwritable"
    WORK_DIR_UNAVAILABLE = "work_dir_unavailable"


@dataclass(frozen=True)
class TrialFailure:
    """A trial that produced no report row, and the stage where it stopped."""

    quality: int
    stage: str
    message: str


@dataclass
class SweepResult:
    """Outcome of a sweep."""

    success: bool
    row_count: int = 0
    rows: list[TrialResult] = field(default_factory=list)
    skipped: list[TrialFailure] = field(default_factory=list)
    report_path: Path | None = None
    error: SweepError | None = None
    error_message: str | None = None


def _validate_qualities(qualities: list[int]) -> str | None:
    if not qualities:
        return "Quality list is empty"
    bad = [q for q in qualities if isinstance(q, bool) or not isinstance(q, int)]
    if bad:
        return f"Quality values must be integers, got {bad}"
    return None


def _execute_trial(
    codec: Codec,
    reference: np.ndarray,
    source_path: Path,
    quality: int,
    encoded_path: Path,
    decoded_path: Path,
) -> TrialResult | TrialFailure:
    """Run one encode/decode/measure cycle (top-level function for multiprocessing).

    Args:
        codec: Codec to drive
        reference: Flattened reference pixels, shape ``(H, W, 3)``
        source_path: Reference image file handed to the encoder
        quality: Quality setting for this trial
        encoded_path: Where the compressed artifact is written
        decoded_path: Where the decoded raster is written

    Returns:
        TrialResult on success, TrialFailure naming the failed stage otherwise
    """
    height, width = reference.shape[:2]

    if not 0 <= quality <= 100:
        return TrialFailure(quality, "quality", f"quality {quality} outside [0, 100]")

    encoded = codec.encode(source_path, encoded_path, quality)
    if not encoded.success:
        return TrialFailure(quality, "encode", encoded.error_message or "encode failed")

    decoded = codec.decode(encoded_path, decoded_path)
    if not decoded.success:
        return TrialFailure(quality, "decode", decoded.error_message or "decode failed")

    if decoded.width is not None and decoded.height is not None:
        if (decoded.width, decoded.height) != (width, height):
            return TrialFailure(
                quality,
                "dimensions",
                f"decoded {decoded.width}x{decoded.height}, reference {width}x{height}",
            )

    loaded = load_rgb(decoded_path)
    if loaded.image is None:
        return TrialFailure(quality, "load", loaded.error_message or "decoded raster unreadable")
    image = loaded.image
    if (image.width, image.height) != (width, height):
        return TrialFailure(
            quality,
            "dimensions",
            f"decoded {image.width}x{image.height}, reference {width}x{height}",
        )

    psnr = measure_psnr(reference, image.pixels, width, height)

    try:
        size = encoded_path.stat().st_size
    except OSError as e:
        return TrialFailure(quality, "size", f"cannot stat {encoded_path}: {e}")

    return TrialResult(quality=quality, psnr=psnr, size_bytes=size)


class SweepRunner:
    """Executes a quality sweep end-to-end."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        """Initialize the sweep runner.

        Args:
            logger: Logger receiving progress and diagnostics; defaults to
                this module's logger
        """
        self.logger = logger or logging.getLogger(__name__)

    def _fail(self, error: SweepError, message: str) -> SweepResult:
        self.logger.error("Sweep failed: %s", message)
        return SweepResult(success=False, error=error, error_message=message)

    def _resolve_codec(self, config: SweepConfig) -> Codec:
        if isinstance(config.codec, Codec):
            return config.codec
        return get_codec(config.codec, timeout=config.timeout)

    def run(self, config: SweepConfig) -> SweepResult:
        """Execute a complete sweep.

        Args:
            config: Sweep configuration

        Returns:
            SweepResult; ``success`` is False only for sweep-level failures.
            A sweep where every trial failed still succeeds with zero rows.
        """
        problem = _validate_qualities(config.qualities)
        if problem is not None:
            return self._fail(SweepError.CONFIGURATION, problem)
        if config.workers < 1:
            return self._fail(SweepError.CONFIGURATION, f"workers must be >= 1, got {config.workers}")
        try:
            codec = self._resolve_codec(config)
        except ValueError as e:
            return self._fail(SweepError.CONFIGURATION, str(e))

        image_path = Path(config.image_path)
        loaded = load_rgb(image_path)
        if loaded.image is None:
            return self._fail(
                SweepError.REFERENCE_UNREADABLE,
                f"Cannot read reference image {image_path}: {loaded.error_message}",
            )
        reference = loaded.image

        report_path = config.resolved_report_path()
        writer = ReportWriter(report_path)
        try:
            writer.open()
        except OSError as e:
            return self._fail(
                SweepError.REPORT_UNWRITABLE, f"Cannot write report {report_path}: {e}"
            )

        try:
            try:
                artifacts = ArtifactManager(image_path, config.keep_artifacts, logger=self.logger)
            except OSError as e:
                return self._fail(
                    SweepError.WORK_DIR_UNAVAILABLE, f"Cannot create working directory: {e}"
                )

            version = codec.version()
            self.logger.info(
                "Sweep: %s with %s (%s), %dx%d, %d qualities, artifacts in %s",
                image_path.name,
                codec.name,
                version or "version unknown",
                reference.width,
                reference.height,
                len(config.qualities),
                artifacts.work_dir,
            )

            with artifacts:
                outcomes = self._run_trials(codec, reference, image_path, artifacts, config)

            rows: list[TrialResult] = []
            skipped: list[TrialFailure] = []
            for quality in config.qualities:
                outcome = outcomes[quality]
                if isinstance(outcome, TrialResult):
                    rows.append(outcome)
                else:
                    skipped.append(outcome)

            try:
                written = writer.write(rows)
            except OSError as e:
                return self._fail(
                    SweepError.REPORT_UNWRITABLE, f"Cannot write report {report_path}: {e}"
                )
        finally:
            writer.discard()

        self.logger.info(
            "Wrote %d rows to %s (%d trials skipped)", written, report_path, len(skipped)
        )
        return SweepResult(
            success=True,
            row_count=written,
            rows=rows,
            skipped=skipped,
            report_path=report_path,
        )

    def _run_trials(
        self,
        codec: Codec,
        reference: RGBImage,
        image_path: Path,
        artifacts: ArtifactManager,
        config: SweepConfig,
    ) -> dict[int, TrialResult | TrialFailure]:
        """Run one trial per distinct quality, sequentially or in parallel.

        Returns:
            Mapping from quality to its outcome
        """
        stem = image_path.stem
        qualities = list(dict.fromkeys(config.qualities))
        paths = {
            q: (
                artifacts.artifact_path(stem, q, codec.extension),
                artifacts.artifact_path(stem, q, DECODED_EXTENSION),
            )
            for q in qualities
        }
        outcomes: dict[int, TrialResult | TrialFailure] = {}

        if config.workers == 1 or len(qualities) == 1:
            for q in qualities:
                encoded_path, decoded_path = paths[q]
                outcome = _execute_trial(
                    codec, reference.pixels, image_path, q, encoded_path, decoded_path
                )
                self._finish_trial(outcome, artifacts, encoded_path, decoded_path, config)
                outcomes[q] = outcome
            return outcomes

        # 'spawn' avoids fork-safety issues with codec libraries holding global state
        mp_ctx = multiprocessing.get_context("spawn")
        max_workers = min(config.workers, len(qualities))
        with ProcessPoolExecutor(max_workers=max_workers, mp_context=mp_ctx) as executor:
            futures = {
                executor.submit(
                    _execute_trial,
                    codec,
                    reference.pixels,
                    image_path,
                    q,
                    *paths[q],
                ): q
                for q in qualities
            }

            completed = 0
            for future in as_completed(futures):
                q = futures[future]
                completed += 1
                try:
                    outcome = future.result()
                except BrokenProcessPool as e:
                    outcome = TrialFailure(q, "worker", f"worker process died: {e}")
                self._finish_trial(outcome, artifacts, *paths[q], config)
                outcomes[q] = outcome
                self.logger.debug("%d/%d trials done", completed, len(qualities))

        return outcomes

    def _finish_trial(
        self,
        outcome: TrialResult | TrialFailure,
        artifacts: ArtifactManager,
        encoded_path: Path,
        decoded_path: Path,
        config: SweepConfig,
    ) -> None:
        if isinstance(outcome, TrialResult):
            self.logger.debug(
                "q%d: %.4f dB, %d bytes", outcome.quality, outcome.psnr, outcome.size_bytes
            )
        else:
            self.logger.warning(
                "Skipping quality %d: %s failed: %s", outcome.quality, outcome.stage, outcome.message
            )

        artifacts.cleanup(decoded_path)
        if not config.keep_artifacts:
            artifacts.cleanup(encoded_path)


def run_sweep(config: SweepConfig, logger: logging.Logger | None = None) -> SweepResult:
    """Run a quality sweep and write its report.

    Args:
        config: Sweep configuration
        logger: Optional logger; defaults to this module's logger

    Returns:
        SweepResult with the row count, or the reason the sweep failed
    """
    return SweepRunner(logger).run(config)
