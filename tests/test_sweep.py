"""Tests for sweep configuration and execution."""

import json
import logging
import math
import tempfile
from pathlib import Path

import pytest
from PIL import Image

from codec_sweep.codec import DecodeResult, EncodeResult, HeicCodec, JpegCodec
from codec_sweep.report import load_report
from codec_sweep.sweep import (
    DEFAULT_QUALITIES,
    SweepConfig,
    SweepError,
    SweepRunner,
    TrialFailure,
    _parse_quality,
    run_sweep,
)

# ---------------------------------------------------------------------------
# Fault-injecting codecs
# ---------------------------------------------------------------------------


class FailingEncodeCodec(JpegCodec):
    """JPEG codec that refuses to encode selected qualities."""

    def __init__(self, fail_at: set[int]) -> None:
        super().__init__()
        self.fail_at = fail_at
        self.calls: list[int] = []

    def encode(self, source_path: Path, dest_path: Path, quality: int) -> EncodeResult:
        self.calls.append(quality)
        if quality in self.fail_at:
            return EncodeResult(
                success=False, output_path=None, file_size=None, error_message="simulated fault"
            )
        return super().encode(source_path, dest_path, quality)


class FailingDecodeCodec(JpegCodec):
    """JPEG codec whose decoder always fails."""

    def decode(self, source_path: Path, dest_path: Path) -> DecodeResult:
        return DecodeResult(success=False, output_path=None, error_message="corrupt bitstream")


class CroppingCodec(JpegCodec):
    """JPEG codec whose decoder returns a smaller image without reporting its size."""

    def decode(self, source_path: Path, dest_path: Path) -> DecodeResult:
        with Image.open(source_path) as img:
            img.convert("RGB").crop((0, 0, 8, 8)).save(dest_path)
        return DecodeResult(success=True, output_path=dest_path)


class UpscalingCodec(JpegCodec):
    """JPEG codec whose decoder writes a 2x larger raster but reports the original size."""

    def decode(self, source_path: Path, dest_path: Path) -> DecodeResult:
        with Image.open(source_path) as img:
            width, height = img.size
            img.convert("RGB").resize((width * 2, height * 2)).save(dest_path)
        return DecodeResult(success=True, output_path=dest_path, width=width, height=height)


def _sweep_files(directory: Path, stem: str) -> list[Path]:
    return sorted(directory.rglob(f"{stem}_q*"))


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


def test_parse_quality_forms() -> None:
    assert _parse_quality(75) == [75]
    assert _parse_quality([90, 10]) == [90, 10]
    assert _parse_quality({"start": 30, "stop": 60, "step": 10}) == [30, 40, 50, 60]
    with pytest.raises(ValueError):
        _parse_quality("high")  # type: ignore[arg-type]


def test_config_defaults(red_image: Path) -> None:
    config = SweepConfig(image_path=red_image)
    assert config.qualities == DEFAULT_QUALITIES
    assert config.keep_artifacts is False
    assert config.codec == "jpeg"
    assert config.resolved_report_path() == red_image.parent / "red_jpeg_psnr.csv"


def test_config_default_report_follows_codec(red_image: Path) -> None:
    config = SweepConfig(image_path=red_image, codec="heic")
    assert config.resolved_report_path().name == "red_heic_psnr.csv"


def test_config_from_file(tmp_path: Path) -> None:
    config_path = tmp_path / "sweeps" / "photo.json"
    config_path.parent.mkdir()
    config_path.write_text(
        json.dumps(
            {
                "image": "../images/photo.png",
                "report": "out/photo.csv",
                "codec": "heic",
                "quality": {"start": 10, "stop": 30, "step": 10},
                "keep_artifacts": True,
                "workers": 2,
                "timeout": 30,
            }
        )
    )
    config = SweepConfig.from_file(config_path)

    assert config.image_path == config_path.parent / "../images/photo.png"
    assert config.report_path == config_path.parent / "out/photo.csv"
    assert config.codec == "heic"
    assert config.qualities == [10, 20, 30]
    assert config.keep_artifacts is True
    assert config.workers == 2
    assert config.timeout == 30


def test_config_from_dict_requires_image() -> None:
    with pytest.raises(ValueError, match="'image'"):
        SweepConfig.from_dict({"codec": "jpeg"})


def test_config_from_file_missing(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        SweepConfig.from_file(tmp_path / "missing.json")


def test_config_from_file_invalid_json(tmp_path: Path) -> None:
    path = tmp_path / "bad.json"
    path.write_text("{not json")
    with pytest.raises(ValueError, match="Invalid JSON"):
        SweepConfig.from_file(path)


@pytest.mark.parametrize(
    "quality",
    [{"start": 10}, {"stop": 90}, {"start": "low", "stop": 90}],
)
def test_config_malformed_quality_range(quality: dict) -> None:
    with pytest.raises(ValueError, match="Invalid quality range"):
        SweepConfig.from_dict({"image": "photo.png", "quality": quality})


def test_config_codec_must_be_a_name() -> None:
    with pytest.raises(ValueError, match="Codec must be a name"):
        SweepConfig.from_dict({"image": "photo.png", "codec": 5})


@pytest.mark.parametrize("field", ["timeout", "workers"])
def test_config_non_numeric_limits(field: str) -> None:
    with pytest.raises(ValueError, match="Invalid workers or timeout"):
        SweepConfig.from_dict({"image": "photo.png", field: "soon"})


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------


def test_flat_red_image_three_qualities(red_image: Path, tmp_path: Path) -> None:
    """Three qualities on a flat image give three ordered, plausible rows."""
    report = tmp_path / "red.csv"
    result = run_sweep(SweepConfig(image_path=red_image, report_path=report, qualities=[0, 50, 100]))

    assert result.success
    assert result.row_count == 3
    assert [r.quality for r in result.rows] == [0, 50, 100]
    psnrs = [r.psnr for r in result.rows]
    sizes = [r.size_bytes for r in result.rows]
    assert psnrs == sorted(psnrs)
    assert sizes == sorted(sizes)

    df = load_report(report)
    assert df["quality"].tolist() == [0, 50, 100]
    assert df["size_bytes"].tolist() == sizes


def test_empty_quality_list_fails_fast(red_image: Path, tmp_path: Path) -> None:
    report = tmp_path / "out" / "report.csv"
    before = set(tmp_path.rglob("*"))

    result = run_sweep(SweepConfig(image_path=red_image, report_path=report, qualities=[]))

    assert not result.success
    assert result.error is SweepError.CONFIGURATION
    assert result.row_count == 0
    assert set(tmp_path.rglob("*")) == before


@pytest.mark.parametrize("qualities", [[50, "high"], [True], [12.5]])
def test_non_integer_quality_is_configuration_error(
    red_image: Path, tmp_path: Path, qualities: list
) -> None:
    result = run_sweep(
        SweepConfig(image_path=red_image, report_path=tmp_path / "r.csv", qualities=qualities)
    )
    assert result.error is SweepError.CONFIGURATION
    assert not (tmp_path / "r.csv").exists()


def test_out_of_range_quality_is_skipped(red_image: Path, tmp_path: Path) -> None:
    codec = FailingEncodeCodec(fail_at=set())
    result = run_sweep(
        SweepConfig(
            image_path=red_image,
            report_path=tmp_path / "r.csv",
            qualities=[-5, 50, 101],
            codec=codec,
        )
    )
    assert result.success
    assert [r.quality for r in result.rows] == [50]
    assert [(f.quality, f.stage) for f in result.skipped] == [(-5, "quality"), (101, "quality")]
    # The codec is never asked to encode an illegal quality
    assert codec.calls == [50]


def test_unknown_codec_is_configuration_error(red_image: Path, tmp_path: Path) -> None:
    result = run_sweep(
        SweepConfig(image_path=red_image, report_path=tmp_path / "r.csv", codec="webp")
    )
    assert result.error is SweepError.CONFIGURATION
    assert "Unknown codec" in result.error_message


def test_missing_reference_does_not_touch_report(tmp_path: Path) -> None:
    report = tmp_path / "report.csv"
    report.write_text("previous results\n")

    result = run_sweep(
        SweepConfig(image_path=tmp_path / "missing.png", report_path=report, qualities=[50])
    )

    assert not result.success
    assert result.error is SweepError.REFERENCE_UNREADABLE
    assert result.row_count == 0
    assert "missing.png" in result.error_message
    assert report.read_text() == "previous results\n"


def test_missing_reference_creates_no_report(tmp_path: Path) -> None:
    report = tmp_path / "new" / "report.csv"
    result = run_sweep(
        SweepConfig(image_path=tmp_path / "missing.png", report_path=report, qualities=[50])
    )
    assert not result.success
    assert not report.exists()
    assert not report.parent.exists()


def test_unwritable_report_fails_sweep(red_image: Path, tmp_path: Path) -> None:
    blocked = tmp_path / "report_is_a_dir"
    blocked.mkdir()
    codec = FailingEncodeCodec(fail_at=set())

    result = run_sweep(
        SweepConfig(image_path=red_image, report_path=blocked, qualities=[50], codec=codec)
    )

    assert not result.success
    assert result.error is SweepError.REPORT_UNWRITABLE
    assert str(blocked) in result.error_message
    assert codec.calls == []


def test_failing_quality_is_omitted(red_image: Path, tmp_path: Path) -> None:
    report = tmp_path / "report.csv"
    codec = FailingEncodeCodec(fail_at={37})

    result = run_sweep(
        SweepConfig(
            image_path=red_image,
            report_path=report,
            qualities=[0, 20, 37, 50, 100],
            codec=codec,
        )
    )

    assert result.success
    assert [r.quality for r in result.rows] == [0, 20, 50, 100]
    assert load_report(report)["quality"].tolist() == [0, 20, 50, 100]
    assert result.skipped == [TrialFailure(37, "encode", "simulated fault")]
    # Later trials still ran after the failure
    assert codec.calls == [0, 20, 37, 50, 100]


def test_all_trials_failing_is_still_success(red_image: Path, tmp_path: Path) -> None:
    report = tmp_path / "report.csv"
    result = run_sweep(
        SweepConfig(
            image_path=red_image,
            report_path=report,
            qualities=[10, 20],
            codec=FailingDecodeCodec(),
        )
    )

    assert result.success
    assert result.row_count == 0
    assert [f.stage for f in result.skipped] == ["decode", "decode"]
    assert report.read_text() == "quality,psnr,size_bytes\n"


def test_dimension_mismatch_is_skipped(red_image: Path, tmp_path: Path) -> None:
    result = run_sweep(
        SweepConfig(
            image_path=red_image,
            report_path=tmp_path / "report.csv",
            qualities=[50],
            codec=CroppingCodec(),
        )
    )
    assert result.success
    assert result.row_count == 0
    assert result.skipped[0].stage == "dimensions"


def test_oversized_reference_is_unreadable(
    red_image: Path, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 1000)
    report = tmp_path / "report.csv"
    result = run_sweep(SweepConfig(image_path=red_image, report_path=report, qualities=[50]))
    assert not result.success
    assert result.error is SweepError.REFERENCE_UNREADABLE
    assert not report.exists()


def test_oversized_decoded_raster_is_skipped(
    red_image: Path, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    # 64x64 reference stays under the limit; the 128x128 decoded raster is over twice it
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 5000)
    result = run_sweep(
        SweepConfig(
            image_path=red_image,
            report_path=tmp_path / "report.csv",
            qualities=[30, 70],
            codec=UpscalingCodec(),
        )
    )
    assert result.success
    assert result.row_count == 0
    assert [f.stage for f in result.skipped] == ["load", "load"]


def test_heic_tool_that_cannot_run_skips_trial(red_image: Path, tmp_path: Path) -> None:
    stub = tmp_path / "heif-enc"
    stub.write_text("#!/bin/sh\nexit 0\n")
    stub.chmod(0o644)
    result = run_sweep(
        SweepConfig(
            image_path=red_image,
            report_path=tmp_path / "report.csv",
            qualities=[50],
            codec=HeicCodec(encoder=str(stub), decoder=str(stub)),
        )
    )
    assert result.success
    assert result.row_count == 0
    assert result.skipped[0].stage == "encode"


def test_skips_are_logged_to_injected_logger(
    red_image: Path, tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    logger = logging.getLogger("test.sweep")
    config = SweepConfig(
        image_path=red_image,
        report_path=tmp_path / "report.csv",
        qualities=[37, 50],
        codec=FailingEncodeCodec(fail_at={37}),
    )
    with caplog.at_level(logging.INFO, logger="test.sweep"):
        SweepRunner(logger).run(config)

    warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
    assert len(warnings) == 1
    assert warnings[0].name == "test.sweep"
    assert "Skipping quality 37" in warnings[0].getMessage()
    assert "Wrote 1 rows" in caplog.text


# ---------------------------------------------------------------------------
# Properties
# ---------------------------------------------------------------------------


def test_repeated_sweeps_are_byte_identical(textured_image: Path, tmp_path: Path) -> None:
    first = tmp_path / "first.csv"
    second = tmp_path / "second.csv"
    qualities = [10, 40, 70, 100]

    run_sweep(SweepConfig(image_path=textured_image, report_path=first, qualities=qualities))
    run_sweep(SweepConfig(image_path=textured_image, report_path=second, qualities=qualities))

    assert first.read_bytes() == second.read_bytes()


def test_higher_quality_is_more_faithful(textured_image: Path, tmp_path: Path) -> None:
    result = run_sweep(
        SweepConfig(
            image_path=textured_image,
            report_path=tmp_path / "report.csv",
            qualities=[5, 50, 95],
        )
    )
    psnr = {r.quality: r.psnr for r in result.rows}
    assert psnr[5] < psnr[50] < psnr[95]


def test_row_count_never_exceeds_qualities(red_image: Path, tmp_path: Path) -> None:
    qualities = [10, 37, 60, 37]
    result = run_sweep(
        SweepConfig(
            image_path=red_image,
            report_path=tmp_path / "report.csv",
            qualities=qualities,
            codec=FailingEncodeCodec(fail_at={37}),
        )
    )
    assert result.row_count <= len(qualities)
    assert result.row_count == 2


def test_duplicate_qualities_repeat_rows(red_image: Path, tmp_path: Path) -> None:
    codec = FailingEncodeCodec(fail_at=set())
    result = run_sweep(
        SweepConfig(
            image_path=red_image,
            report_path=tmp_path / "report.csv",
            qualities=[50, 10, 50],
            codec=codec,
        )
    )
    assert [r.quality for r in result.rows] == [50, 10, 50]
    assert result.rows[0] == result.rows[2]
    assert codec.calls == [50, 10]


def test_transient_artifacts_are_removed(red_image: Path, tmp_path: Path) -> None:
    temp_root = Path(tempfile.gettempdir())
    before = set(temp_root.glob("red_sweep_*"))

    result = run_sweep(
        SweepConfig(image_path=red_image, report_path=tmp_path / "report.csv", qualities=[10, 90])
    )

    assert result.success
    assert set(temp_root.glob("red_sweep_*")) == before
    assert _sweep_files(red_image.parent, "red") == []


def test_keep_artifacts_places_encoded_files_beside_source(
    red_image: Path, tmp_path: Path
) -> None:
    result = run_sweep(
        SweepConfig(
            image_path=red_image,
            report_path=tmp_path / "report.csv",
            qualities=[10, 90],
            keep_artifacts=True,
        )
    )

    assert result.success
    kept = _sweep_files(red_image.parent, "red")
    assert [p.name for p in kept] == ["red_q10.jpg", "red_q90.jpg"]
    sizes = {r.quality: r.size_bytes for r in result.rows}
    assert (red_image.parent / "red_q10.jpg").stat().st_size == sizes[10]


def test_lossless_reconstruction_reports_inf(tmp_path: Path) -> None:
    """A white image survives JPEG at q100 bit-exactly."""
    path = tmp_path / "white.png"
    Image.new("RGB", (16, 16), (255, 255, 255)).save(path)
    report = tmp_path / "report.csv"

    result = run_sweep(SweepConfig(image_path=path, report_path=report, qualities=[100]))

    assert math.isinf(result.rows[0].psnr)
    assert report.read_text().splitlines()[1].split(",")[1] == "inf"


def test_transparent_reference_is_flattened(tmp_path: Path) -> None:
    """PSNR is measured against the flattened image, so a fully transparent
    image compares as white."""
    path = tmp_path / "clear.png"
    Image.new("RGBA", (16, 16), (0, 0, 0, 0)).save(path)

    result = run_sweep(
        SweepConfig(image_path=path, report_path=tmp_path / "report.csv", qualities=[100])
    )
    assert math.isinf(result.rows[0].psnr)


def test_parallel_sweep_matches_sequential(textured_image: Path, tmp_path: Path) -> None:
    qualities = [90, 10, 50, 30]
    sequential = run_sweep(
        SweepConfig(image_path=textured_image, report_path=tmp_path / "seq.csv", qualities=qualities)
    )
    parallel = run_sweep(
        SweepConfig(
            image_path=textured_image,
            report_path=tmp_path / "par.csv",
            qualities=qualities,
            workers=2,
        )
    )

    assert parallel.success
    assert [r.quality for r in parallel.rows] == qualities
    assert parallel.rows == sequential.rows
    assert (tmp_path / "par.csv").read_bytes() == (tmp_path / "seq.csv").read_bytes()


def test_invalid_worker_count(red_image: Path, tmp_path: Path) -> None:
    result = run_sweep(
        SweepConfig(image_path=red_image, report_path=tmp_path / "r.csv", workers=0)
    )
    assert result.error is SweepError.CONFIGURATION
