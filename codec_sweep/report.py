"""CSV report of a quality sweep.

The report has the header ``quality,psnr,size_bytes`` and one row per
successful trial. PSNR is written with six decimals; a bit-identical
reconstruction (infinite PSNR) is written as the literal token ``inf``,
which pandas and common spreadsheet importers read back as infinity.

The file is written once, at the end of a sweep: rows go to a temporary
file in the destination directory which then replaces the destination, so
a pre-existing report is truncated, never appended to, and never left half
written.
"""

import os
import tempfile
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

import pandas as pd

REPORT_COLUMNS = ["quality", "psnr", "size_bytes"]
PSNR_FORMAT = "%.6f"


@dataclass(frozen=True)
class TrialResult:
    """One report row: a successful encode/decode/measure cycle."""

    quality: int
    psnr: float
    size_bytes: int


def rows_to_dataframe(rows: Iterable[TrialResult]) -> pd.DataFrame:
    """Build a report DataFrame, preserving row order."""
    rows = list(rows)
    return pd.DataFrame(
        {
            "quality": pd.Series([r.quality for r in rows], dtype="int64"),
            "psnr": pd.Series([r.psnr for r in rows], dtype="float64"),
            "size_bytes": pd.Series([r.size_bytes for r in rows], dtype="uint64"),
        },
        columns=REPORT_COLUMNS,
    )


class ReportWriter:
    """Writes a sweep report atomically to a destination path."""

    def __init__(self, path: Path) -> None:
        """Initialize the report writer.

        Args:
            path: Destination CSV file
        """
        self.path = Path(path)
        self._temp_path: Path | None = None

    def open(self) -> Path:
        """Check that the destination can be written and reserve a temp file.

        Missing parent directories are created. The destination itself is
        not touched until :meth:`write`.

        Returns:
            Path of the reserved temp file

        Raises:
            OSError: If the destination cannot be created
        """
        if self.path.is_dir():
            msg = f"Report destination is a directory: {self.path}"
            raise IsADirectoryError(msg)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
        )
        os.close(fd)
        os.chmod(tmp, 0o644)
        self._temp_path = Path(tmp)
        return self._temp_path

    def write(self, rows: Iterable[TrialResult]) -> int:
        """Serialize *rows* and replace the destination file.

        Args:
            rows: Trial results in report order

        Returns:
            Number of data rows written

        Raises:
            OSError: If the report cannot be written
        """
        temp_path = self._temp_path if self._temp_path is not None else self.open()

        df = rows_to_dataframe(rows)
        try:
            with open(temp_path, "w", encoding="utf-8", newline="") as f:
                df.to_csv(f, index=False, float_format=PSNR_FORMAT, lineterminator="\n")
            os.replace(temp_path, self.path)
        except OSError:
            self.discard()
            raise
        self._temp_path = None
        return len(df)

    def discard(self) -> None:
        """Remove the reserved temp file without touching the destination."""
        if self._temp_path is None:
            return
        try:
            self._temp_path.unlink()
        except FileNotFoundError:
            pass
        self._temp_path = None


def write_report(rows: Iterable[TrialResult], path: Path) -> int:
    """Write a complete report to *path*, truncating any existing file.

    Returns:
        Number of data rows written
    """
    return ReportWriter(path).write(rows)


def load_report(path: Path) -> pd.DataFrame:
    """Load a sweep report into a DataFrame.

    ``inf`` tokens in the ``psnr`` column become ``numpy.inf``.

    Raises:
        FileNotFoundError: If the report does not exist
        ValueError: If the file lacks the report columns
    """
    if not Path(path).exists():
        msg = f"Report not found: {path}"
        raise FileNotFoundError(msg)
    df = pd.read_csv(path)
    missing = [c for c in REPORT_COLUMNS if c not in df.columns]
    if missing:
        msg = f"Not a sweep report (missing columns {missing}): {path}"
        raise ValueError(msg)
    return df.astype({"quality": "int64", "psnr": "float64", "size_bytes": "int64"})
