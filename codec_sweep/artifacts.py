"""Placement and cleanup of intermediate sweep artifacts.

Encoded and decoded files are named ``{stem}_q{quality}.{extension}`` so
that trials at different qualities never share a path. When artifacts are
kept they go beside the source image; otherwise they live in a sweep-local
directory inside the system temporary area, which is removed when the
manager is closed.
"""

import logging
import shutil
import tempfile
from pathlib import Path
from types import TracebackType


class ArtifactManager:
    """Decides where trial artifacts live and removes them afterwards."""

    def __init__(
        self,
        source_path: Path,
        keep_artifacts: bool = False,
        logger: logging.Logger | None = None,
    ) -> None:
        """Initialize the artifact manager.

        Args:
            source_path: Reference image the sweep runs on
            keep_artifacts: Keep encoded files beside the source image
            logger: Logger for cleanup diagnostics

        Raises:
            OSError: If the temporary working directory cannot be created
        """
        self.source_path = Path(source_path)
        self.keep_artifacts = keep_artifacts
        self.logger = logger or logging.getLogger(__name__)
        self._temp_dir: Path | None = None

        if keep_artifacts:
            self.work_dir = self.source_path.resolve().parent
        else:
            self._temp_dir = Path(
                tempfile.mkdtemp(prefix=f"{self.source_path.stem}_sweep_", dir=tempfile.gettempdir())
            )
            self.work_dir = self._temp_dir

    def artifact_path(self, stem: str, quality: int, extension: str) -> Path:
        """Return the path of the artifact for one trial."""
        return self.work_dir / f"{stem}_q{quality}.{extension.lstrip('.')}"

    def cleanup(self, path: Path) -> None:
        """Delete an artifact, ignoring any failure."""
        try:
            path.unlink()
        except FileNotFoundError:
            self.logger.debug("Artifact already gone: %s", path)
        except OSError as e:
            self.logger.warning("Could not delete artifact %s: %s", path, e)

    def close(self) -> None:
        """Remove the sweep-local temporary directory, if one was created."""
        if self._temp_dir is None:
            return
        try:
            shutil.rmtree(self._temp_dir)
        except FileNotFoundError:
            pass
        except OSError as e:
            self.logger.warning("Could not remove working directory %s: %s", self._temp_dir, e)
        self._temp_dir = None

    def __enter__(self) -> "ArtifactManager":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()
