"""Per-request scratch directory for uploads, document source and artifacts.

Every file a request creates lives inside one directory named by the run
identifier. Leaving the ``with`` block removes that directory, whatever
happened inside it, so no student handwriting outlives its request.
"""

import logging
import shutil
import tempfile
import uuid
from pathlib import Path
from types import TracebackType
from typing import List, Optional, Type

from exam_generator.models.exam import UploadedImage

logger = logging.getLogger(__name__)


def new_run_id() -> str:
    """Random run identifier; never derived from the clock."""
    return uuid.uuid4().hex


class RunWorkspace:
    """Scoped temporary directory owned by exactly one request."""

    def __init__(self, root: Path, run_id: Optional[str] = None) -> None:
        self.root = Path(root)
        self.run_id = run_id or new_run_id()
        self.directory: Optional[Path] = None
        self.images: List[UploadedImage] = []

    def __enter__(self) -> "RunWorkspace":
        self.root.mkdir(parents=True, exist_ok=True)
        self.directory = Path(tempfile.mkdtemp(prefix=f"run_{self.run_id}_", dir=self.root))
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        self.cleanup()

    @property
    def stem(self) -> str:
        """Base name shared by the document source, artifact and compiler side files."""
        return f"exam_{self.run_id}"

    def path(self, suffix: str) -> Path:
        if self.directory is None:
            raise RuntimeError("Workspace is not open")
        return self.directory / f"{self.stem}{suffix}"

    def save_image(self, content: bytes, mime_type: str, filename: str) -> UploadedImage:
        if self.directory is None:
            raise RuntimeError("Workspace is not open")
        target = self.directory / f"upload_{len(self.images) + 1}_{filename}"
        target.write_bytes(content)
        image = UploadedImage(
            path=target,
            mime_type=mime_type,
            size_bytes=len(content),
            original_filename=filename,
        )
        self.images.append(image)
        return image

    def write_text(self, suffix: str, text: str) -> Path:
        target = self.path(suffix)
        target.write_text(text, encoding="utf-8")
        return target

    def copy_in(self, source: Path, name: str) -> Path:
        if self.directory is None:
            raise RuntimeError("Workspace is not open")
        target = self.directory / name
        shutil.copyfile(source, target)
        return target

    def cleanup(self) -> None:
        """Delete the directory and everything in it. Safe to call twice."""
        if self.directory is None:
            return
        directory, self.directory = self.directory, None
        try:
            shutil.rmtree(directory)
        except FileNotFoundError:
            pass
        except OSError as e:
            # Log cleanup failure but don't raise (the request outcome stands)
            logger.error(f"Failed to remove workspace {directory}: {e}")
        self.images = []
