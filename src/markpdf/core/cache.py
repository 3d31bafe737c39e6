"""Content-addressed storage for rendered diagram images.

Store structure:
    $TMPDIR/
    └── markpdf-diagram-images/
        └── diagram-<content_hash>-<index>.png

The directory is shared by every conversion running on the machine. File
names derive from the diagram source, so two conversions rendering the same
diagram write byte-identical files to the same path and never need a lock.
"""

import hashlib
import logging
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)

TEMP_DIR_NAME = "markpdf-diagram-images"
IMAGE_EXTENSION = ".png"
MAX_HASH_LENGTH = 64


def normalize_diagram_source(source: str) -> str:
    """Normalize line endings to LF and strip outer whitespace."""
    return source.replace("\r\n", "\n").replace("\r", "\n").strip()


def compute_diagram_hash(source: str, length: int = 16) -> str:
    """Compute a content hash for diagram caching.

    Args:
        source: Diagram source code
        length: Number of hex characters to keep, clamped to [0, 64]

    Returns:
        Truncated SHA-256 hex digest of the normalized source
    """
    digest = hashlib.sha256(normalize_diagram_source(source).encode("utf-8")).hexdigest()
    return digest[: max(0, min(length, MAX_HASH_LENGTH))]


def diagram_filename(source: str, index: int = 0) -> str:
    """Return the artifact file name for a diagram.

    Args:
        source: Diagram source code
        index: Ordinal position of the diagram in its document

    Returns:
        File name of the form diagram-{hash}-{index}.png
    """
    return f"diagram-{compute_diagram_hash(source)}-{index}{IMAGE_EXTENSION}"


def default_image_dir() -> Path:
    """Shared temp directory for rendered diagrams."""
    return Path(tempfile.gettempdir()) / TEMP_DIR_NAME


class DiagramImageStore:
    """Temp-directory store for rendered diagram images.

    Images only live for one conversion: they are inlined as data URIs and
    removed by cleanup() once embedded.
    """

    def __init__(self, image_dir: Path | None = None) -> None:
        """Initialize store with directory path.

        Args:
            image_dir: Directory for image files (default: shared OS temp dir)
        """
        self._image_dir = image_dir or default_image_dir()

    @property
    def image_dir(self) -> Path:
        """Directory holding rendered images."""
        return self._image_dir

    def ensure(self) -> Path:
        """Create the image directory if it doesn't exist."""
        self._image_dir.mkdir(parents=True, exist_ok=True)
        return self._image_dir

    def path_for(self, content_hash: str, index: int) -> Path:
        """Return the artifact path for a (content_hash, index) pair."""
        return self._image_dir / f"diagram-{content_hash}-{index}{IMAGE_EXTENSION}"

    def cleanup(self, image_files: list[Path]) -> None:
        """Delete image files, then the directory if it is left empty.

        Never raises: files may already be gone, and another conversion may
        still be using the directory.

        Args:
            image_files: Paths previously produced for one conversion
        """
        for image_path in image_files:
            try:
                Path(image_path).unlink()
            except OSError:
                logger.debug(f"Could not remove diagram image {image_path}")

        try:
            if not any(self._image_dir.iterdir()):
                self._image_dir.rmdir()
        except OSError:
            pass
