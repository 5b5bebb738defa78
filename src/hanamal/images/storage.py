"""Local image directory.

Files are written atomically so an interrupted download never leaves a
truncated image under a name the registry could point at.
"""

import logging
from collections.abc import Iterator
from pathlib import Path

from hanamal.images.errors import ImageWriteError
from hanamal.lib.files import write_atomic
from hanamal.lib.images import is_image_file

logger = logging.getLogger(__name__)


class ImageStore:
    """The directory downloaded images live in, and its public URL prefix.

    Args:
        root: Directory on disk (created on first write).
        url_prefix: Public path the site serves ``root`` under.
    """

    def __init__(self, root: Path, url_prefix: str = "/images") -> None:
        self.root = root
        self.url_prefix = "/" + url_prefix.strip("/")

    def path_for(self, filename: str) -> Path:
        return self.root / filename

    def local_path(self, filename: str) -> str:
        """Public path for a stored file, e.g. ``/images/3f2a9c01b7de.jpg``."""
        return f"{self.url_prefix}/{filename}"

    def exists(self, filename: str) -> bool:
        return self.path_for(filename).is_file()

    def write(self, filename: str, content: bytes) -> Path:
        """Store ``content`` under ``filename``.

        Raises:
            ImageWriteError: If the directory or file cannot be written.
        """
        path = self.path_for(filename)
        try:
            write_atomic(path, content)
        except OSError as e:
            raise ImageWriteError(f"could not write {path}: {e}") from e
        logger.debug("Wrote %s (%d bytes)", path, len(content))
        return path

    def remove(self, filename: str) -> bool:
        """Delete a stored file. Returns False if it was already gone."""
        path = self.path_for(filename)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        return True

    def iter_files(self) -> Iterator[Path]:
        """Image files in the directory, sorted by name."""
        if not self.root.is_dir():
            return
        yield from sorted(p for p in self.root.iterdir() if is_image_file(p))
