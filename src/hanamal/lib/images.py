"""Image naming and hashing helpers."""

import hashlib
from pathlib import Path, PurePosixPath
from urllib.parse import urlsplit

HASH_ALGORITHM = "sha256"
NAME_LENGTH = 12
DEFAULT_EXT = ".jpg"

MIME_TO_EXT: dict[str, str] = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/webp": ".webp",
    "image/gif": ".gif",
    "image/avif": ".avif",
    "image/svg+xml": ".svg",
}

IMAGE_EXTENSIONS = frozenset(
    {".jpg", ".jpeg", ".png", ".gif", ".webp", ".avif", ".svg"}
)


def new_hasher() -> "hashlib._Hash":
    """Return an empty hasher for incremental content hashing."""
    return hashlib.new(HASH_ALGORITHM)


def content_hash(data: bytes) -> str:
    """Hex digest of raw image bytes."""
    return hashlib.new(HASH_ALGORITHM, data).hexdigest()


def file_hash(path: Path, chunk_size: int = 1 << 16) -> str:
    """Hex digest of a file on disk, read in chunks."""
    hasher = new_hasher()
    with path.open("rb") as f:
        while chunk := f.read(chunk_size):
            hasher.update(chunk)
    return hasher.hexdigest()


def guess_extension(url: str, content_type: str | None = None) -> str:
    """Pick a file extension for a downloaded image.

    The extension in the URL path wins when it is a known image type;
    otherwise the response Content-Type decides; ``.jpg`` is the fallback.
    """
    suffix = PurePosixPath(urlsplit(url).path).suffix.lower()
    if suffix in IMAGE_EXTENSIONS:
        return suffix
    if content_type:
        mime = content_type.split(";")[0].strip().lower()
        if mime in MIME_TO_EXT:
            return MIME_TO_EXT[mime]
    return DEFAULT_EXT


def hashed_filename(digest: str, ext: str, length: int = NAME_LENGTH) -> str:
    """Content-derived filename: ``<first length hex chars><ext>``."""
    return digest[:length] + ext


def is_image_file(path: Path) -> bool:
    return path.is_file() and path.suffix.lower() in IMAGE_EXTENSIONS
