"""
Companion files on disk.

Every bookmark owns three paths below the data directory:

    thumb/<id>           thumbnail bytes, format as fetched
    archive/<id>         WARC archive (or the original PDF)
    ebook/<id>.epub      generated EPUB
"""
import logging
import os
import tempfile
from pathlib import Path

from shiori.schemas.bookmark import BookmarkDTO

logger = logging.getLogger(__name__)

THUMBNAIL_DIR = "thumb"
ARCHIVE_DIR = "archive"
EBOOK_DIR = "ebook"


class UnsafePathError(ValueError):
    """Raised when a relative path escapes the data directory."""

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"Path escapes the data directory: {path}")


def thumbnail_path(bookmark_id: int) -> str:
    """Relative path of a bookmark's thumbnail."""
    return f"{THUMBNAIL_DIR}/{bookmark_id}"


def archive_path(bookmark_id: int) -> str:
    """Relative path of a bookmark's archive."""
    return f"{ARCHIVE_DIR}/{bookmark_id}"


def ebook_path(bookmark_id: int) -> str:
    """Relative path of a bookmark's ebook."""
    return f"{EBOOK_DIR}/{bookmark_id}.epub"


class StorageDomain:
    """Filesystem access confined to the data directory."""

    def __init__(self, data_dir: Path | str) -> None:
        self.data_dir = Path(data_dir).expanduser().resolve()

    def path(self, relative: str) -> Path:
        """
        Resolve `relative` below the data directory.

        Raises:
            UnsafePathError: If the result would lie outside the data directory.
        """
        resolved = (self.data_dir / relative).resolve()
        if resolved != self.data_dir and self.data_dir not in resolved.parents:
            raise UnsafePathError(relative)
        return resolved

    def file_exists(self, relative: str) -> bool:
        return self.path(relative).is_file()

    def dir_exists(self, relative: str) -> bool:
        return self.path(relative).is_dir()

    def stat(self, relative: str) -> os.stat_result:
        return self.path(relative).stat()

    def read_file(self, relative: str) -> bytes:
        return self.path(relative).read_bytes()

    def write_file(self, relative: str, data: bytes) -> Path:
        """
        Write `data` atomically: a temp file in the target directory is
        renamed over the destination, so readers never see a partial file.
        """
        destination = self.path(relative)
        destination.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(dir=destination.parent, prefix=f".{destination.name}.")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_name, destination)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        return destination

    def move_file(self, source: Path, relative: str) -> Path:
        """Move a finished temp file into place."""
        destination = self.path(relative)
        destination.parent.mkdir(parents=True, exist_ok=True)
        os.replace(source, destination)
        return destination

    def temp_file(self, suffix: str = "") -> Path:
        """Create an empty temp file inside the data directory."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.data_dir, prefix=".tmp-", suffix=suffix)
        os.close(fd)
        return Path(tmp_name)

    def remove(self, relative: str) -> bool:
        """Delete a file. Returns False if it didn't exist."""
        try:
            self.path(relative).unlink()
        except FileNotFoundError:
            return False
        return True

    def remove_bookmark_files(self, bookmark_id: int) -> None:
        """Delete the thumbnail, archive and ebook of a bookmark, if present."""
        for relative in (
            thumbnail_path(bookmark_id),
            archive_path(bookmark_id),
            ebook_path(bookmark_id),
        ):
            try:
                self.remove(relative)
            except OSError as e:
                logger.warning("Failed to remove %s: %s", relative, e)

    def with_file_flags(self, bookmark: BookmarkDTO) -> BookmarkDTO:
        """Return a copy of `bookmark` with `has_*` flags and `image_url` set."""
        has_thumbnail = self.file_exists(thumbnail_path(bookmark.id))
        return bookmark.model_copy(
            update={
                "has_archive": self.file_exists(archive_path(bookmark.id)),
                "has_ebook": self.file_exists(ebook_path(bookmark.id)),
                "has_thumbnail": has_thumbnail,
                "image_url": f"/bookmark/{bookmark.id}/thumb" if has_thumbnail else "",
            },
        )
