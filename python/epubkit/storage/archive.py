"""Archive source abstraction.

Provides a clean interface for named-entry reads over an EPUB container:
- Entry reads (raw bytes by archive path)
- Entry listing (diagnostics and lazy existence checks)

Paths are forward-slash separated, case-sensitive, and relative to the
container root. Implementations must be safe for concurrent reads.
"""

from __future__ import annotations

import io
import os
import threading
import zipfile
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from typing import BinaryIO

from epubkit.config import Settings, get_settings
from epubkit.errors import ArchiveUnsafeError, InvalidArchiveError, MissingEntryError
from epubkit.logging import get_logger

logger = get_logger(__name__)


class ArchiveSource(ABC):
    """Abstract base class for archive source implementations."""

    @abstractmethod
    def open_entry(self, path: str) -> bytes:
        """Read a named entry.

        Args:
            path: Archive path (e.g., "OEBPS/content.opf").

        Returns:
            The entry's raw, decompressed bytes.

        Raises:
            MissingEntryError: If no entry has that path.
        """
        ...

    @abstractmethod
    def list_entries(self) -> frozenset[str]:
        """Return the paths of all file entries."""
        ...

    def has_entry(self, path: str) -> bool:
        return path in self.list_entries()

    @property
    def name(self) -> str | None:
        """Human-readable source name used in log context."""
        return None

    @property
    def mimetype_is_first_and_stored(self) -> bool | None:
        """Whether ``mimetype`` is the first entry and stored uncompressed.

        None when the source has no notion of entry order or compression.
        """
        return None


@dataclass(frozen=True)
class ArchiveSafetyLimits:
    max_entries: int
    max_total_uncompressed_bytes: int
    max_single_entry_uncompressed_bytes: int
    max_compression_ratio: int

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> ArchiveSafetyLimits:
        if settings is None:
            settings = get_settings()
        return cls(
            max_entries=settings.max_archive_entries,
            max_total_uncompressed_bytes=settings.max_archive_total_uncompressed_bytes,
            max_single_entry_uncompressed_bytes=settings.max_archive_single_entry_uncompressed_bytes,
            max_compression_ratio=settings.max_archive_compression_ratio,
        )


def check_archive_safety(zf: zipfile.ZipFile, limits: ArchiveSafetyLimits) -> None:
    """Reject archives that exceed the safety limits.

    Raises:
        ArchiveUnsafeError: On the first violated limit.
    """
    infos = zf.infolist()

    if len(infos) > limits.max_entries:
        raise ArchiveUnsafeError(
            f"Archive has {len(infos)} entries (limit {limits.max_entries})"
        )

    total_uncompressed = 0
    for info in infos:
        # path safety: reject absolute, traversal, drive-qualified
        name = info.filename
        if name.startswith("/") or name.startswith("\\"):
            raise ArchiveUnsafeError(f"Absolute path in archive: {name}", path=name)
        if ".." in name.replace("\\", "/").split("/"):
            raise ArchiveUnsafeError(f"Path traversal in archive: {name}", path=name)
        if len(name) > 1 and name[1] == ":":
            raise ArchiveUnsafeError(f"Drive-qualified path in archive: {name}", path=name)

        uncompressed = info.file_size
        compressed = info.compress_size

        if uncompressed > limits.max_single_entry_uncompressed_bytes:
            raise ArchiveUnsafeError(
                f"Entry '{name}' uncompressed size {uncompressed} "
                f"exceeds limit {limits.max_single_entry_uncompressed_bytes}",
                path=name,
            )

        total_uncompressed += uncompressed

        if compressed > 0 and uncompressed / compressed > limits.max_compression_ratio:
            raise ArchiveUnsafeError(
                f"Entry '{name}' compression ratio {uncompressed / compressed:.1f} "
                f"exceeds limit {limits.max_compression_ratio}",
                path=name,
            )

    if total_uncompressed > limits.max_total_uncompressed_bytes:
        raise ArchiveUnsafeError(
            f"Total uncompressed {total_uncompressed} "
            f"exceeds limit {limits.max_total_uncompressed_bytes}"
        )


class ZipArchiveSource(ArchiveSource):
    """Archive source over a zip container.

    Accepts a filesystem path, a binary file object, or the container bytes.
    Reads are serialized through a lock because ZipFile shares one underlying
    file handle between readers.
    """

    def __init__(
        self,
        source: str | os.PathLike | BinaryIO | bytes,
        *,
        safety: ArchiveSafetyLimits | None = None,
        name: str | None = None,
    ):
        if isinstance(source, (bytes, bytearray)):
            source = io.BytesIO(source)
            default_name = None
        elif isinstance(source, (str, os.PathLike)):
            default_name = os.fspath(source)
        else:
            default_name = getattr(source, "name", None)

        try:
            self._zf = zipfile.ZipFile(source)
        except (zipfile.BadZipFile, OSError) as exc:
            raise InvalidArchiveError(f"Invalid ZIP: {exc}") from exc

        if safety is not None:
            try:
                check_archive_safety(self._zf, safety)
            except ArchiveUnsafeError as exc:
                logger.warning("epub.archive.unsafe", error_message=exc.message)
                self._zf.close()
                raise

        self._name = name or (str(default_name) if default_name else None)
        self._lock = threading.Lock()
        self._entries = frozenset(
            info.filename for info in self._zf.infolist() if not info.is_dir()
        )
        self._first_entry = self._zf.infolist()[0] if self._zf.infolist() else None

    @property
    def name(self) -> str | None:
        return self._name

    def open_entry(self, path: str) -> bytes:
        if path not in self._entries:
            raise MissingEntryError(path)
        with self._lock:
            try:
                return self._zf.read(path)
            except (zipfile.BadZipFile, zipfile.LargeZipFile, OSError) as exc:
                raise InvalidArchiveError(f"Cannot read entry '{path}': {exc}") from exc

    def list_entries(self) -> frozenset[str]:
        return self._entries

    @property
    def mimetype_is_first_and_stored(self) -> bool:
        """Whether ``mimetype`` is the first entry and stored uncompressed."""
        first = self._first_entry
        return (
            first is not None
            and first.filename == "mimetype"
            and first.compress_type == zipfile.ZIP_STORED
        )

    def close(self) -> None:
        with self._lock:
            self._zf.close()

    def __enter__(self) -> ZipArchiveSource:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class InMemoryArchiveSource(ArchiveSource):
    """Archive source over a mapping of path to bytes.

    Useful for already-extracted containers and for tests.
    """

    def __init__(self, entries: Mapping[str, bytes | str], name: str | None = None):
        self._entries: dict[str, bytes] = {
            path: content.encode("utf-8") if isinstance(content, str) else bytes(content)
            for path, content in entries.items()
        }
        self._paths = frozenset(self._entries)
        self._name = name

    @property
    def name(self) -> str | None:
        return self._name

    def open_entry(self, path: str) -> bytes:
        try:
            return self._entries[path]
        except KeyError:
            raise MissingEntryError(path) from None

    def list_entries(self) -> frozenset[str]:
        return self._paths
