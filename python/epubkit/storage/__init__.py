"""Archive access for EPUB containers."""

from epubkit.storage.archive import (
    ArchiveSafetyLimits,
    ArchiveSource,
    InMemoryArchiveSource,
    ZipArchiveSource,
    check_archive_safety,
)

__all__ = [
    "ArchiveSafetyLimits",
    "ArchiveSource",
    "InMemoryArchiveSource",
    "ZipArchiveSource",
    "check_archive_safety",
]
