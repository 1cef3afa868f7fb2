"""Read EPUB containers into a validated, navigable Book.

Usage:
    from epubkit import ZipArchiveSource, parse_book

    with ZipArchiveSource("book.epub") as archive:
        book = parse_book(archive)
        for item in book.linear_spine_items():
            html = book.read_resource(archive, item)
"""

from epubkit.errors import (
    ArchiveUnsafeError,
    DuplicateManifestIdError,
    EpubError,
    EpubErrorCode,
    InconsistentReferencesError,
    InvalidArchiveError,
    MalformedXmlError,
    MissingEntryError,
    MissingRequiredElementError,
    NoRootfileError,
    UnsupportedNavigationFormatError,
)
from epubkit.services import parse_book
from epubkit.storage import (
    ArchiveSafetyLimits,
    ArchiveSource,
    InMemoryArchiveSource,
    ZipArchiveSource,
)
from epubkit.types import (
    Book,
    ManifestItem,
    Metadata,
    MetadataEntry,
    NavigationFormat,
    ParseWarning,
    Rootfile,
    SpineItem,
    TocEntry,
    WarningCode,
)

__all__ = [
    "ArchiveSafetyLimits",
    "ArchiveSource",
    "ArchiveUnsafeError",
    "Book",
    "DuplicateManifestIdError",
    "EpubError",
    "EpubErrorCode",
    "InMemoryArchiveSource",
    "InconsistentReferencesError",
    "InvalidArchiveError",
    "MalformedXmlError",
    "ManifestItem",
    "Metadata",
    "MetadataEntry",
    "MissingEntryError",
    "MissingRequiredElementError",
    "NavigationFormat",
    "NoRootfileError",
    "ParseWarning",
    "Rootfile",
    "SpineItem",
    "TocEntry",
    "UnsupportedNavigationFormatError",
    "WarningCode",
    "ZipArchiveSource",
    "parse_book",
]
