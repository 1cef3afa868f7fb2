"""Shared type definitions for the parsing pipeline.

Every type here is a frozen dataclass. Sequences are tuples and mappings are
read-only views, so a parsed Book and all its intermediates can be shared
between threads without copying.

Ownership is a pure tree:
- ManifestItem: owned by the package document, keyed by id
- SpineItem: references a manifest item by idref
- TocEntry: references a manifest item by resolved archive path
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING

from epubkit.errors import MissingEntryError
from epubkit.storage.paths import is_remote

if TYPE_CHECKING:
    from epubkit.storage.archive import ArchiveSource

OEBPS_PACKAGE_MEDIA_TYPE = "application/oebps-package+xml"
NCX_MEDIA_TYPE = "application/x-dtbncx+xml"
XHTML_MEDIA_TYPE = "application/xhtml+xml"
EPUB_MIMETYPE = "application/epub+zip"

CORE_MEDIA_TYPES = frozenset(
    {
        # images
        "image/gif",
        "image/jpeg",
        "image/png",
        "image/svg+xml",
        "image/webp",
        # audio / video
        "audio/mpeg",
        "audio/mp4",
        "audio/ogg; codecs=opus",
        "video/mp4",
        # style
        "text/css",
        # fonts
        "font/ttf",
        "font/otf",
        "font/woff",
        "font/woff2",
        "application/font-sfnt",
        "application/vnd.ms-opentype",
        "application/font-woff",
        # other
        XHTML_MEDIA_TYPE,
        "application/javascript",
        "application/ecmascript",
        "text/javascript",
        NCX_MEDIA_TYPE,
        "application/smil+xml",
        "application/pls+xml",
    }
)

_EMPTY_MAPPING: Mapping = MappingProxyType({})


def frozen_mapping(data: Mapping | None = None) -> Mapping:
    """Wrap a dict in a read-only view."""
    if not data:
        return _EMPTY_MAPPING
    return MappingProxyType(dict(data))


class WarningCode(str, Enum):
    """Codes for the enumerated, non-fatal fallbacks."""

    MIMETYPE_MISSING = "W_MIMETYPE_MISSING"
    MIMETYPE_MISMATCH = "W_MIMETYPE_MISMATCH"
    MIMETYPE_NOT_FIRST_OR_COMPRESSED = "W_MIMETYPE_NOT_FIRST_OR_COMPRESSED"
    ROOTFILE_WITHOUT_PATH = "W_ROOTFILE_WITHOUT_PATH"
    ROOTFILE_MEDIA_TYPE_FALLBACK = "W_ROOTFILE_MEDIA_TYPE_FALLBACK"
    METADATA_MISSING = "W_METADATA_MISSING"
    METADATA_INCOMPLETE = "W_METADATA_INCOMPLETE"
    MANIFEST_ITEM_SKIPPED = "W_MANIFEST_ITEM_SKIPPED"
    MANIFEST_DUPLICATE_PATH = "W_MANIFEST_DUPLICATE_PATH"
    SPINE_ITEM_SKIPPED = "W_SPINE_ITEM_SKIPPED"
    NCX_WITHOUT_TOC_ATTRIBUTE = "W_NCX_WITHOUT_TOC_ATTRIBUTE"
    UNTYPED_NAV = "W_UNTYPED_NAV"
    NO_NAVIGATION = "W_NO_NAVIGATION"
    DANGLING_TOC_TARGET = "W_DANGLING_TOC_TARGET"


@dataclass(frozen=True)
class ParseWarning:
    """A non-fatal, observable deviation from conformant EPUB.

    Attributes:
        code: Which enumerated fallback was taken
        message: Human-readable description
        context: Offending path/id, keyed by name
    """

    code: WarningCode
    message: str
    context: Mapping[str, str] = field(default_factory=frozen_mapping)


# ---------------------------------------------------------------------------
# Container
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Rootfile:
    full_path: str
    media_type: str

    @property
    def is_oebps_package(self) -> bool:
        return self.media_type == OEBPS_PACKAGE_MEDIA_TYPE


@dataclass(frozen=True)
class Container:
    """Parsed META-INF/container.xml."""

    rootfiles: tuple[Rootfile, ...]
    warnings: tuple[ParseWarning, ...] = ()


@dataclass(frozen=True)
class RootfileSelection:
    rootfile: Rootfile
    container: Container
    warnings: tuple[ParseWarning, ...] = ()


# ---------------------------------------------------------------------------
# Package document
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Meta:
    """An EPUB3 ``meta`` element (or EPUB2 ``meta name=... content=...``).

    For EPUB2 meta elements ``property`` holds the ``name`` attribute and
    ``value`` the ``content`` attribute.
    """

    property: str
    value: str
    id: str | None = None
    refines: str | None = None
    scheme: str | None = None
    lang: str | None = None
    dir: str | None = None


@dataclass(frozen=True)
class Link:
    """An EPUB3 metadata ``link`` element."""

    href: str
    rel: tuple[str, ...]
    id: str | None = None
    media_type: str | None = None
    properties: tuple[str, ...] = ()
    refines: str | None = None
    hreflang: str | None = None


@dataclass(frozen=True)
class MetadataEntry:
    """One occurrence of a metadata element.

    Attributes:
        value: Whitespace-normalized text content
        id: The element's id attribute (target of ``refines``)
        lang: xml:lang attribute
        dir: Text direction attribute
        attributes: Remaining attributes keyed by qualified name (e.g. ``opf:role``)
        refinements: ``meta`` elements whose ``refines`` points at this entry
    """

    value: str
    id: str | None = None
    lang: str | None = None
    dir: str | None = None
    attributes: Mapping[str, str] = field(default_factory=frozen_mapping)
    refinements: tuple[Meta, ...] = ()

    def refinement(self, property_name: str) -> str | None:
        """Value of the first refinement with the given property (e.g. ``role``)."""
        for meta in self.refinements:
            if meta.property == property_name:
                return meta.value
        return None


@dataclass(frozen=True)
class Metadata:
    """Bibliographic metadata of a package document.

    ``fields`` maps a Dublin Core element name (``title``, ``identifier``...)
    to every occurrence in declaration order. ``extensions`` does the same for
    unrecognized elements, keyed by qualified name.
    """

    fields: Mapping[str, tuple[MetadataEntry, ...]] = field(default_factory=frozen_mapping)
    extensions: Mapping[str, tuple[MetadataEntry, ...]] = field(default_factory=frozen_mapping)
    metas: tuple[Meta, ...] = ()
    links: tuple[Link, ...] = ()

    def get(self, name: str) -> tuple[MetadataEntry, ...]:
        return self.fields.get(name, ())

    def values(self, name: str) -> list[str]:
        return [entry.value for entry in self.get(name)]

    def first(self, name: str) -> str | None:
        entries = self.get(name)
        return entries[0].value if entries else None

    @property
    def titles(self) -> tuple[MetadataEntry, ...]:
        return self.get("title")

    @property
    def identifiers(self) -> tuple[MetadataEntry, ...]:
        return self.get("identifier")

    @property
    def languages(self) -> tuple[MetadataEntry, ...]:
        return self.get("language")

    @property
    def creators(self) -> tuple[MetadataEntry, ...]:
        return self.get("creator")

    @property
    def title(self) -> str | None:
        return self.first("title")

    @property
    def language(self) -> str | None:
        return self.first("language")

    @property
    def publisher(self) -> str | None:
        return self.first("publisher")

    @property
    def date(self) -> str | None:
        return self.first("date")

    @property
    def modified(self) -> str | None:
        """Value of the top-level ``dcterms:modified`` meta, if any."""
        for meta in self.metas:
            if meta.property == "dcterms:modified" and meta.refines is None:
                return meta.value
        return None

    def meta_values(self, property_name: str) -> list[str]:
        return [m.value for m in self.metas if m.property == property_name]


@dataclass(frozen=True)
class ManifestItem:
    """A publication resource declared in the manifest.

    Attributes:
        id: Unique within the package document
        href: The href as written in the package document
        path: Archive path resolved against the package document's directory
            (the URL itself for remote resources)
        fragment: Fragment identifier of the href, if any
        media_type: Declared media type
        properties: Space-separated ``properties`` tokens
        fallback: id of the fallback manifest item
        media_overlay: id of the media overlay manifest item
    """

    id: str
    href: str
    path: str
    media_type: str
    fragment: str | None = None
    properties: tuple[str, ...] = ()
    fallback: str | None = None
    media_overlay: str | None = None

    @property
    def is_remote(self) -> bool:
        return is_remote(self.path)

    @property
    def is_nav(self) -> bool:
        return "nav" in self.properties

    @property
    def is_cover_image(self) -> bool:
        return "cover-image" in self.properties

    @property
    def is_core_media_type(self) -> bool:
        return self.media_type in CORE_MEDIA_TYPES

    def has_property(self, name: str) -> bool:
        return name in self.properties


@dataclass(frozen=True)
class SpineItem:
    idref: str
    linear: bool = True
    id: str | None = None
    properties: tuple[str, ...] = ()


class NavigationFormat(str, Enum):
    """Which navigation document flavour the package references."""

    NCX = "ncx"
    NAV = "nav"


@dataclass(frozen=True)
class NavigationRef:
    """Manifest reference to the navigation document, chosen once per package."""

    item_id: str
    format: NavigationFormat


@dataclass(frozen=True, eq=False)
class PackageDocument:
    """Everything read from one OPF package document.

    ``nav_item_ids`` lists every manifest item carrying the ``nav`` property,
    so the assembler can reject packages declaring more than one.
    """

    path: str
    metadata: Metadata
    manifest: Mapping[str, ManifestItem]
    spine: tuple[SpineItem, ...]
    navigation: NavigationRef | None = None
    nav_item_ids: tuple[str, ...] = ()
    version: str | None = None
    unique_identifier_ref: str | None = None
    id: str | None = None
    dir: str | None = None
    lang: str | None = None
    prefix: str | None = None
    spine_toc: str | None = None
    page_progression_direction: str | None = None
    warnings: tuple[ParseWarning, ...] = ()


# ---------------------------------------------------------------------------
# Navigation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TocEntry:
    """A node of the table of contents tree.

    The root node has an empty label and no target.

    Attributes:
        label: Display label
        path: Archive path of the target resource (resolved against the
            navigation document's directory)
        fragment: Fragment identifier within the target, if any
        children: Ordered child entries
    """

    label: str = ""
    path: str | None = None
    fragment: str | None = None
    children: tuple[TocEntry, ...] = ()

    @property
    def target(self) -> str | None:
        if self.path is None:
            return None
        if self.fragment:
            return f"{self.path}#{self.fragment}"
        return self.path

    def __iter__(self) -> Iterator[TocEntry]:
        return iter(self.children)

    def walk(self, depth: int = 0) -> Iterator[tuple[int, TocEntry]]:
        """Yield ``(depth, entry)`` for every descendant in document order."""
        stack = [(depth, iter(self.children))]
        while stack:
            level, siblings = stack[-1]
            child = next(siblings, None)
            if child is None:
                stack.pop()
                continue
            yield level, child
            stack.append((level + 1, iter(child.children)))


@dataclass(frozen=True)
class TableOfContents:
    root: TocEntry
    path: str | None = None
    format: NavigationFormat | None = None
    warnings: tuple[ParseWarning, ...] = ()


# ---------------------------------------------------------------------------
# Book
# ---------------------------------------------------------------------------


@dataclass(frozen=True, eq=False)
class Book:
    """The assembled, validated publication.

    The manifest is authoritative; the spine and the TOC only hold keys into
    it. Resource bytes are not part of the Book: read them through the
    archive the Book was parsed from.
    """

    metadata: Metadata
    manifest: Mapping[str, ManifestItem]
    spine: tuple[SpineItem, ...]
    toc: TocEntry
    package: PackageDocument
    rootfile: Rootfile
    navigation: NavigationRef | None = None
    warnings: tuple[ParseWarning, ...] = ()

    @property
    def title(self) -> str | None:
        return self.metadata.title

    @property
    def version(self) -> str | None:
        return self.package.version

    @property
    def unique_identifier(self) -> str | None:
        """The identifier named by the package's unique-identifier attribute.

        Falls back to the first dc:identifier when the reference is absent or
        dangling.
        """
        ref = self.package.unique_identifier_ref
        if ref:
            for entry in self.metadata.identifiers:
                if entry.id == ref:
                    return entry.value
        return self.metadata.first("identifier")

    def get_item(self, item_id: str) -> ManifestItem | None:
        return self.manifest.get(item_id)

    def get_item_by_path(self, path: str) -> ManifestItem | None:
        for item in self.manifest.values():
            if item.path == path:
                return item
        return None

    def items_of_media_type(self, media_type: str) -> list[ManifestItem]:
        return [item for item in self.manifest.values() if item.media_type == media_type]

    def spine_items(self) -> list[ManifestItem]:
        """Manifest items in reading order, including non-linear ones."""
        return [self.manifest[ref.idref] for ref in self.spine]

    def linear_spine_items(self) -> list[ManifestItem]:
        """Manifest items of the default linear reading order."""
        return [self.manifest[ref.idref] for ref in self.spine if ref.linear]

    def iter_toc(self) -> Iterator[tuple[int, TocEntry]]:
        return self.toc.walk()

    @property
    def nav_item(self) -> ManifestItem | None:
        if self.navigation is None:
            return None
        return self.manifest.get(self.navigation.item_id)

    @property
    def cover_item(self) -> ManifestItem | None:
        """EPUB3 ``cover-image`` item, else the EPUB2 ``meta name="cover"`` target."""
        for item in self.manifest.values():
            if item.is_cover_image:
                return item
        for cover_id in self.metadata.meta_values("cover"):
            item = self.manifest.get(cover_id)
            if item is not None:
                return item
        return None

    def read_resource(self, archive: ArchiveSource, item: ManifestItem | str) -> bytes:
        """Read a manifest item's bytes from the archive.

        Args:
            archive: The archive the Book was parsed from
            item: A ManifestItem or its id

        Raises:
            KeyError: If the id is not in the manifest
            MissingEntryError: If the resource is remote or absent from the archive
        """
        if isinstance(item, str):
            item = self.manifest[item]
        if item.is_remote:
            raise MissingEntryError(item.path, f"Remote resource is not in the archive: {item.path}")
        return archive.open_entry(item.path)

    def missing_resources(self, archive: ArchiveSource) -> list[ManifestItem]:
        """In-archive manifest items whose path is absent from the archive."""
        entries = archive.list_entries()
        return [
            item
            for item in self.manifest.values()
            if not item.is_remote and item.path not in entries
        ]
