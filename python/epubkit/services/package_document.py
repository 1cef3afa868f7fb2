"""Package document (OPF) parsing.

Extracts metadata, manifest, spine and the navigation reference from one
package document. Only the document's own well-formedness is validated here;
cross-references (spine -> manifest, nav -> manifest) are checked by the
assembler.
"""

from __future__ import annotations

from collections import defaultdict
from xml.etree import ElementTree as ET

from epubkit.errors import DuplicateManifestIdError, MissingRequiredElementError
from epubkit.logging import get_logger
from epubkit.storage.archive import ArchiveSource
from epubkit.storage.paths import document_dir, resolve_href
from epubkit.types import (
    NCX_MEDIA_TYPE,
    Link,
    ManifestItem,
    Meta,
    Metadata,
    MetadataEntry,
    NavigationFormat,
    NavigationRef,
    PackageDocument,
    ParseWarning,
    SpineItem,
    WarningCode,
    frozen_mapping,
)
from epubkit.xml import (
    NS,
    XML_LANG,
    XmlDocument,
    attr,
    children,
    find_child,
    local_name,
    namespace,
    parse_xml,
    text_content,
    tokens,
)

logger = get_logger(__name__)

DC_ELEMENTS = frozenset(
    {
        "contributor",
        "coverage",
        "creator",
        "date",
        "description",
        "format",
        "identifier",
        "language",
        "publisher",
        "relation",
        "rights",
        "source",
        "subject",
        "title",
        "type",
    }
)

# OEB 1.x wrappers still found in old EPUB2 files
_LEGACY_METADATA_WRAPPERS = frozenset({"dc-metadata", "x-metadata"})
_OPF_NAMESPACES = frozenset({"", NS["opf"]})
_ENTRY_CORE_ATTRS = frozenset({"id", "dir", XML_LANG})


def parse_package_document(archive: ArchiveSource, rootfile_path: str) -> PackageDocument:
    """Read and parse the package document at ``rootfile_path``.

    Raises:
        MissingEntryError: If the package document is absent.
        MalformedXmlError: If it is not well-formed XML.
        MissingRequiredElementError: If the root is not <package> or
            <manifest>/<spine> is missing.
        DuplicateManifestIdError: If two manifest items share an id.
    """
    doc = parse_xml(archive.open_entry(rootfile_path), rootfile_path)
    return parse_package_xml(doc)


def parse_package_xml(doc: XmlDocument) -> PackageDocument:
    root = doc.root
    if local_name(root) != "package":
        raise MissingRequiredElementError("package", doc.path)

    manifest_el = find_child(root, "manifest")
    if manifest_el is None:
        raise MissingRequiredElementError("manifest", doc.path)
    spine_el = find_child(root, "spine")
    if spine_el is None:
        raise MissingRequiredElementError("spine", doc.path)

    warnings: list[ParseWarning] = []
    base_dir = document_dir(doc.path)

    metadata_el = find_child(root, "metadata")
    if metadata_el is None:
        _warn(
            warnings,
            WarningCode.METADATA_MISSING,
            f"No <metadata> element in {doc.path}",
            path=doc.path,
        )
        metadata = Metadata()
    else:
        metadata = _parse_metadata(doc, metadata_el, base_dir)
        _check_required_metadata(doc, metadata, attr(root, "version"), warnings)

    manifest =_parse_manifest(doc, manifest_el, base_dir, warnings)
    spine = _parse_spine(doc, spine_el, warnings)

    spine_toc = attr(spine_el, "toc")
    nav_item_ids = tuple(item.id for item in manifest.values() if item.is_nav)
    navigation = _identify_navigation(doc, manifest, nav_item_ids, spine_toc, warnings)

    package = PackageDocument(
        path=doc.path,
        metadata=metadata,
        manifest=frozen_mapping(manifest),
        spine=tuple(spine),
        navigation=navigation,
        nav_item_ids=nav_item_ids,
        version=attr(root, "version"),
        unique_identifier_ref=attr(root, "unique-identifier"),
        id=root.get("id"),
        dir=root.get("dir"),
        lang=root.get(XML_LANG),
        prefix=attr(root, "prefix"),
        spine_toc=spine_toc,
        page_progression_direction=attr(spine_el, "page-progression-direction"),
        warnings=tuple(warnings),
    )

    logger.debug(
        "epub.package.parsed",
        path=doc.path,
        version=package.version,
        manifest_count=len(manifest),
        spine_count=len(spine),
        navigation=navigation.format.value if navigation else None,
    )
    return package


def _warn(warnings: list[ParseWarning], code: WarningCode, message: str, **context: str) -> None:
    warnings.append(ParseWarning(code=code, message=message, context=frozen_mapping(context)))
    logger.warning("epub.package.fallback", warning_code=code.value, **context)


# ---------------------------------------------------------------------------
# Metadata
# ---------------------------------------------------------------------------


def _metadata_elements(metadata_el: ET.Element):
    for el in metadata_el:
        if local_name(el) in _LEGACY_METADATA_WRAPPERS:
            yield from _metadata_elements(el)
        else:
            yield el


def _check_required_metadata(
    doc: XmlDocument,
    metadata: Metadata,
    version: str | None,
    warnings: list[ParseWarning],
) -> None:
    """Warn when title, language or identifier (or, for EPUB 3, dcterms:modified) is absent."""
    missing = [f"dc:{name}" for name in ("title", "language", "identifier") if not metadata.get(name)]
    if (version or "").startswith("3") and metadata.modified is None:
        missing.append("dcterms:modified")
    if missing:
        _warn(
            warnings,
            WarningCode.METADATA_INCOMPLETE,
            f"Metadata of {doc.path} lacks {', '.join(missing)}",
            path=doc.path,
            missing=", ".join(missing),
        )


def _parse_metadata(doc: XmlDocument, metadata_el: ET.Element, base_dir: str) -> Metadata:
    metas: list[Meta] = []
    links: list[Link] = []
    elements: list[ET.Element] = []

    for el in _metadata_elements(metadata_el):
        name = local_name(el)
        if name == "meta" and namespace(el) in _OPF_NAMESPACES:
            meta = _parse_meta(el)
            if meta is not None:
                metas.append(meta)
        elif name == "link" and namespace(el) in _OPF_NAMESPACES:
            link = _parse_link(el, base_dir)
            if link is not None:
                links.append(link)
        else:
            elements.append(el)

    refinements: dict[str, list[Meta]] = defaultdict(list)
    for meta in metas:
        if meta.refines and meta.refines.startswith("#"):
            refinements[meta.refines[1:]].append(meta)

    fields: dict[str, list[MetadataEntry]] = defaultdict(list)
    extensions: dict[str, list[MetadataEntry]] = defaultdict(list)

    for el in elements:
        entry = _parse_entry(doc, el, refinements)
        name = local_name(el).lower()
        if namespace(el) == NS["dc"] and name in DC_ELEMENTS:
            fields[name].append(entry)
        else:
            extensions[doc.qualified_name(el.tag)].append(entry)

    return Metadata(
        fields=frozen_mapping({k: tuple(v) for k, v in fields.items()}),
        extensions=frozen_mapping({k: tuple(v) for k, v in extensions.items()}),
        metas=tuple(metas),
        links=tuple(links),
    )


def _parse_entry(
    doc: XmlDocument,
    el: ET.Element,
    refinements: dict[str, list[Meta]],
) -> MetadataEntry:
    entry_id = attr(el, "id")
    extra = {
        doc.qualified_name(key): value
        for key, value in el.attrib.items()
        if key not in _ENTRY_CORE_ATTRS
    }
    return MetadataEntry(
        value=text_content(el),
        id=entry_id,
        lang=el.get(XML_LANG),
        dir=el.get("dir"),
        attributes=frozen_mapping(extra),
        refinements=tuple(refinements.get(entry_id, ())) if entry_id else (),
    )


def _parse_meta(el: ET.Element) -> Meta | None:
    prop = attr(el, "property")
    if prop is not None:
        value = text_content(el)
    else:
        # EPUB2: <meta name="cover" content="cover-image"/>
        prop = attr(el, "name")
        value = (el.get("content") or "").strip()
    if prop is None:
        return None
    return Meta(
        property=prop,
        value=value,
        id=attr(el, "id"),
        refines=attr(el, "refines"),
        scheme=attr(el, "scheme"),
        lang=el.get(XML_LANG),
        dir=el.get("dir"),
    )


def _parse_link(el: ET.Element, base_dir: str) -> Link | None:
    href = attr(el, "href")
    if href is None:
        return None
    path, fragment = resolve_href(base_dir, href)
    return Link(
        href=f"{path}#{fragment}" if fragment else path,
        rel=tokens(el.get("rel")),
        id=attr(el, "id"),
        media_type=attr(el, "media-type"),
        properties=tokens(el.get("properties")),
        refines=attr(el, "refines"),
        hreflang=attr(el, "hreflang"),
    )


# ---------------------------------------------------------------------------
# Manifest / Spine
# ---------------------------------------------------------------------------


def _parse_manifest(
    doc: XmlDocument,
    manifest_el: ET.Element,
    base_dir: str,
    warnings: list[ParseWarning],
) -> dict[str, ManifestItem]:
    """Return {manifest_id: ManifestItem} in declaration order."""
    manifest: dict[str, ManifestItem] = {}
    seen_paths: dict[str, str] = {}

    for el in children(manifest_el, "item"):
        item_id = attr(el, "id")
        href = attr(el, "href")
        if item_id is None or href is None:
            _warn(
                warnings,
                WarningCode.MANIFEST_ITEM_SKIPPED,
                f"Skipped manifest item without {'id' if item_id is None else 'href'}",
                path=doc.path,
                item_id=item_id or "",
                href=href or "",
            )
            continue
        if item_id in manifest:
            raise DuplicateManifestIdError(item_id, doc.path)

        path, fragment = resolve_href(base_dir, href)
        if path in seen_paths:
            _warn(
                warnings,
                WarningCode.MANIFEST_DUPLICATE_PATH,
                f"Manifest items '{seen_paths[path]}' and '{item_id}' share path '{path}'",
                path=path,
                item_id=item_id,
            )
        else:
            seen_paths[path] = item_id

        manifest[item_id] = ManifestItem(
            id=item_id,
            href=href,
            path=path,
            fragment=fragment,
            media_type=attr(el, "media-type") or "",
            properties=tokens(el.get("properties")),
            fallback=attr(el, "fallback"),
            media_overlay=attr(el, "media-overlay"),
        )
    return manifest


def _parse_spine(
    doc: XmlDocument,
    spine_el: ET.Element,
    warnings: list[ParseWarning],
) -> list[SpineItem]:
    """Spine references verbatim: no dedup, no reorder, non-linear kept."""
    spine: list[SpineItem] = []
    for position, el in enumerate(children(spine_el, "itemref")):
        idref = attr(el, "idref")
        if idref is None:
            _warn(
                warnings,
                WarningCode.SPINE_ITEM_SKIPPED,
                f"Skipped spine itemref #{position} without idref",
                path=doc.path,
            )
            continue
        linear = (attr(el, "linear") or "yes").lower() != "no"
        spine.append(
            SpineItem(
                idref=idref,
                linear=linear,
                id=attr(el, "id"),
                properties=tokens(el.get("properties")),
            )
        )
    return spine


# ---------------------------------------------------------------------------
# Navigation reference
# ---------------------------------------------------------------------------


def _identify_navigation(
    doc: XmlDocument,
    manifest: dict[str, ManifestItem],
    nav_item_ids: tuple[str, ...],
    spine_toc: str | None,
    warnings: list[ParseWarning],
) -> NavigationRef | None:
    """EPUB3 nav item first, then the spine's toc attribute, then a lone NCX item."""
    if nav_item_ids:
        return NavigationRef(item_id=nav_item_ids[0], format=NavigationFormat.NAV)

    if spine_toc is not None:
        return NavigationRef(item_id=spine_toc, format=NavigationFormat.NCX)

    ncx_ids = [item.id for item in manifest.values() if item.media_type == NCX_MEDIA_TYPE]
    if len(ncx_ids) == 1:
        _warn(
            warnings,
            WarningCode.NCX_WITHOUT_TOC_ATTRIBUTE,
            f"Spine has no toc attribute; using NCX manifest item '{ncx_ids[0]}'",
            path=doc.path,
            item_id=ncx_ids[0],
        )
        return NavigationRef(item_id=ncx_ids[0], format=NavigationFormat.NCX)

    return None
