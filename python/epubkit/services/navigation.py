"""Navigation document parsing.

Builds the table of contents tree from either an EPUB2 NCX document or an
EPUB3 navigation document. The format is decided once, by the package
parser; this module never sniffs it per node.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from xml.etree import ElementTree as ET

from epubkit.errors import UnsupportedNavigationFormatError
from epubkit.logging import get_logger
from epubkit.storage.archive import ArchiveSource
from epubkit.storage.paths import document_dir, resolve_href
from epubkit.types import (
    NavigationFormat,
    ParseWarning,
    TableOfContents,
    TocEntry,
    WarningCode,
    frozen_mapping,
)
from epubkit.xml import (
    XmlDocument,
    attr,
    children,
    find_child,
    find_descendant,
    local_name,
    parse_xml,
    text_content,
    tokens,
)

logger = get_logger(__name__)


def parse_navigation(
    archive: ArchiveSource,
    path: str,
    nav_format: NavigationFormat,
) -> TableOfContents:
    """Read the navigation document at ``path`` and build its TOC tree.

    Hrefs are resolved against the navigation document's own directory.

    Raises:
        MissingEntryError: If the document is absent.
        MalformedXmlError: If it is not well-formed XML.
        UnsupportedNavigationFormatError: If no table of contents structure
            of the expected format is found.
    """
    doc = parse_xml(archive.open_entry(path), path)
    warnings: list[ParseWarning] = []

    if nav_format is NavigationFormat.NCX:
        entries = _parse_ncx(doc)
    else:
        entries = _parse_nav(doc, warnings)

    toc = TableOfContents(
        root=TocEntry(children=tuple(entries)),
        path=path,
        format=nav_format,
        warnings=tuple(warnings),
    )
    logger.debug(
        "epub.navigation.parsed",
        path=path,
        format=nav_format.value,
        top_level_count=len(entries),
    )
    return toc


def _make_entry(
    doc: XmlDocument,
    label: str,
    href: str | None,
    kids: list[TocEntry],
) -> TocEntry | None:
    """None when the node has neither label nor target (its children are lifted)."""
    path = fragment = None
    if href:
        path, fragment = resolve_href(document_dir(doc.path), href)
        if not path:
            # same-document reference
            path = doc.path
    if not label and path is None:
        return None
    return TocEntry(label=label, path=path, fragment=fragment, children=tuple(kids))


NodeReader = Callable[[ET.Element], tuple[str, str | None, list[ET.Element]]]


def _build_entries(
    doc: XmlDocument,
    top: list[ET.Element],
    read_node: NodeReader,
) -> list[TocEntry]:
    """Build TOC entries bottom-up with an explicit stack.

    ``read_node`` returns ``(label, href, child nodes)`` for one node. Nesting
    depth is bounded only by the document, not by the interpreter stack.
    """
    result: list[TocEntry] = []
    # frame: (remaining sibling nodes, entries built for them, pending parent)
    stack: list[tuple[Iterator[ET.Element], list[TocEntry], tuple | None]] = [
        (iter(top), result, None)
    ]
    while stack:
        nodes, built, pending = stack[-1]
        node = next(nodes, None)
        if node is not None:
            label, href, kid_nodes = read_node(node)
            stack.append((iter(kid_nodes), [], (label, href, built)))
            continue

        stack.pop()
        if pending is None:
            continue
        label, href, parent_built = pending
        entry = _make_entry(doc, label, href, built)
        if entry is None:
            parent_built.extend(built)
        else:
            parent_built.append(entry)
    return result


# ---------------------------------------------------------------------------
# EPUB2 NCX
# ---------------------------------------------------------------------------


def _parse_ncx(doc: XmlDocument) -> list[TocEntry]:
    nav_map = find_child(doc.root, "navMap")
    if nav_map is None:
        nav_map = find_descendant(doc.root, "navMap")
    if nav_map is None:
        raise UnsupportedNavigationFormatError(doc.path, NavigationFormat.NCX.value)
    return _build_entries(doc, list(children(nav_map, "navPoint")), _read_navpoint)


def _read_navpoint(np: ET.Element) -> tuple[str, str | None, list[ET.Element]]:
    label = ""
    label_el = find_child(np, "navLabel")
    if label_el is not None:
        text_el = find_child(label_el, "text")
        label = text_content(text_el if text_el is not None else label_el)

    content_el = find_child(np, "content")
    href = attr(content_el, "src") if content_el is not None else None
    return label, href, list(children(np, "navPoint"))


# ---------------------------------------------------------------------------
# EPUB3 nav
# ---------------------------------------------------------------------------


def _is_toc_nav(nav_el: ET.Element) -> bool:
    return "toc" in tokens(attr(nav_el, "type")) or attr(nav_el, "role") == "doc-toc"


def _find_toc_nav(doc: XmlDocument, warnings: list[ParseWarning]) -> ET.Element:
    navs = [el for el in doc.root.iter() if local_name(el) == "nav"]
    for nav_el in navs:
        if _is_toc_nav(nav_el):
            return nav_el

    # a lone, untyped nav is taken as the table of contents
    if len(navs) == 1 and attr(navs[0], "type") is None:
        warnings.append(
            ParseWarning(
                code=WarningCode.UNTYPED_NAV,
                message=f"Using the only <nav> of {doc.path}, which has no epub:type",
                context=frozen_mapping({"path": doc.path}),
            )
        )
        logger.warning("epub.navigation.untyped_nav", path=doc.path)
        return navs[0]

    raise UnsupportedNavigationFormatError(doc.path, NavigationFormat.NAV.value)


def _parse_nav(doc: XmlDocument, warnings: list[ParseWarning]) -> list[TocEntry]:
    toc_nav = _find_toc_nav(doc, warnings)
    ol = find_child(toc_nav, "ol")
    if ol is None:
        ol = find_descendant(toc_nav, "ol")
    if ol is None:
        raise UnsupportedNavigationFormatError(doc.path, NavigationFormat.NAV.value)
    return _build_entries(doc, list(children(ol, "li")), _read_nav_li)


def _read_nav_li(li: ET.Element) -> tuple[str, str | None, list[ET.Element]]:
    label = ""
    href = None
    for el in li:
        name = local_name(el)
        if name == "a":
            label = text_content(el)
            href = attr(el, "href")
            break
        if name == "span":
            label = text_content(el)
            break

    nested = find_child(li, "ol")
    return label, href, list(children(nested, "li")) if nested is not None else []
