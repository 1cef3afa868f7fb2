"""XML reading helpers shared by the container, package and navigation parsers.

Parsing is namespace-aware but matching is done on local names, because
real-world EPUBs routinely omit or misspell namespaces on otherwise valid
structures.
"""

from __future__ import annotations

import re
from collections.abc import Iterator
from dataclasses import dataclass, field
from xml.etree import ElementTree as ET

from epubkit.errors import MalformedXmlError

NS = {
    "opf": "http://www.idpf.org/2007/opf",
    "dc": "http://purl.org/dc/elements/1.1/",
    "dcterms": "http://purl.org/dc/terms/",
    "container": "urn:oasis:names:tc:opendocument:xmlns:container",
    "ncx": "http://www.daisy.org/z3986/2005/ncx/",
    "xhtml": "http://www.w3.org/1999/xhtml",
    "epub": "http://www.idpf.org/2007/ops",
    "xml": "http://www.w3.org/XML/1998/namespace",
}

_URI_TO_PREFIX = {uri: prefix for prefix, uri in NS.items()}

XML_LANG = f"{{{NS['xml']}}}lang"
EPUB_TYPE = f"{{{NS['epub']}}}type"

_UTF8_BOM = b"\xef\xbb\xbf"
_UTF16_BOMS = (b"\xff\xfe", b"\xfe\xff")
_WS_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class XmlDocument:
    """A parsed XML entry.

    Attributes:
        path: Archive path the document was read from
        root: Root element
        prefixes: Namespace URI -> prefix, as declared in the document
    """

    path: str
    root: ET.Element
    prefixes: dict[str, str] = field(default_factory=dict)

    def qualified_name(self, tag: str) -> str:
        """``prefix:local`` for a Clark-notation tag, using the document's own prefixes."""
        ns, local = split_tag(tag)
        if not ns:
            return local
        prefix = self.prefixes.get(ns) or _URI_TO_PREFIX.get(ns)
        if prefix:
            return f"{prefix}:{local}"
        return tag


def parse_xml(data: bytes, path: str) -> XmlDocument:
    """Parse raw entry bytes.

    A leading UTF-8 byte-order mark and leading whitespace are tolerated. The
    encoding declared in the XML prolog governs decoding.

    Raises:
        MalformedXmlError: If the bytes are not well-formed XML.
    """
    if data.startswith(_UTF8_BOM):
        data = data[len(_UTF8_BOM) :]
    if not data.startswith(_UTF16_BOMS):
        data = data.lstrip(b" \t\r\n")
    if not data:
        raise MalformedXmlError(path, "document is empty")

    root = None
    prefixes: dict[str, str] = {}
    parser = ET.XMLPullParser(events=("start-ns", "start"))
    try:
        parser.feed(data)
        # the pull parser queues syntax errors and raises them from read_events()
        events = list(parser.read_events())
        parser.close()
        events.extend(parser.read_events())
    except (ET.ParseError, LookupError, ValueError) as exc:
        raise MalformedXmlError(path, str(exc)) from exc

    for event, item in events:
        if event == "start-ns":
            prefix, uri = item
            if prefix:
                prefixes.setdefault(uri, prefix)
        elif root is None:
            root = item

    if root is None:
        raise MalformedXmlError(path, "no root element")
    return XmlDocument(path=path, root=root, prefixes=prefixes)


def split_tag(tag: str) -> tuple[str, str]:
    """Split a Clark-notation tag into (namespace, local name)."""
    if tag.startswith("{"):
        ns, _, local = tag[1:].partition("}")
        return ns, local
    return "", tag


def local_name(el: ET.Element) -> str:
    tag = el.tag if isinstance(el.tag, str) else ""
    return split_tag(tag)[1]


def namespace(el: ET.Element) -> str:
    tag = el.tag if isinstance(el.tag, str) else ""
    return split_tag(tag)[0]


def children(el: ET.Element, name: str) -> Iterator[ET.Element]:
    """Direct children with the given local name."""
    for child in el:
        if local_name(child) == name:
            yield child


def find_child(el: ET.Element, name: str) -> ET.Element | None:
    return next(children(el, name), None)


def find_descendant(el: ET.Element, name: str) -> ET.Element | None:
    for node in el.iter():
        if node is not el and local_name(node) == name:
            return node
    return None


def attr(el: ET.Element, name: str) -> str | None:
    """Attribute value by local name, namespaced or not; blank values are None."""
    value = el.get(name)
    if value is None:
        for key, candidate in el.attrib.items():
            if split_tag(key)[1] == name:
                value = candidate
                break
    if value is None:
        return None
    value = value.strip()
    return value or None


def tokens(value: str | None) -> tuple[str, ...]:
    """Split a space-separated attribute (``properties``, ``rel``...)."""
    if not value:
        return ()
    return tuple(value.split())


def text_content(el: ET.Element) -> str:
    """All descendant text, whitespace collapsed."""
    return _WS_RE.sub(" ", "".join(el.itertext())).strip()
