"""Archive path resolution utilities.

This module is the single point of logic for turning hrefs found in EPUB
documents into archive paths. Hrefs in package and navigation documents are
URLs relative to the document that contains them; archive paths are what an
ArchiveSource understands.

Path Invariant:
    - No leading slash
    - Forward slashes only
    - No ".." segment after normalization
    - Percent-encoding decoded
"""

import posixpath
import re
from urllib.parse import unquote, urlsplit

_SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*:")
_REMOTE_SCHEMES = ("http", "https")


def document_dir(path: str) -> str:
    """Directory of an archive path ("" for entries at the container root)."""
    return posixpath.dirname(path)


def resolve_href(base_dir: str, href: str) -> tuple[str, str | None]:
    """Resolve an href against the directory of the referencing document.

    Args:
        base_dir: Directory of the document containing the href.
        href: The href as written.

    Returns:
        Tuple of (path, fragment). ``path`` is "" for same-document references
        ("#anchor"). Remote http(s) URLs are returned unchanged (minus the
        fragment). Hrefs with any other scheme are returned as written so that
        is_well_formed_path() rejects them.

    Example:
        >>> resolve_href("OEBPS", "Text/ch%201.xhtml#p3")
        ('OEBPS/Text/ch 1.xhtml', 'p3')
    """
    href = href.strip()
    parts = urlsplit(href)
    fragment = unquote(parts.fragment) or None

    if parts.scheme in _REMOTE_SCHEMES:
        return href.split("#", 1)[0], fragment
    if parts.scheme or parts.netloc:
        return href, fragment

    path = unquote(parts.path)
    if not path:
        return "", fragment

    if path.startswith("/"):
        # container-root-relative
        joined = path.lstrip("/")
    else:
        joined = posixpath.join(base_dir, path) if base_dir else path

    normalized = posixpath.normpath(joined)
    if normalized == ".":
        normalized = ""
    return normalized, fragment


def is_remote(path: str) -> bool:
    return urlsplit(path).scheme in _REMOTE_SCHEMES


def is_well_formed_path(path: str) -> bool:
    """Whether a resolved path can name an entry inside the container.

    Rejects empty paths, absolute paths, paths escaping the container root,
    backslashes, NUL bytes and paths carrying a URL scheme.
    """
    if not path:
        return False
    if path.startswith("/") or "\\" in path or "\x00" in path:
        return False
    if _SCHEME_RE.match(path):
        return False
    return ".." not in path.split("/")
