"""parse_book: the end-to-end parsing pipeline.

Start -> ContainerResolved -> PackageParsed -> NavigationResolved -> Assembled,
with Failed reachable from every state. Stages run in order on the calling
thread; the first error is terminal and propagates unchanged.
"""

from __future__ import annotations

import time
from enum import Enum
from uuid import uuid4

from epubkit.errors import EpubError
from epubkit.logging import clear_parse_context, get_logger, set_parse_context
from epubkit.services.assembler import assemble_book
from epubkit.services.container import RootfilePolicy, check_mimetype, resolve_rootfile
from epubkit.services.navigation import parse_navigation
from epubkit.services.package_document import parse_package_document
from epubkit.storage.archive import ArchiveSource
from epubkit.types import Book, PackageDocument, TableOfContents

logger = get_logger(__name__)


class ParseState(str, Enum):
    START = "start"
    CONTAINER_RESOLVED = "container_resolved"
    PACKAGE_PARSED = "package_parsed"
    NAVIGATION_RESOLVED = "navigation_resolved"
    ASSEMBLED = "assembled"
    FAILED = "failed"


def parse_book(
    archive: ArchiveSource,
    *,
    rootfile_policy: RootfilePolicy | None = None,
) -> Book:
    """Parse an EPUB container into a validated Book.

    Args:
        archive: Source of the container's entries.
        rootfile_policy: Chooses among declared rootfiles. Defaults to the
            first rootfile typed application/oebps-package+xml.

    Returns:
        The assembled Book. Non-fatal deviations are in ``Book.warnings``.

    Raises:
        EpubError: The first error encountered (see epubkit.errors).
    """
    set_parse_context(uuid4().hex, archive.name)
    t_start = time.monotonic()
    state = ParseState.START
    try:
        warnings = check_mimetype(archive)

        selection = resolve_rootfile(archive, rootfile_policy)
        state = ParseState.CONTAINER_RESOLVED
        logger.debug("epub.parse.container_resolved", rootfile=selection.rootfile.full_path)

        package = parse_package_document(archive, selection.rootfile.full_path)
        state = ParseState.PACKAGE_PARSED
        logger.debug("epub.parse.package_parsed", path=package.path)

        toc = _resolve_navigation(archive, package)
        state = ParseState.NAVIGATION_RESOLVED
        logger.debug(
            "epub.parse.navigation_resolved",
            format=package.navigation.format.value if package.navigation else None,
        )

        book = assemble_book(selection, package, toc, warnings=warnings)
        state = ParseState.ASSEMBLED

        logger.info(
            "epub.parse.completed",
            state=state.value,
            version=package.version,
            spine_count=len(book.spine),
            manifest_count=len(book.manifest),
            toc_top_level_count=len(book.toc.children),
            warning_count=len(book.warnings),
            elapsed_ms=int((time.monotonic() - t_start) * 1000),
        )
        return book
    except EpubError as exc:
        logger.warning(
            "epub.parse.failed",
            state=ParseState.FAILED.value,
            failed_after=state.value,
            error_code=exc.code.value,
            error_message=exc.message,
        )
        raise
    finally:
        clear_parse_context()


def _resolve_navigation(
    archive: ArchiveSource,
    package: PackageDocument,
) -> TableOfContents | None:
    """Parse the referenced navigation document.

    Returns None when there is nothing parseable to resolve; the assembler
    decides whether that is an empty TOC or an inconsistency.
    """
    navigation = package.navigation
    if navigation is None:
        return None
    item = package.manifest.get(navigation.item_id)
    if item is None or item.is_remote:
        return None
    return parse_navigation(archive, item.path, navigation.format)
