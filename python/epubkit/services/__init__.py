"""Parsing pipeline services.

Each stage is independently callable and fails with the same error
taxonomy as parse_book, so callers needing per-stage diagnostics can run
the stages themselves.
"""

from epubkit.services.assembler import assemble_book
from epubkit.services.book import ParseState, parse_book
from epubkit.services.container import (
    check_mimetype,
    first_oebps_rootfile,
    read_container,
    resolve_rootfile,
    select_rootfile,
)
from epubkit.services.navigation import parse_navigation
from epubkit.services.package_document import parse_package_document

__all__ = [
    "ParseState",
    "assemble_book",
    "check_mimetype",
    "first_oebps_rootfile",
    "parse_book",
    "parse_navigation",
    "parse_package_document",
    "read_container",
    "resolve_rootfile",
    "select_rootfile",
]
