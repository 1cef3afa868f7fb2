"""EPUB parse error definitions.

All parse errors are defined here with their error codes. Every error carries
the offending path, id or element in ``context`` so it is actionable without
source coordinates.
"""

from enum import Enum
from typing import Any


class EpubErrorCode(str, Enum):
    """Standardized error codes for the parsing pipeline.

    Format: E_CATEGORY_NAME
    """

    # Archive access
    E_MISSING_ENTRY = "E_MISSING_ENTRY"
    E_INVALID_ARCHIVE = "E_INVALID_ARCHIVE"
    E_ARCHIVE_UNSAFE = "E_ARCHIVE_UNSAFE"

    # Document well-formedness
    E_MALFORMED_XML = "E_MALFORMED_XML"
    E_MISSING_REQUIRED_ELEMENT = "E_MISSING_REQUIRED_ELEMENT"

    # Container / package
    E_NO_ROOTFILE = "E_NO_ROOTFILE"
    E_DUPLICATE_MANIFEST_ID = "E_DUPLICATE_MANIFEST_ID"

    # Navigation
    E_UNSUPPORTED_NAVIGATION_FORMAT = "E_UNSUPPORTED_NAVIGATION_FORMAT"

    # Cross-stage validation
    E_INCONSISTENT_REFERENCES = "E_INCONSISTENT_REFERENCES"


class EpubError(Exception):
    """Base exception for EPUB parse errors.

    Attributes:
        code: The error code enum value
        message: Human-readable error message
        context: Offending path/id/element, keyed by name
    """

    def __init__(self, code: EpubErrorCode, message: str, **context: Any):
        self.code = code
        self.message = message
        self.context = context
        super().__init__(message)


class MissingEntryError(EpubError):
    """A named entry does not exist in the archive."""

    def __init__(self, path: str, message: str | None = None):
        self.path = path
        super().__init__(
            EpubErrorCode.E_MISSING_ENTRY,
            message or f"Archive entry not found: {path}",
            path=path,
        )


class InvalidArchiveError(EpubError):
    """The container bytes are not a readable zip archive."""

    def __init__(self, message: str = "Invalid archive"):
        super().__init__(EpubErrorCode.E_INVALID_ARCHIVE, message)


class ArchiveUnsafeError(EpubError):
    """The archive exceeds a configured safety limit."""

    def __init__(self, message: str, path: str | None = None):
        self.path = path
        super().__init__(EpubErrorCode.E_ARCHIVE_UNSAFE, message, path=path)


class MalformedXmlError(EpubError):
    """An archive entry is not well-formed XML."""

    def __init__(self, path: str, detail: str):
        self.path = path
        self.detail = detail
        super().__init__(
            EpubErrorCode.E_MALFORMED_XML,
            f"Malformed XML in {path}: {detail}",
            path=path,
            detail=detail,
        )


class MissingRequiredElementError(EpubError):
    """A document lacks an element it must contain."""

    def __init__(self, element: str, path: str):
        self.element = element
        self.path = path
        super().__init__(
            EpubErrorCode.E_MISSING_REQUIRED_ELEMENT,
            f"Required element <{element}> is missing in {path}",
            element=element,
            path=path,
        )


class NoRootfileError(EpubError):
    """The container descriptor declares no usable rootfile."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(
            EpubErrorCode.E_NO_ROOTFILE,
            f"No rootfile declared in {path}",
            path=path,
        )


class DuplicateManifestIdError(EpubError):
    """Two manifest items share an id."""

    def __init__(self, item_id: str, path: str):
        self.item_id = item_id
        self.path = path
        super().__init__(
            EpubErrorCode.E_DUPLICATE_MANIFEST_ID,
            f"Duplicate manifest id '{item_id}' in {path}",
            item_id=item_id,
            path=path,
        )


class UnsupportedNavigationFormatError(EpubError):
    """The navigation document has no recognizable table of contents."""

    def __init__(self, path: str, nav_format: str):
        self.path = path
        self.nav_format = nav_format
        super().__init__(
            EpubErrorCode.E_UNSUPPORTED_NAVIGATION_FORMAT,
            f"No {nav_format} table of contents found in {path}",
            path=path,
            nav_format=nav_format,
        )


class InconsistentReferencesError(EpubError):
    """A cross-document reference does not resolve."""

    def __init__(self, reference: str, message: str):
        self.reference = reference
        super().__init__(EpubErrorCode.E_INCONSISTENT_REFERENCES, message, reference=reference)
