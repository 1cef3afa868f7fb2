"""Container resolution.

Reads META-INF/container.xml and selects the package document (rootfile) the
rest of the pipeline parses.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence

from epubkit.errors import NoRootfileError
from epubkit.logging import get_logger
from epubkit.storage.archive import ArchiveSource
from epubkit.types import (
    EPUB_MIMETYPE,
    Container,
    ParseWarning,
    Rootfile,
    RootfileSelection,
    WarningCode,
    frozen_mapping,
)
from epubkit.xml import attr, children, find_child, parse_xml

logger = get_logger(__name__)

CONTAINER_PATH = "META-INF/container.xml"
MIMETYPE_PATH = "mimetype"

RootfilePolicy = Callable[[Sequence[Rootfile]], Rootfile | None]


def read_container(archive: ArchiveSource) -> Container:
    """Parse the container descriptor into its ordered rootfile list.

    Raises:
        MissingEntryError: If META-INF/container.xml is absent.
        MalformedXmlError: If it is not well-formed XML.
        NoRootfileError: If no rootfile with a full-path is declared.
    """
    doc = parse_xml(archive.open_entry(CONTAINER_PATH), CONTAINER_PATH)

    rootfiles: list[Rootfile] = []
    warnings: list[ParseWarning] = []

    rootfiles_el = find_child(doc.root, "rootfiles")
    if rootfiles_el is not None:
        for el in children(rootfiles_el, "rootfile"):
            full_path = attr(el, "full-path")
            if full_path is None:
                warnings.append(
                    ParseWarning(
                        code=WarningCode.ROOTFILE_WITHOUT_PATH,
                        message="Skipped rootfile without a full-path attribute",
                        context=frozen_mapping({"path": CONTAINER_PATH}),
                    )
                )
                logger.warning("epub.container.rootfile_without_path")
                continue
            rootfiles.append(
                Rootfile(
                    full_path=full_path.lstrip("/"),
                    media_type=attr(el, "media-type") or "",
                )
            )

    if not rootfiles:
        raise NoRootfileError(CONTAINER_PATH)

    logger.debug("epub.container.read", rootfile_count=len(rootfiles))
    return Container(rootfiles=tuple(rootfiles), warnings=tuple(warnings))


def first_oebps_rootfile(rootfiles: Sequence[Rootfile]) -> Rootfile | None:
    """Default policy: the first rootfile declared as an OEBPS package."""
    for rootfile in rootfiles:
        if rootfile.is_oebps_package:
            return rootfile
    return None


def select_rootfile(
    container: Container,
    policy: RootfilePolicy | None = None,
) -> RootfileSelection:
    """Pick the package document to parse.

    The policy (first OEBPS-typed rootfile by default) is tried first. If it
    returns nothing, the first rootfile is used regardless of its declared
    media type and a ROOTFILE_MEDIA_TYPE_FALLBACK warning is attached.
    """
    if policy is None:
        policy = first_oebps_rootfile

    warnings = list(container.warnings)
    chosen = policy(container.rootfiles)
    if chosen is None:
        chosen = container.rootfiles[0]
        warnings.append(
            ParseWarning(
                code=WarningCode.ROOTFILE_MEDIA_TYPE_FALLBACK,
                message=(
                    f"No rootfile matched the selection policy; using '{chosen.full_path}' "
                    f"declared as '{chosen.media_type}'"
                ),
                context=frozen_mapping(
                    {"path": chosen.full_path, "media_type": chosen.media_type}
                ),
            )
        )
        logger.warning(
            "epub.container.rootfile_fallback",
            rootfile=chosen.full_path,
            media_type=chosen.media_type,
        )

    return RootfileSelection(rootfile=chosen, container=container, warnings=tuple(warnings))


def resolve_rootfile(
    archive: ArchiveSource,
    policy: RootfilePolicy | None = None,
) -> RootfileSelection:
    """read_container() followed by select_rootfile()."""
    return select_rootfile(read_container(archive), policy)


def check_mimetype(archive: ArchiveSource) -> list[ParseWarning]:
    """Opportunistic check of the ``mimetype`` entry. Never fatal."""
    if not archive.has_entry(MIMETYPE_PATH):
        logger.warning("epub.container.mimetype_missing")
        return [
            ParseWarning(
                code=WarningCode.MIMETYPE_MISSING,
                message="The mimetype entry is missing",
                context=frozen_mapping({"path": MIMETYPE_PATH}),
            )
        ]

    warnings: list[ParseWarning] = []
    content = archive.open_entry(MIMETYPE_PATH).decode("ascii", errors="replace").strip()
    if content != EPUB_MIMETYPE:
        logger.warning("epub.container.mimetype_mismatch", mimetype=content[:64])
        warnings.append(
            ParseWarning(
                code=WarningCode.MIMETYPE_MISMATCH,
                message=f"The mimetype entry reads '{content[:64]}', expected '{EPUB_MIMETYPE}'",
                context=frozen_mapping({"path": MIMETYPE_PATH, "mimetype": content[:64]}),
            )
        )

    # None: the source cannot report entry order or compression
    if archive.mimetype_is_first_and_stored is False:
        logger.warning("epub.container.mimetype_not_first_or_compressed")
        warnings.append(
            ParseWarning(
                code=WarningCode.MIMETYPE_NOT_FIRST_OR_COMPRESSED,
                message="The mimetype entry is not the first, uncompressed entry of the archive",
                context=frozen_mapping({"path": MIMETYPE_PATH}),
            )
        )
    return warnings
