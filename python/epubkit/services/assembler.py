"""Book assembly: the single cross-stage validation gate.

Checks, in order:
1. every spine idref resolves to a manifest id
2. every manifest fallback and media-overlay id resolves to a manifest id
3. every in-archive manifest path is well-formed
4. at most one manifest item is the nav document, and a referenced
   navigation document resolved
5. the spine is not empty
"""

from __future__ import annotations

from collections.abc import Iterable

from epubkit.errors import InconsistentReferencesError
from epubkit.logging import get_logger
from epubkit.storage.paths import is_remote, is_well_formed_path
from epubkit.types import (
    Book,
    PackageDocument,
    ParseWarning,
    RootfileSelection,
    TableOfContents,
    TocEntry,
    WarningCode,
    frozen_mapping,
)

logger = get_logger(__name__)


def assemble_book(
    selection: RootfileSelection,
    package: PackageDocument,
    toc: TableOfContents | None,
    *,
    warnings: Iterable[ParseWarning] = (),
) -> Book:
    """Validate cross-document references and build the immutable Book.

    Args:
        selection: Output of the container resolver.
        package: Output of the package document parser.
        toc: Output of the navigation parser, or None when no navigation
            document was parsed.
        warnings: Additional non-fatal warnings to carry on the Book.

    Raises:
        InconsistentReferencesError: Naming the first offending id or path.
    """
    manifest = package.manifest
    collected = list(warnings) + list(selection.warnings) + list(package.warnings)

    for ref in package.spine:
        if ref.idref not in manifest:
            raise InconsistentReferencesError(
                ref.idref,
                f"Spine itemref '{ref.idref}' does not resolve to a manifest item",
            )

    for item in manifest.values():
        for attribute, ref in (("fallback", item.fallback), ("media-overlay", item.media_overlay)):
            if ref is not None and ref not in manifest:
                raise InconsistentReferencesError(
                    ref,
                    f"Manifest item '{item.id}' names {attribute} '{ref}', "
                    f"which is not a manifest item",
                )

    for item in manifest.values():
        if not item.is_remote and not is_well_formed_path(item.path):
            raise InconsistentReferencesError(
                item.id,
                f"Manifest item '{item.id}' has a malformed path '{item.path}' "
                f"(href '{item.href}')",
            )

    if len(package.nav_item_ids) > 1:
        raise InconsistentReferencesError(
            ", ".join(package.nav_item_ids),
            f"More than one manifest item carries the nav property: "
            f"{', '.join(package.nav_item_ids)}",
        )

    navigation = package.navigation
    if navigation is not None:
        if navigation.item_id not in manifest:
            raise InconsistentReferencesError(
                navigation.item_id,
                f"Navigation document '{navigation.item_id}' is not in the manifest",
            )
        if toc is None:
            raise InconsistentReferencesError(
                navigation.item_id,
                f"Navigation document '{navigation.item_id}' could not be resolved",
            )
    else:
        collected.append(
            ParseWarning(
                code=WarningCode.NO_NAVIGATION,
                message="The package declares no navigation document; the TOC is empty",
                context=frozen_mapping({"path": package.path}),
            )
        )
        logger.warning("epub.assembler.no_navigation", path=package.path)

    if not package.spine:
        raise InconsistentReferencesError(
            "spine", f"The spine of {package.path} contains no items"
        )

    if toc is not None:
        collected.extend(toc.warnings)
        collected.extend(_dangling_toc_targets(toc.root, package))
        toc_root = toc.root
    else:
        toc_root = TocEntry()

    return Book(
        metadata=package.metadata,
        manifest=manifest,
        spine=package.spine,
        toc=toc_root,
        package=package,
        rootfile=selection.rootfile,
        navigation=navigation,
        warnings=tuple(collected),
    )


def _dangling_toc_targets(root: TocEntry, package: PackageDocument) -> list[ParseWarning]:
    """One warning per TOC target path that is not a manifest path."""
    manifest_paths = {item.path for item in package.manifest.values()}
    reported: set[str] = set()
    warnings: list[ParseWarning] = []
    for _depth, entry in root.walk():
        path = entry.path
        if path is None or path in manifest_paths or path in reported:
            continue
        if is_remote(path):
            continue
        reported.add(path)
        warnings.append(
            ParseWarning(
                code=WarningCode.DANGLING_TOC_TARGET,
                message=f"TOC entry '{entry.label}' targets '{path}', which is not in the manifest",
                context=frozen_mapping({"path": path, "label": entry.label}),
            )
        )
    if warnings:
        logger.warning("epub.assembler.dangling_toc_targets", count=len(warnings))
    return warnings
