"""End-to-end tests for parse_book.

Covers the pipeline from container to assembled Book over both EPUB2 NCX
and EPUB3 nav variants, using in-memory archives and real zip containers.
"""

from concurrent.futures import ThreadPoolExecutor

import pytest

from epubkit import (
    DuplicateManifestIdError,
    InconsistentReferencesError,
    MissingEntryError,
    NoRootfileError,
    ZipArchiveSource,
    parse_book,
)
from epubkit.errors import EpubErrorCode
from epubkit.types import NavigationFormat, WarningCode
from tests.factories import (
    OPF_MEDIA_TYPE,
    build_chapter_xhtml,
    build_container,
    build_epub3_nav,
    build_ncx,
    build_opf,
    make_archive,
    make_epub,
    minimal_book_files,
)


def _three_chapter_items():
    return [
        ("ch1", "chapter1.xhtml", "application/xhtml+xml"),
        ("ch2", "chapter2.xhtml", "application/xhtml+xml"),
        ("ch3", "chapter3.xhtml", "application/xhtml+xml"),
    ]


def _chapter_files():
    return {f"OEBPS/chapter{i}.xhtml": build_chapter_xhtml(f"<p>Chapter {i}</p>") for i in (1, 2, 3)}


class TestMinimalArchive:
    """container.xml -> content.opf, one item, one itemref, no nav."""

    def test_minimal_book_parses(self):
        book = parse_book(make_archive(minimal_book_files()))

        assert len(book.spine) == 1
        assert book.spine[0].idref == "ch1"
        assert book.toc.children == ()
        assert book.navigation is None

    def test_missing_navigation_is_a_warning_not_a_failure(self):
        book = parse_book(make_archive(minimal_book_files()))

        codes = [w.code for w in book.warnings]
        assert WarningCode.NO_NAVIGATION in codes

    def test_manifest_paths_resolve_against_package_dir(self):
        book = parse_book(make_archive(minimal_book_files()))

        assert book.manifest["ch1"].path == "OEBPS/chapter1.xhtml"
        assert book.spine_items()[0].path == "OEBPS/chapter1.xhtml"

    def test_metadata_accessors(self):
        book = parse_book(make_archive(minimal_book_files()))

        assert book.title == "Test Book"
        assert book.unique_identifier == "urn:uuid:12345"
        assert book.metadata.language == "en"
        assert book.version == "3.0"


class TestSpineReferences:
    def test_every_spine_idref_resolves(self):
        opf = build_opf(_three_chapter_items())
        book = parse_book(make_archive({"OEBPS/content.opf": opf, **_chapter_files()}))

        for ref in book.spine:
            assert ref.idref in book.manifest

    def test_spine_order_is_preserved(self):
        opf = build_opf(_three_chapter_items(), spine_idrefs=["ch3", "ch1", "ch2"])
        book = parse_book(make_archive({"OEBPS/content.opf": opf, **_chapter_files()}))

        assert [ref.idref for ref in book.spine] == ["ch3", "ch1", "ch2"]

    def test_reordering_changes_order_not_membership(self):
        forward = parse_book(
            make_archive({"OEBPS/content.opf": build_opf(_three_chapter_items()), **_chapter_files()})
        )
        backward = parse_book(
            make_archive(
                {
                    "OEBPS/content.opf": build_opf(
                        _three_chapter_items(), spine_idrefs=["ch3", "ch2", "ch1"]
                    ),
                    **_chapter_files(),
                }
            )
        )

        assert sorted(r.idref for r in forward.spine) == sorted(r.idref for r in backward.spine)
        assert [r.idref for r in backward.spine] == list(reversed([r.idref for r in forward.spine]))

    def test_non_linear_items_are_kept(self):
        opf = build_opf(
            _three_chapter_items(),
            spine_idrefs=["ch1", "ch2"],
            spine_extra='    <itemref idref="ch3" linear="no"/>',
        )
        book = parse_book(make_archive({"OEBPS/content.opf": opf, **_chapter_files()}))

        assert [r.idref for r in book.spine] == ["ch1", "ch2", "ch3"]
        assert book.spine[2].linear is False
        assert [i.id for i in book.linear_spine_items()] == ["ch1", "ch2"]

    def test_dangling_spine_idref_fails(self):
        opf = build_opf(spine_idrefs=["ch1", "ghost"])
        with pytest.raises(InconsistentReferencesError) as exc_info:
            parse_book(make_archive(minimal_book_files(opf)))

        assert exc_info.value.reference == "ghost"
        assert exc_info.value.code == EpubErrorCode.E_INCONSISTENT_REFERENCES


class TestFailures:
    def test_zero_rootfiles_fails(self):
        archive = make_archive(minimal_book_files(), container=build_container([]))
        with pytest.raises(NoRootfileError):
            parse_book(archive)

    def test_rootfile_pointing_at_missing_package_fails(self):
        archive = make_archive(
            {"OEBPS/chapter1.xhtml": build_chapter_xhtml()},
            container=build_container([("OEBPS/missing.opf", OPF_MEDIA_TYPE)]),
        )
        with pytest.raises(MissingEntryError) as exc_info:
            parse_book(archive)

        assert exc_info.value.path == "OEBPS/missing.opf"

    def test_duplicate_manifest_id_fails_naming_the_id(self):
        opf = build_opf(
            [
                ("ch1", "chapter1.xhtml", "application/xhtml+xml"),
                ("ch1", "chapter2.xhtml", "application/xhtml+xml"),
            ],
            spine_idrefs=["ch1"],
        )
        with pytest.raises(DuplicateManifestIdError) as exc_info:
            parse_book(make_archive(minimal_book_files(opf)))

        assert exc_info.value.item_id == "ch1"
        assert "ch1" in str(exc_info.value)

    def test_failure_is_logged(self, log_sink):
        archive = make_archive(minimal_book_files(), container=build_container([]))
        with pytest.raises(NoRootfileError):
            parse_book(archive)

        failed = [e for e in log_sink if e["event"] == "epub.parse.failed"]
        assert len(failed) == 1
        assert failed[0]["error_code"] == "E_NO_ROOTFILE"
        assert failed[0]["failed_after"] == "start"


    def test_transitions_are_logged(self, log_sink):
        parse_book(make_archive(minimal_book_files()))

        events = [e["event"] for e in log_sink if e["event"].startswith("epub.parse.")]
        assert events == [
            "epub.parse.container_resolved",
            "epub.parse.package_parsed",
            "epub.parse.navigation_resolved",
            "epub.parse.completed",
        ]


class TestNavigationVariants:
    def test_epub3_nav_toc(self):
        opf = build_opf(
            [
                ("nav", "nav.xhtml", "application/xhtml+xml"),
                ("ch1", "chapter1.xhtml", "application/xhtml+xml"),
                ("ch2", "chapter2.xhtml", "application/xhtml+xml"),
            ],
            spine_idrefs=["ch1", "ch2"],
            nav_id="nav",
        )
        nav = build_epub3_nav(
            [("One", "chapter1.xhtml"), ("Two", "chapter2.xhtml#s1", [("Two.A", "chapter2.xhtml#a")])]
        )
        book = parse_book(
            make_archive(
                {
                    "OEBPS/content.opf": opf,
                    "OEBPS/nav.xhtml": nav,
                    "OEBPS/chapter1.xhtml": build_chapter_xhtml(),
                    "OEBPS/chapter2.xhtml": build_chapter_xhtml(),
                }
            )
        )

        assert book.navigation.format is NavigationFormat.NAV
        assert book.nav_item.id == "nav"
        assert [e.label for e in book.toc.children] == ["One", "Two"]
        assert book.toc.children[1].target == "OEBPS/chapter2.xhtml#s1"
        assert book.toc.children[1].children[0].label == "Two.A"
        assert [(d, e.label) for d, e in book.iter_toc()] == [(0, "One"), (0, "Two"), (1, "Two.A")]

    def test_epub2_ncx_toc(self):
        opf = build_opf(
            [*_three_chapter_items()[:2], ("ncx", "toc.ncx", "application/x-dtbncx+xml")],
            ncx_id="ncx",
            version="2.0",
        )
        ncx = build_ncx(
            [
                ("np1", "One", "chapter1.xhtml"),
                ("np2", "Two", "chapter2.xhtml", [("np3", "Two.A", "chapter2.xhtml#a")]),
            ]
        )
        book = parse_book(
            make_archive(
                {
                    "OEBPS/content.opf": opf,
                    "OEBPS/toc.ncx": ncx,
                    "OEBPS/chapter1.xhtml": build_chapter_xhtml(),
                    "OEBPS/chapter2.xhtml": build_chapter_xhtml(),
                }
            )
        )

        assert book.navigation.format is NavigationFormat.NCX
        assert [e.label for e in book.toc.children] == ["One", "Two"]
        assert book.toc.children[1].children[0].fragment == "a"
        assert WarningCode.NO_NAVIGATION not in [w.code for w in book.warnings]

    def test_referenced_but_missing_nav_document_fails(self):
        opf = build_opf(
            [
                ("nav", "nav.xhtml", "application/xhtml+xml"),
                ("ch1", "chapter1.xhtml", "application/xhtml+xml"),
            ],
            spine_idrefs=["ch1"],
            nav_id="nav",
        )
        with pytest.raises(MissingEntryError) as exc_info:
            parse_book(make_archive(minimal_book_files(opf)))

        assert exc_info.value.path == "OEBPS/nav.xhtml"

    def test_spine_toc_attribute_naming_unknown_item_fails(self):
        opf = build_opf(ncx_id=None, spine_attrs=' toc="nope"')
        with pytest.raises(InconsistentReferencesError) as exc_info:
            parse_book(make_archive(minimal_book_files(opf)))

        assert exc_info.value.reference == "nope"


class TestRootfilePolicy:
    def test_media_type_fallback_surfaces_warning(self):
        archive = make_archive(
            minimal_book_files(),
            container=build_container([("OEBPS/content.opf", "text/xml")]),
        )
        book = parse_book(archive)

        assert book.rootfile.full_path == "OEBPS/content.opf"
        assert WarningCode.ROOTFILE_MEDIA_TYPE_FALLBACK in [w.code for w in book.warnings]

    def test_caller_policy_picks_another_rendition(self):
        files = minimal_book_files()
        files["OEBPS/alt.opf"] = build_opf(
            [("alt1", "chapter1.xhtml", "application/xhtml+xml")]
        )
        archive = make_archive(
            files,
            container=build_container(
                [("OEBPS/content.opf", OPF_MEDIA_TYPE), ("OEBPS/alt.opf", OPF_MEDIA_TYPE)]
            ),
        )

        default = parse_book(archive)
        chosen = parse_book(archive, rootfile_policy=lambda rootfiles: rootfiles[-1])

        assert default.spine[0].idref == "ch1"
        assert chosen.spine[0].idref == "alt1"
        assert chosen.rootfile.full_path == "OEBPS/alt.opf"


class TestZipContainer:
    def test_parse_from_zip_bytes(self):
        data = make_epub(minimal_book_files())
        with ZipArchiveSource(data) as archive:
            book = parse_book(archive)
            chapter = book.read_resource(archive, "ch1")

        assert len(book.spine) == 1
        assert b"<p>Text</p>" in chapter

    def test_missing_mimetype_is_tolerated(self):
        archive = make_archive(minimal_book_files(), mimetype=None)
        book = parse_book(archive)

        assert WarningCode.MIMETYPE_MISSING in [w.code for w in book.warnings]

    def test_mimetype_written_last_and_deflated_is_a_warning(self, log_sink):
        data = make_epub(minimal_book_files(), mimetype_first=False)
        with ZipArchiveSource(data) as archive:
            book = parse_book(archive)

        codes = [w.code for w in book.warnings]
        assert WarningCode.MIMETYPE_NOT_FIRST_OR_COMPRESSED in codes
        assert WarningCode.MIMETYPE_MISMATCH not in codes
        assert "epub.container.mimetype_not_first_or_compressed" in [e["event"] for e in log_sink]

    def test_well_laid_out_zip_has_no_mimetype_warning(self):
        with ZipArchiveSource(make_epub(minimal_book_files())) as archive:
            book = parse_book(archive)

        assert WarningCode.MIMETYPE_NOT_FIRST_OR_COMPRESSED not in [w.code for w in book.warnings]

    def test_in_memory_archive_skips_layout_check(self):
        book = parse_book(make_archive(minimal_book_files()))

        assert WarningCode.MIMETYPE_NOT_FIRST_OR_COMPRESSED not in [w.code for w in book.warnings]

    def test_missing_resources_checked_lazily(self):
        opf = build_opf(
            [
                ("ch1", "chapter1.xhtml", "application/xhtml+xml"),
                ("img", "images/cover.png", "image/png"),
            ]
        )
        book = parse_book(make_archive(minimal_book_files(opf)))

        archive = make_archive(minimal_book_files(opf))
        assert [item.id for item in book.missing_resources(archive)] == ["img"]


class TestConcurrentUse:
    def test_parallel_parses_share_archive(self):
        archive = ZipArchiveSource(make_epub(minimal_book_files()))

        with ThreadPoolExecutor(max_workers=4) as pool:
            books = list(pool.map(lambda _: parse_book(archive), range(8)))

        assert all(len(book.spine) == 1 for book in books)
        assert {book.title for book in books} == {"Test Book"}
        archive.close()

    def test_book_is_immutable(self):
        book = parse_book(make_archive(minimal_book_files()))

        with pytest.raises(AttributeError):
            book.spine = ()
        with pytest.raises(TypeError):
            book.manifest["x"] = book.manifest["ch1"]
