"""Tests for archive sources and the archive safety gate."""

import io
import zipfile

import pytest

from epubkit.errors import (
    ArchiveUnsafeError,
    EpubErrorCode,
    InvalidArchiveError,
    MissingEntryError,
)
from epubkit.storage import (
    ArchiveSafetyLimits,
    InMemoryArchiveSource,
    ZipArchiveSource,
    check_archive_safety,
)
from tests.factories import make_epub, minimal_book_files


def _limits(**overrides) -> ArchiveSafetyLimits:
    values = {
        "max_entries": 100,
        "max_total_uncompressed_bytes": 1_000_000,
        "max_single_entry_uncompressed_bytes": 100_000,
        "max_compression_ratio": 100,
    }
    values.update(overrides)
    return ArchiveSafetyLimits(**values)


def _zip(entries: dict[str, bytes], compression=zipfile.ZIP_STORED) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", compression) as zf:
        for name, data in entries.items():
            zf.writestr(name, data)
    return buf.getvalue()


class TestInMemoryArchiveSource:
    def test_reads_bytes_and_encodes_text(self):
        archive = InMemoryArchiveSource({"a.txt": "héllo", "b.bin": b"\x00\x01"})

        assert archive.open_entry("a.txt") == "héllo".encode()
        assert archive.open_entry("b.bin") == b"\x00\x01"

    def test_missing_entry_names_the_path(self):
        archive = InMemoryArchiveSource({})

        with pytest.raises(MissingEntryError) as exc_info:
            archive.open_entry("OEBPS/content.opf")

        assert exc_info.value.path == "OEBPS/content.opf"
        assert exc_info.value.code == EpubErrorCode.E_MISSING_ENTRY

    def test_paths_are_case_sensitive(self):
        archive = InMemoryArchiveSource({"OEBPS/Chapter.xhtml": b"x"})

        assert archive.has_entry("OEBPS/Chapter.xhtml")
        assert not archive.has_entry("oebps/chapter.xhtml")

    def test_list_entries(self):
        archive = InMemoryArchiveSource({"a": b"", "b/c": b""}, name="mem")

        assert archive.list_entries() == frozenset({"a", "b/c"})
        assert archive.name == "mem"


class TestZipArchiveSource:
    def test_reads_entries_from_bytes(self):
        with ZipArchiveSource(make_epub(minimal_book_files())) as archive:
            assert archive.open_entry("mimetype") == b"application/epub+zip"
            assert "OEBPS/content.opf" in archive.list_entries()

    def test_reads_from_path(self, tmp_path):
        path = tmp_path / "book.epub"
        path.write_bytes(make_epub(minimal_book_files()))

        with ZipArchiveSource(path) as archive:
            assert archive.name == str(path)
            assert archive.has_entry("META-INF/container.xml")

    def test_directories_are_not_entries(self):
        data = _zip({"OEBPS/": b"", "OEBPS/a.xhtml": b"<a/>"})

        with ZipArchiveSource(data) as archive:
            assert archive.list_entries() == frozenset({"OEBPS/a.xhtml"})

    def test_missing_entry(self):
        with ZipArchiveSource(make_epub(minimal_book_files())) as archive:
            with pytest.raises(MissingEntryError):
                archive.open_entry("OEBPS/nope.xhtml")

    def test_not_a_zip(self):
        with pytest.raises(InvalidArchiveError) as exc_info:
            ZipArchiveSource(b"definitely not a zip file")

        assert exc_info.value.code == EpubErrorCode.E_INVALID_ARCHIVE

    def test_mimetype_first_and_stored(self):
        with ZipArchiveSource(make_epub(minimal_book_files())) as archive:
            assert archive.mimetype_is_first_and_stored

        deflated = _zip({"mimetype": b"application/epub+zip"}, zipfile.ZIP_DEFLATED)
        with ZipArchiveSource(deflated) as archive:
            assert not archive.mimetype_is_first_and_stored

    def test_explicit_name_wins(self):
        with ZipArchiveSource(make_epub(minimal_book_files()), name="upload-7") as archive:
            assert archive.name == "upload-7"


class TestArchiveSafety:
    def _check(self, data: bytes, limits: ArchiveSafetyLimits) -> None:
        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            check_archive_safety(zf, limits)

    def test_accepts_ordinary_archive(self):
        self._check(make_epub(minimal_book_files()), _limits())

    def test_too_many_entries(self):
        data = _zip({f"f{i}.txt": b"x" for i in range(5)})

        with pytest.raises(ArchiveUnsafeError, match="entries"):
            self._check(data, _limits(max_entries=4))

    def test_traversal_path(self):
        data = _zip({"../evil.txt": b"x"})

        with pytest.raises(ArchiveUnsafeError, match="traversal") as exc_info:
            self._check(data, _limits())
        assert exc_info.value.code == EpubErrorCode.E_ARCHIVE_UNSAFE

    def test_absolute_path(self):
        data = _zip({"/etc/passwd": b"x"})

        with pytest.raises(ArchiveUnsafeError, match="Absolute"):
            self._check(data, _limits())

    def test_oversized_entry(self):
        data = _zip({"big.bin": b"x" * 2_000})

        with pytest.raises(ArchiveUnsafeError, match="uncompressed size") as exc_info:
            self._check(data, _limits(max_single_entry_uncompressed_bytes=1_000))
        assert exc_info.value.path == "big.bin"

    def test_total_size(self):
        data = _zip({"a.bin": b"x" * 600, "b.bin": b"y" * 600})

        with pytest.raises(ArchiveUnsafeError, match="Total uncompressed"):
            self._check(data, _limits(max_total_uncompressed_bytes=1_000))

    def test_compression_ratio(self):
        data = _zip({"bomb.txt": b"\x00" * 50_000}, zipfile.ZIP_DEFLATED)

        with pytest.raises(ArchiveUnsafeError, match="compression ratio"):
            self._check(data, _limits(max_compression_ratio=10))

    def test_zip_source_applies_limits(self, log_sink):
        data = _zip({"../evil.txt": b"x"})

        with pytest.raises(ArchiveUnsafeError):
            ZipArchiveSource(data, safety=_limits())

        assert [e["event"] for e in log_sink] == ["epub.archive.unsafe"]

    def test_zip_source_without_limits_skips_check(self):
        data = _zip({"a.bin": b"x" * 2_000})

        with ZipArchiveSource(data) as archive:
            assert archive.open_entry("a.bin") == b"x" * 2_000
