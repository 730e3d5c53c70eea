"""
Unit tests for attachment storage.
Tests name sanitization, streamed writes, reconciliation and cleanup.
"""
import io
from datetime import datetime, timezone

import pytest

from mailsearch.core.email.attachments import (
    ArchiveAttachment,
    AttachmentExtractor,
    MAX_STORED_NAME_LENGTH,
    READ_CHUNK_SIZE,
    make_stored_name,
    sanitize_filename,
)
from mailsearch.core.email.models import ParseOptions


def stream_of(data: bytes):
    """Sequential reader like pypff's read_buffer"""
    return io.BytesIO(data).read


class TestSanitizeFilename:
    """Test untrusted attachment names"""

    def test_path_traversal_name(self):
        name = sanitize_filename("../../evil:name?.pdf")
        assert "/" not in name
        assert "\\" not in name
        assert ":" not in name
        assert "?" not in name
        assert not name.startswith(".")
        assert name.endswith(".pdf")
        assert len(name) <= MAX_STORED_NAME_LENGTH

    def test_control_characters_dropped(self):
        assert sanitize_filename("re\x00port\x1f.txt") == "report.txt"

    def test_empty_name(self):
        assert sanitize_filename("") == "attachment"
        assert sanitize_filename("...") == "attachment"

    def test_long_name_keeps_extension(self):
        name = sanitize_filename("a" * 400 + ".xlsx")
        assert len(name) == MAX_STORED_NAME_LENGTH
        assert name.endswith(".xlsx")

    def test_korean_name_kept(self):
        assert sanitize_filename("회의록.docx") == "회의록.docx"

    def test_stored_name_format(self):
        now = datetime(2025, 1, 6, tzinfo=timezone.utc)
        stored = make_stored_name(3, "../../evil:name?.pdf", now=now)
        assert stored.startswith(f"3_{int(now.timestamp() * 1000)}_")
        assert "/" not in stored
        assert len(stored) <= MAX_STORED_NAME_LENGTH


class TestAttachmentExtractor:
    """Test two-phase attachment storage"""

    @pytest.fixture
    def extractor(self, tmp_path):
        return AttachmentExtractor(tmp_path / "attachments")

    @pytest.fixture
    def options(self, tmp_path):
        return ParseOptions(attachments_root=tmp_path / "attachments")

    def test_extract_writes_to_temp_folder(self, extractor, options):
        """Attachments land under _tmp/<key>/ with text extracted"""
        data = b"Invoice 2025-001 total 1200"
        refs, errors = extractor.extract(
            [ArchiveAttachment(name="notes.txt", size=len(data), reader=stream_of(data))],
            "run_000001",
            options,
        )

        assert errors == []
        assert len(refs) == 1
        ref = refs[0]
        assert ref.original_name == "notes.txt"
        assert ref.relative_path == f"_tmp/run_000001/{ref.stored_name}"
        assert ref.size == len(data)
        assert ref.mime_type == "text/plain"
        assert ref.extracted_text == "Invoice 2025-001 total 1200"
        assert (extractor.root / ref.relative_path).read_bytes() == data

    def test_hostile_name_stays_inside_folder(self, extractor, options):
        refs, _ = extractor.extract(
            [ArchiveAttachment(name="../../evil:name?.pdf", size=3, reader=stream_of(b"pdf"))],
            "k1",
            options,
        )
        stored = extractor.root / refs[0].relative_path
        assert stored.parent == extractor.temp_dir("k1")
        assert len(refs[0].stored_name) <= MAX_STORED_NAME_LENGTH

    def test_large_attachment_streamed_in_chunks(self, extractor, options):
        data = b"x" * (READ_CHUNK_SIZE * 2 + 10)
        calls = []
        source = io.BytesIO(data)

        def reader(n):
            calls.append(n)
            return source.read(n)

        refs, _ = extractor.extract([ArchiveAttachment(name="blob.bin", size=len(data), reader=reader)], "k2", options)

        assert refs[0].size == len(data)
        assert max(calls) <= READ_CHUNK_SIZE
        assert refs[0].extracted_text is None

    def test_missing_stream_recorded(self, extractor, options):
        """An attachment without content is an error, the others are kept"""
        refs, errors = extractor.extract(
            [
                ArchiveAttachment(name="ghost.pdf", size=0, reader=None),
                ArchiveAttachment(name="real.txt", size=2, reader=stream_of(b"ok")),
            ],
            "k3",
            options,
        )
        assert [r.original_name for r in refs] == ["real.txt"]
        assert errors == ["Attachment 0 (ghost.pdf) has no content stream"]

    def test_failing_stream_removes_partial_file(self, extractor, options):
        def reader(n):
            raise IOError("corrupt block")

        refs, errors = extractor.extract([ArchiveAttachment(name="bad.txt", size=5, reader=reader)], "k4", options)

        assert refs == []
        assert "corrupt block" in errors[0]
        assert list(extractor.temp_dir("k4").iterdir()) == []

    def test_save_disabled(self, extractor):
        refs, errors = extractor.extract(
            [ArchiveAttachment(name="a.txt", size=1, reader=stream_of(b"a"))],
            "k5",
            ParseOptions(save_attachments=False),
        )
        assert refs == [] and errors == []
        assert not extractor.root.exists()

    def test_reconcile_moves_folder(self, extractor, options):
        """Temp folder becomes mail_<id> and paths are rewritten"""
        refs, _ = extractor.extract([ArchiveAttachment(name="a.txt", size=1, reader=stream_of(b"a"))], "k6", options)

        moved = extractor.reconcile("k6", 42, refs)

        assert moved[0].relative_path == f"mail_42/{refs[0].stored_name}"
        assert (extractor.root / moved[0].relative_path).read_bytes() == b"a"
        assert not extractor.temp_dir("k6").exists()

    def test_discard(self, extractor, options):
        extractor.extract([ArchiveAttachment(name="a.txt", size=1, reader=stream_of(b"a"))], "k7", options)
        extractor.discard("k7")
        assert not extractor.temp_dir("k7").exists()

    def test_purge(self, extractor, options):
        extractor.extract([ArchiveAttachment(name="a.txt", size=1, reader=stream_of(b"a"))], "k8", options)
        extractor.purge()
        assert not extractor.root.exists()
