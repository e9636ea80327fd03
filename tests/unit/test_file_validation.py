"""
Test suite for the file validation pipeline.

This module tests:
- Size limits and empty files
- Hash generation and stability
- Extension/MIME allow-lists and spoofing detection
- Image integrity checks
- Archive heuristics
- The FileValidator orchestrator, including quarantine decisions
"""

import hashlib
from unittest.mock import patch

import pytest

from models.errors import FileSizeError, FileValidationError, QuarantineError
from models.validation import DetectedType, SecurityConfig, ValidationResult
from tests.utils.fixtures import (
    jpeg_with_exif_bytes,
    pdf_bytes,
    pe_bytes,
    png_bytes,
    png_header_bytes,
    tar_bytes,
    wide_png_bytes,
    zip_bytes,
)
from validation.validators import (
    ArchiveHeuristicChecker,
    ExtensionMimePolicy,
    FileValidator,
    HashGenerator,
    ImageIntegrityChecker,
    SizeValidator,
    sanitize_filename,
)


class TestSizeValidator:
    """Test file size validation component."""

    def test_validate_size_success(self):
        validator = SizeValidator(10 * 1024 * 1024)
        validator.validate_size(5 * 1024 * 1024)

    def test_validate_size_failure(self):
        """Oversize message carries the size and the limit."""
        validator = SizeValidator(1000)

        with pytest.raises(FileSizeError) as exc_info:
            validator.validate_size(1001)

        assert str(exc_info.value) == "File too large: 1001 bytes (max: 1000)"
        assert isinstance(exc_info.value, FileValidationError)

    def test_validate_zero_size(self):
        validator = SizeValidator(1000)

        with pytest.raises(FileSizeError, match="File is empty"):
            validator.validate_size(0)

    def test_size_at_limit_is_allowed(self):
        SizeValidator(1000).validate_size(1000)


class TestHashGenerator:
    """Test hash generation component."""

    def test_generate_hash(self):
        content = b"Hello, World!"
        assert HashGenerator().generate_hash(content) == hashlib.sha256(content).hexdigest()

    def test_hash_file_matches_buffer_hash(self, tmp_path):
        """Chunked file hashing yields the same digest as hashing the buffer."""
        content = b"0123456789" * 300_000
        path = tmp_path / "big.bin"
        path.write_bytes(content)

        generator = HashGenerator()
        assert generator.hash_file(path) == generator.generate_hash(content)

    def test_hash_file_missing_raises(self, tmp_path):
        with pytest.raises(OSError):
            HashGenerator().hash_file(tmp_path / "missing.bin")


class TestSanitizeFilename:
    """Test filename sanitization."""

    def test_strips_path_segments(self):
        assert sanitize_filename("../../etc/passwd") == "etc_passwd"

    def test_replaces_spaces(self):
        assert sanitize_filename("my holiday photo.png") == "my_holiday_photo.png"

    def test_empty_name_gets_placeholder(self):
        assert sanitize_filename("") == "unnamed"
        assert sanitize_filename("../..") == "unnamed"

    def test_truncates_long_names_keeping_extension(self):
        name = sanitize_filename("a" * 400 + ".png")
        assert len(name) == 255
        assert name.endswith(".png")


class TestExtensionMimePolicy:
    """Test the extension/MIME allow-list policy."""

    @pytest.fixture
    def policy(self):
        config = SecurityConfig()
        return ExtensionMimePolicy(config.allowed_extensions, config.allowed_mime_types)

    def test_allowed_file_passes(self, policy):
        assert policy.check_policy("photo.png", DetectedType("image/png", "png")) == []

    def test_extension_not_allowed(self, policy):
        violations = policy.check_policy("script.sh", None)
        assert violations == ["File extension not allowed: .sh"]

    def test_missing_extension(self, policy):
        assert policy.check_policy("README", None) == ["File extension not allowed: (none)"]

    def test_extension_check_is_case_insensitive(self, policy):
        assert policy.check_policy("PHOTO.PNG", DetectedType("image/png", "png")) == []

    def test_mime_not_allowed_and_mismatch_both_reported(self, policy):
        """Every policy step runs: an executable disguised as a PDF collects two violations."""
        violations = policy.check_policy("report.pdf", DetectedType("application/x-msdownload", "exe"))

        assert violations == [
            "MIME type not allowed: application/x-msdownload",
            "MIME type mismatch: expected application/pdf, got application/x-msdownload",
        ]

    def test_image_to_image_mismatch_tolerated(self, policy):
        assert policy.check_policy("photo.jpg", DetectedType("image/png", "png")) == []

    def test_zip_with_zip_family_mime_tolerated(self, policy):
        docx = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
        assert policy.check_policy("bundle.zip", DetectedType(docx, "docx")) == []

    def test_zip_with_generic_binary_tolerated(self):
        policy = ExtensionMimePolicy({".zip"}, {"application/zip", "application/octet-stream"})
        assert policy.check_policy("bundle.zip", DetectedType("application/octet-stream", "bin")) == []

    def test_undetected_type_skips_mime_checks(self, policy):
        assert policy.check_policy("notes.txt", None) == []


class TestImageIntegrityChecker:
    """Test image structure checks."""

    def test_valid_png(self, tmp_path):
        path = tmp_path / "ok.png"
        path.write_bytes(png_bytes())

        assert ImageIntegrityChecker().check_image(path) == []

    def test_width_limit(self, tmp_path):
        path = tmp_path / "wide.png"
        path.write_bytes(wide_png_bytes(101))

        reasons = ImageIntegrityChecker(max_dimension=100).check_image(path)

        assert reasons == ["Image width too large (potential decompression bomb)"]

    def test_large_image_within_dimension_limit(self, tmp_path):
        path = tmp_path / "poster.png"
        path.write_bytes(png_header_bytes(20_000, 20_000))

        assert ImageIntegrityChecker(max_dimension=50_000).check_image(path) == []

    def test_both_sides_over_limit(self, tmp_path):
        path = tmp_path / "huge.png"
        path.write_bytes(png_header_bytes(60_000, 60_000))

        reasons = ImageIntegrityChecker(max_dimension=50_000).check_image(path)

        assert reasons == [
            "Image width too large (potential decompression bomb)",
            "Image height too large (potential decompression bomb)",
        ]

    def test_pixel_bomb_beyond_dimension_limit(self, tmp_path):
        path = tmp_path / "bomb.png"
        path.write_bytes(png_header_bytes(100_000, 100_000))

        findings = ImageIntegrityChecker(max_dimension=50_000).inspect(path)

        assert [f.message for f in findings] == ["Image dimensions too large (potential decompression bomb)"]
        assert findings[0].quarantine is True

    def test_corrupted_image(self, tmp_path):
        path = tmp_path / "broken.png"
        path.write_bytes(b"\x89PNG\r\n\x1a\n" + b"\x00" * 64)

        reasons = ImageIntegrityChecker().check_image(path)

        assert reasons == [ImageIntegrityChecker.DECODE_FAILURE]

    def test_decode_failure_does_not_require_quarantine(self, tmp_path):
        path = tmp_path / "broken.jpg"
        path.write_bytes(b"not an image at all")

        findings = ImageIntegrityChecker().inspect(path)

        assert len(findings) == 1
        assert findings[0].quarantine is False

    def test_script_polyglot(self, tmp_path):
        content = png_bytes() + b"<script>alert(document.cookie)</script>"
        path = tmp_path / "polyglot.png"
        path.write_bytes(content)

        reasons = ImageIntegrityChecker().check_image(path, content)

        assert "Script content found in image file" in reasons

    def test_javascript_uri_polyglot(self, tmp_path):
        content = png_bytes() + b'<a href="javascript:alert(1)">'
        path = tmp_path / "link.png"
        path.write_bytes(content)

        assert "JavaScript URL found in image file" in ImageIntegrityChecker().check_image(path)


class TestArchiveHeuristicChecker:
    """Test archive heuristics."""

    def test_small_zip_flagged(self):
        archive = zip_bytes({"readme.txt": b"hello"})
        assert len(archive) < 1000

        reasons = ArchiveHeuristicChecker(min_archive_size=1000).check_archive(archive)

        assert reasons == ["Potentially suspicious archive (very small file size)"]

    def test_threshold_is_configurable(self):
        archive = zip_bytes({"readme.txt": b"hello"})
        assert ArchiveHeuristicChecker(min_archive_size=50).check_archive(archive) == []

    def test_executable_entry_in_zip(self):
        archive = zip_bytes({"readme.txt": b"r" * 2000, "payload.exe": b"x" * 10})

        reasons = ArchiveHeuristicChecker().check_archive(archive)

        assert reasons == ["Archive contains potentially dangerous executables"]

    def test_executable_entry_in_tar(self):
        archive = tar_bytes({"tools/setup.bat": b"@echo off\n"})

        assert "Archive contains potentially dangerous executables" in ArchiveHeuristicChecker().check_archive(archive)

    def test_clean_archive(self):
        archive = zip_bytes({"docs/guide.txt": b"g" * 3000})
        assert ArchiveHeuristicChecker().check_archive(archive) == []


class TestFileValidator:
    """Test the validation orchestrator."""

    @pytest.mark.asyncio
    async def test_missing_file(self, file_validator, storage_dirs):
        result = await file_validator.validate_file(storage_dirs["temp"] / "gone.png", "gone.png")

        assert result.is_valid is False
        assert result.reasons == ["File does not exist"]
        assert result.quarantined is False

    @pytest.mark.asyncio
    async def test_empty_file(self, file_validator, write_upload):
        """A 0-byte upload is rejected as empty and never quarantined."""
        path = write_upload("empty.png", b"")

        result = await file_validator.validate_file(path, "empty.png")

        assert result.is_valid is False
        assert result.reasons == ["File is empty"]
        assert result.quarantined is False
        assert path.exists()

    @pytest.mark.asyncio
    async def test_oversize_file_rejected_without_quarantine(self, storage_dirs, quarantine_manager, write_upload):
        config = SecurityConfig(
            quarantine_dir=storage_dirs["quarantine"], safe_dir=storage_dirs["safe"], max_file_size=100
        )
        validator = FileValidator(config, quarantine_manager=quarantine_manager)
        # content that would otherwise be quarantined
        content = pe_bytes()
        path = write_upload("big.exe", content)

        result = await validator.validate_file(path, "big.exe")

        assert result.is_valid is False
        assert result.quarantined is False
        assert result.reasons == [f"File too large: {len(content)} bytes (max: 100)"]
        assert result.hash == hashlib.sha256(content).hexdigest()
        assert path.exists()

    @pytest.mark.asyncio
    async def test_jpeg_with_exif_is_valid(self, file_validator, write_upload):
        content = jpeg_with_exif_bytes()
        path = write_upload("holiday.jpg", content)

        result = await file_validator.validate_file(path, "holiday.jpg")

        assert result.is_valid is True, result.reasons
        assert result.reasons == []
        assert result.detected_mime_type == "image/jpeg"
        assert result.size == len(content)
        assert result.sanitized_name == "holiday.jpg"

    @pytest.mark.asyncio
    async def test_png_named_jpg_is_valid(self, file_validator, write_upload):
        path = write_upload("photo.jpg", png_bytes())

        result = await file_validator.validate_file(path, "photo.jpg")

        assert result.is_valid is True, result.reasons
        assert result.detected_mime_type == "image/png"

    @pytest.mark.asyncio
    async def test_plain_text_is_valid(self, file_validator, write_upload):
        path = write_upload("notes.txt", b"Shopping list\n- milk\n- eggs\n")

        result = await file_validator.validate_file(path, "notes.txt")

        assert result.is_valid is True, result.reasons
        assert result.detected_mime_type is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name, content", [
        ("data.txt", b'{"name": "alice", "items": [1, 2, 3], "ok": true}\n'),
        ("feed.txt", b'<?xml version="1.0"?>\n<rss><channel/></rss>\n'),
        ("export.csv", b"name,age\nalice,30\n"),
    ])
    async def test_structured_text_is_valid(self, file_validator, write_upload, name, content):
        path = write_upload(name, content)

        result = await file_validator.validate_file(path, name)

        assert result.is_valid is True, result.reasons
        assert result.detected_mime_type is None

    @pytest.mark.asyncio
    async def test_docx_is_valid(self, file_validator, write_upload):
        content = zip_bytes({"[Content_Types].xml": b"<Types/>", "word/document.xml": b"<w:document/>"})
        path = write_upload("report.docx", content)

        result = await file_validator.validate_file(path, "report.docx")

        assert result.is_valid is True, result.reasons
        assert result.detected_mime_type == "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

    @pytest.mark.asyncio
    async def test_masquerading_executable_is_quarantined(self, file_validator, write_upload, storage_dirs):
        path = write_upload("invoice.pdf.exe", b"arbitrary payload bytes")

        result = await file_validator.validate_file(path, "invoice.pdf.exe")

        assert result.is_valid is False
        assert result.quarantined is True
        assert "Potentially dangerous file extension" in result.reasons
        assert "Multiple file extensions detected (potential masquerading)" in result.reasons
        assert "File extension not allowed: .exe" in result.reasons
        assert not path.exists()
        assert (storage_dirs["quarantine"] / f"{result.hash}.quarantine").exists()
        assert (storage_dirs["quarantine"] / f"{result.hash}.metadata.json").exists()

    @pytest.mark.asyncio
    async def test_embedded_executable_in_pdf_is_quarantined(self, file_validator, write_upload):
        path = write_upload("statement.pdf", pdf_bytes(b"stream\n" + pe_bytes() + b"\nendstream"))

        result = await file_validator.validate_file(path, "statement.pdf")

        assert result.is_valid is False
        assert result.quarantined is True
        assert "Contains embedded Windows executable" in result.reasons

    @pytest.mark.asyncio
    async def test_disallowed_type_is_rejected_not_quarantined(self, file_validator, write_upload):
        path = write_upload("app.sh", b"#!/bin/sh\necho hello\n")

        result = await file_validator.validate_file(path, "app.sh")

        assert result.is_valid is False
        assert result.quarantined is False
        assert result.reasons == ["File extension not allowed: .sh"]
        assert path.exists()

    @pytest.mark.asyncio
    async def test_small_zip_is_quarantined(self, file_validator, write_upload):
        path = write_upload("docs.zip", zip_bytes({"readme.txt": b"Read me first."}))

        result = await file_validator.validate_file(path, "docs.zip")

        assert result.is_valid is False
        assert result.quarantined is True
        assert result.reasons == ["Potentially suspicious archive (very small file size)"]

    @pytest.mark.asyncio
    async def test_zip_above_threshold_is_valid(self, file_validator, write_upload):
        path = write_upload("docs.zip", zip_bytes({"readme.txt": b"r" * 2000}))

        result = await file_validator.validate_file(path, "docs.zip")

        assert result.is_valid is True, result.reasons
        assert result.detected_mime_type == "application/zip"

    @pytest.mark.asyncio
    async def test_corrupted_image_is_rejected_not_quarantined(self, file_validator, write_upload):
        path = write_upload("broken.png", b"\x89PNG\r\n\x1a\n" + b"\x00" * 64)

        result = await file_validator.validate_file(path, "broken.png")

        assert result.is_valid is False
        assert result.quarantined is False
        assert result.reasons == ["Image validation failed - possibly corrupted or malicious"]

    @pytest.mark.asyncio
    async def test_hash_is_stable_across_names(self, file_validator, write_upload):
        content = png_bytes(color=(1, 2, 3))
        first = await file_validator.validate_file(write_upload("a.png", content), "a.png")
        second = await file_validator.validate_file(write_upload("b.png", content), "other-name.png")

        assert first.hash == second.hash == hashlib.sha256(content).hexdigest()

    @pytest.mark.asyncio
    async def test_inspection_is_idempotent(self, file_validator, write_upload):
        path = write_upload("invoice.pdf.exe", pe_bytes())

        first = await file_validator.inspect_file(path, "invoice.pdf.exe")
        second = await file_validator.inspect_file(path, "invoice.pdf.exe")

        assert first == second
        assert first.quarantine_required is True
        assert first.quarantined is False
        assert path.exists()

    @pytest.mark.asyncio
    async def test_validation_of_valid_file_is_idempotent(self, file_validator, write_upload):
        path = write_upload("photo.png", png_bytes())

        first = await file_validator.validate_file(path, "photo.png")
        second = await file_validator.validate_file(path, "photo.png")

        assert first == second

    @pytest.mark.asyncio
    async def test_client_path_in_name_is_ignored(self, file_validator, write_upload):
        path = write_upload("photo.png", png_bytes())

        result = await file_validator.validate_file(path, "C:\\Users\\me\\photo.png")

        assert result.is_valid is True, result.reasons
        assert result.sanitized_name == "photo.png"

    @pytest.mark.asyncio
    async def test_read_error_becomes_reason(self, file_validator, write_upload):
        path = write_upload("notes.txt", b"text")

        with patch("pathlib.Path.read_bytes", side_effect=PermissionError("denied")):
            result = await file_validator.validate_file(path, "notes.txt")

        assert result.is_valid is False
        assert result.reasons == ["Validation error: denied"]

    @pytest.mark.asyncio
    async def test_quarantine_failure_propagates(self, file_validator, write_upload):
        path = write_upload("invoice.pdf.exe", pe_bytes())

        with patch.object(file_validator.quarantine_manager, "quarantine", side_effect=QuarantineError("disk full")):
            with pytest.raises(QuarantineError):
                await file_validator.validate_file(path, "invoice.pdf.exe")

        assert path.exists()

    @pytest.mark.asyncio
    async def test_quarantined_implies_invalid(self, file_validator, write_upload):
        samples = {
            "invoice.pdf.exe": pe_bytes(),
            "docs.zip": zip_bytes({"readme.txt": b"x"}),
            "photo.png": png_bytes(),
            "notes.txt": b"<script>alert(1)</script>",
        }
        for name, content in samples.items():
            result = await file_validator.validate_file(write_upload(name, content), name)
            assert not (result.quarantined and result.is_valid)


class TestValidationResult:
    """Test ValidationResult helpers."""

    def test_reject_accumulates_reasons(self):
        result = ValidationResult()
        result.reject("first")
        result.reject("second", "third")

        assert result.is_valid is False
        assert result.reasons == ["first", "second", "third"]

    def test_to_dict_omits_internal_flag(self):
        data = ValidationResult(hash="abc", size=3).to_dict()

        assert "quarantine_required" not in data
        assert data["hash"] == "abc"
        assert data["quarantined"] is False
