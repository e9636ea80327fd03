"""File validation components and security scanning."""

import asyncio
import hashlib
import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import FrozenSet, Iterable, List, Optional, Pattern, Sequence, Union

from PIL import Image
from werkzeug.utils import secure_filename

from models.errors import ErrorSeverity, FileSizeError
from models.validation import DetectedType, FileDomain, SecurityConfig, ValidationResult
from storage.quarantine import QuarantineManager
from validation.rules import (
    ARCHIVE_EXECUTABLE_ENTRY,
    ARCHIVE_EXTENSIONS,
    ARCHIVE_MIME_TYPES,
    DANGEROUS_SUFFIX_PATTERN,
    DEFAULT_DEV_PROJECT_KEYWORDS,
    DEV_PROJECT_CONTENT_MARKERS,
    DOUBLE_EXTENSION_EXCEPTIONS,
    EMBEDDED_EXECUTABLE_STUB,
    EXTENSION_MIME_TYPES,
    GENERIC_BINARY_MIME_TYPES,
    IMAGE_EXTENSIONS,
    JAVASCRIPT_URI,
    MEDIA_EXTENSIONS,
    OFFICE_MACRO_MARKERS,
    SCRIPT_ALLOWED_EXTENSIONS,
    SCRIPT_OPEN_TAG,
    SUSPICIOUS_PATTERN_RULES,
    ZIP_FAMILY_MIME_TYPES,
    DoubleExtensionException,
    PatternRule,
    count_extensions,
    explain_multiple_extensions,
)
from validation.signatures import FileTypeSniffer, detect_signature


PathLike = Union[str, Path]

HASH_CHUNK_SIZE = 1024 * 1024
# development-project markers are looked for near the start and end of a file
MARKER_SCAN_WINDOW = 1024 * 1024
MAX_FILENAME_LENGTH = 255


def extension_of(filename: str) -> str:
    """Lower-cased extension of a file name, with its leading dot."""
    return os.path.splitext(filename)[1].lower()


def base_name(filename: str) -> str:
    """Strip any client supplied directory components."""
    return os.path.basename((filename or "").replace("\\", "/"))


def sanitize_filename(filename: str) -> str:
    """
    Make an untrusted file name safe to use on disk.

    Args:
        filename: Client supplied file name

    Returns:
        str: Name without path segments or unsafe characters
    """
    name = secure_filename(filename or "")
    if not name:
        return "unnamed"
    if len(name) > MAX_FILENAME_LENGTH:
        stem, ext = os.path.splitext(name)
        name = stem[: MAX_FILENAME_LENGTH - len(ext)] + ext
    return name


@dataclass(frozen=True)
class ScanFinding:
    """One detected issue. Findings with quarantine=True send the file to quarantine."""
    rule: str
    message: str
    severity: ErrorSeverity
    quarantine: bool = True


class HashGenerator:
    """Generates cryptographic hashes for file identity and audit lookups."""

    def generate_hash(self, content: bytes) -> str:
        """
        Generate SHA256 hash of file content.

        Args:
            content: File content as bytes

        Returns:
            str: SHA256 hash as hexadecimal string
        """
        return hashlib.sha256(content).hexdigest()

    def hash_file(self, file_path: PathLike) -> str:
        """
        Generate SHA256 hash of a file on disk.

        Args:
            file_path: Path of the file to hash

        Returns:
            str: SHA256 hash as hexadecimal string

        Raises:
            OSError: If the file cannot be read
        """
        digest = hashlib.sha256()
        with open(file_path, "rb") as handle:
            for chunk in iter(lambda: handle.read(HASH_CHUNK_SIZE), b""):
                digest.update(chunk)
        return digest.hexdigest()


class SizeValidator:
    """Validates file sizes against configured limits."""

    def __init__(self, max_file_size: int):
        self.max_file_size = max_file_size

    def validate_size(self, file_size: int) -> None:
        """
        Validate file size against limits.

        Args:
            file_size: Size of the file in bytes

        Raises:
            FileSizeError: If file size is invalid
        """
        if file_size <= 0:
            raise FileSizeError("File is empty")

        if file_size > self.max_file_size:
            raise FileSizeError(f"File too large: {file_size} bytes (max: {self.max_file_size})")


class ExtensionMimePolicy:
    """Enforces the extension and MIME allow-lists and catches MIME spoofing."""

    def __init__(self, allowed_extensions: Iterable[str], allowed_mime_types: Iterable[str], extension_mime_types=None):
        self.allowed_extensions = frozenset(allowed_extensions)
        self.allowed_mime_types = frozenset(allowed_mime_types)
        self.extension_mime_types = extension_mime_types or EXTENSION_MIME_TYPES

    def check_policy(self, original_name: str, detected: Optional[DetectedType]) -> List[str]:
        """
        Check a file name and its sniffed type against policy.

        Every step runs, so one file can collect several violations.

        Args:
            original_name: Client supplied file name
            detected: Type sniffed from the content, if any

        Returns:
            List[str]: Violation messages in detection order
        """
        violations = []
        extension = extension_of(original_name)

        if extension not in self.allowed_extensions:
            violations.append(f"File extension not allowed: {extension or '(none)'}")

        if detected and detected.mime not in self.allowed_mime_types:
            violations.append(f"MIME type not allowed: {detected.mime}")

        if detected:
            expected = self.extension_mime_types.get(extension)
            if expected and expected != detected.mime and not self.is_tolerated_mismatch(extension, expected, detected.mime):
                violations.append(f"MIME type mismatch: expected {expected}, got {detected.mime}")

        return violations

    @staticmethod
    def is_tolerated_mismatch(extension: str, expected_mime: str, detected_mime: str) -> bool:
        """Benign mismatches: image/image, and .zip holding any zip-family or generic binary type."""
        if expected_mime.startswith("image/") and detected_mime.startswith("image/"):
            return True
        if extension == ".zip" and (detected_mime in ZIP_FAMILY_MIME_TYPES or detected_mime in GENERIC_BINARY_MIME_TYPES):
            return True
        return False


class DomainClassifier:
    """Guesses which content domains an upload belongs to."""

    def __init__(
        self,
        dev_project_keywords: Optional[Iterable[str]] = None,
        content_markers: Sequence[Pattern[str]] = DEV_PROJECT_CONTENT_MARKERS,
    ):
        keywords = dev_project_keywords if dev_project_keywords is not None else DEFAULT_DEV_PROJECT_KEYWORDS
        self.dev_project_keywords = frozenset(k.strip().lower() for k in keywords if k.strip())
        self.content_markers = tuple(content_markers)

    def classify(self, buffer: bytes, filename: str, content: Optional[str] = None) -> FrozenSet[FileDomain]:
        """
        Classify a file into zero or more domains.

        Args:
            buffer: File content
            filename: Client supplied file name
            content: Latin-1 rendering of the buffer, when already computed

        Returns:
            FrozenSet[FileDomain]: Domains the file appears to belong to
        """
        domains = set()
        extension = extension_of(filename)
        detected = detect_signature(buffer)
        mime = detected.mime if detected else ""

        if extension in IMAGE_EXTENSIONS or mime.startswith("image/"):
            domains.add(FileDomain.IMAGE)
        if extension in MEDIA_EXTENSIONS or mime.startswith(("video/", "audio/")):
            domains.add(FileDomain.MEDIA)
        if extension in ARCHIVE_EXTENSIONS or mime in ARCHIVE_MIME_TYPES or mime in ZIP_FAMILY_MIME_TYPES:
            domains.add(FileDomain.ARCHIVE)

        if content is None:
            content = buffer.decode("latin-1")
        if self.is_development_project(filename, content):
            domains.add(FileDomain.DEVELOPMENT_PROJECT)

        return frozenset(domains)

    def is_development_project(self, filename: str, content: str) -> bool:
        stem = os.path.splitext(filename)[0].lower()
        tokens = set(re.split(r"[^a-z0-9]+", stem))
        if tokens & self.dev_project_keywords:
            return True

        if len(content) > 2 * MARKER_SCAN_WINDOW:
            content = content[:MARKER_SCAN_WINDOW] + content[-MARKER_SCAN_WINDOW:]
        return any(marker.search(content) for marker in self.content_markers)


class ContentScanner:
    """Scans raw bytes and a decoded text prefix for malicious patterns."""

    def __init__(
        self,
        rules: Sequence[PatternRule] = SUSPICIOUS_PATTERN_RULES,
        classifier: Optional[DomainClassifier] = None,
        double_extension_exceptions: Sequence[DoubleExtensionException] = DOUBLE_EXTENSION_EXCEPTIONS,
        text_scan_window: int = 10_000,
    ):
        self.rules = tuple(rules)
        self.classifier = classifier or DomainClassifier()
        self.double_extension_exceptions = tuple(double_extension_exceptions)
        self.text_scan_window = text_scan_window
        self._logger = logging.getLogger(__name__)

    def scan(self, buffer: bytes, original_name: str) -> List[str]:
        """Scan a file and return violation messages in detection order."""
        return [finding.message for finding in self.evaluate(buffer, original_name)]

    def evaluate(self, buffer: bytes, original_name: str) -> List[ScanFinding]:
        """
        Run every filename and content check against a file.

        Args:
            buffer: File content as bytes
            original_name: Client supplied file name

        Returns:
            List[ScanFinding]: Structured findings in detection order
        """
        findings: List[ScanFinding] = []
        filename = base_name(original_name)
        extension = extension_of(filename)

        # binary-as-latin1 keeps a 1:1 byte/char mapping for the signatures
        content = buffer.decode("latin-1")
        text = buffer[: self.text_scan_window].decode("utf-8", errors="replace")
        domains = self.classifier.classify(buffer, filename, content)

        if DANGEROUS_SUFFIX_PATTERN.search(filename):
            findings.append(
                ScanFinding("dangerous_extension", "Potentially dangerous file extension", ErrorSeverity.CRITICAL)
            )

        if count_extensions(filename) > 1:
            explained_by = explain_multiple_extensions(filename, self.double_extension_exceptions)
            if explained_by is None:
                findings.append(
                    ScanFinding(
                        "double_extension",
                        "Multiple file extensions detected (potential masquerading)",
                        ErrorSeverity.HIGH,
                    )
                )
            else:
                self._logger.debug(f"Multi-extension name {filename!r} allowed by {explained_by}")

        for rule in self.rules:
            if not rule.applies_to(domains):
                continue
            if rule.matches(content, text):
                findings.append(
                    ScanFinding(rule.name, f"Suspicious content pattern detected: {rule.description}", rule.severity)
                )

        if b"MZ" in buffer and EMBEDDED_EXECUTABLE_STUB in buffer:
            findings.append(
                ScanFinding("embedded_executable", "Contains embedded Windows executable", ErrorSeverity.CRITICAL)
            )

        is_archive = FileDomain.ARCHIVE in domains
        if extension not in SCRIPT_ALLOWED_EXTENSIONS and not is_archive and SCRIPT_OPEN_TAG.search(text):
            findings.append(ScanFinding("script_in_non_html", "Script tags found in non-HTML file", ErrorSeverity.HIGH))

        if not is_archive and OFFICE_MACRO_MARKERS.search(text):
            findings.append(
                ScanFinding("office_macro", "Contains Office macros (potential security risk)", ErrorSeverity.HIGH)
            )

        if findings:
            self._logger.warning(
                f"Content scan of {filename!r} (domains: {sorted(d.value for d in domains)}) "
                f"found: {[f.rule for f in findings]}"
            )
        return findings


class ImageIntegrityChecker:
    """Decodes declared images and rejects pathological dimensions or script payloads."""

    DECODE_FAILURE = "Image validation failed - possibly corrupted or malicious"

    def __init__(self, max_dimension: int = 50_000):
        self.max_dimension = max_dimension
        self._logger = logging.getLogger(__name__)

    def check_image(self, file_path: PathLike, buffer: Optional[bytes] = None) -> List[str]:
        """Validate an image file and return violation messages."""
        return [finding.message for finding in self.inspect(file_path, buffer)]

    def inspect(self, file_path: PathLike, buffer: Optional[bytes] = None) -> List[ScanFinding]:
        """
        Validate image structure and look for polyglot payloads.

        Args:
            file_path: Path of the image on disk
            buffer: File content, when the caller has already read it

        Returns:
            List[ScanFinding]: Findings; a plain decode failure does not quarantine
        """
        findings: List[ScanFinding] = []

        # Pillow refuses images above twice this pixel count; anything that large
        # already has a side beyond max_dimension
        Image.MAX_IMAGE_PIXELS = self.max_dimension * self.max_dimension

        try:
            with Image.open(file_path) as image:
                width, height = image.size
                image.verify()
        except Image.DecompressionBombError as e:
            self._logger.warning(f"Decompression bomb rejected: {e}")
            findings.append(
                ScanFinding(
                    "image_dimensions",
                    "Image dimensions too large (potential decompression bomb)",
                    ErrorSeverity.HIGH,
                )
            )
        except (OSError, SyntaxError, ValueError) as e:
            self._logger.info(f"Image decode failed for {file_path}: {e}")
            findings.append(ScanFinding("image_decode", self.DECODE_FAILURE, ErrorSeverity.MEDIUM, quarantine=False))
        else:
            if width > self.max_dimension:
                findings.append(
                    ScanFinding("image_width", "Image width too large (potential decompression bomb)", ErrorSeverity.HIGH)
                )
            if height > self.max_dimension:
                findings.append(
                    ScanFinding("image_height", "Image height too large (potential decompression bomb)", ErrorSeverity.HIGH)
                )

        if buffer is None:
            buffer = Path(file_path).read_bytes()
        text = buffer.decode("utf-8", errors="ignore")

        if SCRIPT_OPEN_TAG.search(text):
            findings.append(ScanFinding("image_script", "Script content found in image file", ErrorSeverity.HIGH))
        if JAVASCRIPT_URI.search(text):
            findings.append(ScanFinding("image_javascript_uri", "JavaScript URL found in image file", ErrorSeverity.HIGH))

        return findings


class ArchiveHeuristicChecker:
    """
    Cheap heuristics against zip-bomb style archives.

    This is not a decompression-ratio detector: it flags suspiciously tiny ZIP
    files and executable entry names visible in the raw archive bytes.
    """

    ZIP_SIGNATURES = (b"PK\x03\x04", b"PK\x05\x06")

    def __init__(self, min_archive_size: int = 1000):
        self.min_archive_size = min_archive_size

    def check_archive(self, buffer: bytes) -> List[str]:
        return [finding.message for finding in self.inspect(buffer)]

    def inspect(self, buffer: bytes) -> List[ScanFinding]:
        findings = []

        if buffer.startswith(self.ZIP_SIGNATURES) and len(buffer) < self.min_archive_size:
            findings.append(
                ScanFinding(
                    "archive_too_small",
                    "Potentially suspicious archive (very small file size)",
                    ErrorSeverity.MEDIUM,
                )
            )

        if ARCHIVE_EXECUTABLE_ENTRY.search(buffer):
            findings.append(
                ScanFinding(
                    "archive_executable_entry",
                    "Archive contains potentially dangerous executables",
                    ErrorSeverity.HIGH,
                )
            )

        return findings


class FileValidator:
    """Main file validation orchestrator."""

    def __init__(
        self,
        config: SecurityConfig,
        quarantine_manager: Optional[QuarantineManager] = None,
        sniffer: Optional[FileTypeSniffer] = None,
        content_scanner: Optional[ContentScanner] = None,
    ):
        self.config = config
        self.size_validator = SizeValidator(config.max_file_size)
        self.hash_generator = HashGenerator()
        self.sniffer = sniffer or FileTypeSniffer()
        self.policy = ExtensionMimePolicy(config.allowed_extensions, config.allowed_mime_types)
        self.content_scanner = content_scanner or ContentScanner(
            classifier=DomainClassifier(config.dev_project_keywords),
            text_scan_window=config.text_scan_window,
        )
        self.image_checker = ImageIntegrityChecker(config.max_image_dimension)
        self.archive_checker = ArchiveHeuristicChecker(config.min_archive_size)
        self.quarantine_manager = quarantine_manager or QuarantineManager(config.quarantine_dir)
        self._logger = logging.getLogger(__name__)

    async def validate_file(
        self, file_path: PathLike, original_name: str, uploaded_by: Optional[str] = None
    ) -> ValidationResult:
        """
        Validate an uploaded file and quarantine it when the content is malicious.

        Files rejected by policy only (size, extension, MIME) are left in place for
        the caller to delete.

        Args:
            file_path: Temporary path of the uploaded file
            original_name: Client supplied file name
            uploaded_by: Authenticated uploader id, if any

        Returns:
            ValidationResult: Complete validation results

        Raises:
            QuarantineError: If a malicious file could not be quarantined
        """
        result = await self.inspect_file(file_path, original_name)

        if result.quarantine_required:
            await asyncio.to_thread(
                self.quarantine_manager.quarantine,
                file_path,
                result.hash,
                result.reasons,
                original_name=original_name,
                uploaded_by=uploaded_by,
                size=result.size,
                mime_type=result.detected_mime_type,
            )
            result.quarantined = True
        elif not result.is_valid:
            logging.info(f"[SECURITY] File rejected: {original_name}, reasons: {', '.join(result.reasons)}")

        return result

    async def inspect_file(self, file_path: PathLike, original_name: str) -> ValidationResult:
        """
        Run every check without touching the file.

        Pure function of the file content and name: inspecting the same file
        twice yields identical results.

        Args:
            file_path: Path of the file to inspect
            original_name: Client supplied file name

        Returns:
            ValidationResult: Verdict with quarantine_required set when the
            findings call for quarantine
        """
        path = Path(file_path)
        result = ValidationResult(sanitized_name=sanitize_filename(base_name(original_name)))

        if not path.is_file():
            result.reject("File does not exist")
            return result

        try:
            result.size = path.stat().st_size
            try:
                self.size_validator.validate_size(result.size)
            except FileSizeError as e:
                result.reject(str(e))
                if result.size > 0:
                    result.hash = await asyncio.to_thread(self.hash_generator.hash_file, path)
                else:
                    result.hash = self.hash_generator.generate_hash(b"")
                return result

            buffer = await asyncio.to_thread(path.read_bytes)
        except OSError as e:
            self._logger.error(f"File validation error: {e}")
            result.reject(f"Validation error: {e}")
            return result

        result.hash = self.hash_generator.generate_hash(buffer)

        detected = self.sniffer.sniff(buffer)
        if detected:
            result.detected_mime_type = detected.mime

        violations = self.policy.check_policy(base_name(original_name), detected)
        if violations:
            result.reject(*violations)

        findings = self.content_scanner.evaluate(buffer, original_name)

        extension = extension_of(base_name(original_name))
        if extension in IMAGE_EXTENSIONS:
            findings.extend(await asyncio.to_thread(self.image_checker.inspect, path, buffer))
        if extension in ARCHIVE_EXTENSIONS:
            findings.extend(self.archive_checker.inspect(buffer))

        if findings:
            result.reject(*(finding.message for finding in findings))
            result.quarantine_required = any(finding.quarantine for finding in findings)

        return result
