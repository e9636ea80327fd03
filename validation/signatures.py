"""Content-based file type detection.

The signature table is authoritative: it identifies the *actual* type of an upload
from its leading bytes, regardless of the claimed extension or client MIME type.
Buffers the table does not recognise are offered to libmagic, whose answer is only
kept when it is specific. Text content of any kind counts as "unknown", as does
generic binary.
"""

import logging
import mimetypes
from typing import NamedTuple, Optional, Tuple

import magic

from models.validation import DetectedType


# libmagic only needs the head of the file
MAGIC_SAMPLE_SIZE = 8192

# libmagic answers that carry no type information
GENERIC_MAGIC_TYPES = frozenset({
    "application/octet-stream",
    "application/x-empty",
    "inode/x-empty",
    "application/data",
})

# libmagic answers naming a text format; text has no byte signature
TEXT_BEARING_MAGIC_TYPES = frozenset({
    "application/json",
    "application/xml",
    "application/javascript",
    "application/x-javascript",
    "application/ecmascript",
    "application/postscript",
    "application/x-ndjson",
    "application/x-yaml",
    "application/yaml",
    "application/toml",
    "application/x-sh",
    "application/x-shellscript",
    "application/x-httpd-php",
    "application/sql",
    "image/svg+xml",
})


class FileSignature(NamedTuple):
    """Magic bytes signature for a file type."""

    pattern: bytes
    mime: str
    extension: str
    offset: int = 0


# Reference: https://en.wikipedia.org/wiki/List_of_file_signatures
# Order matters: longer/more specific prefixes first.
FILE_SIGNATURES: Tuple[FileSignature, ...] = (
    # Images
    FileSignature(b"\x89PNG\r\n\x1a\n", "image/png", "png"),
    FileSignature(b"\xff\xd8\xff", "image/jpeg", "jpg"),
    FileSignature(b"GIF87a", "image/gif", "gif"),
    FileSignature(b"GIF89a", "image/gif", "gif"),
    FileSignature(b"II*\x00", "image/tiff", "tif"),
    FileSignature(b"MM\x00*", "image/tiff", "tif"),
    FileSignature(b"\x00\x00\x01\x00", "image/x-icon", "ico"),
    # Documents
    FileSignature(b"%PDF-", "application/pdf", "pdf"),
    FileSignature(b"{\\rtf", "application/rtf", "rtf"),
    FileSignature(b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1", "application/msword", "doc"),
    FileSignature(b"SQLite format 3\x00", "application/x-sqlite3", "sqlite"),
    # Archives
    FileSignature(b"Rar!\x1a\x07", "application/x-rar-compressed", "rar"),
    FileSignature(b"7z\xbc\xaf\x27\x1c", "application/x-7z-compressed", "7z"),
    FileSignature(b"\x1f\x8b\x08", "application/gzip", "gz"),
    FileSignature(b"BZh", "application/x-bzip2", "bz2"),
    FileSignature(b"\xfd7zXZ\x00", "application/x-xz", "xz"),
    FileSignature(b"ustar", "application/x-tar", "tar", offset=257),
    # Audio / video
    FileSignature(b"OggS", "audio/ogg", "ogg"),
    FileSignature(b"fLaC", "audio/x-flac", "flac"),
    FileSignature(b"ID3", "audio/mpeg", "mp3"),
    FileSignature(b"MThd", "audio/midi", "mid"),
    # Executables
    FileSignature(b"\x7fELF", "application/x-elf", "elf"),
    FileSignature(b"\xca\xfe\xba\xbe", "application/java-vm", "class"),
    FileSignature(b"\xcf\xfa\xed\xfe", "application/x-mach-binary", "macho"),
    FileSignature(b"\xfe\xed\xfa\xcf", "application/x-mach-binary", "macho"),
    FileSignature(b"\x00asm", "application/wasm", "wasm"),
    FileSignature(b"MZ", "application/x-msdownload", "exe"),
)

ZIP_LOCAL_HEADER = b"PK\x03\x04"
ZIP_EMPTY_ARCHIVE = b"PK\x05\x06"
ZIP_SPANNED_ARCHIVE = b"PK\x07\x08"

# Entry names that identify zip-based container formats
ZIP_CONTAINER_MARKERS: Tuple[Tuple[bytes, str, str], ...] = (
    (b"word/", "application/vnd.openxmlformats-officedocument.wordprocessingml.document", "docx"),
    (b"xl/", "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet", "xlsx"),
    (b"ppt/", "application/vnd.openxmlformats-officedocument.presentationml.presentation", "pptx"),
    (b"mimetypeapplication/vnd.oasis.opendocument.text", "application/vnd.oasis.opendocument.text", "odt"),
    (b"mimetypeapplication/epub+zip", "application/epub+zip", "epub"),
    (b"META-INF/MANIFEST.MF", "application/java-archive", "jar"),
)

# ISO base media file format brands (bytes 8..12 after "ftyp")
FTYP_BRANDS = {
    b"qt  ": ("video/quicktime", "mov"),
    b"M4A ": ("audio/x-m4a", "m4a"),
    b"M4B ": ("audio/x-m4a", "m4a"),
    b"heic": ("image/heic", "heic"),
    b"heix": ("image/heic", "heic"),
    b"mif1": ("image/heif", "heif"),
    b"avif": ("image/avif", "avif"),
    b"3gp4": ("video/3gpp", "3gp"),
    b"3gp5": ("video/3gpp", "3gp"),
}

RIFF_SUBTYPES = {
    b"WEBP": ("image/webp", "webp"),
    b"WAVE": ("audio/wav", "wav"),
    b"AVI ": ("video/vnd.avi", "avi"),
}

# MPEG audio frame sync for files without an ID3 tag
MP3_FRAME_HEADERS = (b"\xff\xfb", b"\xff\xf3", b"\xff\xf2")


def _detect_zip_container(buffer: bytes) -> DetectedType:
    """Refine a ZIP archive into the container format its entry names reveal."""
    # entry names of the first local headers and the central directory
    head = buffer[:65536]
    tail = buffer[-65536:]
    for marker, mime, extension in ZIP_CONTAINER_MARKERS:
        if marker in head or marker in tail:
            return DetectedType(mime=mime, extension=extension)
    return DetectedType(mime="application/zip", extension="zip")


def _detect_riff(buffer: bytes) -> Optional[DetectedType]:
    subtype = RIFF_SUBTYPES.get(buffer[8:12])
    if subtype:
        return DetectedType(mime=subtype[0], extension=subtype[1])
    return None


def _detect_ftyp(buffer: bytes) -> Optional[DetectedType]:
    if buffer[4:8] != b"ftyp":
        return None
    brand = buffer[8:12]
    if brand in FTYP_BRANDS:
        mime, extension = FTYP_BRANDS[brand]
        return DetectedType(mime=mime, extension=extension)
    return DetectedType(mime="video/mp4", extension="mp4")


def _detect_bmp(buffer: bytes) -> Optional[DetectedType]:
    # "BM" alone is too weak; the four reserved header bytes must be zero
    if buffer.startswith(b"BM") and buffer[6:10] == b"\x00\x00\x00\x00":
        return DetectedType(mime="image/bmp", extension="bmp")
    return None


def _detect_matroska(buffer: bytes) -> DetectedType:
    # DocType element follows the EBML header
    if b"webm" in buffer[:64]:
        return DetectedType(mime="video/webm", extension="webm")
    return DetectedType(mime="video/x-matroska", extension="mkv")


def detect_signature(buffer: bytes) -> Optional[DetectedType]:
    """
    Detect the file type from its leading bytes.

    Args:
        buffer: File content (at least the first few hundred bytes)

    Returns:
        DetectedType or None when no known signature matches (e.g. plain text)
    """
    if len(buffer) < 2:
        return None

    if buffer.startswith((ZIP_LOCAL_HEADER, ZIP_EMPTY_ARCHIVE, ZIP_SPANNED_ARCHIVE)):
        return _detect_zip_container(buffer)

    if buffer.startswith(b"RIFF"):
        riff = _detect_riff(buffer)
        if riff:
            return riff

    ftyp = _detect_ftyp(buffer)
    if ftyp:
        return ftyp

    if buffer.startswith(b"\x1a\x45\xdf\xa3"):
        return _detect_matroska(buffer)

    for signature in FILE_SIGNATURES:
        end = signature.offset + len(signature.pattern)
        if buffer[signature.offset:end] == signature.pattern:
            return DetectedType(mime=signature.mime, extension=signature.extension)

    bmp = _detect_bmp(buffer)
    if bmp:
        return bmp

    if buffer.startswith(MP3_FRAME_HEADERS):
        return DetectedType(mime="audio/mpeg", extension="mp3")

    return None


def looks_like_text(sample: bytes) -> bool:
    """True for NUL-free UTF-8, allowing a multi-byte character cut off at the end of the sample."""
    if b"\x00" in sample:
        return False
    try:
        sample.decode("utf-8")
    except UnicodeDecodeError as e:
        return e.reason == "unexpected end of data" and e.start >= len(sample) - 3
    return True


class FileTypeSniffer:
    """Detects the actual file type from content using the signature table, then libmagic."""

    def __init__(self, use_libmagic: bool = True):
        self.use_libmagic = use_libmagic
        self._logger = logging.getLogger(__name__)

    def sniff(self, buffer: bytes) -> Optional[DetectedType]:
        """
        Sniff the content type of a buffer.

        Args:
            buffer: File content as bytes

        Returns:
            DetectedType, or None when the content has no recognisable signature
        """
        detected = detect_signature(buffer)
        if detected is not None:
            return detected

        if not buffer or looks_like_text(buffer[:MAGIC_SAMPLE_SIZE]):
            return None

        if self.use_libmagic:
            return self._sniff_with_libmagic(buffer)
        return None

    def _sniff_with_libmagic(self, buffer: bytes) -> Optional[DetectedType]:
        try:
            mime_type = magic.from_buffer(buffer[:MAGIC_SAMPLE_SIZE], mime=True)
        except Exception as e:
            self._logger.warning(f"Magic MIME detection failed: {e}")
            return None

        mime_type = (mime_type or "").split(";")[0].strip().lower()
        if not mime_type or mime_type.startswith("text/") or mime_type in GENERIC_MAGIC_TYPES:
            return None
        if mime_type in TEXT_BEARING_MAGIC_TYPES or mime_type.endswith(("+json", "+xml")):
            return None

        extension = (mimetypes.guess_extension(mime_type) or "").lstrip(".")
        self._logger.debug(f"Detected MIME type using magic: {mime_type}")
        return DetectedType(mime=mime_type, extension=extension)
