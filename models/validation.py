"""Validation models and enums for upload security checks."""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Optional, Tuple


MEGABYTE = 1024 * 1024

DEFAULT_MAX_FILE_SIZE = 500 * MEGABYTE

DEFAULT_ALLOWED_MIME_TYPES = frozenset({
    "image/jpeg",
    "image/png",
    "image/gif",
    "image/webp",
    "image/bmp",
    "video/mp4",
    "video/webm",
    "video/quicktime",
    "audio/mpeg",
    "audio/wav",
    "audio/ogg",
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "text/plain",
    "text/csv",
    "application/zip",
    "application/x-rar-compressed",
    "application/x-7z-compressed",
    "application/x-tar",
    "application/gzip",
})

DEFAULT_ALLOWED_EXTENSIONS = frozenset({
    ".jpg", ".jpeg", ".png", ".gif", ".webp", ".bmp",
    ".mp4", ".webm", ".mov",
    ".mp3", ".wav", ".ogg",
    ".pdf", ".doc", ".docx", ".txt", ".csv",
    ".zip", ".rar", ".7z", ".tar", ".gz",
})

DEFAULT_MAX_IMAGE_DIMENSION = 50_000
DEFAULT_MIN_ARCHIVE_SIZE = 1000
DEFAULT_TEXT_SCAN_WINDOW = 10_000


class FileDomain(Enum):
    """Likely content domain of an upload, used to suppress noisy pattern rules."""
    MEDIA = "media"
    IMAGE = "image"
    ARCHIVE = "archive"
    DEVELOPMENT_PROJECT = "development_project"


@dataclass(frozen=True)
class DetectedType:
    """File type sniffed from content, independent of the name or client MIME."""
    mime: str
    extension: str


def normalize_extension(extension: str) -> str:
    """Lower-case an extension and make sure it carries a leading dot."""
    extension = extension.strip().lower()
    if extension and not extension.startswith("."):
        extension = "." + extension
    return extension


@dataclass(frozen=True)
class SecurityConfig:
    """Process-wide upload security settings. Immutable after construction."""
    quarantine_dir: Path = Path("quarantine")
    safe_dir: Path = Path("public") / "secure-uploads"
    max_file_size: int = DEFAULT_MAX_FILE_SIZE
    allowed_mime_types: FrozenSet[str] = DEFAULT_ALLOWED_MIME_TYPES
    allowed_extensions: FrozenSet[str] = DEFAULT_ALLOWED_EXTENSIONS
    max_image_dimension: int = DEFAULT_MAX_IMAGE_DIMENSION
    min_archive_size: int = DEFAULT_MIN_ARCHIVE_SIZE
    text_scan_window: int = DEFAULT_TEXT_SCAN_WINDOW
    dev_project_keywords: Optional[Tuple[str, ...]] = None

    def __post_init__(self):
        # frozen dataclass: normalise through object.__setattr__
        object.__setattr__(self, "quarantine_dir", Path(self.quarantine_dir))
        object.__setattr__(self, "safe_dir", Path(self.safe_dir))
        object.__setattr__(self, "allowed_mime_types", frozenset(m.strip().lower() for m in self.allowed_mime_types))
        object.__setattr__(
            self, "allowed_extensions", frozenset(normalize_extension(e) for e in self.allowed_extensions)
        )
        if self.max_file_size <= 0:
            raise ValueError("max_file_size must be positive")


@dataclass
class ValidationResult:
    """Verdict for one upload attempt."""
    is_valid: bool = True
    reasons: List[str] = field(default_factory=list)
    sanitized_name: str = ""
    detected_mime_type: Optional[str] = None
    hash: str = ""
    size: int = 0
    quarantined: bool = False
    quarantine_required: bool = False

    def reject(self, *reasons: str) -> None:
        """Mark the result invalid and record the reasons in order."""
        self.is_valid = False
        self.reasons.extend(reasons)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "reasons": list(self.reasons),
            "sanitized_name": self.sanitized_name,
            "detected_mime_type": self.detected_mime_type,
            "hash": self.hash,
            "size": self.size,
            "quarantined": self.quarantined,
        }
