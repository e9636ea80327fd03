"""Persisted metadata models for safe-stored and quarantined files."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


ANONYMOUS_UPLOADER = "anonymous"
METADATA_SUFFIX = ".metadata.json"
QUARANTINE_SUFFIX = ".quarantine"


class FileStatus(Enum):
    """Where a known file currently lives."""
    SAFE = "safe"
    QUARANTINED = "quarantined"
    NOT_FOUND = "not_found"


@dataclass
class StoredFileMetadata:
    """JSON sidecar written next to every retained file. Never mutated after creation."""
    original_name: str
    hash: str
    size: int
    status: FileStatus
    mime_type: Optional[str] = None
    uploaded_by: str = ANONYMOUS_UPLOADER
    safe_file_name: Optional[str] = None
    quarantine_path: Optional[str] = None
    original_path: Optional[str] = None
    upload_time: Optional[str] = None  # ISO 8601
    quarantine_time: Optional[str] = None  # ISO 8601
    reasons: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "original_name": self.original_name,
            "hash": self.hash,
            "size": self.size,
            "mime_type": self.mime_type,
            "uploaded_by": self.uploaded_by,
            "status": self.status.value,
        }
        if self.status == FileStatus.SAFE:
            data["safe_file_name"] = self.safe_file_name
            data["upload_time"] = self.upload_time
        else:
            data["original_path"] = self.original_path
            data["quarantine_path"] = self.quarantine_path
            data["quarantine_time"] = self.quarantine_time
            data["reasons"] = list(self.reasons)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StoredFileMetadata":
        """Rebuild a record from a sidecar. Raises KeyError/ValueError on malformed data."""
        return cls(
            original_name=data.get("original_name", ""),
            hash=data["hash"],
            size=int(data.get("size", 0)),
            status=FileStatus(data["status"]),
            mime_type=data.get("mime_type"),
            uploaded_by=data.get("uploaded_by") or ANONYMOUS_UPLOADER,
            safe_file_name=data.get("safe_file_name"),
            quarantine_path=data.get("quarantine_path"),
            original_path=data.get("original_path"),
            upload_time=data.get("upload_time"),
            quarantine_time=data.get("quarantine_time"),
            reasons=list(data.get("reasons", [])),
        )


@dataclass
class VerificationResult:
    """Outcome of a hash lookup across safe storage and quarantine."""
    status: FileStatus
    metadata: Optional[StoredFileMetadata] = None

    @property
    def found(self) -> bool:
        return self.status != FileStatus.NOT_FOUND


@dataclass
class QuarantineStats:
    """Quarantine totals for the admin statistics endpoint."""
    total: int = 0
    recent: int = 0  # quarantined within the last 24 hours
