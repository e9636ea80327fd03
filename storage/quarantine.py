"""Quarantine storage for uploads that failed content security checks."""

import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional, Sequence, Union

from models.errors import QuarantineError
from models.storage import (
    ANONYMOUS_UPLOADER,
    METADATA_SUFFIX,
    QUARANTINE_SUFFIX,
    FileStatus,
    QuarantineStats,
    StoredFileMetadata,
)
from storage.filesystem import (
    ensure_directory,
    iter_metadata,
    read_metadata,
    relocate,
    utc_now_iso,
    write_metadata,
)


PathLike = Union[str, Path]

RECENT_WINDOW = timedelta(hours=24)


class QuarantineManager:
    """
    Isolates malicious uploads for audit.

    Each quarantined file is stored as ``{hash}.quarantine`` next to a
    ``{hash}.metadata.json`` sidecar describing why it was quarantined.
    Quarantined content is never served.
    """

    def __init__(self, quarantine_dir: PathLike):
        self.quarantine_dir = ensure_directory(quarantine_dir)
        self._logger = logging.getLogger(__name__)

    def quarantine(
        self,
        file_path: PathLike,
        file_hash: str,
        reasons: Sequence[str],
        original_name: Optional[str] = None,
        uploaded_by: Optional[str] = None,
        size: int = 0,
        mime_type: Optional[str] = None,
    ) -> StoredFileMetadata:
        """
        Move a file into quarantine and record why.

        The file ends up either fully quarantined with its sidecar, or still at
        its original path.

        Content already in quarantine keeps its first sidecar; the repeat
        attempt is only logged.

        Args:
            file_path: Current location of the file
            file_hash: SHA-256 of the content, used as the quarantine name
            reasons: Validation reasons that triggered quarantine
            original_name: Client supplied file name
            uploaded_by: Uploader id
            size: File size in bytes
            mime_type: Detected MIME type

        Returns:
            StoredFileMetadata: The sidecar contents (the first record for repeated content)

        Raises:
            QuarantineError: If the file or its sidecar could not be written
        """
        source = Path(file_path)
        destination = self.quarantine_dir / f"{file_hash}{QUARANTINE_SUFFIX}"
        metadata_path = self.quarantine_dir / f"{file_hash}{METADATA_SUFFIX}"

        metadata = StoredFileMetadata(
            original_name=original_name or source.name,
            hash=file_hash,
            size=size,
            status=FileStatus.QUARANTINED,
            mime_type=mime_type,
            uploaded_by=uploaded_by or ANONYMOUS_UPLOADER,
            original_path=str(source),
            quarantine_path=str(destination),
            quarantine_time=utc_now_iso(),
            reasons=list(reasons),
        )

        existing = self._load_record(metadata_path)

        try:
            relocate(source, destination)
        except OSError as e:
            self._logger.error(f"Failed to move {source} into quarantine: {e}")
            raise QuarantineError(f"Failed to quarantine file {file_hash}: {e}") from e

        if existing is not None:
            self._logger.warning(
                f"[SECURITY] Repeat quarantine of {file_hash}: {metadata.original_name} "
                f"(uploaded by {metadata.uploaded_by}), reasons: {', '.join(metadata.reasons)}; "
                f"keeping record from {existing.quarantine_time}"
            )
            return existing

        try:
            write_metadata(metadata_path, metadata.to_dict())
        except OSError as e:
            self._logger.error(f"Failed to write quarantine metadata for {file_hash}: {e}")
            self._restore(destination, source)
            raise QuarantineError(f"Failed to record quarantine metadata for {file_hash}: {e}") from e

        self._logger.warning(
            f"[SECURITY] File quarantined: {metadata.original_name} ({file_hash}), "
            f"reasons: {', '.join(metadata.reasons)}"
        )
        return metadata

    def _load_record(self, metadata_path: Path) -> Optional[StoredFileMetadata]:
        if not metadata_path.exists():
            return None
        data = read_metadata(metadata_path)
        if data is None:
            return None
        try:
            return StoredFileMetadata.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            self._logger.warning(f"Replacing malformed quarantine metadata {metadata_path}: {e}")
            return None

    def _restore(self, quarantined: Path, original: Path) -> None:
        try:
            relocate(quarantined, original)
        except OSError as e:
            self._logger.critical(f"Could not restore {quarantined} to {original}: {e}")

    def list_quarantined(self) -> List[StoredFileMetadata]:
        """Return metadata for every quarantined file, skipping malformed sidecars."""
        records = []
        for path, data in iter_metadata(self.quarantine_dir):
            try:
                records.append(StoredFileMetadata.from_dict(data))
            except (KeyError, TypeError, ValueError) as e:
                self._logger.warning(f"Skipping malformed quarantine metadata {path}: {e}")
        return records

    def get_stats(self, now: Optional[datetime] = None) -> QuarantineStats:
        """Count quarantined files overall and within the last 24 hours."""
        now = now or datetime.now(timezone.utc)
        stats = QuarantineStats()

        for record in self.list_quarantined():
            stats.total += 1
            quarantined_at = _parse_timestamp(record.quarantine_time)
            if quarantined_at and now - quarantined_at < RECENT_WINDOW:
                stats.recent += 1

        return stats


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
