"""Safe storage for uploads that passed validation."""

import logging
import uuid
from pathlib import Path
from typing import Optional, Union

from models.errors import StorageError
from models.storage import ANONYMOUS_UPLOADER, METADATA_SUFFIX, FileStatus, StoredFileMetadata
from models.validation import ValidationResult
from storage.filesystem import (
    ensure_directory,
    metadata_path_for,
    relocate,
    utc_now_iso,
    write_metadata,
)


PathLike = Union[str, Path]


class SafeStoreManager:
    """Moves validated uploads into the public safe directory under unguessable names."""

    def __init__(self, safe_dir: PathLike):
        self.safe_dir = ensure_directory(safe_dir)
        self._logger = logging.getLogger(__name__)

    def store(
        self,
        file_path: PathLike,
        result: ValidationResult,
        original_name: str,
        uploaded_by: Optional[str] = None,
        client_mime_type: Optional[str] = None,
    ) -> StoredFileMetadata:
        """
        Move a validated file into safe storage.

        Args:
            file_path: Temporary location of the file
            result: Validation result for the file; must be valid
            original_name: Client supplied file name
            uploaded_by: Uploader id
            client_mime_type: MIME type claimed by the client, used when none was sniffed

        Returns:
            StoredFileMetadata: The sidecar contents

        Raises:
            StorageError: If the result is not valid or the file could not be stored
        """
        if not result.is_valid or result.quarantined:
            raise StorageError(
                f"Refusing to store file that failed validation: {original_name}",
                error_code="STORAGE_REFUSED",
            )

        safe_name = f"{uuid.uuid4()}-{result.sanitized_name}"
        source = Path(file_path)
        destination = self.safe_dir / safe_name

        metadata = StoredFileMetadata(
            original_name=original_name,
            hash=result.hash,
            size=result.size,
            status=FileStatus.SAFE,
            mime_type=result.detected_mime_type or client_mime_type,
            uploaded_by=uploaded_by or ANONYMOUS_UPLOADER,
            safe_file_name=safe_name,
            upload_time=utc_now_iso(),
        )

        try:
            relocate(source, destination)
        except OSError as e:
            self._logger.error(f"Failed to move {source} into safe storage: {e}")
            raise StorageError(f"Failed to store file {original_name}: {e}") from e

        try:
            write_metadata(metadata_path_for(destination), metadata.to_dict())
        except OSError as e:
            self._logger.error(f"Failed to write metadata for {safe_name}: {e}")
            try:
                relocate(destination, source)
            except OSError as restore_error:
                self._logger.critical(f"Could not restore {destination} to {source}: {restore_error}")
            raise StorageError(f"Failed to record metadata for {original_name}: {e}") from e

        self._logger.info(f"Stored {original_name} as {safe_name} ({result.hash[:12]})")
        return metadata

    def resolve(self, filename: str) -> Optional[Path]:
        """
        Find a stored file for serving.

        Names containing path separators, parent references, or pointing at a
        metadata sidecar are never resolved.

        Returns:
            Path to the stored file, or None
        """
        if not filename or filename != Path(filename).name or filename in (".", ".."):
            return None
        if "\\" in filename or filename.endswith(METADATA_SUFFIX) or filename.startswith("."):
            return None

        candidate = (self.safe_dir / filename).resolve()
        if candidate.parent != self.safe_dir.resolve() or not candidate.is_file():
            return None
        return candidate

    def count(self) -> int:
        """Number of files currently held in safe storage."""
        return sum(
            1
            for path in self.safe_dir.iterdir()
            if path.is_file() and not path.name.endswith(METADATA_SUFFIX) and not path.name.startswith(".")
        )
