"""Hash lookups across safe storage and quarantine."""

import logging
import re
from pathlib import Path
from typing import Union

from models.storage import FileStatus, StoredFileMetadata, VerificationResult
from storage.filesystem import iter_metadata


PathLike = Union[str, Path]

SHA256_HEX = re.compile(r"^[0-9a-f]{64}$")


class FileVerifier:
    """Answers "have we seen this content, and where is it?" for a SHA-256 hash."""

    def __init__(self, safe_dir: PathLike, quarantine_dir: PathLike):
        self.safe_dir = Path(safe_dir)
        self.quarantine_dir = Path(quarantine_dir)
        self._logger = logging.getLogger(__name__)

    @staticmethod
    def is_valid_hash(file_hash: str) -> bool:
        return bool(file_hash) and SHA256_HEX.match(file_hash.lower()) is not None

    def verify(self, file_hash: str) -> VerificationResult:
        """
        Look a hash up in safe storage, then in quarantine.

        A linear scan over metadata sidecars; malformed sidecars are skipped.

        Args:
            file_hash: Hex SHA-256 digest

        Returns:
            VerificationResult: SAFE or QUARANTINED with the matching metadata,
            or NOT_FOUND
        """
        file_hash = file_hash.lower()

        for directory, status in ((self.safe_dir, FileStatus.SAFE), (self.quarantine_dir, FileStatus.QUARANTINED)):
            for path, data in iter_metadata(directory):
                if data.get("hash") != file_hash:
                    continue
                try:
                    metadata = StoredFileMetadata.from_dict(data)
                except (KeyError, TypeError, ValueError) as e:
                    self._logger.warning(f"Skipping malformed metadata {path}: {e}")
                    continue
                self._logger.debug(f"Hash {file_hash[:12]} found in {status.value} storage")
                return VerificationResult(status=status, metadata=metadata)

        return VerificationResult(status=FileStatus.NOT_FOUND)
