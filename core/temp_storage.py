"""Temporary staging of incoming uploads and cleanup of abandoned temp files."""

import logging
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union

from fastapi import UploadFile

from storage.filesystem import ensure_directory
from validation.validators import base_name, sanitize_filename


PathLike = Union[str, Path]

STAGING_CHUNK_SIZE = 1024 * 1024


@dataclass
class TempCleanupPolicy:
    """Configuration policy for temp upload cleanup."""
    ttl_hours: int = 1
    max_cleanup_batch_size: int = 500


class TempUploadManager:
    """
    Owns the temp-upload directory.

    Every upload is written here under a unique name before validation. Files
    normally leave the directory by being stored, quarantined or discarded;
    anything older than the TTL is treated as abandoned.
    """

    def __init__(self, temp_dir: PathLike, ttl_hours: int = 1):
        self.temp_dir = ensure_directory(temp_dir)
        self._policy = TempCleanupPolicy(ttl_hours=ttl_hours)
        self._logger = logging.getLogger(__name__)

        self._cleanup_stats = {
            "total_cleanups_run": 0,
            "last_cleanup_time": None,
            "total_files_cleaned": 0,
        }

    def staging_path(self, original_name: Optional[str]) -> Path:
        """Unique temp path for an upload: ``{uuid4}-{sanitized name}``."""
        return self.temp_dir / f"{uuid.uuid4()}-{sanitize_filename(base_name(original_name or ''))}"

    async def stage(self, upload: UploadFile) -> Path:
        """
        Write a multipart upload to the temp directory.

        Args:
            upload: Incoming FastAPI upload

        Returns:
            Path: Location of the staged file

        Raises:
            OSError: If the file could not be written; partial files are removed
        """
        path = self.staging_path(upload.filename)
        try:
            with open(path, "wb") as handle:
                while True:
                    chunk = await upload.read(STAGING_CHUNK_SIZE)
                    if not chunk:
                        break
                    handle.write(chunk)
        except OSError:
            self.discard(path)
            raise

        self._logger.debug(f"Staged upload {upload.filename!r} at {path}")
        return path

    def discard(self, path: PathLike) -> bool:
        """Delete a staged file. Returns False when it was already gone."""
        try:
            Path(path).unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            self._logger.error(f"Failed to delete temp file {path}: {e}")
            return False

    def purge_stale(self, now: Optional[float] = None) -> Dict[str, Any]:
        """
        Delete temp files older than the TTL policy.

        Args:
            now: Reference timestamp (seconds since epoch), defaults to the current time

        Returns:
            Dictionary with cleanup results
        """
        start_time = time.time()
        now = now if now is not None else start_time
        cutoff = now - self._policy.ttl_hours * 3600

        stale = []
        for path in self.temp_dir.iterdir():
            try:
                if path.is_file() and path.stat().st_mtime < cutoff:
                    stale.append(path)
            except OSError as e:
                self._logger.warning(f"Could not stat temp file {path}: {e}")

        files_to_clean = stale[: self._policy.max_cleanup_batch_size]
        cleaned_count = sum(1 for path in files_to_clean if self.discard(path))

        if cleaned_count:
            self._logger.info(f"Cleaned up {cleaned_count} abandoned temp uploads")

        self._cleanup_stats["total_cleanups_run"] += 1
        self._cleanup_stats["last_cleanup_time"] = now
        self._cleanup_stats["total_files_cleaned"] += cleaned_count

        return {
            "files_cleaned": cleaned_count,
            "files_remaining": sum(1 for path in self.temp_dir.iterdir() if path.is_file()),
            "duration_seconds": time.time() - start_time,
            "batch_limited": len(stale) > self._policy.max_cleanup_batch_size,
        }

    def get_stats(self) -> Dict[str, Any]:
        return dict(self._cleanup_stats, ttl_hours=self._policy.ttl_hours)
