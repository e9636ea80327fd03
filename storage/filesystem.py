"""Filesystem primitives shared by the safe store and quarantine."""

import errno
import json
import logging
import os
import shutil
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Tuple, Union

from models.storage import METADATA_SUFFIX


PathLike = Union[str, Path]

logger = logging.getLogger(__name__)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def ensure_directory(directory: PathLike) -> Path:
    """Create a directory (and parents) if needed. Safe to call repeatedly."""
    path = Path(directory)
    path.mkdir(parents=True, exist_ok=True)
    return path


def relocate(source: PathLike, destination: PathLike) -> Path:
    """
    Move a file so that it appears at the destination atomically.

    A same-filesystem move is a single rename. Across filesystems the file is
    copied to a temporary name inside the destination directory, renamed into
    place, and only then is the source unlinked.

    Args:
        source: Existing file
        destination: Target path

    Returns:
        Path: The destination path

    Raises:
        OSError: If the file could not be moved; the source is left in place
    """
    source = Path(source)
    destination = Path(destination)

    try:
        os.replace(source, destination)
        return destination
    except OSError as e:
        if e.errno != errno.EXDEV:
            raise

    logger.debug(f"Cross-device move {source} -> {destination}, falling back to copy")
    staging = destination.with_name(f".{destination.name}.{uuid.uuid4().hex}.partial")
    try:
        shutil.copy2(source, staging)
        os.replace(staging, destination)
    except OSError:
        staging.unlink(missing_ok=True)
        raise

    try:
        source.unlink()
    except OSError:
        destination.unlink(missing_ok=True)
        raise
    return destination


def metadata_path_for(file_path: PathLike) -> Path:
    path = Path(file_path)
    return path.with_name(path.name + METADATA_SUFFIX)


def write_metadata(path: PathLike, data: Dict[str, Any]) -> None:
    """Write a JSON sidecar atomically (temp file + rename)."""
    path = Path(path)
    staging = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
    try:
        with open(staging, "w", encoding="utf-8") as handle:
            json.dump(data, handle, indent=2)
        os.replace(staging, path)
    except OSError:
        staging.unlink(missing_ok=True)
        raise


def read_metadata(path: PathLike) -> Optional[Dict[str, Any]]:
    """
    Read a JSON sidecar.

    Returns:
        The decoded object, or None when the sidecar is unreadable or malformed
    """
    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = json.load(handle)
    except (OSError, ValueError) as e:
        logger.warning(f"Skipping unreadable metadata file {path}: {e}")
        return None

    if not isinstance(data, dict):
        logger.warning(f"Skipping metadata file {path}: not a JSON object")
        return None
    return data


def iter_metadata(directory: PathLike) -> Iterator[Tuple[Path, Dict[str, Any]]]:
    """Yield (sidecar path, decoded data) for every readable sidecar in a directory."""
    directory = Path(directory)
    if not directory.is_dir():
        return

    for path in sorted(directory.glob(f"*{METADATA_SUFFIX}")):
        data = read_metadata(path)
        if data is not None:
            yield path, data
