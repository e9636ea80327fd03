"""FastAPI route handlers for secure uploads."""

import asyncio
import logging
from typing import Optional

from fastapi import File, Request, UploadFile
from fastapi.responses import FileResponse, JSONResponse

from core.config import AppConfig
from core.temp_storage import TempUploadManager
from error_handling.handlers import ErrorHandler, ErrorResponseHandler
from models.api import (
    QuarantineActionRequest,
    UploadedFileInfo,
    UploadRejectedResponse,
    UploadResponse,
    VerificationResponse,
)
from models.errors import StorageError
from models.storage import ANONYMOUS_UPLOADER, FileStatus
from storage import FileVerifier, QuarantineManager, SafeStoreManager
from validation.rules import IMAGE_EXTENSIONS
from validation.validators import FileValidator, extension_of

# Services will be injected from main.py
app_config: Optional[AppConfig] = None
file_validator: Optional[FileValidator] = None
safe_store: Optional[SafeStoreManager] = None
quarantine_manager: Optional[QuarantineManager] = None
file_verifier: Optional[FileVerifier] = None
temp_upload_manager: Optional[TempUploadManager] = None

error_response_handler = ErrorResponseHandler(ErrorHandler())

# Served files must never be interpreted or framed by the browser
SECURE_FILE_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Content-Security-Policy": "default-src 'none'",
}


def set_services(
    config: AppConfig,
    validator: FileValidator,
    store: SafeStoreManager,
    quarantine: QuarantineManager,
    verifier: FileVerifier,
    temp_manager: TempUploadManager,
) -> None:
    """Set the service instances used by the endpoints."""
    global app_config, file_validator, safe_store, quarantine_manager, file_verifier, temp_upload_manager
    app_config = config
    file_validator = validator
    safe_store = store
    quarantine_manager = quarantine
    file_verifier = verifier
    temp_upload_manager = temp_manager


def get_uploader_id(request: Request) -> str:
    """Uploader id set by an upstream authentication layer, or anonymous."""
    return getattr(request.state, "user_id", None) or ANONYMOUS_UPLOADER


async def secure_upload(request: Request, file: UploadFile = File(...)):
    """
    Validate an uploaded file and move it into safe storage.

    Rejected files are deleted unless they were quarantined.

    Returns:
        JSONResponse with the stored file description, or the rejection reasons
    """
    original_name = file.filename or "unnamed"
    uploaded_by = get_uploader_id(request)
    logging.info(f"[SECURE UPLOAD] Processing file: {original_name}, Content-Type: {file.content_type}")

    temp_path = None
    try:
        temp_path = await temp_upload_manager.stage(file)
        result = await file_validator.validate_file(temp_path, original_name, uploaded_by)

        if not result.is_valid:
            if not result.quarantined:
                temp_upload_manager.discard(temp_path)
            logging.warning(
                f"[SECURE UPLOAD] File rejected: {original_name}, quarantined: {result.quarantined}, "
                f"reasons: {result.reasons}"
            )
            rejection = UploadRejectedResponse(reasons=result.reasons, quarantined=result.quarantined)
            return JSONResponse(content=rejection.model_dump(), status_code=400)

        metadata = await asyncio.to_thread(
            safe_store.store, temp_path, result, original_name, uploaded_by, file.content_type
        )

    except (StorageError, OSError) as e:
        if temp_path is not None:
            temp_upload_manager.discard(temp_path)
        return await error_response_handler.handle_json_error(e, request, {"file_name": original_name})

    logging.info(f"[SECURE UPLOAD] File stored safely: {original_name} -> {metadata.safe_file_name}")

    info = UploadedFileInfo(
        id=metadata.safe_file_name,
        url=f"{app_config.secure_files_url_prefix}/{metadata.safe_file_name}",
        original_name=original_name,
        size=metadata.size,
        mime_type=metadata.mime_type,
        hash=metadata.hash,
        is_image=extension_of(original_name) in IMAGE_EXTENSIONS,
        upload_time=metadata.upload_time,
    )
    return JSONResponse(content=UploadResponse(file=info).model_dump())


async def serve_secure_file(filename: str):
    """Serve a file from safe storage with hardened response headers."""
    path = safe_store.resolve(filename)
    if path is None:
        logging.warning(f"[SECURITY] Rejected secure file request: {filename!r}")
        return JSONResponse(content={"success": False, "error": "File not found"}, status_code=404)

    return FileResponse(path, headers=SECURE_FILE_HEADERS)


async def get_upload_stats():
    """
    Get upload and quarantine statistics.

    Returns:
        JSONResponse with storage counts and the active upload limits
    """
    quarantine_stats = await asyncio.to_thread(quarantine_manager.get_stats)
    safe_files = await asyncio.to_thread(safe_store.count)

    return JSONResponse(
        content={
            "success": True,
            "stats": {
                "safe_files": safe_files,
                "quarantined_files": quarantine_stats.total,
                "recent_quarantined": quarantine_stats.recent,
                **app_config.get_public_settings(),
            },
        }
    )


async def verify_file(file_hash: str):
    """
    Look up a file by its SHA-256 hash.

    Args:
        file_hash: Hex encoded SHA-256 digest

    Returns:
        JSONResponse with the stored metadata, 400 for a malformed hash, 404 when unknown
    """
    if not file_verifier.is_valid_hash(file_hash):
        return JSONResponse(content={"success": False, "error": "Invalid file hash"}, status_code=400)

    verification = await asyncio.to_thread(file_verifier.verify, file_hash)
    if not verification.found:
        return JSONResponse(content={"success": False, "error": "File not found"}, status_code=404)

    response = VerificationResponse(
        verified=verification.status == FileStatus.SAFE,
        status=verification.status.value,
        file=verification.metadata.to_dict(),
    )
    return JSONResponse(content=response.model_dump())


async def manage_quarantine(action_request: QuarantineActionRequest):
    """
    Quarantine administration.

    Access control is left to the deployment's authentication layer.
    """
    if action_request.action != "list":
        return JSONResponse(
            content={"success": False, "error": f"Invalid action: {action_request.action}"}, status_code=400
        )

    records = await asyncio.to_thread(quarantine_manager.list_quarantined)
    return JSONResponse(
        content={
            "success": True,
            "count": len(records),
            "files": [record.to_dict() for record in records],
        }
    )


async def run_temp_cleanup():
    """Manually purge abandoned temp uploads."""
    results = await asyncio.to_thread(temp_upload_manager.purge_stale)
    return JSONResponse(content={"success": True, **results, "totals": temp_upload_manager.get_stats()})
