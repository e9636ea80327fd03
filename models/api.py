"""Pydantic models for the upload API requests and responses."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class QuarantineActionRequest(BaseModel):
    """Request model for quarantine administration."""
    action: str = Field(..., description="Management action, currently only 'list'")


class UploadedFileInfo(BaseModel):
    """Public description of a file accepted into safe storage."""
    id: str = Field(..., description="Generated safe file name")
    url: str = Field(..., description="URL the file is served from")
    original_name: str = Field(..., description="Client supplied file name")
    size: int = Field(..., description="File size in bytes")
    mime_type: Optional[str] = Field(None, description="Sniffed MIME type, or the client claim when none was sniffed")
    hash: str = Field(..., description="SHA-256 of the file content")
    is_image: bool = Field(..., description="Whether the file name carries an image extension")
    upload_time: str = Field(..., description="ISO 8601 upload timestamp")


class UploadResponse(BaseModel):
    """Successful upload response."""
    success: bool = True
    file: UploadedFileInfo


class UploadRejectedResponse(BaseModel):
    """Upload rejected by validation."""
    success: bool = False
    error: str = "File failed security validation"
    reasons: List[str] = Field(default_factory=list)
    quarantined: bool = False


class VerificationResponse(BaseModel):
    """Hash verification response."""
    success: bool = True
    verified: bool = Field(..., description="True only for files held in safe storage")
    status: str = Field(..., description="safe or quarantined")
    file: Dict[str, Any] = Field(default_factory=dict)
