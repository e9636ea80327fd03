"""API endpoints and route handlers."""

from .endpoints import (
    get_upload_stats,
    manage_quarantine,
    run_temp_cleanup,
    secure_upload,
    serve_secure_file,
    set_services,
    verify_file,
)

__all__ = [
    "secure_upload",
    "serve_secure_file",
    "get_upload_stats",
    "verify_file",
    "manage_quarantine",
    "run_temp_cleanup",
    "set_services",
]
