"""
Secure Upload Service - file upload validation, quarantine and safe storage.

This is the main entry point for the FastAPI application.
"""

import logging
from fastapi import FastAPI

from core.config import (
    AppConfig,
    create_fastapi_app,
    setup_middleware,
    create_file_validator,
    create_file_verifier,
    create_quarantine_manager,
    create_safe_store,
    create_temp_upload_manager,
    validate_environment,
    setup_logging
)
from api.endpoints import (
    secure_upload,
    serve_secure_file,
    get_upload_stats,
    verify_file,
    manage_quarantine,
    run_temp_cleanup,
    set_services
)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""

    # Validate environment before starting
    validate_environment()

    # Initialize configuration
    config = AppConfig()

    # Setup logging
    setup_logging(config.log_level)

    # Create FastAPI app
    app = create_fastapi_app()

    # Setup middleware
    setup_middleware(app, config)

    # Create storage and validation services
    quarantine_manager = create_quarantine_manager(config)
    safe_store = create_safe_store(config)
    file_verifier = create_file_verifier(config)
    temp_upload_manager = create_temp_upload_manager(config)
    file_validator = create_file_validator(config, quarantine_manager)

    # Inject dependencies into endpoints
    set_services(config, file_validator, safe_store, quarantine_manager, file_verifier, temp_upload_manager)

    # Register upload routes
    app.post("/api/secure-upload")(secure_upload)
    app.get("/api/secure-files/{filename}")(serve_secure_file)
    app.get("/api/upload-stats")(get_upload_stats)
    app.get("/api/verify/{file_hash}")(verify_file)

    # Register administrative routes
    app.post("/api/admin/quarantine")(manage_quarantine)
    app.post("/api/admin/temp-cleanup")(run_temp_cleanup)

    @app.on_event("startup")
    async def purge_abandoned_uploads():
        temp_upload_manager.purge_stale()

    logging.info("FastAPI application created and configured successfully")
    logging.info(
        f"Configuration: max_file_size={config.max_file_size}, safe_dir={config.safe_dir}, "
        f"quarantine_dir={config.quarantine_dir}"
    )

    return app


# Create the application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    # Run the application
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )
