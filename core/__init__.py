"""Core configuration and utilities."""

from .config import (
    AppConfig,
    create_fastapi_app,
    setup_middleware,
    create_file_validator,
    validate_environment,
    setup_logging,
    get_config
)
from .temp_storage import TempUploadManager

__all__ = [
    'AppConfig',
    'create_fastapi_app',
    'setup_middleware',
    'create_file_validator',
    'validate_environment',
    'setup_logging',
    'get_config',
    'TempUploadManager'
]
