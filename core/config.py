"""Core configuration and utility functions."""

import logging
import os
from pathlib import Path
from typing import Optional, Set, Tuple

from dotenv import load_dotenv
from fastapi import FastAPI

from core.temp_storage import TempUploadManager
from error_handling.handlers import ErrorHandler, ErrorHandlingMiddleware
from models.errors import ConfigurationError
from models.validation import (
    DEFAULT_ALLOWED_EXTENSIONS,
    DEFAULT_ALLOWED_MIME_TYPES,
    DEFAULT_MAX_FILE_SIZE,
    DEFAULT_MAX_IMAGE_DIMENSION,
    DEFAULT_MIN_ARCHIVE_SIZE,
    SecurityConfig,
)
from storage import FileVerifier, QuarantineManager, SafeStoreManager
from validation.validators import FileValidator

# Load environment variables
load_dotenv()

# Storage locations
QUARANTINE_DIR = "./quarantine"
SAFE_DIR = "./public/secure-uploads"
TEMP_UPLOAD_DIR = "./temp-uploads"
SECURE_FILES_URL_PREFIX = "/api/secure-files"

# Temp upload housekeeping
TEMP_FILE_TTL_HOURS = 1


class AppConfig:
    """Application configuration settings."""

    def __init__(self):
        self.max_file_size = self._get_int("MAX_FILE_SIZE", DEFAULT_MAX_FILE_SIZE)
        self.allowed_mime_types = self._parse_mime_types(os.getenv("ALLOWED_MIME_TYPES", "")) or set(
            DEFAULT_ALLOWED_MIME_TYPES
        )
        self.allowed_extensions = self._parse_extensions(os.getenv("ALLOWED_EXTENSIONS", "")) or set(
            DEFAULT_ALLOWED_EXTENSIONS
        )
        self.min_archive_size = self._get_int("MIN_ARCHIVE_SIZE", DEFAULT_MIN_ARCHIVE_SIZE, minimum=0)
        self.max_image_dimension = self._get_int("MAX_IMAGE_DIMENSION", DEFAULT_MAX_IMAGE_DIMENSION)
        self.dev_project_keywords = self._parse_keywords(os.getenv("DEV_PROJECT_KEYWORDS", ""))

        # Storage configuration
        self.quarantine_dir = Path(os.getenv("QUARANTINE_DIR", QUARANTINE_DIR))
        self.safe_dir = Path(os.getenv("SAFE_DIR", SAFE_DIR))
        self.temp_upload_dir = Path(os.getenv("TEMP_UPLOAD_DIR", TEMP_UPLOAD_DIR))
        self.temp_file_ttl_hours = self._get_int("TEMP_FILE_TTL_HOURS", TEMP_FILE_TTL_HOURS)
        self.secure_files_url_prefix = os.getenv("SECURE_FILES_URL_PREFIX", SECURE_FILES_URL_PREFIX).rstrip("/")

        self.log_level = os.getenv("LOG_LEVEL", "INFO")

    @staticmethod
    def _get_int(name: str, default: int, minimum: int = 1) -> int:
        """Read an integer environment variable, rejecting junk and out-of-range values."""
        raw = os.getenv(name)
        if raw is None or not raw.strip():
            return default
        try:
            value = int(raw)
        except ValueError:
            raise ConfigurationError(f"{name} must be an integer, got {raw!r}")
        if value < minimum:
            raise ConfigurationError(f"{name} must be at least {minimum}, got {value}")
        return value

    def _parse_mime_types(self, mime_types_str: str) -> Optional[Set[str]]:
        """Parse comma-separated MIME types from environment variable."""
        if not mime_types_str:
            return None
        return {mt.strip().lower() for mt in mime_types_str.split(",") if mt.strip()}

    def _parse_extensions(self, extensions_str: str) -> Optional[Set[str]]:
        """Parse comma-separated file extensions from environment variable."""
        if not extensions_str:
            return None
        return {ext.strip() for ext in extensions_str.split(",") if ext.strip()}

    def _parse_keywords(self, keywords_str: str) -> Optional[Tuple[str, ...]]:
        if not keywords_str:
            return None
        return tuple(k.strip().lower() for k in keywords_str.split(",") if k.strip())

    def get_security_config(self) -> SecurityConfig:
        """Get upload security configuration."""
        return SecurityConfig(
            quarantine_dir=self.quarantine_dir,
            safe_dir=self.safe_dir,
            max_file_size=self.max_file_size,
            allowed_mime_types=frozenset(self.allowed_mime_types),
            allowed_extensions=frozenset(self.allowed_extensions),
            max_image_dimension=self.max_image_dimension,
            min_archive_size=self.min_archive_size,
            dev_project_keywords=self.dev_project_keywords,
        )

    def get_public_settings(self) -> dict:
        """Configuration values that are safe to report to clients."""
        return {
            "max_file_size": self.max_file_size,
            "allowed_types": sorted(self.allowed_mime_types),
            "allowed_extensions": sorted(self.allowed_extensions),
        }


def create_fastapi_app() -> FastAPI:
    """Create and configure FastAPI application instance."""
    app = FastAPI(
        title="Secure Upload Service",
        description="File upload validation, quarantine and safe storage",
        version="1.0.0",
    )

    return app


def setup_middleware(app: FastAPI, config: AppConfig) -> None:
    """Configure FastAPI middleware."""
    error_handler = ErrorHandler()
    app.add_middleware(ErrorHandlingMiddleware, error_handler=error_handler)


def create_quarantine_manager(config: AppConfig) -> QuarantineManager:
    return QuarantineManager(config.quarantine_dir)


def create_safe_store(config: AppConfig) -> SafeStoreManager:
    return SafeStoreManager(config.safe_dir)


def create_file_verifier(config: AppConfig) -> FileVerifier:
    return FileVerifier(config.safe_dir, config.quarantine_dir)


def create_temp_upload_manager(config: AppConfig) -> TempUploadManager:
    return TempUploadManager(config.temp_upload_dir, ttl_hours=config.temp_file_ttl_hours)


def create_file_validator(config: AppConfig, quarantine_manager: Optional[QuarantineManager] = None) -> FileValidator:
    """Create file validator instance with configuration."""
    security_config = config.get_security_config()
    return FileValidator(security_config, quarantine_manager=quarantine_manager)


def validate_environment() -> None:
    """Validate that the storage directories can be created."""
    # Skip validation in test environments
    if os.getenv("PYTEST_CURRENT_TEST") or os.getenv("CI"):
        return

    problems = []
    for var, default in (("QUARANTINE_DIR", QUARANTINE_DIR), ("SAFE_DIR", SAFE_DIR), ("TEMP_UPLOAD_DIR", TEMP_UPLOAD_DIR)):
        directory = Path(os.getenv(var, default))
        if directory.exists() and not directory.is_dir():
            problems.append(f"{var}={directory} is not a directory")

    if problems:
        raise ConfigurationError(f"Invalid storage configuration: {'; '.join(problems)}")


def setup_logging(level: str = "INFO") -> None:
    """Configure application logging."""
    log_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(),
        ],
    )

    # Suppress some noisy loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("PIL").setLevel(logging.WARNING)


def get_config() -> AppConfig:
    """Get the global application configuration instance."""
    return AppConfig()
