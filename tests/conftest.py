"""
Test configuration and fixtures for the secure upload service.

This module provides common fixtures and configuration for all tests.
"""

import os
import sys
import tempfile
from pathlib import Path
from typing import Generator

import pytest
from fastapi.testclient import TestClient

# Add the parent directory to the path so we can import main
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Importing main builds the module-level app; keep its directories out of the checkout
_import_root = Path(tempfile.mkdtemp(prefix="secure-upload-tests-"))
for _var, _name in (("QUARANTINE_DIR", "quarantine"), ("SAFE_DIR", "safe"), ("TEMP_UPLOAD_DIR", "temp")):
    os.environ.setdefault(_var, str(_import_root / _name))

from models.validation import SecurityConfig
from storage import FileVerifier, QuarantineManager, SafeStoreManager
from validation.validators import FileValidator


@pytest.fixture
def storage_dirs(tmp_path: Path) -> dict:
    """
    Fresh storage directories for one test.

    Returns:
        dict: Paths for quarantine, safe and temp directories
    """
    dirs = {
        "quarantine": tmp_path / "quarantine",
        "safe": tmp_path / "public" / "secure-uploads",
        "temp": tmp_path / "temp-uploads",
    }
    dirs["temp"].mkdir(parents=True)
    return dirs


@pytest.fixture
def security_config(storage_dirs: dict) -> SecurityConfig:
    """Default security configuration rooted in the test directories."""
    return SecurityConfig(quarantine_dir=storage_dirs["quarantine"], safe_dir=storage_dirs["safe"])


@pytest.fixture
def quarantine_manager(storage_dirs: dict) -> QuarantineManager:
    return QuarantineManager(storage_dirs["quarantine"])


@pytest.fixture
def safe_store(storage_dirs: dict) -> SafeStoreManager:
    return SafeStoreManager(storage_dirs["safe"])


@pytest.fixture
def file_verifier(storage_dirs: dict) -> FileVerifier:
    return FileVerifier(storage_dirs["safe"], storage_dirs["quarantine"])


@pytest.fixture
def file_validator(security_config: SecurityConfig, quarantine_manager: QuarantineManager) -> FileValidator:
    return FileValidator(security_config, quarantine_manager=quarantine_manager)


@pytest.fixture
def write_upload(storage_dirs: dict):
    """
    Factory fixture writing content into the temp directory.

    Returns:
        Callable[[str, bytes], Path]
    """
    def _write(name: str, content: bytes) -> Path:
        path = storage_dirs["temp"] / name
        path.write_bytes(content)
        return path

    return _write


@pytest.fixture
def app_env(storage_dirs: dict, monkeypatch: pytest.MonkeyPatch) -> dict:
    """Point the application configuration at the test directories."""
    monkeypatch.setenv("QUARANTINE_DIR", str(storage_dirs["quarantine"]))
    monkeypatch.setenv("SAFE_DIR", str(storage_dirs["safe"]))
    monkeypatch.setenv("TEMP_UPLOAD_DIR", str(storage_dirs["temp"]))
    return storage_dirs


@pytest.fixture
def test_client(app_env: dict) -> Generator[TestClient, None, None]:
    """
    FastAPI test client bound to a freshly created application.

    Yields:
        TestClient: Configured FastAPI test client
    """
    from main import create_app

    with TestClient(create_app()) as client:
        yield client
