"""Safe storage, quarantine and audit lookups for uploaded files."""

from .quarantine import QuarantineManager
from .safe_store import SafeStoreManager
from .verification import FileVerifier

__all__ = ["QuarantineManager", "SafeStoreManager", "FileVerifier"]
