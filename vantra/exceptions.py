from __future__ import annotations
from typing import Dict, Optional


class VantraError(Exception):
    """Base class for every error raised by the sync core."""


class ConfigurationError(VantraError):
    """API URL or key missing. Fatal: nothing can be sent without them."""


class ApiError(VantraError):
    def __init__(self, message: str, status_code: Optional[int] = None, method: str = "", path: str = ""):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.method = method
        self.path = path

    def __str__(self) -> str:
        if self.method:
            return f"{self.method} {self.path}: {self.message}"
        return self.message


class SyncError(VantraError):
    """A multi-step save stopped half way. Writes already applied stay applied."""


class CatalogCreationError(SyncError):
    def __init__(self, message: str, created: Optional[Dict[str, str]] = None):
        super().__init__(message)
        # key -> catalog id of the items that did get created before the failure
        self.created = dict(created or {})
