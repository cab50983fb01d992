"""
Structured errors raised by supervisor operations.

Every error carries a reason code, the unit it concerns and a human-readable
detail, so the request dispatcher can render an actionable message without
inspecting exception types.
"""

from typing import Any, Dict, Optional


class BotPanelError(Exception):
    """Base class for all operation-level failures."""

    category = "Error"
    status_code = 500

    def __init__(self, code: str, unit: Optional[str] = None, detail: str = "") -> None:
        self.code = code
        self.unit = unit
        self.detail = detail or code
        super().__init__(f"{code}: {self.detail}" if unit is None else f"{code} [{unit}]: {self.detail}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.code,
            "category": self.category,
            "unit": self.unit,
            "detail": self.detail,
        }


class NotFoundError(BotPanelError):
    category = "NotFound"
    status_code = 404


class ConflictError(BotPanelError):
    category = "Conflict"
    status_code = 409


class InvalidInputError(BotPanelError):
    category = "InvalidInput"
    status_code = 400


class ResolutionError(BotPanelError):
    category = "ResolutionFailure"
    status_code = 422


class IOFailureError(BotPanelError):
    category = "IOFailure"
    status_code = 500


#* --- Reason codes ---
NOT_FOUND = "NotFound"
ALREADY_RUNNING = "AlreadyRunning"
NOT_RUNNING = "NotRunning"
BUSY_RUNNING = "BusyRunning"
BUSY_INSTALLING = "BusyInstalling"
BAD_ARCHIVE_FORMAT = "BadArchiveFormat"
MISSING_FIELD = "MissingField"
INVALID_ENV_VAR = "InvalidEnvVar"
ENTRYPOINT_NOT_FOUND = "EntrypointNotFound"
NO_MANIFEST = "NoManifest"
EXTRACTION_FAILED = "ExtractionFailed"
SPAWN_FAILED = "SpawnFailed"
FILESYSTEM_ERROR = "FilesystemError"
