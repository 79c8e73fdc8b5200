"""Plugin error kinds, exceptions, and structured operation results."""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError
from sqlalchemy.exc import SQLAlchemyError


class PluginErrorKind(str, Enum):
    """Error kinds surfaced by the plugin system."""

    INVALID_CONFIG = "INVALID_CONFIG"
    CONFLICT = "CONFLICT"
    NOT_FOUND = "NOT_FOUND"
    DEPENDENCY_MISSING = "DEPENDENCY_MISSING"
    IO_FAILURE = "IO_FAILURE"
    PARSE_FAILURE = "PARSE_FAILURE"
    UNEXPECTED = "UNEXPECTED"


class PluginError(Exception):
    """Base class for plugin system errors."""

    kind = PluginErrorKind.UNEXPECTED

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidConfigError(PluginError):
    kind = PluginErrorKind.INVALID_CONFIG

    def __init__(self, reasons: List[str]):
        super().__init__(f"Invalid plugin configuration: {'; '.join(reasons)}")
        self.reasons = reasons


class ConflictError(PluginError):
    kind = PluginErrorKind.CONFLICT

    def __init__(self, existing_name: str, reason: str = "already exists"):
        super().__init__(f"Plugin conflict: {existing_name} {reason}")
        self.existing_name = existing_name


class PluginNotFoundError(PluginError):
    kind = PluginErrorKind.NOT_FOUND

    def __init__(self, name: str):
        super().__init__(f"Plugin {name} not found")
        self.name = name


class DescriptorParseError(PluginError):
    kind = PluginErrorKind.PARSE_FAILURE


class ReloadInProgressError(PluginError):
    """Raised when a reload is requested while another one is running."""

    kind = PluginErrorKind.CONFLICT

    def __init__(self):
        super().__init__("A plugin reload is already in progress")


def classify_error(error: BaseException) -> PluginErrorKind:
    """Map an exception to the error kind reported to callers."""
    if isinstance(error, PluginError):
        return error.kind
    if isinstance(error, ValidationError):
        return PluginErrorKind.INVALID_CONFIG
    if isinstance(error, (OSError, SQLAlchemyError)):
        return PluginErrorKind.IO_FAILURE
    return PluginErrorKind.UNEXPECTED


class OperationResult(BaseModel):
    """Structured result returned by install/update/uninstall/backup."""

    success: bool
    message: str
    error: Optional[PluginErrorKind] = None
    reasons: List[str] = Field(default_factory=list)
    plugin: Optional[Dict[str, Any]] = None
    data: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def ok(cls, message: str, plugin: Optional[Dict[str, Any]] = None, **data: Any) -> "OperationResult":
        return cls(success=True, message=message, plugin=plugin, data=data)

    @classmethod
    def failure(cls, error: BaseException, message: str) -> "OperationResult":
        return cls(
            success=False,
            error=classify_error(error),
            message=f"{message}: {error}",
            reasons=list(getattr(error, "reasons", [])),
        )
