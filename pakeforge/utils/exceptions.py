from __future__ import annotations

import enum
from typing import Any, Optional


class PakeForgeError(Exception):
    """Base exception for all PakeForge errors."""

    kind: str = "error"

    def __init__(self, message: str, **kwargs: Any) -> None:
        """
        Initialize exception.

        Args:
            message: Error message
            **kwargs: Additional error information
        """
        self.message = message
        self.details = kwargs
        super().__init__(message)

    def __str__(self) -> str:
        """String representation."""
        return f"{self.message}"

    def to_dict(self) -> dict[str, Any]:
        """Describe the error for a caller that renders feedback."""
        return {"kind": self.kind, "message": self.message, "details": dict(self.details)}


class ApplicationError(PakeForgeError):
    """Exception raised for application-related errors."""

    kind = "application"


class ManagerError(PakeForgeError):
    """Base exception for manager-related errors."""

    kind = "manager"

    def __init__(self, message: str, manager_name: Optional[str] = None, **kwargs: Any) -> None:
        """
        Initialize manager error.

        Args:
            message: Error message
            manager_name: Name of the affected manager
            **kwargs: Additional error information
        """
        super().__init__(message, manager_name=manager_name, **kwargs)
        self.manager_name = manager_name

    def __str__(self) -> str:
        """String representation."""
        if self.manager_name:
            return f"{self.message} (Manager: {self.manager_name})"
        return super().__str__()


class ManagerInitializationError(ManagerError):
    """Exception raised when a manager fails to initialize."""

    pass


class ManagerShutdownError(ManagerError):
    """Exception raised when a manager fails to shut down cleanly."""

    pass


class ConfigurationError(PakeForgeError):
    """Exception raised for configuration-related errors."""

    kind = "configuration"

    def __init__(
            self, message: str, *args: Any, config_key: Optional[str] = None, **kwargs: Any
    ) -> None:
        """Initialize a ConfigurationError.

        Args:
            message: A descriptive error message.
            *args: Additional positional arguments to pass to the parent Exception.
            config_key: The configuration key that caused the error.
            **kwargs: Additional keyword arguments to pass to the parent Exception.
        """
        details = kwargs.pop("details", {})
        if config_key:
            details["config_key"] = config_key
        super().__init__(message, *args, details=details, **kwargs)


class EventBusError(PakeForgeError):
    """Exception raised for event bus-related errors."""

    kind = "event_bus"

    def __init__(
            self, message: str, *args: Any, event_type: Optional[str] = None, **kwargs: Any
    ) -> None:
        details = kwargs.pop("details", {})
        if event_type:
            details["event_type"] = event_type
        super().__init__(message, *args, details=details, **kwargs)


class ValidationErrorKind(str, enum.Enum):
    """Reasons a packaging configuration is rejected."""

    MISSING_URL = "MissingUrl"
    MISSING_NAME = "MissingName"
    INVALID_NAME = "InvalidName"


class ConfigValidationError(PakeForgeError):
    """Exception raised when a packaging configuration fails validation.

    Validation errors are recovered locally by the caller and are always raised
    before anything is persisted or built.
    """

    def __init__(self, kind: ValidationErrorKind, message: str, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.error_kind = ValidationErrorKind(kind)

    @property
    def kind(self) -> str:  # type: ignore[override]
        return self.error_kind.value


class StoreError(PakeForgeError):
    """Exception raised for project store errors."""

    kind = "store"


class ProjectNotFoundError(StoreError):
    """Exception raised when a project id is not present in the store."""

    kind = "NotFound"

    def __init__(self, project_id: str, **kwargs: Any) -> None:
        super().__init__(f"Project not found: {project_id}", project_id=project_id, **kwargs)
        self.project_id = project_id


class BuildError(PakeForgeError):
    """Exception raised when a build session terminates in error."""

    kind = "build"

    def __init__(self, message: str, *args: Any, project_id: Optional[str] = None, **kwargs: Any) -> None:
        details = kwargs.pop("details", {})
        if project_id:
            details["project_id"] = project_id
        super().__init__(message, *args, details=details, **kwargs)
        self.project_id = project_id


class LaunchFailedError(BuildError):
    """The external packaging tool could not be started."""

    kind = "LaunchFailed"


class ExternalToolFailureError(BuildError):
    """The external packaging tool reported a failure."""

    kind = "ExternalToolFailure"

    def __init__(self, message: str, *args: Any, return_code: Optional[int] = None, **kwargs: Any) -> None:
        super().__init__(message, *args, **kwargs)
        self.return_code = return_code
        if return_code is not None:
            self.details["details"]["return_code"] = return_code


class BuildInProgressError(PakeForgeError):
    """Exception raised when a build is requested while another is running."""

    kind = "BuildInProgress"

    def __init__(self, project_id: Optional[str] = None, **kwargs: Any) -> None:
        message = "A build is already in progress"
        if project_id:
            message = f"{message} (project {project_id})"
        super().__init__(message, active_project_id=project_id, **kwargs)


class EnvironmentToolError(PakeForgeError):
    """Exception raised when an environment tool action cannot be performed."""

    kind = "environment"

    def __init__(self, message: str, *args: Any, tool: Optional[str] = None, **kwargs: Any) -> None:
        details = kwargs.pop("details", {})
        if tool:
            details["tool"] = tool
        super().__init__(message, *args, details=details, **kwargs)
