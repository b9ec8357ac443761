"""Utility functions and classes for PakeForge."""

from pakeforge.utils.exceptions import (
    ApplicationError,
    BuildError,
    BuildInProgressError,
    ConfigValidationError,
    ConfigurationError,
    EnvironmentToolError,
    EventBusError,
    ExternalToolFailureError,
    LaunchFailedError,
    ManagerError,
    ManagerInitializationError,
    ManagerShutdownError,
    PakeForgeError,
    ProjectNotFoundError,
    StoreError,
    ValidationErrorKind,
)
