from __future__ import annotations

import logging
import logging.handlers
import os
import pathlib
import sys
from typing import Any, Dict, List, Optional, Union

import structlog
from pythonjsonlogger import jsonlogger

from pakeforge.core.base import PakeForgeManager
from pakeforge.utils.exceptions import ManagerInitializationError, ManagerShutdownError


class LoggingManager(PakeForgeManager):
    """Manages application logging configuration and access.

    The Logging Manager configures Python's logging module with console and
    rotating file handlers based on configuration, and hands out loggers to
    the other components.
    """

    # Mapping from string log levels to logging module constants
    LOG_LEVELS = {
        "debug": logging.DEBUG,
        "info": logging.INFO,
        "warning": logging.WARNING,
        "error": logging.ERROR,
        "critical": logging.CRITICAL,
    }

    def __init__(self, config_manager: Any) -> None:
        """Initialize the Logging Manager.

        Args:
            config_manager: The Configuration Manager to use for logging settings.
        """
        super().__init__(name="logging_manager")
        self._config_manager = config_manager
        self._root_logger: Optional[logging.Logger] = None
        self._file_handler: Optional[logging.Handler] = None
        self._console_handler: Optional[logging.Handler] = None
        self._log_directory: Optional[pathlib.Path] = None
        self._enable_structlog = False
        self._handlers: List[logging.Handler] = []

    async def initialize(self) -> None:
        """Initialize the Logging Manager.

        Raises:
            ManagerInitializationError: If initialization fails.
        """
        try:
            logging_config = await self._config_manager.get("logging", {})
            log_level = self._level(logging_config.get("level", "INFO"))
            log_format = logging_config.get("format", "json").lower()
            file_config = logging_config.get("file", {})
            console_config = logging_config.get("console", {})

            self._root_logger = logging.getLogger()
            self._root_logger.setLevel(log_level)

            for handler in list(self._root_logger.handlers):
                self._root_logger.removeHandler(handler)

            if log_format == "json":
                self._enable_structlog = True
                formatter = self._create_json_formatter()
            else:
                formatter = logging.Formatter(
                    "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
                )

            if console_config.get("enabled", True):
                self._console_handler = logging.StreamHandler(sys.stdout)
                self._console_handler.setLevel(self._level(console_config.get("level", "INFO")))
                self._console_handler.setFormatter(formatter)
                self._root_logger.addHandler(self._console_handler)
                self._handlers.append(self._console_handler)

            if file_config.get("enabled", True):
                file_path = pathlib.Path(
                    file_config.get("path", "logs/pakeforge.log")
                ).expanduser()
                self._log_directory = file_path.parent
                os.makedirs(self._log_directory, exist_ok=True)

                rotation = file_config.get("rotation", "10 MB")
                retention = file_config.get("retention", "30 days")

                # "10 MB"
                if isinstance(rotation, str) and "MB" in rotation:
                    max_bytes = int(rotation.split()[0]) * 1024 * 1024
                else:
                    max_bytes = 10 * 1024 * 1024

                # "30 days"
                if isinstance(retention, str) and "days" in retention:
                    backup_count = int(retention.split()[0])
                else:
                    backup_count = 30

                self._file_handler = logging.handlers.RotatingFileHandler(
                    file_path,
                    maxBytes=max_bytes,
                    backupCount=backup_count,
                    encoding="utf-8",
                )
                self._file_handler.setLevel(log_level)
                self._file_handler.setFormatter(formatter)
                self._root_logger.addHandler(self._file_handler)
                self._handlers.append(self._file_handler)

            if self._enable_structlog:
                self._configure_structlog()

            await self._config_manager.register_listener("logging", self._on_config_changed)

            self._root_logger.info(
                "Logging Manager initialized",
                extra={"manager": "LoggingManager", "event": "initialization"},
            )

            self._initialized = True
            self._healthy = True

        except Exception as e:
            raise ManagerInitializationError(
                f"Failed to initialize LoggingManager: {str(e)}",
                manager_name=self.name,
            ) from e

    def _level(self, name: Any) -> int:
        return self.LOG_LEVELS.get(str(name).lower(), logging.INFO)

    def _create_json_formatter(self) -> logging.Formatter:
        """Create a JSON formatter for log records."""
        return jsonlogger.JsonFormatter(
            fmt="%(asctime)s %(name)s %(levelname)s %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S%z",
            json_ensure_ascii=False,
        )

    def _configure_structlog(self) -> None:
        """Configure structlog for structured logging."""
        structlog.configure(
            processors=[
                structlog.stdlib.filter_by_level,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.stdlib.add_logger_name,
                structlog.stdlib.add_log_level,
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.UnicodeDecoder(),
                structlog.stdlib.render_to_log_kwargs,
            ],
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )

    def get_logger(self, name: str) -> Union[logging.Logger, Any]:
        """Get a logger for a specific component.

        Args:
            name: The name of the component requesting a logger.

        Returns:
            A stdlib logger, or a structlog logger when structured logging is on.
        """
        if not self._initialized:
            return logging.getLogger(name)

        if self._enable_structlog:
            return structlog.get_logger(name)
        return logging.getLogger(name)

    async def _on_config_changed(self, key: str, value: Any) -> None:
        """Handle configuration changes for logging.

        Args:
            key: The configuration key that changed.
            value: The new value.
        """
        if not self._root_logger:
            return

        sub_key = key.split(".", 1)[1] if "." in key else ""

        if sub_key == "level":
            log_level = self._level(value)
            self._root_logger.setLevel(log_level)
            if self._file_handler:
                self._file_handler.setLevel(log_level)

        elif sub_key == "console.level" and self._console_handler:
            self._console_handler.setLevel(self._level(value))

        elif sub_key == "console.enabled" and self._console_handler:
            if not value and self._console_handler in self._root_logger.handlers:
                self._root_logger.removeHandler(self._console_handler)
            elif value and self._console_handler not in self._root_logger.handlers:
                self._root_logger.addHandler(self._console_handler)

        elif sub_key == "file.level" and self._file_handler:
            self._file_handler.setLevel(self._level(value))

    async def shutdown(self) -> None:
        """Shut down the Logging Manager.

        Raises:
            ManagerShutdownError: If shutdown fails.
        """
        if not self._initialized:
            return

        try:
            if self._root_logger:
                self._root_logger.info(
                    "Shutting down Logging Manager",
                    extra={"manager": "LoggingManager", "event": "shutdown"},
                )

            for handler in self._handlers:
                if self._root_logger:
                    self._root_logger.removeHandler(handler)
                handler.flush()
                handler.close()
            self._handlers.clear()

            await self._config_manager.unregister_listener("logging", self._on_config_changed)

            self._initialized = False
            self._healthy = False

        except Exception as e:
            raise ManagerShutdownError(
                f"Failed to shut down LoggingManager: {str(e)}",
                manager_name=self.name,
            ) from e

    def status(self) -> Dict[str, Any]:
        status = super().status()

        if self._initialized and self._root_logger:
            status.update(
                {
                    "log_directory": str(self._log_directory) if self._log_directory else None,
                    "handlers": {
                        "console": self._console_handler is not None
                        and self._console_handler in self._root_logger.handlers,
                        "file": self._file_handler is not None
                        and self._file_handler in self._root_logger.handlers,
                    },
                    "structured_logging": self._enable_structlog,
                }
            )

        return status
