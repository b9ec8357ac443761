from __future__ import annotations

import enum
import json
import logging
import os
import pathlib
import tempfile
from copy import deepcopy
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

import aiofiles
import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from pakeforge.core.base import PakeForgeManager
from pakeforge.utils.exceptions import ConfigurationError, ManagerInitializationError

SETTINGS_KEY = 'pake-gui-settings'
DEFAULT_HOME = pathlib.Path('~/.pake-gui')


class Language(str, enum.Enum):
    """Interface languages the settings blob may select."""
    ZH = 'zh'
    EN = 'en'


class AppSettings(BaseModel):
    """User settings persisted outside the project store.

    Serialized with the same camelCase keys the desktop front end reads.
    """
    model_config = ConfigDict(populate_by_name=True, use_enum_values=True)

    project_save_path: str = Field('.pake-cli', alias='projectSavePath')
    project_name_pattern: str = Field('{timestamp}', alias='projectNamePattern')
    language: Language = Language.ZH

    @field_validator('project_name_pattern')
    @classmethod
    def validate_pattern(cls, v: str) -> str:
        """Fall back to the timestamp pattern when the pattern is blank."""
        return v.strip() or '{timestamp}'

    def resolved_save_path(self) -> pathlib.Path:
        """Get the absolute directory projects are stored in.

        Relative paths are anchored at the user's home directory.
        """
        path = pathlib.Path(self.project_save_path).expanduser()
        if not path.is_absolute():
            path = pathlib.Path.home() / path
        return path


class ConfigSchema(BaseModel):
    """Schema for validating configuration data.

    This model defines the expected structure and default values for the
    application configuration.
    """
    model_config = ConfigDict(populate_by_name=True)

    logging: Dict[str, Any] = Field(
        default_factory=lambda: {
            'level': 'INFO',
            'format': 'json',
            'file': {
                'enabled': True,
                'path': str(DEFAULT_HOME / 'logs' / 'pakeforge.log'),
                'rotation': '10 MB',
                'retention': '30 days',
            },
            'console': {
                'enabled': True,
                'level': 'WARNING',
            },
        },
        description='Logging settings',
    )
    event_bus_manager: Dict[str, Any] = Field(
        default_factory=lambda: {
            'max_queue_size': 1000,
            'publish_timeout': 5.0,
        },
        description='Event bus settings',
    )
    build: Dict[str, Any] = Field(
        default_factory=lambda: {
            'tool': 'pake',
            'default_icon': 'icons/default.png',
            'output_encoding': 'utf-8',
        },
        description='External packaging tool settings',
    )
    settings: Dict[str, Any] = Field(
        default_factory=lambda: AppSettings().model_dump(by_alias=True),
        alias=SETTINGS_KEY,
        description='User settings blob',
    )
    app: Dict[str, Any] = Field(
        default_factory=lambda: {
            'name': 'PakeForge',
            'environment': 'production',
        },
        description='Application settings',
    )

    @model_validator(mode='after')
    def validate_build_tool(self) -> 'ConfigSchema':
        """Validate that a packaging tool command is configured."""
        tool = self.build.get('tool')
        if not isinstance(tool, str) or not tool.strip():
            raise ValueError('build.tool must be a non-empty command name.')
        return self

    @model_validator(mode='after')
    def validate_settings(self) -> 'ConfigSchema':
        """Validate the settings blob against AppSettings."""
        self.settings = AppSettings.model_validate(self.settings).model_dump(by_alias=True)
        return self

    def dump(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class ConfigManager(PakeForgeManager):
    """Asynchronous configuration manager for the application.

    This manager handles loading, validating, and providing access to
    configuration settings from files and environment variables.

    Attributes:
        _config_path: Path to the configuration file
        _env_prefix: Prefix for environment variables
        _config: The loaded configuration
        _loaded_from_file: Whether configuration was loaded from a file
        _env_vars_applied: Set of applied environment variables
        _listeners: Dictionary of config change listeners
    """

    def __init__(
            self,
            config_path: Optional[Union[str, pathlib.Path]] = None,
            env_prefix: str = 'PAKEFORGE_'
    ) -> None:
        """Initialize the configuration manager.

        Args:
            config_path: Path to the configuration file
            env_prefix: Prefix for environment variables
        """
        super().__init__(name='config_manager')
        if config_path:
            self._config_path = pathlib.Path(config_path)
        else:
            self._config_path = (DEFAULT_HOME / 'config.yaml').expanduser()
        self._env_prefix = env_prefix
        self._config: Dict[str, Any] = {}
        self._loaded_from_file = False
        self._env_vars_applied: Set[str] = set()
        self._listeners: Dict[str, List[Callable[[str, Any], Awaitable[None]]]] = {}
        self._logger: Optional[logging.Logger] = None

    async def initialize(self) -> None:
        """Initialize the configuration manager asynchronously.

        Loads configuration from default schema, file, and environment variables.

        Raises:
            ManagerInitializationError: If initialization fails
        """
        try:
            self._config = ConfigSchema().dump()
            await self._load_from_file()
            self._apply_env_vars()
            await self._validate_config()

            self._initialized = True
            self._healthy = True
        except Exception as e:
            raise ManagerInitializationError(
                f'Failed to initialize ConfigManager: {str(e)}',
                manager_name=self.name
            ) from e

    def set_logger(self, logger: Any) -> None:
        self._logger = logger.get_logger('config_manager')

    async def _load_from_file(self) -> None:
        """Load configuration from a file asynchronously.

        Raises:
            ConfigurationError: If the file cannot be parsed
        """
        if not self._config_path.exists():
            return

        try:
            async with aiofiles.open(self._config_path, 'r', encoding='utf-8') as f:
                content = await f.read()

                if self._config_path.suffix.lower() in ('.yaml', '.yml'):
                    file_config = yaml.safe_load(content)
                elif self._config_path.suffix.lower() == '.json':
                    file_config = json.loads(content)
                else:
                    raise ConfigurationError(
                        f'Unsupported config file format: {self._config_path.suffix}',
                        config_key='config_path'
                    )

                if file_config:
                    self._merge_config(file_config)
                    self._loaded_from_file = True
        except (yaml.YAMLError, json.JSONDecodeError) as e:
            raise ConfigurationError(
                f'Error parsing config file {self._config_path}: {str(e)}',
                config_key='config_path'
            ) from e

    def _apply_env_vars(self) -> None:
        """Apply environment variables to the configuration.

        PAKEFORGE_LOGGING_LEVEL=DEBUG overrides logging.level.
        """
        for env_name, env_value in os.environ.items():
            if not env_name.startswith(self._env_prefix):
                continue

            config_path = env_name[len(self._env_prefix):].lower().split('_')
            self._set_nested_value(self._config, config_path, self._parse_env_value(env_value))
            self._env_vars_applied.add(env_name)

    @staticmethod
    def _parse_env_value(value: str) -> Any:
        """Parse environment variable values into appropriate types.

        Args:
            value: The string value from the environment

        Returns:
            The parsed value (bool, int, float, or string)
        """
        if value.lower() in ('true', 'yes', '1', 'on'):
            return True
        if value.lower() in ('false', 'no', '0', 'off'):
            return False

        try:
            if value.isdigit() or (value.startswith('-') and value[1:].isdigit()):
                return int(value)
            return float(value)
        except ValueError:
            return value

    def _set_nested_value(self, config: Dict[str, Any], path: List[str], value: Any) -> None:
        if not path:
            return

        if len(path) == 1:
            config[path[0]] = value
            return

        key = path[0]
        if key not in config:
            config[key] = {}
        if not isinstance(config[key], dict):
            config[key] = {}

        self._set_nested_value(config[key], path[1:], value)

    async def _validate_config(self) -> None:
        """Validate the configuration against the schema.

        Raises:
            ConfigurationError: If the configuration is invalid
        """
        try:
            self._config = ConfigSchema.model_validate(self._config).dump()
        except ValidationError as e:
            errors = e.errors()
            error_details = ', '.join((
                f"{'.'.join((str(loc) for loc in error['loc']))}: {error['msg']}"
                for error in errors
            ))
            raise ConfigurationError(
                f'Invalid configuration: {error_details}',
                details={'validation_errors': errors}
            ) from e

    async def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value by key.

        Args:
            key: The configuration key (dot-separated for nested values)
            default: Default value if the key doesn't exist

        Returns:
            The configuration value or default

        Raises:
            ConfigurationError: If the manager isn't initialized
        """
        if not self._initialized:
            raise ConfigurationError(
                'Cannot access configuration before initialization',
                config_key=key
            )

        parts = key.split('.')
        result = self._config

        try:
            for part in parts:
                result = result[part]
            return deepcopy(result)
        except (KeyError, TypeError):
            return default

    async def set(self, key: str, value: Any) -> None:
        """Set a configuration value by key.

        Args:
            key: The configuration key (dot-separated for nested values)
            value: The value to set

        Raises:
            ConfigurationError: If the manager isn't initialized or the value is invalid
        """
        if not self._initialized:
            raise ConfigurationError(
                'Cannot modify configuration before initialization',
                config_key=key
            )

        new_config = deepcopy(self._config)
        parts = key.split('.')
        self._set_nested_value(new_config, parts, value)

        try:
            self._config = ConfigSchema.model_validate(new_config).dump()
        except ValidationError as e:
            raise ConfigurationError(
                f'Invalid configuration value for {key}: {str(e)}',
                config_key=key,
                details={'validation_errors': e.errors()}
            ) from e

        await self._save_to_file()
        await self._notify_listeners(key, value)

    async def get_settings(self) -> AppSettings:
        """Get the persisted user settings blob."""
        return AppSettings.model_validate(await self.get(SETTINGS_KEY, {}))

    async def update_settings(self, **changes: Any) -> AppSettings:
        """Replace fields of the user settings blob and persist it.

        Args:
            **changes: Settings fields, by attribute name or camelCase key

        Returns:
            The stored settings
        """
        current = (await self.get_settings()).model_dump(by_alias=True)
        current.update(
            {AppSettings.model_fields[k].alias or k if k in AppSettings.model_fields else k: v
             for k, v in changes.items()}
        )
        try:
            settings = AppSettings.model_validate(current)
        except ValidationError as e:
            raise ConfigurationError(
                f'Invalid settings: {str(e)}',
                config_key=SETTINGS_KEY,
                details={'validation_errors': e.errors()}
            ) from e
        await self.set(SETTINGS_KEY, settings.model_dump(by_alias=True))
        return settings

    async def _save_to_file(self) -> None:
        """Save configuration to file atomically."""
        config_path = pathlib.Path(self._config_path)
        suffix = config_path.suffix.lower()
        if suffix not in ('.yaml', '.yml', '.json'):
            return

        try:
            config_dir = config_path.parent
            os.makedirs(config_dir, exist_ok=True)

            if suffix == '.json':
                content = json.dumps(self._config, indent=2, ensure_ascii=False)
            else:
                content = yaml.safe_dump(self._config, default_flow_style=False, allow_unicode=True)

            with tempfile.NamedTemporaryFile(
                    mode='w', delete=False, dir=config_dir, suffix='.tmp', encoding='utf-8'
            ) as tmp:
                tmp.write(content)

            os.replace(tmp.name, str(config_path))
            self._loaded_from_file = True
        except OSError as e:
            raise ConfigurationError(
                f'Error saving configuration to {self._config_path}: {str(e)}',
                config_key='config_path'
            ) from e

    def _merge_config(
            self,
            from_config: Dict[str, Any],
            to_config: Optional[Dict[str, Any]] = None
    ) -> None:
        """Merge a configuration dictionary into another.

        Args:
            from_config: The source configuration
            to_config: The target configuration (defaults to self._config)
        """
        if to_config is None:
            to_config = self._config

        for key, value in from_config.items():
            if key in to_config and isinstance(to_config[key], dict) and isinstance(value, dict):
                self._merge_config(value, to_config[key])
            elif value not in [None, '', {}]:
                to_config[key] = value

    async def register_listener(
            self,
            key: str,
            callback: Callable[[str, Any], Awaitable[None]]
    ) -> None:
        """Register a listener for configuration changes.

        Args:
            key: The configuration key to listen for
            callback: Async callback function to call when the key changes
        """
        if key not in self._listeners:
            self._listeners[key] = []
        if callback not in self._listeners[key]:
            self._listeners[key].append(callback)

    async def unregister_listener(
            self,
            key: str,
            callback: Callable[[str, Any], Awaitable[None]]
    ) -> None:
        if key in self._listeners and callback in self._listeners[key]:
            self._listeners[key].remove(callback)
            if not self._listeners[key]:
                del self._listeners[key]

    async def _notify_listeners(self, key: str, value: Any) -> None:
        """Notify listeners about a configuration change.

        Listeners registered for a parent key are notified for nested changes.
        """
        for listener_key, callbacks in list(self._listeners.items()):
            if listener_key == key or key.startswith(f'{listener_key}.'):
                for callback in list(callbacks):
                    try:
                        await callback(key, value)
                    except Exception as e:
                        if self._logger:
                            self._logger.error(f'Error in config listener for {key}: {str(e)}')

    async def shutdown(self) -> None:
        """Shut down the configuration manager."""
        self._listeners.clear()
        self._initialized = False
        self._healthy = False

    def status(self) -> Dict[str, Any]:
        """Get the status of the configuration manager.

        Returns:
            Dictionary with status information
        """
        status = super().status()
        status.update({
            'config_file': str(self._config_path) if self._loaded_from_file else None,
            'loaded_from_file': self._loaded_from_file,
            'env_vars_applied': len(self._env_vars_applied),
            'registered_listeners': sum(len(callbacks) for callbacks in self._listeners.values())
        })
        return status
