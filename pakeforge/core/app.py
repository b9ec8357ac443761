from __future__ import annotations

import logging
import pathlib
from typing import Any, Dict, List, Optional, Union

from pakeforge.__version__ import __version__
from pakeforge.core.base import PakeForgeManager
from pakeforge.core.build_orchestrator import BuildOrchestrator, BuildSession, ProcessLauncher
from pakeforge.core.config_manager import SETTINGS_KEY, AppSettings, ConfigManager
from pakeforge.core.environment import EnvironmentChecker, ToolStatus
from pakeforge.core.event_bus_manager import EventBusManager
from pakeforge.core.event_model import EventHandler, EventType
from pakeforge.core.logging_manager import LoggingManager
from pakeforge.core.project_store import ProjectStore
from pakeforge.models.project import Project
from pakeforge.pake.command import DEFAULT_TOOL, CommandPreview
from pakeforge.pake.config import PakeConfig
from pakeforge.utils.exceptions import ApplicationError
from pakeforge.utils.shell import open_path


class ApplicationCore:
    """The application core and the backend operations front ends call.

    Manages the lifecycle of the managers and exposes the project, build,
    environment and settings operations.
    """

    def __init__(
            self,
            config_path: Optional[Union[str, pathlib.Path]] = None,
            projects_dir: Optional[Union[str, pathlib.Path]] = None,
            launcher: Optional[ProcessLauncher] = None
    ) -> None:
        """Initialize the application core.

        Args:
            config_path: Optional path to configuration file
            projects_dir: Optional project directory overriding the settings
            launcher: Optional process launcher for the build orchestrator
        """
        self._config_path = config_path
        self._projects_dir = projects_dir
        self._launcher = launcher
        self._managers: Dict[str, PakeForgeManager] = {}
        self._initialized = False
        self._logger: Optional[logging.Logger] = None
        self._environment: Optional[EnvironmentChecker] = None

    async def initialize(self) -> None:
        """Create and initialize the managers in dependency order.

        Raises:
            ApplicationError: If initialization fails
        """
        try:
            config_manager = ConfigManager(config_path=self._config_path)
            await self._start('config_manager', config_manager)

            logging_manager = LoggingManager(config_manager)
            await self._start('logging_manager', logging_manager)
            config_manager.set_logger(logging_manager)
            self._logger = logging_manager.get_logger('app_core')

            event_bus_manager = EventBusManager(config_manager, logging_manager)
            await self._start('event_bus_manager', event_bus_manager)

            project_store = ProjectStore(
                config_manager, logging_manager, event_bus_manager, projects_dir=self._projects_dir
            )
            await self._start('project_store', project_store)

            build_orchestrator = BuildOrchestrator(
                config_manager, logging_manager, project_store, event_bus_manager, launcher=self._launcher
            )
            await self._start('build_orchestrator', build_orchestrator)

            await config_manager.register_listener(SETTINGS_KEY, self._on_settings_changed)

            self._environment = EnvironmentChecker(logging_manager)
            self._initialized = True
            self._logger.info(f'PakeForge {__version__} initialization complete')

            await event_bus_manager.publish(
                event_type=EventType.SYSTEM_STARTED,
                source='app_core',
                payload={'version': __version__}
            )
        except Exception as e:
            if self._logger:
                self._logger.error(f'Failed to initialize PakeForge: {str(e)}', exc_info=True)
            await self.shutdown()
            raise ApplicationError(f'Failed to initialize application: {str(e)}') from e

    async def _on_settings_changed(self, key: str, value: Any) -> None:
        await self.event_bus.publish(
            event_type=EventType.CONFIG_CHANGED,
            source='app_core',
            payload={'key': key, 'value': value}
        )

    async def _start(self, name: str, manager: PakeForgeManager) -> None:
        await manager.initialize()
        self._managers[name] = manager

    def get_manager(self, name: str) -> Optional[PakeForgeManager]:
        return self._managers.get(name)

    @property
    def config_manager(self) -> ConfigManager:
        return self._require('config_manager')

    @property
    def project_store(self) -> ProjectStore:
        return self._require('project_store')

    @property
    def build_orchestrator(self) -> BuildOrchestrator:
        return self._require('build_orchestrator')

    @property
    def event_bus(self) -> EventBusManager:
        return self._require('event_bus_manager')

    def _require(self, name: str) -> Any:
        manager = self._managers.get(name)
        if manager is None:
            raise ApplicationError(f'{name} is not available; initialize the application first')
        return manager

    # Projects

    async def get_projects(self) -> List[Project]:
        return await self.project_store.list_projects()

    async def search_projects(self, query: str) -> List[Project]:
        return await self.project_store.search_projects(query)

    async def load_project(self, project_id: str) -> Project:
        return await self.project_store.get_project(project_id)

    async def save_project(self, project: Union[Project, Dict[str, Any]]) -> Project:
        if isinstance(project, dict):
            project = Project.from_dict(project)
        return await self.project_store.save_project(project)

    async def delete_project(self, project_id: str) -> None:
        await self.project_store.delete_project(project_id)

    def get_project_path(self, project_id: str) -> str:
        return str(self.project_store.get_project_path(project_id))

    def get_project_config_path(self, project_id: str) -> str:
        return str(self.project_store.get_project_config_path(project_id))

    async def get_project_output_path(self, project_id: str) -> str:
        """Get the built app's path, or an empty string when nothing was built."""
        path = await self.project_store.get_project_output_path(project_id)
        return str(path) if path else ''

    # Builds

    async def command_preview(self, config: Union[PakeConfig, Dict[str, Any]]) -> CommandPreview:
        if isinstance(config, dict):
            config = PakeConfig.from_dict(config)
        tool = await self.config_manager.get('build.tool', DEFAULT_TOOL)
        return CommandPreview(config, tool=tool)

    async def build_pake_app(
            self,
            config: Union[PakeConfig, Dict[str, Any]],
            project_id: Optional[str] = None
    ) -> BuildSession:
        """Save the project and start its build.

        Completion is reported through ``build/status`` events and the
        orchestrator's session, not by this call.
        """
        if isinstance(config, dict):
            config = PakeConfig.from_dict(config)
        return await self.build_orchestrator.start_build(config, project_id)

    async def subscribe_build_output(self, callback: EventHandler) -> str:
        """Listen to ``build-output`` events across all build sessions."""
        return await self.event_bus.subscribe(EventType.BUILD_OUTPUT, callback)

    async def unsubscribe_build_output(self, subscriber_id: str) -> bool:
        return await self.event_bus.unsubscribe(subscriber_id, EventType.BUILD_OUTPUT)

    # Environment and shell

    def open_path(self, path: Union[str, pathlib.Path]) -> None:
        open_path(path)

    async def check_environment(self) -> Dict[str, ToolStatus]:
        return await self._environment.check_all()

    async def install_tool(self, tool: str) -> None:
        await self._environment.install_tool(tool)

    # Settings

    async def get_settings(self) -> AppSettings:
        return await self.config_manager.get_settings()

    async def update_settings(self, **changes: Any) -> AppSettings:
        return await self.config_manager.update_settings(**changes)

    async def shutdown(self) -> None:
        """Shut down managers in reverse initialization order."""
        for name in reversed(list(self._managers)):
            manager = self._managers[name]
            try:
                await manager.shutdown()
            except Exception as e:
                if self._logger:
                    self._logger.error(f'Error shutting down {name}: {str(e)}')
        self._managers.clear()
        self._initialized = False

    def status(self) -> Dict[str, Any]:
        return {
            'initialized': self._initialized,
            'version': __version__,
            'managers': {name: manager.status() for name, manager in self._managers.items()},
        }
