from __future__ import annotations

import asyncio
import json
import os
import pathlib
import shutil
import tempfile
from typing import Any, Dict, List, Optional, Set, Union

import aiofiles

from pakeforge.core.base import PakeForgeManager
from pakeforge.core.config_manager import SETTINGS_KEY
from pakeforge.core.event_model import EventType
from pakeforge.models.project import Project, now_millis
from pakeforge.pake.config import validate_config
from pakeforge.pake.naming import resolve_pattern
from pakeforge.utils.exceptions import (
    ManagerInitializationError,
    ProjectNotFoundError,
    StoreError,
)

PROJECT_FILE = 'pake-project.json'


class ProjectStore(PakeForgeManager):
    """Durable collection of projects, one directory per project.

    Each project lives in ``<save path>/<id>/pake-project.json``; the project
    directory is also the working directory of its builds. Readers only see
    the in-memory index, which is updated after a write has been committed to
    disk, so a save in flight is never visible half-done.

    Mutations are serialized per project id. Saves to different ids run
    concurrently.
    """

    def __init__(
            self,
            config_manager: Any,
            logger_manager: Any,
            event_bus_manager: Optional[Any] = None,
            projects_dir: Optional[Union[str, pathlib.Path]] = None
    ) -> None:
        """Initialize the project store.

        Args:
            config_manager: The configuration manager
            logger_manager: The logging manager
            event_bus_manager: Optional event bus for project/* events
            projects_dir: Storage directory overriding the settings save path
        """
        super().__init__(name='project_store')
        self._config_manager = config_manager
        self._logger = logger_manager.get_logger('project_store')
        self._event_bus_manager = event_bus_manager
        self._projects_dir_override = pathlib.Path(projects_dir) if projects_dir else None

        self._projects_dir: Optional[pathlib.Path] = None
        self._name_pattern: str = '{timestamp}'
        self._default_icon: Optional[str] = None

        self._projects: Dict[str, Project] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._reserved_ids: Set[str] = set()
        self._last_stamp = 0
        self._id_lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Load settings and index the projects on disk.

        Raises:
            ManagerInitializationError: If the storage directory cannot be read
        """
        try:
            settings = await self._config_manager.get_settings()
            self._name_pattern = settings.project_name_pattern
            self._default_icon = await self._config_manager.get('build.default_icon')
            self._projects_dir = self._projects_dir_override or settings.resolved_save_path()

            await self._load_index()
            await self._config_manager.register_listener(SETTINGS_KEY, self._on_settings_changed)

            self._initialized = True
            self._healthy = True
            self._logger.info(
                f'Project store initialized with {len(self._projects)} projects',
                extra={'projects_dir': str(self._projects_dir)}
            )
        except Exception as e:
            self._logger.error(f'Failed to initialize project store: {str(e)}')
            raise ManagerInitializationError(
                f'Failed to initialize ProjectStore: {str(e)}',
                manager_name=self.name
            ) from e

    async def _load_index(self) -> None:
        self._projects_dir.mkdir(parents=True, exist_ok=True)
        projects: Dict[str, Project] = {}

        for entry in sorted(self._projects_dir.iterdir()):
            record_path = entry / PROJECT_FILE
            if not entry.is_dir() or not record_path.exists():
                continue
            try:
                async with aiofiles.open(record_path, 'r', encoding='utf-8') as f:
                    project = Project.from_dict(json.loads(await f.read()))
            except (OSError, ValueError) as e:
                self._logger.warning(
                    f'Skipping unreadable project record {record_path}: {str(e)}'
                )
                continue
            project.id = project.id or entry.name
            projects[project.id] = project

        self._projects = projects
        self._last_stamp = max((p.last_modified for p in projects.values()), default=0)

    async def _on_settings_changed(self, key: str, value: Any) -> None:
        settings = await self._config_manager.get_settings()
        self._name_pattern = settings.project_name_pattern

        new_dir = self._projects_dir_override or settings.resolved_save_path()
        if new_dir != self._projects_dir:
            self._projects_dir = new_dir
            await self._load_index()
            self._logger.info(f'Project save path changed to {new_dir}')

    def _lock_for(self, project_id: str) -> asyncio.Lock:
        lock = self._locks.get(project_id)
        if lock is None:
            lock = self._locks[project_id] = asyncio.Lock()
        return lock

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            raise StoreError('Project store is not initialized')

    async def list_projects(self) -> List[Project]:
        """List stored projects, most recently modified first."""
        self._ensure_initialized()
        projects = sorted(self._projects.values(), key=lambda p: p.last_modified, reverse=True)
        return [p.snapshot() for p in projects]

    async def search_projects(self, query: str) -> List[Project]:
        """List projects whose name or URL contains the query, ignoring case."""
        needle = query.strip().lower()
        projects = await self.list_projects()
        if not needle:
            return projects
        return [
            p for p in projects
            if needle in p.name.lower() or needle in p.config.url.lower()
        ]

    async def get_project(self, project_id: str) -> Project:
        """Get a stored project.

        Raises:
            ProjectNotFoundError: If no project has this id
        """
        self._ensure_initialized()
        project = self._projects.get(project_id)
        if project is None:
            raise ProjectNotFoundError(project_id)
        return project.snapshot()

    async def save_project(self, project: Project) -> Project:
        """Validate and persist a project.

        A project without an id gets one from the naming pattern. The config is
        replaced wholesale, an empty icon resolves to the default icon and
        ``lastModified`` is stamped so that it increases with every save of the
        same id.

        Args:
            project: The project to save

        Returns:
            The stored project

        Raises:
            ConfigValidationError: If the project's config is invalid
        """
        self._ensure_initialized()
        validate_config(project.config)
        config = project.config.normalized(self._default_icon)

        if project.id:
            self.get_project_path(project.id)
        project_id = project.id or await self._allocate_id(config.name)
        try:
            async with self._lock_for(project_id):
                previous = self._projects.get(project_id)
                # Strictly increasing across the whole store.
                stamp = max(now_millis(), self._last_stamp + 1)
                if previous is not None:
                    stamp = max(stamp, previous.last_modified + 1)
                self._last_stamp = stamp

                stored = Project(
                    id=project_id,
                    name=config.name,
                    config=config,
                    last_modified=stamp,
                )
                await self._write_record(stored)
                self._projects[project_id] = stored
        finally:
            self._reserved_ids.discard(project_id)

        self._logger.info(
            f'Saved project {project_id}',
            extra={'project_id': project_id, 'last_modified': stored.last_modified}
        )
        await self._publish(EventType.PROJECT_SAVED, stored)
        return stored.snapshot()

    async def _allocate_id(self, name: str) -> str:
        """Reserve a fresh id from the naming pattern."""
        async with self._id_lock:
            base = resolve_pattern(self._name_pattern, name=name).value
            base = base.replace('/', '_').replace('\\', '_').replace('\x00', '').strip()
            if base in ('', '.', '..'):
                base = str(now_millis())
            candidate = base
            suffix = 1
            while (
                    candidate in self._projects
                    or candidate in self._reserved_ids
                    or (self._projects_dir / candidate).exists()
            ):
                candidate = f'{base}-{suffix}'
                suffix += 1
            self._reserved_ids.add(candidate)
            return candidate

    async def _write_record(self, project: Project) -> None:
        project_dir = self.get_project_path(project.id)
        os.makedirs(project_dir, exist_ok=True)
        content = json.dumps(project.to_dict(), indent=2, ensure_ascii=False)

        fd, tmp_name = tempfile.mkstemp(dir=project_dir, suffix='.tmp')
        os.close(fd)
        try:
            async with aiofiles.open(tmp_name, 'w', encoding='utf-8') as f:
                await f.write(content)
            os.replace(tmp_name, project_dir / PROJECT_FILE)
        except OSError as e:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise StoreError(
                f'Failed to write project {project.id}: {str(e)}',
                project_id=project.id
            ) from e

    async def delete_project(self, project_id: str) -> None:
        """Delete a project and its directory.

        Raises:
            ProjectNotFoundError: If no project has this id
        """
        self._ensure_initialized()
        async with self._lock_for(project_id):
            project = self._projects.get(project_id)
            if project is None:
                raise ProjectNotFoundError(project_id)

            project_dir = self.get_project_path(project_id)
            if project_dir.exists():
                await asyncio.to_thread(shutil.rmtree, project_dir)
            del self._projects[project_id]

        self._logger.info(f'Deleted project {project_id}', extra={'project_id': project_id})
        await self._publish(EventType.PROJECT_DELETED, project)

    def get_project_path(self, project_id: str) -> pathlib.Path:
        """Get the directory of a project (it may not exist yet).

        Raises:
            StoreError: If the id is not a single name inside the store directory
        """
        if (
                not project_id
                or project_id in ('.', '..')
                or any(sep in project_id for sep in ('/', '\\', '\x00'))
        ):
            raise StoreError(f'Invalid project id: {project_id!r}', project_id=project_id)

        path = self._projects_dir / project_id
        if pathlib.Path(os.path.abspath(path)).parent != pathlib.Path(os.path.abspath(self._projects_dir)):
            raise StoreError(f'Invalid project id: {project_id!r}', project_id=project_id)
        return path

    def get_project_config_path(self, project_id: str) -> pathlib.Path:
        return self.get_project_path(project_id) / PROJECT_FILE

    async def get_project_output_path(self, project_id: str) -> Optional[pathlib.Path]:
        """Find the built app of a project, if a build has produced one.

        Raises:
            ProjectNotFoundError: If no project has this id
        """
        project = await self.get_project(project_id)
        url = project.config.url
        output_name = project.config.name or 'app'
        if url and not url.startswith('http'):
            output_name = pathlib.PurePath(url).stem or output_name

        project_dir = self.get_project_path(project_id)
        for candidate in (f'{output_name}.app', f'{output_name}.exe', output_name):
            path = project_dir / candidate
            if path.exists():
                return path
        return None

    async def _publish(self, event_type: EventType, project: Project) -> None:
        if self._event_bus_manager is None:
            return
        await self._event_bus_manager.publish(
            event_type=event_type,
            source=self.name,
            payload={'project_id': project.id, 'name': project.name},
        )

    async def shutdown(self) -> None:
        if not self._initialized:
            return
        await self._config_manager.unregister_listener(SETTINGS_KEY, self._on_settings_changed)
        self._locks.clear()
        self._initialized = False
        self._healthy = False

    def status(self) -> Dict[str, Any]:
        status = super().status()
        status.update({
            'projects_dir': str(self._projects_dir) if self._projects_dir else None,
            'projects': len(self._projects),
            'name_pattern': self._name_pattern,
        })
        return status
