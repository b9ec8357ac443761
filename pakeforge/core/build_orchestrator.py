"""Build orchestration for pake projects.

This module drives the external packaging tool for one project at a time,
tracks the state of the current build session and relays the tool's output
to subscribers as it arrives.
"""

from __future__ import annotations

import asyncio
import dataclasses
import enum
import pathlib
import shutil
import time
import uuid
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Tuple

from pakeforge.core.base import PakeForgeManager
from pakeforge.core.event_model import EventType
from pakeforge.models.project import Project
from pakeforge.pake.command import DEFAULT_TOOL, compile_command
from pakeforge.pake.config import PakeConfig, validate_config
from pakeforge.utils.exceptions import (
    BuildError,
    BuildInProgressError,
    EventBusError,
    ExternalToolFailureError,
    LaunchFailedError,
    ManagerInitializationError,
    PakeForgeError,
)

ProcessLauncher = Callable[[List[str], pathlib.Path], Awaitable[Any]]

# Buffer limit of the output pipes; longer lines are read in pieces.
_LINE_LIMIT = 1024 * 1024


async def launch_process(argv: List[str], cwd: pathlib.Path) -> asyncio.subprocess.Process:
    """Start the packaging tool with piped output.

    Args:
        argv: Command and arguments
        cwd: Working directory of the process

    Returns:
        The started process
    """
    executable = shutil.which(argv[0]) or argv[0]
    return await asyncio.create_subprocess_exec(
        executable,
        *argv[1:],
        cwd=str(cwd),
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        limit=_LINE_LIMIT,
    )


async def read_line(reader: Any) -> bytes:
    """Read one line of any length, including its newline.

    Lines longer than the reader's buffer limit are read in pieces. Returns
    an empty bytes object at end of stream.
    """
    chunks: List[bytes] = []
    while True:
        try:
            chunks.append(await reader.readuntil(b'\n'))
            break
        except asyncio.IncompleteReadError as e:
            chunks.append(e.partial)
            break
        except asyncio.LimitOverrunError as e:
            chunks.append(await reader.readexactly(e.consumed))
    return b''.join(chunks)


class BuildStatus(str, enum.Enum):
    """State of a build session."""

    IDLE = "idle"
    BUILDING = "building"
    SUCCESS = "success"
    ERROR = "error"


@dataclasses.dataclass
class BuildSession:
    """State of one build attempt."""

    project_id: Optional[str] = None
    status: BuildStatus = BuildStatus.IDLE
    output_log: List[str] = dataclasses.field(default_factory=list)
    session_id: str = dataclasses.field(default_factory=lambda: str(uuid.uuid4()))
    command: List[str] = dataclasses.field(default_factory=list)
    error: Optional[PakeForgeError] = None
    started_at: Optional[float] = None
    finished_at: Optional[float] = None

    @property
    def finished(self) -> bool:
        return self.status in (BuildStatus.SUCCESS, BuildStatus.ERROR)

    def snapshot(self) -> BuildSession:
        return dataclasses.replace(self, output_log=list(self.output_log), command=list(self.command))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "projectId": self.project_id,
            "sessionId": self.session_id,
            "status": self.status.value,
            "outputLog": list(self.output_log),
            "command": list(self.command),
            "error": self.error.to_dict() if self.error else None,
        }


_END = object()


class BuildOutputStream:
    """Lines of one build session delivered to one subscriber.

    Iteration ends when the session finishes, when a newer build replaces
    the session, or when the subscription is cancelled.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def push(self, line: str) -> None:
        if not self._closed:
            self._queue.put_nowait(line)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(_END)

    def __aiter__(self) -> AsyncIterator[str]:
        return self

    async def __anext__(self) -> str:
        item = await self._queue.get()
        if item is _END:
            # Leave the marker for any later reader.
            self._queue.put_nowait(_END)
            raise StopAsyncIteration
        return item


class BuildOrchestrator(PakeForgeManager):
    """Runs one external build at a time and streams its output.

    The orchestrator owns a single session slot. Starting a build saves the
    project first, replaces the session and detaches the previous session's
    subscribers. Once a build is running it cannot be cancelled; the
    orchestrator waits for the tool to exit.
    """

    def __init__(
            self,
            config_manager: Any,
            logger_manager: Any,
            project_store: Any,
            event_bus_manager: Optional[Any] = None,
            launcher: Optional[ProcessLauncher] = None
    ) -> None:
        """Initialize the build orchestrator.

        Args:
            config_manager: The configuration manager
            logger_manager: The logging manager
            project_store: Store the project is saved to before building
            event_bus_manager: Optional event bus for build-output events
            launcher: Coroutine starting the tool process (for testing)
        """
        super().__init__(name='build_orchestrator')
        self._config_manager = config_manager
        self._logger = logger_manager.get_logger('build_orchestrator')
        self._project_store = project_store
        self._event_bus_manager = event_bus_manager
        self._launcher: ProcessLauncher = launcher or launch_process

        self._session = BuildSession()
        self._subscribers: List[BuildOutputStream] = []
        self._task: Optional[asyncio.Task] = None
        self._starting = False
        self._output_encoding = 'utf-8'

    async def initialize(self) -> None:
        try:
            self._output_encoding = await self._config_manager.get('build.output_encoding', 'utf-8')
            self._initialized = True
            self._healthy = True
            self._logger.info('Build orchestrator initialized')
        except Exception as e:
            raise ManagerInitializationError(
                f'Failed to initialize BuildOrchestrator: {str(e)}',
                manager_name=self.name
            ) from e

    @property
    def build_status(self) -> BuildStatus:
        return self._session.status

    @property
    def session(self) -> BuildSession:
        return self._session.snapshot()

    def current_log(self) -> List[str]:
        """Get every line the current session has logged so far."""
        return list(self._session.output_log)

    def subscribe(self) -> Tuple[BuildOutputStream, Callable[[], None]]:
        """Subscribe to the current session's output from now on.

        Lines logged before the subscription are not replayed; use
        ``current_log()`` to catch up. When no build is running the stream
        is already closed.

        Returns:
            The stream and the function that cancels the subscription
        """
        stream = BuildOutputStream()
        if self._session.status != BuildStatus.BUILDING:
            stream.close()
            return stream, stream.close

        self._subscribers.append(stream)

        def cancel() -> None:
            if stream in self._subscribers:
                self._subscribers.remove(stream)
            stream.close()

        return stream, cancel

    async def start_build(self, config: PakeConfig, project_id: Optional[str] = None) -> BuildSession:
        """Save the project and start building it.

        Returns once the tool has been scheduled; the build runs in the
        background. Subscribe right after this returns to see every line.

        Args:
            config: The configuration to build
            project_id: Id of the project, None for a new project

        Returns:
            A snapshot of the new session

        Raises:
            BuildInProgressError: If a build is already running
            ConfigValidationError: If the configuration is invalid
            StoreError: If the project cannot be saved
        """
        if self._starting or self._session.status == BuildStatus.BUILDING:
            raise BuildInProgressError(self._session.project_id)

        self._starting = True
        try:
            try:
                validate_config(config)
                project = await self._project_store.save_project(
                    Project(id=project_id, name=config.name, config=config)
                )
                tool = await self._config_manager.get('build.tool', DEFAULT_TOOL)
            except PakeForgeError as e:
                self._replace_session(BuildSession(
                    project_id=project_id,
                    status=BuildStatus.ERROR,
                    output_log=[f'Build failed: {e.message}'],
                    error=e,
                    finished_at=time.time(),
                ))
                self._logger.warning(f'Build rejected: {e.message}', extra={'project_id': project_id})
                raise

            session = BuildSession(
                project_id=project.id,
                status=BuildStatus.BUILDING,
                command=compile_command(project.config, tool),
                started_at=time.time(),
            )
            self._replace_session(session)
            cwd = self._project_store.get_project_path(project.id)
            self._task = asyncio.create_task(
                self._run(session, cwd), name=f'build-{project.id}'
            )
        finally:
            self._starting = False

        self._logger.info(
            f'Build started for project {project.id}',
            extra={'project_id': project.id, 'session_id': session.session_id}
        )
        await self._publish_status(session)
        return session.snapshot()

    async def wait(self) -> BuildSession:
        """Wait for the running build, if any, and return the session."""
        if self._task is not None:
            await asyncio.shield(self._task)
        return self._session.snapshot()

    async def build(self, config: PakeConfig, project_id: Optional[str] = None) -> BuildSession:
        """Save, build and wait for completion.

        Raises:
            BuildError: If the build finished in error
        """
        await self.start_build(config, project_id)
        session = await self.wait()
        if session.status == BuildStatus.ERROR and session.error is not None:
            raise session.error
        return session

    def _replace_session(self, session: BuildSession) -> None:
        for stream in self._subscribers:
            stream.close()
        self._subscribers = []
        self._session = session

    async def _run(self, session: BuildSession, cwd: pathlib.Path) -> None:
        """Run the tool to completion; the session always ends terminal."""
        error: Optional[BuildError] = None
        process: Any = None
        try:
            cwd.mkdir(parents=True, exist_ok=True)
            try:
                process = await self._launcher(session.command, cwd)
            except Exception as e:
                error = LaunchFailedError(
                    f'Failed to start {session.command[0]}: {str(e)}',
                    project_id=session.project_id
                )
            else:
                await self._pump_all(session, process)
                return_code = await process.wait()
                if return_code != 0:
                    error = ExternalToolFailureError(
                        f'{session.command[0]} exited with code {return_code}',
                        project_id=session.project_id,
                        return_code=return_code
                    )
        except Exception as e:
            self._logger.error(f'Build crashed: {str(e)}', exc_info=True)
            error = ExternalToolFailureError(
                f'Build failed: {str(e)}', project_id=session.project_id
            )
        finally:
            if process is not None and process.returncode is None:
                await self._reap(process)
            if error is not None:
                await self._emit(session, f'error: {error.message}', 'error')
            await self._finish(session, error)

    async def _pump_all(self, session: BuildSession, process: Any) -> None:
        pumps = [
            asyncio.create_task(self._pump(session, process.stdout, 'stdout')),
            asyncio.create_task(self._pump(session, process.stderr, 'stderr')),
        ]
        try:
            await asyncio.gather(*pumps)
        finally:
            # A failed pump must not leave its sibling reading the pipe.
            for task in pumps:
                task.cancel()
            await asyncio.gather(*pumps, return_exceptions=True)

    async def _reap(self, process: Any) -> None:
        """Drain the pipes and wait for a process whose output is no longer read."""
        self._logger.warning('Waiting for the packaging tool to exit')

        async def discard(reader: Any) -> None:
            if reader is None:
                return
            while await reader.read(_LINE_LIMIT):
                pass

        await asyncio.gather(discard(process.stdout), discard(process.stderr), return_exceptions=True)
        try:
            await process.wait()
        except Exception as e:
            self._logger.error(f'Failed to wait for the packaging tool: {str(e)}')

    async def _pump(self, session: BuildSession, reader: Any, stream_name: str) -> None:
        if reader is None:
            return
        while True:
            raw = await read_line(reader)
            if not raw:
                break
            line = raw.decode(self._output_encoding, errors='replace').rstrip('\r\n')
            await self._emit(session, line, stream_name)

    async def _emit(self, session: BuildSession, line: str, stream_name: str) -> None:
        """Log a line, push it to subscribers and publish it, in that order."""
        session.output_log.append(line)
        if session is self._session:
            for stream in list(self._subscribers):
                stream.push(line)

        self._logger.debug(f'[{stream_name}] {line}', extra={'project_id': session.project_id})

        await self._publish(
            EventType.BUILD_OUTPUT,
            {
                'line': line,
                'stream': stream_name,
                'project_id': session.project_id,
                'session_id': session.session_id,
            },
        )

    async def _publish(self, event_type: EventType, payload: Dict[str, Any]) -> None:
        """Publish on the event bus; a full or stopped bus never fails the build."""
        if self._event_bus_manager is None:
            return
        try:
            await self._event_bus_manager.publish(
                event_type=event_type, source=self.name, payload=payload
            )
        except EventBusError as e:
            self._logger.warning(
                f'Dropped {event_type.value} event: {e.message}',
                extra={'project_id': payload.get('project_id')}
            )

    async def _finish(self, session: BuildSession, error: Optional[BuildError]) -> None:
        session.status = BuildStatus.ERROR if error else BuildStatus.SUCCESS
        session.error = error
        session.finished_at = time.time()

        if session is self._session:
            for stream in self._subscribers:
                stream.close()
            self._subscribers = []

        if error:
            self._logger.error(
                f'Build failed for project {session.project_id}: {error.message}',
                extra={'project_id': session.project_id, 'kind': error.kind}
            )
        else:
            self._logger.info(
                f'Build completed for project {session.project_id}',
                extra={'project_id': session.project_id}
            )
        await self._publish_status(session)

    async def _publish_status(self, session: BuildSession) -> None:
        await self._publish(
            EventType.BUILD_STATUS,
            {
                'status': session.status.value,
                'project_id': session.project_id,
                'session_id': session.session_id,
                'error': session.error.to_dict() if session.error else None,
            },
        )

    async def shutdown(self) -> None:
        """Shut down the orchestrator, waiting for a running build to exit."""
        if not self._initialized:
            return
        if self._task is not None and not self._task.done():
            self._logger.warning('Waiting for the running build to finish before shutdown')
            await self._task
        self._initialized = False
        self._healthy = False

    def status(self) -> Dict[str, Any]:
        info = super().status()
        info.update({
            'build_status': self._session.status.value,
            'project_id': self._session.project_id,
            'subscribers': len(self._subscribers),
        })
        return info
