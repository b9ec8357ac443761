"""Unit tests for the build orchestrator."""

import asyncio
from typing import List
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from pakeforge.core.build_orchestrator import BuildOrchestrator, BuildStatus
from pakeforge.core.event_bus_manager import EventBusManager
from pakeforge.core.event_model import EventType
from pakeforge.pake.config import PakeConfig
from pakeforge.utils.exceptions import (
    BuildInProgressError,
    ConfigValidationError,
    ExternalToolFailureError,
    LaunchFailedError,
)
from tests.conftest import FakeLauncher, FakeProcess, wait_until

CONFIG = PakeConfig(url="https://example.com", name="Example")


@pytest_asyncio.fixture
async def launcher():
    return FakeLauncher(FakeProcess())


@pytest_asyncio.fixture
async def orchestrator(config_manager, logger_manager, project_store, launcher):
    manager = BuildOrchestrator(config_manager, logger_manager, project_store, launcher=launcher)
    await manager.initialize()
    yield manager
    if launcher.process is not None and launcher.process.returncode is None:
        launcher.process.exit(0)
    await manager.shutdown()


async def _collect(stream) -> List[str]:
    return [line async for line in stream]


@pytest.mark.asyncio
async def test_initial_state(orchestrator):
    assert orchestrator.build_status == BuildStatus.IDLE
    assert orchestrator.current_log() == []
    stream, cancel = orchestrator.subscribe()
    assert stream.closed
    cancel()


@pytest.mark.asyncio
async def test_successful_build_streams_lines_in_order(orchestrator, launcher, project_store):
    session = await orchestrator.start_build(CONFIG)
    assert session.status == BuildStatus.BUILDING
    assert session.command == ["pake", "https://example.com", "--name", "Example", "--icon", "icons/default.png"]

    stream, cancel = orchestrator.subscribe()
    collector = asyncio.create_task(_collect(stream))
    launcher.process.run(["a", "b", "c"])

    assert await collector == ["a", "b", "c"]
    finished = await orchestrator.wait()
    assert finished.status == BuildStatus.SUCCESS
    assert finished.output_log == ["a", "b", "c"]
    assert finished.error is None
    cancel()

    # The build saved the project and ran in its directory
    projects = await project_store.list_projects()
    assert [p.id for p in projects] == [session.project_id]
    argv, cwd = launcher.calls[0]
    assert cwd == project_store.get_project_path(session.project_id)


@pytest.mark.asyncio
async def test_build_of_existing_project_keeps_id(orchestrator, launcher, project_store):
    from pakeforge.models.project import Project

    saved = await project_store.save_project(Project(name="Example", config=CONFIG))
    session = await orchestrator.start_build(CONFIG, saved.id)
    launcher.process.run([])
    await orchestrator.wait()

    assert session.project_id == saved.id
    assert len(await project_store.list_projects()) == 1


@pytest.mark.asyncio
async def test_stderr_lines_are_logged(orchestrator, launcher):
    await orchestrator.start_build(CONFIG)
    launcher.process.emit("warning: slow", stream="stderr")
    launcher.process.exit(0)

    session = await orchestrator.wait()
    assert session.output_log == ["warning: slow"]


@pytest.mark.asyncio
async def test_late_subscriber_gets_no_replay(orchestrator, launcher):
    await orchestrator.start_build(CONFIG)
    launcher.process.emit("a")
    await wait_until(lambda: orchestrator.current_log() == ["a"])

    stream, cancel = orchestrator.subscribe()
    collector = asyncio.create_task(_collect(stream))
    launcher.process.emit("b")
    launcher.process.exit(0)

    assert await collector == ["b"]
    assert orchestrator.current_log() == ["a", "b"]
    cancel()


@pytest.mark.asyncio
async def test_cancelled_subscription_stops_receiving(orchestrator, launcher):
    await orchestrator.start_build(CONFIG)
    stream, cancel = orchestrator.subscribe()
    cancel()
    launcher.process.run(["a"])

    assert await _collect(stream) == []
    assert (await orchestrator.wait()).output_log == ["a"]


@pytest.mark.asyncio
async def test_second_build_is_rejected(orchestrator, launcher):
    await orchestrator.start_build(CONFIG)
    launcher.process.emit("a")
    await wait_until(lambda: orchestrator.current_log() == ["a"])

    with pytest.raises(BuildInProgressError) as exc_info:
        await orchestrator.start_build(PakeConfig(url="https://other.com", name="Other"))
    assert exc_info.value.kind == "BuildInProgress"

    assert orchestrator.build_status == BuildStatus.BUILDING
    assert orchestrator.current_log() == ["a"]
    assert len(launcher.calls) == 1

    launcher.process.exit(0)
    assert (await orchestrator.wait()).output_log == ["a"]


@pytest.mark.asyncio
async def test_invalid_config_never_enters_building(orchestrator, launcher, project_store):
    with pytest.raises(ConfigValidationError) as exc_info:
        await orchestrator.start_build(PakeConfig(url="https://example.com", name=""))

    assert exc_info.value.kind == "MissingName"
    assert orchestrator.build_status == BuildStatus.ERROR
    assert orchestrator.current_log() == ["Build failed: App name is required"]
    assert launcher.calls == []
    assert await project_store.list_projects() == []


@pytest.mark.asyncio
async def test_nonzero_exit_is_external_tool_failure(orchestrator, launcher):
    await orchestrator.start_build(CONFIG)
    launcher.process.run(["compiling"], return_code=2)

    session = await orchestrator.wait()
    assert session.status == BuildStatus.ERROR
    assert isinstance(session.error, ExternalToolFailureError)
    assert session.error.return_code == 2
    assert session.output_log == ["compiling", "error: pake exited with code 2"]
    assert session.to_dict()["error"]["kind"] == "ExternalToolFailure"


@pytest.mark.asyncio
async def test_launch_failure(config_manager, logger_manager, project_store):
    launcher = FakeLauncher(error=FileNotFoundError("No such file or directory: 'pake'"))
    orchestrator = BuildOrchestrator(config_manager, logger_manager, project_store, launcher=launcher)
    await orchestrator.initialize()

    await orchestrator.start_build(CONFIG)
    session = await orchestrator.wait()

    assert session.status == BuildStatus.ERROR
    assert isinstance(session.error, LaunchFailedError)
    assert session.output_log[-1].startswith("error: Failed to start pake")
    await orchestrator.shutdown()


@pytest.mark.asyncio
async def test_build_raises_on_failure(config_manager, logger_manager, project_store):
    launcher = FakeLauncher(error=PermissionError("denied"))
    orchestrator = BuildOrchestrator(config_manager, logger_manager, project_store, launcher=launcher)
    await orchestrator.initialize()

    with pytest.raises(LaunchFailedError):
        await orchestrator.build(CONFIG)
    await orchestrator.shutdown()


@pytest.mark.asyncio
async def test_new_build_after_failure_resets_session(orchestrator, launcher):
    await orchestrator.start_build(CONFIG)
    launcher.process.run(["first"], return_code=1)
    await orchestrator.wait()

    launcher.process = FakeProcess()
    second = await orchestrator.start_build(CONFIG)
    assert second.output_log == []
    launcher.process.run(["second"])

    session = await orchestrator.wait()
    assert session.status == BuildStatus.SUCCESS
    assert session.output_log == ["second"]


@pytest.mark.asyncio
async def test_build_events_are_published(config_manager, logger_manager, project_store):
    event_bus = EventBusManager(config_manager, logger_manager)
    await event_bus.initialize()
    outputs, statuses = [], []
    await event_bus.subscribe(EventType.BUILD_OUTPUT, lambda e: outputs.append(e.payload["line"]))
    await event_bus.subscribe(EventType.BUILD_STATUS, lambda e: statuses.append(e.payload["status"]))

    launcher = FakeLauncher(FakeProcess())
    orchestrator = BuildOrchestrator(
        config_manager, logger_manager, project_store, event_bus, launcher=launcher
    )
    await orchestrator.initialize()

    await orchestrator.start_build(CONFIG)
    launcher.process.run(["a", "b", "c"])
    await orchestrator.wait()
    await event_bus.drain()

    assert outputs == ["a", "b", "c"]
    assert statuses == ["building", "success"]

    await orchestrator.shutdown()
    await event_bus.shutdown()


@pytest.mark.asyncio
async def test_status_reports_session(orchestrator, launcher):
    await orchestrator.start_build(CONFIG)
    status = orchestrator.status()
    assert status["build_status"] == "building"
    assert status["initialized"] is True
    launcher.process.exit(0)
    await orchestrator.wait()


@pytest.mark.asyncio
async def test_any_launcher_exception_is_launch_failure(orchestrator, launcher):
    launcher.process = None
    launcher.error = RuntimeError("boom")

    await orchestrator.start_build(CONFIG)
    session = await orchestrator.wait()

    assert session.status == BuildStatus.ERROR
    assert isinstance(session.error, LaunchFailedError)
    assert session.output_log == ["error: Failed to start pake: boom"]

    # The slot is free again
    launcher.error = None
    launcher.process = FakeProcess()
    await orchestrator.start_build(CONFIG)
    launcher.process.run(["ok"])
    assert (await orchestrator.wait()).status == BuildStatus.SUCCESS


@pytest.mark.asyncio
async def test_line_longer_than_buffer_limit(orchestrator, launcher):
    long_line = "x" * 200000
    await orchestrator.start_build(CONFIG)
    launcher.process.run([long_line, "tail"])

    session = await orchestrator.wait()
    assert session.status == BuildStatus.SUCCESS
    assert session.output_log == [long_line, "tail"]


@pytest.mark.asyncio
async def test_broken_pipe_waits_for_process_exit(orchestrator, launcher):
    broken = MagicMock()
    broken.readuntil = AsyncMock(side_effect=RuntimeError("pipe broke"))
    broken.read = AsyncMock(return_value=b"")
    launcher.process.stderr = broken

    await orchestrator.start_build(CONFIG)
    await asyncio.sleep(0.01)
    # The tool is still running, so the session must not end yet
    assert orchestrator.build_status == BuildStatus.BUILDING
    with pytest.raises(BuildInProgressError):
        await orchestrator.start_build(CONFIG)

    launcher.process.exit(0)
    session = await orchestrator.wait()

    assert session.status == BuildStatus.ERROR
    assert isinstance(session.error, ExternalToolFailureError)
    assert session.output_log[-1] == "error: Build failed: pipe broke"
    assert launcher.process.returncode is not None

    launcher.process = FakeProcess()
    await orchestrator.start_build(CONFIG)
    launcher.process.run([])
    assert (await orchestrator.wait()).status == BuildStatus.SUCCESS


@pytest.mark.asyncio
async def test_full_event_bus_does_not_stall_build(config_manager, logger_manager, project_store):
    bus_config = MagicMock()
    bus_config.get = AsyncMock(return_value={"max_queue_size": 1, "publish_timeout": 0.05})
    event_bus = EventBusManager(bus_config, logger_manager)
    await event_bus.initialize()

    gate = asyncio.Event()

    async def blocked_handler(event):
        await gate.wait()

    await event_bus.subscribe(EventType.BUILD_OUTPUT, blocked_handler)

    launcher = FakeLauncher(FakeProcess())
    orchestrator = BuildOrchestrator(
        config_manager, logger_manager, project_store, event_bus, launcher=launcher
    )
    await orchestrator.initialize()

    await orchestrator.start_build(CONFIG)
    launcher.process.run(["1", "2", "3", "4"])

    session = await asyncio.wait_for(orchestrator.wait(), timeout=2.0)
    assert session.status == BuildStatus.SUCCESS
    assert session.output_log == ["1", "2", "3", "4"]
    assert logger_manager.get_logger.return_value.warning.called

    gate.set()
    launcher.process = FakeProcess()
    second = await orchestrator.start_build(CONFIG)
    assert second.status == BuildStatus.BUILDING
    launcher.process.run([])
    assert (await orchestrator.wait()).status == BuildStatus.SUCCESS

    await orchestrator.shutdown()
    await event_bus.shutdown()
