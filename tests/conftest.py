"""Pytest configuration and fixtures for PakeForge tests."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import AsyncGenerator, Iterable, List, Optional, Tuple
from unittest.mock import MagicMock

import pytest
import pytest_asyncio
import yaml

from pakeforge.core.config_manager import ConfigManager
from pakeforge.core.project_store import ProjectStore


@pytest.fixture
def temp_config_file(tmp_path: Path) -> str:
    """Create a temporary configuration file for testing."""
    test_config = {
        "app": {"name": "PakeForge Test", "environment": "testing"},
        "logging": {
            "level": "DEBUG",
            "format": "text",
            "file": {"enabled": False},
            "console": {"enabled": True, "level": "ERROR"},
        },
        "build": {"tool": "pake", "default_icon": "icons/default.png"},
        "pake-gui-settings": {
            "projectSavePath": str(tmp_path / "saved"),
            "projectNamePattern": "{timestamp}",
            "language": "en",
        },
    }

    config_path = tmp_path / "config.yaml"
    with config_path.open("w", encoding="utf-8") as f:
        yaml.dump(test_config, f)
    return str(config_path)


@pytest.fixture
def logger_manager() -> MagicMock:
    manager = MagicMock()
    manager.get_logger.return_value = MagicMock()
    return manager


@pytest.fixture
def projects_dir(tmp_path: Path) -> Path:
    return tmp_path / "projects"


@pytest_asyncio.fixture
async def config_manager(temp_config_file: str) -> AsyncGenerator[ConfigManager, None]:
    """Create a ConfigManager instance for testing."""
    manager = ConfigManager(config_path=temp_config_file)
    await manager.initialize()
    yield manager
    await manager.shutdown()


@pytest_asyncio.fixture
async def project_store(
        config_manager: ConfigManager, logger_manager: MagicMock, projects_dir: Path
) -> AsyncGenerator[ProjectStore, None]:
    store = ProjectStore(config_manager, logger_manager, projects_dir=projects_dir)
    await store.initialize()
    yield store
    await store.shutdown()


class FakeProcess:
    """Stands in for a packaging tool process whose output the test controls.

    Must be created while the event loop is running.
    """

    def __init__(self) -> None:
        self.stdout = asyncio.StreamReader()
        self.stderr = asyncio.StreamReader()
        self.returncode: Optional[int] = None
        self._exited = asyncio.Event()

    def emit(self, line: str, stream: str = "stdout") -> None:
        reader = self.stdout if stream == "stdout" else self.stderr
        reader.feed_data(line.encode("utf-8") + b"\n")

    def exit(self, return_code: int = 0) -> None:
        self.stdout.feed_eof()
        self.stderr.feed_eof()
        self.returncode = return_code
        self._exited.set()

    def run(self, lines: Iterable[str], return_code: int = 0) -> None:
        for line in lines:
            self.emit(line)
        self.exit(return_code)

    async def wait(self) -> int:
        await self._exited.wait()
        return self.returncode


class FakeLauncher:
    """Process launcher recording the commands it was asked to start."""

    def __init__(self, process: Optional[FakeProcess] = None, error: Optional[Exception] = None) -> None:
        self.process = process
        self.error = error
        self.calls: List[Tuple[List[str], Path]] = []

    async def __call__(self, argv: List[str], cwd: Path) -> FakeProcess:
        self.calls.append((list(argv), cwd))
        if self.error is not None:
            raise self.error
        return self.process


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Yield to the event loop until a condition holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.001)
