from __future__ import annotations

import asyncio
import enum
import pathlib
import platform
import shutil
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel

from pakeforge.utils.exceptions import EnvironmentToolError
from pakeforge.utils.shell import open_path, spawn_detached


class ToolState(str, enum.Enum):
    CHECKING = "checking"
    OK = "ok"
    WARNING = "warning"
    ERROR = "error"


class ToolStatus(BaseModel):
    """Result of probing one build prerequisite."""
    status: ToolState
    version: Optional[str] = None
    path: Optional[str] = None


# tool name -> executable run with --version
VERSIONED_TOOLS: Dict[str, str] = {
    'nodejs': 'node',
    'bunjs': 'bun',
    'rust': 'rustc',
    'pake': 'pake',
}

VISUAL_STUDIO_PATHS = (
    r'C:\Program Files (x86)\Microsoft Visual Studio\2022\BuildTools',
    r'C:\Program Files (x86)\Microsoft Visual Studio\2019\BuildTools',
    r'C:\Program Files\Microsoft Visual Studio\2022\Community',
    r'C:\Program Files\Microsoft Visual Studio\2019\Community',
)

DOWNLOAD_PAGES: Dict[str, str] = {
    'nodejs': 'https://nodejs.org',
    'bunjs': 'https://bun.sh',
    'rust': 'https://rustup.rs',
    'visualStudio': 'https://visualstudio.microsoft.com/downloads/#build-tools-for-visual-studio-2022',
}


class EnvironmentChecker:
    """Detects the tools the pake toolchain needs and helps install them."""

    def __init__(
            self,
            logger_manager: Any,
            which: Callable[[str], Optional[str]] = shutil.which,
            system: Optional[str] = None,
            opener: Callable[[str], None] = open_path
    ) -> None:
        self._logger = logger_manager.get_logger('environment')
        self._which = which
        self._system = (system or platform.system()).lower()
        self._opener = opener

    async def check_all(self) -> Dict[str, ToolStatus]:
        """Check every tool.

        Returns:
            Mapping of tool name to its status
        """
        names = list(VERSIONED_TOOLS)
        results = await asyncio.gather(*(self.check_tool(name) for name in names))
        statuses = dict(zip(names, results))
        statuses['visualStudio'] = self.check_visual_studio()
        return statuses

    async def check_tool(self, name: str) -> ToolStatus:
        executable = VERSIONED_TOOLS.get(name)
        if executable is None:
            raise EnvironmentToolError(f'Unknown tool: {name}', tool=name)

        path = self._which(executable)
        if not path:
            return ToolStatus(status=ToolState.ERROR)

        try:
            process = await asyncio.create_subprocess_exec(
                path, '--version',
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
            stdout, _ = await process.communicate()
        except OSError as e:
            self._logger.warning(f'Could not run {executable} --version: {str(e)}')
            return ToolStatus(status=ToolState.ERROR)

        if process.returncode != 0:
            return ToolStatus(status=ToolState.WARNING, path=path)
        version = stdout.decode('utf-8', errors='replace').strip()
        return ToolStatus(status=ToolState.OK, version=version, path=path)

    def check_visual_studio(self) -> ToolStatus:
        if self._system != 'windows':
            return ToolStatus(status=ToolState.OK, version='Not required on this platform')
        for vs_path in VISUAL_STUDIO_PATHS:
            if pathlib.Path(vs_path).exists():
                return ToolStatus(status=ToolState.OK, version='Found', path=vs_path)
        return ToolStatus(status=ToolState.ERROR)

    def install_command(self, tool: str) -> Optional[List[str]]:
        """Get the command that installs a tool, or None for a download page."""
        if tool == 'pake':
            for manager in ('bun', 'npm'):
                manager_path = self._which(manager)
                if manager_path:
                    return [manager_path, 'install', '-g', 'pake-cli']
            raise EnvironmentToolError('Neither bun nor npm found', tool=tool)
        if tool in DOWNLOAD_PAGES:
            return None
        raise EnvironmentToolError(f'Unknown tool: {tool}', tool=tool)

    async def install_tool(self, tool: str) -> None:
        """Start installing a tool.

        Package-manager installs are started and not awaited; other tools open
        their download page.

        Raises:
            EnvironmentToolError: For unknown tools or when nothing can install it
        """
        command = self.install_command(tool)
        if command is None:
            self._logger.info(f'Opening download page for {tool}')
            self._opener(DOWNLOAD_PAGES[tool])
            return

        self._logger.info(f'Installing {tool}: {" ".join(command)}')
        try:
            spawn_detached(command, quiet=False)
        except OSError as e:
            raise EnvironmentToolError(f'Failed to install {tool}: {str(e)}', tool=tool) from e
