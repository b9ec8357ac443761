"""Starting detached processes and opening paths with the operating system shell."""

from __future__ import annotations

import os
import platform
import subprocess
import threading
from typing import List, Union

from pakeforge.utils.exceptions import PakeForgeError


def open_command(target: str) -> List[str]:
    """Get the command that opens a path or URL on this platform."""
    system = platform.system().lower()
    if system == "windows":
        return ["explorer", target]
    if system == "darwin":
        return ["open", target]
    return ["xdg-open", target]


def spawn_detached(command: List[str], quiet: bool = True) -> subprocess.Popen:
    """Start a process in its own session without waiting for it.

    A daemon thread waits on the process so it is reaped when it exits.

    Args:
        command: Command and arguments
        quiet: Discard the process's output instead of inheriting ours

    Raises:
        OSError: If the process cannot be started
    """
    output = subprocess.DEVNULL if quiet else None
    process = subprocess.Popen(
        command,
        stdin=subprocess.DEVNULL,
        stdout=output,
        stderr=output,
        start_new_session=True,
    )
    threading.Thread(target=process.wait, name=f"reap-{process.pid}", daemon=True).start()
    return process


def open_path(path: Union[str, os.PathLike]) -> None:
    """Open a file, directory or URL with the default application.

    The opener is started and not waited for.

    Raises:
        PakeForgeError: If the opener cannot be started
    """
    target = os.fspath(path)
    try:
        spawn_detached(open_command(target))
    except OSError as e:
        raise PakeForgeError(f"Failed to open path: {e}", path=target) from e
