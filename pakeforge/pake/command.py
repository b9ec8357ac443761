"""Command-line compilation for the pake packaging tool.

The compiled form is an argv list handed straight to the process launcher;
the rendered form is the text shown to the user for copying.
"""

from __future__ import annotations

import re
from typing import Callable, List, Optional, Tuple

from pakeforge.pake.config import DEFAULT_HEIGHT, DEFAULT_WIDTH, PakeConfig, Targets

DEFAULT_TOOL = "pake"

_NEEDS_QUOTES = re.compile(r'[\s"\'\\]')

# Flag order is part of the output contract.
_OPTIONS: Tuple[Tuple[str, Callable[[PakeConfig], Optional[str]]], ...] = (
    ("--name", lambda c: c.name or None),
    ("--icon", lambda c: c.icon or None),
    ("--width", lambda c: str(c.width) if c.width != DEFAULT_WIDTH else None),
    ("--height", lambda c: str(c.height) if c.height != DEFAULT_HEIGHT else None),
    ("--use-local-file", lambda c: "" if c.use_local_file else None),
    ("--fullscreen", lambda c: "" if c.fullscreen else None),
    ("--hide-title-bar", lambda c: "" if c.hide_title_bar else None),
    ("--multi-arch", lambda c: "" if c.multi_arch else None),
    ("--debug", lambda c: "" if c.debug else None),
    ("--activation-shortcut", lambda c: c.activation_shortcut or None),
    ("--always-on-top", lambda c: "" if c.always_on_top else None),
    ("--targets", lambda c: Targets(c.targets).value if Targets(c.targets) != Targets.ALL else None),
    ("--user-agent", lambda c: c.user_agent or None),
    ("--show-system-tray", lambda c: "" if c.show_system_tray else None),
    ("--system-tray-icon", lambda c: c.system_tray_icon or None),
)


def compile_command(config: PakeConfig, tool: str = DEFAULT_TOOL) -> List[str]:
    """Compile a configuration into the packaging tool's argument list.

    Options equal to their default are omitted. Boolean options are emitted
    as bare switches and repeated options keep list order.

    Args:
        config: The configuration to compile
        tool: Command name of the packaging tool

    Returns:
        The argv tokens, starting with the tool and the URL
    """
    args = [tool, config.url]

    for flag, value_of in _OPTIONS:
        value = value_of(config)
        if value is None:
            continue
        args.append(flag)
        if value:
            args.append(value)

    for path in config.inject:
        args.extend(["--inject", path])

    for domain in config.safe_domain:
        args.extend(["--safe-domain", domain])

    return args


def quote_token(token: str) -> str:
    """Double-quote a token if it contains whitespace or quote characters."""
    if token and not _NEEDS_QUOTES.search(token):
        return token
    escaped = token.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def render_command(tokens: List[str]) -> str:
    """Render compiled tokens as a single copyable command line."""
    return " ".join(quote_token(token) for token in tokens)


class CommandPreview:
    """Human-editable preview of the compiled command.

    Once the text is edited, the edit supersedes the compiled form until it
    is discarded. Edited text is free-form and is never used to run a build.
    """

    def __init__(self, config: PakeConfig, tool: str = DEFAULT_TOOL) -> None:
        self.config = config
        self.tool = tool
        self._override: Optional[str] = None

    @property
    def tokens(self) -> List[str]:
        return compile_command(self.config, self.tool)

    @property
    def compiled_text(self) -> str:
        if not self.config.url.strip():
            return f"{self.tool} <URL>"
        return render_command(self.tokens)

    @property
    def text(self) -> str:
        """The text to show or copy: the edit if any, else the compiled command."""
        if self._override is not None:
            return self._override
        return self.compiled_text

    @property
    def is_overridden(self) -> bool:
        return self._override is not None

    def edit(self, text: str) -> None:
        self._override = text

    def discard(self) -> None:
        self._override = None

    def update(self, config: PakeConfig) -> None:
        """Swap in an edited configuration; an active edit still wins."""
        self.config = config
