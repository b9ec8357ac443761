"""Pake packaging model for PakeForge.

Modules:
    config: Packaging configuration model and validation
    command: Compilation of a configuration into a pake command line
    naming: Project folder naming patterns
"""

from __future__ import annotations

from pakeforge.pake.command import CommandPreview, compile_command, render_command
from pakeforge.pake.config import PakeConfig, Targets, validate_config
from pakeforge.pake.naming import PatternToken, ResolvedName, resolve_name, resolve_pattern

__all__ = [
    "CommandPreview",
    "PakeConfig",
    "PatternToken",
    "ResolvedName",
    "Targets",
    "compile_command",
    "render_command",
    "resolve_name",
    "resolve_pattern",
    "validate_config",
]
