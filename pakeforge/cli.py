"""Command-line interface for PakeForge.

This module provides a command-line interface for managing stored projects,
previewing and running builds, checking the build environment and editing
settings.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any, Awaitable, Callable, List, Optional

from pakeforge.__version__ import __version__
from pakeforge.core.app import ApplicationCore
from pakeforge.core.build_orchestrator import BuildStatus
from pakeforge.utils.exceptions import PakeForgeError


def _run(args: argparse.Namespace, action: Callable[[ApplicationCore], Awaitable[int]]) -> int:
    """Run an action against an initialized application core."""

    async def runner() -> int:
        app = ApplicationCore(config_path=args.config, projects_dir=args.projects_dir)
        await app.initialize()
        try:
            return await action(app)
        finally:
            await app.shutdown()

    return asyncio.run(runner())


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


def projects_command(args: argparse.Namespace) -> int:
    """Handle the projects command.

    Args:
        args: Command-line arguments

    Returns:
        Exit code (0 for success, non-zero for failure)
    """

    async def action(app: ApplicationCore) -> int:
        if args.projects_action == "list":
            projects = await app.get_projects()
            if not projects:
                print("No projects saved.")
                return 0
            print(f"Projects ({len(projects)}):")
            for project in projects:
                print(f"  - {project.id}: {project.name} ({project.config.url})")
            return 0

        if args.projects_action == "search":
            projects = await app.search_projects(args.query)
            for project in projects:
                print(f"  - {project.id}: {project.name} ({project.config.url})")
            return 0 if projects else 1

        if args.projects_action == "show":
            project = await app.load_project(args.id)
            _print_json(project.to_dict())
            return 0

        if args.projects_action == "delete":
            await app.delete_project(args.id)
            print(f"Deleted project: {args.id}")
            return 0

        return 1

    try:
        return _run(args, action)
    except PakeForgeError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def preview_command(args: argparse.Namespace) -> int:
    """Handle the preview command."""

    async def action(app: ApplicationCore) -> int:
        project = await app.load_project(args.id)
        preview = await app.command_preview(project.config)
        print(preview.text)
        return 0

    try:
        return _run(args, action)
    except PakeForgeError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def build_command(args: argparse.Namespace) -> int:
    """Handle the build command.

    The tool's output is printed as it arrives.

    Args:
        args: Command-line arguments

    Returns:
        Exit code (0 for success, non-zero for failure)
    """

    async def action(app: ApplicationCore) -> int:
        project = await app.load_project(args.id)
        orchestrator = app.build_orchestrator
        session = await app.build_pake_app(project.config, project.id)
        print(f"Building {project.name}: {' '.join(session.command)}")

        # Read the log and subscribe without yielding, so no line is missed.
        for line in orchestrator.current_log():
            print(line)
        stream, cancel = orchestrator.subscribe()
        try:
            async for line in stream:
                print(line)
        finally:
            cancel()

        session = await orchestrator.wait()
        if session.status == BuildStatus.SUCCESS:
            output = await app.get_project_output_path(project.id)
            print(f"Build succeeded{': ' + output if output else ''}")
            return 0
        print(f"Build failed: {session.error}", file=sys.stderr)
        return 1

    try:
        return _run(args, action)
    except PakeForgeError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def env_command(args: argparse.Namespace) -> int:
    """Handle the env command."""

    async def action(app: ApplicationCore) -> int:
        if args.env_action == "install":
            await app.install_tool(args.tool)
            print(f"Started installing {args.tool}")
            return 0

        statuses = await app.check_environment()
        ok = True
        for name, status in statuses.items():
            ok = ok and status.status.value != "error"
            details = status.version or ""
            print(f"  {name:<14} {status.status.value:<8} {details}")
        return 0 if ok else 1

    try:
        return _run(args, action)
    except PakeForgeError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def settings_command(args: argparse.Namespace) -> int:
    """Handle the settings command."""

    async def action(app: ApplicationCore) -> int:
        if args.settings_action == "set":
            settings = await app.update_settings(**{args.key: args.value})
        else:
            settings = await app.get_settings()
        _print_json(settings.model_dump(by_alias=True))
        return 0

    try:
        return _run(args, action)
    except PakeForgeError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def main(args: Optional[List[str]] = None) -> int:
    """Main entry point for the command-line interface.

    Args:
        args: Command-line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    parser = argparse.ArgumentParser(
        description="PakeForge CLI",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    parser.add_argument("--version", action="version", version=f"pakeforge {__version__}")
    parser.add_argument("--config", help="Configuration file (defaults to ~/.pake-gui/config.yaml)")
    parser.add_argument("--projects-dir", help="Project directory overriding the settings")

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    # Projects command
    projects_parser = subparsers.add_parser("projects", help="Manage saved projects")
    projects_sub = projects_parser.add_subparsers(dest="projects_action")
    projects_sub.add_parser("list", help="List projects, most recent first")
    search_parser = projects_sub.add_parser("search", help="Search projects by name or URL")
    search_parser.add_argument("query", help="Text to look for")
    show_parser = projects_sub.add_parser("show", help="Show a project")
    show_parser.add_argument("id", help="Project id")
    delete_parser = projects_sub.add_parser("delete", help="Delete a project")
    delete_parser.add_argument("id", help="Project id")

    # Preview command
    preview_parser = subparsers.add_parser("preview", help="Print the pake command of a project")
    preview_parser.add_argument("id", help="Project id")

    # Build command
    build_parser = subparsers.add_parser("build", help="Build a project")
    build_parser.add_argument("id", help="Project id")

    # Env command
    env_parser = subparsers.add_parser("env", help="Check or install build tools")
    env_sub = env_parser.add_subparsers(dest="env_action")
    env_sub.add_parser("check", help="Check the build environment")
    install_parser = env_sub.add_parser("install", help="Install a build tool")
    install_parser.add_argument("tool", help="Tool name (nodejs, bunjs, rust, visualStudio, pake)")

    # Settings command
    settings_parser = subparsers.add_parser("settings", help="Show or change settings")
    settings_sub = settings_parser.add_subparsers(dest="settings_action")
    settings_sub.add_parser("show", help="Show settings")
    set_parser = settings_sub.add_parser("set", help="Change one setting")
    set_parser.add_argument("key", help="Setting (projectSavePath, projectNamePattern, language)")
    set_parser.add_argument("value", help="New value")

    args = parser.parse_args(args)

    if args.command == "projects" and args.projects_action:
        return projects_command(args)
    elif args.command == "preview":
        return preview_command(args)
    elif args.command == "build":
        return build_command(args)
    elif args.command == "env" and args.env_action:
        return env_command(args)
    elif args.command == "settings" and args.settings_action:
        return settings_command(args)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
