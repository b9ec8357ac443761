"""Tests for the command-line interface."""

import json
from pathlib import Path

import pytest

from pakeforge import cli
from pakeforge.core import build_orchestrator
from tests.conftest import FakeProcess


@pytest.fixture
def cli_args(temp_config_file: str, projects_dir: Path):
    def build(*args: str):
        return ["--config", temp_config_file, "--projects-dir", str(projects_dir), *args]

    return build


@pytest.fixture
def stored_project(projects_dir: Path) -> str:
    project_dir = projects_dir / "demo"
    project_dir.mkdir(parents=True)
    record = {
        "id": "demo",
        "name": "Demo",
        "lastModified": 1700000000000,
        "config": {"url": "https://demo.example.com", "name": "Demo", "fullscreen": True},
    }
    (project_dir / "pake-project.json").write_text(json.dumps(record), encoding="utf-8")
    return "demo"


def test_no_command_prints_help(capsys):
    assert cli.main([]) == 1
    assert "usage" in capsys.readouterr().out


def test_projects_list_empty(cli_args, capsys):
    assert cli.main(cli_args("projects", "list")) == 0
    assert "No projects saved." in capsys.readouterr().out


def test_projects_list_and_show(cli_args, stored_project, capsys):
    assert cli.main(cli_args("projects", "list")) == 0
    assert "demo: Demo (https://demo.example.com)" in capsys.readouterr().out

    assert cli.main(cli_args("projects", "show", stored_project)) == 0
    shown = json.loads(capsys.readouterr().out)
    assert shown["config"]["fullscreen"] is True


def test_projects_search(cli_args, stored_project, capsys):
    assert cli.main(cli_args("projects", "search", "DEMO")) == 0
    assert cli.main(cli_args("projects", "search", "nothing")) == 1


def test_projects_delete(cli_args, stored_project, projects_dir, capsys):
    assert cli.main(cli_args("projects", "delete", stored_project)) == 0
    assert not (projects_dir / stored_project).exists()

    assert cli.main(cli_args("projects", "delete", stored_project)) == 1
    assert "Project not found" in capsys.readouterr().err


def test_preview(cli_args, stored_project, capsys):
    assert cli.main(cli_args("preview", stored_project)) == 0
    assert capsys.readouterr().out.strip() == "pake https://demo.example.com --name Demo --fullscreen"


def test_build(cli_args, stored_project, monkeypatch, capsys):
    async def fake_launch(argv, cwd):
        process = FakeProcess()
        process.run(["bundling", "finished"])
        return process

    monkeypatch.setattr(build_orchestrator, "launch_process", fake_launch)

    assert cli.main(cli_args("build", stored_project)) == 0
    out = capsys.readouterr().out
    assert out.index("bundling") < out.index("finished")
    assert "Build succeeded" in out


def test_build_failure(cli_args, stored_project, monkeypatch, capsys):
    async def fake_launch(argv, cwd):
        process = FakeProcess()
        process.run(["oops"], return_code=3)
        return process

    monkeypatch.setattr(build_orchestrator, "launch_process", fake_launch)

    assert cli.main(cli_args("build", stored_project)) == 1
    assert "exited with code 3" in capsys.readouterr().err


def test_settings(cli_args, capsys):
    assert cli.main(cli_args("settings", "show")) == 0
    assert json.loads(capsys.readouterr().out)["language"] == "en"

    assert cli.main(cli_args("settings", "set", "language", "zh")) == 0
    assert json.loads(capsys.readouterr().out)["language"] == "zh"

    assert cli.main(cli_args("settings", "set", "language", "fr")) == 1
