"""Unit tests for pake command compilation and the command preview."""

from pakeforge.pake.command import CommandPreview, compile_command, quote_token, render_command
from pakeforge.pake.config import PakeConfig, Targets


def _config(**kwargs) -> PakeConfig:
    return PakeConfig(url="https://example.com", name="Example", **kwargs)


def test_all_defaults_compile_to_tool_and_url() -> None:
    config = PakeConfig(url="https://example.com")
    assert compile_command(config) == ["pake", "https://example.com"]


def test_custom_tool() -> None:
    config = PakeConfig(url="https://example.com")
    assert compile_command(config, "/opt/bin/pake") == ["/opt/bin/pake", "https://example.com"]


def test_compile_is_deterministic() -> None:
    config = _config(width=800, fullscreen=True, inject=["a.css", "b.js"])
    assert compile_command(config) == compile_command(config.model_copy(deep=True))


def test_default_sizes_are_omitted() -> None:
    tokens = compile_command(_config(width=1200, height=780))
    assert "--width" not in tokens
    assert "--height" not in tokens


def test_non_default_sizes_are_emitted() -> None:
    tokens = compile_command(_config(width=800, height=600))
    assert tokens[tokens.index("--width") + 1] == "800"
    assert tokens[tokens.index("--height") + 1] == "600"


def test_flag_order() -> None:
    config = PakeConfig(
        url="index.html",
        name="Local",
        icon="icon.png",
        width=1000,
        height=700,
        use_local_file=True,
        fullscreen=True,
        hide_title_bar=True,
        multi_arch=True,
        debug=True,
        activation_shortcut="CmdOrControl+Shift+P",
        always_on_top=True,
        targets=Targets.DEB,
        user_agent="Agent/1.0",
        show_system_tray=True,
        system_tray_icon="tray.png",
        inject=["a.css", "b.js"],
        safe_domain=["x.com", "y.com"],
    )
    assert compile_command(config) == [
        "pake", "index.html",
        "--name", "Local",
        "--icon", "icon.png",
        "--width", "1000",
        "--height", "700",
        "--use-local-file",
        "--fullscreen",
        "--hide-title-bar",
        "--multi-arch",
        "--debug",
        "--activation-shortcut", "CmdOrControl+Shift+P",
        "--always-on-top",
        "--targets", "deb",
        "--user-agent", "Agent/1.0",
        "--show-system-tray",
        "--system-tray-icon", "tray.png",
        "--inject", "a.css",
        "--inject", "b.js",
        "--safe-domain", "x.com",
        "--safe-domain", "y.com",
    ]


def test_false_switches_are_omitted() -> None:
    tokens = compile_command(_config(fullscreen=False, debug=False))
    assert tokens == ["pake", "https://example.com", "--name", "Example"]


def test_quote_token() -> None:
    assert quote_token("plain") == "plain"
    assert quote_token("My App") == '"My App"'
    assert quote_token('say "hi"') == '"say \\"hi\\""'
    assert quote_token("") == '""'


def test_render_command() -> None:
    tokens = compile_command(_config(user_agent="Mozilla/5.0 (X11)"))
    assert render_command(tokens) == (
        'pake https://example.com --name Example --user-agent "Mozilla/5.0 (X11)"'
    )


def test_preview_without_url_shows_placeholder() -> None:
    preview = CommandPreview(PakeConfig(name="Example"))
    assert preview.text == "pake <URL>"


def test_preview_follows_config_updates() -> None:
    preview = CommandPreview(_config())
    assert preview.text == "pake https://example.com --name Example"

    preview.update(_config(fullscreen=True))
    assert preview.text == "pake https://example.com --name Example --fullscreen"


def test_preview_override_wins_until_discarded() -> None:
    preview = CommandPreview(_config())
    preview.edit("pake https://example.com --name Custom")
    assert preview.is_overridden

    preview.update(_config(debug=True))
    assert preview.text == "pake https://example.com --name Custom"
    # The compiled tokens are never affected by the edit
    assert preview.tokens == ["pake", "https://example.com", "--name", "Example", "--debug"]

    preview.discard()
    assert not preview.is_overridden
    assert preview.text == "pake https://example.com --name Example --debug"
