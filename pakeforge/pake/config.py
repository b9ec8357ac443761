"""Packaging configuration for a pake desktop app.

This module contains the configuration model describing one app-packaging
request and the validation run at the save and build boundaries.
"""

from __future__ import annotations

import enum
import re
from typing import Any, Dict, List, Optional

import pydantic
from pydantic import ConfigDict, Field

from pakeforge.utils.exceptions import ConfigValidationError, ValidationErrorKind

DEFAULT_WIDTH = 1200
DEFAULT_HEIGHT = 780

# Unified ideographs, extensions A-F and the compatibility blocks.
_CJK_IDEOGRAPH = re.compile(
    "["
    "\u3400-\u4dbf"
    "\u4e00-\u9fff"
    "\uf900-\ufaff"
    "\U00020000-\U0002a6df"
    "\U0002a700-\U0002ebef"
    "\U0002f800-\U0002fa1f"
    "\U00030000-\U0003134f"
    "]"
)


class Targets(str, enum.Enum):
    """Linux package formats the packaging tool can produce."""

    ALL = "all"
    DEB = "deb"
    APPIMAGE = "appimage"


class PakeConfig(pydantic.BaseModel):
    """Configuration of one desktop-packaged web app.

    Attributes use snake_case; the serialized form uses the camelCase keys the
    project files and the desktop front end share.

    Attributes:
        url: Web address or local file to wrap
        name: Application name, no CJK ideographs
        icon: Path to the application icon, default icon when empty
        width: Window width in pixels
        height: Window height in pixels
        use_local_file: Package a local file instead of a URL
        fullscreen: Start in fullscreen
        hide_title_bar: Hide the window title bar
        multi_arch: Build a universal binary on macOS
        debug: Build with developer tools enabled
        always_on_top: Keep the window above others
        show_system_tray: Show a tray icon
        inject: Files injected into the page, in order
        safe_domain: Extra domains the app may navigate to, in order
        activation_shortcut: Global shortcut toggling the window
        user_agent: Custom user agent string
        system_tray_icon: Path to the tray icon
        targets: Linux package format
    """

    model_config = ConfigDict(populate_by_name=True, use_enum_values=False)

    url: str = ""
    name: str = ""
    icon: str = ""
    width: pydantic.PositiveInt = DEFAULT_WIDTH
    height: pydantic.PositiveInt = DEFAULT_HEIGHT
    use_local_file: bool = Field(False, alias="useLocalFile")
    fullscreen: bool = False
    hide_title_bar: bool = Field(False, alias="hideTitleBar")
    multi_arch: bool = Field(False, alias="multiArch")
    debug: bool = False
    always_on_top: bool = Field(False, alias="alwaysOnTop")
    show_system_tray: bool = Field(False, alias="showSystemTray")
    inject: List[str] = Field(default_factory=list)
    safe_domain: List[str] = Field(default_factory=list, alias="safeDomain")
    activation_shortcut: str = Field("", alias="activationShortcut")
    user_agent: str = Field("", alias="userAgent")
    system_tray_icon: str = Field("", alias="systemTrayIcon")
    targets: Targets = Targets.ALL

    @pydantic.field_validator(
        "url", "name", "icon", "activation_shortcut", "user_agent", "system_tray_icon",
        "targets", "inject", "safe_domain", mode="before",
    )
    @classmethod
    def fill_missing(cls, v: Any, info: pydantic.ValidationInfo) -> Any:
        """Treat null values in stored records as the field default."""
        if v is None:
            return cls.model_fields[info.field_name].get_default(call_default_factory=True)
        return v

    @pydantic.field_validator("width", "height", mode="before")
    @classmethod
    def fill_missing_size(cls, v: Any, info: pydantic.ValidationInfo) -> Any:
        """Fall back to the default window size for null or zero values."""
        if v in (None, 0, ""):
            return DEFAULT_WIDTH if info.field_name == "width" else DEFAULT_HEIGHT
        return v

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> PakeConfig:
        """Create a PakeConfig from a dictionary with camelCase or snake_case keys."""
        return cls.model_validate(config_dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert the configuration to its camelCase dictionary form."""
        return self.model_dump(mode="json", by_alias=True)

    def normalized(self, default_icon: Optional[str] = None) -> PakeConfig:
        """Get the copy stored at save time.

        The url and name are trimmed, and an empty icon resolves to
        ``default_icon`` when one is given.
        """
        updates: Dict[str, Any] = {"url": self.url.strip(), "name": self.name.strip()}
        if default_icon and not self.icon.strip():
            updates["icon"] = default_icon
        return self.model_copy(update=updates, deep=True)


def contains_cjk(text: str) -> bool:
    """Check whether text contains any CJK ideograph."""
    return _CJK_IDEOGRAPH.search(text) is not None


def validate_config(config: PakeConfig) -> None:
    """Validate a packaging configuration.

    Args:
        config: The configuration to check

    Raises:
        ConfigValidationError: With kind MissingUrl, MissingName or InvalidName
    """
    if not config.url or not config.url.strip():
        raise ConfigValidationError(ValidationErrorKind.MISSING_URL, "URL is required")
    if not config.name or not config.name.strip():
        raise ConfigValidationError(ValidationErrorKind.MISSING_NAME, "App name is required")
    if contains_cjk(config.name):
        raise ConfigValidationError(
            ValidationErrorKind.INVALID_NAME,
            f"App name must not contain Chinese characters: {config.name}",
            name=config.name,
        )
