"""Project folder naming patterns.

A pattern is a ``-`` joined sequence of ``{token}`` placeholders, for example
``{name}-{year}-{month}-{day}``. Tokens always appear in canonical order.
"""

from __future__ import annotations

import datetime
import enum
import re
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

_PLACEHOLDER = re.compile(r"\{(\w+)\}")


class PatternToken(str, enum.Enum):
    """Placeholders recognized in a naming pattern, in canonical order."""

    NAME = "name"
    TIME = "time"
    YEAR = "year"
    MONTH = "month"
    DAY = "day"
    TIMESTAMP = "timestamp"


CANONICAL_ORDER: Tuple[PatternToken, ...] = tuple(PatternToken)


@dataclass(frozen=True)
class ResolvedName:
    """Result of resolving a token selection.

    Attributes:
        value: The expanded name
        tokens: The tokens used, in canonical order
        implicit_timestamp: True when nothing was selected and the timestamp
            token was selected on the caller's behalf
    """

    value: str
    tokens: Tuple[PatternToken, ...]
    implicit_timestamp: bool = False

    @property
    def pattern(self) -> str:
        return "-".join(f"{{{token.value}}}" for token in self.tokens)


def _canonical(tokens: Iterable[PatternToken | str]) -> Tuple[Tuple[PatternToken, ...], bool]:
    selected = {PatternToken(token) for token in tokens}
    if not selected:
        return (PatternToken.TIMESTAMP,), True
    return tuple(token for token in CANONICAL_ORDER if token in selected), False


def _expand(token: PatternToken, now: datetime.datetime, name: Optional[str]) -> str:
    if token is PatternToken.NAME:
        return name if name else "{name}"
    if token is PatternToken.TIME:
        return now.strftime("%H:%M:%S")
    if token is PatternToken.YEAR:
        return f"{now.year:04d}"
    if token is PatternToken.MONTH:
        return f"{now.month:02d}"
    if token is PatternToken.DAY:
        return f"{now.day:02d}"
    return str(int(now.timestamp() * 1000))


def resolve_name(
        tokens: Iterable[PatternToken | str],
        now: Optional[datetime.datetime] = None,
        name: Optional[str] = None,
) -> ResolvedName:
    """Expand a token selection into a name.

    Args:
        tokens: Selected tokens, in any order
        now: Moment to expand time tokens with (defaults to the current time)
        name: Project name substituted for the name token

    Returns:
        The resolved name
    """
    now = now or datetime.datetime.now()
    ordered, implicit = _canonical(tokens)
    value = "-".join(_expand(token, now, name) for token in ordered)
    return ResolvedName(value=value, tokens=ordered, implicit_timestamp=implicit)


def parse_pattern(pattern: str) -> Tuple[PatternToken, ...]:
    """Get the recognized tokens of a pattern string in canonical order.

    Unknown placeholders are ignored.
    """
    found = set()
    for match in _PLACEHOLDER.finditer(pattern or ""):
        try:
            found.add(PatternToken(match.group(1)))
        except ValueError:
            continue
    return tuple(token for token in CANONICAL_ORDER if token in found)


def format_pattern(tokens: Iterable[PatternToken | str]) -> ResolvedName:
    """Build the settings pattern string for a token selection.

    The returned ``value`` is the pattern itself, for example
    ``{name}-{timestamp}``.
    """
    ordered, implicit = _canonical(tokens)
    pattern = "-".join(f"{{{token.value}}}" for token in ordered)
    return ResolvedName(value=pattern, tokens=ordered, implicit_timestamp=implicit)


def resolve_pattern(
        pattern: str,
        now: Optional[datetime.datetime] = None,
        name: Optional[str] = None,
) -> ResolvedName:
    """Expand a settings pattern string such as ``{name}-{timestamp}``."""
    return resolve_name(parse_pattern(pattern), now=now, name=name)
