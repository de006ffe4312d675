"""
Path expressions: `window[Main]/group/button[OK]`.

A component is a role with an optional bracketed identifier (matched against
the element title). Components are split on `/` outside brackets, so an
identifier may itself contain a slash: `menuItem[Open/Close]`.
"""

import re
from dataclasses import dataclass
from typing import Optional, Tuple

from ax_errors import InvalidSelector

ROLE_PATTERN = re.compile(r"[A-Za-z][A-Za-z0-9_]*")


def friendly_role(role: str) -> str:
    """AXButton -> button, for display and matching."""
    if not role:
        return ""
    if role.startswith("AX") and len(role) > 2:
        role = role[2:]
    return role[0].lower() + role[1:]


def roles_match(actual: str, wanted: str) -> bool:
    """Case-insensitive role comparison ignoring the AX prefix on both sides."""
    if not actual or not wanted:
        return False
    return friendly_role(actual).lower() == friendly_role(wanted).lower()


@dataclass(frozen=True)
class PathComponent:
    role: str
    identifier: Optional[str] = None

    def __str__(self):
        return self.role if self.identifier is None else f"{self.role}[{self.identifier}]"


@dataclass(frozen=True)
class PathExpression:
    components: Tuple[PathComponent, ...]

    def __str__(self):
        return "/".join(str(c) for c in self.components)

    def __len__(self):
        return len(self.components)

    def __iter__(self):
        return iter(self.components)

    @classmethod
    def parse(cls, text: str) -> "PathExpression":
        """Parse `role[identifier]/role/...`. Raises InvalidSelector."""
        if text is None or not text.strip():
            raise InvalidSelector("Path cannot be empty")
        return cls(tuple(_parse_component(part, text) for part in _split(text.strip())))


def _split(text: str):
    parts, current, depth = [], [], 0
    for ch in text:
        if ch == "[":
            if depth:
                raise InvalidSelector(f"Invalid path '{text}': nested '['")
            depth = 1
        elif ch == "]":
            if not depth:
                raise InvalidSelector(f"Invalid path '{text}': unbalanced ']'")
            depth = 0
        elif ch == "/" and not depth:
            parts.append("".join(current))
            current = []
            continue
        current.append(ch)
    if depth:
        raise InvalidSelector(f"Invalid path '{text}': missing ']'")
    parts.append("".join(current))
    return parts


def _parse_component(part: str, text: str) -> PathComponent:
    part = part.strip()
    if not part:
        raise InvalidSelector(f"Invalid path '{text}': empty component")
    bracket = part.find("[")
    role = part if bracket < 0 else part[:bracket]
    if not ROLE_PATTERN.fullmatch(role):
        raise InvalidSelector(f"Invalid path '{text}': bad role '{role}'")
    if bracket < 0:
        return PathComponent(role)
    if not part.endswith("]") or part.count("[") > 1:
        raise InvalidSelector(f"Invalid path '{text}': unexpected text after ']' in '{part}'")
    identifier = part[bracket + 1:-1]
    if not identifier:
        raise InvalidSelector(f"Invalid path '{text}': empty identifier in '{part}'")
    return PathComponent(role, identifier)
