"""
AX Shell Configuration
======================

Tuned constants plus the ShellConfig that carries them through the engine.
Precedence: constants below < AX_SHELL_* environment variables < CLI flags.
"""

import os
from dataclasses import dataclass, fields, replace
from typing import Dict, Optional

from ax_errors import ValidationError

# ---------------- Constants ----------------
# Empirically tuned against slow Electron apps and Safari web areas. Lower
# values make the shell snappier but turn more real trees into "not accessible"
# placeholders; higher values make a hung app freeze the prompt for longer.

# Single provider call (apps, windows, focused window, root description)
CALL_TIMEOUT = 5.0

# Loading one element's direct children (kept sub-second so tree walks stay live)
CHILDREN_TIMEOUT = 0.75

# Budget for a whole find walk / path resolution on the foreground thread
FIND_TIMEOUT = 10.0
PATH_TIMEOUT = 5.0

# AXPress / setValue / typing. Never retried: outcome after a timeout is unknown.
ACTION_TIMEOUT = 5.0

# Retry policy for navigation transitions
RETRY_ATTEMPTS = 3
RETRY_DELAY = 0.5

# Registry / tree rendering bound
MAX_TREE_NODES = 5000

# Validation limits
MAX_TIMEOUT = 300.0
MAX_RETRY_ATTEMPTS = 10

ENV_PREFIX = "AX_SHELL_"


def validate_timeout(seconds, name="timeout"):
    """Timeouts must be in (0, MAX_TIMEOUT]."""
    try:
        value = float(seconds)
    except (TypeError, ValueError):
        raise ValidationError(name, f"expected a number of seconds, got {seconds!r}")
    if value <= 0:
        raise ValidationError(name, "Timeout must be greater than 0")
    if value > MAX_TIMEOUT:
        raise ValidationError(name, f"Timeout must not exceed {MAX_TIMEOUT:g} seconds")
    return value


def validate_attempts(count, name="max_attempts"):
    """Attempt counts must be in [1, MAX_RETRY_ATTEMPTS]."""
    if isinstance(count, bool) or not isinstance(count, int):
        raise ValidationError(name, f"expected an integer, got {count!r}")
    if count < 1:
        raise ValidationError(name, "Retry count must be at least 1")
    if count > MAX_RETRY_ATTEMPTS:
        raise ValidationError(name, f"Retry count must not exceed {MAX_RETRY_ATTEMPTS}")
    return count


def validate_delay(seconds, name="delay"):
    """Delays must be non-negative."""
    try:
        value = float(seconds)
    except (TypeError, ValueError):
        raise ValidationError(name, f"expected a number of seconds, got {seconds!r}")
    if value < 0:
        raise ValidationError(name, "Retry delay must not be negative")
    return value


@dataclass(frozen=True)
class ShellConfig:
    """Timeouts, retry policy and walk bounds for one shell session."""

    call_timeout: float = CALL_TIMEOUT
    children_timeout: float = CHILDREN_TIMEOUT
    find_timeout: float = FIND_TIMEOUT
    path_timeout: float = PATH_TIMEOUT
    action_timeout: float = ACTION_TIMEOUT
    retry_attempts: int = RETRY_ATTEMPTS
    retry_delay: float = RETRY_DELAY
    max_tree_nodes: int = MAX_TREE_NODES
    synthesize_on_timeout: bool = True

    def __post_init__(self):
        for name in ("call_timeout", "children_timeout", "find_timeout",
                     "path_timeout", "action_timeout"):
            validate_timeout(getattr(self, name), name)
        validate_attempts(self.retry_attempts, "retry_attempts")
        validate_delay(self.retry_delay, "retry_delay")
        if isinstance(self.max_tree_nodes, bool) or not isinstance(self.max_tree_nodes, int) \
                or self.max_tree_nodes < 1:
            raise ValidationError("max_tree_nodes", "must be a positive integer")

    def with_overrides(self, **overrides) -> "ShellConfig":
        """Return a copy with the non-None overrides applied (and validated)."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes) if changes else self


def _coerce(name: str, raw: str):
    kind = {f.name: f.type for f in fields(ShellConfig)}[name]
    if kind in (bool, "bool"):
        return raw.strip().lower() in ("1", "true", "yes", "on")
    if kind in (int, "int"):
        try:
            return int(raw)
        except ValueError:
            raise ValidationError(name, f"expected an integer, got {raw!r}")
    try:
        return float(raw)
    except ValueError:
        raise ValidationError(name, f"expected a number, got {raw!r}")


def load_config(environ: Optional[Dict[str, str]] = None, **overrides) -> ShellConfig:
    """Build a ShellConfig from defaults, AX_SHELL_* variables, then overrides.

    Example: AX_SHELL_CALL_TIMEOUT=2 AX_SHELL_RETRY_ATTEMPTS=1 ax-shell
    """
    env = os.environ if environ is None else environ
    from_env = {}
    for f in fields(ShellConfig):
        raw = env.get(ENV_PREFIX + f.name.upper())
        if raw is not None and raw.strip() != "":
            from_env[f.name] = _coerce(f.name, raw)
    return ShellConfig(**from_env).with_overrides(**overrides)
