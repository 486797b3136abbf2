"""
Engine settings (``approval_config.settings``).

Responsibility
--------------
Reads deployment settings from the environment exactly once.
``get_settings()`` is the only place that touches ``os.environ``; every
other component receives an ``EngineSettings`` value.

Recognised variables
--------------------
* ``APPROVAL_DATABASE_URL``            -- SQLAlchemy URL for instance snapshots
  and audit entries.  Unset means in-memory only.
* ``APPROVAL_LOG_LEVEL``               -- root level for ``configure_logging``.
* ``APPROVAL_DIRECTORY_RETRY_LIMIT``   -- failed Directory attempts before a
  step is blocked (0 retries forever).
* ``APPROVAL_DIRECTORY_RETRY_SECONDS`` -- first retry delay; doubles per attempt.
* ``APPROVAL_TEMPLATE_DIR``            -- extra directory of YAML definitions
  published next to the built-in templates.
* ``APPROVAL_TICK_SECONDS``            -- interval of the API's scheduler loop
  (expired deadlines, Directory retries).  0 disables the loop.

Failure modes
-------------
* Non-numeric or negative numeric variables -> ``ValueError`` naming the
  variable.
"""

from __future__ import annotations

import math
import os
from collections.abc import Mapping
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

_PREFIX = "APPROVAL_"


@dataclass(frozen=True)
class EngineSettings:
    """Resolved deployment settings."""

    database_url: str | None = None
    log_level: str = "INFO"
    directory_retry_limit: int = 0
    directory_retry_seconds: int = 30
    template_dir: Path | None = None
    load_builtin_templates: bool = True
    tick_seconds: float = 5.0


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(_PREFIX + name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{_PREFIX}{name} must be an integer, got {raw!r}") from None
    if value < 0:
        raise ValueError(f"{_PREFIX}{name} must not be negative, got {value}")
    return value


def _float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(_PREFIX + name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{_PREFIX}{name} must be a number, got {raw!r}") from None
    if not math.isfinite(value) or value < 0:
        raise ValueError(f"{_PREFIX}{name} must be finite and not negative, got {raw!r}")
    return value


def _bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(_PREFIX + name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def settings_from_env(env: Mapping[str, str]) -> EngineSettings:
    """Build settings from an explicit mapping (tests pass a dict)."""
    template_dir = env.get(_PREFIX + "TEMPLATE_DIR")
    return EngineSettings(
        database_url=env.get(_PREFIX + "DATABASE_URL") or None,
        log_level=(env.get(_PREFIX + "LOG_LEVEL") or "INFO").upper(),
        directory_retry_limit=_int(env, "DIRECTORY_RETRY_LIMIT", 0),
        directory_retry_seconds=_int(env, "DIRECTORY_RETRY_SECONDS", 30),
        template_dir=Path(template_dir) if template_dir else None,
        load_builtin_templates=_bool(env, "LOAD_BUILTIN_TEMPLATES", True),
        tick_seconds=_float(env, "TICK_SECONDS", 5.0),
    )


@lru_cache(maxsize=1)
def get_settings() -> EngineSettings:
    """The single settings entrypoint; cached for the process lifetime."""
    return settings_from_env(os.environ)
