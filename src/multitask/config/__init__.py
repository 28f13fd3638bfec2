"""Configuration — Pydantic models for multitask settings."""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from multitask.errors import TargetError

MAX_SESSIONS = 9


class MultitaskConfig(BaseModel):
    """Top-level multitask configuration.

    There is no config file: values come from defaults, then environment
    variables, then command-line flags.
    """

    target: str | None = Field(
        default=None,
        description="Program to run in every session (default: resolved next to the install)",
    )
    target_name: str = Field(
        default="budostack",
        description="File name of the target inside the install root",
    )
    max_sessions: int = Field(default=MAX_SESSIONS, ge=1, le=MAX_SESSIONS)
    poll_timeout: float = Field(
        default=0.05, gt=0, description="Readiness wait timeout in seconds"
    )
    escape_timeout: float = Field(
        default=0.015,
        ge=0,
        description="How long to wait for the rest of an escape sequence",
    )
    escape_max_len: int = Field(default=64, ge=2)
    read_size: int = Field(default=4096, ge=1, description="Max bytes per session read")
    stdin_read_size: int = Field(default=32, ge=1, description="Max bytes per stdin read")
    close_timeout: float = Field(
        default=2.0,
        ge=0,
        description="Grace period after SIGTERM before a session is killed",
    )
    term: str = Field(default="xterm-256color", description="TERM for children when unset")
    status_label: str = Field(default="multitask")
    log_file: str | None = Field(default=None)

    @classmethod
    def load(cls, **overrides: Any) -> MultitaskConfig:
        """Load config from env vars and explicit overrides.

        Priority: overrides > env vars > defaults. Overrides whose value is
        ``None`` are ignored so unset CLI flags fall through.

        Env vars:
            MULTITASK_TARGET           - Program to run in each session
            MULTITASK_TERM             - TERM value for children when unset
            MULTITASK_MAX_SESSIONS     - Session limit (1-9)
            MULTITASK_POLL_TIMEOUT     - Readiness wait timeout (seconds)
            MULTITASK_ESCAPE_TIMEOUT   - Escape sequence timeout (seconds)
            MULTITASK_LOG_FILE         - Write logs to this file
        """
        config_data: dict[str, Any] = {}

        env_map = {
            "MULTITASK_TARGET": "target",
            "MULTITASK_TERM": "term",
            "MULTITASK_MAX_SESSIONS": "max_sessions",
            "MULTITASK_POLL_TIMEOUT": "poll_timeout",
            "MULTITASK_ESCAPE_TIMEOUT": "escape_timeout",
            "MULTITASK_LOG_FILE": "log_file",
        }
        for env_var, key in env_map.items():
            value = os.environ.get(env_var)
            if value:
                config_data[key] = value

        config_data.update({k: v for k, v in overrides.items() if v is not None})

        return cls.model_validate(config_data)

    def resolve_target(self, argv0: str | None = None) -> str:
        """Return the absolute path of the program to spawn.

        An explicit ``target`` wins. Otherwise the target sits in the
        install root, the parent of the directory holding the running
        executable (``<root>/bin/multitask`` -> ``<root>/<target_name>``).

        Raises:
            TargetError: The path cannot be resolved or is not executable.
        """
        if self.target:
            path = Path(self.target).expanduser().absolute()
        else:
            argv0 = argv0 if argv0 is not None else sys.argv[0]
            if not argv0:
                raise TargetError("Could not resolve target path.")
            try:
                resolved = Path(argv0).resolve(strict=True)
            except (OSError, RuntimeError) as e:
                raise TargetError(f"Could not resolve target path: {e}") from e
            path = resolved.parent.parent / self.target_name

        if not path.is_file() or not os.access(path, os.X_OK):
            raise TargetError(f"Executable not found at {path}.")
        return str(path)
