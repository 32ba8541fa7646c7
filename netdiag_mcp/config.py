from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

PACKAGED_SCRIPTS = Path(__file__).parent / "scripts"


def _env_number(name: str, default: float, cast: type[float] | type[int] = float) -> Any:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = cast(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {raw!r}")
    return value


@dataclass(frozen=True)
class Config:
    scripts_dir: str = str(PACKAGED_SCRIPTS)
    shell: str = "bash"
    observation_timeout: float = 5.0
    observation_max_lines: int = 20
    stop_timeout: float = 15.0
    kill_timeout: float = 5.0
    max_line_bytes: int = 1024 * 1024
    log_level: str = "INFO"

    def script_path(self, name: str) -> str:
        """Resolve a bundled script by file name.

        Raises ValueError if the script does not exist.
        """
        path = Path(self.scripts_dir) / name
        if not path.is_file():
            raise ValueError(f"Script not found: {path}")
        return str(path)

    @classmethod
    def from_env(cls, env_path: str | Path | None = None) -> Config:
        load_dotenv(env_path)

        return cls(
            scripts_dir=os.getenv("NETDIAG_SCRIPTS_DIR") or str(PACKAGED_SCRIPTS),
            shell=os.getenv("NETDIAG_SHELL") or "bash",
            observation_timeout=_env_number("NETDIAG_OBSERVATION_TIMEOUT", 5.0),
            observation_max_lines=_env_number("NETDIAG_OBSERVATION_MAX_LINES", 20, int),
            stop_timeout=_env_number("NETDIAG_STOP_TIMEOUT", 15.0),
            kill_timeout=_env_number("NETDIAG_KILL_TIMEOUT", 5.0),
            max_line_bytes=_env_number("NETDIAG_MAX_LINE_BYTES", 1024 * 1024, int),
            log_level=(os.getenv("NETDIAG_LOG_LEVEL") or "INFO").upper(),
        )
