"""Single source of truth for environment-level settings.

All modules import from here, never from os.environ directly.

Values come from the process environment, falling back to a ``.env`` file
in the working directory, falling back to the defaults below.
"""

import os
from pathlib import Path

from dotenv import dotenv_values


def load_env_file(dotenv_path: str | Path) -> dict[str, str | None]:
    """Load a plain .env file. Returns an empty dict if it does not exist."""
    path = Path(dotenv_path)
    if not path.is_file():
        return {}
    return dict(dotenv_values(path))


def _get(key: str, default: str) -> str:
    value = os.environ.get(key)
    if value is None:
        value = _dotenv.get(key)
    return value if value else default


_dotenv = load_env_file(Path.cwd() / ".env")

DEFAULT_WATCH_DIR: str = str(Path.home() / ".claude" / "projects")

CONFIG_PATH: str = _get("TAILPIPE_CONFIG_PATH", "config.json")
WATCH_DIR: str = _get("TAILPIPE_WATCH_DIR", DEFAULT_WATCH_DIR)
LOG_LEVEL: str = _get("TAILPIPE_LOG_LEVEL", "")
