"""Configuration constants for tab-canopy."""

import os
from pathlib import Path

# Seconds a move intent registered for a freshly created tab stays valid.
# Advisory only: the next native move of that tab usually confirms it.
CREATION_INTENT_TTL: float = 1.0

# Seconds a move intent registered for a user drag stays valid.
USER_MOVE_INTENT_TTL: float = 5.0

# Creation decisions kept when decision tracking is enabled.
MAX_DECISION_HISTORY: int = 100

DATA_DIR_ENV: str = "TAB_CANOPY_DATA_DIR"

DATABASE_FILENAME: str = "tabs.db"

# Directory with data. First directory which is found is used.
DATA_DIRECTORIES: list[Path] = [
    Path("~/.local/share/tab-canopy").expanduser(),
    Path("~/.tab-canopy").expanduser(),
    Path("~/.config/tab-canopy").expanduser(),
]


def resolve_data_directory() -> Path:
    """Return the data directory.

    ``TAB_CANOPY_DATA_DIR`` wins when set; otherwise the first existing entry
    of DATA_DIRECTORIES, falling back to the first entry.
    """
    from_env = os.environ.get(DATA_DIR_ENV)
    if from_env:
        return Path(from_env).expanduser()
    for candidate in DATA_DIRECTORIES:
        if candidate.is_dir():
            return candidate
    return DATA_DIRECTORIES[0]
