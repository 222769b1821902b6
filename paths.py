"""
Where things live on disk.

The game keeps its mods under ``LocalLow/ArchivalEugeneNaelstrof/ChurnVector/mods``
in the user's profile. Both the mods folder and the log folder can be
overridden from the command line or the environment.
"""

import os
from pathlib import Path

MODS_DIR_ENV = "CVMM_MODS_DIR"
LOG_DIR_ENV = "CVMM_LOG_DIR"

GAME_DATA_PARTS = ("ArchivalEugeneNaelstrof", "ChurnVector", "mods")


def default_mods_dir() -> Path:
    profile = Path(os.environ.get("USERPROFILE", "~")).expanduser()
    return profile.joinpath("AppData", "LocalLow", *GAME_DATA_PARTS)


def default_log_dir() -> Path:
    return Path(os.environ.get("APPDATA", "~")).expanduser() / "CvModManager"


def resolve_mods_dir(override: str | None = None) -> Path:
    """Command-line override, then $CVMM_MODS_DIR, then the game's default."""
    value = override or os.environ.get(MODS_DIR_ENV)
    return Path(value).expanduser() if value else default_mods_dir()


def resolve_log_dir(override: str | None = None) -> Path:
    value = override or os.environ.get(LOG_DIR_ENV)
    return Path(value).expanduser() if value else default_log_dir()
