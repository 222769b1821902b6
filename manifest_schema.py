"""
Manifest schema for the Churn Vector Mod Manager.

Every mod directory carries an ``info.json`` manifest describing the mod. The
game decides whether a mod is active purely by the manifest filename:

    mods/
    ├── CoolArmor/
    │   ├── info.json            <- enabled
    │   └── textures/...
    └── OldHud/
        ├── info.json.DISABLED   <- disabled
        └── ...

Manifest:

{
    "title": "Cool Armor",
    "description": "Replaces the default armor set.",
    "publishedFileId": 3141592653,
    "tags": ["Armor", "Cosmetic"]
}

Keys are matched case-insensitively (the game writes lower camel case, some
tools write PascalCase). Unknown keys are ignored; missing or null values fall
back to empty defaults.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from errors import InvalidManifestError, ModIOError

MANIFEST_FILENAME = "info.json"
DISABLED_MANIFEST_FILENAME = "info.json.DISABLED"

_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1

_log = logging.getLogger(__name__)


class ModDescriptor(BaseModel):
    """Parsed contents of an ``info.json`` manifest."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    title: str = ""
    description: str = ""
    published_file_id: int | None = Field(default=None, alias="publishedfileid")
    tags: tuple[str, ...] = ()

    @model_validator(mode="before")
    @classmethod
    def _fold_keys(cls, data: Any) -> Any:
        # Case-insensitive binding: lower-case every key so "Title", "TITLE"
        # and "publishedFileId" all land on the aliases above.
        if isinstance(data, dict):
            return {str(k).lower(): v for k, v in data.items()}
        return data

    @field_validator("title", "description", mode="before")
    @classmethod
    def _null_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("tags", mode="before")
    @classmethod
    def _null_to_no_tags(cls, v: Any) -> Any:
        return () if v is None else v

    @field_validator("published_file_id", mode="before")
    @classmethod
    def _reject_bool_and_float(cls, v: Any) -> Any:
        # JSON true/false and 3.0 would otherwise coerce to an int
        if isinstance(v, (bool, float)):
            raise ValueError("publishedFileId must be an integer or a numeric string")
        return v

    @field_validator("published_file_id")
    @classmethod
    def _check_int64(cls, v: int | None) -> int | None:
        if v is not None and not (_INT64_MIN <= v <= _INT64_MAX):
            raise ValueError(f"publishedFileId {v} does not fit in a 64-bit integer")
        return v


def parse_manifest(data: bytes) -> ModDescriptor:
    """Parse raw JSON bytes into a ModDescriptor.

    Raises ``pydantic.ValidationError`` if the data is invalid.
    Raises ``json.JSONDecodeError`` if the bytes are not valid JSON.
    """
    return ModDescriptor.model_validate(json.loads(data))


def read_manifest(path: str | Path) -> ModDescriptor:
    """Read and parse a manifest file from disk.

    Any parse failure is reported as ``InvalidManifestError`` naming the file;
    a read failure is reported as ``ModIOError``.
    """
    path = Path(path)
    try:
        data = path.read_bytes()
    except OSError as exc:
        raise ModIOError(f"Could not read {path.name}: {exc}", path) from exc
    try:
        return parse_manifest(data)
    except (ValueError, ValidationError) as exc:
        # JSONDecodeError and UnicodeDecodeError are both ValueErrors
        _log.debug("Manifest parse failed for %s: %s", path, exc)
        raise InvalidManifestError(
            f"{path.name} is not valid. Deserialization failed: {_describe(exc)}", path
        ) from exc


def _describe(exc: Exception) -> str:
    if isinstance(exc, ValidationError):
        err = exc.errors()[0]
        loc = ".".join(str(part) for part in err["loc"]) or "manifest"
        return f"{loc}: {err['msg']}"
    return str(exc)
