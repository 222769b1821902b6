"""
Churn Vector Mod Manager - Core Logic

Handles mod discovery, enable/disable, packing, installation and removal.
A mod is a directory directly under the mods folder; whether it is active is
decided by its manifest filename (see manifest_schema).
"""

from __future__ import annotations

import logging
import re
import shutil
import zipfile
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import BinaryIO, Callable, Optional

from errors import (
    CollisionError,
    InvalidArchiveError,
    InvalidManifestError,
    ModIOError,
    ModManagerError,
    NotFoundError,
    SecurityViolationError,
)
from manifest_schema import (
    DISABLED_MANIFEST_FILENAME,
    MANIFEST_FILENAME,
    ModDescriptor,
    parse_manifest,
    read_manifest,
)

_log = logging.getLogger(__name__)

TOOL_NAME = "CvModManager"

# One folder segment, either separator, then info.json. Archives built on
# Windows use backslashes, archives built elsewhere use forward slashes.
ARCHIVE_MANIFEST_RE = re.compile(r"\A[^\\/]+[\\/]info\.json\Z", re.IGNORECASE)
_SEPARATOR_RE = re.compile(r"[\\/]")
_WHITESPACE_RE = re.compile(r"\s+")
# Illegal in a Windows file name, which is where the game runs
_ILLEGAL_NAME_CHARS_RE = re.compile(r'[<>:"/\\|?*\x00-\x1f]')

ProgressCallback = Callable[[str], None]


@dataclass
class ModRecord:
    """A mod found in the mods folder.

    ``enabled`` mirrors which manifest filename exists on disk. It is
    recomputed on every scan and only changed in place by enable/disable.
    """

    descriptor: ModDescriptor
    directory: Path
    enabled: bool

    @property
    def folder_name(self) -> str:
        return self.directory.name

    @property
    def title(self) -> str:
        return self.descriptor.title


class ToggleOutcome(Enum):
    CHANGED = "changed"
    # Source manifest missing (or rename target occupied): nothing was renamed
    STATE_CONFLICT = "state_conflict"


def sanitize_folder_name(title: str) -> str:
    """Turn a mod title into a folder name.

    All whitespace is removed (not collapsed) and every character that is
    illegal in a file name becomes ``_``.
    """
    name = _WHITESPACE_RE.sub("", title.strip())
    return _ILLEGAL_NAME_CHARS_RE.sub("_", name)


def _noop_progress(_line: str):
    pass


class ModManager:
    """
    Main mod manager controller, bound to one mods folder.

    Workflow:
        1. scan_mods() to discover installed mods
        2. enable() / disable() / toggle() to switch a mod on or off
        3. pack() / install() / uninstall() to move mods in and out
    """

    def __init__(
        self,
        mods_dir: str | Path,
        log_callback: Optional[Callable[[str], None]] = None,
    ):
        self.mods_dir = Path(mods_dir)
        self._log_cb = log_callback or _log.info

    # ── Logging ───────────────────────────────────────────────────────

    def log(self, msg: str):
        self._log_cb(msg)

    # ── Mods Folder ───────────────────────────────────────────────────

    def has_mods_dir(self) -> bool:
        return self.mods_dir.is_dir()

    def ensure_mods_dir(self) -> Path:
        if not self.has_mods_dir():
            self.log(f"Creating mods directory: {self.mods_dir}")
            try:
                self.mods_dir.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise ModIOError(f"Could not create mods directory: {exc}", self.mods_dir) from exc
        return self.mods_dir

    # ── Scanning ──────────────────────────────────────────────────────

    def scan_mods(self) -> list[ModRecord]:
        """Return a fresh record for every mod directly under the mods folder.

        A missing mods folder is not an error, it just means nothing is
        installed. Directories without a manifest and manifests that fail to
        parse are logged and skipped. Order follows the filesystem.
        """
        mods: list[ModRecord] = []

        if not self.mods_dir.is_dir():
            self.log(f"Mods directory does not exist: {self.mods_dir}")
            return mods

        try:
            entries = list(self.mods_dir.iterdir())
        except OSError as exc:
            raise ModIOError(f"Could not list mods directory: {exc}", self.mods_dir) from exc

        for mod_dir in entries:
            if not mod_dir.is_dir():
                continue
            record = self._read_record(mod_dir)
            if record is not None:
                mods.append(record)

        self.log(f"Scan complete: {len(mods)} mod(s) found")
        return mods

    def find_mod(self, folder_name: str) -> ModRecord:
        for record in self.scan_mods():
            if record.folder_name == folder_name:
                return record
        raise NotFoundError(f"No mod with folder '{folder_name}' is installed", self.mods_dir / folder_name)

    def _read_record(self, mod_dir: Path) -> ModRecord | None:
        # info.json wins when both variants are present
        manifest = mod_dir / MANIFEST_FILENAME
        enabled = True
        if not manifest.is_file():
            enabled = False
            manifest = mod_dir / DISABLED_MANIFEST_FILENAME
        if not manifest.is_file():
            self.log(f"  Directory in mods folder is not a mod: {mod_dir.name}")
            return None

        try:
            descriptor = read_manifest(manifest)
        except ModManagerError as exc:
            self.log(f"  Skipping {mod_dir.name}: {exc}")
            return None

        return ModRecord(descriptor=descriptor, directory=mod_dir, enabled=enabled)

    # ── Enable / Disable ──────────────────────────────────────────────

    def enable(self, record: ModRecord) -> ToggleOutcome:
        return self._rename_manifest(record, DISABLED_MANIFEST_FILENAME, MANIFEST_FILENAME, True)

    def disable(self, record: ModRecord) -> ToggleOutcome:
        return self._rename_manifest(record, MANIFEST_FILENAME, DISABLED_MANIFEST_FILENAME, False)

    def toggle(self, record: ModRecord) -> ToggleOutcome:
        return self.disable(record) if record.enabled else self.enable(record)

    def _rename_manifest(
        self, record: ModRecord, src_name: str, dst_name: str, enabled: bool
    ) -> ToggleOutcome:
        verb = "enabled" if enabled else "disabled"
        src = record.directory / src_name
        dst = record.directory / dst_name

        if not src.is_file():
            self.log(f"{record.title} is already {verb} (no {src_name})")
            return ToggleOutcome.STATE_CONFLICT
        if dst.exists():
            self.log(f"Cannot mark {record.title} {verb}: {dst_name} already exists")
            return ToggleOutcome.STATE_CONFLICT

        try:
            src.rename(dst)
        except OSError as exc:
            raise ModIOError(
                f"Could not mark {record.title} {verb}. [{type(exc).__name__}] {exc}", src
            ) from exc

        record.enabled = enabled
        self.log(f"{record.title} was {verb}")
        return ToggleOutcome.CHANGED

    # ── Pack ──────────────────────────────────────────────────────────

    def pack(
        self,
        record: ModRecord,
        target: BinaryIO,
        progress: Optional[ProgressCallback] = None,
    ) -> list[str]:
        """Write the mod as a zip archive to ``target``.

        Entries are stored as ``<folder>/<relative path>`` so extracting the
        archive in a mods folder recreates the same folder. The manifest is
        always stored as ``<folder>/info.json``, so packed mods install
        enabled. ``target`` is left open. Returns the entry names written.
        """
        progress = progress or _noop_progress

        if not record.directory.is_dir():
            raise NotFoundError(f"Mod folder does not exist: {record.directory}", record.directory)

        try:
            files = sorted(p for p in record.directory.rglob("*") if p.is_file())
        except OSError as exc:
            raise ModIOError(f"Could not list {record.folder_name}: {exc}", record.directory) from exc

        manifest_file = self._pick_manifest_file(record, files)
        stamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        entries: list[str] = []

        try:
            with zipfile.ZipFile(target, "w", zipfile.ZIP_DEFLATED) as zf:
                zf.comment = f"Created by {TOOL_NAME} on {stamp}".encode("utf-8")
                for path in files:
                    relpath = path.relative_to(record.directory).as_posix()
                    if _is_manifest_name(relpath):
                        if path != manifest_file:
                            self.log(f"  Skipping duplicate manifest: {relpath}")
                            continue
                        relpath = MANIFEST_FILENAME
                    entry = f"{record.folder_name}/{relpath}"
                    progress(entry)
                    _log.debug("Packing: %s", entry)
                    zf.write(path, entry)
                    entries.append(entry)
        except OSError as exc:
            raise ModIOError(f"Could not pack {record.folder_name}: {exc}", record.directory) from exc

        self.log(f"Packed {record.title} ({len(entries)} file(s))")
        return entries

    def pack_to_file(
        self,
        record: ModRecord,
        dest_dir: str | Path,
        progress: Optional[ProgressCallback] = None,
    ) -> Path:
        """Pack into ``<dest_dir>/<folder>.zip``. Never overwrites."""
        dest_dir = Path(dest_dir)
        dest = dest_dir / f"{record.folder_name}.zip"
        if dest_dir.resolve().is_relative_to(record.directory.resolve()):
            # The archive would end up packing itself and be left in the mod
            raise CollisionError(
                f"Cannot write {dest.name} inside the mod folder being packed", dest
            )
        if dest.exists():
            raise CollisionError(f"'{dest.name}' already exists in {dest_dir}", dest)

        try:
            dest_dir.mkdir(parents=True, exist_ok=True)
            with dest.open("xb") as fh:
                self.pack(record, fh, progress)
        except FileExistsError as exc:
            raise CollisionError(f"'{dest.name}' already exists in {dest_dir}", dest) from exc
        except OSError as exc:
            dest.unlink(missing_ok=True)
            raise ModIOError(f"Could not write {dest.name}: {exc}", dest) from exc
        except ModManagerError:
            dest.unlink(missing_ok=True)
            raise

        return dest

    @staticmethod
    def _pick_manifest_file(record: ModRecord, files: list[Path]) -> Path | None:
        candidates = [
            p for p in files
            if p.parent == record.directory and _is_manifest_name(p.name)
        ]
        for p in candidates:
            if p.name.lower() == MANIFEST_FILENAME:
                return p
        return candidates[0] if candidates else None

    # ── Install (archive) ─────────────────────────────────────────────

    def install_archive(self, source: str | Path | BinaryIO) -> ModRecord:
        """Install a zip archive produced by pack() (or laid out the same way).

        The archive must hold ``<folder>/info.json``. Every entry is checked
        before anything is written: an entry that would land outside the mods
        folder rejects the whole archive, and nothing is ever overwritten.
        """
        label = str(source) if isinstance(source, (str, Path)) else "archive"
        origin = Path(source) if isinstance(source, (str, Path)) else None

        try:
            zf = zipfile.ZipFile(source, "r")
        except FileNotFoundError as exc:
            raise NotFoundError(f"'{label}' does not exist", origin) from exc
        except (zipfile.BadZipFile, EOFError) as exc:
            raise InvalidArchiveError("Data is not a valid zip file", origin) from exc
        except OSError as exc:
            raise ModIOError(f"Could not open {label}: {exc}", origin) from exc

        with zf:
            infos = zf.infolist()
            manifest_info = next(
                (info for info in infos if ARCHIVE_MANIFEST_RE.match(info.filename)), None
            )
            if manifest_info is None:
                raise InvalidManifestError(
                    "Cannot find info.json in the zip file. Is this not a mod?", origin
                )

            folder_name = _SEPARATOR_RE.split(manifest_info.filename, maxsplit=1)[0]
            if folder_name in (".", ".."):
                raise SecurityViolationError(
                    f"Archive mod folder '{folder_name}' is outside the mods folder", origin
                )

            dest = self.mods_dir / folder_name
            if dest.is_file():
                raise CollisionError(
                    f"Unable to create mod directory because '{folder_name}' in the mods "
                    "folder exists and is a file. This is almost certainly a mistake, "
                    "and the file should be deleted",
                    dest,
                )
            if dest.is_dir():
                raise CollisionError(
                    f"A mod with folder '{folder_name}' already exists. "
                    "If overwriting is intended, uninstall the mod first",
                    dest,
                )

            try:
                descriptor = parse_manifest(zf.read(manifest_info))
            except (zipfile.BadZipFile, EOFError) as exc:
                raise InvalidArchiveError(f"Could not read {manifest_info.filename}: {exc}", origin) from exc
            except ValueError as exc:
                raise InvalidManifestError(
                    f"{manifest_info.filename} is not valid. Deserialization failed", origin
                ) from exc

            plan = self._plan_extraction(infos, manifest_info, dest, origin)

            self.ensure_mods_dir()
            self.log(f"Extracting {len(plan)} archive entries to {self.mods_dir}...")
            self._extract(zf, plan, origin)

        record = ModRecord(descriptor=descriptor, directory=dest, enabled=True)
        self.log(f"Installed {record.title} into {folder_name}")
        return record

    def _plan_extraction(
        self,
        infos: list[zipfile.ZipInfo],
        manifest_info: zipfile.ZipInfo,
        dest: Path,
        origin: Path | None,
    ) -> list[tuple[zipfile.ZipInfo, Path]]:
        root = self.mods_dir.resolve()
        plan: list[tuple[zipfile.ZipInfo, Path]] = []
        seen: set[Path] = set()

        for info in infos:
            name = info.filename.replace("\\", "/")
            if info is manifest_info:
                # Normalise the manifest name so the game sees it as enabled
                target = dest.resolve() / MANIFEST_FILENAME
            else:
                target = (root / name).resolve()

            if target != root and not target.is_relative_to(root):
                raise SecurityViolationError(
                    f"Archive entry '{info.filename}' would extract outside the mods folder",
                    origin,
                )
            if name.endswith("/") or target == root:
                plan.append((info, target))
                continue
            if target in seen:
                raise InvalidArchiveError(f"Archive has duplicate entry '{info.filename}'", origin)
            if target.exists():
                raise CollisionError(
                    f"Archive entry '{info.filename}' would overwrite an existing file", target
                )
            seen.add(target)
            plan.append((info, target))

        return plan

    def _extract(
        self,
        zf: zipfile.ZipFile,
        plan: list[tuple[zipfile.ZipInfo, Path]],
        origin: Path | None,
    ):
        root = self.mods_dir.resolve()
        written: list[Path] = []
        created: list[Path] = []
        try:
            for info, target in plan:
                if info.filename.replace("\\", "/").endswith("/") or target == root:
                    self._make_dirs(target, created)
                    continue
                self._make_dirs(target.parent, created)
                with zf.open(info) as src, target.open("xb") as dst:
                    written.append(target)
                    shutil.copyfileobj(src, dst)
        except (OSError, zipfile.BadZipFile, EOFError) as exc:
            self.log("  Extraction failed, rolling back...")
            for path in reversed(written):
                path.unlink(missing_ok=True)
            # Only folders this install made; anything already there stays
            for folder in reversed(created):
                if folder.is_dir() and not any(folder.iterdir()):
                    folder.rmdir()
            raise ModIOError(f"Extraction failed: {exc}", origin) from exc

    @staticmethod
    def _make_dirs(folder: Path, created: list[Path]):
        missing = []
        current = folder
        while not current.exists() and current != current.parent:
            missing.append(current)
            current = current.parent
        for path in reversed(missing):
            path.mkdir()
            created.append(path)

    # ── Install (loose folder) ────────────────────────────────────────

    def install_directory(
        self,
        source_dir: str | Path,
        progress: Optional[ProgressCallback] = None,
    ) -> ModRecord:
        """Copy an unpacked mod folder (one holding ``info.json``) into the mods folder.

        The destination folder name comes from the manifest title, see
        sanitize_folder_name().
        """
        progress = progress or _noop_progress
        source = Path(source_dir)
        if not source.is_dir():
            raise NotFoundError("Directory does not exist", source)
        source = source.resolve()

        manifest = source / MANIFEST_FILENAME
        if not manifest.is_file():
            raise InvalidManifestError(
                "Supplied folder is not a mod. It lacks info.json file", source
            )
        descriptor = read_manifest(manifest)

        folder_name = sanitize_folder_name(descriptor.title)
        if not folder_name.strip("."):
            raise InvalidManifestError(
                f"Mod title {descriptor.title!r} does not give a usable folder name", manifest
            )

        dest = self.mods_dir / folder_name
        if dest.exists():
            raise CollisionError(f"A mod with folder name '{folder_name}' already exists", dest)

        try:
            files = sorted(p for p in source.rglob("*") if p.is_file())
        except OSError as exc:
            raise ModIOError(f"Could not list {source}: {exc}", source) from exc

        self.log(f"Installing {descriptor.title} from {source} into {folder_name}...")
        try:
            dest.mkdir(parents=True)
            for src in files:
                relpath = src.relative_to(source)
                progress(f"Copying {relpath.as_posix()}...")
                dst = dest / relpath
                dst.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(src, dst)
        except OSError as exc:
            self.log("  Copy failed, rolling back...")
            shutil.rmtree(dest, ignore_errors=True)
            raise ModIOError(f"Could not copy mod files: {exc}", source) from exc

        self.log(f"  Successfully installed {descriptor.title} ({len(files)} files)")
        return ModRecord(descriptor=descriptor, directory=dest, enabled=True)

    # ── Install (dispatch) ────────────────────────────────────────────

    def install(
        self,
        path: str | Path,
        progress: Optional[ProgressCallback] = None,
    ) -> ModRecord:
        """Install from a zip file or from an unpacked mod folder."""
        path = Path(path)
        if path.is_file():
            return self.install_archive(path)
        if path.is_dir():
            return self.install_directory(path, progress)
        raise NotFoundError(f"'{path}' does not exist", path)

    # ── Uninstall ─────────────────────────────────────────────────────

    def uninstall(self, record: ModRecord):
        """Delete the mod folder and everything in it. Not reversible."""
        if not record.directory.is_dir():
            raise NotFoundError(f"Mod folder does not exist: {record.directory}", record.directory)

        self.log(f"Uninstalling {record.title} ({record.folder_name})...")
        try:
            shutil.rmtree(record.directory)
        except OSError as exc:
            raise ModIOError(
                f"Could not uninstall {record.title}. [{type(exc).__name__}] {exc}",
                record.directory,
            ) from exc
        self.log(f"  Removed {record.folder_name}")


def _is_manifest_name(relpath: str) -> bool:
    return relpath.lower() in (MANIFEST_FILENAME, DISABLED_MANIFEST_FILENAME.lower())
