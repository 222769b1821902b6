"""
Console front end for the Churn Vector Mod Manager.

Thin layer over ModManager: every command looks the mod up, calls one core
operation and reports the outcome. Errors from the core are printed and turned
into exit status 1.
"""

from __future__ import annotations

import argparse
import logging
import os
import re
import subprocess
import sys
from pathlib import Path
from typing import Callable

from errors import ModManagerError, StateConflictError
from mod_manager import ModManager, ModRecord, ToggleOutcome

_log = logging.getLogger(__name__)

_SPACES_RE = re.compile(r"\s+")

GREEN = "\033[32m"
RED = "\033[31m"
YELLOW = "\033[33m"
RESET = "\033[0m"


def _paint(text: str, colour: str) -> str:
    if sys.stdout.isatty() and not os.environ.get("NO_COLOR"):
        return f"{colour}{text}{RESET}"
    return text


def _say(text: str = "", colour: str | None = None):
    print(_paint(text, colour) if colour else text)


def _progress(line: str):
    _say(line, YELLOW)


# ── Commands ──────────────────────────────────────────────────────────


def cmd_list(manager: ModManager, args: argparse.Namespace, confirm: Callable[[str], str]) -> int:
    mods = sorted(manager.scan_mods(), key=lambda m: m.folder_name.casefold())
    if not mods:
        _say(f"No mods installed in {manager.mods_dir}")
        return 0
    for mod in mods:
        colour = GREEN if mod.enabled else RED
        _say(f"Title:   {mod.title}", colour)
        _say(f"Detail:  {_SPACES_RE.sub(' ', mod.descriptor.description.strip())}", colour)
        _say(f"Folder:  {mod.folder_name}", colour)
        _say(f"Enabled: {'Yes' if mod.enabled else 'No'}", colour)
        _say()
    return 0


def _report_toggle(mod: ModRecord, outcome: ToggleOutcome) -> int:
    if outcome is ToggleOutcome.STATE_CONFLICT:
        state = "enabled" if mod.enabled else "disabled"
        raise StateConflictError(f"{mod.title} is already {state}", mod.directory)
    _say(f"{mod.title} is now {'enabled' if mod.enabled else 'disabled'}", GREEN)
    return 0


def cmd_toggle(manager: ModManager, args: argparse.Namespace, confirm: Callable[[str], str]) -> int:
    mod = manager.find_mod(args.folder)
    return _report_toggle(mod, manager.toggle(mod))


def cmd_enable(manager: ModManager, args: argparse.Namespace, confirm: Callable[[str], str]) -> int:
    mod = manager.find_mod(args.folder)
    return _report_toggle(mod, manager.enable(mod))


def cmd_disable(manager: ModManager, args: argparse.Namespace, confirm: Callable[[str], str]) -> int:
    mod = manager.find_mod(args.folder)
    return _report_toggle(mod, manager.disable(mod))


def cmd_install(manager: ModManager, args: argparse.Namespace, confirm: Callable[[str], str]) -> int:
    mod = manager.install(args.path, progress=_progress)
    _say(f"Mod installed and enabled successfully: {mod.title} ({mod.folder_name})", GREEN)
    return 0


def cmd_uninstall(manager: ModManager, args: argparse.Namespace, confirm: Callable[[str], str]) -> int:
    mod = manager.find_mod(args.folder)
    if not args.yes:
        _say(f"You're about to uninstall {mod.title}", RED)
        _say("This action cannot be undone.", RED)
        _say("Pack or disable the mod instead if you need it later.", RED)
        answer = confirm("Type 'y' to uninstall, anything else to abort: ")
        if answer.strip().lower() != "y":
            _say("Operation aborted")
            return 0
    _say("Uninstalling mod...", YELLOW)
    manager.uninstall(mod)
    _say("Done", GREEN)
    return 0


def cmd_pack(manager: ModManager, args: argparse.Namespace, confirm: Callable[[str], str]) -> int:
    mod = manager.find_mod(args.folder)
    dest = manager.pack_to_file(mod, Path(args.output), progress=_progress)
    _say(f"Mod packed into {dest}", GREEN)
    return 0


def cmd_open(manager: ModManager, args: argparse.Namespace, confirm: Callable[[str], str]) -> int:
    if not manager.has_mods_dir():
        _say("Mod path does not exist. Creating it now", YELLOW)
    path = manager.ensure_mods_dir()
    try:
        open_in_file_browser(path)
    except OSError as exc:
        _say("Unable to open mod folder", RED)
        _say(f"[{type(exc).__name__}] {exc}", RED)
        _say(f"You can browse manually to: {path}", RED)
        return 1
    return 0


def open_in_file_browser(path: Path):
    if sys.platform.startswith("win"):
        os.startfile(path)  # type: ignore[attr-defined]
    elif sys.platform == "darwin":
        subprocess.Popen(["open", str(path)])
    else:
        subprocess.Popen(["xdg-open", str(path)])


COMMANDS = {
    "list": cmd_list,
    "toggle": cmd_toggle,
    "enable": cmd_enable,
    "disable": cmd_disable,
    "install": cmd_install,
    "uninstall": cmd_uninstall,
    "pack": cmd_pack,
    "open": cmd_open,
}


def add_commands(parser: argparse.ArgumentParser):
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("list", help="list installed mods")
    for name, help_text in (
        ("toggle", "switch a mod between enabled and disabled"),
        ("enable", "enable a disabled mod"),
        ("disable", "disable an enabled mod"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("folder", help="mod folder name")

    p = sub.add_parser("install", help="install a packed .zip or an unpacked mod folder")
    p.add_argument("path")

    p = sub.add_parser("uninstall", help="delete a mod folder")
    p.add_argument("folder", help="mod folder name")
    p.add_argument("-y", "--yes", action="store_true", help="do not ask for confirmation")

    p = sub.add_parser("pack", help="pack a mod into <folder>.zip for distribution")
    p.add_argument("folder", help="mod folder name")
    p.add_argument("-o", "--output", default=".", help="directory to write the zip to")

    sub.add_parser("open", help="open the mods folder in the file browser")


def run(
    manager: ModManager,
    args: argparse.Namespace,
    confirm: Callable[[str], str] = input,
) -> int:
    handler = COMMANDS[args.command]
    try:
        return handler(manager, args, confirm)
    except ModManagerError as exc:
        _log.warning("%s failed: %s", args.command, exc, exc_info=exc.__cause__ is not None)
        _say(f"Failed to {args.command} mod.", RED)
        _say(f"[{type(exc).__name__}] {exc}", RED)
        if exc.__cause__ is not None:
            _say(f"  caused by [{type(exc.__cause__).__name__}] {exc.__cause__}", RED)
        return 1
