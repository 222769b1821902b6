#!/usr/bin/env python3
"""Churn Vector Mod Manager - Entry Point"""

import argparse
import atexit
import faulthandler
import logging
import sys
import traceback
from logging.handlers import RotatingFileHandler
from pathlib import Path

from cli import add_commands, run
from mod_manager import ModManager
from paths import resolve_log_dir, resolve_mods_dir

LOG_FILENAME = "cvmodmanager.log"
CRASH_FILENAME = "crash.log"
_FILE_HANDLER_NAME = "cvmodmanager-file"
_CONSOLE_HANDLER_NAME = "cvmodmanager-console"

_crash_stream = None


def _replace_handler(root: logging.Logger, name: str, handler: logging.Handler):
    # One handler per name on root, however often setup runs
    for old in [h for h in root.handlers if h.get_name() == name]:
        root.removeHandler(old)
        old.close()
    handler.set_name(name)
    root.addHandler(handler)


def setup_logging(log_dir: Path, verbose: bool = False) -> logging.Logger:
    log_dir.mkdir(parents=True, exist_ok=True)

    file_handler = RotatingFileHandler(
        log_dir / LOG_FILENAME,
        maxBytes=1 * 1024 * 1024,  # 1 MB
        backupCount=2,
        encoding="utf-8",
    )
    file_handler.setFormatter(logging.Formatter("%(asctime)s  %(levelname)-8s  %(message)s"))

    # Core modules log under their own module names, so hang handlers on root
    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    _replace_handler(root, _FILE_HANDLER_NAME, file_handler)

    if verbose:
        console = logging.StreamHandler(sys.stderr)
        console.setLevel(logging.INFO)
        console.setFormatter(logging.Formatter("%(message)s"))
        _replace_handler(root, _CONSOLE_HANDLER_NAME, console)

    return logging.getLogger("cvmodmanager")


def close_crash_log():
    global _crash_stream
    if _crash_stream is None:
        return
    faulthandler.disable()
    _crash_stream.close()
    _crash_stream = None


def install_crash_handler(logger: logging.Logger, log_dir: Path):
    global _crash_stream

    def handle_exception(exc_type, exc_value, exc_tb):
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc_value, exc_tb)
            return
        logger.critical(
            "Unhandled exception:\n%s",
            "".join(traceback.format_exception(exc_type, exc_value, exc_tb)),
        )
        sys.__excepthook__(exc_type, exc_value, exc_tb)

    sys.excepthook = handle_exception

    # faulthandler needs a raw file descriptor; logging is unusable after a
    # hard crash. The stream stays open until close_crash_log().
    close_crash_log()
    _crash_stream = open(log_dir / CRASH_FILENAME, "w")
    faulthandler.enable(_crash_stream, all_threads=True)
    atexit.unregister(close_crash_log)
    atexit.register(close_crash_log)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="cvmodmanager", description="Churn Vector Mod Manager")
    parser.add_argument("--mods-dir", help="mods folder (default: the game's LocalLow folder)")
    parser.add_argument("--log-dir", help="where cvmodmanager.log is written")
    parser.add_argument("-v", "--verbose", action="store_true", help="echo diagnostics to the console")
    add_commands(parser)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    log_dir = resolve_log_dir(args.log_dir)
    logger = setup_logging(log_dir, verbose=args.verbose)
    install_crash_handler(logger, log_dir)

    mods_dir = resolve_mods_dir(args.mods_dir)
    logger.info("Starting Churn Vector Mod Manager (mods: %s)", mods_dir)

    return run(ModManager(mods_dir), args)


if __name__ == "__main__":
    sys.exit(main())
