"""
Tests for the console front end and the entry-point helpers.
"""

import faulthandler
import logging
import sys
import zipfile

import pytest

import cli
import main
from main import build_parser, install_crash_handler, setup_logging
from mod_manager import ModManager
from paths import MODS_DIR_ENV, default_mods_dir, resolve_mods_dir
from tests.conftest import write_mod


def run_cli(manager, *argv, answer="y"):
    args = build_parser().parse_args(list(argv))
    return cli.run(manager, args, confirm=lambda _prompt: answer)


def test_list_shows_mods(manager, mods_dir, capsys):
    write_mod(mods_dir, "Beta", "Beta Mod", enabled=False)
    write_mod(mods_dir, "Alpha", "Alpha Mod", manifest={
        "title": "Alpha Mod",
        "description": "  line one\n\n   line   two ",
    })

    assert run_cli(manager, "list") == 0

    out = capsys.readouterr().out
    assert out.index("Alpha Mod") < out.index("Beta Mod")
    assert "Detail:  line one line two" in out
    assert "Folder:  Beta" in out
    assert "Enabled: No" in out
    assert "Enabled: Yes" in out


def test_list_empty(tmp_path, capsys):
    manager = ModManager(tmp_path / "none", log_callback=lambda _: None)
    assert run_cli(manager, "list") == 0
    assert "No mods installed" in capsys.readouterr().out


def test_toggle_enable_disable(manager, mods_dir, capsys):
    write_mod(mods_dir, "Mod", "My Mod")

    assert run_cli(manager, "toggle", "Mod") == 0
    assert (mods_dir / "Mod" / "info.json.DISABLED").exists()
    assert run_cli(manager, "enable", "Mod") == 0
    assert (mods_dir / "Mod" / "info.json").exists()
    assert "My Mod is now enabled" in capsys.readouterr().out


def test_enable_already_enabled_fails(manager, mods_dir, capsys):
    write_mod(mods_dir, "Mod", "My Mod")

    assert run_cli(manager, "enable", "Mod") == 1

    out = capsys.readouterr().out
    assert "StateConflictError" in out
    assert "already enabled" in out


def test_unknown_mod_fails(manager, capsys):
    assert run_cli(manager, "disable", "Nope") == 1
    assert "NotFoundError" in capsys.readouterr().out


def test_install_and_pack(manager, mods_dir, tmp_path, capsys):
    source = write_mod(tmp_path / "download", "src", "Fresh Mod", files={"a.txt": b"a"})
    out_dir = tmp_path / "packed"

    assert run_cli(manager, "install", str(source)) == 0
    assert run_cli(manager, "pack", "FreshMod", "--output", str(out_dir)) == 0

    out = capsys.readouterr().out
    assert "Copying a.txt..." in out
    assert "Mod installed and enabled successfully" in out
    assert "FreshMod/a.txt" in out
    with zipfile.ZipFile(out_dir / "FreshMod.zip") as zf:
        assert sorted(zf.namelist()) == ["FreshMod/a.txt", "FreshMod/info.json"]


def test_install_error_shows_cause(manager, tmp_path, capsys):
    junk = tmp_path / "junk.zip"
    junk.write_bytes(b"junk")

    assert run_cli(manager, "install", str(junk)) == 1

    out = capsys.readouterr().out
    assert "InvalidArchiveError" in out
    assert "caused by [BadZipFile]" in out


def test_uninstall_asks_first(manager, mods_dir, capsys):
    write_mod(mods_dir, "Mod", "My Mod")

    assert run_cli(manager, "uninstall", "Mod", answer="n") == 0
    assert (mods_dir / "Mod").is_dir()
    assert "Operation aborted" in capsys.readouterr().out

    assert run_cli(manager, "uninstall", "Mod", answer="y") == 0
    assert not (mods_dir / "Mod").exists()


def test_uninstall_yes_skips_prompt(manager, mods_dir):
    write_mod(mods_dir, "Mod", "My Mod")
    args = build_parser().parse_args(["uninstall", "Mod", "--yes"])

    def never(_prompt):
        raise AssertionError("should not prompt")

    assert cli.run(manager, args, confirm=never) == 0
    assert not (mods_dir / "Mod").exists()


def test_open_creates_missing_folder(tmp_path, monkeypatch):
    opened = []
    monkeypatch.setattr(cli, "open_in_file_browser", opened.append)
    manager = ModManager(tmp_path / "later" / "mods", log_callback=lambda _: None)

    assert run_cli(manager, "open") == 0

    assert opened == [tmp_path / "later" / "mods"]
    assert manager.has_mods_dir()


def test_open_failure_prints_path(manager, mods_dir, monkeypatch, capsys):
    def broken(_path):
        raise FileNotFoundError("xdg-open")

    monkeypatch.setattr(cli, "open_in_file_browser", broken)

    assert run_cli(manager, "open") == 1
    assert f"You can browse manually to: {mods_dir}" in capsys.readouterr().out


def test_resolve_mods_dir(monkeypatch, tmp_path):
    monkeypatch.delenv(MODS_DIR_ENV, raising=False)
    monkeypatch.setenv("USERPROFILE", str(tmp_path))

    assert resolve_mods_dir() == default_mods_dir()
    assert default_mods_dir() == tmp_path / "AppData" / "LocalLow" / "ArchivalEugeneNaelstrof" / "ChurnVector" / "mods"

    monkeypatch.setenv(MODS_DIR_ENV, str(tmp_path / "env"))
    assert resolve_mods_dir() == tmp_path / "env"
    assert resolve_mods_dir(str(tmp_path / "flag")) == tmp_path / "flag"


def test_parser_requires_command():
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


@pytest.fixture
def clean_root_logger():
    root = logging.getLogger()
    before = list(root.handlers)
    level = root.level
    yield root
    for handler in root.handlers[:]:
        if handler not in before:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)


def test_setup_logging_writes_file(tmp_path, clean_root_logger):
    root = clean_root_logger
    logger = setup_logging(tmp_path / "logs")
    logging.getLogger("mod_manager").info("hello from the core")
    for handler in root.handlers:
        handler.flush()
    text = (tmp_path / "logs" / "cvmodmanager.log").read_text(encoding="utf-8")
    assert "hello from the core" in text
    assert logger.name == "cvmodmanager"


def test_setup_logging_twice_keeps_one_handler_each(tmp_path, clean_root_logger):
    root = clean_root_logger

    setup_logging(tmp_path / "logs", verbose=True)
    setup_logging(tmp_path / "logs", verbose=True)
    logging.getLogger("mod_manager").info("only once")
    for handler in root.handlers:
        handler.flush()

    names = [h.get_name() for h in root.handlers]
    assert names.count("cvmodmanager-file") == 1
    assert names.count("cvmodmanager-console") == 1
    text = (tmp_path / "logs" / "cvmodmanager.log").read_text(encoding="utf-8")
    assert text.count("only once") == 1


def test_crash_handler_closes_previous_crash_log(tmp_path, monkeypatch):
    enabled = []
    monkeypatch.setattr(faulthandler, "enable", lambda stream, all_threads: enabled.append(stream))
    monkeypatch.setattr(faulthandler, "disable", lambda: None)
    monkeypatch.setattr(sys, "excepthook", sys.excepthook)
    logger = logging.getLogger("cvmodmanager")

    install_crash_handler(logger, tmp_path)
    install_crash_handler(logger, tmp_path)

    assert len(enabled) == 2
    assert enabled[0].closed
    assert not enabled[1].closed
    main.close_crash_log()
    assert enabled[1].closed
    assert (tmp_path / "crash.log").exists()
