"""
Tests for the vmpkg logging setup.
"""

import json
import logging
from pathlib import Path

import pytest

from vmpkg.config import Settings
from vmpkg.logging import (
    ColorFormatter,
    JSONLineFormatter,
    configure_logging,
    get_logger,
    get_metrics,
    shutdown_logging,
)


@pytest.fixture(autouse=True)
def _detach_handlers():
    yield
    shutdown_logging()


def _record(msg: str, level: int = logging.INFO, **extra) -> logging.LogRecord:
    rec = logging.LogRecord("vmpkg", level, __file__, 1, msg, None, None)
    for k, v in extra.items():
        setattr(rec, k, v)
    return rec


class TestFormatters:
    def test_color_formatter_wraps_message(self):
        out = ColorFormatter("%(message)s").format(_record("hello", logging.WARNING))
        assert out.startswith("\033[33m")
        assert out.endswith(ColorFormatter.RESET)

    def test_color_formatter_plain(self):
        assert ColorFormatter("%(message)s", color=False).format(_record("hello")) == "hello"

    def test_jsonl_formatter(self):
        obj = json.loads(JSONLineFormatter().format(_record("done", vmpkg_module="manager")))
        assert obj["level"] == "INFO"
        assert obj["module"] == "manager"
        assert obj["message"] == "done"


class TestConfigure:
    def test_adapter_tags_module(self, caplog):
        with caplog.at_level(logging.INFO):
            get_logger("linker").info("linked %s", "rg")
        rec = caplog.records[-1]
        assert rec.vmpkg_module == "linker"
        assert rec.getMessage() == "linked rg"

    def test_metrics_count_levels(self):
        before = get_metrics()["WARNING"]
        get_logger("test").warning("one")
        get_logger("test").warning("two")
        assert get_metrics()["WARNING"] == before + 2

    def test_file_and_jsonl_handlers(self, tmp_path: Path):
        settings = Settings.for_root(
            tmp_path / "r",
            bin_dir=tmp_path / "b",
            log_file=tmp_path / "logs" / "vmpkg.log",
            log_jsonl=tmp_path / "logs" / "vmpkg.jsonl",
            color=False,
        )
        configure_logging(settings)
        get_logger("manager").info("Package '%s' installed.", "rg")
        logging.getLogger("vmpkg.config").debug("config: loaded")
        shutdown_logging()

        text = (tmp_path / "logs" / "vmpkg.log").read_text(encoding="utf-8")
        assert "[manager] Package 'rg' installed." in text
        assert "[config] config: loaded" in text

        lines = (tmp_path / "logs" / "vmpkg.jsonl").read_text(encoding="utf-8").splitlines()
        objs = [json.loads(line) for line in lines]
        assert {"module": "manager", "message": "Package 'rg' installed."}.items() <= objs[-1].items()

    def test_quiet_console_hides_info(self, tmp_path: Path, capsys):
        configure_logging(Settings.for_root(tmp_path / "r", bin_dir=tmp_path / "b", quiet=True, color=False))
        get_logger("cli").info("chatty")
        get_logger("cli").warning("important")
        err = capsys.readouterr().err
        assert "chatty" not in err
        assert "[WARNING] [cli] important" in err

    def test_reconfigure_replaces_handlers(self, tmp_path: Path):
        s = Settings.for_root(tmp_path / "r", bin_dir=tmp_path / "b")
        configure_logging(s)
        configure_logging(s)
        owned = [h for h in logging.getLogger("vmpkg").handlers if isinstance(h, logging.StreamHandler)]
        assert len(owned) == 1
