from __future__ import annotations

import logging
from pathlib import Path

from tandem.app import assistant_args, build_parser, configure_logging, main


def test_passthrough_arguments_reach_the_assistant() -> None:
    args, extra = build_parser().parse_known_args(
        ["--remote", "--resume", "abc-1", "--", "--model", "opus"],
    )
    assert args.remote
    assert assistant_args(args, extra) == ["--resume", "abc-1", "--model", "opus"]

    args, extra = build_parser().parse_known_args(["--continue", "--verbose", "--dangerously"])
    assert assistant_args(args, extra) == ["--continue", "--dangerously"]


def test_logging_goes_to_rotating_file(tmp_path: Path) -> None:
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    try:
        log_file = configure_logging(tmp_path / "logs", "WARNING")
        logging.getLogger("tandem.test").warning("hello log")
        for handler in root.handlers:
            handler.flush()
        assert log_file == tmp_path / "logs" / "tandem.log"
        assert "hello log" in log_file.read_text(encoding="utf-8")
        assert root.level == logging.WARNING
    finally:
        for handler in root.handlers:
            handler.close()
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)


def test_main_requires_login(tmp_path: Path, monkeypatch, capsys) -> None:
    monkeypatch.setenv("TANDEM_CONFIG_DIR", str(tmp_path))
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    try:
        assert main(["--path", str(tmp_path)]) == 1
    finally:
        for handler in root.handlers:
            handler.close()
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)

    assert "tandem login" in capsys.readouterr().out
