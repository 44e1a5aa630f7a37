"""Tests for colored output, the diagnostic rate limiter and configuration."""

import pytest

from colonymind.config import Config
from colonymind.logging_utils import Color, DiagnosticLog, colored, log_error


def test_colored_respects_no_color(monkeypatch):
    assert colored("hello", Color.RED) == "hello"

    monkeypatch.delenv("COLONYMIND_NO_COLOR")
    text = colored("hello", Color.RED, bold=True)
    assert text.startswith(Color.BOLD.value + Color.RED.value)
    assert text.endswith(Color.RESET.value)


def test_log_helpers_print(capsys):
    log_error("[Cache] boom")
    assert capsys.readouterr().out.strip() == "[Cache] boom"


def test_diagnostics_are_rate_limited_per_key():
    lines = []
    log = DiagnosticLog(interval=100)

    assert log.emit("budget", "a", tick=0, sink=lines.append)
    assert not log.emit("budget", "b", tick=99, sink=lines.append)
    assert log.emit("cache", "c", tick=99, sink=lines.append)
    assert log.emit("budget", "d", tick=100, sink=lines.append)

    assert lines == ["a", "c", "d"]


def test_diagnostic_state_survives_restart():
    first = DiagnosticLog(interval=50)
    first.emit("planner", "x", tick=10, sink=lambda _: None)

    second = DiagnosticLog(interval=50, last_emitted=first.last_emitted)
    assert not second.emit("planner", "y", tick=20, sink=lambda _: None)

    second.reset()
    assert second.emit("planner", "z", tick=20, sink=lambda _: None)


def test_config_validate(monkeypatch):
    Config.validate()

    monkeypatch.setattr(Config, "BUDGET_MAX", 0)
    with pytest.raises(ValueError):
        Config.validate()


def test_config_display():
    text = Config.display()

    assert "Budget Max" in text
    assert "Sample Every" in text
    # only settings the core actually reads are shown
    assert [line.split(":")[0].strip() for line in text.splitlines()[1:]] == [
        "Budget Max",
        "Sample Every",
        "Diagnostic Interval",
        "State Dir",
    ]
