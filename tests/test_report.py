"""Tests for the CSV audit log and error types."""

import csv
import types

import pytest

from termloop.report import (
    LOG_HEADER,
    AgentError,
    AuditLog,
    ConfigError,
    MaxRoundsExceeded,
    NoChoicesReturned,
)


def _rows(path):
    with open(path, newline="", encoding="utf-8") as f:
        return list(csv.reader(f))


class TestAuditLog:
    def test_header_written_once(self, tmp_path):
        path = tmp_path / "log.csv"
        AuditLog(path).record("user", "first")
        AuditLog(path).record("user", "second")
        rows = _rows(path)
        assert rows[0] == LOG_HEADER
        assert sum(1 for r in rows if r == LOG_HEADER) == 1
        assert [r[5] for r in rows[1:]] == ["first", "second"]

    def test_row_columns(self, tmp_path):
        path = tmp_path / "log.csv"
        AuditLog(path).record("assistant", "hello")
        row = dict(zip(LOG_HEADER, _rows(path)[1]))
        assert row["event_type"] == "assistant"
        assert row["details"] == "hello"
        assert row["host"]
        assert row["correlation_id"] == ""
        assert row["function"] == ""
        assert "T" in row["timestamp"]
        assert row["timestamp"].endswith("+00:00")

    def test_tool_call_correlation(self, tmp_path):
        path = tmp_path / "log.csv"
        call = types.SimpleNamespace(id="call_9", name="terminal")
        event = AuditLog(path).record("tool_call", "ls", call)
        assert event.correlation_id == "call_9"
        row = dict(zip(LOG_HEADER, _rows(path)[1]))
        assert row["correlation_id"] == "call_9"
        assert row["function"] == "terminal"

    def test_multiline_details_survive_quoting(self, tmp_path):
        path = tmp_path / "log.csv"
        AuditLog(path).record("tool_output", 'line one\nline "two", three')
        assert _rows(path)[1][5] == 'line one\nline "two", three'

    def test_rows_appended_in_order(self, tmp_path):
        path = tmp_path / "log.csv"
        log = AuditLog(path)
        log.record("user", "a")
        log.record("assistant", "b")
        assert [r[1] for r in _rows(path)[1:]] == ["user", "assistant"]

    def test_creates_parent_directory(self, tmp_path):
        path = tmp_path / "a" / "b" / "log.csv"
        AuditLog(path).record("user", "x")
        assert path.exists()

    def test_unwritable_path_raises_agent_error(self, tmp_path):
        target = tmp_path / "dir"
        target.mkdir()
        with pytest.raises(AgentError, match="cannot write audit log"):
            AuditLog(target).record("user", "x")


class TestErrors:
    def test_hierarchy(self):
        assert issubclass(ConfigError, AgentError)
        assert issubclass(NoChoicesReturned, AgentError)
        assert issubclass(MaxRoundsExceeded, AgentError)

    def test_max_rounds_message(self):
        err = MaxRoundsExceeded(7)
        assert err.rounds == 7
        assert "7 rounds" in str(err)
