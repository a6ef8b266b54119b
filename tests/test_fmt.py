"""Tests for the fmt module (ANSI-formatted output helpers)."""

from io import StringIO

from rich.console import Console

from termloop import fmt


def _capture(func, *args, **kwargs):
    """Call a fmt function with a captured console and return plain-text output."""
    buf = StringIO()
    old = fmt._console
    fmt._console = Console(file=buf, no_color=True, width=80)
    try:
        func(*args, **kwargs)
    finally:
        fmt._console = old
    return buf.getvalue()


class TestTurnHeader:
    def test_contains_round_and_mode(self):
        out = _capture(fmt.turn_header, 3, 10, "structured")
        assert "Round 3/10" in out
        assert "structured" in out


class TestLlmTiming:
    def test_stop_reason(self):
        out = _capture(fmt.llm_timing, 1.4, "stop")
        assert "LLM responded in 1.4s" in out
        assert "finish_reason=stop" in out

    def test_none_reason(self):
        out = _capture(fmt.llm_timing, 0.2, None)
        assert "finish_reason=None" in out


class TestCompletion:
    def test_ok(self):
        out = _capture(fmt.completion, 5, "ok")
        assert "Agent finished" in out
        assert "5 rounds" in out

    def test_max_turns(self):
        out = _capture(fmt.completion, 3, "max_turns")
        assert "3 rounds" in out
        assert "max_turns" in out


class TestCommands:
    def test_tool_call_shows_id_and_each_line(self):
        out = _capture(fmt.tool_call, "call_7", "cd /tmp\nls")
        assert "terminal" in out
        assert "[call_7]" in out
        assert "$ cd /tmp" in out
        assert "$ ls" in out

    def test_inline_call_has_no_id(self):
        out = _capture(fmt.tool_call, "", "ls")
        assert "[" not in out

    def test_tool_result(self):
        out = _capture(fmt.tool_result, 1, 0.3, "boom")
        assert "exit 1" in out
        assert "0.3s" in out
        assert "boom" in out

    def test_pending_and_canceled(self):
        assert "rm -rf x" in _capture(fmt.pending_command, "rm -rf x")
        assert "canceled" in _capture(fmt.canceled, "rm -rf x")

    def test_directory_changed(self):
        assert "/tmp" in _capture(fmt.directory_changed, "/tmp")


class TestDiagnostics:
    def test_context_stats(self):
        out = _capture(fmt.context_stats, "Current context length", 1234)
        assert "Current context length: ~1234 tokens" in out

    def test_warning(self):
        assert "Warning: careful" in _capture(fmt.warning, "careful")

    def test_error(self):
        assert "Error: bad" in _capture(fmt.error, "bad")

    def test_init_no_color(self):
        fmt.init(no_color=True)
        assert fmt._console.no_color is True
