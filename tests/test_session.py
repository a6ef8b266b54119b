"""Tests for the conversation data model and session store."""

import json
import os

import pytest

from termloop.report import CorruptState
from termloop.session import ConversationState, SessionStore, ToolCall, Turn


def _sample_state(cwd):
    return ConversationState(
        turns=[
            Turn(role="system", content="be helpful"),
            Turn(role="user", content="where am I?"),
            Turn(
                role="assistant",
                content=None,
                tool_calls=[ToolCall(id="call_1", command="pwd")],
            ),
            Turn(role="tool", content=str(cwd), tool_call_id="call_1"),
            Turn(role="assistant", content="You are in a temp dir."),
        ],
        cwd=str(cwd),
    )


class TestInit:
    def test_fresh_state_has_only_system_turn(self, tmp_path):
        state = SessionStore.init("  system text \n", cwd=str(tmp_path))
        assert len(state.turns) == 1
        assert state.turns[0].role == "system"
        assert state.turns[0].content == "system text"
        assert state.cwd == str(tmp_path)

    def test_fresh_state_defaults_to_process_cwd(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        state = SessionStore.init("x")
        assert state.cwd == os.getcwd()


class TestRoundTrip:
    def test_save_then_load_is_equal(self, tmp_path):
        store = SessionStore(tmp_path / "state.json")
        state = _sample_state(tmp_path)
        store.save(state)
        assert store.load() == state

    def test_unicode_content_survives(self, tmp_path):
        store = SessionStore(tmp_path / "state.json")
        state = SessionStore.init("système ✓", cwd=str(tmp_path))
        store.save(state)
        assert store.load().turns[0].content == "système ✓"

    def test_file_layout(self, tmp_path):
        path = tmp_path / "state.json"
        SessionStore(path).save(_sample_state(tmp_path))
        data = json.loads(path.read_text())
        assert data["terminalState"] == {"cwd": str(tmp_path)}
        assert [t["role"] for t in data["turns"]] == [
            "system",
            "user",
            "assistant",
            "tool",
            "assistant",
        ]
        call = data["turns"][2]["tool_calls"][0]
        assert call["id"] == "call_1"
        assert call["function"]["name"] == "terminal"
        assert json.loads(call["function"]["arguments"]) == {"command": "pwd"}
        assert data["turns"][3]["tool_call_id"] == "call_1"

    def test_save_overwrites_and_leaves_no_temp_files(self, tmp_path):
        path = tmp_path / "state.json"
        store = SessionStore(path)
        store.save(_sample_state(tmp_path))
        store.save(SessionStore.init("second", cwd=str(tmp_path)))
        assert [p.name for p in tmp_path.iterdir()] == ["state.json"]
        assert len(store.load().turns) == 1

    def test_save_creates_parent_directory(self, tmp_path):
        path = tmp_path / "nested" / "dir" / "state.json"
        SessionStore(path).save(SessionStore.init("x", cwd=str(tmp_path)))
        assert path.exists()


class TestLoadErrors:
    def test_missing_file_returns_none(self, tmp_path):
        assert SessionStore(tmp_path / "nope.json").load() is None

    def test_invalid_json_is_corrupt(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text('{"turns": [', encoding="utf-8")
        with pytest.raises(CorruptState):
            SessionStore(path).load()

    @pytest.mark.parametrize(
        "payload",
        [
            [],
            {"turns": []},
            {"turns": {}, "terminalState": {"cwd": "/"}},
            {"turns": [], "terminalState": {}},
            {"turns": [{"role": "wizard", "content": "x"}], "terminalState": {"cwd": "/"}},
            {"turns": [{"role": "user", "content": 3}], "terminalState": {"cwd": "/"}},
        ],
    )
    def test_wrong_shape_is_corrupt(self, tmp_path, payload):
        path = tmp_path / "state.json"
        path.write_text(json.dumps(payload), encoding="utf-8")
        with pytest.raises(CorruptState):
            SessionStore(path).load()

    def test_bad_tool_call_arguments_are_corrupt(self, tmp_path):
        path = tmp_path / "state.json"
        payload = {
            "turns": [
                {
                    "role": "assistant",
                    "content": None,
                    "tool_calls": [
                        {"id": "c", "function": {"name": "terminal", "arguments": "{"}}
                    ],
                }
            ],
            "terminalState": {"cwd": "/"},
        }
        path.write_text(json.dumps(payload), encoding="utf-8")
        with pytest.raises(CorruptState):
            SessionStore(path).load()


class TestTurnMessages:
    def test_plain_turn_has_no_tool_keys(self):
        assert Turn(role="user", content="hi").to_message() == {
            "role": "user",
            "content": "hi",
        }

    def test_loaded_turn_order_is_not_enforced(self, tmp_path):
        path = tmp_path / "state.json"
        payload = {
            "turns": [
                {"role": "user", "content": "no system turn first"},
                {"role": "assistant", "content": "fine"},
            ],
            "terminalState": {"cwd": str(tmp_path)},
        }
        path.write_text(json.dumps(payload), encoding="utf-8")
        state = SessionStore(path).load()
        assert [t.role for t in state.turns] == ["user", "assistant"]
