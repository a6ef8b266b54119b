"""Conversation data model and the on-disk session store."""

import json
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

from .report import AgentError, CorruptState

ROLES = ("system", "user", "assistant", "tool")
TERMINAL_FUNCTION = "terminal"


@dataclass
class ToolCall:
    """A model request to run exactly one shell command."""

    id: str
    command: str
    name: str = TERMINAL_FUNCTION

    def to_message(self) -> dict:
        return {
            "id": self.id,
            "type": "function",
            "function": {
                "name": self.name,
                "arguments": json.dumps({"command": self.command}),
            },
        }

    @classmethod
    def from_message(cls, data: dict) -> "ToolCall":
        if not isinstance(data, dict) or not isinstance(data.get("function"), dict):
            raise CorruptState(f"malformed tool call: {data!r}")
        fn = data["function"]
        try:
            args = json.loads(fn.get("arguments") or "{}")
        except (json.JSONDecodeError, TypeError) as e:
            raise CorruptState(f"tool call {data.get('id')!r}: bad arguments: {e}")
        if not isinstance(args, dict) or not isinstance(args.get("command"), str):
            raise CorruptState(f"tool call {data.get('id')!r}: missing command")
        return cls(
            id=str(data.get("id", "")),
            command=args["command"],
            name=fn.get("name") or TERMINAL_FUNCTION,
        )


@dataclass
class Turn:
    """One conversation message.

    ``content`` may be None for assistant turns that only carry tool calls.
    ``tool_call_id`` is set on tool turns answering a structured call.
    """

    role: str
    content: str | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_call_id: str | None = None

    def to_message(self) -> dict:
        """Render as an OpenAI-style chat message dict."""
        msg: dict = {"role": self.role, "content": self.content}
        if self.tool_calls:
            msg["tool_calls"] = [tc.to_message() for tc in self.tool_calls]
        if self.tool_call_id is not None:
            msg["tool_call_id"] = self.tool_call_id
        return msg

    @classmethod
    def from_message(cls, data: dict) -> "Turn":
        if not isinstance(data, dict):
            raise CorruptState(f"turn must be an object, got {type(data).__name__}")
        role = data.get("role")
        if role not in ROLES:
            raise CorruptState(f"unknown turn role {role!r}")
        content = data.get("content")
        if content is not None and not isinstance(content, str):
            raise CorruptState(f"{role} turn content must be a string")
        calls = data.get("tool_calls") or []
        if not isinstance(calls, list):
            raise CorruptState(f"{role} turn tool_calls must be a list")
        return cls(
            role=role,
            content=content,
            tool_calls=[ToolCall.from_message(c) for c in calls],
            tool_call_id=data.get("tool_call_id"),
        )


@dataclass
class ConversationState:
    """Ordered turns plus the tracked terminal working directory."""

    turns: list[Turn]
    cwd: str

    def append(self, turn: Turn) -> None:
        self.turns.append(turn)

    def messages(self) -> list[dict]:
        return [t.to_message() for t in self.turns]

    def to_dict(self) -> dict:
        return {
            "turns": [t.to_message() for t in self.turns],
            "terminalState": {"cwd": self.cwd},
        }

    @classmethod
    def from_dict(cls, data) -> "ConversationState":
        if not isinstance(data, dict):
            raise CorruptState("session file must contain a JSON object")
        turns = data.get("turns")
        if not isinstance(turns, list):
            raise CorruptState("session file has no 'turns' list")
        terminal = data.get("terminalState")
        if not isinstance(terminal, dict) or not isinstance(terminal.get("cwd"), str):
            raise CorruptState("session file has no 'terminalState.cwd'")
        return cls(turns=[Turn.from_message(t) for t in turns], cwd=terminal["cwd"])


class SessionStore:
    """Loads and persists one ConversationState at a configured path."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def load(self) -> ConversationState | None:
        """Return the persisted state, or None when no file exists."""
        if not self.path.exists():
            return None
        try:
            text = self.path.read_text(encoding="utf-8")
            data = json.loads(text)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise CorruptState(f"{self.path}: cannot read session: {e}") from e
        try:
            return ConversationState.from_dict(data)
        except CorruptState as e:
            raise CorruptState(f"{self.path}: {e}") from e

    @staticmethod
    def init(system_prompt: str, cwd: str | None = None) -> ConversationState:
        """Fresh state holding only the system turn."""
        return ConversationState(
            turns=[Turn(role="system", content=system_prompt.strip())],
            cwd=os.path.abspath(cwd or os.getcwd()),
        )

    def save(self, state: ConversationState) -> None:
        """Write to a sibling temp file, then rename it over the target."""
        payload = json.dumps(state.to_dict(), ensure_ascii=False)
        tmp_name = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self.path.parent,
                prefix=f".{self.path.name}.",
                suffix=".tmp",
                delete=False,
            ) as f:
                tmp_name = f.name
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except OSError as e:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)
            raise AgentError(f"cannot save session to {self.path}: {e}") from e
