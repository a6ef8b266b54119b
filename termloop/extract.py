"""Command extraction from model replies.

Two strategies share one interface: ``extract(message) -> Extraction``.
The inline-marker strategy scans assistant text for a ``terminal_call:``
fenced block; the structured strategy surfaces the reply's tool calls.
"""

import json
import re
from dataclasses import dataclass, field

from .report import ArgumentDecodeError
from .session import TERMINAL_FUNCTION, ToolCall
from .tools import TERMINAL_TOOL

MARKER = "terminal_call:"

_INLINE_RE = re.compile(
    re.escape(MARKER) + r"[ \t]*\r?\n```[\w+-]*[ \t]*\r?\n(.*?)\r?\n[ \t]*```",
    re.DOTALL,
)


@dataclass
class Extraction:
    content: str | None
    tool_calls: list[ToolCall] = field(default_factory=list)


def extract_terminal_call(text: str | None) -> str | None:
    """Return the command in the first ``terminal_call:`` fenced block, if any."""
    if not text:
        return None
    match = _INLINE_RE.search(text)
    if not match:
        return None
    command = match.group(1).strip()
    return command or None


def decode_arguments(raw) -> str:
    """Decode a tool call's JSON arguments into its ``command`` string."""
    if isinstance(raw, dict):
        args = raw
    else:
        try:
            args = json.loads(raw)
        except (json.JSONDecodeError, TypeError) as e:
            raise ArgumentDecodeError(f"invalid JSON in tool arguments: {e}") from e
    if not isinstance(args, dict) or set(args) != {"command"}:
        raise ArgumentDecodeError(
            f"tool arguments must be an object with a single 'command' key, got {raw!r}"
        )
    command = args["command"]
    if not isinstance(command, str):
        raise ArgumentDecodeError(
            f"'command' must be a string, got {type(command).__name__}"
        )
    if not command.strip():
        raise ArgumentDecodeError("'command' must not be empty")
    return command


class InlineMarkerExtractor:
    """At most one command per reply; the loop stops after a single round."""

    name = "inline"
    single_shot = True
    tools = None

    def extract(self, message) -> Extraction:
        content = getattr(message, "content", None)
        command = extract_terminal_call(content)
        calls = [ToolCall(id="", command=command)] if command else []
        return Extraction(content=content, tool_calls=calls)


class ToolCallExtractor:
    """Surfaces every structured ``terminal`` call carried by the reply."""

    name = "structured"
    single_shot = False
    tools = [TERMINAL_TOOL]

    def extract(self, message) -> Extraction:
        calls: list[ToolCall] = []
        for tc in getattr(message, "tool_calls", None) or []:
            fn_name = tc.function.name
            if fn_name != TERMINAL_FUNCTION:
                raise ArgumentDecodeError(f"unknown tool {fn_name!r}")
            calls.append(
                ToolCall(
                    id=tc.id,
                    command=decode_arguments(tc.function.arguments),
                    name=fn_name,
                )
            )
        return Extraction(content=getattr(message, "content", None), tool_calls=calls)


def make_extractor(structured: bool):
    return ToolCallExtractor() if structured else InlineMarkerExtractor()
