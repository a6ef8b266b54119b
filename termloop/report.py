"""Error taxonomy and the append-only CSV audit log."""

import csv
import socket
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path


class AgentError(Exception):
    """Raised by the agent loop or setup helpers for reportable runtime failures."""


class ConfigError(AgentError):
    """Raised for invalid configuration (bad types, unreadable TOML, etc.)."""


class NoChoicesReturned(AgentError):
    """The completion endpoint answered with an empty candidate list."""


class ArgumentDecodeError(AgentError):
    """A tool call carried arguments that are not a single string ``command``."""


class DirectoryNotFound(AgentError):
    """A ``cd`` target, or the tracked working directory, does not exist."""


class OutputDecodeError(AgentError):
    """A subprocess produced output that is not valid UTF-8."""


class CorruptState(AgentError):
    """The persisted session file exists but cannot be parsed."""


class MaxRoundsExceeded(AgentError):
    """The model kept requesting commands past the configured round cap."""

    def __init__(self, rounds: int):
        super().__init__(f"model still requesting commands after {rounds} rounds")
        self.rounds = rounds


LOG_HEADER = ["timestamp", "event_type", "host", "correlation_id", "function", "details"]


def _hostname() -> str:
    try:
        return socket.gethostname() or "unknown"
    except OSError:
        return "unknown"


@dataclass
class AuditEvent:
    event_type: str
    details: str = ""
    correlation_id: str = ""
    function: str = ""
    host: str = field(default_factory=_hostname)
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def row(self) -> list[str]:
        return [
            self.timestamp,
            self.event_type,
            self.host,
            self.correlation_id,
            self.function,
            self.details,
        ]


class AuditLog:
    """Appends one CSV row per state transition to a shared log file.

    The header is written only when the file does not exist yet. Every row is
    flushed immediately, so events recorded before a fatal error are kept.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def record(self, event_type: str, details: str = "", tool_call=None) -> AuditEvent:
        event = AuditEvent(
            event_type=event_type,
            details=details,
            correlation_id=tool_call.id if tool_call is not None else "",
            function=tool_call.name if tool_call is not None else "",
        )
        self.write(event)
        return event

    def write(self, event: AuditEvent) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            new_file = not self.path.exists()
            with self.path.open("a", encoding="utf-8", newline="") as f:
                writer = csv.writer(f)
                if new_file:
                    writer.writerow(LOG_HEADER)
                writer.writerow(event.row())
                f.flush()
        except OSError as e:
            raise AgentError(f"cannot write audit log {self.path}: {e}") from e
