"""The terminal tool: schema, shell execution, and tracked ``cd``."""

import os
import re
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path

from .report import AgentError, DirectoryNotFound, OutputDecodeError

SHELL = "/bin/sh"

TERMINAL_TOOL = {
    "type": "function",
    "function": {
        "name": "terminal",
        "description": (
            "Run a terminal command and get the output. "
            "Maintains current working directory across calls."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "command": {
                    "type": "string",
                    "description": "The command to execute",
                },
            },
            "required": ["command"],
        },
    },
}


@dataclass
class CommandResult:
    """Outcome of one command. A non-zero exit_code is data, not a failure."""

    command: str
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0
    cwd: str | None = None
    changed_dir: bool = False
    # Shell text that ran after a leading ``cd``, if any.
    chained: str | None = None

    @property
    def ran_shell(self) -> bool:
        return not self.changed_dir or self.chained is not None

    def render(self) -> str:
        """Text shown to the model as the command's result."""
        parts: list[str] = []
        if self.changed_dir:
            parts.append(f"Changed directory to {self.cwd}")
        if self.exit_code != 0:
            parts.append(f"Exit code: {self.exit_code}")
        if self.stdout:
            parts.append(self.stdout.rstrip("\n"))
        if self.stderr:
            parts.append("stderr:\n" + self.stderr.rstrip("\n"))
        return "\n".join(parts) if parts else "(no output)"


_CD_RE = re.compile(
    r"""\s*cd(?:[ \t]+(?P<target>(?:"[^"]*"|'[^']*'|[^\s;&|"'])+))?[ \t]*"""
    r"""(?:(?P<op>&&|\|\||;|\n)\s*(?P<rest>.*?))?\s*""",
    re.DOTALL,
)


def is_cd(command: str) -> bool:
    parts = command.split(maxsplit=1)
    return bool(parts) and parts[0] == "cd"


def parse_cd(command: str) -> tuple[str, str | None, str | None]:
    """Split a ``cd`` command into (target, operator, rest).

    ``cd sub && ls`` gives ``("sub", "&&", "ls")``. Anything that is not a
    single word optionally followed by ``&&``, ``||``, ``;`` or a newline is
    taken whole as the target.
    """
    match = _CD_RE.fullmatch(command)
    if match:
        target = match.group("target") or "~"
        op, rest = match.group("op"), match.group("rest")
        if not rest:
            op = rest = None
    else:
        target = command.strip().split(maxsplit=1)[1].strip()
        op = rest = None
    try:
        words = shlex.split(target)
    except ValueError:
        words = [target]
    if len(words) == 1:
        target = words[0]
    return target, op, rest


def _resolve_dir(target: str, cwd: str) -> str:
    path = Path(target).expanduser()
    if not path.is_absolute():
        path = Path(cwd) / path
    resolved = os.path.normpath(str(path))
    if not os.path.isdir(resolved):
        raise DirectoryNotFound(f"no such directory: {target}")
    return resolved


def resolve_cd(command: str, cwd: str) -> str:
    """Resolve the target of a ``cd`` command against the tracked cwd.

    No argument means the home directory. Relative targets are joined to
    ``cwd``, never to the process's own working directory.
    """
    return _resolve_dir(parse_cd(command)[0], cwd)


def _decode(data: bytes, stream: str, command: str) -> str:
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise OutputDecodeError(
            f"{stream} of {command!r} is not valid UTF-8: {e}"
        ) from e


def _run_shell(command: str, cwd: str) -> CommandResult:
    if not os.path.isdir(cwd):
        raise DirectoryNotFound(f"working directory does not exist: {cwd}")

    try:
        proc = subprocess.run(
            [SHELL, "-c", command],
            cwd=cwd,
            stdin=subprocess.DEVNULL,
            capture_output=True,
        )
    except OSError as e:
        raise AgentError(f"failed to start shell command: {e}") from e
    return CommandResult(
        command=command,
        stdout=_decode(proc.stdout, "stdout", command),
        stderr=_decode(proc.stderr, "stderr", command),
        exit_code=proc.returncode,
        cwd=cwd,
    )


def _chained_cd(command: str, target: str, op: str, rest: str, cwd: str) -> CommandResult:
    try:
        new_cwd = _resolve_dir(target, cwd)
    except DirectoryNotFound as e:
        # A failed cd inside a chain is reported like the shell would.
        if op == "&&":
            return CommandResult(
                command=command, stderr=f"cd: {e}\n", exit_code=1, cwd=cwd
            )
        result = execute(rest, cwd)
        result.stderr = f"cd: {e}\n" + result.stderr
    else:
        if op == "||":
            return CommandResult(command=command, cwd=new_cwd, changed_dir=True)
        result = execute(rest, new_cwd)
        result.changed_dir = True
    result.command = command
    result.chained = rest
    return result


def execute(command: str, cwd: str) -> CommandResult:
    """Run ``command`` through /bin/sh in ``cwd`` and block until it exits.

    A leading ``cd`` never spawns a process: the new directory comes back
    in ``CommandResult.cwd`` with ``changed_dir`` set. Shell text chained
    after it with ``&&``, ``||``, ``;`` or a newline then runs in the new
    directory. A lone ``cd`` to a missing directory raises
    DirectoryNotFound; inside a chain it is reported as a failed command.
    """
    if is_cd(command):
        target, op, rest = parse_cd(command)
        if rest is None:
            new_cwd = _resolve_dir(target, cwd)
            return CommandResult(command=command, cwd=new_cwd, changed_dir=True)
        return _chained_cd(command, target, op, rest, cwd)
    return _run_shell(command, cwd)
