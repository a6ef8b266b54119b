"""ANSI-formatted stderr output using Rich."""

from rich.console import Console
from rich.markup import escape
from rich.rule import Rule
from rich.text import Text

_console = Console(stderr=True)


def init(*, color: bool = False, no_color: bool = False) -> None:
    """Reconfigure the module-level console from CLI flags.

    Call once at startup, before any output.
    """
    global _console
    kwargs: dict = {"stderr": True}
    if color:
        kwargs["force_terminal"] = True
        kwargs["no_color"] = False
    if no_color:
        kwargs["no_color"] = True
    _console = Console(**kwargs)


# -- Turn structure ----------------------------------------------------------


def turn_header(n: int, max_n: int, mode: str) -> None:
    title = f"Round {n}/{max_n} ({mode})"
    _console.print(Rule(title, style="cyan"))


def llm_timing(elapsed: float, finish_reason: str) -> None:
    style = "green" if finish_reason in ("stop", "tool_calls") else "yellow"
    text = Text()
    text.append(f"  LLM responded in {elapsed:.1f}s", style=style)
    text.append(f"  finish_reason={escape(str(finish_reason))}", style=style)
    _console.print(text)


def completion(rounds: int, exit_code: str) -> None:
    if exit_code == "ok":
        _console.print(
            Text(f"  \u2713 Agent finished: {rounds} rounds", style="bold green")
        )
    else:
        _console.print(
            Text(f"  Agent finished: {rounds} rounds, exit={exit_code}", style="bold red")
        )


# -- Commands ----------------------------------------------------------------


def tool_call(call_id: str, command: str) -> None:
    header = Text()
    header.append("  \u25b6 terminal", style="bold magenta")
    if call_id:
        header.append(f" [{call_id}]", style="magenta")
    _console.print(header)
    for line in command.splitlines():
        _console.print(Text(f"    $ {line}", style="dim"))


def pending_command(command: str) -> None:
    line = Text()
    line.append("  ? ", style="bold yellow")
    line.append(command, style="yellow")
    _console.print(line)


def tool_result(exit_code: int, elapsed: float, preview: str) -> None:
    header = Text()
    style = "green" if exit_code == 0 else "yellow"
    header.append(f"  \u2713 exit {exit_code}", style=style)
    header.append(f"  {elapsed:.1f}s", style=style)
    _console.print(header)
    if preview:
        _console.print(Text(f"    {preview}", style="dim"))


def directory_changed(cwd: str) -> None:
    _console.print(Text(f"  \u2192 cwd {cwd}", style="green"))


def canceled(command: str) -> None:
    line = Text()
    line.append("  \u2717 canceled ", style="bold red")
    line.append(command, style="red")
    _console.print(line)


# -- Diagnostics -------------------------------------------------------------


def model_info(msg: str) -> None:
    _console.print(Text(f"  {msg}", style="dim"))


def info(msg: str) -> None:
    _console.print(Text(f"  {msg}", style="dim"))


def context_stats(label: str, tokens: int) -> None:
    _console.print(Text(f"  {label}: ~{tokens} tokens", style="dim"))


def warning(msg: str) -> None:
    line = Text()
    line.append("  \u26a0 Warning: ", style="yellow")
    line.append(msg, style="yellow")
    _console.print(line)


def error(msg: str) -> None:
    line = Text()
    line.append("Error: ", style="bold red")
    line.append(msg, style="red")
    _console.print(line)
