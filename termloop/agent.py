import argparse
import sys
import time
from importlib import metadata
from pathlib import Path

import tiktoken

from . import fmt
from .config import _UNSET, apply_config_to_args, generate_config, load_config
from .extract import make_extractor
from .gate import Decision, SafetyGate
from .report import AgentError, AuditLog, MaxRoundsExceeded, NoChoicesReturned
from .session import ConversationState, SessionStore, ToolCall, Turn
from .tools import CommandResult, execute

PROMPTS_DIR = Path(__file__).parent / "prompts"
MAX_PREVIEW = 500

CANCELED_TOOL_RESULT = "Command was not executed: the user declined to run it."

_encoder = None


def _get_encoder():
    global _encoder
    if _encoder is None:
        _encoder = tiktoken.get_encoding("cl100k_base")
    return _encoder


def estimate_tokens(messages: list[dict]) -> int:
    """Count tokens across all messages using tiktoken."""
    encoder = _get_encoder()
    total = 0
    for m in messages:
        content = m.get("content") or ""
        for tc in m.get("tool_calls") or []:
            fn = tc.get("function", {})
            content += fn.get("name", "") + (fn.get("arguments") or "")
        total += len(encoder.encode(content)) + 4
    return total


def default_system_prompt(structured: bool) -> str:
    name = "structured.txt" if structured else "inline.txt"
    return (PROMPTS_DIR / name).read_text(encoding="utf-8").strip()


def inline_result_text(command: str, output: str) -> str:
    return f"Script executed:\n```\n{command}\n```\nOutput:\n{output}"


def inline_canceled_text(command: str) -> str:
    return f"Script canceled by user:\n```\n{command}\n```"


def call_llm(base_url, api_key, model_id, messages, tools, verbose):
    """Call LiteLLM against an OpenAI-compatible endpoint. Returns (message, finish_reason)."""
    import litellm

    litellm.suppress_debug_info = True

    model_str = f"openai/{model_id}"
    completion_kwargs = dict(
        model=model_str,
        messages=messages,
        api_base=base_url,
        api_key=api_key,
    )
    if tools:
        completion_kwargs["tools"] = tools
        completion_kwargs["tool_choice"] = "auto"

    if verbose:
        fmt.model_info(f"Calling model {model_str} at {base_url}")

    try:
        response = litellm.completion(**completion_kwargs)
    except Exception as e:
        raise AgentError(f"LLM call failed: {e}")

    if not response.choices:
        raise NoChoicesReturned("no choices returned by the completion endpoint")
    choice = response.choices[0]
    return choice.message, choice.finish_reason


def handle_command(
    call: ToolCall,
    state: ConversationState,
    gate: SafetyGate,
    audit: AuditLog,
    verbose: bool,
    executor=execute,
) -> CommandResult | None:
    """Gate and run one requested command.

    Returns the CommandResult, or None when the user canceled. A ``cd``
    updates ``state.cwd`` in place.
    """
    correlated = call if call.id else None
    audit.record("tool_call", call.command, correlated)
    if verbose:
        fmt.tool_call(call.id, call.command)

    if gate.confirm(call.command) is Decision.CANCEL:
        audit.record("tool_canceled", "User canceled", correlated)
        if verbose:
            fmt.canceled(call.command)
        return None

    t0 = time.monotonic()
    result = executor(call.command, state.cwd)
    elapsed = time.monotonic() - t0

    if result.changed_dir:
        state.cwd = result.cwd
        audit.record("directory_changed", result.cwd, correlated)
        if verbose:
            fmt.directory_changed(result.cwd)
    if result.ran_shell:
        output = result.render()
        audit.record("tool_output", output, correlated)
        if verbose:
            fmt.tool_result(result.exit_code, elapsed, output[:MAX_PREVIEW])
    return result


def run_agent_loop(
    state: ConversationState,
    extractor,
    *,
    base_url: str,
    api_key: str,
    model_id: str,
    max_turns: int,
    gate: SafetyGate,
    audit: AuditLog,
    verbose: bool,
    executor=execute,
) -> str | None:
    """Alternate model calls and command execution until the model stops asking.

    Mutates ``state`` in place (appends assistant/tool turns, updates cwd).
    The inline extractor is single-shot: exactly one model round. The
    structured extractor loops while replies carry tool calls, and raises
    MaxRoundsExceeded once ``max_turns`` rounds have all requested commands.
    Returns the last assistant text (may be None).
    """
    rounds = 0
    while rounds < max_turns:
        rounds += 1
        if verbose:
            fmt.turn_header(rounds, max_turns, extractor.name)

        t0 = time.monotonic()
        msg, finish_reason = call_llm(
            base_url, api_key, model_id, state.messages(), extractor.tools, verbose
        )
        if verbose:
            fmt.llm_timing(time.monotonic() - t0, finish_reason)

        extraction = extractor.extract(msg)
        content = extraction.content
        tool_calls = [] if extractor.single_shot else extraction.tool_calls
        # Only a turn carrying tool calls may have null content.
        state.append(
            Turn(
                role="assistant",
                content=content if tool_calls else (content or ""),
                tool_calls=tool_calls,
            )
        )
        audit.record("assistant", content or "")
        if content:
            print(content, flush=True)

        if not extraction.tool_calls:
            if verbose:
                fmt.completion(rounds, "ok")
            return content

        if verbose:
            fmt.context_stats(
                "Current context length", estimate_tokens(state.messages())
            )

        for call in extraction.tool_calls:
            result = handle_command(call, state, gate, audit, verbose, executor)
            if extractor.single_shot:
                if result is None:
                    text = inline_canceled_text(call.command)
                else:
                    output = result.render()
                    print(output, flush=True)
                    text = inline_result_text(call.command, output)
                state.append(Turn(role="assistant", content=text))
            else:
                text = CANCELED_TOOL_RESULT if result is None else result.render()
                state.append(Turn(role="tool", content=text, tool_call_id=call.id))

        if extractor.single_shot:
            if verbose:
                fmt.completion(rounds, "ok")
            return content

    if verbose:
        fmt.completion(rounds, "max_turns")
    raise MaxRoundsExceeded(rounds)


def build_parser():
    """Build and return the argument parser."""
    parser = argparse.ArgumentParser(
        prog="termloop",
        description="Relay a message to a chat model and run the shell commands it asks for.",
    )
    parser.add_argument(
        "message",
        nargs="*",
        help="Message for the model (read from stdin when omitted).",
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print the version and exit.",
    )
    parser.add_argument(
        "-c",
        "--continue",
        dest="continue_conversation",
        action="store_true",
        help="Continue the previous conversation from the state file.",
    )
    parser.add_argument(
        "-s",
        "--safe",
        action="store_true",
        default=_UNSET,
        help="Confirm before executing each command.",
    )
    parser.add_argument(
        "-t",
        "--tools",
        action="store_true",
        default=_UNSET,
        help="Use structured tool calls instead of inline terminal_call blocks.",
    )
    parser.add_argument(
        "-b",
        "--base-url",
        default=_UNSET,
        help="API base URL (default: http://localhost:8080/v1).",
    )
    parser.add_argument(
        "-k",
        "--api-key",
        default=_UNSET,
        help="API key (default: $TERMLOOP_API_KEY, then 'empty').",
    )
    parser.add_argument(
        "-m",
        "--model",
        default=_UNSET,
        help="Model to use for completions (default: qwen_coder).",
    )
    parser.add_argument(
        "--max-turns",
        type=int,
        default=_UNSET,
        help="Maximum model rounds in tool-call mode (default: 50).",
    )
    parser.add_argument(
        "--state-file",
        default=_UNSET,
        help="Conversation state file (default: /tmp/ai_conversation).",
    )
    parser.add_argument(
        "--log-file",
        default=_UNSET,
        help="CSV audit log file (default: /tmp/ai_log.csv).",
    )
    parser.add_argument(
        "--system-prompt",
        default=_UNSET,
        help="System prompt for a fresh conversation.",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        default=_UNSET,
        help="Suppress diagnostics; only print model text and command output.",
    )

    color_group = parser.add_mutually_exclusive_group()
    color_group.add_argument(
        "--color",
        action="store_true",
        default=_UNSET,
        help="Force ANSI color even when stderr is not a TTY.",
    )
    color_group.add_argument(
        "--no-color",
        action="store_true",
        default=_UNSET,
        help="Disable ANSI color even when stderr is a TTY.",
    )

    parser.add_argument(
        "--init-config",
        action="store_true",
        help="Print a config file template and exit.",
    )
    parser.add_argument(
        "--project",
        action="store_true",
        help="With --init-config, print the project (./termloop.toml) template.",
    )
    return parser


def read_message() -> str:
    sys.stderr.write("Message: ")
    sys.stderr.flush()
    return sys.stdin.readline().strip()


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        try:
            version = metadata.version("termloop")
        except metadata.PackageNotFoundError:
            version = "unknown"
        print(version)
        sys.exit(0)

    if args.init_config:
        print(generate_config(project=args.project))
        return

    try:
        config = load_config(Path.cwd())
    except AgentError as e:
        fmt.error(str(e))
        sys.exit(1)
    apply_config_to_args(args, config)
    args.verbose = not args.quiet

    fmt.init(color=args.color, no_color=args.no_color)

    if args.max_turns < 1:
        parser.error("--max-turns must be at least 1")

    message = " ".join(args.message).strip() if args.message else read_message()
    if not message:
        parser.error("a message is required")

    audit = AuditLog(args.log_file)
    store = SessionStore(args.state_file)

    try:
        _run_main(args, message, store, audit)
    except AgentError as e:
        fmt.error(str(e))
        _record_failure(audit, e)
        sys.exit(1)


def _record_failure(audit: AuditLog, error: AgentError) -> None:
    try:
        audit.record("error", str(error))
    except AgentError as inner:
        fmt.warning(f"could not record error event: {inner}")


def _run_main(args, message, store, audit):
    structured = bool(args.tools)
    extractor = make_extractor(structured)

    state = store.load() if args.continue_conversation else None
    if state is None:
        system_prompt = args.system_prompt or default_system_prompt(structured)
        state = SessionStore.init(system_prompt)
    elif args.verbose:
        fmt.info(
            f"Continuing session from {store.path} "
            f"({len(state.turns)} turns, cwd {state.cwd})"
        )

    state.append(Turn(role="user", content=message))
    audit.record("user", message)

    try:
        run_agent_loop(
            state,
            extractor,
            base_url=args.base_url,
            api_key=args.api_key,
            model_id=args.model,
            max_turns=args.max_turns,
            gate=SafetyGate(enabled=bool(args.safe)),
            audit=audit,
            verbose=args.verbose,
        )
    except MaxRoundsExceeded as e:
        store.save(state)
        audit.record("error", str(e))
        fmt.warning(f"{e}; session saved, agent stopped.")
        sys.exit(2)

    store.save(state)
