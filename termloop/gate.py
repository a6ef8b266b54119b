"""Interactive confirmation before a command runs."""

import sys
from enum import Enum

from . import fmt


class Decision(Enum):
    PROCEED = "proceed"
    CANCEL = "cancel"


class SafetyGate:
    """Asks the user before each command when enabled.

    Only a literal ``y`` (any case) proceeds; any other answer, including an
    empty line or end of input, cancels.
    """

    def __init__(self, enabled: bool = False, prompt=None):
        self.enabled = enabled
        self._prompt = prompt or _read_answer

    def confirm(self, command: str) -> Decision:
        if not self.enabled:
            return Decision.PROCEED
        fmt.pending_command(command)
        try:
            answer = self._prompt("Execute command? [y/N]: ")
        except EOFError:
            return Decision.CANCEL
        if answer.strip().lower() == "y":
            return Decision.PROCEED
        return Decision.CANCEL


def _read_answer(label: str) -> str:
    sys.stderr.write(label)
    sys.stderr.flush()
    line = sys.stdin.readline()
    if not line:
        raise EOFError
    return line
