"""Best-effort command filtering.

This is a denylist heuristic, not a security boundary: it does not account for
encoding tricks, environment expansion or argument concatenation.
"""

from typing import FrozenSet, Tuple

from commandservice.jobs.models import Command

# Process-termination and destructive filesystem commands, matched as prefixes
DENYLIST: Tuple[str, ...] = (
    "kill",
    "shutdown",
    "reboot",
    "rm",
    "format",
    "dd",
    "mkfs",
    "halt",
    "poweroff",
    "init 0",
    "init 6",
)

SHELL_OPERATORS: Tuple[str, ...] = ("&&", "||", ";", "|", "`", "$(")

ESCAPED_CHARS: FrozenSet[str] = frozenset("&;|`$><(){}[]!*?~")

ESCAPE_MARKER = "\\"


class CommandValidator:
    """Classifies commands as safe/unsafe and produces escaped copies."""

    def __init__(self, denylist=DENYLIST, operators=SHELL_OPERATORS, escaped_chars=ESCAPED_CHARS):
        self.denylist = tuple(denylist)
        self.operators = tuple(operators)
        self.escaped_chars = frozenset(escaped_chars)

    def is_safe(self, command: Command) -> bool:
        """Check a command against the denylist and the shell operator set.

        Must be called with the original, unsanitized command.
        """
        program = command.program.strip().lower()

        if any(program.startswith(entry) for entry in self.denylist):
            return False

        if self._has_operator(program):
            return False

        return not any(self._has_operator(arg) for arg in command.arguments)

    def sanitize(self, command: Command) -> Command:
        """Return a copy with every special character prefixed by a backslash."""
        return Command(
            program=self._escape(command.program),
            arguments=[self._escape(arg) for arg in command.arguments],
            working_directory=command.working_directory,
        )

    def _has_operator(self, value: str) -> bool:
        return any(op in value for op in self.operators)

    def _escape(self, value: str) -> str:
        return "".join(
            ESCAPE_MARKER + char if char in self.escaped_chars else char
            for char in value
        )
