"""Error kinds raised by the nbsh front end and its collaborators."""

from __future__ import annotations

from typing import Optional


class ParseError(Exception):
    """A line (or block structure) that cannot be turned into a command tree.

    ``offset`` is the index into the parsed text where the problem starts,
    ``expected`` names the construct the parser wanted and ``found`` what was
    actually there. Either may be ``None`` when it does not apply.
    """

    def __init__(
        self,
        message: str,
        offset: Optional[int] = None,
        expected: Optional[str] = None,
        found: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.offset = offset
        self.expected = expected
        self.found = found

    def __str__(self) -> str:
        text = self.message
        if self.expected is not None:
            text += f" (expected {self.expected}"
            if self.found is not None:
                text += f", found {self.found}"
            text += ")"
        if self.offset is not None:
            text = f"offset {self.offset}: {text}"
        return text

    def format(self, source: str) -> str:
        """Render the error under the offending line with a caret marker."""
        if self.offset is None:
            return str(self)
        line_start = source.rfind("\n", 0, self.offset) + 1
        line_end = source.find("\n", self.offset)
        if line_end == -1:
            line_end = len(source)
        caret = " " * (self.offset - line_start) + "^"
        return f"{source[line_start:line_end]}\n{caret}\n{self}"


class LexError(ParseError):
    """Unterminated quote, substitution, alternation or dangling escape."""


class GrammarError(ParseError):
    """Tokens that do not match any production of the command grammar."""


class BlockStructureError(ParseError):
    """Stray ``end``/``else``, a repeated ``else``, or an unclosed block."""


class ExecError(Exception):
    """Failure reported by the execution collaborator.

    ``status`` is the exit status the failure maps to (127 for a missing
    command, 130 for an interrupt, and so on).
    """

    def __init__(self, message: str, status: int = 1) -> None:
        super().__init__(message)
        self.status = status


class ExpansionError(Exception):
    """A word could not be resolved; the runner's error is chained as ``__cause__``."""
