"""Character-level quoting rules for nbsh.

The grammar drives a single ``Cursor`` over the line; the helpers here consume
one run of characters at a time (blanks and comments, a bareword, a
single-quoted string, or a literal stretch of a double-quoted string) and
return the unescaped text.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from errors import LexError


# Characters that end a bareword run (besides whitespace).
BAREWORD_STOPS = frozenset("#|;\"'${()<>")
# Inside {a,b} alternatives the separators end a run too.
ALTERNATIVE_STOPS = BAREWORD_STOPS | frozenset(",}")


class RunKind(Enum):
    BAREWORD = "bareword"
    SINGLE_QUOTED = "single"
    DOUBLE_QUOTED = "double"


class Cursor:
    """A position in the text being parsed, shared by every grammar level."""

    def __init__(self, text: str, pos: int = 0) -> None:
        self.text = text
        self.pos = pos

    def __repr__(self) -> str:
        return f"Cursor({self.text!r}, {self.pos})"

    def at_end(self) -> bool:
        return self.pos >= len(self.text)

    def peek(self, ahead: int = 0) -> str:
        i = self.pos + ahead
        return self.text[i] if i < len(self.text) else ""

    def startswith(self, prefix: str) -> bool:
        return self.text.startswith(prefix, self.pos)

    def advance(self, n: int = 1) -> str:
        chunk = self.text[self.pos:self.pos + n]
        self.pos += n
        return chunk

    def describe(self) -> str:
        """What is at the cursor, for error messages."""
        if self.at_end():
            return "end of input"
        return repr(self.peek())


def classify(cursor: Cursor, stops: frozenset[str] = BAREWORD_STOPS) -> Optional[RunKind]:
    """Which kind of run starts at the cursor, or None if none does."""
    ch = cursor.peek()
    if ch == "'":
        return RunKind.SINGLE_QUOTED
    if ch == '"':
        return RunKind.DOUBLE_QUOTED
    if ch and not ch.isspace() and ch not in stops:
        return RunKind.BAREWORD
    return None


def skip_blank(cursor: Cursor) -> bool:
    """Consume whitespace and ``#`` comments; report whether anything was eaten."""
    start = cursor.pos
    while not cursor.at_end():
        ch = cursor.peek()
        if ch.isspace():
            cursor.advance()
        elif ch == "#":
            end = cursor.text.find("\n", cursor.pos)
            cursor.pos = len(cursor.text) if end == -1 else end
        else:
            break
    return cursor.pos != start


def skip_spaces(cursor: Cursor) -> bool:
    """Consume whitespace only; comments are left for the caller."""
    start = cursor.pos
    while cursor.peek() and cursor.peek().isspace():
        cursor.advance()
    return cursor.pos != start


def _escaped(cursor: Cursor) -> str:
    # cursor sits on the backslash
    if cursor.pos + 1 >= len(cursor.text):
        raise LexError(
            "dangling escape",
            offset=cursor.pos,
            expected="a character after '\\'",
            found="end of input",
        )
    cursor.advance()
    return cursor.advance()


def lex_bareword(cursor: Cursor, stops: frozenset[str] = BAREWORD_STOPS) -> str:
    """Consume an unquoted run, resolving backslash escapes."""
    out: list[str] = []
    while not cursor.at_end():
        ch = cursor.peek()
        if ch == "\\":
            out.append(_escaped(cursor))
            continue
        if ch.isspace() or ch in stops:
            break
        out.append(cursor.advance())
    return "".join(out)


def lex_single_quoted(cursor: Cursor) -> str:
    """Consume ``'...'``; only ``\\\\`` and ``\\'`` are escapes."""
    start = cursor.pos
    cursor.advance()  # opening quote
    out: list[str] = []
    while not cursor.at_end():
        ch = cursor.peek()
        if ch == "\\" and cursor.peek(1) in ("\\", "'"):
            cursor.advance()
            out.append(cursor.advance())
            continue
        if ch == "'":
            cursor.advance()
            return "".join(out)
        out.append(cursor.advance())
    raise LexError(
        "unterminated single-quoted string",
        offset=start,
        expected="closing \"'\"",
        found="end of input",
    )


def lex_double_quoted_chunk(cursor: Cursor, start: int) -> str:
    """Consume literal text inside ``"..."`` up to the next ``$`` or closing quote.

    ``start`` is the offset of the opening quote, used when the string runs
    off the end of the input.
    """
    out: list[str] = []
    while not cursor.at_end():
        ch = cursor.peek()
        if ch == "\\":
            out.append(_escaped(cursor))
            continue
        if ch in ('"', "$"):
            return "".join(out)
        out.append(cursor.advance())
    raise LexError(
        "unterminated double-quoted string",
        offset=start,
        expected="closing '\"'",
        found="end of input",
    )
