"""Word and command grammar for nbsh.

A recursive-descent parser over one ``Cursor``. Command substitutions and
subshells re-enter ``_parse_command_list`` on the same cursor, so nested
quotes and parentheses balance naturally without re-lexing the line.

    command_list := command (';' command)* [';']
    command      := 'if' pipeline | 'while' pipeline
                  | 'for' NAME 'in' word* | 'else' ['if' pipeline] | 'end'
                  | pipeline
    pipeline     := stage ('|' stage)*
    stage        := '(' command_list ')' redirect* | exe
    exe          := (redirect | word)+
    redirect     := [in|out|err|DIGITS] ('>>' | '>' | '<') word
    word         := (alternation | '$(' command_list ')' | variable
                    | bareword | single_quoted | double_quoted)+
"""

from __future__ import annotations

import re
from typing import Optional

from blocks import assemble
from errors import GrammarError, LexError
from lexer import (
    ALTERNATIVE_STOPS,
    BAREWORD_STOPS,
    Cursor,
    RunKind,
    classify,
    lex_bareword,
    lex_double_quoted_chunk,
    lex_single_quoted,
    skip_blank,
    skip_spaces,
)
from syntax import (
    STDERR,
    STDIN,
    STDOUT,
    Alternation,
    Command,
    CommandList,
    CommandSubstitution,
    Else,
    End,
    Exe,
    For,
    If,
    Literal,
    Pipeline,
    Redirect,
    RedirectMode,
    Stage,
    Subshell,
    Variable,
    While,
    Word,
    WordPart,
)

_IDENT = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_REDIRECT = re.compile(r"(in|out|err|\d+)?(>>|>|<)")
_SOURCES = {"in": STDIN, "out": STDOUT, "err": STDERR}
_SPECIAL_VARS = frozenset("?$*0123456789")


def parse_line(text: str) -> CommandList:
    """Parse one physical line into its ``;``-separated commands.

    Raises ``LexError`` or ``GrammarError``; nothing is returned for a
    malformed line.
    """
    cursor = Cursor(text)
    commands = _parse_command_list(cursor, closer=None)
    if not cursor.at_end():
        raise GrammarError(
            f"unexpected {cursor.describe()}",
            offset=cursor.pos,
            expected="';' or end of line",
            found=cursor.describe(),
        )
    return CommandList(commands, text.strip())


# --- Commands ---

def _parse_command_list(cursor: Cursor, closer: Optional[str]) -> tuple[Command, ...]:
    commands: list[Command] = []
    skip_blank(cursor)
    while not cursor.at_end() and cursor.peek() != closer:
        commands.append(_parse_command(cursor))
        skip_blank(cursor)
        if cursor.peek() != ";":
            break
        cursor.advance()
        skip_blank(cursor)
    return tuple(commands)


def _keyword(cursor: Cursor, word: str) -> bool:
    """Consume ``word`` if it stands alone as a bareword at the cursor."""
    if not cursor.startswith(word):
        return False
    following = cursor.peek(len(word))
    if following and not following.isspace() and following not in ";#)":
        return False
    cursor.advance(len(word))
    return True


def _parse_command(cursor: Cursor) -> Command:
    if _keyword(cursor, "if"):
        return If(_parse_condition(cursor, "if"))
    if _keyword(cursor, "while"):
        return While(_parse_condition(cursor, "while"))
    if _keyword(cursor, "for"):
        return _parse_for(cursor)
    if _keyword(cursor, "else"):
        save = cursor.pos
        skip_spaces(cursor)
        if _keyword(cursor, "if"):
            return Else(_parse_condition(cursor, "else if"))
        cursor.pos = save
        return Else()
    if _keyword(cursor, "end"):
        return End()
    return _parse_pipeline(cursor)


def _parse_condition(cursor: Cursor, keyword: str) -> Pipeline:
    if not skip_spaces(cursor) or cursor.at_end():
        raise GrammarError(
            f"missing condition after '{keyword}'",
            offset=cursor.pos,
            expected="a pipeline",
            found=cursor.describe(),
        )
    return _parse_pipeline(cursor)


def _parse_for(cursor: Cursor) -> For:
    skip_spaces(cursor)
    m = _IDENT.match(cursor.text, cursor.pos)
    if m is None:
        raise GrammarError(
            "bad for loop variable",
            offset=cursor.pos,
            expected="an identifier",
            found=cursor.describe(),
        )
    cursor.pos = m.end()
    if not skip_spaces(cursor) or not _keyword(cursor, "in"):
        raise GrammarError(
            "bad for loop",
            offset=cursor.pos,
            expected="'in'",
            found=cursor.describe(),
        )
    items: list[Word] = []
    while skip_spaces(cursor):
        word = _parse_word(cursor)
        if word is None:
            break
        items.append(word)
    return For(m.group(), tuple(items))


def _parse_pipeline(cursor: Cursor) -> Pipeline:
    start = cursor.pos
    stages = [_parse_stage(cursor)]
    while True:
        end = cursor.pos
        skip_spaces(cursor)
        if cursor.peek() != "|":
            cursor.pos = end
            break
        cursor.advance()
        skip_spaces(cursor)
        stages.append(_parse_stage(cursor))
    return Pipeline(tuple(stages), cursor.text[start:cursor.pos])


def _parse_stage(cursor: Cursor) -> Stage:
    if cursor.peek() == "(":
        return _parse_subshell(cursor)
    return _parse_exe(cursor)


def _parse_subshell(cursor: Cursor) -> Subshell:
    start = cursor.pos
    cursor.advance()
    commands = _parse_command_list(cursor, closer=")")
    if cursor.peek() != ")":
        raise GrammarError(
            "unterminated subshell",
            offset=start,
            expected="')'",
            found=cursor.describe(),
        )
    cursor.advance()
    redirects: list[Redirect] = []
    while True:
        end = cursor.pos
        skip_spaces(cursor)
        redirect = _parse_redirect(cursor)
        if redirect is None:
            cursor.pos = end
            break
        redirects.append(redirect)
    return Subshell(assemble(commands), tuple(redirects))


def _parse_exe(cursor: Cursor) -> Exe:
    items: list[Word | Redirect] = []
    end = cursor.pos
    while True:
        # a redirect operator may follow a word directly: foo>out
        if items and cursor.peek() not in ("<", ">"):
            if not skip_blank(cursor):
                break
        item = _parse_redirect(cursor) or _parse_word(cursor)
        if item is None:
            break
        items.append(item)
        end = cursor.pos
    cursor.pos = end
    if not items:
        raise GrammarError(
            f"unexpected {cursor.describe()}",
            offset=cursor.pos,
            expected="a command",
            found=cursor.describe(),
        )
    return Exe(tuple(items))


def _parse_redirect(cursor: Cursor) -> Optional[Redirect]:
    m = _REDIRECT.match(cursor.text, cursor.pos)
    if m is None:
        return None
    source, op = m.groups()
    cursor.pos = m.end()
    mode = RedirectMode(op)
    if source is None:
        fd = STDIN if mode is RedirectMode.READ else STDOUT
    elif source in _SOURCES:
        fd = _SOURCES[source]
    else:
        fd = int(source)
    skip_spaces(cursor)
    target = _parse_word(cursor)
    if target is None:
        raise GrammarError(
            f"missing target after '{op}'",
            offset=cursor.pos,
            expected="a word",
            found=cursor.describe(),
        )
    return Redirect(fd, mode, target)


# --- Words ---

def _parse_word(cursor: Cursor, in_alternative: bool = False) -> Optional[Word]:
    stops = ALTERNATIVE_STOPS if in_alternative else BAREWORD_STOPS
    parts: list[WordPart] = []
    while True:
        ch = cursor.peek()
        if ch == "{" and not in_alternative:
            parts.append(_parse_alternation(cursor))
            continue
        if ch == "$":
            parts.append(_parse_dollar(cursor, quoted=False))
            continue
        match classify(cursor, stops):
            case RunKind.BAREWORD:
                parts.append(Literal(lex_bareword(cursor, stops)))
            case RunKind.SINGLE_QUOTED:
                parts.append(Literal(lex_single_quoted(cursor)))
            case RunKind.DOUBLE_QUOTED:
                parts.extend(_parse_double_quoted(cursor))
            case None:
                break
    return Word(tuple(parts)) if parts else None


def _parse_alternation(cursor: Cursor) -> WordPart:
    start = cursor.pos
    if cursor.startswith("{}"):
        cursor.advance(2)
        return Literal("{}")
    cursor.advance()
    alternatives: list[Word] = []
    while True:
        word = _parse_word(cursor, in_alternative=True)
        alternatives.append(word if word is not None else Word((Literal(""),)))
        if cursor.peek() == ",":
            cursor.advance()
            continue
        if cursor.peek() == "}":
            cursor.advance()
            return Alternation(tuple(alternatives))
        if cursor.at_end():
            raise LexError(
                "unterminated alternation",
                offset=start,
                expected="'}'",
                found="end of input",
            )
        raise GrammarError(
            f"unexpected {cursor.describe()} in alternation",
            offset=cursor.pos,
            expected="',' or '}'",
            found=cursor.describe(),
        )


def _parse_dollar(cursor: Cursor, quoted: bool) -> WordPart:
    start = cursor.pos
    if cursor.startswith("$("):
        cursor.advance(2)
        commands = _parse_command_list(cursor, closer=")")
        if cursor.peek() != ")":
            raise LexError(
                "unterminated command substitution",
                offset=start,
                expected="')'",
                found=cursor.describe(),
            )
        cursor.advance()
        return CommandSubstitution(assemble(commands), quoted)
    if cursor.startswith("${"):
        close = cursor.text.find("}", start + 2)
        # inside double quotes the reference may not run past the closing quote
        quote = cursor.text.find('"', start + 2) if quoted else -1
        if quote != -1 and (close == -1 or quote < close):
            raise LexError(
                "unterminated variable reference",
                offset=start,
                expected="'}'",
                found="'\"'",
            )
        if close == -1:
            raise LexError(
                "unterminated variable reference",
                offset=start,
                expected="'}'",
                found="end of input",
            )
        name = cursor.text[start + 2:close]
        if not name:
            raise GrammarError(
                "empty variable name",
                offset=start,
                expected="a variable name",
                found="'}'",
            )
        cursor.pos = close + 1
        return Variable(name, quoted)
    following = cursor.peek(1)
    if following and following in _SPECIAL_VARS:
        cursor.advance(2)
        return Variable(following, quoted)
    m = _IDENT.match(cursor.text, start + 1)
    if m is not None:
        cursor.pos = m.end()
        return Variable(m.group(), quoted)
    # a lone '$' stands for itself
    cursor.advance()
    return Literal("$")


def _parse_double_quoted(cursor: Cursor) -> list[WordPart]:
    start = cursor.pos
    cursor.advance()
    parts: list[WordPart] = []
    while True:
        chunk = lex_double_quoted_chunk(cursor, start)
        if chunk:
            parts.append(Literal(chunk))
        if cursor.peek() == '"':
            cursor.advance()
            break
        parts.append(_parse_dollar(cursor, quoted=True))
    return parts or [Literal("")]
