"""Turn parsed words into argument strings.

Resolution needs two capabilities from the caller: a ``VariableLookup`` for
``$name`` and the specials, and a ``SubstitutionRunner`` that runs the body of
a ``$(...)`` to completion and hands back its standard output.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass
from typing import Iterable, Optional, Protocol, Sequence

from errors import ExecError, ExpansionError
from syntax import (
    Alternation,
    CommandSubstitution,
    CommandTree,
    Literal,
    Variable,
    Word,
    WordPart,
)


@dataclass(frozen=True)
class CapturedOutput:
    stdout: bytes
    status: int = 0


class VariableLookup(Protocol):
    def get(self, name: str) -> Optional[str]: ...

    def status(self) -> int: ...

    def pid(self) -> int: ...

    def args(self) -> Sequence[str]: ...


class SubstitutionRunner(Protocol):
    def run(self, body: tuple[CommandTree, ...]) -> CapturedOutput:
        """Run ``body`` to completion; raise ``ExecError`` if it cannot run."""
        ...


def resolve(
    word: Word,
    lookup: VariableLookup,
    runner: SubstitutionRunner,
    *,
    strict: bool = False,
) -> list[str]:
    """Expand one word into zero or more argument strings.

    With ``strict`` a substitution exiting nonzero is an error instead of
    contributing whatever it printed.
    """
    return _Resolver(lookup, runner, strict).word(word)


def resolve_words(
    words: Iterable[Word],
    lookup: VariableLookup,
    runner: SubstitutionRunner,
    *,
    strict: bool = False,
) -> list[str]:
    """Expand a sequence of words into one flat argv."""
    resolver = _Resolver(lookup, runner, strict)
    argv: list[str] = []
    for word in words:
        argv.extend(resolver.word(word))
    return argv


def resolve_single(
    word: Word,
    lookup: VariableLookup,
    runner: SubstitutionRunner,
) -> str:
    """Expand a word that must name exactly one thing (a redirect target)."""
    values = resolve(word, lookup, runner)
    if len(values) != 1:
        raise ExpansionError(f"ambiguous redirect: expands to {len(values)} words")
    return values[0]


def alternatives(word: Word) -> list[tuple[WordPart, ...]]:
    """The alternation-free part sequences a word stands for, in output order.

    ``a{1,2}b{x,y}`` gives ``a1bx a1by a2bx a2by``: the leftmost alternation
    varies slowest.
    """
    options: list[list[tuple[WordPart, ...]]] = []
    for part in word.parts:
        if isinstance(part, Alternation):
            options.append([alt.parts for alt in part.alternatives])
        else:
            options.append([(part,)])
    return [tuple(itertools.chain.from_iterable(combo)) for combo in itertools.product(*options)]


class _Resolver:
    def __init__(self, lookup: VariableLookup, runner: SubstitutionRunner, strict: bool) -> None:
        self._lookup = lookup
        self._runner = runner
        self._strict = strict
        # one run per substitution, however many alternatives repeat it
        self._captured: dict[int, str] = {}

    def word(self, word: Word) -> list[str]:
        out: list[str] = []
        for parts in alternatives(word):
            out.extend(self._fields(parts))
        return out

    def _fields(self, parts: tuple[WordPart, ...]) -> list[str]:
        fields = [""]
        solid = False
        for part in parts:
            match part:
                case Literal(text):
                    fields[-1] += text
                    solid = True
                case Variable(name, quoted):
                    value = self._variable(name, quoted)
                    if isinstance(value, str):
                        fields[-1] += value
                        solid = True
                    else:
                        solid = _splice(fields, value) or solid
                case CommandSubstitution(_, quoted):
                    text = self._substitute(part)
                    if quoted:
                        fields[-1] += text
                        solid = True
                    else:
                        solid = _splice(fields, text.split()) or solid
                case Alternation():
                    raise TypeError("alternation left in a flattened word")
                case _:
                    raise TypeError(f"unknown word part: {part!r}")
        if not solid and fields == [""]:
            # an unquoted empty substitution contributes no argument at all
            return []
        return fields

    def _variable(self, name: str, quoted: bool) -> str | list[str]:
        lookup = self._lookup
        if name == "?":
            return str(lookup.status())
        if name == "$":
            return str(lookup.pid())
        if name == "*":
            args = list(lookup.args())
            return " ".join(args) if quoted else args
        if name.isdigit() and name != "0":
            args = lookup.args()
            index = int(name) - 1
            return args[index] if index < len(args) else ""
        value = lookup.get(name)
        return "" if value is None else value

    def _substitute(self, part: CommandSubstitution) -> str:
        key = id(part)
        if key in self._captured:
            return self._captured[key]
        try:
            captured = self._runner.run(part.body)
        except ExecError as e:
            raise ExpansionError(f"command substitution failed: {e}") from e
        if self._strict and captured.status != 0:
            raise ExpansionError(f"command substitution exited with status {captured.status}")
        text = captured.stdout.decode("utf-8", errors="replace").rstrip("\n")
        self._captured[key] = text
        return text


def _splice(fields: list[str], pieces: list[str]) -> bool:
    # first piece joins the text before it, the rest start new fields
    if not pieces:
        return False
    fields[-1] += pieces[0]
    fields.extend(pieces[1:])
    return True
