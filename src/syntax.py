"""Syntax tree for nbsh command lines.

The parser produces these immutable values fresh for every line; the block
assembler folds control markers into ``Block`` trees; the executor walks the
trees and asks the expansion engine for argv.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional

# --- Words ---

@dataclass(frozen=True)
class Literal:
    text: str

@dataclass(frozen=True)
class Variable:
    """``$name``, ``${name}`` or a special (``?``, ``$``, ``*``, ``0``-``9``)."""
    name: str
    quoted: bool = False

@dataclass(frozen=True)
class CommandSubstitution:
    """``$(...)``; ``body`` is the folded command trees of the interior."""
    body: tuple[CommandTree, ...]
    quoted: bool = False

@dataclass(frozen=True)
class Alternation:
    """``{a,b,c}``; none of the alternatives contains another alternation."""
    alternatives: tuple[Word, ...]

WordPart = Literal | Variable | CommandSubstitution | Alternation

@dataclass(frozen=True)
class Word:
    parts: tuple[WordPart, ...]

    @property
    def has_alternation(self) -> bool:
        return any(isinstance(p, Alternation) for p in self.parts)

# --- Commands ---

STDIN, STDOUT, STDERR = 0, 1, 2

class RedirectMode(Enum):
    TRUNCATE = ">"
    APPEND = ">>"
    READ = "<"

@dataclass(frozen=True)
class Redirect:
    fd: int
    mode: RedirectMode
    target: Word

    @property
    def dup_target(self) -> Optional[int]:
        """The descriptor number for ``N>&M`` style targets, else None."""
        if len(self.target.parts) != 1:
            return None
        part = self.target.parts[0]
        if isinstance(part, Literal) and part.text.startswith("&") and part.text[1:].isdigit():
            return int(part.text[1:])
        return None

@dataclass(frozen=True)
class Exe:
    """A simple command: words and redirects in the order they were written."""
    items: tuple[Word | Redirect, ...]

    @property
    def words(self) -> tuple[Word, ...]:
        return tuple(i for i in self.items if isinstance(i, Word))

    @property
    def redirects(self) -> tuple[Redirect, ...]:
        return tuple(i for i in self.items if isinstance(i, Redirect))

@dataclass(frozen=True)
class Subshell:
    body: tuple[CommandTree, ...]
    redirects: tuple[Redirect, ...] = ()

Stage = Exe | Subshell

@dataclass(frozen=True)
class Pipeline:
    stages: tuple[Stage, ...]
    source: str = field(default="", compare=False)

# --- Control markers ---

@dataclass(frozen=True)
class If:
    condition: Pipeline

@dataclass(frozen=True)
class While:
    condition: Pipeline

@dataclass(frozen=True)
class For:
    var: str
    items: tuple[Word, ...]

@dataclass(frozen=True)
class Else:
    condition: Optional[Pipeline] = None

@dataclass(frozen=True)
class End:
    pass

ControlMarker = If | While | For | Else | End
Command = Pipeline | ControlMarker

@dataclass(frozen=True)
class CommandList:
    """Everything parsed from one physical line, split on ``;``."""
    commands: tuple[Command, ...]
    source: str = field(default="", compare=False)

# --- Assembled trees ---

class BlockKind(Enum):
    IF = "if"
    WHILE = "while"
    FOR = "for"

@dataclass(frozen=True)
class Leaf:
    pipeline: Pipeline

@dataclass(frozen=True)
class Block:
    """A closed ``if``/``while``/``for`` construct.

    ``header`` is the opening marker (``If``, ``While`` or ``For``) and carries
    the condition or iterable. ``else_body`` is None when no ``else`` was
    written; an ``else if`` chain appears as a single nested ``if`` Block.
    """
    kind: BlockKind
    header: If | While | For
    body: tuple[CommandTree, ...]
    else_body: Optional[tuple[CommandTree, ...]] = None

CommandTree = Leaf | Block

# --- Formatting (debug / test aid) ---

def format_word(word: Word) -> str:
    out: list[str] = []
    for part in word.parts:
        match part:
            case Literal(text):
                out.append(repr(text))
            case Variable(name, quoted):
                out.append(f'"${{{name}}}"' if quoted else f"${{{name}}}")
            case CommandSubstitution(body, quoted):
                inner = "; ".join(format_tree(t).replace("\n", " ") for t in body)
                out.append(f'"$({inner})"' if quoted else f"$({inner})")
            case Alternation(alternatives):
                out.append("{" + ",".join(format_word(a) for a in alternatives) + "}")
            case _:
                raise TypeError(f"unknown word part: {part!r}")
    return "".join(out)

def format_pipeline(pipeline: Pipeline) -> str:
    stages: list[str] = []
    for stage in pipeline.stages:
        match stage:
            case Exe(items):
                toks = []
                for item in items:
                    if isinstance(item, Redirect):
                        toks.append(f"{item.fd}{item.mode.value}{format_word(item.target)}")
                    else:
                        toks.append(format_word(item))
                stages.append(" ".join(toks))
            case Subshell(body, redirects):
                inner = "; ".join(format_tree(t).replace("\n", " ") for t in body)
                redirs = "".join(f" {r.fd}{r.mode.value}{format_word(r.target)}" for r in redirects)
                stages.append(f"({inner}){redirs}")
            case _:
                raise TypeError(f"unknown pipeline stage: {stage!r}")
    return " | ".join(stages)

def format_tree(tree: CommandTree, indent: str = "  ") -> str:
    """Render an assembled tree as indented text, one construct per line."""
    return "\n".join(_format_lines(tree, 0, indent))

def _format_lines(tree: CommandTree, depth: int, indent: str) -> Iterable[str]:
    pad = indent * depth
    match tree:
        case Leaf(pipeline):
            yield pad + "CMD  " + format_pipeline(pipeline)
        case Block(kind, header, body, else_body):
            match header:
                case For(var, items):
                    head = f"for {var} in " + " ".join(format_word(w) for w in items)
                case If(cond) | While(cond):
                    head = f"{kind.value} " + format_pipeline(cond)
                case _:
                    raise TypeError(f"unknown block header: {header!r}")
            yield pad + head
            for child in body:
                yield from _format_lines(child, depth + 1, indent)
            if else_body is not None:
                yield pad + "else"
                for child in else_body:
                    yield from _format_lines(child, depth + 1, indent)
            yield pad + "end"
        case _:
            raise TypeError(f"unknown command tree: {tree!r}")
