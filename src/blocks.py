"""Incremental assembly of control-flow blocks.

Lines arrive one at a time from the prompt, so an ``if`` typed on one line is
closed by an ``end`` typed several lines later. ``BlockAssembler`` keeps an
explicit stack of open frames between ``feed`` calls and folds the flat
stream of commands into ``Leaf``/``Block`` trees.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional

from errors import BlockStructureError, ParseError
from syntax import (
    Block,
    BlockKind,
    Command,
    CommandList,
    CommandTree,
    Else,
    End,
    For,
    If,
    Leaf,
    Pipeline,
    While,
)


@dataclass(frozen=True)
class Complete:
    """No block is open any more; ``trees`` are ready to run."""
    trees: tuple[CommandTree, ...]


@dataclass(frozen=True)
class Pending:
    """A block is still open and more input is needed.

    ``trees`` holds statements the same line finished before the block that
    is still open was started (``echo a; if true``).
    """
    trees: tuple[CommandTree, ...] = ()


@dataclass(frozen=True)
class Error:
    error: ParseError


BlockFeedResult = Complete | Pending | Error


@dataclass
class _Frame:
    kind: BlockKind
    header: If | While | For
    body: list[CommandTree] = field(default_factory=list)
    else_body: Optional[list[CommandTree]] = None
    # opened by ``else if``; closed by the same ``end`` as its parent
    chained: bool = False

    @property
    def branch(self) -> list[CommandTree]:
        return self.body if self.else_body is None else self.else_body

    def copy(self) -> _Frame:
        return _Frame(
            self.kind,
            self.header,
            list(self.body),
            None if self.else_body is None else list(self.else_body),
            self.chained,
        )

    def seal(self) -> Block:
        return Block(
            self.kind,
            self.header,
            tuple(self.body),
            None if self.else_body is None else tuple(self.else_body),
        )


class BlockAssembler:
    """Folds ``if``/``while``/``for``/``else``/``end`` markers across lines.

    One instance per interactive session (or per script being parsed). The
    stack is empty between top-level statements.
    """

    def __init__(self) -> None:
        self._stack: list[_Frame] = []

    @property
    def depth(self) -> int:
        """Number of blocks currently open."""
        return len(self._stack)

    @property
    def pending(self) -> bool:
        return bool(self._stack)

    def reset(self) -> None:
        """Drop every open block (e.g. after Ctrl-C at a continuation prompt)."""
        self._stack = []

    def feed(self, line: CommandList | Iterable[Command]) -> BlockFeedResult:
        commands = line.commands if isinstance(line, CommandList) else tuple(line)
        saved = [frame.copy() for frame in self._stack]
        completed: list[CommandTree] = []
        try:
            for command in commands:
                tree = self._fold(command)
                if tree is not None:
                    completed.append(tree)
        except BlockStructureError as e:
            # a rejected line leaves no trace
            self._stack = saved
            return Error(e)
        if self._stack:
            return Pending(tuple(completed))
        return Complete(tuple(completed))

    def feed_line(self, text: str) -> BlockFeedResult:
        """Parse one physical line and feed it."""
        from grammar import parse_line

        try:
            line = parse_line(text)
        except ParseError as e:
            return Error(e)
        return self.feed(line)

    def finish(self) -> None:
        """Signal end of input; any block still open is an error."""
        if not self._stack:
            return
        kind = self._stack[0].kind
        self._stack = []
        raise BlockStructureError(
            f"unclosed {kind.value} block",
            expected="end",
            found="end of input",
        )

    # ------------------------------------------------------------------
    def _fold(self, command: Command) -> Optional[CommandTree]:
        match command:
            case If():
                self._stack.append(_Frame(BlockKind.IF, command))
                return None
            case While():
                self._stack.append(_Frame(BlockKind.WHILE, command))
                return None
            case For():
                self._stack.append(_Frame(BlockKind.FOR, command))
                return None
            case Else(condition):
                if not self._stack:
                    raise BlockStructureError(
                        "else without an open block",
                        expected="if, while or for",
                        found="else",
                    )
                top = self._stack[-1]
                if top.else_body is not None:
                    raise BlockStructureError(
                        f"{top.kind.value} block already has an else clause",
                        expected="end",
                        found="else",
                    )
                top.else_body = []
                if condition is not None:
                    self._stack.append(_Frame(BlockKind.IF, If(condition), chained=True))
                return None
            case End():
                if not self._stack:
                    raise BlockStructureError(
                        "end without an open block",
                        expected="if, while or for",
                        found="end",
                    )
                frame = self._stack.pop()
                block = frame.seal()
                while frame.chained:
                    frame = self._stack.pop()
                    frame.branch.append(block)
                    block = frame.seal()
                return self._attach(block)
            case Pipeline():
                return self._attach(Leaf(command))
            case _:
                raise TypeError(f"unknown command: {command!r}")

    def _attach(self, tree: CommandTree) -> Optional[CommandTree]:
        if self._stack:
            self._stack[-1].branch.append(tree)
            return None
        return tree


def assemble(line: CommandList | Iterable[Command]) -> tuple[CommandTree, ...]:
    """Fold a self-contained command list (subshell or substitution body)."""
    assembler = BlockAssembler()
    result = assembler.feed(line)
    if isinstance(result, Error):
        raise result.error
    assembler.finish()
    return result.trees
