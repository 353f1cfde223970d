# module for builtin commands

from __future__ import annotations

import os
from typing import TYPE_CHECKING, Callable

if TYPE_CHECKING:
    from ops import Executor, Io


class ShellExit(Exception):
    """Raised by ``exit``; unwinds to the REPL, script runner or enclosing subshell."""

    def __init__(self, status: int) -> None:
        super().__init__(status)
        self.status = status


Builtin = Callable[[list[str], "Executor", "Io"], int]


def _write(fd: int, text: str) -> None:
    os.write(fd, text.encode("utf-8", errors="replace"))


def _fail(io: Io, name: str, message: str) -> int:
    _write(io.stderr, f"{name}: {message}\n")
    return 1


def cd(args: list[str], executor: Executor, io: Io) -> int:
    session = executor.session
    if len(args) > 2:
        return _fail(io, "cd", "too many arguments")
    if len(args) == 1:
        target = session.get("HOME")
        if not target:
            return _fail(io, "cd", "could not find home directory")
    elif args[1] == "-":
        target = session.prev_pwd
    elif args[1] == "":
        target = "."
    else:
        target = os.path.expanduser(args[1])
    path = os.path.normpath(os.path.join(session.cwd, target))
    if not os.path.isdir(path):
        return _fail(io, "cd", f"{args[1] if len(args) > 1 else target}: no such directory")
    if not os.access(path, os.X_OK):
        return _fail(io, "cd", f"{path}: permission denied")
    session.prev_pwd = session.cwd
    session.cwd = path
    session.set_var("OLDPWD", session.prev_pwd)
    session.set_var("PWD", path)
    return 0


def set_(args: list[str], executor: Executor, io: Io) -> int:
    if len(args) != 3:
        return _fail(io, "set", "usage: set key value")
    executor.session.set_var(args[1], args[2])
    return 0


def unset(args: list[str], executor: Executor, io: Io) -> int:
    if len(args) != 2:
        return _fail(io, "unset", "usage: unset key")
    executor.session.unset_var(args[1])
    return 0


def echo(args: list[str], executor: Executor, io: Io) -> int:
    _write(io.stdout, " ".join(args[1:]) + "\n")
    return 0


def read(args: list[str], executor: Executor, io: Io) -> int:
    if len(args) != 2:
        return _fail(io, "read", "usage: read var")
    # byte at a time so nothing past the newline is consumed
    data = bytearray()
    while True:
        ch = os.read(io.stdin, 1)
        if not ch or ch == b"\n":
            break
        data += ch
    if not data and not ch:
        return 1
    executor.session.set_var(args[1], data.decode("utf-8", errors="replace"))
    return 0


def and_(args: list[str], executor: Executor, io: Io) -> int:
    status = executor.session.last_status
    if status != 0:
        return status
    return executor.run_argv(args[1:], io)


def or_(args: list[str], executor: Executor, io: Io) -> int:
    status = executor.session.last_status
    if status == 0:
        return status
    return executor.run_argv(args[1:], io)


def command(args: list[str], executor: Executor, io: Io) -> int:
    return executor.run_argv(args[1:], io, allow_builtins=False)


def builtin(args: list[str], executor: Executor, io: Io) -> int:
    if len(args) < 2:
        return 0
    if args[1] not in builtin_commands:
        return _fail(io, "builtin", f"no such builtin: {args[1]}")
    return builtin_commands[args[1]](args[1:], executor, io)


def true(args: list[str], executor: Executor, io: Io) -> int:
    return 0


def false(args: list[str], executor: Executor, io: Io) -> int:
    return 1


def exit_(args: list[str], executor: Executor, io: Io) -> int:
    if len(args) > 2:
        return _fail(io, "exit", "too many arguments")
    if len(args) == 1:
        raise ShellExit(executor.session.last_status)
    try:
        status = int(args[1])
    except ValueError:
        return _fail(io, "exit", f"{args[1]}: numeric argument required")
    raise ShellExit(status & 0xFF)


builtin_commands: dict[str, Builtin] = {
    "cd": cd,
    "set": set_,
    "unset": unset,
    "echo": echo,
    "read": read,
    "and": and_,
    "or": or_,
    "command": command,
    "builtin": builtin,
    "true": true,
    "false": false,
    "exit": exit_,
}
