#!/usr/bin/env python3

# Entry of nbsh

from __future__ import annotations

import argparse
import sys
from typing import Iterable, Optional, Sequence

try:
    import readline  # type: ignore
except ImportError:  # pragma: no cover - readline missing on some platforms
    readline = None

READLINE_ACTIVE = bool(readline)

PROMPT = "nbsh> "
CONTINUATION_PROMPT = "... "

from blocks import BlockAssembler, Complete, Error, Pending  # local modules in the same folder
from command import ShellExit
from errors import ExecError, ExpansionError, ParseError
from ops import Executor, ShellSession
from syntax import CommandTree

PARSE_ERROR_STATUS = 2
INTERRUPT_STATUS = 130


def _report(message: str) -> None:
    sys.stderr.write(f"nbsh: {message}\n")
    sys.stderr.flush()


def setup_readline() -> None:
    if not READLINE_ACTIVE:
        return
    try:
        readline.parse_and_bind("set editing-mode emacs")
        readline.parse_and_bind("Control-l: clear-screen")
    except Exception:
        pass


def _set_indent_prefill(indent: str) -> None:
    if not READLINE_ACTIVE or not sys.stdin.isatty():
        return

    def hook() -> None:
        try:
            readline.insert_text(indent)
            readline.redisplay()
        finally:
            readline.set_pre_input_hook(None)

    readline.set_pre_input_hook(hook)


def prompts(session: ShellSession) -> tuple[str, str]:
    """Primary and continuation prompt, overridable from the environment."""
    return (
        session.env.get("NBSH_PROMPT", PROMPT),
        session.env.get("NBSH_CONTINUATION_PROMPT", CONTINUATION_PROMPT),
    )


def run_trees(trees: Sequence[CommandTree], executor: Executor) -> int:
    """Execute completed trees, reporting expansion and execution failures."""
    session = executor.session
    if not trees:
        return session.last_status
    try:
        return executor.execute(trees)
    except ExpansionError as e:
        _report(str(e))
        session.last_status = 1
    except ExecError as e:
        _report(str(e))
        session.last_status = e.status
    except KeyboardInterrupt:
        print()
        session.last_status = INTERRUPT_STATUS
    return session.last_status


def run_source(lines: Iterable[str], executor: Executor) -> int:
    """Run a script or ``-c`` string line by line; stop at the first parse error."""
    assembler = BlockAssembler()
    session = executor.session
    for line in lines:
        result = assembler.feed_line(line.rstrip("\n"))
        match result:
            case Error(error):
                _report(error.format(line.rstrip("\n")))
                return PARSE_ERROR_STATUS
            case Complete(trees) | Pending(trees):
                run_trees(trees, executor)
            case _:
                raise TypeError(f"unknown feed result: {result!r}")
    try:
        assembler.finish()
    except ParseError as e:
        _report(str(e))
        return PARSE_ERROR_STATUS
    return session.last_status


def repl(session: ShellSession) -> int:
    executor = Executor(session)
    assembler = BlockAssembler()

    setup_readline()
    readline_enabled = READLINE_ACTIVE and sys.stdin.isatty()

    while True:
        prompt, continuation = prompts(session)
        try:
            if assembler.pending:
                indent = session.get_indent_unit() * assembler.depth
                if readline_enabled:
                    if indent:
                        _set_indent_prefill(indent)
                    else:
                        readline.set_pre_input_hook(None)  # type: ignore[attr-defined]
                    prompt = continuation
                else:
                    prompt = continuation + indent
            elif readline_enabled:
                readline.set_pre_input_hook(None)  # type: ignore[attr-defined]
            line = input(prompt)
        except EOFError:
            # Ctrl-D -> exit
            print()
            break
        except KeyboardInterrupt:
            # Ctrl-C at a prompt abandons any open block
            print()
            assembler.reset()
            session.last_status = INTERRUPT_STATUS
            continue

        result = assembler.feed_line(line)
        match result:
            case Error(error):
                _report(error.format(line))
                session.last_status = PARSE_ERROR_STATUS
            case Complete(trees) | Pending(trees):
                try:
                    run_trees(trees, executor)
                except ShellExit as e:
                    return e.status
            case _:
                raise TypeError(f"unknown feed result: {result!r}")

    return session.last_status


def parse_args(args=None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="nbsh - an interactive shell with multi-line blocks",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  nbsh                          # interactive prompt
  nbsh -c 'echo {a,b}{1,2}'     # run one command string
  nbsh script.nbsh one two      # run a script with $1 and $2 set

Environment:
  NBSH_PROMPT, NBSH_CONTINUATION_PROMPT, NBSH_INDENT
"""
    )

    parser.add_argument(
        "-c",
        dest="command",
        metavar="COMMAND",
        help="Run COMMAND and exit"
    )
    parser.add_argument(
        "script",
        nargs="?",
        help="Script file to run instead of reading from the terminal"
    )
    parser.add_argument(
        "args",
        nargs=argparse.REMAINDER,
        help="Positional arguments available as $1, $2, ... and $*"
    )

    return parser.parse_args(args)


def run(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    if args.command is not None:
        # with -c the first operand is $1 rather than a script
        positional = ([args.script] if args.script is not None else []) + list(args.args)
        session = ShellSession(args=positional)
        try:
            return run_source(args.command.splitlines(), Executor(session))
        except ShellExit as e:
            return e.status
    if args.script is not None:
        session = ShellSession(args=args.args, name=args.script)
        try:
            with open(args.script, encoding="utf-8") as f:
                return run_source(f, Executor(session))
        except OSError as e:
            _report(f"{args.script}: {e.strerror}")
            return 127
        except ShellExit as e:
            return e.status
    return repl(ShellSession(args=args.args))


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":
    main()
