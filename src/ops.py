from __future__ import annotations

import os
import subprocess
import sys
import tempfile
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from command import ShellExit, builtin_commands
from errors import ExecError
from expand import CapturedOutput, resolve_single, resolve_words
from syntax import (
    Block,
    BlockKind,
    CommandTree,
    Exe,
    For,
    If,
    Leaf,
    Pipeline,
    Redirect,
    RedirectMode,
    Stage,
    Subshell,
    While,
)


class ShellSession:
    """Holds session-wide shell context: variables, cwd, last exit status.

    Also the ``VariableLookup`` the expansion engine resolves ``$name`` and
    the specials against.
    """

    def __init__(
        self,
        inherit_env: bool = True,
        args: Optional[Sequence[str]] = None,
        name: str = "nbsh",
    ) -> None:
        # String-only environment; it is also the variable table
        self.env: Dict[str, str] = dict(os.environ) if inherit_env else {}
        self.positional: List[str] = list(args or [])
        self.name: str = name
        self.cwd: str = os.getcwd()
        self.prev_pwd: str = self.cwd
        self.last_status: int = 0
        self.default_indent_unit: str = "    "

    # --- VariableLookup ---
    def get(self, name: str) -> Optional[str]:
        if name == "0":
            return self.name
        return self.env.get(name)

    def status(self) -> int:
        return self.last_status

    def pid(self) -> int:
        return os.getpid()

    def args(self) -> Sequence[str]:
        return self.positional

    # --- Variable helpers ---
    def get_env(self) -> Dict[str, str]:
        merged = dict(self.env)
        merged["PWD"] = self.cwd
        return merged

    def set_var(self, name: str, value: str) -> None:
        self.env[name] = value

    def unset_var(self, name: str) -> None:
        self.env.pop(name, None)

    def get_indent_unit(self) -> str:
        env_indent = self.env.get("NBSH_INDENT")
        if env_indent:
            return env_indent
        return self.default_indent_unit

    def copy(self) -> ShellSession:
        """An independent session for a subshell or command substitution."""
        clone = ShellSession(inherit_env=False, args=self.positional, name=self.name)
        clone.env = dict(self.env)
        clone.cwd = self.cwd
        clone.prev_pwd = self.prev_pwd
        clone.last_status = self.last_status
        clone.default_indent_unit = self.default_indent_unit
        return clone


@dataclass
class Io:
    """File descriptors a command runs with.

    ``stdout`` may also hold ``subprocess.PIPE`` while a pipeline is being
    wired, and ``stderr`` ``subprocess.STDOUT`` after ``2>&1`` onto a pipe.
    """

    stdin: int = 0
    stdout: int = 1
    stderr: int = 2

    def get(self, fd: int) -> int:
        if fd == 0:
            return self.stdin
        if fd == 1:
            return self.stdout
        if fd == 2:
            return self.stderr
        raise ExecError(f"unsupported file descriptor: {fd}")

    def set(self, fd: int, value: int) -> None:
        if fd == 0:
            self.stdin = value
        elif fd == 1:
            self.stdout = value
        elif fd == 2:
            self.stderr = value
        else:
            raise ExecError(f"unsupported file descriptor: {fd}")


_OPEN_MODES = {
    RedirectMode.TRUNCATE: "wb",
    RedirectMode.APPEND: "ab",
    RedirectMode.READ: "rb",
}


def exit_status(returncode: int) -> int:
    """Map a Popen return code to a shell status (signal N -> 128+N)."""
    if returncode < 0:
        return 128 - returncode
    return returncode


def complain(io: Io, message: str) -> None:
    stream = io.stderr if io.stderr >= 0 else 2
    try:
        os.write(stream, f"nbsh: {message}\n".encode("utf-8", errors="replace"))
    except OSError:
        sys.stderr.write(f"nbsh: {message}\n")
        sys.stderr.flush()


def _feed(executor, stage, argv, io, results, idx, failures, owned) -> None:
    """Thread body for an in-process stage whose output a later stage reads."""
    try:
        results[idx] = executor._run_stage(stage, argv, io)
    except BrokenPipeError:
        # the reader went away
        results[idx] = 1
    except ShellExit as e:
        results[idx] = e.status
    except KeyboardInterrupt:
        results[idx] = 130
    except ExecError as e:
        complain(io, str(e))
        results[idx] = e.status
    except Exception as e:
        results[idx] = 1
        failures.append(e)
    finally:
        for f in owned:
            if f is not None:
                f.close()


class Executor:
    """Runs assembled command trees against a ShellSession.

    Lifecycle:
    - Create with a session (and optionally the Io to run under).
    - Call execute() with the trees the block assembler completed.
    - The session's last_status holds the result afterwards.

    Notes:
    - Consecutive external stages are connected with OS pipes.
    - Builtins and subshells run in-process. One that feeds a later stage
      runs on a thread writing into an OS pipe, and a broken pipe ends it.
    - In a pipeline of several stages each stage runs against a copy of the
      session, so `cd / | true` leaves the shell where it was.
    - The executor is also the SubstitutionRunner for $(...): run() executes
      the body in a copy of the session and captures stdout.
    """

    def __init__(
        self,
        session: ShellSession,
        io: Optional[Io] = None,
        feeds_pipe: bool = False,
        stop: tuple[threading.Event, ...] = (),
    ) -> None:
        self.session = session
        self.io = io or Io()
        # writing into a pipe that a later stage reads; EPIPE ends the stage
        self.feeds_pipe = feeds_pipe
        # set when an enclosing pipeline is torn down
        self.stop = stop

    def execute(self, trees: Sequence[CommandTree], io: Optional[Io] = None) -> int:
        io = io or self.io
        for tree in trees:
            self._check_stopped()
            self.run_tree(tree, io)
        return self.session.last_status

    # --- SubstitutionRunner ---
    def run(self, body: tuple[CommandTree, ...]) -> CapturedOutput:
        nested = Executor(self.session.copy())
        with tempfile.TemporaryFile() as out:
            io = Io(self.io.stdin, out.fileno(), self.io.stderr)
            try:
                status = nested.execute(body, io)
            except ShellExit as e:
                status = e.status
            except KeyboardInterrupt as e:
                raise ExecError("command substitution interrupted", status=130) from e
            out.seek(0)
            return CapturedOutput(out.read(), status)

    # --- Trees ---
    def run_tree(self, tree: CommandTree, io: Io) -> int:
        session = self.session
        match tree:
            case Leaf(pipeline):
                self.run_pipeline(pipeline, io)
            case Block(BlockKind.IF, If(condition), body, else_body):
                if self._test(condition, io):
                    self.execute(body, io)
                elif else_body is not None:
                    self.execute(else_body, io)
            case Block(BlockKind.WHILE, While(condition), body, else_body):
                ran = False
                while self._test(condition, io):
                    self._check_stopped()
                    ran = True
                    self.execute(body, io)
                if not ran and else_body is not None:
                    self.execute(else_body, io)
            case Block(BlockKind.FOR, For(var, items), body, else_body):
                values = resolve_words(items, session, self)
                for value in values:
                    session.set_var(var, value)
                    self.execute(body, io)
                if not values and else_body is not None:
                    self.execute(else_body, io)
            case _:
                raise TypeError(f"unknown command tree: {tree!r}")
        return session.last_status

    def _check_stopped(self) -> None:
        if any(event.is_set() for event in self.stop):
            raise KeyboardInterrupt

    def _test(self, condition: Pipeline, io: Io) -> bool:
        # a condition decides the branch but leaves $? as it was
        saved = self.session.last_status
        ok = self.run_pipeline(condition, io) == 0
        self.session.last_status = saved
        return ok

    # --- Pipelines ---
    def run_pipeline(self, pipeline: Pipeline, io: Io) -> int:
        status = self._run_stages(pipeline.stages, io)
        self.session.last_status = status
        return status

    def run_argv(self, argv: List[str], io: Io, allow_builtins: bool = True) -> int:
        """Run one already-expanded command to completion."""
        if not argv:
            return 0
        if allow_builtins and argv[0] in builtin_commands:
            return builtin_commands[argv[0]](argv, self, io)
        proc = self._spawn(argv, io)
        if isinstance(proc, int):
            return proc
        return exit_status(proc.wait())

    def _run_stages(self, stages: Sequence[Stage], io: Io) -> int:
        procs: List[subprocess.Popen] = []
        threads: List[threading.Thread] = []
        handles: List[Any] = []
        results: List[subprocess.Popen | int | None] = []
        failures: List[Exception] = []
        stop = threading.Event()
        alone = len(stages) == 1
        stdin = io.stdin
        upstream: Optional[Any] = None
        try:
            for idx, stage in enumerate(stages):
                last = idx == len(stages) - 1
                argv: Optional[List[str]] = None
                if isinstance(stage, Exe):
                    argv = resolve_words(stage.words, self.session, self)
                in_process = argv is None or not argv or argv[0] in builtin_commands

                stage_io = Io(stdin, io.stdout, io.stderr)
                reader = writer = None
                if not last:
                    if in_process:
                        read_fd, write_fd = os.pipe()
                        reader = os.fdopen(read_fd, "rb", buffering=0)
                        writer = os.fdopen(write_fd, "wb", buffering=0)
                        handles.extend((reader, writer))
                        stage_io.stdout = writer.fileno()
                    else:
                        stage_io.stdout = subprocess.PIPE
                results.append(None)

                proc: Optional[subprocess.Popen] = None
                threaded = False
                try:
                    self._apply_redirects(stage.redirects, stage_io, handles)
                    executor = self
                    if not alone:
                        # each stage of a pipeline sees its own copy of the session
                        executor = Executor(
                            self.session.copy(),
                            stage_io,
                            feeds_pipe=self.feeds_pipe or writer is not None,
                            stop=self.stop + (stop,),
                        )
                    if writer is not None:
                        thread = threading.Thread(
                            target=_feed,
                            args=(executor, stage, argv, stage_io, results, idx, failures, (writer, upstream)),
                            daemon=True,
                        )
                        thread.start()
                        threads.append(thread)
                        threaded = True
                        upstream = None
                    else:
                        result = executor._run_stage(stage, argv, stage_io)
                        if isinstance(result, subprocess.Popen):
                            proc = result
                            procs.append(proc)
                        results[idx] = result
                except ShellExit as e:
                    if alone:
                        raise
                    results[idx] = e.status
                except ExecError as e:
                    complain(io, str(e))
                    results[idx] = e.status

                if not threaded:
                    # the consumer has its copy now; let the producer see SIGPIPE
                    if upstream is not None:
                        upstream.close()
                        upstream = None
                    if writer is not None:
                        writer.close()
                if last:
                    break
                if reader is not None:
                    upstream = reader
                    stdin = reader.fileno()
                elif proc is not None and proc.stdout is not None:
                    upstream = proc.stdout
                    stdin = proc.stdout.fileno()
                else:
                    devnull = open(os.devnull, "rb")
                    handles.append(devnull)
                    stdin = devnull.fileno()

            for proc in procs:
                proc.wait()
            for thread in threads:
                thread.join()
            if failures:
                raise failures[0]
        except BaseException:
            stop.set()
            if upstream is not None:
                upstream.close()
                upstream = None
            for proc in procs:
                if proc.poll() is None:
                    proc.terminate()
                proc.wait()
            for thread in threads:
                thread.join()
            raise
        finally:
            if upstream is not None:
                upstream.close()
            for h in handles:
                try:
                    h.close()
                except OSError:
                    pass

        last_result = results[-1]
        if isinstance(last_result, subprocess.Popen):
            return exit_status(last_result.returncode)
        assert last_result is not None
        return last_result

    def _run_stage(self, stage: Stage, argv: Optional[List[str]], io: Io) -> subprocess.Popen | int:
        match stage:
            case Subshell(body):
                nested = Executor(self.session.copy(), io, self.feeds_pipe, self.stop)
                try:
                    return nested.execute(body)
                except ShellExit as e:
                    return e.status
            case Exe():
                assert argv is not None
                if not argv:
                    # only redirects: the files are created, nothing runs
                    return 0
                if argv[0] in builtin_commands:
                    try:
                        return builtin_commands[argv[0]](argv, self, io)
                    except BrokenPipeError:
                        if self.feeds_pipe:
                            raise
                        return 1
                return self._spawn(argv, io)
            case _:
                raise TypeError(f"unknown pipeline stage: {stage!r}")

    def _spawn(self, argv: List[str], io: Io) -> subprocess.Popen | int:
        try:
            return subprocess.Popen(
                argv,
                stdin=io.stdin,
                stdout=io.stdout,
                stderr=io.stderr,
                env=self.session.get_env(),
                cwd=self.session.cwd,
            )
        except FileNotFoundError:
            complain(io, f"command not found: {argv[0]}")
            return 127
        except PermissionError:
            complain(io, f"permission denied: {argv[0]}")
            return 126
        except OSError as e:
            complain(io, f"{argv[0]}: {e.strerror}")
            return 126

    def _apply_redirects(self, redirects: Sequence[Redirect], io: Io, handles: List[Any]) -> None:
        for r in redirects:
            dup = r.dup_target
            if dup is not None:
                value = io.get(dup)
                if value == subprocess.PIPE:
                    if r.fd != 2 or dup != 1:
                        raise ExecError(f"cannot duplicate a pipe onto descriptor {r.fd}")
                    value = subprocess.STDOUT
                io.set(r.fd, value)
                continue
            target = resolve_single(r.target, self.session, self)
            path = os.path.join(self.session.cwd, target)
            try:
                f = open(path, _OPEN_MODES[r.mode])
            except OSError as e:
                raise ExecError(f"{target}: {e.strerror}") from e
            handles.append(f)
            io.set(r.fd, f.fileno())
