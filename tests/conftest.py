import os
import sys
from pathlib import Path
import pytest

SRC = Path(__file__).resolve().parents[1] / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


@pytest.fixture()
def sandbox(tmp_path, monkeypatch):
    # Work in an isolated temp directory
    monkeypatch.chdir(tmp_path)
    # Prune environment to a minimal safe set
    safe_env = {
        "PATH": os.environ.get("PATH", "/usr/bin:/bin"),
        "HOME": str(tmp_path),
        "LANG": os.environ.get("LANG", "C"),
        "LC_ALL": os.environ.get("LC_ALL", "C"),
        "TERM": os.environ.get("TERM", "dumb"),
    }
    monkeypatch.setenv("NBSH_TEST_SANDBOX", "1")
    monkeypatch.setenv("PATH", safe_env["PATH"])  # at least PATH is guaranteed
    # Return path and env dict for session creation
    return tmp_path, safe_env


@pytest.fixture()
def session(sandbox):
    from ops import ShellSession
    tmp_path, safe_env = sandbox
    sess = ShellSession(inherit_env=False, args=["one", "two"])
    sess.env.update(safe_env)
    return sess


@pytest.fixture()
def run_captured(session):
    """Run a multi-line source against ``session``; return (status, stdout, stderr)."""
    import tempfile

    from blocks import BlockAssembler, Error
    from ops import Executor, Io

    def run(source: str) -> tuple[int, str, str]:
        assembler = BlockAssembler()
        with open(os.devnull, "rb") as devnull, tempfile.TemporaryFile() as out, tempfile.TemporaryFile() as err:
            executor = Executor(session, Io(devnull.fileno(), out.fileno(), err.fileno()))
            status = session.last_status
            for line in source.splitlines():
                result = assembler.feed_line(line)
                assert not isinstance(result, Error), result
                status = executor.execute(result.trees)
            assembler.finish()
            out.seek(0)
            err.seek(0)
            return status, out.read().decode(), err.read().decode()

    return run
