"""End-to-end tests of the read-eval-print loop over pipes."""

import sys
from pathlib import Path

import pytest  # type: ignore

# Add src directory to path
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from test_framework import NbshTester


@pytest.fixture()
def tester(tmp_path):
    with NbshTester(cwd=tmp_path) as instance:
        yield instance


class TestBasics:
    def test_echo(self, tester: NbshTester):
        result = tester.run("echo hello world")
        assert result.stdout == "hello world\n"
        assert result.stderr == ""
        assert not result.continued

    def test_empty_line(self, tester: NbshTester):
        result = tester.run("")
        assert result.output == ""
        assert result.prompt == tester.prompt

    def test_variables_persist_between_lines(self, tester: NbshTester):
        tester.run("set name nbsh")
        assert tester.run("echo $name").stdout == "nbsh\n"

    def test_status(self, tester: NbshTester):
        tester.run("false")
        assert tester.run("echo $?").stdout == "1\n"

    def test_cd_persists(self, tester: NbshTester, tmp_path):
        (tmp_path / "inner").mkdir()
        tester.run("cd inner")
        assert tester.run("pwd").stdout == f"{tmp_path / 'inner'}\n"

    def test_pipeline(self, tester: NbshTester):
        assert tester.run("echo b a | tr ' ' '\\n' | sort").stdout == "a\nb\n"

    def test_endless_producer_stops_when_reader_exits(self, tester: NbshTester):
        result = tester.run("(while true; echo y; end) | head -n 1", timeout=10)
        assert result.stdout == "y\n"
        assert tester.run("echo done").stdout == "done\n"

    def test_builtin_reader_closes_external_producer(self, tester: NbshTester):
        assert tester.run("yes | (read x; echo got $x)", timeout=10).stdout == "got y\n"

    def test_command_not_found(self, tester: NbshTester):
        result = tester.run("no-such-command-here")
        assert "nbsh: command not found: no-such-command-here" in result.stderr
        assert tester.run("echo $?").stdout == "127\n"


class TestBlocks:
    def test_continuation_prompt(self, tester: NbshTester):
        result = tester.run("if true")
        assert result.continued
        assert result.prompt == tester.continuation_prompt + "    "

    def test_nested_indentation(self, tester: NbshTester):
        tester.run("for x in a")
        result = tester.run("if true")
        assert result.prompt == tester.continuation_prompt + "        "

    def test_block_runs_at_end(self, tester: NbshTester):
        assert tester.run("for x in 1 2 3").stdout == ""
        assert tester.run("echo n$x").stdout == ""
        result = tester.run("end")
        assert result.stdout == "n1\nn2\nn3\n"
        assert result.prompt == tester.prompt

    def test_else_branch(self, tester: NbshTester):
        result = tester.run_block(["if false", "echo no", "else", "echo yes", "end"])
        assert result.stdout == "yes\n"

    def test_stray_end_is_reported(self, tester: NbshTester):
        result = tester.run("end")
        assert "end without an open block" in result.stderr
        assert tester.run("echo $?").stdout == "2\n"

    def test_parse_error_keeps_block_open(self, tester: NbshTester):
        tester.run("if true")
        result = tester.run("echo 'oops")
        assert "unterminated single-quoted string" in result.stderr
        assert result.continued
        assert tester.run("end").prompt == tester.prompt


class TestExit:
    def test_exit_status(self, tmp_path):
        with NbshTester(cwd=tmp_path) as tester:
            assert tester.proc.stdin is not None
            tester.proc.stdin.write("exit 5\n")
            tester.proc.stdin.flush()
            assert tester.proc.wait(timeout=5) == 5

    def test_eof_returns_last_status(self, tmp_path):
        with NbshTester(cwd=tmp_path) as tester:
            tester.run("false")
            assert tester.finish() == 1


class TestConfiguration:
    def test_custom_prompts(self, tmp_path):
        env = {"NBSH_PROMPT": "$ ", "NBSH_CONTINUATION_PROMPT": "> ", "NBSH_INDENT": "  "}
        with NbshTester(cwd=tmp_path, env=env) as tester:
            assert tester.last_prompt == "$ "
            result = tester.run("while false")
            assert result.prompt == ">   "
            assert tester.run("end").prompt == "$ "

    def test_no_positional_args(self, tmp_path):
        with NbshTester(cwd=tmp_path) as tester:
            assert tester.run("echo [$*]").stdout == "[]\n"
