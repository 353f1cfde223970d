"""Tests for word resolution: variables, specials, substitution, alternation."""

import sys
from pathlib import Path

import pytest  # type: ignore

# Add src directory to path
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from errors import ExecError, ExpansionError
from expand import CapturedOutput, alternatives, resolve, resolve_single, resolve_words
from grammar import parse_line
from syntax import Literal


class FakeLookup:
    def __init__(self, variables=None, status=0, pid=4242, args=()):
        self.variables = dict(variables or {})
        self._status = status
        self._pid = pid
        self._args = list(args)

    def get(self, name):
        return self.variables.get(name)

    def status(self):
        return self._status

    def pid(self):
        return self._pid

    def args(self):
        return self._args


class FakeRunner:
    """Answers each substitution by the source text of its first pipeline."""

    def __init__(self, outputs=None, status=0, fail=None):
        self.outputs = dict(outputs or {})
        self.status = status
        self.fail = fail
        self.calls = []

    def run(self, body):
        source = body[0].pipeline.source
        self.calls.append(source)
        if self.fail is not None:
            raise self.fail
        return CapturedOutput(self.outputs.get(source, b""), self.status)


def words_of(text):
    (pipeline,) = parse_line(text).commands
    return pipeline.stages[0].words


def argv(text, lookup=None, runner=None, **kwargs):
    return resolve_words(words_of(text), lookup or FakeLookup(), runner or FakeRunner(), **kwargs)


class TestLiterals:
    def test_plain_words(self):
        assert argv("echo a b") == ["echo", "a", "b"]

    def test_quoted_text_stays_one_field(self):
        assert argv("echo 'a b' \"c d\"") == ["echo", "a b", "c d"]

    def test_single_quotes_are_literal(self):
        assert argv("echo '$x'", FakeLookup({"x": "1"})) == ["echo", "$x"]

    def test_empty_quotes_give_empty_argument(self):
        assert argv("echo '' \"\"") == ["echo", "", ""]


class TestVariables:
    def test_lookup(self):
        lookup = FakeLookup({"HOME": "/home/me"})
        assert argv("echo $HOME/bin \"$HOME/bin\"", lookup) == ["echo", "/home/me/bin", "/home/me/bin"]

    def test_unset_is_empty(self):
        assert argv("echo x${nope}y") == ["echo", "xy"]

    def test_unset_alone_is_an_empty_field(self):
        assert argv("echo $nope") == ["echo", ""]

    def test_value_is_not_split(self):
        assert argv("echo $x", FakeLookup({"x": "a b"})) == ["echo", "a b"]

    def test_status_and_pid(self):
        assert argv("echo $? $$", FakeLookup(status=3, pid=77)) == ["echo", "3", "77"]

    def test_positional(self):
        lookup = FakeLookup(args=["one", "two"])
        assert argv("echo $1 $2 $3", lookup) == ["echo", "one", "two", ""]

    def test_star_unquoted_is_one_field_per_arg(self):
        lookup = FakeLookup(args=["a b", "c"])
        assert argv("echo $*", lookup) == ["echo", "a b", "c"]

    def test_star_quoted_is_joined(self):
        lookup = FakeLookup(args=["a", "b", "c"])
        assert argv('echo "$*"', lookup) == ["echo", "a b c"]

    def test_star_without_args(self):
        assert argv("echo $*") == ["echo"]

    def test_zero_goes_through_lookup(self):
        assert argv("echo $0", FakeLookup({"0": "nbsh"})) == ["echo", "nbsh"]


class TestSubstitution:
    def test_unquoted_output_is_split(self):
        runner = FakeRunner({"echo a b": b"a b\n"})
        assert argv("echo $(echo a b)", runner=runner) == ["echo", "a", "b"]

    def test_quoted_output_is_one_field(self):
        runner = FakeRunner({"echo a b": b"a b\n"})
        assert argv('echo "$(echo a b)"', runner=runner) == ["echo", "a b"]

    def test_trailing_newlines_stripped(self):
        runner = FakeRunner({"printf x": b"x\n\n\n"})
        assert argv('echo "[$(printf x)]"', runner=runner) == ["echo", "[x]"]

    def test_split_joins_surrounding_text(self):
        runner = FakeRunner({"ls": b"1 2 3\n"})
        assert argv("echo pre$(ls)post", runner=runner) == ["echo", "pre1", "2", "3post"]

    def test_empty_unquoted_output_drops_the_field(self):
        assert argv("echo $(true) x") == ["echo", "x"]

    def test_empty_quoted_output_keeps_the_field(self):
        assert argv('echo "$(true)" x') == ["echo", "", "x"]

    def test_invalid_utf8_is_replaced(self):
        runner = FakeRunner({"cat": b"caf\xe9\n"})
        assert argv('echo "$(cat)"', runner=runner) == ["echo", "caf�"]

    def test_nonzero_status_is_tolerated(self):
        runner = FakeRunner({"false": b"partial\n"}, status=1)
        assert argv("echo $(false)", runner=runner) == ["echo", "partial"]

    def test_strict_rejects_nonzero_status(self):
        runner = FakeRunner({"false": b"partial\n"}, status=1)
        with pytest.raises(ExpansionError):
            argv("echo $(false)", runner=runner, strict=True)

    def test_runner_failure_is_chained(self):
        failure = ExecError("interrupted", status=130)
        with pytest.raises(ExpansionError) as exc:
            argv("echo $(sleep 10)", runner=FakeRunner(fail=failure))
        assert exc.value.__cause__ is failure

    def test_runs_once_per_resolve(self):
        runner = FakeRunner({"date": b"now\n"})
        assert argv("echo {a,b}$(date)", runner=runner) == ["echo", "anow", "bnow"]
        assert runner.calls == ["date"]


class TestAlternation:
    def test_single(self):
        assert argv("echo {a,b,c}") == ["echo", "a", "b", "c"]

    def test_product_order(self):
        assert argv("echo {a,b}{1,2}") == ["echo", "a1", "a2", "b1", "b2"]

    def test_leftmost_varies_slowest(self):
        assert argv("echo a{1,2}b{x,y}") == ["echo", "a1bx", "a1by", "a2bx", "a2by"]

    def test_empty_alternative(self):
        assert argv("echo file{,.bak}") == ["echo", "file", "file.bak"]

    def test_with_variables(self):
        lookup = FakeLookup({"d": "/tmp"})
        assert argv("ls $d/{x,y}", lookup) == ["ls", "/tmp/x", "/tmp/y"]

    def test_alternatives_helper(self):
        (word,) = words_of("x{a,b}")
        assert alternatives(word) == [
            (Literal("x"), Literal("a")),
            (Literal("x"), Literal("b")),
        ]


class TestSingle:
    def test_resolve_returns_one_string_for_plain_word(self):
        (word,) = words_of("'a b'")
        assert resolve(word, FakeLookup(), FakeRunner()) == ["a b"]

    def test_resolve_single(self):
        (word,) = words_of("$out.log")
        assert resolve_single(word, FakeLookup({"out": "build"}), FakeRunner()) == "build.log"

    def test_resolve_single_rejects_many(self):
        (word,) = words_of("{a,b}")
        with pytest.raises(ExpansionError):
            resolve_single(word, FakeLookup(), FakeRunner())

    def test_resolve_single_rejects_none(self):
        (word,) = words_of("$(true)")
        with pytest.raises(ExpansionError):
            resolve_single(word, FakeLookup(), FakeRunner())
