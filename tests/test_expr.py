"""Tests for the condition expression language."""
from __future__ import annotations

import pytest

from pkg.ghcomment.expr import (
    CompileError,
    EvalError,
    Evaluator,
    compile_program,
    tokenize,
)

PARAMS = {
    "ExitCode": 1,
    "Stdout": "3 tests FAILED",
    "Command": "make",
    "Vars": {"target": "plan", "tags": ["a", "b"]},
    "Comment": {"HasMeta": True, "Meta": {"TemplateKey": "default", "Vars": {"target": ""}}},
}


def run(expression: str, params=PARAMS):
    return compile_program(expression).run(params)


class TestTokenize:
    def test_skips_whitespace_and_appends_eof(self):
        tokens = tokenize("ExitCode  != 0")
        assert [t.kind for t in tokens] == ["name", "op", "number", "eof"]
        assert tokens[1].value == "!="

    def test_rejects_unknown_character(self):
        with pytest.raises(CompileError, match="unexpected character"):
            tokenize("ExitCode # 1")


class TestComparisons:
    @pytest.mark.parametrize(
        "expression, expected",
        [
            ("ExitCode != 0", True),
            ("ExitCode == 0", False),
            ("ExitCode >= 1 && ExitCode < 2", True),
            ("ExitCode == 1.0", True),
            ('Command == "make"', True),
            ("Command == 'make'", True),
            ('Command < "n"', True),
        ],
    )
    def test_values(self, expression, expected):
        assert run(expression) is expected

    def test_equality_across_types_is_false(self):
        assert run('ExitCode == "1"') is False
        assert run('ExitCode != "1"') is True

    def test_ordering_across_types_fails(self):
        with pytest.raises(EvalError, match="invalid operation: int < string"):
            run('ExitCode < "2"')


class TestLogical:
    def test_word_and_symbol_forms(self):
        assert run("ExitCode != 0 and not (ExitCode == 2)") is True
        assert run("ExitCode == 0 or Vars.target == 'plan'") is True
        assert run("!(ExitCode != 0)") is False

    def test_and_short_circuits(self):
        # Missing.Field would fail if evaluated.
        assert run("ExitCode == 0 && Missing.Field") is False

    def test_or_short_circuits(self):
        assert run("ExitCode == 1 || Missing.Field") is True

    def test_non_bool_operand_is_an_error(self):
        with pytest.raises(EvalError, match="expected bool"):
            run("ExitCode && true")

    def test_precedence_and_binds_tighter_than_or(self):
        assert run("true || false && false") is True


class TestOperators:
    def test_string_operators(self):
        assert run('Stdout contains "FAIL"') is True
        assert run('Stdout startsWith "3"') is True
        assert run('Stdout endsWith "ED"') is True
        assert run('Stdout matches "^[0-9]+ tests"') is True

    def test_in_and_not_in(self):
        assert run('Vars.target in ["plan", "apply"]') is True
        assert run('"c" not in Vars.tags') is True
        assert run('"target" in Vars') is True
        assert run('"FAIL" in Stdout') is True

    def test_arithmetic_and_len(self):
        assert run("ExitCode + 1 == 2") is True
        assert run("len(Vars.tags) * 2 == 4") is True
        assert run("-ExitCode < 0") is True
        assert run('"a" + "b" == "ab"') is True

    def test_division_by_zero(self):
        with pytest.raises(EvalError, match="division by zero"):
            run("ExitCode / 0 == 1")

    def test_index_access(self):
        assert run('Vars.tags[1] == "b"') is True
        assert run('Vars["target"] == "plan"') is True

    def test_nil_literal(self):
        assert run("nil == null") is True


class TestErrors:
    def test_unknown_name(self):
        with pytest.raises(EvalError, match='unknown name "Nope"'):
            run("Nope == 1")

    def test_unknown_field(self):
        with pytest.raises(EvalError, match='unknown field "Vars.missing"'):
            run('Vars.missing == ""')

    def test_field_of_scalar(self):
        with pytest.raises(EvalError, match="cannot read field"):
            run("ExitCode.Value == 1")

    @pytest.mark.parametrize("expression", ["", "ExitCode ==", "(ExitCode == 1", "ExitCode == 1 )", "len(1, 2)"])
    def test_syntax_errors(self, expression):
        with pytest.raises(CompileError):
            compile_program(expression)


class TestEvaluator:
    def test_caches_programs_by_source(self):
        evaluator = Evaluator()
        first = evaluator.compile("ExitCode != 0")
        assert evaluator.compile("ExitCode != 0") is first

    def test_match_requires_bool(self):
        with pytest.raises(EvalError, match="must evaluate to bool"):
            Evaluator().match("ExitCode", PARAMS)

    def test_match_reads_metadata(self):
        assert Evaluator().match(
            'Comment.HasMeta && Comment.Meta.TemplateKey == "default"', PARAMS
        ) is True


class TestStringLiterals:
    def test_double_quoted_uses_json_escapes(self):
        assert run('"\\ud83d\\ude80" == "\U0001F680"') is True
        assert run('"a\\u0026b" == "a&b"') is True

    def test_single_quoted(self):
        assert run("'it\\'s' == \"it's\"") is True

    def test_unhashable_map_index(self):
        with pytest.raises(EvalError, match='invalid index array for map "Vars"'):
            run("Vars[[1]] == 1")
