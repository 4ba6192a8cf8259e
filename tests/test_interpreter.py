"""Interpreter tests: evaluation, errors and tracebacks."""

import asyncio
import json
import math

import pytest

from interpreter import (
    TYPE_BOOL,
    TYPE_NUMBER,
    TYPE_STRING,
    TYPE_VOID,
    VOID,
    Interpreter,
    TracebackFormatter,
    Value,
    YalArityError,
    YalEntryPointError,
    YalNativeError,
    YalResolutionError,
    YalRuntimeError,
    YalTypeError,
    interpret,
    run_source,
)
from natives import NativeModuleAPI, NativeRegistry
from parser import YalBindingError, parse
from scanner import scan


@pytest.mark.parametrize(
    "source,expected",
    [
        ("func main(){ return 5 - 3 - 4 }", -2),
        ("func main(){ return 3 * 5 }", 15),
        ("func main(){ return add(3,5) } func add(a,b){ return a + b }", 8),
        ("func main(){ return true }", True),
        ("func main(){ return 1 == 1 }", True),
        ("func main(){ return 1 == 2 }", False),
        ("func main(){ return 1 != 2 }", True),
        ("func main(){ return 1 != 1 }", False),
        ('func main(){ return "hello " + "world" }', "hello world"),
        ("func main(){ return 2 + 3 * 4 }", 14),
        ("func main(){ return 8 / 4 / 2 }", 4),
        ("func main(){ return 7 / 2 }", 3.5),
    ],
)
def test_scenarios(run, source, expected):
    assert run(source).to_native() == expected


def test_operators_take_the_rest_of_the_expression(run):
    assert run("func main(){ return 2 * 3 + 4 }").to_native() == 14
    assert run("func main(){ return 10 - 2 * 3 - 1 }").to_native() == 6
    assert run("func main(){ return 1 == 1 + 0 }").to_native() is True
    with pytest.raises(YalTypeError, match="Cannot add Number and Bool"):
        run("func main(){ return 1 + 1 == 2 }")


def test_long_operator_chain(run):
    source = "func main(){ return " + " + ".join(["1"] * 1000) + " }"
    assert run(source, natives=NativeRegistry()).to_native() == 1000


def test_long_chain_evaluates_operands_left_to_right(run):
    calls = []
    registry = NativeRegistry()
    NativeModuleAPI(registry=registry, module_name="t").register_function(
        "tick", ["n"], lambda n: calls.append(n) or n
    )
    source = 'import { tick } from "t"\nfunc main(){ return ' + " - ".join(f"tick({i})" for i in range(600)) + " }"
    run(source, natives=registry)
    assert calls == [float(i) for i in range(600)]


def test_result_kinds(run):
    assert run("func main(){ return 1 }").type == TYPE_NUMBER
    assert run("func main(){ return false }").type == TYPE_BOOL
    assert run('func main(){ return "x" }').type == TYPE_STRING


def test_falling_off_the_end_yields_void(run):
    source = "func main() {\n  a := 1\n  b := a + 1\n}"
    assert run(source) == VOID
    assert run(source).type == TYPE_VOID


def test_declarations_and_identifiers(run):
    source = "func main() {\n  a := 2\n  b := a * 10\n  return b + a\n}"
    assert run(source).to_native() == 22


def test_arguments_are_bound_in_order(run):
    source = "func main(){ return sub(10, 4) }\nfunc sub(a, b){ return a - b }"
    assert run(source).to_native() == 6


def test_scopes_are_private_to_each_call(run):
    source = (
        "func main() {\n  a := 1\n  return f() + a\n}\n"
        "func f() {\n  a := 100\n  return a\n}"
    )
    assert run(source).to_native() == 101


def test_callee_cannot_see_caller_variables(run):
    source = "func main() {\n  a := 1\n  return f()\n}\nfunc f(){ return a }"
    with pytest.raises(YalBindingError, match="Undeclared variable 'a'"):
        run(source)


@pytest.mark.parametrize("literal", ["0", "false", '""', "1"])
def test_redeclaration_fails_for_every_value(run, literal):
    source = f"func main() {{\n  a := {literal}\n  a := 2\n}}"
    with pytest.raises(YalBindingError, match="Cannot redeclare variable 'a'"):
        run(source)


def test_parameter_cannot_be_redeclared(run):
    source = "func main(){ return f(1) }\nfunc f(a) {\n  a := 2\n  return a\n}"
    with pytest.raises(YalBindingError):
        run(source)


@pytest.mark.parametrize(
    "expression",
    ['1 == "1"', "1 == true", '"true" == true', '1 != "1"', "true != 0"],
)
def test_cross_kind_equality_is_false(run, expression):
    result = run(f"func main(){{ return {expression} }}")
    assert result == Value(TYPE_BOOL, False)


def test_same_kind_equality(run):
    assert run('func main(){ return "a" == "a" }').to_native() is True
    assert run('func main(){ return "a" != "b" }').to_native() is True
    assert run("func main(){ return true == false }").to_native() is False
    assert run("func main(){ return false != true }").to_native() is True


def test_division_by_zero_follows_ieee(run):
    assert run("func main(){ return 1 / 0 }").to_native() == math.inf
    assert math.isnan(run("func main(){ return 0 / 0 }").to_native())


@pytest.mark.parametrize(
    "expression,message",
    [
        ('"a" - 1', "Cannot subtract Number from String"),
        ("true + 1", "Cannot add Bool and Number"),
        ('1 + "a"', "Cannot add Number and String"),
        ('"a" * 2', "expects Number operands"),
        ("true / false", "expects Number operands"),
    ],
)
def test_operator_type_errors(run, expression, message):
    with pytest.raises(YalTypeError, match=message):
        run(f"func main(){{ return {expression} }}")


def test_unknown_function(run):
    with pytest.raises(YalResolutionError, match="No function named 'nope'"):
        run("func main(){ return nope(1) }")


def test_arguments_are_evaluated_before_resolution(run):
    with pytest.raises(YalBindingError, match="Undeclared variable 'x'"):
        run("func main(){ return nope(x) }")


def test_script_arity_mismatch(run):
    with pytest.raises(YalArityError, match="expects 2 arguments but received 1"):
        run("func main(){ return f(1) }\nfunc f(a, b){ return a }")


@pytest.mark.parametrize(
    "source",
    [
        "func start(){ return 1 }",
        "func main(a){ return a }",
        'import { main } from "io"',
        "",
    ],
)
def test_entry_point_errors(run, source):
    with pytest.raises(YalEntryPointError):
        run(source)


def test_runaway_recursion_is_reported(run):
    with pytest.raises(YalRuntimeError, match="Maximum call depth exceeded"):
        run("func main(){ return main() }")


def test_interpret_is_deterministic():
    program = parse(scan("func main(){ return add(3,5) * 2 }\nfunc add(a,b){ return a + b }"))
    first = interpret(program, NativeRegistry())
    second = interpret(program, NativeRegistry())
    assert first == second
    assert first.to_native() == 16


def test_run_source_helper():
    assert run_source("func main(){ return 4 }", NativeRegistry()).to_native() == 4


class TestNativeCalls:
    def test_native_call(self, run, fake_registry):
        source = 'import { double } from "math"\nfunc main(){ return double(21) }'
        assert run(source, natives=fake_registry).to_native() == 42

    def test_native_receives_bare_values(self, run):
        seen = []
        registry = NativeRegistry()
        api = NativeModuleAPI(registry=registry, module_name="spy")
        api.register_function("see", ["a", "b", "c"], lambda a, b, c: seen.extend([a, b, c]))
        run('import { see } from "spy"\nfunc main(){ see(1, true, "s") }', natives=registry)
        assert seen == [1.0, True, "s"]
        assert [type(v) for v in seen] == [float, bool, str]

    def test_native_result_wrapping(self, run):
        registry = NativeRegistry()
        api = NativeModuleAPI(registry=registry, module_name="r")
        api.register_function("int", [], lambda: 3)
        api.register_function("flag", [], lambda: True)
        api.register_function("text", [], lambda: "t")
        api.register_function("nothing", [], lambda: None)
        api.register_function("value", [], lambda: Value(TYPE_STRING, "wrapped"))
        header = 'import { int, flag, text, nothing, value } from "r"\n'
        assert run(header + "func main(){ return int() }", natives=registry) == Value(TYPE_NUMBER, 3.0)
        assert run(header + "func main(){ return flag() }", natives=registry) == Value(TYPE_BOOL, True)
        assert run(header + "func main(){ return text() }", natives=registry).to_native() == "t"
        assert run(header + "func main(){ return nothing() }", natives=registry) == VOID
        assert run(header + "func main(){ return value() }", natives=registry).to_native() == "wrapped"

    def test_unsupported_native_result(self, run):
        registry = NativeRegistry()
        NativeModuleAPI(registry=registry, module_name="r").register_function("items", [], lambda: [1, 2])
        with pytest.raises(YalTypeError, match="unsupported value of type list"):
            run('import { items } from "r"\nfunc main(){ return items() }', natives=registry)

    def test_async_native_is_awaited(self, run):
        registry = NativeRegistry()
        api = NativeModuleAPI(registry=registry, module_name="later")

        @api.function("inc", ["x"])
        async def _inc(x):
            await asyncio.sleep(0)
            return x + 1

        source = 'import { inc } from "later"\nfunc main(){ return inc(inc(1)) * 10 }'
        assert run(source, natives=registry).to_native() == 30

    def test_native_arity_mismatch(self, run, fake_registry):
        with pytest.raises(YalArityError, match="math.double expects 1 arguments but received 2"):
            run('import { double } from "math"\nfunc main(){ return double(1, 2) }', natives=fake_registry)

    def test_missing_native_module(self, run, fake_registry):
        with pytest.raises(YalResolutionError, match="Native module 'nope' not found"):
            run('import { double } from "nope"\nfunc main(){ return double(1) }', natives=fake_registry)

    def test_missing_native_function(self, run, fake_registry):
        with pytest.raises(YalResolutionError, match="does not have function 'triple'"):
            run('import { triple } from "math"\nfunc main(){ return triple(1) }', natives=fake_registry)

    def test_unused_imports_are_not_resolved(self, run, fake_registry):
        source = 'import { ghost } from "nowhere"\nfunc main(){ return 1 }'
        assert run(source, natives=fake_registry).to_native() == 1

    def test_native_failure_is_wrapped(self, run):
        registry = NativeRegistry()

        def _boom(x):
            raise ValueError("bad input")

        NativeModuleAPI(registry=registry, module_name="m").register_function("boom", ["x"], _boom)
        with pytest.raises(YalNativeError, match="m.boom failed: ValueError: bad input") as info:
            run('import { boom } from "m"\nfunc main(){ return boom(1) }', natives=registry)
        assert isinstance(info.value.__cause__, ValueError)

    def test_default_registry_print(self, run, capsys):
        source = 'import { print } from "io"\nfunc main() {\n  print(7 / 2)\n  print(true)\n  print("hi")\n}'
        assert run(source) == VOID
        assert capsys.readouterr().out == "3.5\ntrue\nhi\n"


class TestTracebacks:
    SOURCE = "func main() {\n  x := 1\n  return f(x)\n}\nfunc f(a) {\n  return a + \"x\"\n}\n"

    def _fail(self, verbose=False):
        interp = Interpreter(source=self.SOURCE, filename="<test>", verbose=verbose, natives=NativeRegistry())
        with pytest.raises(YalTypeError) as info:
            interp.run()
        return interp, info.value

    def test_frames_are_kept_and_marked_failed(self):
        interp, _ = self._fail()
        assert [frame.name for frame in interp.call_stack] == ["main", "f"]
        assert {frame.state for frame in interp.call_stack} == {"failed"}

    def test_error_carries_location_and_step(self):
        _, error = self._fail()
        assert error.location.line == 6
        assert error.rule == "TERM"
        assert isinstance(error.step_index, int)

    def test_format_text(self):
        interp, error = self._fail()
        text = TracebackFormatter(interp).format_text(error, verbose=False)
        lines = text.splitlines()
        assert lines[0] == "Traceback (most recent call last):"
        assert 'File "<test>", line 3, in main' in text
        assert 'File "<test>", line 6, in f' in text
        assert "    return a + \"x\"" in lines
        assert lines[-1] == "YalTypeError: Cannot add Number and String (rule: TERM)"
        assert "Env snapshot" not in text

    def test_verbose_includes_env_snapshot(self):
        interp, error = self._fail(verbose=True)
        text = TracebackFormatter(interp).format_text(error, verbose=True)
        assert "Env snapshot: a=Number:1" in text
        assert "Env snapshot: x=Number:1" in text

    def test_to_json(self):
        interp, error = self._fail()
        data = json.loads(TracebackFormatter(interp).to_json(error))
        assert data["error"]["type"] == "YalTypeError"
        assert data["error"]["failing_step_index"] == error.step_index
        assert [frame["name"] for frame in data["traceback"]] == ["main", "f"]
        assert data["traceback"][1]["source_location"]["line"] == 6
        assert data["traceback"][1]["state"] == "failed"

    def test_successful_run_unwinds_stack(self):
        interp = Interpreter(source="func main(){ return f() }\nfunc f(){ return 1 }", natives=NativeRegistry())
        interp.run()
        assert interp.call_stack == []
        assert interp.logger.entries[0].rule == "SEED"
        assert any(entry.rule == "CALL" for entry in interp.logger.entries)
