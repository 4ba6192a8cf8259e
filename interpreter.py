from __future__ import annotations
import asyncio
import inspect
import json
import os
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

import numpy as np

from natives import NativeRegistry, build_default_registry, render
from parser import (
    CallExpression,
    Declaration,
    EqualityExpression,
    Expression,
    ExpressionStatement,
    FactorExpression,
    Identifier,
    Literal,
    NativeFunctionDecl,
    Parser,
    Program,
    ReturnStatement,
    ScriptFunction,
    SourceLocation,
    Statement,
    TermExpression,
    YalBindingError,
)
from scanner import Lexer, Token, YalError


TYPE_NUMBER = "Number"
TYPE_BOOL = "Bool"
TYPE_STRING = "String"
TYPE_VOID = "Void"

MAIN_FUNCTION = "main"

BINARY_EXPRESSIONS = (EqualityExpression, TermExpression, FactorExpression)


@dataclass(frozen=True)
class Value:
    type: str
    value: Any

    def to_native(self) -> Any:
        if self.type == TYPE_NUMBER:
            return float(self.value)
        if self.type == TYPE_VOID:
            return None
        return self.value

    def __str__(self) -> str:
        return render(self.to_native())


VOID = Value(TYPE_VOID, None)


def number(value: Any) -> Value:
    return Value(TYPE_NUMBER, np.float64(value))


def from_native(result: Any) -> Optional[Value]:
    if isinstance(result, Value):
        return result
    if result is None:
        return VOID
    if isinstance(result, (bool, np.bool_)):
        return Value(TYPE_BOOL, bool(result))
    if isinstance(result, (int, float, np.integer, np.floating)):
        return number(result)
    if isinstance(result, str):
        return Value(TYPE_STRING, result)
    return None


class YalRuntimeError(YalError):
    """Raised for runtime faults."""


class YalResolutionError(YalRuntimeError):
    """Raised when a called name cannot be found."""


class YalArityError(YalRuntimeError):
    """Raised when a call supplies the wrong number of arguments."""


class YalTypeError(YalRuntimeError):
    """Raised when an operator gets operands of unsupported kinds."""


class YalEntryPointError(YalRuntimeError):
    """Raised when a program has no zero-argument main."""


class YalNativeError(YalRuntimeError):
    """Raised when a native implementation fails."""


class ReturnSignal(Exception):
    def __init__(self, value: Value) -> None:
        super().__init__(value)
        self.value = value


@dataclass
class Scope:
    values: Dict[str, Value] = field(default_factory=dict)

    def declare(self, name: str, value: Value, location: Optional[SourceLocation] = None) -> None:
        # Key presence, not truthiness: 0, "" and false are still declared.
        if name in self.values:
            raise YalBindingError(f"Cannot redeclare variable '{name}'", location=location, rule="DECLARE")
        self.values[name] = value

    def get(self, name: str, location: Optional[SourceLocation] = None) -> Value:
        if name in self.values:
            return self.values[name]
        raise YalBindingError(f"Undeclared variable '{name}'", location=location, rule="IDENT")

    def snapshot(self) -> Dict[str, str]:
        def _render(val: Value) -> str:
            rendered = str(val)
            if len(rendered) > 80:
                rendered = rendered[:77] + "..."
            return f"{val.type}:{rendered}"

        return {k: _render(v) for k, v in self.values.items()}


@dataclass
class Frame:
    name: str
    scope: Scope
    frame_id: str
    call_location: Optional[SourceLocation]
    state: str = "running"


@dataclass
class StateEntry:
    step_index: int
    frame_id: Optional[str]
    location: Optional[SourceLocation]
    rule: str
    details: Dict[str, Any] = field(default_factory=dict)
    env_snapshot: Optional[Dict[str, str]] = None


class StateLogger:
    """Append-only log of executed statements and calls.

    Scope snapshots are only taken when ``verbose`` is set.
    """

    def __init__(self, verbose: bool) -> None:
        self.verbose = verbose
        self.entries: List[StateEntry] = []
        self._last_by_frame: Dict[str, StateEntry] = {}

    def log(
        self,
        frame: Optional[Frame],
        location: Optional[SourceLocation],
        rule: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> StateEntry:
        entry = StateEntry(
            step_index=len(self.entries),
            frame_id=frame.frame_id if frame else None,
            location=location,
            rule=rule,
            details=dict(details or {}),
            env_snapshot=frame.scope.snapshot() if (self.verbose and frame) else None,
        )
        self.entries.append(entry)
        if frame is not None:
            self._last_by_frame[frame.frame_id] = entry
        return entry

    def last_for(self, frame: Frame) -> Optional[StateEntry]:
        return self._last_by_frame.get(frame.frame_id)


def _arith(op: Callable[[Any, Any], Any], lhs: Value, rhs: Value) -> Value:
    # IEEE-754 throughout: x / 0 is inf or nan, overflow is inf.
    with np.errstate(all="ignore"):
        return Value(TYPE_NUMBER, np.float64(op(lhs.value, rhs.value)))


class Interpreter:
    def __init__(
        self,
        *,
        source: str = "",
        filename: str = "<string>",
        verbose: bool = False,
        natives: Optional[NativeRegistry] = None,
    ) -> None:
        self.source = source
        self._source_lines = source.splitlines()
        self.filename = filename if filename.startswith("<") else os.path.abspath(filename)
        self.verbose = verbose
        self.natives = natives if natives is not None else build_default_registry()
        self.program: Optional[Program] = None
        self.logger = StateLogger(verbose=verbose)
        self.logger.log(None, None, "SEED")
        self.call_stack: List[Frame] = []
        self.frame_counter = 0
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def parse(self) -> Program:
        tokens = Lexer(self.source, self.filename).tokenize()
        return Parser(tokens, self.filename, self._source_lines).parse()

    def run(self) -> Value:
        return self.execute(self.parse())

    def execute(self, program: Program) -> Value:
        self.program = program
        self.call_stack = []
        main = program.get(MAIN_FUNCTION)
        if not isinstance(main, ScriptFunction) or main.params:
            raise YalEntryPointError(f"No zero-argument function named '{MAIN_FUNCTION}' found", rule="ENTRY")
        try:
            return self._call_script_function(main, [], None)
        except YalError as error:
            if error.step_index is None and self.logger.entries:
                error.step_index = self.logger.entries[-1].step_index
            raise
        except RecursionError as exc:
            raise self._wrap_internal("Maximum call depth exceeded", "CALL") from exc
        except Exception as exc:
            # Unexpected Python-level failures surface as yal runtime errors
            # so callers can format them with yal tracebacks.
            raise self._wrap_internal(f"Internal interpreter error: {exc}", "internal") from exc
        finally:
            self._close_loop()

    def _wrap_internal(self, message: str, rule: str) -> YalRuntimeError:
        loc = None
        if self.logger.entries:
            loc = self.logger.entries[-1].location
        wrapped = YalRuntimeError(message, location=loc, rule=rule)
        if self.logger.entries:
            wrapped.step_index = self.logger.entries[-1].step_index
        return wrapped

    def _call_script_function(
        self,
        function: ScriptFunction,
        args: List[Value],
        call_location: Optional[SourceLocation],
    ) -> Value:
        name = function.name.value
        if len(args) != len(function.params):
            raise YalArityError(
                f"Function {name} expects {len(function.params)} arguments but received {len(args)}",
                location=call_location,
                rule=name,
            )
        scope = Scope()
        for param, arg in zip(function.params, args):
            scope.declare(param, arg, location=function.location)

        frame = self._new_frame(name, scope, call_location)
        self.call_stack.append(frame)
        try:
            for statement in function.statements:
                self._execute_statement(statement, scope)
        except ReturnSignal as signal:
            result = signal.value
        except YalError:
            frame.state = "failed"
            raise
        else:
            result = VOID
        frame.state = "returned"
        self.call_stack.pop()
        return result

    def _execute_statement(self, statement: Statement, scope: Scope) -> None:
        self._log_step(rule=statement.__class__.__name__, location=statement.location)
        if isinstance(statement, Declaration):
            value = self._evaluate_expression(statement.expression, scope)
            scope.declare(statement.target, value, location=statement.location)
            return
        if isinstance(statement, ExpressionStatement):
            self._evaluate_expression(statement.expression, scope)
            return
        if isinstance(statement, ReturnStatement):
            raise ReturnSignal(self._evaluate_expression(statement.expression, scope))
        raise YalRuntimeError("Unsupported statement", location=statement.location)

    def _evaluate_expression(self, expression: Expression, scope: Scope) -> Value:
        if isinstance(expression, Literal):
            if expression.literal_type == TYPE_NUMBER:
                return number(expression.value)
            return Value(expression.literal_type, expression.value)
        if isinstance(expression, Identifier):
            return scope.get(expression.name, location=expression.location)
        if isinstance(expression, BINARY_EXPRESSIONS):
            return self._evaluate_chain(expression, scope)
        if isinstance(expression, CallExpression):
            return self._evaluate_call(expression, scope)
        raise YalRuntimeError("Unsupported expression", location=expression.location)

    def _evaluate_chain(self, expression: Expression, scope: Scope) -> Value:
        # Walk the right spine without recursing: operands are evaluated left
        # to right, then operators apply innermost first.
        links: List[Any] = []
        node = expression
        while isinstance(node, BINARY_EXPRESSIONS):
            links.append((node, self._evaluate_expression(node.lhs, scope)))
            node = node.rhs
        result = self._evaluate_expression(node, scope)
        for link, lhs in reversed(links):
            if isinstance(link, EqualityExpression):
                result = self._equality(link.op, lhs, result)
            elif isinstance(link, TermExpression):
                result = self._term(link.op, lhs, result, link.location)
            else:
                result = self._factor(link.op, lhs, result, link.location)
        return result

    def _equality(self, op: Token, lhs: Value, rhs: Value) -> Value:
        # Operands of different kinds never compare, whichever operator is used.
        if lhs.type != rhs.type:
            return Value(TYPE_BOOL, False)
        equal = bool(lhs.value == rhs.value)
        if op.type == "EQUAL":
            return Value(TYPE_BOOL, equal)
        if op.type == "NOT_EQUAL":
            return Value(TYPE_BOOL, not equal)
        raise YalRuntimeError(f"Unrecognized operator {op.value!r}", rule="EQUALITY")

    def _term(self, op: Token, lhs: Value, rhs: Value, location: SourceLocation) -> Value:
        if op.type == "MINUS":
            if lhs.type != TYPE_NUMBER or rhs.type != TYPE_NUMBER:
                raise YalTypeError(f"Cannot subtract {rhs.type} from {lhs.type}", location=location, rule="TERM")
            return _arith(np.subtract, lhs, rhs)
        if op.type == "PLUS":
            if lhs.type == TYPE_NUMBER and rhs.type == TYPE_NUMBER:
                return _arith(np.add, lhs, rhs)
            if lhs.type == TYPE_STRING and rhs.type == TYPE_STRING:
                return Value(TYPE_STRING, lhs.value + rhs.value)
            raise YalTypeError(f"Cannot add {lhs.type} and {rhs.type}", location=location, rule="TERM")
        raise YalRuntimeError(f"Unrecognized operator {op.value!r}", location=location, rule="TERM")

    def _factor(self, op: Token, lhs: Value, rhs: Value, location: SourceLocation) -> Value:
        if lhs.type != TYPE_NUMBER or rhs.type != TYPE_NUMBER:
            raise YalTypeError(
                f"Operator {op.value!r} expects Number operands but got {lhs.type} and {rhs.type}",
                location=location,
                rule="FACTOR",
            )
        if op.type == "STAR":
            return _arith(np.multiply, lhs, rhs)
        if op.type == "SLASH":
            return _arith(np.divide, lhs, rhs)
        raise YalRuntimeError(f"Unrecognized operator {op.value!r}", location=location, rule="FACTOR")

    def _evaluate_call(self, expression: CallExpression, scope: Scope) -> Value:
        args = [self._evaluate_expression(arg, scope) for arg in expression.args]
        definition = self.program.get(expression.name) if self.program is not None else None
        if definition is None:
            raise YalResolutionError(
                f"No function named '{expression.name}'",
                location=expression.location,
                rule="CALL",
            )
        self._log_step(
            rule="CALL",
            location=expression.location,
            extra={"function": expression.name, "args": [a.to_native() for a in args]},
        )
        if isinstance(definition, ScriptFunction):
            return self._call_script_function(definition, args, expression.location)
        return self._call_native_function(definition, args, expression.location)

    def _call_native_function(
        self,
        decl: NativeFunctionDecl,
        args: List[Value],
        location: SourceLocation,
    ) -> Value:
        qualified = f"{decl.module_name}.{decl.name}"
        module = self.natives.module(decl.module_name)
        if module is None:
            raise YalResolutionError(f"Native module '{decl.module_name}' not found", location=location, rule=qualified)
        native = module.get(decl.name)
        if native is None:
            raise YalResolutionError(
                f"Native module '{decl.module_name}' does not have function '{decl.name}'",
                location=location,
                rule=qualified,
            )
        if len(args) != native.arity:
            raise YalArityError(
                f"{qualified} expects {native.arity} arguments but received {len(args)}",
                location=location,
                rule=qualified,
            )
        bare = [a.to_native() for a in args]
        try:
            # The one suspension point: awaitable results are driven to
            # completion here before evaluation continues.
            result = self._await_native(native.impl(*bare))
        except Exception as exc:
            detail = exc.message if isinstance(exc, YalError) else f"{exc.__class__.__name__}: {exc}"
            self._log_step(rule=qualified, location=location, extra={"args": bare, "status": "error"})
            raise YalNativeError(f"{qualified} failed: {detail}", location=location, rule=qualified) from exc
        value = from_native(result)
        if value is None:
            raise YalTypeError(
                f"{qualified} returned unsupported value of type {type(result).__name__}",
                location=location,
                rule=qualified,
            )
        self._log_step(rule=qualified, location=location, extra={"args": bare, "result": value.to_native()})
        return value

    def _await_native(self, result: Any) -> Any:
        if not inspect.isawaitable(result):
            return result
        if self._loop is None:
            self._loop = asyncio.new_event_loop()
        return self._loop.run_until_complete(result)

    def _close_loop(self) -> None:
        loop, self._loop = self._loop, None
        if loop is None:
            return
        try:
            loop.run_until_complete(loop.shutdown_default_executor())
        finally:
            loop.close()

    def _new_frame(self, name: str, scope: Scope, call_location: Optional[SourceLocation]) -> Frame:
        frame_id = f"f_{self.frame_counter:04d}"
        self.frame_counter += 1
        return Frame(name=name, scope=scope, frame_id=frame_id, call_location=call_location)

    def _log_step(
        self,
        *,
        rule: str,
        location: Optional[SourceLocation],
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        frame = self.call_stack[-1] if self.call_stack else None
        self.logger.log(frame, location, rule, extra)


class TracebackFormatter:
    """Renders the call stack left behind by a failed run."""

    def __init__(self, interpreter: Interpreter) -> None:
        self.interpreter = interpreter

    def _frames(self) -> List[Tuple[Frame, Optional[StateEntry], Optional[SourceLocation]]]:
        rows = []
        for frame in self.interpreter.call_stack:
            entry = self.interpreter.logger.last_for(frame)
            rows.append((frame, entry, entry.location if entry else frame.call_location))
        return rows

    def format_text(self, error: YalError, verbose: bool) -> str:
        lines = ["Traceback (most recent call last):"]
        for frame, entry, loc in self._frames():
            where = f'File "{loc.file}", line {loc.line}' if loc else "<unknown location>"
            lines.append(f"  {where}, in {frame.name} [{frame.state}]")
            if loc and loc.statement:
                lines.append(f"    {loc.statement}")
            if entry is None:
                continue
            lines.append(f"    step {entry.step_index}: {entry.rule}")
            if verbose and entry.env_snapshot is not None:
                lines.append("    Env snapshot: " + ", ".join(f"{k}={v}" for k, v in entry.env_snapshot.items()))
        lines.append(f"{error.__class__.__name__}: {error.message} (rule: {error.rule or 'runtime'})")
        return "\n".join(lines)

    def to_json(self, error: YalError) -> str:
        traceback = []
        for frame, entry, loc in self._frames():
            item: Dict[str, Any] = {"name": frame.name, "state": frame.state}
            if loc is not None:
                item["source_location"] = asdict(loc)
            if entry is not None:
                item["step_index"] = entry.step_index
                item["rule"] = entry.rule
                if entry.details:
                    item["details"] = entry.details
                if entry.env_snapshot is not None:
                    item["env_snapshot"] = entry.env_snapshot
            traceback.append(item)
        error_info = {
            "type": error.__class__.__name__,
            "message": error.message,
            "rule": error.rule,
            "failing_step_index": error.step_index,
        }
        return json.dumps({"error": error_info, "traceback": traceback}, indent=2)


def interpret(
    program: Program,
    natives: Optional[NativeRegistry] = None,
    *,
    verbose: bool = False,
) -> Value:
    return Interpreter(verbose=verbose, natives=natives).execute(program)


def run_source(
    source: str,
    natives: Optional[NativeRegistry] = None,
    *,
    filename: str = "<string>",
    verbose: bool = False,
) -> Value:
    return Interpreter(source=source, filename=filename, verbose=verbose, natives=natives).run()
