from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Union

from scanner import Token, YalError


class YalParseError(YalError):
    """Raised when parsing fails."""


class YalBindingError(YalError):
    """Raised when a name is bound twice or referenced before it is bound."""


@dataclass(frozen=True)
class SourceLocation:
    file: str
    line: int
    column: int
    statement: str


@dataclass(frozen=True)
class Node:
    location: SourceLocation


class Statement(Node):
    pass


class Expression(Node):
    pass


@dataclass(frozen=True)
class Declaration(Statement):
    target: str
    expression: Expression


@dataclass(frozen=True)
class ReturnStatement(Statement):
    expression: Expression


@dataclass(frozen=True)
class ExpressionStatement(Statement):
    expression: Expression


@dataclass(frozen=True)
class EqualityExpression(Expression):
    lhs: Expression
    op: Token
    rhs: Expression


@dataclass(frozen=True)
class TermExpression(Expression):
    lhs: Expression
    op: Token
    rhs: Expression


@dataclass(frozen=True)
class FactorExpression(Expression):
    lhs: Expression
    op: Token
    rhs: Expression


@dataclass(frozen=True)
class CallExpression(Expression):
    name: str
    args: List[Expression]


@dataclass(frozen=True)
class Literal(Expression):
    value: Union[float, bool, str]
    literal_type: str


@dataclass(frozen=True)
class Identifier(Expression):
    name: str


@dataclass(frozen=True)
class ScriptFunction(Node):
    name: Token
    params: List[str]
    statements: List[Statement]


@dataclass(frozen=True)
class NativeFunctionDecl(Node):
    name: str
    module_name: str


FunctionDef = Union[ScriptFunction, NativeFunctionDecl]


@dataclass(frozen=True)
class Program:
    functions: Dict[str, FunctionDef] = field(default_factory=dict)

    def get(self, name: str) -> Optional[FunctionDef]:
        return self.functions.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self.functions


BINARY_NODES = {
    "EQUAL": EqualityExpression,
    "NOT_EQUAL": EqualityExpression,
    "PLUS": TermExpression,
    "MINUS": TermExpression,
    "STAR": FactorExpression,
    "SLASH": FactorExpression,
}


class Parser:
    def __init__(
        self,
        tokens: List[Token],
        filename: str = "<string>",
        source_lines: Optional[List[str]] = None,
    ):
        self.tokens = tokens
        self.filename = filename
        self.source_lines = source_lines or []
        self.index = 0

    def parse(self) -> Program:
        try:
            return self._parse_program()
        except RecursionError:
            # Deeply nested call arguments still recurse.
            raise YalParseError(
                f"Expression nesting too deep at line {self._peek().line}",
                location=self._location_from_token(self._peek()),
                rule="EXPRESSION",
            ) from None

    def _parse_program(self) -> Program:
        functions: Dict[str, FunctionDef] = {}
        while True:
            self._consume_newlines()
            if self._peek().type != "IMPORT":
                break
            for decl in self._parse_import():
                self._bind(functions, decl.name, decl)
        while True:
            self._consume_newlines()
            if self._peek().type == "EOF":
                break
            func = self._parse_func()
            self._bind(functions, func.name.value, func)
        return Program(functions=functions)

    def _bind(self, functions: Dict[str, FunctionDef], name: str, definition: FunctionDef) -> None:
        if name in functions:
            raise YalBindingError(
                f"Cannot redeclare function '{name}' at line {definition.location.line}",
                location=definition.location,
                rule="BIND",
            )
        functions[name] = definition

    def _parse_import(self) -> List[NativeFunctionDecl]:
        keyword = self._consume("IMPORT")
        self._consume("LBRACE")
        names: List[Token] = [self._consume("IDENT")]
        while self._match("COMMA"):
            names.append(self._consume("IDENT"))
        self._consume("RBRACE")
        self._consume("FROM")
        module = self._consume("STRING")
        module_name = self._string_value(module)
        location = self._location_from_token(keyword)
        return [NativeFunctionDecl(location=location, name=tok.value, module_name=module_name) for tok in names]

    def _parse_func(self) -> ScriptFunction:
        keyword = self._consume("FUNC")
        name_token = self._consume("IDENT")
        self._consume("LPAREN")
        params: List[str] = []
        if self._peek().type != "RPAREN":
            while True:
                param = self._consume("IDENT")
                if param.value in params:
                    raise YalBindingError(
                        f"Duplicate parameter '{param.value}' in function '{name_token.value}' at line {param.line}",
                        location=self._location_from_token(param),
                        rule="BIND",
                    )
                params.append(param.value)
                if not self._match("COMMA"):
                    break
        self._consume("RPAREN")
        statements = self._parse_body()
        return ScriptFunction(
            location=self._location_from_token(keyword),
            name=name_token,
            params=params,
            statements=statements,
        )

    def _parse_body(self) -> List[Statement]:
        self._consume("LBRACE")
        # A newline normally follows '{'; single-line bodies are accepted too.
        self._consume_newlines()
        statements: List[Statement] = []
        while not self._match("RBRACE"):
            if self._peek().type == "EOF":
                self._consume("RBRACE")
            statements.append(self._parse_statement())
            if self._peek().type in ("RBRACE", "EOF"):
                continue
            self._consume("NEWLINE")
            self._consume_newlines()
        return statements

    def _parse_statement(self) -> Statement:
        token = self._peek()
        if token.type == "RETURN":
            self._consume("RETURN")
            expression = self._parse_expression()
            return ReturnStatement(location=self._location_from_token(token), expression=expression)
        if token.type == "IDENT" and self._peek_next().type == "DECLARE":
            ident = self._consume("IDENT")
            self._consume("DECLARE")
            expression = self._parse_expression()
            return Declaration(location=self._location_from_token(ident), target=ident.value, expression=expression)
        expression = self._parse_expression()
        return ExpressionStatement(location=expression.location, expression=expression)

    # Every binary operator takes the rest of the expression as its right
    # operand, so chains nest to the right: a - b - c == a - (b - c) and
    # 2 * 3 + 4 == 2 * (3 + 4). Operands are collected in a loop and folded
    # from the right so long chains do not grow the Python stack.
    def _parse_expression(self) -> Expression:
        operands: List[Expression] = [self._parse_call()]
        ops: List[Token] = []
        while self._peek().type in BINARY_NODES:
            ops.append(self._advance())
            operands.append(self._parse_call())
        expression = operands.pop()
        while ops:
            op = ops.pop()
            lhs = operands.pop()
            expression = BINARY_NODES[op.type](location=lhs.location, lhs=lhs, op=op, rhs=expression)
        return expression

    def _parse_call(self) -> Expression:
        if self._peek().type == "IDENT" and self._peek_next().type == "LPAREN":
            ident = self._consume("IDENT")
            self._consume("LPAREN")
            args: List[Expression] = []
            if self._peek().type != "RPAREN":
                while True:
                    args.append(self._parse_expression())
                    if not self._match("COMMA"):
                        break
            self._consume("RPAREN")
            return CallExpression(location=self._location_from_token(ident), name=ident.value, args=args)
        return self._parse_primary()

    def _parse_primary(self) -> Expression:
        token = self._peek()
        location = self._location_from_token(token)
        if token.type == "NUMBER":
            self._advance()
            return Literal(location=location, value=float(token.value), literal_type="Number")
        if token.type == "BOOL":
            self._advance()
            return Literal(location=location, value=token.value == "true", literal_type="Bool")
        if token.type == "STRING":
            self._advance()
            return Literal(location=location, value=self._string_value(token), literal_type="String")
        if token.type == "IDENT":
            self._advance()
            return Identifier(location=location, name=token.value)
        raise YalParseError(
            f"Expected NUMBER, BOOL, STRING or IDENT but found {token.type} at line {token.line}",
            location=location,
            rule="PRIMARY",
        )

    def _string_value(self, token: Token) -> str:
        return token.value[1:-1]

    def _consume(self, token_type: str) -> Token:
        token = self._peek()
        if token.type != token_type:
            raise YalParseError(
                f"Expected token {token_type} but found {token.type} at line {token.line}",
                location=self._location_from_token(token),
                rule=token_type,
            )
        self.index += 1
        return token

    def _match(self, token_type: str) -> bool:
        if self._peek().type == token_type:
            self.index += 1
            return True
        return False

    def _advance(self) -> Token:
        token = self._peek()
        self.index += 1
        return token

    def _consume_newlines(self) -> None:
        while self._match("NEWLINE"):
            continue

    def _peek(self) -> Token:
        return self._token_at(self.index)

    def _peek_next(self) -> Token:
        return self._token_at(self.index + 1)

    def _token_at(self, index: int) -> Token:
        if index < len(self.tokens):
            return self.tokens[index]
        # Token lists built by hand may omit the trailing EOF.
        last = self.tokens[-1] if self.tokens else Token("EOF", "", 1, 1)
        return Token("EOF", "", last.line, last.column)

    def _location_from_token(self, token: Token) -> SourceLocation:
        line_index = token.line - 1
        statement = ""
        if 0 <= line_index < len(self.source_lines):
            statement = self.source_lines[line_index].strip()
        return SourceLocation(file=self.filename, line=token.line, column=token.column, statement=statement)


def parse(
    tokens: Iterable[Token],
    filename: str = "<string>",
    source_lines: Optional[List[str]] = None,
) -> Program:
    return Parser(list(tokens), filename, source_lines).parse()
