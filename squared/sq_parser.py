"""
Recursive-descent parser producing a Program AST from the lexer's tokens.

One token of lookahead drives almost every decision; statement dispatch peeks
a second token to tell assignments and object definitions apart from bare
expressions. Every parse error is fatal and carries the offending token.

Expression precedence, lowest first:
    or
    and
    == != < > <= >=      (left-associative chain)
    + -
    * /
    postfix: .name  (args)  and type-constructor capture
"""
from typing import Any, Callable, Dict, List, Optional

from squared.sq_datatypes import (
    Token, IDENTIFIER, OBJECT_IDENTIFIER, NUMBER, BOXED_NUMBER, STRING, BOOLEAN,
    SYMBOL, NEWLINE, INDENT, DEDENT, EOF,
    Program, FunctionDeclaration, ObjectDefinition, VarDeclaration, Assignment,
    MemberAssignment, IfStatement, ElifClause, WhileStatement, ForStatement,
    ForRangeStatement, ReturnStatement, BreakStatement, ContinueStatement,
    ImportStatement, ExpressionStatement, Literal, Identifier, ArrayLiteral,
    BinaryExpression, CallExpression, MemberExpression, EvalCall, TypeConstruction,
)
from squared.sq_errors import ParseError
from squared.sq_lexer import Lexer

ASSIGNMENT_OPERATORS = frozenset({"=", "+=", "-=", "*=", "/="})
COMPARISON_OPERATORS = frozenset({"==", "!=", "<", ">", "<=", ">="})

# Calls to these names keep their bracketed arguments as raw tokens.
TYPE_CONSTRUCTORS = frozenset({"int", "num", "str", "bool", "fstr"})

_OPENERS = frozenset({"(", "[", "{"})
_CLOSERS = frozenset({")", "]", "}"})


class Parser:
    def __init__(self, tokens: List[Token]):
        self.tokens = tokens
        self.pos = 0
        self._statement_keywords: Dict[str, Callable[[], Any]] = {
            "function": self.parse_function,
            "func": self.parse_function,
            "if": self.parse_if,
            "while": self.parse_while,
            "for": self.parse_for,
            "return": self.parse_return,
            "break": self.parse_break,
            "continue": self.parse_continue,
            "import": self.parse_import,
            "var": self.parse_var_declaration,
        }

    # -----------------------------------------------------------------
    # Token helpers
    # -----------------------------------------------------------------

    def peek(self, offset: int = 0) -> Optional[Token]:
        idx = self.pos + offset
        if idx < len(self.tokens):
            return self.tokens[idx]
        return None

    def check(self, kind: str, value: Any = None, offset: int = 0) -> bool:
        tok = self.peek(offset)
        return tok is not None and tok.kind == kind and (value is None or tok.value == value)

    def match(self, kind: str, value: Any = None) -> bool:
        if self.check(kind, value):
            self.pos += 1
            return True
        return False

    def consume(self, kind: str, value: Any = None) -> Token:
        if self.check(kind, value):
            tok = self.tokens[self.pos]
            self.pos += 1
            return tok
        expected = f"{kind} {value!r}" if value is not None else kind
        raise self._error(f"Expected {expected}")

    def _error(self, message: str) -> ParseError:
        tok = self.peek()
        found = tok.describe() if tok is not None else "end of input"
        return ParseError(f"{message} but found {found}", tok or self.tokens[-1])

    def _loc(self, tok: Optional[Token] = None):
        tok = tok or self.peek()
        if tok is None:
            return None
        return {"line": tok.line, "col": tok.col}

    def _at_end(self) -> bool:
        return self.pos >= len(self.tokens) or self.check(EOF)

    # -----------------------------------------------------------------
    # Program and blocks
    # -----------------------------------------------------------------

    def parse(self) -> Program:
        loc = self._loc()
        body = self.parse_block()
        if not self._at_end():
            raise self._error("Expected end of input")
        return Program(body, loc=loc)

    def parse_block(self) -> List[Any]:
        statements = []
        while not self._at_end() and not self.check(DEDENT):
            if self.match(NEWLINE):
                continue
            statements.append(self.parse_statement())
        return statements

    def _parse_indented_block(self) -> List[Any]:
        self.consume(NEWLINE)
        self.consume(INDENT)
        body = self.parse_block()
        self.consume(DEDENT)
        return body

    # -----------------------------------------------------------------
    # Statements
    # -----------------------------------------------------------------

    def parse_statement(self):
        tok = self.peek()
        if tok.kind == IDENTIFIER:
            handler = self._statement_keywords.get(tok.value)
            if handler is not None and (tok.value != "var" or self.check(SYMBOL, "[", 1)):
                return handler()
            if self.check(OBJECT_IDENTIFIER, offset=1):
                return self.parse_object_definition()
            nxt = self.peek(1)
            if nxt is not None and nxt.kind == SYMBOL and nxt.value in ASSIGNMENT_OPERATORS:
                return self.parse_assignment()
        elif tok.kind == OBJECT_IDENTIFIER and self.check(SYMBOL, "=", 1):
            return self.parse_object_definition()
        return self.parse_expression_statement()

    def parse_function(self) -> FunctionDeclaration:
        loc = self._loc()
        self.consume(IDENTIFIER)  # function | func
        name = self.consume(IDENTIFIER).value
        self.consume(SYMBOL, "(")
        params = []
        if not self.check(SYMBOL, ")"):
            params.append(self.consume(IDENTIFIER).value)
            while self.match(SYMBOL, ","):
                params.append(self.consume(IDENTIFIER).value)
        self.consume(SYMBOL, ")")
        body = self._parse_indented_block()
        return FunctionDeclaration(name, params, body, loc=loc)

    def parse_object_definition(self) -> ObjectDefinition:
        loc = self._loc()
        parent = None
        if self.check(IDENTIFIER):
            name = self.consume(IDENTIFIER).value
            parent = self.consume(OBJECT_IDENTIFIER).value
        else:
            name = self.consume(OBJECT_IDENTIFIER).value
        self.consume(SYMBOL, "=")
        self.consume(SYMBOL, "[")
        if self.match(SYMBOL, "]"):
            properties = []
        else:
            properties = self._parse_indented_block()
            self.consume(SYMBOL, "]")
        self._end_of_statement()
        return ObjectDefinition(name, parent, properties, loc=loc)

    def parse_var_declaration(self) -> VarDeclaration:
        loc = self._loc()
        self.consume(IDENTIFIER, "var")
        self.consume(SYMBOL, "[")
        name = self.consume(IDENTIFIER).value
        self.consume(SYMBOL, "]")
        value = None
        if self.match(SYMBOL, "="):
            value = self.parse_expression()
        self._end_of_statement()
        return VarDeclaration(name, value, loc=loc)

    def parse_assignment(self, *, terminated: bool = True) -> Assignment:
        loc = self._loc()
        name = self.consume(IDENTIFIER).value
        if not self._check_symbol_in(ASSIGNMENT_OPERATORS):
            raise self._error("Expected assignment operator")
        op = self.consume(SYMBOL).value
        value = self.parse_expression()
        if terminated:
            self._end_of_statement()
        return Assignment(name, op, value, loc=loc)

    def parse_if(self) -> IfStatement:
        loc = self._loc()
        self.consume(IDENTIFIER, "if")
        test = self._parse_condition()
        consequent = self._parse_indented_block()
        elifs = []
        while self.check(IDENTIFIER, "elif"):
            self.consume(IDENTIFIER)
            elif_test = self._parse_condition()
            elifs.append(ElifClause(elif_test, self._parse_indented_block()))
        alternate = None
        if self.match(IDENTIFIER, "else"):
            alternate = self._parse_indented_block()
        return IfStatement(test, consequent, elifs, alternate, loc=loc)

    def parse_while(self) -> WhileStatement:
        loc = self._loc()
        self.consume(IDENTIFIER, "while")
        test = self._parse_condition()
        body = self._parse_indented_block()
        return WhileStatement(test, body, loc=loc)

    def _parse_condition(self):
        # `[expr]` is a grouping here, not an array literal.
        if self.match(SYMBOL, "["):
            test = self.parse_expression()
            self.consume(SYMBOL, "]")
            return test
        return self.parse_expression()

    def parse_for(self):
        loc = self._loc()
        self.consume(IDENTIFIER, "for")
        if self.match(SYMBOL, "["):
            if self.check(IDENTIFIER, "var") and self.check(SYMBOL, "[", 1):
                init = self._parse_inline_var()
            else:
                init = self.parse_assignment(terminated=False)
            self.consume(SYMBOL, ",")
            test = self.parse_expression()
            self.consume(SYMBOL, ",")
            update = self.parse_assignment(terminated=False)
            self.consume(SYMBOL, "]")
            body = self._parse_indented_block()
            return ForStatement(init, test, update, body, loc=loc)
        iterator = self.consume(IDENTIFIER).value
        self.consume(SYMBOL, "=")
        start = self.parse_expression()
        self.consume(IDENTIFIER, "to")
        end = self.parse_expression()
        body = self._parse_indented_block()
        return ForRangeStatement(iterator, start, end, body, loc=loc)

    def _parse_inline_var(self) -> VarDeclaration:
        loc = self._loc()
        self.consume(IDENTIFIER, "var")
        self.consume(SYMBOL, "[")
        name = self.consume(IDENTIFIER).value
        self.consume(SYMBOL, "]")
        self.consume(SYMBOL, "=")
        return VarDeclaration(name, self.parse_expression(), loc=loc)

    def parse_return(self) -> ReturnStatement:
        loc = self._loc()
        self.consume(IDENTIFIER, "return")
        value = None
        if not self.check(NEWLINE) and not self._at_end():
            self.match(SYMBOL, "=")
            value = self.parse_expression()
        self._end_of_statement()
        return ReturnStatement(value, loc=loc)

    def parse_break(self) -> BreakStatement:
        loc = self._loc()
        self.consume(IDENTIFIER, "break")
        self._end_of_statement()
        return BreakStatement(loc=loc)

    def parse_continue(self) -> ContinueStatement:
        loc = self._loc()
        self.consume(IDENTIFIER, "continue")
        self._end_of_statement()
        return ContinueStatement(loc=loc)

    def parse_import(self) -> ImportStatement:
        loc = self._loc()
        self.consume(IDENTIFIER, "import")
        # Everything up to end of line, so `import sprites.sq` keeps its extension.
        parts = []
        while not self._at_end() and not self.check(NEWLINE):
            parts.append(self.tokens[self.pos].text)
            self.pos += 1
        if not parts:
            raise self._error("Expected module name")
        self._end_of_statement()
        return ImportStatement("".join(parts), loc=loc)

    def parse_expression_statement(self):
        loc = self._loc()
        expr = self.parse_expression()
        tok = self.peek()
        if (isinstance(expr, MemberExpression) and tok is not None
                and tok.kind == SYMBOL and tok.value in ASSIGNMENT_OPERATORS):
            op = self.consume(SYMBOL).value
            value = self.parse_expression()
            self._end_of_statement()
            return MemberAssignment(expr.object, expr.property, op, value, loc=loc)
        self._end_of_statement()
        return ExpressionStatement(expr, loc=loc)

    def _end_of_statement(self):
        if not self._at_end():
            self.consume(NEWLINE)

    # -----------------------------------------------------------------
    # Expressions
    # -----------------------------------------------------------------

    def parse_expression(self):
        return self.parse_logical_or()

    def parse_logical_or(self):
        left = self.parse_logical_and()
        while self.check(IDENTIFIER, "or"):
            loc = self._loc()
            self.pos += 1
            left = BinaryExpression(left, "or", self.parse_logical_and(), loc=loc)
        return left

    def parse_logical_and(self):
        left = self.parse_comparison()
        while self.check(IDENTIFIER, "and"):
            loc = self._loc()
            self.pos += 1
            left = BinaryExpression(left, "and", self.parse_comparison(), loc=loc)
        return left

    def parse_comparison(self):
        left = self.parse_additive()
        while self._check_symbol_in(COMPARISON_OPERATORS):
            loc = self._loc()
            op = self.consume(SYMBOL).value
            left = BinaryExpression(left, op, self.parse_additive(), loc=loc)
        return left

    def parse_additive(self):
        left = self.parse_multiplicative()
        while self._check_symbol_in(("+", "-")):
            loc = self._loc()
            op = self.consume(SYMBOL).value
            left = BinaryExpression(left, op, self.parse_multiplicative(), loc=loc)
        return left

    def parse_multiplicative(self):
        left = self.parse_postfix()
        while self._check_symbol_in(("*", "/")):
            loc = self._loc()
            op = self.consume(SYMBOL).value
            left = BinaryExpression(left, op, self.parse_postfix(), loc=loc)
        return left

    def _check_symbol_in(self, ops) -> bool:
        tok = self.peek()
        return tok is not None and tok.kind == SYMBOL and tok.value in ops

    def parse_postfix(self):
        expr = self.parse_primary()
        while True:
            if self.check(SYMBOL, "."):
                loc = self._loc()
                self.pos += 1
                tok = self.peek()
                if tok is None or tok.kind not in (IDENTIFIER, OBJECT_IDENTIFIER):
                    raise self._error("Expected property name")
                self.pos += 1
                expr = MemberExpression(expr, tok.value, loc=loc)
            elif self.check(SYMBOL, "("):
                if isinstance(expr, Identifier) and expr.name in TYPE_CONSTRUCTORS:
                    expr = self._capture_type_construction(expr)
                    continue
                loc = self._loc()
                self.pos += 1
                args = self._parse_arguments(")")
                expr = CallExpression(expr, args, loc=loc)
            else:
                return expr

    def _parse_arguments(self, closer: str) -> List[Any]:
        args = []
        if not self.check(SYMBOL, closer):
            args.append(self.parse_expression())
            while self.match(SYMBOL, ","):
                args.append(self.parse_expression())
        self.consume(SYMBOL, closer)
        return args

    def _capture_type_construction(self, callee: Identifier) -> TypeConstruction:
        self.consume(SYMBOL, "(")
        depth = 1
        raw: List[Token] = []
        while True:
            tok = self.peek()
            if tok is None or tok.kind in (NEWLINE, EOF, INDENT, DEDENT):
                raise self._error(f"Unterminated arguments to {callee.name}(")
            self.pos += 1
            if tok.kind == SYMBOL and tok.value in _OPENERS:
                depth += 1
            elif tok.kind == SYMBOL and tok.value in _CLOSERS:
                depth -= 1
                if depth == 0:
                    if tok.value != ")":
                        raise ParseError(f"Mismatched {tok.value!r} in arguments to {callee.name}(", tok)
                    return TypeConstruction(callee.name, raw, loc=callee.loc)
            raw.append(tok)

    def parse_primary(self):
        tok = self.peek()
        if tok is None:
            raise self._error("Unexpected end of input")
        loc = self._loc(tok)
        if tok.kind in (NUMBER, BOXED_NUMBER, STRING, BOOLEAN):
            self.pos += 1
            return Literal(tok.value, loc=loc)
        if tok.kind == OBJECT_IDENTIFIER:
            self.pos += 1
            return Identifier(tok.value, loc=loc)
        if tok.kind == IDENTIFIER:
            self.pos += 1
            if tok.value == "eval" and self.check(SYMBOL, "("):
                self.pos += 1
                argument = self.parse_expression()
                self.consume(SYMBOL, ")")
                return EvalCall(argument, loc=loc)
            return Identifier(tok.value, loc=loc)
        if self.match(SYMBOL, "("):
            expr = self.parse_expression()
            self.consume(SYMBOL, ")")
            return expr
        if self.match(SYMBOL, "["):
            return ArrayLiteral(self._parse_arguments("]"), loc=loc)
        raise self._error("Unexpected token")


def compile_source(source: str, *, comment_prefix: str = "--") -> Program:
    """Tokenizes and parses source text into a Program."""
    tokens = Lexer(source, comment_prefix=comment_prefix).tokenize()
    return Parser(tokens).parse()
