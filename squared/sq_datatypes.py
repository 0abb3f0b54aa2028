"""
Defines the core data types for the Squared language.

This module provides the token record produced by the lexer, the AST node
classes produced by the parser, and the runtime types the evaluator works
with: binding frames (Scope), objects, closures and the tagged completion
record used to propagate return/break/continue through block execution.
"""

import collections.abc
from dataclasses import dataclass, field
import typing
from typing import Any, Dict, Iterator, List, Optional

# =================================================================
# Tokens
# =================================================================

IDENTIFIER = "IDENTIFIER"
OBJECT_IDENTIFIER = "OBJECT_IDENTIFIER"
NUMBER = "NUMBER"
BOXED_NUMBER = "BOXED_NUMBER"
STRING = "STRING"
BOOLEAN = "BOOLEAN"
SYMBOL = "SYMBOL"
NEWLINE = "NEWLINE"
INDENT = "INDENT"
DEDENT = "DEDENT"
EOF = "EOF"


@dataclass
class Token:
    """A lexical unit. `text` is the exact source lexeme, `value` the decoded literal."""
    kind: str
    value: Any = None
    text: str = ""
    line: Optional[int] = None
    col: Optional[int] = None

    def describe(self) -> str:
        if self.kind in (NEWLINE, INDENT, DEDENT, EOF):
            return self.kind
        return f"{self.kind} {self.text!r}"


# =================================================================
# AST nodes
# =================================================================

def _loc():
    return field(default=None, compare=False, repr=False)


@dataclass
class Program:
    body: List[Any]
    loc: Optional[Dict[str, int]] = _loc()


@dataclass
class FunctionDeclaration:
    name: str
    params: List[str]
    body: List[Any]
    loc: Optional[Dict[str, int]] = _loc()


@dataclass
class ObjectDefinition:
    name: str
    parent: Optional[str]
    properties: List[Any]
    loc: Optional[Dict[str, int]] = _loc()


@dataclass
class VarDeclaration:
    name: str
    value: Any
    loc: Optional[Dict[str, int]] = _loc()


@dataclass
class Assignment:
    name: str
    operator: str
    value: Any
    loc: Optional[Dict[str, int]] = _loc()


@dataclass
class MemberAssignment:
    object: Any
    property: str
    operator: str
    value: Any
    loc: Optional[Dict[str, int]] = _loc()


@dataclass
class ElifClause:
    test: Any
    body: List[Any]


@dataclass
class IfStatement:
    test: Any
    consequent: List[Any]
    elifs: List[ElifClause] = field(default_factory=list)
    alternate: Optional[List[Any]] = None
    loc: Optional[Dict[str, int]] = _loc()


@dataclass
class WhileStatement:
    test: Any
    body: List[Any]
    loc: Optional[Dict[str, int]] = _loc()


@dataclass
class ForStatement:
    """C-style loop: `for [init, test, update]`."""
    init: Any
    test: Any
    update: Any
    body: List[Any]
    loc: Optional[Dict[str, int]] = _loc()


@dataclass
class ForRangeStatement:
    """Range loop: `for i = start to end`, inclusive on both ends."""
    iterator: str
    start: Any
    end: Any
    body: List[Any]
    loc: Optional[Dict[str, int]] = _loc()


@dataclass
class ReturnStatement:
    value: Any = None
    loc: Optional[Dict[str, int]] = _loc()


@dataclass
class BreakStatement:
    loc: Optional[Dict[str, int]] = _loc()


@dataclass
class ContinueStatement:
    loc: Optional[Dict[str, int]] = _loc()


@dataclass
class ImportStatement:
    module_name: str
    loc: Optional[Dict[str, int]] = _loc()


@dataclass
class ExpressionStatement:
    expr: Any
    loc: Optional[Dict[str, int]] = _loc()


@dataclass
class Literal:
    value: Any
    loc: Optional[Dict[str, int]] = _loc()


@dataclass
class Identifier:
    name: str
    loc: Optional[Dict[str, int]] = _loc()


@dataclass
class ArrayLiteral:
    elements: List[Any]
    loc: Optional[Dict[str, int]] = _loc()


@dataclass
class BinaryExpression:
    left: Any
    op: str
    right: Any
    loc: Optional[Dict[str, int]] = _loc()


@dataclass
class CallExpression:
    callee: Any
    args: List[Any]
    loc: Optional[Dict[str, int]] = _loc()


@dataclass
class MemberExpression:
    object: Any
    property: str
    loc: Optional[Dict[str, int]] = _loc()


@dataclass
class EvalCall:
    argument: Any
    loc: Optional[Dict[str, int]] = _loc()


@dataclass
class TypeConstruction:
    """A type-constructor call whose bracketed region was captured verbatim, unparsed."""
    callee: str
    raw_tokens: List[Token]
    loc: Optional[Dict[str, int]] = _loc()

    @property
    def source(self) -> str:
        return " ".join(tok.text for tok in self.raw_tokens)


# =================================================================
# Runtime types
# =================================================================

class Scope:
    """A binding frame: a name -> value mapping chained to an optional enclosing frame.

    Lookup and assignment walk outward from this frame to the root. Declaring
    always binds in this frame. Assignment mutates the nearest existing
    binding, or binds here when there is none. Read-only frames (the builtins
    frame) are visible to lookup but never mutated by assignment; assigning a
    name they own shadows it in this frame instead.
    """
    def __init__(self, parent: Optional['Scope'] = None, *, readonly: bool = False):
        self.bindings: Dict[str, Any] = {}
        self.parent = parent
        self.readonly = readonly

    def find_owner(self, name: str) -> Optional['Scope']:
        """Finds the frame in the chain (self -> parent -> ...) that binds name."""
        cur = self
        while cur is not None:
            if name in cur.bindings:
                return cur
            cur = cur.parent
        return None

    def lookup(self, name: str) -> Any:
        owner = self.find_owner(name)
        if owner is None:
            raise KeyError(name)
        return owner.bindings[name]

    def get(self, name: str, default: Any = None) -> Any:
        owner = self.find_owner(name)
        if owner is None:
            return default
        return owner.bindings[name]

    def declare(self, name: str, value: Any):
        self.bindings[name] = value

    def assign(self, name: str, value: Any):
        owner = self.find_owner(name)
        if owner is None or owner.readonly:
            owner = self
        owner.bindings[name] = value

    def __contains__(self, name: str) -> bool:
        return self.find_owner(name) is not None

    def __getitem__(self, name: str) -> Any:
        return self.lookup(name)

    def __setitem__(self, name: str, value: Any):
        self.declare(name, value)

    def keys(self) -> collections.abc.KeysView:
        """Returns a view of keys in the current frame only."""
        return self.bindings.keys()

    def __repr__(self) -> str:
        keys = ', '.join(self.bindings.keys())
        parent_id = f", parent=#{id(self.parent)}" if self.parent else ""
        return f"<Scope bindings=[{keys}]{parent_id}>"


class ScriptObject(collections.abc.MutableMapping):
    """An insertion-ordered name -> value mapping produced by an object definition.

    Equality and hashing are by identity, like the language's own `==` on objects.
    """
    def __init__(self, name: Optional[str] = None, properties: Optional[Dict[str, Any]] = None):
        self.name = name
        self.properties: Dict[str, Any] = properties if properties is not None else {}

    def __getitem__(self, key: str) -> Any:
        return self.properties[key]

    def __setitem__(self, key: str, value: Any):
        self.properties[key] = value

    def __delitem__(self, key: str):
        del self.properties[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self.properties)

    def __len__(self) -> int:
        return len(self.properties)

    def __hash__(self):
        return id(self)

    def __eq__(self, other):
        return self is other

    def __repr__(self) -> str:
        keys = ', '.join(self.properties.keys())
        return f"<ScriptObject {self.name or '?'} [{keys}]>"


class ScriptFunction:
    """A closure: parameter names, body statements and the defining frame (by reference)."""
    def __init__(self, name: str, params: List[str], body: List[Any], closure: Scope):
        self.name = name
        self.params = params
        self.body = body
        self.closure = closure

    def __repr__(self) -> str:
        return f"<function {self.name}({', '.join(self.params)})>"


@dataclass(frozen=True)
class Completion:
    """The tagged result of executing a statement or block."""
    status: typing.Literal['normal', 'return', 'break', 'continue'] = 'normal'
    value: Any = None

    @property
    def abrupt(self) -> bool:
        return self.status != 'normal'

    @classmethod
    def normal(cls, value: Any = None) -> 'Completion':
        return cls('normal', value)

    @classmethod
    def returning(cls, value: Any) -> 'Completion':
        return cls('return', value)


BREAK = Completion('break')
CONTINUE = Completion('continue')
