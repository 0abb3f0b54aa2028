"""
Error types raised while compiling and running Squared code.

Lexer and parser errors abort the whole compile unit. Runtime errors abort the
whole top-level execution; the language has no catch construct, so the only
place these are intercepted is ScriptRunner.handle_script.
"""
from typing import Any, Dict, Optional


class SquaredError(Exception):
    """Base class for every language-level error, carrying an optional source location."""
    kind = "Error"

    def __init__(self, message: str, *, line: Optional[int] = None, col: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.line = line
        self.col = col

    @property
    def location(self) -> Optional[Dict[str, int]]:
        if self.line is None:
            return None
        return {"line": self.line, "col": self.col}

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "message": self.message, "location": self.location}

    def __str__(self) -> str:
        if self.line is not None:
            col_info = f", col {self.col}" if self.col is not None else ""
            return f"{self.message} (line {self.line}{col_info})"
        return self.message


class LexError(SquaredError):
    kind = "LexError"


class ParseError(SquaredError):
    """Unexpected token. There is no resynchronization after one of these."""
    kind = "ParseError"

    def __init__(self, message: str, token=None):
        line = getattr(token, "line", None)
        col = getattr(token, "col", None)
        super().__init__(message, line=line, col=col)
        self.token = token


class ScriptRuntimeError(SquaredError):
    kind = "RuntimeError"

    @classmethod
    def at(cls, node, message: str, **kwargs):
        """Builds the error with the location of an AST node (if it has one)."""
        loc = getattr(node, "loc", None) or {}
        return cls(message, line=loc.get("line"), col=loc.get("col"), **kwargs)


class UndefinedVariable(ScriptRuntimeError):
    kind = "UndefinedVariable"

    def __init__(self, name: str, **kwargs):
        super().__init__(f"Undefined variable: {name}", **kwargs)
        self.name = name


class NotCallable(ScriptRuntimeError):
    kind = "NotCallable"


class NullPropertyAccess(ScriptRuntimeError):
    kind = "NullPropertyAccess"


class ImportResolutionError(ScriptRuntimeError):
    kind = "ImportResolutionError"


class OperandError(ScriptRuntimeError):
    kind = "OperandError"


class NotAnObject(ScriptRuntimeError):
    kind = "NotAnObject"


class ExecutionCancelled(Exception):
    """Raised when the host sets the cancellation flag; unwinds to the top-level caller."""
    pass
