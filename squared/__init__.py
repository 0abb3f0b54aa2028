import logging

from squared.sq_config import RunnerConfig
from squared.sq_datatypes import Scope, ScriptObject, ScriptFunction
from squared.sq_errors import (
    SquaredError, LexError, ParseError, ScriptRuntimeError, UndefinedVariable,
    NotCallable, NullPropertyAccess, ImportResolutionError, OperandError,
    NotAnObject, ExecutionCancelled,
)
from squared.sq_interpreter import Evaluator
from squared.sq_lexer import Lexer, tokenize
from squared.sq_modules import ModuleRegistry, Resolution
from squared.sq_parser import Parser, compile_source
from squared.sq_printer import Printer
from squared.sq_runtime import ScriptRunner, ExecutionResult, StdLib, host_api_method

logging.getLogger("squared").addHandler(logging.NullHandler())

__all__ = [
    "RunnerConfig", "Scope", "ScriptObject", "ScriptFunction",
    "SquaredError", "LexError", "ParseError", "ScriptRuntimeError", "UndefinedVariable",
    "NotCallable", "NullPropertyAccess", "ImportResolutionError", "OperandError",
    "NotAnObject", "ExecutionCancelled",
    "Evaluator", "Lexer", "tokenize", "ModuleRegistry", "Resolution",
    "Parser", "compile_source", "Printer",
    "ScriptRunner", "ExecutionResult", "StdLib", "host_api_method",
]
