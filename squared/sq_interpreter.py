"""
The core Squared interpreter: a tree-walking, cooperatively-yielding Evaluator.

Statements execute to a Completion (normal/return/break/continue) that block and
loop executors inspect after every statement. Expressions evaluate to plain
runtime values. Every step is a coroutine so host builtins may suspend.
"""
import asyncio
import collections.abc
import contextlib
import contextvars
import functools
import inspect
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import pystache

from squared.sq_datatypes import (
    Scope, ScriptObject, ScriptFunction, Completion, BREAK, CONTINUE,
    Program, FunctionDeclaration, ObjectDefinition, VarDeclaration, Assignment,
    MemberAssignment, IfStatement, WhileStatement, ForStatement, ForRangeStatement,
    ReturnStatement, BreakStatement, ContinueStatement, ImportStatement,
    ExpressionStatement, Literal, Identifier, ArrayLiteral, BinaryExpression,
    CallExpression, MemberExpression, EvalCall, TypeConstruction,
)
from squared.sq_errors import (
    UndefinedVariable, NotCallable, NullPropertyAccess, ImportResolutionError,
    NotAnObject, ExecutionCancelled, LexError, ParseError,
)
from squared.sq_operators import truthy, to_number, apply_binary, type_name, COMPOUND_OPERATORS
from squared.sq_parser import compile_source
from squared.sq_printer import Printer
from squared.sq_serialize import to_builtin

logger = logging.getLogger("squared")


@dataclass(eq=False)
class RunContext:
    """State owned by one top-level run: its output, call stack, error position and cancel flag."""
    owner: Any = None
    side_effects: List[Dict[str, Any]] = field(default_factory=list)
    call_stack: List[Dict[str, Any]] = field(default_factory=list)
    current_node: Any = None
    cancelled: bool = False


_current_run: contextvars.ContextVar = contextvars.ContextVar("squared_run", default=None)


def _scope_to_dict(scope: Scope) -> dict:
    """Flatten the current scope and its parents into a single plain dict."""
    chain = []
    cur = scope
    while cur is not None:
        chain.append(cur)
        cur = cur.parent
    out: dict = {}
    # Populate from root to current so current bindings override parents
    for s in reversed(chain):
        for k, v in s.bindings.items():
            out[k] = to_builtin(v)
    return out


class Evaluator:
    """The Squared execution engine."""

    def __init__(self, *,
                 resolver: Any = None,
                 loader: Optional[Callable[[str, str], Any]] = None,
                 compile_fn: Optional[Callable[[str], Program]] = None,
                 comment_prefix: str = "--",
                 yield_interval: int = 1000,
                 loop_yield_interval: int = 50):
        self.resolver = resolver
        self.loader = loader
        self.compile_fn = compile_fn or functools.partial(compile_source, comment_prefix=comment_prefix)
        self.yield_interval = yield_interval
        self.loop_yield_interval = loop_yield_interval
        self.builtins_scope: Optional[Scope] = None
        self._default_run = RunContext(owner=self)
        self._active_runs: set = set()
        # Compiled eval() / type-construction sources keyed by exact text.
        self.eval_cache: Dict[str, Program] = {}
        self.op_count = 0
        self.printer = Printer()

    @contextlib.contextmanager
    def run_context(self):
        """Gives the enclosed run its own RunContext, visible to everything it awaits."""
        ctx = RunContext(owner=self)
        self._active_runs.add(ctx)
        token = _current_run.set(ctx)
        try:
            yield ctx
        finally:
            _current_run.reset(token)
            self._active_runs.discard(ctx)

    @property
    def context(self) -> RunContext:
        ctx = _current_run.get()
        if ctx is not None and ctx.owner is self:
            return ctx
        return self._default_run

    @property
    def side_effects(self) -> List[Dict[str, Any]]:
        return self.context.side_effects

    @property
    def call_stack(self) -> List[Dict[str, Any]]:
        return self.context.call_stack

    @property
    def current_node(self):
        return self.context.current_node

    @current_node.setter
    def current_node(self, node):
        self.context.current_node = node

    @property
    def cancelled(self) -> bool:
        return self.context.cancelled

    @cancelled.setter
    def cancelled(self, value: bool):
        self.context.cancelled = value

    def _dbg(self, *parts):
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(" ".join(str(p) for p in parts))

    def _push_frame(self, name, func, args, call_site_node):
        loc = getattr(call_site_node, 'loc', None)
        self.call_stack.append({
            'name': name,
            'func': func,
            'args': args,
            'call_site': loc,
        })

    def _pop_frame(self):
        if self.call_stack:
            self.call_stack.pop()

    # -----------------------------------------------------------------
    # Scheduling and cancellation
    # -----------------------------------------------------------------

    def cancel(self):
        """Requests that every run in progress unwinds at its next poll point."""
        if not self._active_runs:
            self._default_run.cancelled = True
        for ctx in list(self._active_runs):
            ctx.cancelled = True

    def _check_cancelled(self):
        if self.cancelled:
            raise ExecutionCancelled()

    async def _tick(self):
        self.op_count += 1
        if self.yield_interval and self.op_count % self.yield_interval == 0:
            await asyncio.sleep(0)

    async def _loop_tick(self, iterations: int):
        if self.loop_yield_interval and iterations % self.loop_yield_interval == 0:
            await asyncio.sleep(0)

    # -----------------------------------------------------------------
    # Statements
    # -----------------------------------------------------------------

    async def run(self, program: Program, scope: Scope) -> Completion:
        """Executes a whole program against a scope."""
        return await self.exec_block(program.body, scope)

    async def exec_block(self, statements: List[Any], scope: Scope) -> Completion:
        result = Completion.normal()
        for stmt in statements:
            self._check_cancelled()
            completion = await self.exec_statement(stmt, scope)
            if completion.abrupt:
                return completion
            result = completion
        return result

    async def exec_statement(self, node: Any, scope: Scope) -> Completion:
        self.current_node = node
        await self._tick()
        match node:
            case ExpressionStatement():
                return Completion.normal(await self.eval_expr(node.expr, scope))

            case VarDeclaration():
                value = await self.eval_expr(node.value, scope) if node.value is not None else None
                scope.declare(node.name, value)
                return Completion.normal(value)

            case Assignment():
                value = await self._assigned_value(node, node.operator, lambda: scope.get(node.name, 0.0), scope)
                scope.assign(node.name, value)
                return Completion.normal(value)

            case MemberAssignment():
                return Completion.normal(await self._exec_member_assignment(node, scope))

            case FunctionDeclaration():
                fn = ScriptFunction(node.name, node.params, node.body, scope)
                scope.declare(node.name, fn)
                self._dbg("define function", node.name, node.params)
                return Completion.normal(fn)

            case ObjectDefinition():
                return Completion.normal(await self._exec_object_definition(node, scope))

            case IfStatement():
                if truthy(await self.eval_expr(node.test, scope)):
                    return await self.exec_block(node.consequent, scope)
                for clause in node.elifs:
                    if truthy(await self.eval_expr(clause.test, scope)):
                        return await self.exec_block(clause.body, scope)
                if node.alternate is not None:
                    return await self.exec_block(node.alternate, scope)
                return Completion.normal()

            case WhileStatement():
                return await self._exec_while(node, scope)

            case ForStatement():
                return await self._exec_for(node, scope)

            case ForRangeStatement():
                return await self._exec_for_range(node, scope)

            case ReturnStatement():
                value = await self.eval_expr(node.value, scope) if node.value is not None else None
                return Completion.returning(value)

            case BreakStatement():
                return BREAK

            case ContinueStatement():
                return CONTINUE

            case ImportStatement():
                return Completion.normal(await self._exec_import(node, scope))

        raise TypeError(f"Unknown statement node: {type(node).__name__}")

    async def _assigned_value(self, node, operator: str, current: Callable[[], Any], scope: Scope) -> Any:
        if operator == "=":
            return await self.eval_expr(node.value, scope)
        base = current()
        rhs = await self.eval_expr(node.value, scope)
        self.current_node = node
        return apply_binary(COMPOUND_OPERATORS[operator], base, rhs)

    async def _exec_member_assignment(self, node: MemberAssignment, scope: Scope) -> Any:
        target = await self.eval_expr(node.object, scope)
        if target is None:
            raise NullPropertyAccess.at(node, f"Cannot set property '{node.property}' of null")
        if not isinstance(target, collections.abc.MutableMapping):
            raise NotAnObject.at(node, f"Cannot set property '{node.property}' on {type_name(target)}")
        value = await self._assigned_value(node, node.operator, lambda: target.get(node.property, 0.0), scope)
        target[node.property] = value
        return value

    async def _exec_object_definition(self, node: ObjectDefinition, scope: Scope) -> ScriptObject:
        properties: Dict[str, Any] = {}
        if node.parent is not None:
            try:
                parent = scope.lookup(node.parent)
            except KeyError:
                raise UndefinedVariable.at(node, node.parent) from None
            if not isinstance(parent, ScriptObject):
                raise NotAnObject.at(node, f"Parent '{node.parent}' of '{node.name}' is {type_name(parent)}, not an object")
            # One-time shallow copy; later changes to the parent are not seen.
            properties = dict(parent.properties)

        obj = ScriptObject(node.name, properties)
        # The body runs isolated from user bindings; its frame *is* the property table.
        frame = Scope(parent=self.builtins_scope)
        frame.bindings = obj.properties
        await self.exec_block(node.properties, frame)
        scope.declare(node.name, obj)
        self._dbg("define object", node.name, "parent", node.parent, "keys", list(obj.keys()))
        return obj

    async def _exec_while(self, node: WhileStatement, scope: Scope) -> Completion:
        iterations = 0
        while True:
            self._check_cancelled()
            if not truthy(await self.eval_expr(node.test, scope)):
                break
            completion = await self.exec_block(node.body, scope)
            if completion.status == 'break':
                break
            if completion.status == 'return':
                return completion
            iterations += 1
            await self._loop_tick(iterations)
        return Completion.normal()

    async def _exec_for(self, node: ForStatement, scope: Scope) -> Completion:
        await self.exec_statement(node.init, scope)
        iterations = 0
        while True:
            self._check_cancelled()
            if not truthy(await self.eval_expr(node.test, scope)):
                break
            completion = await self.exec_block(node.body, scope)
            if completion.status == 'break':
                break
            if completion.status == 'return':
                return completion
            await self.exec_statement(node.update, scope)
            iterations += 1
            await self._loop_tick(iterations)
        return Completion.normal()

    async def _exec_for_range(self, node: ForRangeStatement, scope: Scope) -> Completion:
        # Bounds are evaluated once; the counter is independent of the loop variable.
        current = to_number(await self.eval_expr(node.start, scope))
        end = to_number(await self.eval_expr(node.end, scope))
        iterations = 0
        while current <= end:
            self._check_cancelled()
            scope.declare(node.iterator, current)
            completion = await self.exec_block(node.body, scope)
            if completion.status == 'break':
                break
            if completion.status == 'return':
                return completion
            current += 1
            iterations += 1
            await self._loop_tick(iterations)
        return Completion.normal()

    async def _exec_import(self, node: ImportStatement, scope: Scope) -> Any:
        name = node.module_name
        if self.resolver is None:
            raise ImportResolutionError.at(node, f"Cannot import '{name}': no module resolver configured")
        resolution = self.resolver.resolve(name)
        if inspect.isawaitable(resolution):
            resolution = await resolution
        if resolution is None:
            raise ImportResolutionError.at(node, f"Cannot resolve module '{name}'")
        self._dbg("import", name, "->", resolution.kind)
        match resolution.kind:
            case 'object':
                value = resolution.value
            case 'reference':
                if self.loader is None:
                    raise ImportResolutionError.at(node, f"Cannot load module '{name}': no module loader configured")
                value = await self.loader(resolution.value, name)
            case _:
                raise ImportResolutionError.at(node, f"Unknown resolution kind {resolution.kind!r} for '{name}'")
        self.current_node = node
        binding = name.split(".")[0]
        scope.declare(binding, value)
        return value

    # -----------------------------------------------------------------
    # Expressions
    # -----------------------------------------------------------------

    async def eval_expr(self, node: Any, scope: Scope) -> Any:
        self.current_node = node
        match node:
            case Literal():
                return node.value

            case Identifier():
                try:
                    return scope.lookup(node.name)
                except KeyError:
                    raise UndefinedVariable.at(node, node.name) from None

            case ArrayLiteral():
                return [await self.eval_expr(el, scope) for el in node.elements]

            case BinaryExpression():
                left = await self.eval_expr(node.left, scope)
                if node.op == "and":
                    return await self.eval_expr(node.right, scope) if truthy(left) else left
                if node.op == "or":
                    return left if truthy(left) else await self.eval_expr(node.right, scope)
                right = await self.eval_expr(node.right, scope)
                self.current_node = node
                return apply_binary(node.op, left, right)

            case CallExpression():
                callee = await self.eval_expr(node.callee, scope)
                args = [await self.eval_expr(arg, scope) for arg in node.args]
                return await self.call(callee, args, node)

            case MemberExpression():
                target = await self.eval_expr(node.object, scope)
                return self.get_member(target, node.property, node)

            case EvalCall():
                argument = await self.eval_expr(node.argument, scope)
                return await self.eval_source(argument, scope, node)

            case TypeConstruction():
                return await self._construct(node, scope)

        raise TypeError(f"Unknown expression node: {type(node).__name__}")

    def get_member(self, target: Any, prop: str, node: Any = None) -> Any:
        if target is None:
            raise NullPropertyAccess.at(node, f"Cannot read property '{prop}' of null")
        if isinstance(target, collections.abc.Mapping):
            return target.get(prop)
        if isinstance(target, (list, str)):
            return float(len(target)) if prop == "length" else None
        if isinstance(target, (bool, int, float, ScriptFunction)):
            return None
        if prop.startswith("_"):
            return None
        return getattr(target, prop, None)

    async def call(self, func: Any, args: List[Any], node: Any = None) -> Any:
        """Calls a callable (ScriptFunction or host Python callable)."""
        self._dbg("Evaluator.call", type(func).__name__, "argc", len(args))
        match func:
            case ScriptFunction():
                frame = Scope(parent=func.closure)
                for i, param in enumerate(func.params):
                    frame.declare(param, args[i] if i < len(args) else None)
                self._push_frame(func.name, func, args, node)
                completion = await self.exec_block(func.body, frame)
                self._pop_frame()
                return completion.value if completion.status == 'return' else None

            case _ if callable(func):
                name = getattr(func, '__name__', type(func).__name__).lstrip('_')
                self._push_frame(name, func, args, node)
                self.current_node = node
                result = func(*args)
                if inspect.isawaitable(result):
                    result = await result
                self._pop_frame()
                return result

            case _:
                raise NotCallable.at(node, f"{self._describe_callee(node)} is not callable (got {type_name(func)})")

    def _describe_callee(self, node: Any) -> str:
        callee = getattr(node, 'callee', None)
        match callee:
            case Identifier():
                return f"'{callee.name}'"
            case MemberExpression():
                return f"'{callee.property}'"
        return "Value"

    # -----------------------------------------------------------------
    # eval() and type constructions
    # -----------------------------------------------------------------

    def compile_cached(self, source: str) -> Program:
        program = self.eval_cache.get(source)
        if program is None:
            self._dbg("eval cache miss", repr(source))
            program = self.compile_fn(source)
            self.eval_cache[source] = program
        return program

    async def eval_source(self, source: Any, scope: Scope, node: Any = None) -> Any:
        """Compiles (through the cache) and runs source text in the calling scope.

        Compile errors are reported at `node`, with their position inside the
        evaluated text kept in the message.
        """
        if not isinstance(source, str):
            source = self.printer.pformat(source)
        try:
            program = self.compile_cached(source)
        except (LexError, ParseError) as e:
            loc = getattr(node, 'loc', None)
            if loc:
                where = f"line {e.line}, col {e.col}" if e.line is not None else "an unknown position"
                e.message = f"{e.message} (at {where} of the evaluated source)"
                e.args = (e.message,)
                e.line, e.col = loc.get('line'), loc.get('col')
            raise
        body = program.body
        if len(body) == 1 and isinstance(body[0], ExpressionStatement):
            return await self.eval_expr(body[0].expr, scope)
        completion = await self.exec_block(body, scope)
        if completion.status == 'return':
            return completion.value
        if completion.abrupt:
            return None
        return completion.value

    async def _construct(self, node: TypeConstruction, scope: Scope) -> Any:
        source = node.source
        empty = not source.strip()
        value = None if empty else await self.eval_source(source, scope, node)
        self.current_node = node
        match node.callee:
            case "int":
                if empty:
                    return 0.0
                number = to_number(value)
                return float(math.trunc(number)) if math.isfinite(number) else number
            case "num":
                return 0.0 if empty else to_number(value)
            case "str":
                return "" if empty else self.printer.pformat(value)
            case "bool":
                return False if empty else truthy(value)
            case "fstr":
                if empty:
                    return ""
                renderer = pystache.Renderer(escape=lambda u: u)
                return renderer.render(self.printer.pformat(value), _scope_to_dict(scope))
        raise TypeError(f"Unknown type constructor: {node.callee}")
