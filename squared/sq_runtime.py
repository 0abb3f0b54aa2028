import collections.abc
import contextvars
import dataclasses
import importlib
import inspect
import math
import os
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Literal, Optional, Set

import httpx

from squared.sq_config import RunnerConfig, configure_logging
from squared.sq_datatypes import Scope, ScriptObject
from squared.sq_errors import SquaredError, ImportResolutionError, OperandError, ExecutionCancelled
from squared.sq_file import file_get
from squared.sq_http import http_get_text
from squared.sq_interpreter import Evaluator
from squared.sq_modules import ModuleRegistry, SOURCE_SCHEME, PYTHON_SCHEME
from squared.sq_operators import to_number, type_name
from squared.sq_parser import compile_source
from squared.sq_printer import Printer
from squared.sq_serialize import serialize, deserialize, detect_format

# Locators whose load is in progress on the current task, outermost first.
_import_chain: contextvars.ContextVar = contextvars.ContextVar("squared_import_chain", default=frozenset())

# ===================================================================
# 1. Host integration
# ===================================================================


def host_api_method(func):
    """A decorator to explicitly mark host methods as callable from scripts."""
    func._is_host_api = True
    return func


# ===================================================================
# 2. Builtins
# ===================================================================

class StdLib:
    """Host builtins. Each `_name` method is bound into the builtins frame as `name`."""

    def __init__(self, runner: 'ScriptRunner'):
        self.runner = runner
        self.printer = Printer()

    async def _print(self, *values):
        message = " ".join(self.printer.pformat(v) for v in values)
        self.runner.evaluator.context.side_effects.append({'topics': ['stdout'], 'message': message})
        if self.runner.output is not None:
            result = self.runner.output(message)
            if inspect.isawaitable(result):
                await result
        return None

    async def _input(self, prompt=None):
        text = "" if prompt is None else self.printer.pformat(prompt)
        provider = self.runner.input_provider
        if provider is None:
            return ""
        result = provider(text)
        if inspect.isawaitable(result):
            result = await result
        return result

    def _len(self, value):
        if value is None:
            return 0.0
        if isinstance(value, (str, list, collections.abc.Mapping)):
            return float(len(value))
        raise OperandError(f"len() expects a string, array or object, got {type_name(value)}")

    def _push(self, array, value):
        if not isinstance(array, list):
            raise OperandError(f"push() expects an array, got {type_name(array)}")
        array.append(value)
        return float(len(array))

    def _at(self, seq, index):
        if isinstance(seq, collections.abc.Mapping):
            return seq.get(index if isinstance(index, str) else self.printer.pformat(index))
        if not isinstance(seq, (str, list)):
            raise OperandError(f"at() expects an array, string or object, got {type_name(seq)}")
        number = to_number(index)
        if not math.isfinite(number):
            return None
        i = int(number)
        if i < 0:
            i += len(seq)
        if 0 <= i < len(seq):
            return seq[i]
        return None

    def _keys(self, obj):
        if not isinstance(obj, collections.abc.Mapping):
            raise OperandError(f"keys() expects an object, got {type_name(obj)}")
        return list(obj.keys())

    def _serialize(self, value, fmt="json"):
        try:
            return serialize(value, fmt=str(fmt))
        except ValueError as e:
            raise OperandError(str(e)) from e


# ===================================================================
# 3. Script Execution
# ===================================================================

def _source_context(source: str, line: int, col: Optional[int], radius: int = 2) -> str:
    lines = source.splitlines()
    if not line or line < 1 or line > len(lines):
        return ""
    start = max(1, line - radius)
    end = min(len(lines), line + radius)
    width = len(str(end))
    out = []
    for i in range(start, end + 1):
        prefix = ">" if i == line else " "
        ln = str(i).rjust(width)
        out.append(f"{prefix} {ln} | {lines[i - 1]}")
        if i == line and col is not None:
            caret = " " * max(col - 1, 0)
            out.append(f"  {' ' * width} | {caret}^")
    return "\n".join(out)


@dataclass
class ExecutionResult:
    """The structured result of a script execution."""
    status: Literal['success', 'error', 'cancelled']
    value: Any = None
    error_kind: Optional[str] = None
    error_message: Optional[str] = None
    error_location: Optional[Dict[str, int]] = None
    side_effects: List[Dict] = field(default_factory=list)
    call_stack: List[str] = field(default_factory=list)
    source: Optional[str] = field(default=None, repr=False)

    @property
    def stdout(self) -> List[str]:
        return [e['message'] for e in self.side_effects if 'stdout' in e.get('topics', ())]

    def format_error(self) -> str:
        """Formats the error with its location, a source excerpt and the call stack."""
        if self.status != 'error':
            return ""
        msg = f"{self.error_kind}: {self.error_message or 'Unknown error'}"
        loc = self.error_location or {}
        line = loc.get('line')
        if line is not None:
            col = loc.get('col')
            col_info = f", col {col}" if col is not None else ""
            msg = f"Error on line {line}{col_info}: {msg}"
            context = _source_context(self.source or "", line, col)
            if context:
                msg = f"{msg}\n{context}"
        if self.call_stack:
            msg += "\nCall stack: " + " > ".join(self.call_stack)
        return msg


class ScriptRunner:
    """Compiles and executes Squared code against a persistent global frame."""

    def __init__(self, config: Optional[RunnerConfig] = None, *,
                 registry: Optional[ModuleRegistry] = None,
                 output: Optional[Callable[[str], Any]] = None,
                 input_provider: Optional[Callable[[str], Any]] = None,
                 host_object: Any = None,
                 http_transport: Optional[httpx.AsyncBaseTransport] = None,
                 module_cache: Optional[Dict[str, Any]] = None,
                 compile_fn: Optional[Callable] = None):
        self.config = config or RunnerConfig()
        configure_logging(self.config.debug)
        self.registry = registry if registry is not None else ModuleRegistry.with_defaults()
        self.output = output
        self.input_provider = input_provider
        self.host_object = host_object
        self.http_transport = http_transport
        # Loaded reference modules keyed by locator; shared with child module runners.
        self.module_cache: Dict[str, Any] = module_cache if module_cache is not None else {}
        self._children: Set['ScriptRunner'] = set()

        self.evaluator = Evaluator(
            resolver=self.registry,
            loader=self.load_reference,
            compile_fn=compile_fn,
            comment_prefix=self.config.comment_prefix,
            yield_interval=self.config.yield_interval,
            loop_yield_interval=self.config.loop_yield_interval,
        )

        # Builtins live in their own read-only frame beneath the global frame.
        self.builtins_scope = Scope(readonly=True)
        stdlib = StdLib(self)
        for name, member in inspect.getmembers(stdlib):
            if name.startswith('_') and not name.startswith('__') and callable(member):
                self.builtins_scope.bindings[name[1:]] = member
        self.builtins_scope.bindings['null'] = None
        self._bind_host_api_methods()
        self.evaluator.builtins_scope = self.builtins_scope

        self.root_scope = Scope(parent=self.builtins_scope)

    def _bind_host_api_methods(self):
        """Bind @host_api_method methods of the host into the builtins frame."""
        host = self.host_object
        if not host:
            return
        for name, member in inspect.getmembers(host):
            if not callable(member):
                continue
            is_api = getattr(member, "_is_host_api", False)
            if not is_api:
                func = getattr(member, "__func__", None)
                if func is not None:
                    is_api = getattr(func, "_is_host_api", False)
            if is_api:
                self.builtins_scope.bindings[name] = member

    def define(self, name: str, value: Any):
        """Binds a host value (builtin function, object, constant) into the builtins frame."""
        self.builtins_scope.bindings[name] = value

    def cancel(self):
        """Flags every run in progress on this runner; each unwinds at its next poll point."""
        self.evaluator.cancel()
        for child in list(self._children):
            child.cancel()

    async def handle_script(self, source_code: str) -> ExecutionResult:
        """The main entry point to execute a script."""
        ev = self.evaluator
        with ev.run_context() as run:
            ev._dbg("handle_script", f"{len(source_code)} chars")
            try:
                program = compile_source(source_code, comment_prefix=self.config.comment_prefix)
                completion = await ev.run(program, self.root_scope)
                return ExecutionResult(status='success', value=completion.value,
                                       side_effects=run.side_effects, source=source_code)
            except ExecutionCancelled:
                ev._dbg("cancelled")
                return ExecutionResult(status='cancelled', side_effects=run.side_effects, source=source_code)
            except SquaredError as e:
                return self._error_result(e.kind, e.message, e.location, source_code)
            except Exception as e:
                # Faults raised by host builtins surface as internal errors, never as exceptions.
                return self._error_result("InternalError", f"{type(e).__name__}: {e}", None, source_code)

    def _error_result(self, kind: str, message: str, location: Optional[Dict[str, int]], source: str) -> ExecutionResult:
        run = self.evaluator.context
        if location is None:
            loc = getattr(run.current_node, 'loc', None)
            if loc:
                location = {'line': loc.get('line'), 'col': loc.get('col')}
        result = ExecutionResult(
            status='error',
            error_kind=kind,
            error_message=message,
            error_location=location,
            side_effects=run.side_effects,
            call_stack=[frame.get('name') or '<call>' for frame in run.call_stack],
            source=source,
        )
        self.evaluator._dbg("error", kind, message, location)
        run.side_effects.append({'topics': ['stderr'], 'message': result.format_error()})
        return result

    # -----------------------------------------------------------------
    # Module loading
    # -----------------------------------------------------------------

    async def load_reference(self, locator: str, name: str) -> Any:
        """Loads a `reference` resolution into a module value, once per locator."""
        if locator in self.module_cache:
            return self.module_cache[locator]
        chain = _import_chain.get()
        if locator in chain:
            raise ImportResolutionError(f"Circular import of '{name}' ({locator})")
        token = _import_chain.set(chain | {locator})
        try:
            value = await self._load(locator, name)
        finally:
            _import_chain.reset(token)
        self.module_cache[locator] = value
        return value

    async def _load(self, locator: str, name: str) -> Any:
        self.evaluator._dbg("load module", name, "from", locator)
        if locator.startswith(SOURCE_SCHEME):
            source = self.registry.source_for(locator)
            if source is None:
                raise ImportResolutionError(f"No registered source for '{name}' ({locator})")
            return await self._run_module(source, name, self.config.source_dir)

        if locator.startswith(PYTHON_SCHEME):
            try:
                module = importlib.import_module(locator[len(PYTHON_SCHEME):])
            except ImportError as e:
                raise ImportResolutionError(f"Cannot import Python module for '{name}': {e}") from e
            return getattr(module, 'default', module)

        if locator.startswith(("http://", "https://")):
            cfg = {'timeout': self.config.http_timeout, 'retries': self.config.http_retries}
            try:
                text, content_type = await http_get_text(locator, cfg, transport=self.http_transport)
            except httpx.HTTPError as e:
                raise ImportResolutionError(f"Cannot load module '{name}' from {locator}: {e}") from e
            fmt = detect_format(content_type, locator=locator)
            if fmt is not None:
                return self._decode_data(text, fmt, name)
            return await self._run_module(text, name, self.config.source_dir)

        try:
            path, text = await file_get(locator, base_dir=self.config.base_dir)
        except OSError as e:
            raise ImportResolutionError(f"Cannot load module '{name}' from {locator}: {e}") from e
        fmt = detect_format(locator=path)
        if fmt is not None:
            return self._decode_data(text, fmt, name)
        return await self._run_module(text, name, os.path.dirname(path))

    def _decode_data(self, text: str, fmt: str, name: str) -> Any:
        try:
            value = deserialize(text, fmt=fmt)
        except ValueError as e:
            raise ImportResolutionError(f"Cannot decode module '{name}': {e}") from e
        if isinstance(value, ScriptObject):
            value.name = name
        return value

    async def _run_module(self, source: str, name: str, source_dir: Optional[str]) -> ScriptObject:
        """Executes module source in an isolated runner and exports its top-level bindings."""
        child_config = dataclasses.replace(self.config, source_dir=source_dir)
        child = ScriptRunner(
            child_config,
            registry=self.registry,
            output=self.output,
            input_provider=self.input_provider,
            host_object=self.host_object,
            http_transport=self.http_transport,
            module_cache=self.module_cache,
        )
        self._children.add(child)
        try:
            result = await child.handle_script(source)
        finally:
            self._children.discard(child)
        self.evaluator.context.side_effects.extend(
            e for e in result.side_effects if 'stdout' in e.get('topics', ())
        )
        if result.status == 'cancelled':
            raise ExecutionCancelled()
        if result.status == 'error':
            raise ImportResolutionError(f"Error in module '{name}': {result.error_kind}: {result.error_message}")
        return ScriptObject(name, dict(child.root_scope.bindings))
