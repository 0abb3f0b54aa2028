"""
Stringification of Squared values, as used by `print`, string concatenation and the REPL.
"""
import collections.abc
import math

from squared.sq_datatypes import ScriptObject, ScriptFunction
from squared.sq_serialize import serialize


class Printer:
    """Formats runtime values into the text the language shows to users."""

    def __init__(self):
        self._handlers = self._create_handlers()
        self._active = set()

    def pformat(self, obj) -> str:
        """Public entry point to format a value."""
        handler = self._get_handler(obj)
        return handler(obj)

    def _get_handler(self, obj):
        obj_type = type(obj)
        if obj_type in self._handlers:
            return self._handlers[obj_type]
        if isinstance(obj, collections.abc.Mapping): return self._pformat_object
        if isinstance(obj, list): return self._pformat_list
        if callable(obj): return self._pformat_builtin
        return str

    def _create_handlers(self):
        return {
            str: self._pformat_str,
            int: self._pformat_number,
            float: self._pformat_number,
            bool: self._pformat_bool,
            type(None): self._pformat_none,
            list: self._pformat_list,
            ScriptObject: self._pformat_object,
            ScriptFunction: self._pformat_function,
        }

    def _pformat_str(self, obj):
        return obj

    def _pformat_number(self, obj):
        if isinstance(obj, int):
            return str(obj)
        if math.isnan(obj):
            return 'NaN'
        if math.isinf(obj):
            return 'Infinity' if obj > 0 else '-Infinity'
        if obj.is_integer():
            return str(int(obj))
        return repr(obj)

    def _pformat_bool(self, obj):
        return 'true' if obj else 'false'

    def _pformat_none(self, obj):
        return 'null'

    def _pformat_list(self, obj):
        if id(obj) in self._active:
            return '[...]'
        self._active.add(id(obj))
        try:
            return '[' + ', '.join(self.pformat(item) for item in obj) + ']'
        finally:
            self._active.discard(id(obj))

    def _pformat_object(self, obj):
        return serialize(obj, fmt='json')

    def _pformat_function(self, obj):
        return f"<function {obj.name}>"

    def _pformat_builtin(self, obj):
        name = getattr(obj, '__name__', type(obj).__name__).lstrip('_')
        return f"<builtin {name}>"
