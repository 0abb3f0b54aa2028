"""
Module resolution for `import` statements, plus the built-in modules.

The registry only maps names to resolutions; turning a `reference` locator into
a live value is the runner's job (see ScriptRunner.load_reference).
"""
import asyncio
import math
import random as _random
import time as _time
from dataclasses import dataclass
from typing import Any, Dict, Literal, Optional

from squared.sq_datatypes import ScriptObject
from squared.sq_operators import to_number

SOURCE_SCHEME = "source:"
PYTHON_SCHEME = "py:"


@dataclass(frozen=True)
class Resolution:
    """`object` carries a live value; `reference` carries a locator string to load."""
    kind: Literal['object', 'reference']
    value: Any


class ModuleRegistry:
    def __init__(self):
        self.objects: Dict[str, Any] = {}
        self.sources: Dict[str, str] = {}
        self.references: Dict[str, str] = {}

    def register_object(self, name: str, value: Any):
        self.objects[name] = value

    def register_source(self, name: str, source: str) -> str:
        """Registers Squared source text under a name and returns its locator."""
        self.sources[name] = source
        locator = f"{SOURCE_SCHEME}{name}"
        self.references[name] = locator
        return locator

    def register_reference(self, name: str, locator: str):
        self.references[name] = locator

    def resolve(self, name: str) -> Resolution:
        if name in self.objects:
            return Resolution('object', self.objects[name])
        if name in self.references:
            return Resolution('reference', self.references[name])
        return Resolution('reference', f"./{name}")

    def source_for(self, locator: str) -> Optional[str]:
        if not locator.startswith(SOURCE_SCHEME):
            return None
        return self.sources.get(locator[len(SOURCE_SCHEME):])

    @classmethod
    def with_defaults(cls, rng: Optional[_random.Random] = None) -> 'ModuleRegistry':
        registry = cls()
        registry.register_object("random", make_random(rng))
        registry.register_object("time", make_time())
        return registry


# --- random ---

_MISSING = object()


def make_random(rng: Optional[_random.Random] = None):
    rng = rng or _random.Random()

    def random(a=None, b=_MISSING):
        """random(lo, hi) -> integer in [lo, hi]; random(array) -> element; random(x, y) -> x or y."""
        if isinstance(a, list) and b is _MISSING:
            if not a:
                return None
            return a[math.floor(rng.random() * len(a))]
        lo, hi = to_number(a), to_number(b)
        if not math.isnan(lo) and not math.isnan(hi):
            return float(math.floor(rng.random() * (hi - lo + 1)) + lo)
        if b is _MISSING:
            return a
        return a if rng.random() > 0.5 else b

    return random


# --- time ---

def make_time() -> ScriptObject:
    async def sleep(seconds=0):
        await asyncio.sleep(max(0.0, to_number(seconds)))

    def now():
        return float(math.floor(_time.time()))

    return ScriptObject("time", {"sleep": sleep, "now": now})
