from __future__ import annotations
import os
from typing import Optional, Tuple

SOURCE_EXTENSION = ".sq"


def resolve_locator(locator: str, base_dir: Optional[str]) -> str:
    """Turns a `file://` locator or a plain path into an absolute filesystem path."""
    rest = locator[7:] if locator.startswith("file://") else locator
    base = base_dir or os.getcwd()
    # Absolute filesystem root
    if rest.startswith("/"):
        return "/" + rest.lstrip("/")
    # Home directory
    if rest.startswith("~"):
        return os.path.expanduser(rest)
    # Empty → source dir or CWD
    if rest == "":
        return base
    # ./x, ../x and bare names are relative to the source dir (or CWD)
    return os.path.normpath(os.path.join(base, rest))


def _candidates(path: str):
    yield path
    if not os.path.splitext(path)[1]:
        yield path + SOURCE_EXTENSION


async def file_get(locator: str, *, base_dir: Optional[str] = None) -> Tuple[str, str]:
    """Reads the file a locator names and returns (resolved path, UTF-8 text).

    A locator without an extension falls back to the same name with `.sq` appended.
    """
    path = resolve_locator(locator, base_dir)
    for candidate in _candidates(path):
        if os.path.isfile(candidate):
            with open(candidate, "r", encoding="utf-8") as f:
                return candidate, f.read()
    if os.path.isdir(path):
        raise IsADirectoryError(path)
    raise FileNotFoundError(path)
