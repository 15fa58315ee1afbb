"""
Shared compiler state: the namespace registry, the per-unit source-map
registry and the process-wide set of loaded namespaces.

Both structures are shared by reference between units. Every mutation goes
through a re-entrant lock so units driven from different threads (or event
loops) cannot interleave a check-and-mark.
"""

import threading
from typing import Any, Callable, Dict, Iterator, Optional

from kindling.kindling_datatypes import Namespace

CORE_NS = "cljs.core"
USER_NS = "cljs.user"

ANALYZED = "analyzed"
LOADED_LEVEL = "loaded"


class CompilerState:
    """Process-wide store populated by the analyzer and the source-map accumulator."""

    def __init__(self):
        self.lock = threading.RLock()
        self.namespaces: Dict[str, Namespace] = {}
        self.source_maps: Dict[str, Dict[int, list]] = {}
        self.ensure_namespace(CORE_NS)
        self.ensure_namespace(USER_NS)

    def ensure_namespace(self, name: str) -> Namespace:
        with self.lock:
            ns = self.namespaces.get(name)
            if ns is None:
                ns = self.namespaces[name] = Namespace(name)
            return ns

    def get_namespace(self, name: str) -> Optional[Namespace]:
        with self.lock:
            return self.namespaces.get(name)

    def record_source_map(self, unit: str, table: Dict[int, list]):
        with self.lock:
            self.source_maps[unit] = table

    def __repr__(self):
        return f"<CompilerState namespaces={sorted(self.namespaces)}>"


def empty_state(init: Optional[Callable[[CompilerState], Any]] = None) -> CompilerState:
    """Construct an empty compiler state, optionally passing it through `init`."""
    state = CompilerState()
    if init is not None:
        init(state)
    return state


class LoadedSet:
    """Namespaces whose resolver call has been fulfilled.

    An entry is either ANALYZED (resolved for compile-time analysis only) or
    LOADED (resolved and evaluated into the host runtime). Membership tests
    succeed for both.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._entries: Dict[str, str] = {}

    def __contains__(self, name) -> bool:
        with self._lock:
            return str(name) in self._entries

    def __iter__(self) -> Iterator[str]:
        with self._lock:
            return iter(list(self._entries))

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __repr__(self):
        with self._lock:
            return f"LoadedSet({self._entries!r})"

    def is_loaded(self, name: str) -> bool:
        with self._lock:
            return self._entries.get(str(name)) == LOADED_LEVEL

    def mark_loaded(self, name: str):
        with self._lock:
            self._entries[str(name)] = LOADED_LEVEL

    def mark_analyzed(self, name: str):
        with self._lock:
            # Never downgrade a namespace that has been evaluated.
            self._entries.setdefault(str(name), ANALYZED)

    def discard(self, name: str):
        with self._lock:
            self._entries.pop(str(name), None)

    def clear(self):
        with self._lock:
            self._entries.clear()

    def apply_reload(self, name: str, directive: Optional[str]):
        if directive == "reload":
            self.discard(name)
        elif directive == "reload-all":
            self.clear()


# Process-wide default, shared by every unit that does not bring its own.
LOADED = LoadedSet()
