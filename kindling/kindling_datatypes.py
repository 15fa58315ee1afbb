"""
Defines the core data types for the kindling compiler driver.

This module provides the reader's form types, the records exchanged with
host capabilities (resources, eval requests), the analyzer's node types and
the error hierarchy raised by the driver.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple


# =================================================================
# Errors
# =================================================================

class KindlingError(Exception):
    """Base class for every error raised by the driver."""
    def __init__(self, message: str, loc: Optional[dict] = None):
        super().__init__(message)
        self.loc = loc


class ConfigurationError(KindlingError):
    """A required capability or option is missing or malformed."""
    pass


class ContractViolation(KindlingError):
    """A host capability answered with something outside its contract."""
    pass


class UndeclaredNamespace(KindlingError):
    def __init__(self, requester: Optional[str], ns: str, loc: Optional[dict] = None):
        where = f" required by {requester}" if requester else ""
        super().__init__(f"No such namespace: {ns}{where}, could not locate {ns_to_path_hint(ns)}", loc)
        self.requester = requester
        self.ns = ns


class CircularDependency(KindlingError):
    def __init__(self, path: Tuple[str, ...]):
        super().__init__("Circular dependency detected " + " -> ".join(path))
        self.path = list(path)


class UseCheckError(KindlingError):
    """A :use or :use-macros reference does not resolve after loading."""
    pass


class ReaderError(KindlingError):
    pass


class AnalysisError(KindlingError):
    pass


def ns_to_path_hint(ns: str) -> str:
    return ns.replace("-", "_").replace(".", "/") + ".cljs"


# =================================================================
# Forms
# =================================================================

class Symbol(str):
    """A symbol read from source. Compares equal to its plain string name."""

    @property
    def ns(self) -> Optional[str]:
        if "/" in self and len(self) > 1:
            return self.split("/", 1)[0]
        return None

    @property
    def name(self) -> str:
        if "/" in self and len(self) > 1:
            return self.split("/", 1)[1]
        return str(self)

    def __repr__(self):
        return f"Symbol({str(self)!r})"


@dataclass(frozen=True)
class Keyword:
    name: str

    def __str__(self):
        return ":" + self.name


class ListForm(tuple):
    """A parenthesised list form."""
    def __repr__(self):
        return "(" + " ".join(repr(x) for x in self) + ")"


class VectorForm(tuple):
    def __repr__(self):
        return "[" + " ".join(repr(x) for x in self) + "]"


class SetForm(tuple):
    def __repr__(self):
        return "#{" + " ".join(repr(x) for x in self) + "}"


class MapForm(tuple):
    """A map literal kept as an ordered tuple of (key, value) pairs."""
    def items(self):
        return list(self)

    def get(self, key, default=None):
        for k, v in self:
            if k == key:
                return v
        return default

    def __repr__(self):
        return "{" + ", ".join(f"{k!r} {v!r}" for k, v in self) + "}"


class _Eof:
    """Sentinel returned by a reader at end of input."""
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return "<EOF>"

    def __bool__(self):
        return False


EOF = _Eof()


def sym(name: str, loc: Optional[dict] = None) -> Symbol:
    s = Symbol(name)
    if loc is not None:
        s.loc = loc
    return s


def form_loc(form: Any) -> Optional[dict]:
    return getattr(form, "loc", None)


# =================================================================
# Capability records
# =================================================================

LANGUAGES = ("clj", "js")


@dataclass(frozen=True)
class ResourceRequest:
    """Argument handed to a resolver."""
    name: str
    path: str
    macros_ns: bool = False


@dataclass(frozen=True)
class Resource:
    """A resolved namespace source. `lang` is 'clj' or 'js'."""
    lang: str
    source: str
    name: Optional[str] = None
    path: Optional[str] = None


@dataclass(frozen=True)
class EvalRequest:
    """Argument handed to an evaluator."""
    lang: str
    source: str
    name: Optional[str] = None
    path: Optional[str] = None


@dataclass
class EvalResult:
    ns: str
    value: Any = None


# =================================================================
# Analyzer output
# =================================================================

@dataclass
class Namespace:
    """Registry entry for one namespace."""
    name: str
    defs: Dict[str, dict] = field(default_factory=dict)
    macros: Dict[str, dict] = field(default_factory=dict)
    requires: Dict[str, str] = field(default_factory=dict)
    uses: Dict[str, str] = field(default_factory=dict)
    require_macros: Dict[str, str] = field(default_factory=dict)
    use_macros: Dict[str, str] = field(default_factory=dict)


@dataclass
class Node:
    """An analyzed form. `op` selects the emitter strategy."""
    op: str
    form: Any = None
    env: Dict[str, Any] = field(default_factory=dict)
    children: List['Node'] = field(default_factory=list)
    info: Dict[str, Any] = field(default_factory=dict)

    @property
    def loc(self) -> Optional[dict]:
        return form_loc(self.form)


@dataclass
class NsNode(Node):
    """Analyzer output for a namespace declaration."""
    name: str = ""
    deps: List[str] = field(default_factory=list)
    uses: Dict[str, str] = field(default_factory=dict)
    requires: Dict[str, str] = field(default_factory=dict)
    require_macros: Dict[str, str] = field(default_factory=dict)
    use_macros: Dict[str, str] = field(default_factory=dict)
    reload: Dict[str, str] = field(default_factory=dict)
    reloads: Dict[str, Dict[str, str]] = field(default_factory=dict)

    def reload_for(self, kind: str, ns: str) -> Optional[str]:
        return (self.reloads.get(kind) or {}).get(ns)
