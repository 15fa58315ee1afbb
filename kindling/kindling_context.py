"""
The execution context threaded through every driver operation.

A `Context` is built once per public call (analyze, compile, eval_str,
eval_form, require) from caller options layered over the process-wide
default capabilities, and then passed explicitly to every step. Derived
contexts for nested units or deeper dependency levels are made with
`Context.evolve`; nothing downstream consults module globals.
"""

import os
import re
import sys
from dataclasses import dataclass, field, replace, fields
from typing import Any, Callable, Mapping, Optional, Tuple

import yaml

from kindling.kindling_datatypes import ConfigurationError
from kindling.kindling_host import Toolchain, default_toolchain
from kindling.kindling_state import CompilerState, LoadedSet, LOADED, USER_NS


# ===================================================================
# Process-wide default capabilities
# ===================================================================

_defaults = {"resolver": None, "evaluator": None}


def set_default_resolver(fn: Optional[Callable]):
    """Install the resolver used when a call's options do not name one."""
    _defaults["resolver"] = fn


def set_default_evaluator(fn: Optional[Callable]):
    _defaults["evaluator"] = fn


def default_resolver() -> Optional[Callable]:
    return _defaults["resolver"]


def default_evaluator() -> Optional[Callable]:
    return _defaults["evaluator"]


# ===================================================================
# Options
# ===================================================================

_OPTION_ALIASES = {
    "load-fn": "resolver",
    "eval-fn": "evaluator",
}

_CONTEXT_KINDS = ("statement", "expr", "return")


@dataclass(frozen=True)
class Options:
    analyze_deps: bool = True
    load_macros: bool = True
    source_map: bool = False
    context: Optional[str] = None
    def_emits_var: bool = False
    verbose: bool = False
    reload_macros: bool = False
    ns: Optional[str] = None
    resolver: Optional[Callable] = None
    evaluator: Optional[Callable] = None

    @classmethod
    def from_mapping(cls, opts: Optional[Mapping[str, Any]]) -> 'Options':
        if opts is None:
            return cls()
        if isinstance(opts, Options):
            return opts
        if not isinstance(opts, Mapping):
            raise ConfigurationError(f"Options must be a mapping, not {type(opts).__name__}")
        known = {f.name for f in fields(cls)}
        values = {}
        for raw_key, value in opts.items():
            key = str(raw_key).lstrip(":")
            key = _OPTION_ALIASES.get(key, key).replace("-", "_")
            if key not in known:
                raise ConfigurationError(f"Unknown option: {raw_key}")
            values[key] = value
        context = values.get("context")
        if context is not None:
            context = str(context).lstrip(":")
            if context not in _CONTEXT_KINDS:
                raise ConfigurationError(f"Invalid :context {context}, expected one of {_CONTEXT_KINDS}")
            values["context"] = context
        for flag in ("analyze_deps", "load_macros", "source_map", "def_emits_var", "verbose", "reload_macros"):
            if flag in values:
                values[flag] = bool(values[flag])
        return cls(**values)

    @classmethod
    def from_yaml(cls, path: str, defaults: Optional['Options'] = None) -> 'Options':
        """Options from a YAML mapping, layered over `defaults` when given."""
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return (defaults or cls()).merged(data)

    def merged(self, opts: Optional[Mapping[str, Any]]) -> 'Options':
        """These options with the entries of `opts` layered on top."""
        if opts is None:
            return self
        overrides = Options.from_mapping(opts)
        if isinstance(opts, Options):
            return overrides
        changed = {}
        for raw_key in opts:
            key = _OPTION_ALIASES.get(str(raw_key).lstrip(":"), str(raw_key).lstrip(":")).replace("-", "_")
            changed[key] = getattr(overrides, key)
        return replace(self, **changed)


# ===================================================================
# Context
# ===================================================================

@dataclass(frozen=True)
class Context:
    state: CompilerState
    resolver: Optional[Callable]
    evaluator: Optional[Callable]
    options: Options = field(default_factory=Options)
    toolchain: Toolchain = field(default_factory=default_toolchain)
    loaded: LoadedSet = LOADED
    ns: str = USER_NS
    data_readers: Mapping[str, Callable] = field(default_factory=dict)
    analyze_deps: bool = True
    load_macros: bool = True
    reload_macros: bool = False
    dep_path: Tuple[str, ...] = ()
    reload: Optional[str] = None
    sm: Any = None

    def evolve(self, **changes) -> 'Context':
        return replace(self, **changes)

    @property
    def verbose(self) -> bool:
        return self.options.verbose


def make_context(state: CompilerState, opts=None, *, need_resolver: bool = False,
                 need_evaluator: bool = False, loaded: Optional[LoadedSet] = None,
                 toolchain: Optional[Toolchain] = None,
                 data_readers: Optional[Mapping[str, Callable]] = None) -> Context:
    """Build the context for one top-level operation.

    Raises ConfigurationError when the state is not a CompilerState or when a
    capability the operation needs is neither in `opts` nor installed as a
    process-wide default.
    """
    if not isinstance(state, CompilerState):
        raise ConfigurationError(f"Expected a CompilerState, got {type(state).__name__}")
    options = Options.from_mapping(opts)
    resolver = options.resolver or default_resolver()
    evaluator = options.evaluator or default_evaluator()
    if need_resolver and resolver is None:
        raise ConfigurationError("No resolver set: pass :load-fn in the options or call set_default_resolver")
    if need_evaluator and evaluator is None:
        raise ConfigurationError("No evaluator set: pass :eval-fn in the options or call set_default_evaluator")
    if resolver is not None and not callable(resolver):
        raise ConfigurationError("Resolver must be callable")
    if evaluator is not None and not callable(evaluator):
        raise ConfigurationError("Evaluator must be callable")
    if data_readers is None:
        from kindling.kindling_reader import DEFAULT_DATA_READERS
        data_readers = DEFAULT_DATA_READERS
    return Context(
        state=state,
        resolver=resolver,
        evaluator=evaluator,
        options=options,
        toolchain=toolchain or default_toolchain(),
        loaded=loaded if loaded is not None else LOADED,
        ns=options.ns or USER_NS,
        data_readers=data_readers,
        analyze_deps=options.analyze_deps,
        load_macros=options.load_macros,
        reload_macros=options.reload_macros,
    )


# ===================================================================
# Names and diagnostics
# ===================================================================

_MUNGE_CHARS = {
    "-": "_", ":": "_COLON_", "+": "_PLUS_", ">": "_GT_", "<": "_LT_",
    "=": "_EQ_", "~": "_TILDE_", "!": "_BANG_", "@": "_CIRCA_", "#": "_SHARP_",
    "'": "_SINGLEQUOTE_", '"': "_DOUBLEQUOTE_", "%": "_PERCENT_", "^": "_CARET_",
    "&": "_AMPERSAND_", "*": "_STAR_", "|": "_BAR_", "{": "_LBRACE_", "}": "_RBRACE_",
    "[": "_LBRACK_", "]": "_RBRACK_", "/": "_SLASH_", "\\": "_BSLASH_", "?": "_QMARK_",
}

_JS_RESERVED = frozenset({
    "abstract", "arguments", "boolean", "break", "byte", "case", "catch", "char",
    "class", "const", "continue", "debugger", "default", "delete", "do", "double",
    "else", "enum", "export", "extends", "final", "finally", "float", "for",
    "function", "goto", "if", "implements", "import", "in", "instanceof", "int",
    "interface", "let", "long", "native", "new", "package", "private",
    "protected", "public", "return", "short", "static", "super", "switch",
    "synchronized", "this", "throw", "throws", "transient", "try", "typeof",
    "var", "void", "volatile", "while", "with", "yield",
})


def munge(name: str) -> str:
    """JavaScript-safe spelling of a symbol or dotted namespace name."""
    name = str(name)
    if name == "-":
        return "_"
    parts = []
    for segment in name.split("."):
        out = "".join(_MUNGE_CHARS.get(ch, ch) for ch in segment)
        if out in _JS_RESERVED:
            out += "$"
        parts.append(out)
    return ".".join(parts)


def ns_to_relpath(ns: str) -> str:
    """Relative resource path for a namespace, sans extension."""
    return re.sub(r"\.", "/", munge(ns))


def debug_prn(ctx: Optional[Context], *parts):
    if (ctx is not None and ctx.verbose) or os.environ.get("KINDLING_DEBUG"):
        print("[kindling]", *parts, file=sys.stderr)
