"""
A small reference analyzer.

It understands namespace declarations in full (the driver depends on their
shape) and a handful of special forms: def, defn, defmacro, fn, if, do and
quote. Everything else is an invocation, a symbol or a literal. Macro
expansion is not performed; `defmacro` only registers the macro name.
"""

from typing import Any, Dict, List, Mapping, Optional

from kindling.kindling_datatypes import (
    AnalysisError, Keyword, ListForm, MapForm, Node, NsNode, SetForm, Symbol,
    UseCheckError, VectorForm, form_loc,
)
from kindling.kindling_host import FormAnalyzer
from kindling.kindling_state import CORE_NS, CompilerState

NS_CLAUSES = ("require", "use", "require-macros", "use-macros")
IGNORED_CLAUSES = ("import", "refer-clojure")
RELOAD_FLAGS = ("reload", "reload-all")
SPECIAL_FORMS = frozenset({"ns", "def", "defn", "defmacro", "fn", "if", "do", "quote"})

CORE_NAMES = frozenset({
    "+", "-", "*", "/", "=", "==", "<", ">", "<=", ">=", "not", "str", "println",
    "prn", "inc", "dec", "vector", "list", "hash-map", "first", "rest", "cons",
    "conj", "assoc", "get", "count", "nil?", "deref", "atom", "swap!", "reset!",
})


def _err(msg: str, form: Any) -> AnalysisError:
    return AnalysisError(msg, form_loc(form))


class Analyzer(FormAnalyzer):

    def empty_env(self, state: CompilerState, ns: str, *, context: Optional[str] = None,
                  def_emits_var: bool = False) -> Dict[str, Any]:
        return {
            "state": state,
            "ns": ns,
            "context": context or "statement",
            "def_emits_var": def_emits_var,
            "locals": frozenset(),
        }

    def analyze(self, env: Dict[str, Any], form: Any) -> Node:
        match form:
            case Symbol():
                return self._analyze_symbol(env, form)
            case ListForm() if len(form) > 0:
                return self._analyze_seq(env, form)
            case VectorForm():
                return Node("vector", form, env, self._analyze_all(env, form))
            case SetForm():
                return Node("set", form, env, self._analyze_all(env, form))
            case MapForm():
                flat = [x for pair in form for x in pair]
                return Node("map", form, env, self._analyze_all(env, flat))
            case _:
                return Node("const", form, env, info={"value": form})

    # --- Helpers ---
    def _expr_env(self, env):
        return {**env, "context": "expr"}

    def _analyze_all(self, env, forms) -> List[Node]:
        sub = self._expr_env(env)
        return [self.analyze(sub, f) for f in forms]

    def _analyze_symbol(self, env, s: Symbol) -> Node:
        if s in env["locals"]:
            return Node("local", s, env, info={"name": str(s)})
        target_ns, name = self.resolve_var(env, s)
        return Node("var", s, env, info={"ns": target_ns, "name": name})

    def resolve_var(self, env, s: Symbol):
        state: CompilerState = env["state"]
        current = state.ensure_namespace(env["ns"])
        if s.ns:
            if s.ns == "js":
                return "js", s.name
            return current.requires.get(s.ns, s.ns), s.name
        if s.name in current.uses:
            return current.uses[s.name], s.name
        if s.name in current.defs:
            return current.name, s.name
        if s.name in CORE_NAMES:
            return CORE_NS, s.name
        return current.name, s.name

    def _analyze_seq(self, env, form: ListForm) -> Node:
        head = form[0]
        if isinstance(head, Symbol) and not head.ns and head in SPECIAL_FORMS:
            return getattr(self, "_special_" + head)(env, form)
        return Node("invoke", form, env, self._analyze_all(env, form))

    # --- Special forms ---
    def _special_quote(self, env, form):
        if len(form) != 2:
            raise _err("Wrong number of args to quote", form)
        return Node("quote", form, env, info={"value": form[1]})

    def _special_if(self, env, form):
        if len(form) not in (3, 4):
            raise _err("Wrong number of args to if", form)
        parts = list(form[1:]) + ([None] if len(form) == 3 else [])
        return Node("if", form, env, self._analyze_all(env, parts))

    def _special_do(self, env, form):
        return Node("do", form, env, self._analyze_all(env, form[1:]))

    def _special_fn(self, env, form):
        args = list(form[1:])
        name = None
        if args and isinstance(args[0], Symbol):
            name = args.pop(0)
        if not args or not isinstance(args[0], VectorForm):
            raise _err("Parameter declaration missing", form)
        params = args.pop(0)
        for p in params:
            if not isinstance(p, Symbol) or p.ns:
                raise _err(f"fn params must be simple symbols, got {p!r}", form)
        names = [p for p in params if p != "&"]
        locals_ = env["locals"] | set(names) | ({name} if name else set())
        body_env = {**env, "locals": frozenset(locals_)}
        body = self._analyze_all(body_env, args)
        variadic = "&" in params
        return Node("fn", form, env, body, info={"params": [str(p) for p in names],
                                                "variadic": variadic, "name": name})

    def _special_def(self, env, form):
        if len(form) not in (2, 3, 4) or not isinstance(form[1], Symbol) or form[1].ns:
            raise _err("def requires a simple symbol name", form)
        name = str(form[1])
        init = form[-1] if len(form) > 2 else None
        return self._make_def(env, form, name, init)

    def _special_defn(self, env, form):
        if len(form) < 3 or not isinstance(form[1], Symbol):
            raise _err("defn requires a name and a parameter vector", form)
        rest = list(form[2:])
        if rest and isinstance(rest[0], str) and not isinstance(rest[0], Symbol):
            rest.pop(0)
        fn_form = ListForm([Symbol("fn")] + rest)
        if form_loc(form):
            fn_form.loc = form_loc(form)
        return self._make_def(env, form, str(form[1]), fn_form)

    def _make_def(self, env, form, name, init):
        state: CompilerState = env["state"]
        with state.lock:
            ns = state.ensure_namespace(env["ns"])
            ns.defs[name] = {"name": f"{ns.name}/{name}", "loc": form_loc(form)}
        children = [self.analyze(self._expr_env(env), init)] if len(form) > 2 else []
        return Node("def", form, env, children,
                    info={"ns": env["ns"], "name": name, "emits_var": env["def_emits_var"]})

    def _special_defmacro(self, env, form):
        if len(form) < 3 or not isinstance(form[1], Symbol):
            raise _err("defmacro requires a name and a parameter vector", form)
        state: CompilerState = env["state"]
        name = str(form[1])
        with state.lock:
            ns = state.ensure_namespace(env["ns"])
            ns.macros[name] = {"name": f"{ns.name}/{name}", "loc": form_loc(form)}
        return Node("defmacro", form, env, info={"ns": env["ns"], "name": name})

    def _special_ns(self, env, form) -> NsNode:
        args = list(form[1:])
        if not args or not isinstance(args[0], Symbol):
            raise _err("ns requires a symbol name", form)
        node = NsNode("ns", form, env, name=str(args.pop(0)))
        if args and isinstance(args[0], str) and not isinstance(args[0], Symbol):
            args.pop(0)
        if args and isinstance(args[0], MapForm):
            args.pop(0)
        for clause in args:
            if not (isinstance(clause, ListForm) and clause and isinstance(clause[0], Keyword)):
                raise _err(f"Malformed ns clause {clause!r}", form)
            kind = clause[0].name
            if kind in IGNORED_CLAUSES:
                continue
            if kind not in NS_CLAUSES:
                raise _err(f"Unsupported ns clause :{kind}", clause)
            flags = [x.name for x in clause[1:] if isinstance(x, Keyword)]
            for flag in flags:
                if flag not in RELOAD_FLAGS:
                    raise _err(f"Unsupported flag :{flag} in :{kind}", clause)
            clause_flag = flags[-1] if flags else None
            if clause_flag:
                node.reload[kind] = clause_flag
            for spec in clause[1:]:
                if not isinstance(spec, Keyword):
                    self._libspec(node, kind, spec, clause_flag)

        state: CompilerState = env["state"]
        with state.lock:
            ns = state.ensure_namespace(node.name)
            ns.requires = dict(node.requires)
            ns.uses = dict(node.uses)
            ns.require_macros = dict(node.require_macros)
            ns.use_macros = dict(node.use_macros)
        return node

    def _libspec(self, node: NsNode, kind: str, spec, clause_flag: Optional[str]):
        macros = kind.endswith("-macros")
        use = kind.startswith("use")
        if isinstance(spec, Symbol):
            lib, opts = str(spec), []
        elif isinstance(spec, VectorForm) and spec and isinstance(spec[0], Symbol):
            lib, opts = str(spec[0]), list(spec[1:])
        else:
            raise _err(f"Only [lib.ns & options] and lib.ns specs supported in :{kind}", spec)

        if macros:
            node.require_macros[lib] = lib
        else:
            node.requires[lib] = lib
            if lib not in node.deps:
                node.deps.append(lib)

        directive = clause_flag
        referred = False
        i = 0
        while i < len(opts):
            key = opts[i]
            if not isinstance(key, Keyword):
                raise _err(f"Expected a keyword option in libspec for {lib}, got {key!r}", spec)
            if key.name in RELOAD_FLAGS:
                directive = key.name
                i += 1
                continue
            if i + 1 >= len(opts):
                raise _err(f"Missing value for :{key.name} in libspec for {lib}", spec)
            value = opts[i + 1]
            i += 2
            match key.name:
                case "as":
                    if not isinstance(value, Symbol):
                        raise _err(f":as must be followed by a symbol in libspec for {lib}", spec)
                    (node.require_macros if macros else node.requires)[str(value)] = lib
                case "refer" | "only":
                    referred = True
                    for s in self._symbols(value, lib, key.name, spec):
                        (node.use_macros if macros else node.uses)[s] = lib
                case "refer-macros":
                    node.require_macros[lib] = lib
                    for s in self._symbols(value, lib, key.name, spec):
                        node.use_macros[s] = lib
                case "include-macros":
                    if value is True:
                        node.require_macros[lib] = lib
                case _:
                    raise _err(f"Unsupported option :{key.name} in libspec for {lib}", spec)

        if use and not referred:
            raise _err(f"Only [lib.ns :only [names]] specs supported in :{kind}", spec)
        if directive:
            node.reloads.setdefault(kind, {})[lib] = directive

    def _symbols(self, value, lib, opt, spec) -> List[str]:
        if not isinstance(value, (VectorForm, ListForm)) or not all(isinstance(s, Symbol) for s in value):
            raise _err(f":{opt} must be followed by a vector of symbols in libspec for {lib}", spec)
        return [str(s) for s in value]

    # --- Use checks ---
    def check_uses(self, uses: Mapping[str, str], state: CompilerState) -> None:
        for s, lib in uses.items():
            ns = state.get_namespace(lib)
            if ns is None or (s not in ns.defs and s not in ns.macros):
                raise UseCheckError(f"Referred var {lib}/{s} does not exist")

    def check_use_macros(self, use_macros: Mapping[str, str], state: CompilerState) -> None:
        for s, lib in use_macros.items():
            ns = state.get_namespace(lib)
            if ns is None or s not in ns.macros:
                raise UseCheckError(f"Referred macro {lib}/{s} does not exist")
