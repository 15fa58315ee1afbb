"""
The incremental unit driver: reads a unit of source one form at a time,
analyzes each form, routes namespace declarations through the namespace
side-effect sequencer, and emits and/or evaluates the rest.

All four public operations are coroutines. A failure anywhere in a unit,
including inside a nested dependency unit or a deferred capability call,
propagates to the awaiting caller; partial output is discarded with it.
"""

from dataclasses import dataclass
from typing import Any, Iterable, List, Literal, Optional

from kindling.kindling_capabilities import evaluate
from kindling.kindling_context import (
    Context, Options, debug_prn, make_context, ns_to_relpath,
)
from kindling.kindling_datatypes import (
    EOF, EvalRequest, EvalResult, KindlingError, ListForm, Node, NsNode,
    Symbol, UndeclaredNamespace,
)
from kindling.kindling_host import FormReader, Toolchain
from kindling.kindling_sequencer import ns_side_effects
from kindling.kindling_sourcemap import SourceMapAccumulator, append_source_map
from kindling.kindling_state import CompilerState, LoadedSet, USER_NS


class _FormsReader(FormReader):
    """Reader over forms that have already been read."""
    def __init__(self, forms: Iterable[Any]):
        self._forms = iter(forms)

    def read(self):
        return next(self._forms, EOF)


# ===================================================================
# Unit loop
# ===================================================================

class _Unit:
    """Per-unit mutable state: the reader, the current namespace and the output buffer."""

    def __init__(self, ctx: Context, source: str, name: Optional[str], ns: str,
                 reader: Optional[FormReader] = None):
        sm = SourceMapAccumulator() if ctx.options.source_map else None
        self.ctx = ctx.evolve(sm=sm)
        self.source = source
        self.name = str(name) if name is not None else None
        if ctx.reload:
            debug_prn(ctx, "Reloading", self.name, ctx.reload)
        self.ns = ns
        self.parts: List[str] = []
        self.reader = reader or ctx.toolchain.reader(source, self.name, ctx.data_readers)

    def read(self) -> Any:
        return self.reader.read()

    def analyze(self, form: Any) -> Node:
        opts = self.ctx.options
        analyzer = self.ctx.toolchain.analyzer
        env = analyzer.empty_env(self.ctx.state, self.ns, context=opts.context,
                                 def_emits_var=opts.def_emits_var)
        return analyzer.analyze(env, form)

    def append(self, text: str):
        self.parts.append(text)
        if self.ctx.sm is not None:
            self.ctx.sm.advance(text)

    def emit(self, node: Node) -> str:
        text = self.ctx.toolchain.emitter.emit(node, self.ctx.sm)
        self.append(text)
        return text

    async def side_effects(self, node: NsNode, load: bool):
        node = await ns_side_effects(self.ctx.evolve(ns=self.ns), node, load)
        self.ns = node.name

    async def evaluate(self, text: str) -> Any:
        debug_prn(self.ctx, text)
        path = ns_to_relpath(self.name) if self.name else None
        return await evaluate(self.ctx, EvalRequest("clj", text, self.name, path))

    def source_map_trailer(self) -> str:
        if self.ctx.sm is None:
            return ""
        return append_source_map(self.ctx, self.name, self.source, self.ctx.sm)

    def text(self) -> str:
        return "".join(self.parts)

    def tag(self, e: KindlingError):
        if not hasattr(e, "unit"):
            e.unit = self.name


async def analyze_unit(ctx: Context, source: str, name: Optional[str] = None, ns: str = USER_NS):
    unit = _Unit(ctx, source, name, ns)
    try:
        while (form := unit.read()) is not EOF:
            node = unit.analyze(form)
            if isinstance(node, NsNode):
                await unit.side_effects(node, load=False)
    except KindlingError as e:
        unit.tag(e)
        raise


async def compile_unit(ctx: Context, source: str, name: Optional[str] = None, ns: str = USER_NS) -> str:
    unit = _Unit(ctx, source, name, ns)
    try:
        while (form := unit.read()) is not EOF:
            node = unit.analyze(form)
            unit.emit(node)
            if isinstance(node, NsNode):
                await unit.side_effects(node, load=False)
        trailer = unit.source_map_trailer()
    except KindlingError as e:
        unit.tag(e)
        raise
    return unit.text() + trailer


async def eval_str_unit(ctx: Context, source: str, name: Optional[str] = None, ns: str = USER_NS,
                        reader: Optional[FormReader] = None) -> EvalResult:
    unit = _Unit(ctx, source, name, ns, reader)
    value = None
    try:
        while (form := unit.read()) is not EOF:
            node = unit.analyze(form)
            if isinstance(node, NsNode):
                provide = unit.ctx.toolchain.emitter.provide(node.name)
                unit.append(provide)
                value = await unit.evaluate(provide)
                await unit.side_effects(node, load=True)
            else:
                value = await unit.evaluate(unit.emit(node))
        unit.source_map_trailer()
    except KindlingError as e:
        unit.tag(e)
        raise
    return EvalResult(unit.ns, value)


# ===================================================================
# Public operations
# ===================================================================

def _static_needs(opts) -> dict:
    """Capabilities analyze and compile require before reading; macro namespaces are evaluated."""
    options = Options.from_mapping(opts)
    return {"need_resolver": options.analyze_deps or options.load_macros,
            "need_evaluator": options.load_macros}


async def analyze(state: CompilerState, source: str, name: Optional[str] = None, opts=None, *,
                  loaded: Optional[LoadedSet] = None, toolchain: Optional[Toolchain] = None) -> None:
    """Analyze source, populating the compiler state. Dependencies are analyzed, not loaded."""
    ctx = make_context(state, opts, **_static_needs(opts), loaded=loaded, toolchain=toolchain)
    await analyze_unit(ctx, source, name, ctx.ns)


async def compile(state: CompilerState, source: str, name: Optional[str] = None, opts=None, *,
                  loaded: Optional[LoadedSet] = None, toolchain: Optional[Toolchain] = None) -> str:
    """Compile source into JavaScript text, with an inline source map when `source-map` is set."""
    ctx = make_context(state, opts, **_static_needs(opts), loaded=loaded, toolchain=toolchain)
    return await compile_unit(ctx, source, name, ctx.ns)


async def eval_str(state: CompilerState, source: str, name: Optional[str] = None, opts=None, *,
                   loaded: Optional[LoadedSet] = None, toolchain: Optional[Toolchain] = None) -> EvalResult:
    """Evaluate source form by form; dependencies of ns forms are loaded, not just analyzed."""
    ctx = make_context(state, opts, need_resolver=True, need_evaluator=True,
                       loaded=loaded, toolchain=toolchain)
    return await eval_str_unit(ctx, source, name, ctx.ns)


def _is_ns_form(form: Any) -> bool:
    return isinstance(form, ListForm) and len(form) > 0 and isinstance(form[0], Symbol) and form[0] == "ns"


async def eval_form(state: CompilerState, form: Any, opts=None, *,
                    loaded: Optional[LoadedSet] = None, toolchain: Optional[Toolchain] = None) -> Any:
    """Evaluate a single, already read, form and return its value."""
    ctx = make_context(state, opts, need_resolver=_is_ns_form(form), need_evaluator=True,
                       loaded=loaded, toolchain=toolchain)
    result = await eval_str_unit(ctx, "", None, ctx.ns, _FormsReader([form]))
    return result.value


async def require(state: CompilerState, name: str, opts=None, reload: Optional[str] = None, *,
                  loaded: Optional[LoadedSet] = None, toolchain: Optional[Toolchain] = None) -> bool:
    """Load namespace `name` (and its dependencies) into the running system."""
    if reload not in (None, "reload", "reload-all"):
        raise ValueError(f"Invalid reload directive {reload!r}")
    ctx = make_context(state, opts, need_resolver=True, need_evaluator=True,
                       loaded=loaded, toolchain=toolchain)
    from kindling.kindling_deps import require as require_ns
    return await require_ns(ctx, name, reload)


def emit(state: CompilerState, node: Node, opts=None, *, toolchain: Optional[Toolchain] = None) -> str:
    ctx = make_context(state, opts, toolchain=toolchain)
    return ctx.toolchain.emitter.emit(node)


# ===================================================================
# Compiler facade
# ===================================================================

@dataclass
class ExecutionResult:
    """The structured result of running one unit."""
    status: Literal['success', 'error']
    value: Any = None
    error_message: Optional[str] = None
    error_token: Optional[dict] = None

    def format_error(self) -> str:
        """Formats an error message with line and column if available."""
        if self.status != 'error':
            return ""
        msg = str(self.error_message or "Unknown error")
        if self.error_token and self.error_token.get('line') is not None:
            line = self.error_token.get('line')
            col = self.error_token.get('col')
            if not msg.startswith("Error on line "):
                col_info = f", col {col}" if col is not None else ""
                return f"Error on line {line}{col_info}: {msg}"
        return msg


class Compiler:
    """Runs units against one compiler state, loaded set and set of default options."""

    MODES = ("analyze", "compile", "eval")

    def __init__(self, state: Optional[CompilerState] = None, *, loaded: Optional[LoadedSet] = None,
                 resolver=None, evaluator=None, options=None, toolchain: Optional[Toolchain] = None):
        self.state = state or CompilerState()
        self.loaded = loaded if loaded is not None else LoadedSet()
        self.options = Options.from_mapping(options)
        if resolver is not None or evaluator is not None:
            self.options = self.options.merged({k: v for k, v in
                                                (("resolver", resolver), ("evaluator", evaluator))
                                                if v is not None})
        self.toolchain = toolchain

    def _opts(self, opts) -> Options:
        return self.options.merged(opts)

    async def analyze(self, source: str, name: Optional[str] = None, opts=None) -> None:
        await analyze(self.state, source, name, self._opts(opts), loaded=self.loaded, toolchain=self.toolchain)

    async def compile(self, source: str, name: Optional[str] = None, opts=None) -> str:
        return await compile(self.state, source, name, self._opts(opts), loaded=self.loaded, toolchain=self.toolchain)

    async def eval_str(self, source: str, name: Optional[str] = None, opts=None) -> EvalResult:
        return await eval_str(self.state, source, name, self._opts(opts), loaded=self.loaded, toolchain=self.toolchain)

    async def eval_form(self, form: Any, opts=None) -> Any:
        return await eval_form(self.state, form, self._opts(opts), loaded=self.loaded, toolchain=self.toolchain)

    async def require(self, name: str, reload: Optional[str] = None, opts=None) -> bool:
        return await require(self.state, name, self._opts(opts), reload, loaded=self.loaded, toolchain=self.toolchain)

    async def handle_source(self, source: str, name: Optional[str] = None, mode: str = "compile",
                            opts=None) -> ExecutionResult:
        """Run a unit and report the outcome as data instead of raising."""
        if mode not in self.MODES:
            raise ValueError(f"Unknown mode {mode!r}, expected one of {self.MODES}")
        try:
            match mode:
                case "analyze":
                    value = await self.analyze(source, name, opts)
                case "compile":
                    value = await self.compile(source, name, opts)
                case "eval":
                    value = await self.eval_str(source, name, opts)
        except KindlingError as e:
            msg, token = self._format_error(e, source, name)
            return ExecutionResult(status='error', error_message=msg, error_token=token)
        return ExecutionResult(status='success', value=value)

    def _format_error(self, e: KindlingError, source: str, name: Optional[str]):
        match e:
            case UndeclaredNamespace():
                msg = f"UndeclaredNamespace: {e}"
            case _:
                msg = f"{type(e).__name__}: {e}"
        token = None
        loc = e.loc
        unit = getattr(e, "unit", None)
        same_unit = unit == (str(name) if name is not None else None)
        if loc and same_unit:
            line, col = loc.get("line"), loc.get("col")
            token = {"line": line, "col": col}
            context = self._source_context(source, line, col)
            if context:
                msg = f"{msg}\n{context}"
        elif unit and not same_unit:
            msg = f"{msg}\n(while processing {unit})"
        return msg, token

    def _source_context(self, source: str, line: Optional[int], col: Optional[int], radius: int = 2) -> str:
        lines = source.splitlines()
        if not line or line < 1 or line > len(lines):
            return ""
        start = max(1, line - radius)
        end = min(len(lines), line + radius)
        width = len(str(end))
        out = []
        for i in range(start, end + 1):
            prefix = ">" if i == line else " "
            out.append(f"{prefix} {str(i).rjust(width)} | {lines[i - 1]}")
            if i == line and col is not None:
                caret = " " * max(col - 1, 0)
                out.append(f"  {' ' * width} | {caret}^")
        return "\n".join(out)
