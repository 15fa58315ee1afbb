"""
A small reference emitter producing Closure-style JavaScript.

Positions are tracked relative to the start of each emitted chunk and
reported to the unit's source-map accumulator, when one is active.
"""

import json
import uuid
from datetime import datetime
from typing import Any, List, Optional

from kindling.kindling_context import munge
from kindling.kindling_datatypes import (
    AnalysisError, Keyword, ListForm, MapForm, Node, NsNode, SetForm, Symbol, VectorForm,
)
from kindling.kindling_host import FormEmitter


class _Out:
    """Chunk buffer that knows its own line/column."""
    def __init__(self, sm=None):
        self.parts: List[str] = []
        self.line = 0
        self.col = 0
        self.sm = sm

    def write(self, *texts: str):
        for text in texts:
            self.parts.append(text)
            newlines = text.count("\n")
            if newlines:
                self.line += newlines
                self.col = len(text) - text.rfind("\n") - 1
            else:
                self.col += len(text)

    def mark(self, node: Node, name: Optional[str] = None):
        if self.sm is not None and node.loc:
            self.sm.mark(self.line, self.col, node.loc, name)

    def text(self) -> str:
        return "".join(self.parts)


def _qualified(ns: str, name: str) -> str:
    if ns == "js":
        return name
    return f"{munge(ns)}.{munge(name)}"


class Emitter(FormEmitter):

    def provide(self, ns: str) -> str:
        return f'goog.provide("{munge(ns)}");\n'

    def emit(self, node: Node, sm=None) -> str:
        out = _Out(sm)
        match node.op:
            case "ns":
                self._emit_ns(out, node)
            case "def":
                self._emit_def(out, node)
            case "defmacro":
                pass
            case _:
                context = node.env.get("context", "statement")
                if context == "return":
                    out.write("return ")
                self._expr(out, node)
                if context in ("statement", "return"):
                    out.write(";\n")
        return out.text()

    # --- Statements ---
    def _emit_ns(self, out: _Out, node: NsNode):
        out.mark(node, node.name)
        out.write(self.provide(node.name))
        for dep in node.deps:
            out.write(f'goog.require("{munge(dep)}");\n')

    def _emit_def(self, out: _Out, node: Node):
        target = _qualified(node.info["ns"], node.info["name"])
        out.mark(node, node.info["name"])
        out.write(target, " = ")
        if node.children:
            self._expr(out, node.children[0])
        else:
            out.write("null")
        out.write(";\n")
        if node.info.get("emits_var"):
            qualified = json.dumps(f'{node.info["ns"]}/{node.info["name"]}')
            out.write(f"new cljs.core.Var(function (){{return {target};}}, "
                      f"cljs.core.symbol({qualified}), null);\n")

    # --- Expressions ---
    def _expr(self, out: _Out, node: Node):
        match node.op:
            case "const":
                out.mark(node)
                out.write(self.literal(node.info["value"]))
            case "quote":
                out.mark(node)
                out.write(self.literal(node.info["value"], quoted=True))
            case "var":
                out.mark(node, str(node.form))
                out.write(_qualified(node.info["ns"], node.info["name"]))
            case "local":
                out.mark(node, node.info["name"])
                out.write(munge(node.info["name"]))
            case "vector":
                self._collection(out, node, "cljs.core.PersistentVector.fromArray([", "], true)")
            case "set":
                self._collection(out, node, "cljs.core.PersistentHashSet.fromArray([", "], true)")
            case "map":
                self._collection(out, node, "cljs.core.PersistentArrayMap.fromArray([", "], true, false)")
            case "invoke":
                out.mark(node)
                fn, *args = node.children
                self._expr(out, fn)
                out.write("(")
                self._comma(out, args)
                out.write(")")
            case "if":
                test, then, else_ = node.children
                out.mark(node)
                out.write("(cljs.core.truth_(")
                self._expr(out, test)
                out.write(") ? ")
                self._expr(out, then)
                out.write(" : ")
                self._expr(out, else_)
                out.write(")")
            case "do":
                if not node.children:
                    out.write("null")
                    return
                out.write("(")
                self._comma(out, node.children)
                out.write(")")
            case "fn":
                self._emit_fn(out, node)
            case "def":
                out.write("(")
                target = _qualified(node.info["ns"], node.info["name"])
                out.write(target, " = ")
                if node.children:
                    self._expr(out, node.children[0])
                else:
                    out.write("null")
                out.write(")")
            case _:
                raise AnalysisError(f"Cannot emit node of kind {node.op}", node.loc)

    def _collection(self, out: _Out, node: Node, open_: str, close: str):
        out.mark(node)
        out.write(open_)
        self._comma(out, node.children)
        out.write(close)

    def _comma(self, out: _Out, nodes: List[Node]):
        for i, child in enumerate(nodes):
            if i:
                out.write(", ")
            self._expr(out, child)

    def _emit_fn(self, out: _Out, node: Node):
        params = [munge(p) for p in node.info["params"]]
        if node.info.get("variadic") and params:
            params[-1] = "..." + params[-1]
        name = node.info.get("name")
        out.mark(node, str(name) if name else None)
        out.write("(function ", munge(name) if name else "", "(", ", ".join(params), "){\n")
        *stmts, last = node.children or [None]
        for stmt in stmts:
            self._expr(out, stmt)
            out.write(";\n")
        if last is None:
            out.write("return null;\n")
        else:
            out.write("return ")
            self._expr(out, last)
            out.write(";\n")
        out.write("})")

    # --- Literals ---
    def literal(self, value: Any, quoted: bool = False) -> str:
        match value:
            case None:
                return "null"
            case bool():
                return "true" if value else "false"
            case int() | float():
                return repr(value)
            case Symbol():
                if quoted:
                    return f"cljs.core.symbol({json.dumps(str(value))})"
                raise AnalysisError(f"Unquoted symbol {value} in constant position")
            case str():
                return json.dumps(value)
            case Keyword(name=name):
                if "/" in name and len(name) > 1:
                    ns, local = name.split("/", 1)
                    return f"cljs.core.keyword({json.dumps(ns)}, {json.dumps(local)})"
                return f"cljs.core.keyword({json.dumps(name)})"
            case datetime():
                return f"new Date({json.dumps(value.isoformat())})"
            case uuid.UUID():
                return f"cljs.core.uuid({json.dumps(str(value))})"
            case ListForm():
                return "cljs.core.list(" + ", ".join(self.literal(v, quoted) for v in value) + ")"
            case VectorForm():
                return ("cljs.core.PersistentVector.fromArray(["
                        + ", ".join(self.literal(v, quoted) for v in value) + "], true)")
            case SetForm():
                return ("cljs.core.PersistentHashSet.fromArray(["
                        + ", ".join(self.literal(v, quoted) for v in value) + "], true)")
            case MapForm():
                flat = [self.literal(x, quoted) for pair in value for x in pair]
                return "cljs.core.PersistentArrayMap.fromArray([" + ", ".join(flat) + "], true, false)"
        raise AnalysisError(f"Cannot emit constant of type {type(value).__name__}")
