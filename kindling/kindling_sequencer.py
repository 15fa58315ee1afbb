"""
Namespace side effects: everything that must happen between analyzing an
`ns` form and reading the next form of the unit.

The sequence is an explicit state machine,

    START -> DEPS_RESOLVED -> USES_CHECKED -> MACROS_LOADED -> DONE

Each transition runs to completion before the next one starts. Any failure
aborts the whole sequence; the node is only handed back after DONE.
"""

from enum import Enum
from typing import List

from kindling.kindling_context import Context, debug_prn
from kindling.kindling_datatypes import Node, NsNode
from kindling.kindling_deps import analyze_deps, load_deps
from kindling.kindling_macros import load_macros


class NsState(Enum):
    START = "start"
    DEPS_RESOLVED = "deps-resolved"
    USES_CHECKED = "uses-checked"
    MACROS_LOADED = "macros-loaded"
    DONE = "done"


class NamespaceSequencer:
    def __init__(self, ctx: Context, node: Node, load: bool = False):
        self.ctx = ctx
        self.node = node
        self.load = load
        self.state = NsState.START
        self.trace: List[NsState] = [NsState.START]
        self._steps = {
            NsState.START: (self._resolve_deps, NsState.DEPS_RESOLVED),
            NsState.DEPS_RESOLVED: (self._check_uses, NsState.USES_CHECKED),
            NsState.USES_CHECKED: (self._load_macros, NsState.MACROS_LOADED),
            NsState.MACROS_LOADED: (None, NsState.DONE),
        }

    def _advance(self, state: NsState):
        self.state = state
        self.trace.append(state)

    async def run(self) -> Node:
        if not isinstance(self.node, NsNode):
            self._advance(NsState.DONE)
            return self.node
        debug_prn(self.ctx, "Namespace side effects for", self.node.name)
        while self.state is not NsState.DONE:
            step, target = self._steps[self.state]
            if step is not None:
                await step()
            self._advance(target)
        return self.node

    async def _resolve_deps(self):
        node, ctx = self.node, self.ctx
        if not (ctx.analyze_deps and node.deps):
            return
        if self.load:
            await load_deps(ctx, node.name, node.deps, node)
        else:
            await analyze_deps(ctx, node.name, node.deps, node)

    async def _check_uses(self):
        node, ctx = self.node, self.ctx
        if ctx.analyze_deps and node.uses:
            debug_prn(ctx, "Checking uses")
            ctx.toolchain.analyzer.check_uses(node.uses, ctx.state)

    async def _load_macros(self):
        node, ctx = self.node, self.ctx
        if not ctx.load_macros:
            return
        debug_prn(ctx, "Loading :use-macros")
        await load_macros(ctx, "use-macros", node.use_macros, node)
        debug_prn(ctx, "Loading :require-macros")
        await load_macros(ctx, "require-macros", node.require_macros, node)
        if node.use_macros:
            debug_prn(ctx, "Checking :use-macros")
            ctx.toolchain.analyzer.check_use_macros(node.use_macros, ctx.state)


async def ns_side_effects(ctx: Context, node: Node, load: bool = False) -> Node:
    """Run the namespace side effects of `node`; pass-through for any other node."""
    return await NamespaceSequencer(ctx, node, load).run()
