from typing import Mapping, Optional, Sequence, Tuple

from kindling.kindling_context import Context, debug_prn
from kindling.kindling_datatypes import CircularDependency, NsNode
from kindling.kindling_deps import require


def macro_reload(ctx: Context, kind: str, nsym: str, node: NsNode) -> Optional[str]:
    """
    Effective reload directive for one macro namespace.

    Precedence: the directive recorded for `nsym` itself, then the one
    recorded for the whole `kind` clause, then a plain reload when the
    declaration is redefining `nsym` and reload-macros is on.
    """
    return (node.reload_for(kind, nsym)
            or node.reload.get(kind)
            or ("reload" if nsym == node.name and ctx.reload_macros else None))


def macro_path(ctx: Context, node: NsNode, targets: Sequence[str]) -> Tuple[str, ...]:
    """
    Push `node` onto the dependency path ahead of loading its macro namespaces.

    A namespace may pull in its own macros once, so a self reference is only
    circular when `node` was already being processed further up the path.
    """
    path = ctx.dep_path + (str(node.name),)
    for nsym in targets:
        on_path = ctx.dep_path if nsym == node.name else path
        if nsym in on_path:
            raise CircularDependency(path + (nsym,))
    return path


async def load_macros(ctx: Context, kind: str, macros: Mapping[str, str], node: NsNode):
    """Load every namespace referenced by a :use-macros or :require-macros map, in order."""
    targets = list(dict.fromkeys(str(nsym) for nsym in macros.values()))
    if not targets:
        return
    mctx = ctx.evolve(dep_path=macro_path(ctx, node, targets))
    for nsym in targets:
        debug_prn(ctx, "Loading macros", nsym)
        await require(mctx, nsym, macro_reload(ctx, kind, nsym, node),
                      macros_ns=True, requester=node.name)
