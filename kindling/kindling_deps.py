"""
Dependency resolution: loading (or merely analyzing) the namespaces a
namespace declaration depends on.

Both modes walk the dependency list strictly in source order and finish a
dependency, transitive dependencies included, before starting the next one.
The dependency path carried by the context is the cycle detector.
"""

from typing import Optional, Sequence, Tuple

from kindling.kindling_capabilities import evaluate, resolve
from kindling.kindling_context import Context, debug_prn, ns_to_relpath
from kindling.kindling_datatypes import (
    CircularDependency, NsNode, ResourceRequest, UndeclaredNamespace,
)

_DEP_KINDS = ("require", "use")


def dep_reload(node: Optional[NsNode], dep: str) -> Optional[str]:
    """Reload directive an ns declaration attaches to one of its plain dependencies."""
    if node is None:
        return None
    for kind in _DEP_KINDS:
        directive = node.reload_for(kind, dep)
        if directive:
            return directive
    return None


def enter_path(ctx: Context, lib: str, deps: Sequence[str]) -> Tuple[str, ...]:
    """Push `lib` onto the dependency path, failing if any dep is already on it."""
    path = ctx.dep_path + (str(lib),)
    for dep in deps:
        if str(dep) in path:
            raise CircularDependency(path + (str(dep),))
    return path


async def require(ctx: Context, name: str, reload: Optional[str] = None, *,
                  macros_ns: bool = False, requester: Optional[str] = None) -> bool:
    """
    Load namespace `name` into the running system.

    A 'clj' resource is evaluated as a nested unit (so its own dependencies
    load transitively); a 'js' resource goes straight to the evaluator.
    Returns False when the namespace was already loaded and no reload
    directive applied.
    """
    name = str(name)
    ctx.loaded.apply_reload(name, reload)
    if ctx.loaded.is_loaded(name):
        debug_prn(ctx, "Already loaded", name)
        return False

    request = ResourceRequest(name, ns_to_relpath(name), macros_ns)
    resource = await resolve(ctx, request)
    if resource is None:
        raise UndeclaredNamespace(requester, name)

    match resource.lang:
        case "clj":
            from kindling.kindling_driver import eval_str_unit
            await eval_str_unit(ctx.evolve(reload=reload), resource.source, name)
        case "js":
            await evaluate(ctx, resource)

    ctx.loaded.mark_loaded(name)
    return True


async def load_deps(ctx: Context, lib: str, deps: Sequence[str], node: Optional[NsNode] = None):
    debug_prn(ctx, "Loading dependencies")
    dctx = ctx.evolve(dep_path=enter_path(ctx, lib, deps))
    for dep in deps:
        debug_prn(ctx, "Loading", dep)
        await require(dctx, dep, dep_reload(node, dep), requester=lib)


async def analyze_deps(ctx: Context, lib: str, deps: Sequence[str], node: Optional[NsNode] = None):
    """Resolve and analyze dependencies without evaluating anything."""
    debug_prn(ctx, "Analyzing dependencies")
    dctx = ctx.evolve(dep_path=enter_path(ctx, lib, deps))
    for dep in deps:
        dep = str(dep)
        ctx.loaded.apply_reload(dep, dep_reload(node, dep))
        if dep in ctx.loaded:
            continue
        resource = await resolve(dctx, ResourceRequest(dep, ns_to_relpath(dep)))
        if resource is None:
            raise UndeclaredNamespace(lib, dep)
        if resource.lang == "clj":
            from kindling.kindling_driver import analyze_unit
            await analyze_unit(dctx, resource.source, dep)
        ctx.loaded.mark_analyzed(dep)
