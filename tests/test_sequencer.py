import pytest

from kindling.kindling_analyzer import Analyzer
from kindling.kindling_context import make_context
from kindling.kindling_datatypes import (
    CircularDependency, Node, NsNode, UndeclaredNamespace, UseCheckError,
)
from kindling.kindling_driver import compile, eval_str
from kindling.kindling_macros import load_macros, macro_reload
from kindling.kindling_reader import read_string
from kindling.kindling_sequencer import NamespaceSequencer, NsState, ns_side_effects

ALL_STATES = [NsState.START, NsState.DEPS_RESOLVED, NsState.USES_CHECKED,
              NsState.MACROS_LOADED, NsState.DONE]


def ns_node(state, src):
    analyzer = Analyzer()
    return analyzer.analyze(analyzer.empty_env(state, "cljs.user"), read_string(src))


@pytest.mark.asyncio
async def test_sequencer_walks_every_state_in_order(state, loaded, make_host):
    host = make_host({"b": ("clj", "(ns b)\n(def f 1)"),
                      "m": ("clj", "(ns m)\n(defmacro mac [x] x)")})
    ctx = make_context(state, host.opts(), loaded=loaded)
    node = ns_node(state, "(ns a (:require [b :refer [f]]) (:use-macros [m :only [mac]]))")
    seq = NamespaceSequencer(ctx, node, load=True)
    assert await seq.run() is node
    assert seq.trace == ALL_STATES
    assert seq.state is NsState.DONE


@pytest.mark.asyncio
async def test_non_ns_node_passes_through(state, loaded, make_host):
    host = make_host()
    ctx = make_context(state, host.opts(), loaded=loaded)
    node = Node("const", 1)
    seq = NamespaceSequencer(ctx, node)
    assert await seq.run() is node
    assert seq.trace == [NsState.START, NsState.DONE]
    assert await ns_side_effects(ctx, node) is node
    assert host.calls == []


@pytest.mark.asyncio
async def test_failure_aborts_before_later_steps(state, loaded, make_host):
    host = make_host({"m": ("clj", "(ns m)")})
    ctx = make_context(state, host.opts(), loaded=loaded)
    node = ns_node(state, "(ns a (:require missing) (:require-macros [m]))")
    seq = NamespaceSequencer(ctx, node, load=True)
    with pytest.raises(UndeclaredNamespace):
        await seq.run()
    assert seq.state is NsState.START
    assert host.resolved == ["missing"]


@pytest.mark.asyncio
async def test_dependencies_finish_before_macro_namespaces(state, loaded, make_host):
    host = make_host({
        "b": ("clj", "(ns b (:require d))"),
        "c": ("js", ""),
        "d": ("js", ""),
        "m": ("clj", "(ns m)\n(defmacro mac [x] x)"),
    })
    await eval_str(state, "(ns a (:require b c) (:require-macros [m]))", "a", host.opts(), loaded=loaded)
    assert host.calls == [("b", False), ("d", False), ("c", False), ("m", True)]


@pytest.mark.asyncio
async def test_use_macros_load_before_require_macros(state, loaded, make_host):
    host = make_host({
        "m1": ("clj", "(ns m1)\n(defmacro one [x] x)"),
        "m2": ("clj", "(ns m2)"),
    })
    await compile(state, "(ns a (:require-macros [m2]) (:use-macros [m1 :only [one]]))", "a",
                  host.opts(), loaded=loaded)
    assert host.resolved == ["m1", "m2"]


@pytest.mark.asyncio
async def test_referred_var_must_exist(state, loaded, make_host):
    host = make_host({"b": ("clj", "(ns b)\n(def yes 1)")})
    await compile(state, "(ns ok (:require [b :refer [yes]]))", "ok", host.opts(), loaded=loaded)
    with pytest.raises(UseCheckError, match="b/nope"):
        await compile(state, "(ns bad (:require [b :refer [nope]]))", "bad", host.opts(), loaded=loaded)


@pytest.mark.asyncio
async def test_referred_macro_must_exist(state, loaded, make_host):
    host = make_host({"m": ("clj", "(ns m)\n(defmacro mac [x] x)")})
    await compile(state, "(ns ok (:use-macros [m :only [mac]]))", "ok", host.opts(), loaded=loaded)
    with pytest.raises(UseCheckError, match="m/nomac"):
        await compile(state, "(ns bad (:use-macros [m :only [nomac]]))", "bad", host.opts(), loaded=loaded)


@pytest.mark.asyncio
async def test_analyze_deps_off_skips_resolution_and_use_checks(state, loaded, make_host):
    host = make_host()
    out = await compile(state, "(ns a (:require [b :refer [nope]]))", "a",
                        host.opts(analyze_deps=False), loaded=loaded)
    assert out.startswith('goog.provide("a");')
    assert host.calls == []


@pytest.mark.asyncio
async def test_load_macros_off_skips_macro_namespaces(state, loaded, make_host):
    host = make_host()
    await compile(state, "(ns a (:require-macros [m]) (:use-macros [n :only [x]]))", "a",
                  host.opts(load_macros=False), loaded=loaded)
    assert host.calls == []


@pytest.mark.asyncio
async def test_load_macros_dedupes_namespaces(state, loaded, make_host):
    host = make_host({"m": ("js", "")})
    ctx = make_context(state, host.opts(), loaded=loaded)
    node = NsNode("ns", name="a")
    await load_macros(ctx, "require-macros", {"m": "m", "alias": "m"}, node)
    assert host.calls == [("m", True)]


@pytest.mark.asyncio
async def test_load_macros_honours_reload_directive(state, loaded, make_host):
    host = make_host({"m": ("js", "")})
    ctx = make_context(state, host.opts(), loaded=loaded)
    node = NsNode("ns", name="a", reloads={"require-macros": {"m": "reload"}})
    await load_macros(ctx, "require-macros", {"m": "m"}, node)
    await load_macros(ctx, "require-macros", {"m": "m"}, node)
    assert host.resolved == ["m", "m"]


@pytest.mark.asyncio
async def test_macro_namespace_cycle_detected(state, loaded, make_host):
    host = make_host({
        "p": ("clj", "(ns p (:require-macros [q]))"),
        "q": ("clj", "(ns q (:require-macros [p]))"),
    })
    with pytest.raises(CircularDependency) as ei:
        await eval_str(state, "(ns p (:require-macros [q]))", "p", host.opts(), loaded=loaded)
    assert ei.value.path == ["p", "q", "p"]
    assert host.calls == [("q", True)]


@pytest.mark.asyncio
async def test_self_macro_require_loads_macro_resource_once(state, loaded, make_host):
    host = make_host()
    sources = {("m", True): "(ns m)"}

    async def resolve(request):
        host.calls.append((request.name, request.macros_ns))
        source = sources.get((request.name, request.macros_ns))
        return None if source is None else {"lang": "clj", "source": source}

    opts = {"load-fn": resolve, "eval-fn": host.evaluate}
    await eval_str(state, "(ns m (:require-macros [m]))\n(def x 1)", "m", opts, loaded=loaded)
    assert host.calls == [("m", True)]


@pytest.mark.asyncio
async def test_self_macro_require_of_same_resource_is_a_cycle(state, loaded, make_host):
    host = make_host({"m": ("clj", "(ns m (:require-macros [m]))")})
    with pytest.raises(CircularDependency) as ei:
        await eval_str(state, "(ns m (:require-macros [m]))", "m", host.opts(), loaded=loaded)
    assert ei.value.path == ["m", "m", "m"]
    assert host.calls == [("m", True)]


def test_macro_reload_precedence(state):
    ctx = make_context(state, {"reload-macros": True})
    quiet = make_context(state)
    node = NsNode("ns", name="m",
                  reload={"require-macros": "reload"},
                  reloads={"require-macros": {"m": "reload-all"}})
    assert macro_reload(ctx, "require-macros", "m", node) == "reload-all"
    assert macro_reload(ctx, "require-macros", "other", node) == "reload"

    node = NsNode("ns", name="m")
    assert macro_reload(ctx, "require-macros", "m", node) == "reload"
    assert macro_reload(ctx, "require-macros", "other", node) is None
    assert macro_reload(quiet, "require-macros", "m", node) is None
