import pytest

from kindling.kindling_analyzer import Analyzer
from kindling.kindling_datatypes import AnalysisError, NsNode, UseCheckError
from kindling.kindling_reader import read_string
from kindling.kindling_state import CORE_NS, CompilerState


def analyze(src, state=None, ns="cljs.user", **env_opts):
    state = state or CompilerState()
    analyzer = Analyzer()
    env = analyzer.empty_env(state, ns, **env_opts)
    return analyzer.analyze(env, read_string(src))


def test_ns_declaration_shape():
    node = analyze("""
    (ns app.core
      "Docstring."
      (:require [app.util :as u :refer [helper]] app.db)
      (:use [app.old :only [legacy]])
      (:require-macros [app.macros :as m])
      (:use-macros [app.mac2 :only [mac]]))
    """)
    assert isinstance(node, NsNode)
    assert node.name == "app.core"
    assert node.deps == ["app.util", "app.db", "app.old"]
    assert node.requires == {"app.util": "app.util", "u": "app.util",
                             "app.db": "app.db", "app.old": "app.old"}
    assert node.uses == {"helper": "app.util", "legacy": "app.old"}
    assert node.require_macros == {"app.macros": "app.macros", "m": "app.macros",
                                   "app.mac2": "app.mac2"}
    assert node.use_macros == {"mac": "app.mac2"}
    assert node.reload == {}
    assert node.reloads == {}


def test_ns_registers_namespace_in_state():
    state = CompilerState()
    analyze("(ns app.core (:require [app.util :as u]))", state)
    ns = state.get_namespace("app.core")
    assert ns is not None
    assert ns.requires["u"] == "app.util"


def test_refer_macros_and_include_macros():
    node = analyze("(ns a (:require [b :refer-macros [m1]] [c :include-macros true]))")
    assert node.deps == ["b", "c"]
    assert node.use_macros == {"m1": "b"}
    assert node.require_macros == {"b": "b", "c": "c"}


def test_reload_flags_per_clause_and_per_lib():
    node = analyze("(ns a (:require x [y :reload] :reload-all) (:require-macros [m :reload]))")
    assert node.reload == {"require": "reload-all"}
    assert node.reloads == {"require": {"x": "reload-all", "y": "reload"},
                            "require-macros": {"m": "reload"}}
    assert node.reload_for("require", "y") == "reload"
    assert node.reload_for("use", "y") is None


def test_duplicate_dependency_listed_once():
    node = analyze("(ns a (:require b) (:require [b :as bb]))")
    assert node.deps == ["b"]


def test_import_and_refer_clojure_are_ignored():
    node = analyze("(ns a (:refer-clojure :exclude [map]) (:import [goog.string StringBuffer]))")
    assert node.deps == []


@pytest.mark.parametrize("src, message", [
    ("(ns)", "ns requires a symbol name"),
    ("(ns a (:use b))", "Only \\[lib.ns :only \\[names\\]\\] specs supported"),
    ("(ns a (:frobnicate b))", "Unsupported ns clause :frobnicate"),
    ("(ns a (:require [b :bogus c]))", "Unsupported option :bogus"),
    ("(ns a (:require [b :as]))", "Missing value for :as"),
    ("(ns a (:require \"b\"))", "Only \\[lib.ns & options\\]"),
    ("(ns a (:require b :reload-too))", "Unsupported flag :reload-too"),
])
def test_malformed_ns_forms(src, message):
    with pytest.raises(AnalysisError, match=message):
        analyze(src)


def test_malformed_ns_reports_location():
    with pytest.raises(AnalysisError) as ei:
        analyze("\n(ns a (:frob b))")
    assert ei.value.loc == {"line": 2, "col": 7}


def test_def_registers_var():
    state = CompilerState()
    node = analyze("(def x 1)", state, ns="app.core")
    assert node.op == "def"
    assert node.info == {"ns": "app.core", "name": "x", "emits_var": False}
    assert "x" in state.get_namespace("app.core").defs


def test_defmacro_registers_macro():
    state = CompilerState()
    analyze("(defmacro unless [t & body] t)", state, ns="m")
    assert "unless" in state.get_namespace("m").macros


def test_symbol_resolution_order():
    state = CompilerState()
    analyze("(ns app (:require [lib :as l :refer [shared]]))", state)
    analyze("(def mine 1)", state, ns="app")

    def resolved(src):
        node = analyze(src, state, ns="app")
        return node.info["ns"], node.info["name"]

    assert resolved("js/console") == ("js", "console")
    assert resolved("l/thing") == ("lib", "thing")
    assert resolved("other.ns/thing") == ("other.ns", "thing")
    assert resolved("shared") == ("lib", "shared")
    assert resolved("mine") == ("app", "mine")
    assert resolved("inc") == (CORE_NS, "inc")
    assert resolved("unknown") == ("app", "unknown")


def test_fn_params_are_locals():
    node = analyze("(fn [a & more] a more x)")
    assert node.op == "fn"
    assert node.info["params"] == ["a", "more"]
    assert node.info["variadic"] is True
    assert [c.op for c in node.children] == ["local", "local", "var"]


def test_defn_expands_to_def_of_fn():
    node = analyze('(defn f "doc" [x] x)')
    assert node.op == "def"
    assert node.children[0].op == "fn"


def test_if_without_else_gets_nil_branch():
    node = analyze("(if t 1)")
    assert [c.op for c in node.children] == ["var", "const", "const"]
    assert node.children[2].info["value"] is None


def test_nested_forms_are_in_expression_context():
    node = analyze("(f [1 2])", context="return")
    assert node.env["context"] == "return"
    assert node.children[1].env["context"] == "expr"


def test_check_uses():
    state = CompilerState()
    analyze("(def present 1)", state, ns="lib")
    analyzer = Analyzer()
    analyzer.check_uses({"present": "lib"}, state)
    with pytest.raises(UseCheckError, match="Referred var lib/absent does not exist"):
        analyzer.check_uses({"absent": "lib"}, state)
    with pytest.raises(UseCheckError):
        analyzer.check_uses({"present": "nowhere"}, state)


def test_check_use_macros():
    state = CompilerState()
    analyze("(defmacro m [x] x)", state, ns="lib")
    analyzer = Analyzer()
    analyzer.check_use_macros({"m": "lib"}, state)
    with pytest.raises(UseCheckError, match="Referred macro lib/n does not exist"):
        analyzer.check_use_macros({"n": "lib"}, state)
