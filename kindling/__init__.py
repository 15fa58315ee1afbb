from kindling.kindling_datatypes import (
    AnalysisError, CircularDependency, ConfigurationError, ContractViolation,
    EOF, EvalRequest, EvalResult, Keyword, KindlingError, ReaderError, Resource,
    ResourceRequest, Symbol, UndeclaredNamespace, UseCheckError,
)
from kindling.kindling_state import LOADED, CompilerState, LoadedSet, empty_state
from kindling.kindling_context import (
    Context, Options, make_context, munge, ns_to_relpath,
    set_default_evaluator, set_default_resolver,
)
from kindling.kindling_capabilities import FileResolver, from_callback, with_timeout
from kindling.kindling_http import HttpResolver
from kindling.kindling_driver import (
    Compiler, ExecutionResult, analyze, compile, emit, eval_form, eval_str, require,
)
from kindling.kindling_reader import read_all, read_string
