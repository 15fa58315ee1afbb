"""
Adapters around the host-supplied resolver and evaluator.

These two capabilities are the only places a unit can suspend. A capability
may be a coroutine function, a plain function (whose result may itself be
awaitable), or a callback-style function adapted with `from_callback`.
"""

import asyncio
import inspect
import os
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence, Union

from kindling.kindling_datatypes import (
    ConfigurationError, ContractViolation, EvalRequest, Keyword, LANGUAGES, Resource, ResourceRequest,
)


async def invoke(capability: Callable, arg: Any) -> Any:
    result = capability(arg)
    if inspect.isawaitable(result):
        result = await result
    return result


def normalize_lang(lang: Any) -> str:
    if isinstance(lang, Keyword):
        lang = lang.name
    if isinstance(lang, str):
        lang = lang.lstrip(":")
    if lang not in LANGUAGES:
        raise ContractViolation(f"Invalid :lang specified {lang}, only :clj or :js allowed")
    return lang


def coerce_resource(value: Any, request: ResourceRequest) -> Optional[Resource]:
    """Validate a resolver answer: None, a Resource, or a mapping describing one."""
    if value is None:
        return None
    if isinstance(value, Resource):
        return Resource(normalize_lang(value.lang), value.source,
                        value.name or request.name, value.path or request.path)
    if not isinstance(value, Mapping):
        raise ContractViolation("Resolver may only return a mapping or None, "
                                f"got {type(value).__name__}")
    lang = value.get("lang", value.get("language"))
    source = value.get("source")
    if not isinstance(source, str):
        raise ContractViolation(f"Resolver returned a resource for {request.name} without a string :source")
    return Resource(normalize_lang(lang), source,
                    value.get("name") or request.name, value.get("path") or request.path)


async def resolve(ctx, request: ResourceRequest) -> Optional[Resource]:
    if ctx.resolver is None:
        raise ConfigurationError(f"No resolver set, cannot load {request.name}")
    return coerce_resource(await invoke(ctx.resolver, request), request)


async def evaluate(ctx, request: Union[EvalRequest, Resource]) -> Any:
    if ctx.evaluator is None:
        raise ConfigurationError(f"No evaluator set, cannot evaluate {request.name or 'source'}")
    return await invoke(ctx.evaluator, request)


# ===================================================================
# Callback-style capabilities
# ===================================================================

class _Continuation:
    """Single-shot continuation handed to a callback-style capability.

    May be invoked from any thread; the result is delivered back on the
    loop that is awaiting it.
    """
    __slots__ = ("_loop", "_future", "_fired")

    def __init__(self, loop: asyncio.AbstractEventLoop, future: asyncio.Future):
        self._loop = loop
        self._future = future
        self._fired = False

    def _claim(self):
        if self._fired:
            raise ContractViolation("Capability continuation invoked more than once")
        self._fired = True

    def __call__(self, value: Any = None):
        self._claim()
        self._loop.call_soon_threadsafe(self._settle, value, None)

    def fail(self, exc: BaseException):
        self._claim()
        self._loop.call_soon_threadsafe(self._settle, None, exc)

    def _settle(self, value, exc):
        if self._future.done():
            return
        if exc is not None:
            self._future.set_exception(exc)
        else:
            self._future.set_result(value)


def from_callback(fn: Callable[[Any, Callable], Any]) -> Callable:
    """Adapt `fn(arg, cb)` into an awaitable capability.

    `cb(value)` delivers the answer and `cb.fail(exc)` an error; either may
    be called later and from another thread, but only once.
    """
    async def capability(arg):
        loop = asyncio.get_running_loop()
        future = loop.create_future()
        fn(arg, _Continuation(loop, future))
        return await future
    capability.__name__ = getattr(fn, "__name__", "capability")
    return capability


def with_timeout(capability: Callable, seconds: float) -> Callable:
    """Wrap a capability so a call that has not answered in `seconds` raises TimeoutError."""
    async def bounded(arg):
        return await asyncio.wait_for(invoke(capability, arg), timeout=seconds)
    bounded.__name__ = getattr(capability, "__name__", "capability")
    return bounded


# ===================================================================
# File resolver
# ===================================================================

DEFAULT_EXTENSIONS = (".cljs", ".cljc", ".js")


def _lang_for(ext: str) -> str:
    return "js" if ext == ".js" else "clj"


class FileResolver:
    """Resolve namespaces against one or more source directories.

    Extensions are tried in order under each root: `.cljs`, then `.cljc`,
    then `.js`. The first existing file wins.
    """

    def __init__(self, roots: Union[str, os.PathLike, Sequence[Union[str, os.PathLike]]],
                 extensions: Iterable[str] = DEFAULT_EXTENSIONS, encoding: str = "utf-8"):
        if isinstance(roots, (str, os.PathLike)):
            roots = [roots]
        self.roots = [Path(r) for r in roots]
        self.extensions = tuple(extensions)
        self.encoding = encoding

    def candidates(self, request: ResourceRequest):
        for root in self.roots:
            for ext in self.extensions:
                yield root / (request.path + ext), ext

    async def __call__(self, request: ResourceRequest) -> Optional[Resource]:
        for path, ext in self.candidates(request):
            if path.is_file():
                source = path.read_text(encoding=self.encoding)
                return Resource(_lang_for(ext), source, request.name, str(path))
        return None

    def __repr__(self):
        return f"FileResolver({[str(r) for r in self.roots]!r})"
