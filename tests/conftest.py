import pytest

from kindling.kindling_state import CompilerState, LoadedSet


class Host:
    """Recording resolver/evaluator pair backed by a dict of sources.

    `sources` maps a namespace name to (lang, source).
    """

    def __init__(self, sources=None, evaluate_with=None):
        self.sources = dict(sources or {})
        self.calls = []
        self.evals = []
        self.evaluate_with = evaluate_with

    async def resolve(self, request):
        self.calls.append((request.name, request.macros_ns))
        entry = self.sources.get(request.name)
        if entry is None:
            return None
        lang, source = entry
        return {"lang": lang, "source": source}

    async def evaluate(self, request):
        self.evals.append(request)
        if self.evaluate_with is not None:
            return self.evaluate_with(request)
        return request.source

    @property
    def resolved(self):
        return [name for name, _ in self.calls]

    def opts(self, **extra):
        opts = {"load-fn": self.resolve, "eval-fn": self.evaluate}
        opts.update({k.replace("_", "-"): v for k, v in extra.items()})
        return opts


@pytest.fixture
def make_host():
    return Host


@pytest.fixture
def state():
    return CompilerState()


@pytest.fixture
def loaded():
    return LoadedSet()
