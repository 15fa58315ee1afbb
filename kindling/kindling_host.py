"""
Contracts for the collaborators the driver calls into: the reader, the
analyzer, the emitter and the source-map encoder.

The driver only sequences calls into these; any implementation honouring the
abstract methods below can be plugged in through a `Toolchain`.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional

from kindling.kindling_datatypes import Node


class FormReader(ABC):
    """Produces forms from one unit of source, one per `read()` call, then EOF."""

    @abstractmethod
    def read(self) -> Any: raise NotImplementedError


class FormAnalyzer(ABC):
    """Turns forms into annotated nodes and maintains the namespace registry."""

    @abstractmethod
    def empty_env(self, state, ns: str, *, context: Optional[str] = None,
                  def_emits_var: bool = False) -> Dict[str, Any]:
        raise NotImplementedError

    @abstractmethod
    def analyze(self, env: Dict[str, Any], form: Any) -> Node: raise NotImplementedError

    @abstractmethod
    def check_uses(self, uses: Mapping[str, str], state) -> None: raise NotImplementedError

    @abstractmethod
    def check_use_macros(self, use_macros: Mapping[str, str], state) -> None: raise NotImplementedError


class FormEmitter(ABC):
    """Turns nodes into target-language text."""

    @abstractmethod
    def emit(self, node: Node, sm=None) -> str: raise NotImplementedError

    @abstractmethod
    def provide(self, ns: str) -> str:
        """The statement announcing namespace `ns` to the host runtime."""
        raise NotImplementedError


ReaderFactory = Callable[[str, Optional[str], Mapping[str, Callable]], FormReader]


@dataclass(frozen=True)
class Toolchain:
    reader: ReaderFactory
    analyzer: FormAnalyzer
    emitter: FormEmitter
    encoder: Callable[..., str]


_default_toolchain: Optional[Toolchain] = None


def default_toolchain() -> Toolchain:
    """The bundled reference reader, analyzer, emitter and encoder."""
    global _default_toolchain
    if _default_toolchain is None:
        from kindling.kindling_reader import Reader
        from kindling.kindling_analyzer import Analyzer
        from kindling.kindling_emitter import Emitter
        from kindling.kindling_sourcemap import encode
        _default_toolchain = Toolchain(reader=Reader, analyzer=Analyzer(),
                                       emitter=Emitter(), encoder=encode)
    return _default_toolchain
