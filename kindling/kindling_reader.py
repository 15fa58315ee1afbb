"""
Reads source text into forms using a lark grammar.

The reader yields one top-level form per `read()` and the EOF sentinel
once the unit is exhausted. Reader conditionals are resolved against a fixed
feature set (`cljs`, falling back to `default`).
"""

import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional

from lark import Lark, Transformer, v_args
from lark.exceptions import UnexpectedInput, VisitError

from kindling.kindling_datatypes import (
    EOF, Keyword, KindlingError, ListForm, MapForm, ReaderError, SetForm,
    VectorForm, sym,
)
from kindling.kindling_host import FormReader

GRAMMAR = r"""
start: _form*

_form: list | vector | map | set | reader_cond | discard | quote | deref
     | meta | tagged | STRING | NUMBER | KEYWORD | CHAR | SYMBOL

list: "(" _form* ")"
vector: "[" _form* "]"
map: "{" _form* "}"
set: "#{" _form* "}"
reader_cond: "#?(" _form* ")"
discard: "#_" _form
quote: "'" _form
deref: "@" _form
meta: "^" _form _form
tagged: TAG _form

STRING: /"(\\.|[^"\\])*"/s
NUMBER.2: /[+-]?\d+(\.\d+)?([eE][+-]?\d+)?/
KEYWORD: /::?[^\s,()\[\]{}"';`@^\\~]+/
TAG: /#[a-zA-Z][^\s,()\[\]{}"';`@^\\~]*/
CHAR: /\\(newline|space|tab|return|.)/
SYMBOL: /[^\s,()\[\]{}"';`@^\\~#:0-9][^\s,()\[\]{}"';`@^\\~]*/

COMMENT: /;[^\n]*/
%ignore /[\s,]+/
%ignore COMMENT
"""

FEATURES = ("cljs",)

DEFAULT_DATA_READERS: Dict[str, Callable[[Any], Any]] = {
    "inst": lambda s: datetime.fromisoformat(str(s)),
    "uuid": lambda s: uuid.UUID(str(s)),
}

_CHARS = {"newline": "\n", "space": " ", "tab": "\t", "return": "\r"}
_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", '"': '"', "\\": "\\", "b": "\b", "f": "\f"}


class _Skip:
    def __repr__(self):
        return "<skip>"


_SKIP = _Skip()


def _keep(children):
    return [c for c in children if c is not _SKIP]


def _with_loc(obj, meta):
    line = getattr(meta, "line", None)
    if line is not None:
        try:
            obj.loc = {"line": line, "col": getattr(meta, "column", None)}
        except AttributeError:
            pass
    return obj


def _unescape(body: str) -> str:
    out = []
    i = 0
    while i < len(body):
        ch = body[i]
        if ch == "\\" and i + 1 < len(body):
            nxt = body[i + 1]
            if nxt == "u" and i + 5 < len(body) + 1:
                out.append(chr(int(body[i + 2:i + 6], 16)))
                i += 6
                continue
            out.append(_ESCAPES.get(nxt, nxt))
            i += 2
            continue
        out.append(ch)
        i += 1
    return "".join(out)


class FormBuilder(Transformer):
    """Turns the lark parse tree into kindling forms."""

    def __init__(self, data_readers: Mapping[str, Callable], features=FEATURES):
        super().__init__()
        self.data_readers = data_readers
        self.features = tuple(features)

    def start(self, children):
        return _keep(children)

    @v_args(meta=True)
    def list(self, meta, children):
        return _with_loc(ListForm(_keep(children)), meta)

    @v_args(meta=True)
    def vector(self, meta, children):
        return _with_loc(VectorForm(_keep(children)), meta)

    @v_args(meta=True)
    def set(self, meta, children):
        return _with_loc(SetForm(_keep(children)), meta)

    @v_args(meta=True)
    def map(self, meta, children):
        items = _keep(children)
        if len(items) % 2:
            raise ReaderError("Map literal must contain an even number of forms",
                              {"line": getattr(meta, "line", None), "col": getattr(meta, "column", None)})
        return _with_loc(MapForm(zip(items[0::2], items[1::2])), meta)

    @v_args(meta=True)
    def reader_cond(self, meta, children):
        items = _keep(children)
        if len(items) % 2:
            raise ReaderError("Reader conditional requires an even number of forms",
                              {"line": getattr(meta, "line", None), "col": getattr(meta, "column", None)})
        for feature, form in zip(items[0::2], items[1::2]):
            if not isinstance(feature, Keyword):
                raise ReaderError(f"Feature should be a keyword: {feature!r}")
            if feature.name in self.features or feature.name == "default":
                return form
        return _SKIP

    def discard(self, children):
        return _SKIP

    @v_args(meta=True)
    def quote(self, meta, children):
        return _with_loc(ListForm([sym("quote")] + _keep(children)), meta)

    @v_args(meta=True)
    def deref(self, meta, children):
        return _with_loc(ListForm([sym("deref")] + _keep(children)), meta)

    def meta(self, children):
        items = _keep(children)
        return items[-1] if items else _SKIP

    def tagged(self, children):
        tag_tok, form = children
        tag = str(tag_tok)[1:]
        reader = self.data_readers.get(tag)
        if reader is None:
            raise ReaderError(f"No reader function for tag {tag}",
                              {"line": tag_tok.line, "col": tag_tok.column})
        return reader(form)

    # --- Terminals ---
    def STRING(self, tok):
        return _unescape(str(tok)[1:-1])

    def NUMBER(self, tok):
        text = str(tok)
        if any(c in text for c in ".eE"):
            return float(text)
        return int(text)

    def KEYWORD(self, tok):
        return Keyword(str(tok).lstrip(":"))

    def CHAR(self, tok):
        body = str(tok)[1:]
        return _CHARS.get(body, body)

    def SYMBOL(self, tok):
        text = str(tok)
        match text:
            case "nil":
                return None
            case "true":
                return True
            case "false":
                return False
        return sym(text, {"line": tok.line, "col": tok.column})


class Reader(FormReader):
    """Reads forms from one unit of source."""

    _parser: Optional[Lark] = None

    def __init__(self, source: str, name: Optional[str] = None,
                 data_readers: Optional[Mapping[str, Callable]] = None):
        if Reader._parser is None:
            Reader._parser = Lark(GRAMMAR, parser="lalr", propagate_positions=True)
        self.source = source
        self.name = name
        self.data_readers = DEFAULT_DATA_READERS if data_readers is None else data_readers
        self._forms = None

    def _parse(self) -> List[Any]:
        try:
            tree = Reader._parser.parse(self.source)
        except UnexpectedInput as e:
            raise ReaderError(f"Could not read {self.name or 'source'}: unexpected input",
                              {"line": e.line, "col": e.column}) from e
        try:
            return FormBuilder(self.data_readers).transform(tree)
        except VisitError as e:
            if isinstance(e.orig_exc, KindlingError):
                raise e.orig_exc from None
            raise ReaderError(f"Could not read {self.name or 'source'}: {e.orig_exc}") from e

    def read(self) -> Any:
        if self._forms is None:
            self._forms = iter(self._parse())
        return next(self._forms, EOF)


def read_all(source: str, name: Optional[str] = None) -> List[Any]:
    reader = Reader(source, name)
    forms = []
    while (form := reader.read()) is not EOF:
        forms.append(form)
    return forms


def read_string(source: str) -> Any:
    """The first form in `source`, or EOF if there is none."""
    return Reader(source).read()
