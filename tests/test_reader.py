import uuid
from datetime import datetime

import pytest

from kindling.kindling_datatypes import (
    EOF, Keyword, ListForm, MapForm, ReaderError, SetForm, Symbol, VectorForm,
)
from kindling.kindling_reader import Reader, read_all, read_string


def test_reads_list_of_symbol_and_numbers():
    form = read_string("(+ 1 2.5)")
    assert isinstance(form, ListForm)
    assert isinstance(form[0], Symbol)
    assert form[0] == "+"
    assert form[1:] == (1, 2.5)


def test_reads_collections():
    vec, st, mp = read_all("[1 2] #{:a} {:a 1, :b \"two\"}")
    assert isinstance(vec, VectorForm) and vec == (1, 2)
    assert isinstance(st, SetForm) and st == (Keyword("a"),)
    assert isinstance(mp, MapForm)
    assert mp.get(Keyword("a")) == 1
    assert mp.get(Keyword("b")) == "two"
    assert mp.get(Keyword("c"), "missing") == "missing"


def test_nil_true_false_become_python_constants():
    assert read_all("nil true false") == [None, True, False]


def test_signed_numbers_and_operator_symbols():
    forms = read_all("-1 - -x +")
    assert forms[0] == -1
    assert [str(f) for f in forms[1:]] == ["-", "-x", "+"]
    assert all(isinstance(f, Symbol) for f in forms[1:])


def test_namespaced_symbol_parts():
    s = read_string("app.util/helper")
    assert s.ns == "app.util"
    assert s.name == "helper"
    assert read_string("/").ns is None


def test_keywords_drop_colons():
    assert read_all(":a ::b :x/y") == [Keyword("a"), Keyword("b"), Keyword("x/y")]


def test_string_escapes():
    assert read_string(r'"a\"b\nc"') == 'a"b\nc'
    assert read_string(r'"\u0041"') == "A"


def test_comments_and_commas_are_whitespace():
    assert read_all("; leading comment\n1,2 ; trailing\n3") == [1, 2, 3]


def test_discard_skips_next_form():
    assert read_all("1 #_2 3 #_(ignored form)") == [1, 3]


def test_reader_conditional_picks_cljs_branch():
    assert read_all("#?(:clj 1 :cljs 2) #?(:clj 3) #?(:clj 4 :default 5)") == [2, 5]


def test_reader_conditional_inside_collection():
    assert read_string("[1 #?(:clj 2) 3]") == (1, 3)


def test_quote_and_deref_expand_to_lists():
    q = read_string("'x")
    assert q == ("quote", "x")
    d = read_string("@state")
    assert d == ("deref", "state")


def test_metadata_is_dropped():
    assert read_string("^:private foo") == "foo"


def test_tagged_literals_use_data_readers():
    inst, uid = read_all('#inst "2020-01-02T03:04:05" #uuid "c1a9e1b2-9f3c-4b7e-8a6a-1d2f3e4a5b6c"')
    assert inst == datetime(2020, 1, 2, 3, 4, 5)
    assert uid == uuid.UUID("c1a9e1b2-9f3c-4b7e-8a6a-1d2f3e4a5b6c")


def test_custom_data_reader():
    reader = Reader('#point [1 2]', data_readers={"point": lambda v: tuple(v)})
    assert reader.read() == (1, 2)
    assert reader.read() is EOF


def test_unknown_tag_is_a_reader_error():
    with pytest.raises(ReaderError, match="No reader function for tag foo"):
        read_all("#foo 1")


def test_odd_map_is_a_reader_error():
    with pytest.raises(ReaderError, match="even number"):
        read_all("{:a}")


def test_unbalanced_input_is_a_reader_error():
    with pytest.raises(ReaderError):
        read_all("(foo")
    with pytest.raises(ReaderError) as ei:
        read_all("\n)")
    assert ei.value.loc["line"] == 2


def test_forms_carry_locations():
    lst = read_all("\n  (foo bar)")[0]
    assert lst.loc == {"line": 2, "col": 3}
    assert lst[1].loc == {"line": 2, "col": 8}
    assert read_string("  foo").loc == {"line": 1, "col": 3}


def test_reader_yields_one_form_per_read_then_eof():
    reader = Reader("(a) (b)")
    assert reader.read() == ("a",)
    assert reader.read() == ("b",)
    assert reader.read() is EOF
    assert reader.read() is EOF


def test_empty_source_reads_eof():
    assert read_string("   ; nothing\n") is EOF
    assert read_all("") == []
