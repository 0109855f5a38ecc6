import copy

import pytest

from session_config.bencode import BencodeError, decode, encode
from session_config.data import (
    ConfigError,
    ConfigParseError,
    apply_diff,
    diff,
    load_diff,
    parse_data,
    prune,
    scalar_sort_key,
    serialize_data,
)

PROFILE = {
    b"n": b"Kallie",
    b"p": b"http://example.org/omg-pic-123.bmp",
    b"q": b"secret",
}

OLD = {
    b"a": 1,
    b"b": b"hello",
    b"c": {b"x": 5, b"y": {b"z": b"deep"}},
    b"s": {1, 2, b"a"},
    b"t": {3},
    b"u": b"gone",
    b"v": {b"k": 1},
}

NEW = {
    b"a": 2,
    b"b": b"hello",
    b"c": {b"x": 5, b"y": {b"w": 7}},
    b"s": {2, 3, b"b"},
    b"t": 9,
    b"v": b"now a scalar",
    b"w": {b"fresh": {1, 2}},
}


def test_scalar_sort_key_ints_before_strings():
    assert scalar_sort_key(3) < scalar_sort_key(b"a")
    assert scalar_sort_key(-1) < scalar_sort_key(3)
    assert scalar_sort_key(b"a") < scalar_sort_key(b"b")
    assert scalar_sort_key(1000000) < scalar_sort_key(b"")
    values = [b"b", 3, b"a", -1]
    assert sorted(values, key=scalar_sort_key) == [-1, 3, b"a", b"b"]


def test_prune_removes_empty_containers():
    data = {b"a": {}, b"b": set(), b"c": {b"d": {b"e": set()}}, b"keep": 1}
    assert prune(data) is True
    assert data == {b"keep": 1}


def test_prune_without_changes():
    data = {b"a": {b"b": {1}}, b"c": b"x"}
    assert prune(data) is False
    assert data == {b"a": {b"b": {1}}, b"c": b"x"}


def test_serialize_profile_matches_wire_bytes():
    assert encode(serialize_data(PROFILE)) == (
        b"d1:n6:Kallie1:p34:http://example.org/omg-pic-123.bmp1:q6:secrete"
    )


def test_serialize_set_orders_ints_first():
    assert encode(serialize_data({b"s": {b"b", 2, b"a", 1}})) == b"d1:sli1ei2e1:a1:bee"


def test_diff_of_new_profile():
    assert diff({}, PROFILE) == {b"n": b"", b"p": b"", b"q": b""}


def test_diff_identical_is_empty():
    assert diff(OLD, copy.deepcopy(OLD)) == {}


def test_diff_cases():
    d = diff(OLD, NEW)
    assert d[b"a"] == b""
    assert b"b" not in d
    assert d[b"c"] == {b"y": {b"w": b"", b"z": b"-"}}
    assert d[b"s"] == [[3, b"b"], [1, b"a"]]
    assert d[b"t"] == b""
    assert d[b"u"] == b"-"
    assert d[b"v"] == b""
    assert d[b"w"] == {b"fresh": [[1, 2], []]}
    assert list(d) == sorted(d)


def test_diff_of_removed_set_and_dict():
    d = diff({b"s": {1, b"x"}, b"d": {b"k": 1}}, {})
    assert d == {b"d": {b"k": b"-"}, b"s": [[], [1, b"x"]]}


def test_scalar_type_change_is_assignment():
    assert diff({b"k": 5}, {b"k": b"5"}) == {b"k": b""}


@pytest.mark.parametrize(
    "old,new",
    [
        (OLD, NEW),
        (NEW, OLD),
        ({}, PROFILE),
        (PROFILE, {}),
        ({b"k": {b"a": 1}}, {b"k": 42}),
        ({b"k": 42}, {b"k": {b"b": 2}}),
    ],
)
def test_apply_diff_round_trip(old, new):
    data = copy.deepcopy(old)
    apply_diff(data, diff(old, new), new)
    prune(data)
    assert data == new


def test_parse_data_round_trip():
    raw = decode(encode(serialize_data(OLD)))
    assert parse_data(raw, top_level=True) == OLD


def test_parse_data_empty_top_level_allowed():
    assert parse_data({}, top_level=True) == {}


def test_parse_data_rejects_empty_nested_dict():
    with pytest.raises(BencodeError):
        parse_data(decode(b"d1:ade1:bi1ee"), top_level=True)


def test_parse_data_rejects_empty_set():
    with pytest.raises(BencodeError):
        parse_data(decode(b"d1:alee"), top_level=True)


def test_parse_data_rejects_unordered_keys():
    with pytest.raises(BencodeError):
        parse_data(decode(b"d1:bi1e1:ai2ee"), top_level=True)


def test_parse_data_rejects_out_of_range_int():
    with pytest.raises(BencodeError):
        parse_data(decode(b"d1:ai18446744073709551615ee"), top_level=True)


def test_load_diff_accepts_generated_diff():
    d = diff(OLD, NEW)
    assert load_diff(decode(encode(d))) == d


def test_load_diff_rejects_bad_mode():
    with pytest.raises(ConfigParseError):
        load_diff({b"a": b"x"})


def test_load_diff_rejects_wrong_set_shape():
    with pytest.raises(ConfigParseError):
        load_diff({b"a": [[1]]})
    with pytest.raises(ConfigParseError):
        load_diff({b"a": [[1], 2]})


def test_load_diff_rejects_unordered_keys():
    with pytest.raises(BencodeError):
        load_diff(decode(b"d1:b0:1:a0:e"))


@pytest.mark.parametrize(
    "elements",
    [[b"a", 1], [2, 1], [b"b", b"a"], [1, [2]]],
)
def test_load_diff_rejects_unsorted_set_elements(elements):
    with pytest.raises(ConfigError):
        load_diff({b"a": [elements, []]})


def test_apply_diff_erases_missing_source_value():
    data = {b"a": 1, b"b": 2}
    apply_diff(data, {b"a": b""}, {b"b": 2})
    assert data == {b"b": 2}


def test_apply_diff_erases_type_mismatch():
    data = {b"a": {b"x": 1}}
    apply_diff(data, {b"a": {b"x": b""}}, {b"a": 7})
    assert data == {}


def test_apply_diff_rejects_bad_mode():
    with pytest.raises(ConfigError):
        apply_diff({}, {b"a": b"?"}, {b"a": 1})


def test_apply_diff_rejects_integer_diff_value():
    with pytest.raises(ConfigError):
        apply_diff({}, {b"a": 3}, {b"a": 1})


def test_apply_diff_set_changes():
    data = {b"s": {1, 2}}
    apply_diff(data, {b"s": [[3], [1]]}, {b"s": {2, 3}})
    assert data == {b"s": {2, 3}}