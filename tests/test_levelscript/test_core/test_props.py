import pytest
from levelscript.props import (
    PropertyTable,
    clamp,
    falsy,
    numbered_keys,
    parse_props,
    split_csv,
    to_float,
    to_int,
    truthy,
)

def test_parse_props_array_form():
    obj = {"properties": [
        {"name": " Dialogue ", "value": "Hello"},
        {"name": "", "value": 1},
        "junk",
        {"name": "ONCE", "type": "bool", "value": True},
    ]}
    assert parse_props(obj) == {"dialogue": "Hello", "once": True}

def test_parse_props_mapping_form():
    assert parse_props({"properties": {"GiveItem": "key", " ": 3}}) == {"giveitem": "key"}

def test_parse_props_malformed():
    assert parse_props(None) == {}
    assert parse_props({"properties": 5}) == {}
    assert parse_props({}) == {}

def test_truthy_and_falsy():
    for value in (True, "true", "TRUE", 1, "1", " 1 "):
        assert truthy(value)
    for value in (False, None, "yes", 2, "", "false"):
        assert not truthy(value)

    for value in (False, "false", 0, "0"):
        assert falsy(value)
    # Absence is not an explicit false
    for value in (None, "", True, "maybe"):
        assert not falsy(value)

def test_split_csv():
    assert split_csv("a, b,,c ") == ["a", "b", "c"]
    assert split_csv(None) == []
    assert split_csv("") == []
    assert split_csv(["x", 2]) == ["x", "2"]

def test_number_coercion():
    assert to_float("12.5") == 12.5
    assert to_float("abc", 3.0) == 3.0
    assert to_float("inf", 0.0) == 0.0
    assert to_float(True, 7.0) == 7.0
    assert to_int("4.9") == 4
    assert to_int(None, 2) == 2
    assert clamp(15, 0, 10) == 10
    assert clamp(-1, 0, 10) == 0

def test_numbered_keys_stop_at_first_gap():
    props = PropertyTable({"dialogue": "a", "dialogue2": "b", "dialogue4": "d"})
    assert numbered_keys(props, "dialogue") == ["dialogue", "dialogue2"]

def test_numbered_keys_without_base():
    props = PropertyTable({"dialogue2": "b", "dialogue3": "c"})
    assert numbered_keys(props, "Dialogue") == ["dialogue2", "dialogue3"]
    assert numbered_keys(props, "postdialogue") == []

class TestPropertyTable:
    def test_case_insensitive(self):
        props = PropertyTable({"Once": "true", "Speaker": " Mira "})
        assert props.flag("ONCE")
        assert "once" in props
        assert props.text("speaker") == "Mira"
        assert props["SPEAKER"] == " Mira "

    def test_absent_keys(self):
        props = PropertyTable()
        assert props.get("x") is None
        assert props.flag("x") is False
        assert props.flag("x", default=True) is True
        assert props.text("x", "fallback") == "fallback"
        assert props.number("x") is None
        assert props.csv("x") == []

    def test_unparseable_flag_uses_default(self):
        props = PropertyTable({"x": "maybe"})
        assert props.flag("x", default=True) is True
        assert props.flag("x") is False

    def test_blank_text_uses_default(self):
        assert PropertyTable({"prompt": "   "}).text("prompt", "Interact") == "Interact"

    def test_first_text_and_number(self):
        props = PropertyTable({"b": "", "c": "third", "n2": "4"})
        assert props.first_text("a", "b", "c") == "third"
        assert props.first_number("n1", "n2") == 4.0
        assert props.first_text("a", default="none") == "none"

    def test_has(self):
        props = PropertyTable({"a": "", "b": 0})
        assert not props.has("a")
        assert props.has("b")

    def test_from_object(self):
        props = PropertyTable.from_object({"properties": [{"name": "HelpScore", "value": "+10"}]})
        assert props.integer("helpscore") == 10
