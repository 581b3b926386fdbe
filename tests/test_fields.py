from segflow.errors import ExtractionWarning
from segflow.fields import extract_field, stringify


def test_direct_field():
    assert extract_field({"content": "hello"}) == "hello"
    assert extract_field({"text": "hi"}, "text") == "hi"


def test_nested_path():
    record = {"data": {"post": {"message": "deep"}}}
    assert extract_field(record, "data.post.message") == "deep"


def test_leading_wrapper_key_dropped_when_absent():
    assert extract_field({"text": "x"}, "items.text") == "x"


def test_falls_back_to_last_segment():
    assert extract_field({"meta": {"text": "inner"}}, "meta.body.text") == "inner"
    assert extract_field({"text": "top", "meta": {}}, "meta.body.text") == "top"


def test_missing_field_returns_empty_and_records_warning():
    sink = []
    assert extract_field({"id": 7, "other": 1}, "content", sink=sink) == ""
    assert len(sink) == 1
    assert isinstance(sink[0], ExtractionWarning)
    assert sink[0].record_id == 7
    assert "Available fields" in str(sink[0])


def test_non_object_record():
    sink = []
    assert extract_field("plain string", "content", sink=sink) == ""
    assert sink and sink[0].path == "content"


def test_null_at_end_of_path():
    sink = []
    assert extract_field({"a": {"b": None}}, "a.b", sink=sink) == ""
    assert "null" in str(sink[0])


def test_stringify_structures():
    assert stringify(None) == ""
    assert stringify(3) == "3"
    assert stringify({"b": 1, "a": 2}) == '{"a": 2, "b": 1}'
