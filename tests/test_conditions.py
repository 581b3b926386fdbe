import pytest

from segflow.conditions import ConditionError, compile_condition, segment_view


def test_python_and_js_spellings_agree():
    seg = segment_view({"id": 1, "status": "waiting", "wordCount": 1200}, "text")
    assert compile_condition("segment.wordCount > 1000 and segment.status == 'waiting'").evaluate(seg)
    assert compile_condition("segment.wordCount > 1000 && segment.status === 'waiting'").evaluate(seg)
    assert not compile_condition("!(segment.wordCount > 1000) || false").evaluate(seg)


def test_operators_inside_strings_are_left_alone():
    seg = segment_view({}, "a && b")
    assert compile_condition("segment.content == 'a && b'").evaluate(seg)


def test_string_methods_and_len():
    seg = segment_view({}, "Hello World")
    assert compile_condition("segment.content.includes('World')").evaluate(seg)
    assert compile_condition("len(segment.content) == 11").evaluate(seg)
    assert compile_condition("segment.content.lower().startswith('hello')").evaluate(seg)


def test_word_count_derived_when_missing():
    seg = segment_view({"id": 1}, "one two three")
    assert seg["wordCount"] == 3
    assert seg["tokens"] == 0


@pytest.mark.parametrize("source", [
    "__import__('os').system('true')",
    "segment.__class__",
    "open('x')",
    "segment.secret > 1",
    "lambda: 1",
    "segment.content[0]",
    "x > 1",
])
def test_rejects_unsafe_or_unknown(source):
    with pytest.raises(ConditionError):
        compile_condition(source)


def test_syntax_error():
    with pytest.raises(ConditionError):
        compile_condition("segment.wordCount >")


@pytest.mark.parametrize("source", ["'a' * 99999999999", "99999999999 * 'a'", "[1] * 10"])
def test_rejects_sequence_repetition(source):
    with pytest.raises(ConditionError):
        compile_condition(source)


def test_repetition_of_segment_text_fails_at_evaluation():
    cond = compile_condition("len(segment.content * 1000) > 1")
    with pytest.raises(ConditionError):
        cond.evaluate(segment_view({}, "abc"))
    assert compile_condition("segment.wordCount * 2 > 3").evaluate(segment_view({"wordCount": 2}, ""))
