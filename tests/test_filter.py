import pytest

from segflow.stages.filter import make_filter_step


def _rule(rule_id, pattern, action, **kw):
    return {"id": rule_id, "name": rule_id, "pattern": pattern, "action": action, **kw}


def _segs(*texts):
    return [{"id": i, "content": t} for i, t in enumerate(texts)]


@pytest.mark.asyncio
async def test_first_matching_rule_wins(context):
    cfg = {
        "rules": [
            _rule("ads", "buy now", "remove"),
            _rule("keep-news", "news", "keep"),
            _rule("review", "maybe", "flag"),
        ],
        "defaultAction": "remove",
    }
    records = _segs("BUY NOW news", "daily news", "maybe later", "nothing")
    result = await make_filter_step().execute(records, cfg, context)
    assert result.success
    assert [r["id"] for r in result.output_records] == [1, 2]
    assert result.output_records[1]["flagged_by"] == "review"
    assert "flagged_by" not in records[2]
    assert result.metrics.extra["rule_matches"] == {"ads": 1, "keep-news": 1, "review": 1}
    assert result.metrics.extra["segments_filtered"] == 2


@pytest.mark.asyncio
async def test_case_sensitive_and_whole_word(context):
    cfg = {
        "rules": [_rule("cat", "cat", "remove")],
        "defaultAction": "keep",
        "caseSensitive": True,
        "wholeWord": True,
    }
    result = await make_filter_step().execute(_segs("Cat", "concatenate", "a cat"), cfg, context)
    assert [r["id"] for r in result.output_records] == [0, 1]


@pytest.mark.asyncio
async def test_length_limits_and_empty(context):
    cfg = {"rules": [], "defaultAction": "keep", "minContentLength": 2, "maxContentLength": 5}
    result = await make_filter_step().execute(_segs("a", "abc", "abcdefg", ""), cfg, context)
    assert [r["id"] for r in result.output_records] == [1]


@pytest.mark.asyncio
async def test_disabled_rule_is_ignored_with_warning(context):
    cfg = {"rules": [_rule("x", "a", "remove", enabled=False)], "defaultAction": "keep"}
    result = await make_filter_step().execute(_segs("a"), cfg, context)
    assert len(result.output_records) == 1
    assert "All rules are disabled" in result.warnings


def test_validation_errors():
    step = make_filter_step()
    bad_regex = step.validate({"rules": [_rule("x", "(", "remove")], "defaultAction": "keep"})
    assert not bad_regex.is_valid
    assert "Invalid regex pattern" in bad_regex.errors[0]

    bad_range = step.validate({"rules": [], "defaultAction": "keep", "minContentLength": 5, "maxContentLength": 1})
    assert not bad_range.is_valid

    assert not step.validate({"rules": [_rule("x", "a", "explode")], "defaultAction": "keep"}).is_valid
