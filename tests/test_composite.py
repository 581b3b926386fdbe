import pytest

from segflow.lifecycle import Step, StepHooks
from segflow.stages.composite import make_composite_step
from segflow.stages.dedup import make_duplicate_step
from segflow.stages.filter import make_filter_step
from segflow.types import RollbackResult, ValidationResult


def _recording_step(step_type, log, *, fail=False, rollback_ok=True):
    def validate(config):
        return ValidationResult(is_valid=True)

    def execute(records, config, context):
        if fail:
            raise RuntimeError(f"{step_type} broke")
        return records

    def rollback(snapshot, context):
        log.append(step_type)
        return RollbackResult(success=rollback_ok, error=None if rollback_ok else "nope")

    return Step(step_type, step_type.title(), StepHooks(validate=validate, execute=execute, rollback=rollback))


@pytest.mark.asyncio
async def test_chains_dedup_then_filter(context):
    composite = make_composite_step("Clean up", [make_duplicate_step(), make_filter_step()])
    assert composite.type == "composite_clean_up"
    records = [
        {"id": 1, "content": "keep me"},
        {"id": 2, "content": "keep me"},
        {"id": 3, "content": "spam offer"},
    ]
    cfg = {
        "stepConfigs": {
            "duplicate_segment": {"method": "hash"},
            "rule_based_filter": {
                "rules": [{"id": "r1", "name": "spam", "pattern": "spam", "action": "remove"}],
                "defaultAction": "keep",
            },
        },
    }
    result = await composite.execute(records, cfg, context)
    assert result.success
    assert [r["id"] for r in result.output_records] == [1]
    assert result.metrics.extra == {"sub_steps_run": 2, "sub_steps_failed": 0}
    assert [t["step"] for t in result.details["sub_steps"]] == ["duplicate_segment", "rule_based_filter"]


@pytest.mark.asyncio
async def test_list_configs_align_by_position(context):
    composite = make_composite_step("Two dedups", [make_duplicate_step(), make_duplicate_step()])
    cfg = {"stepConfigs": [{"method": "hash"}, {"method": "similarity", "similarityThreshold": 0}]}
    result = await composite.execute(_segs("a", "a", "b"), cfg, context)
    assert result.success
    assert len(result.output_records) == 1


def _segs(*texts):
    return [{"id": i, "content": t} for i, t in enumerate(texts)]


@pytest.mark.asyncio
async def test_invalid_sub_config_blocks_everything(context):
    log = []
    composite = make_composite_step("c", [make_duplicate_step(), _recording_step("other", log)])
    result = await composite.execute(_segs("a"), {"stepConfigs": {"duplicate_segment": {}}}, context)
    assert not result.success
    assert "Duplicate Segment Detection" in result.error


@pytest.mark.asyncio
async def test_stop_on_error_and_reverse_rollback(context):
    log = []
    steps = [
        _recording_step("first", log),
        _recording_step("second", log, rollback_ok=False),
        _recording_step("third", log, fail=True),
        _recording_step("fourth", log),
    ]
    composite = make_composite_step("chain", steps)
    result = await composite.execute(_segs("a"), {}, context)
    assert not result.success
    assert "Composite step failed at Third (step 3/4)" in result.error

    rb = await composite.rollback(result.rollback_data, context)
    assert log == ["third", "second", "first"]
    assert not rb.success
    assert "Second" in rb.error


@pytest.mark.asyncio
async def test_continue_on_error(context):
    log = []
    steps = [_recording_step("first", log, fail=True), _recording_step("second", log)]
    composite = make_composite_step("chain", steps)
    result = await composite.execute(_segs("a"), {"stopOnError": False}, context)
    assert result.success
    assert result.output_records == _segs("a")
    assert result.metrics.extra["sub_steps_failed"] == 1
    assert any("First" in w for w in result.warnings)


@pytest.mark.asyncio
async def test_rollback_without_data(context):
    from segflow.types import RollbackSnapshot

    composite = make_composite_step("chain", [make_duplicate_step()])
    rb = await composite.rollback(RollbackSnapshot.capture([], {}), context)
    assert not rb.success
    assert rb.error == "No rollback data available"


def test_validate_reports_unknown_and_empty():
    composite = make_composite_step("chain", [make_duplicate_step()])
    result = composite.validate({"steps": ["nope"], "stepConfigs": {"duplicate_segment": {"method": "hash"}}})
    assert not result.is_valid
    assert "Unknown step type: nope" in result.errors

    empty = make_composite_step("empty", [])
    assert "At least one step must be specified" in empty.validate({}).errors


@pytest.mark.asyncio
async def test_sub_step_validator_crash_blocks_the_chain(context):
    log = []

    def crash(config):
        raise RuntimeError("validator crashed")

    def execute(records, config, ctx):
        log.append("ran")
        return records

    broken = Step("broken", "Broken", StepHooks(validate=crash, execute=execute))
    composite = make_composite_step("chain", [broken])
    assert not composite.validate({}).is_valid

    result = await composite.execute(_segs("a"), {}, context)
    assert not result.success
    assert "validator crashed" in result.error
    assert log == []
