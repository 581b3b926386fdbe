import pytest

from segflow.errors import StepExecutionError
from segflow.lifecycle import SKIP_WARNING, Step, StepHooks
from segflow.types import RollbackSnapshot, StepOutput, ValidationResult


def _ok(config):
    return ValidationResult(is_valid=True)


def _upper(records, config, context):
    return [{**r, "content": r["content"].upper()} for r in records]


def _make(**hooks):
    hooks.setdefault("validate", _ok)
    hooks.setdefault("execute", _upper)
    return Step("upper", "Upper", StepHooks(**hooks), field_key="contentField")


@pytest.mark.asyncio
async def test_sync_execute_and_metrics(context):
    result = await _make().execute([{"id": 1, "content": "a"}], {}, context)
    assert result.success
    assert result.output_records == [{"id": 1, "content": "A"}]
    assert result.metrics.input_count == 1
    assert result.metrics.output_count == 1
    assert result.metrics.step_type == "upper"
    assert result.rollback_data.records == [{"id": 1, "content": "a", "status": None, "position": None}]


@pytest.mark.asyncio
async def test_async_execute_with_step_output(context):
    async def execute(records, config, context):
        return StepOutput(records=records[:1], metrics={"custom": 5}, warnings=["w"])

    result = await _make(execute=execute).execute([{"content": "a"}, {"content": "b"}], {}, context)
    assert result.output_records == [{"content": "a"}]
    assert result.metrics.extra["custom"] == 5
    assert result.metrics.filtered_count == 1
    assert "w" in result.warnings


@pytest.mark.asyncio
async def test_invalid_config_returns_input(context):
    step = _make(validate=lambda c: ValidationResult.from_errors(["bad thing"]))
    records = [{"content": "a"}]
    result = await step.execute(records, {}, context)
    assert not result.success
    assert result.output_records == records
    assert result.error == "bad thing"


@pytest.mark.asyncio
async def test_validator_exception_is_a_failed_result(context):
    def boom(config):
        raise RuntimeError("kaput")

    result = await _make(validate=boom).execute([{"content": "a"}], {}, context)
    assert not result.success
    assert "kaput" in result.error


@pytest.mark.asyncio
async def test_skip_by_condition(context):
    step = _make(should_execute=lambda r, c, ctx: False)
    result = await step.execute([{"content": "a"}], {}, context)
    assert result.success
    assert result.output_records == [{"content": "a"}]
    assert SKIP_WARNING in result.warnings


@pytest.mark.asyncio
async def test_execute_exception_keeps_rollback_extra(context):
    def execute(records, config, context):
        raise StepExecutionError("exploded", rollback_extra={"written": [1, 2]})

    records = [{"id": 1, "content": "a"}]
    result = await _make(execute=execute).execute(records, {}, context)
    assert not result.success
    assert result.error == "exploded"
    assert result.output_records == records
    assert result.rollback_data.extra == {"written": [1, 2]}


@pytest.mark.asyncio
async def test_pre_and_post_process_order(context):
    calls = []

    def pre(records, config, ctx):
        calls.append("pre")
        return records

    def post(records, config, ctx):
        calls.append("post")
        return records + [{"content": "tail"}]

    result = await _make(pre_process=pre, post_process=post).execute([{"content": "a"}], {}, context)
    assert calls == ["pre", "post"]
    assert result.output_records[-1] == {"content": "tail"}


@pytest.mark.asyncio
async def test_field_path_adjusted_on_a_copy(context):
    seen = {}

    def execute(records, config, ctx):
        seen.update(config)
        return records

    cfg = {"contentField": "items.text"}
    await _make(execute=execute).execute([{"items": [{"text": "a"}]}], cfg, context)
    assert seen["contentField"] == "text"
    assert cfg == {"contentField": "items.text"}


@pytest.mark.asyncio
async def test_rollback_default_and_failure(context):
    snap = RollbackSnapshot.capture([{"id": 1}], {})
    assert (await _make().rollback(snap, context)).success

    def broken(snapshot, ctx):
        raise RuntimeError("cannot undo")

    result = await _make(rollback=broken).rollback(snap, context)
    assert not result.success
    assert result.error == "cannot undo"


def test_format_output_default():
    from segflow.types import ExecutionMetrics, ExecutionResult

    m = ExecutionMetrics.compute(1, 1, 0)
    assert m.throughput == 0.0
    plain = ExecutionResult(success=True, output_records=[1], metrics=m)
    assert _make().format_output(plain) == [1]
    with_dups = ExecutionResult(success=True, output_records=[1], metrics=m, duplicates=[2])
    assert _make().format_output(with_dups) == {"data": [1], "duplicates": [2]}


def test_step_errors_do_not_share_rollback_extra():
    first = StepExecutionError("one")
    first.rollback_extra["x"] = 1
    assert StepExecutionError("two").rollback_extra == {}
