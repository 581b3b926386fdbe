import os
import time
import yaml
import uuid
import asyncio
import argparse
from typing import Dict, Any, List, Optional, Tuple

from segflow.registry import StepRegistry, build_default_registry
from segflow.lifecycle import Step
from segflow.llm.client import ApiClient, OpenAICompatibleClient
from segflow.stages.composite import make_composite_step
from segflow.types import ExecutionContext, ExecutionResult
from segflow.utils import write_output, validate_config, load_json, get_logger

logger = get_logger(__name__)


def _apply_overrides(cfg: Dict[str, Any], overrides: Optional[Dict[str, Any]]) -> None:
    if not overrides:
        return
    if overrides.get("stop_on_error") is not None:
        cfg["stop_on_error"] = bool(overrides["stop_on_error"])
    if overrides.get("input_path") is not None:
        cfg.setdefault("input", {})["path"] = overrides["input_path"]
    if overrides.get("output_dir") is not None:
        cfg.setdefault("output", {})["dir"] = overrides["output_dir"]


def _build_llm_client(providers: Dict[str, Any]) -> Optional[OpenAICompatibleClient]:
    llm = (providers or {}).get("llm")
    if not llm:
        return None
    key_env = llm.get("api_key_env", "OPENAI_API_KEY")
    api_key = os.getenv(key_env)
    if not api_key:
        logger.warning("api key env %s is not set; calling %s unauthenticated", key_env, llm["base_url"])
    api = ApiClient(
        llm["base_url"],
        api_key,
        timeout=float(llm.get("timeout", 30)),
        max_retries=int(llm.get("max_retries", 3)),
        retry_delay=float(llm.get("retry_delay", 1.0)),
    )
    return OpenAICompatibleClient(
        api,
        chat_model=llm.get("chat_model"),
        embedding_model=llm.get("embedding_model"),
    )


def build_pipeline(cfg: Dict[str, Any], registry: StepRegistry) -> Tuple[Step, Dict[str, Any]]:
    """Turn the ``steps`` list into one runnable step and its config.

    A single step runs on its own so its own output format is kept; several
    steps are chained in a composite.
    """
    specs = cfg["steps"]
    steps = [registry.create(s["type"]) for s in specs]
    if len(steps) == 1:
        return steps[0], dict(specs[0].get("config") or {})
    name = cfg.get("pipeline_name") or cfg["pipeline_id"]
    composite = make_composite_step(name, steps)
    composite_cfg = {
        "steps": [s["type"] for s in specs],
        "stepConfigs": [dict(s.get("config") or {}) for s in specs],
        "stopOnError": cfg.get("stop_on_error", True),
    }
    return composite, composite_cfg


async def run_pipeline(
    cfg: Dict[str, Any],
    records: Any,
    registry: StepRegistry,
    *,
    run_id: Optional[str] = None,
) -> Tuple[Step, ExecutionResult]:
    step, step_cfg = build_pipeline(cfg, registry)
    context = ExecutionContext(
        execution_id=run_id or uuid.uuid4().hex[:8],
        pipeline_id=cfg["pipeline_id"],
        user_id=cfg.get("user_id", ""),
    )
    result = await step.execute(records, step_cfg, context)
    if not result.success and result.rollback_data is not None:
        rb = await step.rollback(result.rollback_data, context)
        if rb.success:
            logger.info("rollback completed for %s", step.name)
        else:
            logger.error("rollback incomplete for %s: %s", step.name, rb.error)
    return step, result


def _payload(cfg: Dict[str, Any], run_id: str, step: Step, result: ExecutionResult) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "pipeline_id": cfg["pipeline_id"],
        "run_id": run_id,
        "success": result.success,
        "error": result.error,
        "warnings": list(result.warnings),
        "metrics": result.metrics.to_dict(),
        "items": result.output_records,
    }
    formatted = step.format_output(result)
    if isinstance(formatted, dict):
        payload.update({k: v for k, v in formatted.items() if k != "data"})
    return payload


def _execute_pipeline(
    cfg: Dict[str, Any],
    run_id: str,
    overrides: Optional[Dict[str, Any]] = None,
    registry: Optional[StepRegistry] = None,
) -> ExecutionResult:
    """Execute the configured pipeline once and write its output."""
    _apply_overrides(cfg, overrides)
    logger.info(
        "config loaded pipeline_id=%s steps=%s",
        cfg["pipeline_id"],
        ",".join(s["type"] for s in cfg["steps"]),
    )

    if registry is None:
        client = _build_llm_client(cfg.get("providers") or {})
        registry = build_default_registry(chat_client=client, embedding_client=client)

    t0 = time.monotonic()
    records = load_json(cfg["input"]["path"])
    logger.info("loaded input path=%s took_ms=%d", cfg["input"]["path"], int((time.monotonic() - t0) * 1000))

    t1 = time.monotonic()
    step, result = asyncio.run(run_pipeline(cfg, records, registry, run_id=run_id))
    logger.info(
        "pipeline %s success=%s in=%d out=%d took_ms=%d",
        step.name,
        result.success,
        result.metrics.input_count,
        result.metrics.output_count,
        int((time.monotonic() - t1) * 1000),
    )

    generated_files: List[str] = write_output(_payload(cfg, run_id, step, result), cfg["output"])
    logger.info("output written files=%s", ",".join(generated_files))

    if not result.success:
        logger.error("pipeline failed: %s", result.error)
    return result


def run_once(
    config_path: str,
    *,
    input_path: Optional[str] = None,
    output_dir: Optional[str] = None,
    stop_on_error: Optional[bool] = None,
    registry: Optional[StepRegistry] = None,
) -> ExecutionResult:
    """Execute pipeline once with given config file path."""
    run_id = uuid.uuid4().hex[:8]
    logger.info("=== run start id=%s ===", run_id)

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            cfg = yaml.safe_load(f)
        validate_config(cfg)
        overrides = {
            "input_path": input_path,
            "output_dir": output_dir,
            "stop_on_error": stop_on_error,
        }
        return _execute_pipeline(cfg, run_id, overrides, registry)

    except Exception as e:
        logger.error("Pipeline execution failed: %s", e)
        raise
    finally:
        logger.info("=== run end id=%s ===", run_id)


def main():
    """Main entry point for CLI usage."""
    parser = argparse.ArgumentParser(description="Run a segment pipeline.")
    parser.add_argument('--config', type=str, required=True, help="Path to the pipeline config YAML file.")
    parser.add_argument('--input', dest='input_path', type=str, help="Override input.path")
    parser.add_argument('--output-dir', dest='output_dir', type=str, help="Override output.dir")
    parser.add_argument('--stop-on-error', dest='stop_on_error', action='store_true', help="Abort at the first failing step")
    parser.add_argument('--continue-on-error', dest='stop_on_error', action='store_false', help="Keep going past failing steps")
    parser.set_defaults(stop_on_error=None)
    args = parser.parse_args()

    result = run_once(
        args.config,
        input_path=args.input_path,
        output_dir=args.output_dir,
        stop_on_error=args.stop_on_error,
    )
    raise SystemExit(0 if result.success else 1)


if __name__ == "__main__":
    main()
