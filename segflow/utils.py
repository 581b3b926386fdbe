import os
import re
import json
import datetime as dt
import logging
from logging.handlers import TimedRotatingFileHandler
from jsonschema import validate, Draft202012Validator
from jsonschema.exceptions import ValidationError
from typing import Any, List

from segflow.errors import ConfigValidationError

# ---------- Time helpers ----------

def now_utc():
    return dt.datetime.now(dt.timezone.utc)

def iso_now() -> str:
    return now_utc().isoformat().replace("+00:00", "Z")

# ---------- Config validation ----------

def load_file(path: str) -> str:
    with open(path, "r", encoding="utf-8") as f:
        return f.read()

def load_json(path: str) -> Any:
    return json.loads(load_file(path))

def validate_config(cfg: dict):
    here = os.path.dirname(os.path.abspath(__file__))
    schema_path = os.path.join(here, "schemas", "pipeline.schema.json")
    schema = json.loads(load_file(schema_path))
    try:
        validate(instance=cfg, schema=schema, cls=Draft202012Validator)
    except ValidationError as e:
        raise ConfigValidationError(
            f"Config validation error: {e.message} at {list(e.path)}",
            errors=[e.message],
        ) from e

# ---------- Output writer ----------

def write_output(json_obj: Any, out_cfg: dict, *, name: str = "segments") -> List[str]:
    out_dir = out_cfg["dir"]
    formats = out_cfg.get("formats") or ["json"]
    os.makedirs(out_dir, exist_ok=True)
    now_local = dt.datetime.now().astimezone()
    ts = now_local.strftime("%Y%m%dT%H%M%S%z")
    base = os.path.join(out_dir, f"{name}_{ts}")

    generated_files = []

    if "json" in formats:
        json_path = base + ".json"
        with open(json_path, "w", encoding="utf-8") as f:
            json.dump(json_obj, f, ensure_ascii=False, indent=2, default=str)
        generated_files.append(json_path)

    if "jsonl" in formats:
        jsonl_path = base + ".jsonl"
        items = json_obj.get("items", []) if isinstance(json_obj, dict) else json_obj
        with open(jsonl_path, "w", encoding="utf-8") as f:
            for item in items or []:
                f.write(json.dumps(item, ensure_ascii=False, default=str) + "\n")
        generated_files.append(jsonl_path)

    return generated_files

# ---------- Logging ----------

_LOGGER_INITIALIZED = False

class JsonFormatter(logging.Formatter):
    def format(self, record):
        payload = {
            "ts": dt.datetime.fromtimestamp(record.created, dt.timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        execution_id = getattr(record, "execution_id", None)
        if execution_id:
            payload["execution_id"] = execution_id
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)

def _build_logger():
    global _LOGGER_INITIALIZED
    if _LOGGER_INITIALIZED:
        return

    level = os.getenv("LOG_LEVEL", "INFO").upper()
    # Default to a local, writable logs directory
    log_dir = os.getenv("LOG_DIR", "logs")
    json_mode = os.getenv("LOG_JSON", "false").lower() == "true"

    os.makedirs(log_dir, exist_ok=True)
    logger = logging.getLogger()
    logger.setLevel(getattr(logging, level, logging.INFO))

    ch = logging.StreamHandler()
    ch.setLevel(logger.level)

    fh = TimedRotatingFileHandler(os.path.join(log_dir, "segflow.log"), when="D", backupCount=7, encoding="utf-8")
    fh.setLevel(logger.level)

    if json_mode:
        fmt = JsonFormatter()
    else:
        fmt = logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")

    ch.setFormatter(fmt)
    fh.setFormatter(fmt)
    logger.addHandler(ch)
    logger.addHandler(fh)

    _LOGGER_INITIALIZED = True

def get_logger(name: str = None) -> logging.Logger:
    _build_logger()
    return logging.getLogger(name if name else __name__)


class ExecutionLogger(logging.LoggerAdapter):
    """Logger scoped to one step execution; prefixes every message with its id."""

    def process(self, msg, kwargs):
        extra = dict(kwargs.get("extra") or {})
        extra.setdefault("execution_id", self.extra.get("execution_id"))
        kwargs["extra"] = extra
        return f"[exec={self.extra.get('execution_id')}] {msg}", kwargs


def execution_logger(execution_id: str, name: str = "segflow.run") -> ExecutionLogger:
    return ExecutionLogger(get_logger(name), {"execution_id": execution_id})

# ---------- Secret redaction ----------

def redact_secrets(s: str) -> str:
    """Redact sensitive information from strings for safe logging."""
    if not s:
        return s

    env_keys = ["SEGFLOW_API_KEY", "OPENAI_API_KEY"]

    redacted = s
    for k in env_keys:
        v = os.getenv(k)
        if v and len(v) > 3:
            redacted = redacted.replace(v, "***")

    pattern_flags = re.IGNORECASE
    redacted = re.sub(r"sk-[A-Za-z0-9-]{10,}", "sk-***", redacted, flags=pattern_flags)
    redacted = re.sub(r"(api_key=)([^\s&]+)", r"\1***", redacted, flags=pattern_flags)
    redacted = re.sub(r"(api_token=)([^\s&]+)", r"\1***", redacted, flags=pattern_flags)
    redacted = re.sub(r"(bearer\s+)[A-Za-z0-9._-]+", r"\1***", redacted, flags=pattern_flags)

    return redacted
