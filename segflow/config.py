"""Step configuration models.

Step configs arrive as plain dicts (usually camelCase keys from a UI or a
YAML file). Each step declares a pydantic model; its JSON schema doubles as
the ``config_schema`` exposed in step metadata.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

M = TypeVar("M", bound=BaseModel)


class StepConfig(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )


def model_errors(exc: ValidationError) -> List[str]:
    out = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        out.append(f"{loc}: {err['msg']}" if loc else err["msg"])
    return out


def parse_config(model: Type[M], config: Optional[Dict[str, Any]]) -> Tuple[Optional[M], List[str]]:
    try:
        return model.model_validate(config or {}), []
    except ValidationError as e:
        return None, model_errors(e)


def config_schema(model: Optional[Type[BaseModel]]) -> Dict[str, Any]:
    if model is None:
        return {"type": "object", "properties": {}, "required": []}
    schema = model.model_json_schema(by_alias=True)
    schema.setdefault("required", [])
    return schema
