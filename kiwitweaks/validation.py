# SPDX-License-Identifier: BUSL-1.1
# Copyright (c) 2026 pyoneerC. All rights reserved.
"""Schema validation: a sanitized model, or a 400 listing every problem at once."""
from typing import Any, Dict, Iterable, List, Type, TypeVar

import pydantic

from .errors import ValidationError

SchemaT = TypeVar("SchemaT", bound=pydantic.BaseModel)


def format_errors(errors: Iterable[Dict[str, Any]], skip_prefix: tuple = ()) -> List[Dict[str, str]]:
    """pydantic error dicts -> [{field, message, type}]."""
    details = []
    for err in errors:
        loc = [str(part) for part in err.get("loc", ())]
        if loc and loc[0] in skip_prefix:
            loc = loc[1:]
        details.append({
            "field": ".".join(loc) or "body",
            "message": err.get("msg", "Invalid value"),
            "type": err.get("type", "value_error"),
        })
    return details


def validate(schema: Type[SchemaT], raw: Any) -> SchemaT:
    if not isinstance(raw, dict):
        raise ValidationError(
            "Validation failed",
            details=[{"field": "body", "message": "Request body must be a JSON object", "type": "object_type"}],
        )
    try:
        return schema.model_validate(raw)
    except pydantic.ValidationError as e:
        raise ValidationError("Validation failed", details=format_errors(e.errors()))
