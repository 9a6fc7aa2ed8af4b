"""
Request body helpers shared by the routers.

Bodies are read with ``request.json()`` so each route decides when parsing
happens relative to its auth, role and rate-limit checks.
"""

import json
import logging
from typing import Any, TypeVar

from fastapi import Request
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from ptsa.exceptions import ValidationError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


async def read_json_body(request: Request, message: str = "Invalid request data") -> Any:
    try:
        return await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise ValidationError(message)


def parse_model(model: type[ModelT], data: Any, message: str = "Invalid request data") -> ModelT:
    """Validate ``data`` against ``model``; any failure becomes a 400 with ``message``."""
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        fields = [".".join(str(loc) for loc in error["loc"]) for error in e.errors()]
        logger.info(f"{model.__name__} validation failed", extra={"fields": fields})
        raise ValidationError(message)
