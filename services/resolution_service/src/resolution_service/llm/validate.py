from __future__ import annotations

from typing import Any

import jsonschema


class ContractError(Exception):
    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


def validate_json(instance: Any, schema: dict[str, Any]) -> None:
    """Raise `ContractError` unless an LLM payload conforms to the schema it was prompted with."""
    try:
        jsonschema.validate(instance=instance, schema=schema)
    except jsonschema.ValidationError as exc:
        raise ContractError(exc.message) from exc
