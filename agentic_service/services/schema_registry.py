"""
Schema registry: holds the service's declared input schema and validates
input documents against it.

Each schema is compiled into a pydantic model with one strict field per
declared key. Keys are carried as aliases so that any key string is valid,
including ones that are not Python identifiers.
"""

import logging
from functools import lru_cache
from typing import Annotated, Dict, Any, List, Optional, Sequence, Tuple, Type, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    Strict,
    StrictBool,
    StrictFloat,
    StrictInt,
    StrictStr,
    ValidationError,
    create_model,
)

from agentic_service.core.errors import InvalidInputError
from agentic_service.schemas.input_schema import SchemaField

logger = logging.getLogger(__name__)

FIELD_TYPES: Dict[str, Any] = {
    "string": StrictStr,
    "number": Union[StrictInt, StrictFloat],
    "boolean": StrictBool,
    "object": Annotated[Dict[str, Any], Strict()],
    "any": Any,
}


@lru_cache(maxsize=256)
def build_input_model(fields: Tuple[SchemaField, ...], partial: bool, allow_extra: bool) -> Type[BaseModel]:
    """Compile fields into a model; partial makes every field optional"""
    definitions: Dict[str, Any] = {}
    for index, field in enumerate(fields):
        # Defaults are not validated, so an omitted key passes while an explicit null does not
        default = None if partial or not field.required else ...
        definitions[f"field_{index}"] = (FIELD_TYPES[field.value_type], Field(default, alias=field.key))
    return create_model(
        "InputDocument",
        __config__=ConfigDict(extra="allow" if allow_extra else "forbid"),
        **definitions,
    )


def _describe(error: Dict[str, Any]) -> str:
    key = ".".join(str(part) for part in error["loc"])
    if error["type"] == "missing":
        return f"Missing required input key '{key}'"
    if error["type"] == "extra_forbidden":
        return f"Unknown input key '{key}'"
    return f"Input key '{key}': {error['msg']}"


class SchemaRegistry:
    """Immutable input schema loaded once at startup"""

    def __init__(self, fields: Sequence[Any], allow_extra_keys: bool = False):
        parsed = [f if isinstance(f, SchemaField) else SchemaField.model_validate(f) for f in fields]
        keys = [f.key for f in parsed]
        if len(keys) != len(set(keys)):
            raise ValueError("Input schema declares the same key more than once")
        self._fields: Tuple[SchemaField, ...] = tuple(parsed)
        self.allow_extra_keys = allow_extra_keys
        # Compile the start-up schema eagerly so a bad schema fails at boot
        build_input_model(self._fields, False, allow_extra_keys)
        logger.info(f"Loaded input schema with keys: {keys}")

    def get_schema(self) -> List[SchemaField]:
        return list(self._fields)

    def to_wire(self) -> Dict[str, Any]:
        """Body of the /input_schema endpoint"""
        return {"input_data": [field.to_wire() for field in self._fields]}

    def validate(
        self,
        input_doc: Any,
        partial: bool = False,
        fields: Optional[Sequence[SchemaField]] = None,
        allow_extra: Optional[bool] = None,
    ) -> Dict[str, Any]:
        """
        Validate an input document.

        Args:
            input_doc: Candidate key/value document
            partial: Skip the required-key check (used for additional input)
            fields: Validate against these fields instead of the service schema
            allow_extra: Accept undeclared keys; defaults to the registry setting

        Returns:
            The validated document

        Raises:
            InvalidInputError: If the document does not adhere to the schema
        """
        if not isinstance(input_doc, dict):
            raise InvalidInputError("input_data must be a key/value document")

        declared = tuple(fields) if fields is not None else self._fields
        if allow_extra is None:
            allow_extra = self.allow_extra_keys
        model = build_input_model(declared, partial, allow_extra)

        try:
            model.model_validate(input_doc)
        except ValidationError as e:
            raise InvalidInputError("; ".join(_describe(error) for error in e.errors())) from e

        return dict(input_doc)
