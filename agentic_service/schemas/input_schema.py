"""
Input schema field definitions
"""

from typing import Dict, Any

from pydantic import BaseModel, Field, ConfigDict, field_validator

VALUE_TYPES = ("string", "number", "boolean", "object", "any")


class SchemaField(BaseModel):
    """One declared input key and the type its value must have"""
    model_config = ConfigDict(frozen=True)

    key: str = Field(..., min_length=1)
    value_type: str = Field(default="string", description="string, number, boolean, object or any")
    required: bool = True

    @field_validator("value_type")
    @classmethod
    def check_value_type(cls, v: str) -> str:
        v = v.lower()
        if v not in VALUE_TYPES:
            raise ValueError(f"value_type must be one of {', '.join(VALUE_TYPES)}")
        return v

    def to_wire(self) -> Dict[str, Any]:
        """MIP-003 /input_schema representation"""
        return {"key": self.key, "value": self.value_type}
