from datetime import timedelta
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

MIN_TIMEOUT = timedelta(seconds=1)
MAX_TIMEOUT = timedelta(minutes=10)


class Category(str, Enum):
    INVOICE_MANAGEMENT = "invoice_management"
    DATA_IMPORT = "data_import"
    DATA_EXPORT = "data_export"
    CLIENT_MANAGEMENT = "client_management"
    CONFIGURATION = "configuration"
    REPORTING = "reporting"

    @classmethod
    def is_known(cls, value: Any) -> bool:
        """Return True when value is a member (or the value of a member) of the enumeration."""
        if isinstance(value, cls):
            return True
        if not isinstance(value, str):
            return False
        return value in {member.value for member in cls}

    @classmethod
    def parse(cls, value: "Category | str") -> "Category | None":
        if isinstance(value, cls):
            return value
        if cls.is_known(value):
            return cls(value)
        return None


class CapabilityExample(BaseModel):
    description: str
    input: dict[str, Any] = Field(default_factory=dict)
    expected_output: str = ""
    use_case: str = ""


class InvocationBinding(BaseModel):
    command: str = ""
    args: list[str] = Field(default_factory=list)


class Capability(BaseModel):
    name: str
    description: str = ""
    input_schema: dict[str, Any] | None = None
    examples: list[CapabilityExample] = Field(default_factory=list)
    category: Category
    invocation: InvocationBinding = Field(default_factory=InvocationBinding)
    help_text: str = ""
    version: str = ""
    timeout: timedelta = timedelta(0)

    def required_fields(self) -> list[str]:
        if not self.input_schema:
            return []
        required = self.input_schema.get("required") or []
        return [field for field in required if isinstance(field, str)]
