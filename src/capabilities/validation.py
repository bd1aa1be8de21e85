"""JSON-Schema subset validation for capability inputs.

Supports ``type`` (root must be ``object``), ``required``, ``properties``
with per-field ``type``/``format``/``minLength``/``maxLength``/``pattern``/
``minimum``/``maximum``, nested objects, and ``additionalProperties: false``.
The first violation found is reported, except for required fields, which are
collected into a single error.
"""

import logging
import re
import threading
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime
from email.utils import parseaddr
from typing import Any

from .errors import PreconditionError, ValidationError, raise_if_cancelled

FormatValidator = Callable[[Any], None]

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_UUID_RE = re.compile(r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$")
_RFC3339_RE = re.compile(
    r"^\d{4}-\d{2}-\d{2}[Tt]\d{2}:\d{2}:\d{2}(\.\d+)?([Zz]|[+-]\d{2}:\d{2})$"
)

_FORMAT_EXAMPLES = {
    "date": "example: 2025-08-03",
    "date-time": "example: 2025-08-03T10:30:00Z",
    "email": "example: user@example.com",
    "uuid": "example: 123e4567-e89b-12d3-a456-426614174000",
    "uri": "example: https://example.com/path",
}


def _validate_date(value: Any) -> None:
    if not isinstance(value, str):
        raise ValueError("expected string value for date format")
    if not _DATE_RE.match(value):
        raise ValueError("expected YYYY-MM-DD")
    try:
        datetime.strptime(value, "%Y-%m-%d")
    except ValueError:
        raise ValueError("expected YYYY-MM-DD") from None


def _validate_date_time(value: Any) -> None:
    if not isinstance(value, str):
        raise ValueError("expected string value for date-time format")
    if not _RFC3339_RE.match(value):
        raise ValueError("expected RFC3339 format")
    normalized = value.replace("z", "Z").replace("t", "T")
    if normalized.endswith("Z"):
        normalized = normalized[:-1] + "+00:00"
    try:
        datetime.fromisoformat(normalized)
    except ValueError:
        raise ValueError("expected RFC3339 format") from None


def _validate_email(value: Any) -> None:
    if not isinstance(value, str):
        raise ValueError("expected string value for email format")
    _, address = parseaddr(value)
    local, _, domain = address.rpartition("@")
    if not local or not domain or " " in address:
        raise ValueError("not a valid email address")


def _validate_uuid(value: Any) -> None:
    if not isinstance(value, str):
        raise ValueError("expected string value for UUID format")
    if not _UUID_RE.match(value):
        raise ValueError("not a valid UUID")


def _validate_uri(value: Any) -> None:
    if not isinstance(value, str):
        raise ValueError("expected string value for URI format")
    if "://" not in value:
        raise ValueError("missing scheme")


BUILTIN_FORMATS: dict[str, FormatValidator] = {
    "date": _validate_date,
    "date-time": _validate_date_time,
    "email": _validate_email,
    "uuid": _validate_uuid,
    "uri": _validate_uri,
}


def value_type(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, (list, tuple)):
        return "array"
    if isinstance(value, Mapping):
        return "object"
    return "unknown"


def input_summary(data: Any) -> object:
    """Sorted keys for an object input, otherwise its JSON type name, for log lines."""
    if isinstance(data, Mapping):
        return sorted(data)
    return value_type(data)


def is_type_compatible(actual: str, expected: str) -> bool:
    if actual == expected:
        return True
    return actual == "number" and expected in ("number", "integer")


def is_empty_value(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple, Mapping)):
        return len(value) == 0
    return False


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _join(path: str, field: str) -> str:
    return f"{path}.{field}" if path else field


class InputValidator:
    def __init__(
        self,
        logger: logging.Logger | None,
        format_validators: Mapping[str, FormatValidator] | None = None,
    ) -> None:
        if logger is None:
            raise PreconditionError("logger cannot be None")
        self._logger = logger
        self._formats: dict[str, FormatValidator] = dict(BUILTIN_FORMATS)
        if format_validators:
            self._formats.update(format_validators)

    def register_format(self, name: str, validator: FormatValidator) -> None:
        if not name:
            raise ValueError("format name cannot be empty")
        self._formats[name] = validator

    @property
    def formats(self) -> list[str]:
        return sorted(self._formats)

    def validate_against_schema(
        self,
        data: Mapping[str, Any] | None,
        schema: Mapping[str, Any] | None,
        *,
        cancel: threading.Event | None = None,
    ) -> None:
        raise_if_cancelled(cancel)
        self._logger.debug(
            "starting schema validation input=%s schema_type=%s",
            input_summary(data),
            (schema or {}).get("type"),
        )
        self._validate_object(data if data is not None else {}, schema or {}, "")
        self._logger.debug("schema validation completed successfully")

    def validate_required(
        self,
        data: Mapping[str, Any],
        required_fields: Iterable[str],
        *,
        cancel: threading.Event | None = None,
    ) -> None:
        raise_if_cancelled(cancel)
        self._check_required(data, list(required_fields), "")

    def validate_format(
        self,
        field_name: str,
        value: Any,
        format_name: str,
        *,
        cancel: threading.Event | None = None,
    ) -> None:
        raise_if_cancelled(cancel)
        self._check_format(field_name, value, format_name)

    def build_validation_error(
        self,
        field_path: str,
        message: str,
        suggestions: list[str] | None = None,
        code: str = "validation_failed",
    ) -> ValidationError:
        if not suggestions:
            suggestions = ["check the capability's input schema"]
        return ValidationError(field=field_path, message=message, code=code, suggestions=suggestions)

    def _validate_object(self, data: Any, schema: Mapping[str, Any], path: str) -> None:
        schema_type = schema.get("type")
        if schema_type is not None and schema_type != "object":
            raise self.build_validation_error(
                path,
                f"expected object type, got: {schema_type}",
                ["ensure input is a JSON object"],
                code="not_object",
            )
        if not isinstance(data, Mapping):
            raise self.build_validation_error(
                path,
                f"expected object input, got {value_type(data)}",
                ["ensure input is a JSON object"],
                code="not_object",
            )

        required = schema.get("required")
        if isinstance(required, (list, tuple)):
            self._check_required(data, [field for field in required if isinstance(field, str)], path)

        properties = schema.get("properties")
        if not isinstance(properties, Mapping):
            properties = {}
        for field_name, field_schema in properties.items():
            if field_name in data:
                self._validate_field(_join(path, field_name), data[field_name], field_schema)

        if schema.get("additionalProperties") is False:
            for input_field in data:
                if input_field not in properties:
                    raise self.build_validation_error(
                        _join(path, input_field),
                        "unexpected property not allowed by schema",
                        ["remove this property or check if it's misspelled"],
                        code="unexpected_property",
                    )

    def _check_required(self, data: Mapping[str, Any], required_fields: list[str], path: str) -> None:
        missing = [field for field in required_fields if field not in data]
        empty = [field for field in required_fields if field in data and is_empty_value(data[field])]
        if not missing and not empty:
            self._logger.debug("required field validation passed field_count=%d", len(required_fields))
            return

        parts: list[str] = []
        suggestions: list[str] = []
        if missing:
            parts.append(f"missing required fields: {', '.join(missing)}")
            suggestions.append("add the missing required fields to your input")
        if empty:
            parts.append(f"empty required fields: {', '.join(empty)}")
            suggestions.append("provide non-empty values for required fields")
        self._logger.debug("required field validation failed missing=%s empty=%s", missing, empty)
        raise self.build_validation_error(path, "; ".join(parts), suggestions, code="required_missing")

    def _check_format(self, field_name: str, value: Any, format_name: str) -> None:
        validator = self._formats.get(format_name)
        if validator is None:
            self._logger.warning("unknown format validator format=%s field=%s", format_name, field_name)
            return
        try:
            validator(value)
        except ValueError as exc:
            self._logger.debug("format validation failed field=%s format=%s error=%s", field_name, format_name, exc)
            raise self.build_validation_error(
                field_name,
                f"invalid {format_name} format: {exc}",
                [_FORMAT_EXAMPLES.get(format_name, "check format requirements")],
                code="invalid_format",
            ) from exc

    def _validate_field(self, path: str, value: Any, field_schema: Any) -> None:
        if not isinstance(field_schema, Mapping):
            raise self.build_validation_error(
                path,
                "invalid field schema definition",
                ["check schema format for this field"],
                code="invalid_schema",
            )

        expected_type = field_schema.get("type")
        if expected_type is not None:
            self._check_type(path, value, expected_type)

        format_name = field_schema.get("format")
        if isinstance(format_name, str):
            self._check_format(path, value, format_name)

        self._check_string_constraints(path, value, field_schema)
        self._check_numeric_constraints(path, value, field_schema)

        if expected_type == "object" and isinstance(value, Mapping):
            self._validate_object(value, field_schema, path)

    def _check_type(self, path: str, value: Any, expected_type: Any) -> None:
        if not isinstance(expected_type, str):
            raise self.build_validation_error(
                path,
                "invalid type definition in schema",
                ["check schema type definition"],
                code="invalid_schema",
            )
        actual = value_type(value)
        if not is_type_compatible(actual, expected_type):
            raise self.build_validation_error(
                path,
                f"expected type {expected_type}, got {actual}",
                [f"provide a value of type {expected_type}"],
                code="type_mismatch",
            )

    def _check_string_constraints(self, path: str, value: Any, schema: Mapping[str, Any]) -> None:
        if not isinstance(value, str):
            return

        min_length = _as_number(schema.get("minLength"))
        if min_length is not None and len(value) < min_length:
            raise self.build_validation_error(
                path,
                f"string too short: minimum length is {int(min_length)}, got {len(value)}",
                [f"provide a string with at least {int(min_length)} characters"],
                code="string_too_short",
            )

        max_length = _as_number(schema.get("maxLength"))
        if max_length is not None and len(value) > max_length:
            raise self.build_validation_error(
                path,
                f"string too long: maximum length is {int(max_length)}, got {len(value)}",
                [f"provide a string with at most {int(max_length)} characters"],
                code="string_too_long",
            )

        pattern = schema.get("pattern")
        if isinstance(pattern, str):
            try:
                matched = re.search(pattern, value) is not None
            except re.error as exc:
                raise self.build_validation_error(
                    path,
                    "invalid pattern in schema",
                    ["check schema pattern definition"],
                    code="invalid_schema",
                ) from exc
            if not matched:
                raise self.build_validation_error(
                    path,
                    f"string does not match required pattern: {pattern}",
                    ["provide a string that matches the required pattern"],
                    code="pattern_mismatch",
                )

    def _check_numeric_constraints(self, path: str, value: Any, schema: Mapping[str, Any]) -> None:
        number = _as_number(value)
        if number is None:
            return

        minimum = _as_number(schema.get("minimum"))
        if minimum is not None and number < minimum:
            raise self.build_validation_error(
                path,
                f"value too small: minimum is {minimum:g}, got {number:g}",
                [f"provide a value >= {minimum:g}"],
                code="value_too_small",
            )

        maximum = _as_number(schema.get("maximum"))
        if maximum is not None and number > maximum:
            raise self.build_validation_error(
                path,
                f"value too large: maximum is {maximum:g}, got {number:g}",
                [f"provide a value <= {maximum:g}"],
                code="value_too_large",
            )
