"""
Schema Validation — checking tool arguments before anything runs.

A lightweight JSON Schema subset, enough for the tool schemas we declare:

- type: string, integer, number, boolean, array, object
- object: properties, required, additionalProperties (false only), default
- array: items, minItems, maxItems
- number/integer: minimum, maximum, exclusiveMinimum, exclusiveMaximum
- string: enum, minLength, format ("date", "date-time")

Validation is pure and all-or-nothing: every violation is collected and
reported together, and the caller gets a fresh dict (defaults filled in) only
when there are none.
"""

from __future__ import annotations

import copy
from datetime import date, datetime
from typing import Any

from studybuddy.errors import FieldViolation, SchemaValidationError

# JSON Schema type → Python types
_JSON_TYPE_MAP: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "integer": (int,),
    "number": (int, float),
    "boolean": (bool,),
    "array": (list,),
    "object": (dict,),
}


def _join(path: str, key: str | int) -> str:
    if isinstance(key, int):
        return f"{path}[{key}]"
    return f"{path}.{key}" if path else key


def _check_format(fmt: str, value: str) -> str | None:
    if fmt == "date":
        try:
            date.fromisoformat(value)
        except ValueError:
            return "must be an ISO date (YYYY-MM-DD)"
    elif fmt == "date-time":
        try:
            datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return "must be an ISO 8601 date-time"
    return None


def _check_value(
    schema: dict[str, Any],
    value: Any,
    path: str,
    violations: list[FieldViolation],
) -> Any:
    """Validate *value* against *schema*, returning the value with defaults applied."""
    expected_type = schema.get("type")
    if expected_type:
        py_types = _JSON_TYPE_MAP.get(expected_type)
        if py_types is not None:
            # In Python bool is a subclass of int, but JSON booleans are distinct
            if isinstance(value, bool) and expected_type in ("integer", "number"):
                violations.append(FieldViolation(path, f"expected {expected_type}, got boolean"))
                return value
            if expected_type == "integer" and isinstance(value, float) and value.is_integer():
                value = int(value)
            if not isinstance(value, py_types):
                violations.append(
                    FieldViolation(path, f"expected {expected_type}, got {type(value).__name__}")
                )
                return value

    if "enum" in schema and value not in schema["enum"]:
        allowed = ", ".join(repr(v) for v in schema["enum"])
        violations.append(FieldViolation(path, f"must be one of {allowed}"))

    if isinstance(value, (int, float)) and not isinstance(value, bool):
        if "minimum" in schema and value < schema["minimum"]:
            violations.append(FieldViolation(path, f"must be >= {schema['minimum']}"))
        if "maximum" in schema and value > schema["maximum"]:
            violations.append(FieldViolation(path, f"must be <= {schema['maximum']}"))
        if "exclusiveMinimum" in schema and value <= schema["exclusiveMinimum"]:
            violations.append(FieldViolation(path, f"must be > {schema['exclusiveMinimum']}"))
        if "exclusiveMaximum" in schema and value >= schema["exclusiveMaximum"]:
            violations.append(FieldViolation(path, f"must be < {schema['exclusiveMaximum']}"))

    if isinstance(value, str):
        if "minLength" in schema and len(value) < schema["minLength"]:
            violations.append(
                FieldViolation(path, f"must be at least {schema['minLength']} characters")
            )
        fmt = schema.get("format")
        if fmt:
            problem = _check_format(fmt, value)
            if problem:
                violations.append(FieldViolation(path, problem))

    if isinstance(value, list):
        if "minItems" in schema and len(value) < schema["minItems"]:
            violations.append(FieldViolation(path, f"must have at least {schema['minItems']} item(s)"))
        if "maxItems" in schema and len(value) > schema["maxItems"]:
            violations.append(FieldViolation(path, f"must have at most {schema['maxItems']} item(s)"))
        item_schema = schema.get("items")
        if isinstance(item_schema, dict):
            value = [
                _check_value(item_schema, item, _join(path, i), violations)
                for i, item in enumerate(value)
            ]

    if isinstance(value, dict) and (expected_type == "object" or "properties" in schema):
        value = _check_object(schema, value, path, violations)

    return value


def _check_object(
    schema: dict[str, Any],
    value: dict[str, Any],
    path: str,
    violations: list[FieldViolation],
) -> dict[str, Any]:
    properties: dict[str, Any] = schema.get("properties", {})
    required = schema.get("required", [])

    for name in required:
        if name not in value:
            violations.append(FieldViolation(_join(path, name), "is required"))

    if schema.get("additionalProperties") is False:
        for name in value:
            if name not in properties:
                violations.append(FieldViolation(_join(path, name), "is not an allowed field"))

    result: dict[str, Any] = {}
    for name, item in value.items():
        prop_schema = properties.get(name)
        if not isinstance(prop_schema, dict):
            result[name] = item
            continue
        result[name] = _check_value(prop_schema, item, _join(path, name), violations)

    for name, prop_schema in properties.items():
        if name not in result and isinstance(prop_schema, dict) and "default" in prop_schema:
            result[name] = copy.deepcopy(prop_schema["default"])

    return result


def validate_arguments(
    tool_name: str,
    schema: dict[str, Any],
    arguments: Any,
) -> dict[str, Any]:
    """
    Validate tool arguments against the tool's input schema.

    Returns a new dict of validated arguments with declared defaults filled
    in. Raises SchemaValidationError listing every violation. The input is
    never modified.
    """
    violations: list[FieldViolation] = []
    if not isinstance(arguments, dict):
        violations.append(
            FieldViolation("", f"arguments must be an object, got {type(arguments).__name__}")
        )
        raise SchemaValidationError(tool_name, violations)

    validated = _check_object(schema, copy.deepcopy(arguments), "", violations)
    if violations:
        raise SchemaValidationError(tool_name, violations)
    return validated
