"""
Spec validation - JSON Schema checks for resource fields.

Every resource kind declares a Draft 7 JSON Schema for its fields; specs
are checked against it before any remote call is made.
"""

import logging
from typing import Any, Dict, Optional, Tuple

from jsonschema import Draft7Validator, SchemaError

logger = logging.getLogger(__name__)


def validate_kind_schema(schema: Dict[str, Any]) -> Tuple[bool, Optional[str]]:
    """
    Validate that a kind schema is itself a valid JSON Schema.

    Args:
        schema: The schema to validate

    Returns:
        Tuple of (is_valid, error_message)
    """
    try:
        Draft7Validator.check_schema(schema)
        return True, None
    except SchemaError as e:
        return False, f"Invalid schema: {e.message}"


def validate_fields(
    fields: Dict[str, Any], schema: Dict[str, Any]
) -> Tuple[bool, Optional[str]]:
    """
    Validate resource fields against a kind schema.

    Args:
        fields: The desired field values
        schema: The kind's JSON Schema

    Returns:
        Tuple of (is_valid, error_message). All violations are joined
        into a single message, each prefixed with its field path.
    """
    validator = Draft7Validator(schema, format_checker=Draft7Validator.FORMAT_CHECKER)
    errors = sorted(
        validator.iter_errors(fields),
        key=lambda e: [str(p) for p in e.absolute_path],
    )

    if not errors:
        return True, None

    error_messages = []
    for error in errors:
        path = ".".join(str(p) for p in error.absolute_path) or "(root)"
        error_messages.append(f"{path}: {error.message}")

    return False, "; ".join(error_messages)
