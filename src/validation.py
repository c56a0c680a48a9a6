"""
Config Validation - JSON Schema validation of sync config documents.

Validates the parsed YAML config file before it is turned into dataclasses,
so errors point at the offending path instead of surfacing as a TypeError.
"""

import re
from typing import Any, Dict, Optional, Tuple

from jsonschema import Draft7Validator, ValidationError

from resolution import MAX_SITE_PREFIX_LENGTH

CONFIG_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "required": ["sync"],
    "properties": {
        "directory": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "backend": {"type": "string", "minLength": 1},
                "server": {"type": "string", "minLength": 1},
                "port": {"type": "integer", "minimum": 1, "maximum": 65535},
                "use_ssl": {"type": "boolean"},
                "user": {"type": "string"},
                "password": {"type": "string"},
                "base_dn": {"type": "string"},
                "page_size": {"type": "integer", "minimum": 1},
                "connect_timeout": {"type": "integer", "minimum": 1},
                "snapshot_file": {"type": "string"},
            },
        },
        "sync": {
            "type": "object",
            "additionalProperties": False,
            "required": ["container"],
            "properties": {
                "container": {"type": "string", "minLength": 1},
                "mode": {"type": "string", "enum": ["static", "dynamic"]},
                "match_precedence": {"type": "string", "enum": ["last", "first"]},
                "site_prefix": {
                    "type": "string",
                    "maxLength": MAX_SITE_PREFIX_LENGTH,
                },
                "name_pattern": {"type": "string", "minLength": 1},
                "os_prefix": {"type": ["string", "null"]},
                "group_description": {"type": "string"},
                "rules": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "additionalProperties": False,
                        "required": ["group"],
                        "properties": {
                            "group": {"type": "string", "minLength": 1},
                            "pattern": {"type": "string", "minLength": 1},
                            "os": {"type": "string", "minLength": 1},
                        },
                        "oneOf": [
                            {"required": ["pattern"]},
                            {"required": ["os"]},
                        ],
                    },
                },
            },
        },
        "logging": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "level": {
                    "type": "string",
                    "enum": ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
                },
                "file": {"type": "string"},
            },
        },
    },
}


def _error_path(error: ValidationError) -> str:
    return ".".join(str(p) for p in error.absolute_path) or "(root)"


def validate_against_schema(
    document: Dict[str, Any], schema: Dict[str, Any]
) -> Tuple[bool, Optional[str]]:
    """
    Validate a document against a JSON Schema.

    Args:
        document: The parsed document to validate
        schema: The JSON Schema to validate against

    Returns:
        Tuple of (is_valid, error_message)
    """
    messages = [
        f"{_error_path(error)}: {error.message}"
        for error in Draft7Validator(schema).iter_errors(document)
    ]
    if messages:
        return False, "; ".join(messages)
    return True, None


def validate_rule_patterns(document: Dict[str, Any]) -> Tuple[bool, Optional[str]]:
    """
    Check that every static rule pattern is a valid regular expression.

    Args:
        document: The parsed config document

    Returns:
        Tuple of (is_valid, error_message)
    """
    rules = document.get("sync", {}).get("rules", [])
    error_messages = []
    for index, rule in enumerate(rules):
        pattern = rule.get("pattern")
        if pattern is None:
            continue
        try:
            re.compile(pattern)
        except re.error as e:
            error_messages.append(f"sync.rules.{index}.pattern: {e}")

    if error_messages:
        return False, "; ".join(error_messages)
    return True, None


def validate_config_document(
    document: Dict[str, Any],
) -> Tuple[bool, Optional[str]]:
    """
    Validate a parsed config document: schema first, then rule patterns.

    Args:
        document: The parsed config document

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not isinstance(document, dict):
        return False, "(root): config document must be a mapping"

    is_valid, error = validate_against_schema(document, CONFIG_SCHEMA)
    if not is_valid:
        return is_valid, error

    sync = document.get("sync", {})
    if sync.get("mode", "static") == "static" and not sync.get("rules"):
        return False, "sync.rules: static mode requires at least one rule"

    return validate_rule_patterns(document)
