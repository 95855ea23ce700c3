from __future__ import annotations

from typing import Any, Dict

import jsonschema

from ..infra.errors import ConfigError

_NAME = {"type": "string", "pattern": "^[A-Za-z0-9][A-Za-z0-9_-]{0,62}$"}

_COMMAND = {"type": "array", "items": {"type": "string", "minLength": 1}, "minItems": 1}


def _provider_schema() -> Dict[str, Any]:
    return {
        "type": "object",
        "required": ["name", "fields"],
        "properties": {
            "name": _NAME,
            "required": {"type": "boolean"},
            "fallback_default": {"type": "boolean"},
            "fields": {
                "type": "object",
                "minProperties": 1,
                "additionalProperties": {"type": "string", "pattern": "^[A-Z][A-Z0-9_]*$"},
            },
        },
        "additionalProperties": False,
    }


def _analyzer_schema() -> Dict[str, Any]:
    return {
        "type": "object",
        "properties": {
            "enabled": {"type": "boolean"},
            "command": _COMMAND,
            "warn_threshold": {"type": "integer", "minimum": 0},
        },
        "additionalProperties": False,
    }


def deploy_config_schema() -> Dict[str, Any]:
    return {
        "$schema": "https://json-schema.org/draft/2020-12/schema",
        "type": "object",
        "properties": {
            "project": _NAME,
            "environments": {"type": "array", "items": _NAME, "uniqueItems": True},
            "production_pattern": {"type": "string", "minLength": 1},
            "workdir_template": {"type": "string", "minLength": 1},
            "tofu_binary": {"type": "string", "minLength": 1},
            "backend": {
                "type": "object",
                "properties": {"base_url": {"type": "string"}},
                "additionalProperties": False,
            },
            "vault": {
                "type": "object",
                "properties": {
                    "address": {"type": "string"},
                    "role": {"type": "string"},
                    "auth_mount": {"type": "string", "minLength": 1},
                    "kv_mount": {"type": "string", "minLength": 1},
                    "kv_version": {"type": "integer", "enum": [1, 2]},
                    "audience": {"type": "string", "minLength": 1},
                    "timeout": {"type": "integer", "minimum": 1},
                    "providers": {"type": "array", "items": _provider_schema()},
                },
                "additionalProperties": False,
            },
            "analyzers": {
                "type": "object",
                "properties": {
                    "ai_summary": _analyzer_schema(),
                    "blast_radius": _analyzer_schema(),
                },
                "additionalProperties": False,
            },
            "security_scan": {
                "type": "object",
                "properties": {"command": {"type": "string", "minLength": 1}},
                "additionalProperties": False,
            },
        },
        "additionalProperties": False,
    }


def validate_deploy_config(data: Dict[str, Any]) -> None:
    """Strict validation: unknown keys fail fast."""
    try:
        jsonschema.validate(instance=data, schema=deploy_config_schema())
    except jsonschema.ValidationError as e:
        where = "/".join(str(p) for p in e.absolute_path) or "<root>"
        raise ConfigError(f"deploy config schema validation failed at {where}: {e.message}")
