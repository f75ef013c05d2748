"""JSON Schemas for the documents this tool writes, and a validation helper."""

from typing import Any

from jsonschema import Draft202012Validator, FormatChecker

from agent_bundler.errors import ManifestError


_RELATIVE_PATH: dict[str, Any] = {"type": "string", "minLength": 1, "not": {"pattern": "^(/|[A-Za-z]:)"}}

BUNDLE_MANIFEST_SCHEMA: dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "title": "Offline bundle manifest",
    "type": "object",
    "required": [
        "name",
        "generatedAt",
        "toolVersion",
        "toolSource",
        "runtimeVersion",
        "runtimeSource",
        "platformTriple",
        "fileIndex",
    ],
    "additionalProperties": False,
    "properties": {
        "name": {"type": "string", "minLength": 1},
        "generatedAt": {"type": "string", "format": "date-time"},
        "toolVersion": {"type": "string", "minLength": 1},
        "toolSource": {"type": "string", "minLength": 1},
        "runtimeVersion": {"type": "string", "pattern": r"^v?\d+\.\d+\.\d+"},
        "runtimeSource": {"type": "string", "minLength": 1},
        "platformTriple": {"type": "string", "pattern": r"^[A-Za-z0-9_]+-[A-Za-z0-9_]+$"},
        "fileIndex": {
            "type": "object",
            "required": ["archive", "runtime", "client", "clientCli", "cache", "prefix"],
            "additionalProperties": False,
            "properties": {
                "archive": _RELATIVE_PATH,
                "runtime": _RELATIVE_PATH,
                "client": _RELATIVE_PATH,
                "clientCli": _RELATIVE_PATH,
                "cache": _RELATIVE_PATH,
                "prefix": _RELATIVE_PATH,
            },
        },
    },
}

RELEASE_MANIFEST_SCHEMA: dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "title": "Updater release manifest",
    "type": "object",
    "required": ["version", "notes", "pub_date", "platforms"],
    "additionalProperties": False,
    "properties": {
        "version": {"type": "string", "minLength": 1},
        "notes": {"type": "string"},
        "pub_date": {"type": "string", "format": "date-time"},
        "platforms": {
            "type": "object",
            "minProperties": 1,
            "propertyNames": {"pattern": "^(darwin|windows|linux)-(x86_64|aarch64|i686)$"},
            "additionalProperties": {
                "type": "object",
                "required": ["signature", "url"],
                "additionalProperties": False,
                "properties": {
                    "signature": {"type": "string", "minLength": 1},
                    "url": {"type": "string", "minLength": 1},
                },
            },
        },
    },
}


def validate_document(schema: dict[str, Any], payload: object, *, label: str) -> None:
    """Validate ``payload`` against ``schema``.

    :param schema: JSON Schema (draft 2020-12).
    :param payload: Decoded JSON document.
    :param label: Document name used in the error message.
    :raises ManifestError: Listing every violation, ordered by JSON path.
    """

    validator: Draft202012Validator = Draft202012Validator(schema, format_checker=FormatChecker())
    errors = sorted(validator.iter_errors(payload), key=lambda error: list(map(str, error.absolute_path)))
    if errors:
        formatted: str = "\n".join(
            f"  {'/'.join(map(str, err.absolute_path)) or '<root>'}: {err.message}" for err in errors
        )
        raise ManifestError(f"{label} does not match its schema:\n{formatted}")
