"""
Audit payload validation.

Each known action tag has a JSON Schema in worktrack/schemas/. Payloads are
checked before they are appended so the audit ledger never holds a record
the timeline cannot read. Tags without a schema pass through unchecked.
"""

import json
from pathlib import Path

import jsonschema

from worktrack.lib.errors import ValidationError

# Cache loaded schemas
_schema_cache: dict[str, dict | None] = {}


def _get_schemas_dir() -> Path:
    """Get path to schemas directory."""
    return Path(__file__).parent.parent / "schemas"


def _load_schema(action: str) -> dict | None:
    """Load schema for an action tag, with caching. None if the tag has no schema."""
    if action not in _schema_cache:
        schema_path = _get_schemas_dir() / f"{action}.schema.json"
        if schema_path.exists():
            _schema_cache[action] = json.loads(schema_path.read_text())
        else:
            _schema_cache[action] = None
    return _schema_cache[action]


def known_actions() -> list[str]:
    """Action tags that have a payload schema."""
    return sorted(p.name.removesuffix(".schema.json") for p in _get_schemas_dir().glob("*.schema.json"))


def validate_payload(action: str, payload: dict) -> None:
    """
    Validate an audit payload against the schema for its action tag.

    Args:
        action: Action tag (e.g., "status_change", "client_approval")
        payload: Payload dictionary

    Raises:
        ValidationError: If the payload does not match the schema
    """
    if not action or not isinstance(action, str):
        raise ValidationError("audit_action", "action tag must be a non-empty string")
    if not isinstance(payload, dict):
        raise ValidationError(f"payload:{action}", f"payload must be a mapping, got {type(payload).__name__}")

    schema = _load_schema(action)
    if schema is None:
        return

    try:
        jsonschema.validate(instance=payload, schema=schema)
    except jsonschema.ValidationError as e:
        path = ".".join(str(p) for p in e.absolute_path) if e.absolute_path else "(root)"
        raise ValidationError(f"payload:{action}", e.message, path) from None
