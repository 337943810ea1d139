"""JSON schema validation for config, catalog and manifest files."""

import json
from functools import lru_cache
from pathlib import Path

from jsonschema import SchemaError, ValidationError, validate

SCHEMAS_DIR = Path(__file__).resolve().parent / "schemas"


@lru_cache(maxsize=None)
def load_schema(schema_name: str) -> dict:
    schema_path = SCHEMAS_DIR / f"{schema_name}.schema.json"
    return json.loads(schema_path.read_text())


def validate_json(data: dict, schema_name: str) -> tuple[bool, str]:
    """Validate JSON data against schema. Returns (valid, error_message)."""
    schema_path = SCHEMAS_DIR / f"{schema_name}.schema.json"
    if not schema_path.exists():
        return False, f"Schema not found: {schema_path}"

    try:
        validate(instance=data, schema=load_schema(schema_name))
        return True, ""
    except SchemaError as e:
        return False, f"Invalid schema: {e.message}"
    except ValidationError as e:
        # Build a helpful error message with path to the error
        path = " -> ".join(str(p) for p in e.absolute_path) if e.absolute_path else "root"
        return False, f"Validation error at '{path}': {e.message}"
