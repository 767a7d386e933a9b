from functools import lru_cache
from typing import List, Tuple

from jsonschema import Draft202012Validator, SchemaError

from stratatm.logs import get_logger
from stratatm.models import StoreDocument
from stratatm.recovery import FatalError

# Configure log for clear output
log = get_logger("data.validate")

SCHEMA_DIALECT = "https://json-schema.org/draft/2020-12/schema"


@lru_cache(maxsize=None)
def store_schema() -> dict:
    """JSON schema of the YAML store document, generated from the pydantic model."""
    schema = StoreDocument.model_json_schema()
    schema["$schema"] = SCHEMA_DIALECT
    return schema

def validate_store_data(data: dict) -> Tuple[bool, List[str]]:
    """
    Validate a loaded store document against its schema.

    Returns:
        (is_valid, errors) where errors are human readable messages with the
        path of the offending value.
    """
    try:
        Draft202012Validator.check_schema(store_schema())
    except SchemaError as e:
        raise FatalError(f"Store schema is invalid: {e.message}") from e
    validator = Draft202012Validator(store_schema())

    errors = []
    for error in sorted(validator.iter_errors(data), key=lambda e: [str(p) for p in e.absolute_path]):
        location = "/".join(str(part) for part in error.absolute_path) or "<root>"
        errors.append(f"{location}: {error.message}")

    if errors:
        log.error(f"Store document FAILED validation with {len(errors)} error(s)")
        for message in errors:
            log.debug(f"  {message}")
    else:
        log.debug("Store document is valid")
    return not errors, errors
