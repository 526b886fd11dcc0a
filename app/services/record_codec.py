"""
Serialization of ResumeRecord to and from the key-value store's string values.
"""
import json

from pydantic import ValidationError as PydanticValidationError

from app.core.config import settings
from app.core.exceptions import DecodeError
from app.schemas.resume import ResumeRecord


def record_key(record_id: str) -> str:
    return f"{settings.kv_namespace}{record_id}"


def encode(record: ResumeRecord) -> str:
    """Deterministic JSON: sorted keys, compact separators, wire aliases. None is kept as null."""
    payload = record.model_dump(mode="json", by_alias=True)
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def decode(value: str) -> ResumeRecord:
    try:
        payload = json.loads(value)
    except (TypeError, json.JSONDecodeError) as e:
        raise DecodeError(f"Stored resume data is not valid JSON: {e}") from e

    if not isinstance(payload, dict):
        raise DecodeError("Stored resume data is not a JSON object")

    try:
        return ResumeRecord.model_validate(payload)
    except PydanticValidationError as e:
        raise DecodeError(f"Stored resume data does not match the record shape: {e.error_count()} error(s)") from e
