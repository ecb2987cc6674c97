"""Stable fingerprints for incident payloads."""

import hashlib
import json
from typing import Any, Mapping

FINGERPRINT_LENGTH = 32
CIRCULAR_MARKER = "[circular]"

# Keys that change on every occurrence of the same incident
DYNAMIC_FIELDS = frozenset(
    {
        "timestamp",
        "occurredAt",
        "createdAt",
        "updatedAt",
        "time",
        "date",
        "requestId",
        "traceId",
        "spanId",
        "correlationId",
        "id",
        "uuid",
        "eventId",
        "event_id",
        "issueId",
    }
)


def is_valid_external_fingerprint(value: Any) -> bool:
    """Caller-supplied fingerprints must be non-blank strings."""
    if value is None or value == 0 or not isinstance(value, str):
        return False
    return bool(value.strip())


def _strip_dynamic(value: Any, ancestors: frozenset[int]) -> Any:
    if not isinstance(value, (Mapping, list, tuple)):
        return value
    if id(value) in ancestors:
        return CIRCULAR_MARKER
    ancestors = ancestors | {id(value)}

    if isinstance(value, Mapping):
        return {
            str(key): _strip_dynamic(item, ancestors) for key, item in value.items() if key not in DYNAMIC_FIELDS
        }
    return [_strip_dynamic(item, ancestors) for item in value]


def canonicalize(payload: Any) -> str:
    """Serialize a payload without volatile fields and with sorted keys."""
    stable = _strip_dynamic(payload, frozenset())
    return json.dumps(stable, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def generate_fingerprint(payload: Any) -> str:
    digest = hashlib.sha256(canonicalize(payload).encode("utf-8")).hexdigest()
    return digest[:FINGERPRINT_LENGTH]


def resolve_fingerprint(payload: Mapping[str, Any]) -> str:
    """Use the payload's own ``fingerprint`` when valid, else compute one."""
    external = payload.get("fingerprint")
    if is_valid_external_fingerprint(external):
        return external
    return generate_fingerprint(payload)
