from typing import Any

import pytest

from lineu_core.fingerprint import (
    CIRCULAR_MARKER,
    FINGERPRINT_LENGTH,
    canonicalize,
    generate_fingerprint,
    is_valid_external_fingerprint,
    resolve_fingerprint,
)


def test_fingerprint_is_truncated_hex_digest() -> None:
    fingerprint = generate_fingerprint({"message": "boom"})
    assert len(fingerprint) == FINGERPRINT_LENGTH
    int(fingerprint, 16)


def test_fingerprint_ignores_timestamp_values() -> None:
    first = generate_fingerprint({"message": "boom", "timestamp": "t1"})
    second = generate_fingerprint({"message": "boom", "timestamp": "t2"})
    assert first == second


def test_fingerprint_ignores_key_order() -> None:
    first = generate_fingerprint({"a": 1, "b": {"c": 2, "d": 3}})
    second = generate_fingerprint({"b": {"d": 3, "c": 2}, "a": 1})
    assert first == second


def test_fingerprint_strips_volatile_fields_inside_lists() -> None:
    first = generate_fingerprint({"events": [{"id": "a1", "requestId": "r1", "message": "boom"}]})
    second = generate_fingerprint({"events": [{"id": "b2", "requestId": "r2", "message": "boom"}]})
    assert first == second


def test_fingerprint_keeps_significant_fields() -> None:
    assert generate_fingerprint({"message": "boom"}) != generate_fingerprint({"message": "bang"})


def test_canonicalize_removes_nested_dynamic_fields() -> None:
    payload = {"error": {"traceId": "x", "createdAt": "y", "class": "TypeError"}, "event_id": 7}
    assert canonicalize(payload) == '{"error":{"class":"TypeError"}}'


def test_cyclic_payload_terminates_with_marker() -> None:
    payload: dict[str, Any] = {"message": "boom"}
    payload["self"] = payload
    items: list[Any] = [1]
    items.append(items)
    payload["items"] = items

    assert CIRCULAR_MARKER in canonicalize(payload)
    assert generate_fingerprint(payload) == generate_fingerprint(payload)


def test_shared_reference_is_not_treated_as_cycle() -> None:
    shared = {"code": 500}
    payload = {"first": shared, "second": shared}
    assert CIRCULAR_MARKER not in canonicalize(payload)


@pytest.mark.parametrize("value", [None, "", "   ", 0, 42, ["abc"], {"a": 1}])
def test_invalid_external_fingerprints(value: Any) -> None:
    assert not is_valid_external_fingerprint(value)


def test_resolve_fingerprint_prefers_valid_external_value() -> None:
    assert resolve_fingerprint({"fingerprint": "dup-test", "message": "x"}) == "dup-test"


@pytest.mark.parametrize("value", [None, "", "  ", 0])
def test_resolve_fingerprint_falls_back_to_generated(value: Any) -> None:
    payload = {"fingerprint": value, "message": "boom"}
    assert resolve_fingerprint(payload) == generate_fingerprint(payload)
