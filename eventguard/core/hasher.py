"""
Canonical Hashing

Deterministic serialization and SHA-256 hashing. Two jobs:

1. Record identities. Events, tickets, badges and escrow accounts are
   addressed by identities derived from their seeds, never by counters or
   random ids:

       event  = derive_id("event",  organizer, name)
       ticket = derive_id("ticket", event_id, ticket_id)
       badge  = derive_id("badge",  event_id, owner)

   The same seeds always produce the same identity, so a collision in the
   store is itself proof that the record was already created.

2. Journal chaining. Each committed transition is hashed together with
   the previous journal hash.

CANONICAL SERIALIZATION RULES:
1. "__canon_v" version marker injected into every canonical output
2. Dictionary keys sorted recursively
3. None values omitted
4. UUIDs: lowercase strings
5. Enums: their value
6. Floats: BANNED (amounts are integer minor units)
7. Sets and bytes: BANNED (no stable ordering / not JSON)
8. JSON output: no whitespace, ASCII only
"""

import hashlib
import json
import re
from enum import Enum
from typing import Any
from uuid import UUID

_HEX_DIGEST = re.compile(r"^[0-9a-f]{64}$")


class CanonicalSerializationError(Exception):
    """A value has no deterministic canonical form."""
    pass


class Hasher:
    """
    Canonical serialization, identity derivation and chain hashing.

    Changing any rule here changes every identity in the store.
    Bump SERIALIZATION_VERSION if that is ever intended.
    """

    SERIALIZATION_VERSION = 1

    @classmethod
    def _encode(cls, value: Any, where: str) -> Any:
        # Enum before str: str-valued enums are also str
        if isinstance(value, Enum):
            return cls._encode(value.value, where)
        if value is None or isinstance(value, (bool, int, str)):
            return value
        if isinstance(value, UUID):
            return str(value).lower()
        if isinstance(value, float):
            raise CanonicalSerializationError(
                f"float at '{where}': amounts and timestamps must be integers"
            )
        if isinstance(value, (set, frozenset)):
            raise CanonicalSerializationError(
                f"set at '{where}' has no stable order, pass a sorted list"
            )
        if isinstance(value, (list, tuple)):
            return [cls._encode(item, f"{where}[{n}]") for n, item in enumerate(value)]
        if hasattr(value, "model_dump"):
            value = value.model_dump(mode="python")
        if isinstance(value, dict):
            return cls._encode_mapping(value, where)
        raise CanonicalSerializationError(
            f"{type(value).__name__} at '{where}' is not JSON-compatible"
        )

    @classmethod
    def _encode_mapping(cls, mapping: dict, where: str = "") -> dict[str, Any]:
        encoded: dict[str, Any] = {}
        for key, item in mapping.items():
            if not isinstance(key, str):
                raise CanonicalSerializationError(
                    f"key {key!r} under '{where}' is a {type(key).__name__}, keys must be str"
                )
            item = cls._encode(item, f"{where}.{key}" if where else key)
            if item is not None:
                encoded[key] = item
        return encoded

    @classmethod
    def canonicalize(cls, data: dict[str, Any] | Any) -> str:
        """
        Render a dict or pydantic model as canonical JSON.

        Raises:
            CanonicalSerializationError: for a non-mapping top level or any
                value without a deterministic form.
        """
        if hasattr(data, "model_dump"):
            data = data.model_dump(mode="python")
        if not isinstance(data, dict):
            raise CanonicalSerializationError(
                f"Canonical form requires a dict at the top level, not {type(data).__name__}"
            )

        document = cls._encode_mapping(data)
        document["__canon_v"] = cls.SERIALIZATION_VERSION
        # sort_keys orders nested mappings too
        return json.dumps(
            document,
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=True,
            allow_nan=False,
        )

    @staticmethod
    def _sha256(text: str) -> str:
        return hashlib.sha256(text.encode("utf-8")).hexdigest()

    @classmethod
    def hash_data(cls, data: dict[str, Any] | Any) -> str:
        """Hex SHA-256 of the canonical form."""
        return cls._sha256(cls.canonicalize(data))

    @classmethod
    def derive_id(cls, kind: str, *parts: Any) -> UUID:
        """
        Derive a record identity from its seeds.

        The identity is the first 128 bits of the SHA-256 of
        {"kind": kind, "parts": [...]}, so seeds of different kinds
        can never collide with each other.
        """
        if not kind:
            raise CanonicalSerializationError("Identity kind must be non-empty")
        return UUID(hex=cls.hash_data({"kind": kind, "parts": list(parts)})[:32])

    @classmethod
    def hash_entry(cls, payload: dict[str, Any], previous_hash: str | None = None) -> str:
        """
        Hash a journal payload, linked to the previous entry's hash.

        Genesis: sha256(payload). Later entries: sha256(previous + ":" + payload).
        """
        body = cls.canonicalize(payload)
        if previous_hash is None:
            return cls._sha256(body)

        previous = previous_hash.lower()
        if not _HEX_DIGEST.match(previous):
            raise CanonicalSerializationError(
                f"Invalid previous_hash {previous_hash!r}: expected 64 hex characters"
            )
        return cls._sha256(f"{previous}:{body}")
