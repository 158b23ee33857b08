"""CBOR encoding of the store document."""

from __future__ import annotations

from typing import Any

import cbor2


def encode_document(doc: dict[str, dict[str, Any]]) -> bytes:
    # Canonical form: the same state always produces the same bytes.
    return cbor2.dumps(doc, canonical=True)


def decode_document(b: bytes) -> dict[str, dict[str, Any]]:
    """Decode a store file body into ``{namespace: {key: value}}``.

    An empty body is an empty store. Namespaces that are not maps are
    dropped. Raises ValueError if the body is not CBOR or not a map.
    """
    if not b:
        return {}

    doc = cbor2.loads(b)
    if not isinstance(doc, dict):
        raise ValueError("store document is not a map")

    return {str(ns): dict(values) for ns, values in doc.items() if isinstance(values, dict)}
