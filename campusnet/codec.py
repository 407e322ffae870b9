from __future__ import annotations

import json

import cbor2

from .constants import WIRE_CBOR, WIRE_JSON


def encode(obj, wire: str = WIRE_JSON) -> str | bytes:
    if wire == WIRE_CBOR:
        return cbor2.dumps(obj)
    return json.dumps(obj, ensure_ascii=False, separators=(",", ":"))


def decode(data: str | bytes):
    # Text frames carry JSON, binary frames carry CBOR.
    if isinstance(data, str):
        return json.loads(data)
    return cbor2.loads(bytes(data))


def wire_of(data: str | bytes) -> str:
    return WIRE_JSON if isinstance(data, str) else WIRE_CBOR
