"""
Global state decoding.

algod returns application global state as a list of base64-encoded
key/value entries; value type 1 is a byte slice, type 2 a uint64.
"""

import base64
from typing import Any

from trustinvoice.services.chains.algorand.program import (
    FIELD_AMOUNT,
    INVOICE_FIELDS,
    invoice_key,
)


BYTES_TYPE = 1
UINT_TYPE = 2

StateValue = int | bytes


def decode_global_state(entries: list[dict[str, Any]]) -> dict[bytes, StateValue]:
    """Decode algod global-state entries into {key bytes: int | bytes}."""
    state: dict[bytes, StateValue] = {}
    for entry in entries:
        key = base64.b64decode(entry["key"])
        value = entry["value"]
        if value["type"] == BYTES_TYPE:
            state[key] = base64.b64decode(value.get("bytes", ""))
        else:
            state[key] = int(value.get("uint", 0))
    return state


def encode_global_state(state: dict[bytes, StateValue]) -> list[dict[str, Any]]:
    """Inverse of decode_global_state, in algod's response format."""
    entries = []
    for key, value in state.items():
        if isinstance(value, bytes):
            encoded = {
                "type": BYTES_TYPE,
                "bytes": base64.b64encode(value).decode(),
                "uint": 0,
            }
        else:
            encoded = {"type": UINT_TYPE, "bytes": "", "uint": value}
        entries.append({"key": base64.b64encode(key).decode(), "value": encoded})
    return entries


def invoice_fields(
    state: dict[bytes, StateValue], invoice_id: str
) -> dict[str, StateValue] | None:
    """
    Collect the stored fields of one invoice.

    Returns:
        Field name -> value, or None if the invoice does not exist
    """
    fields = {
        field: state[invoice_key(invoice_id, field)]
        for field in INVOICE_FIELDS
        if invoice_key(invoice_id, field) in state
    }
    if FIELD_AMOUNT not in fields:
        return None
    return fields
