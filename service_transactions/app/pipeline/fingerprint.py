"""
Content fingerprints for transaction records.
"""

import base64
import hashlib
import json
from datetime import date, datetime
from typing import Any, Mapping, Union

from shared.errors import EncodingError

from .models import TransactionRecord


def canonical_json(payload: Any) -> str:
    """Dump JSON with stable key ordering and compact separators."""
    return json.dumps(
        payload,
        ensure_ascii=False,
        sort_keys=True,
        separators=(",", ":"),
        default=_json_default,
    )


def compute_fingerprint(record: Union[TransactionRecord, Mapping[str, Any]]) -> str:
    """Return the base64 SHA-256 digest of a record's canonical JSON.

    Identical field values give identical fingerprints regardless of key order;
    any field difference gives a different one.

    Raises:
        EncodingError: the record cannot be serialized.
    """
    if isinstance(record, TransactionRecord):
        payload = record.model_dump(mode="json")
    else:
        payload = dict(record)

    try:
        encoded = canonical_json(payload).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise EncodingError("Failed to compute transaction hash", {"error": str(e)})

    return base64.b64encode(hashlib.sha256(encoded).digest()).decode("ascii")


def _json_default(value: object) -> str:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")
