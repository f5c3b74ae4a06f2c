"""Node records and the liveness rule applied to them."""

from __future__ import annotations

import time

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from errors import CorruptRecord


def now_ms() -> int:
    return int(time.time() * 1000)


class NodeRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    address: str
    last_heartbeat: int = Field(alias="lastHeartbeat")


_NODE_LIST = TypeAdapter(list[NodeRecord])


def is_expired(record: NodeRecord, now: int, window_ms: int) -> bool:
    return now - record.last_heartbeat > window_ms


def decode_nodes(key: str, blob: str) -> list[NodeRecord]:
    """Parse a stored node list.

    Duplicate addresses collapse into the record with the newest heartbeat so
    callers always see one record per address. Anything that is not a JSON
    list of node objects raises CorruptRecord.
    """
    try:
        records = _NODE_LIST.validate_json(blob)
    except ValidationError as e:
        raise CorruptRecord(key, f"{e.error_count()} validation error(s)") from e

    by_address: dict[str, NodeRecord] = {}
    for rec in records:
        seen = by_address.get(rec.address)
        if seen is None or rec.last_heartbeat > seen.last_heartbeat:
            by_address[rec.address] = rec
    return list(by_address.values())


def encode_nodes(records: list[NodeRecord]) -> str:
    return _NODE_LIST.dump_json(records, by_alias=True).decode()
