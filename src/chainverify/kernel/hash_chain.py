"""Audit-chain v1.2 hash functions.

All hashes are SHA-256 over the canonical JSON of a tagged array:

    root    = H(["audit_root_v1.2", run_id])
    segment = H(["segment_h_v1.2", {run_id, seg_id, start_ts, end_ts, count, sealed, events}])
    gap     = H(["gap_h_v1.2", {seg_id_start, seg_id_end, reason_code}])
    link    = H(["link_v1.2", prev_ch, h])

These must match the exporter byte for byte. Only the listed fields are
hashed: ``h``, ``ch``, ``reason_text`` and any unknown fields never are.
"""

import hashlib
from enum import IntEnum
from typing import Any, Dict, Mapping

from chainverify._internal.canonical_json import canonical_dumps

AUDIT_HASH_ALGO = "sha256"

ROOT_TAG = "audit_root_v1.2"
SEGMENT_TAG = "segment_h_v1.2"
GAP_TAG = "gap_h_v1.2"
LINK_TAG = "link_v1.2"

SEGMENT_BODY_FIELDS = ("run_id", "seg_id", "start_ts", "end_ts", "count", "sealed", "events")
GAP_BODY_FIELDS = ("seg_id_start", "seg_id_end", "reason_code")


class GapReason(IntEnum):
    """Why the recorder emitted a gap instead of segments."""
    MISSING_SEGMENT = 1
    WORKER_FAILURE = 2


def sha256_hex(text: str) -> str:
    """SHA-256 of the UTF-8 encoding of ``text`` as lowercase hex."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def _tagged_hash(tag: str, *fields: Any) -> str:
    return sha256_hex(canonical_dumps([tag, *fields]))


def _truthy(value: Any) -> bool:
    # Exporters coerce `sealed` with JavaScript truthiness, where empty
    # containers are true.
    if value is None or value is False:
        return False
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value != 0
    if isinstance(value, str):
        return value != ""
    return True


def root_hash(run_id: str) -> str:
    """Root chain value for a run. Depends on ``run_id`` alone."""
    return _tagged_hash(ROOT_TAG, run_id)


def segment_body(seg: Mapping[str, Any]) -> Dict[str, Any]:
    """Select the hashed fields of a segment object."""
    body = {name: seg.get(name) for name in SEGMENT_BODY_FIELDS}
    body["sealed"] = _truthy(seg.get("sealed"))
    return body


def segment_hash(body: Mapping[str, Any]) -> str:
    return _tagged_hash(SEGMENT_TAG, segment_body(body))


def gap_body(record: Mapping[str, Any]) -> Dict[str, Any]:
    """Select the hashed fields of a gap record."""
    return {name: record.get(name) for name in GAP_BODY_FIELDS}


def gap_hash(gap_range: Mapping[str, Any]) -> str:
    return _tagged_hash(GAP_TAG, gap_body(gap_range))


def link_hash(prev_ch: str, h: str) -> str:
    """Chain value binding ``h`` to everything before it."""
    return _tagged_hash(LINK_TAG, prev_ch, h)


def build_segment(body: Mapping[str, Any], prev_ch: str) -> Dict[str, Any]:
    """Return the segment body with its expected ``h`` and ``ch`` filled in."""
    seg = segment_body(body)
    seg["h"] = segment_hash(seg)
    seg["ch"] = link_hash(prev_ch, seg["h"])
    return seg


def build_gap(gap_range: Mapping[str, Any], prev_ch: str) -> Dict[str, Any]:
    """Return a gap record (``type`` included) with expected ``h`` and ``ch``.

    ``reason_text`` is carried over when present; it is display-only.
    """
    record: Dict[str, Any] = {"type": "gap", **gap_body(gap_range)}
    record["h"] = gap_hash(record)
    record["ch"] = link_hash(prev_ch, record["h"])
    if gap_range.get("reason_text") is not None:
        record["reason_text"] = gap_range["reason_text"]
    return record
