"""Performance sentinels (gated)."""

from __future__ import annotations

import json
import os

import pytest

from chainverify import verify_ndjson, verify_pack
from chainverify.kernel.hash_chain import build_segment, root_hash


def _budget_from_env(var_name: str, default_ms: float) -> float:
    raw = os.getenv(var_name)
    if not raw:
        return default_ms
    try:
        return float(raw)
    except ValueError:
        return default_ms


MAX_LONG_STREAM_MS = _budget_from_env("CHAINVERIFY_MAX_LONG_STREAM_MS", 3000.0)
MAX_WIDE_PACK_MS = _budget_from_env("CHAINVERIFY_MAX_WIDE_PACK_MS", 3000.0)


def _stream(run_id: str, segments: int) -> bytes:
    prev = root = root_hash(run_id)
    lines = [json.dumps({"type": "run", "run_id": run_id, "v": "1.1"})]
    for seg_id in range(segments):
        events = [{"ts_ms": seg_id * 10 + i, "kind": "tick", "value": i} for i in range(5)]
        seg = build_segment({
            "run_id": run_id, "seg_id": seg_id, "start_ts": seg_id * 10, "end_ts": seg_id * 10 + 9,
            "count": len(events), "sealed": True, "events": events,
        }, prev)
        prev = seg["ch"]
        lines.append(json.dumps({"type": "segment", "seg": seg}))
    lines.append(json.dumps({"type": "seal", "algo": "sha256", "root_ch": root, "terminal_ch": prev}))
    return ("\n".join(lines) + "\n").encode("utf-8")


def _assert_budget(benchmark, max_ms: float) -> None:
    mean_ms = benchmark.stats.stats.mean * 1000.0
    assert mean_ms < max_ms, f"Mean {mean_ms:.2f} ms exceeded budget {max_ms:.2f} ms"


@pytest.mark.perf
def test_long_stream_sentinel(benchmark):
    data = _stream("run_perf", 10_000)
    result = benchmark.pedantic(lambda: verify_ndjson(data), rounds=3, iterations=1)

    assert result.status == "ok"
    assert result.segments == 10_000

    _assert_budget(benchmark, MAX_LONG_STREAM_MS)


@pytest.mark.perf
def test_wide_pack_sentinel(benchmark, make_zip):
    data = make_zip({f"run_{i:03d}.ndjson": _stream(f"run_{i}", 100) for i in range(100)})
    result = benchmark.pedantic(lambda: verify_pack(data, mode="tolerant", workers=4), rounds=3, iterations=1)

    assert result.status == "ok"
    assert result.zip.entries_verified == 100

    _assert_budget(benchmark, MAX_WIDE_PACK_MS)
