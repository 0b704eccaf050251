"""Pytest configuration for tests.

No sys.path hacks - tests should import from installed chainverify package.
Record streams are built on the fly with the same hash functions an
exporter uses, so no binary fixtures are checked in.
"""

import io
import json
import os
import zipfile
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from chainverify.kernel.hash_chain import build_gap, build_segment, root_hash


def pytest_addoption(parser):
    """Add gated perf test option."""
    parser.addoption(
        "--run-perf",
        action="store_true",
        default=False,
        help="Run performance sentinel benchmarks (gated)."
    )


def pytest_collection_modifyitems(config, items):
    """Skip perf-marked tests unless --run-perf is set."""
    if config.getoption("--run-perf"):
        return
    skip_perf = pytest.mark.skip(reason="perf tests gated; pass --run-perf")
    for item in items:
        if "perf" in item.keywords:
            item.add_marker(skip_perf)


def pytest_sessionfinish(session, exitstatus):
    """Best-effort cleanup for basetemp on Windows without patching pytest internals."""
    if os.name != "nt":
        return
    basetemp = getattr(session.config.option, "basetemp", None)
    if not basetemp:
        return
    basetemp_path = Path(basetemp)
    if not basetemp_path.exists():
        return
    try:
        import shutil
        shutil.rmtree(basetemp_path)
    except (PermissionError, OSError):
        import warnings
        warnings.warn(f"Could not remove basetemp: {basetemp_path}")


class ChainBuilder:
    """Build a valid audit-chain stream record by record."""

    def __init__(self, run_id: str = "run_fixture_good", version: Optional[str] = "1.1"):
        self.run_id = run_id
        self.root_ch = root_hash(run_id)
        self.prev_ch = self.root_ch
        run: Dict[str, Any] = {"type": "run", "run_id": run_id}
        if version is not None:
            run["v"] = version
        self.records: List[Dict[str, Any]] = [run]
        self._next_seg_id = 0

    def segment(self, events: Optional[List[Dict[str, Any]]] = None, **overrides: Any) -> "ChainBuilder":
        if events is None:
            events = [{"ts_ms": 1000, "kind": "example", "value": 1}]
        body = {
            "run_id": self.run_id,
            "seg_id": self._next_seg_id,
            "start_ts": 1000,
            "end_ts": 1001,
            "count": len(events),
            "sealed": True,
            "events": events,
        }
        body.update(overrides)
        seg = build_segment(body, self.prev_ch)
        self.prev_ch = seg["ch"]
        self._next_seg_id += 1
        self.records.append({"type": "segment", "seg": seg})
        return self

    def gap(self, start: int, end: int, reason_code: int = 1,
            reason_text: Optional[str] = "missing_segment") -> "ChainBuilder":
        gap_range = {"seg_id_start": start, "seg_id_end": end, "reason_code": reason_code}
        if reason_text is not None:
            gap_range["reason_text"] = reason_text
        record = build_gap(gap_range, self.prev_ch)
        self.prev_ch = record["ch"]
        self.records.append(record)
        return self

    def seal(self, **overrides: Any) -> "ChainBuilder":
        seal = {"type": "seal", "algo": "sha256", "root_ch": self.root_ch, "terminal_ch": self.prev_ch}
        seal.update(overrides)
        self.records.append(seal)
        return self

    def trace(self, **fields: Any) -> "ChainBuilder":
        self.records.append({"type": "trace", **fields})
        return self

    def record(self, obj: Dict[str, Any]) -> "ChainBuilder":
        self.records.append(obj)
        return self

    def lines(self) -> List[str]:
        return [json.dumps(record) for record in self.records]

    def text(self) -> str:
        return "\n".join(self.lines()) + "\n"

    def data(self) -> bytes:
        return self.text().encode("utf-8")


@pytest.fixture
def chain():
    """Factory for ChainBuilder instances."""
    return ChainBuilder


def build_zip(entries: Dict[str, Any], compression: int = zipfile.ZIP_DEFLATED, comment: bytes = b"") -> bytes:
    """Write ``entries`` (name -> str or bytes) into an in-memory archive, in insertion order.

    Names ending in ``/`` become directory entries.
    """
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", compression=compression) as zf:
        for name, content in entries.items():
            if name.endswith("/"):
                zf.writestr(zipfile.ZipInfo(name), b"")
                continue
            if isinstance(content, str):
                content = content.encode("utf-8")
            zf.writestr(name, content)
        zf.comment = comment
    return buf.getvalue()


@pytest.fixture
def make_zip():
    """Factory for in-memory ZIP archives."""
    return build_zip


def _good() -> str:
    return ChainBuilder("run_fixture_good").segment().seal().text()


def _gap_missing_segment() -> str:
    return ChainBuilder("run_fixture_gap_missing", version=None).gap(0, 1).seal().text()


def _gap_hash_mismatch() -> str:
    builder = ChainBuilder("run_fixture_gap_mismatch", version=None).gap(0, 1).seal()
    builder.records[1]["seg_id_end"] = 2
    return builder.text()


def _bad_json() -> str:
    builder = ChainBuilder("run_fixture_bad_json", version=None)
    lines = builder.lines()
    lines.append("{")
    lines.append(json.dumps({"type": "seal", "algo": "sha256", "root_ch": builder.root_ch,
                             "terminal_ch": builder.root_ch}))
    return "\n".join(lines) + "\n"


def _tampered_line() -> str:
    builder = ChainBuilder("run_fixture_tampered_line", version=None).segment()
    correct_ch = builder.prev_ch
    builder.records[1]["seg"]["ch"] = "0" * 64
    builder.seal(terminal_ch=correct_ch)
    return builder.text()


def _reordered_lines() -> str:
    builder = ChainBuilder("run_fixture_reordered", version=None).gap(0, 1).gap(1, 2).seal()
    records = builder.records
    records[1], records[2] = records[2], records[1]
    return builder.text()


def _truncated_line() -> str:
    # Sealed chain, then a trace line cut off mid-write.
    builder = ChainBuilder("run_fixture_truncated", version=None).gap(0, 1).seal()
    return builder.text() + '{"type":"trace","note":"incomplete"'


def _missing_seal() -> str:
    return ChainBuilder("run_fixture_missing_seal", version=None).gap(0, 1).text()


FIXTURE_BUILDERS = {
    "good.ndjson": _good,
    "gap_missing_segment.ndjson": _gap_missing_segment,
    "gap_hash_mismatch.ndjson": _gap_hash_mismatch,
    "bad_json.ndjson": _bad_json,
    "tampered_line.ndjson": _tampered_line,
    "reordered_lines.ndjson": _reordered_lines,
    "truncated_line.ndjson": _truncated_line,
    "missing_seal.ndjson": _missing_seal,
}


@pytest.fixture
def fixtures_dir(tmp_path):
    """Directory holding one NDJSON file per named fixture."""
    out = tmp_path / "fixtures"
    out.mkdir()
    for name, build in FIXTURE_BUILDERS.items():
        (out / name).write_text(build(), encoding="utf-8")
    return out
