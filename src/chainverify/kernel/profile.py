"""Structural record validation.

A profile is anything with ``name``, ``allowed_types`` and
``validate_record(record, ctx)``. The verifier runs the profile before any
hashing; a profile only looks at shape, never at hashes or ordering.
"""

from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, List, Optional, Protocol

from chainverify.codes import ReasonCode
from chainverify.contracts import VerificationIssue

SEGMENT_REQUIRED_FIELDS = ("run_id", "seg_id", "start_ts", "end_ts", "count", "sealed", "events", "h", "ch")


@dataclass(frozen=True)
class RecordContext:
    """Where a record sits in the stream being verified."""
    line: int
    record_index: int
    record_type: str  # lowercased
    run_id: Optional[str] = None


class SchemaProfile(Protocol):
    name: str
    allowed_types: FrozenSet[str]

    def validate_record(self, record: Dict[str, Any], ctx: RecordContext) -> List[VerificationIssue]:
        ...


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_integer(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, float) and value.is_integer()


def _is_nonempty_str(value: Any) -> bool:
    return isinstance(value, str) and len(value) > 0


class KernelOnlyProfile:
    """Kernel v1.2 export records only: run, segment, gap, seal, trace."""

    name = "kernel-only"
    allowed_types = frozenset({"run", "segment", "gap", "seal", "trace"})

    def validate_record(self, record: Dict[str, Any], ctx: RecordContext) -> List[VerificationIssue]:
        issues: List[VerificationIssue] = []

        def issue(code: ReasonCode, message: str, field: Optional[str] = None) -> None:
            issues.append(VerificationIssue(
                code=code.value,
                message=message,
                line=ctx.line,
                record_index=ctx.record_index,
                record_type=ctx.record_type,
                field=field,
            ))

        kind = ctx.record_type

        if kind == "run":
            if not _is_nonempty_str(record.get("run_id")):
                issue(ReasonCode.MISSING_RUN_ID, "missing run_id", "run_id")
            return issues

        if kind == "segment":
            seg = record.get("seg")
            if not isinstance(seg, dict):
                issue(ReasonCode.SEGMENT_MISSING_SEG, "missing seg object", "seg")
                return issues
            for name in SEGMENT_REQUIRED_FIELDS:
                if name in ("h", "ch"):
                    continue
                if name not in seg:
                    issue(ReasonCode.SCHEMA, f"seg.{name} is required", f"seg.{name}")
            if "run_id" in seg and not _is_nonempty_str(seg["run_id"]):
                issue(ReasonCode.SCHEMA, "seg.run_id must be a non-empty string", "seg.run_id")
            if "seg_id" in seg and not _is_number(seg["seg_id"]):
                issue(ReasonCode.SCHEMA, "seg.seg_id must be a number", "seg.seg_id")
            if not isinstance(seg.get("h"), str) or not isinstance(seg.get("ch"), str):
                field = "seg.h" if not isinstance(seg.get("h"), str) else "seg.ch"
                issue(ReasonCode.SEGMENT_MISSING_HASH_FIELDS, "seg.h and seg.ch must be strings", field)
            return issues

        if kind == "gap":
            if not _is_number(record.get("seg_id_start")) or not _is_number(record.get("seg_id_end")):
                field = "seg_id_start" if not _is_number(record.get("seg_id_start")) else "seg_id_end"
                issue(ReasonCode.GAP_MISSING_RANGE, "gap range must be numbers", field)
            if not _is_integer(record.get("reason_code")):
                issue(ReasonCode.GAP_MISSING_REASON_CODE, "gap.reason_code must be an integer", "reason_code")
            if not isinstance(record.get("h"), str) or not isinstance(record.get("ch"), str):
                field = "h" if not isinstance(record.get("h"), str) else "ch"
                issue(ReasonCode.GAP_MISSING_HASH_FIELDS, "gap.h and gap.ch must be strings", field)
            return issues

        if kind == "seal":
            if not isinstance(record.get("algo"), str):
                issue(ReasonCode.SCHEMA, "seal.algo must be a string", "algo")
            for name in ("root_ch", "terminal_ch"):
                if not isinstance(record.get(name), str):
                    issue(ReasonCode.SCHEMA, f"seal.{name} must be a string", name)
            return issues

        # trace is intentionally loose
        return issues


KERNEL_ONLY_PROFILE = KernelOnlyProfile()
