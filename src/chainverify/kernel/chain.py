"""Streaming verifier for audit-chain v1.2 record streams.

The verifier is push-driven: call ``feed`` once per physical line and
``finish`` at end of stream. All per-call state lives in a
``VerificationContext`` owned by one ``ChainVerifier``, so independent
streams can be verified concurrently.

States::

    EXPECT_RUN --run--> ACTIVE --seal--> SEALED
                          |                |
                        trace            trace
                          v                v
                        TRACE_LATCHED <----+

A trace record latches the stream: once seen, no segment, gap or seal may
follow, so a stream must be sealed before its first trace if at all.

A line that fails to parse is held back until the next non-blank line
arrives (``BAD_JSON``) or the stream ends (``TRUNCATED_LAST_LINE``).
"""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterable, Dict, Iterable, List, Optional, Union

from chainverify._internal.canonical_json import CanonicalizationError
from chainverify.codes import ReasonCode, TERMINAL, is_partial_capable
from chainverify.contracts import (
    VerificationIssue,
    VerificationResult,
    VerificationStats,
    VerifyOptions,
    verdict_for,
)
from chainverify.kernel.hash_chain import (
    AUDIT_HASH_ALGO,
    GapReason,
    gap_hash,
    link_hash,
    root_hash,
    segment_hash,
)
from chainverify.kernel.profile import KERNEL_ONLY_PROFILE, RecordContext, SchemaProfile

logger = logging.getLogger(__name__)

SUPPORTED_STREAM_VERSION = "1.1"
SNIPPET_MAX_CHARS = 200
CHAIN_TYPES = frozenset({"segment", "gap", "seal"})

# Parsed values that still have no canonical byte form.
HASH_ERRORS = (CanonicalizationError, UnicodeEncodeError, RecursionError)

Line = Union[str, bytes, bytearray, memoryview]


class State(str, Enum):
    EXPECT_RUN = "EXPECT_RUN"
    ACTIVE = "ACTIVE"
    SEALED = "SEALED"
    TRACE_LATCHED = "TRACE_LATCHED"


def trim_snippet(text: str, max_chars: int = SNIPPET_MAX_CHARS) -> str:
    text = text.strip()
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + "..."


def _reject_constant(name: str) -> Any:
    raise ValueError(f"{name} is not valid JSON")


def _parse_record(text: str) -> Any:
    return json.loads(text, parse_constant=_reject_constant)


@dataclass
class _PendingLine:
    line: int
    record_index: int
    snippet: str


@dataclass
class VerificationContext:
    """Mutable state for one verification call."""
    options: VerifyOptions
    profile: SchemaProfile
    state: State = State.EXPECT_RUN

    run_id: Optional[str] = None
    root_ch: Optional[str] = None
    prev_ch: Optional[str] = None
    sealed: bool = False
    algo: Optional[str] = None

    line_no: int = 0
    non_blank: int = 0
    records_total: int = 0
    segments: int = 0
    gaps: int = 0
    by_type: Dict[str, int] = field(default_factory=dict)
    gaps_by_reason: Dict[str, int] = field(default_factory=dict)

    errors: List[VerificationIssue] = field(default_factory=list)
    warnings: List[VerificationIssue] = field(default_factory=list)
    first_failure: Optional[VerificationIssue] = None
    first_snippet: Optional[str] = None

    pending: Optional[_PendingLine] = None
    halted: bool = False

    def accept(self, kind: str) -> None:
        self.records_total += 1
        self.by_type[kind] = self.by_type.get(kind, 0) + 1


class ChainVerifier:
    """Verify one record stream, line by line."""

    def __init__(self, options: Optional[VerifyOptions] = None):
        options = options or VerifyOptions()
        profile = options.schema_profile or KERNEL_ONLY_PROFILE
        self._ctx = VerificationContext(options=options, profile=profile)
        self._result: Optional[VerificationResult] = None

    @property
    def halted(self) -> bool:
        """True once no further input can change the verdict."""
        return self._ctx.halted

    @property
    def state(self) -> State:
        return self._ctx.state

    # ------------------------------------------------------------------
    # Issue bookkeeping

    def _issue(
        self,
        code: ReasonCode,
        message: str,
        *,
        line: Optional[int],
        record_index: Optional[int] = None,
        record_type: Optional[str] = None,
        field: Optional[str] = None,
        severity: str = "error",
        details: Optional[Dict[str, Any]] = None,
    ) -> VerificationIssue:
        return VerificationIssue(
            code=code.value,
            severity=severity,
            message=message,
            line=line,
            record_index=record_index,
            record_type=record_type,
            field=field,
            details=details,
        )

    def _fail(self, issue: VerificationIssue, snippet: Optional[str] = None) -> None:
        ctx = self._ctx
        if issue.severity != "error":
            issue = issue.model_copy(update={"severity": "error"})
        ctx.errors.append(issue)
        if ctx.first_failure is None:
            ctx.first_failure = issue
            ctx.first_snippet = snippet
        logger.debug("line %s: %s (%s)", issue.line, issue.code, issue.message)

        if issue.code in {code.value for code in TERMINAL} or ctx.options.mode == "strict":
            ctx.halted = True
        elif len(ctx.errors) >= ctx.options.max_errors:
            ctx.halted = True
            ctx.warnings.append(self._issue(
                ReasonCode.MAX_ERRORS_REACHED,
                f"stopped after {len(ctx.errors)} errors",
                line=issue.line,
                severity="warning",
                details={"max_errors": ctx.options.max_errors},
            ))

    def _warn(self, issue: VerificationIssue) -> None:
        self._ctx.warnings.append(issue.model_copy(update={"severity": "warning"}))

    def _reject(self, issue: VerificationIssue, snippet: str) -> None:
        """Unknown types and profile issues: errors in strict mode, warnings in tolerant mode."""
        if self._ctx.options.mode == "tolerant":
            self._warn(issue)
        else:
            self._fail(issue, snippet)

    # ------------------------------------------------------------------
    # Input

    def feed(self, raw: Line) -> bool:
        """Consume one physical line. Returns False once verification has halted."""
        ctx = self._ctx
        if ctx.halted or self._result is not None:
            return False
        ctx.line_no += 1

        if isinstance(raw, str):
            text: Optional[str] = raw.rstrip("\r\n")
            size = len(text.encode("utf-8"))
        else:
            data = bytes(raw).rstrip(b"\r\n")
            size = len(data)
            try:
                text = data.decode("utf-8")
            except UnicodeDecodeError:
                text = None

        if size > ctx.options.max_line_bytes:
            self._resolve_pending()
            if not ctx.halted:
                self._fail(self._issue(
                    ReasonCode.LINE_TOO_LONG,
                    f"line exceeds {ctx.options.max_line_bytes} bytes",
                    line=ctx.line_no,
                    details={"max_line_bytes": ctx.options.max_line_bytes},
                ))
            return not ctx.halted

        if text is None:
            # Undecodable bytes are never blank; treat as a parse failure.
            trimmed = bytes(raw).decode("utf-8", errors="replace").strip()
            record: Any = None
            parsed = False
        else:
            trimmed = text.strip()
            if trimmed == "":
                return True
            try:
                record = _parse_record(trimmed)
                parsed = True
            except (ValueError, RecursionError):
                record = None
                parsed = False

        self._resolve_pending()
        if ctx.halted:
            return False

        record_index = ctx.non_blank
        ctx.non_blank += 1
        snippet = trim_snippet(trimmed)

        if not parsed:
            if ctx.state is State.EXPECT_RUN:
                self._fail(self._issue(
                    ReasonCode.RUN_LINE_PARSE,
                    "first record is not valid JSON",
                    line=ctx.line_no,
                    record_index=record_index,
                ), snippet)
            else:
                ctx.pending = _PendingLine(ctx.line_no, record_index, snippet)
            return not ctx.halted

        self._dispatch(record, record_index, snippet)
        return not ctx.halted

    def _resolve_pending(self) -> None:
        """A held-back unparsable line is followed by more content: plain BAD_JSON."""
        ctx = self._ctx
        pending = ctx.pending
        if pending is None:
            return
        ctx.pending = None
        self._fail(self._issue(
            ReasonCode.BAD_JSON,
            "line is not valid JSON",
            line=pending.line,
            record_index=pending.record_index,
        ), pending.snippet)

    # ------------------------------------------------------------------
    # Records

    def _dispatch(self, record: Any, record_index: int, snippet: str) -> None:
        ctx = self._ctx
        line = ctx.line_no

        if ctx.state is State.EXPECT_RUN:
            self._on_run(record, record_index, snippet)
            return

        if not isinstance(record, dict):
            self._fail(self._issue(
                ReasonCode.SCHEMA, "record is not an object",
                line=line, record_index=record_index, field="record",
            ), snippet)
            return

        if "v" in record and record["v"] != SUPPORTED_STREAM_VERSION:
            self._fail(self._issue(
                ReasonCode.UNSUPPORTED_VERSION,
                f"unsupported stream version {record['v']!r}",
                line=line, record_index=record_index,
                record_type=record.get("type") if isinstance(record.get("type"), str) else None,
                field="v",
            ), snippet)
            return

        raw_type = record.get("type")
        has_type = isinstance(raw_type, str) and raw_type != ""

        # Only a trace may follow a seal, untyped records included.
        if ctx.state is State.SEALED and not (has_type and raw_type.lower() == "trace"):
            kind_name = raw_type.lower() if has_type else None
            self._fail(self._issue(
                ReasonCode.AFTER_SEAL_NON_TRACE,
                f"{kind_name or 'untyped'} record after seal",
                line=line, record_index=record_index, record_type=kind_name,
            ), snippet)
            return

        if not has_type:
            self._reject(self._issue(
                ReasonCode.SCHEMA, "missing type",
                line=line, record_index=record_index, field="type",
            ), snippet)
            return
        kind = raw_type.lower()

        if ctx.state is State.TRACE_LATCHED and kind in CHAIN_TYPES:
            self._fail(self._issue(
                ReasonCode.SEGMENT_AFTER_TRACE,
                f"{kind} record after trace",
                line=line, record_index=record_index, record_type=kind,
            ), snippet)
            return

        if kind == "run" or kind not in ctx.profile.allowed_types:
            self._reject(self._issue(
                ReasonCode.UNKNOWN_TYPE,
                f"record type {raw_type!r} not allowed here",
                line=line, record_index=record_index, record_type=kind,
            ), snippet)
            return

        rctx = RecordContext(line=line, record_index=record_index, record_type=kind, run_id=ctx.run_id)
        problems = ctx.profile.validate_record(record, rctx)
        if problems:
            for problem in problems:
                self._reject(problem, snippet)
                if ctx.halted:
                    break
            return

        if kind in ("segment", "gap"):
            handler = self._on_segment if kind == "segment" else self._on_gap
            body = record["seg"] if kind == "segment" else record
            try:
                handler(body, record_index, snippet)
            except HASH_ERRORS as e:
                # e.g. 1e400 parses to inf, or nesting deeper than the stack
                self._fail(self._issue(
                    ReasonCode.SCHEMA, f"record cannot be hashed: {e}",
                    line=line, record_index=record_index, record_type=kind,
                ), snippet)
        elif kind == "seal":
            self._on_seal(record, record_index, snippet)
        elif kind == "trace":
            if ctx.state is not State.TRACE_LATCHED:
                logger.debug("line %s: trace latch (sealed=%s)", line, ctx.sealed)
            ctx.state = State.TRACE_LATCHED
            ctx.accept(kind)
        else:
            # Allowed by a custom profile but carries no chain semantics.
            ctx.accept(kind)

    def _on_run(self, record: Any, record_index: int, snippet: str) -> None:
        ctx = self._ctx
        line = ctx.line_no

        if not isinstance(record, dict):
            self._fail(self._issue(
                ReasonCode.RUN_LINE_PARSE, "first record is not a JSON object",
                line=line, record_index=record_index,
            ), snippet)
            return

        raw_type = record.get("type")
        if not isinstance(raw_type, str) or raw_type.lower() != "run":
            self._fail(self._issue(
                ReasonCode.MISSING_RUN_LINE, "first record must be a run record",
                line=line, record_index=record_index,
                record_type=raw_type if isinstance(raw_type, str) else None,
                field="type" if not isinstance(raw_type, str) else None,
            ), snippet)
            return

        if "v" in record and record["v"] != SUPPORTED_STREAM_VERSION:
            self._fail(self._issue(
                ReasonCode.UNSUPPORTED_VERSION,
                f"unsupported stream version {record['v']!r}",
                line=line, record_index=record_index, record_type="run", field="v",
            ), snippet)
            ctx.halted = True
            return

        rctx = RecordContext(line=line, record_index=record_index, record_type="run")
        problems = ctx.profile.validate_record(record, rctx)
        if problems:
            self._fail(problems[0], snippet)
            ctx.halted = True
            return

        try:
            root_ch = root_hash(record["run_id"])
        except HASH_ERRORS as e:
            self._fail(self._issue(
                ReasonCode.SCHEMA, f"run_id cannot be hashed: {e}",
                line=line, record_index=record_index, record_type="run", field="run_id",
            ), snippet)
            ctx.halted = True
            return

        ctx.run_id = record["run_id"]
        ctx.root_ch = root_ch
        ctx.prev_ch = ctx.root_ch
        ctx.state = State.ACTIVE
        ctx.accept("run")
        logger.debug("run %s: root_ch=%s", ctx.run_id, ctx.root_ch)

    def _on_segment(self, seg: Dict[str, Any], record_index: int, snippet: str) -> None:
        ctx = self._ctx
        line = ctx.line_no

        if seg["run_id"] != ctx.run_id:
            self._fail(self._issue(
                ReasonCode.SEGMENT_RUN_ID_MISMATCH,
                f"segment belongs to run {seg['run_id']!r}, stream run is {ctx.run_id!r}",
                line=line, record_index=record_index, record_type="segment", field="seg.run_id",
            ), snippet)
            return

        expected_h = segment_hash(seg)
        if seg["h"] != expected_h:
            self._fail(self._issue(
                ReasonCode.SEGMENT_HASH_MISMATCH, "segment body hash mismatch",
                line=line, record_index=record_index, record_type="segment", field="seg.h",
                details={"expected": expected_h, "found": seg["h"]},
            ), snippet)
            return

        expected_ch = link_hash(ctx.prev_ch, expected_h)
        if seg["ch"] != expected_ch:
            self._fail(self._issue(
                ReasonCode.CHAIN_HASH_MISMATCH, "segment chain hash mismatch",
                line=line, record_index=record_index, record_type="segment", field="seg.ch",
                details={"expected": expected_ch, "found": seg["ch"]},
            ), snippet)
            return

        ctx.prev_ch = expected_ch
        ctx.segments += 1
        ctx.accept("segment")

    def _on_gap(self, record: Dict[str, Any], record_index: int, snippet: str) -> None:
        ctx = self._ctx
        line = ctx.line_no

        expected_h = gap_hash(record)
        if record["h"] != expected_h:
            self._fail(self._issue(
                ReasonCode.GAP_HASH_MISMATCH, "gap hash mismatch",
                line=line, record_index=record_index, record_type="gap", field="h",
                details={"expected": expected_h, "found": record["h"]},
            ), snippet)
            return

        expected_ch = link_hash(ctx.prev_ch, expected_h)
        if record["ch"] != expected_ch:
            self._fail(self._issue(
                ReasonCode.CHAIN_HASH_MISMATCH, "gap chain hash mismatch",
                line=line, record_index=record_index, record_type="gap", field="ch",
                details={"expected": expected_ch, "found": record["ch"]},
            ), snippet)
            return

        # A self-consistent hash does not make an unknown reason acceptable.
        reason = int(record["reason_code"])
        if reason not in {r.value for r in GapReason}:
            self._fail(self._issue(
                ReasonCode.GAP_REASON_UNKNOWN, f"unknown gap reason_code {reason}",
                line=line, record_index=record_index, record_type="gap", field="reason_code",
            ), snippet)
            return

        ctx.prev_ch = expected_ch
        ctx.gaps += 1
        ctx.gaps_by_reason[str(reason)] = ctx.gaps_by_reason.get(str(reason), 0) + 1
        ctx.accept("gap")

    def _on_seal(self, record: Dict[str, Any], record_index: int, snippet: str) -> None:
        ctx = self._ctx
        line = ctx.line_no

        ctx.algo = record["algo"]
        if record["algo"] != AUDIT_HASH_ALGO:
            self._fail(self._issue(
                ReasonCode.UNSUPPORTED_ALGO, f"unsupported seal algo {record['algo']!r}",
                line=line, record_index=record_index, record_type="seal", field="algo",
            ), snippet)
            return

        if record["root_ch"] != ctx.root_ch:
            self._fail(self._issue(
                ReasonCode.ROOT_MISMATCH, "seal root_ch does not match run root",
                line=line, record_index=record_index, record_type="seal", field="root_ch",
                details={"expected": ctx.root_ch, "found": record["root_ch"]},
            ), snippet)
            return

        if record["terminal_ch"] != ctx.prev_ch:
            self._fail(self._issue(
                ReasonCode.TERMINAL_MISMATCH, "seal terminal_ch does not match chain",
                line=line, record_index=record_index, record_type="seal", field="terminal_ch",
                details={"expected": ctx.prev_ch, "found": record["terminal_ch"]},
            ), snippet)
            return

        ctx.sealed = True
        ctx.state = State.SEALED
        ctx.accept("seal")
        logger.debug("line %s: sealed at %s", line, ctx.prev_ch)

    # ------------------------------------------------------------------
    # End of stream

    def finish(self) -> VerificationResult:
        """Close the stream and return the verdict. Safe to call more than once."""
        if self._result is not None:
            return self._result
        ctx = self._ctx

        if not ctx.halted:
            pending = ctx.pending
            if pending is not None:
                ctx.pending = None
                self._fail(self._issue(
                    ReasonCode.TRUNCATED_LAST_LINE,
                    "last line is not valid JSON (truncated?)",
                    line=pending.line,
                    record_index=pending.record_index,
                ), pending.snippet)
            elif ctx.non_blank == 0 and not ctx.errors:
                self._fail(self._issue(ReasonCode.EMPTY_EXPORT, "no records", line=None))
            elif not ctx.errors and not ctx.sealed:
                self._fail(self._issue(ReasonCode.MISSING_SEAL, "stream ends without a seal", line=None))

        self._result = self._build_result()
        return self._result

    def _build_result(self) -> VerificationResult:
        ctx = self._ctx
        options = ctx.options

        if not ctx.errors:
            status = "ok"
        elif options.allow_partial and all(is_partial_capable(e.code) for e in ctx.errors):
            status = "partial"
        else:
            status = "invalid"

        first = ctx.first_failure
        return VerificationResult(
            status=status,
            verdict=verdict_for(status),
            is_authentic=status == "ok",
            is_partial=status == "partial",
            mode=options.mode,
            allow_partial=options.allow_partial,
            reason_code=first.code if first else None,
            failure_line=first.line if first else None,
            failure_record_type=first.record_type if first else None,
            missing_field=first.field if first else None,
            snippet=ctx.first_snippet,
            zip_entry=options.zip_entry,
            run_id=ctx.run_id,
            root_ch=ctx.root_ch,
            terminal_ch=ctx.prev_ch,
            seal=ctx.sealed,
            algo=ctx.algo,
            records_total=ctx.records_total,
            segments=ctx.segments,
            gaps=ctx.gaps,
            verified_chain_records=ctx.segments + ctx.gaps,
            errors=list(ctx.errors),
            warnings=list(ctx.warnings),
            stats=VerificationStats(
                by_type=dict(sorted(ctx.by_type.items())),
                gaps_by_reason=dict(sorted(ctx.gaps_by_reason.items())),
            ),
        )


def run_verifier(lines: Iterable[Line], options: Optional[VerifyOptions] = None) -> VerificationResult:
    """Feed ``lines`` through a fresh verifier, stopping early once it halts."""
    verifier = ChainVerifier(options)
    for line in lines:
        if not verifier.feed(line):
            break
    return verifier.finish()


async def arun_verifier(lines: AsyncIterable[Line], options: Optional[VerifyOptions] = None) -> VerificationResult:
    """Async variant of ``run_verifier``; the only await is the next line."""
    verifier = ChainVerifier(options)
    async for line in lines:
        if not verifier.feed(line):
            break
    return verifier.finish()
