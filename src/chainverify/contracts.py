"""Public option and result models for chainverify.

Results are plain data: every verification outcome, including unreadable
containers, is a result value with a status and an issue list.
"""

import re
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from chainverify.settings import settings

Mode = Literal["strict", "tolerant"]
Status = Literal["ok", "partial", "invalid"]
Verdict = Literal["PASS", "PARTIAL", "FAIL"]

_VERDICTS: Dict[str, str] = {"ok": "PASS", "partial": "PARTIAL", "invalid": "FAIL"}


def verdict_for(status: str) -> str:
    """Map a result status to the PASS / PARTIAL / FAIL vocabulary."""
    return _VERDICTS[status]


class VerifyOptions(BaseModel):
    """Options for verifying a single record stream."""
    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    mode: Mode = "strict"
    allow_partial: bool = False
    max_line_bytes: int = Field(default_factory=lambda: settings.max_line_bytes, gt=0)
    max_errors: int = Field(default_factory=lambda: settings.max_errors, gt=0)
    schema_profile: Optional[Any] = None  # SchemaProfile; None selects the kernel-only profile
    zip_entry: Optional[str] = None  # set when the stream came out of an evidence pack


class PackOptions(VerifyOptions):
    """Options for verifying a ZIP evidence pack."""

    expected_files: Optional[List[str]] = None
    max_entries: int = Field(default_factory=lambda: settings.max_entries, gt=0)
    max_uncompressed_bytes: int = Field(default_factory=lambda: settings.max_uncompressed_bytes, gt=0)
    max_compression_ratio: float = Field(default_factory=lambda: settings.max_compression_ratio, gt=0)
    max_entry_bytes: int = Field(default_factory=lambda: settings.max_entry_bytes, gt=0)
    entry_name_pattern: str = Field(default_factory=lambda: settings.entry_name_pattern)
    workers: int = Field(default_factory=lambda: settings.workers, ge=1)

    def name_matcher(self) -> "re.Pattern[str]":
        return re.compile(self.entry_name_pattern, re.IGNORECASE)

    def stream_options(self, entry_name: str) -> VerifyOptions:
        """Options for one extracted entry: same mode and limits, tagged with its name."""
        return VerifyOptions(
            mode=self.mode,
            allow_partial=self.allow_partial,
            max_line_bytes=self.max_line_bytes,
            max_errors=self.max_errors,
            schema_profile=self.schema_profile,
            zip_entry=entry_name,
        )


class VerificationIssue(BaseModel):
    """A single verification issue (error or warning)."""
    model_config = ConfigDict(frozen=True)

    code: str  # ReasonCode value
    severity: Literal["error", "warning"] = "error"
    message: str
    line: Optional[int] = None  # 1-based physical line number
    record_index: Optional[int] = None  # 0-based index among non-blank lines
    record_type: Optional[str] = None
    field: Optional[str] = None  # offending / missing field, e.g. "seg.h"
    details: Optional[Dict[str, Any]] = None


class VerificationStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    by_type: Dict[str, int] = Field(default_factory=dict)
    gaps_by_reason: Dict[str, int] = Field(default_factory=dict)


class VerificationResult(BaseModel):
    """Verdict for one record stream."""
    model_config = ConfigDict(frozen=True)

    status: Status
    verdict: Verdict
    is_authentic: bool  # True only when status == "ok"
    is_partial: bool
    mode: Mode
    allow_partial: bool

    # First failure context
    reason_code: Optional[str] = None
    failure_line: Optional[int] = None
    failure_record_type: Optional[str] = None
    missing_field: Optional[str] = None
    snippet: Optional[str] = None
    zip_entry: Optional[str] = None

    # Run metadata
    run_id: Optional[str] = None
    root_ch: Optional[str] = None
    terminal_ch: Optional[str] = None  # last verified chain value
    seal: bool = False
    algo: Optional[str] = None

    # Counters
    records_total: int = 0
    segments: int = 0
    gaps: int = 0
    verified_chain_records: int = 0

    errors: List[VerificationIssue] = Field(default_factory=list)
    warnings: List[VerificationIssue] = Field(default_factory=list)
    stats: VerificationStats = Field(default_factory=VerificationStats)


class PackArtifact(BaseModel):
    """One record-stream entry extracted from a pack and its verdict."""
    model_config = ConfigDict(frozen=True)

    name: str
    result: VerificationResult


class ZipSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    entries_total: int = 0
    entries_verified: int = 0
    entries_skipped: int = 0
    limits_applied: Dict[str, Any] = Field(default_factory=dict)


class PackResult(BaseModel):
    """Verdict for a ZIP evidence pack."""
    model_config = ConfigDict(frozen=True)

    status: Status
    verdict: Verdict
    is_authentic: bool
    mode: Mode
    zip: ZipSummary
    artifacts: List[PackArtifact] = Field(default_factory=list)
    errors: List[VerificationIssue] = Field(default_factory=list)
    warnings: List[VerificationIssue] = Field(default_factory=list)

    @property
    def reason_code(self) -> Optional[str]:
        """First pack-level error, else the first failing artifact's reason."""
        if self.errors:
            return self.errors[0].code
        for artifact in self.artifacts:
            if artifact.result.reason_code is not None:
                return artifact.result.reason_code
        return None
