"""Evidence pack (ZIP) verification logic."""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional, Tuple

from chainverify.codes import ReasonCode
from chainverify.contracts import (
    PackArtifact,
    PackOptions,
    PackResult,
    VerificationIssue,
    VerificationResult,
    ZipSummary,
    verdict_for,
)
from chainverify.kernel.chain import run_verifier
from chainverify._internal.io.lines import open_lines
from chainverify._internal.io.zip_reader import ContainerError, ZipArchive, ZipEntry, ZipSource

logger = logging.getLogger(__name__)


def _pack_issue(
    code: ReasonCode,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    severity: str = "error",
) -> VerificationIssue:
    return VerificationIssue(code=code.value, severity=severity, message=message, details=details)


def _check_entry(
    archive: ZipArchive,
    entry: ZipEntry,
    options: PackOptions,
) -> Tuple[Optional[VerificationResult], Optional[VerificationIssue]]:
    """Extract one entry and verify it as a record stream.

    Returns either a stream verdict or the extraction issue, never both.
    """
    try:
        data = archive.extract(entry, options.max_entry_bytes)
    except ContainerError as e:
        logger.warning("zip entry %s rejected: %s", entry.name, e.message)
        return None, _pack_issue(e.code, e.message, {"entry": entry.name})

    stream_options = options.stream_options(entry.name)
    with open_lines(data, stream_options.max_line_bytes) as lines:
        result = run_verifier(lines, stream_options)
    logger.debug("zip entry %s: %s", entry.name, result.status)
    return result, None


def _pack_status(errors: List[VerificationIssue], artifacts: List[PackArtifact]) -> str:
    if errors or not artifacts:
        return "invalid"
    statuses = {artifact.result.status for artifact in artifacts}
    if statuses == {"ok"}:
        return "ok"
    if "invalid" in statuses:
        return "invalid"
    return "partial"


def _finalize(
    options: PackOptions,
    summary: Dict[str, Any],
    artifacts: List[PackArtifact],
    errors: List[VerificationIssue],
    warnings: List[VerificationIssue],
) -> PackResult:
    status = _pack_status(errors, artifacts)
    return PackResult(
        status=status,
        verdict=verdict_for(status),
        is_authentic=status == "ok",
        mode=options.mode,
        zip=ZipSummary(**summary),
        artifacts=artifacts,
        errors=errors,
        warnings=warnings,
    )


def verify_pack(source: ZipSource, options: Optional[PackOptions] = None) -> PackResult:
    """Verify every record stream inside a ZIP evidence pack.

    Resource limits are checked against the central directory before any
    entry is extracted. Matching entries are verified in name order.

    Raises:
        TypeError: If ``source`` is neither a path nor a bytes-like buffer
    """
    options = options or PackOptions()
    strict = options.mode == "strict"
    summary: Dict[str, Any] = {
        "entries_total": 0,
        "entries_verified": 0,
        "entries_skipped": 0,
        "limits_applied": {
            "max_entries": options.max_entries,
            "max_uncompressed_bytes": options.max_uncompressed_bytes,
            "max_compression_ratio": options.max_compression_ratio,
            "max_entry_bytes": options.max_entry_bytes,
        },
    }
    artifacts: List[PackArtifact] = []
    errors: List[VerificationIssue] = []
    warnings: List[VerificationIssue] = []

    try:
        archive = ZipArchive.open(source)
        entries = archive.entries()
    except ContainerError as e:
        errors.append(_pack_issue(e.code, e.message))
        return _finalize(options, summary, artifacts, errors, warnings)
    summary["entries_total"] = len(entries)

    # Rule 1: directory-level limits, fail fast before extracting anything
    matcher = options.name_matcher()
    seen_names = set()
    candidates: List[ZipEntry] = []
    total_uncompressed = 0
    for count, entry in enumerate(entries, start=1):
        if count > options.max_entries:
            errors.append(_pack_issue(
                ReasonCode.ZIP_LIMIT, "zip exceeds max_entries",
                {"reason": "max_entries", "max_entries": options.max_entries},
            ))
            break
        seen_names.add(entry.name)

        comp = entry.compressed_size
        uncomp = entry.uncompressed_size
        if uncomp > 0 and (comp == 0 or uncomp / comp > options.max_compression_ratio):
            errors.append(_pack_issue(
                ReasonCode.ZIP_LIMIT, "zip entry exceeds max_compression_ratio",
                {"reason": "compression_ratio", "name": entry.name,
                 "compressed_size": comp, "uncompressed_size": uncomp},
            ))
            break

        total_uncompressed += uncomp
        if total_uncompressed > options.max_uncompressed_bytes:
            errors.append(_pack_issue(
                ReasonCode.ZIP_LIMIT, "zip exceeds max_uncompressed_bytes",
                {"reason": "max_uncompressed_bytes", "max_uncompressed_bytes": options.max_uncompressed_bytes},
            ))
            break

        if entry.is_dir:
            summary["entries_skipped"] += 1
            continue
        if matcher.search(entry.name):
            candidates.append(entry)

    if errors:
        logger.warning("zip limits exceeded: %s", errors[0].details)
        return _finalize(options, summary, artifacts, errors, warnings)

    # Rule 2: expected files (strict mode fails, tolerant mode warns)
    for required in options.expected_files or []:
        if required in seen_names:
            continue
        errors.append(_pack_issue(
            ReasonCode.ZIP_EXPECTED_MISSING, "expected file missing from zip",
            {"missing": required},
            severity="error" if strict else "warning",
        ))
    if not strict:
        warnings.extend(errors)
        errors = []

    # Rule 3: at least one record stream
    if not candidates:
        errors.append(_pack_issue(
            ReasonCode.ZIP_NO_RECORD_STREAM,
            f"no entry matches {options.entry_name_pattern!r}",
        ))
        return _finalize(options, summary, artifacts, errors, warnings)

    candidates.sort(key=lambda e: e.name)

    # Rule 4: verify each record stream
    if strict or options.workers <= 1:
        outcomes = []
        for entry in candidates:
            if strict and errors:
                break
            result, problem = _check_entry(archive, entry, options)
            outcomes.append((entry, result, problem))
            if problem is not None:
                errors.append(problem)
            elif strict and result.status == "invalid":
                errors.append(_pack_issue(
                    ReasonCode.ZIP_ARTIFACT_FAILED, "record stream failed verification",
                    {"entry": entry.name, "reason_code": result.reason_code},
                ))
    else:
        with ThreadPoolExecutor(max_workers=options.workers) as executor:
            checked = list(executor.map(lambda e: _check_entry(archive, e, options), candidates))
        outcomes = [(entry, result, problem) for entry, (result, problem) in zip(candidates, checked)]
        errors.extend(problem for _, _, problem in outcomes if problem is not None)

    for entry, result, _problem in outcomes:
        if result is None:
            continue
        artifacts.append(PackArtifact(name=entry.name, result=result))
        summary["entries_verified"] += 1

    return _finalize(options, summary, artifacts, errors, warnings)
