"""Reason code constants for chainverify verification results.

These constants prevent stringly-typed reason codes and ensure
client code compares against the codes the verifier actually emits.
"""

from enum import Enum


class ReasonCode(str, Enum):
    """Verification failure and warning reasons."""

    # Structure
    EMPTY_EXPORT = "EMPTY_EXPORT"
    RUN_LINE_PARSE = "RUN_LINE_PARSE"
    MISSING_RUN_LINE = "MISSING_RUN_LINE"
    MISSING_RUN_ID = "MISSING_RUN_ID"
    BAD_JSON = "BAD_JSON"
    TRUNCATED_LAST_LINE = "TRUNCATED_LAST_LINE"
    LINE_TOO_LONG = "LINE_TOO_LONG"
    SCHEMA = "SCHEMA"
    UNKNOWN_TYPE = "UNKNOWN_TYPE"
    UNSUPPORTED_VERSION = "UNSUPPORTED_VERSION"

    # Ordering
    SEGMENT_AFTER_TRACE = "SEGMENT_AFTER_TRACE"
    AFTER_SEAL_NON_TRACE = "AFTER_SEAL_NON_TRACE"

    # Segments
    SEGMENT_MISSING_SEG = "SEGMENT_MISSING_SEG"
    SEGMENT_MISSING_HASH_FIELDS = "SEGMENT_MISSING_HASH_FIELDS"
    SEGMENT_RUN_ID_MISMATCH = "SEGMENT_RUN_ID_MISMATCH"
    SEGMENT_HASH_MISMATCH = "SEGMENT_HASH_MISMATCH"

    # Gaps
    GAP_MISSING_RANGE = "GAP_MISSING_RANGE"
    GAP_MISSING_REASON_CODE = "GAP_MISSING_REASON_CODE"
    GAP_MISSING_HASH_FIELDS = "GAP_MISSING_HASH_FIELDS"
    GAP_HASH_MISMATCH = "GAP_HASH_MISMATCH"
    GAP_REASON_UNKNOWN = "GAP_REASON_UNKNOWN"

    # Chain / seal
    CHAIN_HASH_MISMATCH = "CHAIN_HASH_MISMATCH"
    UNSUPPORTED_ALGO = "UNSUPPORTED_ALGO"
    ROOT_MISMATCH = "ROOT_MISMATCH"
    TERMINAL_MISMATCH = "TERMINAL_MISMATCH"
    MISSING_SEAL = "MISSING_SEAL"

    # Container
    ZIP_OPEN = "ZIP_OPEN"
    ZIP_LIMIT = "ZIP_LIMIT"
    ZIP_EXPECTED_MISSING = "ZIP_EXPECTED_MISSING"
    ZIP_UNSUPPORTED_METHOD = "ZIP_UNSUPPORTED_METHOD"
    ZIP_ENCRYPTED = "ZIP_ENCRYPTED"
    ZIP_ENTRY_TOO_LARGE = "ZIP_ENTRY_TOO_LARGE"
    ZIP_CORRUPT = "ZIP_CORRUPT"
    ZIP_NO_RECORD_STREAM = "ZIP_NO_RECORD_STREAM"
    ZIP_ARTIFACT_FAILED = "ZIP_ARTIFACT_FAILED"

    # Warnings (non-blocking)
    MAX_ERRORS_REACHED = "MAX_ERRORS_REACHED"


# The only reasons that allow_partial may downgrade to a "partial" verdict.
PARTIAL_CAPABLE = frozenset({
    ReasonCode.TRUNCATED_LAST_LINE,
    ReasonCode.MISSING_SEAL,
})

# Reasons that end verification immediately, even in tolerant mode.
TERMINAL = frozenset({
    ReasonCode.EMPTY_EXPORT,
    ReasonCode.RUN_LINE_PARSE,
    ReasonCode.MISSING_RUN_LINE,
    ReasonCode.MISSING_RUN_ID,
    ReasonCode.LINE_TOO_LONG,
    ReasonCode.TRUNCATED_LAST_LINE,
})


def is_partial_capable(code: str) -> bool:
    return code in {reason.value for reason in PARTIAL_CAPABLE}
