"""chainverify: verification of hash-chained audit exports and evidence packs."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("chainverify")
except PackageNotFoundError:
    __version__ = "dev"

# Public API exports
from chainverify.api import averify_ndjson, verify_file, verify_ndjson, verify_pack
from chainverify.codes import ReasonCode
from chainverify.contracts import (
    PackOptions,
    PackResult,
    VerificationIssue,
    VerificationResult,
    VerifyOptions,
)

__all__ = [
    "__version__",
    "verify_ndjson",
    "averify_ndjson",
    "verify_pack",
    "verify_file",
    "ReasonCode",
    "VerifyOptions",
    "PackOptions",
    "VerificationIssue",
    "VerificationResult",
    "PackResult",
]
