"""Public API for chainverify.

High-level functions that return complete, structured verdicts.
Callers should use these functions instead of importing from _internal.
"""

import os
from collections.abc import AsyncIterable
from pathlib import Path
from typing import Any, Optional, Type, TypeVar, Union

from chainverify.contracts import PackOptions, PackResult, VerificationResult, VerifyOptions
from chainverify.kernel.chain import arun_verifier, run_verifier
from chainverify._internal.io.lines import LineSource, open_lines
from chainverify._internal.io.zip_reader import ZipSource
from chainverify._internal.verify.pack import verify_pack as _verify_pack

OptionsT = TypeVar("OptionsT", bound=VerifyOptions)


def _normalize_path(path: Union[str, os.PathLike, Path]) -> Path:
    """Normalize path input to Path object."""
    return Path(path) if not isinstance(path, Path) else path


def _resolve_options(model: Type[OptionsT], options: Optional[OptionsT], overrides: dict) -> OptionsT:
    if options is not None:
        if overrides:
            raise ValueError("Pass either options= or keyword overrides, not both")
        return options
    return model(**overrides)


def verify_ndjson(
    source: LineSource,
    options: Optional[VerifyOptions] = None,
    **overrides: Any,
) -> VerificationResult:
    """
    Verify one NDJSON record stream.

    Args:
        source: Path, bytes-like buffer, binary stream, or iterable of lines
        options: Full option set; alternatively pass fields as keywords
            (mode, allow_partial, max_line_bytes, max_errors, schema_profile)

    Returns:
        VerificationResult. Invalid input is reported in the result, not raised.

    Raises:
        TypeError: If source is not a supported input type
        OSError: If source is a path that cannot be read
    """
    opts = _resolve_options(VerifyOptions, options, overrides)
    if isinstance(source, (str, os.PathLike)):
        source = _normalize_path(source)
    with open_lines(source, opts.max_line_bytes) as lines:
        return run_verifier(lines, opts)


async def averify_ndjson(
    source: AsyncIterable,
    options: Optional[VerifyOptions] = None,
    **overrides: Any,
) -> VerificationResult:
    """
    Verify a record stream delivered as an async iterable of lines.

    Works with anything supporting ``async for`` that yields ``str`` or
    ``bytes`` lines, e.g. ``asyncio.StreamReader``.
    """
    if not isinstance(source, AsyncIterable):
        raise TypeError(f"Unsupported input type {type(source).__name__}: expected an async iterable of lines")
    opts = _resolve_options(VerifyOptions, options, overrides)
    return await arun_verifier(source, opts)


def verify_pack(
    source: ZipSource,
    options: Optional[PackOptions] = None,
    **overrides: Any,
) -> PackResult:
    """
    Verify a ZIP evidence pack.

    Args:
        source: Path or bytes-like buffer holding the archive
        options: Full option set; alternatively pass fields as keywords
            (mode, allow_partial, expected_files, max_entries,
            max_uncompressed_bytes, max_compression_ratio, max_entry_bytes,
            entry_name_pattern, workers, ...)

    Returns:
        PackResult. Unreadable or hostile archives are reported in the result.

    Raises:
        TypeError: If source is neither a path nor a bytes-like buffer
    """
    opts = _resolve_options(PackOptions, options, overrides)
    if isinstance(source, (str, os.PathLike)):
        source = _normalize_path(source)
    return _verify_pack(source, opts)


def verify_file(
    path: Union[str, os.PathLike, Path],
    *,
    allow_partial: bool = False,
    mode: str = "strict",
) -> Union[VerificationResult, PackResult]:
    """Dispatch on suffix: ``.zip`` files are evidence packs, anything else NDJSON."""
    path = _normalize_path(path)
    if path.suffix.lower() == ".zip":
        return verify_pack(path, allow_partial=allow_partial, mode=mode)
    return verify_ndjson(path, allow_partial=allow_partial, mode=mode)
