"""chainverify CLI: verify an NDJSON audit export or a ZIP evidence pack.

Exit codes:
    0  PASS
    1  PARTIAL or FAIL
    2  usage or I/O error
    3  unexpected fatal error
"""

import argparse
import logging
import sys
from importlib.metadata import version as get_version, PackageNotFoundError
from pathlib import Path
from typing import List

EXIT_PASS = 0
EXIT_NOT_PASS = 1
EXIT_USAGE = 2
EXIT_FATAL = 3


def _top_line(verdict: str, reason_code) -> str:
    if verdict == "PASS":
        return "PASS"
    return f"{verdict}: {reason_code}"


def _summary_lines(result) -> List[str]:
    return [
        f"run_id={result.run_id or ''}",
        f"records_total={result.records_total} segments={result.segments} gaps={result.gaps}",
        f"seal={'yes' if result.seal else 'no'} algo={result.algo or ''}",
        f"root_ch={result.root_ch or ''}",
        f"terminal_ch={result.terminal_ch or ''}",
    ]


def _verbose_lines(result) -> List[str]:
    lines = []
    if result.zip_entry:
        lines.append(f"zip_entry={result.zip_entry}")
    if result.failure_line is not None:
        lines.append(f"failure_line={result.failure_line}")
    if result.failure_record_type:
        lines.append(f"failure_record_type={result.failure_record_type}")
    if result.missing_field:
        lines.append(f"missing_field={result.missing_field}")
    if result.snippet:
        lines.append(f"snippet={result.snippet}")
    return lines


def _print_result(result, args) -> None:
    from chainverify.contracts import PackResult

    if args.json:
        print(result.model_dump_json())
        return

    print(_top_line(result.verdict, result.reason_code))
    if args.quiet:
        return

    if isinstance(result, PackResult):
        zip_summary = result.zip
        print(
            f"entries={zip_summary.entries_total} verified={zip_summary.entries_verified} "
            f"artifacts={len(result.artifacts)} errors={len(result.errors)}"
        )
        for issue in result.errors:
            print(f"  error {issue.code}: {issue.message}")
        for artifact in result.artifacts:
            print(f"- {artifact.name}: {_top_line(artifact.result.verdict, artifact.result.reason_code)}")
            for line in _summary_lines(artifact.result):
                print(f"  {line}")
            if args.verbose and artifact.result.verdict != "PASS":
                for line in _verbose_lines(artifact.result):
                    print(f"  {line}")
        return

    for line in _summary_lines(result):
        print(line)
    if args.verbose and result.verdict != "PASS":
        for line in _verbose_lines(result):
            print(line)


def main():
    """Main CLI entry point."""
    try:
        chainverify_version = get_version("chainverify")
    except PackageNotFoundError:
        chainverify_version = "dev"

    parser = argparse.ArgumentParser(
        prog="ndjson-chain-verify",
        description="Verify hash-chained NDJSON audit exports and ZIP evidence packs"
    )
    parser.add_argument("--version", action="version", version=f"chainverify {chainverify_version}")
    parser.add_argument(
        "input",
        type=Path,
        help="Path to an .ndjson export or a .zip evidence pack"
    )
    output = parser.add_mutually_exclusive_group()
    output.add_argument(
        "--quiet",
        action="store_true",
        help="Print only the PASS / PARTIAL / FAIL line."
    )
    output.add_argument(
        "--json",
        action="store_true",
        help="Print the full result as JSON."
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Print failure context and debug logging."
    )
    parser.add_argument(
        "--allow-partial",
        action="store_true",
        help="Report truncated or unsealed exports as PARTIAL instead of FAIL."
    )
    parser.add_argument(
        "--tolerant",
        action="store_true",
        help="Keep going after errors; unknown record types become warnings."
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    input_path: Path = args.input
    if not input_path.is_file():
        print(f"Error: input must be a file: {input_path}", file=sys.stderr)
        sys.exit(EXIT_USAGE)

    from chainverify.api import verify_file

    mode = "tolerant" if args.tolerant else "strict"
    try:
        result = verify_file(input_path, allow_partial=args.allow_partial, mode=mode)
    except OSError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(EXIT_USAGE)
    except Exception as e:
        print(f"Unexpected error: {e}", file=sys.stderr)
        import traceback
        traceback.print_exc()
        sys.exit(EXIT_FATAL)

    _print_result(result, args)
    sys.exit(EXIT_PASS if result.verdict == "PASS" else EXIT_NOT_PASS)


if __name__ == "__main__":
    main()
