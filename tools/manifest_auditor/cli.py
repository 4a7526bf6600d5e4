"""CLI entry point for the Executable Manifest Auditor.

Lists the application manifests embedded in a Windows executable and
flags the privilege-related settings: requested execution level,
``uiAccess`` and ``autoElevate``.  The sample is never executed.

Usage::

    python -m tools.manifest_auditor /samples/setup.exe \\
        --json /output/setup_manifest.json --show-xml

Designed for Python 3.10+.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path

from tools.common.report import (
    ReportSection,
    print_banner,
    print_block,
    print_finding,
    print_summary,
    print_table,
    timestamp,
    write_json_report,
    write_markdown_report,
)

from .catalog import ManifestCatalog, ManifestRecord
from .image_source import LoadError

logger = logging.getLogger(__name__)

_TABLE_COLUMNS = ["Resource", "Language", "Execution level", "uiAccess", "autoElevate", "Parse error"]


def _severity(record: ManifestRecord) -> str:
    if record.parse_error:
        return "critical"
    if record.is_elevated:
        return "warning"
    return "info"


def _record_details(record: ManifestRecord) -> dict[str, str]:
    details = {
        "File": record.name,
        "Resource": record.resource_id,
        "Execution level": record.execution_level,
        "uiAccess": str(record.ui_access),
        "autoElevate": str(record.auto_elevate),
    }
    if record.language is not None:
        details["Language"] = f"0x{record.language:04x}"
    if record.parse_error:
        details["Parse error"] = "manifest is not well-formed XML; raw text kept"
    return details


def _record_row(record: ManifestRecord) -> dict[str, str]:
    return {
        "Resource": record.resource_id,
        "Language": "" if record.language is None else f"0x{record.language:04x}",
        "Execution level": record.execution_level,
        "uiAccess": str(record.ui_access),
        "autoElevate": str(record.auto_elevate),
        "Parse error": str(record.parse_error),
    }


def _markdown_sections(records: list[ManifestRecord]) -> list[ReportSection]:
    sections: list[ReportSection] = []
    for record in records:
        sections.append(
            ReportSection(
                title=f"Resource {record.resource_id}",
                content=_record_details(record),
                level=2,
            )
        )
        sections.append(
            ReportSection(
                title="Manifest XML",
                content=record.manifest_xml,
                level=3,
                code_language="xml",
            )
        )
    return sections


def _handle_audit(args: argparse.Namespace) -> int:
    """Audit one executable and print/write the results."""
    target = Path(args.path)

    try:
        records = ManifestCatalog().get_manifests(target)
    except LoadError as exc:
        print_finding("Cannot open image", {"Path": str(target), "Error": str(exc)}, severity="critical")
        return 1

    if not records:
        print_finding("No manifest resources", {"Path": str(target)}, severity="info")
    else:
        for record in records:
            print_finding(
                f"Manifest {record.resource_id} in {record.name}",
                _record_details(record),
                severity=_severity(record),
            )
            if args.show_xml:
                print_block(f"{record.name} / {record.resource_id}", record.manifest_xml)

        print_table(target.name, [_record_row(r) for r in records], _TABLE_COLUMNS)

    summary_stats = {
        "File": os.path.abspath(target),
        "Manifests": str(len(records)),
        "Elevated": str(sum(1 for r in records if r.is_elevated)),
        "Parse errors": str(sum(1 for r in records if r.parse_error)),
    }

    if args.json:
        write_json_report(
            Path(args.json),
            {
                "file": os.path.abspath(target),
                "generated": timestamp(),
                "manifests": [r.to_dict() for r in records],
            },
        )
        summary_stats["JSON report"] = str(args.json)

    if args.markdown:
        write_markdown_report(
            Path(args.markdown),
            f"Manifest audit: {target.name}",
            _markdown_sections(records),
        )
        summary_stats["Markdown report"] = str(args.markdown)

    print_summary("Manifest Audit Results", summary_stats)
    return 0


def _build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="audit-manifest",
        description=(
            "Executable Manifest Auditor -- list the application manifests "
            "embedded in a PE file and report the requested execution "
            "level, uiAccess and autoElevate settings without running it."
        ),
    )
    parser.add_argument(
        "path",
        help="Executable or DLL to inspect.",
    )
    parser.add_argument(
        "--json",
        metavar="FILE",
        help="Write the records to FILE as JSON.",
    )
    parser.add_argument(
        "--markdown",
        metavar="FILE",
        help="Write a Markdown report including each manifest's XML.",
    )
    parser.add_argument(
        "--show-xml",
        action="store_true",
        help="Print each manifest's XML to the terminal.",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging.",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for the Executable Manifest Auditor."""
    print_banner("Executable Manifest Auditor")

    parser = _build_parser()
    args = parser.parse_args(argv)

    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    try:
        sys.exit(_handle_audit(args))
    except KeyboardInterrupt:
        print("\nAudit interrupted by user.", file=sys.stderr)
        sys.exit(130)
    except Exception as exc:
        logger.exception("Unexpected error during audit")
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
