#!/usr/bin/env python3
"""
Export Verifier Package for LaTeX -> HTML Exports
=================================================

This package checks that an exported HTML document faithfully reproduces
its LaTeX source: every math expression present, in order, with the right
display mode, cross-references resolving to anchors, and the embedded
MathJax configuration able to typeset what the source uses.

Modules:
    - config: Configuration constants and per-run tunables
    - math_protection: Math segmentation of the source, delimiter unwrapping
    - source_inventory: Source expression and cross-reference inventory
    - rendered_analyzer: Exported HTML analysis and failure signatures
    - preview_capture: Live-preview snapshot
    - engine_config: MathJax configuration reading, custom macro detection
    - comparator / crossrefs: Source vs export checks
    - attribution: Preview vs export stage attribution
    - reporter: Console report, JSON diagnostics, Markdown synopsis
    - verifier: Verification workflow and context

Usage:
    from export_verifier import verify_export, VerificationContext
    ctx = VerificationContext()
    result = verify_export(latex_source, exported_html, context=ctx)
    print(result.status)
"""

__version__ = "1.2.0"
__author__ = "LaTeX Export Verifier Contributors"

import sys
from pathlib import Path
from typing import List, Optional

EXIT_OK = 0
EXIT_FAIL = 1
EXIT_INPUT = 2


def _read(path: str) -> Optional[str]:
    p = Path(path)
    if not p.exists():
        print(f"[verify] [ERROR] File not found: {p}", file=sys.stderr)
        return None
    try:
        return p.read_text(encoding='utf-8', errors='replace')
    except OSError as e:
        print(f"[verify] [ERROR] Cannot read {p}: {e}", file=sys.stderr)
        return None


def run(
    source_path: str,
    rendered_path: str,
    preview_path: Optional[str] = None,
    report_path: Optional[str] = None,
    detail: str = "summary",
    cfg=None,
    check_engine_config: bool = True,
) -> int:
    """
    Verify one exported file against its source and return an exit code.

    Args:
        source_path: LaTeX source file.
        rendered_path: Exported HTML file.
        preview_path: Optional live-preview HTML snapshot.
        report_path: Write the JSON diagnostic record here when given.
        detail: "summary" or "full" diagnostic detail.
    """
    from .verifier import VerificationContext, verify_export
    from .reporter import write_diagnostics

    source_text = _read(source_path)
    rendered_markup = _read(rendered_path)
    if source_text is None or rendered_markup is None:
        return EXIT_INPUT
    preview_markup = _read(preview_path) if preview_path else None

    ctx = VerificationContext(cfg)
    result = verify_export(
        source_text,
        rendered_markup,
        preview=preview_markup,
        context=ctx,
        check_engine_config=check_engine_config,
    )
    if result is None:
        return EXIT_INPUT

    if report_path:
        write_diagnostics(ctx, report_path, detail)
    return EXIT_FAIL if result.status == config.STATUS_FAIL else EXIT_OK


def run_with_args(argv: Optional[List[str]] = None) -> int:
    """
    Run verification with command-line arguments.
    This is the CLI entry point.
    """
    import argparse

    parser = argparse.ArgumentParser(
        description="Verify that exported HTML faithfully reproduces its LaTeX source.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python run_export_verifier.py --source doc.tex --rendered doc.html
    python run_export_verifier.py --source doc.tex --rendered doc.html \\
        --preview preview.html --report diagnostics.json --detail full
        """
    )
    parser.add_argument("--source", required=True, help="LaTeX source file")
    parser.add_argument("--rendered", required=True, help="Exported HTML file")
    parser.add_argument("--preview", default=None, help="Live-preview HTML snapshot (optional)")
    parser.add_argument("--report", default=None, help="Write JSON diagnostics to this path")
    parser.add_argument("--detail", choices=["summary", "full"], default="summary",
                        help="Diagnostic detail level (default: summary)")
    parser.add_argument("--max-issues", type=int, default=config.MAX_ISSUES_TO_SHOW,
                        help="Issues listed individually in the console report")
    parser.add_argument("--max-expressions", type=int, default=config.MAX_EXPRESSIONS_TO_STORE,
                        help="Source expressions kept in the inventory")
    parser.add_argument("--skip-engine-config", action="store_true",
                        help="Do not read or check the MathJax configuration")
    parser.add_argument("--ignore-macro", action="append", default=[], metavar="NAME",
                        help="Macro name to exclude from custom macro detection (repeatable)")
    parser.add_argument("--custom-macro", action="append", default=[], metavar="NAME",
                        help="Extra macro name to treat as document-defined (repeatable)")
    parser.add_argument("--quiet", action="store_true", help="Only print the report and problems")

    args = parser.parse_args(argv)
    cfg = config.VerifierConfig(
        max_expressions_to_store=args.max_expressions,
        max_issues_to_show=args.max_issues,
        ignored_macros=frozenset(args.ignore_macro),
        extra_custom_macros=frozenset(args.custom_macro),
        verbose=not args.quiet,
    )
    return run(
        args.source,
        args.rendered,
        preview_path=args.preview,
        report_path=args.report,
        detail=args.detail,
        cfg=cfg,
        check_engine_config=not args.skip_engine_config,
    )


# Export key functions and classes for direct imports
from . import config
from .config import VerifierConfig

from .models import (
    Check,
    ComparisonResult,
    Expression,
    Issue,
    PreviewComparison,
    RenderedInventory,
    SourceInventory,
)

from .utils import (
    normalize_latex,
    fingerprint,
    truncate,
    estimate_line_number,
    wait_for_markup,
)

from .math_protection import (
    extract_and_map_expressions,
    unwrap_delimiters,
)

from .source_inventory import (
    capture_source_inventory,
    extract_source_cross_references,
    label_type,
)

from .rendered_analyzer import (
    analyse_rendered_markup,
    analyse_cross_references,
    check_display_quality,
)

from .preview_capture import (
    capture_preview_state,
)

from .engine_config import (
    EngineConfig,
    EngineConfigReader,
    RegexEngineConfigReader,
    detect_custom_macros,
)

from .comparator import (
    compare_source_to_rendered,
)

from .crossrefs import (
    compare_cross_references,
)

from .attribution import (
    compare_preview_to_export_crossrefs,
    compare_preview_to_export_math,
    enhance_issue_with_location,
    issue_location_label,
    location_guidance,
)

from .reporter import (
    format_console_report,
    print_diagnostic_report,
    build_diagnostic_record,
    generate_llm_context,
    write_diagnostics,
)

from .verifier import (
    VerificationContext,
    verify_export,
    get_verification_status,
    clear_verification,
)


__all__ = [
    # Main entry points
    'run',
    'run_with_args',
    'EXIT_OK',
    'EXIT_FAIL',
    'EXIT_INPUT',
    'verify_export',
    'VerificationContext',
    'get_verification_status',
    'clear_verification',
    # Config
    'config',
    'VerifierConfig',
    # Models
    'Check',
    'ComparisonResult',
    'Expression',
    'Issue',
    'PreviewComparison',
    'RenderedInventory',
    'SourceInventory',
    # Utils
    'normalize_latex',
    'fingerprint',
    'truncate',
    'estimate_line_number',
    'wait_for_markup',
    # Math
    'extract_and_map_expressions',
    'unwrap_delimiters',
    # Source
    'capture_source_inventory',
    'extract_source_cross_references',
    'label_type',
    # Rendered / preview
    'analyse_rendered_markup',
    'analyse_cross_references',
    'check_display_quality',
    'capture_preview_state',
    # Engine config
    'EngineConfig',
    'EngineConfigReader',
    'RegexEngineConfigReader',
    'detect_custom_macros',
    # Comparison
    'compare_source_to_rendered',
    'compare_cross_references',
    'compare_preview_to_export_crossrefs',
    'compare_preview_to_export_math',
    'enhance_issue_with_location',
    'issue_location_label',
    'location_guidance',
    # Reporting
    'format_console_report',
    'print_diagnostic_report',
    'build_diagnostic_record',
    'generate_llm_context',
    'write_diagnostics',
]
