#!/usr/bin/env python3
"""
Diagnostic reporting.
Console report, JSON diagnostic record and the Markdown synopsis meant to be
pasted into an issue or handed to an assistant.
"""
import json
from dataclasses import asdict
from pathlib import Path
from typing import List, Optional, Union

from . import __version__, config
from .attribution import LOCATION_LABELS
from .models import ComparisonResult
from .utils import log, log_error, log_warn

TAG = "verify:report"

DETAIL_SUMMARY = "summary"
DETAIL_FULL = "full"

RULE = "=" * 70
THIN_RULE = "-" * 70

SEVERITY_MARKERS = {
    config.SEVERITY_ERROR: "[ERROR]",
    config.SEVERITY_WARNING: "[WARN]",
    config.SEVERITY_INFO: "[INFO]",
}
STATUS_MARKERS = {
    config.STATUS_PASS: "[OK]",
    config.STATUS_WARN: "[WARN]",
    config.STATUS_FAIL: "[FAIL]",
}

# Issue type groups used in the synopsis breakdown
LLM_CATEGORIES = [
    (("unrendered",), "unrendered expression(s)"),
    (("missing",), "missing expression(s)"),
    (("corrupted_delimiters",), "corrupted delimiter report(s)"),
    (("environment_failure",), "environment failure(s)"),
    (("missing_a11y_module", "a11y_disabled"), "accessibility issue(s)"),
    (("missing_macros",), "undefined custom macro report(s)"),
    (("content_mismatch",), "content mismatch report(s)"),
    (("count_mismatch", "sequence_mismatch", "type_mismatch"), "structural mismatch(es)"),
    (("crossref_orphan_refs", "crossref_orphan_nav", "crossref_display_quality",
      "crossref_count_mismatch", "crossref_footnote_backlinks"), "cross-reference issue(s)"),
]

SUGGESTED_INVESTIGATION = [
    "Check the MathJax configuration for required packages",
    "Verify custom macros are defined in the exported MathJax config",
    "Review delimiter escaping in the export pipeline",
    "Compare label IDs in the source with anchor IDs in the export",
]


def _ok(flag: bool) -> str:
    return "[OK]" if flag else "[WARN]"


# ==============================================================================
# Console report
# ==============================================================================

def _source_section(lines: List[str], ctx) -> None:
    lines.append("\nSOURCE INVENTORY:")
    inventory = ctx.source_inventory
    if inventory is None:
        lines.append("   [WARN] No source inventory captured")
        return
    stats = inventory.statistics
    lines.append(f"   Total expressions: {stats['total']} ({inventory.size_category})")
    if stats['truncated']:
        lines.append(f"   Stored: {stats['stored']} (capped)")
    lines.append(f"   |-- Inline ($...$): {stats['by_type']['inline']}")
    lines.append(f"   |-- Display ($$...$$ or \\[...\\]): {stats['by_type']['display']}")
    lines.append(f"   `-- Environments: {stats['by_type']['environment']}")
    if stats['by_pattern']:
        lines.append("   Pattern breakdown:")
        for pattern, count in stats['by_pattern'].items():
            lines.append(f"      {pattern}: {count}")


def _rendered_section(lines: List[str], ctx) -> None:
    lines.append("\nEXPORT ANALYSIS:")
    rendered = ctx.rendered_inventory
    if rendered is None:
        lines.append("   [WARN] No export analysis available")
        return
    summary = rendered.summary
    lines.append(f"   Math elements found: {summary['total_expressions']}")
    if summary['math_elements']:
        lines.append(f"   |-- Math spans: {summary['math_elements']}")
    if summary['typeset_containers']:
        lines.append(f"   |-- Typeset containers: {summary['typeset_containers']}")
    lines.append(f"   Unrendered LaTeX found: {summary['unrendered_count']} {_ok(summary['unrendered_count'] == 0)}")
    if summary['corrupted_count']:
        lines.append(f"   Corrupted delimiters: {summary['corrupted_count']} [ERROR]")
    if summary['environment_failure_count']:
        lines.append(f"   Environment failures: {summary['environment_failure_count']} [ERROR]")


def _flag_text(value) -> str:
    return "not set" if value is None else str(value).lower()


def _engine_section(lines: List[str], ctx) -> None:
    engine = ctx.engine_config
    if engine is None:
        return
    lines.append("\nMATHJAX CONFIGURATION:")
    lines.append(f"   |-- Packages: {', '.join(engine.packages) or 'none'}")
    lines.append(f"   |-- Custom macros: {len(engine.macros)}")
    if engine.macros:
        names = sorted(engine.macros)
        more = "..." if len(names) > 5 else ""
        lines.append(f"   |   ({', '.join(names[:5])}{more})")
    lines.append(f"   |-- Tags: {engine.tags or 'not set'}")
    lines.append(f"   |-- processEscapes: {_flag_text(engine.process_escapes)}")
    lines.append(f"   |-- processEnvironments: {_flag_text(engine.process_environments)}")
    delimiters = [a + "..." + b for a, b in engine.inline_delimiters + engine.display_delimiters]
    lines.append(f"   |-- Delimiters: {', '.join(delimiters) or 'none'}")
    lines.append("   `-- Accessibility:")
    lines.append(f"       |-- Modules: {', '.join(engine.a11y_modules) or '[WARN] none loaded'}")
    assistive = "not set" if engine.assistive_mml is None else str(engine.assistive_mml).lower()
    lines.append(f"       |-- AssistiveMML: {_ok(engine.assistive_mml is True)} {assistive}")
    if engine.speech_rules:
        lines.append(f"       `-- Speech rules: {engine.speech_rules}")


def _crossref_section(lines: List[str], ctx, result: ComparisonResult) -> None:
    source = ctx.source_inventory.cross_refs if ctx.source_inventory else None
    rendered = ctx.rendered_inventory.cross_refs if ctx.rendered_inventory else None
    if result.cross_references is None and rendered is None:
        return
    lines.append("\nCROSS-REFERENCES:")
    if source is not None:
        stats = source.statistics
        lines.append(f"   Source: {stats['total_labels']} labels, {stats['total_references']} references")
        if stats['by_label_type']:
            lines.append("   Label types:")
            for label_type, count in stats['by_label_type'].items():
                lines.append(f"      {label_type}: {count}")
    if rendered is not None:
        stats = rendered.statistics
        lines.append(f"   Export: {stats['total_anchors']} anchors")
        lines.append(f"   |-- User refs (\\ref{{}}): {stats['total_user_refs']}")
        lines.append(f"   |-- Navigation links: {stats['total_nav_links']}")
        if stats['total_footnotes']:
            lines.append(f"   `-- Footnotes: {stats['total_footnotes']}")
    display_issues = result.issues_of("crossref_display_quality")
    if display_issues:
        lines.append(f"   [WARN] Display quality issues: {len(display_issues)}")


def _location_lines(lines: List[str], summary: dict, always: bool) -> None:
    rows = [
        ("Export only", summary['export_only_count'], "[WARN]"),
        ("Both (preview & export)", summary['both_count'], "[ERROR]"),
        ("Preview only", summary['preview_only_count'], "[WARN]"),
    ]
    for label, count, marker in rows:
        if count:
            lines.append(f"       |-- {label}: {count} {marker}")
        elif always:
            lines.append(f"       |-- {label}: 0 [OK]")


def _preview_section(lines: List[str], ctx) -> None:
    comparison = ctx.preview_comparison
    lines.append("\nPREVIEW VS EXPORT:")
    if comparison is None or not comparison.available:
        lines.append("   [WARN] Preview not captured. Supply preview markup to attribute issues by stage.")
        return
    stats = comparison.statistics
    lines.append(f"   |-- Cross-refs in preview: {stats['preview']['user_refs']} user refs, "
                 f"{stats['preview']['anchors']} anchors")
    lines.append(f"   |-- Cross-refs in export: {stats['export']['user_refs']} user refs, "
                 f"{stats['export']['anchors']} anchors")
    lines.append("   `-- Issues by location:")
    _location_lines(lines, comparison.summary, always=True)

    math = ctx.math_comparison
    if math is None or not math.available:
        return
    ps, es = math.statistics['preview'], math.statistics['export']
    lines.append("\nMATH PREVIEW VS EXPORT:")
    lines.append(f"   |-- Preview: {ps['total']} expressions ({ps['inline']} inline, {ps['display']} display)")
    lines.append(f"   |-- Export: {es['total']} expressions ({es['inline']} inline, {es['display']} display)")
    lines.append(f"   |-- Parent IDs: preview {ps['with_parent_ids']}/{ps['total']}, "
                 f"export {es['with_parent_ids']}/{es['total']}")
    sampling = math.details.get('content_sampling')
    if sampling:
        percent = round(sampling['match_ratio'] * 100)
        lines.append(f"   `-- Content match (sample): {percent}% {_ok(percent >= 90)}")
    if math.summary['total_issue_types']:
        lines.append("   Math issues by location:")
        _location_lines(lines, math.summary, always=False)


def _issues_section(lines: List[str], result: ComparisonResult, max_issues: int) -> None:
    if not result.issues:
        return
    total = len(result.issues)
    shown = min(total, max_issues)
    lines.append(f"\nISSUES DETECTED (showing {shown} of {total}):\n")
    for issue in result.issues[:max_issues]:
        lines.append(f"   [{issue.id}] {SEVERITY_MARKERS[issue.severity]} {issue.type.upper()}")
        lines.append(f"       {issue.message}")
        if issue.approximate_line:
            lines.append(f"       Line ~{issue.approximate_line}")
        if issue.source_preview:
            lines.append(f"       Source: {issue.source_preview}")
        if issue.likely_cause:
            lines.append(f"       Likely cause: {issue.likely_cause}")
        if issue.issue_location:
            lines.append(f"       Location: {LOCATION_LABELS.get(issue.issue_location, issue.issue_location)}")
        if issue.location_guidance:
            lines.append(f"       Fix: {issue.location_guidance}")
        elif issue.suggested_fix:
            lines.append(f"       Fix: {issue.suggested_fix}")
        lines.append("")
    if total > max_issues:
        lines.append(f"   [+{total - max_issues} more - write the diagnostic file for the full list]\n")


def format_console_report(ctx) -> str:
    """Render the latest run held by the context as console text."""
    result = ctx.last_result
    lines = ["", RULE, "LATEX EXPORT VERIFICATION REPORT", RULE]

    _source_section(lines, ctx)
    _rendered_section(lines, ctx)
    _engine_section(lines, ctx)
    if result is not None:
        _crossref_section(lines, ctx, result)
    _preview_section(lines, ctx)

    if result is not None:
        _issues_section(lines, result, ctx.config.max_issues_to_show)
        if result.passed_checks:
            lines.append("PASSED CHECKS:")
            for check in result.passed_checks:
                lines.append(f"   |-- {check.message}")
        lines.append("")
        lines.append(THIN_RULE)
        lines.append(f"{STATUS_MARKERS[result.status]} VERIFICATION STATUS: {result.status.upper()}")
        lines.append(THIN_RULE)

    lines.append(RULE)
    return "\n".join(lines) + "\n"


def print_diagnostic_report(ctx) -> None:
    try:
        print(format_console_report(ctx))
    except Exception as e:
        log_error(TAG, f"Could not print diagnostic report: {e}")


# ==============================================================================
# Diagnostic record
# ==============================================================================

def _preview_block(ctx, detail: str) -> dict:
    preview = ctx.preview_inventory
    if preview is None or not preview.captured:
        return {
            'captured': False,
            'note': "Preview not captured. Supply preview markup for stage attribution.",
        }

    full = detail == DETAIL_FULL
    stats = preview.cross_refs.statistics
    block = {
        'captured': True,
        'capture_timestamp': preview.timestamp,
        'preview': {
            'cross_refs': {
                'user_refs': stats['total_user_refs'],
                'nav_links': stats['total_nav_links'],
                'anchors': stats['total_anchors'],
                'footnotes': stats['total_footnotes'],
            },
            'math': {
                'total': len(preview.expressions),
                'inline': sum(1 for e in preview.expressions if e.kind == 'inline'),
                'display': sum(1 for e in preview.expressions if e.is_display),
                'with_parent_ids': sum(1 for e in preview.expressions if e.has_structural_id),
            },
        },
    }
    if ctx.preview_comparison is not None and ctx.preview_comparison.available:
        block['cross_ref_comparison'] = ctx.preview_comparison.to_dict(include_details=full)
    if ctx.math_comparison is not None and ctx.math_comparison.available:
        block['math_comparison'] = ctx.math_comparison.to_dict(include_details=full)
    return block


def build_diagnostic_record(ctx, detail: str = DETAIL_SUMMARY) -> Optional[dict]:
    """
    Assemble the JSON-serialisable diagnostic record for the latest run.

    `detail` is "summary" (first expressions only) or "full" (all
    expressions and comparison details). Returns None without a result.
    """
    result = ctx.last_result
    if result is None:
        log_warn(TAG, "No verification results available. Run verify_export() first.")
        return None
    if detail not in (DETAIL_SUMMARY, DETAIL_FULL):
        log_warn(TAG, f"Unknown detail level '{detail}', using '{DETAIL_SUMMARY}'")
        detail = DETAIL_SUMMARY

    record = {
        'meta': {
            'timestamp': result.timestamp,
            'version': __version__,
            'detail_level': detail,
            'generated_by': config.GENERATED_BY,
            'timing': dict(result.timing),
        },
        'summary': result.summary,
        'issues': [issue.to_dict() for issue in result.issues],
        'passed_checks': [asdict(check) for check in result.passed_checks],
        'cross_references': result.cross_references,
    }

    inventory = ctx.source_inventory
    if inventory is not None:
        stats = inventory.statistics
        record['source_inventory_summary'] = {
            'total': stats['total'],
            'by_type': stats['by_type'],
            'by_pattern': stats['by_pattern'],
            'size_category': inventory.size_category,
        }
        if detail == DETAIL_FULL:
            record['source_expressions'] = [asdict(e) for e in inventory.expressions]
        else:
            record['expression_samples'] = [
                asdict(e) for e in inventory.expressions[:config.SUMMARY_EXPRESSION_SAMPLES]
            ]

    record['preview_comparison'] = _preview_block(ctx, detail)
    record['llm_context'] = generate_llm_context(record)
    return record


def generate_llm_context(record: dict) -> str:
    """Markdown synopsis of a diagnostic record."""
    summary = record['summary']
    issues = record.get('issues') or []
    by_type = summary.get('issues_by_type') or {}
    out = ["## LaTeX Export Issue Summary", ""]

    stats = record.get('source_inventory_summary')
    if stats:
        t = stats['by_type']
        out.append(f"Document has {stats['total']} LaTeX expressions "
                   f"({t['inline']} inline, {t['display']} display, {t['environment']} environments).")
        out.append("")

    status = summary['status']
    if status == config.STATUS_PASS and not issues:
        out.append("**Status: PASS** - All expressions verified successfully.")
    else:
        out.append(f"**Status: {status.upper()}** - Issues detected:")
        out.append("")
        for types, label in LLM_CATEGORIES:
            count = sum(by_type.get(t, 0) for t in types)
            if count:
                out.append(f"- {count} {label}")

        out.append("")
        out.append("### Issue Details")
        out.append("")
        for n, issue in enumerate(issues[:config.MAX_LLM_ISSUES], start=1):
            head = f"{n}. **{issue['type']}**"
            if issue.get('approximate_line'):
                head += f" (line ~{issue['approximate_line']})"
            if issue.get('issue_location'):
                head += f" [{issue['issue_location']}]"
            out.append(head)
            out.append(f"   - {issue['message']}")
            if issue.get('source_preview'):
                out.append(f"   - Expression: `{issue['source_preview']}`")
            if issue.get('likely_cause'):
                out.append(f"   - Likely cause: {issue['likely_cause']}")
            if issue.get('location_guidance'):
                out.append(f"   - Location guidance: {issue['location_guidance']}")
            if issue.get('suggested_fix'):
                out.append(f"   - Suggested fix: {issue['suggested_fix']}")
            out.append("")
        if len(issues) > config.MAX_LLM_ISSUES:
            out.append(f"*...and {len(issues) - config.MAX_LLM_ISSUES} more issues*")

    out.append("")
    out.append("## Suggested Investigation")
    out.append("")
    for item in SUGGESTED_INVESTIGATION:
        out.append(f"- {item}")
    return "\n".join(out) + "\n"


def write_diagnostics(ctx, path: Union[str, Path], detail: str = DETAIL_SUMMARY) -> Optional[Path]:
    """Write the diagnostic record as indented JSON. Returns the path written."""
    try:
        record = build_diagnostic_record(ctx, detail)
        if record is None:
            return None
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(record, indent=2, ensure_ascii=False), encoding='utf-8')
        log(TAG, f"Diagnostic file written to {path} ({record['meta']['detail_level']} mode)", ctx.config)
        return path
    except Exception as e:
        log_error(TAG, f"Could not write diagnostic file: {e}")
        return None
