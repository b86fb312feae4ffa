#!/usr/bin/env python3
"""
Source vs rendered comparison.
Runs the math fidelity checks and turns every finding into an Issue; checks
that find nothing wrong are recorded as passed.
"""
import math
import re
from typing import Optional

from . import config
from .engine_config import EngineConfig, detect_custom_macros
from .models import (
    Check,
    ComparisonResult,
    ContentMismatchDetails,
    CorruptedDelimiterDetails,
    CountDetails,
    DuplicateHashDetails,
    EngineConfigDetails,
    EnvironmentFailureDetails,
    HashCollision,
    Issue,
    MissingExpressionDetails,
    MissingIdsDetails,
    MissingMacrosDetails,
    OverflowDetails,
    PositionSample,
    RenderedInventory,
    SequenceDetails,
    SourceInventory,
    TypeMismatchDetails,
    UnrenderedDetails,
)
from .utils import compact, log, log_error, normalize_latex, truncate

TAG = "verify:compare"

CAUSE_CUSTOM_MACRO = "Custom macro may not be defined in the MathJax configuration"
CAUSE_ENVIRONMENT = "Environment may require additional MathJax packages"
CAUSE_PACKAGE = "Requires the ams or mathtools package in MathJax"
CAUSE_UNKNOWN = "Expression may not have been processed by MathJax"


class IssueCollector:
    """Accumulates issues and passed checks with sequential ids."""

    def __init__(self, result: ComparisonResult):
        self.result = result

    def issue(self, issue_type: str, severity: str, message: str, **kwargs) -> Issue:
        issue = Issue(
            id=len(self.result.issues) + 1,
            type=issue_type,
            severity=severity,
            message=message,
            **kwargs,
        )
        self.result.issues.append(issue)
        return issue

    def passed(self, check: str, message: str) -> None:
        self.result.passed_checks.append(Check(check, message))


def _display_norm(kind: str) -> str:
    return "display" if kind == "environment" else kind


# ==============================================================================
# Cause / fix heuristics
# ==============================================================================

def determine_likely_cause(content: str) -> str:
    if re.search(r'\\[A-Z][a-z]*(?![a-zA-Z])', content or ""):
        return CAUSE_CUSTOM_MACRO
    if re.search(r'\\begin\{', content or ""):
        return CAUSE_ENVIRONMENT
    if re.search(r'\\mathbb|\\mathcal', content or ""):
        return CAUSE_PACKAGE
    return CAUSE_UNKNOWN


def suggest_fix(issue_type: str, pattern: str = "") -> str:
    if issue_type == "unrendered":
        if pattern == "$":
            return "Check that single-dollar delimiters are enabled in MathJax config (inlineMath: [['$', '$']])"
        return "Verify MathJax is initialised and the expression is syntactically correct"
    if issue_type == "missing":
        return "Expression may be embedded in another structure - check the exported HTML source"
    if issue_type == "corrupted_delimiters":
        return "Review escaping in the export pipeline - delimiters may be double-escaped"
    if issue_type == "environment_failure":
        return "Ensure the ams package is loaded in the MathJax configuration"
    return "Review the export pipeline configuration"


# ==============================================================================
# Checks
# ==============================================================================

def check_count_parity(out: IssueCollector, source: SourceInventory, rendered: RenderedInventory) -> None:
    source_count = source.statistics.get('total', len(source.expressions))
    rendered_count = len(rendered.expressions)
    ratio = rendered_count / source_count if source_count else 1.0

    if ratio >= config.COUNT_PASS_RATIO:
        out.passed("expression_count",
                   f"Expression count: {rendered_count}/{source_count} ({round(ratio * 100)}%)")
        return

    out.issue(
        "count_mismatch",
        config.SEVERITY_ERROR if ratio < config.COUNT_ERROR_RATIO else config.SEVERITY_WARNING,
        f"Expression count mismatch: found {rendered_count} math elements "
        f"for {source_count} source expressions",
        details=CountDetails(
            source_count=source_count,
            rendered_count=rendered_count,
            ratio=ratio,
            element_count=rendered.element_count,
            container_count=rendered.container_count,
        ),
    )


def check_sequence(out: IssueCollector, source: SourceInventory, rendered: RenderedInventory) -> None:
    if not source.expressions or not rendered.expressions:
        return

    compared = min(len(source.expressions), len(rendered.expressions))
    mismatches = []
    for i in range(compared):
        src, ren = source.expressions[i], rendered.expressions[i]
        if src.normalized_hash != ren.normalized_hash:
            mismatches.append(PositionSample(
                position=i + 1,
                source_preview=src.preview,
                rendered_preview=ren.preview,
            ))

    if not mismatches:
        out.passed("sequence_order", "Expression sequence matches source order")
        return

    if len(mismatches) <= config.SEQUENCE_SMALL_MISMATCH:
        message = f"{len(mismatches)} expression(s) may be in different order"
    else:
        message = f"Expression order may differ from source ({len(mismatches)} mismatches)"
    out.issue(
        "sequence_mismatch",
        config.SEVERITY_WARNING,
        message,
        details=SequenceDetails(
            mismatch_count=len(mismatches),
            compared=compared,
            samples=mismatches[:config.MAX_DETAIL_SAMPLES],
        ),
    )


def check_duplicate_hashes(out: IssueCollector, source: SourceInventory) -> None:
    duplicates = source.statistics.get('duplicate_hashes') or []
    if not duplicates:
        return
    total = sum(d['count'] for d in duplicates)
    out.issue(
        "duplicate_hashes",
        config.SEVERITY_INFO,
        f"{len(duplicates)} expression fingerprint(s) shared by several expressions "
        f"({total} total) - verification precision may be reduced",
        details=DuplicateHashDetails(collisions=[
            HashCollision(hash=d['hash'], count=d['count'], indices=list(d['indices']))
            for d in duplicates[:config.MAX_DETAIL_SAMPLES]
        ]),
    )


def check_structural_ids(out: IssueCollector, rendered: RenderedInventory) -> None:
    total = len(rendered.expressions)
    if total == 0:
        return
    missing = sum(1 for e in rendered.expressions if not e.has_structural_id)
    ratio = missing / total

    if missing == 0:
        out.passed("anchor_ids", f"All {total} math elements have parent IDs for accessibility")
    elif ratio < config.MISSING_IDS_ERROR_RATIO:
        out.issue(
            "missing_ids",
            config.SEVERITY_WARNING,
            f"{missing} math element(s) missing data-math-parent-id",
            details=MissingIdsDetails(missing=missing, total=total, ratio=ratio),
        )
    else:
        out.issue(
            "missing_ids",
            config.SEVERITY_ERROR,
            f"{missing}/{total} math elements missing accessibility IDs",
            details=MissingIdsDetails(missing=missing, total=total, ratio=ratio),
        )


def check_type_parity(out: IssueCollector, source: SourceInventory, rendered: RenderedInventory) -> None:
    # Positional comparison only means something when nothing was dropped.
    if len(source.expressions) != len(rendered.expressions) or not source.expressions:
        return

    mismatches = []
    for i, (src, ren) in enumerate(zip(source.expressions, rendered.expressions)):
        if _display_norm(src.kind) != _display_norm(ren.kind):
            mismatches.append(PositionSample(
                position=i + 1,
                source_preview=src.preview,
                rendered_preview=ren.preview,
                source_type=src.kind,
                rendered_type=ren.kind,
            ))

    if not mismatches:
        out.passed("type_consistency", "All expressions keep their display mode (inline/display)")
        return
    out.issue(
        "type_mismatch",
        config.SEVERITY_WARNING,
        f"{len(mismatches)} expression(s) changed display mode",
        details=TypeMismatchDetails(
            mismatch_count=len(mismatches),
            samples=mismatches[:config.MAX_DETAIL_SAMPLES],
        ),
    )


def check_content_fidelity(out: IssueCollector, source: SourceInventory, rendered: RenderedInventory) -> None:
    n = len(source.expressions)
    if n == 0 or not rendered.expressions:
        return

    sample_size = min(config.CONTENT_SAMPLE_SIZE, n)
    indices = sorted({math.floor(i * n / sample_size) for i in range(sample_size)})
    matches = 0
    mismatches = []

    for idx in indices:
        if idx >= len(rendered.expressions):
            continue
        src = normalize_latex(source.expressions[idx].raw_text)
        ren = normalize_latex(rendered.expressions[idx].raw_text)
        if src == ren or compact(src) == compact(ren):
            matches += 1
        else:
            mismatches.append(PositionSample(
                position=idx + 1,
                source_preview=truncate(source.expressions[idx].raw_text, config.LINK_TEXT_PREVIEW_LENGTH),
                rendered_preview=truncate(rendered.expressions[idx].raw_text, config.LINK_TEXT_PREVIEW_LENGTH),
            ))

    if not mismatches:
        out.passed("content_fidelity",
                   f"Content fidelity: {matches}/{sample_size} sampled expressions match")
        return
    out.issue(
        "content_mismatch",
        config.SEVERITY_WARNING,
        f"{len(mismatches)}/{sample_size} sampled expressions have content differences",
        details=ContentMismatchDetails(
            sample_size=sample_size,
            mismatch_count=len(mismatches),
            samples=mismatches,
        ),
    )


def check_engine_config(
    out: IssueCollector,
    source: SourceInventory,
    engine: EngineConfig,
    cfg: config.VerifierConfig,
) -> None:
    """Configuration sanity: delimiters, packages, custom macros and accessibility."""
    found_before = len(out.result.issues)

    inline = [list(d) for d in engine.inline_delimiters]
    display = [list(d) for d in engine.display_delimiters]
    if tuple(config.REQUIRED_INLINE_DELIMITER) not in engine.inline_delimiters:
        out.issue("missing_delimiter", config.SEVERITY_ERROR,
                  "Missing \\(...\\) inline delimiter in MathJax configuration",
                  details=EngineConfigDetails("inlineMath", list(config.REQUIRED_INLINE_DELIMITER),
                                              [''.join(d) for d in inline]))
    if tuple(config.REQUIRED_DISPLAY_DELIMITER) not in engine.display_delimiters:
        out.issue("missing_delimiter", config.SEVERITY_ERROR,
                  "Missing \\[...\\] display delimiter in MathJax configuration",
                  details=EngineConfigDetails("displayMath", list(config.REQUIRED_DISPLAY_DELIMITER),
                                              [''.join(d) for d in display]))

    for pkg in config.RECOMMENDED_PACKAGES:
        if pkg not in engine.packages:
            out.issue("missing_package", config.SEVERITY_WARNING,
                      f"Package '{pkg}' not loaded - some symbols may not render",
                      details=EngineConfigDetails("packages", [pkg], list(engine.packages)))

    for module in config.ESSENTIAL_A11Y_MODULES:
        if module not in engine.a11y_modules:
            out.issue("missing_a11y_module", config.SEVERITY_WARNING,
                      f"Essential accessibility module '{module}' not loaded - "
                      f"screen reader support may be limited",
                      details=EngineConfigDetails("loader.load", [f"a11y/{module}"], list(engine.a11y_modules)))
    for module in config.RECOMMENDED_A11Y_MODULES:
        if module not in engine.a11y_modules:
            out.issue("missing_a11y_module", config.SEVERITY_INFO,
                      f"Recommended accessibility module '{module}' not loaded",
                      details=EngineConfigDetails("loader.load", [f"a11y/{module}"], list(engine.a11y_modules)))
    if engine.assistive_mml is False:
        out.issue("a11y_disabled", config.SEVERITY_WARNING,
                  "assistiveMml is disabled - MathML fallback for screen readers won't be available",
                  details=EngineConfigDetails("a11y.assistiveMml", ["true"], ["false"]))

    if len(out.result.issues) == found_before:
        out.passed("mathjax_config",
                   f"MathJax configured with {len(engine.packages)} packages, {len(engine.macros)} macros")

    detected = detect_custom_macros(source.expressions, cfg)
    missing = [name for name in detected if name not in engine.macros]
    if missing:
        out.issue(
            "missing_macros",
            config.SEVERITY_WARNING,
            f"Custom macro(s) may not be defined: {', '.join(missing)}",
            details=MissingMacrosDetails(
                detected=detected,
                missing=missing,
                defined=sorted(engine.macros),
            ),
        )
    elif detected:
        out.passed("custom_macros", f"All {len(detected)} detected custom macro(s) defined in MathJax")

    if all(m in engine.a11y_modules for m in config.ESSENTIAL_A11Y_MODULES):
        out.passed("a11y_modules",
                   f"Accessibility: {len(engine.a11y_modules)} module(s) loaded "
                   f"({', '.join(engine.a11y_modules)})")


def check_unrendered(out: IssueCollector, source: SourceInventory, rendered: RenderedInventory) -> None:
    if not rendered.unrendered:
        out.passed("no_unrendered", "No unrendered LaTeX detected")
        return

    by_hash = {}
    for expr in source.expressions:
        by_hash.setdefault(expr.normalized_hash, expr)

    for finding in rendered.unrendered:
        match = by_hash.get(finding.normalized_hash)
        content = match.raw_text if match is not None else finding.content
        out.issue(
            "unrendered",
            config.SEVERITY_WARNING,
            f"Unrendered LaTeX in export: {finding.pattern}{finding.preview}{finding.pattern}",
            details=UnrenderedDetails(
                pattern=finding.pattern,
                content=finding.content,
                position=finding.position,
            ),
            source_index=match.index if match is not None else None,
            source_preview=match.preview if match is not None else finding.preview,
            approximate_line=match.approximate_line if match is not None else None,
            likely_cause=determine_likely_cause(content),
            suggested_fix=suggest_fix("unrendered", finding.pattern),
        )


def check_missing(
    out: IssueCollector,
    source: SourceInventory,
    rendered: RenderedInventory,
    cfg: config.VerifierConfig,
) -> None:
    rendered_hashes = {e.normalized_hash for e in rendered.expressions}
    unrendered_hashes = {u.normalized_hash for u in rendered.unrendered}

    missing = [
        expr for expr in source.expressions
        if expr.normalized_hash not in rendered_hashes and expr.normalized_hash not in unrendered_hashes
    ]
    if not missing:
        out.passed("no_missing", "All source expressions found in export")
        return

    for expr in missing[:cfg.max_issues_to_show]:
        out.issue(
            "missing",
            config.SEVERITY_WARNING,
            f"Source expression not found in export: {expr.preview}",
            details=MissingExpressionDetails(kind=expr.kind, pattern=expr.pattern,
                                             normalized_hash=expr.normalized_hash),
            source_index=expr.index,
            source_preview=expr.preview,
            approximate_line=expr.approximate_line,
            likely_cause="Expression may have been modified during processing or merged into another structure",
            suggested_fix=suggest_fix("missing"),
        )

    overflow = len(missing) - cfg.max_issues_to_show
    if overflow > 0:
        out.issue(
            "missing_summary",
            config.SEVERITY_INFO,
            f"+{overflow} more missing expressions (see diagnostic file for full list)",
            details=OverflowDetails(shown=cfg.max_issues_to_show, remaining=overflow),
        )


def check_corrupted(out: IssueCollector, rendered: RenderedInventory) -> None:
    if not rendered.corrupted:
        out.passed("delimiter_integrity", "Delimiter integrity: OK")
        return
    out.issue(
        "corrupted_delimiters",
        config.SEVERITY_ERROR,
        f"Found {len(rendered.corrupted)} corrupted delimiter(s)",
        details=CorruptedDelimiterDetails(
            count=len(rendered.corrupted),
            occurrences=list(rendered.corrupted[:config.MAX_DETAIL_SAMPLES]),
        ),
        suggested_fix=suggest_fix("corrupted_delimiters"),
    )


def check_environment_failures(out: IssueCollector, rendered: RenderedInventory) -> None:
    for failure in rendered.environment_failures:
        out.issue(
            "environment_failure",
            config.SEVERITY_ERROR,
            f"Environment \\begin{{{failure.environment}}} appears unprocessed",
            details=EnvironmentFailureDetails(
                environment=failure.environment,
                position=failure.position,
                preview=truncate(failure.full_match),
            ),
            likely_cause="MathJax may not have the required package loaded for this environment",
            suggested_fix=suggest_fix("environment_failure"),
        )


# ==============================================================================
# Entry point
# ==============================================================================

def compare_source_to_rendered(
    source: SourceInventory,
    rendered: RenderedInventory,
    engine: Optional[EngineConfig] = None,
    cfg: Optional[config.VerifierConfig] = None,
) -> Optional[ComparisonResult]:
    """
    Compare the source inventory against the rendered inventory.

    Configuration checks only run when an EngineConfig was found. Returns
    None when either inventory is missing.
    """
    cfg = cfg or config.VerifierConfig()
    if source is None or rendered is None:
        log_error(TAG, "Missing source inventory or rendered analysis for comparison")
        return None

    try:
        result = ComparisonResult(
            source_expression_count=source.statistics.get('total', len(source.expressions)),
            rendered_expression_count=len(rendered.expressions),
        )
        out = IssueCollector(result)

        # 1. Structure
        check_count_parity(out, source, rendered)
        check_sequence(out, source, rendered)
        check_duplicate_hashes(out, source)
        check_structural_ids(out, rendered)
        check_type_parity(out, source, rendered)
        check_content_fidelity(out, source, rendered)

        # 2. Engine configuration
        if engine is not None:
            check_engine_config(out, source, engine, cfg)

        # 3. Failure signatures
        check_unrendered(out, source, rendered)
        check_missing(out, source, rendered, cfg)
        check_corrupted(out, rendered)
        check_environment_failures(out, rendered)

        summary = result.summary
        log(TAG, f"Comparison complete: {result.status.upper()} "
                 f"({summary['errors']} errors, {summary['warnings']} warnings)", cfg)
        return result

    except Exception as e:
        log_error(TAG, f"Comparison failed: {e}")
        return None
