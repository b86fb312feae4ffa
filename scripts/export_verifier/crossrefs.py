#!/usr/bin/env python3
"""
Cross-reference comparison.
Checks that every \\ref{} in the export resolves to an anchor, displays a
number rather than a raw label, and that labels, anchors and footnote
back-links line up.
"""
from typing import Optional

from . import config
from .comparator import IssueCollector
from .models import (
    AnchorCountDetails,
    AnchorSample,
    ComparisonResult,
    CrossReferenceAnalysis,
    FootnoteDetails,
    LinkIssueDetails,
    LinkSample,
    OrphanAnchorDetails,
    SourceCrossReferences,
)
from .utils import log, log_error, log_warn

TAG = "verify:crossref"

NAV_ID_NOTE = "Navigation links use a different ID format than heading IDs"


def _sample(link, suggestion: Optional[str] = None) -> LinkSample:
    return LinkSample(
        target_id=link.target_id,
        display_text=link.display_text,
        label_type=link.label_type,
        ref_target=link.ref_target,
        suggestion=suggestion,
    )


def compare_cross_references(
    source_refs: Optional[SourceCrossReferences],
    rendered_refs: Optional[CrossReferenceAnalysis],
    cfg: Optional[config.VerifierConfig] = None,
) -> Optional[ComparisonResult]:
    """
    Compare source labels/references with the links and anchors of the export.

    Returns a ComparisonResult holding only cross-reference issues and checks
    (its cross_references field carries the count summary), or None when
    either side is missing.
    """
    cfg = cfg or config.VerifierConfig()
    if source_refs is None or rendered_refs is None:
        log_warn(TAG, "Missing source or rendered cross-references for comparison")
        return None

    try:
        result = ComparisonResult(cross_references={
            'source_labels': len(source_refs.labels),
            'source_references': len(source_refs.references),
            'rendered_links': len(rendered_refs.user_refs) + len(rendered_refs.nav_links),
            'rendered_user_refs': len(rendered_refs.user_refs),
            'rendered_nav_links': len(rendered_refs.nav_links),
            'rendered_anchors': len(rendered_refs.anchors),
        })
        out = IssueCollector(result)
        anchor_ids = rendered_refs.anchor_ids

        # 1. Links pointing at anchors that do not exist
        orphan_refs = [l for l in rendered_refs.user_refs if l.target_id not in anchor_ids]
        orphan_nav = [l for l in rendered_refs.nav_links if l.target_id not in anchor_ids]

        if not orphan_refs:
            out.passed("crossref_user_refs_valid",
                       f"All {len(rendered_refs.user_refs)} user cross-references (from \\ref{{}}) have valid targets")
        else:
            out.issue(
                "crossref_orphan_refs",
                config.SEVERITY_ERROR,
                f"{len(orphan_refs)} cross-reference(s) from \\ref{{}} point to non-existent anchors",
                details=LinkIssueDetails(
                    count=len(orphan_refs),
                    links=[_sample(l) for l in orphan_refs[:config.MAX_DETAIL_SAMPLES]],
                ),
            )

        if not orphan_nav:
            if rendered_refs.nav_links:
                out.passed("crossref_nav_links_valid",
                           f"All {len(rendered_refs.nav_links)} navigation links have valid targets")
        else:
            out.issue(
                "crossref_orphan_nav",
                config.SEVERITY_WARNING,
                f"{len(orphan_nav)} navigation link(s) (ToC/sidebar) point to non-existent anchors",
                details=LinkIssueDetails(
                    count=len(orphan_nav),
                    links=[_sample(l) for l in orphan_nav[:config.MAX_DETAIL_SAMPLES]],
                    note=NAV_ID_NOTE,
                ),
            )

        # 2. References showing raw labels instead of numbers
        poor_display = [l for l in rendered_refs.user_refs if not l.has_proper_display]
        if not poor_display:
            out.passed("crossref_display_quality",
                       f"All {len(rendered_refs.user_refs)} cross-references display properly formatted text")
        else:
            out.issue(
                "crossref_display_quality",
                config.SEVERITY_WARNING,
                f"{len(poor_display)} cross-reference(s) from \\ref{{}} show raw label names instead of numbers",
                details=LinkIssueDetails(
                    count=len(poor_display),
                    links=[
                        _sample(l, f'Should display as a number or proper reference, not "{l.display_text}"')
                        for l in poor_display[:config.MAX_DISPLAY_QUALITY_SAMPLES]
                    ],
                ),
            )

        # 3. Labels vs anchors
        label_count = len(source_refs.labels)
        anchor_count = len(rendered_refs.anchors)
        ratio = anchor_count / max(label_count, 1)
        if label_count == 0 and anchor_count == 0:
            out.passed("crossref_count_match", "No cross-references in document (none expected)")
        elif ratio >= config.ANCHOR_COUNT_RATIO:
            out.passed("crossref_count_match",
                       f"Cross-reference anchors: {anchor_count}/{label_count} labels preserved "
                       f"({round(ratio * 100)}%)")
        else:
            out.issue(
                "crossref_count_mismatch",
                config.SEVERITY_WARNING,
                f"Cross-reference count mismatch: {anchor_count} anchors for {label_count} source labels",
                details=AnchorCountDetails(source_labels=label_count, rendered_anchors=anchor_count, ratio=ratio),
            )

        # 4. Footnote back-links
        footnotes = len(rendered_refs.footnote_links)
        backlinks = len(rendered_refs.footnote_backlinks)
        if footnotes:
            if backlinks >= footnotes:
                out.passed("crossref_footnote_backlinks", f"All {footnotes} footnote(s) have working back-links")
            else:
                out.issue(
                    "crossref_footnote_backlinks",
                    config.SEVERITY_WARNING,
                    f"{footnotes - backlinks} footnote(s) missing back-links",
                    details=FootnoteDetails(footnote_links=footnotes, backlinks=backlinks),
                )

        # 5. Anchors nobody links to (section headings are exempt)
        linked = {l.target_id for l in rendered_refs.links}
        orphan_anchors = [
            a for a in rendered_refs.anchors
            if a.id not in linked and a.label_type not in config.UNLINKED_ANCHOR_TYPES
        ]
        if 0 < len(orphan_anchors) <= config.MAX_ORPHAN_ANCHORS_REPORTED:
            out.issue(
                "crossref_orphan_anchors",
                config.SEVERITY_INFO,
                f"{len(orphan_anchors)} anchor(s) defined but never referenced",
                details=OrphanAnchorDetails(anchors=[AnchorSample(a.id, a.label_type) for a in orphan_anchors]),
            )

        log(TAG, f"Cross-reference comparison complete: {len(result.issues)} issues, "
                 f"{len(result.passed_checks)} passed", cfg)
        return result

    except Exception as e:
        log_error(TAG, f"Cross-reference comparison failed: {e}")
        return None
