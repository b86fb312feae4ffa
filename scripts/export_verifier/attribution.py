#!/usr/bin/env python3
"""
Location attribution.

Compares the live preview with the export to tell whether a problem was
introduced by the earlier conversion stage (visible in both), by the export
stage (export only), or fixed on the way (preview only).
"""
from dataclasses import asdict, replace
from typing import List, Optional

from . import config
from .models import (
    CrossReferenceAnalysis,
    Issue,
    IssueLocationFlags,
    PreviewComparison,
    PreviewInventory,
    RenderedInventory,
)
from .utils import log, log_error

TAG = "verify:location"

# Issue type -> key into PreviewComparison.issue_locations
ISSUE_LOCATION_KEYS = {
    'crossref_orphan_refs': 'orphan_user_refs',
    'crossref_orphan_nav': 'orphan_nav_links',
    'crossref_display_quality': 'display_quality',
    'crossref_count_mismatch': 'anchor_mismatch',
}

LOCATION_LABELS = {
    config.LOCATION_BOTH: "BOTH (preview & export)",
    config.LOCATION_EXPORT_ONLY: "EXPORT ONLY",
    config.LOCATION_PREVIEW_ONLY: "PREVIEW ONLY",
    config.LOCATION_UNKNOWN: "UNKNOWN",
}

NO_PREVIEW_NAV_NOTE = "Preview has no navigation links (ToC/sidebar not rendered)"


def issue_location_label(in_preview: bool, in_export: bool) -> str:
    if in_preview and in_export:
        return config.LOCATION_BOTH
    if in_export:
        return config.LOCATION_EXPORT_ONLY
    if in_preview:
        return config.LOCATION_PREVIEW_ONLY
    return config.LOCATION_UNKNOWN


def location_guidance(issue_type: str, in_preview: bool, in_export: bool) -> str:
    """Fixed hint naming the pipeline stage to investigate."""
    if in_preview and in_export:
        if issue_type == 'crossref_orphan_refs':
            return "Issue is in the conversion stage - equation labels are not becoming anchor IDs"
        if issue_type == 'crossref_display_quality':
            return "Issue is in the conversion stage - reference resolution is not working"
        if issue_type == 'crossref_count_mismatch':
            return "Source labels are not converted to anchor IDs during conversion"
        return "Issue originates in the conversion stage or the source LaTeX"
    if in_export:
        if issue_type == 'crossref_orphan_nav':
            return "Issue is in the export pipeline - the ToC generator uses a different ID format"
        if issue_type == 'crossref_orphan_refs':
            return "Issue is in the export pipeline - anchors present in preview but missing after export"
        return "Issue is in the export pipeline - check template or content generation"
    if in_preview:
        return "Issue resolved during export (unusual - verify export is correct)"
    return "Check both the conversion stage and the export pipeline"


def _orphans(refs: CrossReferenceAnalysis, links) -> list:
    ids = refs.anchor_ids
    return [l for l in links if l.target_id not in ids]


def _link_dicts(links) -> List[dict]:
    return [asdict(l) for l in links[:config.MAX_DETAIL_SAMPLES]]


def compare_preview_to_export_crossrefs(
    preview: Optional[PreviewInventory],
    rendered: Optional[RenderedInventory],
    cfg: Optional[config.VerifierConfig] = None,
) -> PreviewComparison:
    """Flag each cross-reference problem category as present in preview and/or export."""
    cfg = cfg or config.VerifierConfig()
    if preview is None or not preview.captured:
        log(TAG, "No preview snapshot available - cross-reference issues will not be attributed", cfg)
        return PreviewComparison(available=False, reason="Preview not captured. Supply preview markup to compare.")
    if rendered is None:
        return PreviewComparison(available=False, reason="Rendered analysis not available.")

    try:
        prev, exp = preview.cross_refs, rendered.cross_refs
        comparison = PreviewComparison(
            available=True,
            statistics={
                'preview': {
                    'user_refs': len(prev.user_refs),
                    'nav_links': len(prev.nav_links),
                    'anchors': len(prev.anchors),
                    'footnotes': len(prev.footnote_links),
                },
                'export': {
                    'user_refs': len(exp.user_refs),
                    'nav_links': len(exp.nav_links),
                    'anchors': len(exp.anchors),
                    'footnotes': len(exp.footnote_links),
                },
            },
        )

        # 1. User references without targets
        prev_orphans = _orphans(prev, prev.user_refs)
        exp_orphans = _orphans(exp, exp.user_refs)
        comparison.issue_locations['orphan_user_refs'] = IssueLocationFlags(
            in_preview=bool(prev_orphans), in_export=bool(exp_orphans),
            preview_count=len(prev_orphans), export_count=len(exp_orphans),
        )
        comparison.details['orphan_user_refs'] = {
            'preview': _link_dicts(prev_orphans), 'export': _link_dicts(exp_orphans),
        }

        # 2. Navigation links (the preview usually renders none)
        prev_nav = _orphans(prev, prev.nav_links)
        exp_nav = _orphans(exp, exp.nav_links)
        comparison.issue_locations['orphan_nav_links'] = IssueLocationFlags(
            in_preview=bool(prev_nav), in_export=bool(exp_nav),
            preview_count=len(prev_nav), export_count=len(exp_nav),
            note=NO_PREVIEW_NAV_NOTE if not prev.nav_links else None,
        )
        comparison.details['orphan_nav_links'] = {
            'preview': _link_dicts(prev_nav), 'export': _link_dicts(exp_nav),
        }

        # 3. Raw labels shown instead of numbers
        prev_poor = [l for l in prev.user_refs if not l.has_proper_display]
        exp_poor = [l for l in exp.user_refs if not l.has_proper_display]
        comparison.issue_locations['display_quality'] = IssueLocationFlags(
            in_preview=bool(prev_poor), in_export=bool(exp_poor),
            preview_count=len(prev_poor), export_count=len(exp_poor),
        )
        comparison.details['display_quality'] = {
            'preview': _link_dicts(prev_poor), 'export': _link_dicts(exp_poor),
        }

        # 4. Anchor counts; anchors cannot fail in the preview
        comparison.issue_locations['anchor_mismatch'] = IssueLocationFlags(
            in_preview=False,
            in_export=len(prev.anchors) != len(exp.anchors),
            preview_count=len(prev.anchors),
            export_count=len(exp.anchors),
        )

        s = comparison.summary
        log(TAG, f"Preview comparison complete: {s['export_only_count']} export-only, "
                 f"{s['both_count']} in both, {s['preview_only_count']} preview-only", cfg)
        return comparison

    except Exception as e:
        log_error(TAG, f"Preview comparison failed: {e}")
        return PreviewComparison(available=False, reason=f"Comparison error: {e}")


def compare_preview_to_export_math(
    preview: Optional[PreviewInventory],
    rendered: Optional[RenderedInventory],
    cfg: Optional[config.VerifierConfig] = None,
) -> PreviewComparison:
    """Same stage attribution for math: counts, parent ids, display ratio and content."""
    cfg = cfg or config.VerifierConfig()
    if preview is None or not preview.captured:
        return PreviewComparison(available=False, reason="Preview math not captured.")
    if rendered is None:
        return PreviewComparison(available=False, reason="Rendered math analysis not available.")

    try:
        prev, exp = preview.expressions, rendered.expressions

        def stats(exprs):
            return {
                'total': len(exprs),
                'inline': sum(1 for e in exprs if e.kind == 'inline'),
                'display': sum(1 for e in exprs if e.is_display),
                'with_parent_ids': sum(1 for e in exprs if e.has_structural_id),
            }

        ps, es = stats(prev), stats(exp)
        comparison = PreviewComparison(available=True, statistics={'preview': ps, 'export': es})
        locations = comparison.issue_locations

        # 1. Counts
        larger = max(ps['total'], es['total'])
        count_ratio = min(ps['total'], es['total']) / larger if larger else 1.0
        locations['count_mismatch'] = IssueLocationFlags(
            in_preview=count_ratio < config.PREVIEW_COUNT_RATIO and ps['total'] < es['total'],
            in_export=count_ratio < config.PREVIEW_COUNT_RATIO and es['total'] < ps['total'],
            preview_count=ps['total'], export_count=es['total'],
        )
        comparison.details['count'] = {'preview': ps['total'], 'export': es['total'], 'ratio': count_ratio}

        # 2. Structural ids
        prev_ratio = ps['with_parent_ids'] / ps['total'] if ps['total'] else 0.0
        exp_ratio = es['with_parent_ids'] / es['total'] if es['total'] else 0.0
        locations['missing_parent_ids'] = IssueLocationFlags(
            in_preview=ps['total'] > 0 and prev_ratio < config.PREVIEW_PARENT_ID_RATIO,
            in_export=es['total'] > 0 and exp_ratio < config.PREVIEW_PARENT_ID_RATIO,
            preview_count=ps['with_parent_ids'], export_count=es['with_parent_ids'],
        )
        comparison.details['parent_ids'] = {'preview_ratio': prev_ratio, 'export_ratio': exp_ratio}

        # 3. Display/inline distribution
        prev_display = ps['display'] / ps['total'] if ps['total'] else 0.0
        exp_display = es['display'] / es['total'] if es['total'] else 0.0
        drift = abs(prev_display - exp_display) > config.PREVIEW_DISPLAY_RATIO_DRIFT \
            and ps['total'] > config.PREVIEW_MIN_EXPRESSIONS_FOR_RATIO
        locations['type_mismatch'] = IssueLocationFlags(
            in_preview=drift and prev_display > exp_display,
            in_export=drift and exp_display > prev_display,
            preview_count=ps['display'], export_count=es['display'],
        )
        comparison.details['type_distribution'] = {'preview': prev_display, 'export': exp_display}

        # 4. Content hashes over the leading sample
        n = config.PREVIEW_HASH_SAMPLE
        prev_hashes = {e.normalized_hash for e in prev[:n]}
        exp_hashes = {e.normalized_hash for e in exp[:n]}
        preview_only = len(prev_hashes - exp_hashes)
        export_only = len(exp_hashes - prev_hashes)
        sample = min(n, len(prev), len(exp))
        matching = sample - max(preview_only, export_only)
        match_ratio = matching / sample if sample else 1.0
        mismatch = match_ratio < config.PREVIEW_HASH_MATCH_RATIO and sample > config.PREVIEW_MIN_EXPRESSIONS_FOR_RATIO
        locations['content_mismatch'] = IssueLocationFlags(
            in_preview=mismatch and preview_only > export_only,
            in_export=mismatch and export_only > preview_only,
            preview_count=preview_only, export_count=export_only,
        )
        comparison.details['content_sampling'] = {
            'sample_size': sample, 'matching': matching, 'match_ratio': match_ratio,
            'preview_only': preview_only, 'export_only': export_only,
        }

        s = comparison.summary
        log(TAG, f"Math comparison complete: {s['export_only_count']} export-only, "
                 f"{s['both_count']} in both, {s['preview_only_count']} preview-only", cfg)
        return comparison

    except Exception as e:
        log_error(TAG, f"Math preview comparison failed: {e}")
        return PreviewComparison(available=False, reason=f"Comparison error: {e}")


def enhance_issue_with_location(issue: Issue, comparison: Optional[PreviewComparison]) -> Issue:
    """
    Return a copy of a cross-reference issue annotated with its location.

    Issues of other types, or any issue when no comparison is available, are
    returned unchanged.
    """
    key = ISSUE_LOCATION_KEYS.get(issue.type)
    if key is None or comparison is None or not comparison.available:
        return issue
    flags = comparison.issue_locations.get(key)
    if flags is None:
        return issue

    return replace(
        issue,
        works_in_preview=not flags.in_preview,
        works_in_export=not flags.in_export,
        issue_location=issue_location_label(flags.in_preview, flags.in_export),
        location_guidance=location_guidance(issue.type, flags.in_preview, flags.in_export),
    )
