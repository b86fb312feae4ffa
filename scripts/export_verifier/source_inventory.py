#!/usr/bin/env python3
"""
Source inventory extraction.
Builds the reference list of math expressions and cross-references from the
LaTeX source, using the injected expression extractor for segmentation.
"""
import re
from collections import Counter, defaultdict
from typing import Callable, Dict, List, Mapping, Optional

from . import config
from .models import Expression, Label, Reference, SourceCrossReferences, SourceInventory
from .utils import (
    estimate_line_number,
    log,
    log_debug,
    log_error,
    log_warn,
    normalized_fingerprint,
    size_category,
    truncate,
)

TAG = "verify:source"

ExpressionExtractor = Callable[[str], Mapping[int, dict]]

LABEL_RE = re.compile(r'\\label\{([^}]+)\}')
REFERENCE_RE = re.compile(r'\\(ref|eqref)\{([^}]+)\}')


def label_type(label_id: str) -> str:
    """Map a label id such as 'eq:loss' to its type via the prefix table."""
    if not label_id or ':' not in label_id:
        return "unknown"
    prefix = label_id.split(':', 1)[0].strip().lower()
    return config.LABEL_TYPES.get(prefix, "other")


def extract_source_cross_references(source_text: str) -> SourceCrossReferences:
    """Scan \\label{} definitions and \\ref{}/\\eqref{} usages."""
    refs = SourceCrossReferences()
    if not source_text:
        return refs

    for i, m in enumerate(LABEL_RE.finditer(source_text)):
        label_id = m.group(1).strip()
        refs.labels.append(Label(
            index=i,
            id=label_id,
            label_type=label_type(label_id),
            source_position=m.start(),
            approximate_line=estimate_line_number(source_text, m.start()),
        ))

    for i, m in enumerate(REFERENCE_RE.finditer(source_text)):
        target = m.group(2).strip()
        refs.references.append(Reference(
            index=i,
            target=target,
            label_type=label_type(target),
            source_position=m.start(),
            approximate_line=estimate_line_number(source_text, m.start()),
            command=m.group(1),
        ))

    return refs


def _ordered_fragments(mapping: Mapping[int, dict]) -> List[dict]:
    fragments = [dict(item) for _, item in sorted(mapping.items(), key=lambda kv: kv[0])]
    # Sort by position; fragments without one keep their ordinal place.
    fragments.sort(key=lambda item: item.get('position') if item.get('position') is not None else -1)
    return fragments


def _duplicate_hashes(expressions: List[Expression]) -> List[Dict]:
    by_hash = defaultdict(list)
    for expr in expressions:
        by_hash[expr.normalized_hash].append(expr.index)
    return [
        {'hash': h, 'count': len(indices), 'indices': indices}
        for h, indices in by_hash.items() if len(indices) > 1
    ]


def capture_source_inventory(
    source_text: str,
    extractor: Optional[ExpressionExtractor],
    cfg: Optional[config.VerifierConfig] = None,
) -> Optional[SourceInventory]:
    """
    Capture the expression and cross-reference inventory of a source document.

    Returns None when there is nothing to capture (empty source) or the
    extractor is unavailable; an inventory with zero expressions when the
    extractor finds nothing.
    """
    cfg = cfg or config.VerifierConfig()

    if not source_text or not source_text.strip():
        log(TAG, "No source content to capture", cfg)
        return None
    if extractor is None:
        log_error(TAG, "Expression extractor not available, cannot capture source inventory")
        return None

    try:
        mapping = extractor(source_text) or {}
        fragments = _ordered_fragments(mapping)
        log_debug(TAG, f"Extractor returned {len(fragments)} fragments from {len(source_text)} characters", cfg)
        cross_refs = extract_source_cross_references(source_text)

        total = len(fragments)
        if total > cfg.max_expressions_to_store:
            log_warn(TAG, f"{total} expressions found, storing first {cfg.max_expressions_to_store}")

        expressions = []
        for i, frag in enumerate(fragments[:cfg.max_expressions_to_store]):
            latex = (frag.get('latex') or '').strip()
            position = frag.get('position')
            expressions.append(Expression(
                index=i,
                raw_text=latex,
                preview=truncate(latex, cfg.expression_preview_length),
                normalized_hash=normalized_fingerprint(latex),
                kind=frag.get('type') or 'inline',
                pattern=frag.get('pattern') or '',
                source_position=position,
                approximate_line=estimate_line_number(source_text, position) if position is not None else None,
            ))

        statistics = {
            'total': total,
            'stored': len(expressions),
            'truncated': total > len(expressions),
            'by_type': {
                'inline': sum(1 for e in expressions if e.kind == 'inline'),
                'display': sum(1 for e in expressions if e.kind == 'display'),
                'environment': sum(1 for e in expressions if e.kind == 'environment'),
            },
            'by_pattern': dict(Counter(e.pattern or 'unknown' for e in expressions)),
            'duplicate_hashes': _duplicate_hashes(expressions),
        }

        inventory = SourceInventory(
            expressions=expressions,
            statistics=statistics,
            source_length=len(source_text),
            size_category=size_category(total),
            cross_refs=cross_refs,
        )
        log(TAG, f"Captured {len(expressions)} expressions "
                 f"({inventory.size_category}), {len(cross_refs.labels)} labels, "
                 f"{len(cross_refs.references)} references", cfg)
        return inventory

    except Exception as e:
        log_error(TAG, f"Source inventory capture failed: {e}")
        return None
