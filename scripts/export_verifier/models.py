#!/usr/bin/env python3
"""
Data records shared by the verifier stages.

Inventories are produced by the extractors and analyzers, issues and passed
checks by the comparators. Issue details form a tagged union: every issue
type maps to exactly one details record (see ISSUE_DETAIL_TYPES).
"""
from collections import Counter
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from . import config


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


# ==============================================================================
# Expressions & cross-references
# ==============================================================================

@dataclass(frozen=True)
class Expression:
    """One math unit, from either the source or a rendered document."""
    index: int
    raw_text: str
    preview: str
    normalized_hash: str
    kind: str  # inline | display | environment
    pattern: str = ""
    source_position: Optional[int] = None
    approximate_line: Optional[int] = None
    has_structural_id: bool = False
    parent_id: Optional[str] = None

    @property
    def is_display(self) -> bool:
        return self.kind in ("display", "environment")


@dataclass(frozen=True)
class Label:
    index: int
    id: str
    label_type: str
    source_position: int
    approximate_line: int


@dataclass(frozen=True)
class Reference:
    index: int
    target: str
    label_type: str
    source_position: int
    approximate_line: int
    command: str = "ref"


@dataclass(frozen=True)
class RenderedLink:
    index: int
    target_id: str
    display_text: str
    label_type: str
    ref_type: Optional[str]
    ref_target: Optional[str]
    has_proper_display: bool
    is_user_ref: bool


@dataclass(frozen=True)
class RenderedAnchor:
    index: int
    id: str
    tag_name: str
    label_type: str


@dataclass(frozen=True)
class FootnoteLink:
    index: int
    id: Optional[str]
    target_id: Optional[str]


# ==============================================================================
# Failure signatures
# ==============================================================================

@dataclass(frozen=True)
class UnrenderedMath:
    kind: str  # inline | display
    pattern: str
    content: str
    preview: str
    normalized_hash: str
    position: int


@dataclass(frozen=True)
class CorruptedEscape:
    kind: str
    content: str
    position: int


@dataclass(frozen=True)
class EnvironmentFailure:
    environment: str
    full_match: str
    position: int


# ==============================================================================
# Inventories
# ==============================================================================

@dataclass
class SourceCrossReferences:
    labels: List[Label] = field(default_factory=list)
    references: List[Reference] = field(default_factory=list)

    @property
    def statistics(self) -> Dict[str, Any]:
        return {
            'total_labels': len(self.labels),
            'total_references': len(self.references),
            'by_label_type': dict(Counter(l.label_type for l in self.labels)),
            'by_ref_type': dict(Counter(r.label_type for r in self.references)),
        }


@dataclass
class SourceInventory:
    expressions: List[Expression]
    statistics: Dict[str, Any]
    source_length: int
    size_category: str
    cross_refs: Optional[SourceCrossReferences] = None
    timestamp: str = field(default_factory=utc_timestamp)


@dataclass
class CrossReferenceAnalysis:
    """Links, anchors and footnotes found in one rendered document."""
    user_refs: List[RenderedLink] = field(default_factory=list)
    nav_links: List[RenderedLink] = field(default_factory=list)
    anchors: List[RenderedAnchor] = field(default_factory=list)
    footnote_links: List[FootnoteLink] = field(default_factory=list)
    footnote_backlinks: List[FootnoteLink] = field(default_factory=list)

    @property
    def links(self) -> List[RenderedLink]:
        return sorted(self.user_refs + self.nav_links, key=lambda l: l.index)

    @property
    def anchor_ids(self) -> set:
        return {a.id for a in self.anchors}

    @property
    def statistics(self) -> Dict[str, Any]:
        return {
            'total_links': len(self.user_refs) + len(self.nav_links),
            'total_user_refs': len(self.user_refs),
            'total_nav_links': len(self.nav_links),
            'total_anchors': len(self.anchors),
            'total_footnotes': len(self.footnote_links),
            'by_link_type': dict(Counter(l.label_type for l in self.links)),
            'by_anchor_type': dict(Counter(a.label_type for a in self.anchors)),
        }


@dataclass
class RenderedInventory:
    expressions: List[Expression]
    cross_refs: CrossReferenceAnalysis
    unrendered: List[UnrenderedMath] = field(default_factory=list)
    corrupted: List[CorruptedEscape] = field(default_factory=list)
    environment_failures: List[EnvironmentFailure] = field(default_factory=list)
    element_count: int = 0
    container_count: int = 0
    markup_length: int = 0
    timestamp: str = field(default_factory=utc_timestamp)

    @property
    def summary(self) -> Dict[str, Any]:
        return {
            'total_expressions': len(self.expressions),
            'math_elements': self.element_count,
            'typeset_containers': self.container_count,
            'unrendered_count': len(self.unrendered),
            'corrupted_count': len(self.corrupted),
            'environment_failure_count': len(self.environment_failures),
            'has_issues': bool(self.unrendered or self.corrupted or self.environment_failures),
        }


@dataclass
class PreviewInventory:
    """Snapshot of the live preview; no failure scan is run on it."""
    expressions: List[Expression] = field(default_factory=list)
    cross_refs: CrossReferenceAnalysis = field(default_factory=CrossReferenceAnalysis)
    captured: bool = False
    timestamp: str = field(default_factory=utc_timestamp)


# ==============================================================================
# Issue details (tagged union)
# ==============================================================================

@dataclass(frozen=True)
class CountDetails:
    source_count: int
    rendered_count: int
    ratio: float
    element_count: int = 0
    container_count: int = 0


@dataclass(frozen=True)
class PositionSample:
    position: int
    source_preview: str
    rendered_preview: str
    source_type: Optional[str] = None
    rendered_type: Optional[str] = None


@dataclass(frozen=True)
class SequenceDetails:
    mismatch_count: int
    compared: int
    samples: List[PositionSample]


@dataclass(frozen=True)
class HashCollision:
    hash: str
    count: int
    indices: List[int]


@dataclass(frozen=True)
class DuplicateHashDetails:
    collisions: List[HashCollision]


@dataclass(frozen=True)
class MissingIdsDetails:
    missing: int
    total: int
    ratio: float


@dataclass(frozen=True)
class TypeMismatchDetails:
    mismatch_count: int
    samples: List[PositionSample]


@dataclass(frozen=True)
class ContentMismatchDetails:
    sample_size: int
    mismatch_count: int
    samples: List[PositionSample]


@dataclass(frozen=True)
class EngineConfigDetails:
    setting: str
    expected: List[str]
    found: List[str]


@dataclass(frozen=True)
class MissingMacrosDetails:
    detected: List[str]
    missing: List[str]
    defined: List[str]


@dataclass(frozen=True)
class UnrenderedDetails:
    pattern: str
    content: str
    position: int


@dataclass(frozen=True)
class MissingExpressionDetails:
    kind: str
    pattern: str
    normalized_hash: str


@dataclass(frozen=True)
class OverflowDetails:
    shown: int
    remaining: int


@dataclass(frozen=True)
class CorruptedDelimiterDetails:
    count: int
    occurrences: List[CorruptedEscape]


@dataclass(frozen=True)
class EnvironmentFailureDetails:
    environment: str
    position: int
    preview: str


@dataclass(frozen=True)
class LinkSample:
    target_id: str
    display_text: str
    label_type: str
    ref_target: Optional[str] = None
    suggestion: Optional[str] = None


@dataclass(frozen=True)
class LinkIssueDetails:
    count: int
    links: List[LinkSample]
    note: Optional[str] = None


@dataclass(frozen=True)
class AnchorCountDetails:
    source_labels: int
    rendered_anchors: int
    ratio: float


@dataclass(frozen=True)
class FootnoteDetails:
    footnote_links: int
    backlinks: int


@dataclass(frozen=True)
class AnchorSample:
    id: str
    label_type: str


@dataclass(frozen=True)
class OrphanAnchorDetails:
    anchors: List[AnchorSample]


IssueDetails = Union[
    CountDetails, SequenceDetails, DuplicateHashDetails, MissingIdsDetails,
    TypeMismatchDetails, ContentMismatchDetails, EngineConfigDetails,
    MissingMacrosDetails, UnrenderedDetails, MissingExpressionDetails,
    OverflowDetails, CorruptedDelimiterDetails, EnvironmentFailureDetails,
    LinkIssueDetails, AnchorCountDetails, FootnoteDetails, OrphanAnchorDetails,
]

ISSUE_DETAIL_TYPES = {
    'count_mismatch': CountDetails,
    'sequence_mismatch': SequenceDetails,
    'duplicate_hashes': DuplicateHashDetails,
    'missing_ids': MissingIdsDetails,
    'type_mismatch': TypeMismatchDetails,
    'content_mismatch': ContentMismatchDetails,
    'missing_delimiter': EngineConfigDetails,
    'missing_package': EngineConfigDetails,
    'missing_a11y_module': EngineConfigDetails,
    'a11y_disabled': EngineConfigDetails,
    'missing_macros': MissingMacrosDetails,
    'unrendered': UnrenderedDetails,
    'missing': MissingExpressionDetails,
    'missing_summary': OverflowDetails,
    'corrupted_delimiters': CorruptedDelimiterDetails,
    'environment_failure': EnvironmentFailureDetails,
    'crossref_orphan_refs': LinkIssueDetails,
    'crossref_orphan_nav': LinkIssueDetails,
    'crossref_display_quality': LinkIssueDetails,
    'crossref_count_mismatch': AnchorCountDetails,
    'crossref_footnote_backlinks': FootnoteDetails,
    'crossref_orphan_anchors': OrphanAnchorDetails,
}

SEVERITIES = (config.SEVERITY_INFO, config.SEVERITY_WARNING, config.SEVERITY_ERROR)


# ==============================================================================
# Issues & results
# ==============================================================================

@dataclass
class Issue:
    id: int
    type: str
    severity: str
    message: str
    details: Optional[IssueDetails] = None
    source_index: Optional[int] = None
    source_preview: Optional[str] = None
    approximate_line: Optional[int] = None
    likely_cause: Optional[str] = None
    suggested_fix: Optional[str] = None
    issue_location: Optional[str] = None
    location_guidance: Optional[str] = None
    works_in_preview: Optional[bool] = None
    works_in_export: Optional[bool] = None

    def __post_init__(self):
        if self.severity not in SEVERITIES:
            raise ValueError(f"Unknown severity '{self.severity}' for issue {self.type}")
        expected = ISSUE_DETAIL_TYPES.get(self.type)
        if expected is None:
            raise ValueError(f"Unknown issue type '{self.type}'")
        if self.details is not None and not isinstance(self.details, expected):
            raise TypeError(
                f"Issue '{self.type}' expects {expected.__name__} details, "
                f"got {type(self.details).__name__}"
            )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        return {k: v for k, v in data.items() if v is not None}


@dataclass(frozen=True)
class Check:
    """A check that ran and found nothing wrong."""
    check: str
    message: str


@dataclass
class ComparisonResult:
    issues: List[Issue] = field(default_factory=list)
    passed_checks: List[Check] = field(default_factory=list)
    source_expression_count: int = 0
    rendered_expression_count: int = 0
    cross_references: Optional[Dict[str, Any]] = None
    timing: Dict[str, float] = field(default_factory=dict)
    timestamp: str = field(default_factory=utc_timestamp)

    @property
    def status(self) -> str:
        severities = {issue.severity for issue in self.issues}
        if config.SEVERITY_ERROR in severities:
            return config.STATUS_FAIL
        if config.SEVERITY_WARNING in severities:
            return config.STATUS_WARN
        return config.STATUS_PASS

    def count(self, severity: str) -> int:
        return sum(1 for issue in self.issues if issue.severity == severity)

    @property
    def summary(self) -> Dict[str, Any]:
        return {
            'status': self.status,
            'total_issues': len(self.issues),
            'errors': self.count(config.SEVERITY_ERROR),
            'warnings': self.count(config.SEVERITY_WARNING),
            'info': self.count(config.SEVERITY_INFO),
            'passed_checks': len(self.passed_checks),
            'source_expressions': self.source_expression_count,
            'rendered_expressions': self.rendered_expression_count,
            'issues_by_type': dict(Counter(issue.type for issue in self.issues)),
        }

    def issues_of(self, issue_type: str) -> List[Issue]:
        return [issue for issue in self.issues if issue.type == issue_type]


# ==============================================================================
# Preview vs export comparison
# ==============================================================================

@dataclass
class IssueLocationFlags:
    in_preview: bool
    in_export: bool
    preview_count: int = 0
    export_count: int = 0
    note: Optional[str] = None


@dataclass
class PreviewComparison:
    available: bool
    reason: Optional[str] = None
    statistics: Dict[str, Any] = field(default_factory=dict)
    issue_locations: Dict[str, IssueLocationFlags] = field(default_factory=dict)
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def summary(self) -> Dict[str, int]:
        flags = list(self.issue_locations.values())
        return {
            'export_only_count': sum(1 for f in flags if f.in_export and not f.in_preview),
            'both_count': sum(1 for f in flags if f.in_export and f.in_preview),
            'preview_only_count': sum(1 for f in flags if f.in_preview and not f.in_export),
            'total_issue_types': sum(1 for f in flags if f.in_export or f.in_preview),
        }

    def to_dict(self, include_details: bool = True) -> Dict[str, Any]:
        data = {
            'available': self.available,
            'reason': self.reason,
            'statistics': self.statistics,
            'issue_locations': {k: asdict(v) for k, v in self.issue_locations.items()},
            'summary': self.summary,
        }
        if include_details:
            data['details'] = self.details
        return data
