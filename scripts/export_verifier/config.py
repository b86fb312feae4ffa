#!/usr/bin/env python3
"""
Export verifier configuration.
Shared constants for all verifier modules plus the per-run tunables.
"""
from dataclasses import dataclass, field
from typing import FrozenSet

# --- CONFIGURATION ---
MAX_EXPRESSIONS_TO_STORE = 1000
MAX_ISSUES_TO_SHOW = 20
EXPRESSION_PREVIEW_LENGTH = 60
LINK_TEXT_PREVIEW_LENGTH = 40

# Bounded wait for the live preview to finish typesetting (seconds)
RENDER_WAIT_TIMEOUT = 5.0
RENDER_POLL_INTERVAL = 0.1

# Document size thresholds (expression counts)
SIZE_THRESHOLDS = {
    'small': 50,
    'medium': 200,
    'large': 500,
}

# --- SEVERITIES / STATUS ---
SEVERITY_INFO = "info"
SEVERITY_WARNING = "warning"
SEVERITY_ERROR = "error"

STATUS_PASS = "pass"
STATUS_WARN = "warn"
STATUS_FAIL = "fail"
STATUS_UNKNOWN = "unknown"

# Issue location (which stage introduced a cross-reference problem)
LOCATION_BOTH = "BOTH"
LOCATION_EXPORT_ONLY = "EXPORT_ONLY"
LOCATION_PREVIEW_ONLY = "PREVIEW_ONLY"
LOCATION_UNKNOWN = "UNKNOWN"

# --- COUNT / RATIO THRESHOLDS ---
COUNT_PASS_RATIO = 0.95
COUNT_ERROR_RATIO = 0.80
MISSING_IDS_ERROR_RATIO = 0.10
ANCHOR_COUNT_RATIO = 0.90
CONTENT_SAMPLE_SIZE = 10
SEQUENCE_SMALL_MISMATCH = 3
MAX_DETAIL_SAMPLES = 5
MAX_DISPLAY_QUALITY_SAMPLES = 10
MAX_ORPHAN_ANCHORS_REPORTED = 5
MAX_LLM_ISSUES = 10
SUMMARY_EXPRESSION_SAMPLES = 10

# Preview vs export math comparison
PREVIEW_COUNT_RATIO = 0.95
PREVIEW_PARENT_ID_RATIO = 0.5
PREVIEW_DISPLAY_RATIO_DRIFT = 0.1
PREVIEW_MIN_EXPRESSIONS_FOR_RATIO = 5
PREVIEW_HASH_SAMPLE = 50
PREVIEW_HASH_MATCH_RATIO = 0.9

# --- LABELS & CROSS-REFERENCES ---
LABEL_TYPES = {
    'eq': 'equation',
    'sec': 'section',
    'subsec': 'subsection',
    'tab': 'table',
    'fig': 'figure',
    'ref': 'bibliography',
    'note': 'footnote',
    'fn': 'footnote',
}

# Prefixes whose references should display as a number
NUMERIC_DISPLAY_TYPES = ('eq', 'sec', 'subsec', 'tab', 'fig', 'ref')

# Anchor types never expected to be linked explicitly
UNLINKED_ANCHOR_TYPES = ('section', 'subsection')

ANCHOR_ID_PREFIX = "content-"

# --- SELECTORS ---
CONTENT_AREA_SELECTORS = "main, .document-content, #main, article, .content"
NON_CONTENT_SELECTORS = (
    "script, style, noscript, template",
    "span.math, .math, .MathJax_Display, .MathJax_Preview, .katex",
    "mjx-container, .MathJax",
    "[hidden], .sr-only, [aria-hidden='true']",
)
PREVIEW_CONTAINER_SELECTOR = "#output"
FOOTNOTE_LINK_SELECTOR = ".footnote-ref, [role='doc-noteref']"
FOOTNOTE_BACKLINK_SELECTOR = ".footnote-back, [role='doc-backlink']"

# --- MATH ENVIRONMENTS ---
MATH_ENVIRONMENTS = ('equation', 'align', 'gather', 'multline', 'eqnarray', 'alignat')

# --- RENDERING ENGINE (MathJax) EXPECTATIONS ---
REQUIRED_INLINE_DELIMITER = ('\\(', '\\)')
REQUIRED_DISPLAY_DELIMITER = ('\\[', '\\]')
RECOMMENDED_PACKAGES = ('ams', 'amssymb')
ESSENTIAL_A11Y_MODULES = ('assistive-mml', 'sre')
RECOMMENDED_A11Y_MODULES = ('semantic-enrich', 'explorer')

# Multi-letter macro names commonly defined per document
KNOWN_CUSTOM_MACROS = (
    'ds', 'supp', 'abs', 'norm', 'inner', 'ceil', 'floor', 'set',
    'R', 'N', 'Z', 'Q', 'C', 'F', 'E', 'Var', 'Cov', 'P',
)

GENERATED_BY = "LaTeX Export Verifier"


@dataclass
class VerifierConfig:
    """Per-run tunables. Defaults mirror the module constants."""
    max_expressions_to_store: int = MAX_EXPRESSIONS_TO_STORE
    max_issues_to_show: int = MAX_ISSUES_TO_SHOW
    expression_preview_length: int = EXPRESSION_PREVIEW_LENGTH
    render_wait_timeout: float = RENDER_WAIT_TIMEOUT
    render_poll_interval: float = RENDER_POLL_INTERVAL
    preview_container_selector: str = PREVIEW_CONTAINER_SELECTOR
    ignored_macros: FrozenSet[str] = field(default_factory=frozenset)
    extra_custom_macros: FrozenSet[str] = field(default_factory=frozenset)
    verbose: bool = True
    debug: bool = False
