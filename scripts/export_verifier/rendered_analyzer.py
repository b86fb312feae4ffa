#!/usr/bin/env python3
"""
Rendered-output analysis.
Recovers the expression inventory, cross-references and failure signatures
(raw math, corrupted escaping, unconverted environments) from exported HTML.
"""
import re
from typing import List, Optional, Tuple

from bs4 import BeautifulSoup, Tag

from . import config
from .math_protection import ENV_NAMES, unwrap_delimiters
from .models import (
    CorruptedEscape,
    CrossReferenceAnalysis,
    EnvironmentFailure,
    Expression,
    FootnoteLink,
    RenderedAnchor,
    RenderedInventory,
    RenderedLink,
    UnrenderedMath,
)
from .source_inventory import label_type
from .utils import log, log_debug, log_error, normalized_fingerprint, truncate

TAG = "verify:rendered"

# --- Failure signatures (run on visible text only) ---
RAW_INLINE_RE = re.compile(r'(?<!\$)\$([^$\n]+?)\$(?!\$)')
RAW_DISPLAY_RE = re.compile(r'\$\$([\s\S]*?)\$\$')
LOOKS_LIKE_MATH_RE = re.compile(r'[\\^_{}]|[a-z]\s*=|[0-9]\s*[+\-*/]\s*[0-9a-z]', re.IGNORECASE)
CORRUPTED_ESCAPE_RE = re.compile(r'\\{5,}[()\[\]]')
RAW_ENVIRONMENT_RE = re.compile(r'\\begin\{(' + ENV_NAMES + r')\*?\}')

CORRUPTED_KINDS = {
    '(': 'double_escaped_inline_open',
    ')': 'double_escaped_inline_close',
    '[': 'double_escaped_display_open',
    ']': 'double_escaped_display_close',
}

# --- Display quality heuristics ---
BAD_DISPLAY_PATTERNS = [
    re.compile(r'^ref:'),
    re.compile(r'^eq:'),
    re.compile(r'^sec:'),
    re.compile(r'^tab:'),
    re.compile(r'^fig:'),
    re.compile(r'equation\s+\w+-'),
]
GOOD_DISPLAY_PATTERNS = [
    re.compile(r'^\d+$'),
    re.compile(r'^section\s+\d'),
    re.compile(r'^equation\s+\d'),
    re.compile(r'^table\s+\d'),
    re.compile(r'^figure\s+\d'),
    re.compile(r'^\[\d+\]$'),
    re.compile(r'^\(\d+(\.\d+)*\)$'),
]


def parse_markup(markup: str) -> BeautifulSoup:
    return BeautifulSoup(markup, 'html.parser')


# ==============================================================================
# Expressions
# ==============================================================================

def _is_math_node(tag) -> bool:
    if not isinstance(tag, Tag):
        return False
    if tag.name == 'mjx-container':
        return True
    return tag.name == 'span' and 'math' in (tag.get('class') or [])


def _is_typeset(el: Tag) -> bool:
    return el.name == 'mjx-container' or el.find(['mjx-container', 'math', 'script']) is not None


def recover_latex(el: Tag) -> str:
    """
    Recover the TeX source behind a typeset math element.

    Tries, in order: the TeX annotation kept for accessibility, the MathML
    alttext, a legacy math/tex script, the aria-label, and visible text.
    """
    annotation = el.select_one('annotation[encoding="application/x-tex"]')
    if annotation is not None and annotation.get_text().strip():
        return annotation.get_text()

    math = el if el.name == 'math' else el.find('math', attrs={'alttext': True})
    if math is not None and math.get('alttext'):
        return math['alttext']

    script = el.find('script', attrs={'type': re.compile(r'^math/tex')})
    if script is not None and script.get_text().strip():
        return script.get_text()

    container = el if el.name == 'mjx-container' else el.find('mjx-container')
    for candidate in (el, container):
        if candidate is not None and candidate.get('aria-label'):
            return candidate['aria-label']

    return el.get_text()


def _structural_id(el: Tag) -> Optional[str]:
    if el.get('data-math-parent-id'):
        return el['data-math-parent-id']
    parent = el.find_parent(attrs={'data-math-parent-id': True})
    return parent['data-math-parent-id'] if parent is not None else None


def _element_kind(el: Tag, raw: str) -> str:
    if re.match(r'^\s*\\begin\{', raw):
        return 'environment'
    classes = el.get('class') or []
    if el.name == 'mjx-container':
        if el.get('display') == 'true' or 'MathJax_Display' in classes:
            return 'display'
        return 'inline'
    if 'numbered-env' in classes:
        return 'environment'
    if 'display' in classes:
        return 'display'
    return 'inline'


def extract_expressions(root, cfg: config.VerifierConfig) -> Tuple[List[Expression], int, int]:
    """
    Collect math from both markup shapes, in document order.

    Returns (expressions, math_element_count, typeset_container_count). A
    container nested inside a math span is counted once, through its span.
    """
    expressions: List[Expression] = []
    element_count = 0
    container_count = 0

    for el in root.find_all(_is_math_node):
        if el.find_parent(_is_math_node) is not None:
            continue

        if el.name == 'mjx-container':
            container_count += 1
        else:
            element_count += 1

        raw = recover_latex(el) if _is_typeset(el) else el.get_text()
        kind = _element_kind(el, raw.strip())
        latex = unwrap_delimiters(raw)
        parent_id = _structural_id(el)

        expressions.append(Expression(
            index=len(expressions),
            raw_text=latex,
            preview=truncate(latex, cfg.expression_preview_length),
            normalized_hash=normalized_fingerprint(latex),
            kind=kind,
            pattern=el.name,
            has_structural_id=parent_id is not None,
            parent_id=parent_id,
        ))

    return expressions, element_count, container_count


# ==============================================================================
# Cross-references
# ==============================================================================

def _label_type_from_anchor(anchor_id: str) -> str:
    if anchor_id.startswith(config.ANCHOR_ID_PREFIX):
        anchor_id = anchor_id[len(config.ANCHOR_ID_PREFIX):]
    return label_type(anchor_id)


def _label_prefix(ref_target: Optional[str]) -> str:
    if not ref_target or ':' not in ref_target:
        return ""
    return ref_target.split(':', 1)[0].lower()


def check_display_quality(display_text: str, link_label_type: str, ref_target: Optional[str]) -> bool:
    """
    Decide whether a reference link shows a proper number rather than a raw label.

    Heuristic: raw label text and label-prefixed text are rejected; references
    to numbered kinds (equations, sections, tables, figures, citations) must
    look like a number. Other kinds accept any non-raw text.
    """
    if not display_text or not display_text.strip():
        return False

    text = display_text.strip().lower()
    if ref_target and ref_target.lower() in text:
        return False
    if any(p.search(text) for p in BAD_DISPLAY_PATTERNS):
        return False
    if _label_prefix(ref_target) in config.NUMERIC_DISPLAY_TYPES:
        return any(p.search(text) for p in GOOD_DISPLAY_PATTERNS)
    return True


def _footnotes(root, selector: str) -> List[FootnoteLink]:
    found = []
    for i, el in enumerate(root.select(selector)):
        href = el.get('href') or ''
        found.append(FootnoteLink(
            index=i,
            id=el.get('id'),
            target_id=href[1:] if href.startswith('#') else (href or None),
        ))
    return found


def analyse_cross_references(root) -> CrossReferenceAnalysis:
    """Classify internal links, anchors and footnotes of a rendered document."""
    analysis = CrossReferenceAnalysis()
    prefix = config.ANCHOR_ID_PREFIX

    for i, a in enumerate(root.select(f'a[href^="#{prefix}"]')):
        target_id = a['href'][1:]
        link_type = _label_type_from_anchor(target_id)
        display_text = a.get_text()
        ref_type = a.get('data-reference-type')
        ref_target = a.get('data-reference')
        is_user_ref = ref_type == 'ref' or bool(ref_target)

        link = RenderedLink(
            index=i,
            target_id=target_id,
            display_text=truncate(display_text.strip(), config.LINK_TEXT_PREVIEW_LENGTH),
            label_type=link_type,
            ref_type=ref_type,
            ref_target=ref_target,
            has_proper_display=check_display_quality(display_text, link_type, ref_target),
            is_user_ref=is_user_ref,
        )
        if is_user_ref:
            analysis.user_refs.append(link)
        else:
            analysis.nav_links.append(link)

    for i, el in enumerate(root.select(f'[id^="{prefix}"]')):
        analysis.anchors.append(RenderedAnchor(
            index=i,
            id=el['id'],
            tag_name=el.name,
            label_type=_label_type_from_anchor(el['id']),
        ))

    analysis.footnote_links = _footnotes(root, config.FOOTNOTE_LINK_SELECTOR)
    analysis.footnote_backlinks = _footnotes(root, config.FOOTNOTE_BACKLINK_SELECTOR)
    return analysis


# ==============================================================================
# Failure signatures
# ==============================================================================

def visible_content_text(soup: BeautifulSoup) -> str:
    """Text of the main content area with math, scripts and hidden nodes removed."""
    area = soup.select_one(config.CONTENT_AREA_SELECTORS) or soup.body or soup
    for selector in config.NON_CONTENT_SELECTORS:
        for el in area.select(selector):
            if not el.decomposed:
                el.decompose()
    return area.get_text()


def scan_failure_signatures(text: str, cfg: config.VerifierConfig):
    """Find raw math, corrupted escaping and unconverted environments in visible text."""
    unrendered: List[UnrenderedMath] = []
    corrupted: List[CorruptedEscape] = []
    env_failures: List[EnvironmentFailure] = []

    # 1. Raw inline $...$ (currency and prose are skipped)
    for m in RAW_INLINE_RE.finditer(text):
        content = m.group(1)
        if len(content.strip()) > 1 and LOOKS_LIKE_MATH_RE.search(content):
            unrendered.append(UnrenderedMath(
                kind='inline',
                pattern='$',
                content=content,
                preview=truncate(content, cfg.expression_preview_length),
                normalized_hash=normalized_fingerprint(content),
                position=m.start(),
            ))

    # 2. Raw display $$...$$
    for m in RAW_DISPLAY_RE.finditer(text):
        content = m.group(1)
        if content.strip():
            unrendered.append(UnrenderedMath(
                kind='display',
                pattern='$$',
                content=content,
                preview=truncate(content, cfg.expression_preview_length),
                normalized_hash=normalized_fingerprint(content),
                position=m.start(),
            ))

    # 3. Over-escaped delimiters
    for m in CORRUPTED_ESCAPE_RE.finditer(text):
        corrupted.append(CorruptedEscape(
            kind=CORRUPTED_KINDS[m.group(0)[-1]],
            content=m.group(0),
            position=m.start(),
        ))

    # 4. Environments that never reached the typesetter
    for m in RAW_ENVIRONMENT_RE.finditer(text):
        env_failures.append(EnvironmentFailure(
            environment=m.group(1),
            full_match=m.group(0),
            position=m.start(),
        ))

    unrendered.sort(key=lambda u: u.position)
    return unrendered, corrupted, env_failures


# ==============================================================================
# Entry point
# ==============================================================================

def analyse_rendered_markup(markup: str, cfg: Optional[config.VerifierConfig] = None) -> Optional[RenderedInventory]:
    """
    Analyse exported HTML.

    Returns None when the markup is missing or cannot be analysed.
    """
    cfg = cfg or config.VerifierConfig()
    if not isinstance(markup, str) or not markup.strip():
        log_error(TAG, "No rendered markup supplied")
        return None

    try:
        soup = parse_markup(markup)
        expressions, element_count, container_count = extract_expressions(soup, cfg)
        cross_refs = analyse_cross_references(soup)

        # The scan mutates its tree, so it gets a fresh parse.
        text = visible_content_text(parse_markup(markup))
        log_debug(TAG, f"Scanning {len(text)} characters of visible text", cfg)
        unrendered, corrupted, env_failures = scan_failure_signatures(text, cfg)

        inventory = RenderedInventory(
            expressions=expressions,
            cross_refs=cross_refs,
            unrendered=unrendered,
            corrupted=corrupted,
            environment_failures=env_failures,
            element_count=element_count,
            container_count=container_count,
            markup_length=len(markup),
        )
        log(TAG, f"Found {len(expressions)} expressions "
                 f"({element_count} math elements, {container_count} typeset containers), "
                 f"{len(unrendered)} unrendered, {len(corrupted)} corrupted, "
                 f"{len(env_failures)} environment failures", cfg)
        return inventory

    except Exception as e:
        log_error(TAG, f"Rendered markup analysis failed: {e}")
        return None
