#!/usr/bin/env python3
"""
Math segmentation utilities.
Finds LaTeX math in source text (the default expression extractor) and
unwraps delimiters from math recovered out of rendered markup.
"""
import re
from typing import Dict, List

from . import config

ENV_NAMES = "|".join(config.MATH_ENVIRONMENTS)

# Display forms are claimed before inline forms so `$$` never splits into two `$`.
DISPLAY_DOLLAR_RE = re.compile(r'\$\$([\s\S]+?)\$\$')
DISPLAY_BRACKET_RE = re.compile(r'\\\[([\s\S]+?)\\\]')
ENVIRONMENT_RE = re.compile(r'\\begin\{((?:' + ENV_NAMES + r')\*?)\}([\s\S]*?)\\end\{\1\}')
INLINE_DOLLAR_RE = re.compile(r'(?<![\\$])\$([^$]+?)\$(?!\$)')
INLINE_PAREN_RE = re.compile(r'\\\(([\s\S]+?)\\\)')

_UNWRAP_PATTERNS = (
    ('inline', re.compile(r'^\\\(([\s\S]*)\\\)$')),
    ('display', re.compile(r'^\\\[([\s\S]*)\\\]$')),
    ('display', re.compile(r'^\$\$([\s\S]*)\$\$$')),
    ('inline', re.compile(r'^\$([\s\S]*)\$$')),
    ('environment', re.compile(r'^\\begin\{(\w+\*?)\}([\s\S]*)\\end\{\1\}$')),
)


def _mask(text: str, start: int, end: int) -> str:
    """Blank out a claimed span, keeping offsets intact for later passes."""
    return text[:start] + (' ' * (end - start)) + text[end:]


def extract_and_map_expressions(source_text: str) -> Dict[int, dict]:
    """
    Segment source text into math fragments.

    Returns an ordinal -> {latex, type, pattern, position} mapping, ordered by
    position of first appearance. Empty fragments are skipped.
    """
    if not source_text:
        return {}

    found: List[dict] = []
    working = source_text

    # 1. Display math ($$ and \[ \])
    for regex, pattern in ((DISPLAY_DOLLAR_RE, "$$"), (DISPLAY_BRACKET_RE, "\\[\\]")):
        for m in regex.finditer(working):
            latex = m.group(1).strip()
            if latex:
                found.append({'latex': latex, 'type': 'display', 'pattern': pattern, 'position': m.start()})
            working = _mask(working, m.start(), m.end())

    # 2. Environments
    for m in ENVIRONMENT_RE.finditer(working):
        latex = m.group(2).strip()
        if latex:
            env = m.group(1).rstrip('*')
            found.append({'latex': latex, 'type': 'environment', 'pattern': env, 'position': m.start()})
        working = _mask(working, m.start(), m.end())

    # 3. Inline math ($ and \( \))
    for regex, pattern in ((INLINE_DOLLAR_RE, "$"), (INLINE_PAREN_RE, "\\(\\)")):
        for m in regex.finditer(working):
            latex = m.group(1).strip()
            if latex:
                found.append({'latex': latex, 'type': 'inline', 'pattern': pattern, 'position': m.start()})
            working = _mask(working, m.start(), m.end())

    found.sort(key=lambda item: item['position'])
    return {i: item for i, item in enumerate(found)}


def unwrap_delimiters(text: str) -> str:
    """Strip one layer of math delimiters (\\( \\), \\[ \\], $, $$, environments)."""
    if not text:
        return ""
    text = text.strip()
    for kind, regex in _UNWRAP_PATTERNS:
        m = regex.match(text)
        if m:
            inner = m.group(2) if kind == 'environment' else m.group(1)
            return inner.strip()
    return text
