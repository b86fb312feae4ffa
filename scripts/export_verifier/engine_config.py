#!/usr/bin/env python3
"""
Rendering-engine configuration reading.

The exported page embeds its MathJax setup as a `window.MathJax = {...};`
script block. Readers pull the settings the comparator cares about out of
that block; the default reader uses pattern matching, so it is kept behind
the small EngineConfigReader interface and can be replaced by a real parser.
"""
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from . import config
from .models import Expression
from .utils import log, log_error

TAG = "verify:engine"

Delimiter = Tuple[str, str]

CONFIG_BLOCK_RE = re.compile(r'window\.MathJax\s*=\s*\{[\s\S]*?\};')
INLINE_MATH_RE = re.compile(r'inlineMath:\s*(\[\[[\s\S]*?\]\])')
DISPLAY_MATH_RE = re.compile(r'displayMath:\s*(\[\[[\s\S]*?\]\])')
DELIMITER_PAIR_RE = re.compile(r"\['([^']+)',\s*'([^']+)'\]")
PACKAGES_RE = re.compile(r"packages:\s*\{\s*'\[\+\]':\s*\[([\s\S]*?)\]")
QUOTED_RE = re.compile(r"'([^']+)'")
MACROS_RE = re.compile(r'macros:\s*\{((?:[^{}]|\{[^{}]*\})*)\}')
MACRO_ARRAY_RE = re.compile(r'(\w+):\s*\[[\'"]([^\'"]+)[\'"],\s*(\d+)\]')
MACRO_STRING_RE = re.compile(r'(\w+):\s*[\'"]([^\'"]+)[\'"]')
TAGS_RE = re.compile(r'tags:\s*[\'"]([^\'"]+)[\'"]')
PROCESS_ESCAPES_RE = re.compile(r'processEscapes:\s*(true|false)')
PROCESS_ENVIRONMENTS_RE = re.compile(r'processEnvironments:\s*(true|false)')
LOADER_RE = re.compile(r'loader:\s*\{[\s\S]*?load:\s*\[([\s\S]*?)\]')
A11Y_MODULE_RE = re.compile(r'[\'"]a11y/([^\'"]+)[\'"]')
A11Y_BLOCK_RE = re.compile(r'a11y:\s*\{([\s\S]*?)\}')
ASSISTIVE_MML_RE = re.compile(r'assistiveMml:\s*(true|false)')
SPEECH_RULES_RE = re.compile(r'speechRules:\s*[\'"]([^\'"]+)[\'"]')
EXPLORER_RE = re.compile(r'explorer:\s*(true|false)')

SINGLE_LETTER_MACRO_RE = re.compile(r'\\([A-Z])(?![a-zA-Z])')


@dataclass(frozen=True)
class MacroDefinition:
    definition: str
    arg_count: int = 0


@dataclass
class EngineConfig:
    """Settings read from the embedded MathJax configuration."""
    inline_delimiters: List[Delimiter] = field(default_factory=list)
    display_delimiters: List[Delimiter] = field(default_factory=list)
    packages: List[str] = field(default_factory=list)
    macros: Dict[str, MacroDefinition] = field(default_factory=dict)
    tags: Optional[str] = None
    process_escapes: Optional[bool] = None
    process_environments: Optional[bool] = None
    a11y_modules: List[str] = field(default_factory=list)
    assistive_mml: Optional[bool] = None
    speech_rules: Optional[str] = None
    explorer: Optional[bool] = None

    def summary(self) -> dict:
        return {
            'packages': list(self.packages),
            'macro_count': len(self.macros),
            'macros': sorted(self.macros),
            'tags': self.tags,
            'process_escapes': self.process_escapes,
            'process_environments': self.process_environments,
            'inline_delimiters': [list(d) for d in self.inline_delimiters],
            'display_delimiters': [list(d) for d in self.display_delimiters],
            'a11y_modules': list(self.a11y_modules),
            'assistive_mml': self.assistive_mml,
            'speech_rules': self.speech_rules,
            'explorer': self.explorer,
        }


class EngineConfigReader:
    """Reads an EngineConfig from rendered markup; None when absent."""

    def read(self, markup: str) -> Optional[EngineConfig]:
        raise NotImplementedError


def _unescape(text: str) -> str:
    return text.replace('\\\\', '\\')


def _flag(regex, text: str) -> Optional[bool]:
    m = regex.search(text)
    return (m.group(1) == 'true') if m else None


def _delimiters(regex, text: str) -> List[Delimiter]:
    m = regex.search(text)
    if not m:
        return []
    return [(_unescape(a), _unescape(b)) for a, b in DELIMITER_PAIR_RE.findall(m.group(1))]


class RegexEngineConfigReader(EngineConfigReader):
    """Pattern-matching reader for `window.MathJax = {...};` blocks."""

    def __init__(self, cfg: Optional[config.VerifierConfig] = None):
        self.cfg = cfg or config.VerifierConfig()

    def read(self, markup: str) -> Optional[EngineConfig]:
        if not markup:
            return None
        block = CONFIG_BLOCK_RE.search(markup)
        if not block:
            log(TAG, "No MathJax configuration block found", self.cfg)
            return None

        try:
            return self._parse(block.group(0))
        except Exception as e:
            log_error(TAG, f"Failed to read MathJax configuration: {e}")
            return None

    def _parse(self, text: str) -> EngineConfig:
        engine = EngineConfig(
            inline_delimiters=_delimiters(INLINE_MATH_RE, text),
            display_delimiters=_delimiters(DISPLAY_MATH_RE, text),
            process_escapes=_flag(PROCESS_ESCAPES_RE, text),
            process_environments=_flag(PROCESS_ENVIRONMENTS_RE, text),
            explorer=_flag(EXPLORER_RE, text),
        )

        m = PACKAGES_RE.search(text)
        if m:
            engine.packages = QUOTED_RE.findall(m.group(1))

        m = MACROS_RE.search(text)
        if m:
            body = m.group(1)
            for name, definition, argc in MACRO_ARRAY_RE.findall(body):
                engine.macros[name] = MacroDefinition(_unescape(definition), int(argc))
            for name, definition in MACRO_STRING_RE.findall(body):
                engine.macros.setdefault(name, MacroDefinition(_unescape(definition), 0))

        m = TAGS_RE.search(text)
        if m:
            engine.tags = m.group(1)

        m = LOADER_RE.search(text)
        if m:
            engine.a11y_modules = A11Y_MODULE_RE.findall(m.group(1))

        m = A11Y_BLOCK_RE.search(text)
        if m:
            engine.assistive_mml = _flag(ASSISTIVE_MML_RE, m.group(1))
            speech = SPEECH_RULES_RE.search(m.group(1))
            if speech:
                engine.speech_rules = speech.group(1)

        log(TAG, f"MathJax config: {len(engine.packages)} packages, {len(engine.macros)} macros, "
                 f"{len(engine.a11y_modules)} a11y modules", self.cfg)
        return engine


def _custom_macro_re(cfg: config.VerifierConfig):
    names = list(config.KNOWN_CUSTOM_MACROS) + sorted(cfg.extra_custom_macros)
    # Longest first so 'Var' wins over 'V'.
    names = sorted(set(names), key=len, reverse=True)
    return re.compile(r'\\(' + '|'.join(re.escape(n) for n in names) + r')(?![a-zA-Z])')


def detect_custom_macros(expressions: Iterable[Expression], cfg: Optional[config.VerifierConfig] = None) -> List[str]:
    """
    Names of macros used in the source that are probably document-defined.

    Heuristic: single capital-letter commands (\\R, \\E) plus a list of common
    multi-letter custom names. Names in cfg.ignored_macros are dropped and
    cfg.extra_custom_macros are added to the list.
    """
    cfg = cfg or config.VerifierConfig()
    multi_letter = _custom_macro_re(cfg)
    found = set()
    for expr in expressions:
        latex = expr.raw_text or ""
        found.update(SINGLE_LETTER_MACRO_RE.findall(latex))
        found.update(multi_letter.findall(latex))
    return sorted(found - set(cfg.ignored_macros))
