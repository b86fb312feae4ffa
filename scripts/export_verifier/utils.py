#!/usr/bin/env python3
"""
Utility functions for export verification.
Includes LaTeX normalisation, fingerprinting, previews, line estimation,
console logging and the bounded wait used while the preview settles.
"""
import re
import sys
import time
from typing import Callable, Optional

from . import config


# --- LOGGING ---

def log(tag: str, message: str, cfg: Optional[config.VerifierConfig] = None) -> None:
    """Progress message on stdout, silenced when the run is not verbose."""
    if cfg is not None and not cfg.verbose:
        return
    print(f"[{tag}] {message}")


def log_debug(tag: str, message: str, cfg: Optional[config.VerifierConfig] = None) -> None:
    if cfg is None or not cfg.debug:
        return
    print(f"[{tag}] debug: {message}")


def log_warn(tag: str, message: str) -> None:
    print(f"[{tag}] [WARN] {message}", file=sys.stderr)


def log_error(tag: str, message: str) -> None:
    print(f"[{tag}] [ERROR] {message}", file=sys.stderr)


# --- TEXT ---

def normalize_latex(text: str) -> str:
    """Collapse whitespace and drop spaces around braces and backslashes."""
    if not text:
        return ""
    text = re.sub(r'\s+', ' ', text)
    text = re.sub(r'\s*([{}\\])\s*', r'\1', text)
    return text.strip()


def fingerprint(text: str) -> str:
    """
    Deterministic 8-character hex fingerprint of a string.

    Polynomial rolling hash (h * 31 + c) wrapped to a signed 32-bit integer,
    then the absolute value in zero-padded hex. Not cryptographic; collisions
    are tolerated and reported.
    """
    if not text:
        return "00000000"
    h = 0
    for ch in text:
        h = (h * 31 + ord(ch)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return format(abs(h), 'x').zfill(8)[:8]


def normalized_fingerprint(text: str) -> str:
    return fingerprint(normalize_latex(text))


def truncate(text: str, max_length: int = config.EXPRESSION_PREVIEW_LENGTH) -> str:
    """Shorten text to max_length, ending with '...' when cut."""
    if not text:
        return ""
    if len(text) <= max_length:
        return text
    return text[:max(max_length - 3, 0)] + "..."


def estimate_line_number(content: str, position: int) -> int:
    """1-based line number of a character offset (0 when unknown)."""
    if not content or position is None or position < 0:
        return 0
    return content.count('\n', 0, position) + 1


def size_category(count: int) -> str:
    if count < config.SIZE_THRESHOLDS['small']:
        return "small"
    if count < config.SIZE_THRESHOLDS['medium']:
        return "medium"
    if count < config.SIZE_THRESHOLDS['large']:
        return "large"
    return "veryLarge"


def compact(text: str) -> str:
    """Remove all whitespace (last-resort comparison form)."""
    return re.sub(r'\s+', '', text or "")


# --- WAITING ---

def _has_markup(markup: Optional[str]) -> bool:
    return bool(markup and markup.strip())


def wait_for_markup(
    read_markup: Callable[[], Optional[str]],
    timeout: float = config.RENDER_WAIT_TIMEOUT,
    poll_interval: float = config.RENDER_POLL_INTERVAL,
    is_settled: Optional[Callable[[str], bool]] = None,
) -> Optional[str]:
    """
    Poll read_markup until it returns settled markup or the timeout elapses.

    Never raises on timeout: the most recent markup read (possibly None) is
    returned so the caller can proceed with whatever is available.
    """
    settled = is_settled or _has_markup
    deadline = time.monotonic() + max(timeout, 0.0)
    latest = None

    while True:
        try:
            latest = read_markup()
        except Exception as e:
            log_warn("verify:wait", f"Reading markup failed: {e}")
            latest = None

        if latest is not None and settled(latest):
            return latest
        if time.monotonic() >= deadline:
            log_warn("verify:wait", f"Markup not settled after {timeout:.1f}s, using latest available")
            return latest
        time.sleep(poll_interval)
