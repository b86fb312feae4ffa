#!/usr/bin/env python3
"""
Live-preview capture.
Snapshots the preview's expressions and cross-references so export-side
problems can be attributed to the export stage or to the earlier conversion.
"""
from typing import Callable, Optional, Union

from . import config
from .models import PreviewInventory
from .rendered_analyzer import analyse_cross_references, extract_expressions, parse_markup
from .utils import log, log_error, wait_for_markup

TAG = "verify:preview"

PreviewSource = Union[str, Callable[[], Optional[str]]]


def _read_preview(preview: PreviewSource, cfg: config.VerifierConfig) -> Optional[str]:
    if callable(preview):
        return wait_for_markup(
            preview,
            timeout=cfg.render_wait_timeout,
            poll_interval=cfg.render_poll_interval,
        )
    return preview


def capture_preview_state(
    preview: Optional[PreviewSource],
    cfg: Optional[config.VerifierConfig] = None,
) -> PreviewInventory:
    """
    Capture expressions and cross-references from the live preview.

    `preview` is either markup or a zero-argument callable returning the
    current markup; a callable is polled until the preview has settled or the
    configured timeout elapses. An uncapturable preview yields an inventory
    with captured=False.
    """
    cfg = cfg or config.VerifierConfig()
    if preview is None:
        return PreviewInventory(captured=False)

    try:
        markup = _read_preview(preview, cfg)
        if not markup or not markup.strip():
            log(TAG, "Preview empty or not available", cfg)
            return PreviewInventory(captured=False)

        soup = parse_markup(markup)
        root = soup.select_one(cfg.preview_container_selector) or soup
        expressions, _, _ = extract_expressions(root, cfg)
        cross_refs = analyse_cross_references(root)

        log(TAG, f"Captured {len(expressions)} expressions, "
                 f"{len(cross_refs.user_refs)} user refs, {len(cross_refs.nav_links)} nav links, "
                 f"{len(cross_refs.anchors)} anchors", cfg)
        return PreviewInventory(expressions=expressions, cross_refs=cross_refs, captured=True)

    except Exception as e:
        log_error(TAG, f"Preview capture failed: {e}")
        return PreviewInventory(captured=False)
