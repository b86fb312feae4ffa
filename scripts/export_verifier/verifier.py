#!/usr/bin/env python3
"""
Verification workflow.

verify_export() runs the stages in order (source inventory, rendered
analysis, engine configuration, cross-references, preview attribution,
comparison) and keeps the latest run's state in a VerificationContext.
"""
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from . import config
from .attribution import (
    compare_preview_to_export_crossrefs,
    compare_preview_to_export_math,
    enhance_issue_with_location,
)
from .comparator import compare_source_to_rendered
from .crossrefs import compare_cross_references
from .engine_config import EngineConfig, EngineConfigReader, RegexEngineConfigReader
from .math_protection import extract_and_map_expressions
from .models import ComparisonResult, PreviewComparison, PreviewInventory, RenderedInventory, SourceInventory
from .preview_capture import PreviewSource, capture_preview_state
from .rendered_analyzer import analyse_rendered_markup
from .reporter import print_diagnostic_report
from .source_inventory import ExpressionExtractor, capture_source_inventory
from .utils import log, log_error, log_warn

TAG = "verify"

_DEFAULT = object()


@dataclass
class RunState:
    """Everything one verification run produced."""
    source_inventory: Optional[SourceInventory] = None
    rendered_inventory: Optional[RenderedInventory] = None
    engine_config: Optional[EngineConfig] = None
    preview_inventory: Optional[PreviewInventory] = None
    preview_comparison: Optional[PreviewComparison] = None
    math_comparison: Optional[PreviewComparison] = None
    result: Optional[ComparisonResult] = None


class VerificationContext:
    """
    Owns the collaborators and the latest completed run.

    Runs may overlap; a run only replaces the stored state when no run that
    started after it has already completed.
    """

    def __init__(
        self,
        cfg: Optional[config.VerifierConfig] = None,
        extractor=_DEFAULT,
        config_reader: Optional[EngineConfigReader] = None,
    ):
        self.config = cfg or config.VerifierConfig()
        self.extractor: Optional[ExpressionExtractor] = (
            extract_and_map_expressions if extractor is _DEFAULT else extractor
        )
        self.config_reader = config_reader or RegexEngineConfigReader(self.config)
        self.state = RunState()
        self._lock = threading.Lock()
        self._started = 0
        self._completed = 0

    # --- run bookkeeping ---

    def begin_run(self) -> int:
        with self._lock:
            self._started += 1
            return self._started

    def complete_run(self, run_id: int, state: RunState) -> bool:
        """Store a run's state unless a later run already completed."""
        with self._lock:
            if run_id < self._completed:
                log_warn(TAG, f"Run {run_id} finished after run {self._completed}, result not stored")
                return False
            self._completed = run_id
            self.state = state
            return True

    def clear(self) -> None:
        with self._lock:
            self.state = RunState()
        log(TAG, "Verification state cleared", self.config)

    # --- accessors ---

    @property
    def last_result(self) -> Optional[ComparisonResult]:
        return self.state.result

    @property
    def source_inventory(self) -> Optional[SourceInventory]:
        return self.state.source_inventory

    @property
    def rendered_inventory(self) -> Optional[RenderedInventory]:
        return self.state.rendered_inventory

    @property
    def engine_config(self) -> Optional[EngineConfig]:
        return self.state.engine_config

    @property
    def preview_inventory(self) -> Optional[PreviewInventory]:
        return self.state.preview_inventory

    @property
    def preview_comparison(self) -> Optional[PreviewComparison]:
        return self.state.preview_comparison

    @property
    def math_comparison(self) -> Optional[PreviewComparison]:
        return self.state.math_comparison

    @property
    def status(self) -> str:
        result = self.state.result
        return result.status if result is not None else config.STATUS_UNKNOWN


def _timed(timing: Dict[str, float], name: str, fn: Callable):
    start = time.perf_counter()
    try:
        return fn()
    finally:
        timing[name] = round((time.perf_counter() - start) * 1000, 2)


def verify_export(
    source_text: str,
    rendered_markup: str,
    preview: Optional[PreviewSource] = None,
    context: Optional[VerificationContext] = None,
    check_engine_config: bool = True,
    report: bool = True,
) -> Optional[ComparisonResult]:
    """
    Verify that the exported HTML faithfully reproduces the LaTeX source.

    Args:
        source_text: Raw LaTeX source.
        rendered_markup: Exported HTML.
        preview: Live-preview markup, or a callable returning it. Optional;
                 enables locating cross-reference problems by stage.
        context: Holds configuration, collaborators and the latest run.
        check_engine_config: Read and check the embedded MathJax configuration.
        report: Print the console report when done.

    Returns:
        The ComparisonResult, or None when a precondition failed.
    """
    ctx = context or VerificationContext()
    cfg = ctx.config
    run_id = ctx.begin_run()
    state = RunState()
    timing: Dict[str, float] = {}
    started = time.perf_counter()

    try:
        log(TAG, "Starting export verification", cfg)

        # 1. Source inventory
        state.source_inventory = _timed(timing, 'source_capture_ms',
                                        lambda: capture_source_inventory(source_text, ctx.extractor, cfg))
        if state.source_inventory is None:
            log_error(TAG, "Source inventory unavailable - supply the LaTeX source before exporting")
            return None

        # 2. Rendered markup
        if not rendered_markup or not rendered_markup.strip():
            log_warn(TAG, "No rendered markup supplied - nothing to verify")
            return None
        state.rendered_inventory = _timed(timing, 'export_analysis_ms',
                                          lambda: analyse_rendered_markup(rendered_markup, cfg))
        if state.rendered_inventory is None:
            log_error(TAG, "Rendered markup could not be analysed")
            return None

        # 3. Engine configuration
        if check_engine_config:
            state.engine_config = _timed(timing, 'config_analysis_ms',
                                         lambda: ctx.config_reader.read(rendered_markup))

        # 4. Preview snapshot and stage attribution
        if preview is not None:
            state.preview_inventory = _timed(timing, 'preview_capture_ms',
                                             lambda: capture_preview_state(preview, cfg))
        state.preview_comparison = compare_preview_to_export_crossrefs(
            state.preview_inventory, state.rendered_inventory, cfg)
        state.math_comparison = compare_preview_to_export_math(
            state.preview_inventory, state.rendered_inventory, cfg)

        # 5. Comparison
        result = _timed(timing, 'comparison_ms', lambda: compare_source_to_rendered(
            state.source_inventory, state.rendered_inventory, state.engine_config, cfg))
        if result is None:
            return None

        # 6. Cross-references, annotated with their location
        crossref_result = None
        if state.source_inventory.cross_refs is not None:
            crossref_result = compare_cross_references(
                state.source_inventory.cross_refs, state.rendered_inventory.cross_refs, cfg)
        if crossref_result is not None:
            for issue in crossref_result.issues:
                result.issues.append(enhance_issue_with_location(issue, state.preview_comparison))
            result.passed_checks.extend(crossref_result.passed_checks)
            result.cross_references = crossref_result.cross_references

        for i, issue in enumerate(result.issues, start=1):
            issue.id = i

        timing['total_ms'] = round((time.perf_counter() - started) * 1000, 2)
        result.timing = timing
        state.result = result

        ctx.complete_run(run_id, state)
        log(TAG, f"Verification {result.status.upper()}: {len(result.issues)} issue(s), "
                 f"{len(result.passed_checks)} passed check(s) in {timing['total_ms']:.0f}ms", cfg)

        if report:
            print_diagnostic_report(ctx)
        return result

    except Exception as e:
        log_error(TAG, f"Verification failed: {e}")
        return None


def get_verification_status(context: VerificationContext) -> str:
    return context.status


def clear_verification(context: VerificationContext) -> None:
    context.clear()
