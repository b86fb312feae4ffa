import json

import pytest

from export_verifier import (
    EXIT_FAIL,
    EXIT_INPUT,
    EXIT_OK,
    VerificationContext,
    clear_verification,
    config,
    get_verification_status,
    run_with_args,
    verify_export,
)
from export_verifier.verifier import RunState
import export_verifier

from conftest import display_span, export_page, inline_span, mathjax_config, numbered_source


# --- end-to-end scenarios ---

def test_clean_document_passes(ctx, clean_source, clean_export):
    result = verify_export(clean_source, clean_export, context=ctx, report=False)
    assert result is not None
    assert result.status == config.STATUS_PASS
    assert result.issues == []
    assert get_verification_status(ctx) == config.STATUS_PASS
    assert result.cross_references['source_labels'] == 0


def test_undefined_macro_warns(ctx):
    markup = export_page(inline_span("x \\in \\R^n", "m1"), head=mathjax_config())
    result = verify_export("Let $x \\in \\R^n$ be a vector.", markup, context=ctx, report=False)
    assert result.status == config.STATUS_WARN
    assert [i.type for i in result.issues] == ["missing_macros"]
    assert result.issues[0].details.missing == ["R"]


def test_defined_macro_passes(ctx):
    markup = export_page(inline_span("\\R^n", "m1"), head=mathjax_config("R: ['\\\\mathbb{R}', 0]"))
    result = verify_export("$\\R^n$", markup, context=ctx, report=False)
    assert result.status == config.STATUS_PASS


def test_engine_config_check_can_be_skipped(ctx):
    markup = export_page(inline_span("\\R^n", "m1"), head=mathjax_config())
    result = verify_export("$\\R^n$", markup, context=ctx, check_engine_config=False, report=False)
    assert result.issues == []
    assert ctx.engine_config is None


def test_export_only_crossref_attribution(ctx):
    source = "See \\ref{eq:one}.\n$$a = b$$ \\label{eq:one}"
    ref = '<a href="#content-eq:one" data-reference-type="ref" data-reference="eq:one">1</a>'
    rendered = export_page(f'<p>See {ref}.</p>' + display_span("a = b", "m1"))
    preview = f'<div id="output"><p>See {ref}.</p><div id="content-eq:one"></div></div>'

    result = verify_export(source, rendered, preview=preview, context=ctx, report=False)
    issue = result.issues_of("crossref_orphan_refs")[0]
    assert issue.severity == config.SEVERITY_ERROR
    assert issue.issue_location == config.LOCATION_EXPORT_ONLY
    assert issue.works_in_preview is True
    assert issue.works_in_export is False
    assert ctx.preview_inventory.captured
    assert ctx.preview_comparison.available
    assert [i.id for i in result.issues] == list(range(1, len(result.issues) + 1))


def test_crossref_issue_without_preview_has_no_location(ctx):
    ref = '<a href="#content-eq:one" data-reference-type="ref" data-reference="eq:one">1</a>'
    result = verify_export("See \\ref{eq:one}.", export_page(f"<p>{ref}</p>"), context=ctx, report=False)
    issue = result.issues_of("crossref_orphan_refs")[0]
    assert issue.issue_location is None
    assert result.status == config.STATUS_FAIL


def test_verification_is_idempotent(ctx):
    source = numbered_source(12) + "\nRaw $y^2$"
    markup = export_page("<p>Raw $y^2$</p>" + inline_span("x_{0} + 0", "m0"))
    first = verify_export(source, markup, context=ctx, report=False)
    second = verify_export(source, markup, context=ctx, report=False)
    assert [i.to_dict() for i in first.issues] == [i.to_dict() for i in second.issues]
    assert first.passed_checks == second.passed_checks
    assert first.status == second.status


# --- preconditions ---

def test_empty_source_returns_none(ctx, clean_export):
    assert verify_export("", clean_export, context=ctx, report=False) is None
    assert get_verification_status(ctx) == config.STATUS_UNKNOWN


def test_missing_extractor_returns_none(quiet_config, clean_source, clean_export):
    ctx = VerificationContext(quiet_config, extractor=None)
    assert verify_export(clean_source, clean_export, context=ctx, report=False) is None
    assert ctx.last_result is None


def test_empty_markup_returns_none(ctx, clean_source):
    assert verify_export(clean_source, "   ", context=ctx, report=False) is None


def test_default_context(clean_source, clean_export, capsys):
    result = verify_export(clean_source, clean_export, report=False)
    assert result.status == config.STATUS_PASS
    assert "[verify]" in capsys.readouterr().out


# --- context ---

def test_clear_resets_state(ctx, clean_source, clean_export):
    verify_export(clean_source, clean_export, context=ctx, report=False)
    assert ctx.last_result is not None
    clear_verification(ctx)
    assert ctx.last_result is None
    assert ctx.source_inventory is None
    assert get_verification_status(ctx) == config.STATUS_UNKNOWN


def test_late_run_does_not_overwrite_newer_result(ctx):
    older, newer = ctx.begin_run(), ctx.begin_run()
    newer_state, older_state = RunState(), RunState()
    assert ctx.complete_run(newer, newer_state) is True
    assert ctx.complete_run(older, older_state) is False
    assert ctx.state is newer_state


def test_runs_completing_in_order_are_stored(ctx):
    first, second = ctx.begin_run(), ctx.begin_run()
    assert ctx.complete_run(first, RunState())
    final = RunState()
    assert ctx.complete_run(second, final)
    assert ctx.state is final


def test_timing_recorded(ctx, clean_source, clean_export):
    result = verify_export(clean_source, clean_export, context=ctx, report=False)
    for key in ("source_capture_ms", "export_analysis_ms", "comparison_ms", "total_ms"):
        assert key in result.timing


# --- command line ---

@pytest.fixture
def files(tmp_path):
    def write(source: str, rendered: str):
        source_path = tmp_path / "doc.tex"
        rendered_path = tmp_path / "doc.html"
        source_path.write_text(source, encoding="utf-8")
        rendered_path.write_text(rendered, encoding="utf-8")
        return str(source_path), str(rendered_path)
    return write


def test_cli_pass_writes_report(files, tmp_path, clean_source, clean_export):
    source, rendered = files(clean_source, clean_export)
    report = tmp_path / "diagnostics.json"
    code = run_with_args(["--source", source, "--rendered", rendered,
                          "--report", str(report), "--detail", "full", "--quiet"])
    assert code == EXIT_OK
    data = json.loads(report.read_text(encoding="utf-8"))
    assert data['summary']['status'] == "pass"
    assert data['meta']['detail_level'] == "full"


def test_cli_fail(files):
    source, rendered = files(numbered_source(10), export_page("<p>nothing</p>"))
    assert run_with_args(["--source", source, "--rendered", rendered, "--quiet"]) == EXIT_FAIL


def test_cli_warn_exits_zero(files):
    source, rendered = files("$\\R^n$", export_page(inline_span("\\R^n", "m1"), head=mathjax_config()))
    assert run_with_args(["--source", source, "--rendered", rendered, "--quiet"]) == EXIT_OK


def test_cli_ignore_macro(files, capsys):
    source, rendered = files("$\\R^n$", export_page(inline_span("\\R^n", "m1"), head=mathjax_config()))
    run_with_args(["--source", source, "--rendered", rendered, "--quiet", "--ignore-macro", "R"])
    assert "VERIFICATION STATUS: PASS" in capsys.readouterr().out


def test_cli_missing_file(tmp_path, capsys):
    code = run_with_args(["--source", str(tmp_path / "nope.tex"),
                          "--rendered", str(tmp_path / "nope.html")])
    assert code == EXIT_INPUT
    assert "File not found" in capsys.readouterr().err


def test_cli_unreadable_source(files, tmp_path, capsys, clean_export):
    _, rendered = files("$x$", clean_export)
    code = run_with_args(["--source", str(tmp_path), "--rendered", rendered, "--quiet"])
    assert code == EXIT_INPUT
    assert "Cannot read" in capsys.readouterr().err


def test_cli_requires_arguments():
    with pytest.raises(SystemExit):
        run_with_args([])


def test_package_metadata():
    assert export_verifier.__author__ == "LaTeX Export Verifier Contributors"
    assert export_verifier.__version__
