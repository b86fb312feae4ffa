import pytest

from export_verifier import VerifierConfig, config
from export_verifier.comparator import (
    CAUSE_CUSTOM_MACRO,
    CAUSE_ENVIRONMENT,
    CAUSE_PACKAGE,
    CAUSE_UNKNOWN,
    compare_source_to_rendered,
    determine_likely_cause,
)
from export_verifier.engine_config import EngineConfig, MacroDefinition
from export_verifier.math_protection import extract_and_map_expressions
from export_verifier.models import ComparisonResult, CountDetails, Issue, SequenceDetails
from export_verifier.rendered_analyzer import analyse_rendered_markup
from export_verifier.source_inventory import capture_source_inventory

from conftest import display_span, export_page, inline_span, numbered_export, numbered_source


def compare(source_text, markup, cfg, engine=None):
    source = capture_source_inventory(source_text, extract_and_map_expressions, cfg)
    rendered = analyse_rendered_markup(markup, cfg)
    return compare_source_to_rendered(source, rendered, engine, cfg)


def complete_engine(**overrides) -> EngineConfig:
    settings = dict(
        inline_delimiters=[("\\(", "\\)")],
        display_delimiters=[("\\[", "\\]")],
        packages=["ams", "amssymb"],
        a11y_modules=["assistive-mml", "sre", "semantic-enrich", "explorer"],
        assistive_mml=True,
    )
    settings.update(overrides)
    return EngineConfig(**settings)


def check_names(result):
    return [c.check for c in result.passed_checks]


# --- clean document ---

def test_clean_document_passes(clean_source, clean_export, quiet_config):
    result = compare(clean_source, clean_export, quiet_config)
    assert result.issues == []
    assert result.status == config.STATUS_PASS
    assert result.source_expression_count == 4
    assert result.rendered_expression_count == 4
    for check in ("expression_count", "sequence_order", "anchor_ids", "type_consistency",
                  "content_fidelity", "no_unrendered", "no_missing", "delimiter_integrity"):
        assert check in check_names(result)


def test_missing_inventory_returns_none(quiet_config):
    assert compare_source_to_rendered(None, None, cfg=quiet_config) is None


# --- count parity ---

@pytest.mark.parametrize("rendered, expected", [
    (100, None),
    (95, None),
    (94, config.SEVERITY_WARNING),
    (80, config.SEVERITY_WARNING),
    (79, config.SEVERITY_ERROR),
])
def test_count_parity_thresholds(rendered, expected, quiet_config):
    result = compare(numbered_source(100), numbered_export(rendered), quiet_config)
    issues = result.issues_of("count_mismatch")
    if expected is None:
        assert issues == []
        assert "expression_count" in check_names(result)
    else:
        assert len(issues) == 1
        assert issues[0].severity == expected
        assert isinstance(issues[0].details, CountDetails)
        assert issues[0].details.rendered_count == rendered


def test_empty_export_is_an_error(quiet_config):
    result = compare(numbered_source(3), export_page("<p>nothing here</p>"), quiet_config)
    assert result.issues_of("count_mismatch")[0].severity == config.SEVERITY_ERROR
    assert result.status == config.STATUS_FAIL


def test_count_parity_uses_full_source_total():
    cfg = VerifierConfig(verbose=False, max_expressions_to_store=10)
    result = compare(numbered_source(12), numbered_export(10), cfg)
    issues = result.issues_of("count_mismatch")
    assert len(issues) == 1
    assert issues[0].severity == config.SEVERITY_WARNING
    assert issues[0].details.source_count == 12
    assert issues[0].details.rendered_count == 10
    assert result.source_expression_count == 12


# --- order, type and content ---

def test_swapped_expressions_reported_as_sequence_mismatch(quiet_config):
    markup = export_page(inline_span("b", "m1") + inline_span("a", "m2"))
    result = compare("$a$ then $b$", markup, quiet_config)
    issues = result.issues_of("sequence_mismatch")
    assert len(issues) == 1
    assert issues[0].severity == config.SEVERITY_WARNING
    assert isinstance(issues[0].details, SequenceDetails)
    assert issues[0].details.mismatch_count == 2
    assert "2 expression(s) may be in different order" in issues[0].message


def test_display_mode_change_is_type_mismatch(quiet_config):
    markup = export_page(inline_span("a+b", "m1"))
    result = compare("$$a+b$$", markup, quiet_config)
    issues = result.issues_of("type_mismatch")
    assert len(issues) == 1
    sample = issues[0].details.samples[0]
    assert (sample.source_type, sample.rendered_type) == ("display", "inline")


def test_environment_matches_display(quiet_config):
    markup = export_page(display_span("a &= b", "m1"))
    result = compare("\\begin{align}a &= b\\end{align}", markup, quiet_config)
    assert result.issues_of("type_mismatch") == []


def test_type_parity_skipped_when_counts_differ(quiet_config):
    markup = export_page(inline_span("a", "m1"))
    result = compare("$$a$$ and $b$", markup, quiet_config)
    assert result.issues_of("type_mismatch") == []
    assert "type_consistency" not in check_names(result)


def test_content_difference_sampled(quiet_config):
    markup = export_page(inline_span("a", "m1") + inline_span("q", "m2"))
    result = compare("$a$ and $b$", markup, quiet_config)
    issues = result.issues_of("content_mismatch")
    assert len(issues) == 1
    assert issues[0].details.mismatch_count == 1
    assert issues[0].details.samples[0].position == 2


def test_duplicate_fingerprints_are_info(quiet_config):
    markup = export_page(inline_span("x", "m1") + inline_span("x", "m2"))
    result = compare("$x$ and $x$", markup, quiet_config)
    issues = result.issues_of("duplicate_hashes")
    assert len(issues) == 1
    assert issues[0].severity == config.SEVERITY_INFO
    assert result.status == config.STATUS_PASS


# --- structural ids ---

def test_few_missing_ids_warn(quiet_config):
    spans = "".join(inline_span(f"x_{{{i}}} + {i}", f"m{i}" if i else None) for i in range(20))
    result = compare(numbered_source(20).replace("Item ", ""), export_page(spans), quiet_config)
    issues = result.issues_of("missing_ids")
    assert len(issues) == 1
    assert issues[0].severity == config.SEVERITY_WARNING
    assert issues[0].details.missing == 1


def test_many_missing_ids_error(quiet_config):
    markup = export_page(inline_span("a") + inline_span("b", "m2"))
    result = compare("$a$ $b$", markup, quiet_config)
    issues = result.issues_of("missing_ids")
    assert issues[0].severity == config.SEVERITY_ERROR
    assert issues[0].details.ratio == 0.5


# --- engine configuration ---

def test_complete_engine_config_passes(clean_source, clean_export, quiet_config):
    result = compare(clean_source, clean_export, quiet_config, engine=complete_engine())
    assert result.issues == []
    assert "mathjax_config" in check_names(result)
    assert "a11y_modules" in check_names(result)


def test_undefined_custom_macro_warns(quiet_config):
    markup = export_page(inline_span("x \\in \\R^n", "m1"))
    result = compare("Let $x \\in \\R^n$.", markup, quiet_config, engine=complete_engine())
    assert [i.type for i in result.issues] == ["missing_macros"]
    issue = result.issues[0]
    assert issue.severity == config.SEVERITY_WARNING
    assert issue.details.missing == ["R"]
    assert result.status == config.STATUS_WARN


def test_defined_custom_macro_passes(quiet_config):
    markup = export_page(inline_span("\\R^n", "m1"))
    engine = complete_engine(macros={"R": MacroDefinition("\\mathbb{R}")})
    result = compare("$\\R^n$", markup, quiet_config, engine=engine)
    assert result.issues == []
    assert "custom_macros" in check_names(result)


def test_engine_config_findings(clean_source, clean_export, quiet_config):
    engine = complete_engine(
        inline_delimiters=[("$", "$")],
        packages=["ams"],
        a11y_modules=["assistive-mml", "explorer"],
        assistive_mml=False,
    )
    result = compare(clean_source, clean_export, quiet_config, engine=engine)
    found = {(i.type, i.severity, i.details.setting) for i in result.issues}
    assert found == {
        ("missing_delimiter", config.SEVERITY_ERROR, "inlineMath"),
        ("missing_package", config.SEVERITY_WARNING, "packages"),
        ("missing_a11y_module", config.SEVERITY_WARNING, "loader.load"),
        ("missing_a11y_module", config.SEVERITY_INFO, "loader.load"),
        ("a11y_disabled", config.SEVERITY_WARNING, "a11y.assistiveMml"),
    }
    assert "mathjax_config" not in check_names(result)
    assert "a11y_modules" not in check_names(result)
    assert result.status == config.STATUS_FAIL


def test_engine_checks_skipped_without_config(clean_source, clean_export, quiet_config):
    result = compare(clean_source, clean_export, quiet_config, engine=None)
    assert "mathjax_config" not in check_names(result)


# --- failure signatures ---

def test_unrendered_expression_linked_to_source(quiet_config):
    source_text = "First line.\nWe know $x^2 + 1$ here."
    markup = export_page("<p>We know $x^2 + 1$ here.</p>")
    result = compare(source_text, markup, quiet_config)
    issues = result.issues_of("unrendered")
    assert len(issues) == 1
    issue = issues[0]
    assert issue.severity == config.SEVERITY_WARNING
    assert issue.source_index == 0
    assert issue.approximate_line == 2
    assert issue.likely_cause == CAUSE_UNKNOWN
    assert "inlineMath" in issue.suggested_fix
    # Visible as raw text, so not also reported missing
    assert result.issues_of("missing") == []


def test_missing_expressions_capped_with_summary():
    cfg = VerifierConfig(verbose=False, max_issues_to_show=20)
    result = compare(numbered_source(25), export_page("<p>nothing</p>"), cfg)
    assert len(result.issues_of("missing")) == 20
    summary = result.issues_of("missing_summary")
    assert len(summary) == 1
    assert summary[0].severity == config.SEVERITY_INFO
    assert summary[0].details.remaining == 5
    assert "+5 more" in summary[0].message


def test_corrupted_delimiters_error(quiet_config):
    markup = export_page(inline_span("a", "m1") + "<p>\\\\\\\\\\(b\\\\\\\\\\)</p>")
    result = compare("$a$", markup, quiet_config)
    issues = result.issues_of("corrupted_delimiters")
    assert len(issues) == 1
    assert issues[0].severity == config.SEVERITY_ERROR
    assert issues[0].details.count == 2


def test_environment_failure_error(quiet_config):
    markup = export_page(inline_span("a", "m1") + "<p>\\begin{gather} x \\end{gather}</p>")
    result = compare("$a$", markup, quiet_config)
    issues = result.issues_of("environment_failure")
    assert [i.details.environment for i in issues] == ["gather"]
    assert result.status == config.STATUS_FAIL


def test_issue_ids_are_sequential(quiet_config):
    result = compare(numbered_source(5), export_page("<p>nothing</p>"), quiet_config)
    assert [i.id for i in result.issues] == list(range(1, len(result.issues) + 1))


# --- heuristics & models ---

def test_likely_cause():
    assert determine_likely_cause("\\R^n") == CAUSE_CUSTOM_MACRO
    assert determine_likely_cause("\\begin{cases} a \\end{cases}") == CAUSE_ENVIRONMENT
    assert determine_likely_cause("\\mathbb{Z}") == CAUSE_PACKAGE
    assert determine_likely_cause("a + b") == CAUSE_UNKNOWN


def test_issue_rejects_wrong_details():
    with pytest.raises(TypeError):
        Issue(id=1, type="count_mismatch", severity="error", message="m",
              details=SequenceDetails(mismatch_count=0, compared=0, samples=[]))


def test_issue_rejects_unknown_severity_and_type():
    with pytest.raises(ValueError):
        Issue(id=1, type="count_mismatch", severity="fatal", message="m")
    with pytest.raises(ValueError):
        Issue(id=1, type="not_a_type", severity="error", message="m")
    with pytest.raises(ValueError):
        Issue(id=1, type="missing_config", severity="error", message="m")


def test_status_derived_from_severities():
    result = ComparisonResult()
    assert result.status == config.STATUS_PASS
    result.issues.append(Issue(id=1, type="duplicate_hashes", severity="info", message="m"))
    assert result.status == config.STATUS_PASS
    result.issues.append(Issue(id=2, type="missing", severity="warning", message="m"))
    assert result.status == config.STATUS_WARN
    result.issues.append(Issue(id=3, type="corrupted_delimiters", severity="error", message="m"))
    assert result.status == config.STATUS_FAIL
    assert result.summary['issues_by_type'] == {
        'duplicate_hashes': 1, 'missing': 1, 'corrupted_delimiters': 1,
    }


def test_issue_to_dict_drops_unset_fields():
    issue = Issue(id=1, type="missing", severity="warning", message="m", source_index=3)
    assert issue.to_dict() == {
        'id': 1, 'type': 'missing', 'severity': 'warning', 'message': 'm', 'source_index': 3,
    }
