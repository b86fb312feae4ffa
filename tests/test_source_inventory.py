from export_verifier import VerifierConfig
from export_verifier.math_protection import extract_and_map_expressions, unwrap_delimiters
from export_verifier.source_inventory import (
    capture_source_inventory,
    extract_source_cross_references,
    label_type,
)

from conftest import numbered_source


# --- segmentation ---

def test_extractor_finds_every_form_in_order():
    text = (
        "Inline $a$ and \\(b\\).\n"
        "$$c$$\n"
        "\\[d\\]\n"
        "\\begin{align}e &= f\\end{align}\n"
    )
    fragments = list(extract_and_map_expressions(text).values())
    assert [f['latex'] for f in fragments] == ["a", "b", "c", "d", "e &= f"]
    assert [f['type'] for f in fragments] == ["inline", "inline", "display", "display", "environment"]
    assert [f['pattern'] for f in fragments] == ["$", "\\(\\)", "$$", "\\[\\]", "align"]
    positions = [f['position'] for f in fragments]
    assert positions == sorted(positions)


def test_extractor_does_not_split_display_dollars():
    fragments = list(extract_and_map_expressions("$$x + y$$").values())
    assert len(fragments) == 1
    assert fragments[0]['type'] == "display"


def test_extractor_ignores_escaped_dollar():
    assert extract_and_map_expressions("Costs \\$5 today") == {}


def test_unwrap_delimiters():
    assert unwrap_delimiters("\\(x\\)") == "x"
    assert unwrap_delimiters(" \\[ y \\] ") == "y"
    assert unwrap_delimiters("$$z$$") == "z"
    assert unwrap_delimiters("\\begin{align}a\\end{align}") == "a"
    assert unwrap_delimiters("plain") == "plain"


# --- labels ---

def test_label_type_prefixes():
    assert label_type("eq:loss") == "equation"
    assert label_type("sec:intro") == "section"
    assert label_type("fig:arch") == "figure"
    assert label_type("fn:1") == "footnote"
    assert label_type("thm:main") == "other"
    assert label_type("nocolon") == "unknown"
    assert label_type("") == "unknown"


def test_cross_references_collects_labels_and_refs():
    text = (
        "\\section{Intro}\\label{sec:intro}\n"
        "See \\ref{sec:intro} and \\eqref{eq:main}.\n"
        "\\begin{equation}x=1\\label{eq:main}\\end{equation}\n"
    )
    refs = extract_source_cross_references(text)
    assert [l.id for l in refs.labels] == ["sec:intro", "eq:main"]
    assert [l.label_type for l in refs.labels] == ["section", "equation"]
    assert [r.target for r in refs.references] == ["sec:intro", "eq:main"]
    assert [r.command for r in refs.references] == ["ref", "eqref"]
    assert refs.references[0].approximate_line == 2
    assert refs.statistics['total_labels'] == 2
    assert refs.statistics['by_label_type'] == {'section': 1, 'equation': 1}


# --- inventory ---

def test_capture_inventory(clean_source, quiet_config):
    inventory = capture_source_inventory(clean_source, extract_and_map_expressions, quiet_config)
    assert inventory is not None
    assert len(inventory.expressions) == 4
    assert inventory.statistics['by_type'] == {'inline': 3, 'display': 1, 'environment': 0}
    assert inventory.statistics['by_pattern'] == {'$': 3, '$$': 1}
    assert inventory.size_category == "small"
    assert [e.index for e in inventory.expressions] == [0, 1, 2, 3]
    assert inventory.expressions[0].approximate_line == 1
    assert inventory.expressions[2].approximate_line == 2
    assert inventory.expressions[3].is_display


def test_capture_empty_source_returns_none(quiet_config):
    assert capture_source_inventory("", extract_and_map_expressions, quiet_config) is None
    assert capture_source_inventory("   \n", extract_and_map_expressions, quiet_config) is None


def test_capture_without_extractor_returns_none(quiet_config, capsys):
    assert capture_source_inventory("$x$", None, quiet_config) is None
    assert "[ERROR]" in capsys.readouterr().err


def test_capture_source_without_math(quiet_config):
    inventory = capture_source_inventory("Just prose.", extract_and_map_expressions, quiet_config)
    assert inventory is not None
    assert inventory.expressions == []
    assert inventory.statistics['total'] == 0


def test_capture_caps_stored_expressions():
    cfg = VerifierConfig(verbose=False, max_expressions_to_store=10)
    inventory = capture_source_inventory(numbered_source(25), extract_and_map_expressions, cfg)
    assert len(inventory.expressions) == 10
    assert inventory.statistics['total'] == 25
    assert inventory.statistics['truncated'] is True


def test_capture_reports_duplicate_fingerprints(quiet_config):
    inventory = capture_source_inventory("$x$ and again $x$ and $y$",
                                         extract_and_map_expressions, quiet_config)
    duplicates = inventory.statistics['duplicate_hashes']
    assert len(duplicates) == 1
    assert duplicates[0]['count'] == 2
    assert duplicates[0]['indices'] == [0, 1]


def test_capture_with_custom_extractor(quiet_config):
    def extractor(text):
        return {1: {'latex': 'b', 'type': 'display', 'pattern': 'custom', 'position': 10},
                0: {'latex': 'a', 'type': 'inline', 'pattern': 'custom', 'position': 2}}

    inventory = capture_source_inventory("0123456789abcdef", extractor, quiet_config)
    assert [e.raw_text for e in inventory.expressions] == ["a", "b"]


def test_capture_survives_extractor_failure(quiet_config):
    def extractor(text):
        raise ValueError("bad source")

    assert capture_source_inventory("$x$", extractor, quiet_config) is None


def test_capture_debug_reports_fragment_count(capsys):
    cfg = VerifierConfig(verbose=False, debug=True)
    capture_source_inventory("$a$ and $b$", extract_and_map_expressions, cfg)
    assert "[verify:source] debug: Extractor returned 2 fragments" in capsys.readouterr().out
