from export_verifier.utils import (
    compact,
    estimate_line_number,
    fingerprint,
    normalize_latex,
    normalized_fingerprint,
    size_category,
    truncate,
    wait_for_markup,
)


# --- normalisation ---

def test_normalize_collapses_whitespace_and_brace_spacing():
    assert normalize_latex("  \\frac{ a }{ b }\n+  c ") == "\\frac{a}{b}+ c"


def test_normalize_is_idempotent():
    text = "\\sum_{i = 1}^{n}   x_i \\, dx"
    once = normalize_latex(text)
    assert normalize_latex(once) == once


def test_normalize_empty():
    assert normalize_latex("") == ""
    assert normalize_latex(None) == ""


# --- fingerprints ---

def test_fingerprint_known_values():
    assert fingerprint("") == "00000000"
    assert fingerprint("a") == "00000061"
    assert fingerprint("ab") == "00000c21"


def test_fingerprint_is_stable_and_eight_hex_chars():
    text = "\\int_0^\\infty e^{-x^2}\\,dx = \\frac{\\sqrt{\\pi}}{2}"
    first = fingerprint(text)
    assert first == fingerprint(text)
    assert len(first) == 8
    int(first, 16)


def test_normalized_fingerprint_ignores_whitespace_differences():
    assert normalized_fingerprint("a  +  b") == normalized_fingerprint("a + b")
    assert normalized_fingerprint("\\frac{a}{ b }") == normalized_fingerprint("\\frac{a}{b}")


# --- previews & positions ---

def test_truncate():
    assert truncate("short", 10) == "short"
    assert truncate("abcdefghij", 6) == "abc..."
    assert truncate("", 10) == ""


def test_estimate_line_number():
    text = "a\nb\nc"
    assert estimate_line_number(text, 0) == 1
    assert estimate_line_number(text, 2) == 2
    assert estimate_line_number(text, 4) == 3
    assert estimate_line_number("", 3) == 0


def test_size_category():
    assert size_category(0) == "small"
    assert size_category(50) == "medium"
    assert size_category(200) == "large"
    assert size_category(500) == "veryLarge"


def test_compact():
    assert compact(" a +\n b ") == "a+b"


# --- waiting ---

def test_wait_returns_once_markup_settles():
    reads = iter([None, "", "  ", "<p>ready</p>"])
    markup = wait_for_markup(lambda: next(reads, "<p>ready</p>"), timeout=1.0, poll_interval=0.0)
    assert markup == "<p>ready</p>"


def test_wait_times_out_with_latest_markup(capsys):
    markup = wait_for_markup(lambda: "", timeout=0.05, poll_interval=0.01)
    assert markup == ""
    assert "[WARN]" in capsys.readouterr().err


def test_wait_survives_reader_errors():
    def broken():
        raise RuntimeError("preview gone")

    assert wait_for_markup(broken, timeout=0.02, poll_interval=0.01) is None


def test_wait_custom_settled_predicate():
    reads = iter(["<p>typesetting</p>", "<p>done</p>"])
    markup = wait_for_markup(
        lambda: next(reads, "<p>done</p>"),
        timeout=1.0,
        poll_interval=0.0,
        is_settled=lambda m: "done" in m,
    )
    assert markup == "<p>done</p>"
