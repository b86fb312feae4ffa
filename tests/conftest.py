import pytest

from export_verifier import VerificationContext, VerifierConfig


FULL_MATHJAX_CONFIG = r"""
<script>
window.MathJax = {
  loader: { load: ['a11y/assistive-mml', 'a11y/sre', 'a11y/semantic-enrich', 'a11y/explorer'] },
  tex: {
    inlineMath: [['\\(', '\\)']],
    displayMath: [['\\[', '\\]']],
    packages: {'[+]': ['ams', 'amssymb']},
    tags: 'ams',
    processEscapes: true,
    processEnvironments: true,
    macros: { %(macros)s }
  },
  options: { a11y: { assistiveMml: true, speechRules: 'mathspeak' } }
};
</script>
"""


def mathjax_config(macros: str = "") -> str:
    """MathJax block with every delimiter, package and a11y module expected."""
    return FULL_MATHJAX_CONFIG % {'macros': macros}


def export_page(body: str, head: str = "") -> str:
    return f"<html><head>{head}</head><body><main>{body}</main></body></html>"


def inline_span(latex: str, parent_id: str = None) -> str:
    attr = f' data-math-parent-id="{parent_id}"' if parent_id else ""
    return f'<span class="math inline"{attr}>\\({latex}\\)</span>'


def display_span(latex: str, parent_id: str = None) -> str:
    attr = f' data-math-parent-id="{parent_id}"' if parent_id else ""
    return f'<span class="math display"{attr}>\\[{latex}\\]</span>'


@pytest.fixture
def quiet_config():
    return VerifierConfig(verbose=False, render_poll_interval=0.0, render_wait_timeout=0.2)


@pytest.fixture
def ctx(quiet_config):
    return VerificationContext(quiet_config)


@pytest.fixture
def clean_source():
    # 3 inline, 1 display, no labels
    return (
        "Let $a+b$ be given. Then $x^2$ holds,\n"
        "and $\\alpha$ as well.\n"
        "$$\\int_0^1 f(x)\\,dx$$\n"
    )


@pytest.fixture
def clean_export():
    return export_page(
        "<p>Let " + inline_span("a+b", "m1") + " be given. Then "
        + inline_span("x^2", "m2") + " holds, and "
        + inline_span("\\alpha", "m3") + " as well.</p>"
        + "<p>" + display_span("\\int_0^1 f(x)\\,dx", "m4") + "</p>"
    )


def numbered_source(n: int) -> str:
    """n distinct inline expressions, one per line."""
    return "\n".join(f"Item $x_{{{i}}} + {i}$." for i in range(n))


def numbered_export(n: int) -> str:
    """The first n expressions of numbered_source, rendered with ids."""
    return export_page("".join(
        f"<p>Item {inline_span(f'x_{{{i}}} + {i}', f'm{i}')}.</p>" for i in range(n)
    ))
