#!/usr/bin/env python3
"""
LaTeX Export Verifier
=====================

Checks an exported HTML document against the LaTeX source it came from and
reports anything that did not survive the trip.

Usage:
    python run_export_verifier.py --source doc.tex --rendered doc.html
    python run_export_verifier.py --source doc.tex --rendered doc.html \\
        --preview preview.html --report diagnostics.json --detail full

Checks:
    - Expression count, order, display mode and content
    - Raw, over-escaped or unconverted math left in the page
    - MathJax delimiters, packages, custom macros and accessibility modules
    - Cross-references resolving to anchors and showing numbers
    - Preview vs export attribution of cross-reference problems

Exit codes: 0 pass/warn, 1 fail, 2 missing input.
"""

import sys
import os

# Ensure the scripts directory is in the path
script_dir = os.path.dirname(os.path.abspath(__file__))
if script_dir not in sys.path:
    sys.path.insert(0, script_dir)


def main():
    """Main entry point for the export verifier."""
    from export_verifier import run_with_args
    return run_with_args()


if __name__ == "__main__":
    raise SystemExit(main())
