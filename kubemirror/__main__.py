"""Entry point for `python -m kubemirror`.

Usage:
    python -m kubemirror run
    python -m kubemirror status --url http://localhost:8080
"""

from __future__ import annotations

from kubemirror.cli import cli

cli(prog_name="kubemirror")
