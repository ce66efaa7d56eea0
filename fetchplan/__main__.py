"""Entry point for `python -m fetchplan`.

Serves the diagnostics API on FETCHPLAN_API_PORT until interrupted.
"""

from __future__ import annotations

from fetchplan.app import run

run()
