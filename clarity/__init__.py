"""
Clarity - notes with tiered intelligence.

Per-note extraction, project matching, a staleness-gated session snapshot and
a once-per-day digest, all gated by a usage quota ledger.
"""

__version__ = "1.0.0"
