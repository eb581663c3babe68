"""
Regional contest tabulator.

- scoring: per-judge totals from criterion / round entries
- submission: one score per (judge, participant), gated by the event lock
- ranking: per-event ordering with a tie-break criterion
- standings: cross-event district mean-rank ordering
- realtime: score change feed and reconciliation
"""

__version__ = "1.0.0"
