#!/usr/bin/env python3
"""
Holdings disclosure period selection.

Fund portfolio disclosures come back for every reporting period at once.
The Q1 (0331) and Q3 (0930) reports usually list only the top-10 holdings;
the interim (0630) and annual (1231) reports are complete. We therefore take
the most recent complete report that is not in the future, and only fall
back to the most recent partial report when no complete one exists.
"""

from datetime import date
from typing import Iterable, Optional

from run_context import get_logger
from tushare_client import TabularResult

log = get_logger("holdings")

PERIOD_FIELD = "end_date"
FULL_DISCLOSURE_MARKS = ("0630", "1231")


def _as_period(d) -> str:
    if isinstance(d, date):
        return d.strftime("%Y%m%d")
    return str(d)


def is_full_disclosure(period: str) -> bool:
    return str(period).endswith(FULL_DISCLOSURE_MARKS)


def select_period(periods: Iterable[str], as_of) -> Optional[str]:
    """Pick the reporting period to use, or None if every period is after ``as_of``."""
    cutoff = _as_period(as_of)
    candidates = sorted({str(p) for p in periods if p and str(p) <= cutoff}, reverse=True)
    if not candidates:
        return None
    full = [p for p in candidates if is_full_disclosure(p)]
    chosen = full[0] if full else candidates[0]
    log.info(f"Found {len(candidates)} reporting periods; "
             f"full report periods (Q2/Q4): {full[:3]}; using {chosen}",
             extra={"period": chosen, "count": len(candidates)})
    return chosen


def resolve_latest_period(disclosure: Optional[TabularResult], as_of) -> Optional[TabularResult]:
    """Rows of ``disclosure`` that belong to the selected reporting period."""
    if not disclosure:
        return None
    if not disclosure.has(PERIOD_FIELD):
        return disclosure
    period = select_period(disclosure.column(PERIOD_FIELD), as_of)
    if period is None:
        log.error("No valid reporting periods found")
        return None
    return disclosure.filter(PERIOD_FIELD, period)
