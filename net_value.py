#!/usr/bin/env python3
"""
Net-value curves for the replica portfolio and the fund.

The portfolio curve is a buy-and-hold composite: each instrument contributes
``close(t) / close(t0) * weight`` where ``t0`` is that instrument's own first
bar in the window. Instruments listed part-way through the window therefore
start contributing on their first trading day instead of delaying the whole
curve. Contributions are summed per date and the sum is rebased to 1.0.
"""

from typing import Mapping, Optional

import numpy as np
import pandas as pd

from tushare_client import TabularResult

DATE_FIELD = "trade_date"
TRADING_DAYS = 252


def _to_records(s: pd.Series) -> list[dict]:
    return [{"date": str(d), "netValue": float(v)} for d, v in s.items()]


def _rebase(s: pd.Series) -> pd.Series:
    """Divide by the first value when it is positive; otherwise leave as is."""
    if s.empty:
        return s
    base = s.iloc[0]
    if base > 0:
        return s / base
    return s


def instrument_contribution(table: TabularResult, weight: float) -> pd.Series:
    """Weighted relative-price series for one instrument, indexed by date."""
    df = table.to_frame()
    if df.empty or DATE_FIELD not in df or "close" not in df:
        return pd.Series(dtype=float)
    df = df[[DATE_FIELD, "close"]].dropna()
    df[DATE_FIELD] = df[DATE_FIELD].astype(str)
    df = df.drop_duplicates(DATE_FIELD, keep="last").sort_values(DATE_FIELD)
    closes = df.set_index(DATE_FIELD)["close"].astype(float)
    if closes.empty or closes.iloc[0] == 0:
        return pd.Series(dtype=float)
    return closes / closes.iloc[0] * weight


def build_portfolio_series(series_by_code: Mapping[str, Optional[TabularResult]],
                           weights: Mapping[str, float]) -> list[dict]:
    """Merge weighted per-instrument series into one rebased net-value curve."""
    parts = []
    for code, table in series_by_code.items():
        weight = weights.get(code, 0)
        if not weight or not table:
            continue
        contrib = instrument_contribution(table, weight)
        if not contrib.empty:
            parts.append(contrib.rename(code))

    if not parts:
        return []

    # Per date, sum over the instruments that traded that day
    merged = pd.concat(parts, axis=1).sum(axis=1, min_count=1).dropna()
    merged = merged.sort_index()
    return _to_records(_rebase(merged))


def build_fund_series(fund_daily: Optional[TabularResult]) -> list[dict]:
    """Fund net value rebased to its first bar; NAV preferred over close."""
    if not fund_daily or not fund_daily.has(DATE_FIELD):
        return []
    rows = sorted(fund_daily.records(), key=lambda r: str(r[DATE_FIELD]))

    def _value(row):
        return row.get("nav") or row.get("close")

    initial = _value(rows[0]) or 1
    out = []
    for row in rows:
        v = _value(row)
        if v is None:
            continue
        out.append({"date": str(row[DATE_FIELD]), "netValue": float(v) / float(initial)})
    return out


# =========================================================================
# Summary statistics
# =========================================================================
def series_return_pct(series: list[dict]) -> float:
    """Cumulative return of a rebased series in percent (0 when empty)."""
    if not series:
        return 0.0
    return round((series[-1]["netValue"] - 1) * 100, 2)


def performance_stats(series: list[dict]) -> dict:
    """Total return, annualized volatility and max drawdown, in percent."""
    if len(series) < 2:
        return {"total_return": series_return_pct(series),
                "ann_vol": 0.0, "max_dd": 0.0}
    nv = np.array([p["netValue"] for p in series], dtype=float)

    daily = nv[1:] / nv[:-1] - 1
    ann_vol = np.std(daily, ddof=1) * np.sqrt(TRADING_DAYS) if len(daily) > 1 else 0.0

    running_max = np.maximum.accumulate(nv)
    max_dd = np.min(nv / running_max - 1)

    return {
        "total_return": series_return_pct(series),
        "ann_vol": round(float(ann_vol) * 100, 2),
        "max_dd": round(float(max_dd) * 100, 2),
    }
