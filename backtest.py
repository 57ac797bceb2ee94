#!/usr/bin/env python3
"""
ETF Replica - Backtests
=======================
Two use cases share one pipeline:

  A. Custom list     caller-supplied instruments, equal weights.
  B. ETF replica     holdings of the tracked fund (latest complete
                     disclosure), dual-factor weights (dividend yield + ROCE).

Both fetch daily bars through the windowed batch scheduler, build a
buy-and-hold net-value curve and compare it with the fund's own curve over
the same window.

IMPORTANT DISCLAIMERS:
  * Look-ahead bias: the ETF replica uses the latest disclosure and the
    latest financial statements available today, not those available at
    the start of the window.
  * Survivorship bias: instruments that left the fund before the latest
    disclosure are not included.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Sequence

import factor_engine
import market_data
from batching import isolated, run_batches
from holdings import resolve_latest_period
from net_value import (build_fund_series, build_portfolio_series,
                       performance_stats, series_return_pct)
from portfolio_report import (build_holding_row, fetch_name_industry,
                              market_cap_from, sort_by_weight)
from run_context import RunContext, get_logger
from schemas import FactorRecord, HoldingRow, RunConfig
from symbols import normalize_symbol, normalize_symbols
from tushare_client import ProviderClient

log = get_logger("backtest")

ETF_STRATEGY = "Dual-Factor (Dividend Yield + ROCE)"


class BacktestError(Exception):
    """A backtest request that cannot be served."""


class InvalidRequestError(BacktestError):
    """Malformed request parameters (dates, instrument list)."""


class InsufficientDataError(BacktestError):
    """Required upstream data (holdings, instruments) is unavailable."""


@dataclass
class BacktestResult:
    portfolio: list
    fund: list
    holdings: list[HoldingRow]
    statistics: dict
    meta: dict = field(default_factory=dict)

    def to_payload(self) -> dict:
        """Response body ``data`` object for the web page."""
        return {
            "portfolio": self.portfolio,
            "etf": self.fund,
            "stocksInfo": [h.display() for h in self.holdings],
            "statistics": self.statistics,
        }


def validate_date(value, name: str) -> str:
    """Return ``value`` if it is an 8-digit YYYYMMDD calendar date."""
    s = str(value or "")
    try:
        if len(s) != 8:
            raise ValueError
        datetime.strptime(s, "%Y%m%d")
    except ValueError:
        raise InvalidRequestError(f"{name} must be a YYYYMMDD date, got {value!r}")
    return s


def _validate_window(start_date, end_date) -> tuple[str, str]:
    start = validate_date(start_date, "startDate")
    end = validate_date(end_date, "endDate")
    if start > end:
        raise InvalidRequestError(f"startDate {start} is after endDate {end}")
    return start, end


# =========================================================================
# Shared steps
# =========================================================================
def fetch_price_series(client: ProviderClient, cfg: RunConfig, codes: Sequence[str],
                       start_date: str, end_date: str) -> dict:
    """Daily bars per code; codes whose fetch failed map to None."""
    log.info(f"Fetching historical price data for {len(codes)} stocks...",
             extra={"phase": "prices", "count": len(codes)})
    worker = isolated(lambda code, i: market_data.get_daily(client, code, start_date, end_date))
    outcomes = run_batches(codes, worker, cfg.batching.price_window,
                           cfg.batching.inter_batch_delay)
    return {o.code: o.value if o.ok else None for o in outcomes}


def fetch_factor_records(client: ProviderClient, cfg: RunConfig, codes: Sequence[str],
                         end_date: str) -> list[FactorRecord]:
    log.info(f"Fetching factor data for {len(codes)} stocks "
             "(latest available financial reports)",
             extra={"phase": "factors", "count": len(codes)})

    def _fetch(code, i):
        log.debug(f"[{i + 1}/{len(codes)}] Processing {code}...", extra={"code": code})
        return factor_engine.fetch_factor_record(client, code, end_date)

    outcomes = run_batches(codes, isolated(_fetch), cfg.batching.factor_window,
                           cfg.batching.inter_batch_delay)
    return [o.value if o.ok else FactorRecord(code=o.code) for o in outcomes]


def _count_valid(series_by_code: dict) -> int:
    return sum(1 for t in series_by_code.values() if t)


def _statistics(portfolio: list, fund: list, stock_count: int, valid: int) -> dict:
    perf = performance_stats(portfolio)
    return {
        "portfolioReturn": series_return_pct(portfolio),
        "etfReturn": series_return_pct(fund),
        "stockCount": stock_count,
        "validStocks": valid,
        "portfolioVolatility": perf["ann_vol"],
        "portfolioMaxDrawdown": perf["max_dd"],
    }


# =========================================================================
# A. Custom instrument list, equal weights
# =========================================================================
def run_custom_backtest(client: ProviderClient, cfg: RunConfig, stock_codes: Sequence[str],
                        start_date: str, end_date: str,
                        ctx: Optional[RunContext] = None) -> BacktestResult:
    """Equal-weight backtest of ``stock_codes``.

    ``stockCount`` reports the codes as submitted, duplicates included.
    """
    ctx = ctx or RunContext(kind="custom")
    start_date, end_date = _validate_window(start_date, end_date)
    try:
        codes = normalize_symbols(stock_codes or [])
    except ValueError as e:
        raise InvalidRequestError(str(e))
    if not codes:
        raise InsufficientDataError("Stock codes are required")

    log.info(f"Fetching data for {len(codes)} stocks from {start_date} to {end_date}",
             extra={"run_id": ctx.run_id, "count": len(codes)})

    series_by_code = fetch_price_series(client, cfg, codes, start_date, end_date)
    fund_daily = market_data.get_fund_daily(client, cfg.fund.ts_code, start_date, end_date)

    weights = factor_engine.equal_weights(codes)

    def _info(code, i):
        name, industry = fetch_name_industry(client, code)
        mc = market_cap_from(market_data.get_daily_basic(client, code, end_date))
        return build_holding_row(code, name, industry, weights[code], market_cap=mc)

    outcomes = run_batches(codes, isolated(_info), cfg.batching.info_window,
                           cfg.batching.inter_batch_delay)
    holdings = [o.value if o.ok else HoldingRow(code=o.code, name=o.code, weight=weights[o.code])
                for o in outcomes]

    portfolio = build_portfolio_series(series_by_code, weights)
    fund = build_fund_series(fund_daily)
    stats = _statistics(portfolio, fund, len(stock_codes), _count_valid(series_by_code))

    log.info(f"Custom backtest done: portfolio {stats['portfolioReturn']}%, "
             f"fund {stats['etfReturn']}%",
             extra={"run_id": ctx.run_id, "phase": "done"})
    return BacktestResult(portfolio, fund, holdings, stats, ctx.metadata())


# =========================================================================
# B. ETF holdings replica, dual-factor weights
# =========================================================================
def _classify_holdings(symbols: Sequence[str]) -> list[str]:
    """Normalize holdings symbols, skipping any that cannot be classified."""
    codes = []
    for s in symbols:
        try:
            codes.append(normalize_symbol(s))
        except ValueError as e:
            log.warning(f"Skipping holdings symbol: {e}", extra={"phase": "holdings"})
    return list(dict.fromkeys(codes))


def resolve_universe(client: ProviderClient, cfg: RunConfig,
                     as_of: Optional[str] = None) -> tuple[list[str], int]:
    """Normalized, deduplicated holdings of the fund plus the raw symbol count."""
    as_of = as_of or market_data.today()
    disclosure = market_data.get_fund_portfolio(client, cfg.fund.ts_code)
    latest = resolve_latest_period(disclosure, as_of)
    if not latest:
        raise InsufficientDataError(
            f"ETF portfolio data not available for {cfg.fund.ts_code}")

    symbols = [s for s in latest.column("symbol") if s]
    if not symbols:
        raise InsufficientDataError(
            f"ETF portfolio for {cfg.fund.ts_code} lists no symbols")
    codes = _classify_holdings(symbols)
    if not codes:
        raise InsufficientDataError(
            f"ETF portfolio for {cfg.fund.ts_code} lists no classifiable symbols")
    log.info(f"Found {len(symbols)} symbols in ETF portfolio; "
             f"{len(codes)} unique codes. First 10: {codes[:10]}",
             extra={"phase": "holdings", "count": len(codes)})
    return codes, len(symbols)


def run_etf_backtest(client: ProviderClient, cfg: RunConfig,
                     start_date: str, end_date: str,
                     as_of: Optional[str] = None,
                     ctx: Optional[RunContext] = None) -> BacktestResult:
    ctx = ctx or RunContext(kind="etf")
    start_date, end_date = _validate_window(start_date, end_date)
    log.info(f"Replicating {cfg.fund.ts_code} holdings with dual-factor weights "
             f"from {start_date} to {end_date}", extra={"run_id": ctx.run_id})

    # Step 1: holdings universe
    codes, raw_count = resolve_universe(client, cfg, as_of)

    # Step 2: price history
    series_by_code = fetch_price_series(client, cfg, codes, start_date, end_date)

    # Step 3: factor data
    records = fetch_factor_records(client, cfg, codes, end_date)

    # Step 4: fund series
    fund_daily = market_data.get_fund_daily(client, cfg.fund.ts_code, start_date, end_date)

    # Step 5: weights
    weights, _ = factor_engine.compute_dual_factor_weights(
        records, cfg.weighting.dividend_yield_floor)

    # Step 6: display rows
    by_code = {r.code: r for r in records}

    def _info(code, i):
        name, industry = fetch_name_industry(client, code)
        return build_holding_row(code, name, industry, weights.get(code, 0.0),
                                 factors=by_code.get(code))

    outcomes = run_batches(codes, isolated(_info), cfg.batching.info_window,
                           cfg.batching.inter_batch_delay)
    holdings = sort_by_weight([
        o.value if o.ok else HoldingRow(code=o.code, name=o.code) for o in outcomes
    ])

    # Step 7: net value curves
    portfolio = build_portfolio_series(series_by_code, weights)
    fund = build_fund_series(fund_daily)

    stats = _statistics(portfolio, fund, raw_count, _count_valid(series_by_code))
    stats["strategy"] = ETF_STRATEGY
    log.info(f"ETF backtest done: portfolio {stats['portfolioReturn']}%, "
             f"fund {stats['etfReturn']}%, {len(weights)} weighted stocks",
             extra={"run_id": ctx.run_id, "phase": "done"})
    return BacktestResult(portfolio, fund, holdings, stats, ctx.metadata())
