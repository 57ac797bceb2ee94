#!/usr/bin/env python3
"""
Provider operations consumed by the backtests.

Price series (``daily``, ``fund_daily``) are required data, so a
ProviderError propagates to the caller. Everything else is enrichment: a
failure is logged and the getter returns None, and the pipeline carries on
with that field absent.
"""

import functools
from datetime import date
from typing import Optional

from run_context import get_logger
from tushare_client import ProviderClient, ProviderError, TabularResult

log = get_logger("market_data")

BALANCE_FIELDS = "ts_code,end_date,total_assets,total_cur_liab,total_hldr_eqy_exc_min_int"
INCOME_FIELDS = "ts_code,end_date,ebit,operate_profit,total_profit"
INDICATOR_FIELDS = "ts_code,end_date,ebit,total_assets,total_cur_liab,roe,roa"


def _optional(fn):
    """Turn a ProviderError into a logged None for enrichment getters."""

    @functools.wraps(fn)
    def wrapper(client, ts_code, *args, **kwargs):
        try:
            return fn(client, ts_code, *args, **kwargs)
        except ProviderError as e:
            log.warning(f"Error fetching {fn.__name__.replace('get_', '')} "
                        f"for {ts_code}: {e.message}",
                        extra={"code": ts_code, "api": e.api_name})
            return None

    return wrapper


# =========================================================================
# A. Price series (required)
# =========================================================================
def get_daily(client: ProviderClient, ts_code: str,
              start_date: str, end_date: str) -> TabularResult:
    """Daily bars for one stock."""
    return client.call("daily", {"ts_code": ts_code,
                                 "start_date": start_date,
                                 "end_date": end_date})


def get_fund_daily(client: ProviderClient, ts_code: str,
                   start_date: str, end_date: str) -> TabularResult:
    """Daily bars for an exchange-traded fund."""
    return client.call("fund_daily", {"ts_code": ts_code,
                                      "start_date": start_date,
                                      "end_date": end_date})


# =========================================================================
# B. Static metadata
# =========================================================================
@_optional
def get_stock_basic(client: ProviderClient, ts_code: str) -> Optional[TabularResult]:
    return client.call("stock_basic", {"ts_code": ts_code})


@_optional
def get_stock_company(client: ProviderClient, ts_code: str) -> Optional[TabularResult]:
    return client.call("stock_company", {"ts_code": ts_code})


# =========================================================================
# C. Valuation and fundamentals (latest row only)
# =========================================================================
@_optional
def get_daily_basic(client: ProviderClient, ts_code: str,
                    end_date: str) -> Optional[TabularResult]:
    """Latest daily valuation row at or before ``end_date``.

    Queries from the first of the month so a non-trading ``end_date`` still
    yields a row.
    """
    start_date = end_date[:6] + "01"
    data = client.call("daily_basic", {"ts_code": ts_code,
                                       "start_date": start_date,
                                       "end_date": end_date})
    return data.latest_by("trade_date")


@_optional
def get_balance_sheet(client: ProviderClient, ts_code: str) -> Optional[TabularResult]:
    """Most recent balance sheet, whatever its reporting period."""
    data = client.call("balancesheet", {"ts_code": ts_code}, fields=BALANCE_FIELDS)
    return data.latest_by("end_date")


@_optional
def get_income_statement(client: ProviderClient, ts_code: str) -> Optional[TabularResult]:
    """Most recent income statement, whatever its reporting period."""
    data = client.call("income", {"ts_code": ts_code}, fields=INCOME_FIELDS)
    return data.latest_by("end_date")


@_optional
def get_financial_indicator(client: ProviderClient, ts_code: str,
                            end_date: str) -> Optional[TabularResult]:
    return client.call("fina_indicator", {"ts_code": ts_code, "end_date": end_date},
                       fields=INDICATOR_FIELDS)


@_optional
def get_dividend(client: ProviderClient, ts_code: str) -> Optional[TabularResult]:
    return client.call("dividend", {"ts_code": ts_code})


# =========================================================================
# D. Fund holdings
# =========================================================================
@_optional
def get_fund_portfolio(client: ProviderClient, ts_code: str) -> Optional[TabularResult]:
    """Every holdings disclosure the provider has for the fund."""
    return client.call("fund_portfolio", {"ts_code": ts_code})


def today() -> str:
    return date.today().strftime("%Y%m%d")
