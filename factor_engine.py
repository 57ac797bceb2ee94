#!/usr/bin/env python3
"""
ETF Replica - Factor Engine
===========================
Scores each holding on two factors and turns the scores into weights:

  * Dividend yield   daily_basic.dv_ratio, falling back to dv_ttm
  * ROCE             EBIT / (total assets - current liabilities) * 100

Financial companies report neither EBIT nor current liabilities, so both
inputs have a fallback chain (operate_profit / total_profit for EBIT, an
equity-implied liability figure for current liabilities).

Weights: min-max normalize both factors over the instruments that have a
ROCE, average them into a composite score and weight proportionally to the
score. When no instrument has a ROCE every instrument gets 1/N.
"""

import math
from concurrent.futures import ThreadPoolExecutor
from typing import Optional, Sequence

import numpy as np

import market_data
from run_context import get_logger
from schemas import FactorRecord
from tushare_client import ProviderClient, TabularResult

log = get_logger("factor_engine")

DIVIDEND_YIELD_FLOOR = 0.01

DIVIDEND_FIELDS = ("dv_ratio", "dv_ttm")
EBIT_FIELDS = ("ebit", "operate_profit", "total_profit")


# =========================================================================
# A. Field extraction
# =========================================================================
def _present(table: Optional[TabularResult], field: str) -> Optional[float]:
    """Latest-row value of ``field`` as a float, or None when absent/zero/NaN."""
    if not table:
        return None
    v = table.first(field)
    if v is None:
        return None
    try:
        v = float(v)
    except (TypeError, ValueError):
        return None
    if math.isnan(v) or v == 0:
        return None
    return v


def _first_present(table: Optional[TabularResult], fields: Sequence[str]):
    """(field, value) for the first field in ``fields`` that is present."""
    for f in fields:
        v = _present(table, f)
        if v is not None:
            return f, v
    return None, None


def compute_roce(ebit: Optional[float], total_assets: Optional[float],
                 current_liabilities: Optional[float]) -> Optional[float]:
    """Return on capital employed in percent, or None if not computable.

    Capital employed must be strictly positive. A negative figure (possible
    with the equity-implied liabilities of a bank) yields None.
    """
    if not ebit or not total_assets or not current_liabilities:
        return None
    capital_employed = total_assets - current_liabilities
    if capital_employed <= 0:
        return None
    return ebit / capital_employed * 100


def extract_factors(code: str, daily_basic: Optional[TabularResult],
                    income: Optional[TabularResult],
                    balance: Optional[TabularResult]) -> FactorRecord:
    """Build the FactorRecord for ``code`` from latest-row statement tables.

    Inputs the statements do not supply leave ROCE absent; no other source
    is consulted.
    """
    # Dividend yield and market cap
    _, dividend_yield = _first_present(daily_basic, DIVIDEND_FIELDS)
    market_cap = _present(daily_basic, "total_mv")
    if daily_basic:
        log.debug(f"{code} dividend yield: {dividend_yield}, market cap: {market_cap}",
                  extra={"code": code})
    else:
        log.debug(f"{code} no daily basic data", extra={"code": code})

    # EBIT, with profit proxies for companies that do not report it
    ebit_field, ebit = _first_present(income, EBIT_FIELDS)
    if ebit_field and ebit_field != "ebit":
        log.debug(f"{code} using {ebit_field} instead of EBIT", extra={"code": code})

    # Capital employed inputs
    total_assets = _present(balance, "total_assets")
    current_liab = _present(balance, "total_cur_liab")
    if current_liab is None:
        equity = _present(balance, "total_hldr_eqy_exc_min_int")
        if equity is not None and total_assets is not None:
            # Banks/insurers: implied non-equity portion of the balance sheet
            current_liab = total_assets - equity
            log.debug(f"{code} using total equity method (financial company)",
                      extra={"code": code})

    roce = compute_roce(ebit, total_assets, current_liab)
    if roce is None:
        log.debug(f"{code} cannot calculate ROCE - missing data", extra={"code": code})
    else:
        log.debug(f"{code} ROCE: {roce:.2f}%", extra={"code": code})

    return FactorRecord(code=code, dividend_yield=dividend_yield or 0.0,
                        roce=roce, market_cap=market_cap)


def fetch_factor_record(client: ProviderClient, code: str, end_date: str) -> FactorRecord:
    """Fetch the three statement tables concurrently and extract factors."""
    with ThreadPoolExecutor(max_workers=3) as pool:
        f_basic = pool.submit(market_data.get_daily_basic, client, code, end_date)
        f_income = pool.submit(market_data.get_income_statement, client, code)
        f_balance = pool.submit(market_data.get_balance_sheet, client, code)
        daily_basic, income, balance = f_basic.result(), f_income.result(), f_balance.result()

    return extract_factors(code, daily_basic, income, balance)


# =========================================================================
# B. Dual-factor weights
# =========================================================================
def _min_max(values: np.ndarray) -> np.ndarray:
    lo, hi = values.min(), values.max()
    rng = (hi - lo) or 1.0
    return (values - lo) / rng


def _log_coverage(records: Sequence[FactorRecord]) -> None:
    both = sum(1 for r in records if r.dividend_yield > 0 and r.has_roce)
    div_only = sum(1 for r in records if r.dividend_yield > 0 and not r.has_roce)
    roce_only = sum(1 for r in records if not r.dividend_yield and r.has_roce)
    neither = len(records) - both - div_only - roce_only
    log.info(f"Factor coverage: both={both}, dividend only={div_only}, "
             f"ROCE only={roce_only}, neither={neither}",
             extra={"phase": "weights", "count": len(records)})


def compute_dual_factor_weights(records: Sequence[FactorRecord],
                                dividend_floor: float = DIVIDEND_YIELD_FLOOR):
    """Return (weights, processed) for ``records``.

    ``weights`` maps code -> fraction. ``processed`` lists the records that
    were scored, with zero dividend yields lifted to ``dividend_floor``; on
    the equal-weight fallback it is ``records`` unchanged.
    """
    records = list(records)
    log.info(f"Calculating weights for {len(records)} stocks...")
    _log_coverage(records)

    valid = [r for r in records if r.has_roce]
    log.info(f"Using {len(valid)} stocks with valid ROCE for weight calculation")

    if not valid:
        if not records:
            return {}, []
        log.warning("No valid stocks with ROCE data; using equal weights")
        equal = 1 / len(records)
        return {r.code: equal for r in records}, records

    processed = [
        r.model_copy(update={"dividend_yield": r.dividend_yield or dividend_floor})
        for r in valid
    ]
    div = _min_max(np.array([r.dividend_yield for r in processed], dtype=float))
    roce = _min_max(np.array([r.roce for r in processed], dtype=float))
    scores = (div + roce) / 2

    total = scores.sum()
    if total > 0:
        w = scores / total
    else:
        # Every scored instrument tied on both factors
        w = np.full(len(processed), 1 / len(processed))

    weights = {r.code: float(wi) for r, wi in zip(processed, w)}
    log.info(f"Calculated weights for {len(weights)} stocks")
    return weights, processed


def equal_weights(codes: Sequence[str]) -> dict:
    if not codes:
        return {}
    w = 1 / len(codes)
    return {c: w for c in codes}
