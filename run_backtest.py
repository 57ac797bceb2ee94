#!/usr/bin/env python3
"""
ETF Replica - Command-line runner
=================================
    python run_backtest.py --start 20240101 --end 20241231
    python run_backtest.py --start 20240101 --end 20241231 --codes 600519.SH,000001.SZ
    python run_backtest.py --start 20240101 --end 20241231 --excel output/replica.xlsx

Without --codes the fund's own holdings are replicated with dual-factor
weights; with --codes the listed instruments are equal-weighted.
"""

import argparse
import sys
import time
from pathlib import Path

from pydantic import ValidationError

from backtest import BacktestError, run_custom_backtest, run_etf_backtest
from portfolio_report import write_backtest_excel
from run_context import RunContext, configure_logging
from schemas import CONFIG_PATH, load_config
from tushare_client import ProviderClient, ProviderError


def parse_args(argv=None):
    p = argparse.ArgumentParser(description="ETF dual-factor replica backtest")
    p.add_argument("--start", required=True, help="Start date, YYYYMMDD")
    p.add_argument("--end", required=True, help="End date, YYYYMMDD")
    p.add_argument("--codes", type=str, default="",
                   help="Comma-separated instrument codes for an equal-weight "
                        "backtest (e.g. 600519.SH,000001.SZ)")
    p.add_argument("--excel", type=str, default="",
                   help="Write the result to this .xlsx path")
    p.add_argument("--config", type=str, default=str(CONFIG_PATH),
                   help="Path to config.yaml")
    return p.parse_args(argv)


def print_summary(result, elapsed: float):
    stats = result.statistics
    print("\n============================================")
    print("  BACKTEST SUMMARY")
    print("============================================")
    if "strategy" in stats:
        print(f"Strategy:                 {stats['strategy']}")
    print(f"Instruments requested:    {stats['stockCount']}")
    print(f"Instruments with prices:  {stats['validStocks']}")
    print(f"Portfolio return:         {stats['portfolioReturn']:.2f}%")
    print(f"Fund return:              {stats['etfReturn']:.2f}%")
    print(f"Portfolio volatility:     {stats['portfolioVolatility']:.2f}%")
    print(f"Portfolio max drawdown:   {stats['portfolioMaxDrawdown']:.2f}%")
    top = [h for h in result.holdings if h.weight > 0][:10]
    if top:
        print("\nTop holdings:")
        for h in top:
            roce = "-" if h.roce is None else f"{h.roce:.2f}"
            print(f"  {h.code:<10} {h.name:<12} {h.weight * 100:6.2f}%  ROCE {roce}")
    print(f"\nTotal runtime:            {elapsed}s")
    print("============================================")


def main(argv=None) -> int:
    args = parse_args(argv)
    try:
        cfg = load_config(Path(args.config))
    except (ValidationError, ValueError) as e:
        print(f"\n  ERROR: Failed to load {args.config}: {e}")
        return 1
    configure_logging(cfg.logging.level, cfg.logging.log_dir)

    if not cfg.provider.has_token:
        print("\n  ERROR: no Tushare token configured (set TUSHARE_TOKEN)")
        return 1

    t0 = time.time()
    client = ProviderClient(cfg.provider)
    codes = [c.strip() for c in args.codes.split(",") if c.strip()]
    ctx = RunContext(kind="custom" if codes else "etf")
    try:
        if codes:
            result = run_custom_backtest(client, cfg, codes, args.start, args.end, ctx=ctx)
        else:
            result = run_etf_backtest(client, cfg, args.start, args.end, ctx=ctx)
    except (BacktestError, ProviderError) as e:
        print(f"\n  *** FAILED: {e} ***")
        return 1

    if args.excel:
        write_backtest_excel(result, args.excel, meta=result.meta)
    print_summary(result, round(time.time() - t0, 1))
    return 0


if __name__ == "__main__":
    sys.exit(main())
