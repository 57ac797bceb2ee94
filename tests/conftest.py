"""Shared fixtures for ETF replica tests."""

import sys
import threading
from pathlib import Path

import pytest

# Ensure project root is importable
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from schemas import load_config  # noqa: E402
from tushare_client import ProviderError, TabularResult  # noqa: E402


def table(fields, *rows):
    """Shorthand for building a TabularResult in tests."""
    return TabularResult(fields, list(rows))


class FakeProvider:
    """Stands in for ProviderClient, serving canned tables.

    ``responses`` maps ``(api_name, ts_code)`` (or ``api_name`` alone) to a
    TabularResult, or to an Exception instance to raise. Unknown calls
    answer with an empty table.
    """

    def __init__(self, responses=None):
        self.responses = dict(responses or {})
        self.calls = []
        self._lock = threading.Lock()

    def call(self, api_name, params, fields=""):
        with self._lock:
            self.calls.append((api_name, dict(params)))
        key = (api_name, params.get("ts_code"))
        resp = self.responses.get(key, self.responses.get(api_name, TabularResult()))
        if isinstance(resp, Exception):
            raise resp
        return resp

    def count(self, api_name):
        return sum(1 for name, _ in self.calls if name == api_name)


@pytest.fixture
def cfg():
    """Production config.yaml with all delays switched off."""
    c = load_config(ROOT / "config.yaml", env={})
    c.batching.inter_batch_delay = 0.0
    return c


def daily_table(code, closes, start_day=2):
    """Daily bars on consecutive January 2024 dates (unsorted on purpose)."""
    rows = [[code, f"202401{start_day + i:02d}", c, c, c, c, 1000]
            for i, c in enumerate(closes)]
    return table(["ts_code", "trade_date", "open", "high", "low", "close", "vol"],
                 *reversed(rows))


@pytest.fixture
def etf_provider():
    """A fund holding three stocks: an industrial, a bank and a stock with no data."""
    portfolio = table(
        ["ts_code", "ann_date", "end_date", "symbol", "mkv", "amount"],
        ["512890.SH", "20230830", "20230630", "600019", 1e8, 1e6],
        ["512890.SH", "20230830", "20230630", "1", 1e8, 1e6],
        ["512890.SH", "20240330", "20231231", "600019", 1e8, 1e6],
        ["512890.SH", "20240330", "20231231", "1", 1e8, 1e6],
        ["512890.SH", "20240330", "20231231", "000001", 1e8, 1e6],
        ["512890.SH", "20240330", "20231231", "2415", 1e8, 1e6],
        ["512890.SH", "20240425", "20240331", "600028", 1e8, 1e6],
        ["512890.SH", "29991230", "29991231", "600900", 1e8, 1e6],
    )
    basic_fields = ["ts_code", "trade_date", "dv_ratio", "dv_ttm", "total_mv"]
    income_fields = ["ts_code", "end_date", "ebit", "operate_profit", "total_profit"]
    balance_fields = ["ts_code", "end_date", "total_assets", "total_cur_liab",
                      "total_hldr_eqy_exc_min_int"]
    responses = {
        "fund_portfolio": portfolio,
        ("daily", "600019.SH"): daily_table("600019.SH", [10.0, 11.0, 12.0]),
        ("daily", "000001.SZ"): daily_table("000001.SZ", [20.0, 20.0, 22.0]),
        ("daily", "002415.SZ"): ProviderError("daily", "抱歉，您每分钟最多访问该接口500次"),
        ("fund_daily", "512890.SH"): table(
            ["ts_code", "trade_date", "close"],
            ["512890.SH", "20240104", 1.1],
            ["512890.SH", "20240102", 1.0],
            ["512890.SH", "20240103", 1.05],
        ),
        ("daily_basic", "600019.SH"): table(
            basic_fields,
            ["600019.SH", "20240131", 6.0, 5.5, 1.5e7],
            ["600019.SH", "20240130", 1.0, 1.0, 1.0e7],
        ),
        ("daily_basic", "000001.SZ"): table(
            basic_fields, ["000001.SZ", "20240131", None, 4.0, 2.0e7]),
        ("income", "600019.SH"): table(
            income_fields, ["600019.SH", "20231231", 100.0, 90.0, 80.0]),
        ("balancesheet", "600019.SH"): table(
            balance_fields, ["600019.SH", "20231231", 1000.0, 200.0, 500.0]),
        # Bank: no EBIT, no current liabilities
        ("income", "000001.SZ"): table(
            income_fields, ["000001.SZ", "20231231", None, None, 50.0]),
        ("balancesheet", "000001.SZ"): table(
            balance_fields, ["000001.SZ", "20231231", 5000.0, None, 1000.0]),
        ("stock_basic", "600019.SH"): table(
            ["ts_code", "name", "industry"], ["600019.SH", "宝钢股份", "普钢"]),
        ("stock_basic", "000001.SZ"): table(
            ["ts_code", "name", "industry"], ["000001.SZ", "平安银行", "银行"]),
        ("stock_company", "000001.SZ"): table(
            ["ts_code", "industry"], ["000001.SZ", "货币金融服务"]),
    }
    return FakeProvider(responses)
