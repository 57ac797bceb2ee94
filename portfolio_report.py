#!/usr/bin/env python3
"""
Holdings report: per-instrument display rows and the Excel workbook.

Display rows combine the weight and factor values computed by the pipeline
with the name and industry fetched from ``stock_basic``/``stock_company``.
The workbook has three sheets (NetValue, Holdings, Summary).
"""

from pathlib import Path
from typing import Optional

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

import market_data
from run_context import get_logger
from schemas import FactorRecord, HoldingRow
from tushare_client import ProviderClient, TabularResult

log = get_logger("portfolio_report")

MV_UNIT = 10000  # total_mv is reported in 10k CNY; display in 100M CNY


# =========================================================================
# A. Display rows
# =========================================================================
def fetch_name_industry(client: ProviderClient, code: str) -> tuple[str, str]:
    """Display name and industry; stock_company's industry wins when present."""
    name, industry = code, "-"
    basic = market_data.get_stock_basic(client, code)
    company = market_data.get_stock_company(client, code)
    if basic:
        name = basic.first("name") or code
        industry = basic.first("industry") or industry
    if company and company.first("industry"):
        industry = company.first("industry")
    return name, industry


def market_cap_from(daily_basic: Optional[TabularResult]) -> Optional[float]:
    if not daily_basic:
        return None
    mv = daily_basic.first("total_mv")
    return round(float(mv) / MV_UNIT, 2) if mv else None


def build_holding_row(code: str, name: str, industry: str, weight: float,
                      factors: Optional[FactorRecord] = None,
                      market_cap: Optional[float] = None) -> HoldingRow:
    if factors is not None and factors.market_cap:
        market_cap = round(factors.market_cap / MV_UNIT, 2)
    return HoldingRow(
        code=code,
        name=name,
        industry=industry,
        market_cap=market_cap,
        weight=weight,
        dividend_yield=factors.dividend_yield if factors is not None else None,
        roce=factors.roce if factors is not None else None,
    )


def sort_by_weight(rows: list[HoldingRow]) -> list[HoldingRow]:
    return sorted(rows, key=lambda r: r.weight, reverse=True)


# =========================================================================
# B. Excel workbook
# =========================================================================
HEADER_FILL = PatternFill(start_color="1F4E79", end_color="1F4E79", fill_type="solid")
HEADER_FONT = Font(name="Calibri", size=11, bold=True, color="FFFFFF")
TITLE_FONT = Font(name="Calibri", size=14, bold=True, color="1F4E79")
DATA_FONT = Font(name="Calibri", size=10)
THIN_BORDER = Border(
    left=Side(style="thin", color="D0D0D0"),
    right=Side(style="thin", color="D0D0D0"),
    top=Side(style="thin", color="D0D0D0"),
    bottom=Side(style="thin", color="D0D0D0"),
)


def _write_table(ws, first_row: int, headers: list, rows: list) -> int:
    """Write a header row plus ``rows``; return the next free row."""
    for c, h in enumerate(headers, 1):
        cell = ws.cell(row=first_row, column=c, value=h)
        cell.fill = HEADER_FILL
        cell.font = HEADER_FONT
        cell.alignment = Alignment(horizontal="center", vertical="center")
        cell.border = THIN_BORDER
    r = first_row + 1
    for values in rows:
        for c, v in enumerate(values, 1):
            cell = ws.cell(row=r, column=c, value=v)
            cell.font = DATA_FONT
            cell.border = THIN_BORDER
        r += 1
    return r


def _auto_width(ws, min_width=8, max_width=30):
    for col_cells in ws.columns:
        col_letter = get_column_letter(col_cells[0].column)
        max_len = max((len(str(c.value)) for c in col_cells if c.value is not None), default=0)
        ws.column_dimensions[col_letter].width = min(max(max_len + 2, min_width), max_width)


def write_net_value_sheet(wb: Workbook, portfolio: list, fund: list):
    ws = wb.active
    ws.title = "NetValue"
    fund_by_date = {p["date"]: p["netValue"] for p in fund}
    port_by_date = {p["date"]: p["netValue"] for p in portfolio}
    dates = sorted(set(fund_by_date) | set(port_by_date))
    rows = [[d, port_by_date.get(d), fund_by_date.get(d)] for d in dates]
    _write_table(ws, 1, ["Date", "Portfolio", "Fund"], rows)
    for r in range(2, len(rows) + 2):
        for c in (2, 3):
            ws.cell(row=r, column=c).number_format = "0.0000"
    ws.freeze_panes = "A2"
    _auto_width(ws)


def write_holdings_sheet(wb: Workbook, holdings: list[HoldingRow]):
    ws = wb.create_sheet("Holdings")
    headers = ["Code", "Name", "Industry", "Market Cap (100M)", "Weight %",
               "Dividend Yield %", "ROCE %"]
    rows = [[h.code, h.name, h.industry, h.market_cap, round(h.weight * 100, 2),
             h.dividend_yield, None if h.roce is None else round(h.roce, 2)]
            for h in holdings]
    _write_table(ws, 1, headers, rows)
    ws.freeze_panes = "A2"
    _auto_width(ws)


def write_summary_sheet(wb: Workbook, statistics: dict, meta: Optional[dict] = None):
    ws = wb.create_sheet("Summary")
    ws.cell(row=1, column=1, value="BACKTEST SUMMARY").font = TITLE_FONT
    items = list(statistics.items()) + list((meta or {}).items())
    rows = [[k, v if isinstance(v, (int, float, str)) or v is None else str(v)]
            for k, v in items]
    _write_table(ws, 3, ["Metric", "Value"], rows)
    _auto_width(ws)


def write_backtest_excel(result, path: str | Path, meta: Optional[dict] = None) -> str:
    """Write ``result`` (a BacktestResult) to an .xlsx workbook at ``path``."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    wb = Workbook()
    write_net_value_sheet(wb, result.portfolio, result.fund)
    write_holdings_sheet(wb, result.holdings)
    write_summary_sheet(wb, result.statistics, meta)
    try:
        wb.save(str(path))
    except PermissionError:
        raise PermissionError(
            f"Cannot write '{path.name}'. Close the file in Excel and re-run.")
    log.info(f"Excel written: {path}", extra={"phase": "output"})
    return str(path)
