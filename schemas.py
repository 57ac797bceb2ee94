#!/usr/bin/env python3
"""
Typed schemas for the ETF dual-factor replica.

Provides Pydantic models for validation at pipeline boundaries: the run
configuration loaded from config.yaml, the per-instrument factor record,
and the display row returned to callers.
"""

import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

ROOT = Path(__file__).resolve().parent
CONFIG_PATH = ROOT / "config.yaml"


class FactorRecord(BaseModel):
    """Factor inputs for a single instrument.

    ``roce`` is None when the statements did not allow a computation. That
    is not the same as a computed ROCE of zero: the weight engine drops
    instruments with no ROCE instead of ranking them last.
    """
    code: str
    dividend_yield: float = Field(0.0, ge=0)
    roce: Optional[float] = None
    market_cap: Optional[float] = None

    @property
    def has_roce(self) -> bool:
        return self.roce is not None


class HoldingRow(BaseModel):
    """One per-instrument row of the backtest report."""
    code: str
    name: str
    industry: str = "-"
    market_cap: Optional[float] = None      # 100M CNY units
    weight: float = 0.0                     # fraction, 0..1
    dividend_yield: Optional[float] = None
    roce: Optional[float] = None

    def display(self) -> dict:
        """Render as the string-formatted row the web page expects."""
        return {
            "code": self.code,
            "name": self.name,
            "industry": self.industry,
            "marketCap": _fmt(self.market_cap),
            "weight": f"{self.weight * 100:.2f}",
            "dividendYield": _fmt(self.dividend_yield),
            "roce": _fmt(self.roce),
        }


def _fmt(value: Optional[float]) -> str:
    return "-" if value is None else f"{value:.2f}"


# =========================================================================
# RunConfig - top-level config schema
# =========================================================================

class ProviderConfig(BaseModel):
    """Connection settings for the tabular data provider.

    Frozen: one instance is built at startup and injected into every
    ProviderClient.
    """
    model_config = ConfigDict(frozen=True)

    url: str = "http://api.tushare.pro"
    token: str = ""
    call_delay: float = Field(0.1, ge=0)
    timeout: float = Field(30, gt=0)

    @property
    def has_token(self) -> bool:
        return bool(self.token)


class RunConfig(BaseModel):
    """Schema for validated config.yaml contents."""

    class BatchingConfig(BaseModel):
        inter_batch_delay: float = Field(0.8, ge=0)
        price_window: int = Field(10, ge=1)
        factor_window: int = Field(5, ge=1)
        info_window: int = Field(10, ge=1)

    class FundConfig(BaseModel):
        ts_code: str = "512890.SH"

        @field_validator("ts_code")
        @classmethod
        def code_is_qualified(cls, v: str) -> str:
            if "." not in v:
                raise ValueError(f"Fund code must carry an exchange suffix, got {v!r}")
            return v

    class WeightingConfig(BaseModel):
        dividend_yield_floor: float = Field(0.01, gt=0)

    class ServerConfig(BaseModel):
        host: str = "0.0.0.0"
        port: int = Field(3001, ge=1, le=65535)
        static_dir: str = "public"

    class LoggingConfig(BaseModel):
        level: str = "INFO"
        log_dir: Optional[str] = None

        @field_validator("level")
        @classmethod
        def level_known(cls, v: str) -> str:
            v = v.upper()
            if v not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
                raise ValueError(f"Unknown log level {v!r}")
            return v

    provider: ProviderConfig = ProviderConfig()
    batching: BatchingConfig = BatchingConfig()
    fund: FundConfig = FundConfig()
    weighting: WeightingConfig = WeightingConfig()
    server: ServerConfig = ServerConfig()
    logging: LoggingConfig = LoggingConfig()


def load_config(path: Path = CONFIG_PATH, env: Optional[dict] = None) -> RunConfig:
    """Load and validate config.yaml, applying environment overrides.

    TUSHARE_TOKEN replaces provider.token and PORT replaces server.port.
    A missing file yields the defaults.
    """
    env = os.environ if env is None else env
    raw = {}
    path = Path(path)
    if path.exists():
        with open(path, "r") as f:
            raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"{path.name} is malformed (expected a mapping)")

    if env.get("TUSHARE_TOKEN"):
        raw.setdefault("provider", {})
        raw["provider"] = {**(raw["provider"] or {}), "token": env["TUSHARE_TOKEN"]}
    if env.get("PORT"):
        raw.setdefault("server", {})
        raw["server"] = {**(raw["server"] or {}), "port": int(env["PORT"])}
    return RunConfig(**raw)
