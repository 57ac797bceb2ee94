#!/usr/bin/env python3
"""
Tushare Pro client
==================
Every provider operation answers with the same tabular shape::

    {"code": 0, "msg": "", "data": {"fields": [...], "items": [[...], ...]}}

``TabularResult`` wraps ``data`` once and exposes it by column name only;
nothing outside this module indexes a row by position, because column order
differs between operations.

``ProviderClient.call`` sleeps a fixed interval before every request to stay
under the provider's per-minute quota and raises ``ProviderError`` when the
response carries a non-zero code. It never retries.
"""

import time

import pandas as pd
import requests

from run_context import get_logger
from schemas import ProviderConfig

log = get_logger("provider")


class ProviderError(Exception):
    """Remote call failed or answered with a non-zero status code."""

    def __init__(self, api_name: str, message: str):
        super().__init__(f"{api_name}: {message}")
        self.api_name = api_name
        self.message = message


class TabularResult:
    """Column-addressed view over a provider ``fields``/``items`` payload."""

    __slots__ = ("fields", "items", "_index")

    def __init__(self, fields=None, items=None):
        self.fields = list(fields or [])
        self.items = [list(row) for row in (items or [])]
        self._index = {name: i for i, name in enumerate(self.fields)}
        if len(self._index) != len(self.fields):
            raise ProviderError("table", f"duplicate column names in {self.fields}")
        width = len(self.fields)
        for row in self.items:
            if len(row) != width:
                raise ProviderError(
                    "table", f"row has {len(row)} values, expected {width}")

    @classmethod
    def from_payload(cls, data) -> "TabularResult":
        if not data:
            return cls()
        return cls(data.get("fields"), data.get("items"))

    def __len__(self) -> int:
        return len(self.items)

    def __bool__(self) -> bool:
        return bool(self.items)

    def __repr__(self) -> str:
        return f"TabularResult(fields={self.fields}, rows={len(self.items)})"

    def has(self, name: str) -> bool:
        return name in self._index

    def value(self, row_idx: int, name: str, default=None):
        """Value of column ``name`` in row ``row_idx``; ``default`` if absent."""
        i = self._index.get(name)
        if i is None or row_idx >= len(self.items):
            return default
        return self.items[row_idx][i]

    def first(self, name: str, default=None):
        return self.value(0, name, default)

    def column(self, name: str) -> list:
        i = self._index.get(name)
        if i is None:
            return []
        return [row[i] for row in self.items]

    def records(self) -> list[dict]:
        return [dict(zip(self.fields, row)) for row in self.items]

    def filter(self, name: str, value) -> "TabularResult":
        """Rows whose ``name`` column equals ``value``."""
        i = self._index.get(name)
        if i is None:
            return TabularResult(self.fields, [])
        return TabularResult(self.fields, [row for row in self.items if row[i] == value])

    def sorted_by(self, name: str, descending: bool = False) -> "TabularResult":
        i = self._index.get(name)
        if i is None:
            return TabularResult(self.fields, self.items)
        rows = sorted(self.items, key=lambda r: str(r[i] or ""), reverse=descending)
        return TabularResult(self.fields, rows)

    def latest_by(self, name: str) -> "TabularResult":
        """Single-row table holding the row with the greatest ``name`` value."""
        if not self.items:
            return self
        return TabularResult(self.fields, self.sorted_by(name, descending=True).items[:1])

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self.items, columns=self.fields)


class ProviderClient:
    """Single-call wrapper around the Tushare Pro HTTP API."""

    def __init__(self, config: ProviderConfig):
        self.config = config

    def call(self, api_name: str, params: dict, fields: str = "") -> TabularResult:
        # Fixed pause before every call keeps us under the provider's quota
        time.sleep(self.config.call_delay)
        body = {
            "api_name": api_name,
            "token": self.config.token,
            "params": params,
            "fields": fields,
        }
        t0 = time.time()
        try:
            resp = requests.post(self.config.url, json=body, timeout=self.config.timeout)
            resp.raise_for_status()
            payload = resp.json()
        except (requests.RequestException, ValueError) as e:
            log.error(f"Tushare API error: {e}", extra={"api": api_name})
            raise ProviderError(api_name, str(e)) from e

        elapsed_ms = round((time.time() - t0) * 1000)
        if payload.get("code") != 0:
            msg = payload.get("msg") or "Tushare API error"
            log.error(f"Tushare API error: {msg}",
                      extra={"api": api_name, "fetch_time_ms": elapsed_ms})
            raise ProviderError(api_name, msg)

        result = TabularResult.from_payload(payload.get("data"))
        log.debug(f"{api_name} returned {len(result)} rows",
                  extra={"api": api_name, "code": params.get("ts_code"),
                         "count": len(result), "fetch_time_ms": elapsed_ms})
        return result
