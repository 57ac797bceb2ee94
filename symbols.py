#!/usr/bin/env python3
"""Exchange-suffix normalization for A-share instrument symbols.

Fund holdings disclosures list bare numeric symbols ("600519", "2415");
every other provider operation wants the qualified ``ts_code`` form
("600519.SH", "002415.SZ").
"""

SHANGHAI = "SH"
SHENZHEN = "SZ"

# (low, high, exchange), first match wins
_RANGES = [
    (600000, 699999, SHANGHAI),   # SSE main board + STAR market
    (300000, 309999, SHENZHEN),   # ChiNext
    (2000, 2999, SHENZHEN),       # SZSE 002xxx
    (0, 3999, SHENZHEN),          # SZSE main board 000xxx-003xxx
]
_DEFAULT_EXCHANGE = SHENZHEN


def exchange_for(number: int) -> str:
    for lo, hi, exchange in _RANGES:
        if lo <= number <= hi:
            return exchange
    return _DEFAULT_EXCHANGE


def normalize_symbol(raw: str) -> str:
    """Return the exchange-qualified code for ``raw``.

    Already-qualified codes are returned unchanged.
    """
    raw = str(raw).strip()
    if "." in raw:
        return raw
    if not raw.isdigit():
        raise ValueError(f"Cannot classify symbol {raw!r}")
    return f"{raw.zfill(6)}.{exchange_for(int(raw))}"


def normalize_symbols(raws) -> list[str]:
    """Normalize, drop blanks and deduplicate (first occurrence kept)."""
    codes = [normalize_symbol(s) for s in raws if s is not None and str(s).strip()]
    return list(dict.fromkeys(codes))
