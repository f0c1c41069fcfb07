import re

SYMBOL_PATTERN = re.compile(r"^[A-Z]{1,8}(\.[A-Z]{1,4})?$")


def normalize_symbol(symbol: str) -> str:
    return str(symbol).strip().upper()


def is_valid_symbol_format(symbol: str) -> bool:
    """1-8 letters, optionally followed by an exchange suffix (TD.TO, BP.L)."""
    return bool(SYMBOL_PATTERN.match(normalize_symbol(symbol)))


def unique_symbols(symbols: list[str]) -> list[str]:
    out: list[str] = []
    seen: set[str] = set()
    for symbol in symbols:
        value = normalize_symbol(symbol)
        if not value or value in seen:
            continue
        seen.add(value)
        out.append(value)
    return out
