"""Token resolution and minor-unit amount conversion."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .errors import InvalidAmountError, UnknownTokenError

if TYPE_CHECKING:
    from .config import ChainConfig

DEFAULT_DECIMALS = 18
NATIVE_SENTINEL_ADDRESS = "0x" + "0" * 40
# Digit-only strings longer than this are taken as already-scaled minor units.
RAW_AMOUNT_MIN_DIGITS = 11


def is_hex_address(value: str) -> bool:
    return bool(re.fullmatch(r"0x[a-fA-F0-9]{40}", value or ""))


@dataclass(frozen=True)
class Token:
    symbol: str
    address: str | None
    decimals: int

    @property
    def is_native(self) -> bool:
        return self.address is None

    def to_json(self) -> dict[str, object]:
        return {"symbol": self.symbol, "address": self.address, "decimals": self.decimals, "native": self.is_native}


def to_minor_units(raw: str, decimals: int) -> int:
    """Convert a human amount ("0.5", "12") or raw minor-unit string to an int.

    Excess fractional digits are truncated, never rounded. A digit-only string
    of more than 10 characters is returned unscaled so callers can pass wei
    values directly; a large whole-unit quantity therefore needs a decimal
    point ("12345678901.0") to be scaled.
    """
    text = str(raw or "").strip()
    if decimals < 0 or decimals > 255:
        raise InvalidAmountError("Token decimals must be 0..255.")
    if "." in text:
        whole, frac = text.split(".", 1)
        if not (whole or frac) or not re.fullmatch(r"[0-9]*", whole) or not re.fullmatch(r"[0-9]*", frac):
            raise InvalidAmountError(f"Invalid amount format '{raw}'.", "Use a plain decimal like 0.5 or an integer.")
        padded = frac.ljust(decimals, "0")[:decimals]
        return int(whole or "0") * 10**decimals + int(padded or "0")
    if not re.fullmatch(r"[0-9]+", text):
        raise InvalidAmountError(f"Invalid amount format '{raw}'.", "Use a plain decimal like 0.5 or an integer.")
    if len(text) >= RAW_AMOUNT_MIN_DIGITS:
        return int(text)
    return int(text) * 10**decimals


def format_minor_units(amount: int, decimals: int) -> str:
    if amount < 0:
        raise InvalidAmountError("Amounts must be non-negative.")
    if decimals <= 0:
        return str(amount)
    if amount == 0:
        return "0"
    s = str(amount)
    if len(s) <= decimals:
        s = s.rjust(decimals + 1, "0")
    whole = s[:-decimals]
    frac = s[-decimals:].rstrip("0")
    if not frac:
        return whole
    return f"{whole}.{frac}"


def short_address(address: str) -> str:
    return f"{address[:6]}...{address[-4:]}"


class TokenRegistry:
    """Resolves symbols and raw addresses against one chain's token table."""

    def __init__(self, chain: ChainConfig):
        self.chain = chain

    def tokens(self) -> list[Token]:
        return list(self.chain.tokens.values())

    def resolve(self, text: str) -> Token:
        candidate = str(text or "").strip()
        known = self.chain.tokens.get(candidate.upper())
        if known is not None:
            return known
        if candidate.lower() == NATIVE_SENTINEL_ADDRESS:
            return self.native_token()
        if is_hex_address(candidate):
            return Token(symbol=short_address(candidate), address=candidate, decimals=DEFAULT_DECIMALS)
        raise UnknownTokenError(
            f"Unknown token: {candidate}. Use a known symbol ({', '.join(self.chain.tokens)}) or a 0x address.",
            details={"token": candidate},
        )

    def native_token(self) -> Token:
        for token in self.chain.tokens.values():
            if token.is_native:
                return token
        raise UnknownTokenError(f"Chain '{self.chain.key}' has no native token entry.")

    @property
    def wrapped_native(self) -> str:
        return self.chain.wrapped_native

    def routing_address(self, token: Token) -> str:
        """Address used for quoting and swap paths; native maps to the wrapped asset."""
        if token.address is None:
            return self.chain.wrapped_native
        return token.address

    def lending_market(self, symbol: str) -> tuple[Token, str]:
        key = str(symbol or "").strip().upper()
        market = self.chain.lending_markets.get(key)
        if market is None:
            raise UnknownTokenError(
                f"Unsupported token for Venus lending: {key}. Supported: {', '.join(self.chain.lending_markets)}",
                details={"token": key},
            )
        return self.resolve(key), market
