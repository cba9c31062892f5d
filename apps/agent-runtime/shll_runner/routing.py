"""Venue selection between PancakeSwap V3 (venue A) and V2 (venue B)."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum

from .chain import CastClient, parse_uint_array, parse_uint_text
from .errors import ChainError, InvalidAmountError, NoLiquidityError
from .tokens import Token, TokenRegistry

logger = logging.getLogger(__name__)

DEFAULT_FEE_TIER = 2500
V3_QUOTE_SIGNATURE = "quoteExactInputSingle((address,address,uint256,uint24,uint160))(uint256,uint160,uint32,uint256)"
V2_AMOUNTS_OUT_SIGNATURE = "getAmountsOut(uint256,address[])(uint256[])"


class Venue(str, Enum):
    V3 = "v3"
    V2 = "v2"


class DexMode(str, Enum):
    AUTO = "auto"
    V3 = "v3"
    V2 = "v2"


@dataclass(frozen=True)
class Quote:
    venue: Venue
    amount_out: int
    available: bool

    @classmethod
    def unavailable(cls, venue: Venue) -> Quote:
        return cls(venue=venue, amount_out=0, available=False)

    @classmethod
    def of(cls, venue: Venue, amount_out: int) -> Quote:
        return cls(venue=venue, amount_out=amount_out, available=amount_out > 0)


@dataclass(frozen=True)
class RoutePlan:
    venue: Venue
    expected_out: int
    min_out: int
    slippage_bps: int
    fee_tier: int
    path: tuple[str, ...]
    quotes: tuple[Quote, ...] = ()

    def to_json(self) -> dict[str, object]:
        return {
            "dex": self.venue.value,
            "expectedOut": str(self.expected_out),
            "minOut": str(self.min_out),
            "slippageBps": self.slippage_bps,
            "feeTier": self.fee_tier,
            "path": list(self.path),
            "quotes": {q.venue.value: str(q.amount_out) if q.available else None for q in self.quotes},
        }


def slippage_to_bps(slippage_percent: object) -> int:
    try:
        bps = Decimal(str(slippage_percent).strip()) * 100
    except InvalidOperation as exc:
        raise InvalidAmountError(f"Invalid slippage '{slippage_percent}'.", "Use a percent like 5 or 0.5.") from exc
    if not bps.is_finite():
        raise InvalidAmountError(f"Invalid slippage '{slippage_percent}'.", "Use a percent like 5 or 0.5.")
    if bps != bps.to_integral_value():
        raise InvalidAmountError("Slippage supports at most two decimal places.", details={"slippage": str(slippage_percent)})
    if bps >= 10000:
        raise InvalidAmountError("Slippage must be below 100%.", details={"slippage": str(slippage_percent)})
    return int(bps)


def min_out(quote: int, slippage_bps: int) -> int:
    """floor(quote * (100 - slippage%) / 100), in basis points."""
    return quote * (10000 - slippage_bps) // 10000


def v2_path(token_in: str, token_out: str, wrapped_native: str) -> list[str]:
    bridge = wrapped_native.lower()
    if token_in.lower() != bridge and token_out.lower() != bridge:
        return [token_in, wrapped_native, token_out]
    return [token_in, token_out]


def choose_venue(mode: DexMode, v3: Quote, v2: Quote) -> Venue:
    if mode is DexMode.V3:
        if not v3.available:
            raise NoLiquidityError("V3 pool not available for this pair/fee tier")
        return Venue.V3
    if mode is DexMode.V2:
        if not v2.available:
            raise NoLiquidityError("V2 pair not available for this token pair")
        return Venue.V2
    if not v3.available and not v2.available:
        raise NoLiquidityError("No liquidity found on V2 or V3 for this pair")
    # Ties go to V3.
    if v3.available and (not v2.available or v3.amount_out >= v2.amount_out):
        return Venue.V3
    return Venue.V2


class RouteSelector:
    def __init__(self, registry: TokenRegistry, reader: CastClient, *, fee_tier: int = DEFAULT_FEE_TIER):
        self.registry = registry
        self.reader = reader
        self.fee_tier = fee_tier

    def quote_v3(self, token_in: str, token_out: str, amount_in: int) -> Quote:
        params = f"({token_in},{token_out},{amount_in},{self.fee_tier},0)"
        try:
            out = self.reader.call(self.registry.chain.v3_quoter, V3_QUOTE_SIGNATURE, [params]).splitlines()
            amount_out = parse_uint_text(out[0] if out else "")
        except ChainError as exc:
            logger.info("v3 quote unavailable: %s", exc)
            return Quote.unavailable(Venue.V3)
        return Quote.of(Venue.V3, amount_out)

    def quote_v2(self, path: list[str], amount_in: int) -> Quote:
        try:
            out = self.reader.call(self.registry.chain.v2_router, V2_AMOUNTS_OUT_SIGNATURE, [str(amount_in), f"[{','.join(path)}]"])
            amounts = parse_uint_array(out)
        except ChainError as exc:
            logger.info("v2 quote unavailable: %s", exc)
            return Quote.unavailable(Venue.V2)
        if not amounts:
            return Quote.unavailable(Venue.V2)
        return Quote.of(Venue.V2, amounts[-1])

    def select_route(
        self,
        token_in: Token,
        token_out: Token,
        amount_in: int,
        slippage_percent: object,
        mode: DexMode = DexMode.AUTO,
    ) -> RoutePlan:
        slippage_bps = slippage_to_bps(slippage_percent)
        in_addr = self.registry.routing_address(token_in)
        out_addr = self.registry.routing_address(token_out)
        path = v2_path(in_addr, out_addr, self.registry.wrapped_native)

        v3 = Quote.unavailable(Venue.V3)
        v2 = Quote.unavailable(Venue.V2)
        with ThreadPoolExecutor(max_workers=2) as pool:
            v3_future = pool.submit(self.quote_v3, in_addr, out_addr, amount_in) if mode in (DexMode.AUTO, DexMode.V3) else None
            v2_future = pool.submit(self.quote_v2, path, amount_in) if mode in (DexMode.AUTO, DexMode.V2) else None
            if v3_future is not None:
                v3 = v3_future.result()
            if v2_future is not None:
                v2 = v2_future.result()

        venue = choose_venue(mode, v3, v2)
        selected = v3 if venue is Venue.V3 else v2
        plan = RoutePlan(
            venue=venue,
            expected_out=selected.amount_out,
            min_out=min_out(selected.amount_out, slippage_bps),
            slippage_bps=slippage_bps,
            fee_tier=self.fee_tier,
            path=(in_addr, out_addr) if venue is Venue.V3 else tuple(path),
            quotes=(v3, v2),
        )
        logger.info("route %s expectedOut=%d minOut=%d", venue.value, plan.expected_out, plan.min_out)
        return plan
