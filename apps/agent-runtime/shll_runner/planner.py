"""Plans the ordered list of vault actions for one intent.

Each intent kind is its own dataclass carrying only the fields its strategy
needs. Non-native inputs spent by a contract get an exact-amount approval
prepended whenever the observed allowance is short or unreadable.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Union

from .actions import EMPTY_CALLDATA, Action
from .chain import CastClient
from .errors import ChainError
from .routing import RoutePlan, Venue
from .tokens import Token, TokenRegistry

logger = logging.getLogger(__name__)

SWAP_DEADLINE_SEC = 20 * 60

ERC20_ALLOWANCE = "allowance(address,address)(uint256)"
ERC20_APPROVE = "approve(address,uint256)"
ERC20_TRANSFER = "transfer(address,uint256)"
V3_EXACT_INPUT_SINGLE = "exactInputSingle((address,address,uint24,address,uint256,uint256,uint160))"
V2_SWAP_EXACT_TOKENS = "swapExactTokensForTokens(uint256,uint256,address[],address,uint256)"
V2_SWAP_EXACT_ETH = "swapExactETHForTokens(uint256,address[],address,uint256)"
VTOKEN_MINT = "mint(uint256)"
VBNB_MINT = "mint()"
VTOKEN_REDEEM_UNDERLYING = "redeemUnderlying(uint256)"
WRAPPED_DEPOSIT = "deposit()"
WRAPPED_WITHDRAW = "withdraw(uint256)"


@dataclass(frozen=True)
class SwapIntent:
    token_in: Token
    token_out: Token
    amount_in: int


@dataclass(frozen=True)
class SupplyIntent:
    token: Token
    market: str
    amount: int


@dataclass(frozen=True)
class RedeemIntent:
    token: Token
    market: str
    amount: int


@dataclass(frozen=True)
class WrapIntent:
    amount: int


@dataclass(frozen=True)
class UnwrapIntent:
    amount: int


@dataclass(frozen=True)
class TransferIntent:
    token: Token
    recipient: str
    amount: int


@dataclass(frozen=True)
class RawIntent:
    actions: tuple[Action, ...]


Intent = Union[SwapIntent, SupplyIntent, RedeemIntent, WrapIntent, UnwrapIntent, TransferIntent, RawIntent]


class ActionPlanner:
    def __init__(self, registry: TokenRegistry, chain_client: CastClient, *, clock: Callable[[], float] = time.time):
        self.registry = registry
        self.chain_client = chain_client
        self.clock = clock

    def plan(self, intent: Intent, vault: str, route: RoutePlan | None = None) -> list[Action]:
        match intent:
            case SwapIntent():
                if route is None:
                    raise ValueError("Swap planning requires a selected route.")
                return self._plan_swap(intent, vault, route)
            case SupplyIntent(token=token, market=market, amount=amount):
                if token.is_native:
                    return [Action(market, amount, self._encode(VBNB_MINT))]
                return [
                    *self._approval_if_needed(token, vault, market, amount),
                    Action(market, 0, self._encode(VTOKEN_MINT, [str(amount)])),
                ]
            case RedeemIntent(market=market, amount=amount):
                return [Action(market, 0, self._encode(VTOKEN_REDEEM_UNDERLYING, [str(amount)]))]
            case WrapIntent(amount=amount):
                return [Action(self.registry.wrapped_native, amount, self._encode(WRAPPED_DEPOSIT))]
            case UnwrapIntent(amount=amount):
                return [Action(self.registry.wrapped_native, 0, self._encode(WRAPPED_WITHDRAW, [str(amount)]))]
            case TransferIntent(token=token, recipient=recipient, amount=amount):
                if token.address is None:
                    return [Action(recipient, amount, EMPTY_CALLDATA)]
                return [Action(token.address, 0, self._encode(ERC20_TRANSFER, [recipient, str(amount)]))]
            case RawIntent(actions=actions):
                return list(actions)
            case _:
                raise TypeError(f"Unsupported intent: {type(intent).__name__}")

    def read_allowance(self, token_address: str, owner: str, spender: str) -> int | None:
        """Current allowance, or None when it cannot be read."""
        try:
            return self.chain_client.call_uint(token_address, ERC20_ALLOWANCE, [owner, spender])
        except ChainError as exc:
            logger.info("allowance read failed for %s: %s", token_address, exc)
            return None

    def _encode(self, signature: str, args: list[str] | None = None) -> str:
        return self.chain_client.calldata(signature, args or [])

    def _approval_if_needed(self, token: Token, owner: str, spender: str, amount: int) -> list[Action]:
        if token.address is None:
            return []
        allowance = self.read_allowance(token.address, owner, spender)
        if allowance is not None and allowance >= amount:
            return []
        logger.info("approving %s for %d %s", spender, amount, token.symbol)
        return [Action(token.address, 0, self._encode(ERC20_APPROVE, [spender, str(amount)]))]

    def _plan_swap(self, intent: SwapIntent, vault: str, route: RoutePlan) -> list[Action]:
        chain = self.registry.chain
        native_in = intent.token_in.is_native
        amount_in = intent.amount_in
        router = chain.v3_smart_router if route.venue is Venue.V3 else chain.v2_router
        actions = self._approval_if_needed(intent.token_in, vault, router, amount_in)

        if route.venue is Venue.V3:
            params = "({},{},{},{},{},{},0)".format(
                self.registry.routing_address(intent.token_in),
                self.registry.routing_address(intent.token_out),
                route.fee_tier,
                vault,
                amount_in,
                route.min_out,
            )
            data = self._encode(V3_EXACT_INPUT_SINGLE, [params])
            actions.append(Action(router, amount_in if native_in else 0, data))
            return actions

        path = f"[{','.join(route.path)}]"
        deadline = str(int(self.clock()) + SWAP_DEADLINE_SEC)
        if native_in:
            data = self._encode(V2_SWAP_EXACT_ETH, [str(route.min_out), path, vault, deadline])
            actions.append(Action(router, amount_in, data))
        else:
            data = self._encode(V2_SWAP_EXACT_TOKENS, [str(amount_in), str(route.min_out), path, vault, deadline])
            actions.append(Action(router, 0, data))
        return actions
