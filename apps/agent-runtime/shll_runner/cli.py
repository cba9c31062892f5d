#!/usr/bin/env python3
"""SHLL on-chain runner CLI.

Executes DeFi actions for an AgentNFA vault. Every planned call is validated
against the agent's PolicyGuard before a single (batched) transaction is sent
by the operator key in RUNNER_PRIVATE_KEY. Each command prints one JSON
payload on stdout.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import re
import sys
from dataclasses import dataclass
from typing import Any

from .actions import action_from_parts, parse_actions_json
from .chain import CastClient, require_cast_bin
from .config import RunnerConfig, load_runner_config
from .errors import ChainTimeout, InvalidAmountError, RunnerError
from .pipeline import ExecutionPipeline, ExecutionResult, RejectedOutcome
from .planner import (
    ActionPlanner,
    RawIntent,
    RedeemIntent,
    SupplyIntent,
    SwapIntent,
    TransferIntent,
    UnwrapIntent,
    WrapIntent,
)
from .policy import PolicyClient, policy_summary
from .routing import DEFAULT_FEE_TIER, DexMode, RouteSelector
from .tokens import TokenRegistry, format_minor_units, is_hex_address, to_minor_units

logger = logging.getLogger(__name__)

EXIT_INVALID_INPUT = 2
EXIT_POLICY_REJECTED = 3
VTOKEN_BALANCE_OF_UNDERLYING = "balanceOfUnderlying(address)(uint256)"
VTOKEN_SUPPLY_RATE = "supplyRatePerBlock()(uint256)"
SECURITY_NOTE = "Operator wallet CANNOT withdraw vault funds or transfer Agent NFT - only owner can."


def emit(payload: dict) -> int:
    print(json.dumps(payload, separators=(",", ":")))
    return 0


def ok(message: str, **extra: object) -> int:
    payload = {"ok": True, "code": "ok", "message": message}
    payload.update(extra)
    return emit(payload)


def fail(code: str, message: str, action_hint: str | None = None, details: dict | None = None, exit_code: int = 1) -> int:
    payload: dict[str, object] = {"ok": False, "code": code, "message": message}
    if action_hint:
        payload["actionHint"] = action_hint
    if details:
        payload["details"] = details
    emit(payload)
    return exit_code


def require_json_flag(args: argparse.Namespace) -> int | None:
    if getattr(args, "json", False):
        return None
    return fail("missing_flag", "This command requires --json output mode.", "Re-run with --json.", exit_code=EXIT_INVALID_INPUT)


def _fail_runner_error(exc: RunnerError) -> int:
    if isinstance(exc, ChainTimeout):
        hint = "Verify RPC connectivity and cast health, then retry."
        if exc.kind == "cast_receipt":
            hint = "Tx may still be pending. Check the receipt later before re-submitting."
        return fail(exc.code, str(exc), hint, exc.details)
    exit_code = EXIT_INVALID_INPUT if isinstance(exc, InvalidAmountError) else 1
    return fail(exc.code, str(exc), exc.action_hint, exc.details, exit_code=exit_code)


def _fail_unexpected(command: str, exc: Exception) -> int:
    msg = (str(exc) or "").strip() or f"{type(exc).__name__}: (no message)"
    return fail(f"{command}_failed", msg, "Inspect runner logs (SHLL_LOG_LEVEL=DEBUG) and retry.", {"exceptionType": type(exc).__name__})


@dataclass
class Runtime:
    config: RunnerConfig
    chain_client: CastClient
    registry: TokenRegistry
    policy: PolicyClient

    def planner(self) -> ActionPlanner:
        return ActionPlanner(self.registry, self.chain_client)

    def pipeline(self) -> ExecutionPipeline:
        return ExecutionPipeline(self.policy)


def _build_runtime(args: argparse.Namespace, *, require_key: bool = True) -> Runtime:
    config = load_runner_config(
        chain=getattr(args, "chain", None),
        rpc_url=getattr(args, "rpc", None),
        nfa_address=getattr(args, "nfa_address", None),
        guard_address=getattr(args, "guard_address", None),
        v2_router=getattr(args, "router", None),
    )
    if require_key:
        # Fails on a missing or malformed key before anything touches the network.
        logger.info("operator %s on %s", config.operator_address, config.chain.key)
    chain_client = CastClient(
        config.chain.rpc_url,
        cast_bin=require_cast_bin(),
        call_timeout_sec=config.call_timeout_sec,
        send_timeout_sec=config.send_timeout_sec,
        receipt_timeout_sec=config.receipt_timeout_sec,
        gas_price_gwei=config.gas_price_gwei,
    )
    policy = PolicyClient(
        chain_client,
        agent_nfa=config.chain.agent_nfa,
        policy_guard=config.chain.policy_guard,
        operator_key=config.operator_key,
    )
    return Runtime(config=config, chain_client=chain_client, registry=TokenRegistry(config.chain), policy=policy)


def _parse_agent_id(raw: Any) -> int:
    text = str(raw or "").strip()
    if not re.fullmatch(r"[0-9]+", text):
        raise InvalidAmountError("token-id must be a non-negative integer.", details={"tokenId": text})
    return int(text)


def _positive_amount(raw: str, decimals: int) -> int:
    amount = to_minor_units(raw, decimals)
    if amount <= 0:
        raise InvalidAmountError("Amount must be positive.", details={"amount": raw})
    if amount >= 2**256:
        raise InvalidAmountError("Amount is too large (exceeds uint256).", details={"amount": raw})
    return amount


def _report_outcome(outcome: ExecutionResult | RejectedOutcome, message: str, *, rejection_hint: str | None = None, **extra: object) -> int:
    if isinstance(outcome, RejectedOutcome):
        return fail(
            "policy_rejected",
            outcome.reason,
            rejection_hint or "Nothing was broadcast. Adjust the request to fit the agent's policies.",
            {"actionIndex": outcome.action_index},
            exit_code=EXIT_POLICY_REJECTED,
        )
    return ok(
        message,
        txHash=outcome.transaction_hash,
        batched=outcome.batched,
        actionCount=outcome.action_count,
        **extra,
    )


def cmd_swap(args: argparse.Namespace) -> int:
    chk = require_json_flag(args)
    if chk is not None:
        return chk
    try:
        agent_id = _parse_agent_id(args.token_id)
        fee_tier = int(str(args.fee).strip()) if re.fullmatch(r"[0-9]+", str(args.fee).strip()) else -1
        if fee_tier <= 0 or fee_tier >= 2**24:
            return fail("invalid_input", "fee must be a uint24 fee tier such as 100, 500, 2500 or 10000.", details={"fee": args.fee}, exit_code=EXIT_INVALID_INPUT)
        rt = _build_runtime(args)

        token_in = rt.registry.resolve(args.from_token)
        token_out = rt.registry.resolve(args.to_token)
        if rt.registry.routing_address(token_in).lower() == rt.registry.routing_address(token_out).lower():
            return fail(
                "invalid_input",
                "from and to must be different tokens.",
                "Use wrap/unwrap to move between the native asset and its wrapped token.",
                {"from": token_in.symbol, "to": token_out.symbol},
                exit_code=EXIT_INVALID_INPUT,
            )
        amount_in = _positive_amount(args.amount, token_in.decimals)

        vault = rt.policy.get_vault(agent_id)
        selector = RouteSelector(rt.registry, rt.chain_client, fee_tier=fee_tier)
        route = selector.select_route(token_in, token_out, amount_in, args.slippage, DexMode(args.dex))
        actions = rt.planner().plan(SwapIntent(token_in, token_out, amount_in), vault, route)
        outcome = rt.pipeline().run(agent_id, actions)
        return _report_outcome(
            outcome,
            f"Swap executed on PancakeSwap {route.venue.value.upper()}.",
            vault=vault,
            tokenIn=token_in.symbol,
            tokenOut=token_out.symbol,
            amountInUnits=str(amount_in),
            amountIn=format_minor_units(amount_in, token_in.decimals),
            expectedOutPretty=format_minor_units(route.expected_out, token_out.decimals),
            minOutPretty=format_minor_units(route.min_out, token_out.decimals),
            **route.to_json(),
        )
    except RunnerError as exc:
        return _fail_runner_error(exc)
    except Exception as exc:
        return _fail_unexpected("swap", exc)


def cmd_raw(args: argparse.Namespace) -> int:
    chk = require_json_flag(args)
    if chk is not None:
        return chk
    try:
        agent_id = _parse_agent_id(args.token_id)
        if args.batch:
            if not args.actions:
                return fail("invalid_input", "--actions JSON is required in batch mode", exit_code=EXIT_INVALID_INPUT)
            actions = parse_actions_json(args.actions)
        else:
            if not args.target or not args.data:
                return fail("invalid_input", "--target and --data are required unless --batch is set.", exit_code=EXIT_INVALID_INPUT)
            actions = [action_from_parts(args.target, args.value, args.data)]
        rt = _build_runtime(args)
        planned = rt.planner().plan(RawIntent(tuple(actions)), rt.policy.get_vault(agent_id))
        outcome = rt.pipeline().run(agent_id, planned)
        return _report_outcome(outcome, "Raw actions executed.", actions=[a.to_json() for a in planned])
    except RunnerError as exc:
        return _fail_runner_error(exc)
    except Exception as exc:
        return _fail_unexpected("raw", exc)


def cmd_tokens(args: argparse.Namespace) -> int:
    chk = require_json_flag(args)
    if chk is not None:
        return chk
    try:
        config = load_runner_config(chain=getattr(args, "chain", None))
        registry = TokenRegistry(config.chain)
        return ok(
            f"{len(registry.tokens())} known tokens on {config.chain.key}.",
            chain=config.chain.key,
            tokens=[token.to_json() for token in registry.tokens()],
            lendingMarkets=dict(config.chain.lending_markets),
        )
    except RunnerError as exc:
        return _fail_runner_error(exc)
    except Exception as exc:
        return _fail_unexpected("tokens", exc)


def _cmd_wrap_or_unwrap(args: argparse.Namespace, *, unwrap: bool) -> int:
    command = "unwrap" if unwrap else "wrap"
    chk = require_json_flag(args)
    if chk is not None:
        return chk
    try:
        agent_id = _parse_agent_id(args.token_id)
        rt = _build_runtime(args)
        native = rt.registry.native_token()
        amount = _positive_amount(args.amount, native.decimals)
        intent = UnwrapIntent(amount) if unwrap else WrapIntent(amount)
        actions = rt.planner().plan(intent, rt.policy.get_vault(agent_id))
        outcome = rt.pipeline().run(agent_id, actions)
        human = format_minor_units(amount, native.decimals)
        message = f"Unwrapped {human} W{native.symbol} -> {native.symbol}" if unwrap else f"Wrapped {human} {native.symbol} -> W{native.symbol}"
        return _report_outcome(outcome, message, amount=human, amountUnits=str(amount))
    except RunnerError as exc:
        return _fail_runner_error(exc)
    except Exception as exc:
        return _fail_unexpected(command, exc)


def cmd_wrap(args: argparse.Namespace) -> int:
    return _cmd_wrap_or_unwrap(args, unwrap=False)


def cmd_unwrap(args: argparse.Namespace) -> int:
    return _cmd_wrap_or_unwrap(args, unwrap=True)


def cmd_transfer(args: argparse.Namespace) -> int:
    chk = require_json_flag(args)
    if chk is not None:
        return chk
    try:
        agent_id = _parse_agent_id(args.token_id)
        recipient = str(args.recipient or "").strip()
        if not is_hex_address(recipient):
            return fail(
                "invalid_input",
                "to must be a valid 0x address.",
                "Provide a 0x-prefixed 20-byte hex address.",
                {"to": args.recipient},
                exit_code=EXIT_INVALID_INPUT,
            )
        rt = _build_runtime(args)
        token = rt.registry.resolve(args.token)
        amount = _positive_amount(args.amount, token.decimals)
        actions = rt.planner().plan(TransferIntent(token, recipient, amount), rt.policy.get_vault(agent_id))
        outcome = rt.pipeline().run(agent_id, actions)
        human = format_minor_units(amount, token.decimals)
        return _report_outcome(
            outcome,
            f"Transferred {human} {token.symbol} to {recipient}",
            rejection_hint="ReceiverGuardPolicy may restrict outbound transfers; nothing was broadcast.",
            token=token.symbol,
            to=recipient,
            amount=human,
            amountUnits=str(amount),
        )
    except RunnerError as exc:
        return _fail_runner_error(exc)
    except Exception as exc:
        return _fail_unexpected("transfer", exc)


def _cmd_lending(args: argparse.Namespace, *, redeem: bool) -> int:
    command = "redeem" if redeem else "lend"
    chk = require_json_flag(args)
    if chk is not None:
        return chk
    try:
        agent_id = _parse_agent_id(args.token_id)
        rt = _build_runtime(args)
        token, market = rt.registry.lending_market(args.token)
        amount = _positive_amount(args.amount, token.decimals)
        vault = rt.policy.get_vault(agent_id)
        intent = RedeemIntent(token, market, amount) if redeem else SupplyIntent(token, market, amount)
        actions = rt.planner().plan(intent, vault)
        outcome = rt.pipeline().run(agent_id, actions)
        human = format_minor_units(amount, token.decimals)
        message = f"Redeemed {human} {token.symbol} from Venus." if redeem else f"Supplied {human} {token.symbol} to Venus."
        return _report_outcome(
            outcome,
            message,
            protocol="venus",
            action="redeem" if redeem else "supply",
            token=token.symbol,
            vToken=market,
            amount=human,
            amountUnits=str(amount),
        )
    except RunnerError as exc:
        return _fail_runner_error(exc)
    except Exception as exc:
        return _fail_unexpected(command, exc)


def cmd_lend(args: argparse.Namespace) -> int:
    return _cmd_lending(args, redeem=False)


def cmd_redeem(args: argparse.Namespace) -> int:
    return _cmd_lending(args, redeem=True)


def cmd_policies(args: argparse.Namespace) -> int:
    chk = require_json_flag(args)
    if chk is not None:
        return chk
    try:
        agent_id = _parse_agent_id(args.token_id)
        rt = _build_runtime(args, require_key=False)
        native = rt.registry.native_token()
        enriched: list[dict[str, Any]] = []
        summary_parts: list[str] = []
        for policy in rt.policy.get_policies(agent_id):
            entry: dict[str, Any] = {
                "name": policy.policy_kind,
                "address": policy.address,
                "renterConfigurable": policy.renter_configurable,
            }
            config: dict[str, Any] | None = None
            if policy.policy_kind == "spending_limit":
                limits = rt.policy.read_spending_limits(policy.address, agent_id)
                if limits is not None:
                    config = {
                        "maxPerTx": str(limits["maxPerTx"]),
                        "maxPerTxBnb": format_minor_units(limits["maxPerTx"], native.decimals),
                        "maxPerDay": str(limits["maxPerDay"]),
                        "maxPerDayBnb": format_minor_units(limits["maxPerDay"], native.decimals),
                        "maxSlippageBps": str(limits["maxSlippageBps"]),
                    }
            elif policy.policy_kind == "cooldown":
                seconds = rt.policy.read_cooldown(policy.address, agent_id)
                if seconds is not None:
                    config = {"cooldownSeconds": str(seconds)}
            if config is not None:
                entry["currentConfig"] = config
            summary = policy_summary(policy, config)
            if summary:
                summary_parts.append(summary)
            enriched.append(entry)

        return ok(
            f"{len(enriched)} policies attached to agent {agent_id}.",
            tokenId=str(agent_id),
            humanSummary=" | ".join(summary_parts) if summary_parts else "No configurable policies found",
            securityNote=SECURITY_NOTE,
            policies=enriched,
        )
    except RunnerError as exc:
        return _fail_runner_error(exc)
    except Exception as exc:
        return _fail_unexpected("policies", exc)


def _supply_apy_percent(rate_per_block: int, blocks_per_year: int) -> float:
    rate = rate_per_block / 1e18
    return ((1 + rate) ** blocks_per_year - 1) * 100


def cmd_lending_info(args: argparse.Namespace) -> int:
    chk = require_json_flag(args)
    if chk is not None:
        return chk
    try:
        agent_id = _parse_agent_id(args.token_id)
        rt = _build_runtime(args, require_key=False)
        vault = rt.policy.get_vault(agent_id)
        positions: list[dict[str, Any]] = []
        for symbol, market in rt.config.chain.lending_markets.items():
            token = rt.registry.resolve(symbol)
            try:
                supplied = rt.chain_client.call_uint(market, VTOKEN_BALANCE_OF_UNDERLYING, [vault])
                rate = rt.chain_client.call_uint(market, VTOKEN_SUPPLY_RATE)
            except RunnerError as exc:
                logger.info("lending market %s unreadable: %s", symbol, exc)
                positions.append({"token": symbol, "vToken": market, "error": "Failed to query"})
                continue
            positions.append(
                {
                    "token": symbol,
                    "vToken": market,
                    "supplied": format_minor_units(supplied, token.decimals),
                    "suppliedRaw": str(supplied),
                    "apyPercent": f"{_supply_apy_percent(rate, rt.config.chain.blocks_per_year):.2f}",
                    "hasPosition": supplied > 0,
                }
            )
        return ok(
            "Venus lending positions loaded.",
            vault=vault,
            protocol="venus",
            positions=positions,
            activeCount=sum(1 for p in positions if p.get("hasPosition")),
            totalMarkets=len(positions),
        )
    except RunnerError as exc:
        return _fail_runner_error(exc)
    except Exception as exc:
        return _fail_unexpected("lending_info", exc)


def _add_shared_options(cmd: argparse.ArgumentParser) -> None:
    cmd.add_argument("-k", "--token-id", required=True, help="Agent NFA token ID")
    cmd.add_argument("-r", "--rpc", help="RPC URL override")
    cmd.add_argument("--chain", help="Chain config key (default: SHLL_CHAIN or bsc)")
    cmd.add_argument("--nfa-address", help="AgentNFA contract address override")
    cmd.add_argument("--guard-address", help="PolicyGuard contract address override")
    cmd.add_argument("--json", action="store_true")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="shll-runner", description="Execute DeFi actions securely via SHLL AgentNFA")
    p.add_argument("-v", "--verbose", action="store_true", help="Log progress to stderr")
    sub = p.add_subparsers(dest="top")

    swap = sub.add_parser("swap", help="Swap tokens on PancakeSwap (auto-routes V2/V3)")
    swap.add_argument("-f", "--from", dest="from_token", required=True)
    swap.add_argument("-t", "--to", dest="to_token", required=True)
    swap.add_argument("-a", "--amount", required=True)
    swap.add_argument("-s", "--slippage", default="5", help="Slippage tolerance in percent")
    swap.add_argument("--dex", choices=[mode.value for mode in DexMode], default=DexMode.AUTO.value)
    swap.add_argument("--fee", default=str(DEFAULT_FEE_TIER), help="V3 fee tier (2500 = 0.25%%)")
    swap.add_argument("--router", help="V2 router address override")
    _add_shared_options(swap)
    swap.set_defaults(func=cmd_swap)

    raw = sub.add_parser("raw", help="Execute caller-supplied calldata")
    raw.add_argument("-t", "--target")
    raw.add_argument("-d", "--data")
    raw.add_argument("-v", "--value", default="0", help="Native value in wei")
    raw.add_argument("-b", "--batch", action="store_true")
    raw.add_argument("-a", "--actions", help="JSON array of {target,value,data} for batch mode")
    _add_shared_options(raw)
    raw.set_defaults(func=cmd_raw)

    tokens = sub.add_parser("tokens", help="List known token symbols")
    tokens.add_argument("--chain")
    tokens.add_argument("--json", action="store_true")
    tokens.set_defaults(func=cmd_tokens)

    wrap = sub.add_parser("wrap", help="Wrap native BNB held by the vault")
    wrap.add_argument("-a", "--amount", required=True)
    _add_shared_options(wrap)
    wrap.set_defaults(func=cmd_wrap)

    unwrap = sub.add_parser("unwrap", help="Unwrap WBNB held by the vault")
    unwrap.add_argument("-a", "--amount", required=True)
    _add_shared_options(unwrap)
    unwrap.set_defaults(func=cmd_unwrap)

    transfer = sub.add_parser("transfer", help="Transfer tokens or BNB from the vault")
    transfer.add_argument("-t", "--token", required=True)
    transfer.add_argument("-a", "--amount", required=True)
    transfer.add_argument("--to", dest="recipient", required=True)
    _add_shared_options(transfer)
    transfer.set_defaults(func=cmd_transfer)

    lend = sub.add_parser("lend", help="Supply tokens to Venus Protocol")
    lend.add_argument("-t", "--token", required=True)
    lend.add_argument("-a", "--amount", required=True)
    _add_shared_options(lend)
    lend.set_defaults(func=cmd_lend)

    redeem = sub.add_parser("redeem", help="Redeem supplied tokens from Venus Protocol")
    redeem.add_argument("-t", "--token", required=True)
    redeem.add_argument("-a", "--amount", required=True)
    _add_shared_options(redeem)
    redeem.set_defaults(func=cmd_redeem)

    policies = sub.add_parser("policies", help="Show the agent's active policies")
    _add_shared_options(policies)
    policies.set_defaults(func=cmd_policies)

    lending_info = sub.add_parser("lending-info", help="Show Venus supply balances and APY for the vault")
    _add_shared_options(lending_info)
    lending_info.set_defaults(func=cmd_lending_info)

    return p


def configure_logging(verbose: bool) -> None:
    level_name = (os.environ.get("SHLL_LOG_LEVEL") or ("INFO" if verbose else "WARNING")).strip().upper()
    logging.basicConfig(
        stream=sys.stderr,
        level=getattr(logging, level_name, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return EXIT_INVALID_INPUT
    configure_logging(args.verbose)
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
