"""Runner configuration: bundled chain config plus environment overrides.

Configuration is built once per invocation and passed by reference; nothing
here is a process-wide mutable registry.
"""

from __future__ import annotations

import json
import os
import pathlib
import re
from dataclasses import dataclass, replace
from types import MappingProxyType
from typing import Any, Mapping

from .errors import ConfigError
from .keys import derive_address, normalize_private_key_hex
from .tokens import Token, is_hex_address

CHAIN_CONFIG_DIR = pathlib.Path(__file__).resolve().parent / "chains"
DEFAULT_CHAIN = "bsc"

DEFAULT_CAST_CALL_TIMEOUT_SEC = 10
DEFAULT_CAST_SEND_TIMEOUT_SEC = 30
DEFAULT_CAST_RECEIPT_TIMEOUT_SEC = 90


@dataclass(frozen=True)
class ChainConfig:
    key: str
    chain_id: int
    rpc_url: str
    agent_nfa: str
    policy_guard: str
    v2_router: str
    v3_smart_router: str
    v3_quoter: str
    wrapped_native: str
    tokens: Mapping[str, Token]
    lending_markets: Mapping[str, str]
    blocks_per_year: int


@dataclass(frozen=True)
class RunnerConfig:
    chain: ChainConfig
    operator_key: str | None
    call_timeout_sec: int = DEFAULT_CAST_CALL_TIMEOUT_SEC
    send_timeout_sec: int = DEFAULT_CAST_SEND_TIMEOUT_SEC
    receipt_timeout_sec: int = DEFAULT_CAST_RECEIPT_TIMEOUT_SEC
    gas_price_gwei: int | None = None

    def require_operator_key(self) -> str:
        if not self.operator_key:
            raise ConfigError(
                "RUNNER_PRIVATE_KEY environment variable is missing",
                "Export the operator key as RUNNER_PRIVATE_KEY before running write commands.",
            )
        return self.operator_key

    @property
    def operator_address(self) -> str:
        return derive_address(self.require_operator_key())


def _read_json(path: pathlib.Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigError(f"Chain config '{path}' is unreadable: {exc}") from exc


def _require_address(value: Any, label: str) -> str:
    if not isinstance(value, str) or not is_hex_address(value.strip()):
        raise ConfigError(f"Malformed address for {label}: '{value}'.", details={"field": label})
    return value.strip()


def _env_timeout_sec(env: Mapping[str, str], name: str, default: int) -> int:
    raw = (env.get(name) or "").strip()
    if not raw:
        return default
    if not re.fullmatch(r"[0-9]+", raw):
        raise ConfigError(f"{name} must be an integer number of seconds.")
    value = int(raw)
    if value < 1:
        raise ConfigError(f"{name} must be >= 1.")
    return value


def load_chain_config(chain: str, config_dir: pathlib.Path | None = None) -> ChainConfig:
    directory = config_dir or CHAIN_CONFIG_DIR
    path = directory / f"{chain}.json"
    if not path.exists():
        raise ConfigError(f"Chain config not found for '{chain}' at '{path}'.")
    data = _read_json(path)
    if not isinstance(data, dict):
        raise ConfigError(f"Chain config '{path}' must be a JSON object.")

    rpc = data.get("rpc")
    if not isinstance(rpc, dict):
        raise ConfigError(f"Chain config for '{chain}' is missing rpc object.")
    rpc_url = next(
        (candidate.strip() for candidate in (rpc.get("primary"), rpc.get("fallback")) if isinstance(candidate, str) and candidate.strip()),
        None,
    )
    if rpc_url is None:
        raise ConfigError(f"Chain config for '{chain}' has no usable rpc URL.")

    contracts = data.get("coreContracts")
    if not isinstance(contracts, dict):
        raise ConfigError(f"Chain config for '{chain}' is missing coreContracts.")

    raw_tokens = data.get("canonicalTokens")
    if not isinstance(raw_tokens, dict) or not raw_tokens:
        raise ConfigError(f"Chain config for '{chain}' is missing canonicalTokens.")
    tokens: dict[str, Token] = {}
    for symbol, entry in raw_tokens.items():
        if not isinstance(entry, dict) or not isinstance(entry.get("decimals"), int):
            raise ConfigError(f"Chain config for '{chain}' has invalid canonicalTokens.{symbol}.")
        address = entry.get("address")
        tokens[symbol.upper()] = Token(
            symbol=symbol.upper(),
            address=None if address is None else _require_address(address, f"canonicalTokens.{symbol}"),
            decimals=entry["decimals"],
        )

    markets = data.get("lendingMarkets") or {}
    if not isinstance(markets, dict):
        raise ConfigError(f"Chain config for '{chain}' has invalid lendingMarkets.")

    return ChainConfig(
        key=chain,
        chain_id=int(data.get("chainId") or 0),
        rpc_url=rpc_url,
        agent_nfa=_require_address(contracts.get("agentNfa"), "coreContracts.agentNfa"),
        policy_guard=_require_address(contracts.get("policyGuard"), "coreContracts.policyGuard"),
        v2_router=_require_address(contracts.get("v2Router"), "coreContracts.v2Router"),
        v3_smart_router=_require_address(contracts.get("v3SmartRouter"), "coreContracts.v3SmartRouter"),
        v3_quoter=_require_address(contracts.get("v3Quoter"), "coreContracts.v3Quoter"),
        wrapped_native=_require_address(contracts.get("wrappedNative"), "coreContracts.wrappedNative"),
        tokens=MappingProxyType(tokens),
        lending_markets=MappingProxyType(
            {symbol.upper(): _require_address(addr, f"lendingMarkets.{symbol}") for symbol, addr in markets.items()}
        ),
        blocks_per_year=int(data.get("blocksPerYear") or 0),
    )


def load_runner_config(
    *,
    chain: str | None = None,
    rpc_url: str | None = None,
    nfa_address: str | None = None,
    guard_address: str | None = None,
    v2_router: str | None = None,
    env: Mapping[str, str] | None = None,
) -> RunnerConfig:
    """Build the invocation config. CLI overrides win over environment, which wins over the chain file."""
    env = os.environ if env is None else env
    chain_key = (chain or env.get("SHLL_CHAIN") or DEFAULT_CHAIN).strip()
    config_dir_raw = (env.get("SHLL_CHAIN_CONFIG_DIR") or "").strip()
    chain_cfg = load_chain_config(chain_key, pathlib.Path(config_dir_raw) if config_dir_raw else None)

    overrides: dict[str, str] = {}
    rpc = (rpc_url or env.get("SHLL_RPC_URL") or "").strip()
    if rpc:
        overrides["rpc_url"] = rpc
    if nfa_address:
        overrides["agent_nfa"] = _require_address(nfa_address, "--nfa-address")
    if guard_address:
        overrides["policy_guard"] = _require_address(guard_address, "--guard-address")
    if v2_router:
        overrides["v2_router"] = _require_address(v2_router, "--router")
    wrapped = (env.get("WBNB_ADDRESS") or "").strip()
    if wrapped:
        overrides["wrapped_native"] = _require_address(wrapped, "WBNB_ADDRESS")
    if overrides:
        chain_cfg = replace(chain_cfg, **overrides)

    operator_key: str | None = None
    raw_key = (env.get("RUNNER_PRIVATE_KEY") or "").strip()
    if raw_key:
        normalized = normalize_private_key_hex(raw_key)
        if normalized is None:
            raise ConfigError("RUNNER_PRIVATE_KEY is malformed.", "Use a 0x-prefixed 64-hex-char private key.")
        operator_key = "0x" + normalized

    gas_price_gwei: int | None = None
    raw_gas = (env.get("SHLL_TX_GAS_PRICE_GWEI") or "").strip()
    if raw_gas:
        if not re.fullmatch(r"[0-9]+", raw_gas) or int(raw_gas) < 1:
            raise ConfigError("SHLL_TX_GAS_PRICE_GWEI must be a positive integer in gwei.")
        gas_price_gwei = int(raw_gas)

    return RunnerConfig(
        chain=chain_cfg,
        operator_key=operator_key,
        call_timeout_sec=_env_timeout_sec(env, "SHLL_CAST_CALL_TIMEOUT_SEC", DEFAULT_CAST_CALL_TIMEOUT_SEC),
        send_timeout_sec=_env_timeout_sec(env, "SHLL_CAST_SEND_TIMEOUT_SEC", DEFAULT_CAST_SEND_TIMEOUT_SEC),
        receipt_timeout_sec=_env_timeout_sec(env, "SHLL_CAST_RECEIPT_TIMEOUT_SEC", DEFAULT_CAST_RECEIPT_TIMEOUT_SEC),
        gas_price_gwei=gas_price_gwei,
    )
