"""Policy validator client for the AgentNFA / PolicyGuard contract pair.

The guard is the authority: validate() reports its verdict literally and
execute()/execute_batch() are sent by the operator through AgentNFA, which
moves funds from the agent's vault.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from .actions import Action
from .chain import CastClient, parse_address_array, parse_bool, parse_string, parse_uint_text
from .errors import ChainError, ChainTimeout, ConfigError
from .keys import derive_address, keccak256_text

logger = logging.getLogger(__name__)

ACTION_TUPLE = "(address,uint256,bytes)"
NFA_ACCOUNT_OF = "accountOf(uint256)(address)"
NFA_EXECUTE = f"execute(uint256,{ACTION_TUPLE})"
NFA_EXECUTE_BATCH = f"executeBatch(uint256,{ACTION_TUPLE}[])"
GUARD_VALIDATE = f"validate(address,uint256,address,address,{ACTION_TUPLE})(bool,string)"
GUARD_GET_POLICIES = "getPolicies(uint256)(address[])"
POLICY_TYPE = "policyType()(bytes32)"
POLICY_RENTER_CONFIGURABLE = "renterConfigurable()(bool)"
SPENDING_LIMIT_INSTANCE_LIMITS = "instanceLimits(uint256)(uint256,uint256,uint256)"
COOLDOWN_SECONDS = "cooldownSeconds(uint256)(uint256)"

KNOWN_POLICY_KINDS = (
    "spending_limit",
    "cooldown",
    "receiver_guard",
    "dex_whitelist",
    "token_whitelist",
    "defi_guard",
)
POLICY_KIND_BY_ID = {keccak256_text(name): name for name in KNOWN_POLICY_KINDS}


@dataclass(frozen=True)
class ValidationResult:
    ok: bool
    reason: str | None = None


@dataclass(frozen=True)
class PolicyInfo:
    policy_kind: str
    address: str
    renter_configurable: bool


class PolicyClient:
    def __init__(
        self,
        chain_client: CastClient,
        *,
        agent_nfa: str,
        policy_guard: str,
        operator_key: str | None = None,
    ):
        self.chain_client = chain_client
        self.agent_nfa = agent_nfa
        self.policy_guard = policy_guard
        self.operator_key = operator_key
        self._operator_address: str | None = None
        self._vaults: dict[int, str] = {}

    @property
    def operator_address(self) -> str:
        if self._operator_address is None:
            if not self.operator_key:
                raise ConfigError("Operator key is required to validate or execute actions.")
            self._operator_address = derive_address(self.operator_key)
        return self._operator_address

    def get_vault(self, agent_id: int) -> str:
        if agent_id not in self._vaults:
            out = self.chain_client.call(self.agent_nfa, NFA_ACCOUNT_OF, [str(agent_id)])
            vaults = parse_address_array(out)
            if not vaults:
                raise ChainError(f"accountOf returned no vault for agent {agent_id}.")
            self._vaults[agent_id] = vaults[0]
        return self._vaults[agent_id]

    def validate(self, agent_id: int, action: Action) -> ValidationResult:
        out = self.chain_client.call(
            self.policy_guard,
            GUARD_VALIDATE,
            [self.agent_nfa, str(agent_id), self.get_vault(agent_id), self.operator_address, action.cast_tuple()],
        )
        lines = out.splitlines()
        if not lines:
            raise ChainError("PolicyGuard.validate returned empty output.")
        ok = parse_bool(lines[0])
        reason = parse_string("\n".join(lines[1:])) if len(lines) > 1 else ""
        if ok:
            return ValidationResult(ok=True)
        return ValidationResult(ok=False, reason=reason or "Rejected by PolicyGuard")

    def execute(self, agent_id: int, action: Action, skip_revalidate: bool = False) -> str:
        data = self.chain_client.calldata(NFA_EXECUTE, [str(agent_id), action.cast_tuple()])
        return self._broadcast(data, skip_revalidate)

    def execute_batch(self, agent_id: int, actions: list[Action], skip_revalidate: bool = False) -> str:
        batch = "[" + ",".join(action.cast_tuple() for action in actions) + "]"
        data = self.chain_client.calldata(NFA_EXECUTE_BATCH, [str(agent_id), batch])
        return self._broadcast(data, skip_revalidate)

    def _broadcast(self, data: str, skip_revalidate: bool) -> str:
        if not self.operator_key:
            raise ConfigError("Operator key is required to execute actions.")
        if not skip_revalidate:
            # Simulated execution reverts if the guard would reject on-chain.
            try:
                self.chain_client.call(self.agent_nfa, data, from_addr=self.operator_address)
            except ChainTimeout:
                raise
            except ChainError as exc:
                raise ChainError(
                    f"Execution rejected in simulation: {exc}",
                    "PolicyGuard or the target contract refused the action; nothing was broadcast.",
                    {"rejected": True},
                ) from exc
        tx_hash = self.chain_client.send(self.operator_key, self.operator_address, self.agent_nfa, data)
        self.chain_client.wait_for_receipt(tx_hash)
        return tx_hash

    def get_policies(self, agent_id: int) -> list[PolicyInfo]:
        out = self.chain_client.call(self.policy_guard, GUARD_GET_POLICIES, [str(agent_id)])
        policies: list[PolicyInfo] = []
        for address in parse_address_array(out):
            type_id = self.chain_client.call(address, POLICY_TYPE).strip().lower()
            configurable = parse_bool(self.chain_client.call(address, POLICY_RENTER_CONFIGURABLE))
            policies.append(
                PolicyInfo(
                    policy_kind=POLICY_KIND_BY_ID.get(type_id, "unknown"),
                    address=address,
                    renter_configurable=configurable,
                )
            )
        return policies

    def read_spending_limits(self, policy_address: str, agent_id: int) -> dict[str, int] | None:
        try:
            out = self.chain_client.call(policy_address, SPENDING_LIMIT_INSTANCE_LIMITS, [str(agent_id)]).splitlines()
            max_per_tx, max_per_day, max_slippage_bps = (parse_uint_text(line) for line in out[:3])
        except (ChainError, ValueError) as exc:
            logger.info("spending limit read failed for %s: %s", policy_address, exc)
            return None
        return {"maxPerTx": max_per_tx, "maxPerDay": max_per_day, "maxSlippageBps": max_slippage_bps}

    def read_cooldown(self, policy_address: str, agent_id: int) -> int | None:
        try:
            return self.chain_client.call_uint(policy_address, COOLDOWN_SECONDS, [str(agent_id)])
        except ChainError as exc:
            logger.info("cooldown read failed for %s: %s", policy_address, exc)
            return None


def policy_summary(policy: PolicyInfo, config: dict[str, Any] | None) -> str | None:
    if policy.policy_kind == "spending_limit" and config:
        return (
            f"Max {config['maxPerTxBnb']} BNB/tx, {config['maxPerDayBnb']} BNB/day, "
            f"slippage {config['maxSlippageBps']}bps"
        )
    if policy.policy_kind == "cooldown" and config:
        return f"Cooldown {config['cooldownSeconds']}s between transactions"
    return {
        "receiver_guard": "Outbound transfers restricted (ReceiverGuard)",
        "dex_whitelist": "Only whitelisted DEXs allowed",
        "token_whitelist": "Only whitelisted tokens allowed",
        "defi_guard": "DeFi interactions validated by DeFiGuard",
    }.get(policy.policy_kind)
