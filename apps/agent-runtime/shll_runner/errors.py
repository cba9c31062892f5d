"""Error taxonomy for the SHLL on-chain runner.

Policy rejections are not errors: the execution pipeline returns them as a
RejectedOutcome value so callers can tell "refused for safety reasons" apart
from "failed".
"""

from __future__ import annotations

from typing import Any


class RunnerError(Exception):
    """Base class for all runner failures."""

    code = "runner_error"

    def __init__(self, message: str, action_hint: str | None = None, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.action_hint = action_hint
        self.details = details or {}


class ConfigError(RunnerError):
    """Configuration is missing or malformed; raised before any network call."""

    code = "config_invalid"


class UnknownTokenError(RunnerError):
    """A token symbol or address could not be resolved."""

    code = "unknown_token"


class InvalidAmountError(RunnerError):
    """An amount or slippage value is malformed or out of range."""

    code = "invalid_input"


class NoLiquidityError(RunnerError):
    """No liquidity venue can serve the requested swap."""

    code = "no_liquidity"


class ChainError(RunnerError):
    """RPC, subprocess or broadcast failure."""

    code = "chain_error"


class ChainTimeout(ChainError):
    """A cast subprocess (call/send/receipt) timed out."""

    code = "rpc_timeout"

    def __init__(self, kind: str, timeout_sec: int, cmd: list[str]):
        super().__init__(
            f"Timed out after {timeout_sec}s running cast {kind.removeprefix('cast_')}.",
            details={"kind": kind, "timeoutSec": timeout_sec},
        )
        self.kind = kind
        self.timeout_sec = timeout_sec
        self.cmd = cmd
