"""Chain reader and broadcaster backed by Foundry's ``cast`` binary.

Every subprocess is bounded by a timeout. Read helpers raise ChainError on any
failure; callers that treat a failed read as "unavailable" catch it at the
call site and turn it into an explicit value.
"""

from __future__ import annotations

import json
import logging
import os
import pathlib
import re
import shutil
import subprocess
from typing import Any

from .errors import ChainError, ChainTimeout, ConfigError

logger = logging.getLogger(__name__)

TX_HASH_RE = re.compile(r"0x[a-fA-F0-9]{64}")


def find_cast_bin() -> str | None:
    # Foundry installs to ~/.foundry/bin, which is often missing from PATH under
    # service managers. Prefer explicit overrides, then PATH, then the default.
    candidates: list[str] = []
    explicit = (os.environ.get("SHLL_CAST_BIN") or "").strip()
    if explicit:
        candidates.append(explicit)

    foundry_bin = (os.environ.get("FOUNDRY_BIN") or "").strip()
    if foundry_bin:
        candidates.append(str(pathlib.Path(foundry_bin) / "cast"))

    which_cast = shutil.which("cast")
    if which_cast:
        candidates.append(which_cast)

    candidates.append(str(pathlib.Path.home() / ".foundry" / "bin" / "cast"))

    for entry in candidates:
        path = pathlib.Path(entry).expanduser()
        if path.is_file() and os.access(path, os.X_OK):
            return str(path)
    return None


def require_cast_bin() -> str:
    cast_bin = find_cast_bin()
    if not cast_bin:
        raise ConfigError("Missing dependency: cast.", "Install Foundry and ensure `cast` is on PATH.", {"dependency": "cast"})
    return cast_bin


def run_subprocess(cmd: list[str], *, timeout_sec: int, kind: str) -> subprocess.CompletedProcess[str]:
    try:
        return subprocess.run(cmd, text=True, capture_output=True, timeout=timeout_sec)
    except subprocess.TimeoutExpired as exc:
        raise ChainTimeout(kind=kind, timeout_sec=timeout_sec, cmd=cmd) from exc


def parse_uint_text(value: str) -> int:
    raw = value.strip()
    if re.fullmatch(r"[0-9]+", raw):
        return int(raw)
    if re.fullmatch(r"0x[a-fA-F0-9]+", raw):
        return int(raw, 16)
    # cast appends a scientific-notation hint to large values, e.g.
    # "20000000000000000000000 [2e22]". Accept the leading integer/hex portion.
    prefix = re.match(r"^(0x[a-fA-F0-9]+|[0-9]+)", raw)
    if prefix:
        token = prefix.group(1)
        if token.startswith("0x"):
            return int(token, 16)
        return int(token)
    raise ChainError(f"Unable to parse uint value: '{value}'.")


def parse_uint_array(value: str) -> list[int]:
    text = (value or "").strip()
    # "(uint256[]) [1, 2]" on some cast versions
    text = re.sub(r"^\([^)]*\)\s*", "", text)
    if not (text.startswith("[") and text.endswith("]")):
        raise ChainError(f"Unable to parse uint array: '{value}'.")
    inner = text[1:-1]
    # Drop "[1e22]" hints before splitting on commas.
    inner = re.sub(r"\[[^\]]*\]", "", inner)
    return [parse_uint_text(part) for part in inner.split(",") if part.strip()]


def parse_address_array(value: str) -> list[str]:
    return re.findall(r"0x[a-fA-F0-9]{40}", value or "")


def parse_bool(value: str) -> bool:
    raw = (value or "").strip().lower()
    if raw == "true":
        return True
    if raw == "false":
        return False
    raise ChainError(f"Unable to parse bool value: '{value}'.")


def parse_string(value: str) -> str:
    raw = (value or "").strip()
    if raw.startswith('"') and raw.endswith('"') and len(raw) >= 2:
        try:
            return str(json.loads(raw))
        except json.JSONDecodeError:
            return raw[1:-1]
    return raw


def extract_tx_hash(output: str) -> str:
    trimmed = (output or "").strip()
    if not trimmed:
        raise ChainError("cast send returned empty output.")
    try:
        parsed = json.loads(trimmed)
    except json.JSONDecodeError:
        parsed = None

    candidates: list[Any] = []
    if isinstance(parsed, dict):
        candidates.extend([parsed.get("transactionHash"), parsed.get("txHash"), parsed.get("hash")])

    for value in candidates:
        if isinstance(value, str) and TX_HASH_RE.fullmatch(value):
            return value

    match = TX_HASH_RE.search(trimmed)
    if match:
        return match.group(0)
    raise ChainError("cast send output did not include a transaction hash.")


def _proc_error(proc: subprocess.CompletedProcess[str], fallback: str) -> str:
    stderr = (proc.stderr or "").strip()
    stdout = (proc.stdout or "").strip()
    return stderr or stdout or fallback


class CastClient:
    """Thin wrapper over ``cast calldata|call|send|receipt`` for one RPC endpoint."""

    def __init__(
        self,
        rpc_url: str,
        *,
        cast_bin: str | None = None,
        call_timeout_sec: int = 10,
        send_timeout_sec: int = 30,
        receipt_timeout_sec: int = 90,
        gas_price_gwei: int | None = None,
    ):
        self.rpc_url = rpc_url
        self._cast_bin = cast_bin
        self.call_timeout_sec = call_timeout_sec
        self.send_timeout_sec = send_timeout_sec
        self.receipt_timeout_sec = receipt_timeout_sec
        self.gas_price_gwei = gas_price_gwei

    @property
    def cast_bin(self) -> str:
        if self._cast_bin is None:
            self._cast_bin = require_cast_bin()
        return self._cast_bin

    def calldata(self, signature: str, args: list[str] | None = None) -> str:
        proc = run_subprocess(
            [self.cast_bin, "calldata", signature, *(args or [])],
            timeout_sec=self.call_timeout_sec,
            kind="cast_calldata",
        )
        if proc.returncode != 0:
            raise ChainError(_proc_error(proc, f"cast calldata failed for {signature}."))
        data = (proc.stdout or "").strip()
        if not re.fullmatch(r"0x[a-fA-F0-9]+", data):
            raise ChainError(f"cast calldata returned malformed output for {signature}.")
        return data

    def call(self, address: str, signature: str, args: list[str] | None = None, *, from_addr: str | None = None) -> str:
        """Run a read-only call (or simulate a write) and return cast's stdout.

        ``signature`` may be raw hex calldata, in which case ``args`` must be empty.
        """
        cmd = [self.cast_bin, "call", "--rpc-url", self.rpc_url]
        if from_addr:
            cmd.extend(["--from", from_addr])
        cmd.extend([address, signature, *(args or [])])
        proc = run_subprocess(cmd, timeout_sec=self.call_timeout_sec, kind="cast_call")
        if proc.returncode != 0:
            raise ChainError(_proc_error(proc, f"cast call {signature.split('(')[0]} failed."))
        return (proc.stdout or "").strip()

    def call_uint(self, address: str, signature: str, args: list[str] | None = None) -> int:
        out = self.call(address, signature, args).splitlines()
        return parse_uint_text(out[0] if out else "")

    def send(self, private_key_hex: str, from_addr: str, to_addr: str, data: str, *, value: int = 0) -> str:
        """Broadcast one transaction and return its hash. Not retried."""
        send_cmd = [
            self.cast_bin,
            "send",
            "--async",
            "--rpc-url",
            self.rpc_url,
            "--private-key",
            private_key_hex,
        ]
        if self.gas_price_gwei is not None:
            send_cmd.extend(["--gas-price", f"{self.gas_price_gwei}gwei"])
        if value:
            send_cmd.extend(["--value", str(value)])
        send_cmd.extend(["--from", from_addr, to_addr, data])
        logger.info("broadcasting tx to %s (%d bytes calldata)", to_addr, max(0, (len(data) - 2) // 2))
        proc = run_subprocess(send_cmd, timeout_sec=self.send_timeout_sec, kind="cast_send")
        if proc.returncode != 0:
            raise ChainError(_proc_error(proc, "cast send failed."))
        return extract_tx_hash(proc.stdout)

    def wait_for_receipt(self, tx_hash: str) -> dict[str, Any]:
        proc = run_subprocess(
            [self.cast_bin, "receipt", "--json", "--rpc-url", self.rpc_url, tx_hash],
            timeout_sec=self.receipt_timeout_sec,
            kind="cast_receipt",
        )
        if proc.returncode != 0:
            raise ChainError(_proc_error(proc, "cast receipt failed."), details={"txHash": tx_hash})
        try:
            payload = json.loads((proc.stdout or "{}").strip() or "{}")
        except json.JSONDecodeError as exc:
            raise ChainError("cast receipt returned malformed JSON.", details={"txHash": tx_hash}) from exc
        status = str(payload.get("status", "0x0")).lower()
        if status not in {"0x1", "1"}:
            raise ChainError(
                f"On-chain receipt indicates failure status '{status}'.",
                "The transaction reverted and consumed gas; re-plan before retrying.",
                {"txHash": tx_hash},
            )
        return payload
