#!/usr/bin/env python3
"""Python-first skill wrapper for the shll-runner CLI.

This wrapper standardizes command invocation and error formatting for skill usage.
It does not sign anything itself; it delegates to the local shll-runner CLI.
"""

from __future__ import annotations

import json
import os
import re
import shutil
import subprocess
import sys
from pathlib import Path
from typing import Iterable, List, Optional

COMMANDS = (
    "swap",
    "raw",
    "raw-batch",
    "tokens",
    "wrap",
    "unwrap",
    "transfer",
    "lend",
    "redeem",
    "policies",
    "lending-info",
)
READ_ONLY_COMMANDS = {"tokens", "policies", "lending-info"}


def _print_json(data: dict) -> None:
    print(json.dumps(data, separators=(",", ":")))


def _err(code: str, message: str, action_hint: Optional[str] = None, details: Optional[dict] = None, exit_code: int = 1) -> int:
    payload = {
        "ok": False,
        "code": code,
        "message": message,
    }
    if action_hint:
        payload["actionHint"] = action_hint
    if details:
        payload["details"] = details
    _print_json(payload)
    return exit_code


def _runtime_root() -> Path:
    return Path(__file__).resolve().parent.parent.parent.parent / "apps" / "agent-runtime"


def _resolve_runner_command() -> Optional[List[str]]:
    path_binary = shutil.which("shll-runner")
    if path_binary:
        return [path_binary]

    if (_runtime_root() / "shll_runner" / "cli.py").exists():
        return [sys.executable, "-m", "shll_runner.cli"]

    return None


def _extract_json_payload(stdout: str) -> Optional[dict]:
    trimmed = (stdout or "").strip()
    if not trimmed:
        return None
    try:
        payload = json.loads(trimmed)
    except json.JSONDecodeError:
        return None
    if isinstance(payload, dict) and "ok" in payload and "code" in payload:
        return payload
    return None


def _require_env(*keys: str) -> Optional[int]:
    missing = [k for k in keys if not os.environ.get(k)]
    if not missing:
        return None
    return _err(
        "missing_env",
        f"Missing required environment variable(s): {', '.join(missing)}",
        "Set the required env vars in the skill entry and restart the session.",
        {"missing": missing},
        exit_code=2,
    )


def _run_runner(args: Iterable[str]) -> int:
    base = _resolve_runner_command()
    if not base:
        return _err(
            "missing_binary",
            "shll-runner is not installed or not discoverable.",
            "Install the package (pip install -e .) or keep apps/agent-runtime/shll_runner next to this skill.",
            exit_code=127,
        )

    cmd: List[str] = [*base, *args]
    raw_timeout = os.environ.get("SHLL_SKILL_TIMEOUT_SEC", "").strip()
    timeout_sec = 240
    if raw_timeout:
        if not re.fullmatch(r"[0-9]+", raw_timeout):
            return _err("invalid_env", "SHLL_SKILL_TIMEOUT_SEC must be an integer number of seconds.", exit_code=2)
        timeout_sec = int(raw_timeout)
        if timeout_sec < 1:
            return _err("invalid_env", "SHLL_SKILL_TIMEOUT_SEC must be >= 1.", exit_code=2)

    env = dict(os.environ)
    if base[0] == sys.executable:
        env["PYTHONPATH"] = os.pathsep.join(p for p in (str(_runtime_root()), env.get("PYTHONPATH", "")) if p)

    try:
        proc = subprocess.run(cmd, text=True, capture_output=True, timeout=timeout_sec, env=env)
    except subprocess.TimeoutExpired:
        return _err(
            "timeout",
            "Command timed out.",
            "Increase SHLL_SKILL_TIMEOUT_SEC or investigate RPC/cast health. A broadcast may still land; check before retrying.",
            {"command": cmd[len(base):], "timeoutSec": timeout_sec},
            exit_code=124,
        )

    if proc.returncode == 0:
        out = proc.stdout.strip()
        if out:
            print(out)
        else:
            _print_json({"ok": True, "code": "ok", "message": "Command completed successfully."})
        return 0

    stderr = (proc.stderr or "").strip()
    stdout = (proc.stdout or "").strip()
    runtime_json = _extract_json_payload(stdout)
    if runtime_json is not None:
        _print_json(runtime_json)
        return proc.returncode

    return _err(
        "runner_command_failed",
        stderr or "shll-runner command failed.",
        "Review command args and runner configuration, then retry.",
        {
            "returnCode": proc.returncode,
            "stdout": stdout[:2000],
            "stderr": stderr[:2000],
            "command": cmd[len(base):],
        },
        exit_code=proc.returncode,
    )


def _is_hex_address(value: str) -> bool:
    return bool(re.fullmatch(r"0x[a-fA-F0-9]{40}", value))


def _is_amount(value: str) -> bool:
    return bool(re.fullmatch(r"[0-9]+(\.[0-9]+)?|\.[0-9]+", value.strip()))


def _usage(cmd: str, usage: str) -> int:
    return _err("usage", f"{cmd} requires {usage}", f"usage: {cmd} {usage}", exit_code=2)


def main(argv: List[str]) -> int:
    if len(argv) < 2:
        return _err("usage", "Missing command.", f"Use one of: {', '.join(COMMANDS)}", exit_code=2)

    cmd = argv[1]
    if cmd not in COMMANDS:
        return _err("unknown_command", f"Unknown command: {cmd}", f"Use one of: {', '.join(COMMANDS)}", exit_code=2)

    if cmd == "tokens":
        return _run_runner(["tokens", "--json"])

    env_required = _require_env("SHLL_TOKEN_ID") if cmd in READ_ONLY_COMMANDS else _require_env("SHLL_TOKEN_ID", "RUNNER_PRIVATE_KEY")
    if env_required is not None:
        return env_required

    token_id = os.environ["SHLL_TOKEN_ID"].strip()
    if not re.fullmatch(r"[0-9]+", token_id):
        return _err("invalid_env", "SHLL_TOKEN_ID must be a non-negative integer.", details={"tokenId": token_id}, exit_code=2)
    shared = ["-k", token_id, "--json"]

    if cmd in ("policies", "lending-info"):
        return _run_runner([cmd, *shared])

    if cmd == "swap":
        if len(argv) < 5:
            return _usage(cmd, "<from> <to> <amount> [slippage_percent] [dex]")
        if not _is_amount(argv[4]):
            return _err("invalid_input", "Invalid amount format.", "Use a number like 0.5 or 100.", {"amount": argv[4]}, exit_code=2)
        args = ["swap", "--from", argv[2], "--to", argv[3], "--amount", argv[4]]
        if len(argv) > 5:
            args.extend(["--slippage", argv[5]])
        if len(argv) > 6:
            args.extend(["--dex", argv[6]])
        return _run_runner([*args, *shared])

    if cmd == "raw":
        if len(argv) < 4:
            return _usage(cmd, "<target> <data> [value_wei]")
        if not _is_hex_address(argv[2]):
            return _err("invalid_input", "Invalid target address.", "Use a 0x-prefixed 20-byte hex address.", {"target": argv[2]}, exit_code=2)
        args = ["raw", "--target", argv[2], "--data", argv[3]]
        if len(argv) > 4:
            args.extend(["--value", argv[4]])
        return _run_runner([*args, *shared])

    if cmd == "raw-batch":
        if len(argv) < 3:
            return _usage(cmd, "<actions_json>")
        return _run_runner(["raw", "--batch", "--actions", argv[2], *shared])

    if cmd in ("wrap", "unwrap"):
        if len(argv) < 3:
            return _usage(cmd, "<amount>")
        return _run_runner([cmd, "--amount", argv[2], *shared])

    if cmd == "transfer":
        if len(argv) < 5:
            return _usage(cmd, "<token> <amount> <to_address>")
        if not _is_hex_address(argv[4]):
            return _err("invalid_input", "Invalid recipient address.", "Use a 0x-prefixed 20-byte hex address.", {"to": argv[4]}, exit_code=2)
        return _run_runner(["transfer", "--token", argv[2], "--amount", argv[3], "--to", argv[4], *shared])

    if len(argv) < 4:
        return _usage(cmd, "<token> <amount>")
    return _run_runner([cmd, "--token", argv[2], "--amount", argv[3], *shared])


if __name__ == "__main__":
    raise SystemExit(main(sys.argv))
