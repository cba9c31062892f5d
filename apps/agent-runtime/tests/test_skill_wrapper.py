import importlib.util
import io
import json
import os
import pathlib
import subprocess
import unittest
from contextlib import redirect_stdout
from unittest import mock

SKILL_PATH = pathlib.Path("skills/shll-runner/scripts/shll_runner_skill.py").resolve()
_spec = importlib.util.spec_from_file_location("shll_runner_skill", SKILL_PATH)
skill = importlib.util.module_from_spec(_spec)
_spec.loader.exec_module(skill)


class SkillWrapperTests(unittest.TestCase):
    def _run(self, argv: list[str]) -> tuple[int, dict]:
        buf = io.StringIO()
        with redirect_stdout(buf):
            code = skill.main(["shll_runner_skill.py", *argv])
        return code, json.loads(buf.getvalue().strip())

    def test_missing_command(self) -> None:
        code, payload = self._run([])
        self.assertEqual(code, 2)
        self.assertEqual(payload["code"], "usage")

    def test_write_commands_require_key_and_token_id(self) -> None:
        with mock.patch.dict(os.environ, {}, clear=True):
            code, payload = self._run(["wrap", "1"])
        self.assertEqual(code, 2)
        self.assertEqual(payload["details"]["missing"], ["SHLL_TOKEN_ID", "RUNNER_PRIVATE_KEY"])

    def test_swap_maps_positional_args(self) -> None:
        env = {"SHLL_TOKEN_ID": "7", "RUNNER_PRIVATE_KEY": "0x" + "11" * 32}
        proc = mock.Mock(returncode=0, stdout='{"ok":true,"code":"ok","message":"Swap executed."}', stderr="")
        with mock.patch.dict(os.environ, env, clear=True), mock.patch.object(
            skill, "_resolve_runner_command", return_value=["shll-runner"]
        ), mock.patch.object(skill.subprocess, "run", return_value=proc) as run:
            code, payload = self._run(["swap", "BNB", "USDT", "0.1", "1", "v3"])

        self.assertEqual(code, 0)
        self.assertTrue(payload["ok"])
        self.assertEqual(
            run.call_args.args[0],
            ["shll-runner", "swap", "--from", "BNB", "--to", "USDT", "--amount", "0.1", "--slippage", "1", "--dex", "v3", "-k", "7", "--json"],
        )

    def test_runner_json_failure_passes_through_with_exit_code(self) -> None:
        env = {"SHLL_TOKEN_ID": "7", "RUNNER_PRIVATE_KEY": "0x" + "11" * 32}
        rejected = {"ok": False, "code": "policy_rejected", "message": "Exceeds daily limit", "details": {"actionIndex": 0}}
        proc = mock.Mock(returncode=3, stdout=json.dumps(rejected), stderr="")
        with mock.patch.dict(os.environ, env, clear=True), mock.patch.object(
            skill, "_resolve_runner_command", return_value=["shll-runner"]
        ), mock.patch.object(skill.subprocess, "run", return_value=proc):
            code, payload = self._run(["lend", "USDT", "50"])
        self.assertEqual(code, 3)
        self.assertEqual(payload, rejected)

    def test_timeout(self) -> None:
        env = {"SHLL_TOKEN_ID": "7", "SHLL_SKILL_TIMEOUT_SEC": "5"}
        with mock.patch.dict(os.environ, env, clear=True), mock.patch.object(
            skill, "_resolve_runner_command", return_value=["shll-runner"]
        ), mock.patch.object(skill.subprocess, "run", side_effect=subprocess.TimeoutExpired(cmd="x", timeout=5)):
            code, payload = self._run(["policies"])
        self.assertEqual(code, 124)
        self.assertEqual(payload["details"]["timeoutSec"], 5)

    def test_transfer_rejects_bad_recipient(self) -> None:
        env = {"SHLL_TOKEN_ID": "7", "RUNNER_PRIVATE_KEY": "0x" + "11" * 32}
        with mock.patch.dict(os.environ, env, clear=True):
            code, payload = self._run(["transfer", "USDT", "1", "0xabc"])
        self.assertEqual(code, 2)
        self.assertEqual(payload["code"], "invalid_input")


if __name__ == "__main__":
    unittest.main()
