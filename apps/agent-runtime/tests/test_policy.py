import pathlib
import sys
import unittest
from unittest import mock

RUNTIME_ROOT = pathlib.Path("apps/agent-runtime").resolve()
if str(RUNTIME_ROOT) not in sys.path:
    sys.path.insert(0, str(RUNTIME_ROOT))

from shll_runner import policy  # noqa: E402
from shll_runner.actions import Action  # noqa: E402
from shll_runner.errors import ChainError, ConfigError  # noqa: E402
from shll_runner.keys import keccak256_text  # noqa: E402

NFA = "0xE98DCdbf370D7b52c9A2b88F79bEF514A5375a2b"
GUARD = "0x25d17eA0e3Bcb8CA08a2BFE917E817AFc05dbBB3"
VAULT = "0x4444444444444444444444444444444444444444"
OPERATOR_KEY = "0x" + "00" * 31 + "01"
OPERATOR = "0x7e5f4552091a69125d5dfcb7b8c2659029395bdf"
TX_HASH = "0x" + "cd" * 32
ACTION = Action("0x1111111111111111111111111111111111111111", 0, "0xdeadbeef")


def _client(**call_outputs) -> mock.Mock:
    client = mock.Mock()

    def fake_call(address, signature, args=None, **kwargs):
        if signature == policy.NFA_ACCOUNT_OF:
            return VAULT
        if signature in call_outputs:
            out = call_outputs[signature]
            if isinstance(out, Exception):
                raise out
            return out(address) if callable(out) else out
        return ""

    client.call.side_effect = fake_call
    client.calldata.return_value = "0xabcdef01"
    client.send.return_value = TX_HASH
    client.wait_for_receipt.return_value = {"status": "0x1"}
    return client


class PolicyClientTests(unittest.TestCase):
    def _policy(self, client: mock.Mock, key=OPERATOR_KEY) -> policy.PolicyClient:
        return policy.PolicyClient(client, agent_nfa=NFA, policy_guard=GUARD, operator_key=key)

    def test_vault_lookup_is_cached(self) -> None:
        client = _client()
        p = self._policy(client)
        self.assertEqual(p.get_vault(5), VAULT)
        self.assertEqual(p.get_vault(5), VAULT)
        self.assertEqual(client.call.call_count, 1)

    def test_validate_passes_guard_arguments(self) -> None:
        client = _client(**{policy.GUARD_VALIDATE: "true\n\"\""})
        result = self._policy(client).validate(5, ACTION)

        self.assertEqual(result, policy.ValidationResult(ok=True))
        client.call.assert_called_with(GUARD, policy.GUARD_VALIDATE, [NFA, "5", VAULT, OPERATOR, ACTION.cast_tuple()])

    def test_validate_reports_reason_literally(self) -> None:
        client = _client(**{policy.GUARD_VALIDATE: "false\n\"SpendingLimit: exceeds daily cap\""})
        result = self._policy(client).validate(5, ACTION)
        self.assertFalse(result.ok)
        self.assertEqual(result.reason, "SpendingLimit: exceeds daily cap")

    def test_validate_empty_reason_defaults(self) -> None:
        client = _client(**{policy.GUARD_VALIDATE: "false\n\"\""})
        self.assertEqual(self._policy(client).validate(5, ACTION).reason, "Rejected by PolicyGuard")

    def test_validate_without_key_fails_before_guard_call(self) -> None:
        client = _client()
        with self.assertRaises(ConfigError):
            self._policy(client, key=None).validate(5, ACTION)
        self.assertFalse(any(c.args[1] == policy.GUARD_VALIDATE for c in client.call.call_args_list))

    def test_execute_simulates_then_sends_and_waits(self) -> None:
        client = _client()
        tx = self._policy(client).execute(5, ACTION)

        self.assertEqual(tx, TX_HASH)
        client.calldata.assert_called_once_with(policy.NFA_EXECUTE, ["5", ACTION.cast_tuple()])
        client.call.assert_called_once_with(NFA, "0xabcdef01", from_addr=OPERATOR)
        client.send.assert_called_once_with(OPERATOR_KEY, OPERATOR, NFA, "0xabcdef01")
        client.wait_for_receipt.assert_called_once_with(TX_HASH)

    def test_execute_simulation_revert_never_sends(self) -> None:
        client = _client()
        client.call.side_effect = ChainError("execution reverted: Cooldown active")
        with self.assertRaisesRegex(ChainError, "rejected in simulation: execution reverted: Cooldown active") as ctx:
            self._policy(client).execute(5, ACTION)
        self.assertEqual(ctx.exception.details, {"rejected": True})
        client.send.assert_not_called()

    def test_execute_batch_skip_revalidate_sends_directly(self) -> None:
        client = _client()
        second = Action("0x2222222222222222222222222222222222222222", 3, "0x")
        tx = self._policy(client).execute_batch(5, [ACTION, second], skip_revalidate=True)

        self.assertEqual(tx, TX_HASH)
        client.calldata.assert_called_once_with(
            policy.NFA_EXECUTE_BATCH, ["5", f"[{ACTION.cast_tuple()},{second.cast_tuple()}]"]
        )
        client.call.assert_not_called()
        client.send.assert_called_once()

    def test_get_policies_decodes_kinds(self) -> None:
        spending = "0x5555555555555555555555555555555555555555"
        custom = "0x6666666666666666666666666666666666666666"
        types = {spending: keccak256_text("spending_limit"), custom: "0x" + "ff" * 32}
        client = _client(
            **{
                policy.GUARD_GET_POLICIES: f"[{spending}, {custom}]",
                policy.POLICY_TYPE: lambda address: types[address],
                policy.POLICY_RENTER_CONFIGURABLE: lambda address: "true" if address == spending else "false",
            }
        )
        infos = self._policy(client).get_policies(5)
        self.assertEqual(
            infos,
            [
                policy.PolicyInfo(policy_kind="spending_limit", address=spending, renter_configurable=True),
                policy.PolicyInfo(policy_kind="unknown", address=custom, renter_configurable=False),
            ],
        )

    def test_spending_limit_read_failure_returns_none(self) -> None:
        client = _client(**{policy.SPENDING_LIMIT_INSTANCE_LIMITS: ChainError("reverted")})
        self.assertIsNone(self._policy(client).read_spending_limits("0x" + "5" * 40, 5))

    def test_spending_limits_parse(self) -> None:
        client = _client(**{policy.SPENDING_LIMIT_INSTANCE_LIMITS: "1000000000000000000 [1e18]\n5000000000000000000 [5e18]\n300"})
        self.assertEqual(
            self._policy(client).read_spending_limits("0x" + "5" * 40, 5),
            {"maxPerTx": 10**18, "maxPerDay": 5 * 10**18, "maxSlippageBps": 300},
        )


class PolicySummaryTests(unittest.TestCase):
    def test_summaries(self) -> None:
        info = policy.PolicyInfo("spending_limit", "0x" + "5" * 40, True)
        cfg = {"maxPerTxBnb": "1", "maxPerDayBnb": "5", "maxSlippageBps": "300"}
        self.assertEqual(policy.policy_summary(info, cfg), "Max 1 BNB/tx, 5 BNB/day, slippage 300bps")
        self.assertEqual(
            policy.policy_summary(policy.PolicyInfo("receiver_guard", "0x" + "6" * 40, False), None),
            "Outbound transfers restricted (ReceiverGuard)",
        )
        self.assertIsNone(policy.policy_summary(policy.PolicyInfo("unknown", "0x" + "7" * 40, False), None))


if __name__ == "__main__":
    unittest.main()
