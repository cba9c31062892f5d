import pathlib
import sys
import unittest
from unittest import mock

RUNTIME_ROOT = pathlib.Path("apps/agent-runtime").resolve()
if str(RUNTIME_ROOT) not in sys.path:
    sys.path.insert(0, str(RUNTIME_ROOT))

from shll_runner.actions import Action  # noqa: E402
from shll_runner.pipeline import ExecutionPipeline, ExecutionResult, RejectedOutcome  # noqa: E402
from shll_runner.policy import ValidationResult  # noqa: E402

TX_HASH = "0x" + "ab" * 32
FIRST = Action("0x1111111111111111111111111111111111111111", 0, "0x095ea7b3")
SECOND = Action("0x2222222222222222222222222222222222222222", 0, "0xa0712d68")


def _policy(*verdicts: ValidationResult) -> mock.Mock:
    policy = mock.Mock()
    policy.validate.side_effect = list(verdicts)
    policy.execute.return_value = TX_HASH
    policy.execute_batch.return_value = TX_HASH
    return policy


class ExecutionPipelineTests(unittest.TestCase):
    def test_second_action_rejection_broadcasts_nothing(self) -> None:
        policy = _policy(ValidationResult(ok=True), ValidationResult(ok=False, reason="Exceeds daily limit"))

        outcome = ExecutionPipeline(policy).run(7, [FIRST, SECOND])

        self.assertEqual(outcome, RejectedOutcome(reason="Exceeds daily limit", action_index=1))
        self.assertEqual(policy.validate.call_count, 2)
        policy.execute.assert_not_called()
        policy.execute_batch.assert_not_called()

    def test_first_rejection_stops_validation(self) -> None:
        policy = _policy(ValidationResult(ok=False, reason="Receiver not allowed"), ValidationResult(ok=True))

        outcome = ExecutionPipeline(policy).run(7, [FIRST, SECOND])

        self.assertIsInstance(outcome, RejectedOutcome)
        self.assertEqual(outcome.action_index, 0)
        policy.validate.assert_called_once_with(7, FIRST)

    def test_rejection_without_reason_gets_default_text(self) -> None:
        policy = _policy(ValidationResult(ok=False, reason=None))
        outcome = ExecutionPipeline(policy).run(7, [FIRST])
        self.assertEqual(outcome.reason, "Rejected by PolicyGuard")

    def test_single_action_uses_execute(self) -> None:
        policy = _policy(ValidationResult(ok=True))

        outcome = ExecutionPipeline(policy).run(3, [FIRST])

        self.assertEqual(outcome, ExecutionResult(transaction_hash=TX_HASH, batched=False, action_count=1))
        policy.execute.assert_called_once_with(3, FIRST, skip_revalidate=True)
        policy.execute_batch.assert_not_called()

    def test_multiple_actions_use_one_batch(self) -> None:
        policy = _policy(ValidationResult(ok=True), ValidationResult(ok=True))

        outcome = ExecutionPipeline(policy).run(3, [FIRST, SECOND])

        self.assertEqual(outcome, ExecutionResult(transaction_hash=TX_HASH, batched=True, action_count=2))
        policy.execute_batch.assert_called_once_with(3, [FIRST, SECOND], skip_revalidate=True)
        policy.execute.assert_not_called()

    def test_empty_plan_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            ExecutionPipeline(_policy()).run(3, [])


if __name__ == "__main__":
    unittest.main()
