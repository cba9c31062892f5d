"""Validate-then-execute pipeline.

Every action is validated against the policy guard in plan order. The first
rejection ends the run with no broadcast; otherwise exactly one transaction
is sent (single execute, or an all-or-nothing batch).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol, Sequence

from .actions import Action
from .policy import ValidationResult

logger = logging.getLogger(__name__)


class PolicyValidator(Protocol):
    def validate(self, agent_id: int, action: Action) -> ValidationResult: ...

    def execute(self, agent_id: int, action: Action, skip_revalidate: bool = False) -> str: ...

    def execute_batch(self, agent_id: int, actions: list[Action], skip_revalidate: bool = False) -> str: ...


@dataclass(frozen=True)
class ExecutionResult:
    transaction_hash: str
    batched: bool
    action_count: int


@dataclass(frozen=True)
class RejectedOutcome:
    reason: str
    action_index: int


class ExecutionPipeline:
    def __init__(self, policy: PolicyValidator):
        self.policy = policy

    def run(self, agent_id: int, actions: Sequence[Action]) -> ExecutionResult | RejectedOutcome:
        planned = list(actions)
        if not planned:
            raise ValueError("Cannot execute an empty action plan.")

        for index, action in enumerate(planned):
            verdict = self.policy.validate(agent_id, action)
            if not verdict.ok:
                logger.info("action %d rejected: %s", index, verdict.reason)
                return RejectedOutcome(reason=verdict.reason or "Rejected by PolicyGuard", action_index=index)
            logger.info("action %d/%d validated", index + 1, len(planned))

        if len(planned) == 1:
            tx_hash = self.policy.execute(agent_id, planned[0], skip_revalidate=True)
        else:
            tx_hash = self.policy.execute_batch(agent_id, planned, skip_revalidate=True)
        return ExecutionResult(transaction_hash=tx_hash, batched=len(planned) > 1, action_count=len(planned))
