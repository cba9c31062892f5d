from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any

from .errors import InvalidAmountError
from .tokens import is_hex_address

EMPTY_CALLDATA = "0x"


def _to_hex(value: str) -> str:
    text = str(value or "").strip()
    return text if text.startswith("0x") else f"0x{text}"


@dataclass(frozen=True)
class Action:
    """One atomic (target, value, calldata) call executed from the vault."""

    target: str
    value: int
    data: str

    def __post_init__(self) -> None:
        if not is_hex_address(self.target):
            raise InvalidAmountError(f"Action target must be a 0x address: '{self.target}'.")
        if self.value < 0:
            raise InvalidAmountError("Action value must be non-negative.")
        if not re.fullmatch(r"0x([a-fA-F0-9]{2})*", self.data):
            raise InvalidAmountError("Action data must be 0x-prefixed hex calldata.")

    def cast_tuple(self) -> str:
        return f"({self.target},{self.value},{self.data})"

    def to_json(self) -> dict[str, str]:
        return {"target": self.target, "value": str(self.value), "data": self.data}


def parse_uint(raw: Any, label: str) -> int:
    text = str(raw if raw is not None else "0").strip() or "0"
    if not re.fullmatch(r"[0-9]+", text):
        raise InvalidAmountError(f"{label} must be a base-unit integer string.", details={label: text})
    return int(text)


def action_from_parts(target: str, value: Any, data: str) -> Action:
    return Action(target=_to_hex(target), value=parse_uint(value, "value"), data=_to_hex(data))


def parse_actions_json(raw: str) -> list[Action]:
    """Parse a JSON array of {target, value, data} objects."""
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise InvalidAmountError(f"--actions is not valid JSON: {exc.msg}.") from exc
    if not isinstance(parsed, list) or not parsed:
        raise InvalidAmountError("--actions must be a non-empty JSON array.")
    actions: list[Action] = []
    for idx, item in enumerate(parsed):
        if not isinstance(item, dict) or "target" not in item or "data" not in item:
            raise InvalidAmountError(f"--actions[{idx}] must be an object with target, value and data.")
        actions.append(action_from_parts(str(item["target"]), item.get("value") or "0", str(item["data"])))
    return actions
