# stage_machine.py
"""
Linear questionnaire driver shared by the onboarding, menu and application agents.

A machine owns a fixed stage order and one handler per stage. Handlers take
the user's text and a record and return a StageResult naming the next stage.
The machine only allows a handler to stay put, move forward, or take one of
the backward transitions the agent declared up front (early exits and the
edit rewind). Anything else is a bug in the handler and raises.
"""
from __future__ import annotations

import copy
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, Generic, Iterable, Optional, Sequence, Tuple, TypeVar

R = TypeVar("R")


class InvalidTransition(Exception):
    """A handler tried to move to a stage it is not allowed to reach."""


@dataclass
class StageResult(Generic[R]):
    text: str
    record: R
    next_stage: Enum
    events: Tuple[str, ...] = ()


Handler = Callable[[str, Any], StageResult]


class StageMachine(Generic[R]):
    def __init__(
        self,
        order: Sequence[Enum],
        handlers: Dict[Enum, Handler],
        rewinds: Iterable[Tuple[Enum, Enum]] = (),
        terminal: Optional[Enum] = None,
    ):
        missing = [stage for stage in order if stage not in handlers]
        if missing:
            raise ValueError(f"No handler for stages: {', '.join(s.name for s in missing)}")
        self.order = list(order)
        self.handlers = dict(handlers)
        self.rewinds: FrozenSet[Tuple[Enum, Enum]] = frozenset(rewinds)
        self.terminal = terminal if terminal is not None else self.order[-1]
        self._position = {stage: idx for idx, stage in enumerate(self.order)}

    def position(self, stage: Enum) -> int:
        return self._position[stage]

    def is_terminal(self, stage: Enum) -> bool:
        return stage == self.terminal

    def handle(self, stage: Enum, user_input: str, record: R) -> StageResult[R]:
        handler = self.handlers[stage]
        result = handler(user_input, copy.deepcopy(record))
        self._check_transition(stage, result.next_stage)
        return result

    def _check_transition(self, current: Enum, nxt: Enum) -> None:
        if nxt not in self._position:
            raise InvalidTransition(f"{nxt!r} is not a stage of this machine")
        if self._position[nxt] >= self._position[current]:
            return
        if (current, nxt) in self.rewinds:
            return
        raise InvalidTransition(f"{current.name} -> {nxt.name} moves backwards")


# ---------------------------------------------------------------------------
# Input helpers shared by handlers
# ---------------------------------------------------------------------------

YES_WORDS = {"yes", "y", "1", "yebo", "ja", "sure", "ok"}

def pick(choices: Dict[str, str], user_input: str, default: Optional[str] = None) -> Optional[str]:
    """Decode a numbered menu answer; unrecognised input falls back to `default`."""
    return choices.get(user_input.strip(), default)

def is_yes(user_input: str) -> bool:
    text = user_input.strip().lower()
    return text in YES_WORDS or text.startswith("yes")

def numbered_menu(options: Sequence[str]) -> str:
    return "\n".join(f"{idx}️⃣ {label}" for idx, label in enumerate(options, start=1))
