from enum import Enum

import pytest

from stage_machine import InvalidTransition, StageMachine, StageResult, is_yes, numbered_menu, pick


class Step(str, Enum):
    A = "A"
    B = "B"
    C = "C"


def _to(stage):
    def handler(text, record):
        record["seen"].append(text)
        return StageResult(f"-> {stage.value}", record, stage)
    return handler


def test_missing_handler_is_rejected():
    with pytest.raises(ValueError):
        StageMachine(order=list(Step), handlers={Step.A: _to(Step.B)})


def test_handle_does_not_mutate_caller_record():
    machine = StageMachine(order=list(Step), handlers={Step.A: _to(Step.B), Step.B: _to(Step.C), Step.C: _to(Step.C)})
    record = {"seen": []}
    result = machine.handle(Step.A, "hello", record)
    assert record == {"seen": []}
    assert result.record == {"seen": ["hello"]}
    assert result.next_stage == Step.B


def test_forward_and_stay_are_allowed():
    machine = StageMachine(order=list(Step), handlers={Step.A: _to(Step.C), Step.B: _to(Step.B), Step.C: _to(Step.C)})
    assert machine.handle(Step.A, "x", {"seen": []}).next_stage == Step.C
    assert machine.handle(Step.B, "x", {"seen": []}).next_stage == Step.B


def test_undeclared_backward_move_raises():
    machine = StageMachine(order=list(Step), handlers={Step.A: _to(Step.A), Step.B: _to(Step.B), Step.C: _to(Step.A)})
    with pytest.raises(InvalidTransition):
        machine.handle(Step.C, "x", {"seen": []})


def test_declared_rewind_is_allowed():
    machine = StageMachine(
        order=list(Step),
        handlers={Step.A: _to(Step.A), Step.B: _to(Step.B), Step.C: _to(Step.A)},
        rewinds=[(Step.C, Step.A)],
    )
    assert machine.handle(Step.C, "x", {"seen": []}).next_stage == Step.A


def test_position_and_terminal():
    machine = StageMachine(order=list(Step), handlers={s: _to(s) for s in Step})
    assert [machine.position(s) for s in Step] == [0, 1, 2]
    assert machine.is_terminal(Step.C)
    assert not machine.is_terminal(Step.A)


def test_input_helpers():
    assert pick({"1": "Gauteng"}, " 1 ") == "Gauteng"
    assert pick({"1": "Gauteng"}, "9", "Other") == "Other"
    assert is_yes("Yes please")
    assert is_yes("1")
    assert not is_yes("no")
    assert numbered_menu(["One", "Two"]).splitlines() == ["1️⃣ One", "2️⃣ Two"]
