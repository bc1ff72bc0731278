"""Unit tests for the settlement state machine"""

import pytest
from pos_settlement.domain.exceptions import InvalidStateTransition
from pos_settlement.domain.models import PaymentMethod
from pos_settlement.domain.state_machine import SettlementState, SettlementStateMachine


def test_happy_path():
    machine = SettlementStateMachine()
    machine.select_method(PaymentMethod.CASH)
    machine.begin_validation()
    machine.begin_writing()
    machine.settle()

    assert machine.state == SettlementState.SETTLED
    assert machine.is_terminal
    assert machine.history == [
        SettlementState.IDLE,
        SettlementState.METHOD_SELECTED,
        SettlementState.VALIDATING,
        SettlementState.WRITING,
        SettlementState.SETTLED,
    ]


def test_validation_failure_goes_straight_to_failed():
    machine = SettlementStateMachine()
    machine.select_method(PaymentMethod.GIFT_CARD)
    machine.begin_validation()
    machine.fail("Insufficient stock")

    assert machine.state == SettlementState.FAILED
    assert SettlementState.WRITING not in machine.history
    assert machine.error == "Insufficient stock"


def test_cannot_write_without_validating():
    machine = SettlementStateMachine()
    machine.select_method(PaymentMethod.CASH)

    with pytest.raises(InvalidStateTransition):
        machine.begin_writing()


def test_method_can_be_reselected():
    machine = SettlementStateMachine()
    machine.select_method(PaymentMethod.CASH)
    machine.select_method(PaymentMethod.CARD_READER)

    assert machine.method == PaymentMethod.CARD_READER


def test_abandon_before_writing_resets():
    machine = SettlementStateMachine()
    machine.select_method(PaymentMethod.CASH)
    machine.begin_validation()
    machine.abandon()

    assert machine.state == SettlementState.IDLE
    assert machine.method is None


def test_abandon_while_writing_is_rejected():
    machine = SettlementStateMachine()
    machine.select_method(PaymentMethod.CASH)
    machine.begin_validation()
    machine.begin_writing()

    with pytest.raises(InvalidStateTransition):
        machine.abandon()


def test_terminal_states_accept_no_transitions():
    machine = SettlementStateMachine()
    machine.select_method(PaymentMethod.CASH)
    machine.begin_validation()
    machine.fail("declined")

    with pytest.raises(InvalidStateTransition):
        machine.begin_writing()
