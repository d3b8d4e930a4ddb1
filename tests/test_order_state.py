"""
Order status state machine: transition table, validation and guarded writes.
"""

import pytest

from imprints.models.order import Order, OrderStatus
from imprints.services import order_state
from imprints.services.order_state import VALID_TRANSITIONS, validate_transition
from imprints.services.results import ErrorKind

S = OrderStatus
ALL_PAIRS = [(current, new) for current in S for new in S]


# ============================================================================
# Validation
# ============================================================================


@pytest.mark.parametrize("current,new", ALL_PAIRS)
def test_validate_transition_matches_table(current, new):
    result = validate_transition(current, new)
    assert result["valid"] == (new == current or new in VALID_TRANSITIONS[current])
    if not result["valid"]:
        assert result["error"]


@pytest.mark.parametrize("terminal", [S.cancelled, S.refunded])
def test_terminal_states_reject_everything_else(terminal):
    for new in S:
        result = validate_transition(terminal, new)
        if new == terminal:
            assert result["valid"]
        else:
            assert not result["valid"]
            assert "terminal state" in result["error"]


def test_delivered_can_only_be_refunded():
    assert validate_transition(S.delivered, S.refunded)["valid"]
    result = validate_transition(S.delivered, S.shipped)
    assert not result["valid"]
    assert "Valid transitions: Refunded" in result["error"]


def test_validate_accepts_plain_strings():
    assert validate_transition("pending", "payment_confirmed")["valid"]


def test_predicates():
    assert order_state.can_customer_request_cancellation(S.confirmed)
    assert not order_state.can_customer_request_cancellation(S.printing)
    assert order_state.can_be_refunded(S.delivered)
    assert not order_state.can_be_refunded(S.pending)
    assert order_state.is_terminal_status(S.delivered)
    assert not order_state.is_terminal_status(S.shipped)
    assert order_state.is_active_status(S.cancellation_requested)
    assert not order_state.is_active_status(S.refunded)


def test_valid_next_statuses_is_a_copy():
    options = order_state.get_valid_next_statuses(S.shipped)
    options.append(S.pending)
    assert S.pending not in VALID_TRANSITIONS[S.shipped]


# ============================================================================
# transition_order_status
# ============================================================================


async def test_transition_writes_new_status(db, factory):
    order = await factory.order(status=S.confirmed, with_payment=False)

    result = await order_state.transition_order_status(db, order.id, S.printing)

    assert result.success
    assert (result.previous_status, result.new_status) == ("confirmed", "printing")
    assert (await factory.get(Order, order.id)).status == S.printing


async def test_invalid_transition_changes_nothing(db, factory):
    order = await factory.order(status=S.shipped, with_payment=False)

    result = await order_state.transition_order_status(db, order.id, S.pending)

    assert not result.success
    assert result.error_kind == ErrorKind.validation
    assert (await factory.get(Order, order.id)).status == S.shipped


@pytest.mark.parametrize("current,new", [(S.refunded, S.pending), (S.delivered, S.printing), (S.pending, S.shipped)])
async def test_force_writes_any_pair(db, factory, current, new):
    order = await factory.order(status=current, with_payment=False)

    result = await order_state.transition_order_status(db, order.id, new, force=True)

    assert result.success
    assert (await factory.get(Order, order.id)).status == new


async def test_transition_applies_additional_updates(db, factory):
    order = await factory.order(status=S.pending, with_payment=False)

    result = await order_state.transition_order_status(
        db, order.id, S.payment_confirmed, additional_updates={"preview_url": "https://cdn.example.com/p.png"}
    )

    assert result.success
    reloaded = await factory.get(Order, order.id)
    assert reloaded.preview_url == "https://cdn.example.com/p.png"


async def test_transition_unknown_order(db):
    result = await order_state.transition_order_status(db, "missing", S.printing)
    assert result.error_kind == ErrorKind.not_found
    assert result.error == "Order not found"


# ============================================================================
# Customer cancellation
# ============================================================================


@pytest.mark.parametrize("status", [S.pending, S.confirmed])
async def test_request_cancellation(db, factory, customer, status):
    order = await factory.order(customer=customer, status=status, with_payment=False)

    result = await order_state.request_cancellation(db, order.id, customer.id)

    assert result.success
    assert (await factory.get(Order, order.id)).status == S.cancellation_requested


async def test_request_cancellation_too_late(db, factory, customer):
    order = await factory.order(customer=customer, status=S.printing, with_payment=False)

    result = await order_state.request_cancellation(db, order.id, customer.id)

    assert result.error_kind == ErrorKind.conflict
    assert (await factory.get(Order, order.id)).status == S.printing


async def test_request_cancellation_other_customer(db, factory, customer):
    order = await factory.order(status=S.confirmed, with_payment=False)

    result = await order_state.request_cancellation(db, order.id, customer.id)

    assert result.error_kind == ErrorKind.forbidden
