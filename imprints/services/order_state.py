# imprints/services/order_state.py
# Order status state machine: legal transitions, validation and the single
# guarded write path for order status changes.
import logging
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from imprints.models.order import Order, OrderStatus
from imprints.services.results import ErrorKind, TransitionResult

logger = logging.getLogger(__name__)

S = OrderStatus

# current status -> statuses it may move to
VALID_TRANSITIONS: dict[OrderStatus, list[OrderStatus]] = {
    S.pending: [S.payment_confirmed, S.cancelled],
    S.payment_confirmed: [S.confirmed, S.cancellation_requested, S.cancelled, S.refunded],
    S.confirmed: [S.printing, S.cancellation_requested, S.cancelled, S.refunded],
    S.printing: [S.shipped, S.cancelled, S.refunded],
    S.shipped: [S.delivered, S.refunded],
    # delivered orders can still be refunded after an issue
    S.delivered: [S.refunded],
    # admin either finalises the cancellation or restores a previous state
    S.cancellation_requested: [S.cancelled, S.confirmed, S.payment_confirmed, S.pending, S.refunded],
    S.cancelled: [],
    S.refunded: [],
}

STATUS_LABELS: dict[OrderStatus, str] = {
    S.pending: "Pending Payment",
    S.payment_confirmed: "Payment Confirmed",
    S.confirmed: "Confirmed",
    S.printing: "Printing",
    S.shipped: "Shipped",
    S.delivered: "Delivered",
    S.cancellation_requested: "Cancellation Requested",
    S.cancelled: "Cancelled",
    S.refunded: "Refunded",
}

ACTIVE_STATUSES = frozenset({
    S.pending, S.payment_confirmed, S.confirmed, S.printing, S.shipped, S.cancellation_requested,
})
# delivered is complete but still open to refunds, so validation uses the table
TERMINAL_STATUSES = frozenset({S.delivered, S.cancelled, S.refunded})
CANCELLABLE_STATUSES = frozenset({S.pending, S.payment_confirmed, S.confirmed})
REFUNDABLE_STATUSES = frozenset({S.payment_confirmed, S.confirmed, S.printing, S.shipped, S.delivered})


def is_valid_transition(current: OrderStatus, new: OrderStatus) -> bool:
    if current == new:
        return True
    return new in VALID_TRANSITIONS[current]


def get_valid_next_statuses(current: OrderStatus) -> list[OrderStatus]:
    return list(VALID_TRANSITIONS[current])


def validate_transition(current: OrderStatus, new: OrderStatus) -> dict:
    """Returns {"valid": True} or {"valid": False, "error": "..."} describing why."""
    current, new = OrderStatus(current), OrderStatus(new)
    if current == new:
        return {"valid": True}

    if not VALID_TRANSITIONS[current]:
        return {
            "valid": False,
            "error": f"Order is in terminal state '{STATUS_LABELS[current]}' and cannot be modified",
        }

    if not is_valid_transition(current, new):
        options = ", ".join(STATUS_LABELS[s] for s in VALID_TRANSITIONS[current])
        return {
            "valid": False,
            "error": (
                f"Cannot transition from '{STATUS_LABELS[current]}' to '{STATUS_LABELS[new]}'. "
                f"Valid transitions: {options or 'none'}"
            ),
        }

    return {"valid": True}


async def transition_order_status(
    db: AsyncSession,
    order_id: str,
    new_status: OrderStatus,
    *,
    force: bool = False,
    additional_updates: Optional[dict[str, Any]] = None,
) -> TransitionResult:
    """
    Moves an order to new_status and commits.

    force skips the transition table (admin override). The write only applies
    while the order still has the status that was validated; otherwise the
    call reports a conflict and changes nothing.
    """
    new_status = OrderStatus(new_status)
    current = await db.scalar(select(Order.status).where(Order.id == order_id))
    if current is None:
        return TransitionResult.fail(ErrorKind.not_found, "Order not found")

    if not force:
        validation = validate_transition(current, new_status)
        if not validation["valid"]:
            return TransitionResult.fail(ErrorKind.validation, validation["error"])

    if current == new_status and not additional_updates:
        return TransitionResult(success=True, previous_status=current.value, new_status=current.value)

    result = await db.execute(
        update(Order)
        .where(Order.id == order_id, Order.status == current)
        .values(status=new_status, **(additional_updates or {}))
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount == 0:
        await db.rollback()
        logger.warning(f"[Order State] {order_id}: status changed concurrently, expected {current.value}")
        return TransitionResult.fail(ErrorKind.conflict, "Order status changed concurrently, please retry")
    await db.commit()

    logger.info(f"[Order State] {order_id}: {current.value} -> {new_status.value}{' (forced)' if force else ''}")
    return TransitionResult(success=True, previous_status=current.value, new_status=new_status.value)


async def request_cancellation(db: AsyncSession, order_id: str, customer_id: str) -> TransitionResult:
    """Customer asks for cancellation; only early statuses qualify."""
    order = await db.get(Order, order_id)
    if order is None:
        return TransitionResult.fail(ErrorKind.not_found, "Order not found")
    if order.customer_id != customer_id:
        return TransitionResult.fail(ErrorKind.forbidden, "Access denied")
    if not can_customer_request_cancellation(order.status):
        return TransitionResult.fail(
            ErrorKind.conflict,
            f"Orders in status '{STATUS_LABELS[order.status]}' can no longer be cancelled",
        )
    # pending is cancellable but has no table edge to cancellation_requested
    return await transition_order_status(db, order_id, OrderStatus.cancellation_requested, force=True)


def can_customer_request_cancellation(status: OrderStatus) -> bool:
    return status in CANCELLABLE_STATUSES


def can_be_refunded(status: OrderStatus) -> bool:
    return status in REFUNDABLE_STATUSES


def is_terminal_status(status: OrderStatus) -> bool:
    return status in TERMINAL_STATUSES


def is_active_status(status: OrderStatus) -> bool:
    return status in ACTIVE_STATUSES
