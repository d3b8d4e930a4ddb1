# imprints/api/orders.py
# Order status routes: admin transitions and customer cancellation requests.
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from imprints.api.deps import get_outbox, raise_for_result
from imprints.api.schemas import OrderStatusIn, TransitionOut
from imprints.core.security import get_current_user, get_db, require_role
from imprints.models.accounting import IncomeStatus
from imprints.models.order import Order, OrderStatus
from imprints.models.user import RoleEnum, User
from imprints.services import accounting, order_state
from imprints.services.outbox import AccountingOutbox

router = APIRouter()


@router.get("/{order_id}/transitions")
async def valid_transitions(
    order_id: str,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_role(RoleEnum.admin)),
):
    order = await db.get(Order, order_id)
    if order is None:
        raise HTTPException(status_code=404, detail="Order not found")
    return {
        "status": order.status.value,
        "label": order_state.STATUS_LABELS[order.status],
        "valid_next": [s.value for s in order_state.get_valid_next_statuses(order.status)],
    }


@router.post("/{order_id}/status", response_model=TransitionOut)
async def change_status(
    order_id: str,
    body: OrderStatusIn,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_role(RoleEnum.admin)),
    outbox: AccountingOutbox = Depends(get_outbox),
):
    """Admin status change; force bypasses the transition table."""
    result = await order_state.transition_order_status(db, order_id, body.status, force=body.force)
    raise_for_result(result)

    if result.previous_status != result.new_status:
        if body.status == OrderStatus.payment_confirmed:
            outbox.submit(
                f"income:{order_id}",
                lambda session: accounting.create_income_from_order(session, order_id),
            )
        elif body.status == OrderStatus.delivered:
            outbox.submit(
                f"income-confirmed:{order_id}",
                lambda session: accounting.update_income_status(session, order_id, IncomeStatus.CONFIRMED),
            )

    return {"order_id": order_id, "previous_status": result.previous_status, "new_status": result.new_status}


@router.post("/{order_id}/cancel-request", response_model=TransitionOut)
async def cancel_request(order_id: str, db: AsyncSession = Depends(get_db), user: User = Depends(get_current_user)):
    result = await order_state.request_cancellation(db, order_id, user.id)
    raise_for_result(result)
    return {"order_id": order_id, "previous_status": result.previous_status, "new_status": result.new_status}
