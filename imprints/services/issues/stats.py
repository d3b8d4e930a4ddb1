# imprints/services/issues/stats.py
# Read-only issue queries: customer list with counters, admin list,
# dashboard aggregates and unread message counts.
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from imprints.models.issue import CarrierFault, Issue, IssueMessage, IssueStatus, MessageSender
from imprints.models.order import Order, OrderItem
from imprints.services.issues.status_machine import NEEDS_ATTENTION_STATUSES, is_pending, is_resolved


async def get_customer_issues(db: AsyncSession, customer_id: str) -> dict:
    """Customer's issues, newest first, with {total, pending, resolved, unread_messages}."""
    result = await db.scalars(
        select(Issue)
        .join(Issue.order_item)
        .join(OrderItem.order)
        .where(Order.customer_id == customer_id)
        .options(selectinload(Issue.order_item).selectinload(OrderItem.order))
        .order_by(Issue.created_at.desc())
    )
    issues = list(result)

    return {
        "issues": issues,
        "stats": {
            "total": len(issues),
            "pending": sum(1 for i in issues if is_pending(i.status)),
            "resolved": sum(1 for i in issues if is_resolved(i.status)),
            "unread_messages": await get_customer_unread_count(db, customer_id),
        },
    }


async def list_issues_admin(
    db: AsyncSession,
    status: Optional[IssueStatus] = None,
    carrier_fault: Optional[CarrierFault] = None,
    limit: int = 50,
    offset: int = 0,
) -> dict:
    query = select(Issue)
    count_query = select(func.count(Issue.id))
    if status is not None:
        query = query.where(Issue.status == status)
        count_query = count_query.where(Issue.status == status)
    if carrier_fault is not None:
        query = query.where(Issue.carrier_fault == carrier_fault)
        count_query = count_query.where(Issue.carrier_fault == carrier_fault)

    result = await db.scalars(
        query
        .options(selectinload(Issue.order_item).selectinload(OrderItem.order))
        .order_by(Issue.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    return {"issues": list(result), "total": await db.scalar(count_query)}


async def get_admin_dashboard_stats(db: AsyncSession) -> dict:
    rows = await db.execute(select(Issue.status, func.count(Issue.id)).group_by(Issue.status))
    by_status = {status.value: 0 for status in IssueStatus}
    for status, count in rows:
        by_status[status.value] = count

    carrier_fault = await db.scalar(
        select(func.count(Issue.id)).where(Issue.carrier_fault == CarrierFault.CARRIER_FAULT)
    )
    return {"by_status": by_status, "carrier_fault": carrier_fault}


async def get_issues_needing_attention(db: AsyncSession) -> int:
    return await db.scalar(
        select(func.count(Issue.id)).where(
            Issue.status.in_(NEEDS_ATTENTION_STATUSES),
            Issue.is_concluded.is_(False),
        )
    )


async def get_customer_unread_count(db: AsyncSession, customer_id: str) -> int:
    """Unread ADMIN messages across the customer's issues."""
    return await db.scalar(
        select(func.count(IssueMessage.id))
        .join(IssueMessage.issue)
        .join(Issue.order_item)
        .join(OrderItem.order)
        .where(
            Order.customer_id == customer_id,
            IssueMessage.sender == MessageSender.ADMIN,
            IssueMessage.read_at.is_(None),
        )
    )


async def get_admin_unread_count(db: AsyncSession) -> int:
    return await db.scalar(
        select(func.count(IssueMessage.id)).where(
            IssueMessage.sender == MessageSender.CUSTOMER,
            IssueMessage.read_at.is_(None),
        )
    )
