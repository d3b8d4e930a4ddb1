# imprints/services/issues/loaders.py
# Shared issue queries with the relationships each operation needs.
# Async sessions cannot lazy-load, so every relationship used is loaded here.
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from imprints.models.issue import Issue
from imprints.models.order import Order, OrderItem


async def load_issue(db: AsyncSession, issue_id: str) -> Optional[Issue]:
    return await db.scalar(select(Issue).where(Issue.id == issue_id))


async def load_issue_with_order(db: AsyncSession, issue_id: str) -> Optional[Issue]:
    """Issue -> order item -> order (with payment)."""
    return await db.scalar(
        select(Issue)
        .where(Issue.id == issue_id)
        .options(
            selectinload(Issue.order_item)
            .selectinload(OrderItem.order)
            .selectinload(Order.payment)
        )
    )


async def load_issue_detail(db: AsyncSession, issue_id: str) -> Optional[Issue]:
    """Everything the issue detail views show: order, items, payment, thread and chain."""
    return await db.scalar(
        select(Issue)
        .where(Issue.id == issue_id)
        .options(
            selectinload(Issue.order_item).selectinload(OrderItem.order).selectinload(Order.payment),
            selectinload(Issue.order_item).selectinload(OrderItem.order).selectinload(Order.items),
            selectinload(Issue.messages),
            selectinload(Issue.original_issue),
            selectinload(Issue.child_issues),
        )
    )


def owner_id(issue: Issue) -> str:
    return issue.order_item.order.customer_id


def clean_image_urls(image_urls) -> Optional[list[str]]:
    """Keeps non-empty strings; None when nothing is left."""
    if not isinstance(image_urls, (list, tuple)):
        return None
    urls = [url for url in image_urls if isinstance(url, str) and url]
    return urls or None
